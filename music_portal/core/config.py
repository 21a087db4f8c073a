# music_portal/core/config.py
"""Application configuration using Pydantic."""
from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    database_url: str
    redis_url: str = 'redis://localhost:6379/0'
    jwt_secret_key: str

    app_name: str = 'music_portal'
    app_version: str = '1.0.0'
    environment: str = 'development'
    log_level: str = 'INFO'
    allowed_origins: List[str] = ['*']
    frontend_url: str = 'http://localhost:5173'

    # Auth
    jwt_algorithm: str = 'HS256'
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    login_max_attempts: int = 5
    login_window_seconds: int = 900
    # Required in the X-Bootstrap-Token header to create schools; unset disables it in production
    bootstrap_token: Optional[str] = None

    # Cache
    cache_enabled: bool = True
    drive_cache_ttl_seconds: int = 300

    # Google Drive
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: str = 'http://localhost:3000/api/v1/google-drive/auth/callback'
    google_drive_scopes: List[str] = [
        'https://www.googleapis.com/auth/drive.file',
        'https://www.googleapis.com/auth/drive.readonly',
    ]
    token_encryption_key: Optional[str] = None
    drive_rate_limit: int = 100
    drive_rate_window_seconds: int = 60
    max_upload_bytes: int = 25 * 1024 * 1024

    # Billing and scheduling
    hybrid_group_rate: Decimal = Decimal('25.00')
    hybrid_individual_rate: Decimal = Decimal('45.00')
    default_term_weeks: int = 10
    invoice_due_days: int = 14
    registration_token_days: int = 7

    model_config = {
        'env_file': '.env',
        'extra': 'ignore'
    }

settings = Settings()

# music_portal/core/security.py
"""Password hashing, JWT handling and token encryption."""
import base64
import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError
from jose import jwt as jose_jwt
from passlib.context import CryptContext

from .config import settings
from .exceptions import AuthenticationError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

COMMON_PASSWORDS = {
    "password", "password1", "password123", "12345678", "123456789", "qwerty123",
    "letmein1", "welcome1", "iloveyou", "admin123", "abc12345", "football1",
    "monkey123", "sunshine1", "princess1", "passw0rd", "P@ssw0rd", "Password1!",
}


# ============================================================================
# PASSWORDS
# ============================================================================

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.error(f"Password verification error: {e}")
        return False


def validate_password_strength(password: str) -> List[str]:
    """Return the list of unmet password rules; empty means acceptable"""
    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long.")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain an uppercase letter.")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain a lowercase letter.")
    if not re.search(r"\d", password):
        errors.append("Password must contain a number.")
    if not re.search(r"[^A-Za-z0-9]", password):
        errors.append("Password must contain a special character.")
    if password in COMMON_PASSWORDS or password.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common.")
    return errors


# ============================================================================
# JWT
# ============================================================================

def create_access_token(claims: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {**claims, "type": "access", "iat": now, "exp": expire}
    return jose_jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, expected_type: str = "access") -> Dict[str, Any]:
    try:
        payload = jose_jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.info(f"Rejected token: {e}")
        raise AuthenticationError("Invalid or expired token.")
    if payload.get("type") != expected_type:
        raise AuthenticationError("Invalid or expired token.")
    return payload


def create_state_token(school_id: str, user_id: str) -> str:
    """Signed OAuth state binding a Drive authorization to the requesting school"""
    now = datetime.now(timezone.utc)
    payload = {
        "school_id": school_id,
        "sub": user_id,
        "nonce": secrets.token_urlsafe(8),
        "type": "oauth_state",
        "exp": now + timedelta(minutes=10),
    }
    return jose_jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


# ============================================================================
# REFRESH TOKENS
# ============================================================================

def generate_refresh_token() -> str:
    return secrets.token_urlsafe(48)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


# ============================================================================
# ENCRYPTION AT REST
# ============================================================================

def _fernet() -> Fernet:
    key = settings.token_encryption_key
    if not key:
        # Derive a stable key from the JWT secret when no dedicated key is configured
        digest = hashlib.sha256(settings.jwt_secret_key.encode()).digest()
        key = base64.urlsafe_b64encode(digest).decode()
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt(value: str) -> str:
    return _fernet().encrypt(value.encode()).decode()


def decrypt(value: str) -> str:
    try:
        return _fernet().decrypt(value.encode()).decode()
    except InvalidToken:
        logger.error("Stored token could not be decrypted")
        raise AuthenticationError("Google Drive authorization expired. Please re-authorize.")

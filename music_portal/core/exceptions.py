# music_portal/core/exceptions.py
"""Custom exceptions for the music portal."""
from typing import Dict, Optional


class PortalException(Exception):
    """Base exception carrying a user-facing message and HTTP status."""
    def __init__(self, message: str, status_code: int = 500, headers: Optional[Dict[str, str]] = None):
        self.message = message
        self.status_code = status_code
        self.headers = headers
        super().__init__(self.message)


class ValidationException(PortalException):
    """Bad input or a rule the request breaks"""
    def __init__(self, message: str):
        super().__init__(message, 400)


class AuthenticationError(PortalException):
    def __init__(self, message: str = "Authentication required."):
        super().__init__(message, 401, headers={"WWW-Authenticate": "Bearer"})


class PermissionDenied(PortalException):
    def __init__(self, message: str = "You do not have permission to perform this action."):
        super().__init__(message, 403)


class NotFoundError(PortalException):
    """Resource not found exception"""
    def __init__(self, resource: str, message: Optional[str] = None):
        super().__init__(message or f"{resource} not found.", 404)


class ConflictError(PortalException):
    def __init__(self, message: str):
        super().__init__(message, 409)


class RateLimitExceeded(PortalException):
    def __init__(self, message: str, retry_after: int):
        super().__init__(message, 429, headers={"Retry-After": str(retry_after)})
        self.retry_after = retry_after


class ExternalServiceError(PortalException):
    """An upstream API (Google Drive) failed or refused the request"""
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message, status_code)

import re
import secrets
import logging

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TAGS = re.compile(r"<[^>]*>")


def sanitize_search_term(term: str) -> str:
    """Escape LIKE wildcards in a user supplied search term (use with escape='\\\\')"""
    if not isinstance(term, str):
        return ""

    sanitized = re.sub(r"[%_\\]", r"\\\g<0>", term.strip())
    return sanitized[:100]


def like_pattern(term: str) -> str:
    return f"%{sanitize_search_term(term)}%"


def clean_text(value, max_length: int = None):
    """Strip markup and control characters from free text coming from public forms"""
    if value is None:
        return None
    cleaned = _CONTROL_CHARS.sub("", _TAGS.sub("", str(value))).strip()
    if max_length is not None:
        cleaned = cleaned[:max_length]
    return cleaned


def generate_token(nbytes: int = 32) -> str:
    """URL-safe random token for verification and registration links"""
    return secrets.token_urlsafe(nbytes)

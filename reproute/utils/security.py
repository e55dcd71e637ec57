import hmac

from fastapi import Header, HTTPException

from ..config import settings
from .logging import logger

def api_key_ok(provided: str | None, expected: str | None) -> bool:
    if not expected:
        # no key configured (local dev): accept everything
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))

def require_api_key(x_api_key: str | None = Header(None)) -> None:
    expected = settings.API_KEY.get_secret_value() if settings.API_KEY else None
    if not api_key_ok(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")

def warn_if_open() -> bool:
    """Log when a non-dev deployment serves the API without a key. Returns True if it does."""
    if settings.API_KEY is None and settings.ENV != "dev":
        logger.warning("API_KEY is not set in %s: every /v1 endpoint is open", settings.ENV)
        return True
    return False

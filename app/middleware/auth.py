"""
Admin API key authentication.

The attribution endpoints (reports, order paths, re-link) expose revenue data,
so they require the admin key in the X-API-Key header:
  - Compared in constant time against the SHA-256 of TL_ADMIN_API_KEY
  - An unset key rejects every request (no open dashboards by accident)
"""

import hashlib
import hmac
from dataclasses import dataclass

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from app.config import get_settings

import structlog

logger = structlog.get_logger()

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _hash_key(raw_key: str) -> str:
    """SHA-256 hash of the raw API key."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


@dataclass
class AdminContext:
    """Resolved authentication context for the current request."""
    key_prefix: str


async def require_admin_key(
    request: Request,
    api_key: str | None = Security(api_key_header),
) -> AdminContext:
    """Require the configured admin API key."""
    settings = get_settings()
    if not settings.admin_api_key:
        logger.warning("admin_api_key_not_configured", path=request.url.path)
        raise HTTPException(status_code=503, detail="Admin API key is not configured.")

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Include X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not hmac.compare_digest(_hash_key(api_key), _hash_key(settings.admin_api_key)):
        raise HTTPException(
            status_code=401,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return AdminContext(key_prefix=api_key[:6])

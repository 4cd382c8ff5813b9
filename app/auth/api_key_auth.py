"""
Bearer key check for the manual sync triggers.
===============================================

POST /sync/* endpoints start expensive sweeps. In production they require
``Authorization: Bearer <CHARTSYNC_SYNC_API_KEY>``; in other environments
they are open so the service can be driven by hand during development.

Keys are compared with hmac.compare_digest.
"""

import hmac
import logging
from typing import Optional

from fastapi import Request

from app.config import Settings, settings
from app.core.errors import ChartSyncError

logger = logging.getLogger(__name__)

UNAUTHORIZED_CODE = "CS-API-001"


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def check_sync_api_key(authorization: Optional[str], config: Settings) -> None:
    """Raise CS-API-001 unless the request may trigger a sync."""
    if config.environment != "production":
        return
    token = _bearer_token(authorization)
    expected = config.sync_api_key or ""
    if not expected or token is None or not hmac.compare_digest(token, expected):
        logger.warning("Rejected manual sync trigger: missing or invalid bearer key")
        raise ChartSyncError(UNAUTHORIZED_CODE, detail="Invalid or missing sync API key")


async def require_sync_api_key(request: Request) -> None:
    """FastAPI dependency wrapping check_sync_api_key with the process settings."""
    check_sync_api_key(request.headers.get("Authorization"), settings)

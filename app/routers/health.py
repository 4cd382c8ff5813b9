"""
Health endpoint - liveness plus catalog cache statistics.
"""

from fastapi import APIRouter, Depends

from app.config import APP_VERSION, settings
from app.core.structured_logging import get_uptime_s
from app.services.sync_service import SyncService, get_sync_service

router = APIRouter()


@router.get("/health", summary="Health check")
async def health(service: SyncService = Depends(get_sync_service)):
    return {
        "status": "healthy",
        "version": APP_VERSION,
        "environment": settings.environment,
        "hanteoEnv": settings.hanteo_env,
        "uptimeSeconds": round(get_uptime_s(), 1),
        "stats": service.get_statistics(),
    }

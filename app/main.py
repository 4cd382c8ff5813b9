from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import APP_VERSION, settings
from app.routers import health, sync, webhooks
from app.core.structured_logging import setup_logging
from app.core.errors import ChartSyncError
from app.core.errors.registry import error_registry
from app.core.errors.middleware import chartsync_error_handler
from app.core.log_middleware import CorrelationMiddleware
from app.services.scheduler import SyncScheduler
from app.services.sync_service import get_sync_service

# Initialize structured logging before any logger calls
setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)

logger = logging.getLogger(__name__)

API_TITLE = "chart-sync"
API_DESCRIPTION = """
## chart-sync - Shopify → Hanteo album sales reporting

Receives Shopify fulfillment webhooks and periodically sweeps recently
fulfilled orders, reporting album sales to the Hanteo Chart real-time API.
"""

TAGS_METADATA = [
    {"name": "health", "description": "Liveness and catalog cache statistics. No authentication required."},
    {"name": "webhooks", "description": "Shopify fulfillment webhooks. HMAC-verified when a secret is configured."},
    {"name": "sync", "description": "Manual sync triggers. **Requires a bearer key in production.**"},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "Starting chart-sync v%s (environment=%s, hanteo_env=%s)...",
        APP_VERSION, settings.environment, settings.hanteo_env,
    )
    error_registry.load()

    service = get_sync_service()

    # Missing settings or rejected Hanteo credentials abort startup
    await service.validate_configuration()

    try:
        await service.sync_album_products()
    except Exception as e:
        logger.warning("Initial product sync failed, will retry on schedule: %s", e)

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = SyncScheduler(service)
        scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down chart-sync...")
    if scheduler is not None:
        await scheduler.stop()
    await service.aclose()
    logger.info("HTTP clients closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=APP_VERSION,
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
    )

    # Correlation ID middleware (request_id in every log)
    app.add_middleware(CorrelationMiddleware)

    # Structured error handler for ChartSyncError
    app.add_exception_handler(ChartSyncError, chartsync_error_handler)

    # Catch-all handler so unhandled exceptions return JSON (not bare text)
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error"},
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(sync.router, prefix="/sync", tags=["sync"])

    @app.get("/", tags=["health"], summary="API Root")
    async def root():
        return {
            "name": API_TITLE,
            "version": APP_VERSION,
            "status": "running",
            "docs": {"swagger": "/docs", "openapi": "/openapi.json"},
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.port)

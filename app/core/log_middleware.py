"""
FastAPI middleware for request correlation.

Sets request_id for every request. Shopify webhook deliveries also get their
topic, shop and webhook id bound into the structlog context, so each log line
emitted while handling the delivery can be matched to the delivery Shopify
shows in its admin. Health checks are logged at debug level only.
"""
from __future__ import annotations

import logging
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.structured_logging import request_id_var

logger = logging.getLogger(__name__)

# Shopify delivery header -> log field
WEBHOOK_HEADERS = {
    "x-shopify-topic": "webhook_topic",
    "x-shopify-shop-domain": "shop",
    "x-shopify-webhook-id": "webhook_id",
}

QUIET_PATHS = {"/health"}


def webhook_context(request: Request) -> dict:
    """Log fields taken from Shopify delivery headers present on ``request``."""
    return {
        field: request.headers[header]
        for header, field in WEBHOOK_HEADERS.items()
        if request.headers.get(header)
    }


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Bind request_id (and webhook delivery fields) for every request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        req_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        rid_token = request_id_var.set(req_id)

        start = time.perf_counter()
        response = None
        with structlog.contextvars.bound_contextvars(**webhook_context(request)):
            try:
                response = await call_next(request)
            finally:
                path = request.url.path
                logger.log(
                    logging.DEBUG if path in QUIET_PATHS else logging.INFO,
                    "request_completed",
                    extra={
                        "http.method": request.method,
                        "http.path": path,
                        "http.status_code": response.status_code if response else None,
                        "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                    },
                )
                request_id_var.reset(rid_token)

        response.headers["x-request-id"] = req_id
        return response

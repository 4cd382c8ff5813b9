"""
FastAPI exception handler for ChartSyncError.

The registry supplies the status, title and safe message for the code. The
response adds the fields a caller of /sync/* can act on: Hanteo response
codes, the opVal tokens Hanteo rejected, the settings that are missing, the
keys of invalid records. ``detail`` stays in the log.
"""

import logging
from typing import Any, Dict

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AuthenticationError,
    BatchTooLargeError,
    ChartSyncError,
    CommerceAPIError,
    ConfigurationError,
    PartialSubmissionError,
    ReportingAPIError,
    TokenRejectedError,
    TransactionValidationError,
)
from app.core.errors.registry import error_registry

logger = logging.getLogger(__name__)


def _codes(response_code, status_code) -> Dict[str, Any]:
    context = {"responseCode": response_code, "statusCode": status_code}
    return {k: v for k, v in context.items() if v is not None}


def public_context(exc: ChartSyncError) -> Dict[str, Any]:
    """Caller-facing fields of ``exc``; empty for errors that carry none."""
    if isinstance(exc, PartialSubmissionError):
        outcome = exc.outcome
        return {
            "responseCode": exc.response_code,
            "requestCount": getattr(outcome, "request_count", None),
            "successCount": getattr(outcome, "success_count", None),
            "failedRecords": dict(sorted(exc.failures_by_token.items())),
        }
    if isinstance(exc, (ReportingAPIError, TokenRejectedError)):
        return _codes(exc.response_code, exc.status_code)
    if isinstance(exc, (CommerceAPIError, AuthenticationError)):
        return _codes(None, exc.status_code)
    if isinstance(exc, ConfigurationError):
        return {"missing": list(exc.missing)}
    if isinstance(exc, TransactionValidationError):
        return {"invalidRecords": {key: list(errors) for key, errors in exc.invalid}}
    if isinstance(exc, BatchTooLargeError):
        return {"size": exc.size, "limit": exc.limit}
    return {}


async def chartsync_error_handler(request: Request, exc: ChartSyncError) -> JSONResponse:
    """Convert ChartSyncError into a structured JSON response."""
    entry = error_registry.resolve(exc.code)
    if entry.code != exc.code:
        logger.error("unregistered_error_code", extra={"error.code": exc.code})

    logger.log(
        entry.log_level,
        entry.title,
        extra={
            "error.code": exc.code,
            "error.kind": type(exc).__name__,
            "error.message": exc.detail,
            "error.retryable": exc.retryable,
            "http.path": request.url.path,
            **{f"error.ctx.{k}": v for k, v in exc.context.items()},
        },
    )

    error: Dict[str, Any] = {
        "code": entry.code,
        "title": entry.title,
        "message": entry.safe_message,
        "retryable": exc.retryable,
        "remediation": entry.remediation,
    }
    context = public_context(exc)
    if context:
        error["context"] = context
    return JSONResponse(status_code=entry.http_status, content={"error": error})

"""
Error code system.

ChartSyncError is the base exception for all structured errors. Each
subclass is tied to a code in registry.yaml; the error middleware turns
registered errors into structured JSON responses, and the retry helpers use
the ``retryable`` flag to decide whether an operation may be attempted again.

Usage:
    from app.core.errors import ReportingAPIError
    raise ReportingAPIError("Sales data submission failed", response_code=604)
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

CODE_PATTERN = re.compile(r"^CS-[A-Z]{2,6}-\d{3}$")


class ChartSyncError(Exception):
    """Structured application error tied to the error registry.

    Args:
        code: Registry error code, e.g. "CS-HNT-001".
        detail: Internal-only detail message (never exposed to users).
        context: Arbitrary key-value context for structured logging.
        retryable: Whether a retry of the failed operation may succeed.
    """

    default_code = "CS-SYS-001"

    def __init__(
        self,
        code: str | None = None,
        detail: str | None = None,
        context: dict | None = None,
        retryable: bool = False,
    ) -> None:
        code = code or self.default_code
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.detail = detail
        self.context = context or {}
        self.retryable = retryable
        super().__init__(f"{code}: {detail}" if detail else code)


class ConfigurationError(ChartSyncError):
    """Startup configuration is incomplete or invalid. Fatal."""

    default_code = "CS-CFG-001"

    def __init__(self, detail: str, missing: Optional[List[str]] = None):
        super().__init__(detail=detail, context={"missing": missing or []})
        self.missing = missing or []


class CommerceAPIError(ChartSyncError):
    """Shopify request failed."""

    default_code = "CS-SHOP-001"

    def __init__(
        self,
        detail: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
        body: Any = None,
    ):
        super().__init__(
            detail=detail,
            context={"status_code": status_code},
            retryable=retryable,
        )
        self.status_code = status_code
        self.body = body


class ReportingAPIError(ChartSyncError):
    """Hanteo request failed or returned a non-success response code."""

    default_code = "CS-HNT-001"

    def __init__(
        self,
        detail: str,
        response_code: Optional[int] = None,
        status_code: Optional[int] = None,
        payload: Any = None,
        retryable: bool = False,
    ):
        super().__init__(
            detail=detail,
            context={"response_code": response_code, "status_code": status_code},
            retryable=retryable,
        )
        self.response_code = response_code
        self.status_code = status_code
        self.payload = payload


class PartialSubmissionError(ReportingAPIError):
    """Hanteo accepted part of a batch and rejected the rest.

    ``failures_by_token`` maps each rejected record's opVal to the Hanteo
    status code (UC, UB, NT, ...). ``outcome`` is the full BatchOutcome.
    """

    default_code = "CS-HNT-002"

    def __init__(self, outcome: Any, failures_by_token: Dict[str, str], payload: Any = None):
        super().__init__(
            detail=f"Partial success - {len(failures_by_token)} records failed",
            response_code=101,
            payload=payload,
        )
        self.outcome = outcome
        self.failures_by_token = failures_by_token


class AuthenticationError(ChartSyncError):
    """Hanteo token handshake failed, or a fresh token was rejected again."""

    default_code = "CS-AUTH-001"

    def __init__(self, detail: str = "Authentication failed", status_code: Optional[int] = None):
        super().__init__(detail=detail, context={"status_code": status_code})
        self.status_code = status_code


class TokenRejectedError(ChartSyncError):
    """Hanteo refused the bearer token (HTTP 401, code 821 or 822)."""

    default_code = "CS-AUTH-002"

    def __init__(self, detail: str, response_code: Optional[int] = None, status_code: Optional[int] = None):
        super().__init__(
            detail=detail,
            context={"response_code": response_code, "status_code": status_code},
        )
        self.response_code = response_code
        self.status_code = status_code


class TransactionValidationError(ChartSyncError):
    """One or more transactions failed validation. Never retried.

    ``invalid`` is a list of (record key, [field errors]) pairs, the key
    being Transaction.key ("{order_id}:{fulfillment_id}:{line_item_id}").
    """

    default_code = "CS-VAL-001"

    def __init__(self, invalid: List[tuple]):
        keys = [key for key, _ in invalid]
        super().__init__(
            detail=f"{len(invalid)} invalid transaction(s): {', '.join(keys[:10])}",
            context={"records": keys},
        )
        self.invalid = invalid


class BatchTooLargeError(ChartSyncError):
    """Caller passed more records than the batch ceiling. Never retried."""

    default_code = "CS-VAL-002"

    def __init__(self, size: int, limit: int):
        super().__init__(
            detail=f"Batch size {size} exceeds maximum {limit}",
            context={"size": size, "limit": limit},
        )
        self.size = size
        self.limit = limit

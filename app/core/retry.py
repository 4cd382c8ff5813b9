"""
Retry with exponential backoff for outbound HTTP calls.

Only transient failures are retried: transport errors (connection refused,
timeouts, ...) and errors explicitly flagged ``retryable`` (5xx responses).
Validation-class 4xx responses propagate on the first attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from app.core.clock import Clock, system_clock
from app.core.errors import ChartSyncError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """``retries`` counts attempts after the first one (3 → up to 4 calls)."""

    retries: int = 3
    initial_delay_s: float = 1.0
    factor: float = 2.0
    max_delay_s: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.initial_delay_s * (self.factor ** attempt), self.max_delay_s)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, ChartSyncError):
        return exc.retryable
    return False


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy = RetryPolicy(),
    clock: Clock = system_clock,
    is_retryable: Callable[[BaseException], bool] = is_transient,
    description: str = "operation",
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
) -> T:
    """Call ``fn`` until it succeeds, a non-retryable error occurs, or retries run out."""
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= policy.retries:
                raise
            delay = policy.delay_for(attempt)
            attempt += 1
            logger.warning(
                "Retrying %s (%d/%d) in %.1fs: %s",
                description, attempt, policy.retries, delay, exc,
            )
            if on_retry:
                on_retry(exc, attempt)
            await clock.sleep(delay)

"""
Paginated, quota-aware fetching for the Shopify Admin API.

Two pagination styles:
  - cursor:  GraphQL connections; follow pageInfo.endCursor while
             hasNextPage is true.
  - offset:  REST page numbers; stop at the first page shorter than the
             requested page size.

After each page the server-reported call quota is inspected. Above 80%
usage the next request is delayed (1s), above 95% for longer (2s). This is
proportional backpressure only; it does not track a token bucket.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

from app.core.clock import Clock, system_clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quota:
    used: float
    allowed: float

    @property
    def ratio(self) -> float:
        return self.used / self.allowed if self.allowed else 0.0

    @classmethod
    def from_header(cls, value: Optional[str]) -> Optional["Quota"]:
        """Parse "X-Shopify-Shop-Api-Call-Limit: 32/40"."""
        if not value or "/" not in value:
            return None
        used, _, allowed = value.partition("/")
        try:
            return cls(used=float(used), allowed=float(allowed))
        except ValueError:
            return None

    @classmethod
    def from_throttle_status(cls, status: Optional[dict]) -> Optional["Quota"]:
        """Parse GraphQL extensions.cost.throttleStatus."""
        if not status:
            return None
        try:
            maximum = float(status["maximumAvailable"])
            available = float(status["currentlyAvailable"])
        except (KeyError, TypeError, ValueError):
            return None
        return cls(used=maximum - available, allowed=maximum)


@dataclass(frozen=True)
class Page:
    items: List[Any]
    quota: Optional[Quota] = None
    next_cursor: Optional[str] = None
    has_next: bool = False
    number: Optional[int] = None


class QuotaBackoff:
    def __init__(
        self,
        clock: Clock = system_clock,
        warn_ratio: float = 0.80,
        critical_ratio: float = 0.95,
        warn_delay_s: float = 1.0,
        critical_delay_s: float = 2.0,
    ):
        self._clock = clock
        self.warn_ratio = warn_ratio
        self.critical_ratio = critical_ratio
        self.warn_delay_s = warn_delay_s
        self.critical_delay_s = critical_delay_s

    def delay_for(self, quota: Optional[Quota]) -> float:
        if quota is None or quota.ratio <= self.warn_ratio:
            return 0.0
        if quota.ratio > self.critical_ratio:
            return self.critical_delay_s
        return self.warn_delay_s

    async def pause(self, quota: Optional[Quota]) -> float:
        delay = self.delay_for(quota)
        if delay:
            logger.warning(
                "Approaching Shopify rate limit (%.0f/%.0f), slowing down %.1fs",
                quota.used, quota.allowed, delay,
            )
            await self._clock.sleep(delay)
        return delay


class PaginatedFetcher:
    """Turns a single-page fetch function into a lazy, finite page stream."""

    def __init__(self, backoff: Optional[QuotaBackoff] = None):
        self._backoff = backoff or QuotaBackoff()

    async def cursor_pages(
        self, fetch_page: Callable[[Optional[str]], Awaitable[Page]]
    ) -> AsyncIterator[Page]:
        cursor: Optional[str] = None
        while True:
            page = await fetch_page(cursor)
            yield page
            if not page.has_next or not page.next_cursor:
                return
            await self._backoff.pause(page.quota)
            cursor = page.next_cursor

    async def offset_pages(
        self,
        fetch_page: Callable[[int], Awaitable[Page]],
        page_size: int,
        first_page: int = 1,
    ) -> AsyncIterator[Page]:
        number = first_page
        while True:
            page = await fetch_page(number)
            if page.items:
                yield page
            if len(page.items) < page_size:
                return
            await self._backoff.pause(page.quota)
            number += 1

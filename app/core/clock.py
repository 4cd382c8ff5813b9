"""
Clock abstraction.

Every component that reads wall-clock time or sleeps takes a Clock, so
token expiry, cache age, backoff and inter-chunk pauses can be driven
deterministically in tests.
"""

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Current time as epoch seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall clock backed by time.time() and asyncio.sleep()."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


system_clock = SystemClock()

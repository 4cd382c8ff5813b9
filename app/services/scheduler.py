"""
Periodic sync loops.

Two asyncio tasks run for the lifetime of the web process:
    catalog refresh   every product_sync_interval_s
    order sweep       every order_sweep_interval_s, looking back
                      order_sweep_hours_ago hours

A failing iteration is logged and the loop waits for the next tick.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from app.config import Settings, settings as default_settings
from app.core.clock import Clock, system_clock
from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)


async def run_periodic(
    name: str,
    interval_s: float,
    job: Callable[[], Awaitable[object]],
    clock: Clock = system_clock,
    iterations: Optional[int] = None,
) -> None:
    """Run ``job`` every ``interval_s`` seconds. ``iterations`` bounds the loop (tests)."""
    count = 0
    while iterations is None or count < iterations:
        await clock.sleep(interval_s)
        count += 1
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Scheduled %s failed: %s", name, e, exc_info=True)


class SyncScheduler:
    def __init__(
        self,
        service: SyncService,
        config: Optional[Settings] = None,
        clock: Clock = system_clock,
    ):
        self._service = service
        self._settings = config or default_settings
        self._clock = clock
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def _sweep_orders(self):
        return await self._service.process_recent_fulfilled_orders(
            hours_ago=self._settings.order_sweep_hours_ago,
            limit=self._settings.shopify_page_size,
        )

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(
                run_periodic(
                    "product sync",
                    self._settings.product_sync_interval_s,
                    self._service.sync_album_products,
                    self._clock,
                )
            ),
            asyncio.create_task(
                run_periodic(
                    "order sweep",
                    self._settings.order_sweep_interval_s,
                    self._sweep_orders,
                    self._clock,
                )
            ),
        ]
        logger.info(
            "Scheduler started (products every %ds, orders every %ds)",
            self._settings.product_sync_interval_s,
            self._settings.order_sweep_interval_s,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Scheduler stopped")

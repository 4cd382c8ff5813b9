"""
Sync Service - composes the Shopify → Hanteo pipeline.
=======================================================

  catalog refresh   ShopifyClient → CatalogCache
  order sweep       ShopifyClient → OrderMapper → validate → BatchSubmitter

Two triggers reach the pipeline: the periodic sweep (scheduler or the
manual /sync/orders endpoint) and the single-order sweep fired by webhooks.
Both share the catalog cache and the token manager. A failing order is
recorded in the sweep result and the sweep moves on.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from app.config import Settings, settings as default_settings
from app.core.clock import Clock, system_clock
from app.core.errors import ConfigurationError
from app.core.retry import RetryPolicy
from app.core.structured_logging import sweep_id_var
from app.models.commerce import OrderFilter, ShopifyOrder
from app.models.sales import FailedTransaction, SweepResult, Transaction
from app.services.catalog_cache import CatalogCache
from app.services.hanteo_auth import AuthTokenManager
from app.services.hanteo_client import BatchSubmitter
from app.services.order_mapper import OrderMapper
from app.services.pagination import PaginatedFetcher, QuotaBackoff
from app.services.shopify_client import ShopifyClient
from app.services.validators import validate_batch

logger = logging.getLogger(__name__)


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat()


class SyncService:
    def __init__(
        self,
        shopify: ShopifyClient,
        catalog: CatalogCache,
        mapper: OrderMapper,
        auth: AuthTokenManager,
        submitter: BatchSubmitter,
        clock: Clock = system_clock,
        config: Optional[Settings] = None,
        http_clients: Optional[List[httpx.AsyncClient]] = None,
    ):
        self.shopify = shopify
        self.catalog = catalog
        self.mapper = mapper
        self.auth = auth
        self.submitter = submitter
        self._clock = clock
        self._settings = config or default_settings
        self._http_clients = http_clients or []

    async def aclose(self) -> None:
        for client in self._http_clients:
            await client.aclose()

    # ---- Startup ----

    async def validate_configuration(self) -> None:
        """Fail fast on missing settings or unusable Hanteo credentials."""
        missing = self._settings.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required settings: {', '.join(missing)}", missing=missing
            )
        await self.auth.ensure_valid()
        logger.info("Configuration validated (hanteo_env=%s)", self._settings.hanteo_env)

    # ---- Catalog ----

    async def sync_album_products(self) -> int:
        logger.info("Starting album product sync")
        count = await self.catalog.refresh()
        logger.info("Album product sync finished: %d variants cached", count)
        return count

    # ---- Orders ----

    async def process_recent_fulfilled_orders(self, hours_ago: int = 24, limit: int = 250) -> SweepResult:
        token = sweep_id_var.set(f"sweep-{uuid.uuid4().hex[:12]}")
        try:
            await self.catalog.ensure_fresh()
            since = self._clock.now() - timedelta(hours=hours_ago).total_seconds()
            order_filter = OrderFilter(updated_at_min=_iso(since), limit=limit)
            logger.info("Processing fulfilled orders from the last %d hours", hours_ago)

            result = SweepResult()
            transactions: List[Transaction] = []
            seen: set = set()
            async for page in self.shopify.iter_order_pages(order_filter):
                for order in page.items:
                    result.orders_processed += 1
                    for tx in await self._map_safely(order, result):
                        # page shifts between requests can repeat an order
                        if tx.key in seen:
                            continue
                        seen.add(tx.key)
                        transactions.append(tx)

            await self._submit(transactions, result)
            logger.info("Order sweep complete", extra={"result": result.to_dict()})
            return result
        finally:
            sweep_id_var.reset(token)

    async def process_order_by_id(self, order_id: int | str) -> SweepResult:
        token = sweep_id_var.set(f"order-{order_id}")
        try:
            await self.catalog.ensure_fresh()
            order = await self.shopify.get_order(order_id)
            result = SweepResult(orders_processed=1)
            transactions = await self._map_safely(order, result)
            if not transactions:
                logger.info("No album transactions in order %s", order.name)
            await self._submit(transactions, result)
            return result
        finally:
            sweep_id_var.reset(token)

    async def _map_safely(self, order: ShopifyOrder, result: SweepResult) -> List[Transaction]:
        try:
            return await self.mapper.map_order(order)
        except Exception as exc:
            logger.error("Failed to process order %s: %s", order.name, exc)
            result.errors.append({"orderId": str(order.id), "orderName": order.name, "error": str(exc)})
            return []

    async def _submit(self, transactions: List[Transaction], result: SweepResult) -> None:
        valid, invalid = validate_batch(transactions)
        for item in invalid:
            item.transaction.mark_failed(item.message)
            result.failed_transactions.append(FailedTransaction(item.transaction, item.message))
            result.transactions_failed += 1
        if invalid:
            logger.warning("%d transactions failed validation and were not sent", len(invalid))

        if not valid:
            return
        chunked = await self.submitter.submit_in_chunks(valid)
        result.transactions_sent += chunked.total_sent
        result.transactions_success += chunked.total_success
        result.transactions_failed += chunked.total_failed
        result.failed_transactions.extend(chunked.failed_transactions)

    # ---- Health ----

    def get_statistics(self) -> Dict[str, Any]:
        age = self.catalog.age()
        return {
            "cachedProducts": self.catalog.size,
            "lastSync": _iso(self.catalog.built_at),
            "cacheAgeSeconds": round(age, 1) if age is not None else None,
            "catalogRefreshing": self.catalog.refreshing,
            "hanteoAuthenticated": self.auth.is_authenticated,
        }


def build_sync_service(config: Optional[Settings] = None, clock: Clock = system_clock) -> SyncService:
    """Wire every component with one shared httpx client per remote API."""
    config = config or default_settings
    timeout = httpx.Timeout(config.request_timeout_s)
    shopify_http = httpx.AsyncClient(timeout=timeout)
    hanteo_http = httpx.AsyncClient(timeout=timeout)

    shopify = ShopifyClient(
        shopify_http,
        admin_url=config.shopify_admin_url,
        access_token=config.shopify_admin_access_token,
        clock=clock,
        fetcher=PaginatedFetcher(QuotaBackoff(clock)),
    )
    catalog = CatalogCache(shopify, clock=clock, ttl_s=config.catalog_cache_ttl_s)
    auth = AuthTokenManager(
        hanteo_http,
        base_url=config.hanteo_base_url,
        client_key=config.hanteo_client_key,
        clock=clock,
        safety_margin_s=config.hanteo_token_safety_margin_s,
    )
    submitter = BatchSubmitter(
        hanteo_http,
        auth,
        base_url=config.hanteo_base_url,
        family_code=config.hanteo_family_code,
        branch_code=config.hanteo_branch_code,
        clock=clock,
        retry_policy=RetryPolicy(
            retries=config.hanteo_retry_attempts,
            initial_delay_s=config.hanteo_retry_delay_s,
            factor=config.hanteo_retry_factor,
            max_delay_s=config.hanteo_retry_max_delay_s,
        ),
        max_batch_size=config.hanteo_max_batch_size,
        batch_delay_s=config.hanteo_batch_delay_s,
        stable_dedup_token=config.hanteo_stable_dedup_token,
    )
    return SyncService(
        shopify=shopify,
        catalog=catalog,
        mapper=OrderMapper(shopify, catalog, clock=clock),
        auth=auth,
        submitter=submitter,
        clock=clock,
        config=config,
        http_clients=[shopify_http, hanteo_http],
    )


_sync_service: Optional[SyncService] = None


def get_sync_service() -> SyncService:
    """Get the process-wide SyncService."""
    global _sync_service
    if _sync_service is None:
        _sync_service = build_sync_service()
    return _sync_service


def set_sync_service(service: Optional[SyncService]) -> None:
    global _sync_service
    _sync_service = service

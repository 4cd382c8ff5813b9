"""
Catalog Cache - in-memory snapshot of report-eligible album variants.
=====================================================================

Maps Shopify variant id → CatalogEntry. The snapshot is rebuilt from the
full product listing and swapped in with a single reference assignment, so
readers never observe a half-built cache. A failed rebuild leaves the
previous snapshot in place.

Concurrent refresh() calls share one in-flight rebuild (single-flight).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from app.config import settings
from app.core.clock import Clock, system_clock
from app.core.single_flight import SingleFlight
from app.models.catalog import CatalogEntry
from app.models.commerce import ProductFilter, ShopifyProduct
from app.services.validators import has_album_tag, is_valid_barcode

logger = logging.getLogger(__name__)

_REFRESH_KEY = "refresh"


@dataclass(frozen=True)
class CatalogSnapshot:
    entries: Mapping[int, CatalogEntry] = field(default_factory=lambda: MappingProxyType({}))
    built_at: Optional[float] = None


def entries_for_product(product: ShopifyProduct) -> list[CatalogEntry]:
    """Eligible variants of one product (album tag + valid barcode)."""
    if not has_album_tag(product.tags):
        return []
    entries = []
    for variant in product.variants:
        if not is_valid_barcode(variant.barcode):
            continue
        entries.append(
            CatalogEntry(
                item_id=variant.id,
                parent_id=product.id,
                display_title=product.title,
                variant_title=variant.title,
                vendor=product.vendor,
                report_barcode=variant.barcode.strip(),
                sku=variant.sku or "",
                price=variant.price or "",
                tags=tuple(product.tags),
            )
        )
    return entries


class CatalogCache:
    def __init__(
        self,
        shopify,
        clock: Clock = system_clock,
        ttl_s: Optional[float] = None,
        product_filter: Optional[ProductFilter] = None,
    ):
        self._shopify = shopify
        self._clock = clock
        self.ttl_s = ttl_s if ttl_s is not None else settings.catalog_cache_ttl_s
        self._filter = product_filter or ProductFilter()
        self._snapshot = CatalogSnapshot()
        self._flight = SingleFlight()

    # ---- Reads ----

    def lookup(self, item_id: Optional[int]) -> Optional[CatalogEntry]:
        if item_id is None:
            return None
        return self._snapshot.entries.get(item_id)

    def entries(self) -> Mapping[int, CatalogEntry]:
        return self._snapshot.entries

    @property
    def size(self) -> int:
        return len(self._snapshot.entries)

    @property
    def built_at(self) -> Optional[float]:
        return self._snapshot.built_at

    def age(self) -> Optional[float]:
        if self._snapshot.built_at is None:
            return None
        return self._clock.now() - self._snapshot.built_at

    @property
    def refreshing(self) -> bool:
        return self._flight.in_flight(_REFRESH_KEY)

    # ---- Rebuild ----

    async def refresh(self) -> int:
        """Rebuild the snapshot. Returns the number of cached variants."""
        return await self._flight.do(_REFRESH_KEY, self._rebuild)

    async def ensure_fresh(self, max_age_s: Optional[float] = None) -> None:
        max_age = self.ttl_s if max_age_s is None else max_age_s
        age = self.age()
        if age is None or not self.size or age > max_age:
            logger.info("Catalog cache stale or empty (age=%s), refreshing", age)
            await self.refresh()

    async def _rebuild(self) -> int:
        started = self._clock.now()
        entries: Dict[int, CatalogEntry] = {}
        products_seen = 0

        async for page in self._shopify.iter_product_pages(self._filter):
            for product in page.items:
                products_seen += 1
                for entry in entries_for_product(product):
                    entries[entry.item_id] = entry

        self._snapshot = CatalogSnapshot(
            entries=MappingProxyType(entries),
            built_at=self._clock.now(),
        )
        logger.info(
            "Catalog refreshed: %d eligible variants from %d products in %.1fs",
            len(entries), products_seen, self._clock.now() - started,
        )
        return len(entries)

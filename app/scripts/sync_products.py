"""
Catalog refresh script
======================

Refreshes the album catalog from Shopify and logs a sample of the cached
variants plus a per-vendor summary.

Usage:
    python -m app.scripts.sync_products
"""

import asyncio
import logging
import sys
from collections import Counter
from typing import Iterable, List, Tuple

from app.config import settings
from app.core.structured_logging import setup_logging
from app.models.catalog import CatalogEntry
from app.services.sync_service import SyncService, build_sync_service

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 5


def vendor_summary(entries: Iterable[CatalogEntry]) -> List[Tuple[str, int]]:
    """(vendor, variant count) pairs, most variants first."""
    counts = Counter(entry.vendor or "(none)" for entry in entries)
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


async def sync_products(service: SyncService) -> int:
    count = await service.sync_album_products()
    stats = service.get_statistics()
    logger.info(
        "Product sync completed",
        extra={"album_variants": stats["cachedProducts"], "last_sync": stats["lastSync"]},
    )

    entries = list(service.catalog.entries().values())
    for entry in entries[:SAMPLE_SIZE]:
        logger.info(
            "Cached album variant",
            extra={
                "product_id": entry.parent_id,
                "variant_id": entry.item_id,
                "album_name": entry.display_name,
                "barcode": entry.report_barcode,
                "vendor": entry.vendor,
            },
        )

    for vendor, vendor_count in vendor_summary(entries):
        logger.info("Vendor %s: %d variants", vendor, vendor_count)
    return count


async def main() -> int:
    service = build_sync_service(settings)
    try:
        await sync_products(service)
        return 0
    except Exception as exc:
        logger.error("Product sync failed: %s", exc)
        return 1
    finally:
        await service.aclose()


if __name__ == "__main__":
    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)
    sys.exit(asyncio.run(main()))

"""
Webhook registration script
===========================

Registers the four fulfillment-related Shopify webhook topics under
CHARTSYNC_WEBHOOK_BASE_URL. Topics already registered for the same address
are skipped, so the script is safe to re-run.

Usage:
    python -m app.scripts.setup_webhooks
"""

import asyncio
import logging
import sys
from typing import Dict

from app.config import settings
from app.core.errors import CommerceAPIError
from app.core.structured_logging import setup_logging
from app.services.shopify_client import ShopifyClient

logger = logging.getLogger(__name__)

WEBHOOK_ENDPOINTS = (
    ("orders/fulfilled", "/webhooks/orders/fulfilled"),
    ("fulfillments/create", "/webhooks/fulfillments/create"),
    ("fulfillments/update", "/webhooks/fulfillments/update"),
    ("orders/updated", "/webhooks/orders/updated"),
)


async def setup_webhooks(shopify: ShopifyClient, base_url: str) -> Dict[str, str]:
    """Register missing webhooks. Returns topic → "registered" | "exists" | "failed"."""
    base_url = base_url.rstrip("/")
    existing = await shopify.list_webhooks()
    logger.info("Existing webhooks found: %d", len(existing))
    registered = {(w.get("topic"), w.get("address")) for w in existing}

    outcome: Dict[str, str] = {}
    for topic, path in WEBHOOK_ENDPOINTS:
        address = f"{base_url}{path}"
        if (topic, address) in registered:
            logger.info("Webhook already exists: %s → %s", topic, address)
            outcome[topic] = "exists"
            continue
        try:
            created = await shopify.register_webhook(topic, address)
        except CommerceAPIError as exc:
            logger.error("Failed to register webhook %s: %s", topic, exc)
            outcome[topic] = "failed"
            continue
        outcome[topic] = "registered" if created else "exists"

    for webhook in await shopify.list_webhooks():
        logger.info(
            "Registered webhook",
            extra={"id": webhook.get("id"), "topic": webhook.get("topic"), "address": webhook.get("address")},
        )
    return outcome


async def main() -> int:
    if not settings.webhook_base_url:
        logger.error("CHARTSYNC_WEBHOOK_BASE_URL is not set")
        return 1
    shopify = ShopifyClient()
    try:
        outcome = await setup_webhooks(shopify, settings.webhook_base_url)
    except CommerceAPIError as exc:
        logger.error("Webhook setup failed: %s", exc)
        return 1
    finally:
        await shopify.aclose()
    logger.info("Webhook setup completed", extra={"webhooks": outcome})
    return 0 if "failed" not in outcome.values() else 1


if __name__ == "__main__":
    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)
    sys.exit(asyncio.run(main()))

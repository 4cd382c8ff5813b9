"""
Order → Transaction mapping.

One Transaction per (shipped fulfillment, album line item). Fulfillments
without a tracking reference are skipped as not actually shipped; line items
whose variant is not in the catalog cache are skipped as not report-eligible.
The cache is only read, never modified.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from app.core.clock import Clock, system_clock
from app.models.catalog import CatalogEntry
from app.models.commerce import ShopifyAddress, ShopifyCustomer, ShopifyOrder
from app.models.sales import CustomerInfo, OrderLineFulfillment, ShippingInfo, Transaction
from app.services.catalog_cache import CatalogCache
from app.services.demographics import extract_birth_year_from_customer, extract_gender
from app.services.hanteo_codes import country_code_for

logger = logging.getLogger(__name__)


def parse_timestamp(value: str) -> float:
    """ISO-8601 (Shopify style, with offset or trailing Z) → epoch seconds."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def customer_info(customer: Optional[ShopifyCustomer], current_year: int) -> Optional[CustomerInfo]:
    if customer is None:
        return None
    return CustomerInfo(
        id=str(customer.id),
        email=customer.email,
        gender=extract_gender(customer),
        birth_year=extract_birth_year_from_customer(customer, current_year),
    )


def shipping_info(address: Optional[ShopifyAddress]) -> Optional[ShippingInfo]:
    if address is None:
        return None
    return ShippingInfo(
        country=address.country_name or address.country,
        country_code=address.country_code or country_code_for(address.country),
        city=address.city,
        province=address.province,
    )


def build_transaction(
    line: OrderLineFulfillment,
    entry: CatalogEntry,
    current_year: int,
) -> Transaction:
    order = line.order
    return Transaction(
        order_id=str(order.id),
        order_display_name=order.name,
        fulfillment_id=str(line.fulfillment.id),
        line_item_id=str(line.line_item.id),
        item_id=str(entry.item_id),
        parent_id=str(entry.parent_id),
        report_barcode=entry.report_barcode,
        display_name=entry.display_name,
        quantity=line.line_item.quantity,
        customer=customer_info(order.customer, current_year),
        shipping=shipping_info(order.shipping_address),
        transaction_time=parse_timestamp(line.fulfillment.created_at),
        tracking_reference=line.tracking_reference,
    )


class OrderMapper:
    def __init__(self, shopify, catalog: CatalogCache, clock: Clock = system_clock):
        self._shopify = shopify
        self._catalog = catalog
        self._clock = clock

    async def map_order(self, order: ShopifyOrder) -> List[Transaction]:
        fulfillments = order.fulfillments
        if not fulfillments:
            fulfillments = await self._shopify.get_order_fulfillments(order.id)

        current_year = datetime.fromtimestamp(self._clock.now(), timezone.utc).year
        transactions: List[Transaction] = []

        for fulfillment in fulfillments:
            if fulfillment.tracking_reference is None:
                logger.debug(
                    "Skipping fulfillment without tracking number",
                    extra={"order_id": order.id, "fulfillment_id": fulfillment.id},
                )
                continue

            for line_item in fulfillment.line_items:
                entry = self._catalog.lookup(line_item.variant_id)
                if entry is None:
                    continue
                line = OrderLineFulfillment(order=order, fulfillment=fulfillment, line_item=line_item)
                transactions.append(build_transaction(line, entry, current_year))

        if transactions:
            logger.info("Order %s mapped to %d transactions", order.name, len(transactions))
        return transactions

"""
Tests for OrderMapper: fulfillment/line-item fan-out, catalog lookup and
customer/shipping projection.
"""
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from app.models.commerce import ShopifyAddress, ShopifyFulfillment, ShopifyOrder
from app.services.catalog_cache import CatalogCache
from app.services.order_mapper import OrderMapper, parse_timestamp, shipping_info

from conftest import FakeProductSource, make_product


class FakeFulfillmentSource:
    def __init__(self, fulfillments=()):
        self.fulfillments = list(fulfillments)
        self.requested = []

    async def get_order_fulfillments(self, order_id):
        self.requested.append(order_id)
        return self.fulfillments


def _fulfillment(tracking="TRK-1", line_items=None, fulfillment_id=5001):
    return ShopifyFulfillment.model_validate({
        "id": fulfillment_id,
        "order_id": 1001,
        "created_at": "2024-06-10T10:00:00+09:00",
        "tracking_number": tracking,
        "line_items": line_items if line_items is not None else [
            {"id": 1, "variant_id": 9876543210, "quantity": 2, "title": "Summer Album"},
        ],
    })


def _order(fulfillments=None, **overrides):
    payload = {
        "id": 1001,
        "name": "#1001",
        "fulfillment_status": "fulfilled",
        "customer": {"id": 7, "email": "fan@example.com", "tags": "female, birth_year:1998"},
        "shipping_address": {"city": "Seoul", "country": "South Korea", "country_code": "KR"},
        "fulfillments": [f.model_dump() for f in (fulfillments or [_fulfillment()])],
    }
    payload.update(overrides)
    return ShopifyOrder.model_validate(payload)


@pytest_asyncio.fixture
async def catalog(clock):
    cache = CatalogCache(FakeProductSource([make_product()]), clock=clock)
    await cache.refresh()
    return cache


@pytest.fixture
def mapper(catalog, clock):
    return OrderMapper(FakeFulfillmentSource(), catalog, clock=clock)


class TestMapOrder:

    @pytest.mark.asyncio
    async def test_album_line_becomes_transaction(self, mapper):
        transactions = await mapper.map_order(_order())

        assert len(transactions) == 1
        tx = transactions[0]
        assert tx.key == "1001:5001:1"
        assert tx.item_id == "9876543210"
        assert tx.parent_id == "1111"
        assert tx.report_barcode == "8809633189505"
        assert tx.display_name == "Summer Album - Ver. A"
        assert tx.quantity == 2
        assert tx.fulfillment_id == "5001"
        assert tx.tracking_reference == "TRK-1"
        assert tx.transaction_time == datetime(2024, 6, 10, 1, 0, tzinfo=timezone.utc).timestamp()
        assert tx.customer.id == "7"
        assert tx.customer.gender == "W"
        assert tx.customer.birth_year == "1998"
        assert tx.shipping.country_code == "KR"
        assert tx.shipping.city == "Seoul"

    @pytest.mark.asyncio
    async def test_unknown_variant_is_skipped(self, mapper):
        fulfillment = _fulfillment(line_items=[{"id": 2, "variant_id": 1, "quantity": 1}])
        assert await mapper.map_order(_order([fulfillment])) == []

    @pytest.mark.asyncio
    async def test_line_without_variant_is_skipped(self, mapper):
        fulfillment = _fulfillment(line_items=[{"id": 3, "variant_id": None, "quantity": 1}])
        assert await mapper.map_order(_order([fulfillment])) == []

    @pytest.mark.asyncio
    async def test_fulfillment_without_tracking_is_skipped(self, mapper):
        shipped = _fulfillment()
        pending = _fulfillment(
            tracking=None,
            fulfillment_id=5002,
            line_items=[{"id": 4, "variant_id": 9876543210, "quantity": 1}],
        )
        transactions = await mapper.map_order(_order([shipped, pending]))
        assert [tx.line_item_id for tx in transactions] == ["1"]

    @pytest.mark.asyncio
    async def test_fetches_fulfillments_when_not_embedded(self, catalog, clock):
        source = FakeFulfillmentSource([_fulfillment()])
        mapper = OrderMapper(source, catalog, clock=clock)
        order = _order()
        order.fulfillments = []

        transactions = await mapper.map_order(order)

        assert source.requested == [1001]
        assert len(transactions) == 1

    @pytest.mark.asyncio
    async def test_split_shipment_yields_one_transaction_per_parcel(self, mapper):
        parcels = [
            _fulfillment(tracking="TRK-A", fulfillment_id=501,
                         line_items=[{"id": 1, "variant_id": 9876543210, "quantity": 2}]),
            _fulfillment(tracking="TRK-B", fulfillment_id=502,
                         line_items=[{"id": 1, "variant_id": 9876543210, "quantity": 1}]),
        ]
        transactions = await mapper.map_order(_order(parcels))

        assert [(tx.key, tx.quantity) for tx in transactions] == [("1001:501:1", 2), ("1001:502:1", 1)]

    @pytest.mark.asyncio
    async def test_guest_checkout(self, mapper):
        transactions = await mapper.map_order(_order(customer=None))
        assert transactions[0].customer is None


class TestHelpers:

    def test_parse_timestamp_zulu(self):
        assert parse_timestamp("2024-06-10T01:00:00Z") == datetime(2024, 6, 10, 1, tzinfo=timezone.utc).timestamp()

    def test_country_code_falls_back_to_name(self):
        assert shipping_info(ShopifyAddress(country="Japan")).country_code == "JP"
        assert shipping_info(ShopifyAddress(country="Atlantis")).country_code == "XX"
        assert shipping_info(None) is None

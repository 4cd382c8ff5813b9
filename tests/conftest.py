"""
Shared fixtures for the chart-sync test suite.

Environment is set before any app import so the module-level Settings()
picks up test values.
"""
import json
import os
import tempfile

os.environ.setdefault("CHARTSYNC_ENVIRONMENT", "test")
os.environ.setdefault("CHARTSYNC_SHOPIFY_STORE_DOMAIN", "test-shop.myshopify.com")
os.environ.setdefault("CHARTSYNC_SHOPIFY_ADMIN_ACCESS_TOKEN", "shpat_test")
os.environ.setdefault("CHARTSYNC_HANTEO_ENV", "test")
os.environ.setdefault("CHARTSYNC_HANTEO_TEST_URL", "https://hanteo.test")
os.environ.setdefault("CHARTSYNC_HANTEO_TEST_CLIENT_KEY", "test-client-key")
os.environ.setdefault("CHARTSYNC_HANTEO_FAMILY_CODE", "FAM01")
os.environ.setdefault("CHARTSYNC_HANTEO_BRANCH_CODE", "BR01")
os.environ.setdefault("CHARTSYNC_SCHEDULER_ENABLED", "false")
os.environ.setdefault("CHARTSYNC_LOG_DIR", os.path.join(tempfile.gettempdir(), "chart-sync-tests"))

import httpx
import pytest

from app.core.retry import RetryPolicy
from app.models.sales import CustomerInfo, ShippingInfo, Transaction
from app.services import hanteo_codes
from app.services.hanteo_auth import AuthTokenManager
from app.services.hanteo_client import BatchSubmitter

# 2024-06-10 06:13:20 UTC / 15:13:20 KST
NOW = 1_718_000_000.0

HANTEO_URL = "https://hanteo.test"
SHOPIFY_ADMIN_URL = "https://test-shop.myshopify.com/admin/api/2024-01"


class FakeClock:
    """Deterministic clock: sleep() records the delay and advances time."""

    def __init__(self, now: float = NOW):
        self._now = now
        self.sleeps = []

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += seconds


def make_transaction(order_id="1001", line_item_id="1", **overrides) -> Transaction:
    fields = dict(
        order_id=order_id,
        order_display_name=f"#{order_id}",
        fulfillment_id="5001",
        line_item_id=line_item_id,
        item_id="9876543210",
        parent_id="1111",
        report_barcode="8809633189505",
        display_name="Summer Album - Ver. A",
        quantity=1,
        customer=CustomerInfo(id="7", email="fan@example.com", gender="W", birth_year="1998"),
        shipping=ShippingInfo(country="South Korea", country_code="KR", city="Seoul"),
        transaction_time=NOW,
        tracking_reference="TRK-1",
    )
    fields.update(overrides)
    return Transaction(**fields)


class HanteoStub:
    """httpx.MockTransport handler standing in for the Hanteo API.

    ``submit_responses`` is a queue of httpx.Response objects, exceptions to
    raise, or callables taking the posted records. When it is empty, every
    record is accepted.
    """

    def __init__(self):
        self.token_calls = 0
        self.token_requests = []
        self.submit_requests = []
        self.submit_responses = []

    @property
    def submit_calls(self) -> int:
        return len(self.submit_requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == hanteo_codes.TOKEN_ENDPOINT:
            self.token_calls += 1
            self.token_requests.append(request)
            return httpx.Response(200, json={
                "code": 100,
                "message": "OK",
                "resultData": {
                    "access_token": f"tok-{self.token_calls}",
                    "token_type": "Bearer",
                    "expires_in": 3600,
                },
            })

        if request.url.path == hanteo_codes.SALES_DATA_ENDPOINT:
            records = json.loads(request.content)
            self.submit_requests.append((request, records))
            if self.submit_responses:
                response = self.submit_responses.pop(0)
                if isinstance(response, Exception):
                    raise response
                if callable(response):
                    return response(records)
                return response
            return accept_all(records)

        return httpx.Response(404, json={"code": 404, "message": "not found"})


def accept_all(records) -> httpx.Response:
    return httpx.Response(200, json={
        "code": 100,
        "message": "Success",
        "resultData": {
            "requestCount": len(records),
            "successCount": len(records),
            "failCount": 0,
        },
    })


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hanteo_stub():
    return HanteoStub()


@pytest.fixture
def hanteo_http(hanteo_stub):
    return httpx.AsyncClient(transport=httpx.MockTransport(hanteo_stub))


@pytest.fixture
def auth(hanteo_http, clock):
    return AuthTokenManager(
        hanteo_http,
        base_url=HANTEO_URL,
        client_key="test-client-key",
        clock=clock,
        safety_margin_s=300,
    )


@pytest.fixture
def submitter(hanteo_http, auth, clock):
    return BatchSubmitter(
        hanteo_http,
        auth,
        base_url=HANTEO_URL,
        family_code="FAM01",
        branch_code="BR01",
        clock=clock,
        retry_policy=RetryPolicy(retries=3, initial_delay_s=1.0, factor=2.0, max_delay_s=30.0),
        max_batch_size=100,
        batch_delay_s=1.0,
        stable_dedup_token=True,
    )


class FakeProductSource:
    """Stands in for ShopifyClient.iter_product_pages; counts full fetches."""

    def __init__(self, products, error=None):
        self.products = list(products)
        self.error = error
        self.fetches = 0

    async def iter_product_pages(self, product_filter=None):
        from app.services.pagination import Page

        self.fetches += 1
        if self.error is not None:
            raise self.error
        yield Page(items=self.products, has_next=False)


def make_product(product_id=1111, title="Summer Album", tags=("album",), variants=None):
    from app.models.commerce import ShopifyProduct, ShopifyVariant

    if variants is None:
        variants = [ShopifyVariant(id=9876543210, title="Ver. A", barcode="8809633189505")]
    return ShopifyProduct(
        id=product_id,
        title=title,
        vendor="Starship",
        tags=list(tags),
        variants=variants,
    )

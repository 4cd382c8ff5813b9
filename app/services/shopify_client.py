"""
Shopify Client - async client for the Shopify Admin API.
=========================================================

Catalog:   GraphQL products connection (cursor pagination, 100 per page).
Orders:    REST orders.json (page-number pagination, up to 250 per page).
Webhooks:  REST webhooks.json registration and listing.

Every request is retried with exponential backoff on transport errors,
429 and 5xx responses; any other 4xx raises CommerceAPIError at once.
Rate-limit usage is read from each response and fed to the paginator.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from app.config import settings
from app.core.clock import Clock, system_clock
from app.core.errors import CommerceAPIError
from app.core.retry import RetryPolicy, retry_with_backoff
from app.models.commerce import (
    OrderFilter,
    ProductFilter,
    ShopifyFulfillment,
    ShopifyOrder,
    ShopifyProduct,
)
from app.services.pagination import Page, PaginatedFetcher, Quota, QuotaBackoff

logger = logging.getLogger(__name__)

CALL_LIMIT_HEADER = "X-Shopify-Shop-Api-Call-Limit"
PRODUCT_PAGE_SIZE = 100
VARIANTS_PER_PRODUCT = 100

PRODUCTS_QUERY = """
query GetProducts($first: Int!, $after: String, $query: String) {
  products(first: $first, after: $after, query: $query) {
    edges {
      node {
        id
        title
        vendor
        productType
        tags
        status
        variants(first: %d) {
          edges {
            node {
              id
              title
              sku
              barcode
              price
            }
          }
        }
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
""" % VARIANTS_PER_PRODUCT


def build_product_query(product_filter: Optional[ProductFilter] = None) -> str:
    """Shopify search syntax for the catalog query; always restricted to album tags."""
    parts: List[str] = []
    if product_filter is not None:
        if product_filter.status:
            parts.append(f"status:{product_filter.status}")
        if product_filter.vendor:
            parts.append(f'vendor:"{product_filter.vendor}"')
        if product_filter.product_type:
            parts.append(f'product_type:"{product_filter.product_type}"')
    parts.append("(tag:album OR tag:albums)")
    return " AND ".join(parts)


class GraphQLThrottledError(CommerceAPIError):
    """GraphQL cost budget exhausted; the query may be retried after a pause."""


def _is_throttled(exc: BaseException) -> bool:
    return isinstance(exc, GraphQLThrottledError)


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class ShopifyClient:
    """Async client for the Shopify Admin API (REST + GraphQL)."""

    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        *,
        admin_url: Optional[str] = None,
        access_token: Optional[str] = None,
        clock: Clock = system_clock,
        retry_policy: Optional[RetryPolicy] = None,
        fetcher: Optional[PaginatedFetcher] = None,
    ):
        self._base_url = (admin_url or settings.shopify_admin_url).rstrip("/")
        self._headers = {
            "X-Shopify-Access-Token": access_token or settings.shopify_admin_access_token or "",
            "Content-Type": "application/json",
        }
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=settings.request_timeout_s)
        self._clock = clock
        self._retry_policy = retry_policy or RetryPolicy(retries=3)
        self._fetcher = fetcher or PaginatedFetcher(QuotaBackoff(clock))

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ---- Transport ----

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"

        async def _send() -> httpx.Response:
            try:
                response = await self._http.request(
                    method, url, params=params, json=json, headers=self._headers,
                )
            except httpx.TransportError as exc:
                raise CommerceAPIError(f"Network error: {exc}", retryable=True) from exc

            if response.status_code == 429 or response.status_code >= 500:
                raise CommerceAPIError(
                    f"Shopify {method} {path} returned {response.status_code}",
                    status_code=response.status_code,
                    retryable=True,
                    body=_safe_json(response),
                )
            if response.status_code >= 400:
                raise CommerceAPIError(
                    f"Shopify {method} {path} rejected: {response.status_code}",
                    status_code=response.status_code,
                    body=_safe_json(response),
                )
            return response

        return await retry_with_backoff(
            _send,
            policy=self._retry_policy,
            clock=self._clock,
            description=f"Shopify {method} {path}",
        )

    async def _graphql(self, query: str, variables: Dict[str, Any]) -> tuple[Dict[str, Any], Optional[Quota]]:
        async def _send() -> tuple[Dict[str, Any], Optional[Quota]]:
            response = await self._request("POST", "/graphql.json", json={"query": query, "variables": variables})
            body = response.json()
            errors = body.get("errors")
            if errors:
                throttled = any(
                    (err.get("extensions") or {}).get("code") == "THROTTLED" for err in errors
                    if isinstance(err, dict)
                )
                error_cls = GraphQLThrottledError if throttled else CommerceAPIError
                raise error_cls(
                    f"GraphQL error: {errors}",
                    status_code=response.status_code,
                    retryable=throttled,
                    body=errors,
                )
            cost = (body.get("extensions") or {}).get("cost") or {}
            return body.get("data") or {}, Quota.from_throttle_status(cost.get("throttleStatus"))

        return await retry_with_backoff(
            _send,
            policy=self._retry_policy,
            clock=self._clock,
            is_retryable=_is_throttled,
            description="Shopify GraphQL",
        )

    # ---- Catalog ----

    async def fetch_product_page(self, cursor: Optional[str], query: str) -> Page:
        data, quota = await self._graphql(
            PRODUCTS_QUERY,
            {"first": PRODUCT_PAGE_SIZE, "after": cursor, "query": query},
        )
        connection = data.get("products") or {}
        page_info = connection.get("pageInfo") or {}
        products = [ShopifyProduct.from_graphql(edge["node"]) for edge in connection.get("edges", [])]
        return Page(
            items=products,
            quota=quota,
            next_cursor=page_info.get("endCursor"),
            has_next=bool(page_info.get("hasNextPage")),
        )

    async def iter_product_pages(
        self, product_filter: Optional[ProductFilter] = None
    ) -> AsyncIterator[Page]:
        query = build_product_query(product_filter)
        logger.info("Fetching album products from Shopify (query=%s)", query)
        async for page in self._fetcher.cursor_pages(lambda cursor: self.fetch_product_page(cursor, query)):
            yield page

    # ---- Orders ----

    async def fetch_order_page(self, number: int, order_filter: OrderFilter) -> Page:
        params = {k: v for k, v in order_filter.model_dump().items() if v is not None}
        params["page"] = number
        response = await self._request("GET", "/orders.json", params=params)
        orders = [ShopifyOrder.model_validate(o) for o in response.json().get("orders", [])]
        return Page(
            items=orders,
            quota=Quota.from_header(response.headers.get(CALL_LIMIT_HEADER)),
            number=number,
        )

    async def iter_order_pages(self, order_filter: OrderFilter) -> AsyncIterator[Page]:
        logger.info("Fetching fulfilled orders from Shopify", extra={"filter": order_filter.model_dump()})
        async for page in self._fetcher.offset_pages(
            lambda number: self.fetch_order_page(number, order_filter),
            page_size=order_filter.limit,
        ):
            yield page

    async def get_fulfilled_orders(self, order_filter: OrderFilter) -> List[ShopifyOrder]:
        orders: List[ShopifyOrder] = []
        async for page in self.iter_order_pages(order_filter):
            orders.extend(page.items)
        logger.info("Fulfilled orders fetched: %d", len(orders))
        return orders

    async def get_order(self, order_id: int | str) -> ShopifyOrder:
        response = await self._request("GET", f"/orders/{order_id}.json")
        return ShopifyOrder.model_validate(response.json()["order"])

    async def get_order_fulfillments(self, order_id: int | str) -> List[ShopifyFulfillment]:
        response = await self._request("GET", f"/orders/{order_id}/fulfillments.json")
        return [ShopifyFulfillment.model_validate(f) for f in response.json().get("fulfillments") or []]

    # ---- Webhooks ----

    async def register_webhook(self, topic: str, address: str) -> bool:
        """Register a webhook. Returns False when Shopify reports it already exists."""
        logger.info("Registering webhook %s → %s", topic, address)
        try:
            await self._request(
                "POST",
                "/webhooks.json",
                json={"webhook": {"topic": topic, "address": address, "format": "json"}},
            )
        except CommerceAPIError as exc:
            if exc.status_code == 422 and "already" in str(exc.body):
                logger.info("Webhook already exists: %s", topic)
                return False
            raise
        logger.info("Webhook registered: %s", topic)
        return True

    async def list_webhooks(self) -> List[Dict[str, Any]]:
        response = await self._request("GET", "/webhooks.json")
        return response.json().get("webhooks") or []

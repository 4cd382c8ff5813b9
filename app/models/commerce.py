"""
Shopify Admin API payload models.

Only the fields the sync pipeline reads are declared; everything else in
the REST/GraphQL payloads is ignored. Order, fulfillment and line-item ids
are integers in the REST API; GraphQL GIDs are converted on the way in.
"""

import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

_GID_TAIL = re.compile(r"/(\d+)$")


def extract_id_from_gid(gid: str | int | None) -> int:
    """gid://shopify/ProductVariant/123 → 123 (0 when unparseable)."""
    if isinstance(gid, int):
        return gid
    if not gid:
        return 0
    match = _GID_TAIL.search(gid)
    return int(match.group(1)) if match else 0


class ShopifyCustomer(BaseModel):
    id: int
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    tags: Optional[str] = None
    note: Optional[str] = None


class ShopifyAddress(BaseModel):
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    country_name: Optional[str] = None
    zip: Optional[str] = None


class ShopifyLineItem(BaseModel):
    id: int
    variant_id: Optional[int] = None
    product_id: Optional[int] = None
    title: Optional[str] = None
    variant_title: Optional[str] = None
    quantity: int = 0
    sku: Optional[str] = None
    vendor: Optional[str] = None


class ShopifyFulfillment(BaseModel):
    id: int
    order_id: Optional[int] = None
    status: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None
    tracking_company: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_numbers: List[str] = Field(default_factory=list)
    line_items: List[ShopifyLineItem] = Field(default_factory=list)

    @field_validator("tracking_numbers", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return value or []

    @property
    def tracking_reference(self) -> Optional[str]:
        """First non-empty tracking number, or None when not actually shipped."""
        if self.tracking_number and self.tracking_number.strip():
            return self.tracking_number.strip()
        for number in self.tracking_numbers:
            if number and number.strip():
                return number.strip()
        return None


class ShopifyOrder(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    fulfillment_status: Optional[str] = None
    financial_status: Optional[str] = None
    customer: Optional[ShopifyCustomer] = None
    line_items: List[ShopifyLineItem] = Field(default_factory=list)
    shipping_address: Optional[ShopifyAddress] = None
    fulfillments: List[ShopifyFulfillment] = Field(default_factory=list)

    @field_validator("fulfillments", "line_items", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return value or []


class ShopifyVariant(BaseModel):
    id: int
    title: str = ""
    sku: Optional[str] = None
    barcode: Optional[str] = None
    price: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _gid(cls, value):
        return extract_id_from_gid(value)


class ShopifyProduct(BaseModel):
    id: int
    title: str
    vendor: str = ""
    product_type: Optional[str] = None
    status: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    variants: List[ShopifyVariant] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _gid(cls, value):
        return extract_id_from_gid(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value):
        # REST returns "a, b"; GraphQL returns ["a", "b"]
        if isinstance(value, str):
            return [tag.strip() for tag in value.split(",") if tag.strip()]
        return value or []

    @classmethod
    def from_graphql(cls, node: dict) -> "ShopifyProduct":
        variants = [edge["node"] for edge in (node.get("variants") or {}).get("edges", [])]
        return cls(
            id=node["id"],
            title=node.get("title") or "",
            vendor=node.get("vendor") or "",
            product_type=node.get("productType"),
            status=node.get("status"),
            tags=node.get("tags") or [],
            variants=variants,
        )


class ProductFilter(BaseModel):
    """Filters for the catalog query. The album-tag clause is always added."""
    status: Optional[str] = "active"
    vendor: Optional[str] = None
    product_type: Optional[str] = None


class OrderFilter(BaseModel):
    status: str = "any"
    fulfillment_status: Optional[str] = "shipped"
    financial_status: Optional[str] = None
    updated_at_min: Optional[str] = None
    updated_at_max: Optional[str] = None
    limit: int = 250

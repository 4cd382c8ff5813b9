"""
Catalog entry model - one report-eligible sellable variant.
"""

from dataclasses import dataclass, field
from typing import Tuple


@dataclass(frozen=True)
class CatalogEntry:
    """An album variant that may be reported to Hanteo.

    ``item_id`` is the Shopify variant id (the key line items reference);
    ``parent_id`` is the product id. ``report_barcode`` has already passed
    is_valid_barcode() and is stored trimmed.
    """
    item_id: int
    parent_id: int
    display_title: str
    variant_title: str
    vendor: str
    report_barcode: str
    sku: str = ""
    price: str = ""
    tags: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def display_name(self) -> str:
        """Album name as reported: "<product> - <variant>", or the product title alone."""
        variant = (self.variant_title or "").strip()
        if not variant or variant.lower() == "default title":
            return self.display_title.strip()
        return f"{self.display_title} - {variant}".strip()

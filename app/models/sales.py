"""
Sales transaction models
========================

Transaction      - one fulfilled album line item, the unit the pipeline
                   submits; lives for one pipeline invocation only.
HanteoSalesRecord - the wire record POSTed to /v4/collect/realtimedata/ALBUM.
BatchOutcome     - per-POST result; ChunkedSubmitResult aggregates chunks.
SweepResult      - what a periodic or webhook sweep reports back.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.commerce import ShopifyFulfillment, ShopifyLineItem, ShopifyOrder


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class OrderLineFulfillment:
    """Immutable view of one line item inside one shipped fulfillment."""
    order: ShopifyOrder
    fulfillment: ShopifyFulfillment
    line_item: ShopifyLineItem

    @property
    def tracking_reference(self) -> Optional[str]:
        return self.fulfillment.tracking_reference


class CustomerInfo(BaseModel):
    id: str
    email: Optional[str] = None
    gender: Optional[str] = None       # M / W
    birth_year: Optional[str] = None   # YYYY


class ShippingInfo(BaseModel):
    country: Optional[str] = None
    country_code: str
    city: Optional[str] = None
    province: Optional[str] = None


class Transaction(BaseModel):
    """A report-eligible fulfilled line item.

    (order_id, fulfillment_id, line_item_id) identifies the transaction: a
    line item split across parcels yields one transaction per parcel. Only
    ``status`` and ``error_detail`` change after creation.
    """
    order_id: str
    order_display_name: str
    fulfillment_id: Optional[str] = None
    line_item_id: str
    item_id: str
    parent_id: str
    report_barcode: str
    display_name: str
    quantity: int
    customer: Optional[CustomerInfo] = None
    shipping: Optional[ShippingInfo] = None
    transaction_time: float            # epoch seconds (fulfillment created_at)
    tracking_reference: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    error_detail: Optional[str] = None

    @property
    def key(self) -> str:
        """Identity of one shipped parcel of one line item."""
        if self.fulfillment_id:
            return f"{self.order_id}:{self.fulfillment_id}:{self.line_item_id}"
        return f"{self.order_id}:{self.line_item_id}"

    def mark_sent(self) -> None:
        self.status = TransactionStatus.SENT
        self.error_detail = None

    def mark_failed(self, error: str) -> None:
        self.status = TransactionStatus.FAILED
        self.error_detail = error


class HanteoSalesRecord(BaseModel):
    """Wire format of one sales record (camelCase field names)."""
    model_config = ConfigDict(populate_by_name=True)

    family_code: str = Field(alias="familyCode")
    branch_code: str = Field(alias="branchCode")
    barcode: str
    album_name: str = Field(alias="albumName")
    sales_volume: int = Field(alias="salesVolume")
    nation: Optional[str] = None
    addr_top: Optional[str] = Field(default=None, alias="addrTop")
    sws_sex: Optional[str] = Field(default=None, alias="swsSex")
    sws_birth: Optional[str] = Field(default=None, alias="swsBirth")
    sp_code: Optional[str] = Field(default=None, alias="spCode")
    real_time: int = Field(alias="realTime")
    op_val: str = Field(alias="opVal")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class BatchOutcome:
    request_count: int = 0
    success_count: int = 0
    fail_count: int = 0
    failures_by_token: Dict[str, str] = field(default_factory=dict)
    code: int = 100
    message: str = ""

    @classmethod
    def empty(cls) -> "BatchOutcome":
        return cls(message="No data to send")

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "BatchOutcome":
        result = payload.get("resultData") or {}
        return cls(
            request_count=int(result.get("requestCount") or 0),
            success_count=int(result.get("successCount") or 0),
            fail_count=int(result.get("failCount") or 0),
            failures_by_token=dict(result.get("failData") or {}),
            code=int(payload.get("code") or 0),
            message=payload.get("message") or "",
        )


@dataclass
class FailedTransaction:
    transaction: Transaction
    error: str


@dataclass
class ChunkedSubmitResult:
    total_sent: int = 0
    total_success: int = 0
    total_failed: int = 0
    batch_results: List[BatchOutcome] = field(default_factory=list)
    failed_transactions: List[FailedTransaction] = field(default_factory=list)


@dataclass
class SweepResult:
    orders_processed: int = 0
    transactions_sent: int = 0
    transactions_success: int = 0
    transactions_failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    failed_transactions: List[FailedTransaction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ordersProcessed": self.orders_processed,
            "transactionsSent": self.transactions_sent,
            "transactionsSuccess": self.transactions_success,
            "transactionsFailed": self.transactions_failed,
            "errors": self.errors,
            "failedTransactions": [
                {
                    "orderId": f.transaction.order_id,
                    "orderName": f.transaction.order_display_name,
                    "lineItemId": f.transaction.line_item_id,
                    "barcode": f.transaction.report_barcode,
                    "error": f.error,
                }
                for f in self.failed_transactions
            ],
        }

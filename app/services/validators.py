"""
Validation predicates for catalog entries and sales transactions.

Each rule is an explicit predicate; validate_transaction() collects every
failing rule into an Invalid result instead of stopping at the first one,
so the caller can report all field errors for the offending record.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from app.models.sales import Transaction, TransactionStatus

BARCODE_PATTERNS = {
    "EAN13": re.compile(r"[0-9]{13}"),
    "EAN8": re.compile(r"[0-9]{8}"),
    "UPC": re.compile(r"[0-9]{12}"),
    "ISBN10": re.compile(r"[0-9]{9}[0-9X]"),
    "ISBN13": re.compile(r"97[89][0-9]{10}"),
}

ALBUM_TAGS = frozenset({"album", "albums"})

_BIRTH_YEAR = re.compile(r"[0-9]{4}")
_COUNTRY_CODE = re.compile(r"[A-Z]{2}")
_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d", "%Y%m%d", "%m/%d/%Y", "%d-%m-%Y", "%d.%m.%Y")

KST = timezone(timedelta(hours=9))
MIN_BIRTH_YEAR = 1900


def is_valid_barcode(value: Optional[str]) -> bool:
    """True for EAN-13/EAN-8/UPC-A or ISBN-10/13 after trimming outer whitespace."""
    if not value or not isinstance(value, str):
        return False
    barcode = value.strip()
    if not barcode:
        return False
    return any(pattern.fullmatch(barcode) for pattern in BARCODE_PATTERNS.values())


def has_album_tag(tags: Union[str, Iterable[str], None]) -> bool:
    if not tags:
        return False
    if isinstance(tags, str):
        tags = tags.split(",")
    return any(tag.strip().lower() in ALBUM_TAGS for tag in tags if tag)


def convert_gender(value: Optional[str]) -> Optional[str]:
    """Normalize a gender value to Hanteo's M / W, or None."""
    if not value:
        return None
    normalized = value.strip().upper()
    if normalized in ("M", "MALE", "1"):
        return "M"
    if normalized in ("F", "W", "FEMALE", "2"):
        return "W"
    return None


def extract_birth_year(birth_date: Optional[str], current_year: int) -> Optional[str]:
    """Year from a birth-date string, kept only within [1900, current_year]."""
    if not birth_date:
        return None
    text = birth_date.strip()

    year: Optional[int] = None
    for fmt in _DATE_FORMATS:
        try:
            year = datetime.strptime(text, fmt).year
            break
        except ValueError:
            continue

    if year is None:
        match = _BIRTH_YEAR.search(text)
        if match:
            year = int(match.group(0))

    if year is not None and MIN_BIRTH_YEAR <= year <= current_year:
        return str(year)
    return None


def is_same_kst_day(timestamp: float, now: float) -> bool:
    """Hanteo only accepts same-day data, measured in Korea Standard Time."""
    return (
        datetime.fromtimestamp(timestamp, KST).date()
        == datetime.fromtimestamp(now, KST).date()
    )


def generate_op_val(
    order_id: str,
    line_item_id: str,
    submitted_at: Optional[float] = None,
    fulfillment_id: Optional[str] = None,
) -> str:
    """Dedup token for one record.

    A line item shipped in several fulfillments is one record per parcel, so
    the fulfillment id is part of the token when known. Without
    ``submitted_at`` the token depends only on stable identifiers and is
    identical across resends; with it, each submission gets a fresh token.
    """
    parts = [order_id, fulfillment_id, line_item_id] if fulfillment_id else [order_id, line_item_id]
    if submitted_at is not None:
        parts.append(str(int(submitted_at * 1000)))
    return "-".join(parts)


# ---------------------------------------------------------------------------
# Transaction validation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass(frozen=True)
class Valid:
    transaction: Transaction


@dataclass(frozen=True)
class Invalid:
    transaction: Transaction
    errors: Tuple[FieldError, ...]

    @property
    def message(self) -> str:
        return "; ".join(str(e) for e in self.errors)


ValidationResult = Union[Valid, Invalid]


def validate_transaction(tx: Transaction) -> ValidationResult:
    errors: List[FieldError] = []

    for name in ("order_id", "order_display_name", "line_item_id", "item_id", "parent_id"):
        if not getattr(tx, name):
            errors.append(FieldError(name, "is required"))

    if not is_valid_barcode(tx.report_barcode):
        errors.append(FieldError("report_barcode", f"invalid barcode {tx.report_barcode!r}"))

    if not tx.display_name or not tx.display_name.strip():
        errors.append(FieldError("display_name", "is required"))

    if isinstance(tx.quantity, bool) or not isinstance(tx.quantity, int) or tx.quantity <= 0:
        errors.append(FieldError("quantity", "must be a positive integer"))

    if tx.customer is not None:
        if not tx.customer.id:
            errors.append(FieldError("customer.id", "is required"))
        if tx.customer.gender is not None and tx.customer.gender not in ("M", "W"):
            errors.append(FieldError("customer.gender", "must be M or W"))
        if tx.customer.birth_year is not None and not _BIRTH_YEAR.fullmatch(tx.customer.birth_year):
            errors.append(FieldError("customer.birth_year", "must be a 4-digit year"))

    if tx.shipping is not None and not _COUNTRY_CODE.fullmatch(tx.shipping.country_code or ""):
        errors.append(FieldError("shipping.country_code", "must be 2 uppercase letters"))

    if tx.transaction_time is None or tx.transaction_time <= 0:
        errors.append(FieldError("transaction_time", "is required"))

    if not isinstance(tx.status, TransactionStatus):
        errors.append(FieldError("status", "must be pending, sent, failed or cancelled"))

    if errors:
        return Invalid(tx, tuple(errors))
    return Valid(tx)


def validate_batch(transactions: Sequence[Transaction]) -> Tuple[List[Transaction], List[Invalid]]:
    valid: List[Transaction] = []
    invalid: List[Invalid] = []
    for tx in transactions:
        result = validate_transaction(tx)
        if isinstance(result, Valid):
            valid.append(tx)
        else:
            invalid.append(result)
    return valid, invalid

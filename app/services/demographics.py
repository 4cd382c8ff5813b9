"""
Best-effort customer demographics from free text.

Shopify has no structured gender or birth-date fields, so merchants record
them in customer tags or the customer note. These helpers scan that text
with simple patterns. The result is a heuristic, not authoritative data:
every function returns None rather than guessing when nothing matches.
"""

import re
from typing import Optional

from app.models.commerce import ShopifyCustomer
from app.services.validators import MIN_BIRTH_YEAR, extract_birth_year

_MALE_TAG = re.compile(r"\b(male|man)\b")
_FEMALE_TAG = re.compile(r"\b(female|woman)\b")
_NOTE_GENDER = re.compile(r"gender\s*:\s*([a-z]+)")
_BIRTH_YEAR = re.compile(r"birth[_-]?year[:\s]*([0-9]{4})", re.IGNORECASE)
_BIRTH_DATE = re.compile(r"birth[_-]?date[:\s]*([0-9\-/.]+)", re.IGNORECASE)


def extract_gender(customer: Optional[ShopifyCustomer]) -> Optional[str]:
    """M / W from customer tags ("male", "woman", ...) or a "gender: x" note."""
    if customer is None:
        return None

    if customer.tags:
        tags = customer.tags.lower()
        if _FEMALE_TAG.search(tags):
            return "W"
        if _MALE_TAG.search(tags):
            return "M"

    if customer.note:
        match = _NOTE_GENDER.search(customer.note.lower())
        if match:
            value = match.group(1)
            if value.startswith("m"):
                return "M"
            if value.startswith(("f", "w")):
                return "W"

    return None


def _year_in_range(year: str, current_year: int) -> Optional[str]:
    return year if MIN_BIRTH_YEAR <= int(year) <= current_year else None


def extract_birth_year_from_customer(
    customer: Optional[ShopifyCustomer], current_year: int
) -> Optional[str]:
    """Birth year from a "birth_year: YYYY" tag/note, else a "birth_date: ..." note."""
    if customer is None:
        return None

    for text in (customer.tags, customer.note):
        if not text:
            continue
        match = _BIRTH_YEAR.search(text)
        if match:
            year = _year_in_range(match.group(1), current_year)
            if year:
                return year

    if customer.note:
        match = _BIRTH_DATE.search(customer.note)
        if match:
            return extract_birth_year(match.group(1), current_year)

    return None

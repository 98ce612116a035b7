"""
Utility functions shared across the app. This includes:
- parse_* helpers: normalize JSON/form input (accept "1,000.50", "", None, ...).
- snake_keys: camelCase request bodies to service keyword names.
- contains_pattern: ILIKE pattern with the user's wildcards escaped.
- next_document_number: INV-/PO- numbering (max existing suffix + 1, per project and year).
- format_bytes / format_currency: display strings for API payloads.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from .errors import ValidationError


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def clean_str(value) -> str | None:
    """Strip strings; empty becomes None."""
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


def parse_decimal(value) -> Decimal | None:
    """Parse decimal from user input (accepts thousands separators)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    raw = str(value).strip().replace(",", "")
    if raw == "":
        return None
    try:
        return Decimal(raw)
    except (InvalidOperation, ValueError):
        return None


def parse_optional_int(value) -> int | None:
    """Parse optional int from JSON/form/query."""
    if value is None or isinstance(value, bool):
        return None
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


LIKE_ESCAPE = "\\"


def contains_pattern(term: str) -> str:
    """ILIKE pattern matching `term` anywhere in the column; `%` and `_` in it match literally."""
    escaped = term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
    escaped = escaped.replace("%", LIKE_ESCAPE + "%").replace("_", LIKE_ESCAPE + "_")
    return f"%{escaped}%"


_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def snake_keys(payload: dict | None) -> dict:
    """{"vendorId": 1, "dueDate": ...} -> {"vendor_id": 1, "due_date": ...}"""
    return {_CAMEL_RE.sub("_", key).lower(): value for key, value in (payload or {}).items()}


def parse_date(value, field: str) -> date | None:
    """
    Parse an ISO date ("2025-01-15") or datetime ("2025-01-15T10:00:00Z").

    Raises ValidationError for non-empty values that cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        raise ValidationError(f"Invalid date for {field}", {"field": field, "value": raw})


def require_positive_amount(value, field: str) -> Decimal:
    """Money input that must be > 0, quantized to cents."""
    amount = parse_decimal(value)
    if amount is None:
        raise ValidationError(f"{field} is required", {"field": field})
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", {"field": field})
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------
# Document numbering
# ---------------------------------------------------------------------
def next_document_number(prefix: str, year: int, existing: Iterable[str]) -> str:
    """
    Next number in the `<prefix>-<year>-NNN` sequence.

    Takes the maximum numeric suffix among `existing` values matching the
    pattern exactly (so a legacy "INV-2025-001-ABC" is ignored) and adds one.
    Gaps are preserved: 001 and 003 give 004, not 003.
    """
    pattern = re.compile(rf"^{re.escape(prefix)}-{year}-(\d{{3,}})$")
    highest = 0
    for number in existing:
        match = pattern.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{year}-{highest + 1:03d}"


# ---------------------------------------------------------------------
# Display formatting
# ---------------------------------------------------------------------
CURRENCY_SYMBOLS = {
    "NGN": "₦",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "GHS": "₵",
    "KES": "KSh",
    "ZAR": "R",
    "CAD": "CA$",
    "AUD": "A$",
    "INR": "₹",
    "JPY": "¥",
    "CNY": "¥",
}


def currency_symbol(currency: str | None) -> str:
    code = (currency or "").upper()
    return CURRENCY_SYMBOLS.get(code, code)


def format_currency(amount, currency: str | None) -> str:
    """
    "₦1,500,000" style display.

    Symbols come from CURRENCY_SYMBOLS. Amounts are shown as whole units.
    """
    value = parse_decimal(amount) or Decimal("0")
    whole = int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    sign = "-" if whole < 0 else ""
    return f"{sign}{currency_symbol(currency)}{abs(whole):,}"


def format_bytes(size: int | None) -> str:
    """Human readable size: 0 Bytes, 1.5 KB, 12.25 MB ..."""
    if not size:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[index]}"

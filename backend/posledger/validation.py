from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from posledger.time_utils import normalize_datetime


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Stock columns are Numeric(12, 3)
MAX_STOCK = Decimal("999999999.999")
STOCK_QUANTUM = Decimal("0.001")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., shift already open)."""


def coerce_int(field: str, value: Any, *, allow_none: bool = False) -> int | None:
    """
    Strict integer coercion for JSON input.

    Rejects floats, booleans, scientific notation and decimal strings.
    """
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_cents(field: str, value: Any, *, default: int | None = None) -> int:
    """Money amount in cents: integer, 0 <= value <= MAX_PRICE_CENTS."""
    if value is None and default is not None:
        return default
    cents = coerce_int(field, value)
    if cents < 0:
        raise ValidationError(f"{field} must be >= 0")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def coerce_decimal(field: str, value: Any, *, allow_none: bool = False) -> Decimal | None:
    """Stock quantity: accepts int, Decimal or numeric string; floats go through str()."""
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value) if not isinstance(value, Decimal) else value
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if abs(result) > MAX_STOCK:
        raise ValidationError(f"{field} is out of range")
    return result.quantize(STOCK_QUANTUM)


def coerce_positive_decimal(field: str, value: Any) -> Decimal:
    result = coerce_decimal(field, value)
    if result <= 0:
        raise ValidationError(f"{field} must be > 0")
    return result


def coerce_datetime(field: str, value: Any) -> datetime | None:
    try:
        return normalize_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def coerce_str(field: str, value: Any, *, max_length: int, allow_none: bool = True) -> str | None:
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        if allow_none:
            return None
        raise ValidationError(f"{field} cannot be blank")
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text

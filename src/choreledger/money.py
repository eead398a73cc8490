"""Utilities for working with whole-unit monetary values.

Amounts are stored as integers.  The deployment this ledger was built for
uses whole Rupees only, so the ``*_cents`` columns hold whole currency units
and no fractional sub-unit ever crosses the service boundary.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .exceptions import ValidationError

CURRENCY_PREFIX = "Rs."

AmountLike = Union[Decimal, int, float, str]


def to_amount(value: AmountLike) -> int:
    """Convert ``value`` to a whole-unit integer amount, rounding half up."""

    if isinstance(value, bool):
        raise ValidationError("Amount must be a number.")
    if isinstance(value, int):
        return value
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, float):
            result = Decimal(str(value))
        elif isinstance(value, str):
            result = Decimal(value.strip().replace(",", ""))
        else:
            raise ValidationError(f"Unsupported amount type: {type(value)!r}")
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount: {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return int(result.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def require_non_negative(amount: int, *, field: str = "amount") -> int:
    """Ensure ``amount`` is a non-negative integer."""

    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"{field} must be a whole number.")
    if amount < 0:
        raise ValidationError(f"{field} must be zero or greater.")
    return amount


def format_currency(amount: int) -> str:
    """Return ``amount`` as a display string (e.g. ``Rs. 1,250``)."""

    sign = "-" if amount < 0 else ""
    return f"{sign}{CURRENCY_PREFIX} {abs(int(amount)):,}"

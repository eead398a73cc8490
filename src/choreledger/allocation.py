"""Pure allocation rules for splitting an approved chore payment.

The canonical model is a three-way split of every earning into *spend*,
*charity* and *savings*.  Parents match the savings portion up to a daily cap
per kid, and the locked *invest* bucket is ``savings + match``::

    >>> allocate(100, 50, 20, 30, match_cap=100, prior_match_today=0)
    Allocation(amount=100, spend=50, charity=20, savings=30, match=30)

Nothing in this module touches the database.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date

from .exceptions import ValidationError
from .money import require_non_negative


@dataclass(slots=True, frozen=True)
class AllocationRule:
    """Spend/charity/savings percentages that must sum to 100."""

    spend_pct: int
    charity_pct: int
    savings_pct: int

    def __post_init__(self) -> None:
        validate_percentages(self.spend_pct, self.charity_pct, self.savings_pct)

    @classmethod
    def from_invest_split(cls, spend_pct: int, charity_pct: int, invest_pct: int) -> "AllocationRule":
        """Build a rule from the older spend/charity/invest convention.

        That convention had no separate savings bucket: the kid's locked share
        was called "invest" directly.  Since invest is savings plus the parent
        match, the invest percentage is the savings percentage.
        """

        return cls(spend_pct=spend_pct, charity_pct=charity_pct, savings_pct=invest_pct)


@dataclass(slots=True, frozen=True)
class Allocation:
    """Result of splitting one earning."""

    amount: int
    spend: int
    charity: int
    savings: int
    match: int

    @property
    def invest(self) -> int:
        return self.savings + self.match

    @property
    def parent_payable(self) -> int:
        return self.amount + self.match


def validate_percentages(spend_pct: int, charity_pct: int, savings_pct: int) -> None:
    """Raise :class:`ValidationError` unless the three percentages form a split."""

    for name, value in (("spend", spend_pct), ("charity", charity_pct), ("savings", savings_pct)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{name} percentage must be a whole number.")
        if value < 0 or value > 100:
            raise ValidationError(f"{name} percentage must be between 0 and 100.")
    if spend_pct + charity_pct + savings_pct != 100:
        raise ValidationError("Percentages must sum to 100.")


def match_for(savings: int, match_cap: int, prior_match_today: int, *, match_enabled: bool = True) -> int:
    """Return the parent match for ``savings`` given the match already granted today."""

    if not match_enabled:
        return 0
    remaining_cap = max(0, match_cap - prior_match_today)
    return max(0, min(savings, remaining_cap))


def allocate(
    amount: int,
    spend_pct: int,
    charity_pct: int,
    savings_pct: int,
    *,
    match_cap: int,
    prior_match_today: int = 0,
    match_enabled: bool = True,
) -> Allocation:
    """Split ``amount`` and compute the capped parent match.

    Spend and charity are floored; savings takes the remainder so the three
    buckets always add back to ``amount`` exactly.
    """

    require_non_negative(amount)
    require_non_negative(match_cap, field="match cap")
    validate_percentages(spend_pct, charity_pct, savings_pct)
    spend = amount * spend_pct // 100
    charity = amount * charity_pct // 100
    savings = amount - spend - charity
    match = match_for(savings, match_cap, prior_match_today, match_enabled=match_enabled)
    return Allocation(amount=amount, spend=spend, charity=charity, savings=savings, match=match)


def allocate_with_rule(
    amount: int,
    rule: AllocationRule,
    *,
    match_cap: int,
    prior_match_today: int = 0,
    match_enabled: bool = True,
) -> Allocation:
    return allocate(
        amount,
        rule.spend_pct,
        rule.charity_pct,
        rule.savings_pct,
        match_cap=match_cap,
        prior_match_today=prior_match_today,
        match_enabled=match_enabled,
    )


def add_months(start: date, months: int) -> date:
    """Return ``start`` shifted by ``months`` calendar months, clamping the day."""

    if months < 0:
        raise ValidationError("Lock duration cannot be negative.")
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def lock_until(txn_date: date, lock_months: int) -> date:
    """Date until which the invest bucket of a posting stays locked."""

    return add_months(txn_date, lock_months)


__all__ = [
    "Allocation",
    "AllocationRule",
    "add_months",
    "allocate",
    "allocate_with_rule",
    "lock_until",
    "match_for",
    "validate_percentages",
]

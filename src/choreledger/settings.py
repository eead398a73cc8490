"""Per-family allocation settings."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Session

from .access import require_parent
from .allocation import AllocationRule
from .exceptions import ValidationError
from .models import Caller, LedgerPolicy
from .money import require_non_negative
from .persistence import FamilySettings


def load_settings(session: Session, family_id: int, policy: LedgerPolicy) -> FamilySettings:
    """Return the family's settings row, creating it from policy defaults."""

    settings = session.get(FamilySettings, family_id)
    if settings is None:
        settings = FamilySettings(
            family_id=family_id,
            match_enabled=policy.default_match_enabled,
            match_cap_cents_per_kid_per_day=policy.default_match_cap,
            default_spend_pct=policy.default_spend_pct,
            default_charity_pct=policy.default_charity_pct,
            default_savings_pct=policy.default_savings_pct,
        )
        session.add(settings)
        session.flush()
    return settings


def allocation_rule(settings: FamilySettings) -> AllocationRule:
    return AllocationRule(
        spend_pct=settings.default_spend_pct,
        charity_pct=settings.default_charity_pct,
        savings_pct=settings.default_savings_pct,
    )


def update_settings(
    session: Session,
    caller: Caller,
    *,
    policy: LedgerPolicy,
    now: datetime,
    match_enabled: Optional[bool] = None,
    match_cap: Optional[int] = None,
    spend_pct: Optional[int] = None,
    charity_pct: Optional[int] = None,
    savings_pct: Optional[int] = None,
    invest_pct: Optional[int] = None,
) -> FamilySettings:
    """Apply a partial update to the caller's family settings.

    ``invest_pct`` is the older name for the kid's locked share and is stored
    as the savings percentage.
    """

    require_parent(caller)
    if invest_pct is not None:
        if savings_pct is not None and savings_pct != invest_pct:
            raise ValidationError("savings_pct and invest_pct disagree.")
        savings_pct = invest_pct
    settings = load_settings(session, caller.family_id, policy)

    rule = AllocationRule(
        spend_pct=settings.default_spend_pct if spend_pct is None else spend_pct,
        charity_pct=settings.default_charity_pct if charity_pct is None else charity_pct,
        savings_pct=settings.default_savings_pct if savings_pct is None else savings_pct,
    )
    if match_cap is not None:
        require_non_negative(match_cap, field="match cap")
        settings.match_cap_cents_per_kid_per_day = match_cap
    if match_enabled is not None:
        settings.match_enabled = bool(match_enabled)
    settings.default_spend_pct = rule.spend_pct
    settings.default_charity_pct = rule.charity_pct
    settings.default_savings_pct = rule.savings_pct
    settings.updated_at = now
    session.add(settings)
    session.flush()
    return settings


__all__ = ["allocation_rule", "load_settings", "update_settings"]

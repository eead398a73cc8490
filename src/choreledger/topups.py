"""Daily parent-match top-ups.

A top-up is the single PARENT_TOPUP row per family, kid and date that records
what the parents owe for matching that day's savings.  When that day's
earnings change after the row was posted (a late approval, an adjustment or
a revoke), the difference is appended as a TOPUP_CORRECTION row so the net
top-up always equals the match owed.  Running the generator again for the
same date leaves the ledger unchanged.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .access import require_parent
from .exceptions import ConflictError
from .ledger import Ledger
from .models import Caller, LedgerPolicy, TopupResult
from .persistence import FamilySettings, Kid, LedgerTransaction
from .settings import load_settings


def topup_amount(savings: int, settings: FamilySettings) -> int:
    if not settings.match_enabled:
        return 0
    return max(0, min(savings, settings.match_cap_cents_per_kid_per_day))


def reconcile_topup(
    session: Session,
    family_id: int,
    kid_id: int,
    txn_date: date,
    *,
    policy: LedgerPolicy,
    now: Optional[datetime] = None,
) -> Optional[LedgerTransaction]:
    """Bring a posted top-up in line with the day's savings.

    Returns the correction row, or ``None`` when no top-up exists yet or the
    posted amount is already right.
    """

    ledger = Ledger(session, lock_months=policy.invest_lock_months, now=now)
    if ledger.topup_for(family_id, kid_id, txn_date) is None:
        return None
    settings = load_settings(session, family_id, policy)
    savings = ledger.savings_by_kid_on(family_id, txn_date).get(kid_id, 0)
    delta = topup_amount(savings, settings) - ledger.topup_total(family_id, kid_id, txn_date)
    if delta == 0:
        return None
    return ledger.post_topup_correction(
        kid_id,
        family_id,
        txn_date,
        delta,
        description=f"Parent match correction for {txn_date.isoformat()}",
    )


def _apply(
    session: Session,
    family_id: int,
    txn_date: date,
    policy: LedgerPolicy,
    now: Optional[datetime],
) -> List[TopupResult]:
    settings = load_settings(session, family_id, policy)
    ledger = Ledger(session, lock_months=policy.invest_lock_months, now=now)
    results: List[TopupResult] = []
    for kid_id, savings in sorted(ledger.savings_by_kid_on(family_id, txn_date).items()):
        existing = ledger.topup_for(family_id, kid_id, txn_date)
        if existing is not None:
            correction = reconcile_topup(session, family_id, kid_id, txn_date, policy=policy, now=now)
            results.append(
                TopupResult(
                    kid_id=kid_id,
                    txn_date=txn_date,
                    savings=savings,
                    matched=ledger.topup_total(family_id, kid_id, txn_date),
                    posted=False,
                    already_applied=True,
                    txn_id=existing.id,
                    corrected=correction is not None,
                )
            )
            continue
        matched = topup_amount(savings, settings)
        if matched <= 0:
            results.append(TopupResult(kid_id=kid_id, txn_date=txn_date, savings=savings, matched=0, posted=False))
            continue
        row = ledger.post_topup(kid_id, family_id, txn_date, matched, description=f"Parent match for {txn_date.isoformat()}")
        results.append(
            TopupResult(
                kid_id=kid_id,
                txn_date=txn_date,
                savings=savings,
                matched=matched,
                posted=True,
                txn_id=row.id,
            )
        )
    return results


def generate_daily_topups(
    session: Session,
    caller: Caller,
    txn_date: date,
    *,
    policy: LedgerPolicy,
    now: Optional[datetime] = None,
    attempts: int = 2,
) -> List[TopupResult]:
    """Post the missing top-ups for ``txn_date`` and commit.

    The generator owns its transaction: if a concurrent run inserts the same
    row first, the unique index rejects ours, the batch is rolled back and run
    again, and the second pass reports those kids as already applied.
    """

    require_parent(caller)
    for attempt in range(1, attempts + 1):
        try:
            results = _apply(session, caller.family_id, txn_date, policy, now)
            session.commit()
            return results
        except IntegrityError as exc:
            session.rollback()
            if attempt >= attempts:
                raise ConflictError(f"Top-ups for {txn_date.isoformat()} are being generated elsewhere.") from exc
    return []


def topup_status(session: Session, caller: Caller, txn_date: date, *, policy: LedgerPolicy) -> List[TopupResult]:
    """Per-kid savings, match and whether the top-up row exists for ``txn_date``."""

    require_parent(caller)
    settings = load_settings(session, caller.family_id, policy)
    ledger = Ledger(session, lock_months=policy.invest_lock_months)
    savings_by_kid = ledger.savings_by_kid_on(caller.family_id, txn_date)
    kid_ids = session.exec(select(Kid.id).where(Kid.family_id == caller.family_id).order_by(Kid.id)).all()
    status: List[TopupResult] = []
    for kid_id in kid_ids:
        savings = savings_by_kid.get(kid_id, 0)
        existing = ledger.topup_for(caller.family_id, kid_id, txn_date)
        status.append(
            TopupResult(
                kid_id=kid_id,
                txn_date=txn_date,
                savings=savings,
                matched=(
                    ledger.topup_total(caller.family_id, kid_id, txn_date)
                    if existing
                    else topup_amount(savings, settings)
                ),
                posted=existing is not None,
                already_applied=existing is not None,
                txn_id=existing.id if existing else None,
            )
        )
    return status


__all__ = ["generate_daily_topups", "reconcile_topup", "topup_amount", "topup_status"]

"""Completion recorder and approval state machine.

Every transition is a conditional ``UPDATE ... WHERE status = <expected>``;
when two reviewers race only one of them sees a matched row, and only that
one posts to the ledger.  Nothing in this module commits.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .access import family_kid, require_child, require_parent_type
from .allocation import allocate, allocate_with_rule, lock_until
from .chores import family_chore
from .exceptions import ConflictError, InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from .ledger import Ledger
from .models import (
    ACTIVE_COMPLETION_STATUSES,
    Caller,
    CompletionSource,
    CompletionStatus,
    LedgerPolicy,
    LedgerSource,
    LedgerTotals,
)
from .money import require_non_negative
from .persistence import Chore, ChoreCompletion, LedgerTransaction
from .settings import allocation_rule, load_settings
from .topups import reconcile_topup


def _family_completion(session: Session, caller: Caller, completion_id: int) -> ChoreCompletion:
    completion = session.get(ChoreCompletion, completion_id)
    if completion is None or completion.family_id != caller.family_id:
        raise NotFoundError(f"Completion {completion_id} not found.")
    return completion


def active_completion(session: Session, kid_id: int, chore_id: int, completed_date: date) -> Optional[ChoreCompletion]:
    return session.exec(
        select(ChoreCompletion)
        .where(ChoreCompletion.kid_id == kid_id)
        .where(ChoreCompletion.chore_id == chore_id)
        .where(ChoreCompletion.completed_date == completed_date)
        .where(ChoreCompletion.status.in_(ACTIVE_COMPLETION_STATUSES))
    ).first()


def _insert_completion(session: Session, completion: ChoreCompletion) -> ChoreCompletion:
    if active_completion(session, completion.kid_id, completion.chore_id, completion.completed_date):
        raise ConflictError("This chore is already marked done for that day.")
    session.add(completion)
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError("This chore is already marked done for that day.") from exc
    return completion


def _transition(
    session: Session,
    completion: ChoreCompletion,
    expected: CompletionStatus,
    **values: object,
) -> None:
    result = session.exec(
        update(ChoreCompletion)
        .where(ChoreCompletion.id == completion.id)
        .where(ChoreCompletion.status == expected.value)
        .values(**values)
    )
    if result.rowcount != 1:
        session.refresh(completion)
        raise InvalidStateError(f"Completion {completion.id} is already {completion.status.lower()}.")
    session.refresh(completion)


def _require_status(completion: ChoreCompletion, expected: CompletionStatus) -> None:
    if completion.status != expected.value:
        raise InvalidStateError(
            f"Completion {completion.id} is {completion.status.lower()}, expected {expected.value.lower()}."
        )


def _reconcile(session: Session, completion: ChoreCompletion, *, policy: LedgerPolicy, now: datetime) -> None:
    reconcile_topup(session, completion.family_id, completion.kid_id, completion.completed_date, policy=policy, now=now)


def _post_allocation(
    session: Session,
    completion: ChoreCompletion,
    amount: int,
    *,
    policy: LedgerPolicy,
    source: LedgerSource,
    description: str,
    now: datetime,
) -> LedgerTransaction:
    settings = load_settings(session, completion.family_id, policy)
    ledger = Ledger(session, lock_months=policy.invest_lock_months, now=now)
    prior = ledger.match_on_date(completion.family_id, completion.kid_id, completion.completed_date)
    allocation = allocate_with_rule(
        amount,
        allocation_rule(settings),
        match_cap=settings.match_cap_cents_per_kid_per_day,
        prior_match_today=prior,
        match_enabled=settings.match_enabled,
    )
    txn = ledger.post_earning(
        completion.kid_id,
        completion.family_id,
        completion.completed_date,
        allocation.amount,
        allocation.spend,
        allocation.charity,
        allocation.savings,
        allocation.match,
        source=source,
        completion_id=completion.id,
        description=description,
    )
    _reconcile(session, completion, policy=policy, now=now)
    return txn


# ---------------------------------------------------------------------------
# Kid actions
# ---------------------------------------------------------------------------
def record_completion(
    session: Session,
    caller: Caller,
    chore_id: int,
    completed_date: date,
    *,
    now: datetime,
) -> ChoreCompletion:
    require_child(caller)
    chore = family_chore(session, caller, chore_id)
    if not chore.active:
        raise InvalidStateError(f"Chore '{chore.title}' is not active.")
    completion = ChoreCompletion(
        family_id=caller.family_id,
        kid_id=caller.kid_id,
        chore_id=chore.id,
        completed_date=completed_date,
        submitted_at=now,
        status=CompletionStatus.PENDING_APPROVAL.value,
        source=CompletionSource.KID_SUBMIT.value,
    )
    return _insert_completion(session, completion)


def revert_pending(session: Session, caller: Caller, completion_id: int) -> ChoreCompletion:
    """Delete the kid's own claim while it is still waiting for review."""

    require_child(caller)
    completion = _family_completion(session, caller, completion_id)
    if completion.kid_id != caller.kid_id:
        raise UnauthorizedError("You can only undo your own chores.")
    _require_status(completion, CompletionStatus.PENDING_APPROVAL)
    session.expunge(completion)
    result = session.exec(
        delete(ChoreCompletion)
        .where(ChoreCompletion.id == completion_id)
        .where(ChoreCompletion.status == CompletionStatus.PENDING_APPROVAL.value)
    )
    if result.rowcount != 1:
        raise InvalidStateError(f"Completion {completion_id} was already reviewed.")
    return completion


# ---------------------------------------------------------------------------
# Primary approver
# ---------------------------------------------------------------------------
def approve(
    session: Session,
    caller: Caller,
    completion_id: int,
    *,
    policy: LedgerPolicy,
    now: datetime,
) -> Tuple[ChoreCompletion, LedgerTransaction]:
    require_parent_type(caller, policy.approver_parent_type)
    completion = _family_completion(session, caller, completion_id)
    _require_status(completion, CompletionStatus.PENDING_APPROVAL)
    chore = family_chore(session, caller, completion.chore_id)
    _transition(
        session,
        completion,
        CompletionStatus.PENDING_APPROVAL,
        status=CompletionStatus.APPROVED.value,
        amount_cents=chore.price_cents,
        reviewed_at=now,
        reviewed_by=caller.user_id,
    )
    txn = _post_allocation(
        session,
        completion,
        chore.price_cents,
        policy=policy,
        source=LedgerSource.CHORE_EARNING,
        description=chore.title,
        now=now,
    )
    return completion, txn


def reject(
    session: Session,
    caller: Caller,
    completion_id: int,
    notes: Optional[str],
    *,
    policy: LedgerPolicy,
    now: datetime,
) -> ChoreCompletion:
    require_parent_type(caller, policy.approver_parent_type)
    completion = _family_completion(session, caller, completion_id)
    _require_status(completion, CompletionStatus.PENDING_APPROVAL)
    _transition(
        session,
        completion,
        CompletionStatus.PENDING_APPROVAL,
        status=CompletionStatus.REJECTED.value,
        review_notes=(notes or "").strip() or None,
        reviewed_at=now,
        reviewed_by=caller.user_id,
    )
    return completion


# ---------------------------------------------------------------------------
# Override approver
# ---------------------------------------------------------------------------
def adjust(
    session: Session,
    caller: Caller,
    completion_id: int,
    new_amount: int,
    spend_pct: int,
    charity_pct: int,
    savings_pct: int,
    *,
    policy: LedgerPolicy,
    now: datetime,
) -> Tuple[ChoreCompletion, Optional[LedgerTransaction]]:
    """Re-price an approved completion by posting the difference.

    The target allocation is computed as if the completion had been approved
    with ``new_amount`` and the given percentages.  Only the delta against the
    rows already linked to the completion is written, so the original posting
    stays untouched.  Returns ``None`` for the transaction when nothing moved.
    """

    require_parent_type(caller, policy.override_parent_type)
    completion = _family_completion(session, caller, completion_id)
    _require_status(completion, CompletionStatus.APPROVED)
    require_non_negative(new_amount, field="new amount")

    settings = load_settings(session, completion.family_id, policy)
    ledger = Ledger(session, lock_months=policy.invest_lock_months, now=now)
    prior = ledger.match_on_date(
        completion.family_id,
        completion.kid_id,
        completion.completed_date,
        exclude_completion_id=completion.id,
    )
    target = allocate(
        new_amount,
        spend_pct,
        charity_pct,
        savings_pct,
        match_cap=settings.match_cap_cents_per_kid_per_day,
        prior_match_today=prior,
        match_enabled=settings.match_enabled,
    )
    _transition(
        session,
        completion,
        CompletionStatus.APPROVED,
        amount_cents=new_amount,
        reviewed_at=now,
        reviewed_by=caller.user_id,
    )
    delta = (
        LedgerTotals(
            amount=target.amount,
            spend=target.spend,
            charity=target.charity,
            savings=target.savings,
            invest=target.invest,
            match=target.match,
            payable=target.parent_payable,
        )
        - ledger.completion_totals(completion.id)
    )
    if delta.is_zero:
        return completion, None
    chore = session.get(Chore, completion.chore_id)
    txn = ledger.post_delta(
        completion.kid_id,
        completion.family_id,
        completion.completed_date,
        delta,
        source=LedgerSource.ADJUSTMENT,
        completion_id=completion.id,
        description=f"Adjustment: {chore.title if chore else completion.chore_id}",
        lock_until=lock_until(completion.completed_date, policy.invest_lock_months),
    )
    _reconcile(session, completion, policy=policy, now=now)
    return completion, txn


def revoke(
    session: Session,
    caller: Caller,
    completion_id: int,
    *,
    policy: LedgerPolicy,
    now: datetime,
) -> Tuple[ChoreCompletion, Optional[LedgerTransaction]]:
    """Mark an approved completion REVOKED and post its compensating reversal.

    A top-up already posted for that day is corrected in the same transaction.
    """

    require_parent_type(caller, policy.override_parent_type)
    completion = _family_completion(session, caller, completion_id)
    _require_status(completion, CompletionStatus.APPROVED)
    _transition(
        session,
        completion,
        CompletionStatus.APPROVED,
        status=CompletionStatus.REVOKED.value,
        reviewed_at=now,
        reviewed_by=caller.user_id,
    )
    ledger = Ledger(session, lock_months=policy.invest_lock_months, now=now)
    net = ledger.completion_totals(completion.id)
    if net.is_zero:
        return completion, None
    chore = session.get(Chore, completion.chore_id)
    txn = ledger.post_delta(
        completion.kid_id,
        completion.family_id,
        completion.completed_date,
        -net,
        source=LedgerSource.REVERSAL,
        completion_id=completion.id,
        description=f"Reversal: {chore.title if chore else completion.chore_id}",
        lock_until=lock_until(completion.completed_date, policy.invest_lock_months),
    )
    _reconcile(session, completion, policy=policy, now=now)
    return completion, txn


def backfill(
    session: Session,
    caller: Caller,
    chore_id: int,
    kid_id: int,
    completed_date: date,
    notes: Optional[str],
    *,
    policy: LedgerPolicy,
    now: datetime,
    today: date,
) -> Tuple[ChoreCompletion, LedgerTransaction]:
    """Record a chore the kid did but never claimed, already approved."""

    require_parent_type(caller, policy.override_parent_type)
    kid = family_kid(session, caller, kid_id)
    chore = family_chore(session, caller, chore_id)
    if not chore.active:
        raise InvalidStateError(f"Chore '{chore.title}' is not active.")
    if completed_date > today:
        raise ValidationError("Backfill date cannot be in the future.")
    completion = ChoreCompletion(
        family_id=caller.family_id,
        kid_id=kid.id,
        chore_id=chore.id,
        completed_date=completed_date,
        submitted_at=now,
        status=CompletionStatus.APPROVED.value,
        source=CompletionSource.DAD_BACKFILL.value,
        amount_cents=chore.price_cents,
        review_notes=(notes or "").strip() or None,
        reviewed_at=now,
        reviewed_by=caller.user_id,
    )
    _insert_completion(session, completion)
    txn = _post_allocation(
        session,
        completion,
        chore.price_cents,
        policy=policy,
        source=LedgerSource.MANUAL_BACKFILL,
        description=f"Backfill: {chore.title}",
        now=now,
    )
    return completion, txn


__all__ = [
    "active_completion",
    "adjust",
    "approve",
    "backfill",
    "record_completion",
    "reject",
    "revert_pending",
    "revoke",
]

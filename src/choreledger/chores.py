"""Chore catalogue, kid assignments and the review queues."""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlmodel import Session, desc, select

from .access import family_kid, require_parent
from .exceptions import NotFoundError, UnauthorizedError, ValidationError
from .models import (
    ACTIVE_COMPLETION_STATUSES,
    AssignmentMode,
    BoardItem,
    Caller,
    CompletionSource,
    CompletionStatus,
    CompletionSummary,
    PendingApprovals,
    TodayBoard,
)
from .money import AmountLike, require_non_negative, to_amount
from .persistence import Chore, ChoreAssignment, ChoreCompletion, Kid


def _clean_title(title: str) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError("Chore title is required.")
    return cleaned


def family_chore(session: Session, caller: Caller, chore_id: int) -> Chore:
    chore = session.get(Chore, chore_id)
    if chore is None or chore.family_id != caller.family_id:
        raise NotFoundError(f"Chore {chore_id} not found.")
    return chore


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------
def create_chore(session: Session, caller: Caller, title: str, price: AmountLike, *, now: datetime) -> Chore:
    require_parent(caller)
    chore = Chore(
        family_id=caller.family_id,
        title=_clean_title(title),
        price_cents=require_non_negative(to_amount(price), field="price"),
        created_at=now,
    )
    session.add(chore)
    session.flush()
    return chore


def update_chore(
    session: Session,
    caller: Caller,
    chore_id: int,
    *,
    title: Optional[str] = None,
    price: Optional[AmountLike] = None,
    active: Optional[bool] = None,
) -> Chore:
    """Rename, re-price or (de)activate a chore.

    Re-pricing affects future approvals only; approved completions keep the
    amount snapshotted when they were approved.
    """

    require_parent(caller)
    chore = family_chore(session, caller, chore_id)
    if title is not None:
        chore.title = _clean_title(title)
    if price is not None:
        chore.price_cents = require_non_negative(to_amount(price), field="price")
    if active is not None:
        chore.active = bool(active)
    session.add(chore)
    session.flush()
    return chore


def list_chores(session: Session, caller: Caller, *, include_inactive: bool = False) -> List[Chore]:
    query = select(Chore).where(Chore.family_id == caller.family_id)
    if not include_inactive:
        query = query.where(Chore.active == True)  # noqa: E712
    return list(session.exec(query.order_by(Chore.title, Chore.id)).all())


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------
def set_assignment(
    session: Session,
    caller: Caller,
    kid_id: int,
    chore_id: int,
    mode: AssignmentMode | str,
    *,
    manual_date: Optional[date] = None,
) -> Optional[ChoreAssignment]:
    """Set the schedule for one (kid, chore) cell; ``none`` removes it."""

    require_parent(caller)
    try:
        mode = AssignmentMode(mode)
    except ValueError as exc:
        raise ValidationError(f"Unknown assignment mode '{mode}'.") from exc
    kid = family_kid(session, caller, kid_id)
    chore = family_chore(session, caller, chore_id)
    assignment = session.exec(
        select(ChoreAssignment)
        .where(ChoreAssignment.kid_id == kid.id)
        .where(ChoreAssignment.chore_id == chore.id)
    ).first()

    if mode is AssignmentMode.NONE:
        if assignment is not None:
            session.delete(assignment)
            session.flush()
        return None
    if mode is AssignmentMode.MANUAL and manual_date is None:
        raise ValidationError("A date is required for manual assignments.")

    if assignment is None:
        assignment = ChoreAssignment(family_id=caller.family_id, kid_id=kid.id, chore_id=chore.id)
    assignment.is_daily = mode is AssignmentMode.DAILY
    assignment.manual_date = manual_date if mode is AssignmentMode.MANUAL else None
    session.add(assignment)
    session.flush()
    return assignment


def list_assignments(session: Session, caller: Caller, *, kid_id: Optional[int] = None) -> List[ChoreAssignment]:
    require_parent(caller)
    query = select(ChoreAssignment).where(ChoreAssignment.family_id == caller.family_id)
    if kid_id is not None:
        query = query.where(ChoreAssignment.kid_id == family_kid(session, caller, kid_id).id)
    return list(session.exec(query.order_by(ChoreAssignment.kid_id, ChoreAssignment.chore_id)).all())


def today_board(session: Session, caller: Caller, board_date: date, *, kid_id: Optional[int] = None) -> TodayBoard:
    """Chores scheduled for a kid on ``board_date`` with their claim status."""

    if caller.is_child:
        if kid_id is not None and kid_id != caller.kid_id:
            raise UnauthorizedError("You can only view your own chores.")
        kid_id = caller.kid_id
    else:
        require_parent(caller)
        if kid_id is None:
            raise ValidationError("kid_id is required.")
        kid_id = family_kid(session, caller, kid_id).id

    rows = session.exec(
        select(ChoreAssignment, Chore)
        .join(Chore, Chore.id == ChoreAssignment.chore_id)
        .where(ChoreAssignment.kid_id == kid_id)
        .where(Chore.active == True)  # noqa: E712
        .where(or_(ChoreAssignment.is_daily == True, ChoreAssignment.manual_date == board_date))  # noqa: E712
        .order_by(Chore.title, Chore.id)
    ).all()
    completions = session.exec(
        select(ChoreCompletion)
        .where(ChoreCompletion.kid_id == kid_id)
        .where(ChoreCompletion.completed_date == board_date)
        .where(ChoreCompletion.status.in_(ACTIVE_COMPLETION_STATUSES))
    ).all()
    by_chore: Dict[int, ChoreCompletion] = {completion.chore_id: completion for completion in completions}

    items: List[BoardItem] = []
    for assignment, chore in rows:
        completion = by_chore.get(chore.id)
        items.append(
            BoardItem(
                chore_id=chore.id,
                title=chore.title,
                price=completion.amount_cents if completion and completion.amount_cents is not None else chore.price_cents,
                is_daily=assignment.is_daily,
                completion_id=completion.id if completion else None,
                status=completion.status if completion else None,
            )
        )
    return TodayBoard(kid_id=kid_id, board_date=board_date, items=items)


# ---------------------------------------------------------------------------
# Review queues
# ---------------------------------------------------------------------------
def _summaries(session: Session, query) -> List[CompletionSummary]:
    summaries: List[CompletionSummary] = []
    for completion, kid, chore in session.exec(query).all():
        summaries.append(
            CompletionSummary(
                completion_id=completion.id,
                kid_id=kid.id,
                kid_name=kid.display_name,
                chore_id=chore.id,
                chore_title=chore.title,
                amount=completion.amount_cents if completion.amount_cents is not None else chore.price_cents,
                completed_date=completion.completed_date,
                status=completion.status,
                source=completion.source,
                submitted_at=completion.submitted_at,
                notes=completion.review_notes,
            )
        )
    return summaries


def _joined():
    return (
        select(ChoreCompletion, Kid, Chore)
        .join(Kid, Kid.id == ChoreCompletion.kid_id)
        .join(Chore, Chore.id == ChoreCompletion.chore_id)
    )


def pending_approvals(session: Session, caller: Caller) -> PendingApprovals:
    """Oldest claims first, with the total the approver is about to pay."""

    require_parent(caller)
    items = _summaries(
        session,
        _joined()
        .where(ChoreCompletion.family_id == caller.family_id)
        .where(ChoreCompletion.status == CompletionStatus.PENDING_APPROVAL.value)
        .order_by(ChoreCompletion.completed_date, ChoreCompletion.submitted_at, ChoreCompletion.id),
    )
    return PendingApprovals(items=items, total=sum(item.amount for item in items))


def recent_backfills(session: Session, caller: Caller, *, limit: int = 20) -> List[CompletionSummary]:
    require_parent(caller)
    return _summaries(
        session,
        _joined()
        .where(ChoreCompletion.family_id == caller.family_id)
        .where(ChoreCompletion.source == CompletionSource.DAD_BACKFILL.value)
        .order_by(desc(ChoreCompletion.submitted_at), desc(ChoreCompletion.id))
        .limit(limit),
    )


__all__ = [
    "create_chore",
    "list_assignments",
    "list_chores",
    "pending_approvals",
    "recent_backfills",
    "set_assignment",
    "today_board",
    "update_chore",
]

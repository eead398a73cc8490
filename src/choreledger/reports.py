"""Dashboard and date-range reports derived from the ledger."""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Tuple

from sqlmodel import Session, select

from .access import family_kid, require_parent
from .exceptions import UnauthorizedError, ValidationError
from .ledger import Ledger
from .models import Caller, Dashboard, KidReport, KidReportRow, LedgerTotals
from .persistence import Kid, LedgerTransaction


def parse_iso_date(value: Optional[str | date], *, field: str = "date") -> Optional[date]:
    """Parse ``YYYY-MM-DD``; blank values mean "not given"."""

    if value is None or isinstance(value, date):
        return value
    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format.") from exc


def resolve_range(date_from: Optional[date], date_to: Optional[date], *, today: date) -> Tuple[date, date]:
    """Default to the first of the current month through ``today``."""

    start = date_from or today.replace(day=1)
    end = date_to or today
    if start > end:
        raise ValidationError("The start date must be on or before the end date.")
    return start, end


def _scope_kid(session: Session, caller: Caller, kid_id: Optional[int]) -> Optional[int]:
    if caller.is_child:
        if kid_id is not None and kid_id != caller.kid_id:
            raise UnauthorizedError("You can only view your own money.")
        return caller.kid_id
    require_parent(caller)
    if kid_id is None:
        return None
    return family_kid(session, caller, kid_id).id


def dashboard(session: Session, caller: Caller, *, today: date, kid_id: Optional[int] = None) -> Dashboard:
    scoped = _scope_kid(session, caller, kid_id)
    ledger = Ledger(session)
    locked, unlocked = ledger.invest_lock_split(caller.family_id, today, kid_id=scoped)
    return Dashboard(
        family_id=caller.family_id,
        kid_id=scoped,
        totals=ledger.aggregate(caller.family_id, kid_id=scoped),
        locked_invest=locked,
        unlocked_invest=unlocked,
        as_of=today,
    )


def recent_transactions(
    session: Session,
    caller: Caller,
    *,
    kid_id: Optional[int] = None,
    limit: int = 50,
) -> List[LedgerTransaction]:
    scoped = _scope_kid(session, caller, kid_id)
    return Ledger(session).recent_activity(caller.family_id, kid_id=scoped, limit=limit)


def kid_report(
    session: Session,
    caller: Caller,
    *,
    today: date,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> KidReport:
    """Per-kid totals for a range plus the family total row.

    Kids with no activity in the range still get a zero row.  A kid caller
    only sees their own row.
    """

    start, end = resolve_range(date_from, date_to, today=today)
    query = select(Kid).where(Kid.family_id == caller.family_id)
    if caller.is_child:
        query = query.where(Kid.id == caller.kid_id)
    else:
        require_parent(caller)
    kids = session.exec(query.order_by(Kid.display_name, Kid.id)).all()
    by_kid = Ledger(session).aggregate_by_kid(caller.family_id, date_from=start, date_to=end)

    rows: List[KidReportRow] = []
    family_total = LedgerTotals()
    for kid in kids:
        totals = by_kid.get(kid.id, LedgerTotals())
        rows.append(KidReportRow(kid_id=kid.id, kid_name=kid.display_name, totals=totals))
        family_total = family_total + totals
    return KidReport(date_from=start, date_to=end, rows=rows, family_total=family_total)


__all__ = ["dashboard", "kid_report", "parse_iso_date", "recent_transactions", "resolve_range"]

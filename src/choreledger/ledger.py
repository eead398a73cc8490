"""Append-only ledger over :class:`~choreledger.persistence.LedgerTransaction` rows."""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, or_
from sqlmodel import Session, desc, select

from .allocation import lock_until as lock_until_for, match_for
from .exceptions import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from .models import EARNING_SOURCES, TOPUP_SOURCES, LedgerSource, LedgerTotals
from .money import require_non_negative
from .persistence import LedgerTransaction

_POSTING_SOURCES = {LedgerSource.CHORE_EARNING, LedgerSource.MANUAL_BACKFILL}
_DELTA_SOURCES = {LedgerSource.ADJUSTMENT, LedgerSource.REVERSAL}


def _sum_columns():
    return (
        func.coalesce(func.sum(LedgerTransaction.amount_cents), 0),
        func.coalesce(func.sum(LedgerTransaction.spend_cents), 0),
        func.coalesce(func.sum(LedgerTransaction.charity_cents), 0),
        func.coalesce(func.sum(LedgerTransaction.savings_cents), 0),
        func.coalesce(func.sum(LedgerTransaction.invest_cents), 0),
        func.coalesce(func.sum(LedgerTransaction.parent_match_cents), 0),
        func.coalesce(func.sum(LedgerTransaction.parent_payable_cents), 0),
    )


def _totals(row: Sequence[int]) -> LedgerTotals:
    amount, spend, charity, savings, invest, match, payable = (int(value or 0) for value in row)
    return LedgerTotals(
        amount=amount,
        spend=spend,
        charity=charity,
        savings=savings,
        invest=invest,
        match=match,
        payable=payable,
    )


def totals_of(row: LedgerTransaction) -> LedgerTotals:
    return LedgerTotals(
        amount=row.amount_cents,
        spend=row.spend_cents,
        charity=row.charity_cents,
        savings=row.savings_cents,
        invest=row.invest_cents,
        match=row.parent_match_cents,
        payable=row.parent_payable_cents,
    )


def _check_balanced(totals: LedgerTotals) -> None:
    if totals.spend + totals.charity + totals.savings != totals.amount:
        raise ValidationError("spend + charity + savings must equal the amount.")
    if totals.invest != totals.savings + totals.match:
        raise ValidationError("invest must equal savings + parent match.")
    if totals.payable != totals.amount + totals.match:
        raise ValidationError("parent payable must equal amount + parent match.")


class Ledger:
    """Thin persistence adapter for ledger postings and aggregations.

    The ledger never commits; callers own the transaction so a status change
    and its posting succeed or fail together.  When ``now`` is given, new rows
    are stamped with it instead of the database default.
    """

    def __init__(self, session: Session, *, lock_months: int = 4, now: Optional[datetime] = None) -> None:
        self._session = session
        self._lock_months = lock_months
        self._now = now

    def _append(self, row: LedgerTransaction) -> LedgerTransaction:
        if self._now is not None:
            row.created_at = self._now
        self._session.add(row)
        self._session.flush()
        return row

    # ------------------------------------------------------------------
    # Postings
    # ------------------------------------------------------------------
    def post_earning(
        self,
        kid_id: int,
        family_id: int,
        txn_date: date,
        amount: int,
        spend: int,
        charity: int,
        savings: int,
        match: int,
        *,
        source: LedgerSource = LedgerSource.CHORE_EARNING,
        completion_id: Optional[int] = None,
        description: str = "",
    ) -> LedgerTransaction:
        """Append one earning row after checking its bucket arithmetic."""

        if source not in _POSTING_SOURCES:
            raise ValidationError(f"{source.value} is not an earning source.")
        for name, value in (
            ("amount", amount),
            ("spend", spend),
            ("charity", charity),
            ("savings", savings),
            ("parent match", match),
        ):
            require_non_negative(value, field=name)
        row = LedgerTransaction(
            family_id=family_id,
            kid_id=kid_id,
            completion_id=completion_id,
            txn_date=txn_date,
            source=source.value,
            amount_cents=amount,
            spend_cents=spend,
            charity_cents=charity,
            savings_cents=savings,
            invest_cents=savings + match,
            parent_match_cents=match,
            parent_payable_cents=amount + match,
            lock_until=lock_until_for(txn_date, self._lock_months),
            description=description,
        )
        _check_balanced(totals_of(row))
        return self._append(row)

    def post_delta(
        self,
        kid_id: int,
        family_id: int,
        txn_date: date,
        totals: LedgerTotals,
        *,
        source: LedgerSource,
        completion_id: int,
        description: str = "",
        lock_until: Optional[date] = None,
    ) -> LedgerTransaction:
        """Append an adjustment or reversal row; fields may be negative."""

        if source not in _DELTA_SOURCES:
            raise ValidationError(f"{source.value} is not a correcting source.")
        _check_balanced(totals)
        row = LedgerTransaction(
            family_id=family_id,
            kid_id=kid_id,
            completion_id=completion_id,
            txn_date=txn_date,
            source=source.value,
            amount_cents=totals.amount,
            spend_cents=totals.spend,
            charity_cents=totals.charity,
            savings_cents=totals.savings,
            invest_cents=totals.invest,
            parent_match_cents=totals.match,
            parent_payable_cents=totals.payable,
            lock_until=lock_until,
            description=description,
        )
        return self._append(row)

    def _match_row(self, kid_id: int, family_id: int, txn_date: date, matched: int, source: LedgerSource, description: str) -> LedgerTransaction:
        # Match-only rows: nothing was earned, the parents pay ``matched`` into invest.
        row = LedgerTransaction(
            family_id=family_id,
            kid_id=kid_id,
            txn_date=txn_date,
            source=source.value,
            amount_cents=0,
            invest_cents=matched,
            parent_match_cents=matched,
            parent_payable_cents=matched,
            lock_until=lock_until_for(txn_date, self._lock_months),
            description=description,
        )
        _check_balanced(totals_of(row))
        return self._append(row)

    def post_topup(self, kid_id: int, family_id: int, txn_date: date, matched: int, *, description: str = "") -> LedgerTransaction:
        require_non_negative(matched, field="top-up")
        return self._match_row(
            kid_id,
            family_id,
            txn_date,
            matched,
            LedgerSource.PARENT_TOPUP,
            description or "Parent match top-up",
        )

    def post_topup_correction(
        self,
        kid_id: int,
        family_id: int,
        txn_date: date,
        delta: int,
        *,
        description: str = "",
    ) -> LedgerTransaction:
        """Append the difference between the day's owed match and what was posted."""

        if delta == 0:
            raise ValidationError("A top-up correction must move money.")
        if self.topup_for(family_id, kid_id, txn_date) is None:
            raise InvalidStateError(f"No top-up was posted for {txn_date.isoformat()}.")
        return self._match_row(
            kid_id,
            family_id,
            txn_date,
            delta,
            LedgerSource.TOPUP_CORRECTION,
            description or "Parent match correction",
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get(self, txn_id: int) -> Optional[LedgerTransaction]:
        return self._session.get(LedgerTransaction, txn_id)

    def rows_for_completion(self, completion_id: int) -> List[LedgerTransaction]:
        return list(
            self._session.exec(
                select(LedgerTransaction)
                .where(LedgerTransaction.completion_id == completion_id)
                .order_by(LedgerTransaction.id)
            ).all()
        )

    def completion_totals(self, completion_id: int) -> LedgerTotals:
        row = self._session.exec(
            select(*_sum_columns()).where(LedgerTransaction.completion_id == completion_id)
        ).one()
        return _totals(row)

    def topup_for(self, family_id: int, kid_id: int, txn_date: date) -> Optional[LedgerTransaction]:
        return self._session.exec(
            select(LedgerTransaction)
            .where(LedgerTransaction.family_id == family_id)
            .where(LedgerTransaction.kid_id == kid_id)
            .where(LedgerTransaction.txn_date == txn_date)
            .where(LedgerTransaction.source == LedgerSource.PARENT_TOPUP.value)
        ).first()

    def topup_total(self, family_id: int, kid_id: int, txn_date: date) -> int:
        """Net parent match paid for ``kid_id`` on ``txn_date``, corrections included."""

        return int(
            self._session.exec(
                select(func.coalesce(func.sum(LedgerTransaction.parent_match_cents), 0))
                .where(LedgerTransaction.family_id == family_id)
                .where(LedgerTransaction.kid_id == kid_id)
                .where(LedgerTransaction.txn_date == txn_date)
                .where(LedgerTransaction.source.in_(TOPUP_SOURCES))
            ).one()
            or 0
        )

    def match_on_date(
        self,
        family_id: int,
        kid_id: int,
        txn_date: date,
        *,
        exclude_completion_id: Optional[int] = None,
        exclude_txn_id: Optional[int] = None,
    ) -> int:
        """Parent match already granted to ``kid_id`` for earnings dated ``txn_date``."""

        query = (
            select(func.coalesce(func.sum(LedgerTransaction.parent_match_cents), 0))
            .where(LedgerTransaction.family_id == family_id)
            .where(LedgerTransaction.kid_id == kid_id)
            .where(LedgerTransaction.txn_date == txn_date)
            .where(LedgerTransaction.source.in_(EARNING_SOURCES))
        )
        if exclude_completion_id is not None:
            query = query.where(
                or_(
                    LedgerTransaction.completion_id.is_(None),
                    LedgerTransaction.completion_id != exclude_completion_id,
                )
            )
        if exclude_txn_id is not None:
            query = query.where(LedgerTransaction.id != exclude_txn_id)
        return int(self._session.exec(query).one() or 0)

    def savings_by_kid_on(self, family_id: int, txn_date: date) -> Dict[int, int]:
        rows = self._session.exec(
            select(LedgerTransaction.kid_id, func.coalesce(func.sum(LedgerTransaction.savings_cents), 0))
            .where(LedgerTransaction.family_id == family_id)
            .where(LedgerTransaction.txn_date == txn_date)
            .where(LedgerTransaction.source.in_(EARNING_SOURCES))
            .group_by(LedgerTransaction.kid_id)
        ).all()
        return {int(kid_id): int(total or 0) for kid_id, total in rows}

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------
    def recent_activity(
        self,
        family_id: int,
        *,
        kid_id: Optional[int] = None,
        limit: int = 50,
    ) -> List[LedgerTransaction]:
        """Newest rows first; scoped to a kid when ``kid_id`` is given."""

        if limit <= 0:
            return []
        query = select(LedgerTransaction).where(LedgerTransaction.family_id == family_id)
        if kid_id is not None:
            query = query.where(LedgerTransaction.kid_id == kid_id)
        query = query.order_by(desc(LedgerTransaction.created_at), desc(LedgerTransaction.id)).limit(limit)
        return list(self._session.exec(query).all())

    def aggregate(
        self,
        family_id: int,
        *,
        kid_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        sources: Iterable[str] = EARNING_SOURCES,
    ) -> LedgerTotals:
        """Sum the monetary fields of earning rows; empty ranges give zeros."""

        query = self._scoped(select(*_sum_columns()), family_id, date_from, date_to, sources)
        if kid_id is not None:
            query = query.where(LedgerTransaction.kid_id == kid_id)
        return _totals(self._session.exec(query).one())

    def aggregate_by_kid(
        self,
        family_id: int,
        *,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        sources: Iterable[str] = EARNING_SOURCES,
    ) -> Dict[int, LedgerTotals]:
        query = self._scoped(
            select(LedgerTransaction.kid_id, *_sum_columns()),
            family_id,
            date_from,
            date_to,
            sources,
        ).group_by(LedgerTransaction.kid_id)
        return {int(row[0]): _totals(row[1:]) for row in self._session.exec(query).all()}

    def invest_lock_split(self, family_id: int, as_of: date, *, kid_id: Optional[int] = None) -> tuple[int, int]:
        """Return ``(locked, unlocked)`` invest totals as of ``as_of``."""

        base = (
            select(func.coalesce(func.sum(LedgerTransaction.invest_cents), 0))
            .where(LedgerTransaction.family_id == family_id)
            .where(LedgerTransaction.source.in_(EARNING_SOURCES))
        )
        if kid_id is not None:
            base = base.where(LedgerTransaction.kid_id == kid_id)
        locked = self._session.exec(
            base.where(LedgerTransaction.lock_until.is_not(None)).where(LedgerTransaction.lock_until > as_of)
        ).one()
        unlocked = self._session.exec(
            base.where(
                or_(LedgerTransaction.lock_until.is_(None), LedgerTransaction.lock_until <= as_of)
            )
        ).one()
        return int(locked or 0), int(unlocked or 0)

    def _scoped(self, query, family_id: int, date_from: Optional[date], date_to: Optional[date], sources: Iterable[str]):
        query = query.where(LedgerTransaction.family_id == family_id).where(
            LedgerTransaction.source.in_(list(sources))
        )
        if date_from is not None:
            query = query.where(LedgerTransaction.txn_date >= date_from)
        if date_to is not None:
            query = query.where(LedgerTransaction.txn_date <= date_to)
        return query

    # ------------------------------------------------------------------
    # Kid allocation override
    # ------------------------------------------------------------------
    def override_allocation(
        self,
        txn_id: int,
        *,
        family_id: int,
        kid_id: int,
        today: date,
        spend: int,
        charity: int,
        invest: int,
        savings: int,
        match_cap: int,
        match_enabled: bool,
        edit_days: int = 0,
    ) -> LedgerTransaction:
        """Re-split a CHORE_EARNING row on the kid's request.

        ``invest`` is the kid's locked contribution before the parent match and
        must agree with ``savings``.  The match is recomputed for the new
        savings against what the rest of the day already used of the cap.
        """

        row = self.get(txn_id)
        if row is None or row.family_id != family_id:
            raise NotFoundError(f"Transaction {txn_id} not found.")
        if row.kid_id != kid_id:
            raise UnauthorizedError("You can only change your own allocations.")
        if row.source != LedgerSource.CHORE_EARNING.value:
            raise InvalidStateError("Only chore earnings can be re-allocated.")
        if (today - row.txn_date).days > edit_days:
            raise InvalidStateError("This allocation is locked.")
        if row.completion_id is not None and len(self.rows_for_completion(row.completion_id)) > 1:
            raise InvalidStateError("This earning was adjusted by a parent and can no longer be changed.")
        if self.topup_for(family_id, kid_id, row.txn_date) is not None:
            raise InvalidStateError("Today's parent top-up was already posted.")
        for name, value in (("spend", spend), ("charity", charity), ("invest", invest), ("savings", savings)):
            require_non_negative(value, field=name)
        if invest != savings:
            raise ValidationError("savings must match the invest contribution.")
        if spend + charity + invest != row.amount_cents:
            raise ValidationError("spend + charity + invest must equal the earning amount.")

        prior = self.match_on_date(family_id, kid_id, row.txn_date, exclude_txn_id=row.id)
        match = match_for(savings, match_cap, prior, match_enabled=match_enabled)
        row.spend_cents = spend
        row.charity_cents = charity
        row.savings_cents = savings
        row.parent_match_cents = match
        row.invest_cents = savings + match
        row.parent_payable_cents = row.amount_cents + match
        self._session.add(row)
        self._session.flush()
        return row


__all__ = ["Ledger", "totals_of"]

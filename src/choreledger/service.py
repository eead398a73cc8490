"""High level service exposing the Chore Ledger remote procedures."""

from __future__ import annotations

from datetime import date, datetime
from secrets import compare_digest
from typing import Callable, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from . import chores, completions, goals, kids, reports, settings as family_settings, topups
from .access import resolve_caller, require_child
from .admin import AuditLog
from .api import ApiExporter
from .exceptions import UnauthorizedError, ValidationError
from .ledger import Ledger
from .models import (
    AssignmentMode,
    Caller,
    CompletionSummary,
    Dashboard,
    GoalProgress,
    KidReport,
    LedgerPolicy,
    PendingApprovals,
    TodayBoard,
    TopupResult,
)
from .ops import HealthMonitor, StructuredLogger
from .persistence import (
    Chore,
    ChoreAssignment,
    ChoreCompletion,
    FamilySettings,
    Kid,
    KidGoal,
    LedgerTransaction,
    UserRole,
)
from .reports import parse_iso_date


class ChoreLedger:
    """Coordinate chore claims, approvals, the ledger and daily top-ups.

    Every public method takes the calling ``user_id`` first.  The caller's role
    is looked up again inside the method's own database session, and mutating
    methods commit exactly once, after the status change and its ledger
    posting have both been written.
    """

    __slots__ = ("_engine", "_policy", "_clock", "_logger", "_audit_log", "_health", "_api")

    def __init__(
        self,
        engine: Engine,
        *,
        policy: Optional[LedgerPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[StructuredLogger] = None,
        audit_log: Optional[AuditLog] = None,
    ) -> None:
        self._engine = engine
        self._policy = policy or LedgerPolicy()
        self._clock = clock or datetime.now
        self._logger = logger or StructuredLogger()
        self._audit_log = audit_log or AuditLog()
        self._health = HealthMonitor(engine)
        self._api = ApiExporter()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def policy(self) -> LedgerPolicy:
        return self._policy

    @property
    def api(self) -> ApiExporter:
        return self._api

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    def health(self) -> dict:
        return self._health.status()

    def today(self) -> date:
        return self._clock().date()

    def _session(self) -> Session:
        return Session(self._engine, expire_on_commit=False)

    def _record(self, caller: Caller, action: str, target: str, **details: object) -> None:
        self._audit_log.record(
            caller.user_id,
            action,
            target,
            details={"family_id": caller.family_id, **details},
            timestamp=self._clock(),
        )
        self._logger.log(action, actor=caller.user_id, family_id=caller.family_id, target=target, **details)

    def _date(self, value: Optional[str | date], *, field: str, default: Optional[date] = None) -> date:
        parsed = parse_iso_date(value, field=field) or default
        if parsed is None:
            raise ValidationError(f"{field} is required.")
        return parsed

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    def authenticate(self, user_id: str, pin: str) -> Caller:
        with self._session() as session:
            row = session.get(UserRole, user_id) if user_id else None
            if row is None or not row.pin or not compare_digest(row.pin, pin or ""):
                self._logger.log("login_failed", user_id=user_id)
                raise UnauthorizedError("Invalid user or PIN.")
            caller = resolve_caller(session, user_id)
        self._logger.log("login", actor=caller.user_id, role=caller.role.value, family_id=caller.family_id)
        return caller

    def whoami(self, user_id: Optional[str]) -> Caller:
        with self._session() as session:
            return resolve_caller(session, user_id)

    # ------------------------------------------------------------------
    # Remote procedures
    # ------------------------------------------------------------------
    def record_chore_completion(self, user_id: str, chore_id: int) -> ChoreCompletion:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            completion = completions.record_completion(session, caller, chore_id, self.today(), now=self._clock())
            session.commit()
        self._record(caller, "record_chore_completion", f"completion:{completion.id}", chore_id=chore_id)
        return completion

    def kid_revert_pending_completion(self, user_id: str, completion_id: int) -> ChoreCompletion:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            completion = completions.revert_pending(session, caller, completion_id)
            session.commit()
        self._record(caller, "kid_revert_pending_completion", f"completion:{completion_id}")
        return completion

    def mom_approve_completion(self, user_id: str, completion_id: int) -> LedgerTransaction:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            completion, txn = completions.approve(session, caller, completion_id, policy=self._policy, now=self._clock())
            session.commit()
        self._record(
            caller,
            "mom_approve_completion",
            f"completion:{completion.id}",
            txn_id=txn.id,
            amount=txn.amount_cents,
            parent_match=txn.parent_match_cents,
        )
        return txn

    def mom_reject_completion(self, user_id: str, completion_id: int, notes: Optional[str] = None) -> ChoreCompletion:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            completion = completions.reject(session, caller, completion_id, notes, policy=self._policy, now=self._clock())
            session.commit()
        self._record(caller, "mom_reject_completion", f"completion:{completion_id}", notes=completion.review_notes)
        return completion

    def dad_adjust_completion(
        self,
        user_id: str,
        completion_id: int,
        new_amount_cents: int,
        spend_pct: int,
        charity_pct: int,
        savings_pct: int,
    ) -> Optional[LedgerTransaction]:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            _, txn = completions.adjust(
                session,
                caller,
                completion_id,
                new_amount_cents,
                spend_pct,
                charity_pct,
                savings_pct,
                policy=self._policy,
                now=self._clock(),
            )
            session.commit()
        self._record(
            caller,
            "dad_adjust_completion",
            f"completion:{completion_id}",
            new_amount=new_amount_cents,
            txn_id=txn.id if txn else None,
            delta=txn.amount_cents if txn else 0,
        )
        return txn

    def dad_revoke_completion(self, user_id: str, completion_id: int) -> Optional[LedgerTransaction]:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            _, txn = completions.revoke(session, caller, completion_id, policy=self._policy, now=self._clock())
            session.commit()
        self._record(
            caller,
            "dad_revoke_completion",
            f"completion:{completion_id}",
            txn_id=txn.id if txn else None,
            reversed_amount=-txn.amount_cents if txn else 0,
        )
        return txn

    def dad_backfill_commit(
        self,
        user_id: str,
        chore_id: int,
        kid_id: int,
        completed_date: str | date,
        notes: Optional[str] = None,
    ) -> LedgerTransaction:
        completed_on = self._date(completed_date, field="completed_date")
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            completion, txn = completions.backfill(
                session,
                caller,
                chore_id,
                kid_id,
                completed_on,
                notes,
                policy=self._policy,
                now=self._clock(),
                today=self.today(),
            )
            session.commit()
        self._record(
            caller,
            "dad_backfill_commit",
            f"completion:{completion.id}",
            kid_id=kid_id,
            chore_id=chore_id,
            completed_date=completed_on.isoformat(),
            txn_id=txn.id,
        )
        return txn

    def generate_daily_topups(self, user_id: str, txn_date: Optional[str | date] = None) -> List[TopupResult]:
        target = self._date(txn_date, field="date", default=self.today())
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            results = topups.generate_daily_topups(session, caller, target, policy=self._policy, now=self._clock())
        self._record(
            caller,
            "generate_daily_topups",
            f"topups:{target.isoformat()}",
            posted=[result.kid_id for result in results if result.posted],
            already_applied=[result.kid_id for result in results if result.already_applied],
            corrected=[result.kid_id for result in results if result.corrected],
        )
        return results

    def update_allocation(
        self,
        user_id: str,
        txn_id: int,
        spend_cents: int,
        charity_cents: int,
        invest_cents: int,
        savings_cents: int,
    ) -> LedgerTransaction:
        with self._session() as session:
            caller = require_child(resolve_caller(session, user_id))
            current = family_settings.load_settings(session, caller.family_id, self._policy)
            txn = Ledger(session, lock_months=self._policy.invest_lock_months).override_allocation(
                txn_id,
                family_id=caller.family_id,
                kid_id=caller.kid_id,
                today=self.today(),
                spend=spend_cents,
                charity=charity_cents,
                invest=invest_cents,
                savings=savings_cents,
                match_cap=current.match_cap_cents_per_kid_per_day,
                match_enabled=current.match_enabled,
                edit_days=self._policy.allocation_edit_days,
            )
            session.commit()
        self._record(
            caller,
            "update_allocation",
            f"txn:{txn_id}",
            spend=txn.spend_cents,
            charity=txn.charity_cents,
            savings=txn.savings_cents,
            parent_match=txn.parent_match_cents,
        )
        return txn

    # ------------------------------------------------------------------
    # Chores and assignments
    # ------------------------------------------------------------------
    def create_chore(self, user_id: str, title: str, price: int) -> Chore:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            chore = chores.create_chore(session, caller, title, price, now=self._clock())
            session.commit()
        self._record(caller, "create_chore", f"chore:{chore.id}", title=chore.title, price=chore.price_cents)
        return chore

    def update_chore(
        self,
        user_id: str,
        chore_id: int,
        *,
        title: Optional[str] = None,
        price: Optional[int] = None,
        active: Optional[bool] = None,
    ) -> Chore:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            chore = chores.update_chore(session, caller, chore_id, title=title, price=price, active=active)
            session.commit()
        self._record(
            caller,
            "update_chore",
            f"chore:{chore_id}",
            title=chore.title,
            price=chore.price_cents,
            active=chore.active,
        )
        return chore

    def list_chores(self, user_id: str, *, include_inactive: bool = False) -> List[Chore]:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            return chores.list_chores(session, caller, include_inactive=include_inactive and caller.is_parent)

    def set_assignment(
        self,
        user_id: str,
        kid_id: int,
        chore_id: int,
        mode: AssignmentMode | str,
        manual_date: Optional[str | date] = None,
    ) -> Optional[ChoreAssignment]:
        scheduled = parse_iso_date(manual_date, field="manual_date")
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            assignment = chores.set_assignment(session, caller, kid_id, chore_id, mode, manual_date=scheduled)
            session.commit()
        self._record(
            caller,
            "set_assignment",
            f"kid:{kid_id}/chore:{chore_id}",
            mode=AssignmentMode(mode).value,
            manual_date=scheduled.isoformat() if scheduled else None,
        )
        return assignment

    def list_assignments(self, user_id: str, *, kid_id: Optional[int] = None) -> List[ChoreAssignment]:
        with self._session() as session:
            return chores.list_assignments(session, resolve_caller(session, user_id), kid_id=kid_id)

    def today_chores(self, user_id: str, *, kid_id: Optional[int] = None) -> TodayBoard:
        with self._session() as session:
            return chores.today_board(session, resolve_caller(session, user_id), self.today(), kid_id=kid_id)

    def pending_approvals(self, user_id: str) -> PendingApprovals:
        with self._session() as session:
            return chores.pending_approvals(session, resolve_caller(session, user_id))

    def recent_backfills(self, user_id: str, *, limit: int = 20) -> List[CompletionSummary]:
        with self._session() as session:
            return chores.recent_backfills(session, resolve_caller(session, user_id), limit=limit)

    # ------------------------------------------------------------------
    # Kid profiles
    # ------------------------------------------------------------------
    def list_kids(self, user_id: str) -> List[Kid]:
        with self._session() as session:
            return kids.list_kids(session, resolve_caller(session, user_id))

    def update_kid(
        self,
        user_id: str,
        kid_id: int,
        *,
        display_name: Optional[str] = None,
        avatar_emoji: Optional[str] = None,
        theme_color: Optional[str] = None,
    ) -> Kid:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            kid = kids.update_kid(
                session,
                caller,
                kid_id,
                display_name=display_name,
                avatar_emoji=avatar_emoji,
                theme_color=theme_color,
            )
            session.commit()
        self._record(
            caller,
            "update_kid",
            f"kid:{kid_id}",
            display_name=kid.display_name,
            avatar_emoji=kid.avatar_emoji,
            theme_color=kid.theme_color,
        )
        return kid

    # ------------------------------------------------------------------
    # Settings and goals
    # ------------------------------------------------------------------
    def get_settings(self, user_id: str) -> FamilySettings:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            current = family_settings.load_settings(session, caller.family_id, self._policy)
            session.commit()
        return current

    def update_settings(
        self,
        user_id: str,
        *,
        match_enabled: Optional[bool] = None,
        match_cap: Optional[int] = None,
        spend_pct: Optional[int] = None,
        charity_pct: Optional[int] = None,
        savings_pct: Optional[int] = None,
        invest_pct: Optional[int] = None,
    ) -> FamilySettings:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            updated = family_settings.update_settings(
                session,
                caller,
                policy=self._policy,
                now=self._clock(),
                match_enabled=match_enabled,
                match_cap=match_cap,
                spend_pct=spend_pct,
                charity_pct=charity_pct,
                savings_pct=savings_pct,
                invest_pct=invest_pct,
            )
            session.commit()
        self._record(caller, "update_settings", f"family:{caller.family_id}", **self._api.settings(updated))
        return updated

    def create_goal(self, user_id: str, kid_id: int, title: str, target: int) -> KidGoal:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            goal = goals.create_goal(session, caller, kid_id, title, target, now=self._clock())
            session.commit()
        self._record(caller, "create_goal", f"goal:{goal.id}", kid_id=kid_id, title=goal.title, goal_target=goal.target_cents)
        return goal

    def set_goal_active(self, user_id: str, goal_id: int, active: bool) -> KidGoal:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            goal = goals.set_goal_active(session, caller, goal_id, active)
            session.commit()
        self._record(caller, "resume_goal" if goal.active else "pause_goal", f"goal:{goal_id}")
        return goal

    def goals(self, user_id: str, *, kid_id: Optional[int] = None, include_paused: bool = False) -> List[GoalProgress]:
        with self._session() as session:
            caller = resolve_caller(session, user_id)
            return goals.goal_progress(session, caller, kid_id=kid_id, include_paused=include_paused)

    # ------------------------------------------------------------------
    # Dashboards and reports
    # ------------------------------------------------------------------
    def dashboard(self, user_id: str, *, kid_id: Optional[int] = None) -> Dashboard:
        with self._session() as session:
            return reports.dashboard(session, resolve_caller(session, user_id), today=self.today(), kid_id=kid_id)

    def transactions(
        self,
        user_id: str,
        *,
        kid_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[LedgerTransaction]:
        with self._session() as session:
            return reports.recent_transactions(
                session,
                resolve_caller(session, user_id),
                kid_id=kid_id,
                limit=self._policy.recent_limit if limit is None else limit,
            )

    def report(
        self,
        user_id: str,
        *,
        date_from: Optional[str | date] = None,
        date_to: Optional[str | date] = None,
    ) -> KidReport:
        start = parse_iso_date(date_from, field="from")
        end = parse_iso_date(date_to, field="to")
        with self._session() as session:
            return reports.kid_report(
                session,
                resolve_caller(session, user_id),
                today=self.today(),
                date_from=start,
                date_to=end,
            )

    def topup_status(self, user_id: str, txn_date: Optional[str | date] = None) -> List[TopupResult]:
        target = self._date(txn_date, field="date", default=self.today())
        with self._session() as session:
            return topups.topup_status(session, resolve_caller(session, user_id), target, policy=self._policy)


__all__ = ["ChoreLedger"]

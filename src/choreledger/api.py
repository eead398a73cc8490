"""Convert Chore Ledger rows and read models to JSON friendly dictionaries."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .models import (
    AuditEvent,
    CompletionSummary,
    Dashboard,
    GoalProgress,
    KidReport,
    LedgerTotals,
    PendingApprovals,
    TodayBoard,
    TopupResult,
)
from .money import format_currency
from .persistence import Chore, ChoreAssignment, ChoreCompletion, FamilySettings, Kid, KidGoal, LedgerTransaction


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ApiExporter:
    """Serialise ledger objects for the JSON API."""

    def totals(self, totals: LedgerTotals) -> Dict[str, object]:
        payload: Dict[str, object] = dict(totals.as_dict())
        payload["earned_display"] = format_currency(totals.amount)
        return payload

    def transaction(self, row: LedgerTransaction) -> Dict[str, object]:
        return {
            "id": row.id,
            "kid_id": row.kid_id,
            "completion_id": row.completion_id,
            "txn_date": _iso(row.txn_date),
            "source": row.source,
            "amount": row.amount_cents,
            "spend": row.spend_cents,
            "charity": row.charity_cents,
            "savings": row.savings_cents,
            "invest": row.invest_cents,
            "parent_match": row.parent_match_cents,
            "parent_payable": row.parent_payable_cents,
            "lock_until": _iso(row.lock_until),
            "description": row.description,
            "created_at": _iso(row.created_at),
        }

    def transactions(self, rows: Iterable[LedgerTransaction]) -> List[Dict[str, object]]:
        return [self.transaction(row) for row in rows]

    def completion(self, row: ChoreCompletion) -> Dict[str, object]:
        return {
            "id": row.id,
            "kid_id": row.kid_id,
            "chore_id": row.chore_id,
            "completed_date": _iso(row.completed_date),
            "submitted_at": _iso(row.submitted_at),
            "status": row.status,
            "source": row.source,
            "amount": row.amount_cents,
            "review_notes": row.review_notes,
            "reviewed_at": _iso(row.reviewed_at),
            "reviewed_by": row.reviewed_by,
        }

    def completion_summary(self, summary: CompletionSummary) -> Dict[str, object]:
        return {
            "completion_id": summary.completion_id,
            "kid_id": summary.kid_id,
            "kid_name": summary.kid_name,
            "chore_id": summary.chore_id,
            "chore_title": summary.chore_title,
            "amount": summary.amount,
            "completed_date": _iso(summary.completed_date),
            "status": summary.status,
            "source": summary.source,
            "submitted_at": _iso(summary.submitted_at),
            "notes": summary.notes,
        }

    def pending(self, queue: PendingApprovals) -> Dict[str, object]:
        return {
            "items": [self.completion_summary(item) for item in queue.items],
            "total": queue.total,
            "total_display": format_currency(queue.total),
        }

    def chore(self, chore: Chore) -> Dict[str, object]:
        return {
            "id": chore.id,
            "title": chore.title,
            "price": chore.price_cents,
            "price_display": format_currency(chore.price_cents),
            "active": chore.active,
        }

    def assignment(self, assignment: ChoreAssignment) -> Dict[str, object]:
        return {
            "id": assignment.id,
            "kid_id": assignment.kid_id,
            "chore_id": assignment.chore_id,
            "mode": "daily" if assignment.is_daily else "manual",
            "manual_date": _iso(assignment.manual_date),
        }

    def board(self, board: TodayBoard) -> Dict[str, object]:
        return {
            "kid_id": board.kid_id,
            "date": _iso(board.board_date),
            "items": [
                {
                    "chore_id": item.chore_id,
                    "title": item.title,
                    "price": item.price,
                    "is_daily": item.is_daily,
                    "completion_id": item.completion_id,
                    "status": item.status,
                }
                for item in board.items
            ],
            "approved_total": board.approved_total,
            "pending_total": board.pending_total,
        }

    def settings(self, settings: FamilySettings) -> Dict[str, object]:
        return {
            "match_enabled": settings.match_enabled,
            "match_cap_cents_per_kid_per_day": settings.match_cap_cents_per_kid_per_day,
            "default_spend_pct": settings.default_spend_pct,
            "default_charity_pct": settings.default_charity_pct,
            "default_savings_pct": settings.default_savings_pct,
            "updated_at": _iso(settings.updated_at),
        }

    def kid(self, kid: Kid) -> Dict[str, object]:
        return {
            "id": kid.id,
            "display_name": kid.display_name,
            "avatar_emoji": kid.avatar_emoji,
            "theme_color": kid.theme_color,
        }

    def goal(self, goal: KidGoal) -> Dict[str, object]:
        return {
            "id": goal.id,
            "kid_id": goal.kid_id,
            "title": goal.title,
            "target": goal.target_cents,
            "active": goal.active,
        }

    def goal_progress(self, progress: GoalProgress) -> Dict[str, object]:
        return {
            "goal_id": progress.goal_id,
            "kid_id": progress.kid_id,
            "title": progress.title,
            "target": progress.target,
            "saved": progress.saved,
            "remaining": progress.remaining,
            "percent": progress.percent(),
            "complete": progress.is_complete,
            "active": progress.active,
        }

    def topup(self, result: TopupResult) -> Dict[str, object]:
        return {
            "kid_id": result.kid_id,
            "date": _iso(result.txn_date),
            "savings": result.savings,
            "matched": result.matched,
            "posted": result.posted,
            "already_applied": result.already_applied,
            "txn_id": result.txn_id,
            "corrected": result.corrected,
        }

    def dashboard(self, view: Dashboard) -> Dict[str, object]:
        return {
            "kid_id": view.kid_id,
            "as_of": _iso(view.as_of),
            "totals": self.totals(view.totals),
            "invest_locked": view.locked_invest,
            "invest_unlocked": view.unlocked_invest,
        }

    def report(self, report: KidReport) -> Dict[str, object]:
        return {
            "from": _iso(report.date_from),
            "to": _iso(report.date_to),
            "kids": [
                {"kid_id": row.kid_id, "kid_name": row.kid_name, **self.totals(row.totals)}
                for row in report.rows
            ],
            "family_total": self.totals(report.family_total),
        }

    def audit_event(self, event: AuditEvent) -> Dict[str, object]:
        return {
            "actor": event.actor,
            "action": event.action,
            "target": event.target,
            "timestamp": _iso(event.timestamp),
            "details": dict(event.details),
        }


__all__ = ["ApiExporter"]

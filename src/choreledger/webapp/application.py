"""FastAPI frontend for the Chore Ledger.

Each remote procedure is exposed as ``POST /rpc/<name>`` taking form fields,
and the read models live under ``GET /api/...``.  The signed session cookie
carries only the caller's ``user_id``; roles are looked up again on every
request by :class:`~choreledger.service.ChoreLedger`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Form, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from starlette.middleware.sessions import SessionMiddleware

from ..exceptions import (
    ChoreLedgerError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ..models import LedgerPolicy
from ..ops import StructuredLogger
from ..persistence import create_db_and_tables, make_engine
from ..service import ChoreLedger
from .config import DATABASE_URL, LOG_PATH, SESSION_SECRET, load_policy

_STATUS_CODES = {
    UnauthorizedError: 403,
    NotFoundError: 404,
    InvalidStateError: 409,
    ValidationError: 400,
    ConflictError: 409,
}


def _status_for(request: Request, exc: ChoreLedgerError) -> int:
    if isinstance(exc, UnauthorizedError) and not request.session.get("user_id"):
        return 401
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 400


def _user_id(request: Request) -> Optional[str]:
    return request.session.get("user_id")


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def create_app(
    engine: Optional[Engine] = None,
    *,
    policy: Optional[LedgerPolicy] = None,
    ledger: Optional[ChoreLedger] = None,
    session_secret: str = SESSION_SECRET,
) -> FastAPI:
    """Build the web application around ``engine`` (or the configured database)."""

    if ledger is None:
        if engine is None:
            engine = make_engine(DATABASE_URL)
        create_db_and_tables(engine)
        ledger = ChoreLedger(
            engine,
            policy=policy or load_policy(),
            logger=StructuredLogger(path=Path(LOG_PATH) if LOG_PATH else None),
        )
    api = ledger.api

    app = FastAPI(title="Chore Ledger")
    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        same_site="lax",
        max_age=None,
    )
    app.state.ledger = ledger

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------
    @app.exception_handler(ChoreLedgerError)
    async def ledger_error_handler(request: Request, exc: ChoreLedgerError) -> JSONResponse:
        return JSONResponse({"error": exc.kind, "message": str(exc)}, status_code=_status_for(request, exc))

    @app.exception_handler(RequestValidationError)
    async def request_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted({str(error.get("loc", ("", ""))[-1]) for error in exc.errors()})
        return JSONResponse(
            {"error": ValidationError.kind, "message": f"Invalid or missing fields: {', '.join(fields)}"},
            status_code=400,
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------
    @app.post("/login")
    def login(request: Request, user_id: str = Form(...), pin: str = Form(...)):
        caller = ledger.authenticate(user_id.strip(), pin.strip())
        request.session["user_id"] = caller.user_id
        return {
            "user_id": caller.user_id,
            "role": caller.role.value,
            "parent_type": caller.parent_type.value if caller.parent_type else None,
            "family_id": caller.family_id,
            "kid_id": caller.kid_id,
        }

    @app.post("/logout")
    def logout(request: Request):
        request.session.clear()
        return {"ok": True}

    @app.get("/api/me")
    def me(request: Request):
        caller = ledger.whoami(_user_id(request))
        return {
            "user_id": caller.user_id,
            "role": caller.role.value,
            "parent_type": caller.parent_type.value if caller.parent_type else None,
            "family_id": caller.family_id,
            "kid_id": caller.kid_id,
        }

    @app.get("/healthz")
    def healthz():
        status = ledger.health()
        return JSONResponse(status, status_code=200 if status["database"] == "ok" else 503)

    # ------------------------------------------------------------------
    # Remote procedures
    # ------------------------------------------------------------------
    @app.post("/rpc/record_chore_completion")
    def record_chore_completion(request: Request, chore_id: int = Form(...)):
        completion = ledger.record_chore_completion(_user_id(request), chore_id)
        return api.completion(completion)

    @app.post("/rpc/kid_revert_pending_completion")
    def kid_revert_pending_completion(request: Request, completion_id: int = Form(...)):
        completion = ledger.kid_revert_pending_completion(_user_id(request), completion_id)
        return {"ok": True, "completion_id": completion.id}

    @app.post("/rpc/mom_approve_completion")
    def mom_approve_completion(request: Request, completion_id: int = Form(...)):
        txn = ledger.mom_approve_completion(_user_id(request), completion_id)
        return {"ok": True, "transaction": api.transaction(txn)}

    @app.post("/rpc/mom_reject_completion")
    def mom_reject_completion(request: Request, completion_id: int = Form(...), notes: str = Form("")):
        completion = ledger.mom_reject_completion(_user_id(request), completion_id, notes)
        return api.completion(completion)

    @app.post("/rpc/dad_adjust_completion")
    def dad_adjust_completion(
        request: Request,
        completion_id: int = Form(...),
        new_amount_cents: int = Form(...),
        spend_pct: int = Form(...),
        charity_pct: int = Form(...),
        savings_pct: int = Form(...),
    ):
        txn = ledger.dad_adjust_completion(
            _user_id(request),
            completion_id,
            new_amount_cents,
            spend_pct,
            charity_pct,
            savings_pct,
        )
        return {"ok": True, "transaction": api.transaction(txn) if txn else None}

    @app.post("/rpc/dad_revoke_completion")
    def dad_revoke_completion(request: Request, completion_id: int = Form(...)):
        txn = ledger.dad_revoke_completion(_user_id(request), completion_id)
        return {"ok": True, "transaction": api.transaction(txn) if txn else None}

    @app.post("/rpc/dad_backfill_commit")
    def dad_backfill_commit(
        request: Request,
        chore_id: int = Form(...),
        kid_id: int = Form(...),
        completed_date: str = Form(...),
        notes: str = Form(""),
    ):
        txn = ledger.dad_backfill_commit(_user_id(request), chore_id, kid_id, completed_date, notes)
        return {"ok": True, "transaction": api.transaction(txn)}

    @app.post("/rpc/generate_daily_topups")
    def generate_daily_topups(request: Request, txn_date: str = Form("", alias="date")):
        results = ledger.generate_daily_topups(_user_id(request), _blank_to_none(txn_date))
        return {
            "posted": [api.topup(result) for result in results if result.posted],
            "already_applied": [api.topup(result) for result in results if result.already_applied],
            "corrected": [api.topup(result) for result in results if result.corrected],
            "skipped": [
                api.topup(result) for result in results if not result.posted and not result.already_applied
            ],
        }

    @app.post("/rpc/update_allocation")
    def update_allocation(
        request: Request,
        txn_id: int = Form(...),
        spend_cents: int = Form(...),
        charity_cents: int = Form(...),
        invest_cents: int = Form(...),
        savings_cents: int = Form(...),
    ):
        txn = ledger.update_allocation(
            _user_id(request),
            txn_id,
            spend_cents,
            charity_cents,
            invest_cents,
            savings_cents,
        )
        return {"ok": True, "transaction": api.transaction(txn)}

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------
    @app.get("/api/dashboard")
    def dashboard(request: Request, kid_id: Optional[int] = Query(None)):
        return api.dashboard(ledger.dashboard(_user_id(request), kid_id=kid_id))

    @app.get("/api/report")
    def report(
        request: Request,
        date_from: Optional[str] = Query(None, alias="from"),
        date_to: Optional[str] = Query(None, alias="to"),
    ):
        return api.report(ledger.report(_user_id(request), date_from=date_from, date_to=date_to))

    @app.get("/api/transactions")
    def transactions(request: Request, kid_id: Optional[int] = Query(None), limit: Optional[int] = Query(None)):
        return {"transactions": api.transactions(ledger.transactions(_user_id(request), kid_id=kid_id, limit=limit))}

    @app.get("/api/approvals")
    def approvals(request: Request):
        return api.pending(ledger.pending_approvals(_user_id(request)))

    @app.get("/api/backfills")
    def backfills(request: Request, limit: int = Query(20)):
        items = ledger.recent_backfills(_user_id(request), limit=limit)
        return {"items": [api.completion_summary(item) for item in items]}

    @app.get("/api/chores/today")
    def today_chores(request: Request, kid_id: Optional[int] = Query(None)):
        return api.board(ledger.today_chores(_user_id(request), kid_id=kid_id))

    @app.get("/api/chores")
    def list_chores(request: Request, include_inactive: bool = Query(False)):
        chores = ledger.list_chores(_user_id(request), include_inactive=include_inactive)
        return {"chores": [api.chore(chore) for chore in chores]}

    @app.post("/api/chores")
    def create_chore(request: Request, title: str = Form(...), price: int = Form(...)):
        return api.chore(ledger.create_chore(_user_id(request), title, price))

    @app.post("/api/chores/{chore_id}")
    def update_chore(
        request: Request,
        chore_id: int,
        title: Optional[str] = Form(None),
        price: Optional[int] = Form(None),
        active: Optional[bool] = Form(None),
    ):
        chore = ledger.update_chore(_user_id(request), chore_id, title=title, price=price, active=active)
        return api.chore(chore)

    @app.get("/api/assignments")
    def list_assignments(request: Request, kid_id: Optional[int] = Query(None)):
        assignments = ledger.list_assignments(_user_id(request), kid_id=kid_id)
        return {"assignments": [api.assignment(assignment) for assignment in assignments]}

    @app.post("/api/assignments")
    def set_assignment(
        request: Request,
        kid_id: int = Form(...),
        chore_id: int = Form(...),
        mode: str = Form(...),
        manual_date: str = Form(""),
    ):
        assignment = ledger.set_assignment(_user_id(request), kid_id, chore_id, mode, _blank_to_none(manual_date))
        return {"assignment": api.assignment(assignment) if assignment else None}

    @app.get("/api/kids")
    def list_kids(request: Request):
        return {"kids": [api.kid(kid) for kid in ledger.list_kids(_user_id(request))]}

    @app.post("/api/kids/{kid_id}")
    def update_kid(
        request: Request,
        kid_id: int,
        display_name: Optional[str] = Form(None),
        avatar_emoji: Optional[str] = Form(None),
        theme_color: Optional[str] = Form(None),
    ):
        kid = ledger.update_kid(
            _user_id(request),
            kid_id,
            display_name=display_name,
            avatar_emoji=avatar_emoji,
            theme_color=theme_color,
        )
        return api.kid(kid)

    @app.get("/api/goals")
    def goals(request: Request, kid_id: Optional[int] = Query(None), include_paused: bool = Query(False)):
        progress = ledger.goals(_user_id(request), kid_id=kid_id, include_paused=include_paused)
        return {"goals": [api.goal_progress(item) for item in progress]}

    @app.post("/api/goals")
    def create_goal(request: Request, kid_id: int = Form(...), title: str = Form(...), target: int = Form(...)):
        return api.goal(ledger.create_goal(_user_id(request), kid_id, title, target))

    @app.post("/api/goals/{goal_id}/active")
    def set_goal_active(request: Request, goal_id: int, active: bool = Form(...)):
        return api.goal(ledger.set_goal_active(_user_id(request), goal_id, active))

    @app.get("/api/topups")
    def topup_status(request: Request, txn_date: Optional[str] = Query(None, alias="date")):
        results = ledger.topup_status(_user_id(request), _blank_to_none(txn_date))
        return {"kids": [api.topup(result) for result in results]}

    @app.get("/api/settings")
    def get_settings(request: Request):
        return api.settings(ledger.get_settings(_user_id(request)))

    @app.post("/api/settings")
    def update_settings(
        request: Request,
        match_enabled: Optional[bool] = Form(None),
        match_cap: Optional[int] = Form(None),
        spend_pct: Optional[int] = Form(None),
        charity_pct: Optional[int] = Form(None),
        savings_pct: Optional[int] = Form(None),
        invest_pct: Optional[int] = Form(None),
    ):
        updated = ledger.update_settings(
            _user_id(request),
            match_enabled=match_enabled,
            match_cap=match_cap,
            spend_pct=spend_pct,
            charity_pct=charity_pct,
            savings_pct=savings_pct,
            invest_pct=invest_pct,
        )
        return api.settings(updated)

    @app.get("/api/audit")
    def audit(request: Request, limit: int = Query(50)):
        caller = ledger.whoami(_user_id(request))
        if not caller.is_parent:
            raise UnauthorizedError("Parent access required.")
        entries = [
            entry for entry in ledger.audit_log.entries() if entry.details.get("family_id") == caller.family_id
        ]
        return {"entries": [api.audit_event(entry) for entry in entries[-limit:]] if limit > 0 else []}

    return app


__all__ = ["create_app"]

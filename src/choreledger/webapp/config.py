"""Configuration constants for the Chore Ledger web API."""
from __future__ import annotations

import os

from dotenv import load_dotenv

from ..models import LedgerPolicy, ParentType

load_dotenv()

SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
SQLITE_FILE_NAME = os.environ.get("CHORELEDGER_SQLITE", "choreledger.db")
DATABASE_URL = os.environ.get("CHORELEDGER_DATABASE_URL", f"sqlite:///{SQLITE_FILE_NAME}")
LOG_PATH = os.environ.get("CHORELEDGER_LOG_PATH", "")
INVEST_LOCK_MONTHS = int(os.environ.get("CHORELEDGER_INVEST_LOCK_MONTHS", "4"))
EDIT_WINDOW_DAYS = int(os.environ.get("CHORELEDGER_EDIT_WINDOW_DAYS", "0"))
APPROVER = os.environ.get("CHORELEDGER_APPROVER", ParentType.MOM.value)
OVERRIDE_APPROVER = os.environ.get("CHORELEDGER_OVERRIDE_APPROVER", ParentType.DAD.value)
DEFAULT_SPEND_PCT = int(os.environ.get("CHORELEDGER_DEFAULT_SPEND_PCT", "50"))
DEFAULT_CHARITY_PCT = int(os.environ.get("CHORELEDGER_DEFAULT_CHARITY_PCT", "20"))
DEFAULT_SAVINGS_PCT = int(os.environ.get("CHORELEDGER_DEFAULT_SAVINGS_PCT", "30"))
DEFAULT_MATCH_CAP = int(os.environ.get("CHORELEDGER_DEFAULT_MATCH_CAP", "5000"))
DEFAULT_MATCH_ENABLED = os.environ.get("CHORELEDGER_DEFAULT_MATCH_ENABLED", "1").lower() not in {"0", "false", "no"}
RECENT_LIMIT = int(os.environ.get("CHORELEDGER_RECENT_LIMIT", "50"))


def load_policy() -> LedgerPolicy:
    """Build the ledger policy from the environment."""

    return LedgerPolicy(
        invest_lock_months=INVEST_LOCK_MONTHS,
        allocation_edit_days=EDIT_WINDOW_DAYS,
        approver_parent_type=ParentType(APPROVER),
        override_parent_type=ParentType(OVERRIDE_APPROVER),
        default_spend_pct=DEFAULT_SPEND_PCT,
        default_charity_pct=DEFAULT_CHARITY_PCT,
        default_savings_pct=DEFAULT_SAVINGS_PCT,
        default_match_enabled=DEFAULT_MATCH_ENABLED,
        default_match_cap=DEFAULT_MATCH_CAP,
        recent_limit=RECENT_LIMIT,
    )


__all__ = [
    "APPROVER",
    "DATABASE_URL",
    "DEFAULT_CHARITY_PCT",
    "DEFAULT_MATCH_CAP",
    "DEFAULT_MATCH_ENABLED",
    "DEFAULT_SAVINGS_PCT",
    "DEFAULT_SPEND_PCT",
    "EDIT_WINDOW_DAYS",
    "INVEST_LOCK_MONTHS",
    "LOG_PATH",
    "OVERRIDE_APPROVER",
    "RECENT_LIMIT",
    "SESSION_SECRET",
    "SQLITE_FILE_NAME",
    "load_policy",
]

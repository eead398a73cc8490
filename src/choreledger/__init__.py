"""Chore Ledger package: chore approvals feeding an allocation ledger for kids."""

from .admin import AuditLog
from .allocation import Allocation, AllocationRule, allocate, lock_until, match_for
from .api import ApiExporter
from .exceptions import (
    ChoreLedgerError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from .ledger import Ledger
from .models import (
    AssignmentMode,
    Caller,
    CompletionSource,
    CompletionStatus,
    GoalProgress,
    LedgerPolicy,
    LedgerSource,
    LedgerTotals,
    ParentType,
    Role,
    TopupResult,
)
from .ops import HealthMonitor, StructuredLogger
from .persistence import create_db_and_tables, make_engine
from .service import ChoreLedger

__all__ = [
    "Allocation",
    "AllocationRule",
    "ApiExporter",
    "AssignmentMode",
    "AuditLog",
    "Caller",
    "ChoreLedger",
    "ChoreLedgerError",
    "CompletionSource",
    "CompletionStatus",
    "ConflictError",
    "GoalProgress",
    "HealthMonitor",
    "InvalidStateError",
    "Ledger",
    "LedgerPolicy",
    "LedgerSource",
    "LedgerTotals",
    "NotFoundError",
    "ParentType",
    "Role",
    "StructuredLogger",
    "TopupResult",
    "UnauthorizedError",
    "ValidationError",
    "allocate",
    "create_db_and_tables",
    "lock_until",
    "make_engine",
    "match_for",
]

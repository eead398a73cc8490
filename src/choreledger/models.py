"""Domain value objects used by the Chore Ledger package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    """Top level roles stored on ``user_roles``."""

    PARENT = "parent"
    CHILD = "child"


class ParentType(str, Enum):
    """Secondary attribute distinguishing the two approver parents."""

    MOM = "mom"
    DAD = "dad"


class CompletionStatus(str, Enum):
    """Lifecycle of a chore completion claim."""

    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVOKED = "REVOKED"


ACTIVE_COMPLETION_STATUSES = (CompletionStatus.PENDING_APPROVAL.value, CompletionStatus.APPROVED.value)


class CompletionSource(str, Enum):
    """How a completion entered the system."""

    KID_SUBMIT = "KID_SUBMIT"
    DAD_BACKFILL = "DAD_BACKFILL"


class LedgerSource(str, Enum):
    """Kinds of money-moving events recorded in the ledger."""

    CHORE_EARNING = "CHORE_EARNING"
    MANUAL_BACKFILL = "MANUAL_BACKFILL"
    ADJUSTMENT = "ADJUSTMENT"
    REVERSAL = "REVERSAL"
    PARENT_TOPUP = "PARENT_TOPUP"
    TOPUP_CORRECTION = "TOPUP_CORRECTION"


# Rows that make up a kid's earnings; adjustments and reversals net against them.
EARNING_SOURCES = (
    LedgerSource.CHORE_EARNING.value,
    LedgerSource.MANUAL_BACKFILL.value,
    LedgerSource.ADJUSTMENT.value,
    LedgerSource.REVERSAL.value,
)

# Parent match payments for a day: the top-up row and any later corrections to it.
TOPUP_SOURCES = (LedgerSource.PARENT_TOPUP.value, LedgerSource.TOPUP_CORRECTION.value)


class AssignmentMode(str, Enum):
    """Schedule mode for a (kid, chore) cell on the assignment sheet."""

    NONE = "none"
    DAILY = "daily"
    MANUAL = "manual"


@dataclass(slots=True, frozen=True)
class Caller:
    """Identity and capabilities of the user behind a single request."""

    user_id: str
    role: Role
    family_id: int
    parent_type: Optional[ParentType] = None
    kid_id: Optional[int] = None

    @property
    def is_parent(self) -> bool:
        return self.role is Role.PARENT

    @property
    def is_child(self) -> bool:
        return self.role is Role.CHILD and self.kid_id is not None


@dataclass(slots=True, frozen=True)
class LedgerPolicy:
    """Tunable rules for approvals, allocation defaults and invest locking."""

    invest_lock_months: int = 4
    allocation_edit_days: int = 0
    approver_parent_type: ParentType = ParentType.MOM
    override_parent_type: ParentType = ParentType.DAD
    default_spend_pct: int = 50
    default_charity_pct: int = 20
    default_savings_pct: int = 30
    default_match_enabled: bool = True
    default_match_cap: int = 5000
    recent_limit: int = 50


@dataclass(slots=True)
class LedgerTotals:
    """Summed monetary fields over a set of ledger rows."""

    amount: int = 0
    spend: int = 0
    charity: int = 0
    savings: int = 0
    invest: int = 0
    match: int = 0
    payable: int = 0

    def __add__(self, other: "LedgerTotals") -> "LedgerTotals":
        return LedgerTotals(
            amount=self.amount + other.amount,
            spend=self.spend + other.spend,
            charity=self.charity + other.charity,
            savings=self.savings + other.savings,
            invest=self.invest + other.invest,
            match=self.match + other.match,
            payable=self.payable + other.payable,
        )

    def __neg__(self) -> "LedgerTotals":
        return LedgerTotals(
            amount=-self.amount,
            spend=-self.spend,
            charity=-self.charity,
            savings=-self.savings,
            invest=-self.invest,
            match=-self.match,
            payable=-self.payable,
        )

    def __sub__(self, other: "LedgerTotals") -> "LedgerTotals":
        return self + (-other)

    @property
    def is_zero(self) -> bool:
        return not any(self.as_dict().values())

    def as_dict(self) -> Dict[str, int]:
        return {
            "earned": self.amount,
            "spend": self.spend,
            "charity": self.charity,
            "savings": self.savings,
            "invest": self.invest,
            "parent_match": self.match,
            "parent_payable": self.payable,
        }


@dataclass(slots=True)
class TopupResult:
    """Outcome of the top-up generator for one kid on one date."""

    kid_id: int
    txn_date: date
    savings: int
    matched: int
    posted: bool
    already_applied: bool = False
    txn_id: Optional[int] = None
    corrected: bool = False


@dataclass(slots=True)
class GoalProgress:
    """Progress of a kid savings goal measured against cumulative invest."""

    goal_id: int
    kid_id: int
    title: str
    target: int
    saved: int
    active: bool

    @property
    def remaining(self) -> int:
        return max(0, self.target - self.saved)

    @property
    def is_complete(self) -> bool:
        return self.saved >= self.target

    def percent(self) -> float:
        if self.target <= 0:
            return 100.0
        return round(min(100.0, self.saved * 100.0 / self.target), 1)


@dataclass(slots=True)
class CompletionSummary:
    """Completion joined with its kid and chore for parent queues."""

    completion_id: int
    kid_id: int
    kid_name: str
    chore_id: int
    chore_title: str
    amount: int
    completed_date: date
    status: str
    source: str
    submitted_at: datetime
    notes: Optional[str] = None


@dataclass(slots=True)
class PendingApprovals:
    items: List[CompletionSummary]
    total: int


@dataclass(slots=True)
class BoardItem:
    """One chore on a kid's board for a single day."""

    chore_id: int
    title: str
    price: int
    is_daily: bool
    completion_id: Optional[int] = None
    status: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == CompletionStatus.PENDING_APPROVAL.value

    @property
    def is_approved(self) -> bool:
        return self.status == CompletionStatus.APPROVED.value


@dataclass(slots=True)
class TodayBoard:
    kid_id: int
    board_date: date
    items: List[BoardItem]

    @property
    def approved_total(self) -> int:
        return sum(item.price for item in self.items if item.is_approved)

    @property
    def pending_total(self) -> int:
        return sum(item.price for item in self.items if item.is_pending)


@dataclass(slots=True)
class KidReportRow:
    kid_id: int
    kid_name: str
    totals: LedgerTotals


@dataclass(slots=True)
class KidReport:
    """Per-kid totals over a date range plus the family total row."""

    date_from: date
    date_to: date
    rows: List[KidReportRow]
    family_total: LedgerTotals


@dataclass(slots=True)
class Dashboard:
    """Ledger totals for a kid or the whole family."""

    family_id: int
    kid_id: Optional[int]
    totals: LedgerTotals
    locked_invest: int
    unlocked_invest: int
    as_of: date


@dataclass(slots=True)
class AuditEvent:
    """Represents an auditable mutating action."""

    actor: str
    action: str
    target: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    details: Dict[str, Any] = field(default_factory=dict)

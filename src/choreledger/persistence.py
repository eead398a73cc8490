"""Persistence and SQLModel definitions for the Chore Ledger."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Index, UniqueConstraint, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, SQLModel, create_engine

from .models import CompletionSource, CompletionStatus

_ACTIVE_COMPLETION_WHERE = "status IN ('PENDING_APPROVAL', 'APPROVED')"
_TOPUP_WHERE = "source = 'PARENT_TOPUP'"


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class Family(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Kid(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    display_name: str
    avatar_emoji: str = "🙂"
    theme_color: str = "#efe8ff"
    created_at: datetime = Field(default_factory=datetime.utcnow)


class UserRole(SQLModel, table=True):
    user_id: str = Field(primary_key=True)
    role: str  # parent|child
    family_id: int = Field(foreign_key="family.id", index=True)
    parent_type: Optional[str] = None  # mom|dad for parents
    kid_id: Optional[int] = Field(default=None, foreign_key="kid.id")
    pin: str = ""


class Chore(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    title: str
    price_cents: int
    active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ChoreAssignment(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("kid_id", "chore_id", name="uq_assignment_kid_chore"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    kid_id: int = Field(foreign_key="kid.id")
    chore_id: int = Field(foreign_key="chore.id")
    is_daily: bool = False
    manual_date: Optional[date] = None


class ChoreCompletion(SQLModel, table=True):
    __table_args__ = (
        Index(
            "uq_completion_active_kid_chore_date",
            "kid_id",
            "chore_id",
            "completed_date",
            unique=True,
            sqlite_where=text(_ACTIVE_COMPLETION_WHERE),
            postgresql_where=text(_ACTIVE_COMPLETION_WHERE),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    kid_id: int = Field(foreign_key="kid.id", index=True)
    chore_id: int = Field(foreign_key="chore.id")
    completed_date: date
    submitted_at: datetime = Field(default_factory=datetime.utcnow)
    status: str = Field(default=CompletionStatus.PENDING_APPROVAL.value, index=True)
    source: str = CompletionSource.KID_SUBMIT.value
    amount_cents: Optional[int] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None


class FamilySettings(SQLModel, table=True):
    family_id: int = Field(foreign_key="family.id", primary_key=True)
    match_enabled: bool = True
    match_cap_cents_per_kid_per_day: int = 5000
    default_spend_pct: int = 50
    default_charity_pct: int = 20
    default_savings_pct: int = 30
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class LedgerTransaction(SQLModel, table=True):
    __table_args__ = (
        Index(
            "uq_ledger_topup_family_kid_date",
            "family_id",
            "kid_id",
            "txn_date",
            unique=True,
            sqlite_where=text(_TOPUP_WHERE),
            postgresql_where=text(_TOPUP_WHERE),
        ),
        Index("ix_ledger_family_kid_date", "family_id", "kid_id", "txn_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id")
    kid_id: int = Field(foreign_key="kid.id")
    completion_id: Optional[int] = Field(default=None, foreign_key="chorecompletion.id", index=True)
    txn_date: date
    source: str
    amount_cents: int = 0
    spend_cents: int = 0
    charity_cents: int = 0
    savings_cents: int = 0
    invest_cents: int = 0
    parent_match_cents: int = 0
    parent_payable_cents: int = 0
    lock_until: Optional[date] = None
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)


class KidGoal(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    kid_id: int = Field(foreign_key="kid.id")
    title: str
    target_cents: int
    active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ---------------------------------------------------------------------------
# Database initialisation
# ---------------------------------------------------------------------------
def make_engine(url: str) -> Engine:
    """Create an engine for ``url``; in-memory SQLite shares one connection."""

    if url.startswith("sqlite"):
        if url in {"sqlite://", "sqlite:///:memory:"}:
            return create_engine(
                url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(url, echo=False)


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


__all__ = [
    "Chore",
    "ChoreAssignment",
    "ChoreCompletion",
    "Family",
    "FamilySettings",
    "Kid",
    "KidGoal",
    "LedgerTransaction",
    "UserRole",
    "create_db_and_tables",
    "make_engine",
]

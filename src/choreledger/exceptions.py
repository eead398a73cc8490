"""Custom exception hierarchy for the Chore Ledger package."""

from __future__ import annotations


class ChoreLedgerError(Exception):
    """Base class for all Chore Ledger specific errors."""

    kind = "error"


class UnauthorizedError(ChoreLedgerError):
    """Raised when the caller lacks the role or capability for an action."""

    kind = "unauthorized"


class NotFoundError(ChoreLedgerError):
    """Raised when a referenced completion, chore, kid or transaction is absent."""

    kind = "not_found"


class InvalidStateError(ChoreLedgerError):
    """Raised when an action is attempted from a state that disallows it."""

    kind = "invalid_state"


class ValidationError(ChoreLedgerError):
    """Raised for malformed input such as negative amounts or bad percentages."""

    kind = "validation"


class ConflictError(ChoreLedgerError):
    """Raised when an action would duplicate an active record."""

    kind = "conflict"

"""Caller identity and capability checks.

Every service call resolves the caller from ``user_roles`` inside its own
database session.  Nothing here is cached between calls, so a role change is
visible to the very next request.
"""

from __future__ import annotations

from typing import Optional

from sqlmodel import Session

from .exceptions import NotFoundError, UnauthorizedError
from .models import Caller, ParentType, Role
from .persistence import Kid, UserRole


def resolve_caller(session: Session, user_id: Optional[str]) -> Caller:
    if not user_id:
        raise UnauthorizedError("Sign in required.")
    row = session.get(UserRole, user_id)
    if row is None:
        raise UnauthorizedError("Your account is missing a role assignment.")
    try:
        role = Role(row.role)
    except ValueError as exc:
        raise UnauthorizedError(f"Unknown role '{row.role}'.") from exc
    parent_type: Optional[ParentType] = None
    if role is Role.PARENT and row.parent_type:
        try:
            parent_type = ParentType(row.parent_type)
        except ValueError:
            parent_type = None
    if role is Role.CHILD and row.kid_id is None:
        raise UnauthorizedError("Child account is not linked to a kid.")
    return Caller(
        user_id=row.user_id,
        role=role,
        family_id=row.family_id,
        parent_type=parent_type,
        kid_id=row.kid_id if role is Role.CHILD else None,
    )


def require_parent(caller: Caller) -> Caller:
    if not caller.is_parent:
        raise UnauthorizedError("Parent access required.")
    return caller


def require_parent_type(caller: Caller, parent_type: ParentType) -> Caller:
    require_parent(caller)
    if caller.parent_type is not parent_type:
        raise UnauthorizedError(f"Only {parent_type.value.title()} can do that.")
    return caller


def require_child(caller: Caller) -> Caller:
    if not caller.is_child:
        raise UnauthorizedError("This action is for child accounts.")
    return caller


def family_kid(session: Session, caller: Caller, kid_id: int) -> Kid:
    """Return kid ``kid_id`` if it belongs to the caller's family."""

    kid = session.get(Kid, kid_id)
    if kid is None or kid.family_id != caller.family_id:
        raise NotFoundError(f"Kid {kid_id} not found.")
    return kid


__all__ = [
    "family_kid",
    "require_child",
    "require_parent",
    "require_parent_type",
    "resolve_caller",
]

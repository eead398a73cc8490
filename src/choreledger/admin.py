"""Audit trail for mutating ledger actions."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from .models import AuditEvent


class AuditLog:
    """Collect who did what to which completion, transaction or setting."""

    def __init__(self) -> None:
        self._entries: list[AuditEvent] = []

    def record(
        self,
        actor: str,
        action: str,
        target: str,
        *,
        details: Optional[dict] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            actor=actor,
            action=action,
            target=target,
            timestamp=timestamp or datetime.utcnow(),
            details=dict(details or {}),
        )
        self._entries.append(event)
        return event

    def entries(
        self,
        *,
        actor: str | None = None,
        action: str | None = None,
        target: str | None = None,
    ) -> tuple[AuditEvent, ...]:
        records = self._entries
        if actor is not None:
            records = [entry for entry in records if entry.actor == actor]
        if action is not None:
            records = [entry for entry in records if entry.action == action]
        if target is not None:
            records = [entry for entry in records if entry.target == target]
        return tuple(records)

    def latest(self) -> AuditEvent | None:
        return self._entries[-1] if self._entries else None


__all__ = ["AuditLog"]

"""Operational utilities for the Chore Ledger."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


class HealthMonitor:
    """Aggregate runtime health information for the status endpoint."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self.database_online = True
        self.last_error: Optional[str] = None
        self.checked_at: Optional[datetime] = None

    def check_database(self) -> bool:
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            self.database_online = False
            self.last_error = str(exc)
        else:
            self.database_online = True
            self.last_error = None
        self.checked_at = datetime.utcnow()
        return self.database_online

    def status(self) -> dict:
        self.check_database()
        return {
            "database": "ok" if self.database_online else "down",
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
            "error": self.last_error,
        }


class StructuredLogger:
    """Write JSON lines log entries for admin inspection."""

    def __init__(self, *, path: Path | None = None, max_entries: int = 1000) -> None:
        self.path = path
        self._max_entries = max_entries
        self._entries: list[dict] = []

    def log(self, event_type: str, **fields: object) -> dict:
        entry = {"timestamp": datetime.utcnow().isoformat(), "event": event_type, **fields}
        self._entries.append(entry)
        if len(self._entries) > self._max_entries:
            del self._entries[: len(self._entries) - self._max_entries]
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def tail(self, limit: int = 50, *, event: str | None = None) -> tuple[dict, ...]:
        entries = self._entries
        if event is not None:
            entries = [entry for entry in entries if entry["event"] == event]
        return tuple(entries[-limit:]) if limit > 0 else ()


__all__ = ["HealthMonitor", "StructuredLogger"]

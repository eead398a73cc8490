"""Chore Ledger web application package.

``choreledger.webapp:app`` is built on first access so importing the package
(for ``create_app`` in tests, say) never touches the configured database.
"""
from __future__ import annotations

from typing import Any, List

from fastapi import FastAPI

from .application import create_app

_APP: FastAPI | None = None

__all__: List[str] = ["app", "create_app"]


def __getattr__(name: str) -> Any:
    global _APP
    if name == "app":
        if _APP is None:
            _APP = create_app()
        return _APP
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> List[str]:
    return sorted(set(globals()) | set(__all__))

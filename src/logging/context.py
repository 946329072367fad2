# src/logging/context.py — v1
"""Contextual logging support: attach batch_id and unit path to log records.

Each dispatched unit runs in its own asyncio task, which copies the current
context at creation time, so setting the unit inside the task never leaks
into sibling transfers.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_batch_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "batch_id", default=None
)
_unit: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "unit", default=None
)


@dataclass
class LogContext:
    """Snapshot of current logging context."""

    batch_id: str | None = None
    unit: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(batch_id=_batch_id.get(), unit=_unit.get())


def set_batch_context(batch_id: str) -> None:
    """Set batch-level context (called when a batch starts running)."""
    _batch_id.set(batch_id)
    _unit.set(None)


def set_unit_context(unit: str) -> None:
    """Set unit-level context (called inside each unit's task)."""
    _unit.set(unit)


def clear_context() -> None:
    """Reset all context variables."""
    _batch_id.set(None)
    _unit.set(None)

# src/core/models.py — v1
"""Shared Pydantic domain models and status vocabularies.

Backends produce Entry objects; the transfer engine consumes them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

UnitStatus = Literal["queued", "started", "done", "error", "skipped"]
BatchStatus = Literal["calculating", "queued", "started", "done", "partial", "error"]
TransferMode = Literal["copy", "move"]

TERMINAL_UNIT_STATUSES: frozenset[str] = frozenset({"done", "error", "skipped"})
TERMINAL_BATCH_STATUSES: frozenset[str] = frozenset({"done", "partial", "error"})

# Pseudo-entries some backends include in listings
PARENT_ENTRY_NAMES: frozenset[str] = frozenset({".", ".."})


class Entry(BaseModel):
    """Metadata of one file or directory as reported by a backend.

    ``dir`` is the backend path of the enclosing directory and ``name`` the
    full entry name (extension included), so ``backend.join(dir, name)`` is
    the entry's own path.
    """

    model_config = ConfigDict(frozen=True)

    dir: str
    name: str
    size: int = 0
    is_dir: bool = False
    mtime: datetime | None = None
    mode: int = 0
    readonly: bool = False

    @property
    def extension(self) -> str:
        """Extension including the dot, empty for directories and dotfiles."""
        if self.is_dir:
            return ""
        stem, dot, ext = self.name.rpartition(".")
        return f".{ext}" if dot and stem else ""

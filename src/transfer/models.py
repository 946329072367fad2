# src/transfer/models.py — v1
"""Transfer domain models: TransferUnit, UnitOutcome, TransferReport, BatchEvent.

Sub-paths are relative to the batch root, always "/"-separated whatever the
backend's own separator, and "" for the root itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field

from batchxfer.core.models import (
    TERMINAL_UNIT_STATUSES,
    BatchStatus,
    Entry,
    TransferMode,
    UnitStatus,
)

ROOT_SUB_PATH = ""


def join_sub_path(sub_path: str, name: str) -> str:
    """Append ``name`` to a batch-relative sub-path."""
    return f"{sub_path}/{name}" if sub_path else name


def is_within(sub_path: str, dir_path: str) -> bool:
    """True if ``sub_path`` is ``dir_path`` or lies beneath it."""
    return sub_path == dir_path or sub_path.startswith(dir_path + "/")


def split_sub_path(sub_path: str) -> list[str]:
    """Split a sub-path into its name segments ([] for the root)."""
    return [part for part in sub_path.split("/") if part]


@dataclass
class TransferUnit:
    """One file or directory of a batch, with its own state machine.

    ``sub_path`` is the source-side directory holding the entry, relative to
    the batch root. ``ready`` turns True once the destination directory for
    that sub-path exists, and never turns back.
    """

    entry: Entry
    sub_path: str = ROOT_SUB_PATH
    status: UnitStatus = "queued"
    progress: int = 0
    ready: bool = False
    dest_name: str | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def is_dir(self) -> bool:
        return self.entry.is_dir

    @property
    def rel_path(self) -> str:
        """Source path of the entry relative to the batch root."""
        return join_sub_path(self.sub_path, self.entry.name)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_UNIT_STATUSES

    @property
    def dispatchable(self) -> bool:
        return self.status == "queued" and self.ready

    def mark_ready(self) -> None:
        self.ready = True


class UnitOutcome(BaseModel):
    """Final state of one unit, as enumerated in the report."""

    path: str
    dest_path: str | None = None
    is_dir: bool
    size: int = 0
    status: UnitStatus
    progress: int = 0
    error: str | None = None
    error_kind: str | None = None


class TransferReport(BaseModel):
    """Summary of a finished (or aborted) batch."""

    batch_id: str
    mode: TransferMode = "copy"
    status: BatchStatus
    source: str
    destination: str
    total_bytes: int = 0
    transferred_bytes: int = 0
    units: list[UnitOutcome] = Field(default_factory=list)
    cancelled: bool = False
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def progress(self) -> float:
        if self.total_bytes == 0:
            return 1.0
        return min(1.0, self.transferred_bytes / self.total_bytes)

    @property
    def files(self) -> list[UnitOutcome]:
        return [u for u in self.units if not u.is_dir]

    @property
    def succeeded(self) -> list[UnitOutcome]:
        return [u for u in self.units if u.status == "done"]

    @property
    def failed(self) -> list[UnitOutcome]:
        return [u for u in self.units if u.status == "error"]

    @property
    def skipped(self) -> list[UnitOutcome]:
        return [u for u in self.units if u.status == "skipped"]

    @property
    def pending(self) -> list[UnitOutcome]:
        """Units never dispatched (only after cancellation)."""
        return [u for u in self.units if u.status in ("queued", "started")]


@dataclass(frozen=True)
class BatchEvent:
    """Notification published on a batch's event channel."""

    kind: Literal["status", "progress", "unit"]
    batch_id: str
    status: BatchStatus
    progress: float
    transferred_bytes: int
    total_bytes: int
    unit: str | None = None
    unit_status: UnitStatus | None = None

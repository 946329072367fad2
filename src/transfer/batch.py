# src/transfer/batch.py — v2
"""Batch: one move/copy operation spanning many files and directories.

Lifecycle:
    calculating --expand()--> queued --start()--> started --> done | partial | error

The coroutine running ``start()`` is the only owner of the scheduling state
(``available_slots``, ``completed_count``, readiness). Each dispatched unit
runs in its own task and reports back by putting a completion message on a
queue; the owner consumes one message at a time, recycles the slot and
dispatches the next ready units. At most ``concurrency_limit`` units are
ever in flight.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from batchxfer.core.errors import (
    BackendError,
    BatchStateError,
    CancellationError,
    ExpansionError,
    TransferError,
    TransferIOError,
)
from batchxfer.core.models import (
    PARENT_ENTRY_NAMES,
    TERMINAL_BATCH_STATUSES,
    BatchStatus,
    Entry,
    TransferMode,
)
from batchxfer.logging.context import set_batch_context, set_unit_context
from batchxfer.transfer.conflicts import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RENAME_SUFFIX,
    resolve_destination_name,
)
from batchxfer.transfer.events import EventChannel, Listener
from batchxfer.transfer.expansion import expand_entries
from batchxfer.transfer.models import (
    ROOT_SUB_PATH,
    BatchEvent,
    TransferReport,
    TransferUnit,
    UnitOutcome,
    is_within,
    join_sub_path,
    split_sub_path,
)

if TYPE_CHECKING:
    from batchxfer.config.settings import Settings
    from batchxfer.storage.base_backend import BaseBackend

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 2


def generate_batch_id(timestamp: datetime | None = None) -> str:
    """Generate a batch id: yyyymmdd_hhmmss_{uuid4_short}."""
    ts = timestamp or datetime.now(timezone.utc)
    return f"{ts.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"


def error_kind(error: BaseException) -> str:
    """Name of the innermost backend error behind ``error``, else its own type."""
    kind = type(error).__name__
    cause = error.__cause__
    while cause is not None:
        if isinstance(cause, BackendError):
            kind = type(cause).__name__
        cause = cause.__cause__
    return kind


def last_path_part(path: str) -> str:
    """Last segment of a path, whichever separator the backend uses."""
    stripped = path.rstrip("/\\")
    if not stripped:
        return path
    return re.split(r"[/\\]", stripped)[-1]


def _duplicate_names(entries: list[Entry]) -> list[str]:
    """Names used by more than one top-level entry, sorted."""
    seen: set[str] = set()
    duplicates: set[str] = set()
    for entry in entries:
        if entry.name in PARENT_ENTRY_NAMES:
            continue
        if entry.name in seen:
            duplicates.add(entry.name)
        seen.add(entry.name)
    return sorted(duplicates)


@dataclass
class _Completion:
    """Message sent by a unit task to the owning scheduler."""

    unit: TransferUnit
    dest_name: str | None
    error: BaseException | None


class Batch:
    """Plain state container plus scheduler for one transfer batch.

    Args:
        src_backend: Backend the entries are read from.
        dst_backend: Backend the entries are written to (may be the same).
        src_path: Source root, used for naming and reporting.
        dst_path: Destination directory receiving the top-level entries.
        concurrency_limit: Max units in flight at once.
        mode: "copy" keeps sources, "move" deletes them once copied.
        rename_suffix: Separator between a clashing name and its counter.
        max_rename_attempts: Candidate names tried before giving up.
    """

    def __init__(
        self,
        src_backend: BaseBackend,
        dst_backend: BaseBackend,
        src_path: str,
        dst_path: str,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
        mode: TransferMode = "copy",
        rename_suffix: str = DEFAULT_RENAME_SUFFIX,
        max_rename_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")

        self.id = generate_batch_id()
        self.src_backend = src_backend
        self.dst_backend = dst_backend
        self.src_path = src_path
        self.dst_path = dst_path
        self.src_name = last_path_part(src_path)
        self.dst_name = last_path_part(dst_path)
        self.mode: TransferMode = mode
        self.concurrency_limit = concurrency_limit

        self.units: list[TransferUnit] = []
        self.status: BatchStatus = "calculating"
        self.total_bytes = 0
        self.transferred_bytes = 0
        self.available_slots = concurrency_limit
        self.completed_count = 0
        self.error: str | None = None
        self.events = EventChannel()

        self._rename_suffix = rename_suffix
        self._max_rename_attempts = max_rename_attempts
        self._cancel_event = asyncio.Event()
        # Source sub-path of a transferred directory -> its destination sub-path
        self._dest_dirs: dict[str, str] = {ROOT_SUB_PATH: ROOT_SUB_PATH}
        # Destination file paths chosen by units still writing them
        self._claimed: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._started_at: float | None = None
        self._finished_at: float | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        src_backend: BaseBackend,
        dst_backend: BaseBackend,
        src_path: str,
        dst_path: str,
    ) -> Batch:
        """Create a batch tuned by the transfer_* settings."""
        return cls(
            src_backend,
            dst_backend,
            src_path,
            dst_path,
            concurrency_limit=settings.transfer_concurrency_limit,
            mode=settings.transfer_mode,
            rename_suffix=settings.transfer_rename_suffix,
            max_rename_attempts=settings.transfer_max_rename_attempts,
        )

    # --- Read-only views ---

    @property
    def progress(self) -> float:
        """Fraction of file bytes transferred, in [0, 1]."""
        if self.total_bytes == 0:
            return 1.0
        return min(1.0, self.transferred_bytes / self.total_bytes)

    @property
    def in_flight(self) -> int:
        return self.concurrency_limit - self.available_slots

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BATCH_STATUSES

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Receive every BatchEvent; returns an unsubscribe callable."""
        return self.events.subscribe(listener)

    async def watch(self) -> AsyncIterator[BatchEvent]:
        """Yield events until the batch reaches a terminal status."""
        if self.is_terminal:
            return
        queue: asyncio.Queue[BatchEvent] = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while True:
                event = await queue.get()
                yield event
                if event.kind == "status" and event.status in TERMINAL_BATCH_STATUSES:
                    return
        finally:
            unsubscribe()

    # --- Expansion ---

    async def expand(self, entries: list[Entry]) -> list[TransferUnit]:
        """Build the unit list from the top-level source entries.

        Raises:
            BatchStateError: If the batch is no longer calculating.
            ValueError: If two top-level entries share a name.
            ExpansionError: If a subtree could not be listed.
            CancellationError: If cancel() was called meanwhile.
        """
        if self.status != "calculating":
            raise BatchStateError(f"Batch {self.id} already expanded ({self.status})")

        duplicates = _duplicate_names(entries)
        if duplicates:
            raise ValueError(
                f"Sources share a name ({', '.join(duplicates)}); transfer them in separate batches"
            )

        try:
            units = await expand_entries(
                self.src_backend, entries, cancel_event=self._cancel_event,
            )
        except (ExpansionError, CancellationError) as exc:
            self.error = f"{type(exc).__name__}: {exc}"
            self._set_status("error")
            raise

        self.units = units
        self.total_bytes = self._calc_total_size()
        logger.info(
            "Batch %s: %d units, %d bytes (%s -> %s)",
            self.id, len(units), self.total_bytes, self.src_path, self.dst_path,
        )
        self._set_status("queued")
        return units

    def _calc_total_size(self) -> int:
        # Directory sizes are metadata overhead, not transferred content
        return sum(u.entry.size for u in self.units if not u.is_dir)

    # --- Scheduling ---

    async def start(self) -> TransferReport:
        """Run every unit to a terminal state and return the report.

        Unit failures never raise here; they are listed in the report.
        Cancellation returns the report with status "error".

        Raises:
            BatchStateError: If the batch is not queued.
        """
        if self.status != "queued":
            raise BatchStateError(f"Batch {self.id} cannot start from {self.status!r}")

        set_batch_context(self.id)
        self._started_at = time.perf_counter()
        self.available_slots = self.concurrency_limit
        self.completed_count = 0
        self._set_status("started")

        completions: asyncio.Queue[_Completion] = asyncio.Queue()
        try:
            self._fill(completions)
            while self.completed_count < len(self.units):
                if self.in_flight == 0:
                    # Nothing running and nothing could be dispatched
                    if not self.cancelled:
                        self._skip_unreachable()
                    break
                completion = await completions.get()
                self._on_complete(completion)
                self._fill(completions)
        except asyncio.CancelledError:
            tasks = list(self._tasks)
            for task in tasks:
                task.cancel()
            # Let backends remove partial files before the report is final
            await asyncio.gather(*tasks, return_exceptions=True)
            self.error = "CancellationError: batch task cancelled"
            self._finished_at = time.perf_counter()
            self._set_status("error")
            raise

        if self.mode == "move" and not self.cancelled:
            await self._remove_moved_dirs()

        self._finish()
        return self.report()

    def cancel(self) -> None:
        """Stop dispatching; units already in flight run to their end."""
        if self.is_terminal or self.cancelled:
            return
        logger.info("Batch %s: cancel requested (%d in flight)", self.id, self.in_flight)
        self._cancel_event.set()

    def _next_unit(self) -> TransferUnit | None:
        return next((u for u in self.units if u.dispatchable), None)

    def _fill(self, completions: asyncio.Queue[_Completion]) -> None:
        if self.cancelled:
            return
        for _ in range(min(self.concurrency_limit, self.available_slots)):
            unit = self._next_unit()
            if unit is None:
                break
            self._dispatch(unit, completions)

    def _dispatch(self, unit: TransferUnit, completions: asyncio.Queue[_Completion]) -> None:
        self.available_slots -= 1
        unit.status = "started"
        self._publish_unit(unit)
        task = asyncio.create_task(
            self._run_unit(unit, completions), name=f"transfer:{unit.rel_path}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_unit(self, unit: TransferUnit, completions: asyncio.Queue[_Completion]) -> None:
        set_unit_context(unit.rel_path)
        dest_name: str | None = None
        error: BaseException | None = None
        try:
            dest_name = await self._transfer(unit)
        except asyncio.CancelledError:
            completions.put_nowait(
                _Completion(unit, None, CancellationError("transfer task cancelled")),
            )
            raise
        except TransferError as exc:
            logger.warning("Transfer of %s failed: %s", unit.rel_path, exc)
            error = exc
        except Exception as exc:
            logger.exception("Unexpected failure transferring %s", unit.rel_path)
            error = exc
        completions.put_nowait(_Completion(unit, dest_name, error))

    def _on_complete(self, completion: _Completion) -> None:
        unit = completion.unit
        self.completed_count += 1
        self.available_slots += 1

        if completion.error is not None:
            unit.status = "error"
            unit.error = str(completion.error) or type(completion.error).__name__
            unit.error_kind = error_kind(completion.error)
            self._publish_unit(unit)
            if unit.is_dir:
                self._skip_descendants(unit)
            return

        unit.status = "done"
        self._publish_unit(unit)
        if unit.is_dir and completion.dest_name is not None:
            self._dest_dirs[unit.rel_path] = join_sub_path(
                self._dest_dirs[unit.sub_path], completion.dest_name,
            )
            self._update_ready_state(unit.rel_path)

    def _update_ready_state(self, sub_path: str) -> None:
        for unit in self.units:
            if unit.sub_path == sub_path:
                unit.mark_ready()

    def _skip_descendants(self, failed: TransferUnit) -> None:
        reason = f"parent directory {failed.rel_path!r} failed: {failed.error}"
        for unit in self.units:
            if unit.status == "queued" and is_within(unit.sub_path, failed.rel_path):
                self._skip(unit, reason)

    def _skip_unreachable(self) -> None:
        for unit in self.units:
            if unit.status == "queued":
                self._skip(unit, "parent directory never became available")

    def _skip(self, unit: TransferUnit, reason: str) -> None:
        unit.status = "skipped"
        unit.error = reason
        unit.error_kind = "ParentFailed"
        self.completed_count += 1
        self._publish_unit(unit)

    # --- Per-unit transfer ---

    async def _transfer(self, unit: TransferUnit) -> str:
        """Create/resolve the unit at the destination; returns its final name."""
        dst_parent = self._dst_dir_path(self._dest_dirs[unit.sub_path])
        name = await resolve_destination_name(
            self.dst_backend,
            dst_parent,
            unit.entry,
            suffix=self._rename_suffix,
            max_attempts=self._max_rename_attempts,
            claimed=self._claimed,
        )
        unit.dest_name = name
        if unit.is_dir:
            return name

        src_file = self.src_backend.join(unit.entry.dir, unit.entry.name)
        dst_file = self.dst_backend.join(dst_parent, name)
        try:
            stream = await self.src_backend.get_stream(src_file)
            try:
                await self.dst_backend.put_stream(
                    stream, dst_file, lambda nbytes: self._on_data(unit, nbytes),
                )
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()
        except BackendError as exc:
            raise TransferIOError(f"{src_file} -> {dst_file}: {exc}") from exc
        finally:
            # Written files are visible to exists(); failed ones were removed
            self._claimed.discard(dst_file)

        logger.debug("Wrote %s (%d bytes)", dst_file, unit.progress)

        if self.mode == "move":
            try:
                await self.src_backend.delete(src_file)
            except BackendError as exc:
                logger.warning("Copied %s but could not remove the source: %s", src_file, exc)
        return name

    def _dst_dir_path(self, dest_sub_path: str) -> str:
        parts = split_sub_path(dest_sub_path)
        if not parts:
            return self.dst_path
        return self.dst_backend.join(self.dst_path, *parts)

    def _on_data(self, unit: TransferUnit, nbytes: int) -> None:
        if nbytes <= 0:
            return
        unit.progress += nbytes
        self.transferred_bytes += nbytes
        self._publish("progress")

    async def _remove_moved_dirs(self) -> None:
        # Reverse discovery order visits children before their parents
        for unit in reversed(self.units):
            if not unit.is_dir or unit.status != "done":
                continue
            subtree_done = all(
                u.status == "done" for u in self.units if is_within(u.sub_path, unit.rel_path)
            )
            if not subtree_done:
                continue
            src_dir = self.src_backend.join(unit.entry.dir, unit.entry.name)
            try:
                await self.src_backend.delete(src_dir)
            except BackendError as exc:
                logger.warning("Could not remove moved directory %s: %s", src_dir, exc)

    # --- Status and reporting ---

    def _finish(self) -> None:
        self._finished_at = time.perf_counter()
        pending = sum(1 for u in self.units if not u.is_terminal)

        if self.cancelled and pending:
            self.error = (
                f"CancellationError: cancelled with {pending} of {len(self.units)} units pending"
            )
            self._set_status("error")
        elif all(u.status == "done" for u in self.units):
            self._set_status("done")
        else:
            self._set_status("partial")

        logger.info(
            "Batch %s finished %s: %d/%d units done, %d/%d bytes",
            self.id,
            self.status,
            sum(1 for u in self.units if u.status == "done"),
            len(self.units),
            self.transferred_bytes,
            self.total_bytes,
        )

    def report(self) -> TransferReport:
        """Snapshot of the batch as a TransferReport."""
        duration = 0.0
        if self._started_at is not None:
            end = self._finished_at if self._finished_at is not None else time.perf_counter()
            duration = round(end - self._started_at, 3)

        return TransferReport(
            batch_id=self.id,
            mode=self.mode,
            status=self.status,
            source=self.src_path,
            destination=self.dst_path,
            total_bytes=self.total_bytes,
            transferred_bytes=self.transferred_bytes,
            units=[self._outcome(u) for u in self.units],
            cancelled=self.cancelled,
            error=self.error,
            duration_seconds=duration,
        )

    def _outcome(self, unit: TransferUnit) -> UnitOutcome:
        dest_path = None
        dest_dir = self._dest_dirs.get(unit.sub_path)
        if unit.dest_name is not None and dest_dir is not None:
            dest_path = join_sub_path(dest_dir, unit.dest_name)
        return UnitOutcome(
            path=unit.rel_path,
            dest_path=dest_path,
            is_dir=unit.is_dir,
            size=0 if unit.is_dir else unit.entry.size,
            status=unit.status,
            progress=unit.progress,
            error=unit.error,
            error_kind=unit.error_kind,
        )

    def _set_status(self, status: BatchStatus) -> None:
        self.status = status
        logger.debug("Batch %s status -> %s", self.id, status)
        self._publish("status")

    def _publish_unit(self, unit: TransferUnit) -> None:
        self._publish("unit", unit)

    def _publish(self, kind: str, unit: TransferUnit | None = None) -> None:
        if not len(self.events):
            return
        self.events.publish(BatchEvent(
            kind=kind,  # type: ignore[arg-type]
            batch_id=self.id,
            status=self.status,
            progress=self.progress,
            transferred_bytes=self.transferred_bytes,
            total_bytes=self.total_bytes,
            unit=unit.rel_path if unit is not None else None,
            unit_status=unit.status if unit is not None else None,
        ))

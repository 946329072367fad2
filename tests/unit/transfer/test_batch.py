# tests/unit/transfer/test_batch.py — v2
"""Tests for transfer/batch.py — scheduler, per-unit transfer, progress, cancellation."""

from __future__ import annotations

import asyncio

import pytest

from batchxfer.config.settings import Settings
from batchxfer.core.errors import (
    BackendPermissionError,
    BatchStateError,
    ExpansionError,
)
from batchxfer.storage.memory_backend import MemoryBackend
from batchxfer.transfer.batch import Batch, generate_batch_id, last_path_part
from batchxfer.transfer.models import BatchEvent


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class DenyingBackend(MemoryBackend):
    """Refuses to create directories with the given names."""

    def __init__(self, denied: set[str], **kwargs) -> None:
        super().__init__(**kwargs)
        self._denied_names = denied

    async def makedir(self, parent: str, name: str) -> str:
        if name in self._denied_names:
            raise BackendPermissionError(f"Permission denied: {parent}/{name}", name)
        return await super().makedir(parent, name)


class ExplodingBackend(MemoryBackend):
    """Raises a non-backend exception when writing one specific file."""

    def __init__(self, bad_path: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self._bad_path = bad_path

    async def put_stream(self, stream, path, on_chunk=None):
        if path == self._bad_path:
            raise RuntimeError("driver crashed")
        await super().put_stream(stream, path, on_chunk)


async def _expanded(backend, src="/src", dst="/dst", dst_backend=None, **kwargs) -> Batch:
    batch = Batch(backend, dst_backend or backend, src, dst, **kwargs)
    await batch.expand(await backend.list(src))
    return batch


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestBatchLifecycle:
    def test_initial_state(self, memory_backend):
        batch = Batch(memory_backend, memory_backend, "/src", "/dst/backup")
        assert batch.status == "calculating"
        assert batch.src_name == "src"
        assert batch.dst_name == "backup"
        assert batch.available_slots == batch.concurrency_limit == 2
        assert batch.units == []

    def test_invalid_concurrency(self, memory_backend):
        with pytest.raises(ValueError, match="concurrency_limit"):
            Batch(memory_backend, memory_backend, "/src", "/dst", concurrency_limit=0)

    def test_from_settings(self, memory_backend):
        settings = Settings(
            _env_file=None,
            transfer_concurrency_limit=5,
            transfer_mode="move",
            transfer_rename_suffix="-",
        )
        batch = Batch.from_settings(settings, memory_backend, memory_backend, "/src", "/dst")
        assert batch.concurrency_limit == 5
        assert batch.mode == "move"

    @pytest.mark.asyncio
    async def test_expand_sets_queued_and_total(self, sample_tree):
        batch = await _expanded(sample_tree)
        assert batch.status == "queued"
        assert len(batch.units) == 6
        assert batch.total_bytes == 18

    @pytest.mark.asyncio
    async def test_expand_twice_rejected(self, sample_tree):
        batch = await _expanded(sample_tree)
        with pytest.raises(BatchStateError):
            await batch.expand([])

    @pytest.mark.asyncio
    async def test_start_before_expand_rejected(self, memory_backend):
        batch = Batch(memory_backend, memory_backend, "/src", "/dst")
        with pytest.raises(BatchStateError):
            await batch.start()

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, sample_tree):
        batch = await _expanded(sample_tree)
        await batch.start()
        with pytest.raises(BatchStateError):
            await batch.start()

    @pytest.mark.asyncio
    async def test_expansion_failure_puts_batch_in_error(self, sample_tree):
        sample_tree.deny_read("/src/docs")
        batch = Batch(sample_tree, sample_tree, "/src", "/dst")
        with pytest.raises(ExpansionError):
            await batch.expand(await sample_tree.list("/src"))
        assert batch.status == "error"
        assert "ExpansionError" in batch.error
        assert batch.units == []

    @pytest.mark.asyncio
    async def test_empty_batch_is_done(self, memory_backend):
        batch = await _expanded(memory_backend)
        report = await batch.start()
        assert report.status == "done"
        assert report.units == []
        assert batch.progress == 1.0

    @pytest.mark.asyncio
    async def test_duplicate_top_level_names_rejected(self, memory_backend):
        memory_backend.add_file("/a/x.txt", b"aaaa")
        memory_backend.add_file("/b/x.txt", b"bbbb")
        batch = Batch(memory_backend, memory_backend, "/", "/dst", concurrency_limit=2)
        entries = [await memory_backend.stat("/a/x.txt"), await memory_backend.stat("/b/x.txt")]
        with pytest.raises(ValueError, match=r"share a name \(x\.txt\)"):
            await batch.expand(entries)
        assert batch.status == "calculating"
        assert batch.units == []
        assert memory_backend.paths() == ["/", "/a", "/a/x.txt", "/b", "/b/x.txt", "/dst", "/src"]


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

class TestScenarios:
    @pytest.mark.asyncio
    async def test_two_files_dispatch_immediately(self, memory_backend):
        memory_backend.add_file("/src/fileA", b"a" * 10)
        memory_backend.add_file("/src/fileB", b"b" * 20)
        batch = await _expanded(memory_backend)
        events: list[BatchEvent] = []
        batch.subscribe(events.append)

        report = await batch.start()

        unit_events = [(e.unit, e.unit_status) for e in events if e.kind == "unit"]
        assert unit_events[:2] == [("fileA", "started"), ("fileB", "started")]
        assert report.status == "done"
        assert report.total_bytes == 30
        assert report.transferred_bytes == 30
        assert memory_backend.read_file("/dst/fileA") == b"a" * 10
        assert memory_backend.read_file("/dst/fileB") == b"b" * 20

    @pytest.mark.asyncio
    async def test_directory_renamed_when_file_in_the_way(self, memory_backend):
        memory_backend.add_file("/src/dirX/fileC", b"ccccc")
        memory_backend.add_file("/dst/dirX", b"not a directory")
        batch = await _expanded(memory_backend)

        report = await batch.start()

        assert report.status == "done"
        assert memory_backend.read_file("/dst/dirX_1/fileC") == b"ccccc"
        assert memory_backend.read_file("/dst/dirX") == b"not a directory"
        outcomes = {u.path: u for u in report.units}
        assert outcomes["dirX"].dest_path == "dirX_1"
        assert outcomes["dirX/fileC"].dest_path == "dirX_1/fileC"

    @pytest.mark.asyncio
    async def test_file_renamed_past_existing_candidates(self, memory_backend):
        memory_backend.add_file("/src/fileD", b"new")
        memory_backend.add_file("/dst/fileD", b"old")
        memory_backend.add_file("/dst/fileD_1", b"older")
        batch = await _expanded(memory_backend)

        report = await batch.start()

        assert report.units[0].dest_path == "fileD_2"
        assert memory_backend.read_file("/dst/fileD_2") == b"new"
        assert memory_backend.read_file("/dst/fileD") == b"old"

    @pytest.mark.asyncio
    async def test_directory_creation_failure_is_partial(self):
        src = MemoryBackend(chunk_size=4)
        src.add_file("/src/top1/a.txt", b"aaaa")
        src.add_file("/src/top1/sub/b.txt", b"bbbb")
        src.add_file("/src/top2/c.txt", b"cccc")
        src.add_file("/src/root.txt", b"rr")
        dst = DenyingBackend({"top1"})
        dst.add_dir("/dst")
        batch = await _expanded(src, dst_backend=dst)

        report = await batch.start()

        outcomes = {u.path: u for u in report.units}
        assert outcomes["top1"].status == "error"
        assert outcomes["top1"].error_kind == "BackendPermissionError"
        for path in ("top1/a.txt", "top1/sub", "top1/sub/b.txt"):
            assert outcomes[path].status == "skipped"
            assert outcomes[path].error_kind == "ParentFailed"
        assert outcomes["top2"].status == "done"
        assert outcomes["top2/c.txt"].status == "done"
        assert outcomes["root.txt"].status == "done"
        assert report.status == "partial"
        assert batch.completed_count == len(batch.units)
        assert dst.read_file("/dst/top2/c.txt") == b"cccc"

    @pytest.mark.asyncio
    async def test_cancel_with_two_in_flight(self, counting_backend):
        for i in range(7):
            counting_backend.add_file(f"/src/f{i}.bin", bytes(40))
        batch = await _expanded(counting_backend)
        started: list[str] = []

        def on_event(event: BatchEvent) -> None:
            if event.kind == "unit" and event.unit_status == "started":
                started.append(event.unit)
                if len(started) == 2:
                    batch.cancel()

        batch.subscribe(on_event)
        report = await batch.start()

        assert started == ["f0.bin", "f1.bin"]
        assert report.status == "error"
        assert report.cancelled is True
        assert "CancellationError" in report.error
        statuses = [u.status for u in report.units]
        assert statuses[:2] == ["done", "done"]
        assert statuses[2:] == ["queued"] * 5
        assert len(counting_backend.write_order) == 2
        # Partial progress preserved
        assert report.transferred_bytes == 80

    @pytest.mark.asyncio
    async def test_renamed_file_never_lands_on_a_sibling(self, memory_backend):
        # x.txt is renamed to x.txt_1 while the source file x.txt_1 wants that name too
        memory_backend.add_file("/dst/x.txt", b"old")
        memory_backend.add_file("/src/x.txt", b"aaaa")
        memory_backend.add_file("/src/x.txt_1", b"bbbb")
        batch = await _expanded(memory_backend, concurrency_limit=2)

        report = await batch.start()

        assert report.status == "done"
        written = [p for p in memory_backend.paths() if p.startswith("/dst/")]
        assert len(written) == 3
        assert sorted(memory_backend.read_file(p) for p in written) == [b"aaaa", b"bbbb", b"old"]
        assert memory_backend.read_file("/dst/x.txt") == b"old"
        assert batch._claimed == set()

    @pytest.mark.asyncio
    async def test_task_cancel_waits_for_unit_tasks(self, counting_backend):
        for i in range(4):
            counting_backend.add_file(f"/src/f{i}.bin", bytes(400))
        batch = await _expanded(counting_backend, concurrency_limit=2)

        runner = asyncio.create_task(batch.start())
        while counting_backend.active_writes < 2:
            await asyncio.sleep(0.001)
        in_flight = set(batch._tasks)
        runner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await runner

        assert len(in_flight) == 2
        assert all(task.done() for task in in_flight)
        assert counting_backend.active_writes == 0
        assert batch.status == "error"
        assert "CancellationError" in batch.error
        # Interrupted writes leave nothing behind
        assert [p for p in counting_backend.paths() if p.startswith("/dst/")] == []


# ---------------------------------------------------------------------------
# Scheduling guarantees
# ---------------------------------------------------------------------------

class TestSchedulingGuarantees:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 2, 3])
    async def test_started_never_exceeds_limit(self, counting_backend, limit):
        for i in range(8):
            counting_backend.add_file(f"/src/f{i}", bytes(16))
        counting_backend.add_file("/src/d/g", bytes(16))
        batch = await _expanded(counting_backend, concurrency_limit=limit)
        observed: list[int] = []
        batch.subscribe(
            lambda e: observed.append(sum(u.status == "started" for u in batch.units)),
        )

        report = await batch.start()

        assert report.status == "done"
        assert max(observed) <= limit
        assert counting_backend.max_active_writes <= limit
        assert 0 <= batch.available_slots == limit

    @pytest.mark.asyncio
    async def test_concurrency_actually_used(self, counting_backend):
        for i in range(6):
            counting_backend.add_file(f"/src/f{i}", bytes(16))
        batch = await _expanded(counting_backend, concurrency_limit=3)
        await batch.start()
        assert counting_backend.max_active_writes == 3

    @pytest.mark.asyncio
    async def test_ready_flag_monotonic(self, sample_tree):
        batch = await _expanded(sample_tree)
        seen_ready: set[int] = set()
        violations: list[str] = []

        def check(_event: BatchEvent) -> None:
            for idx, unit in enumerate(batch.units):
                if idx in seen_ready and not unit.ready:
                    violations.append(unit.rel_path)
                if unit.ready:
                    seen_ready.add(idx)

        batch.subscribe(check)
        await batch.start()
        assert violations == []
        assert all(u.ready for u in batch.units)

    @pytest.mark.asyncio
    async def test_children_start_after_parent_done(self, sample_tree):
        batch = await _expanded(sample_tree, concurrency_limit=4)
        order: list[tuple[str, str]] = []
        batch.subscribe(
            lambda e: order.append((e.unit, e.unit_status)) if e.kind == "unit" else None,
        )
        await batch.start()
        assert order.index(("docs", "done")) < order.index(("docs/b.txt", "started"))
        assert order.index(("docs/deep", "done")) < order.index(("docs/deep/c.txt", "started"))

    @pytest.mark.asyncio
    async def test_progress_monotonic_and_complete(self, sample_tree):
        batch = await _expanded(sample_tree)
        fractions: list[float] = []
        byte_counts: list[int] = []

        def record(event: BatchEvent) -> None:
            fractions.append(event.progress)
            byte_counts.append(event.transferred_bytes)

        batch.subscribe(record)
        report = await batch.start()

        assert fractions == sorted(fractions)
        assert byte_counts == sorted(byte_counts)
        assert all(0.0 <= f <= 1.0 for f in fractions)
        assert report.status == "done"
        assert report.transferred_bytes == report.total_bytes == 18
        assert batch.progress == 1.0

    @pytest.mark.asyncio
    async def test_directory_progress_is_zero(self, sample_tree):
        batch = await _expanded(sample_tree)
        await batch.start()
        assert all(u.progress == 0 for u in batch.units if u.is_dir)
        assert {u.rel_path: u.progress for u in batch.units if not u.is_dir} == {
            "a.txt": 10, "docs/b.txt": 5, "docs/deep/c.txt": 3,
        }


# ---------------------------------------------------------------------------
# Unit-level failures
# ---------------------------------------------------------------------------

class TestUnitFailures:
    @pytest.mark.asyncio
    async def test_stream_failure_marks_unit_error(self, sample_tree):
        sample_tree.fail_stream("/src/docs/b.txt", after_bytes=4)
        batch = await _expanded(sample_tree)

        report = await batch.start()

        outcomes = {u.path: u for u in report.units}
        assert outcomes["docs/b.txt"].status == "error"
        assert outcomes["docs/b.txt"].error_kind == "BackendIOError"
        assert outcomes["docs/deep/c.txt"].status == "done"
        assert outcomes["a.txt"].status == "done"
        assert report.status == "partial"
        assert not await sample_tree.exists("/dst/docs/b.txt")

    @pytest.mark.asyncio
    async def test_unexpected_exception_contained(self):
        backend = ExplodingBackend("/dst/bad.txt", chunk_size=4)
        backend.add_file("/src/bad.txt", b"bad")
        backend.add_file("/src/good.txt", b"good")
        backend.add_dir("/dst")
        batch = await _expanded(backend)

        report = await batch.start()

        outcomes = {u.path: u for u in report.units}
        assert outcomes["bad.txt"].status == "error"
        assert outcomes["bad.txt"].error == "driver crashed"
        assert outcomes["good.txt"].status == "done"
        assert report.status == "partial"

    @pytest.mark.asyncio
    async def test_rename_cap_error_recorded(self, memory_backend):
        memory_backend.add_file("/src/f", b"x")
        memory_backend.add_file("/dst/f", b"x")
        memory_backend.add_file("/dst/f_1", b"x")
        batch = await _expanded(memory_backend, max_rename_attempts=1)

        report = await batch.start()

        assert report.units[0].status == "error"
        assert report.units[0].error_kind == "TooManyConflictsError"


# ---------------------------------------------------------------------------
# Merge, move, cross-backend
# ---------------------------------------------------------------------------

class TestTransferModes:
    @pytest.mark.asyncio
    async def test_merge_into_existing_directory(self, sample_tree):
        sample_tree.add_file("/dst/docs/existing.txt", b"keep")
        batch = await _expanded(sample_tree)

        report = await batch.start()

        assert report.status == "done"
        assert sample_tree.read_file("/dst/docs/existing.txt") == b"keep"
        assert sample_tree.read_file("/dst/docs/b.txt") == b"hello"

    @pytest.mark.asyncio
    async def test_cross_backend_copy(self, sample_tree):
        dst = MemoryBackend()
        dst.add_dir("/backup")
        batch = await _expanded(sample_tree, dst="/backup", dst_backend=dst)

        report = await batch.start()

        assert report.status == "done"
        assert dst.read_file("/backup/docs/deep/c.txt") == b"abc"
        assert await dst.exists("/backup/empty")
        # Source untouched
        assert sample_tree.read_file("/src/docs/deep/c.txt") == b"abc"

    @pytest.mark.asyncio
    async def test_move_removes_sources(self, sample_tree):
        batch = await _expanded(sample_tree, mode="move")

        report = await batch.start()

        assert report.status == "done"
        assert report.mode == "move"
        assert sample_tree.read_file("/dst/docs/deep/c.txt") == b"abc"
        assert sample_tree.paths() == sorted([
            "/", "/src", "/dst", "/dst/a.txt", "/dst/docs", "/dst/docs/b.txt",
            "/dst/docs/deep", "/dst/docs/deep/c.txt", "/dst/empty",
        ])

    @pytest.mark.asyncio
    async def test_move_keeps_source_dir_with_failures(self, sample_tree):
        sample_tree.fail_stream("/src/docs/b.txt")
        batch = await _expanded(sample_tree, mode="move")

        report = await batch.start()

        assert report.status == "partial"
        assert sample_tree.read_file("/src/docs/b.txt") == b"hello"
        assert not await sample_tree.exists("/src/docs/deep")
        assert not await sample_tree.exists("/src/a.txt")


# ---------------------------------------------------------------------------
# Events and reporting
# ---------------------------------------------------------------------------

class TestEventsAndReport:
    @pytest.mark.asyncio
    async def test_status_events_in_order(self, sample_tree):
        batch = Batch(sample_tree, sample_tree, "/src", "/dst")
        statuses: list[str] = []
        batch.subscribe(lambda e: statuses.append(e.status) if e.kind == "status" else None)
        await batch.expand(await sample_tree.list("/src"))
        await batch.start()
        assert statuses == ["queued", "started", "done"]

    @pytest.mark.asyncio
    async def test_watch_yields_until_terminal(self, sample_tree):
        batch = await _expanded(sample_tree)

        async def consume() -> list[BatchEvent]:
            return [event async for event in batch.watch()]

        watcher = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await batch.start()
        events = await asyncio.wait_for(watcher, timeout=5)

        assert events[-1].kind == "status"
        assert events[-1].status == "done"
        assert len(batch.events) == 0

    @pytest.mark.asyncio
    async def test_watch_on_finished_batch_returns_immediately(self, memory_backend):
        batch = await _expanded(memory_backend)
        await batch.start()
        assert [e async for e in batch.watch()] == []

    @pytest.mark.asyncio
    async def test_report_enumerates_every_unit(self, sample_tree):
        batch = await _expanded(sample_tree)
        report = await batch.start()
        assert [u.path for u in report.units] == [u.rel_path for u in batch.units]
        assert report.batch_id == batch.id
        assert report.source == "/src"
        assert report.destination == "/dst"
        assert report.duration_seconds >= 0
        assert len(report.succeeded) == 6

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, sample_tree):
        batch = await _expanded(sample_tree)
        batch.cancel()
        report = await batch.start()
        assert report.status == "error"
        assert all(u.status == "queued" for u in report.units)
        assert not await sample_tree.exists("/dst/a.txt")

    @pytest.mark.asyncio
    async def test_cancel_after_finish_is_noop(self, sample_tree):
        batch = await _expanded(sample_tree)
        await batch.start()
        batch.cancel()
        assert batch.status == "done"
        assert batch.cancelled is False


class TestHelpers:
    def test_batch_id_format(self):
        batch_id = generate_batch_id()
        date, time_part, short = batch_id.split("_")
        assert len(date) == 8 and len(time_part) == 6 and len(short) == 6

    def test_batch_ids_unique(self):
        assert generate_batch_id() != generate_batch_id()

    @pytest.mark.parametrize("path,expected", [
        ("/home/user/docs", "docs"),
        ("/home/user/docs/", "docs"),
        ("C:\\Users\\me", "me"),
        ("/", "/"),
        ("relative", "relative"),
    ])
    def test_last_path_part(self, path, expected):
        assert last_path_part(path) == expected

# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides in-memory backends, a sample source tree and a write-counting backend.
No network access; disk access only through tmp_path.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from batchxfer.core.models import Entry
from batchxfer.storage.base_backend import ChunkCallback
from batchxfer.storage.memory_backend import MemoryBackend


class CountingBackend(MemoryBackend):
    """MemoryBackend that records how many writes run at the same time."""

    def __init__(self, chunk_size: int = 4, latency: float = 0.001) -> None:
        super().__init__(chunk_size=chunk_size, latency=latency)
        self.active_writes = 0
        self.max_active_writes = 0
        self.write_order: list[str] = []

    async def put_stream(
        self,
        stream: AsyncIterator[bytes],
        path: str,
        on_chunk: ChunkCallback | None = None,
    ) -> None:
        self.active_writes += 1
        self.max_active_writes = max(self.max_active_writes, self.active_writes)
        self.write_order.append(path)
        try:
            await super().put_stream(stream, path, on_chunk)
        finally:
            self.active_writes -= 1


# === FIXTURES: Backends ===


@pytest.fixture
def memory_backend() -> MemoryBackend:
    """Empty in-memory backend with /src and /dst directories."""
    backend = MemoryBackend(chunk_size=4)
    backend.add_dir("/src")
    backend.add_dir("/dst")
    return backend


@pytest.fixture
def counting_backend() -> CountingBackend:
    """Slow in-memory backend counting concurrent writes."""
    backend = CountingBackend()
    backend.add_dir("/src")
    backend.add_dir("/dst")
    return backend


@pytest.fixture
def sample_tree(memory_backend: MemoryBackend) -> MemoryBackend:
    """Source tree:

    /src/a.txt          (10 bytes)
    /src/docs/          directory
    /src/docs/b.txt     (5 bytes)
    /src/docs/deep/c.txt (3 bytes)
    /src/empty/         empty directory
    """
    memory_backend.add_file("/src/a.txt", b"0123456789")
    memory_backend.add_file("/src/docs/b.txt", b"hello")
    memory_backend.add_file("/src/docs/deep/c.txt", b"abc")
    memory_backend.add_dir("/src/empty")
    return memory_backend


@pytest.fixture
def file_entry() -> Entry:
    """A 10-byte file entry at the source root."""
    return Entry(dir="/src", name="a.txt", size=10)


@pytest.fixture
def dir_entry() -> Entry:
    """A directory entry at the source root."""
    return Entry(dir="/src", name="docs", is_dir=True)

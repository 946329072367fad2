# src/storage/memory_backend.py — v2
"""In-memory backend with POSIX paths.

Holds a whole tree in a dict, which makes it the natural second storage for
cross-backend transfers and a deterministic stand-in for slow or faulty
remote storages (per-chunk latency, denied paths, failing streams).
"""

from __future__ import annotations

import asyncio
import posixpath
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from batchxfer.core.errors import (
    AlreadyExistsError,
    BackendIOError,
    BackendPermissionError,
    NotFoundError,
)
from batchxfer.core.models import Entry
from batchxfer.storage.base_backend import BaseBackend, ChunkCallback

DEFAULT_CHUNK_SIZE = 64 * 1024


class _Node:
    __slots__ = ("data", "mtime")

    def __init__(self, data: bytes | None) -> None:
        self.data = data  # None marks a directory
        self.mtime = datetime.now(timezone.utc)

    @property
    def is_dir(self) -> bool:
        return self.data is None


class MemoryBackend(BaseBackend):
    """Store files and directories in process memory."""

    name = "memory"

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, latency: float = 0.0) -> None:
        """Initialize an empty tree containing only ``/``.

        Args:
            chunk_size: Bytes per chunk yielded by get_stream().
            latency: Seconds to sleep before every chunk (simulated I/O).
        """
        self._chunk_size = chunk_size
        self._latency = latency
        self._nodes: dict[str, _Node] = {"/": _Node(None)}
        self._read_denied: set[str] = set()
        self._write_denied: set[str] = set()
        self._failing_streams: dict[str, int] = {}

    # --- Seeding and fault injection ---

    def add_dir(self, path: str) -> str:
        """Create a directory and any missing parents."""
        path = self._norm(path)
        parent = posixpath.dirname(path)
        if parent != path and parent not in self._nodes:
            self.add_dir(parent)
        node = self._nodes.get(path)
        if node is not None and not node.is_dir:
            raise AlreadyExistsError(f"File in the way: {path}", path)
        self._nodes.setdefault(path, _Node(None))
        return path

    def add_file(self, path: str, data: bytes = b"") -> str:
        """Create (or replace) a file, creating missing parent directories."""
        path = self._norm(path)
        self.add_dir(posixpath.dirname(path))
        self._nodes[path] = _Node(bytes(data))
        return path

    def read_file(self, path: str) -> bytes:
        """Return a file's content. Raises NotFoundError."""
        node = self._nodes.get(self._norm(path))
        if node is None or node.is_dir:
            raise NotFoundError(f"No such file: {path}", path)
        return node.data or b""

    def deny_read(self, path: str) -> None:
        """Make list() of a directory fail with a permission error."""
        self._read_denied.add(self._norm(path))

    def deny_write(self, path: str) -> None:
        """Make creating anything directly inside ``path`` fail."""
        self._write_denied.add(self._norm(path))

    def fail_stream(self, path: str, after_bytes: int = 0) -> None:
        """Make reading ``path`` fail once ``after_bytes`` were delivered."""
        self._failing_streams[self._norm(path)] = after_bytes

    def paths(self) -> list[str]:
        """All stored paths, sorted."""
        return sorted(self._nodes)

    # --- Capability interface ---

    async def list(self, path: str) -> list[Entry]:
        path = self._norm(path)
        node = self._nodes.get(path)
        if node is None:
            raise NotFoundError(f"No such directory: {path}", path)
        if not node.is_dir:
            raise BackendIOError(f"Not a directory: {path}", path)
        if path in self._read_denied:
            raise BackendPermissionError(f"Permission denied: {path}", path)
        await asyncio.sleep(0)
        children = [
            p for p in self._nodes
            if p != path and posixpath.dirname(p) == path
        ]
        return [self._entry(p) for p in sorted(children)]

    async def stat(self, path: str) -> Entry:
        path = self._norm(path)
        if path not in self._nodes:
            raise NotFoundError(f"No such file or directory: {path}", path)
        return self._entry(path)

    async def exists(self, path: str) -> bool:
        return self._norm(path) in self._nodes

    async def makedir(self, parent: str, name: str) -> str:
        parent = self._norm(parent)
        path = self._norm(posixpath.join(parent, name))
        await asyncio.sleep(0)
        self._check_writable(parent, path)
        if path in self._nodes:
            raise AlreadyExistsError(f"Already exists: {path}", path)
        self._nodes[path] = _Node(None)
        return path

    async def get_stream(self, path: str) -> AsyncIterator[bytes]:
        path = self._norm(path)
        node = self._nodes.get(path)
        if node is None:
            raise NotFoundError(f"No such file: {path}", path)
        if node.is_dir:
            raise BackendIOError(f"Is a directory: {path}", path)
        return self._chunks(path, node.data or b"")

    async def _chunks(self, path: str, data: bytes) -> AsyncIterator[bytes]:
        fail_after = self._failing_streams.get(path)
        for offset in range(0, len(data), self._chunk_size):
            if fail_after is not None and offset >= fail_after:
                raise BackendIOError(f"Read failed for {path}", path)
            await asyncio.sleep(self._latency)
            yield data[offset:offset + self._chunk_size]
        if fail_after is not None:
            raise BackendIOError(f"Read failed for {path}", path)

    async def put_stream(
        self,
        stream: AsyncIterator[bytes],
        path: str,
        on_chunk: ChunkCallback | None = None,
    ) -> None:
        path = self._norm(path)
        self._check_writable(posixpath.dirname(path), path)
        if path in self._nodes:
            raise AlreadyExistsError(f"Already exists: {path}", path)
        # Reserve the name before the first await, like an exclusive open
        node = _Node(b"")
        self._nodes[path] = node
        buffer = bytearray()
        try:
            async for chunk in stream:
                buffer.extend(chunk)
                if on_chunk is not None:
                    on_chunk(len(chunk))
        except BaseException:
            if self._nodes.get(path) is node:
                del self._nodes[path]
            raise
        node.data = bytes(buffer)

    async def delete(self, path: str) -> None:
        path = self._norm(path)
        node = self._nodes.get(path)
        if node is None:
            raise NotFoundError(f"No such file or directory: {path}", path)
        if node.is_dir and any(posixpath.dirname(p) == path for p in self._nodes if p != path):
            raise BackendIOError(f"Directory not empty: {path}", path)
        del self._nodes[path]

    def join(self, *parts: str) -> str:
        return posixpath.join(*parts)

    # --- Helpers ---

    @staticmethod
    def _norm(path: str) -> str:
        return posixpath.normpath("/" + path.lstrip("/"))

    def _check_writable(self, parent: str, path: str) -> None:
        node = self._nodes.get(parent)
        if node is None or not node.is_dir:
            raise NotFoundError(f"No such directory: {parent}", parent)
        if parent in self._write_denied:
            raise BackendPermissionError(f"Permission denied: {path}", path)

    def _entry(self, path: str) -> Entry:
        node = self._nodes[path]
        return Entry(
            dir=posixpath.dirname(path),
            name=posixpath.basename(path),
            size=0 if node.is_dir else len(node.data or b""),
            is_dir=node.is_dir,
            mtime=node.mtime,
        )

# src/storage/base_backend.py — v1
"""Abstract storage backend: the capability interface the engine drives.

A batch holds one backend for its source and one for its destination; they
may be the same object or entirely different storages.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable

from batchxfer.core.models import Entry

ChunkCallback = Callable[[int], None]


class BaseBackend(ABC):
    """Unified interface for storage backends.

    Implementations raise the exceptions of ``batchxfer.core.errors``:
    NotFoundError, AlreadyExistsError, BackendPermissionError and
    BackendIOError.
    """

    name: str = "base"

    @abstractmethod
    async def list(self, path: str) -> list[Entry]:
        """List directory entries. Raises NotFoundError / BackendPermissionError."""

    @abstractmethod
    async def stat(self, path: str) -> Entry:
        """Return metadata for a path. Raises NotFoundError."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check if path exists. Never raises; inaccessible means False."""

    @abstractmethod
    async def makedir(self, parent: str, name: str) -> str:
        """Create directory ``name`` under ``parent`` and return its path.

        Raises AlreadyExistsError if the name is taken, BackendPermissionError
        if creation is denied.
        """

    @abstractmethod
    async def get_stream(self, path: str) -> AsyncIterator[bytes]:
        """Open a file for reading and return an async iterator of chunks."""

    @abstractmethod
    async def put_stream(
        self,
        stream: AsyncIterator[bytes],
        path: str,
        on_chunk: ChunkCallback | None = None,
    ) -> None:
        """Write ``stream`` to a new file at ``path``.

        ``on_chunk`` receives the byte count of every chunk once written.
        Never overwrites: an existing ``path`` raises AlreadyExistsError.
        """

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete a file or an empty directory."""

    @abstractmethod
    def join(self, *parts: str) -> str:
        """Compose a path using the backend's separator rules."""

# src/storage/local_backend.py — v1
"""Local filesystem backend (default).

Blocking filesystem calls run in worker threads via ``asyncio.to_thread`` so
that concurrent transfers never stall the event loop. Chunk callbacks are
invoked from the event loop, never from a worker thread.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import stat as stat_mod
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import BinaryIO

from batchxfer.core.errors import (
    AlreadyExistsError,
    BackendError,
    BackendIOError,
    BackendPermissionError,
    NotFoundError,
)
from batchxfer.core.models import Entry
from batchxfer.storage.base_backend import BaseBackend, ChunkCallback

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


def map_os_error(exc: OSError, path: str) -> BackendError:
    """Translate an OSError into the backend error taxonomy."""
    reason = exc.strerror or str(exc)
    if isinstance(exc, FileNotFoundError):
        return NotFoundError(f"No such file or directory: {path}", path)
    if isinstance(exc, FileExistsError):
        return AlreadyExistsError(f"Already exists: {path}", path)
    if isinstance(exc, PermissionError):
        return BackendPermissionError(f"Permission denied: {path}", path)
    return BackendIOError(f"{path}: {reason}", path)


def _entry_from_stat(path: str, st: os.stat_result) -> Entry:
    abs_path = os.path.abspath(path)
    return Entry(
        dir=os.path.dirname(abs_path),
        name=os.path.basename(abs_path),
        size=st.st_size,
        is_dir=stat_mod.S_ISDIR(st.st_mode),
        mtime=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        mode=st.st_mode,
        readonly=not os.access(abs_path, os.W_OK),
    )


class LocalBackend(BaseBackend):
    """Read and write files on the local disk."""

    name = "local"

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._chunk_size = chunk_size

    async def list(self, path: str) -> list[Entry]:
        """List a local directory, sorted by name."""
        try:
            return await asyncio.to_thread(self._list_sync, path)
        except OSError as exc:
            raise map_os_error(exc, path) from exc

    def _list_sync(self, path: str) -> list[Entry]:
        entries: list[Entry] = []
        with os.scandir(path) as it:
            for item in it:
                try:
                    st = item.stat(follow_symlinks=True)
                except FileNotFoundError:
                    logger.warning("Skipping dangling link %s", item.path)
                    continue
                entries.append(_entry_from_stat(item.path, st))
        entries.sort(key=lambda e: e.name)
        return entries

    async def stat(self, path: str) -> Entry:
        try:
            st = await asyncio.to_thread(os.stat, path)
        except OSError as exc:
            raise map_os_error(exc, path) from exc
        return _entry_from_stat(path, st)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(os.path.exists, path)

    async def makedir(self, parent: str, name: str) -> str:
        path = os.path.join(parent, name)
        try:
            await asyncio.to_thread(os.mkdir, path)
        except OSError as exc:
            raise map_os_error(exc, path) from exc
        logger.debug("Created directory %s", path)
        return path

    async def get_stream(self, path: str) -> AsyncIterator[bytes]:
        try:
            fh = await asyncio.to_thread(open, path, "rb")
        except OSError as exc:
            raise map_os_error(exc, path) from exc
        return self._read_chunks(fh, path)

    async def _read_chunks(self, fh: BinaryIO, path: str) -> AsyncIterator[bytes]:
        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(fh.read, self._chunk_size)
                except OSError as exc:
                    raise BackendIOError(f"Read failed for {path}: {exc}", path) from exc
                if not chunk:
                    break
                yield chunk
        finally:
            fh.close()

    async def put_stream(
        self,
        stream: AsyncIterator[bytes],
        path: str,
        on_chunk: ChunkCallback | None = None,
    ) -> None:
        try:
            fh = await asyncio.to_thread(open, path, "xb")
        except OSError as exc:
            raise map_os_error(exc, path) from exc

        completed = False
        try:
            async for chunk in stream:
                try:
                    await asyncio.to_thread(fh.write, chunk)
                except OSError as exc:
                    raise BackendIOError(f"Write failed for {path}: {exc}", path) from exc
                if on_chunk is not None:
                    on_chunk(len(chunk))
            completed = True
        finally:
            await asyncio.to_thread(fh.close)
            if not completed:
                # Partial files must not look like finished copies
                with contextlib.suppress(OSError):
                    os.unlink(path)

    async def delete(self, path: str) -> None:
        try:
            if await asyncio.to_thread(os.path.isdir, path):
                await asyncio.to_thread(os.rmdir, path)
            else:
                await asyncio.to_thread(os.unlink, path)
        except OSError as exc:
            raise map_os_error(exc, path) from exc

    def join(self, *parts: str) -> str:
        return os.path.join(*parts)

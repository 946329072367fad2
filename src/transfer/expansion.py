# src/transfer/expansion.py — v1
"""Recursive expansion of source entries into the ordered unit list.

Files of a directory come first, then each subdirectory's own unit directly
followed by everything beneath it. A unit therefore always appears after the
directory unit its destination depends on.
"""

from __future__ import annotations

import asyncio
import logging

from batchxfer.core.errors import BackendError, CancellationError, ExpansionError
from batchxfer.core.models import PARENT_ENTRY_NAMES, Entry
from batchxfer.storage.base_backend import BaseBackend
from batchxfer.transfer.models import ROOT_SUB_PATH, TransferUnit, join_sub_path

logger = logging.getLogger(__name__)


async def expand_entries(
    backend: BaseBackend,
    entries: list[Entry],
    sub_path: str = ROOT_SUB_PATH,
    cancel_event: asyncio.Event | None = None,
) -> list[TransferUnit]:
    """Build the transfer units for ``entries`` and everything below them.

    Args:
        backend: Source backend used to list subdirectories.
        entries: Entries located at ``sub_path``.
        sub_path: Batch-relative directory of ``entries`` ("" = root).
        cancel_event: When set, expansion stops with CancellationError.

    Returns:
        Units in discovery order; only root-level units start ready.

    Raises:
        ExpansionError: If listing any subdirectory failed.
        CancellationError: If ``cancel_event`` was set meanwhile.
    """
    units: list[TransferUnit] = []
    await _expand_into(units, backend, entries, sub_path, cancel_event)
    return units


async def _expand_into(
    units: list[TransferUnit],
    backend: BaseBackend,
    entries: list[Entry],
    sub_path: str,
    cancel_event: asyncio.Event | None,
) -> None:
    entries = [e for e in entries if e.name not in PARENT_ENTRY_NAMES]
    ready = sub_path == ROOT_SUB_PATH

    for entry in entries:
        if not entry.is_dir:
            units.append(TransferUnit(entry=entry, sub_path=sub_path, ready=ready))

    for entry in entries:
        if not entry.is_dir:
            continue
        units.append(TransferUnit(entry=entry, sub_path=sub_path, ready=ready))

        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError("Cancelled while expanding sources")

        dir_path = backend.join(entry.dir, entry.name)
        try:
            children = await backend.list(dir_path)
        except BackendError as exc:
            logger.error("Listing %s failed: %s", dir_path, exc)
            raise ExpansionError(dir_path, exc) from exc

        logger.debug("Listed %s: %d entries", dir_path, len(children))
        await _expand_into(
            units, backend, children, join_sub_path(sub_path, entry.name), cancel_event,
        )

# src/transfer/conflicts.py — v2
"""Destination name resolution: create-or-reuse directories, rename on clash.

Nothing is ever overwritten. Candidates are built by appending the suffix and
an increasing counter to the full entry name ("report.pdf" -> "report.pdf_1")
and the search gives up after ``max_attempts`` candidates.
"""

from __future__ import annotations

import logging

from batchxfer.core.errors import (
    AlreadyExistsError,
    BackendError,
    ConflictResolutionError,
    NotFoundError,
    TooManyConflictsError,
)
from batchxfer.core.models import Entry
from batchxfer.storage.base_backend import BaseBackend

logger = logging.getLogger(__name__)

DEFAULT_RENAME_SUFFIX = "_"
DEFAULT_MAX_ATTEMPTS = 1000


def candidate_name(name: str, attempt: int, suffix: str = DEFAULT_RENAME_SUFFIX) -> str:
    """Name tried at ``attempt`` (0 = the wanted name itself)."""
    return name if attempt == 0 else f"{name}{suffix}{attempt}"


async def resolve_destination_name(
    backend: BaseBackend,
    parent: str,
    entry: Entry,
    suffix: str = DEFAULT_RENAME_SUFFIX,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    claimed: set[str] | None = None,
) -> str:
    """Return the name ``entry`` will use inside ``parent`` on ``backend``.

    Directories are created here (or reused when a directory of that name
    already exists); files are only given a free name, the write happens
    later. When ``claimed`` is given, a file's chosen path is added to it
    and paths already in it count as taken, so concurrent writers sharing
    the set never pick the same name.

    Raises:
        TooManyConflictsError: No free name within ``max_attempts`` tries.
        ConflictResolutionError: Destination inspection or directory
            creation failed for a reason other than a name clash.
    """
    existing = await _stat_or_none(backend, parent, entry.name)

    if entry.is_dir:
        if existing is None:
            created = await _try_makedir(backend, parent, entry.name)
            if created:
                return entry.name
            # Lost a race: the name appeared between stat and makedir
            existing = await _stat_or_none(backend, parent, entry.name)
        if existing is not None and existing.is_dir:
            logger.debug("Merging into existing directory %s", entry.name)
            return entry.name
        return await _rename_dir(backend, parent, entry.name, suffix, max_attempts)

    if claimed is None:
        claimed = set()
    wanted = backend.join(parent, entry.name)
    if existing is None and wanted not in claimed:
        claimed.add(wanted)
        return entry.name
    for attempt in range(1, max_attempts + 1):
        name = candidate_name(entry.name, attempt, suffix)
        path = backend.join(parent, name)
        # Claims are checked after the await, which is where other writers run
        if await backend.exists(path) or path in claimed:
            continue
        claimed.add(path)
        logger.info("Renaming %s to %s (name taken)", entry.name, name)
        return name
    raise TooManyConflictsError(entry.name, max_attempts)


async def _rename_dir(
    backend: BaseBackend,
    parent: str,
    name: str,
    suffix: str,
    max_attempts: int,
) -> str:
    for attempt in range(1, max_attempts + 1):
        new_name = candidate_name(name, attempt, suffix)
        if await _try_makedir(backend, parent, new_name):
            logger.info("Renaming directory %s to %s (file in the way)", name, new_name)
            return new_name
    raise TooManyConflictsError(name, max_attempts)


async def _stat_or_none(backend: BaseBackend, parent: str, name: str) -> Entry | None:
    path = backend.join(parent, name)
    try:
        return await backend.stat(path)
    except NotFoundError:
        return None
    except BackendError as exc:
        raise ConflictResolutionError(f"Cannot inspect {path!r}: {exc}") from exc


async def _try_makedir(backend: BaseBackend, parent: str, name: str) -> bool:
    """Create ``name`` in ``parent``; False if the name is already taken."""
    try:
        await backend.makedir(parent, name)
    except AlreadyExistsError:
        return False
    except BackendError as exc:
        raise ConflictResolutionError(
            f"Cannot create directory {name!r} in {parent!r}: {exc}"
        ) from exc
    return True

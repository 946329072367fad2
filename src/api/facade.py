# src/api/facade.py — v2
"""Public API facade: one call to copy or move a set of paths.

Usage:
    from batchxfer.api.facade import transfer
    report = await transfer(["/data/a.txt", "/data/photos"], "/backup")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from batchxfer.config.settings import Settings
from batchxfer.core.errors import BackendError, ExpansionError
from batchxfer.core.models import TransferMode
from batchxfer.storage.backend_factory import create_backends
from batchxfer.transfer.batch import Batch

if TYPE_CHECKING:
    from batchxfer.core.models import Entry
    from batchxfer.storage.base_backend import BaseBackend
    from batchxfer.transfer.events import Listener
    from batchxfer.transfer.models import TransferReport

logger = logging.getLogger(__name__)


async def create_batch(
    sources: list[str],
    destination: str,
    settings: Settings | None = None,
    src_backend: BaseBackend | None = None,
    dst_backend: BaseBackend | None = None,
    mode: TransferMode | None = None,
) -> Batch:
    """Stat the sources, build a Batch and expand it.

    Args:
        sources: Source paths on the source backend (files or directories).
        destination: Existing destination directory on the destination backend.
        settings: Global settings. Loaded from .env if None.
        src_backend: Source backend. Created from settings if None.
        dst_backend: Destination backend. Created from settings if None.
        mode: "copy" or "move"; defaults to settings.transfer_mode.

    Returns:
        An expanded Batch in "queued" status.

    Raises:
        ValueError: If no sources were given or two sources share a name.
        ExpansionError: If a source cannot be inspected or listed.
    """
    if not sources:
        raise ValueError("At least one source path is required")

    settings = settings or Settings()
    if src_backend is None or dst_backend is None:
        default_src, default_dst = create_backends(settings)
        src_backend = src_backend or default_src
        dst_backend = dst_backend or default_dst

    entries: list[Entry] = []
    for path in sources:
        try:
            entries.append(await src_backend.stat(path))
        except BackendError as exc:
            raise ExpansionError(path, exc) from exc

    batch = Batch.from_settings(
        settings, src_backend, dst_backend, _common_root(entries), destination,
    )
    if mode is not None:
        batch.mode = mode
    await batch.expand(entries)
    return batch


async def transfer(
    sources: list[str],
    destination: str,
    settings: Settings | None = None,
    src_backend: BaseBackend | None = None,
    dst_backend: BaseBackend | None = None,
    mode: TransferMode | None = None,
    listener: Listener | None = None,
) -> TransferReport:
    """Copy (or move) ``sources`` into ``destination`` and return the report.

    Unit-level failures are reported, not raised. Expansion failures raise
    ExpansionError before anything is written.
    """
    batch = await create_batch(
        sources, destination, settings, src_backend, dst_backend, mode,
    )
    if listener is not None:
        batch.subscribe(listener)

    logger.info("Starting batch %s (%s, %d units)", batch.id, batch.mode, len(batch.units))
    return await batch.start()


def _common_root(entries: list[Entry]) -> str:
    """Parent directory shared by the sources, or the first one's parent."""
    parents = {e.dir for e in entries}
    if len(parents) == 1:
        return parents.pop()
    return entries[0].dir

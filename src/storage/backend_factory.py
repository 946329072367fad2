# src/storage/backend_factory.py — v1
"""Factory: instantiate storage backends from configuration."""

from __future__ import annotations

from batchxfer.config.settings import Settings
from batchxfer.storage.base_backend import BaseBackend
from batchxfer.storage.local_backend import DEFAULT_CHUNK_SIZE, LocalBackend


def create_backend(kind: str, settings: Settings | None = None) -> BaseBackend:
    """Create the backend named ``kind``.

    Args:
        kind: Backend type ("local" or "memory").
        settings: Application settings (chunk size). Defaults if None.

    Returns:
        BaseBackend instance.

    Raises:
        ValueError: If backend type is not supported.
    """
    chunk_size = DEFAULT_CHUNK_SIZE if settings is None else settings.transfer_chunk_size

    if kind == "local":
        return LocalBackend(chunk_size=chunk_size)

    if kind == "memory":
        from batchxfer.storage.memory_backend import MemoryBackend
        return MemoryBackend(chunk_size=chunk_size)

    raise ValueError(f"Unsupported backend: {kind!r}")


def create_backends(settings: Settings) -> tuple[BaseBackend, BaseBackend]:
    """Create the (source, destination) backend pair from settings.

    When both sides name the same kind, a single instance is shared so that
    in-memory transfers see one tree.
    """
    source = create_backend(settings.source_backend, settings)
    if settings.destination_backend == settings.source_backend:
        return source, source
    return source, create_backend(settings.destination_backend, settings)

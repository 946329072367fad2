# src/core/errors.py — v1
"""Error taxonomy shared by backends and the transfer engine.

Backend errors describe what a storage operation reported. Transfer errors
describe what the engine concluded: unit-level errors (conflict resolution,
stream I/O) are recorded on the unit, batch-level errors (expansion,
cancellation) end the batch.
"""

from __future__ import annotations


# === BACKEND ERRORS ===


class BackendError(Exception):
    """Base class for failures reported by a storage backend."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        super().__init__(message)


class NotFoundError(BackendError):
    """Path does not exist."""


class AlreadyExistsError(BackendError):
    """Target name is already taken."""


class BackendPermissionError(BackendError):
    """Access denied by the backend."""


class BackendIOError(BackendError):
    """Read or write failure while streaming content."""


# === TRANSFER ERRORS ===


class TransferError(Exception):
    """Base class for transfer engine errors."""


class ExpansionError(TransferError):
    """Listing a source subtree failed; the unit list would be incomplete."""

    def __init__(self, path: str, cause: Exception) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Could not list {path!r}: {cause}")


class ConflictResolutionError(TransferError):
    """Destination name could not be resolved or the directory not created."""


class TooManyConflictsError(ConflictResolutionError):
    """Every candidate name up to the attempt cap was already taken."""

    def __init__(self, name: str, attempts: int) -> None:
        self.name = name
        self.attempts = attempts
        super().__init__(f"No free name for {name!r} after {attempts} attempts")


class TransferIOError(TransferError):
    """Streaming a file from source to destination failed."""


class CancellationError(TransferError):
    """Batch stopped by its caller."""


class BatchStateError(TransferError):
    """Operation not allowed in the batch's current status."""

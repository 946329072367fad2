# src/__init__.py — v1
"""batchxfer: concurrency-bounded batch file transfers between storage backends."""

from batchxfer.version import __version__

__all__ = ["__version__"]

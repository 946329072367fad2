# tests/integration/conftest.py — v1
"""Shared fixtures for integration tests: real directory trees under tmp_path.

No containers or network; every test builds its own tree on the local disk.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from batchxfer.storage.local_backend import LocalBackend


@pytest.fixture
def local_backend() -> LocalBackend:
    """Local backend with a small chunk size so files span several chunks."""
    return LocalBackend(chunk_size=1024)


@pytest.fixture
def disk_source(tmp_path) -> Path:
    """Source tree on disk:

    src/readme.md          (100 bytes)
    src/data/big.bin       (10 KiB)
    src/data/nested/x.csv  (3 bytes)
    src/data/empty/        empty directory
    """
    src = tmp_path / "src"
    (src / "data" / "nested").mkdir(parents=True)
    (src / "data" / "empty").mkdir()
    (src / "readme.md").write_bytes(b"r" * 100)
    (src / "data" / "big.bin").write_bytes(bytes(range(256)) * 40)
    (src / "data" / "nested" / "x.csv").write_bytes(b"a,b")
    (tmp_path / "dst").mkdir()
    return src

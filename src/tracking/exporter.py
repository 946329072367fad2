# src/tracking/exporter.py — v1
"""Transfer report export to JSON and summary text."""

from __future__ import annotations

import logging
from pathlib import Path

from batchxfer.transfer.models import TransferReport

logger = logging.getLogger(__name__)

_VERBS = {"copy": "copied", "move": "moved"}
_REASONS = {
    "BackendPermissionError": "permission denied",
    "NotFoundError": "not found",
    "AlreadyExistsError": "already exists",
    "BackendIOError": "I/O error",
    "TooManyConflictsError": "too many name conflicts",
    "ConflictResolutionError": "destination unavailable",
    "CancellationError": "cancelled",
}


def export_report_json(report: TransferReport, path: Path) -> None:
    """Write the full report (every unit's outcome) as formatted JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
    logger.debug("Report written to %s", path)


def format_size(num_bytes: int) -> str:
    """Human-readable byte count (1.5 MB)."""
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def summary_line(report: TransferReport) -> str:
    """One-line outcome, e.g. '18 of 20 files copied, 2 failed: permission denied'."""
    files = report.files
    done = sum(1 for u in files if u.status == "done")
    failed = [u for u in report.units if u.status == "error"]
    skipped = len(report.skipped)

    line = f"{done} of {len(files)} files {_VERBS.get(report.mode, 'transferred')}"
    if failed:
        reasons = sorted({_REASONS.get(u.error_kind or "", "error") for u in failed})
        line += f", {len(failed)} failed: {'; '.join(reasons)}"
    if skipped:
        line += f", {skipped} skipped"
    if report.cancelled and report.pending:
        line += f", {len(report.pending)} not started (cancelled)"
    return line


def export_report_summary(report: TransferReport) -> str:
    """Multi-line human-readable summary listing every failed unit."""
    lines = [
        f"Batch {report.batch_id}: {report.status}",
        f"  {report.source} -> {report.destination}",
        f"  {summary_line(report)}",
        f"  Bytes:    {format_size(report.transferred_bytes)} / {format_size(report.total_bytes)}"
        f" ({report.progress:.0%})",
        f"  Duration: {report.duration_seconds:.1f}s",
    ]
    if report.error:
        lines.append(f"  Error:    {report.error}")
    for unit in report.units:
        if unit.status in ("error", "skipped"):
            lines.append(f"  [{unit.status}] {unit.path}: {unit.error}")
    return "\n".join(lines)


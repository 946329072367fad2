# src/main.py — v2
"""CLI entry point: copy and move commands.

Usage:
    batchxfer copy <source>... <destination> [options]
    batchxfer move <source>... <destination> [options]

Ctrl+C stops dispatching new units; transfers already running finish and the
partial report is still printed.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

from pydantic import ValidationError

from batchxfer.config.settings import ConfigurationError, Settings
from batchxfer.transfer.models import BatchEvent
from batchxfer.version import __version__

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2
EXIT_CANCELLED = 130


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_FAILURE

    try:
        settings = _load_settings(args)
    except (ConfigurationError, ValidationError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    _setup_logging(args.verbose, settings)

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_CANCELLED
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return EXIT_FAILURE


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="batchxfer",
        description=f"batchxfer v{__version__}: batch file copy/move with bounded concurrency",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    for command, help_text in (
        ("copy", "Copy files and directories into a destination directory"),
        ("move", "Move files and directories into a destination directory"),
    ):
        p_cmd = subparsers.add_parser(command, help=help_text)
        p_cmd.add_argument("sources", nargs="+", help="Source files or directories")
        p_cmd.add_argument("destination", help="Destination directory (must exist)")
        p_cmd.add_argument(
            "-c", "--concurrency", type=int, default=None,
            help="Max simultaneous transfers (default: TRANSFER_CONCURRENCY_LIMIT or 2)",
        )
        p_cmd.add_argument(
            "--report", type=Path, default=None,
            help="Write the full JSON report to this file",
        )
        p_cmd.add_argument(
            "--json", action="store_true",
            help="Print the report as JSON instead of a text summary",
        )
        p_cmd.add_argument(
            "--no-progress", action="store_true",
            help="Do not print progress updates",
        )
        p_cmd.set_defaults(func=_cmd_transfer, mode=command)

    return parser


def _load_settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {"transfer_mode": args.mode}
    if args.concurrency is not None:
        overrides["transfer_concurrency_limit"] = args.concurrency
    if args.json:
        overrides["report_format"] = "json"
    return Settings(**overrides)  # type: ignore[arg-type]


async def _cmd_transfer(args: argparse.Namespace, settings: Settings) -> int:
    """Execute a copy or move batch."""
    from batchxfer.api.facade import create_batch
    from batchxfer.core.errors import ExpansionError
    from batchxfer.tracking.exporter import export_report_json, export_report_summary

    try:
        batch = await create_batch(args.sources, args.destination, settings=settings)
    except ExpansionError as exc:
        logger.error("Cannot read sources: %s", exc)
        return EXIT_FAILURE
    except ValueError as exc:
        logger.error("Invalid sources: %s", exc)
        return EXIT_FAILURE

    if not args.no_progress:
        batch.subscribe(_ProgressPrinter())

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, batch.cancel)

    try:
        report = await batch.start()
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)

    if args.report is not None:
        export_report_json(report, args.report)

    if settings.report_format == "json":
        print(report.model_dump_json(indent=2))
    else:
        print(export_report_summary(report))

    if report.cancelled and report.status == "error":
        return EXIT_CANCELLED
    if report.status == "done":
        return EXIT_OK
    if report.status == "partial":
        return EXIT_PARTIAL
    return EXIT_FAILURE


class _ProgressPrinter:
    """Print whole-percent progress steps to stderr."""

    def __init__(self) -> None:
        self._last = -1

    def __call__(self, event: BatchEvent) -> None:
        if event.kind != "progress":
            return
        percent = int(event.progress * 100)
        if percent > self._last:
            self._last = percent
            print(
                f"\r{percent:3d}% ({event.transferred_bytes}/{event.total_bytes} bytes)",
                end="", file=sys.stderr, flush=True,
            )
            if percent == 100:
                print(file=sys.stderr)


def _setup_logging(verbose: bool, settings: Settings) -> None:
    """Configure logging for CLI usage."""
    from batchxfer.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file or None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""Monitor a folder and transfer added or changed files to blob storage.

Command-line options override values loaded from the environment or
``.env``; anything not given falls back to the application settings.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from loguru import logger

from app.utils.config import Settings, get_settings
from app.utils.log_config import configure_logging
from domains.transfer.pipeline import TransferPipeline
from domains.transfer.watcher import FolderWatcher


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        description=(
            "Monitor a folder for file additions or changes and automatically "
            "transfer those files to Azure Blob Storage."
        ),
    )
    parser.add_argument("--account-name", help="Storage account name.")
    parser.add_argument("--account-key", help="Storage account key.")
    parser.add_argument(
        "--connection-string",
        help="Full storage connection string; takes precedence over name and key.",
    )
    parser.add_argument("--container-name", help="Destination container.")
    parser.add_argument(
        "--directory",
        type=Path,
        help="Directory to monitor for additions or changes.",
    )
    parser.add_argument(
        "--include",
        action="store_true",
        default=None,
        help="Include subdirectories (default: false).",
    )
    parser.add_argument(
        "--filter",
        dest="file_filter",
        help="Filter pattern for monitored files such as *.txt (default: all files).",
    )
    parser.add_argument(
        "--in-memory",
        action="store_true",
        default=None,
        help="Keep uploads in memory instead of sending them to storage.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log the effective configuration at startup.",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level, e.g. DEBUG or INFO.",
    )
    parser.add_argument(
        "--poll",
        type=float,
        default=1.0,
        help="How often the main loop checks for shutdown (seconds).",
    )

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace, base: Optional[Settings] = None) -> Settings:
    """Apply CLI overrides on top of environment settings."""

    base = base or get_settings()
    overrides = {
        "storage_account_name": args.account_name,
        "storage_account_key": args.account_key,
        "storage_connection_string": args.connection_string,
        "container_name": args.container_name,
        "watch_directory": args.directory,
        "include_subdirectories": args.include,
        "file_filter": args.file_filter,
        "use_in_memory_storage": args.in_memory,
        "log_level": args.log_level,
    }
    return base.model_copy(update={k: v for k, v in overrides.items() if v is not None})


def log_configuration(settings: Settings) -> None:
    logger.info(f"Account Name \t{settings.storage_account_name}")
    logger.info(f"Account Key \t{settings.masked_account_key()}")
    logger.info(f"Container Name \t{settings.container_name}")
    logger.info(f"Directory Name \t{settings.watch_directory}")
    logger.info(f"Filter \t\t{settings.file_filter}")
    logger.info(f"Subdirectories \t{settings.include_subdirectories}")
    logger.info(f"Log Level \t{settings.log_level}")


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    settings = build_settings(args)
    configure_logging(settings.log_level)

    if args.verbose:
        log_configuration(settings)

    if not settings.use_in_memory_storage and not settings.get_connection_string():
        logger.error("No storage credentials: pass --connection-string or --account-name/--account-key")
        return 2

    timer = time.monotonic()
    pipeline = TransferPipeline.from_settings(settings)
    watcher = FolderWatcher(
        settings.watch_directory,
        pipeline.submit,
        include_subdirectories=settings.include_subdirectories,
        file_filter=settings.file_filter,
    )

    try:
        pipeline.start()
        watcher.start()
    except (OSError, ValueError) as e:
        logger.error(f"Failed to start: {e}")
        pipeline.stop(0)
        return 1

    stop_event = threading.Event()

    def _signal_handler(signum, frame):  # noqa: D401
        logger.info(f"Received signal {signum}, shutting down.")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        while not stop_event.is_set():
            if pipeline.fatal_error is not None:
                logger.error("Transfer worker stopped unexpectedly")
                break
            stop_event.wait(args.poll)
    finally:
        watcher.stop()
        clean = pipeline.stop(settings.shutdown_timeout)
        pipeline.storage.close()

    logger.info(f"Elapsed time \t{time.monotonic() - timer:.1f} seconds")
    logger.info(f"Transferred {len(pipeline.history)} file(s), {pipeline.failures} failure(s)")

    if pipeline.fatal_error is not None:
        return 1
    return 0 if clean else 3


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())

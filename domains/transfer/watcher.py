"""
Folder watcher feeding the transfer pipeline.

Uses the watchdog library for cross-platform file system event monitoring.
Created and modified files that match the filter are submitted for upload.
"""

from pathlib import Path
from typing import Callable, Union

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from app.utils.helpers import matches_filter, normalise_path


class TransferEventHandler(FileSystemEventHandler):
    """Forward file changes to an ingest callback."""

    def __init__(self, submit: Callable[[str], bool], file_filter: str = "*"):
        """
        Initialize event handler.

        Args:
            submit: Ingest API, usually ``TransferPipeline.submit``
            file_filter: Glob applied to file names, e.g. ``*.csv``
        """
        super().__init__()
        self.submit = submit
        self.file_filter = file_filter
        self.excluded_suffixes = {".tmp", ".swp", ".part", ".crdownload"}

    def should_process(self, path: str) -> bool:
        """
        Check if path should be uploaded.

        Args:
            path: File path

        Returns:
            True if should process, False otherwise
        """
        if Path(path).suffix in self.excluded_suffixes:
            return False

        return matches_filter(path, self.file_filter)

    def _forward(self, kind: str, path: str) -> None:
        if not self.should_process(path):
            return

        logger.info(f"Detected file {kind}: {path}")
        self.submit(path)

    def on_created(self, event: FileSystemEvent):
        """Handle file creation."""
        if event.is_directory:
            return
        self._forward("created", event.src_path)

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification."""
        # Skip directory modifications (too noisy)
        if event.is_directory:
            return
        self._forward("modified", event.src_path)

    def on_moved(self, event: FileSystemEvent):
        """Handle rename into the watched tree, e.g. atomic saves."""
        if event.is_directory:
            return
        self._forward("moved", event.dest_path)


class FolderWatcher:
    """Watch one directory and submit changed files."""

    def __init__(
        self,
        directory: Union[str, Path],
        submit: Callable[[str], bool],
        include_subdirectories: bool = False,
        file_filter: str = "*",
    ):
        """Initialize folder watcher."""
        self.directory = normalise_path(Path(directory))
        self.include_subdirectories = include_subdirectories
        self.event_handler = TransferEventHandler(submit, file_filter)
        self.observer = Observer()
        self.observer.daemon = True

    def start(self):
        """Start watching the directory."""
        if not self.directory.is_dir():
            raise NotADirectoryError(f"Not a directory: {self.directory}")

        self.observer.schedule(
            self.event_handler,
            str(self.directory),
            recursive=self.include_subdirectories,
        )
        self.observer.start()
        logger.success(
            f"Monitoring: {self.directory}, Filter: {self.event_handler.file_filter}, "
            f"Including Subdirectories: {self.include_subdirectories}"
        )

    def stop(self):
        """Stop watching."""
        self.observer.stop()
        self.observer.join()
        logger.info("Folder watcher stopped")

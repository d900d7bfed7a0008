"""
Transfer pipeline: ingest queue, single worker, uploaders and history.

One background thread drains the ingest queue and takes each file through
classification, upload and history recording before it looks at the next
one. Uploads never overlap.
"""

import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from loguru import logger

from app.utils.blob_client import StorageClient, create_storage_client
from app.utils.config import Settings, get_settings
from app.utils.helpers import format_bytes, normalise_path, utc_now
from domains.transfer.errors import TransferCancelled, TransferError
from domains.transfer.history import HistoryLedger
from domains.transfer.ingest_queue import IngestQueue
from domains.transfer.models import FileDetails, UploadPlan
from domains.transfer.retry import RetryPolicy
from domains.transfer.router import SizeRouter
from domains.transfer.uploaders import LargeFileUploader, SmallFileUploader


class TransferPipeline:
    """Owns the queue, the worker thread and the history of one watcher."""

    def __init__(
        self,
        storage: StorageClient,
        settings: Settings = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        log=None,
    ):
        """
        Initialize the pipeline.

        Args:
            storage: Storage client the uploaders talk to
            settings: Transfer settings, defaults to the cached application settings
            clock: Source of start/end timestamps
            sleep: Used between retries
            log: loguru logger, defaults to one bound to this component
        """
        self.settings = settings or get_settings()
        self.storage = storage
        self.log = log or logger.bind(component="transfer")

        retry_policy = RetryPolicy(
            backoff_seconds=self.settings.retry_backoff_seconds,
            max_retries=self.settings.retry_max_retries,
            sleep=sleep,
        )

        self.queue = IngestQueue(coalesce_duplicates=self.settings.coalesce_duplicates)
        self.router = SizeRouter(threshold=self.settings.small_file_threshold)
        self.small_uploader = SmallFileUploader(storage, retry_policy=retry_policy, clock=clock)
        self.large_uploader = LargeFileUploader(
            storage,
            retry_policy=retry_policy,
            clock=clock,
            block_size=self.settings.block_size,
            discard_uncommitted_blocks=self.settings.discard_uncommitted_blocks,
        )
        self.history = HistoryLedger()

        self.failures = 0
        self.skipped = 0
        self.fatal_error: Optional[BaseException] = None

        self._cancel = threading.Event()
        self._record_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_settings(cls, settings: Settings = None, **kwargs) -> "TransferPipeline":
        """Build a pipeline with the storage client the settings select."""
        settings = settings or get_settings()
        return cls(create_storage_client(settings), settings=settings, **kwargs)

    # Ingest API -----------------------------------------------------------------

    def submit(self, path: Union[str, Path]) -> bool:
        """Queue ``path`` for upload. Ignored once the pipeline is stopping."""
        queued = self.queue.submit(str(path))
        if queued:
            self.log.debug(f"Queued {path} ({len(self.queue)} waiting)")
        return queued

    # Lifecycle ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread."""
        if self.is_running:
            return

        self._thread = threading.Thread(target=self._run, name="transfer-worker", daemon=True)
        self._thread.start()
        self.log.info("Transfer pipeline started")

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Close the queue, let the worker drain it, and wait up to ``timeout``.

        Returns:
            True if the worker finished in time. On timeout the worker is told
            to abandon what is left and nothing further reaches history.
        """
        timeout = self.settings.shutdown_timeout if timeout is None else timeout
        self.log.info(f"Stopping transfer pipeline, {len(self.queue)} item(s) queued")
        self.queue.close()

        if self._thread is None:
            return True

        self._thread.join(timeout)
        if not self._thread.is_alive():
            self.log.info("Transfer pipeline stopped")
            return True

        with self._record_lock:
            self._cancel.set()
        dropped = self.queue.discard_pending()
        self.log.warning(
            f"Shutdown timed out after {timeout:g}s; abandoned {dropped} queued item(s) "
            "and the transfer in flight"
        )
        return False

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted path has been processed."""
        return self.queue.join(timeout)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "accepting": not self.queue.closed,
            "queued": len(self.queue),
            "completed": len(self.history),
            "failures": self.failures,
            "skipped": self.skipped,
            "fatal_error": str(self.fatal_error) if self.fatal_error else None,
        }

    # Worker ---------------------------------------------------------------------

    def _run(self) -> None:
        self.log.info("Transfer worker running")

        try:
            while not self._cancel.is_set():
                request = self.queue.get()
                if request is None:
                    break
                self._process_and_mark(request.path)

            # Closed for new work: finish what was already queued.
            for request in self.queue.drain():
                if self._cancel.is_set():
                    self.queue.task_done()
                    break
                self._process_and_mark(request.path)

        except Exception as e:
            self.fatal_error = e
            self.queue.close()
            self.log.opt(exception=e).error(f"Transfer worker failed, intake closed: {e}")
            return

        self.log.info("Transfer worker exiting")

    def _process_and_mark(self, path: str) -> None:
        try:
            self.process(path)
        finally:
            self.queue.task_done()

    def process(self, path: Union[str, Path]) -> Optional[FileDetails]:
        """
        Classify and upload one file, recording it in history on success.

        Errors are logged and counted; they never propagate to the worker loop.

        Returns:
            The recorded FileDetails, or None when skipped or failed
        """
        path = normalise_path(Path(path))
        routed = self.router.classify_with_size(path)
        if routed is None:
            self.skipped += 1
            self.log.info(f"Skipping {path}: no longer a file")
            return None

        plan, size = routed
        self.log.info(f"Transferring {path} ({format_bytes(size)}, {plan.value})")

        try:
            if plan is UploadPlan.SMALL:
                details = self.small_uploader.upload(path)
            else:
                details = self.large_uploader.upload(path, should_stop=self._cancel.is_set)

        except FileNotFoundError:
            self.skipped += 1
            self.log.info(f"Skipping {path}: removed during transfer")
            return None

        except TransferCancelled as e:
            self.log.warning(f"Abandoned {path}: {e}")
            return None

        except (TransferError, OSError) as e:
            self.failures += 1
            self.log.error(f"Transfer failed for {path}, resubmit to retry: {e}")
            return None

        except Exception as e:
            self.failures += 1
            self.log.opt(exception=e).error(f"Unexpected error transferring {path}: {e}")
            return None

        # stop() sets the cancel flag under the same lock.
        with self._record_lock:
            if self._cancel.is_set():
                self.log.warning(f"{path} finished after the shutdown deadline; not recorded")
                return None

            try:
                self.history.append(details)
            except ValueError as e:
                self.failures += 1
                self.log.error(f"Could not record transfer of {path}: {e}")
                return None

        self.log.success(
            f"Transferred {details.destination_path} ({format_bytes(details.size)}) "
            f"in {details.duration_seconds:.2f}s"
        )
        return details

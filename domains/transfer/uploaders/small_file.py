"""
Whole-object uploader for files at or below the single-request threshold.

Protocol:
1. Ensure the destination container exists
2. Upload the file body in one request, retrying transient failures
3. Stamp start/end times on the returned FileDetails
"""

from datetime import datetime
from pathlib import Path
from typing import Callable

from loguru import logger

from app.utils.blob_client import StorageClient
from app.utils.helpers import format_bytes, utc_now
from domains.transfer.errors import TransferError
from domains.transfer.models import FileDetails, UploadPlan
from domains.transfer.retry import RetryPolicy


class SmallFileUploader:
    """Single-shot upload with a bounded retry policy."""

    def __init__(
        self,
        storage: StorageClient,
        retry_policy: RetryPolicy = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock

    def upload(self, path: Path) -> FileDetails:
        """
        Upload ``path`` as a single object.

        Args:
            path: Local file, expected to be at most the single-request threshold

        Returns:
            FileDetails with start and end times set

        Raises:
            TransferError: if the upload failed after retries
            FileNotFoundError: if the file disappeared before it was read
        """
        path = Path(path)
        data = path.read_bytes()
        details = FileDetails.begin(path, len(data), self.clock(), UploadPlan.SMALL)
        name = details.destination_path

        self.storage.ensure_container()

        def _put():
            logger.debug(f"Uploading {path} as {name} ({format_bytes(len(data))})")
            self.storage.put_whole_object(name, data)

        try:
            _, details.attempts = self.retry_policy.call(_put, description=f"upload {path}")
        except TransferError as e:
            e.path = str(path)
            raise

        details.end_time = max(self.clock(), details.start_time)
        logger.info(f"Uploaded {path} -> {name} in {details.attempts} attempt(s)")
        return details

"""
Blob storage clients.

Provides:
- The storage capability interface consumed by the transfer pipeline
- An Azure Blob Storage implementation (block blobs)
- An in-memory implementation for tests and dry runs
- Error translation into the pipeline's error taxonomy
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, List, Optional, Sequence, Tuple

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import BlobBlock, BlobServiceClient
from loguru import logger

from app.utils.config import Settings, get_settings
from app.utils.helpers import md5_base64
from domains.transfer.errors import StorageError, TransientStorageError

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class StorageClient(ABC):
    """Capabilities the uploaders need from an object store."""

    container_name: str

    @abstractmethod
    def ensure_container(self) -> bool:
        """Create the container if absent. Returns True when it was created."""

    @abstractmethod
    def put_whole_object(self, name: str, data: bytes) -> None:
        """Upload ``data`` as the complete object ``name`` in one request."""

    @abstractmethod
    def put_block(self, name: str, block_id: str, data: bytes, content_md5: str) -> None:
        """Stage one block of ``name``; the service verifies ``content_md5``."""

    @abstractmethod
    def commit_blocks(self, name: str, block_ids: Sequence[str]) -> None:
        """Make ``name`` the concatenation of the staged blocks, in order."""

    @abstractmethod
    def discard_blocks(self, name: str) -> int:
        """Best-effort removal of uncommitted blocks. Returns how many were dropped."""

    def close(self) -> None:
        """Release network resources."""


@contextmanager
def translate_azure_errors(description: str, name: Optional[str] = None):
    """Re-raise Azure SDK errors as StorageError / TransientStorageError."""
    try:
        yield
    except (ServiceRequestError, ServiceResponseError) as e:
        raise TransientStorageError(f"{description} failed: {e}", name) from e
    except HttpResponseError as e:
        if e.status_code in TRANSIENT_STATUS_CODES:
            raise TransientStorageError(f"{description} failed ({e.status_code}): {e.message}", name) from e
        raise StorageError(f"{description} failed ({e.status_code}): {e.message}", name) from e
    except AzureError as e:
        raise StorageError(f"{description} failed: {e}", name) from e


class AzureBlobStorageClient(StorageClient):
    """Block blob client for one container."""

    def __init__(
        self,
        connection_string: str = None,
        container_name: str = None,
        single_put_threshold: int = None,
        block_size: int = None,
    ):
        """Initialize Azure client."""
        settings = get_settings()
        self.connection_string = connection_string or settings.get_connection_string()
        self.container_name = container_name or settings.container_name
        self.single_put_threshold = single_put_threshold or settings.small_file_threshold
        self.block_size = block_size or settings.block_size

        if not self.connection_string:
            raise StorageError("No storage connection string or account credentials configured")

        self._service: Optional[BlobServiceClient] = None

    def connect(self):
        """Create the service client."""
        if self._service is None:
            logger.info(f"Connecting to blob storage, container '{self.container_name}'...")
            # Retries belong to the pipeline's RetryPolicy so attempts are counted once.
            self._service = BlobServiceClient.from_connection_string(
                self.connection_string,
                max_single_put_size=self.single_put_threshold,
                max_block_size=self.block_size,
                retry_total=0,
                connection_timeout=30,
                read_timeout=120,
            )

    def close(self):
        """Close the service client."""
        if self._service is not None:
            logger.info("Closing blob storage connection...")
            self._service.close()
            self._service = None

    @property
    def service(self) -> BlobServiceClient:
        if self._service is None:
            self.connect()
        return self._service

    def _blob(self, name: str):
        return self.service.get_blob_client(container=self.container_name, blob=name)

    def ensure_container(self) -> bool:
        container = self.service.get_container_client(self.container_name)
        with translate_azure_errors(f"create container {self.container_name}"):
            try:
                container.create_container()
                logger.info(f"Created container '{self.container_name}'")
                return True
            except ResourceExistsError:
                return False

    def put_whole_object(self, name: str, data: bytes) -> None:
        with translate_azure_errors(f"upload {name}", name):
            self._blob(name).upload_blob(data, overwrite=True, max_concurrency=1)

    def put_block(self, name: str, block_id: str, data: bytes, content_md5: str) -> None:
        if md5_base64(data) != content_md5:
            raise StorageError(f"Block {block_id} of {name} does not match its hash", name)

        # validate_content sends the block's MD5 so the service rejects corrupted bodies.
        with translate_azure_errors(f"stage block {block_id} of {name}", name):
            self._blob(name).stage_block(
                block_id=block_id,
                data=data,
                length=len(data),
                validate_content=True,
            )

    def commit_blocks(self, name: str, block_ids: Sequence[str]) -> None:
        with translate_azure_errors(f"commit {len(block_ids)} blocks of {name}", name):
            self._blob(name).commit_block_list([BlobBlock(block_id=block_id) for block_id in block_ids])

    def discard_blocks(self, name: str) -> int:
        blob = self._blob(name)
        with translate_azure_errors(f"discard blocks of {name}", name):
            try:
                committed, uncommitted = blob.get_block_list("all")
            except ResourceNotFoundError:
                return 0

            if not uncommitted:
                return 0

            if committed:
                # An earlier version exists; its next commit replaces the staged blocks.
                logger.warning(
                    f"Leaving {len(uncommitted)} uncommitted blocks on {name}: committed version exists"
                )
                return 0

            # Committing an empty list drops staged blocks, then the empty blob goes.
            blob.commit_block_list([])
            blob.delete_blob()
            return len(uncommitted)


class InMemoryStorageClient(StorageClient):
    """Dict-backed store with the same semantics as the Azure client."""

    def __init__(self, container_name: str = "uploads"):
        self.container_name = container_name
        self.container_exists = False
        self.objects: Dict[str, bytes] = {}
        self.staged: Dict[str, Dict[str, bytes]] = {}
        self.calls: List[Tuple] = []
        self._failures: Dict[str, List[Exception]] = {}
        self._lock = threading.Lock()

    def fail_next(self, operation: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        with self._lock:
            self._failures.setdefault(operation, []).extend([error] * times)

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation,) + args)
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def calls_to(self, operation: str) -> List[Tuple]:
        return [call for call in self.calls if call[0] == operation]

    def ensure_container(self) -> bool:
        with self._lock:
            self._record("ensure_container")
            created = not self.container_exists
            self.container_exists = True
            return created

    def put_whole_object(self, name: str, data: bytes) -> None:
        with self._lock:
            self._record("put_whole_object", name, len(data))
            self._require_container(name)
            self.objects[name] = bytes(data)

    def put_block(self, name: str, block_id: str, data: bytes, content_md5: str) -> None:
        with self._lock:
            self._record("put_block", name, block_id, len(data))
            self._require_container(name)
            if md5_base64(data) != content_md5:
                raise StorageError(f"Block {block_id} of {name} failed MD5 verification", name)
            self.staged.setdefault(name, {})[block_id] = bytes(data)

    def commit_blocks(self, name: str, block_ids: Sequence[str]) -> None:
        with self._lock:
            self._record("commit_blocks", name, list(block_ids))
            staged = self.staged.get(name, {})
            missing = [block_id for block_id in block_ids if block_id not in staged]
            if missing:
                raise StorageError(f"Commit of {name} references unknown blocks {missing}", name)
            self.objects[name] = b"".join(staged[block_id] for block_id in block_ids)
            self.staged.pop(name, None)

    def discard_blocks(self, name: str) -> int:
        with self._lock:
            self._record("discard_blocks", name)
            return len(self.staged.pop(name, {}))

    def get_object(self, name: str) -> bytes:
        with self._lock:
            return self.objects[name]

    def _require_container(self, name: str) -> None:
        if not self.container_exists:
            raise StorageError(f"Container {self.container_name} does not exist", name)


def create_storage_client(settings: Settings = None) -> StorageClient:
    """Build the storage client selected by settings."""
    settings = settings or get_settings()
    if settings.use_in_memory_storage:
        logger.warning("Using in-memory storage; nothing leaves this process")
        return InMemoryStorageClient(container_name=settings.container_name)

    return AzureBlobStorageClient(
        connection_string=settings.get_connection_string(),
        container_name=settings.container_name,
        single_put_threshold=settings.small_file_threshold,
        block_size=settings.block_size,
    )

"""Exception hierarchy for the transfer pipeline."""

from typing import Optional


class TransferError(Exception):
    """A single file's transfer failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class StorageError(TransferError):
    """The storage service rejected a request; retrying will not help."""


class TransientStorageError(StorageError):
    """Network or service-side failure that may succeed when retried."""


class BlockUploadError(TransferError):
    """A block of a large file could not be staged."""

    def __init__(self, message: str, path: Optional[str], sequence: int, offset: int, length: int):
        super().__init__(message, path)
        self.sequence = sequence
        self.offset = offset
        self.length = length


class CommitError(TransferError):
    """The block list of a large file could not be committed."""


class TransferCancelled(TransferError):
    """Shutdown deadline passed before the transfer could finish."""

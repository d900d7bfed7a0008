"""
Block uploader for files above the single-request threshold.

The file is cut into fixed-size blocks. Each block is read, hashed with MD5
and staged under a deterministic identifier; the ordered identifiers are then
committed as the object's block list. Nothing is visible at the destination
until the commit succeeds.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional

from loguru import logger

from app.utils.blob_client import StorageClient
from app.utils.helpers import block_id_for, format_bytes, md5_base64, utc_now
from domains.transfer.errors import (
    BlockUploadError,
    CommitError,
    TransferCancelled,
    TransferError,
)
from domains.transfer.models import Block, BlockResult, FileDetails, UploadPlan
from domains.transfer.retry import RetryPolicy

BLOCK_SIZE = 256 * 1024  # 256 KiB


def plan_blocks(size: int, block_size: int = BLOCK_SIZE) -> List[Block]:
    """
    Partition ``size`` bytes into consecutive blocks.

    Sequence numbers start at 1 and have no gaps. Every block is ``block_size``
    long except the last, which holds the remainder. An empty input yields a
    single zero-length block.
    """
    if block_size <= 0:
        raise ValueError("block_size must be positive")

    if size == 0:
        return [Block(sequence=1, offset=0, length=0, block_id=block_id_for(1))]

    blocks = []
    offset = 0
    sequence = 0
    while offset < size:
        sequence += 1
        length = min(block_size, size - offset)
        blocks.append(Block(sequence=sequence, offset=offset, length=length, block_id=block_id_for(sequence)))
        offset += length
    return blocks


class LargeFileUploader:
    """Chunked upload with per-block integrity hashes and an ordered commit."""

    def __init__(
        self,
        storage: StorageClient,
        retry_policy: RetryPolicy = None,
        clock: Callable[[], datetime] = utc_now,
        block_size: int = BLOCK_SIZE,
        discard_uncommitted_blocks: bool = False,
    ):
        self.storage = storage
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock
        self.block_size = block_size
        self.discard_uncommitted_blocks = discard_uncommitted_blocks

    def upload(self, path: Path, should_stop: Optional[Callable[[], bool]] = None) -> FileDetails:
        """
        Upload ``path`` as a sequence of staged blocks followed by a commit.

        Args:
            path: Local file
            should_stop: Polled before each block and before the commit

        Returns:
            FileDetails with start and end times set

        Raises:
            BlockUploadError: a block could not be staged
            CommitError: the block list could not be committed
            TransferCancelled: ``should_stop`` returned True mid-transfer
        """
        path = Path(path)
        should_stop = should_stop or (lambda: False)
        start_time = self.clock()

        self.storage.ensure_container()

        with open(path, "rb") as stream:
            size = os.fstat(stream.fileno()).st_size
            details = FileDetails.begin(path, size, start_time, UploadPlan.LARGE)
            name = details.destination_path
            blocks = plan_blocks(size, self.block_size)

            logger.info(
                f"Uploading {path} -> {name} ({format_bytes(size)}) in {len(blocks)} blocks"
            )

            manifest: List[str] = []
            for block in blocks:
                if should_stop():
                    self._abandon(name, path, len(manifest))
                    raise TransferCancelled(f"Cancelled before block {block.sequence} of {path}", str(path))

                result = self._stage_block(stream, name, block)
                details.attempts += result.attempts
                if not result.ok:
                    self._abandon(name, path, len(manifest))
                    raise BlockUploadError(
                        f"Block {block.sequence} of {path} (bytes {block.offset}-"
                        f"{block.offset + block.length - 1}) failed: {result.error}",
                        str(path),
                        sequence=block.sequence,
                        offset=block.offset,
                        length=block.length,
                    ) from result.error
                manifest.append(result.block.block_id)

        if should_stop():
            self._abandon(name, path, len(manifest))
            raise TransferCancelled(f"Cancelled before commit of {path}", str(path))

        try:
            self.retry_policy.call(
                lambda: self.storage.commit_blocks(name, manifest),
                description=f"commit {path}",
            )
        except TransferError as e:
            self._abandon(name, path, len(manifest))
            raise CommitError(f"Commit of {len(manifest)} blocks for {path} failed: {e}", str(path)) from e

        details.block_count = len(manifest)
        details.end_time = max(self.clock(), details.start_time)
        logger.info(f"Committed {len(manifest)} blocks for {path}")
        return details

    def _stage_block(self, stream: BinaryIO, name: str, block: Block) -> BlockResult:
        """Read, hash and stage one block; failures come back as a result, not an exception."""
        stream.seek(block.offset)
        data = stream.read(block.length)
        if len(data) != block.length:
            error = TransferError(
                f"Short read at offset {block.offset}: expected {block.length} bytes, got {len(data)}"
            )
            return BlockResult(block=block, ok=False, error=error)

        content_md5 = md5_base64(data)
        hashed = Block(
            sequence=block.sequence,
            offset=block.offset,
            length=block.length,
            block_id=block.block_id,
            content_md5=content_md5,
        )

        try:
            _, attempts = self.retry_policy.call(
                lambda: self.storage.put_block(name, hashed.block_id, data, content_md5),
                description=f"block {block.sequence} of {name}",
            )
        except TransferError as e:
            return BlockResult(block=hashed, ok=False, error=e)

        logger.debug(f"Staged block {block.sequence} of {name} at offset {block.offset} ({block.length} bytes)")
        return BlockResult(block=hashed, ok=True, attempts=attempts)

    def _abandon(self, name: str, path: Path, staged: int) -> None:
        """Drop staged blocks when configured to; otherwise leave them for the service to expire."""
        if not self.discard_uncommitted_blocks:
            if staged:
                logger.warning(f"{staged} uncommitted blocks for {path} left on storage under {name}")
            return

        try:
            dropped = self.storage.discard_blocks(name)
            logger.info(f"Discarded {dropped} uncommitted blocks for {name}")
        except TransferError as e:
            logger.warning(f"Could not discard uncommitted blocks for {name}: {e}")

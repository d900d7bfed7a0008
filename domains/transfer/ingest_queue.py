"""
Thread-safe ingest queue feeding the transfer worker.

Producers (watcher callbacks, API requests) call ``submit``; the single
worker calls ``get`` and ``task_done``. The queue is unbounded.
"""

import threading
from collections import deque
from typing import Deque, Iterator, Optional, Set

from loguru import logger

from domains.transfer.models import TransferRequest


class IngestQueue:
    """Unbounded FIFO of transfer requests with close and drain semantics."""

    def __init__(self, coalesce_duplicates: bool = True):
        """
        Initialize the queue.

        Args:
            coalesce_duplicates: Skip a path that is already waiting in the queue
        """
        self.coalesce_duplicates = coalesce_duplicates
        self._items: Deque[TransferRequest] = deque()
        self._pending: Set[str] = set()
        self._closed = False
        self._unfinished = 0
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._all_done = threading.Condition(self._lock)

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def submit(self, path: str) -> bool:
        """
        Enqueue a path for later processing.

        Returns:
            True if queued, False if the queue is closed or the path was coalesced
        """
        with self._lock:
            if self._closed:
                logger.debug(f"Queue closed, ignoring {path}")
                return False

            if self.coalesce_duplicates and path in self._pending:
                logger.debug(f"Already queued: {path}")
                return False

            self._items.append(TransferRequest(path=path))
            self._pending.add(path)
            self._unfinished += 1
            self._not_empty.notify()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[TransferRequest]:
        """
        Remove and return the next request.

        Blocks until an item arrives. Returns None once the queue is closed,
        after which the consumer switches to ``drain``, or when ``timeout``
        elapses first.
        """
        with self._not_empty:
            if not self._not_empty.wait_for(lambda: self._items or self._closed, timeout):
                return None
            if self._closed:
                return None
            return self._pop()

    def _pop(self) -> TransferRequest:
        request = self._items.popleft()
        self._pending.discard(request.path)
        return request

    def task_done(self) -> None:
        """Mark a request returned by ``get`` or ``drain`` as processed."""
        with self._lock:
            if self._unfinished <= 0:
                raise ValueError("task_done() called more times than there were items")
            self._unfinished -= 1
            if self._unfinished == 0:
                self._all_done.notify_all()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until every submitted request has been marked done."""
        with self._all_done:
            return self._all_done.wait_for(lambda: self._unfinished == 0, timeout)

    def close(self) -> None:
        """Stop accepting new submissions and wake blocked consumers."""
        with self._lock:
            self._closed = True
            self._not_empty.notify_all()

    def drain(self) -> Iterator[TransferRequest]:
        """Yield already-queued requests until the queue is empty."""
        while True:
            with self._lock:
                if not self._items:
                    return
                request = self._pop()
            yield request

    def discard_pending(self) -> int:
        """Drop everything still queued; returns the number dropped."""
        with self._lock:
            dropped = len(self._items)
            self._items.clear()
            self._pending.clear()
            self._unfinished -= dropped
            if self._unfinished == 0:
                self._all_done.notify_all()
            return dropped

"""In-memory, append-only record of completed transfers."""

import threading
from typing import Iterator, List, Optional, Tuple

from domains.transfer.models import FileDetails


class HistoryLedger:
    """
    Insertion-ordered FileDetails for transfers whose commit succeeded.

    Only the pipeline's worker appends. Readers on any thread get immutable
    snapshots, so iteration never observes a half-written entry.
    """

    def __init__(self):
        self._entries: List[FileDetails] = []
        self._lock = threading.Lock()

    def append(self, details: FileDetails) -> None:
        if details.end_time is None:
            raise ValueError(f"Refusing unfinished transfer for {details.destination_path}")
        if details.end_time < details.start_time:
            raise ValueError(f"End time precedes start time for {details.destination_path}")

        with self._lock:
            self._entries.append(details)

    def snapshot(self) -> Tuple[FileDetails, ...]:
        """Point-in-time copy of all entries, oldest first."""
        with self._lock:
            return tuple(self._entries)

    def latest(self) -> Optional[FileDetails]:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def __iter__(self) -> Iterator[FileDetails]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

"""Records passed between the queue, the uploaders and the history ledger."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from app.utils.helpers import destination_path_for, utc_now


class UploadPlan(str, Enum):
    """How a file is sent to storage, decided once from its size."""

    SMALL = "small"  # single whole-object request
    LARGE = "large"  # staged blocks plus commit


@dataclass(slots=True)
class TransferRequest:
    """A path waiting in the ingest queue."""

    path: str
    submitted_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class FileDetails:
    """Description of one completed (or in-progress) transfer."""

    file_name: str
    local_directory: str
    destination_path: str
    size: int
    start_time: datetime
    end_time: Optional[datetime] = None
    plan: Optional[UploadPlan] = None
    attempts: int = 0
    block_count: int = 0

    @classmethod
    def begin(cls, path: Path, size: int, start_time: datetime, plan: UploadPlan) -> "FileDetails":
        """Start a record for ``path`` at ``start_time``."""

        return cls(
            file_name=path.name,
            local_directory=str(path.parent),
            destination_path=destination_path_for(path),
            size=size,
            start_time=start_time,
            plan=plan,
        )

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def as_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["plan"] = self.plan.value if self.plan else None
        return payload


@dataclass(frozen=True, slots=True)
class Block:
    """One fixed-size slice of a large file."""

    sequence: int
    offset: int
    length: int
    block_id: str
    content_md5: str = ""


@dataclass(frozen=True, slots=True)
class BlockResult:
    """Outcome of staging a single block."""

    block: Block
    ok: bool
    attempts: int = 1
    error: Optional[Exception] = None

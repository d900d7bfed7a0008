"""
Pydantic models for the Folder Watch API.

Shared data models across the application.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from domains.transfer.models import FileDetails


# =====================================================
# Transfer Models
# =====================================================

class TransferRecord(BaseModel):
    """Completed transfer as reported by the history API."""
    file_name: str
    local_directory: str
    destination_path: str
    size: int
    start_time: datetime
    end_time: datetime
    plan: Optional[str] = None  # small, large
    attempts: int = 0
    block_count: int = 0

    @classmethod
    def from_details(cls, details: FileDetails) -> "TransferRecord":
        return cls(**details.as_dict())


class TransferHistory(BaseModel):
    """History ledger snapshot."""
    count: int
    transfers: List[TransferRecord] = []


class SubmitRequest(BaseModel):
    """Request to queue a local file for upload."""
    path: str = Field(..., min_length=1, description="Absolute path of the file to upload")


# =====================================================
# Response Models
# =====================================================

class SubmitResponse(BaseModel):
    """Ingest API response."""
    status: str  # queued, ignored
    path: str


class PipelineStatus(BaseModel):
    """Transfer worker state."""
    running: bool
    accepting: bool
    queued: int
    completed: int
    failures: int
    skipped: int
    fatal_error: Optional[str] = None

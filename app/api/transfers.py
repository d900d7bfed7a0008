"""
Transfer endpoints.

Includes:
- History of completed transfers
- Manual submission of a file for upload
"""

from pathlib import Path

from fastapi import APIRouter, HTTPException, Request, status
from loguru import logger

from app.models.schemas import SubmitRequest, SubmitResponse, TransferHistory, TransferRecord
from app.utils.helpers import normalise_path

router = APIRouter()


@router.get("", response_model=TransferHistory)
async def list_transfers(request: Request, limit: int = 100):
    """
    Return completed transfers, oldest first.

    Args:
        limit: Return only the most recent ``limit`` entries

    Returns:
        History snapshot
    """
    entries = request.app.state.pipeline.history.snapshot()
    if limit > 0:
        entries = entries[-limit:]

    return TransferHistory(
        count=len(entries),
        transfers=[TransferRecord.from_details(entry) for entry in entries]
    )


@router.post("", response_model=SubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_transfer(request: Request, body: SubmitRequest):
    """
    Queue a file for upload, as if the watcher had seen it change.

    Only files under the watched directory are accepted.

    Returns:
        ``queued``, or ``ignored`` when already waiting or the pipeline is stopping
    """
    pipeline = request.app.state.pipeline
    if pipeline.fatal_error is not None:
        raise HTTPException(status_code=503, detail="Transfer worker is not running")

    path = normalise_path(Path(body.path))
    root = normalise_path(Path(pipeline.settings.watch_directory))
    if not path.is_relative_to(root):
        logger.warning(f"Rejected transfer outside {root}: {body.path}")
        raise HTTPException(status_code=403, detail="Path is outside the watched directory")

    logger.info(f"Manual transfer requested: {path}")
    queued = pipeline.submit(path)

    return SubmitResponse(status="queued" if queued else "ignored", path=body.path)

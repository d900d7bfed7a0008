"""
Health check endpoint.
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel
from datetime import datetime

from app.models.schemas import PipelineStatus
from app.utils.config import get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    container: str
    pipeline: PipelineStatus
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint.

    Verifies:
    - API is running
    - Transfer worker is alive and has not failed
    """
    settings = get_settings()
    pipeline = request.app.state.pipeline
    state = PipelineStatus(**pipeline.status())

    healthy = state.running and state.fatal_error is None

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        timestamp=datetime.now(),
        container=pipeline.storage.container_name,
        pipeline=state,
        version=settings.api_version
    )

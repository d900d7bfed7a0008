import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest
from loguru import logger

from app.utils.blob_client import InMemoryStorageClient
from app.utils.config import Settings
from domains.transfer.pipeline import TransferPipeline


class FakeClock:
    """Monotonic clock that advances one second per reading."""

    def __init__(self):
        self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        container_name="test-uploads",
        watch_directory=tmp_path,
        shutdown_timeout=5.0,
    )


@pytest.fixture
def storage() -> InMemoryStorageClient:
    return InMemoryStorageClient(container_name="test-uploads")


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def pipeline(storage, settings, sleeps):
    pipeline = TransferPipeline(storage, settings=settings, clock=FakeClock(), sleep=sleeps.append)
    yield pipeline
    pipeline.stop(timeout=5)


@pytest.fixture
def make_file(tmp_path) -> Callable[..., Path]:
    """Write a file of ``size`` random bytes."""

    def _make(name: str, size: int) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(os.urandom(size))
        return path

    return _make


@pytest.fixture
def log_messages():
    """Collect loguru output for assertions."""
    messages: list[str] = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{level}|{message}")
    yield messages
    logger.remove(handler_id)

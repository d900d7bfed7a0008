import threading
from datetime import datetime, timedelta, timezone

import pytest

from app.utils.blob_client import InMemoryStorageClient
from app.utils.helpers import destination_path_for
from domains.transfer.errors import StorageError, TransientStorageError
from domains.transfer.pipeline import TransferPipeline

KIB = 1024
MIB = 1024 * KIB


class BlockingStorage(InMemoryStorageClient):
    """Holds every whole-object upload until ``release`` is set."""

    def __init__(self):
        super().__init__(container_name="test-uploads")
        self.entered = threading.Event()
        self.release = threading.Event()

    def put_whole_object(self, name, data):
        self.entered.set()
        self.release.wait(10)
        super().put_whole_object(name, data)


def test_small_and_large_files_reach_history(pipeline, storage, make_file):
    small = make_file("small.txt", 500 * KIB)
    large = make_file("large.bin", 3 * MIB)

    pipeline.start()
    pipeline.submit(small)
    pipeline.submit(large)
    assert pipeline.wait_until_idle(timeout=10)

    history = pipeline.history.snapshot()
    assert [entry.file_name for entry in history] == ["small.txt", "large.bin"]
    assert all(entry.end_time >= entry.start_time for entry in history)
    assert len(storage.calls_to("put_whole_object")) == 1
    assert len(storage.calls_to("put_block")) == 12
    assert len(storage.calls_to("commit_blocks")) == 1
    for path in (small, large):
        assert storage.get_object(destination_path_for(path)) == path.read_bytes()


def test_transient_failure_then_success_records_once(pipeline, storage, sleeps, make_file):
    path = make_file("flaky.txt", 1000)
    storage.fail_next("put_whole_object", TransientStorageError("reset"))

    pipeline.start()
    pipeline.submit(path)
    assert pipeline.wait_until_idle(timeout=10)

    assert len(pipeline.history) == 1
    assert pipeline.history.latest().attempts == 2
    assert len(storage.calls_to("put_whole_object")) == 2
    assert sleeps == [2.0]


def test_failed_transfer_is_not_recorded_and_worker_continues(pipeline, storage, make_file):
    bad = make_file("bad.txt", 1000)
    good = make_file("good.txt", 1000)
    storage.fail_next("put_whole_object", StorageError("403"))

    pipeline.start()
    pipeline.submit(bad)
    pipeline.submit(good)
    assert pipeline.wait_until_idle(timeout=10)

    assert [entry.file_name for entry in pipeline.history] == ["good.txt"]
    assert pipeline.failures == 1
    assert pipeline.is_running


def test_failed_block_is_not_recorded(pipeline, storage, make_file):
    path = make_file("broken.bin", 2 * MIB)
    storage.fail_next("put_block", StorageError("400 md5 mismatch"))

    pipeline.start()
    pipeline.submit(path)
    assert pipeline.wait_until_idle(timeout=10)

    assert len(pipeline.history) == 0
    assert pipeline.failures == 1
    assert storage.calls_to("commit_blocks") == []


def test_deleted_file_is_skipped_silently(pipeline, storage, make_file):
    path = make_file("ephemeral.txt", 10)
    path.unlink()

    pipeline.start()
    pipeline.submit(path)
    assert pipeline.wait_until_idle(timeout=10)

    assert len(pipeline.history) == 0
    assert pipeline.failures == 0
    assert pipeline.skipped == 1
    assert storage.calls == []


def test_process_returns_recorded_details(pipeline, make_file):
    path = make_file("direct.txt", 42)

    details = pipeline.process(path)

    assert details is not None
    assert pipeline.history.snapshot() == (details,)


def test_stop_drains_items_already_queued(pipeline, make_file):
    paths = [make_file(f"queued_{i}.txt", 100) for i in range(3)]
    for path in paths:
        pipeline.submit(path)

    pipeline.start()
    assert pipeline.stop(timeout=10)

    assert [entry.file_name for entry in pipeline.history] == [p.name for p in paths]
    assert not pipeline.is_running


def test_submit_after_stop_is_ignored(pipeline, make_file):
    pipeline.start()
    pipeline.stop(timeout=5)

    assert not pipeline.submit(make_file("late.txt", 10))
    assert len(pipeline.history) == 0


def test_duplicate_submissions_coalesce_by_default(pipeline, storage, make_file):
    path = make_file("dup.txt", 10)

    assert pipeline.submit(path)
    assert not pipeline.submit(path)
    pipeline.start()
    assert pipeline.wait_until_idle(timeout=10)

    assert len(storage.calls_to("put_whole_object")) == 1


def test_duplicate_submissions_kept_when_coalescing_disabled(storage, settings, make_file):
    settings = settings.model_copy(update={"coalesce_duplicates": False})
    pipeline = TransferPipeline(storage, settings=settings, sleep=lambda _: None)
    path = make_file("dup.txt", 10)

    assert pipeline.submit(path)
    assert pipeline.submit(path)
    pipeline.start()
    assert pipeline.stop(timeout=10)

    assert len(storage.calls_to("put_whole_object")) == 2
    assert len(pipeline.history) == 2


def test_shutdown_timeout_abandons_unfinished_items(settings, make_file):
    storage = BlockingStorage()
    pipeline = TransferPipeline(storage, settings=settings, sleep=lambda _: None)
    for i in range(3):
        pipeline.submit(make_file(f"slow_{i}.txt", 100))

    pipeline.start()
    assert storage.entered.wait(5)

    assert not pipeline.stop(timeout=0.1)
    assert len(pipeline.queue) == 0

    storage.release.set()
    pipeline._thread.join(5)

    assert not pipeline.is_running
    assert len(pipeline.history) == 0
    assert len(storage.calls_to("put_whole_object")) == 1


def test_queue_failure_is_fatal_and_closes_intake(pipeline, make_file):
    def broken_get(timeout=None):
        raise RuntimeError("queue corrupted")

    pipeline.queue.get = broken_get
    pipeline.start()
    pipeline._thread.join(5)

    assert not pipeline.is_running
    assert isinstance(pipeline.fatal_error, RuntimeError)
    assert pipeline.queue.closed
    assert not pipeline.submit(make_file("after.txt", 10))
    assert pipeline.status()["fatal_error"] == "queue corrupted"


def test_from_settings_uses_in_memory_storage(settings):
    settings = settings.model_copy(update={"use_in_memory_storage": True})

    pipeline = TransferPipeline.from_settings(settings)

    assert isinstance(pipeline.storage, InMemoryStorageClient)
    assert pipeline.storage.container_name == "test-uploads"


@pytest.mark.parametrize("size", [0, 1])
def test_tiny_files_upload_whole(pipeline, storage, make_file, size):
    path = make_file(f"tiny_{size}.txt", size)

    pipeline.process(path)

    assert storage.get_object(destination_path_for(path)) == path.read_bytes()


class BackwardClock:
    """Wall clock stepped back one second on every reading."""

    def __init__(self):
        self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current -= timedelta(seconds=1)
        return self.current


class RecordingEvent(threading.Event):
    """Notes whether ``lock`` was held each time the event is read or set."""

    def __init__(self, lock):
        super().__init__()
        self.lock = lock
        self.checked_locked = []
        self.set_locked = []

    def is_set(self):
        self.checked_locked.append(self.lock.locked())
        return super().is_set()

    def set(self):
        self.set_locked.append(self.lock.locked())
        super().set()


def test_clock_stepping_backward_does_not_stop_the_worker(storage, settings, make_file):
    pipeline = TransferPipeline(storage, settings=settings, clock=BackwardClock(), sleep=lambda _: None)
    small = make_file("first.txt", 10)
    large = make_file("second.bin", 2 * MIB)

    pipeline.start()
    pipeline.submit(small)
    pipeline.submit(large)
    assert pipeline.wait_until_idle(timeout=10)

    assert pipeline.fatal_error is None
    assert pipeline.is_running
    assert [entry.file_name for entry in pipeline.history] == ["first.txt", "second.bin"]
    assert all(entry.end_time == entry.start_time for entry in pipeline.history)
    assert pipeline.stop(timeout=5)


def test_rejected_history_entry_counts_as_file_failure(pipeline, make_file):
    def reject(details):
        raise ValueError("End time precedes start time")

    pipeline.history.append = reject
    pipeline.start()
    pipeline.submit(make_file("rejected.txt", 10))
    assert pipeline.wait_until_idle(timeout=10)

    assert pipeline.failures == 1
    assert pipeline.fatal_error is None
    assert pipeline.is_running
    assert pipeline.submit(make_file("next.txt", 10))


def test_record_decision_and_cancel_share_one_lock(settings, make_file):
    storage = BlockingStorage()
    pipeline = TransferPipeline(storage, settings=settings, sleep=lambda _: None)
    cancel = RecordingEvent(pipeline._record_lock)
    pipeline._cancel = cancel

    storage.release.set()
    pipeline.process(make_file("direct.txt", 10))
    assert cancel.checked_locked == [True]

    storage.release.clear()
    storage.entered.clear()
    pipeline.submit(make_file("slow.txt", 10))
    pipeline.start()
    assert storage.entered.wait(5)
    assert not pipeline.stop(timeout=0.1)
    storage.release.set()
    pipeline._thread.join(5)

    assert cancel.set_locked == [True]
    assert [entry.file_name for entry in pipeline.history] == ["direct.txt"]


def test_relative_paths_resolve_against_working_directory(pipeline, storage, tmp_path, make_file, monkeypatch):
    path = make_file("nested/relative.txt", 64)
    monkeypatch.chdir(tmp_path)

    details = pipeline.process("nested/relative.txt")

    assert details.destination_path == destination_path_for(path)
    assert not details.destination_path.startswith("/")
    assert storage.get_object(destination_path_for(path)) == path.read_bytes()

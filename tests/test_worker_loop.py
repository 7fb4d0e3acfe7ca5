import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_job

from mergewise.config import WorkerSettings
from mergewise.queue import enqueue_job
from mergewise.worker.loop import Worker


def _summary() -> MagicMock:
    summary = MagicMock()
    summary.as_log_fields.return_value = {"job_id": "job"}
    return summary


@pytest.mark.asyncio
async def test_processed_jobs_are_not_processed_again(settings):
    jobs = [make_job(job_id="one"), make_job(job_id="two", head_sha="def456")]
    process_job = AsyncMock(return_value=_summary())
    worker = Worker(settings, list_pending_jobs=lambda: jobs, process_job=process_job)

    assert await worker.poll_once() is True
    assert await worker.poll_once() is True

    assert [call.args[0].job_id for call in process_job.await_args_list] == ["one", "two"]
    assert "acme/widget#3@abc123" in worker.processed_keys


@pytest.mark.asyncio
async def test_duplicate_head_sha_in_one_cycle_is_processed_once(settings):
    jobs = [make_job(job_id="one"), make_job(job_id="retry-of-one")]
    process_job = AsyncMock(return_value=_summary())
    worker = Worker(settings, list_pending_jobs=lambda: jobs, process_job=process_job)

    await worker.poll_once()

    assert process_job.await_count == 1


@pytest.mark.asyncio
async def test_failed_job_stays_eligible_and_others_continue(settings):
    jobs = [make_job(job_id="bad", head_sha="bad"), make_job(job_id="good", head_sha="good")]
    process_job = AsyncMock(side_effect=[RuntimeError("boom"), _summary(), _summary()])
    worker = Worker(settings, list_pending_jobs=lambda: jobs, process_job=process_job)

    await worker.poll_once()

    assert "acme/widget#3@bad" not in worker.processed_keys
    assert "acme/widget#3@good" in worker.processed_keys

    await worker.poll_once()

    assert [call.args[0].job_id for call in process_job.await_args_list] == ["bad", "good", "bad"]
    assert "acme/widget#3@bad" in worker.processed_keys


@pytest.mark.asyncio
async def test_read_failure_ends_the_cycle_quietly(settings):
    def list_pending_jobs():
        raise OSError("disk unavailable")

    process_job = AsyncMock()
    worker = Worker(settings, list_pending_jobs=list_pending_jobs, process_job=process_job)

    assert await worker.poll_once() is True
    process_job.assert_not_awaited()
    assert worker.poll_state.is_poll_in_flight is False


@pytest.mark.asyncio
async def test_overlapping_poll_is_skipped(settings):
    release = asyncio.Event()

    async def slow_process(job):
        await release.wait()
        return _summary()

    worker = Worker(settings, list_pending_jobs=lambda: [make_job()], process_job=slow_process)

    first = asyncio.create_task(worker.poll_once())
    await asyncio.sleep(0)

    assert await worker.poll_once() is False

    release.set()
    assert await first is True


@pytest.mark.asyncio
async def test_reads_jobs_from_configured_file(tmp_path):
    path = tmp_path / "jobs.ndjson"
    enqueue_job(make_job(), path)
    process_job = AsyncMock(return_value=_summary())
    worker = Worker(WorkerSettings(job_file_path=str(path)), process_job=process_job)

    await worker.poll_once()

    process_job.assert_awaited_once_with(make_job())


@pytest.mark.asyncio
async def test_job_file_is_read_off_the_event_loop_thread(settings):
    loop_thread = threading.get_ident()
    reader_threads = []

    def list_pending_jobs():
        reader_threads.append(threading.get_ident())
        return []

    worker = Worker(settings, list_pending_jobs=list_pending_jobs, process_job=AsyncMock())

    await worker.poll_once()

    assert reader_threads and reader_threads[0] != loop_thread

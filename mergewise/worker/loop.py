"""Periodic poll loop that feeds queued jobs to the job processor."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Sequence, Set

from mergewise.config import WorkerSettings
from mergewise.logger import describe_error, get_logger, log_failure, log_with_context
from mergewise.models.jobs import AnalyzePullRequestJob
from mergewise.queue import read_all_jobs
from mergewise.services.job_processor import JobProcessor, WorkerProcessingDependencies
from mergewise.services.job_summary import AnalyzePullRequestJobSummary
from mergewise.worker.idempotency import ProcessedKeyState, build_idempotency_key, track_processed_key
from mergewise.worker.poll_guard import PollCycleState, run_poll_cycle_with_in_flight_guard

logger = get_logger()

ListPendingJobs = Callable[[], Sequence[AnalyzePullRequestJob]]
ProcessJob = Callable[[AnalyzePullRequestJob], Awaitable[AnalyzePullRequestJobSummary]]


class Worker:
    """Owns the processed-key cache and the poll guard for one worker process."""

    def __init__(
        self,
        settings: WorkerSettings,
        *,
        list_pending_jobs: ListPendingJobs | None = None,
        process_job: ProcessJob | None = None,
        dependencies: WorkerProcessingDependencies | None = None,
    ) -> None:
        self._settings = settings
        self._list_pending_jobs = list_pending_jobs or (lambda: read_all_jobs(settings.job_file_path))
        self._process_job = process_job or JobProcessor(settings, dependencies)
        self.processed_keys = ProcessedKeyState()
        self.poll_state = PollCycleState()
        self._cycle_tasks: Set[asyncio.Task[bool]] = set()

    async def poll_once(self) -> bool:
        """Run one guarded poll cycle; ``False`` means the previous cycle was still running."""

        did_run = await run_poll_cycle_with_in_flight_guard(self.poll_state, self._poll_cycle)
        if not did_run:
            logger.info("Poll skipped: previous cycle still in flight")
        return did_run

    async def _poll_cycle(self) -> None:
        try:
            queued_jobs = await asyncio.to_thread(self._list_pending_jobs)
        except Exception as exc:
            log_failure(logger, "Failed to read queued jobs", exc)
            logger.debug(describe_error(exc))
            return

        for job in queued_jobs:
            key = build_idempotency_key(job)
            if key in self.processed_keys:
                continue

            start_time = time.perf_counter()
            try:
                summary = await self._process_job(job)
            except Exception as exc:
                processing_time = time.perf_counter() - start_time
                log_failure(
                    logger,
                    f"Failed to process job (after {processing_time:.3f}s)",
                    exc,
                    job_id=job.job_id,
                    repository=job.repo_full_name,
                    pr_number=job.pr_number,
                )
                logger.debug(describe_error(exc))
                continue

            track_processed_key(key, self.processed_keys, self._settings.max_processed_keys)
            log_with_context(logger, **summary.as_log_fields()).info("Job summary recorded")

    def _on_tick(self) -> None:
        task = asyncio.get_running_loop().create_task(self.poll_once())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)
        task.add_done_callback(_report_cycle_failure)

    async def run_forever(self) -> None:
        """Fire a poll cycle every interval; overlapping ticks are skipped, never queued."""

        logger.info(
            f"Worker started (poll={self._settings.poll_interval_ms}ms, "
            f"max_keys={self._settings.max_processed_keys}, source={self._settings.job_file_path}, "
            f"delivery={self._settings.delivery_mode.value})"
        )
        try:
            while True:
                self._on_tick()
                await asyncio.sleep(self._settings.poll_interval_seconds)
        finally:
            for task in list(self._cycle_tasks):
                task.cancel()


def _report_cycle_failure(task: asyncio.Task[bool]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Poll cycle failed: {describe_error(error)}")

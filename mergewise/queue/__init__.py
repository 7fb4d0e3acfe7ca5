"""File-backed NDJSON queue of pull request analysis jobs."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List

from pydantic import ValidationError

from mergewise.config import DEFAULT_JOB_FILE_PATH
from mergewise.logger import get_logger, log_with_context
from mergewise.models.jobs import AnalyzePullRequestJob

logger = get_logger()

OnSkippedLine = Callable[[int, str], None]


def _log_skipped_line(line_number: int, reason: str) -> None:
    logger.warning(f"Skipping queue line={line_number}: {reason}")


def enqueue_job(job: AnalyzePullRequestJob, file_path: str | Path = DEFAULT_JOB_FILE_PATH) -> None:
    """Append one job as a JSON line; not safe for concurrent writers."""

    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(job.model_dump_json() + "\n")

    log_with_context(logger, job_id=job.job_id, repository=job.repo_full_name).debug(
        f"Job appended to queue file {path}"
    )


def read_all_jobs(
    file_path: str | Path = DEFAULT_JOB_FILE_PATH,
    on_skipped_line: OnSkippedLine = _log_skipped_line,
) -> List[AnalyzePullRequestJob]:
    """Read every queued job in file order.

    Blank lines are ignored; malformed or shape-mismatched lines are reported
    through ``on_skipped_line`` and do not stop the rest of the file from loading.
    """

    path = Path(file_path)
    if not path.exists():
        return []

    jobs: List[AnalyzePullRequestJob] = []
    with path.open("rb") as handle:
        for line_number, raw_line in enumerate(handle, start=1):
            try:
                line = raw_line.decode("utf-8")
            except UnicodeDecodeError as exc:
                on_skipped_line(line_number, f"invalid UTF-8 at byte {exc.start}")
                continue
            if not line.strip():
                continue
            try:
                jobs.append(AnalyzePullRequestJob.model_validate_json(line))
            except ValidationError as exc:
                on_skipped_line(line_number, f"{exc.error_count()} validation error(s): {exc.errors()[0]['msg']}")
    return jobs

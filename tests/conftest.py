"""Shared fixtures for the worker tests."""

import os

# Keep test runs from writing rotating log files next to the package.
os.environ.setdefault("MERGEWISE_FILE_LOGGING", "0")

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402

from mergewise.config import WorkerSettings  # noqa: E402
from mergewise.models.jobs import AnalyzePullRequestJob  # noqa: E402
from mergewise.models.review import AnalysisContext, Finding, PullRequestMetadata  # noqa: E402


def make_finding(**overrides) -> Finding:
    values = {
        "finding_id": "finding-1",
        "installation_id": 42,
        "repo": "acme/widget",
        "pr_number": 3,
        "language": "typescript",
        "rule_id": "ts-react/no-unsafe-any",
        "category": "safety",
        "file_path": "src/app.ts",
        "line": 10,
        "evidence": "const value: any = input;",
        "recommendation": "Use unknown.",
        "confidence": 0.9,
    }
    values.update(overrides)
    return Finding(**values)


def make_job(**overrides) -> AnalyzePullRequestJob:
    values = {
        "job_id": "job-1",
        "installation_id": 42,
        "repo_full_name": "acme/widget",
        "pr_number": 3,
        "head_sha": "abc123",
        "queued_at": datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return AnalyzePullRequestJob(**values)


@pytest.fixture
def job() -> AnalyzePullRequestJob:
    return make_job()


@pytest.fixture
def settings() -> WorkerSettings:
    return WorkerSettings(github_retry_delay_ms=10, poll_interval_ms=250, max_processed_keys=100)


@pytest.fixture
def analysis_context() -> AnalysisContext:
    return AnalysisContext(
        diffs=(),
        pull_request=PullRequestMetadata(repo="acme/widget", pr_number=3, head_sha="abc123", installation_id=42),
    )

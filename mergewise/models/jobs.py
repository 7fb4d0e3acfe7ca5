"""Data models for queued analysis jobs."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class AnalyzePullRequestJob(BaseModel):
    """One queued request to analyse a pull request head commit."""

    job_id: str
    installation_id: int | None
    repo_full_name: str
    pr_number: int
    head_sha: str
    queued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}

"""Deterministic per-job outcome records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple

from mergewise.models.jobs import AnalyzePullRequestJob
from mergewise.models.review import FindingCategory
from mergewise.rules.engine import RuleExecutionResult
from mergewise.services.delivery import CheckOutput, FindingDelivery


@dataclass(frozen=True)
class AnalyzePullRequestJobSummary:
    """Loggable outcome of one processed job; never mutated after construction."""

    job_id: str
    idempotency_key: str
    repository: str
    pull_request_number: int
    head_sha: str
    total_findings: int
    findings_by_category: Mapping[FindingCategory, int]
    total_rules: int
    successful_rules: int
    failed_rules: int
    failed_rule_ids: Tuple[str, ...]
    processed_at: str
    posted_comment_count: int = 0
    skipped_by_confidence: int = 0
    skipped_by_deduplication: int = 0
    skipped_by_cap: int = 0
    skipped_as_already_posted: int = 0
    check_output: CheckOutput | None = None

    def as_log_fields(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "idempotency_key": self.idempotency_key,
            "repository": self.repository,
            "pr_number": self.pull_request_number,
            "findings": self.total_findings,
            "rules_ok": f"{self.successful_rules}/{self.total_rules}",
            "posted": self.posted_comment_count,
        }


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""

    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_job_summary(
    job: AnalyzePullRequestJob,
    idempotency_key: str,
    execution_result: RuleExecutionResult,
    processed_at: str,
    *,
    delivery: FindingDelivery | None = None,
    posted_comment_count: int = 0,
    skipped_as_already_posted: int = 0,
    check_output: CheckOutput | None = None,
) -> AnalyzePullRequestJobSummary:
    summary = execution_result.summary
    return AnalyzePullRequestJobSummary(
        job_id=job.job_id,
        idempotency_key=idempotency_key,
        repository=job.repo_full_name,
        pull_request_number=job.pr_number,
        head_sha=job.head_sha,
        total_findings=summary.total_findings,
        findings_by_category=MappingProxyType(dict(summary.findings_by_category)),
        total_rules=summary.total_rules,
        successful_rules=summary.successful_rules,
        failed_rules=summary.failed_rules,
        failed_rule_ids=tuple(execution_result.failed_rule_ids),
        processed_at=processed_at,
        posted_comment_count=posted_comment_count,
        skipped_by_confidence=delivery.skipped_by_confidence if delivery else 0,
        skipped_by_deduplication=delivery.skipped_by_deduplication if delivery else 0,
        skipped_by_cap=delivery.skipped_by_cap if delivery else 0,
        skipped_as_already_posted=skipped_as_already_posted,
        check_output=check_output,
    )

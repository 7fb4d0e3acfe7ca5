"""Queue job processor for pull request analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Sequence

from mergewise.config import (
    GitHubAppCredentials,
    SettingsError,
    WorkerSettings,
    require_github_app_credentials,
)
from mergewise.github_client import (
    GitHubInstallationClient,
    InstallationToken,
    InvalidRepositoryNameError,
    RepositoryCoordinates,
    parse_repository_full_name,
)
from mergewise.logger import describe_error, get_logger, log_failure, log_success, log_timing, log_with_context
from mergewise.models.jobs import AnalyzePullRequestJob
from mergewise.models.review import CodebaseContext, Rule
from mergewise.rules.engine import RuleExecutionResult, execute_rules
from mergewise.rules.ts_react import TS_REACT_RULES
from mergewise.services.analysis_context import build_analysis_context, map_pull_request_files_to_diffs
from mergewise.services.delivery import (
    DeliveryOptions,
    FindingDelivery,
    build_worker_check_output,
    exclude_already_posted,
    post_prepared_finding_comments,
    prepare_finding_delivery,
)
from mergewise.services.job_summary import AnalyzePullRequestJobSummary, build_job_summary, format_timestamp
from mergewise.worker.idempotency import build_idempotency_key
from mergewise.worker.retry import RetryDependencies, fetch_with_retry

logger = get_logger()

ClientFactory = Callable[[WorkerSettings, GitHubAppCredentials], GitHubInstallationClient]


class JobProcessingError(RuntimeError):
    """Raised when a job cannot be processed; the job stays eligible for the next poll."""

    def __init__(self, message: str, step: str, original_error: Exception | None = None):
        super().__init__(message)
        self.step = step
        self.original_error = original_error


def _default_client_factory(settings: WorkerSettings, credentials: GitHubAppCredentials) -> GitHubInstallationClient:
    return GitHubInstallationClient(
        base_url=settings.normalized_github_api_base_url,
        credentials=credentials,
        timeout=settings.github_request_timeout_seconds,
        user_agent=settings.github_user_agent,
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkerProcessingDependencies:
    """Swappable collaborators for job processing; defaults are the production ones."""

    rules: Sequence[Rule] = TS_REACT_RULES
    codebase_context: CodebaseContext | None = None
    load_credentials: Callable[[], GitHubAppCredentials] = require_github_app_credentials
    client_factory: ClientFactory = _default_client_factory
    retry: RetryDependencies = field(default_factory=RetryDependencies)
    now: Callable[[], datetime] = _utc_now


@dataclass(frozen=True)
class _PullRequestFilesRequest:
    repo: RepositoryCoordinates
    pull_number: int
    token: str


class JobProcessor:
    """Turns one queued job into an analysed, gated and optionally delivered summary."""

    def __init__(
        self,
        settings: WorkerSettings,
        dependencies: WorkerProcessingDependencies | None = None,
    ) -> None:
        self._settings = settings
        self._deps = dependencies or WorkerProcessingDependencies()

    async def __call__(self, job: AnalyzePullRequestJob) -> AnalyzePullRequestJobSummary:
        key = build_idempotency_key(job)
        context_fields = {"job_id": job.job_id, "repository": job.repo_full_name, "pr_number": job.pr_number}
        ctx_logger = log_with_context(logger, **context_fields)
        ctx_logger.info(
            f"Processing job key={key} installation={job.installation_id or 'none'} rules={len(self._deps.rules)}"
        )

        if job.installation_id is None:
            log_failure(logger, "Job has no installation id", **context_fields)
            raise JobProcessingError(
                f"Missing installation_id for {job.repo_full_name}#{job.pr_number}", "resolve_installation"
            )

        try:
            repo = parse_repository_full_name(job.repo_full_name)
        except InvalidRepositoryNameError as exc:
            log_failure(logger, "Invalid repository name", exc, **context_fields)
            raise JobProcessingError(
                f"Invalid repo_full_name={job.repo_full_name}", "resolve_repository", exc
            ) from exc

        try:
            credentials = self._deps.load_credentials()
        except SettingsError as exc:
            log_failure(logger, "GitHub App credentials unavailable", exc, **context_fields)
            raise JobProcessingError("GitHub App credentials unavailable", "load_credentials", exc) from exc

        github_client = self._deps.client_factory(self._settings, credentials)
        try:
            token = await self._exchange_token(github_client, job.installation_id, context_fields)
            execution_result = await self._analyse(github_client, job, repo, token, context_fields)

            delivery = prepare_finding_delivery(
                execution_result.findings,
                DeliveryOptions(
                    confidence_threshold=self._settings.confidence_threshold,
                    max_comments=self._settings.max_comments,
                ),
            )
            ctx_logger.info(
                f"Gated findings: prepared={len(delivery.comments)} "
                f"skipped_by_confidence={delivery.skipped_by_confidence} "
                f"skipped_by_deduplication={delivery.skipped_by_deduplication} "
                f"skipped_by_cap={delivery.skipped_by_cap}"
            )

            posted_count, already_posted = 0, 0
            if self._settings.delivery_enabled and delivery.comments:
                posted_count, already_posted = await self._deliver(
                    github_client, repo, job.pr_number, token, delivery, context_fields
                )
            elif delivery.comments:
                ctx_logger.info(f"Delivery disabled; {len(delivery.comments)} prepared comment(s) not posted")
        finally:
            await github_client.aclose()

        summary = build_job_summary(
            job,
            key,
            execution_result,
            format_timestamp(self._deps.now()),
            delivery=delivery,
            posted_comment_count=posted_count,
            skipped_as_already_posted=already_posted,
            check_output=build_worker_check_output(execution_result, delivery, posted_count, already_posted),
        )
        log_success(
            logger,
            f"Job {summary.job_id} summarized: findings={summary.total_findings} "
            f"rules_ok={summary.successful_rules}/{summary.total_rules} posted={summary.posted_comment_count}",
            **context_fields,
        )
        return summary

    async def _exchange_token(
        self,
        github_client: GitHubInstallationClient,
        installation_id: int,
        context_fields: dict,
    ) -> InstallationToken:
        ctx_logger = log_with_context(logger, **context_fields)
        try:
            with log_timing(ctx_logger, "exchange_installation_token"):
                return await fetch_with_retry(
                    installation_id,
                    self._settings.github_fetch_retries,
                    self._settings.github_retry_delay_seconds,
                    github_client.exchange_installation_token,
                    operation="exchange_installation_token",
                    dependencies=self._deps.retry,
                    **context_fields,
                )
        except Exception as exc:
            log_failure(logger, "Installation token exchange failed", exc, **context_fields)
            raise JobProcessingError("Installation token exchange failed", "exchange_token", exc) from exc

    async def _analyse(
        self,
        github_client: GitHubInstallationClient,
        job: AnalyzePullRequestJob,
        repo: RepositoryCoordinates,
        token: InstallationToken,
        context_fields: dict,
    ) -> RuleExecutionResult:
        ctx_logger = log_with_context(logger, **context_fields)
        request = _PullRequestFilesRequest(repo=repo, pull_number=job.pr_number, token=token.token)
        try:
            with log_timing(ctx_logger, "fetch_pull_request_files"):
                files = await fetch_with_retry(
                    request,
                    self._settings.github_fetch_retries,
                    self._settings.github_retry_delay_seconds,
                    lambda req: github_client.list_pull_request_files(req.repo, req.pull_number, req.token),
                    operation="list_pull_request_files",
                    dependencies=self._deps.retry,
                    **context_fields,
                )
        except Exception as exc:
            log_failure(logger, "Pull request file fetch failed", exc, **context_fields)
            raise JobProcessingError("Pull request file fetch failed", "fetch_files", exc) from exc

        analysis_context = build_analysis_context(job, map_pull_request_files_to_diffs(files))
        ctx_logger.info(f"Analysis context built (files={len(analysis_context.diffs)})")

        def _on_rule_error(rule: Rule, error: BaseException) -> None:
            ctx_logger.bind(rule_id=rule.metadata.rule_id).error(
                f"Rule failure job={job.job_id} rule={rule.metadata.rule_id}: {describe_error(error)}"
            )

        with log_timing(ctx_logger, "execute_rules"):
            return await execute_rules(
                analysis_context,
                self._deps.rules,
                self._deps.codebase_context,
                on_rule_error=_on_rule_error,
            )

    async def _deliver(
        self,
        github_client: GitHubInstallationClient,
        repo: RepositoryCoordinates,
        pull_number: int,
        token: InstallationToken,
        delivery: FindingDelivery,
        context_fields: dict,
    ) -> tuple[int, int]:
        ctx_logger = log_with_context(logger, **context_fields)
        request = _PullRequestFilesRequest(repo=repo, pull_number=pull_number, token=token.token)
        try:
            existing = await fetch_with_retry(
                request,
                self._settings.github_fetch_retries,
                self._settings.github_retry_delay_seconds,
                lambda req: github_client.list_issue_comments(req.repo, req.pull_number, req.token),
                operation="list_issue_comments",
                dependencies=self._deps.retry,
                **context_fields,
            )
        except Exception as exc:
            log_failure(logger, "Listing existing comments failed", exc, **context_fields)
            raise JobProcessingError("Listing existing comments failed", "list_comments", exc) from exc

        pending, already_posted = exclude_already_posted(
            delivery.comments, (comment.get("body") for comment in existing)
        )
        if already_posted:
            ctx_logger.info(f"Skipping {already_posted} comment(s) already posted by a previous run")

        try:
            with log_timing(ctx_logger, "post_finding_comments"):
                posted = await post_prepared_finding_comments(
                    repo, pull_number, token.token, pending, github_client.create_issue_comment
                )
        except Exception as exc:
            log_failure(logger, "Posting finding comments failed", exc, **context_fields)
            raise JobProcessingError("Posting finding comments failed", "post_comments", exc) from exc
        return posted, already_posted


async def process_analyze_pull_request_job(
    job: AnalyzePullRequestJob,
    settings: WorkerSettings,
    dependencies: WorkerProcessingDependencies | None = None,
) -> AnalyzePullRequestJobSummary:
    """Process one job with a fresh :class:`JobProcessor`."""

    return await JobProcessor(settings, dependencies)(job)

"""Finding gating, comment rendering and delivery to pull requests."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Sequence, Set, Tuple

from mergewise.github_client import RepositoryCoordinates
from mergewise.logger import get_logger, log_with_context
from mergewise.models.review import FINDING_CATEGORIES, Finding
from mergewise.rules.engine import RuleExecutionResult

logger = get_logger()

COMMENT_MARKER = "mergewise:finding"
_PAYLOAD_PATTERN = re.compile(r"<!--\s*" + re.escape(COMMENT_MARKER) + r"\s*(\{.*?\})\s*-->", re.DOTALL)

PostCommentFn = Callable[[RepositoryCoordinates, int, str, str], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class DeliveryOptions:
    confidence_threshold: float
    max_comments: int


@dataclass(frozen=True)
class PreparedFindingComment:
    dedupe_key: str
    finding: Finding
    rendered_body: str


@dataclass(frozen=True)
class FindingDelivery:
    comments: Tuple[PreparedFindingComment, ...]
    skipped_by_confidence: int
    skipped_by_deduplication: int
    skipped_by_cap: int


@dataclass(frozen=True)
class CheckOutput:
    title: str
    summary: str
    text: str


def build_finding_dedupe_key(finding: Finding) -> str:
    """Stable key that identifies the same finding across repeated runs."""

    prefix = f"{finding.repo}#{finding.pr_number}"
    if finding.finding_id:
        return f"{prefix}:{finding.finding_id}"
    return f"{prefix}:{finding.rule_id}:{finding.file_path}:{finding.line}"


def _delivery_sort_key(entry: Tuple[str, Finding]) -> Tuple[float, str, str]:
    dedupe_key, finding = entry
    # repr() breaks ties between same-key findings that differ in other fields
    return (-finding.confidence, dedupe_key, repr(finding))


def render_finding_comment(finding: Finding, dedupe_key: str) -> str:
    """Render a markdown comment with a machine-readable payload carrying the dedupe key."""

    lines = [
        f"### Mergewise: `{finding.rule_id}` ({finding.category})",
        "",
        f"**Location:** `{finding.file_path}:{finding.line}`",
        f"**Confidence:** {finding.confidence:.2f}",
        "",
        "**Evidence**",
        "```",
        finding.evidence,
        "```",
        "",
        f"**Recommendation:** {finding.recommendation}",
    ]

    if finding.patch_preview is not None:
        preview = finding.patch_preview
        lines.extend(["", "**Suggested change**", "```diff", preview.hunk_header])
        lines.extend(f"-{removed}" for removed in preview.removed_lines)
        lines.extend(f"+{added}" for added in preview.added_lines)
        lines.append("```")

    payload = {
        "dedupeKey": dedupe_key,
        "findingId": finding.finding_id,
        "ruleId": finding.rule_id,
        "category": finding.category,
        "filePath": finding.file_path,
        "line": finding.line,
        "confidence": finding.confidence,
    }
    lines.extend(["", f"<!-- {COMMENT_MARKER}", json.dumps(payload, indent=2), "-->"])
    return "\n".join(lines)


def parse_comment_dedupe_key(body: str | None) -> str | None:
    """Recover the dedupe key embedded in a previously posted comment body."""

    if not body:
        return None
    match = _PAYLOAD_PATTERN.search(body)
    if not match:
        return None
    try:
        payload = json.loads(match.group(1))
    except ValueError:
        return None
    dedupe_key = payload.get("dedupeKey") if isinstance(payload, dict) else None
    return dedupe_key if isinstance(dedupe_key, str) and dedupe_key else None


def prepare_finding_delivery(findings: Sequence[Finding], options: DeliveryOptions) -> FindingDelivery:
    """Filter by confidence, order, deduplicate and cap findings for delivery.

    The output depends only on the multiset of findings, never on their order:
    eligible findings are sorted by confidence (descending) then dedupe key
    before the first occurrence of each key is kept and the list is capped.
    """

    eligible: List[Tuple[str, Finding]] = []
    skipped_by_confidence = 0
    for finding in findings:
        if finding.confidence < options.confidence_threshold:
            skipped_by_confidence += 1
            continue
        eligible.append((build_finding_dedupe_key(finding), finding))

    eligible.sort(key=_delivery_sort_key)

    seen_keys: Set[str] = set()
    unique: List[Tuple[str, Finding]] = []
    skipped_by_deduplication = 0
    for dedupe_key, finding in eligible:
        if dedupe_key in seen_keys:
            skipped_by_deduplication += 1
            continue
        seen_keys.add(dedupe_key)
        unique.append((dedupe_key, finding))

    selected = unique[: options.max_comments]
    comments = tuple(
        PreparedFindingComment(
            dedupe_key=dedupe_key,
            finding=finding,
            rendered_body=render_finding_comment(finding, dedupe_key),
        )
        for dedupe_key, finding in selected
    )

    return FindingDelivery(
        comments=comments,
        skipped_by_confidence=skipped_by_confidence,
        skipped_by_deduplication=skipped_by_deduplication,
        skipped_by_cap=len(unique) - len(selected),
    )


def exclude_already_posted(
    comments: Sequence[PreparedFindingComment],
    existing_bodies: Iterable[str | None],
) -> Tuple[Tuple[PreparedFindingComment, ...], int]:
    """Drop prepared comments whose dedupe key already appears in a posted comment."""

    posted_keys = {key for key in (parse_comment_dedupe_key(body) for body in existing_bodies) if key}
    remaining = tuple(comment for comment in comments if comment.dedupe_key not in posted_keys)
    return remaining, len(comments) - len(remaining)


async def post_prepared_finding_comments(
    repo: RepositoryCoordinates,
    pull_number: int,
    token: str,
    comments: Sequence[PreparedFindingComment],
    post_comment: PostCommentFn,
) -> int:
    """Post each prepared comment in order and return how many were posted."""

    ctx_logger = log_with_context(logger, repository=repo.full_name, pr_number=pull_number)
    posted = 0
    for comment in comments:
        created = await post_comment(repo, pull_number, token, comment.rendered_body)
        posted += 1
        ctx_logger.debug(f"Posted finding comment {comment.dedupe_key} (id={created.get('id')})")
    ctx_logger.info(f"Posted {posted} finding comment(s) to PR #{pull_number}")
    return posted


def build_worker_check_output(
    execution_result: RuleExecutionResult,
    delivery: FindingDelivery,
    posted_count: int = 0,
    skipped_as_already_posted: int = 0,
) -> CheckOutput:
    summary = execution_result.summary
    category_counts = ", ".join(
        f"{category}={summary.findings_by_category.get(category, 0)}" for category in FINDING_CATEGORIES
    )
    text_lines = [
        f"skipped_by_confidence={delivery.skipped_by_confidence}",
        f"skipped_by_deduplication={delivery.skipped_by_deduplication}",
        f"skipped_by_cap={delivery.skipped_by_cap}",
        f"skipped_as_already_posted={skipped_as_already_posted}",
        f"findings_by_category: {category_counts}",
    ]
    if execution_result.failed_rule_ids:
        text_lines.append(f"failed_rules: {', '.join(execution_result.failed_rule_ids)}")

    return CheckOutput(
        title=f"Mergewise Findings: {posted_count} posted of {summary.total_findings}",
        summary=(
            f"Rules={summary.successful_rules}/{summary.total_rules} "
            f"Findings={summary.total_findings} Prepared={len(delivery.comments)}"
        ),
        text="\n".join(text_lines),
    )

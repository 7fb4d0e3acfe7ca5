"""Sequential rule execution with per-rule failure isolation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence, Tuple

from mergewise.logger import get_logger, log_with_context
from mergewise.models.review import (
    FINDING_CATEGORIES,
    AnalysisContext,
    CodebaseAwareRule,
    CodebaseContext,
    Finding,
    FindingCategory,
    Rule,
)

logger = get_logger()

OnRuleExecutionError = Callable[[Rule, BaseException], None]


class RuleRequiresCodebaseContextError(RuntimeError):
    """Raised when a codebase-aware rule runs without a codebase context."""

    def __init__(self, rule_id: str):
        super().__init__(f"Rule {rule_id} requires codebase context but none was provided.")
        self.rule_id = rule_id


class InvalidRuleOutputError(RuntimeError):
    """Raised when a rule returns something other than a sequence of known-category findings."""

    def __init__(self, rule_id: str, reason: str):
        super().__init__(f"Rule {rule_id} returned invalid output: {reason}")
        self.rule_id = rule_id


@dataclass(frozen=True)
class RuleExecutionSummary:
    total_rules: int
    successful_rules: int
    failed_rules: int
    total_findings: int
    findings_by_category: Dict[FindingCategory, int]


@dataclass(frozen=True)
class RuleExecutionResult:
    findings: Tuple[Finding, ...]
    summary: RuleExecutionSummary
    failed_rule_ids: Tuple[str, ...] = field(default_factory=tuple)


def default_on_rule_execution_error(rule: Rule, error: BaseException) -> None:
    log_with_context(logger, rule_id=rule.metadata.rule_id).opt(exception=error).error(
        f"Rule failed: {rule.metadata.rule_id}: {error}"
    )


def count_findings_by_category(findings: Sequence[Finding]) -> Dict[FindingCategory, int]:
    """Count findings per category; every category is present, unseen ones at zero."""

    counts: Dict[FindingCategory, int] = {category: 0 for category in FINDING_CATEGORIES}
    for finding in findings:
        counts[finding.category] += 1
    return counts


async def _execute_single_rule(
    rule: Rule,
    context: AnalysisContext,
    codebase_context: CodebaseContext | None,
) -> List[Finding]:
    if isinstance(rule, CodebaseAwareRule):
        if codebase_context is None:
            raise RuleRequiresCodebaseContextError(rule.metadata.rule_id)
        output = await rule.analyse(context, codebase_context)
    else:
        output = await rule.analyse(context)
    return _validate_rule_output(rule.metadata.rule_id, output)


def _validate_rule_output(rule_id: str, output: object) -> List[Finding]:
    if isinstance(output, (str, bytes)):
        raise InvalidRuleOutputError(rule_id, f"expected a sequence of findings, got {type(output).__name__}")
    try:
        rule_findings = list(output)
    except TypeError as exc:
        raise InvalidRuleOutputError(rule_id, f"expected a sequence of findings, got {type(output).__name__}") from exc

    for finding in rule_findings:
        if not isinstance(finding, Finding):
            raise InvalidRuleOutputError(rule_id, f"expected Finding, got {type(finding).__name__}")
        if finding.category not in FINDING_CATEGORIES:
            raise InvalidRuleOutputError(rule_id, f"unknown category {finding.category!r}")
    return rule_findings


async def execute_rules(
    context: AnalysisContext,
    rules: Sequence[Rule],
    codebase_context: CodebaseContext | None = None,
    on_rule_error: OnRuleExecutionError | None = None,
) -> RuleExecutionResult:
    """Run ``rules`` one after another against ``context``.

    A rule that raises, or returns anything but findings in the known
    categories, is recorded as failed and reported through
    ``on_rule_error``; the remaining rules still run. Findings keep rule order.
    """

    report_error = on_rule_error or default_on_rule_execution_error
    findings: List[Finding] = []
    failed_rule_ids: List[str] = []

    for rule in rules:
        try:
            findings.extend(await _execute_single_rule(rule, context, codebase_context))
        except Exception as exc:
            failed_rule_ids.append(rule.metadata.rule_id)
            report_error(rule, exc)

    summary = RuleExecutionSummary(
        total_rules=len(rules),
        successful_rules=len(rules) - len(failed_rule_ids),
        failed_rules=len(failed_rule_ids),
        total_findings=len(findings),
        findings_by_category=count_findings_by_category(findings),
    )
    return RuleExecutionResult(
        findings=tuple(findings),
        summary=summary,
        failed_rule_ids=tuple(failed_rule_ids),
    )

import pytest
from conftest import make_finding

from mergewise.models.review import CodebaseAwareRule, CodebaseContext, RuleMetadata, StatelessRule
from mergewise.rules.engine import (
    InvalidRuleOutputError,
    RuleRequiresCodebaseContextError,
    count_findings_by_category,
    execute_rules,
)


def _metadata(rule_id: str, category: str = "safety") -> RuleMetadata:
    return RuleMetadata(
        rule_id=rule_id,
        name=rule_id,
        category=category,
        languages=("typescript",),
        description="test rule",
    )


def _stateless(rule_id: str, findings=(), error: Exception | None = None) -> StatelessRule:
    async def analyse(context):
        if error is not None:
            raise error
        return list(findings)

    return StatelessRule(metadata=_metadata(rule_id), analyse=analyse)


@pytest.mark.asyncio
async def test_failing_rule_does_not_stop_the_others(analysis_context):
    reported = []
    rules = [
        _stateless("first", [make_finding(finding_id="a")]),
        _stateless("broken", error=RuntimeError("boom")),
        _stateless("last", [make_finding(finding_id="b", category="perf")]),
    ]

    result = await execute_rules(
        analysis_context, rules, on_rule_error=lambda rule, error: reported.append((rule.metadata.rule_id, error))
    )

    assert [finding.finding_id for finding in result.findings] == ["a", "b"]
    assert result.failed_rule_ids == ("broken",)
    assert result.summary.total_rules == 3
    assert result.summary.successful_rules == 2
    assert result.summary.failed_rules == 1
    assert result.summary.total_findings == 2
    assert [(rule_id, str(error)) for rule_id, error in reported] == [("broken", "boom")]


@pytest.mark.asyncio
async def test_codebase_aware_rule_without_context_is_a_failure(analysis_context):
    async def analyse(context, codebase):
        return [make_finding()]

    rule = CodebaseAwareRule(metadata=_metadata("needs-codebase"), analyse=analyse)
    reported = []

    result = await execute_rules(analysis_context, [rule], on_rule_error=lambda r, e: reported.append(e))

    assert result.findings == ()
    assert result.failed_rule_ids == ("needs-codebase",)
    assert isinstance(reported[0], RuleRequiresCodebaseContextError)
    assert str(reported[0]) == "Rule needs-codebase requires codebase context but none was provided."


@pytest.mark.asyncio
async def test_codebase_aware_rule_receives_context(analysis_context):
    seen = []
    codebase = CodebaseContext(conventions={"naming": "camelCase"})

    async def analyse(context, codebase_context):
        seen.append(codebase_context)
        return [make_finding(category="idiomatic")]

    rule = CodebaseAwareRule(metadata=_metadata("aware", "idiomatic"), analyse=analyse)

    result = await execute_rules(analysis_context, [rule], codebase)

    assert seen == [codebase]
    assert result.summary.findings_by_category["idiomatic"] == 1


@pytest.mark.asyncio
async def test_empty_rule_list_reports_all_categories_at_zero(analysis_context):
    result = await execute_rules(analysis_context, [])

    assert result.summary.total_rules == 0
    assert result.summary.total_findings == 0
    assert result.summary.findings_by_category == {"clean": 0, "perf": 0, "safety": 0, "idiomatic": 0}


def test_category_counts_include_every_category():
    findings = [make_finding(category="perf"), make_finding(category="perf"), make_finding(category="clean")]

    assert count_findings_by_category(findings) == {"clean": 1, "perf": 2, "safety": 0, "idiomatic": 0}


def _returning(rule_id: str, output) -> StatelessRule:
    async def analyse(context):
        return output

    return StatelessRule(metadata=_metadata(rule_id), analyse=analyse)


@pytest.mark.parametrize(
    "bad_output",
    [None, 42, "not findings", [make_finding(category="style")], [{"finding_id": "dict"}]],
)
@pytest.mark.asyncio
async def test_invalid_rule_output_is_isolated(analysis_context, bad_output):
    reported = []
    rules = [_returning("bad", bad_output), _stateless("good", [make_finding(finding_id="kept")])]

    result = await execute_rules(analysis_context, rules, on_rule_error=lambda r, e: reported.append(e))

    assert [finding.finding_id for finding in result.findings] == ["kept"]
    assert result.failed_rule_ids == ("bad",)
    assert result.summary.successful_rules == 1
    assert result.summary.findings_by_category == {"clean": 0, "perf": 0, "safety": 1, "idiomatic": 0}
    assert isinstance(reported[0], InvalidRuleOutputError)


@pytest.mark.asyncio
async def test_generator_output_is_accepted(analysis_context):
    rule = _returning("gen", (finding for finding in [make_finding(category="clean")]))

    result = await execute_rules(analysis_context, [rule])

    assert result.summary.findings_by_category["clean"] == 1
    assert result.failed_rule_ids == ()

"""Stateless TypeScript and React rules."""

from __future__ import annotations

import re
from typing import List, Sequence, Tuple

from mergewise.models.review import (
    AnalysisContext,
    Finding,
    PatchPreview,
    RuleMetadata,
    StatelessRule,
)

UNSAFE_ANY_RULE_ID = "ts-react/no-unsafe-any"

_TYPESCRIPT_FILE_PATTERN = re.compile(r"\.(ts|tsx)$", re.IGNORECASE)
_HUNK_HEADER_PATTERN = re.compile(r"^@@\s+-\d+(?:,\d+)?\s+\+(\d+)(?:,\d+)?\s+@@")
_UNSAFE_ANY_PATTERN = re.compile(
    r"(?:\bas\s+any\b|:\s*any\b|<\s*any\s*>|\bany\s*\[\s*\]"
    r"|\bArray\s*<\s*any\s*>|\bReadonlyArray\s*<\s*any\s*>|\bPromise\s*<\s*any\s*>)"
)
_ANY_WORD_PATTERN = re.compile(r"\bany\b")


def parse_hunk_starting_line(header: str) -> int | None:
    """Return the first new-file line number of a hunk header, if it parses."""

    match = _HUNK_HEADER_PATTERN.match(header)
    if not match:
        return None
    return int(match.group(1))


def _build_unsafe_any_finding(
    context: AnalysisContext,
    file_path: str,
    line: int,
    evidence: str,
    hunk_header: str,
) -> Finding:
    pull_request = context.pull_request
    return Finding(
        finding_id=f"{UNSAFE_ANY_RULE_ID}:{pull_request.repo}:{pull_request.pr_number}:{file_path}:{line}",
        installation_id=pull_request.installation_id,
        repo=pull_request.repo,
        pr_number=pull_request.pr_number,
        language="typescript",
        rule_id=UNSAFE_ANY_RULE_ID,
        category="safety",
        file_path=file_path,
        line=line,
        evidence=evidence,
        recommendation=(
            "Replace explicit any with a concrete type, unknown, or a constrained generic "
            "to preserve type safety."
        ),
        confidence=0.95,
        status="posted",
        patch_preview=PatchPreview(
            removed_lines=(evidence,),
            added_lines=(_ANY_WORD_PATTERN.sub("unknown", evidence),),
            hunk_header=hunk_header,
        ),
    )


def _collect_unsafe_any_findings(context: AnalysisContext) -> List[Finding]:
    findings: List[Finding] = []

    for file_diff in context.diffs:
        if not _TYPESCRIPT_FILE_PATTERN.search(file_diff.file_path):
            continue

        for hunk in file_diff.hunks:
            line_number = parse_hunk_starting_line(hunk.header)
            if line_number is None:
                continue

            for raw_line in hunk.lines:
                if raw_line.startswith("+") and not raw_line.startswith("+++"):
                    added_content = raw_line[1:]
                    if _UNSAFE_ANY_PATTERN.search(added_content):
                        findings.append(
                            _build_unsafe_any_finding(
                                context, file_diff.file_path, line_number, added_content, hunk.header
                            )
                        )
                    line_number += 1
                elif raw_line.startswith(" "):
                    line_number += 1

    return findings


async def _analyse_unsafe_any(context: AnalysisContext) -> Sequence[Finding]:
    return _collect_unsafe_any_findings(context)


unsafe_any_usage_rule = StatelessRule(
    metadata=RuleMetadata(
        rule_id=UNSAFE_ANY_RULE_ID,
        name="Unsafe any usage",
        category="safety",
        languages=("typescript", "tsx"),
        description="Detects explicit any usage in added TypeScript and TSX lines.",
    ),
    analyse=_analyse_unsafe_any,
)

TS_REACT_RULES: Tuple[StatelessRule, ...] = (unsafe_any_usage_rule,)

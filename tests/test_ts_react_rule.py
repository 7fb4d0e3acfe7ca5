import pytest

from mergewise.models.review import AnalysisContext, DiffHunk, FileDiff, PullRequestMetadata
from mergewise.rules.ts_react import UNSAFE_ANY_RULE_ID, parse_hunk_starting_line, unsafe_any_usage_rule


def _context(*diffs: FileDiff) -> AnalysisContext:
    return AnalysisContext(
        diffs=diffs,
        pull_request=PullRequestMetadata(repo="acme/widget", pr_number=3, head_sha="abc123", installation_id=42),
    )


@pytest.mark.parametrize(
    "header, expected",
    [
        ("@@ -1,2 +5,3 @@", 5),
        ("@@ -10 +11 @@ function App() {", 11),
        ("not a header", None),
    ],
)
def test_hunk_starting_line(header, expected):
    assert parse_hunk_starting_line(header) == expected


@pytest.mark.asyncio
async def test_flags_added_any_with_new_file_line_numbers():
    hunk = DiffHunk(
        header="@@ -1,3 +20,4 @@",
        lines=(
            " import React from 'react';",
            "-const old: number = 1;",
            "+const value: any = input;",
            "+const safe: string = 'ok';",
            "+const list = items as any;",
        ),
    )

    findings = await unsafe_any_usage_rule.analyse(_context(FileDiff(file_path="src/App.tsx", hunks=(hunk,))))

    assert [finding.line for finding in findings] == [21, 23]
    first = findings[0]
    assert first.rule_id == UNSAFE_ANY_RULE_ID
    assert first.category == "safety"
    assert first.finding_id == f"{UNSAFE_ANY_RULE_ID}:acme/widget:3:src/App.tsx:21"
    assert first.evidence == "const value: any = input;"
    assert first.patch_preview.added_lines == ("const value: unknown = input;",)
    assert first.confidence >= 0.78


@pytest.mark.asyncio
async def test_ignores_non_typescript_files_and_removed_lines():
    js_hunk = DiffHunk(header="@@ -1 +1 @@", lines=("+const value: any = 1;",))
    removed_hunk = DiffHunk(header="@@ -1 +1 @@", lines=("-const value: any = 1;",))

    findings = await unsafe_any_usage_rule.analyse(
        _context(
            FileDiff(file_path="src/legacy.js", hunks=(js_hunk,)),
            FileDiff(file_path="src/types.ts", hunks=(removed_hunk,)),
        )
    )

    assert findings == []


@pytest.mark.asyncio
async def test_words_containing_any_are_not_flagged():
    hunk = DiffHunk(header="@@ -1 +1,2 @@", lines=("+const company = anyone;", "+// many things"))

    findings = await unsafe_any_usage_rule.analyse(_context(FileDiff(file_path="a.ts", hunks=(hunk,))))

    assert findings == []

"""Shared data structures for diff analysis, rules and findings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, ClassVar, Literal, Mapping, Sequence, Tuple

FindingCategory = Literal["clean", "perf", "safety", "idiomatic"]
FindingStatus = Literal["posted", "dismissed", "accepted", "resolved"]

FINDING_CATEGORIES: Tuple[FindingCategory, ...] = ("clean", "perf", "safety", "idiomatic")


@dataclass(frozen=True, slots=True)
class DiffHunk:
    header: str
    lines: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class FileDiff:
    file_path: str
    previous_path: str | None = None
    hunks: Tuple[DiffHunk, ...] = ()


@dataclass(frozen=True, slots=True)
class PullRequestMetadata:
    repo: str
    pr_number: int
    head_sha: str
    installation_id: int | None


@dataclass(frozen=True, slots=True)
class AnalysisContext:
    """Parsed diffs and pull request metadata handed to every rule."""

    diffs: Tuple[FileDiff, ...]
    pull_request: PullRequestMetadata


@dataclass(frozen=True, slots=True)
class SymbolEntry:
    name: str
    kind: str
    file: str
    line: int
    exported: bool = False


@dataclass(frozen=True, slots=True)
class CodebaseContext:
    """Repository-wide context required by codebase-aware rules."""

    symbols: Tuple[SymbolEntry, ...] = ()
    conventions: Mapping[str, str] = field(default_factory=dict)
    read_file: Callable[[str], Awaitable[str | None]] | None = None


@dataclass(frozen=True, slots=True)
class PatchPreview:
    removed_lines: Tuple[str, ...]
    added_lines: Tuple[str, ...]
    hunk_header: str


@dataclass(frozen=True, slots=True)
class Finding:
    finding_id: str
    installation_id: int | None
    repo: str
    pr_number: int
    language: str
    rule_id: str
    category: FindingCategory
    file_path: str
    line: int
    evidence: str
    recommendation: str
    confidence: float
    status: FindingStatus = "posted"
    patch_preview: PatchPreview | None = None


@dataclass(frozen=True, slots=True)
class RuleMetadata:
    rule_id: str
    name: str
    category: FindingCategory
    languages: Tuple[str, ...]
    description: str


StatelessAnalyser = Callable[[AnalysisContext], Awaitable[Sequence[Finding]]]
CodebaseAwareAnalyser = Callable[[AnalysisContext, CodebaseContext], Awaitable[Sequence[Finding]]]


@dataclass(frozen=True, slots=True)
class StatelessRule:
    """A rule that only needs the diff context."""

    kind: ClassVar[str] = "stateless"
    metadata: RuleMetadata
    analyse: StatelessAnalyser


@dataclass(frozen=True, slots=True)
class CodebaseAwareRule:
    """A rule that also needs repository-wide symbols and conventions."""

    kind: ClassVar[str] = "codebase-aware"
    metadata: RuleMetadata
    analyse: CodebaseAwareAnalyser


Rule = StatelessRule | CodebaseAwareRule

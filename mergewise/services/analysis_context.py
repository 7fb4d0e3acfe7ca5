"""Helpers to build rule analysis context from fetched pull request files."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from mergewise.logger import get_logger
from mergewise.models.jobs import AnalyzePullRequestJob
from mergewise.models.review import AnalysisContext, DiffHunk, FileDiff, PullRequestMetadata

logger = get_logger()


def parse_patch_to_hunks(patch: str | None) -> tuple[DiffHunk, ...]:
    """Split a unified diff patch into hunks; lines before the first header are dropped."""

    if not patch:
        return ()

    hunks: List[DiffHunk] = []
    current_header: str | None = None
    current_lines: List[str] = []

    for line in patch.split("\n"):
        if line.startswith("@@"):
            if current_header is not None:
                hunks.append(DiffHunk(header=current_header, lines=tuple(current_lines)))
            current_header = line
            current_lines = []
            continue
        if current_header is not None:
            current_lines.append(line)

    if current_header is not None:
        hunks.append(DiffHunk(header=current_header, lines=tuple(current_lines)))

    return tuple(hunks)


def map_pull_request_files_to_diffs(files: Sequence[Dict[str, Any]]) -> tuple[FileDiff, ...]:
    diffs: List[FileDiff] = []
    skipped_count = 0
    for file in files:
        path = file.get("filename")
        if not path:
            logger.warning(f"Skipping file entry missing filename: {file}")
            skipped_count += 1
            continue
        diffs.append(
            FileDiff(
                file_path=path,
                previous_path=file.get("previous_filename"),
                hunks=parse_patch_to_hunks(file.get("patch")),
            )
        )
    if skipped_count > 0:
        logger.warning(f"Skipped {skipped_count} file(s) due to missing filename")
    logger.debug(f"Mapped {len(diffs)} file diff(s) from {len(files)} file entries")
    return tuple(diffs)


def build_analysis_context(job: AnalyzePullRequestJob, file_diffs: Sequence[FileDiff]) -> AnalysisContext:
    return AnalysisContext(
        diffs=tuple(file_diffs),
        pull_request=PullRequestMetadata(
            repo=job.repo_full_name,
            pr_number=job.pr_number,
            head_sha=job.head_sha,
            installation_id=job.installation_id,
        ),
    )

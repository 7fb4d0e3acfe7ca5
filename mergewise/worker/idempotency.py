"""Bounded in-memory tracking of processed job keys."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Set

from mergewise.models.jobs import AnalyzePullRequestJob


@dataclass
class ProcessedKeyState:
    """Processed idempotency keys; ``keys`` and ``order`` always hold the same elements.

    Both collections are mutated in place by :func:`track_processed_key` only.
    """

    keys: Set[str] = field(default_factory=set)
    order: Deque[str] = field(default_factory=deque)

    def __contains__(self, key: object) -> bool:
        return key in self.keys

    def __len__(self) -> int:
        return len(self.order)


def build_idempotency_key(job: AnalyzePullRequestJob) -> str:
    """Key a job by repository, pull request and head commit."""

    return f"{job.repo_full_name}#{job.pr_number}@{job.head_sha}"


def track_processed_key(key: str, state: ProcessedKeyState, max_keys: int) -> None:
    """Record ``key`` as processed, evicting the oldest keys beyond ``max_keys``."""

    if key in state.keys:
        return

    state.keys.add(key)
    state.order.append(key)

    while len(state.order) > max_keys:
        evicted = state.order.popleft()
        state.keys.discard(evicted)

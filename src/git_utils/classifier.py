"""Merge-safety verdicts for local branches.

Tiers, first match wins:

1. head equals the base head, or is an ancestor of it -> Merged
2. no commit unique to the branch carries a diff -> Merged
3. every unique fingerprint appears in the recent base window, or the
   branch's net diff matches one base commit -> SquashMerged
4. some unique fingerprints match -> Diverged
5. otherwise Unmerged

A ProbeError anywhere yields Unknown for that branch only.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from git_utils.config import DEFAULT_WINDOW_SIZE
from git_utils.errors import ProbeError
from git_utils.git_ops import BranchCandidate, detect_base_branch, upstream_default_branch
from git_utils.graph import CommitGraph

log = logging.getLogger(__name__)


class MergeStatus(StrEnum):
    MERGED = "Merged"
    SQUASH_MERGED = "SquashMerged"
    UNMERGED = "Unmerged"
    DIVERGED = "Diverged"
    UNKNOWN = "Unknown"


SAFE_STATUSES = frozenset({MergeStatus.MERGED, MergeStatus.SQUASH_MERGED})

BaseWindow = Callable[[], set[str]]


@dataclass(frozen=True)
class MergeVerdict:
    """Outcome of classifying one branch against one base ref.

    ``evidence`` holds the base head commit id for ancestry merges, the
    matching fingerprints for squash merges and partial matches, or the
    probe error for Unknown.
    """

    branch: str
    status: MergeStatus
    base: str
    evidence: tuple[str, ...] = ()

    @property
    def safe_to_delete(self) -> bool:
        return self.status in SAFE_STATUSES

    def to_dict(self) -> dict[str, object]:
        return {
            "branch": self.branch,
            "status": str(self.status),
            "base": self.base,
            "evidence": list(self.evidence),
        }


def classify_branch(
    graph: CommitGraph,
    candidate: BranchCandidate,
    base: str,
    window_size: int = DEFAULT_WINDOW_SIZE,
    *,
    base_window: BaseWindow | None = None,
) -> MergeVerdict:
    """Classify one branch. Never raises ProbeError.

    ``base_window`` returns the base fingerprints for the same base and
    window; a batch passes a cached loader. It is only called once the
    ancestry tiers have not matched.
    """
    try:
        base_head = graph.resolve(base)
        if candidate.head == base_head or graph.is_ancestor(candidate.head, base_head):
            return MergeVerdict(candidate.name, MergeStatus.MERGED, base, (base_head,))

        unique = graph.unique_commit_fingerprints(candidate.head, base_head)
        if not unique:
            return MergeVerdict(candidate.name, MergeStatus.MERGED, base, (base_head,))

        if base_window is None:
            window = graph.base_fingerprints(base_head, window_size)
        else:
            window = base_window()
        matched = unique & window
        if matched == unique:
            return MergeVerdict(
                candidate.name, MergeStatus.SQUASH_MERGED, base, tuple(sorted(matched))
            )

        aggregate = graph.aggregate_fingerprint(candidate.head, base_head)
        if aggregate is not None and aggregate in window:
            return MergeVerdict(candidate.name, MergeStatus.SQUASH_MERGED, base, (aggregate,))

        if matched:
            return MergeVerdict(
                candidate.name, MergeStatus.DIVERGED, base, tuple(sorted(matched))
            )
        return MergeVerdict(candidate.name, MergeStatus.UNMERGED, base)
    except ProbeError as exc:
        log.warning("Cannot classify %s against %s: %s", candidate.name, base, exc.reason)
        return MergeVerdict(candidate.name, MergeStatus.UNKNOWN, base, (exc.reason,))


def select_base(
    repo: Path,
    candidate: BranchCandidate,
    *,
    explicit: str | None,
    default: str,
) -> str:
    """Choose the base ref a branch is compared against.

    An explicit base always wins. Otherwise a branch with an upstream is
    compared with its remote's default branch, falling back to ``default``.
    """
    if explicit:
        return explicit
    if candidate.upstream:
        inferred = upstream_default_branch(repo, candidate.upstream)
        if inferred:
            return inferred
    return default


def classify_branches(
    repo: Path,
    candidates: Iterable[BranchCandidate],
    *,
    base: str | None = None,
    window_size: int = DEFAULT_WINDOW_SIZE,
    timeout: float | None = None,
) -> list[tuple[BranchCandidate, MergeVerdict]]:
    """Classify every candidate, preserving input order.

    ``base`` is the explicit or configured base for all branches; without
    one each branch falls back to its upstream default, then to the detected
    base. Raises ConfigurationError only when no base can be detected.
    """
    graph = CommitGraph(repo, timeout=timeout)
    default_base = detect_base_branch(repo, base)
    # A failed read is cached too, so a slow base times out once per batch.
    windows: dict[str, set[str] | ProbeError] = {}

    def window_loader(branch_base: str) -> BaseWindow:
        def load() -> set[str]:
            if branch_base not in windows:
                try:
                    windows[branch_base] = graph.base_fingerprints(branch_base, window_size)
                except ProbeError as exc:
                    windows[branch_base] = exc
            cached = windows[branch_base]
            if isinstance(cached, ProbeError):
                raise cached
            return cached

        return load

    results: list[tuple[BranchCandidate, MergeVerdict]] = []
    for candidate in candidates:
        branch_base = select_base(repo, candidate, explicit=base, default=default_base)
        verdict = classify_branch(
            graph, candidate, branch_base, window_size, base_window=window_loader(branch_base)
        )
        log.debug("%s -> %s (base %s)", candidate.name, verdict.status, branch_base)
        results.append((candidate, verdict))
    return results

"""Ancestry and patch-fingerprint queries against one repository.

A fingerprint is git's stable patch-id: a hash of the normalized diff that
ignores commit ids, timestamps, authorship and hunk line numbers,
so a commit keeps its fingerprint across rebases and cherry-picks.
"""

from __future__ import annotations

import logging
from pathlib import Path

from git_utils.git_ops import resolve_commit, run_git, run_git_status

log = logging.getLogger(__name__)

_LOG_PATCH_ARGS = ["log", "--no-merges", "-p", "--no-color", "--no-ext-diff", "--format=medium"]


class CommitGraph:
    """Read-only view of one repository's history.

    Every method raises ProbeError when refs cannot be resolved or the
    object store cannot be read.
    """

    def __init__(self, repo: Path, *, timeout: float | None = None) -> None:
        self.repo = repo
        self.timeout = timeout

    def resolve(self, ref: str) -> str:
        return resolve_commit(self.repo, ref, timeout=self.timeout)

    def is_ancestor(self, candidate: str, base: str) -> bool:
        """True when base already contains candidate (fast-forward or merge)."""
        status, _ = run_git_status(
            ["merge-base", "--is-ancestor", candidate, base],
            cwd=self.repo,
            timeout=self.timeout,
        )
        return status == 0

    def merge_base(self, candidate: str, base: str) -> str | None:
        # Exit status 1 means the histories share no commit.
        status, output = run_git_status(
            ["merge-base", base, candidate], cwd=self.repo, timeout=self.timeout
        )
        return output.strip() if status == 0 else None

    def _patch_ids(self, patch_text: str) -> dict[str, str]:
        """Map commit id -> patch-id for ``git log -p`` or ``git diff`` output."""
        if not patch_text.strip():
            return {}
        output = run_git(
            ["patch-id", "--stable"], cwd=self.repo, timeout=self.timeout, input=patch_text
        )
        ids: dict[str, str] = {}
        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 2:
                patch_id, commit = parts
                ids[commit] = patch_id
        return ids

    def unique_commit_fingerprints(self, candidate: str, base: str) -> set[str]:
        """Fingerprints of commits reachable from candidate but not from base.

        Merge commits and commits with empty diffs contribute nothing.
        """
        patch = run_git(
            [*_LOG_PATCH_ARGS, f"{base}..{candidate}"], cwd=self.repo, timeout=self.timeout
        )
        return set(self._patch_ids(patch).values())

    def aggregate_fingerprint(self, candidate: str, base: str) -> str | None:
        """Fingerprint of the branch's net diff since it forked from base."""
        fork_point = self.merge_base(candidate, base)
        if fork_point is None:
            return None
        diff = run_git(
            ["diff", "--no-color", "--no-ext-diff", fork_point, candidate],
            cwd=self.repo,
            timeout=self.timeout,
        )
        ids = self._patch_ids(diff)
        return next(iter(ids.values()), None)

    def base_fingerprints(self, base: str, window_size: int) -> set[str]:
        """Fingerprints of the latest ``window_size`` non-merge commits on base."""
        patch = run_git(
            [*_LOG_PATCH_ARGS, "-n", str(window_size), base], cwd=self.repo, timeout=self.timeout
        )
        fingerprints = set(self._patch_ids(patch).values())
        log.debug(
            "Collected %d fingerprints from %s (window %d) in %s",
            len(fingerprints),
            base,
            window_size,
            self.repo,
        )
        return fingerprints

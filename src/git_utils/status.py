"""Per-repository working-tree state: dirty, branch, ahead/behind."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from git_utils.errors import ProbeError
from git_utils.git_ops import fetch, run_git

log = logging.getLogger(__name__)


class VcsKind(StrEnum):
    CLEAN = "Clean"
    DIRTY = "Dirty"
    AHEAD_BEHIND = "AheadBehind"
    UNREADABLE = "Unreadable"


@dataclass(frozen=True)
class WorkingTreeStatus:
    """Snapshot of one working tree.

    ``ahead`` and ``behind`` are None when the branch has no upstream (or
    HEAD is detached); 0 means an upstream exists and is level.
    """

    branch: str | None
    upstream: str | None
    dirty: bool
    changed: int = 0
    untracked: int = 0
    ahead: int | None = None
    behind: int | None = None

    @property
    def kind(self) -> VcsKind:
        if self.dirty:
            return VcsKind.DIRTY
        if self.ahead or self.behind:
            return VcsKind.AHEAD_BEHIND
        return VcsKind.CLEAN


def _check_readable(repo: Path) -> None:
    git_dir = repo / ".git"
    if not os.access(repo, os.R_OK | os.X_OK) or not os.access(git_dir, os.R_OK):
        raise ProbeError("permission denied", path=str(repo))


def parse_porcelain_v2(output: str) -> WorkingTreeStatus:
    """Parse ``git status --porcelain=v2 --branch`` output."""
    branch: str | None = None
    upstream: str | None = None
    ahead: int | None = None
    behind: int | None = None
    changed = 0
    untracked = 0

    for line in output.splitlines():
        if line.startswith("# branch.head "):
            head = line.removeprefix("# branch.head ").strip()
            branch = None if head == "(detached)" else head
        elif line.startswith("# branch.upstream "):
            upstream = line.removeprefix("# branch.upstream ").strip()
        elif line.startswith("# branch.ab "):
            plus, minus = line.removeprefix("# branch.ab ").split()
            ahead, behind = int(plus.lstrip("+")), int(minus.lstrip("-"))
        elif line.startswith(("1 ", "2 ", "u ")):
            changed += 1
        elif line.startswith("? "):
            untracked += 1

    return WorkingTreeStatus(
        branch=branch,
        upstream=upstream,
        dirty=bool(changed or untracked),
        changed=changed,
        untracked=untracked,
        ahead=ahead,
        behind=behind,
    )


def probe_working_tree(
    repo: Path,
    *,
    include_untracked: bool = True,
    fetch_remote: bool = False,
    timeout: float | None = None,
) -> WorkingTreeStatus:
    """Report the working tree state of one repository.

    Ignored files never count as dirty. Untracked files count only with
    ``include_untracked``. ``fetch_remote`` refreshes remote-tracking refs
    before counting ahead/behind. Raises ProbeError on any failure.
    """
    _check_readable(repo)
    if fetch_remote:
        fetch(repo, timeout=timeout)
    output = run_git(
        [
            "status",
            "--porcelain=v2",
            "--branch",
            "--ignored=no",
            f"--untracked-files={'normal' if include_untracked else 'no'}",
        ],
        cwd=repo,
        timeout=timeout,
    )
    return parse_porcelain_v2(output)


def deletion_risks(repo: Path, *, timeout: float | None = None) -> list[str]:
    """Reasons a whole repository should not be removed without --force."""
    status = probe_working_tree(repo, include_untracked=True, timeout=timeout)
    risks: list[str] = []
    if status.dirty:
        risks.append("uncommitted changes")
    if status.ahead:
        risks.append("unpushed commits")
    return risks

"""Carry out the Delete items of a plan and report each outcome."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from git_utils.errors import ExecutionError, ProbeError
from git_utils.git_ops import delete_branch, delete_remote_branch, remote_branch_exists
from git_utils.planner import DeletionPlan, PlanItem

log = logging.getLogger(__name__)


class Outcome(StrEnum):
    SUCCEEDED = "succeeded"
    CHECKED_OUT_ELSEWHERE = "checked_out_elsewhere"
    REF_LOCK_FAILURE = "ref_lock_failure"
    FAILED = "failed"


class BranchDeletionError(ExecutionError):
    def __init__(self, branch: str, outcome: Outcome, detail: str) -> None:
        super().__init__(f"Failed to delete branch '{branch}': {detail}")
        self.branch = branch
        self.outcome = outcome
        self.detail = detail


@dataclass(frozen=True)
class ExecutionResult:
    branch: str
    outcome: Outcome
    detail: str | None = None
    remote_deleted: bool = False
    remote_error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "branch": self.branch,
            "outcome": str(self.outcome),
            "detail": self.detail,
            "remote_deleted": self.remote_deleted,
            "remote_error": self.remote_error,
        }


def classify_failure(message: str) -> Outcome:
    lowered = message.lower()
    if "checked out at" in lowered or "used by worktree" in lowered:
        return Outcome.CHECKED_OUT_ELSEWHERE
    if "cannot lock ref" in lowered or ".lock" in lowered:
        return Outcome.REF_LOCK_FAILURE
    return Outcome.FAILED


def delete_planned_branch(repo: Path, item: PlanItem) -> None:
    """Delete one planned branch with ``git branch -D``.

    The plan has already judged the branch safe; git's own ``-d`` check
    compares against HEAD rather than the base and would reject squash
    merges. Raises BranchDeletionError.
    """
    try:
        delete_branch(repo, item.branch, force=True)
    except ProbeError as exc:
        raise BranchDeletionError(item.branch, classify_failure(exc.reason), exc.reason) from exc


def execute_plan(
    repo: Path, plan: DeletionPlan, *, remote: str | None = None
) -> list[ExecutionResult]:
    """Run every Delete item; a failing item never stops the others."""
    results: list[ExecutionResult] = []
    for item in plan.deletions:
        try:
            delete_planned_branch(repo, item)
        except BranchDeletionError as exc:
            log.warning("%s", exc)
            results.append(ExecutionResult(item.branch, exc.outcome, exc.detail))
            continue

        remote_deleted = False
        remote_error = None
        if remote and remote_branch_exists(repo, item.branch, remote):
            try:
                delete_remote_branch(repo, item.branch, remote)
                remote_deleted = True
            except ProbeError as exc:
                log.warning(
                    "Failed to delete remote branch '%s/%s': %s", remote, item.branch, exc.reason
                )
                remote_error = exc.reason
        results.append(
            ExecutionResult(
                item.branch,
                Outcome.SUCCEEDED,
                remote_deleted=remote_deleted,
                remote_error=remote_error,
            )
        )
    return results

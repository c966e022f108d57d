"""Turn merge verdicts and protections into a deletion plan."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum

from git_utils.classifier import MergeVerdict
from git_utils.git_ops import BranchCandidate

CHECKED_OUT_REASON = "checked out"
PROTECTED_REASON = "protected"


class PlanMode(StrEnum):
    SAFE = "safe"
    FORCED = "forced"


class PlanAction(StrEnum):
    DELETE = "Delete"
    SKIP = "Skip"
    PROTECT = "Protect"


@dataclass(frozen=True)
class PlanItem:
    branch: str
    action: PlanAction
    verdict: MergeVerdict
    reason: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "branch": self.branch,
            "action": str(self.action),
            "reason": self.reason,
            "verdict": self.verdict.to_dict(),
        }


@dataclass(frozen=True)
class DeletionPlan:
    items: tuple[PlanItem, ...] = field(default_factory=tuple)
    forced: bool = False

    @property
    def deletions(self) -> list[PlanItem]:
        return [item for item in self.items if item.action is PlanAction.DELETE]

    def to_dict(self) -> dict[str, object]:
        return {
            "forced": self.forced,
            "items": [item.to_dict() for item in self.items],
        }


def build_plan(
    classified: Iterable[tuple[BranchCandidate, MergeVerdict]],
    *,
    current_branch: str | None,
    protected: Iterable[str] = (),
    mode: PlanMode = PlanMode.SAFE,
    override_protection: bool = False,
) -> DeletionPlan:
    """Decide an action for every classified branch.

    The checked-out branch is always protected. Names in ``protected`` are
    protected unless the plan is forced and ``override_protection`` is set.
    Safe mode deletes only Merged and SquashMerged branches; forced mode
    deletes every unprotected branch and keeps the verdict for auditing.
    """
    protected_names = set(protected)
    forced = mode is PlanMode.FORCED
    items: list[PlanItem] = []
    for candidate, verdict in classified:
        name = candidate.name
        if current_branch is not None and name == current_branch:
            items.append(PlanItem(name, PlanAction.PROTECT, verdict, CHECKED_OUT_REASON))
        elif name in protected_names and not (forced and override_protection):
            items.append(PlanItem(name, PlanAction.PROTECT, verdict, PROTECTED_REASON))
        elif forced or verdict.safe_to_delete:
            items.append(PlanItem(name, PlanAction.DELETE, verdict))
        else:
            items.append(PlanItem(name, PlanAction.SKIP, verdict, str(verdict.status)))
    return DeletionPlan(items=tuple(items), forced=forced)

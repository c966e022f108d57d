"""Tests for the commit graph probe and merge-safety classifier."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest
from conftest import commit_file, git, init_repo

from git_utils.classifier import (
    MergeStatus,
    MergeVerdict,
    classify_branch,
    classify_branches,
    select_base,
)
from git_utils.errors import ProbeError
from git_utils.git_ops import BranchCandidate, list_branch_candidates
from git_utils.graph import CommitGraph

pytestmark = [
    pytest.mark.slow,
    pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed"),
]


def _candidate(repo: Path, name: str) -> BranchCandidate:
    return next(c for c in list_branch_candidates(repo) if c.name == name)


def _classify(repo: Path, name: str, base: str = "main", window: int = 500) -> MergeVerdict:
    return classify_branch(CommitGraph(repo), _candidate(repo, name), base, window)


# ---------------------------------------------------------------------------
# Commit graph probe
# ---------------------------------------------------------------------------


def test_is_ancestor(repo):
    first = git(repo, "rev-parse", "HEAD")
    second = commit_file(repo, "a.txt", "a\n")
    graph = CommitGraph(repo)

    assert graph.is_ancestor(first, second)
    assert not graph.is_ancestor(second, first)


def test_fingerprints_survive_cherry_pick(repo):
    git(repo, "checkout", "-b", "topic")
    topic_commit = commit_file(repo, "topic.txt", "topic\n")
    git(repo, "checkout", "main")
    commit_file(repo, "other.txt", "other\n")
    git(repo, "cherry-pick", topic_commit)
    graph = CommitGraph(repo)

    unique = graph.unique_commit_fingerprints("topic", "main")
    window = graph.base_fingerprints("main", 10)

    assert len(unique) == 1
    assert unique <= window
    assert git(repo, "rev-parse", "main") != topic_commit


def test_base_fingerprint_window_is_bounded(repo):
    for i in range(5):
        commit_file(repo, f"f{i}.txt", f"{i}\n")
    graph = CommitGraph(repo)

    assert len(graph.base_fingerprints("main", 2)) == 2
    assert len(graph.base_fingerprints("main", 100)) == 6


def test_empty_commits_have_no_fingerprint(repo):
    git(repo, "checkout", "-b", "empty")
    git(repo, "commit", "--allow-empty", "-m", "nothing")
    assert CommitGraph(repo).unique_commit_fingerprints("empty", "main") == set()


def test_merge_base_unrelated_histories(tmp_path):
    project = init_repo(tmp_path / "p")
    git(project, "checkout", "--orphan", "island")
    commit_file(project, "island.txt", "island\n")
    assert CommitGraph(project).merge_base("island", "main") is None


def test_probe_errors_on_missing_ref(repo):
    with pytest.raises(ProbeError):
        CommitGraph(repo).unique_commit_fingerprints("missing", "main")


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


def test_ancestor_branch_is_merged(repo):
    """feature/x's head is an ancestor of main."""
    git(repo, "checkout", "-b", "feature/x")
    commit_file(repo, "x.txt", "x\n")
    git(repo, "checkout", "main")
    git(repo, "merge", "--ff-only", "feature/x")
    main_head = commit_file(repo, "later.txt", "later\n")

    verdict = _classify(repo, "feature/x")

    assert verdict.status is MergeStatus.MERGED
    assert verdict.evidence == (main_head,)
    assert verdict.base == "main"


def test_branch_at_base_head_is_merged(repo):
    git(repo, "branch", "same")
    assert _classify(repo, "same").status is MergeStatus.MERGED


def test_branch_without_content_is_merged(repo):
    git(repo, "checkout", "-b", "noop")
    git(repo, "commit", "--allow-empty", "-m", "nothing")
    git(repo, "checkout", "main")
    commit_file(repo, "main.txt", "main\n")

    assert _classify(repo, "noop").status is MergeStatus.MERGED


def test_squash_merged_single_commit(repo):
    """feature/y squashed into main as a new commit with the same diff."""
    git(repo, "checkout", "-b", "feature/y")
    commit_file(repo, "y.txt", "y\n")
    git(repo, "checkout", "main")
    commit_file(repo, "unrelated.txt", "unrelated\n")
    git(repo, "merge", "--squash", "feature/y")
    git(repo, "commit", "-m", "Squashed feature/y (#12)")

    verdict = _classify(repo, "feature/y")

    assert verdict.status is MergeStatus.SQUASH_MERGED
    assert len(verdict.evidence) == 1


def test_squash_merged_multiple_commits_matches_aggregate(repo):
    git(repo, "checkout", "-b", "feature/multi")
    commit_file(repo, "one.txt", "one\n")
    commit_file(repo, "two.txt", "two\n")
    git(repo, "checkout", "main")
    git(repo, "merge", "--squash", "feature/multi")
    git(repo, "commit", "-m", "Squashed feature/multi")

    verdict = _classify(repo, "feature/multi")

    assert verdict.status is MergeStatus.SQUASH_MERGED
    assert len(verdict.evidence) == 1


def test_rebased_branch_is_squash_merged(repo):
    git(repo, "checkout", "-b", "feature/rebased")
    first = commit_file(repo, "r1.txt", "r1\n")
    second = commit_file(repo, "r2.txt", "r2\n")
    git(repo, "checkout", "main")
    commit_file(repo, "base.txt", "base\n")
    git(repo, "cherry-pick", first, second)

    verdict = _classify(repo, "feature/rebased")

    assert verdict.status is MergeStatus.SQUASH_MERGED
    assert len(verdict.evidence) == 2


def test_unmerged_branch(repo):
    """feature/z has three commits, none of which reached main."""
    git(repo, "checkout", "-b", "feature/z")
    for i in range(3):
        commit_file(repo, f"z{i}.txt", f"z{i}\n")
    git(repo, "checkout", "main")
    commit_file(repo, "main.txt", "main\n")

    verdict = _classify(repo, "feature/z")

    assert verdict.status is MergeStatus.UNMERGED
    assert verdict.evidence == ()
    assert not verdict.safe_to_delete


def test_partially_picked_branch_is_diverged(repo):
    git(repo, "checkout", "-b", "feature/partial")
    picked = commit_file(repo, "p1.txt", "p1\n")
    commit_file(repo, "p2.txt", "p2\n")
    git(repo, "checkout", "main")
    git(repo, "cherry-pick", picked)

    verdict = _classify(repo, "feature/partial")

    assert verdict.status is MergeStatus.DIVERGED
    assert len(verdict.evidence) == 1


def test_match_outside_window_is_unmerged(repo):
    git(repo, "checkout", "-b", "feature/old")
    picked = commit_file(repo, "old.txt", "old\n")
    git(repo, "checkout", "main")
    git(repo, "cherry-pick", picked)
    for i in range(3):
        commit_file(repo, f"n{i}.txt", f"{i}\n")

    assert _classify(repo, "feature/old", window=2).status is MergeStatus.UNMERGED
    assert _classify(repo, "feature/old", window=10).status is MergeStatus.SQUASH_MERGED


def test_missing_base_is_unknown(repo):
    git(repo, "branch", "topic")
    verdict = _classify(repo, "topic", base="does-not-exist")

    assert verdict.status is MergeStatus.UNKNOWN
    assert verdict.evidence
    assert not verdict.safe_to_delete


def test_classify_branch_never_raises_on_corrupt_candidate(repo):
    bogus = BranchCandidate(
        name="ghost", head="0" * 40, upstream=None, last_commit_timestamp=0
    )
    verdict = classify_branch(CommitGraph(repo), bogus, "main")
    assert verdict.status is MergeStatus.UNKNOWN


def test_verdict_to_dict(repo):
    git(repo, "branch", "same")
    payload = _classify(repo, "same").to_dict()
    assert payload["status"] == "Merged"
    assert payload["branch"] == "same"
    assert payload["base"] == "main"


# ---------------------------------------------------------------------------
# Base selection and batches
# ---------------------------------------------------------------------------


def _clone_with_upstream(tmp_path: Path) -> Path:
    origin = init_repo(tmp_path / "origin")
    clone = tmp_path / "clone"
    git(tmp_path, "clone", str(origin), str(clone))
    git(clone, "checkout", "-b", "tracked")
    git(clone, "branch", "--set-upstream-to=origin/main")
    git(clone, "checkout", "main")
    return clone


def test_select_base_explicit_wins(tmp_path):
    clone = _clone_with_upstream(tmp_path)
    candidate = _candidate(clone, "tracked")
    assert select_base(clone, candidate, explicit="develop", default="main") == "develop"


def test_select_base_uses_upstream_default(tmp_path):
    clone = _clone_with_upstream(tmp_path)
    candidate = _candidate(clone, "tracked")
    assert select_base(clone, candidate, explicit=None, default="main") == "origin/main"


def test_select_base_without_upstream_uses_default(repo):
    git(repo, "branch", "local-only")
    candidate = _candidate(repo, "local-only")
    assert select_base(repo, candidate, explicit=None, default="main") == "main"


def test_classify_branches_preserves_order_and_isolates_failures(repo):
    git(repo, "branch", "merged-one")
    git(repo, "checkout", "-b", "unmerged-one")
    commit_file(repo, "u.txt", "u\n")
    git(repo, "checkout", "main")
    ghost = BranchCandidate(name="ghost", head="f" * 40, upstream=None, last_commit_timestamp=0)
    candidates = [_candidate(repo, "unmerged-one"), ghost, _candidate(repo, "merged-one")]

    results = classify_branches(repo, candidates)

    assert [c.name for c, _ in results] == ["unmerged-one", "ghost", "merged-one"]
    statuses = [v.status for _, v in results]
    assert statuses == [MergeStatus.UNMERGED, MergeStatus.UNKNOWN, MergeStatus.MERGED]


def test_classify_branches_unreadable_base_yields_unknown(repo):
    git(repo, "branch", "topic")
    results = classify_branches(repo, [_candidate(repo, "topic")], base="no-such-base")
    assert results[0][1].status is MergeStatus.UNKNOWN
    assert results[0][1].base == "no-such-base"


def test_unreadable_base_window_keeps_ancestry_verdicts(repo, monkeypatch):
    git(repo, "branch", "done")
    git(repo, "checkout", "-b", "open")
    commit_file(repo, "open.txt", "open\n")
    git(repo, "checkout", "main")
    commit_file(repo, "main.txt", "main\n")
    calls: list[str] = []

    def timed_out(self, base, window_size):
        calls.append(base)
        raise ProbeError("timeout", path=str(self.repo))

    monkeypatch.setattr(CommitGraph, "base_fingerprints", timed_out)

    results = classify_branches(repo, [_candidate(repo, "done"), _candidate(repo, "open")])
    verdicts = {c.name: v for c, v in results}

    assert verdicts["done"].status is MergeStatus.MERGED
    assert verdicts["open"].status is MergeStatus.UNKNOWN
    assert verdicts["open"].evidence == ("timeout",)
    assert calls == ["main"]


def test_base_window_read_once_per_batch(repo, monkeypatch):
    for name in ("one", "two"):
        git(repo, "checkout", "-b", name, "main")
        commit_file(repo, f"{name}.txt", f"{name}\n")
    git(repo, "checkout", "main")
    original = CommitGraph.base_fingerprints
    calls: list[str] = []

    def counting(self, base, window_size):
        calls.append(base)
        return original(self, base, window_size)

    monkeypatch.setattr(CommitGraph, "base_fingerprints", counting)

    results = classify_branches(repo, [_candidate(repo, "one"), _candidate(repo, "two")])

    assert [v.status for _, v in results] == [MergeStatus.UNMERGED, MergeStatus.UNMERGED]
    assert calls == ["main"]

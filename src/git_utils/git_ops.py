"""Git invocations shared by the probes, the execution layer and the CLI.

Every call goes through run_git, which raises ProbeError on failure so
callers can degrade one branch or one repository without special-casing
subprocess errors.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from git_utils.errors import ConfigurationError, ProbeError

log = logging.getLogger(__name__)

BASE_BRANCH_CANDIDATES = ("main", "master", "develop")

_FIELD_SEP = "\x00"


@dataclass(frozen=True)
class BranchCandidate:
    """A local branch considered for classification."""

    name: str
    head: str
    upstream: str | None
    last_commit_timestamp: int


def _failure_reason(stderr: str, returncode: int, args: Sequence[str]) -> str:
    if "permission denied" in stderr.lower():
        return "permission denied"
    if stderr:
        return stderr.splitlines()[-1].removeprefix("fatal: ").strip()
    return f"git {' '.join(args)} exited with code {returncode}"


def run_git(
    args: Sequence[str],
    *,
    cwd: Path,
    timeout: float | None = None,
    input: str | None = None,
) -> str:
    """Run a git command and return stdout.

    Raises ProbeError with a short reason ("timeout", "permission denied",
    or git's own message) on any failure.
    """
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            check=False,
            text=True,
            errors="replace",
            capture_output=True,
            timeout=timeout,
            input=input,
        )
    except subprocess.TimeoutExpired:
        raise ProbeError("timeout", path=str(cwd)) from None
    except PermissionError:
        raise ProbeError("permission denied", path=str(cwd)) from None
    except FileNotFoundError as exc:
        # Either git is missing or cwd vanished between discovery and probing.
        raise ProbeError(f"not found: {exc.filename or cwd}", path=str(cwd)) from None
    except OSError as exc:
        raise ProbeError(f"{type(exc).__name__}: {exc}", path=str(cwd)) from None

    if result.returncode != 0:
        stderr = result.stderr.strip() or result.stdout.strip()
        log.debug("git %s failed in %s: %s", " ".join(args), cwd, stderr)
        raise ProbeError(_failure_reason(stderr, result.returncode, args), path=str(cwd))
    return result.stdout


def git_ok(args: Sequence[str], *, cwd: Path, timeout: float | None = None) -> bool:
    """Return True when git exits with status 0."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


def run_git_status(
    args: Sequence[str],
    *,
    cwd: Path,
    timeout: float | None = None,
    accept: tuple[int, ...] = (0, 1),
) -> tuple[int, str]:
    """Run a git predicate and return its exit status and stdout.

    Statuses outside ``accept`` are treated as failures and raise ProbeError.
    """
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            check=False,
            text=True,
            capture_output=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise ProbeError("timeout", path=str(cwd)) from None
    except OSError as exc:
        raise ProbeError(f"{type(exc).__name__}: {exc}", path=str(cwd)) from None
    if result.returncode not in accept:
        stderr = result.stderr.strip()
        raise ProbeError(_failure_reason(stderr, result.returncode, args), path=str(cwd))
    return result.returncode, result.stdout


def config_values(key: str, *, repo: Path | None = None) -> list[str]:
    """Return every value for a git config key, or [] when it is unset.

    With a repository the lookup covers local, global and system config.
    Without one, system then global config are read, so global values come
    last and win. System config is skipped when GIT_CONFIG_NOSYSTEM is set,
    as git itself does.
    """
    if repo is not None:
        return _config_get_all(key, [], cwd=repo)
    scopes = [["--global"]]
    if not os.environ.get("GIT_CONFIG_NOSYSTEM"):
        scopes.insert(0, ["--system"])
    values: list[str] = []
    for scope in scopes:
        values.extend(_config_get_all(key, scope, cwd=Path.home()))
    return values


def _config_get_all(key: str, scope: list[str], *, cwd: Path) -> list[str]:
    args = ["config", *scope, "--get-all", key]
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            check=False,
            text=True,
            capture_output=True,
        )
    except OSError as exc:
        raise ConfigurationError(f"Cannot read git config '{key}': {exc}") from None

    # Exit status 1 means the key is not set.
    if result.returncode == 1:
        return []
    if result.returncode != 0:
        raise ConfigurationError(
            f"Cannot read git config '{key}': {result.stderr.strip() or result.returncode}"
        )
    return [line for line in result.stdout.splitlines() if line.strip()]


def repo_toplevel(path: Path) -> Path:
    """Return the working-tree root containing path."""
    return Path(run_git(["rev-parse", "--show-toplevel"], cwd=path).strip())


def current_branch(repo: Path) -> str | None:
    """Return the checked-out branch, or None when HEAD is detached."""
    try:
        name = run_git(["symbolic-ref", "--short", "-q", "HEAD"], cwd=repo).strip()
    except ProbeError:
        return None
    return name or None


def resolve_commit(repo: Path, ref: str, *, timeout: float | None = None) -> str:
    """Resolve a ref to a full commit id."""
    return run_git(
        ["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=repo, timeout=timeout
    ).strip()


def list_branch_candidates(repo: Path) -> list[BranchCandidate]:
    """Return local branches, most recently committed first."""
    fmt = "%00".join(
        ["%(refname:short)", "%(objectname)", "%(upstream:short)", "%(committerdate:unix)"]
    )
    output = run_git(
        ["for-each-ref", "--sort=-committerdate", f"--format={fmt}", "refs/heads"],
        cwd=repo,
    )
    candidates: list[BranchCandidate] = []
    for line in output.splitlines():
        if not line:
            continue
        name, head, upstream, timestamp = line.split(_FIELD_SEP)
        candidates.append(
            BranchCandidate(
                name=name,
                head=head,
                upstream=upstream or None,
                last_commit_timestamp=int(timestamp or 0),
            )
        )
    return candidates


def local_branch_exists(repo: Path, branch: str) -> bool:
    return git_ok(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=repo)


def remote_branch_exists(repo: Path, branch: str, remote: str = "origin") -> bool:
    return git_ok(
        ["show-ref", "--verify", "--quiet", f"refs/remotes/{remote}/{branch}"], cwd=repo
    )


def local_branch_for(repo: Path, ref: str) -> str | None:
    """Return the local name behind a remote-tracking ref (``origin/main`` -> ``main``).

    Returns None when ``ref`` is not a remote-tracking ref.
    """
    if "/" not in ref or not git_ok(
        ["show-ref", "--verify", "--quiet", f"refs/remotes/{ref}"], cwd=repo
    ):
        return None
    return ref.split("/", 1)[1]


def detect_base_branch(repo: Path, configured: str | None = None) -> str:
    """Pick the repository's base branch.

    An explicitly configured base wins; otherwise the first of main, master
    and develop that exists locally. Raises ConfigurationError when none do.
    """
    if configured:
        return configured
    for candidate in BASE_BRANCH_CANDIDATES:
        if local_branch_exists(repo, candidate):
            return candidate
    raise ConfigurationError(
        f"Base branch not found in {repo}. Set git-branch-delete.base in git config."
    )


def upstream_default_branch(repo: Path, upstream: str) -> str | None:
    """Return the default branch of the remote an upstream ref belongs to.

    ``origin/feature`` yields ``origin/main`` when ``refs/remotes/origin/HEAD``
    points at main. Returns None when the remote HEAD is unknown.
    """
    remote = upstream.split("/", 1)[0]
    try:
        target = run_git(
            ["symbolic-ref", "--short", "-q", f"refs/remotes/{remote}/HEAD"], cwd=repo
        ).strip()
    except ProbeError:
        return None
    return target or None


def recent_branches(repo: Path) -> list[str]:
    """Return branches in the order they were last checked out, newest first."""
    try:
        output = run_git(["reflog", "show", "--format=%gs", "HEAD"], cwd=repo)
    except ProbeError:
        return []
    seen: set[str] = set()
    branches: list[str] = []
    for message in output.splitlines():
        if not message.startswith("checkout: moving from "):
            continue
        target = message.rsplit(" ", 1)[-1]
        if target not in seen and local_branch_exists(repo, target):
            seen.add(target)
            branches.append(target)
    return branches


def fetch(repo: Path, *, timeout: float | None = None) -> None:
    """Refresh remote-tracking refs for the repository's default remote."""
    run_git(["fetch", "--quiet"], cwd=repo, timeout=timeout)


def delete_branch(repo: Path, branch: str, *, force: bool = False) -> None:
    """Delete a local branch. Raises ProbeError with git's reason on failure."""
    run_git(["branch", "-D" if force else "-d", branch], cwd=repo)


def delete_remote_branch(repo: Path, branch: str, remote: str = "origin") -> None:
    run_git(["push", remote, "--delete", branch], cwd=repo)

"""Resolved, immutable settings for one invocation.

Each value follows the same precedence: git config (repository scope when
a repository is given), then the environment, then a built-in default.
Settings are resolved once at the top of a command and passed down.

Keys::

    git-repo.root                         GIT_REPO_ROOT            ~/src
    git-repo.prefer-ssh                   GIT_REPO_PREFER_SSH      false
    git-repo.include-untracked                                     true
    git-repo.workers                      GIT_REPO_WORKERS         min(cpu, 16)
    git-repo.timeout                                               5.0
    git-branch-delete.base                GIT_BRANCH_DELETE_BASE   (detected)
    git-branch-delete.protected           GIT_BRANCH_DELETE_PROTECTED
    git-branch-delete.window                                       500
    git-branch-delete.override-protection                          false
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from git_utils.errors import ConfigurationError
from git_utils.git_ops import config_values
from git_utils.paths import DEFAULT_ROOT, resolve_root

log = logging.getLogger(__name__)

MAX_WORKERS = 16
DEFAULT_WINDOW_SIZE = 500
DEFAULT_PROBE_TIMEOUT_SECONDS = 5.0

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0", ""}


def default_workers() -> int:
    return max(1, min(os.cpu_count() or 1, MAX_WORKERS))


@dataclass(frozen=True)
class Settings:
    root: Path
    prefer_ssh: bool = False
    base_branch: str | None = None
    protected: tuple[str, ...] = ()
    window_size: int = DEFAULT_WINDOW_SIZE
    include_untracked: bool = True
    override_protection: bool = False
    workers: int = field(default_factory=default_workers)
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS


def _parse_bool(key: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"Invalid boolean for {key}: {raw!r}")


def _parse_positive_int(key: str, raw: str) -> int:
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"Invalid integer for {key}: {raw!r}") from None
    if value < 1:
        raise ConfigurationError(f"{key} must be at least 1, got {value}")
    return value


def _parse_positive_float(key: str, raw: str) -> float:
    try:
        value = float(raw.strip())
    except ValueError:
        raise ConfigurationError(f"Invalid number for {key}: {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {value}")
    return value


def _lookup(
    key: str, repo: Path | None, env: Mapping[str, str], env_var: str | None = None
) -> str | None:
    values = config_values(key, repo=repo)
    if values:
        return values[-1]
    if env_var and env_var in env:
        return env[env_var]
    return None


def _protected_names(repo: Path | None, env: Mapping[str, str]) -> tuple[str, ...]:
    names = config_values("git-branch-delete.protected", repo=repo)
    if not names and "GIT_BRANCH_DELETE_PROTECTED" in env:
        names = env["GIT_BRANCH_DELETE_PROTECTED"].split(",")
    seen: dict[str, None] = {}
    for name in names:
        if name.strip():
            seen[name.strip()] = None
    return tuple(seen)


def load_settings(
    repo: Path | None = None,
    env: Mapping[str, str] | None = None,
    *,
    root_default: Path | None = DEFAULT_ROOT,
) -> Settings:
    """Resolve every setting once.

    Pass ``root_default=None`` to require an explicitly configured root.
    """
    env = os.environ if env is None else env
    root = resolve_root(repo, env, default=root_default)

    prefer_ssh = _lookup("git-repo.prefer-ssh", repo, env, "GIT_REPO_PREFER_SSH")
    base = _lookup("git-branch-delete.base", repo, env, "GIT_BRANCH_DELETE_BASE")
    window = _lookup("git-branch-delete.window", repo, env)
    untracked = _lookup("git-repo.include-untracked", repo, env)
    override = _lookup("git-branch-delete.override-protection", repo, env)
    workers = _lookup("git-repo.workers", repo, env, "GIT_REPO_WORKERS")
    timeout = _lookup("git-repo.timeout", repo, env)

    settings = Settings(
        root=root,
        prefer_ssh=_parse_bool("git-repo.prefer-ssh", prefer_ssh) if prefer_ssh else False,
        base_branch=base.strip() if base and base.strip() else None,
        protected=_protected_names(repo, env),
        window_size=(
            _parse_positive_int("git-branch-delete.window", window)
            if window
            else DEFAULT_WINDOW_SIZE
        ),
        include_untracked=(
            _parse_bool("git-repo.include-untracked", untracked) if untracked else True
        ),
        override_protection=(
            _parse_bool("git-branch-delete.override-protection", override) if override else False
        ),
        workers=(
            min(_parse_positive_int("git-repo.workers", workers), MAX_WORKERS)
            if workers
            else default_workers()
        ),
        probe_timeout=(
            _parse_positive_float("git-repo.timeout", timeout)
            if timeout
            else DEFAULT_PROBE_TIMEOUT_SECONDS
        ),
    )
    log.debug("Resolved settings: %s", settings)
    return settings

"""Fleet root resolution and the ``<root>/<host>/<org>/<name>`` layout."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

from git_utils.errors import ConfigurationError
from git_utils.git_ops import config_values

ROOT_CONFIG_KEY = "git-repo.root"
ROOT_ENV_VAR = "GIT_REPO_ROOT"
DEFAULT_ROOT = Path.home() / "src"


@dataclass(frozen=True)
class RemoteInfo:
    host: str
    org: str
    name: str

    @property
    def relative_path(self) -> Path:
        return Path(self.host) / self.org / self.name


def resolve_root(
    repo: Path | None = None,
    env: Mapping[str, str] | None = None,
    default: Path | None = DEFAULT_ROOT,
) -> Path:
    """Resolve the fleet root: git config, then environment, then default.

    Raises ConfigurationError when nothing applies or a configured value
    is blank.
    """
    env = os.environ if env is None else env
    configured = config_values(ROOT_CONFIG_KEY, repo=repo)
    if configured:
        raw, source = configured[-1], ROOT_CONFIG_KEY
    elif ROOT_ENV_VAR in env:
        raw, source = env[ROOT_ENV_VAR], ROOT_ENV_VAR
    elif default is not None:
        return default
    else:
        raise ConfigurationError(
            f"{ROOT_CONFIG_KEY} not configured. "
            f"Run 'git config --global {ROOT_CONFIG_KEY} <path>' or set {ROOT_ENV_VAR}."
        )

    if not raw.strip():
        raise ConfigurationError(f"{source} is set but empty")
    return Path(raw.strip()).expanduser()


def _split_repo_path(path: str, url: str) -> tuple[str, str]:
    parts = [p for p in path.strip("/").removesuffix(".git").split("/") if p]
    if len(parts) < 2:
        raise ConfigurationError(f"Invalid repository path in URL: {url}")
    return parts[0], parts[1]


def parse_remote_url(url: str) -> RemoteInfo:
    """Extract host, org and repository name from an SSH or HTTPS remote URL.

    Accepts ``git@host:org/name.git``, ``ssh://git@host:22/org/name.git`` and
    ``https://host/org/name.git``.
    """
    url = url.strip()
    if "://" not in url and "@" in url.split(":", 1)[0] and ":" in url:
        user_host, path = url.split(":", 1)
        host = user_host.split("@", 1)[1]
        if not host:
            raise ConfigurationError(f"Invalid SSH URL format: {url}")
        org, name = _split_repo_path(path, url)
        return RemoteInfo(host=host, org=org, name=name)

    parsed = urlsplit(url)
    if parsed.scheme not in ("ssh", "git", "http", "https") or not parsed.hostname:
        raise ConfigurationError(f"Unsupported remote URL: {url}")
    org, name = _split_repo_path(parsed.path, url)
    return RemoteInfo(host=parsed.hostname, org=org, name=name)


def to_ssh_url(url: str) -> str:
    """Rewrite an HTTP(S) URL to ``git@host:path``; other URLs pass through."""
    parsed = urlsplit(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return url
    return f"git@{parsed.hostname}:{parsed.path.lstrip('/')}"


def repository_path(root: Path, url: str) -> Path:
    """Return where a remote is checked out under the fleet root."""
    return root / parse_remote_url(url).relative_path

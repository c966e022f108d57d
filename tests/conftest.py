"""Shared fixtures: isolated git config and small repository builders."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=str(cwd), check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str | None = None) -> str:
    """Write a file, commit it and return the new commit id."""
    target = repo / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)
    git(repo, "add", name)
    git(repo, "commit", "-m", message or f"add {name}")
    return git(repo, "rev-parse", "HEAD")


def init_repo(path: Path, branch: str = "main") -> Path:
    """Create a repository with one commit on ``branch``."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-b", branch)
    commit_file(path, "README.md", "readme\n", "init")
    return path


@pytest.fixture(autouse=True)
def git_identity_env(monkeypatch, tmp_path_factory):
    """Commit without global identity and keep user/system config out of tests."""
    config_home = tmp_path_factory.mktemp("gitconfig")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "git-utils-tests")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "git-utils-tests@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "git-utils-tests")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "git-utils-tests@example.com")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(config_home / "config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in (
        "GIT_REPO_ROOT",
        "GIT_REPO_PREFER_SSH",
        "GIT_REPO_WORKERS",
        "GIT_BRANCH_DELETE_BASE",
        "GIT_BRANCH_DELETE_PROTECTED",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture()
def repo(tmp_path: Path) -> Path:
    """A repository with a single commit on main."""
    return init_repo(tmp_path / "repo")

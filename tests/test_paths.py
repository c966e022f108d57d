"""Tests for root resolution and remote URL layout."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest
from conftest import git

from git_utils.errors import ConfigurationError
from git_utils.paths import (
    DEFAULT_ROOT,
    parse_remote_url,
    repository_path,
    resolve_root,
    to_ssh_url,
)


class TestParseRemoteUrl:
    def test_scp_style_ssh(self) -> None:
        info = parse_remote_url("git@github.com:poi2/git-utils.git")
        assert (info.host, info.org, info.name) == ("github.com", "poi2", "git-utils")

    def test_https(self) -> None:
        info = parse_remote_url("https://github.com/poi2/git-utils.git")
        assert (info.host, info.org, info.name) == ("github.com", "poi2", "git-utils")

    def test_https_without_suffix(self) -> None:
        info = parse_remote_url("https://gitlab.example.com/team/service")
        assert (info.host, info.org, info.name) == ("gitlab.example.com", "team", "service")

    def test_ssh_scheme_with_port(self) -> None:
        info = parse_remote_url("ssh://git@git.example.com:2222/team/service.git")
        assert (info.host, info.org, info.name) == ("git.example.com", "team", "service")

    def test_relative_path(self) -> None:
        info = parse_remote_url("git@github.com:poi2/git-utils.git")
        assert info.relative_path == Path("github.com/poi2/git-utils")

    @pytest.mark.parametrize(
        "url",
        [
            "git@github.com:only-one-part.git",
            "https://github.com/only-one",
            "https://github.com/",
            "file:///tmp/repo",
            "not a url",
        ],
    )
    def test_invalid_urls(self, url: str) -> None:
        with pytest.raises(ConfigurationError):
            parse_remote_url(url)


class TestToSshUrl:
    def test_converts_https(self) -> None:
        assert to_ssh_url("https://github.com/poi2/git-utils.git") == (
            "git@github.com:poi2/git-utils.git"
        )

    def test_leaves_ssh_untouched(self) -> None:
        url = "git@github.com:poi2/git-utils.git"
        assert to_ssh_url(url) == url


def test_repository_path(tmp_path: Path) -> None:
    target = repository_path(tmp_path, "https://github.com/poi2/git-utils.git")
    assert target == tmp_path / "github.com" / "poi2" / "git-utils"


class TestResolveRoot:
    @pytest.fixture(autouse=True)
    def no_git_config(self, monkeypatch):
        monkeypatch.setattr("git_utils.paths.config_values", lambda key, repo=None: [])

    def test_default_when_nothing_set(self) -> None:
        assert resolve_root(env={}) == DEFAULT_ROOT

    def test_environment_beats_default(self, tmp_path: Path) -> None:
        assert resolve_root(env={"GIT_REPO_ROOT": str(tmp_path)}) == tmp_path

    def test_config_beats_environment(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.setattr(
            "git_utils.paths.config_values", lambda key, repo=None: ["/from/config"]
        )
        assert resolve_root(env={"GIT_REPO_ROOT": str(tmp_path)}) == Path("/from/config")

    def test_tilde_is_expanded(self) -> None:
        assert resolve_root(env={"GIT_REPO_ROOT": "~/code"}) == Path.home() / "code"

    def test_no_default_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="git-repo.root"):
            resolve_root(env={}, default=None)

    def test_blank_value_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="empty"):
            resolve_root(env={"GIT_REPO_ROOT": "  "})


@pytest.mark.slow
@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_resolve_root_reads_repository_config(repo: Path, tmp_path: Path) -> None:
    git(repo, "config", "git-repo.root", str(tmp_path / "fleet"))
    assert resolve_root(repo, env={"GIT_REPO_ROOT": "/ignored"}) == tmp_path / "fleet"

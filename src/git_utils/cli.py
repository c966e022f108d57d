from __future__ import annotations

import json
import logging
import shutil
from dataclasses import replace
from pathlib import Path

import click

from git_utils import __version__
from git_utils.classifier import classify_branches
from git_utils.config import Settings, load_settings
from git_utils.errors import ConfigurationError, ProbeError
from git_utils.execution import execute_plan
from git_utils.git_ops import (
    current_branch,
    detect_base_branch,
    list_branch_candidates,
    local_branch_for,
    recent_branches,
    repo_toplevel,
)
from git_utils.paths import repository_path, to_ssh_url
from git_utils.planner import PlanMode, build_plan
from git_utils.scanner import DEFAULT_MAX_DEPTH, scan
from git_utils.status import deletion_risks

log = logging.getLogger(__name__)


class _JsonAwareGroup(click.Group):
    """Group that always outputs JSON errors with command suggestions.

    Click normally writes plain-text usage errors to stderr. Every command
    here prints JSON, so usage and command errors are emitted as a JSON
    error object on stdout. Unknown commands get fuzzy-matched suggestions.
    """

    def resolve_command(self, ctx, args):  # type: ignore[override]
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError:
            if args:
                import difflib

                cmd_name = args[0]
                matches = difflib.get_close_matches(
                    cmd_name, self.list_commands(ctx), n=2, cutoff=0.5
                )
                hint = f" Did you mean: {', '.join(matches)}?" if matches else ""
                raise click.UsageError(f"No such command '{cmd_name}'.{hint}") from None
            raise

    def main(self, args=None, standalone_mode=True, **kwargs):  # type: ignore[override]
        try:
            rv = super().main(args=args, standalone_mode=False, **kwargs)
            if standalone_mode:
                raise SystemExit(rv or 0)
            return rv
        except click.ClickException as e:
            click.echo(json.dumps({"ok": False, "error": e.format_message()}))
            code = getattr(e, "exit_code", 1)
            if standalone_mode:
                raise SystemExit(code) from None
            return code
        except click.Abort:
            if standalone_mode:
                click.echo("Aborted!", err=True)
                raise SystemExit(1) from None
            raise


@click.group(cls=_JsonAwareGroup)
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
def main(verbose: bool):
    """Judge which branches are safe to delete and report on a fleet of repositories.

    \b
    Quick start:
      git-utils ls                  Status of every repository under the root
      git-utils ls --dirty          Only repositories needing attention
      git-utils branches            Local branches with merge verdicts
      git-utils prune               Plan deletion of merged branches
      git-utils prune --execute     ...and delete them

    \b
    Configuration (git config, then environment):
      git-repo.root                 GIT_REPO_ROOT (default ~/src)
      git-branch-delete.base        GIT_BRANCH_DELETE_BASE
      git-branch-delete.protected   GIT_BRANCH_DELETE_PROTECTED
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )


def _load(repo: Path | None) -> Settings:
    try:
        return load_settings(repo)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


def _repo_root(directory: str) -> Path:
    try:
        return repo_toplevel(Path(directory))
    except ProbeError as exc:
        raise click.ClickException(f"Not a git repository: {directory} ({exc.reason})") from None


_repo_option = click.option(
    "--repo",
    "repo_dir",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Repository to inspect (default: current directory).",
)


# -- fleet --


@main.command()
def root():
    """Show the resolved repository root."""
    settings = _load(None)
    click.echo(json.dumps({"root": str(settings.root), "exists": settings.root.is_dir()}))


@main.command()
@click.argument("url")
def path(url: str):
    """Show where a remote URL is checked out under the root."""
    settings = _load(None)
    if settings.prefer_ssh:
        url = to_ssh_url(url)
    try:
        target = repository_path(settings.root, url)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps({"url": url, "path": str(target), "exists": target.exists()}))


@main.command("ls")
@click.option("--dirty", is_flag=True, help="Only repositories that are not clean.")
@click.option("--fetch", "fetch_remote", is_flag=True, help="Fetch before counting ahead/behind.")
@click.option("--absolute", "-a", is_flag=True, help="Show absolute paths.")
@click.option(
    "--untracked/--no-untracked",
    default=None,
    help="Count untracked files as dirty (default: git-repo.include-untracked).",
)
@click.option("--workers", type=click.IntRange(min=1), default=None, help="Parallel probes.")
@click.option("--depth", type=click.IntRange(min=0), default=DEFAULT_MAX_DEPTH, show_default=True)
def ls(
    dirty: bool,
    fetch_remote: bool,
    absolute: bool,
    untracked: bool | None,
    workers: int | None,
    depth: int,
):
    """List every repository under the root with its working-tree status."""
    settings = _load(None)
    if workers:
        settings = replace(settings, workers=workers)
    if untracked is not None:
        settings = replace(settings, include_untracked=untracked)
    report = scan(settings, fetch_remote=fetch_remote, max_depth=depth)
    click.echo(json.dumps(report.to_dict(absolute=absolute, dirty_only=dirty), indent=2))


@main.command("repo-rm")
@click.argument("target")
@click.option("--force", "-f", is_flag=True, help="Delete despite uncommitted or unpushed work.")
@click.option("--dry-run", is_flag=True, help="Report what would be deleted.")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
def repo_rm(target: str, force: bool, dry_run: bool, yes: bool):
    """Delete a repository checkout (TARGET is relative to the root)."""
    settings = _load(None)
    repo = Path(target).expanduser()
    if not repo.is_absolute():
        repo = settings.root / repo
    if not (repo / ".git").exists():
        raise click.ClickException(f"Not a git repository: {target}")

    try:
        risks = deletion_risks(repo, timeout=settings.probe_timeout)
    except ProbeError as exc:
        risks = [f"unreadable: {exc.reason}"]
    payload: dict[str, object] = {"path": str(repo), "risks": risks, "deleted": False}

    if risks and not force:
        raise click.ClickException(
            f"Repository has {', '.join(risks)}. Use --force to delete anyway."
        )
    if dry_run:
        click.echo(json.dumps(payload))
        return
    if not yes and not click.confirm(f"Delete repository '{repo}'?", err=True):
        return

    shutil.rmtree(repo)
    payload["deleted"] = True
    click.echo(json.dumps(payload))


# -- branches --


def _classified(repo: Path, settings: Settings, base: str | None, candidates=None):
    try:
        return classify_branches(
            repo,
            list_branch_candidates(repo) if candidates is None else candidates,
            base=base or settings.base_branch,
            window_size=settings.window_size,
            timeout=settings.probe_timeout,
        )
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc
    except ProbeError as exc:
        raise click.ClickException(f"Cannot list branches: {exc.reason}") from exc


@main.command()
@_repo_option
@click.option("--base", default=None, help="Base branch (overrides configuration).")
@click.option("--merged", "merge_filter", flag_value="merged", help="Only deletable branches.")
@click.option("--no-merged", "merge_filter", flag_value="unmerged", help="Only unsafe branches.")
@click.option("--pattern", default=None, help="Only branches whose name contains PATTERN.")
@click.option("--recent", is_flag=True, help="Order by most recent checkout.")
def branches(
    repo_dir: str,
    base: str | None,
    merge_filter: str | None,
    pattern: str | None,
    recent: bool,
):
    """List local branches annotated with their merge verdicts."""
    repo = _repo_root(repo_dir)
    settings = _load(repo)
    try:
        candidates = list_branch_candidates(repo)
    except ProbeError as exc:
        raise click.ClickException(f"Cannot list branches: {exc.reason}") from exc

    if pattern:
        candidates = [c for c in candidates if pattern in c.name]
    if recent:
        order = {name: i for i, name in enumerate(recent_branches(repo))}
        candidates = sorted(
            (c for c in candidates if c.name in order), key=lambda c: order[c.name]
        )

    checked_out = current_branch(repo)
    rows = []
    for candidate, verdict in _classified(repo, settings, base, candidates):
        if merge_filter == "merged" and not verdict.safe_to_delete:
            continue
        if merge_filter == "unmerged" and verdict.safe_to_delete:
            continue
        rows.append(
            {
                "name": candidate.name,
                "head": candidate.head,
                "upstream": candidate.upstream,
                "last_commit_timestamp": candidate.last_commit_timestamp,
                "current": candidate.name == checked_out,
                "verdict": verdict.to_dict(),
            }
        )
    click.echo(json.dumps({"current_branch": checked_out, "branches": rows}, indent=2))


@main.command()
@_repo_option
@click.option("--base", default=None, help="Base branch (overrides configuration).")
@click.option(
    "--force", "-f", is_flag=True, help="Delete unprotected branches regardless of verdict."
)
@click.option(
    "--all",
    "override_protection",
    is_flag=True,
    help="With --force, also delete protected branches (never the checked-out one).",
)
@click.option("--execute", is_flag=True, help="Delete the planned branches.")
@click.option("--remote", default=None, help="Also delete the branch on this remote.")
def prune(
    repo_dir: str,
    base: str | None,
    force: bool,
    override_protection: bool,
    execute: bool,
    remote: str | None,
):
    """Plan (and optionally run) deletion of local branches."""
    if override_protection and not force:
        raise click.ClickException("--all requires --force.")

    repo = _repo_root(repo_dir)
    settings = _load(repo)
    explicit = base or settings.base_branch
    try:
        base_name = detect_base_branch(repo, explicit)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc
    protected = [*settings.protected, base_name]
    local_base = local_branch_for(repo, base_name)
    if local_base:
        protected.append(local_base)

    plan = build_plan(
        _classified(repo, settings, explicit),
        current_branch=current_branch(repo),
        protected=protected,
        mode=PlanMode.FORCED if force else PlanMode.SAFE,
        override_protection=override_protection or settings.override_protection,
    )
    payload: dict[str, object] = {"base": base_name, "plan": plan.to_dict()}
    if execute:
        results = execute_plan(repo, plan, remote=remote)
        payload["results"] = [r.to_dict() for r in results]
        log.debug("Executed %d deletions in %s", len(results), repo)
    click.echo(json.dumps(payload, indent=2))

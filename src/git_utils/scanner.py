"""Fleet discovery and bounded-concurrency status scanning.

Discovery walks the root with an explicit stack; each discovered
repository is probed in its own worker task and the collector is the
only place results are aggregated. A scan always yields one entry per
location it collected; a failing repository becomes an Unreadable entry.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path

from git_utils.config import DEFAULT_PROBE_TIMEOUT_SECONDS, Settings, default_workers
from git_utils.errors import ProbeError
from git_utils.status import VcsKind, WorkingTreeStatus, probe_working_tree

log = logging.getLogger(__name__)

# <root>/<host>/<org>/<name>
DEFAULT_MAX_DEPTH = 3

_POLL_INTERVAL_SECONDS = 0.1

Probe = Callable[..., WorkingTreeStatus]


@dataclass(frozen=True)
class RepositoryLocation:
    root: Path
    provider_host: str | None
    org: str | None
    name: str
    path: Path

    @property
    def relative_path(self) -> str:
        try:
            return self.path.relative_to(self.root).as_posix() or "."
        except ValueError:
            return str(self.path)


def location_for(root: Path, path: Path) -> RepositoryLocation:
    """Derive host/org/name from a repository's position under root."""
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = ()
    host = parts[0] if len(parts) >= 3 else None
    org = parts[-2] if len(parts) >= 2 else None
    return RepositoryLocation(
        root=root,
        provider_host=host,
        org=org,
        name=parts[-1] if parts else path.name,
        path=path,
    )


def discover_repositories(
    root: Path, max_depth: int = DEFAULT_MAX_DEPTH
) -> list[RepositoryLocation]:
    """Find repository roots under root without recursing.

    Never descends into a repository. Symlinked directories are followed
    once; a directory already visited (same device and inode) is skipped,
    which breaks symlink cycles. Unreadable directories are logged and
    skipped.
    """
    if not root.is_dir():
        log.warning("Repository root does not exist: %s", root)
        return []

    found: dict[Path, RepositoryLocation] = {}
    visited: set[tuple[int, int]] = set()
    stack: list[tuple[Path, int]] = [(root, 0)]
    while stack:
        current, depth = stack.pop()
        try:
            st = current.stat()
        except OSError as exc:
            log.warning("Skipping %s: %s", current, exc)
            continue
        key = (st.st_dev, st.st_ino)
        if key in visited:
            log.debug("Skipping already visited directory %s", current)
            continue
        visited.add(key)

        if (current / ".git").exists():
            found[current] = location_for(root, current)
            continue
        if depth >= max_depth:
            continue

        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    try:
                        is_dir = entry.is_dir()
                    except OSError:
                        continue
                    if is_dir and entry.name != ".git":
                        stack.append((Path(entry.path), depth + 1))
        except OSError as exc:
            log.warning("Cannot list %s: %s", current, exc)

    return sorted(found.values(), key=lambda loc: str(loc.path))


@dataclass(frozen=True)
class FleetEntry:
    location: RepositoryLocation
    kind: VcsKind
    status: WorkingTreeStatus | None = None
    reason: str | None = None

    def to_dict(self, *, absolute: bool = False) -> dict[str, object]:
        status = self.status
        return {
            "path": str(self.location.path) if absolute else self.location.relative_path,
            "provider_host": self.location.provider_host,
            "org": self.location.org,
            "name": self.location.name,
            "status": str(self.kind),
            "branch": status.branch if status else None,
            "upstream": status.upstream if status else None,
            "ahead": status.ahead if status else None,
            "behind": status.behind if status else None,
            "dirty": status.dirty if status else None,
            "reason": self.reason,
        }


@dataclass
class FleetReport:
    root: Path
    entries: list[FleetEntry] = field(default_factory=list)
    partial: bool = False

    def to_dict(self, *, absolute: bool = False, dirty_only: bool = False) -> dict[str, object]:
        entries = [
            e for e in self.entries if not dirty_only or e.kind is not VcsKind.CLEAN
        ]
        return {
            "root": str(self.root),
            "partial": self.partial,
            "count": len(entries),
            "repositories": [e.to_dict(absolute=absolute) for e in entries],
        }


def _probe_entry(location: RepositoryLocation, probe: Probe, **options: object) -> FleetEntry:
    """Run one probe; every failure becomes an Unreadable entry."""
    try:
        status = probe(location.path, **options)
    except ProbeError as exc:
        reason = exc.reason
    except PermissionError:
        reason = "permission denied"
    except OSError as exc:
        reason = f"{type(exc).__name__}: {exc}"
    except Exception as exc:
        log.debug("Unexpected probe failure for %s", location.path, exc_info=True)
        reason = f"{type(exc).__name__}: {exc}"
    else:
        return FleetEntry(location=location, kind=status.kind, status=status)

    log.warning("Unreadable repository %s: %s", location.path, reason)
    return FleetEntry(location=location, kind=VcsKind.UNREADABLE, reason=reason)


def scan_fleet(
    root: Path,
    locations: Iterable[RepositoryLocation],
    *,
    workers: int | None = None,
    include_untracked: bool = True,
    fetch_remote: bool = False,
    timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    cancel: threading.Event | None = None,
    probe: Probe = probe_working_tree,
) -> FleetReport:
    """Probe every location on a bounded pool and return a sorted report.

    Setting ``cancel`` (or a KeyboardInterrupt in the collecting thread)
    stops collection: queued tasks are cancelled, running ones abandoned,
    and the entries gathered so far are returned with ``partial=True``.
    """
    unique = {loc.path: loc for loc in locations}
    report = FleetReport(root=root)
    if not unique:
        return report

    options = {
        "include_untracked": include_untracked,
        "fetch_remote": fetch_remote,
        "timeout": timeout,
    }
    executor = ThreadPoolExecutor(
        max_workers=min(workers or default_workers(), len(unique)),
        thread_name_prefix="git-utils-scan",
    )
    pending: set[Future[FleetEntry]] = {
        executor.submit(_probe_entry, loc, probe, **options) for loc in unique.values()
    }
    entries: list[FleetEntry] = []
    try:
        while pending:
            if cancel is not None and cancel.is_set():
                report.partial = True
                break
            done, pending = wait(
                pending, timeout=_POLL_INTERVAL_SECONDS, return_when=FIRST_COMPLETED
            )
            entries.extend(f.result() for f in done)
    except KeyboardInterrupt:
        report.partial = True
    finally:
        if report.partial:
            entries.extend(f.result() for f in pending if f.done() and not f.cancelled())
            log.warning(
                "Scan interrupted: %d of %d repositories collected", len(entries), len(unique)
            )
        executor.shutdown(wait=not report.partial, cancel_futures=report.partial)

    report.entries = sorted(entries, key=lambda e: str(e.location.path))
    return report


def scan(
    settings: Settings,
    *,
    fetch_remote: bool = False,
    max_depth: int = DEFAULT_MAX_DEPTH,
    cancel: threading.Event | None = None,
) -> FleetReport:
    """Discover and scan the fleet under the configured root."""
    locations = discover_repositories(settings.root, max_depth)
    log.debug("Discovered %d repositories under %s", len(locations), settings.root)
    return scan_fleet(
        settings.root,
        locations,
        workers=settings.workers,
        include_untracked=settings.include_untracked,
        fetch_remote=fetch_remote,
        timeout=settings.probe_timeout,
        cancel=cancel,
    )

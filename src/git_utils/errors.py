"""Error taxonomy shared by the core and the CLI adapter.

Only ConfigurationError is fatal. ProbeError and ExecutionError are
per-item and are folded into verdicts, fleet entries and execution
results instead of propagating out of a batch.
"""

from __future__ import annotations


class GitUtilsError(Exception):
    """Base class for git-utils errors."""


class ConfigurationError(GitUtilsError):
    """Raised when settings cannot be resolved before any work starts."""


class ProbeError(GitUtilsError):
    """Raised when a repository's refs or object store cannot be read."""

    def __init__(self, reason: str, *, path: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.path = path


class ExecutionError(GitUtilsError):
    """Raised when a single planned deletion fails."""

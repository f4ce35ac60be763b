"""Error types raised by git-convoy."""

from __future__ import annotations


class ConvoyError(Exception):
    """Base class for all git-convoy errors."""


class GitLaunchError(ConvoyError):
    """The git process could not be started (missing binary, permission denied)."""


class GitTimeoutError(ConvoyError):
    """A git process exceeded its allotted time."""


class GitCommandError(ConvoyError):
    """A git query the status of a repository depends on exited non-zero."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class RemoteRoleError(ConvoyError):
    """Remote roles (share/base) cannot be determined for a repository."""

    def __init__(self, message: str, repo: str = "", remotes: list[str] | None = None):
        super().__init__(message)
        self.repo = repo
        self.remotes = list(remotes or [])


class WhereFilterError(ConvoyError, ValueError):
    """A --where expression is malformed or names unknown terms."""

    def __init__(self, message: str, terms: list[str] | None = None):
        super().__init__(message)
        self.terms = list(terms or [])


class WorkspaceError(ConvoyError):
    """The workspace directory or its config is missing or unusable."""


class ConvoyAbort(ConvoyError):
    """The operation was cancelled by the user."""

    def __init__(self, message: str = "Aborted."):
        super().__init__(message)

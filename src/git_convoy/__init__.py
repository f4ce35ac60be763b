"""git-convoy: status of sibling Git repositories that move as one branch."""

# Guard against deleted CWD (e.g. workspace removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .cli import app
from .config import ConvoySettings, Workspace
from .conflicts import predict_merge_conflict, predict_rebase_conflicts
from .correlation import (
    analyze_retarget_replay,
    detect_merge,
    detect_rebased_commits,
    match_diverged_commits,
)
from .errors import (
    ConvoyAbort,
    ConvoyError,
    GitCommandError,
    GitLaunchError,
    GitTimeoutError,
    RemoteRoleError,
    WhereFilterError,
    WorkspaceError,
)
from .fleet import ConvoyManager
from .git import GitOperations, GitResult
from .models import (
    BaseInfo,
    ConflictPrediction,
    DivergedMatch,
    FetchResult,
    Identity,
    LocalChanges,
    MergeKind,
    RepoFlags,
    RepoStatus,
    RetargetReplay,
    ShareInfo,
    ShareRefMode,
    WorkspaceSummary,
)
from .parallel import CancelToken, run_ordered
from .remotes import RemoteRoleCache, RemoteRoles, resolve_remote_roles
from .schema import SCHEMA_VERSION, get_status_schema, get_tool_schema
from .status import (
    compute_flags,
    gather_repo_status,
    gather_workspace_summary,
    is_workspace_safe,
    would_lose_work,
)
from .where import parse_where, repo_matches_where, validate_where, workspace_matches_where

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "BaseInfo",
    "ConflictPrediction",
    "DivergedMatch",
    "FetchResult",
    "Identity",
    "LocalChanges",
    "MergeKind",
    "RepoFlags",
    "RepoStatus",
    "RetargetReplay",
    "ShareInfo",
    "ShareRefMode",
    "WorkspaceSummary",
    # Errors
    "ConvoyAbort",
    "ConvoyError",
    "GitCommandError",
    "GitLaunchError",
    "GitTimeoutError",
    "RemoteRoleError",
    "WhereFilterError",
    "WorkspaceError",
    # Operations
    "CancelToken",
    "ConvoyManager",
    "ConvoySettings",
    "GitOperations",
    "GitResult",
    "RemoteRoleCache",
    "RemoteRoles",
    "Workspace",
    # Functions
    "analyze_retarget_replay",
    "compute_flags",
    "detect_merge",
    "detect_rebased_commits",
    "gather_repo_status",
    "gather_workspace_summary",
    "is_workspace_safe",
    "match_diverged_commits",
    "parse_where",
    "predict_merge_conflict",
    "predict_rebase_conflicts",
    "repo_matches_where",
    "resolve_remote_roles",
    "run_ordered",
    "validate_where",
    "workspace_matches_where",
    "would_lose_work",
    # Schema
    "SCHEMA_VERSION",
    "get_status_schema",
    "get_tool_schema",
]

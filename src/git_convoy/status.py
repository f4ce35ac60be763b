"""
Per-repository status gathering, derived flags and workspace aggregation.

Nothing here mutates a repository: every query goes through the read-only
primitives of ``GitOperations``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from .conflicts import predict_merge_conflict
from .correlation import DEFAULT_COMMIT_LIMIT, detect_merge, match_against
from .errors import GitCommandError
from .git import GitOperations, PorcelainStatus
from .models import (
    FLAG_LABELS,
    AttachedHead,
    BaseInfo,
    DetachedHead,
    Identity,
    OperationKind,
    RepoFlags,
    RepoStatus,
    ShareInfo,
    ShareRefMode,
    WorkspaceSummary,
    WorktreeKind,
)
from .parallel import CancelToken, run_ordered
from .remotes import RemoteRoleCache, RemoteRoles

logger = logging.getLogger(__name__)

# Control files checked in priority order; rebase-apply is handled separately
# because it is shared by ``git am``.
_OPERATION_MARKERS: tuple[tuple[str, OperationKind], ...] = (
    ("MERGE_HEAD", OperationKind.MERGE),
    ("CHERRY_PICK_HEAD", OperationKind.CHERRY_PICK),
    ("REVERT_HEAD", OperationKind.REVERT),
    ("BISECT_LOG", OperationKind.BISECT),
)


# =============================================================================
# Gathering
# =============================================================================


def detect_operation(git_dir: Path | None) -> OperationKind | None:
    """Detect an in-progress operation from control files in the git dir."""
    if git_dir is None:
        return None
    if (git_dir / "rebase-merge").is_dir():
        return OperationKind.REBASE
    rebase_apply = git_dir / "rebase-apply"
    if rebase_apply.is_dir():
        return OperationKind.AM if (rebase_apply / "applying").exists() else OperationKind.REBASE
    for marker, kind in _OPERATION_MARKERS:
        if (git_dir / marker).exists():
            return kind
    return None


def gather_identity(ops: GitOperations, git_dir: Path | None = None) -> Identity:
    git_dir = git_dir or ops.git_dir()
    common = ops.common_dir()
    linked = git_dir is not None and common is not None and git_dir.resolve() != common.resolve()
    branch = ops.head_symbolic_ref()
    return Identity(
        worktree_kind=WorktreeKind.LINKED if linked else WorktreeKind.FULL,
        head_mode=AttachedHead(branch) if branch else DetachedHead(),
        shallow=ops.is_shallow(),
    )


def _gather_share(
    ops: GitOperations, roles: RemoteRoles, identity: Identity, porcelain: PorcelainStatus
) -> ShareInfo:
    branch = identity.branch
    if branch is None:
        return ShareInfo(remote=roles.share)

    if porcelain.upstream:
        if ops.resolve_ref(porcelain.upstream) is None:
            return ShareInfo(remote=roles.share, ref_mode=ShareRefMode.GONE)
        ref, mode = porcelain.upstream, ShareRefMode.CONFIGURED
    elif ops.remote_branch_exists(roles.share, branch):
        ref, mode = f"{roles.share}/{branch}", ShareRefMode.IMPLICIT
    else:
        return ShareInfo(remote=roles.share)

    counts = ops.rev_list_count(ref, "HEAD")
    if counts is None:
        return ShareInfo(remote=roles.share, ref=ref, ref_mode=mode)
    to_pull, to_push = counts
    rebased = 0
    if to_push > 0 and to_pull > 0:
        rebased = len(match_against(ops, ref).matched_local)
    return ShareInfo(
        remote=roles.share,
        ref=ref,
        ref_mode=mode,
        to_push=to_push,
        to_pull=to_pull,
        rebased=rebased,
    )


def _qualify(remote: str | None, branch: str) -> str:
    return f"{remote}/{branch}" if remote else branch


def _gather_base(
    ops: GitOperations,
    roles: RemoteRoles | None,
    configured_base: str | None,
    share: ShareInfo | None,
    cache: RemoteRoleCache,
    *,
    predict_conflicts: bool,
    commit_limit: int,
) -> BaseInfo | None:
    remote = roles.base if roles else None
    default = cache.default_branch(ops.repo_path, remote, ops)

    ref: str | None = None
    configured_ref: str | None = None
    base_merged = None
    if configured_base:
        if remote:
            exists = ops.remote_branch_exists(remote, configured_base)
        else:
            exists = ops.local_branch_exists(configured_base)
        if exists:
            ref = configured_base
            if default and default != configured_base:
                base_merged = detect_merge(
                    ops, _qualify(remote, configured_base), _qualify(remote, default), commit_limit
                )
        else:
            # Configured base is gone upstream; a stale local copy can still
            # tell us whether it was merged before deletion.
            configured_ref = configured_base
            if remote and default and ops.local_branch_exists(configured_base):
                base_merged = detect_merge(
                    ops, f"refs/heads/{configured_base}", _qualify(remote, default), commit_limit
                )
            logger.debug(
                "%s: base %s not found, using %s", ops.repo_path.name, configured_base, default
            )
    if ref is None:
        ref = default
    if ref is None:
        return None

    compare_ref = _qualify(remote, ref)
    counts = ops.rev_list_count(compare_ref, "HEAD")
    if counts is None:
        return None
    behind, ahead = counts

    merged = None
    if ahead > 0 or (share is not None and share.ref_mode == ShareRefMode.GONE):
        merged = detect_merge(ops, "HEAD", compare_ref, commit_limit)

    conflict = None
    if predict_conflicts and ahead > 0 and behind > 0:
        prediction = predict_merge_conflict(ops, "HEAD", compare_ref)
        conflict = prediction.has_conflict if prediction else None

    return BaseInfo(
        remote=remote,
        ref=ref,
        configured_ref=configured_ref,
        ahead=ahead,
        behind=behind,
        merged_into_base=merged,
        base_merged_into_default=base_merged,
        conflict_predicted=conflict,
    )


def gather_repo_status(
    repo_path: Path,
    configured_base: str | None = None,
    cache: RemoteRoleCache | None = None,
    *,
    predict_conflicts: bool = True,
    commit_limit: int = DEFAULT_COMMIT_LIMIT,
) -> RepoStatus:
    """Build the status of one repository.

    Raises RemoteRoleError when remote roles are ambiguous and
    GitCommandError when the path is not a usable repository; the workspace
    gatherer turns either into a per-repository error entry.
    """
    repo_path = Path(repo_path)
    cache = cache or RemoteRoleCache()
    ops = GitOperations(repo_path)

    git_dir = ops.git_dir()
    toplevel = ops.toplevel()
    if git_dir is None or toplevel is None:
        raise GitCommandError(f"{repo_path.name} is not a git repository")
    if toplevel.resolve() != repo_path.resolve():
        # An invalid .git made git fall back to an enclosing repository.
        raise GitCommandError(f"{repo_path.name} is not a git repository (inside {toplevel})")

    roles = cache.get_or_resolve(repo_path, ops)
    identity = gather_identity(ops, git_dir)
    porcelain = ops.status_porcelain()

    share = _gather_share(ops, roles, identity, porcelain) if roles else None
    base = None
    if not identity.detached:
        base = _gather_base(
            ops,
            roles,
            configured_base,
            share,
            cache,
            predict_conflicts=predict_conflicts,
            commit_limit=commit_limit,
        )

    return RepoStatus(
        name=repo_path.name,
        path=repo_path,
        identity=identity,
        local=porcelain.local,
        base=base,
        share=share,
        operation=detect_operation(git_dir),
        last_commit=ops.last_commit_date(),
    )


# =============================================================================
# Flags
# =============================================================================


def _positive(value: int | None) -> bool:
    return value is not None and value > 0


def compute_flags(status: RepoStatus, branch: str) -> RepoFlags:
    """Derive boolean flags. Pure and total over any RepoStatus."""
    identity, base, share = status.identity, status.base, status.share

    detached = identity is not None and identity.detached
    drifted = identity is not None and not detached and identity.branch != branch
    gone = share is not None and share.ref_mode == ShareRefMode.GONE

    unpushed = False
    if share is not None and not gone:
        unpushed = _positive(share.to_push) or (
            share.ref_mode == ShareRefMode.NO_REF
            and not detached
            and base is not None
            and base.ahead > 0
        )

    diverged = base is not None and base.ahead > 0 and base.behind > 0
    base_merged = base is not None and base.base_merged_into_default is not None

    return RepoFlags(
        dirty=status.local.is_dirty,
        unpushed=unpushed,
        behind_share=share is not None and _positive(share.to_pull),
        behind_base=base is not None and base.behind > 0,
        diverged=diverged,
        drifted=drifted,
        detached=detached,
        operation=status.operation is not None,
        local=share is None and status.error is None,
        gone=gone,
        shallow=identity is not None and identity.shallow,
        merged=base is not None and base.merged_into_base is not None,
        base_merged=base_merged,
        base_missing=base is not None and base.fell_back,
        at_risk=(diverged and base.conflict_predicted is True) or base_merged,
    )


def would_lose_work(flags: RepoFlags) -> bool:
    """True when removing the checkout would discard work."""
    return flags.dirty or flags.unpushed or flags.detached or flags.drifted or flags.operation


def is_workspace_safe(repos: Sequence[RepoStatus], branch: str) -> bool:
    """True when no repository would lose work and none failed to report."""
    return all(
        r.error is None and not would_lose_work(compute_flags(r, branch)) for r in repos
    )


# =============================================================================
# Aggregation
# =============================================================================


def compute_summary_aggregates(repos: Sequence[RepoStatus], branch: str) -> dict:
    """At-risk count, ordered status labels, newest commit and error count."""
    flag_sets = [compute_flags(r, branch) for r in repos]
    present = {attr for flags in flag_sets for attr, _ in FLAG_LABELS if getattr(flags, attr)}
    commits = [r.last_commit for r in repos if r.last_commit is not None]
    return {
        "at_risk_count": sum(1 for flags in flag_sets if flags.at_risk),
        "status_labels": tuple(label for attr, label in FLAG_LABELS if attr in present),
        "last_commit": max(commits) if commits else None,
        "error_count": sum(1 for r in repos if r.error is not None),
    }


def build_summary(
    workspace: str, branch: str, base: str | None, repos: Sequence[RepoStatus]
) -> WorkspaceSummary:
    return WorkspaceSummary(
        workspace=workspace,
        branch=branch,
        base=base,
        repos=tuple(repos),
        total=len(repos),
        **compute_summary_aggregates(repos, branch),
    )


def gather_workspace_summary(
    workspace: str,
    branch: str,
    base: str | None,
    repo_paths: Sequence[Path],
    cache: RemoteRoleCache | None = None,
    *,
    max_workers: int = 8,
    sequential: bool = False,
    cancel: CancelToken | None = None,
    predict_conflicts: bool = True,
    commit_limit: int = DEFAULT_COMMIT_LIMIT,
) -> WorkspaceSummary:
    """Gather every repository concurrently; output order follows ``repo_paths``."""
    cache = cache or RemoteRoleCache()
    statuses = run_ordered(
        lambda path: gather_repo_status(
            path,
            base,
            cache,
            predict_conflicts=predict_conflicts,
            commit_limit=commit_limit,
        ),
        [Path(p) for p in repo_paths],
        on_error=lambda path, e: RepoStatus.failed(path.name, path, str(e)),
        max_workers=max_workers,
        sequential=sequential,
        cancel=cancel,
    )
    return build_summary(workspace, branch, base, statuses)

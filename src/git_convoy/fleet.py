"""
Workspace-level orchestration: fetch, status, conflict and retarget passes.

Each pass fans out over the workspace repositories with ``run_ordered`` and
shares one ``RemoteRoleCache`` for the lifetime of the manager.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from .config import ConvoySettings, Workspace
from .conflicts import predict_merge_conflict, predict_rebase_conflicts
from .correlation import analyze_retarget_replay
from .errors import ConvoyAbort
from .git import GitOperations, GitResult
from .models import ConflictReport, FetchResult, RepoStatus, RetargetReport, WorkspaceSummary
from .parallel import CancelToken, run_ordered
from .remotes import RemoteRoleCache
from .status import build_summary, gather_repo_status, gather_workspace_summary

logger = logging.getLogger(__name__)


def annotate_fetch_failures(
    summary: WorkspaceSummary, fetch_results: Sequence[FetchResult]
) -> WorkspaceSummary:
    """Attach fetch errors to the matching repositories and recount."""
    failed = {r.path: r for r in fetch_results if not r.success}
    if not failed:
        return summary
    repos = []
    for status in summary.repos:
        result = failed.get(status.path)
        if result is not None and status.error is None:
            detail = result.output or f"exit {result.exit_code}"
            status = replace(status, error=f"fetch failed: {detail}")
        repos.append(status)
    return build_summary(summary.workspace, summary.branch, summary.base, repos)


def exit_status(summary: WorkspaceSummary) -> int:
    """Command exit status, computed after every repository was attempted."""
    return 1 if summary.has_errors else 0


class ConvoyManager:
    """Run workspace passes against the repositories of one workspace."""

    def __init__(
        self,
        workspace: Workspace,
        settings: ConvoySettings | None = None,
        cache: RemoteRoleCache | None = None,
    ):
        self.workspace = workspace
        self.settings = settings or ConvoySettings()
        self.cache = cache or RemoteRoleCache()

    def _paths(self, repo_paths: Sequence[Path] | None) -> list[Path]:
        return list(self.workspace.repo_paths if repo_paths is None else repo_paths)

    # -------------------------------------------------------------------------
    # Fetch
    # -------------------------------------------------------------------------

    def fetch_repo(self, path: Path, cancel: CancelToken | None = None) -> FetchResult:
        ops = GitOperations(path)
        roles = self.cache.get_or_resolve(path, ops)
        if roles is None:
            return FetchResult(name=path.name, path=path, exit_code=0, output="no remotes")

        timeout = self.settings.fetch_timeout or None
        remotes = dict.fromkeys([roles.share, roles.base])
        result = GitResult(0)
        for remote in remotes:
            result = ops.fetch(remote, timeout=timeout, cancel=cancel)
            if not result.ok:
                break
        return FetchResult(
            name=path.name, path=path, exit_code=result.exit_code, output=result.stderr.strip()
        )

    def fetch_all(
        self,
        repo_paths: Sequence[Path] | None = None,
        *,
        sequential: bool = False,
        cancel: CancelToken | None = None,
    ) -> list[FetchResult]:
        """Fetch every repository; fetched repositories drop their cached roles."""
        paths = self._paths(repo_paths)
        try:
            results = run_ordered(
                lambda path: self.fetch_repo(path, cancel),
                paths,
                on_error=lambda path, e: FetchResult(path.name, path, 1, str(e)),
                max_workers=self.settings.max_workers,
                sequential=sequential,
                cancel=cancel,
            )
        except ConvoyAbort:
            self.cache.invalidate_all()
            raise
        for result in results:
            self.cache.invalidate(result.path)
            if not result.success:
                logger.warning("fetch failed for %s: %s", result.name, result.output)
        return results

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def gather_summary(
        self,
        repo_paths: Sequence[Path] | None = None,
        *,
        fetch_results: Sequence[FetchResult] = (),
        sequential: bool = False,
        cancel: CancelToken | None = None,
    ) -> WorkspaceSummary:
        summary = gather_workspace_summary(
            self.workspace.name,
            self.workspace.branch,
            self.workspace.base,
            self._paths(repo_paths),
            self.cache,
            max_workers=self.settings.max_workers,
            sequential=sequential,
            cancel=cancel,
            commit_limit=self.settings.merge_commit_limit,
        )
        return annotate_fetch_failures(summary, fetch_results)

    def _status(self, path: Path) -> RepoStatus:
        return gather_repo_status(
            path,
            self.workspace.base,
            self.cache,
            predict_conflicts=False,
            commit_limit=self.settings.merge_commit_limit,
        )

    # -------------------------------------------------------------------------
    # Conflicts
    # -------------------------------------------------------------------------

    def conflicts_for(self, path: Path, rebase: bool = False) -> ConflictReport:
        status = self._status(path)
        if status.base is None:
            detached = status.identity is not None and status.identity.detached
            reason = "HEAD is detached" if detached else "no base branch found"
            return ConflictReport(name=path.name, path=path, error=reason)

        ops = GitOperations(path)
        target = status.base.compare_ref
        if rebase:
            found = predict_rebase_conflicts(ops, f"{target}..HEAD", onto=target)
            return ConflictReport(
                name=path.name,
                path=path,
                target=target,
                rebase=tuple(found) if found is not None else None,
            )
        return ConflictReport(
            name=path.name, path=path, target=target, merge=predict_merge_conflict(ops, "HEAD", target)
        )

    def predict_conflicts(
        self,
        repo_paths: Sequence[Path] | None = None,
        *,
        rebase: bool = False,
        sequential: bool = False,
        cancel: CancelToken | None = None,
    ) -> list[ConflictReport]:
        return run_ordered(
            lambda path: self.conflicts_for(path, rebase),
            self._paths(repo_paths),
            on_error=lambda path, e: ConflictReport(name=path.name, path=path, error=str(e)),
            max_workers=self.settings.max_workers,
            sequential=sequential,
            cancel=cancel,
        )

    # -------------------------------------------------------------------------
    # Retarget
    # -------------------------------------------------------------------------

    def retarget_for(self, path: Path, new_base: str) -> RetargetReport:
        ops = GitOperations(path)
        roles = self.cache.get_or_resolve(path, ops)
        new_ref = f"{roles.base}/{new_base}" if roles else new_base
        if ops.resolve_ref(new_ref) is None:
            return RetargetReport(name=path.name, path=path, new_base=new_ref, error=f"{new_ref} not found")

        status = self._status(path)
        if status.base is None:
            return RetargetReport(name=path.name, path=path, new_base=new_ref, error="no base branch found")

        old_ref = status.base.compare_ref
        return RetargetReport(
            name=path.name,
            path=path,
            new_base=new_ref,
            old_base=old_ref,
            replay=analyze_retarget_replay(ops, old_ref, new_ref, f"{old_ref}..HEAD"),
        )

    def analyze_retarget(
        self,
        new_base: str,
        repo_paths: Sequence[Path] | None = None,
        *,
        sequential: bool = False,
        cancel: CancelToken | None = None,
    ) -> list[RetargetReport]:
        return run_ordered(
            lambda path: self.retarget_for(path, new_base),
            self._paths(repo_paths),
            on_error=lambda path, e: RetargetReport(
                name=path.name, path=path, new_base=new_base, error=str(e)
            ),
            max_workers=self.settings.max_workers,
            sequential=sequential,
            cancel=cancel,
        )

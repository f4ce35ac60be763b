"""
Remote role resolution.

Every repository has a *share* remote (where the feature branch is pushed)
and a *base* remote (source of the base branch). Roles are derived only from
the configured remote names and ``remote.pushDefault``; anything ambiguous is
an error, never a guess.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path

from .errors import RemoteRoleError
from .git import GitOperations

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteRoles:
    """Resolved share and base remotes for one repository."""

    share: str
    base: str

    def to_dict(self) -> dict:
        return {"share": self.share, "base": self.base}


def resolve_remote_roles(
    remotes: Sequence[str], push_default: str | None = None, repo: str = ""
) -> RemoteRoles:
    """Assign share/base roles from remote names.

    1. A single remote plays both roles.
    2. With ``remote.pushDefault`` set, it is the share remote; the base is
       ``upstream`` if present, else the only other remote.
    3. Without it, ``origin`` + ``upstream`` means share=origin, base=upstream,
       whatever other remotes exist.
    4. Anything else raises RemoteRoleError.
    """
    names = list(remotes)
    label = repo or "repository"
    listed = ", ".join(names)

    if not names:
        raise RemoteRoleError(f"No remotes configured for {label}", repo, names)

    if len(names) == 1:
        return RemoteRoles(share=names[0], base=names[0])

    if push_default and push_default in names:
        others = [n for n in names if n != push_default]
        if "upstream" in others:
            return RemoteRoles(share=push_default, base="upstream")
        if len(others) == 1:
            return RemoteRoles(share=push_default, base=others[0])
        raise RemoteRoleError(
            f"Cannot determine upstream remote for {label} (remotes: {listed}). "
            "Add a remote named 'upstream' or reduce to two remotes.",
            repo,
            names,
        )

    # Extra remotes beside origin and upstream do not make this ambiguous.
    if "origin" in names and "upstream" in names:
        return RemoteRoles(share="origin", base="upstream")

    raise RemoteRoleError(
        f"Cannot determine remote roles for {label} (remotes: {listed}). "
        "Set the share remote: git config remote.pushDefault <remote-name>",
        repo,
        names,
    )


class RemoteRoleCache:
    """Per-invocation memo of remote roles, keyed by repository path.

    Concurrent callers for the same repository share one in-flight
    resolution. Repositories without remotes resolve to None. A failed
    resolution is cached like a success until invalidated.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._roles: dict[Path, Future] = {}
        self._default_branches: dict[tuple[Path, str | None], str | None] = {}

    def get_or_resolve(self, repo_path: Path, ops: GitOperations | None = None) -> RemoteRoles | None:
        key = Path(repo_path)
        with self._lock:
            future = self._roles.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._roles[key] = future
        if owner:
            try:
                future.set_result(self._resolve(key, ops or GitOperations(key)))
            except Exception as e:
                future.set_exception(e)
            except BaseException as e:
                # Interrupted, not a result: release waiters and let the
                # next caller resolve again.
                with self._lock:
                    if self._roles.get(key) is future:
                        del self._roles[key]
                future.set_exception(e)
                raise
        return future.result()

    def default_branch(self, repo_path: Path, remote: str | None, ops: GitOperations | None = None) -> str | None:
        key = (Path(repo_path), remote)
        with self._lock:
            if key in self._default_branches:
                return self._default_branches[key]
        branch = (ops or GitOperations(key[0])).default_branch(remote)
        with self._lock:
            self._default_branches[key] = branch
        return branch

    def invalidate(self, repo_path: Path) -> None:
        key = Path(repo_path)
        with self._lock:
            self._roles.pop(key, None)
            for cached in [k for k in self._default_branches if k[0] == key]:
                del self._default_branches[cached]

    def invalidate_all(self) -> None:
        with self._lock:
            self._roles.clear()
            self._default_branches.clear()

    @staticmethod
    def _resolve(repo_path: Path, ops: GitOperations) -> RemoteRoles | None:
        names = ops.remote_names()
        if not names:
            return None
        roles = resolve_remote_roles(names, ops.push_default(), repo=repo_path.name)
        logger.debug("%s: share=%s base=%s", repo_path.name, roles.share, roles.base)
        return roles

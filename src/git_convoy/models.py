"""
Domain models for workspace status.

Every model is immutable once built and serializes to plain JSON-ready
dictionaries via ``to_dict()``. Keys are camelCase to match the published
``status --json`` schema (see ``schema.py``).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import StrEnum
from pathlib import Path

from .schema import SCHEMA_VERSION

# =============================================================================
# Enums
# =============================================================================


class MergeKind(StrEnum):
    """How a branch was integrated into another."""

    MERGE = "merge"
    SQUASH = "squash"


class WorktreeKind(StrEnum):
    """Whether the repository is a full clone or a linked worktree."""

    FULL = "full"
    LINKED = "linked"


class ShareRefMode(StrEnum):
    """How the share ref for the current branch was found."""

    NO_REF = "noRef"  # never pushed
    IMPLICIT = "implicit"  # <share>/<branch> exists, no tracking config
    CONFIGURED = "configured"  # tracking branch configured and present
    GONE = "gone"  # tracking configured but the remote branch was deleted


class OperationKind(StrEnum):
    """In-progress git operation."""

    REBASE = "rebase"
    MERGE = "merge"
    CHERRY_PICK = "cherry-pick"
    REVERT = "revert"
    BISECT = "bisect"
    AM = "am"


# =============================================================================
# Gateway-level values
# =============================================================================


@dataclass(frozen=True)
class Commit:
    """A commit as reported by git."""

    hash: str
    short_hash: str
    subject: str

    def to_dict(self) -> dict:
        return {"hash": self.hash, "shortHash": self.short_hash, "subject": self.subject}


@dataclass(frozen=True)
class AttachedHead:
    """HEAD points at a local branch."""

    branch: str

    @property
    def kind(self) -> str:
        return "attached"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "branch": self.branch}


@dataclass(frozen=True)
class DetachedHead:
    """HEAD points directly at a commit."""

    @property
    def kind(self) -> str:
        return "detached"

    def to_dict(self) -> dict:
        return {"kind": self.kind}


HeadMode = AttachedHead | DetachedHead


@dataclass(frozen=True)
class Identity:
    """What kind of checkout this is and where HEAD points."""

    worktree_kind: WorktreeKind
    head_mode: HeadMode
    shallow: bool = False

    @property
    def branch(self) -> str | None:
        if isinstance(self.head_mode, AttachedHead):
            return self.head_mode.branch
        return None

    @property
    def detached(self) -> bool:
        return isinstance(self.head_mode, DetachedHead)

    def to_dict(self) -> dict:
        return {
            "worktreeKind": self.worktree_kind.value,
            "headMode": self.head_mode.to_dict(),
            "shallow": self.shallow,
        }


@dataclass(frozen=True)
class LocalChanges:
    """Working tree counts. A conflicted path is counted only as a conflict."""

    staged: int = 0
    modified: int = 0
    untracked: int = 0
    conflicts: int = 0

    @property
    def is_dirty(self) -> bool:
        return (self.staged + self.modified + self.untracked + self.conflicts) > 0

    def to_dict(self) -> dict:
        return {
            "staged": self.staged,
            "modified": self.modified,
            "untracked": self.untracked,
            "conflicts": self.conflicts,
        }


# =============================================================================
# Status model
# =============================================================================


@dataclass(frozen=True)
class BaseInfo:
    """Position of HEAD relative to the base branch.

    ``configured_ref`` is set only when the configured base could not be used
    and ``ref`` is a substitute (the remote's default branch).
    """

    remote: str | None
    ref: str
    configured_ref: str | None = None
    ahead: int = 0
    behind: int = 0
    merged_into_base: MergeKind | None = None
    base_merged_into_default: MergeKind | None = None
    conflict_predicted: bool | None = None

    @property
    def compare_ref(self) -> str:
        """Ref to compare HEAD against (remote-tracking when there is a remote)."""
        return f"{self.remote}/{self.ref}" if self.remote else self.ref

    @property
    def fell_back(self) -> bool:
        return self.configured_ref is not None and self.base_merged_into_default is None

    def to_dict(self) -> dict:
        return {
            "remote": self.remote,
            "ref": self.ref,
            "configuredRef": self.configured_ref,
            "ahead": self.ahead,
            "behind": self.behind,
            "mergedIntoBase": self.merged_into_base.value if self.merged_into_base else None,
            "baseMergedIntoDefault": (
                self.base_merged_into_default.value if self.base_merged_into_default else None
            ),
            "conflictPredicted": self.conflict_predicted,
        }


@dataclass(frozen=True)
class ShareInfo:
    """Position of HEAD relative to the branch on the share remote."""

    remote: str
    ref: str | None = None
    ref_mode: ShareRefMode = ShareRefMode.NO_REF
    to_push: int | None = None
    to_pull: int | None = None
    rebased: int | None = None

    def to_dict(self) -> dict:
        return {
            "remote": self.remote,
            "ref": self.ref,
            "refMode": self.ref_mode.value,
            "toPush": self.to_push,
            "toPull": self.to_pull,
            "rebased": self.rebased,
        }


@dataclass(frozen=True)
class RepoStatus:
    """Complete status of one workspace repository.

    ``identity`` is ``None`` only for a repository whose status could not be
    gathered at all; ``error`` then holds the reason.
    """

    name: str
    path: Path
    identity: Identity | None
    local: LocalChanges = field(default_factory=LocalChanges)
    base: BaseInfo | None = None
    share: ShareInfo | None = None
    operation: OperationKind | None = None
    last_commit: datetime | None = None
    error: str | None = None

    @classmethod
    def failed(cls, name: str, path: Path, error: str) -> RepoStatus:
        return cls(name=name, path=path, identity=None, error=error)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path),
            "identity": self.identity.to_dict() if self.identity else None,
            "local": self.local.to_dict(),
            "base": self.base.to_dict() if self.base else None,
            "share": self.share.to_dict() if self.share else None,
            "operation": self.operation.value if self.operation else None,
            "lastCommit": self.last_commit.isoformat() if self.last_commit else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class RepoFlags:
    """Boolean facts derived from a RepoStatus."""

    dirty: bool = False
    unpushed: bool = False
    behind_share: bool = False
    behind_base: bool = False
    diverged: bool = False
    drifted: bool = False
    detached: bool = False
    operation: bool = False
    local: bool = False
    gone: bool = False
    shallow: bool = False
    merged: bool = False
    base_merged: bool = False
    base_missing: bool = False
    at_risk: bool = False

    def to_dict(self) -> dict:
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}

    def to_labels(self) -> list[str]:
        return [label for attr, label in FLAG_LABELS if getattr(self, attr)]


# Display order: work-safety first, then lifecycle, then stale.
FLAG_LABELS: tuple[tuple[str, str], ...] = (
    ("dirty", "dirty"),
    ("unpushed", "unpushed"),
    ("drifted", "drifted"),
    ("detached", "detached"),
    ("operation", "operation"),
    ("shallow", "shallow"),
    ("base_merged", "base merged"),
    ("base_missing", "base missing"),
    ("at_risk", "at risk"),
    ("merged", "merged"),
    ("gone", "gone"),
    ("diverged", "diverged"),
    ("behind_share", "behind share"),
    ("behind_base", "behind base"),
)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass(frozen=True)
class WorkspaceSummary:
    """Aggregate status over all repositories in a workspace, in input order."""

    workspace: str
    branch: str
    base: str | None
    repos: tuple[RepoStatus, ...]
    total: int
    at_risk_count: int
    status_labels: tuple[str, ...]
    last_commit: datetime | None
    error_count: int = 0

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    def to_dict(self) -> dict:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "workspace": self.workspace,
            "branch": self.branch,
            "base": self.base,
            "repos": [r.to_dict() for r in self.repos],
            "total": self.total,
            "atRiskCount": self.at_risk_count,
            "statusLabels": list(self.status_labels),
            "lastCommit": self.last_commit.isoformat() if self.last_commit else None,
            "errorCount": self.error_count,
        }


# =============================================================================
# Prediction and correlation results
# =============================================================================


@dataclass(frozen=True)
class ConflictPrediction:
    """Outcome of a simulated merge."""

    has_conflict: bool
    conflicting_files: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"hasConflict": self.has_conflict, "conflictingFiles": list(self.conflicting_files)}


@dataclass(frozen=True)
class RebaseConflict:
    """An incoming commit that would conflict when replayed."""

    commit: str
    files: tuple[str, ...]

    def to_dict(self) -> dict:
        return {"commit": self.commit, "files": list(self.files)}


@dataclass(frozen=True)
class SquashMatch:
    """A remote commit whose change equals the whole local-only range."""

    remote_hash: str
    local_hashes: tuple[str, ...]

    def to_dict(self) -> dict:
        return {"remoteHash": self.remote_hash, "localHashes": list(self.local_hashes)}


@dataclass(frozen=True)
class DivergedMatch:
    """Fingerprint correlation between local-only and remote-only commits."""

    rebase_matches: dict[str, str] = field(default_factory=dict)  # remote hash -> local hash
    squash_match: SquashMatch | None = None

    @property
    def matched_local(self) -> set[str]:
        matched = set(self.rebase_matches.values())
        if self.squash_match:
            matched.update(self.squash_match.local_hashes)
        return matched

    def to_dict(self) -> dict:
        return {
            "rebaseMatches": dict(self.rebase_matches),
            "squashMatch": self.squash_match.to_dict() if self.squash_match else None,
        }


@dataclass(frozen=True)
class RetargetReplay:
    """How many local commits must be replayed when moving to a new base."""

    total_local: int
    already_on_target: int

    @property
    def to_replay(self) -> int:
        return self.total_local - self.already_on_target

    def to_dict(self) -> dict:
        return {
            "totalLocal": self.total_local,
            "alreadyOnTarget": self.already_on_target,
            "toReplay": self.to_replay,
        }


@dataclass(frozen=True)
class FetchResult:
    """Result of fetching one repository."""

    name: str
    path: Path
    exit_code: int
    output: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path),
            "success": self.success,
            "exitCode": self.exit_code,
            "output": self.output,
        }


# =============================================================================
# Per-repository command reports
# =============================================================================


@dataclass(frozen=True)
class ConflictReport:
    """Conflict prediction for one repository against its base.

    ``merge``/``rebase`` are None when the simulation was indeterminate or
    not requested.
    """

    name: str
    path: Path
    target: str | None = None
    merge: ConflictPrediction | None = None
    rebase: tuple[RebaseConflict, ...] | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path),
            "target": self.target,
            "merge": self.merge.to_dict() if self.merge else None,
            "rebase": [c.to_dict() for c in self.rebase] if self.rebase is not None else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class RetargetReport:
    """Replay analysis for moving one repository onto a new base."""

    name: str
    path: Path
    new_base: str
    old_base: str | None = None
    replay: RetargetReplay | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path),
            "oldBase": self.old_base,
            "newBase": self.new_base,
            "replay": self.replay.to_dict() if self.replay else None,
            "error": self.error,
        }

"""Conflict prediction via simulated merges (``git merge-tree``)."""

from __future__ import annotations

import logging

from .git import GitOperations, GitResult
from .models import ConflictPrediction, RebaseConflict

logger = logging.getLogger(__name__)

_INFO_PREFIXES = ("Auto-merging ", "CONFLICT ", "warning:", "hint:")


def _parse_conflicted_files(result: GitResult) -> tuple[str, ...]:
    # First line is the tree id; the rest are conflicted paths, possibly
    # followed by informational messages.
    files: list[str] = []
    for line in result.stdout.splitlines()[1:]:
        if not line.strip():
            break
        if line.startswith(_INFO_PREFIXES):
            continue
        if line not in files:
            files.append(line)
    return tuple(files)


def _interpret(result: GitResult) -> ConflictPrediction | None:
    if result.exit_code == 0:
        return ConflictPrediction(has_conflict=False)
    if result.exit_code == 1 and result.stdout.strip():
        return ConflictPrediction(has_conflict=True, conflicting_files=_parse_conflicted_files(result))
    logger.debug("merge-tree indeterminate (exit %d): %s", result.exit_code, result.stderr.strip())
    return None


def predict_merge_conflict(ops: GitOperations, ours: str, theirs: str) -> ConflictPrediction | None:
    """Predict whether merging ``theirs`` into ``ours`` conflicts.

    Returns None when the simulation gives no verdict (git error, old git
    without ``--write-tree``). None means unknown, never clean.
    """
    return _interpret(ops.merge_tree(ours, theirs))


def predict_rebase_conflicts(
    ops: GitOperations, target_range: str, onto: str = "HEAD"
) -> list[RebaseConflict] | None:
    """Replay each incoming commit of ``target_range`` onto ``onto``.

    Each commit is simulated against its own parent as the merge-base, oldest
    first. Root commits are skipped. Returns only the conflicting commits, or
    None if any simulation was indeterminate.
    """
    conflicts: list[RebaseConflict] = []
    for commit in ops.rev_list(target_range, reverse=True):
        parent = ops.parent_of(commit)
        if parent is None:
            continue
        prediction = _interpret(ops.merge_tree(onto, commit, merge_base=parent))
        if prediction is None:
            return None
        if prediction.has_conflict:
            conflicts.append(RebaseConflict(commit=commit, files=prediction.conflicting_files))
    return conflicts

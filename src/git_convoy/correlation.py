"""
Commit correlation across rewritten histories.

Commits are matched by content fingerprint (``git patch-id --stable``), which
survives rebase and cherry-pick because it ignores parent, author and
timestamp. Fingerprints are computed per call and never cached.

Known limitations: squash detection only looks at the most recent
``commit_limit`` commits of the base, and ``match_diverged_commits`` reports
at most one squash match.
"""

from __future__ import annotations

import logging

from .git import GitOperations
from .models import DivergedMatch, MergeKind, RetargetReplay, SquashMatch

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_LIMIT = 200


def _range_ends(rev_range: str) -> tuple[str, str]:
    """Split a two-dot ``start..end`` range; symmetric ranges are rejected."""
    if "..." in rev_range or ".." not in rev_range:
        raise ValueError(f"expected a two-dot range like a..b, got {rev_range!r}")
    start, _, end = rev_range.partition("..")
    return start or "HEAD", end or "HEAD"


def detect_merge(
    ops: GitOperations,
    branch_tip: str,
    base_tip: str,
    commit_limit: int = DEFAULT_COMMIT_LIMIT,
) -> MergeKind | None:
    """Report whether ``branch_tip`` has been integrated into ``base_tip``.

    An ancestor check catches fast-forwards and merge commits. Otherwise the
    branch's cumulative change since the merge-base is compared against the
    fingerprints of recent base commits; an exact match is a squash merge.
    """
    if ops.is_ancestor(branch_tip, base_tip):
        return MergeKind.MERGE

    merge_base = ops.merge_base(branch_tip, base_tip)
    if merge_base is None:
        return None

    branch_fingerprint = ops.cumulative_patch_id(merge_base, branch_tip)
    if branch_fingerprint is None:
        return None

    base_fingerprints = ops.patch_ids(f"{merge_base}..{base_tip}", limit=commit_limit)
    logger.debug(
        "squash check in %s: %d base commits against %s",
        ops.repo_path,
        len(base_fingerprints),
        branch_tip,
    )
    if branch_fingerprint in base_fingerprints.values():
        return MergeKind.SQUASH
    return None


def match_diverged_commits(
    ops: GitOperations, local_range: str, remote_range: str
) -> DivergedMatch:
    """Pair local-only commits with remote-only commits carrying the same change.

    ``local_range`` and ``remote_range`` are git ranges such as
    ``origin/feature..HEAD`` and ``HEAD..origin/feature``. Three-dot ranges
    raise ValueError.
    """
    start, end = _range_ends(local_range)
    _range_ends(remote_range)
    local = ops.patch_ids(local_range)
    remote = ops.patch_ids(remote_range)

    local_by_fingerprint: dict[str, str] = {}
    for commit, fingerprint in local.items():
        local_by_fingerprint.setdefault(fingerprint, commit)

    rebase_matches: dict[str, str] = {}
    for commit, fingerprint in remote.items():
        if fingerprint in local_by_fingerprint:
            rebase_matches[commit] = local_by_fingerprint[fingerprint]

    squash_match = None
    unmatched_remote = [c for c in remote if c not in rebase_matches]
    local_hashes = ops.rev_list(local_range)
    if len(local_hashes) > 1 and unmatched_remote:
        whole = ops.cumulative_patch_id(ops.merge_base(start, end) or start, end)
        if whole is not None:
            for commit in unmatched_remote:
                if remote[commit] == whole:
                    squash_match = SquashMatch(remote_hash=commit, local_hashes=tuple(local_hashes))
                    break

    return DivergedMatch(rebase_matches=rebase_matches, squash_match=squash_match)


def match_against(ops: GitOperations, ref: str, head: str = "HEAD") -> DivergedMatch:
    """Correlate ``head`` with a diverged ``ref`` (share branch or base)."""
    return match_diverged_commits(ops, f"{ref}..{head}", f"{head}..{ref}")


def detect_rebased_commits(ops: GitOperations, ref: str, head: str = "HEAD") -> set[str]:
    """Local-only commits whose change already exists on ``ref``."""
    return match_against(ops, ref, head).matched_local


def analyze_retarget_replay(
    ops: GitOperations, old_base: str, new_base: str, local_range: str
) -> RetargetReplay:
    """Count local commits that a retarget onto ``new_base`` would still replay."""
    local = ops.patch_ids(local_range)
    total = len(ops.rev_list(local_range))
    target = set(ops.patch_ids(f"{old_base}..{new_base}").values())
    already = sum(1 for fingerprint in local.values() if fingerprint in target)
    return RetargetReplay(total_local=total, already_on_target=min(already, total))

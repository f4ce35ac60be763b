from __future__ import annotations

import subprocess
from pathlib import Path

import pytest
from conftest import clone, commit_file, git, init_repo

from git_convoy.errors import GitCommandError, RemoteRoleError
from git_convoy.fleet import exit_status
from git_convoy.models import (
    AttachedHead,
    LocalChanges,
    MergeKind,
    OperationKind,
    ShareRefMode,
    WorktreeKind,
)
from git_convoy.remotes import RemoteRoleCache
from git_convoy.status import (
    compute_flags,
    detect_operation,
    gather_repo_status,
    gather_workspace_summary,
)


def status_of(repo: Path, base: str | None = "main"):
    return gather_repo_status(repo, base, RemoteRoleCache())


def flags_of(repo: Path, base: str | None = "main"):
    return compute_flags(status_of(repo, base), "feature")


class TestIdentityAndLocal:
    def test_fresh_branch(self, feature_clone: Path):
        status = status_of(feature_clone)
        assert status.name == "app"
        assert status.identity.head_mode == AttachedHead("feature")
        assert status.identity.worktree_kind == WorktreeKind.FULL
        assert not status.identity.shallow
        assert status.local == LocalChanges()
        assert status.last_commit is not None

        assert status.share.remote == "origin"
        assert status.share.ref_mode == ShareRefMode.NO_REF
        assert status.share.to_push is None

        assert (status.base.remote, status.base.ref) == ("origin", "main")
        assert (status.base.ahead, status.base.behind) == (0, 0)
        assert status.base.merged_into_base is None

        flags = compute_flags(status, "feature")
        assert not flags.unpushed and not flags.merged and not flags.local

    def test_detached_head(self, feature_clone: Path):
        git(feature_clone, "checkout", "-q", "--detach")
        status = status_of(feature_clone)
        assert status.identity.detached
        assert status.base is None
        assert status.share.ref_mode == ShareRefMode.NO_REF
        assert status.share.to_pull is None
        assert compute_flags(status, "feature").detached

    def test_linked_worktree(self, feature_clone: Path, tmp_path: Path):
        linked = tmp_path / "linked"
        git(feature_clone, "worktree", "add", "-q", "-b", "feature2", str(linked), "main")
        status = status_of(linked)
        assert status.identity.worktree_kind == WorktreeKind.LINKED

    def test_shallow_clone(self, origin: Path, tmp_path: Path):
        repo = tmp_path / "shallow"
        subprocess.run(
            ["git", "clone", "-q", "--depth", "1", f"file://{origin}", str(repo)],
            check=True,
            capture_output=True,
        )
        assert status_of(repo).identity.shallow

    def test_in_progress_merge(self, feature_clone: Path):
        commit_file(feature_clone, "shared.txt", "one\nFEATURE\nthree\n")
        git(feature_clone, "checkout", "-q", "-b", "other", "main")
        commit_file(feature_clone, "shared.txt", "one\nOTHER\nthree\n")
        git(feature_clone, "checkout", "-q", "feature")
        subprocess.run(["git", "-C", str(feature_clone), "merge", "other"], capture_output=True)

        status = status_of(feature_clone)
        assert status.operation == OperationKind.MERGE
        assert status.local.conflicts == 1


class TestDetectOperation:
    @pytest.mark.parametrize(
        ("entries", "expected"),
        [
            (["rebase-merge/", "MERGE_HEAD"], OperationKind.REBASE),
            (["rebase-apply/", "rebase-apply/applying"], OperationKind.AM),
            (["rebase-apply/"], OperationKind.REBASE),
            (["MERGE_HEAD", "CHERRY_PICK_HEAD"], OperationKind.MERGE),
            (["CHERRY_PICK_HEAD", "REVERT_HEAD"], OperationKind.CHERRY_PICK),
            (["REVERT_HEAD", "BISECT_LOG"], OperationKind.REVERT),
            (["BISECT_LOG"], OperationKind.BISECT),
            ([], None),
        ],
    )
    def test_priority(self, tmp_path: Path, entries, expected):
        for entry in entries:
            target = tmp_path / entry
            if entry.endswith("/"):
                target.mkdir(parents=True)
            else:
                target.write_text("x")
        assert detect_operation(tmp_path) == expected

    def test_no_git_dir(self):
        assert detect_operation(None) is None


class TestShare:
    def test_configured_share(self, feature_clone: Path):
        commit_file(feature_clone, "a.txt", "a\n")
        git(feature_clone, "push", "-q", "-u", "origin", "feature")
        status = status_of(feature_clone)
        assert status.share.ref_mode == ShareRefMode.CONFIGURED
        assert status.share.ref == "origin/feature"
        assert (status.share.to_push, status.share.to_pull, status.share.rebased) == (0, 0, 0)

        commit_file(feature_clone, "b.txt", "b\n")
        assert status_of(feature_clone).share.to_push == 1
        assert flags_of(feature_clone).unpushed

    def test_implicit_share(self, feature_clone: Path):
        commit_file(feature_clone, "a.txt", "a\n")
        git(feature_clone, "push", "-q", "origin", "feature")
        status = status_of(feature_clone)
        assert status.share.ref_mode == ShareRefMode.IMPLICIT
        assert status.share.ref == "origin/feature"

    def test_never_pushed_commits_are_unpushed(self, feature_clone: Path):
        commit_file(feature_clone, "a.txt", "a\n")
        status = status_of(feature_clone)
        assert status.base.ahead == 1
        assert status.base.merged_into_base is None
        assert compute_flags(status, "feature").unpushed

    def test_rebased_commits_are_counted(self, feature_clone: Path):
        commit_file(feature_clone, "a.txt", "a\n")
        git(feature_clone, "push", "-q", "-u", "origin", "feature")
        git(feature_clone, "checkout", "-q", "main")
        commit_file(feature_clone, "m.txt", "m\n")
        git(feature_clone, "push", "-q", "origin", "main")
        git(feature_clone, "checkout", "-q", "feature")
        git(feature_clone, "rebase", "-q", "origin/main")

        share = status_of(feature_clone).share
        assert share.to_pull == 1
        assert share.to_push == 2
        assert share.rebased == 1

    def test_gone_after_merge(self, feature_clone: Path):
        commit_file(feature_clone, "a.txt", "a\n")
        git(feature_clone, "push", "-q", "-u", "origin", "feature")
        git(feature_clone, "checkout", "-q", "main")
        git(feature_clone, "merge", "-q", "--ff-only", "feature")
        git(feature_clone, "push", "-q", "origin", "main")
        git(feature_clone, "push", "-q", "origin", "--delete", "feature")
        git(feature_clone, "checkout", "-q", "feature")

        status = status_of(feature_clone)
        assert status.share.ref_mode == ShareRefMode.GONE
        assert status.share.ref is None
        assert status.base.merged_into_base == MergeKind.MERGE
        flags = compute_flags(status, "feature")
        assert flags.gone and flags.merged and not flags.unpushed


class TestBase:
    def test_squash_merged_upstream(self, feature_clone: Path):
        commit_file(feature_clone, "a.txt", "a\n")
        commit_file(feature_clone, "b.txt", "b\n")
        git(feature_clone, "push", "-q", "-u", "origin", "feature")
        git(feature_clone, "checkout", "-q", "main")
        git(feature_clone, "merge", "-q", "--squash", "feature")
        git(feature_clone, "commit", "-q", "-m", "feature (#1)")
        git(feature_clone, "push", "-q", "origin", "main")
        git(feature_clone, "checkout", "-q", "feature")

        base = status_of(feature_clone).base
        assert (base.ahead, base.behind) == (2, 1)
        assert base.merged_into_base == MergeKind.SQUASH
        assert base.conflict_predicted is False
        flags = flags_of(feature_clone)
        assert flags.merged and flags.diverged and not flags.at_risk

    def test_predicted_conflict_is_at_risk(self, feature_clone: Path):
        commit_file(feature_clone, "shared.txt", "one\nFEATURE\nthree\n")
        git(feature_clone, "checkout", "-q", "main")
        commit_file(feature_clone, "shared.txt", "one\nMAIN\nthree\n")
        git(feature_clone, "push", "-q", "origin", "main")
        git(feature_clone, "checkout", "-q", "feature")

        status = status_of(feature_clone)
        assert status.base.conflict_predicted is True
        flags = compute_flags(status, "feature")
        assert flags.diverged and flags.at_risk

    def test_prediction_can_be_disabled(self, feature_clone: Path):
        commit_file(feature_clone, "shared.txt", "one\nFEATURE\nthree\n")
        git(feature_clone, "checkout", "-q", "main")
        commit_file(feature_clone, "shared.txt", "one\nMAIN\nthree\n")
        git(feature_clone, "push", "-q", "origin", "main")
        git(feature_clone, "checkout", "-q", "feature")

        status = gather_repo_status(feature_clone, "main", predict_conflicts=False)
        assert status.base.conflict_predicted is None

    def test_missing_base_falls_back_to_default(self, feature_clone: Path):
        status = status_of(feature_clone, base="develop")
        assert status.base.ref == "main"
        assert status.base.configured_ref == "develop"
        assert status.base.base_merged_into_default is None
        flags = compute_flags(status, "feature")
        assert flags.base_missing and not flags.base_merged

    def test_base_merged_and_deleted_upstream(self, feature_clone: Path):
        git(feature_clone, "checkout", "-q", "-b", "develop", "origin/main")
        commit_file(feature_clone, "dev.txt", "d\n")
        git(feature_clone, "push", "-q", "origin", "develop")
        git(feature_clone, "checkout", "-q", "-B", "feature", "develop")
        commit_file(feature_clone, "feature.txt", "f\n")
        git(feature_clone, "checkout", "-q", "main")
        git(feature_clone, "merge", "-q", "--ff-only", "develop")
        git(feature_clone, "push", "-q", "origin", "main")
        git(feature_clone, "push", "-q", "origin", "--delete", "develop")
        git(feature_clone, "checkout", "-q", "feature")

        status = status_of(feature_clone, base="develop")
        assert status.base.ref == "main"
        assert status.base.configured_ref == "develop"
        assert status.base.base_merged_into_default == MergeKind.MERGE
        flags = compute_flags(status, "feature")
        assert flags.base_merged and flags.at_risk and not flags.base_missing

    def test_configured_base_that_exists(self, feature_clone: Path):
        git(feature_clone, "checkout", "-q", "-b", "develop", "origin/main")
        commit_file(feature_clone, "dev.txt", "d\n")
        git(feature_clone, "push", "-q", "origin", "develop")
        git(feature_clone, "checkout", "-q", "feature")

        base = status_of(feature_clone, base="develop").base
        assert base.ref == "develop"
        assert base.configured_ref is None
        assert base.behind == 1
        assert base.base_merged_into_default is None

    def test_local_only_repository(self, workspace: Path):
        repo = init_repo(workspace / "solo")
        commit_file(repo, "a.txt", "a\n")
        git(repo, "checkout", "-q", "-b", "feature")
        commit_file(repo, "b.txt", "b\n")

        status = status_of(repo)
        assert status.share is None
        assert (status.base.remote, status.base.ref, status.base.ahead) == (None, "main", 1)
        flags = compute_flags(status, "feature")
        assert flags.local and not flags.unpushed


class TestRemoteRoles:
    def test_ambiguous_remotes_raise(self, feature_clone: Path, origin: Path):
        git(feature_clone, "remote", "rename", "origin", "fork")
        git(feature_clone, "remote", "add", "staging", str(origin))
        with pytest.raises(RemoteRoleError, match="fork, staging"):
            status_of(feature_clone)

    def test_upstream_is_the_base_remote(self, feature_clone: Path, tmp_path: Path):
        upstream = tmp_path / "upstream.git"
        subprocess.run(
            ["git", "clone", "-q", "--bare", str(feature_clone / ".git"), str(upstream)],
            check=True,
            capture_output=True,
        )
        git(feature_clone, "remote", "add", "upstream", str(upstream))
        git(feature_clone, "fetch", "-q", "upstream")
        status = status_of(feature_clone)
        assert status.base.remote == "upstream"
        assert status.share.remote == "origin"


class TestWorkspaceSummary:
    def test_order_and_failure_isolation(self, origin: Path, workspace: Path):
        repos = []
        for name in ("charlie", "alpha", "bravo"):
            repo = clone(origin, workspace / name)
            git(repo, "checkout", "-q", "-b", "feature")
            repos.append(repo)
        git(repos[1], "remote", "add", "staging", str(origin))
        git(repos[1], "remote", "rename", "origin", "fork")

        summary = gather_workspace_summary("ws", "feature", "main", repos)
        assert [r.name for r in summary.repos] == ["charlie", "alpha", "bravo"]
        assert summary.total == 3
        assert summary.error_count == 1
        failed = summary.repos[1]
        assert failed.identity is None
        assert "Cannot determine remote roles" in failed.error
        assert summary.repos[0].error is None and summary.repos[2].error is None

    def test_sequential_matches_parallel(self, origin: Path, workspace: Path):
        repos = [clone(origin, workspace / name) for name in ("a", "b")]
        parallel = gather_workspace_summary("ws", "main", "main", repos)
        sequential = gather_workspace_summary("ws", "main", "main", repos, sequential=True)
        assert parallel.to_dict() == sequential.to_dict()

    def test_invalid_git_dir_is_an_error_entry(self, origin: Path, workspace: Path):
        good = clone(origin, workspace / "good")
        broken = workspace / "broken"
        (broken / ".git").mkdir(parents=True)

        summary = gather_workspace_summary("ws", "main", "main", [broken, good])
        failed = summary.repos[0]
        assert failed.identity is None
        assert "not a git repository" in failed.error
        assert summary.repos[1].error is None
        assert summary.error_count == 1
        assert exit_status(summary) == 1

    def test_corrupt_index_is_an_error_entry(self, feature_clone: Path):
        (feature_clone / "scratch.txt").write_text("x")
        (feature_clone / ".git" / "index").write_bytes(b"not an index" * 8)

        summary = gather_workspace_summary("ws", "feature", "main", [feature_clone])
        assert "git status failed" in summary.repos[0].error
        assert exit_status(summary) == 1


class TestUnusableRepository:
    def test_empty_git_dir_inside_another_repository(self, tmp_path: Path):
        outer = init_repo(tmp_path / "outer")
        commit_file(outer, "a.txt", "a\n")
        broken = outer / "broken"
        (broken / ".git").mkdir(parents=True)
        with pytest.raises(GitCommandError, match="not a git repository"):
            status_of(broken)

    def test_corrupt_index_raises(self, feature_clone: Path):
        (feature_clone / ".git" / "index").write_bytes(b"garbage" * 16)
        with pytest.raises(GitCommandError) as exc:
            status_of(feature_clone)
        assert exc.value.exit_code != 0

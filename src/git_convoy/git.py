"""
Read-only git primitives.

A non-zero git exit status is a normal result (``GitResult``), because git
uses exit codes to report domain states such as "not an ancestor" or
"merge would conflict". Launch failures raise, and so do the few queries
without which a repository cannot be described at all (status, remotes).
"""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import GitCommandError, GitLaunchError, GitTimeoutError
from .models import Commit, LocalChanges

if TYPE_CHECKING:
    from .parallel import CancelToken

logger = logging.getLogger(__name__)

# Separates fields in --format output; never appears in refs or subjects.
_FIELD_SEP = "\x1f"

EXIT_TIMEOUT = 124
EXIT_CANCELLED = 130


@dataclass(frozen=True)
class GitResult:
    """Exit status and captured output of one git invocation."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]


@dataclass(frozen=True)
class PorcelainStatus:
    """Parsed ``git status --porcelain=v2 --branch`` output."""

    head: str = ""
    upstream: str = ""
    ahead: int = 0
    behind: int = 0
    local: LocalChanges = LocalChanges()


class GitOperations:
    """Low-level git queries for a single repository."""

    def __init__(self, repo_path: Path, git_binary: str = "git"):
        self.repo_path = Path(repo_path)
        self.git_binary = git_binary

    def _run(
        self, *args: str, input: str | None = None, timeout: float | None = None
    ) -> GitResult:
        """Run a git command in the repository."""
        try:
            result = subprocess.run(
                [self.git_binary, "-C", str(self.repo_path), *args],
                cwd=self.repo_path,
                input=input,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
                stdin=None if input is not None else subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            raise GitTimeoutError(f"git {args[0]} timed out after {timeout}s") from e
        except OSError as e:
            raise GitLaunchError(f"Cannot run {self.git_binary}: {e}") from e
        return GitResult(result.returncode, result.stdout, result.stderr)

    def _run_checked(self, *args: str) -> GitResult:
        """Run a query whose failure means the repository cannot be inspected."""
        result = self._run(*args)
        if not result.ok:
            detail = result.stderr.strip() or f"exit {result.exit_code}"
            raise GitCommandError(f"git {args[0]} failed: {detail}", result.exit_code, result.stderr)
        return result

    # -------------------------------------------------------------------------
    # Refs
    # -------------------------------------------------------------------------

    def resolve_ref(self, ref: str) -> str | None:
        """Resolve a ref to a full commit hash."""
        result = self._run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        return result.stdout.strip() if result.ok else None

    def ref_exists(self, full_ref: str) -> bool:
        """Check a fully qualified ref such as ``refs/remotes/origin/main``."""
        return self._run("show-ref", "--verify", "--quiet", full_ref).ok

    def remote_branch_exists(self, remote: str, branch: str) -> bool:
        return self.ref_exists(f"refs/remotes/{remote}/{branch}")

    def local_branch_exists(self, branch: str) -> bool:
        return self.ref_exists(f"refs/heads/{branch}")

    def head_symbolic_ref(self) -> str | None:
        """Current branch name, or None when HEAD is detached."""
        result = self._run("symbolic-ref", "--short", "-q", "HEAD")
        # Exit 1 means detached; anything else is a broken repository.
        if result.exit_code not in (0, 1):
            detail = result.stderr.strip() or f"exit {result.exit_code}"
            raise GitCommandError(f"git symbolic-ref failed: {detail}", result.exit_code, result.stderr)
        branch = result.stdout.strip()
        return branch if result.ok and branch else None

    def parent_of(self, commit: str) -> str | None:
        """First parent of a commit; None for a root commit."""
        return self.resolve_ref(f"{commit}^")

    def default_branch(self, remote: str | None) -> str | None:
        """Default branch of a remote, or of the repository itself when local-only."""
        if remote is None:
            for candidate in ("main", "master"):
                if self.local_branch_exists(candidate):
                    return candidate
            return None

        result = self._run("symbolic-ref", "--short", "-q", f"refs/remotes/{remote}/HEAD")
        if result.ok and result.stdout.strip():
            return result.stdout.strip().removeprefix(f"{remote}/")
        for candidate in ("main", "master"):
            if self.remote_branch_exists(remote, candidate):
                return candidate
        return None

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def list_commits(self, rev_range: str, limit: int | None = None) -> list[Commit]:
        """Commits in a range, newest first."""
        args = ["log", f"--format=%H{_FIELD_SEP}%h{_FIELD_SEP}%s"]
        if limit is not None:
            args.append(f"--max-count={limit}")
        result = self._run(*args, rev_range, "--")
        if not result.ok:
            return []
        commits = []
        for line in result.lines():
            full, short, subject = (line.split(_FIELD_SEP, 2) + ["", ""])[:3]
            commits.append(Commit(hash=full, short_hash=short, subject=subject))
        return commits

    def rev_list(
        self, rev_range: str, limit: int | None = None, reverse: bool = False
    ) -> list[str]:
        """Full hashes in a range, newest first unless ``reverse``."""
        args = ["rev-list"]
        if limit is not None:
            args.append(f"--max-count={limit}")
        if reverse:
            args.append("--reverse")
        result = self._run(*args, rev_range, "--")
        return result.lines() if result.ok else []

    def rev_list_count(self, left: str, right: str) -> tuple[int, int] | None:
        """Counts of commits only in ``left`` and only in ``right``."""
        result = self._run("rev-list", "--left-right", "--count", f"{left}...{right}", "--")
        if not result.ok:
            return None
        parts = result.stdout.split()
        if len(parts) != 2:
            return None
        return int(parts[0]), int(parts[1])

    def merge_base(self, a: str, b: str) -> str | None:
        result = self._run("merge-base", a, b)
        return result.stdout.strip() if result.ok else None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return self._run("merge-base", "--is-ancestor", ancestor, descendant).ok

    def last_commit_date(self) -> datetime | None:
        """Author date of HEAD."""
        result = self._run("log", "-1", "--format=%aI")
        if result.ok and result.stdout.strip():
            return datetime.fromisoformat(result.stdout.strip())
        return None

    # -------------------------------------------------------------------------
    # Diffs and fingerprints
    # -------------------------------------------------------------------------

    def diff_name_status(self, a: str, b: str) -> list[tuple[str, str]]:
        """(status, path) pairs changed between two refs."""
        result = self._run("diff", "--name-status", "-M", a, b, "--")
        files = []
        for line in result.lines() if result.ok else []:
            parts = line.split("\t")
            if len(parts) >= 2:
                files.append((parts[0], parts[-1]))
        return files

    def diff_numstat(self, a: str, b: str) -> list[tuple[int | None, int | None, str]]:
        """(added, deleted, path) per file; counts are None for binary files."""
        result = self._run("diff", "--numstat", a, b, "--")
        stats = []
        for line in result.lines() if result.ok else []:
            parts = line.split("\t", 2)
            if len(parts) == 3:
                added = int(parts[0]) if parts[0].isdigit() else None
                deleted = int(parts[1]) if parts[1].isdigit() else None
                stats.append((added, deleted, parts[2]))
        return stats

    def patch_ids(self, rev_range: str, limit: int | None = None) -> dict[str, str]:
        """Map commit hash -> stable patch-id for non-merge commits in a range.

        Commits with an empty diff have no patch-id and are absent.
        """
        args = ["log", "--no-merges", "-p", "--format=commit %H"]
        if limit is not None:
            args.append(f"--max-count={limit}")
        log = self._run(*args, rev_range, "--")
        if not log.ok or not log.stdout.strip():
            return {}
        ids = self._run("patch-id", "--stable", input=log.stdout)
        fingerprints: dict[str, str] = {}
        for line in ids.lines() if ids.ok else []:
            patch_id, _, commit = line.partition(" ")
            fingerprints[commit.strip()] = patch_id
        return fingerprints

    def cumulative_patch_id(self, a: str, b: str) -> str | None:
        """Stable patch-id of the whole diff between two refs."""
        diff = self._run("diff", a, b, "--")
        if not diff.ok or not diff.stdout.strip():
            return None
        ids = self._run("patch-id", "--stable", input=diff.stdout)
        if not ids.ok or not ids.stdout.strip():
            return None
        return ids.stdout.split()[0]

    def merge_tree(self, ours: str, theirs: str, merge_base: str | None = None) -> GitResult:
        """Simulate a three-way merge. Writes objects only; refs, index and worktree are untouched."""
        args = ["merge-tree", "--write-tree", "--name-only", "--no-messages"]
        if merge_base is not None:
            args.append(f"--merge-base={merge_base}")
        return self._run(*args, ours, theirs)

    # -------------------------------------------------------------------------
    # Remotes and config
    # -------------------------------------------------------------------------

    def remote_names(self) -> list[str]:
        return self._run_checked("remote").lines()

    def remote_url(self, remote: str) -> str | None:
        result = self._run("remote", "get-url", remote)
        return result.stdout.strip() or None if result.ok else None

    def config_get(self, key: str) -> str | None:
        result = self._run("config", "--get", key)
        return result.stdout.strip() or None if result.ok else None

    def push_default(self) -> str | None:
        return self.config_get("remote.pushDefault")

    def upstream_ref(self) -> str | None:
        """Abbreviated tracking ref of the current branch, e.g. ``origin/feature``."""
        result = self._run(
            "rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"
        )
        return result.stdout.strip() or None if result.ok else None

    # -------------------------------------------------------------------------
    # Repository layout
    # -------------------------------------------------------------------------

    def git_dir(self) -> Path | None:
        result = self._run("rev-parse", "--absolute-git-dir")
        return Path(result.stdout.strip()) if result.ok else None

    def toplevel(self) -> Path | None:
        """Root of the working tree that contains the repository path."""
        result = self._run("rev-parse", "--show-toplevel")
        return Path(result.stdout.strip()) if result.ok and result.stdout.strip() else None

    def common_dir(self) -> Path | None:
        result = self._run("rev-parse", "--git-common-dir")
        if not result.ok:
            return None
        path = Path(result.stdout.strip())
        return path if path.is_absolute() else (self.repo_path / path).resolve()

    def is_shallow(self) -> bool:
        result = self._run("rev-parse", "--is-shallow-repository")
        return result.ok and result.stdout.strip() == "true"

    def status_porcelain(self) -> PorcelainStatus:
        """Branch header and working tree counts in one command.

        Unmerged entries count only as conflicts, never also as staged or
        modified.
        Raises GitCommandError when git status itself fails (corrupt index).
        """
        result = self._run_checked("status", "--porcelain=v2", "--branch")
        head = upstream = ""
        ahead = behind = 0
        staged = modified = untracked = conflicts = 0
        for line in result.stdout.splitlines():
            if line.startswith("# branch.head "):
                head = line[len("# branch.head ") :]
            elif line.startswith("# branch.upstream "):
                upstream = line[len("# branch.upstream ") :]
            elif line.startswith("# branch.ab "):
                # Format: # branch.ab +<ahead> -<behind>
                parts = line.split()
                if len(parts) == 4:
                    ahead = abs(int(parts[2]))
                    behind = abs(int(parts[3]))
            elif line.startswith("1 ") or line.startswith("2 "):
                xy = line[2:4]
                if xy[0] != ".":
                    staged += 1
                if xy[1] != ".":
                    modified += 1
            elif line.startswith("u "):
                conflicts += 1
            elif line.startswith("? "):
                untracked += 1
        return PorcelainStatus(
            head=head,
            upstream=upstream,
            ahead=ahead,
            behind=behind,
            local=LocalChanges(staged, modified, untracked, conflicts),
        )

    # -------------------------------------------------------------------------
    # Fetch (the one ref-updating call; orchestrated by fleet.py)
    # -------------------------------------------------------------------------

    def fetch(
        self,
        remote: str | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> GitResult:
        """Fetch a remote (all remotes when None), killing git on timeout or cancel."""
        args = [self.git_binary, "-C", str(self.repo_path), "fetch", "--prune"]
        args.append(remote if remote else "--all")
        try:
            proc = subprocess.Popen(
                args,
                cwd=self.repo_path,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            raise GitLaunchError(f"Cannot run {self.git_binary}: {e}") from e

        deadline = time.monotonic() + timeout if timeout else None
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=0.1)
                return GitResult(proc.returncode, stdout, stderr.strip())
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    proc.kill()
                    proc.communicate()
                    return GitResult(EXIT_CANCELLED, "", "fetch cancelled")
                if deadline is not None and time.monotonic() > deadline:
                    proc.kill()
                    proc.communicate()
                    logger.warning("fetch timed out in %s", self.repo_path)
                    return GitResult(EXIT_TIMEOUT, "", f"fetch timed out after {timeout:g}s")

from __future__ import annotations

import re
import subprocess
from pathlib import Path

import pytest

from git_convoy.models import AttachedHead, Identity, RepoStatus, WorktreeKind


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-C", str(repo), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def git_version() -> tuple[int, int]:
    out = subprocess.run(["git", "--version"], capture_output=True, text=True).stdout
    match = re.search(r"(\d+)\.(\d+)", out)
    return (int(match.group(1)), int(match.group(2))) if match else (0, 0)


requires_merge_base = pytest.mark.skipif(
    git_version() < (2, 40), reason="git merge-tree --merge-base needs git >= 2.40"
)


def configure(repo: Path) -> Path:
    git(repo, "config", "user.name", "Convoy Test")
    git(repo, "config", "user.email", "convoy@example.com")
    git(repo, "config", "commit.gpgsign", "false")
    return repo


def init_repo(path: Path, branch: str = "main") -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q", "-b", branch)
    return configure(path)


def commit_file(repo: Path, name: str, content: str, message: str | None = None) -> str:
    target = repo / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message or f"update {name}")
    return git(repo, "rev-parse", "HEAD")


def make_origin(root: Path, name: str = "origin.git") -> Path:
    """Bare repository with ``main`` holding one commit."""
    seed = init_repo(root / f"{name}-seed")
    commit_file(seed, "README.md", "hello\n", "initial")
    commit_file(seed, "shared.txt", "one\ntwo\nthree\n", "add shared")
    bare = root / name
    subprocess.run(
        ["git", "clone", "-q", "--bare", str(seed), str(bare)], check=True, capture_output=True
    )
    return bare


def clone(bare: Path, dest: Path) -> Path:
    dest.parent.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "clone", "-q", str(bare), str(dest)], check=True, capture_output=True)
    return configure(dest)


@pytest.fixture()
def origin(tmp_path: Path) -> Path:
    return make_origin(tmp_path)


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture()
def feature_clone(origin: Path, workspace: Path) -> Path:
    """Clone of ``origin`` in the workspace, on a fresh ``feature`` branch."""
    repo = clone(origin, workspace / "app")
    git(repo, "checkout", "-q", "-b", "feature")
    return repo


def make_status(name: str = "app", branch: str = "feature", **overrides) -> RepoStatus:
    fields = {
        "name": name,
        "path": Path("/ws") / name,
        "identity": Identity(WorktreeKind.FULL, AttachedHead(branch)),
    }
    fields.update(overrides)
    return RepoStatus(**fields)

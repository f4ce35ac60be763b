"""Workspace discovery, workspace config file and process settings."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .errors import WorkspaceError
from .git import GitOperations

logger = logging.getLogger(__name__)

CONFIG_DIR = ".convoy"
CONFIG_FILE = "config"


def read_config(config_file: Path) -> dict[str, str]:
    """Read ``key = value`` lines. Blank lines and ``#`` comments are skipped."""
    values: dict[str, str] = {}
    if not config_file.is_file():
        return values
    for line in config_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip()
    return values


def write_config(config_file: Path, branch: str, base: str | None = None) -> None:
    content = f"branch = {branch}\n"
    if base:
        content += f"base = {base}\n"
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(content, encoding="utf-8")


def workspace_repo_dirs(workspace: Path) -> list[Path]:
    """Immediate subdirectories that are git checkouts, sorted by name."""
    if not workspace.is_dir():
        return []
    return sorted(
        (
            entry
            for entry in workspace.iterdir()
            if entry.is_dir() and entry.name != CONFIG_DIR and (entry / ".git").exists()
        ),
        key=lambda p: p.name,
    )


def find_workspace(start: Path) -> Path | None:
    """Nearest directory at or above ``start`` holding a ``.convoy`` directory."""
    start = start.resolve()
    for candidate in (start, *start.parents):
        if (candidate / CONFIG_DIR).is_dir():
            return candidate
    return None


@dataclass(frozen=True)
class Workspace:
    """A directory of sibling repositories that share one feature branch."""

    path: Path
    branch: str
    base: str | None
    repo_paths: tuple[Path, ...]

    @property
    def name(self) -> str:
        return self.path.name

    @classmethod
    def load(cls, path: Path) -> Workspace:
        path = Path(path).resolve()
        if not path.is_dir():
            raise WorkspaceError(f"Workspace not found: {path}")
        repos = tuple(workspace_repo_dirs(path))
        config = read_config(path / CONFIG_DIR / CONFIG_FILE)

        branch = config.get("branch")
        if not branch:
            if not repos:
                raise WorkspaceError(f"No branch configured and no repositories in {path}")
            branch = GitOperations(repos[0]).head_symbolic_ref()
            if not branch:
                raise WorkspaceError(
                    f"No branch configured in {path / CONFIG_DIR / CONFIG_FILE} "
                    f"and {repos[0].name} has a detached HEAD"
                )
            logger.debug("inferred branch %s from %s", branch, repos[0].name)

        return cls(path=path, branch=branch, base=config.get("base") or None, repo_paths=repos)

    def select(self, names: list[str]) -> tuple[Path, ...]:
        """Restrict to the named repositories, keeping workspace order."""
        if not names:
            return self.repo_paths
        known = {p.name for p in self.repo_paths}
        missing = [n for n in names if n not in known]
        if missing:
            raise WorkspaceError(f"Not in workspace {self.name}: {', '.join(missing)}")
        wanted = set(names)
        return tuple(p for p in self.repo_paths if p.name in wanted)


def _env_number(name: str, default: float, cast: type) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, raw)
        return default


@dataclass(frozen=True)
class ConvoySettings:
    """Process-wide knobs read from the environment."""

    fetch_timeout: float = 120.0
    max_workers: int = 8
    log_level: str = "WARNING"
    merge_commit_limit: int = 200

    @classmethod
    def from_env(cls) -> ConvoySettings:
        return cls(
            fetch_timeout=_env_number("GIT_CONVOY_FETCH_TIMEOUT", 120.0, float),
            max_workers=max(1, int(_env_number("GIT_CONVOY_MAX_WORKERS", 8, int))),
            log_level=os.environ.get("GIT_CONVOY_LOG_LEVEL", "WARNING").upper(),
            merge_commit_limit=int(_env_number("GIT_CONVOY_MERGE_COMMIT_LIMIT", 200, int)),
        )

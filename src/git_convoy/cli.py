"""git-convoy command line interface."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .abort import listen_for_abort
from .config import ConvoySettings, Workspace, find_workspace
from .errors import ConvoyAbort, ConvoyError
from .fleet import ConvoyManager, exit_status
from .formatters import OutputFormatter
from .models import FetchResult
from .parallel import CancelToken
from .schema import get_status_schema, get_tool_schema
from .status import compute_flags
from .where import parse_where, repo_matches_where

T = TypeVar("T")

EXIT_ABORTED = 130

app = typer.Typer(
    name="git-convoy",
    help="Status and divergence of sibling Git repositories that move as one branch.",
    no_args_is_help=True,
)

err_console = Console(stderr=True)


def setup_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"git-convoy {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    tool_schema: bool = typer.Option(
        False,
        "--tool-schema",
        help="Output MCP-compatible tool schema for AI agents",
    ),
    workspace: Path = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Workspace directory (default: nearest directory containing .convoy/)",
    ),
):
    """git-convoy: status of sibling Git repositories that move as one branch."""
    if tool_schema:
        print(json.dumps(get_tool_schema(), indent=2))
        raise typer.Exit()

    settings = ConvoySettings.from_env()
    setup_logging(settings.log_level)
    ctx.obj = {"workspace": workspace, "settings": settings}


@contextmanager
def handle_errors() -> Iterator[None]:
    """Map engine errors to a message on stderr and an exit status."""
    try:
        yield
    except ConvoyAbort as e:
        err_console.print(f"[yellow]{escape(str(e))}[/]")
        raise typer.Exit(EXIT_ABORTED) from e
    except ConvoyError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/]")
        raise typer.Exit(1) from e


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(force_terminal=not json_output)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


def _load_manager(ctx: typer.Context) -> ConvoyManager:
    obj = ctx.obj or {}
    path = obj.get("workspace") or find_workspace(Path.cwd()) or Path.cwd()
    return ConvoyManager(Workspace.load(path), obj.get("settings") or ConvoySettings.from_env())


def _with_progress(console: Console, quiet: bool, description: str, work: Callable[[], T]) -> T:
    if quiet:
        return work()
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description, total=None)
        return work()


def _fetch_with_abort(
    manager: ConvoyManager,
    paths: tuple[Path, ...],
    console: Console,
    quiet: bool,
    sequential: bool,
) -> list[FetchResult] | None:
    """Fetch with Escape-to-abort. Returns None when aborted."""
    token = CancelToken()
    try:
        with listen_for_abort(token):
            return _with_progress(
                console,
                quiet,
                "Fetching... (Esc to skip)",
                lambda: manager.fetch_all(paths, sequential=sequential, cancel=token),
            )
    except ConvoyAbort:
        return None


OPT_JSON = typer.Option(False, "--json", "-j", help="Output as JSON")
OPT_SEQUENTIAL = typer.Option(
    False, "--sequential", "-s", help="Run sequentially instead of parallel"
)
ARG_REPOS = typer.Argument(None, help="Repositories to include (default: all)")


@app.command()
def status(
    ctx: typer.Context,
    repos: list[str] = ARG_REPOS,
    where: str = typer.Option(
        None,
        "--where",
        "-W",
        help="Filter: ',' = OR, '+' = AND, '^' = NOT (e.g. dirty+unpushed,^detached)",
    ),
    dirty: bool = typer.Option(False, "--dirty", "-d", help="Only repositories with local changes"),
    json_output: bool = OPT_JSON,
    no_fetch: bool = typer.Option(False, "--no-fetch", help="Skip fetching before status check"),
    sequential: bool = OPT_SEQUENTIAL,
    schema: bool = typer.Option(
        False, "--schema", help="Print the JSON Schema of --json output and exit"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr"),
):
    """Show status of all repositories in the workspace."""
    if schema:
        print(json.dumps(get_status_schema(), indent=2))
        raise typer.Exit()
    if verbose:
        setup_logging("DEBUG")

    console, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        # Validate before touching any repository.
        filters = [parse_where(expr) for expr in (where, "dirty" if dirty else None) if expr]

        manager = _load_manager(ctx)
        paths = manager.workspace.select(repos or [])

        fetch_results: list[FetchResult] = []
        if not no_fetch:
            fetched = _fetch_with_abort(manager, paths, console, json_output, sequential)
            if fetched is None:
                err_console.print("[yellow]Fetch aborted, showing cached data[/]")
            else:
                fetch_results = fetched

        summary = _with_progress(
            console,
            json_output,
            "Analyzing...",
            lambda: manager.gather_summary(paths, fetch_results=fetch_results, sequential=sequential),
        )
        rows = [
            r
            for r in summary.repos
            if all(repo_matches_where(compute_flags(r, summary.branch), f) for f in filters)
        ]
        formatter.print_status(summary, rows)
    raise typer.Exit(exit_status(summary))


@app.command()
def fetch(
    ctx: typer.Context,
    repos: list[str] = ARG_REPOS,
    json_output: bool = OPT_JSON,
    sequential: bool = OPT_SEQUENTIAL,
):
    """Fetch the share and base remotes of all repositories."""
    console, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        manager = _load_manager(ctx)
        paths = manager.workspace.select(repos or [])
        token = CancelToken()
        with listen_for_abort(token):
            results = _with_progress(
                console,
                json_output,
                "Fetching all repositories... (Esc to abort)",
                lambda: manager.fetch_all(paths, sequential=sequential, cancel=token),
            )
        formatter.print_fetch_results(results)
    raise typer.Exit(0 if all(r.success for r in results) else 1)


@app.command()
def conflicts(
    ctx: typer.Context,
    repos: list[str] = ARG_REPOS,
    rebase: bool = typer.Option(
        False, "--rebase", "-r", help="Simulate rebasing onto the base instead of merging it"
    ),
    json_output: bool = OPT_JSON,
    sequential: bool = OPT_SEQUENTIAL,
):
    """Predict conflicts with the base branch without touching any working tree."""
    console, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        manager = _load_manager(ctx)
        paths = manager.workspace.select(repos or [])
        reports = _with_progress(
            console,
            json_output,
            "Simulating merges...",
            lambda: manager.predict_conflicts(paths, rebase=rebase, sequential=sequential),
        )
        formatter.print_conflict_reports(reports)
    raise typer.Exit(1 if any(r.error for r in reports) else 0)


@app.command()
def retarget(
    ctx: typer.Context,
    new_base: str = typer.Argument(..., help="New base branch on the base remote"),
    repos: list[str] = typer.Option(None, "--repo", help="Repositories to include (repeatable)"),
    json_output: bool = OPT_JSON,
    sequential: bool = OPT_SEQUENTIAL,
):
    """Show how many local commits a move onto NEW_BASE would replay."""
    console, formatter = get_console_and_formatter(json_output)
    with handle_errors():
        manager = _load_manager(ctx)
        paths = manager.workspace.select(repos or [])
        reports = _with_progress(
            console,
            json_output,
            "Analyzing...",
            lambda: manager.analyze_retarget(new_base, paths, sequential=sequential),
        )
        formatter.print_retarget_reports(reports)
    raise typer.Exit(1 if any(r.error for r in reports) else 0)

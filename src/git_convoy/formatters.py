"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
from datetime import datetime

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .models import (
    ConflictReport,
    FetchResult,
    RepoFlags,
    RepoStatus,
    RetargetReport,
    ShareRefMode,
    WorkspaceSummary,
)
from .status import compute_flags

# Label -> style; anything not listed is dim.
_LABEL_STYLES = {
    "dirty": "yellow",
    "unpushed": "yellow",
    "drifted": "magenta",
    "detached": "magenta",
    "operation": "magenta",
    "at risk": "bold red",
    "base merged": "red",
    "base missing": "red",
    "merged": "green",
    "gone": "green",
}


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def _print_json(self, payload: dict) -> None:
        # Raw write: no markup, highlighting or wrapping.
        self.console.out(json.dumps(payload, indent=2, default=str), highlight=False)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def print_status(self, summary: WorkspaceSummary, repos: list[RepoStatus] | None = None):
        """Print the summary; ``repos`` narrows the rows (e.g. after --where)."""
        rows = list(summary.repos if repos is None else repos)
        if self.use_json:
            payload = summary.to_dict()
            payload["repos"] = [r.to_dict() for r in rows]
            self._print_json(payload)
        else:
            self._print_status_table(summary, rows)

    def _print_status_table(self, summary: WorkspaceSummary, repos: list[RepoStatus]) -> None:
        title = f"Convoy: {summary.workspace} [dim]({escape(summary.branch)}"
        title += f" → {escape(summary.base)})[/]" if summary.base else ")[/]"
        table = Table(title=title)

        table.add_column("Repository", style="cyan", no_wrap=True)
        table.add_column("HEAD")
        table.add_column("Base", justify="center")
        table.add_column("Share", justify="center")
        table.add_column("Local", justify="center")
        table.add_column("Last Commit", justify="right")
        table.add_column("Status")

        for status in repos:
            flags = compute_flags(status, summary.branch)
            name = status.name
            if flags.at_risk:
                name = f"[bold red]⚠ {name}[/]"
            if status.error:
                table.add_row(name, "", "", "", "", "", f"[red]✗ {escape(status.error[:60])}[/]")
                continue
            table.add_row(
                name,
                self._head_display(status, flags),
                self._base_display(status),
                self._share_display(status),
                self._local_display(status),
                self._format_date(status.last_commit),
                self._labels_display(flags.to_labels()),
            )

        self.console.print(table)
        self.console.print()
        self._print_summary_line(summary)

    def _head_display(self, status: RepoStatus, flags: RepoFlags) -> str:
        identity = status.identity
        if identity is None or identity.detached:
            return "[magenta](detached)[/]"
        branch = escape(identity.branch or "")
        if flags.drifted:
            return f"[magenta]{branch}[/]"
        return f"[green]{branch}[/]"

    def _base_display(self, status: RepoStatus) -> str:
        base = status.base
        if base is None:
            return "[dim]-[/]"
        if base.merged_into_base:
            return f"[green]{base.merged_into_base.value}d[/]"
        parts = []
        if base.ahead:
            parts.append(f"[yellow]⬆{base.ahead}[/]")
        if base.behind:
            parts.append(f"[blue]⬇{base.behind}[/]")
        text = " ".join(parts) if parts else "[green]✓[/]"
        return f"{text} [dim]{escape(base.ref)}[/]"

    def _share_display(self, status: RepoStatus) -> str:
        share = status.share
        if share is None:
            return "[dim]local[/]"
        match share.ref_mode:
            case ShareRefMode.NO_REF:
                return "[dim]not pushed[/]"
            case ShareRefMode.GONE:
                return "[dim]gone[/]"
        parts = []
        if share.to_push:
            rebased = f" ({share.rebased} rebased)" if share.rebased else ""
            parts.append(f"[yellow]⬆{share.to_push}{rebased}[/]")
        if share.to_pull:
            parts.append(f"[blue]⬇{share.to_pull}[/]")
        return " ".join(parts) if parts else "[green]✓[/]"

    def _local_display(self, status: RepoStatus) -> str:
        local = status.local
        if not local.is_dirty:
            return "[green]clean[/]"
        parts = []
        if local.conflicts:
            parts.append(f"[bold red]!{local.conflicts}[/]")
        if local.staged:
            parts.append(f"[green]+{local.staged}[/]")
        if local.modified:
            parts.append(f"[yellow]~{local.modified}[/]")
        if local.untracked:
            parts.append(f"[red]?{local.untracked}[/]")
        return " ".join(parts)

    def _labels_display(self, labels: list[str]) -> str:
        if not labels:
            return "[green]ok[/]"
        return ", ".join(f"[{_LABEL_STYLES.get(label, 'dim')}]{label}[/]" for label in labels)

    def _format_date(self, dt: datetime | None) -> str:
        """Format datetime for display."""
        if dt is None:
            return "[dim]unknown[/]"

        now = datetime.now(dt.tzinfo)
        delta = now - dt

        if delta.days == 0:
            hours = delta.seconds // 3600
            if hours == 0:
                return f"[green]{delta.seconds // 60}m ago[/]"
            return f"[green]{hours}h ago[/]"
        elif delta.days == 1:
            return "[green]yesterday[/]"
        elif delta.days < 7:
            return f"[yellow]{delta.days}d ago[/]"
        elif delta.days < 30:
            return f"[yellow]{delta.days // 7}w ago[/]"
        return f"[red]{dt.strftime('%Y-%m-%d')}[/]"

    def _print_summary_line(self, summary: WorkspaceSummary) -> None:
        parts = [f"[bold]Total:[/] {summary.total}"]
        if summary.at_risk_count:
            parts.append(f"[bold red]⚠ At risk:[/] {summary.at_risk_count}")
        if summary.error_count:
            parts.append(f"[red]✗ Errors:[/] {summary.error_count}")
        if summary.status_labels:
            parts.append(self._labels_display(list(summary.status_labels)))
        self.console.print(" | ".join(parts))

    # -------------------------------------------------------------------------
    # Fetch
    # -------------------------------------------------------------------------

    def print_fetch_results(self, results: list[FetchResult]):
        if self.use_json:
            self._print_json(
                {
                    "results": [r.to_dict() for r in results],
                    "summary": {
                        "total": len(results),
                        "success": sum(1 for r in results if r.success),
                        "failed": sum(1 for r in results if not r.success),
                    },
                }
            )
            return

        if not results:
            self.console.print("[dim]No repositories to fetch[/]")
            return

        table = Table(title="Fetch Results")
        table.add_column("Repository", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Message")
        for result in results:
            if result.success:
                table.add_row(result.name, "[green]✓[/]", escape(result.output[:50]) or "OK")
            else:
                message = escape(result.output[:50]) or f"exit {result.exit_code}"
                table.add_row(result.name, "[red]✗[/]", f"[red]{message}[/]")
        self.console.print(table)
        success = sum(1 for r in results if r.success)
        self.console.print(f"\n[bold]Success:[/] {success}/{len(results)}")

    # -------------------------------------------------------------------------
    # Conflicts and retarget
    # -------------------------------------------------------------------------

    def print_conflict_reports(self, reports: list[ConflictReport]):
        if self.use_json:
            self._print_json({"results": [r.to_dict() for r in reports]})
            return

        table = Table(title="Predicted Conflicts")
        table.add_column("Repository", style="cyan")
        table.add_column("Target")
        table.add_column("Result")
        for report in reports:
            table.add_row(report.name, escape(report.target or "-"), self._conflict_display(report))
        self.console.print(table)

    def _conflict_display(self, report: ConflictReport) -> str:
        if report.error:
            return f"[red]✗ {escape(report.error)}[/]"
        if report.rebase is not None:
            if not report.rebase:
                return "[green]clean[/]"
            lines = [
                f"[red]{c.commit[:7]}[/] {escape(', '.join(c.files))}" for c in report.rebase
            ]
            return "\n".join(lines)
        if report.merge is not None:
            if not report.merge.has_conflict:
                return "[green]clean[/]"
            return f"[red]conflict:[/] {escape(', '.join(report.merge.conflicting_files))}"
        return "[dim]unknown[/]"

    def print_retarget_reports(self, reports: list[RetargetReport]):
        if self.use_json:
            self._print_json({"results": [r.to_dict() for r in reports]})
            return

        table = Table(title="Retarget Analysis")
        table.add_column("Repository", style="cyan")
        table.add_column("From")
        table.add_column("To")
        table.add_column("Replay", justify="right")
        for report in reports:
            if report.error or report.replay is None:
                detail = f"[red]✗ {escape(report.error or 'unknown')}[/]"
                table.add_row(report.name, escape(report.old_base or "-"), escape(report.new_base), detail)
                continue
            replay = report.replay
            skipped = f" [dim]({replay.already_on_target} already on target)[/]" if replay.already_on_target else ""
            table.add_row(
                report.name,
                escape(report.old_base or "-"),
                escape(report.new_base),
                f"{replay.to_replay}/{replay.total_local}{skipped}",
            )
        self.console.print(table)

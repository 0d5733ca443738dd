# src/kubeapply/cli/formatter.py
from typing import List

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from kubeapply.apply.engine import ApplyReport
from kubeapply.core.errors import ApplyError, KubeApplyError

# Initialize the Rich console for high-quality terminal output
console = Console()

ACTION_STYLES = {
    "created": "green",
    "patched": "cyan",
    "unchanged": "dim",
    "dry-run": "yellow",
}


class ReportFormatter:
    """
    Renders apply and delete runs: the per-object table, the garbage
    collection list and failures.
    """

    def __init__(self, out: Console = console):
        self.console = out

    def print_header(self, subtitle: str):
        self.console.print(Panel.fit(
            "[bold cyan]KubeApply[/bold cyan]",
            title=f"[bold white]{subtitle}[/bold white]",
            border_style="cyan",
        ))

    def print_apply_report(self, report: ApplyReport):
        title = "KubeApply Execution Report" + (" (dry-run)" if report.dry_run else "")
        table = Table(title=title, show_lines=False, header_style="bold magenta")
        table.add_column("Object", style="white")
        table.add_column("Action", style="bold")
        table.add_column("UID", style="dim")

        for r in report.results:
            style = ACTION_STYLES.get(r.action, "white")
            table.add_row(escape(r.description), f"[{style}]{r.action}[/{style}]", r.uid)
        self.console.print(table)

        if report.garbage_collected:
            verb = "Would delete" if report.dry_run else "Deleted"
            for desc in report.garbage_collected:
                self.console.print(f"[bold red]🗑  {verb}:[/bold red] {escape(desc)}")

        summary = report.summary()
        actions = ", ".join(f"{k}: {v}" for k, v in sorted(summary["actions"].items())) or "none"
        self.console.print(Panel(
            f"[bold white]Summary Report[/bold white]\n"
            f"════════════════════════════════════════\n"
            f"Objects:           {summary['total_objects']}\n"
            f"Actions:           {actions}\n"
            f"Garbage Collected: [red]{summary['garbage_collected']}[/red]",
            border_style="dim",
        ))

    def print_deleted(self, deleted: List[str], dry_run: bool):
        verb = "Would delete" if dry_run else "Deleted"
        for desc in deleted:
            self.console.print(f"[bold red]🗑  {verb}:[/bold red] {escape(desc)}")
        if not deleted:
            self.console.print("[dim]ℹ Nothing to delete.[/dim]")

    def print_error(self, err: KubeApplyError):
        if isinstance(err, ApplyError):
            self.console.print(Panel(
                f"[bold]Phase:[/bold]  {err.phase}\n"
                f"[bold]Object:[/bold] {escape(err.description)}\n"
                f"[bold]Cause:[/bold]  {type(err.cause).__name__}: {escape(str(err.cause))}",
                title="[bold red]Apply failed[/bold red]",
                border_style="red",
            ))
        else:
            self.console.print(f"[bold red]Error:[/bold red] {escape(str(err))}")

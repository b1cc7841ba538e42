from __future__ import annotations

from typing import List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

_STATUS_STYLES = {
    "ok": "bold green",
    "failed": "bold red",
    "skipped": "dim",
}


def stage_table(report) -> Table:
    table = Table(title="Image sync scenario", expand=False)
    table.add_column("Stage", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Details", overflow="fold")
    for stage, status in report.stages.items():
        details = ""
        if stage == report.failed_stage and report.error is not None:
            details = f"{type(report.error).__name__}: {report.error}"
        elif stage.value == "seed" and report.uploads:
            total = sum(len(u.results) for u in report.uploads)
            details = f"{total} uploads to {len(report.uploads)} bucket(s)"
        elif stage.value == "trigger" and report.command is not None:
            details = f"exit status {report.command.status}"
        elif stage.value == "cleanup" and report.cleanup_errors:
            details = "; ".join(str(e) for e in report.cleanup_errors)
        table.add_row(stage.value, Text(status, style=_STATUS_STYLES.get(status, "")), details)
    return table


def failed_uploads(report) -> List[str]:
    names: List[str] = []
    for batch in report.uploads:
        names.extend(f"{batch.bucket}/{r.task.object_name}" for r in batch.failed)
    return names


def render_report(report, console: Console | None = None) -> None:
    console = console or Console()
    console.print(stage_table(report))
    if report.command is not None and report.command.status != 0 and report.command.stderr:
        console.print(Panel(report.command.stderr.strip(), title="sync stderr", border_style="red"))
    failed = failed_uploads(report)
    if failed:
        shown = "\n".join(failed[:10])
        if len(failed) > 10:
            shown += f"\n... and {len(failed) - 10} more"
        console.print(Panel(shown, title="failed uploads", border_style="red"))
    if report.success:
        console.print(Text("Scenario passed", style="bold green"))
    else:
        console.print(Text("Scenario failed", style="bold red"))

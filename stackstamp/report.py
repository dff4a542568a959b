"""Structured run reports.

Every command produces exactly one :class:`RunReport`: which options were in
effect, which files were created, left unchanged or overwritten, which
insertions were applied, skipped or downgraded to warnings, and, for aborted
runs, the error with its full list of offending items.  The CLI renders the
report with Rich and derives the process exit code from it.
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from stackstamp.errors import FileConflictError, PartialWriteError, StackstampError
from stackstamp.scaffolder.insertion import InsertionOutcome, InsertionStatus
from stackstamp.scaffolder.materializer import MaterializeResult
from stackstamp.utils import console, format_duration, print_summary_table

STATUS_STYLES: dict[str, str] = {
    "applied": "green",
    "skipped": "dim",
    "warned": "yellow",
}


class RunReport(BaseModel):
    """Outcome of one scaffold or generate command."""

    command: str
    subject: str = ""
    destination: str = ""
    state: str = "Validating"
    failed_state: str | None = None
    options: dict[str, str | None] = Field(default_factory=dict)
    created: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    overwritten: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    insertions: list[InsertionOutcome] = Field(default_factory=list)
    error: str | None = None
    error_type: str | None = None
    error_items: list[str] = Field(default_factory=list)
    error_exit_code: int = 0
    duration: float = 0.0

    # -- Recording ---------------------------------------------------------

    def record_materialized(self, result: MaterializeResult) -> None:
        self.created = list(result.created)
        self.unchanged = list(result.unchanged)
        self.overwritten = list(result.overwritten)

    def record_error(self, exc: StackstampError) -> None:
        self.failed_state = self.state
        self.state = "Aborted"
        self.error = str(exc)
        self.error_type = type(exc).__name__
        self.error_items = exc.details()
        self.error_exit_code = exc.exit_code
        if isinstance(exc, FileConflictError):
            self.conflicts = list(exc.items)
        if isinstance(exc, PartialWriteError):
            self.created = list(exc.created)
            self.overwritten = list(exc.overwritten)

    # -- Derived -----------------------------------------------------------

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def warnings(self) -> list[InsertionOutcome]:
        return [i for i in self.insertions if i.status is InsertionStatus.WARNED]

    def insertion_count(self, status: InsertionStatus) -> int:
        return sum(1 for i in self.insertions if i.status is status)

    def exit_code(self, strict_anchors: bool = False) -> int:
        """0 on success; the error's code when aborted; 4 for anchor warnings
        when *strict_anchors* is set."""
        if self.error is not None:
            return self.error_exit_code
        if strict_anchors and self.warnings:
            return 4
        return 0


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_report(report: RunReport) -> None:
    """Print the report to the shared Rich console."""
    title = f"stackstamp {report.command}"
    if report.subject:
        title += f" {report.subject}"

    summary = {
        "Destination": report.destination or ".",
        "State": report.state
        + (f" (in {report.failed_state})" if report.failed_state else ""),
        "Files created": str(len(report.created)),
        "Files unchanged": str(len(report.unchanged)),
        "Files overwritten": str(len(report.overwritten)),
        "Conflicts": str(len(report.conflicts)),
        "Insertions applied": str(report.insertion_count(InsertionStatus.APPLIED)),
        "Insertions skipped": str(report.insertion_count(InsertionStatus.SKIPPED)),
        "Insertion warnings": str(report.insertion_count(InsertionStatus.WARNED)),
        "Duration": format_duration(report.duration),
    }
    for name, value in report.options.items():
        summary[f"option {name}"] = "-" if value is None else value
    print_summary_table(summary, title=title)

    if report.created or report.overwritten:
        files = Table(show_header=True, header_style="bold cyan", title="Files")
        files.add_column("Status", no_wrap=True)
        files.add_column("Path")
        for path in report.created:
            files.add_row("[green]created[/green]", escape(path))
        for path in report.overwritten:
            files.add_row("[yellow]overwritten[/yellow]", escape(path))
        console.print(files)

    if report.insertions:
        table = Table(show_header=True, header_style="bold cyan", title="Insertions")
        table.add_column("Target", no_wrap=True)
        table.add_column("Status")
        table.add_column("Detail")
        for outcome in report.insertions:
            style = STATUS_STYLES.get(outcome.status.value, "white")
            table.add_row(
                escape(outcome.target),
                f"[{style}]{outcome.status.value}[/{style}]",
                escape(outcome.detail),
            )
        console.print(table)

    for outcome in report.warnings:
        console.print(
            Panel(
                Text(outcome.fragment.rstrip("\n")),
                title=f"[yellow]Apply manually to {escape(outcome.target)}[/yellow]",
                subtitle=escape(outcome.detail),
                border_style="yellow",
            )
        )

    if report.error:
        console.print(f"\n[red bold]{report.error_type}:[/red bold] {escape(report.error)}")
        for item in report.error_items:
            console.print(f"  [red]- {escape(item)}[/red]")

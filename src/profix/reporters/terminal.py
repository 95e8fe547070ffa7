from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from profix import __version__
from profix.engine.types import AnalysisResult
from profix.session import ResultsSurface

_SEVERITY_STYLE = {"Error": "bold red", "Warning": "yellow", "Info": "dim"}
_STATE_LABEL = {"unfixed": "Fix", "applying": "Applying...", "fixed": "Fixed"}


def render_terminal(result: AnalysisResult, *, console: Console, surface: ResultsSurface | None = None) -> None:
    header = Text()
    header.append("ProFix ", style="bold")
    header.append(f"v{__version__}", style="dim")
    header.append(f" | {result.profile}", style="dim")
    console.print(Panel(header, border_style="cyan"))

    if result.error is not None:
        console.print(Text(result.error, style="bold red"))
        return
    if not result.findings:
        console.print("No issues found in the selected text.")
        return

    surface = surface if surface is not None else ResultsSurface(result.presented)
    if surface.total == 0:
        console.print("No actionable issues found in the selected text.")
    else:
        table = Table(show_lines=False)
        table.add_column("Line", justify="right")
        table.add_column("Severity")
        table.add_column("Finding")
        table.add_column("Fixed Code")
        table.add_column("Action")
        for row in surface.rows:
            finding = row.finding
            severity = (
                Text("✓", style="green") if row.state == "fixed"
                else Text(finding.severity, style=_SEVERITY_STYLE.get(finding.severity, ""))
            )
            fix = finding.proposed_fix if finding.proposed_fix else "-"
            action = _STATE_LABEL[row.state] if finding.fixable else "-"
            table.add_row(str(finding.relative_line), severity, finding.description, fix, action)
        console.print(table)

    hidden = len(result.findings) - len(result.presented)
    if hidden:
        console.print(Text(f"{hidden} informational finding(s) not shown.", style="dim"))
    if result.rejected:
        console.print(Text(f"{len(result.rejected)} malformed finding(s) dropped.", style="dim"))

    console.print(Text(f"Errors Found: {surface.remaining}/{surface.total}", style="bold red"))
    console.print(Text(f"Errors Fixed: {surface.fixed}/{surface.total}", style="bold green"))

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Annotated

import click
import typer
from rich.console import Console

from profix import __version__
from profix.config import ProFixConfig, load_config
from profix.engine.types import AnalysisResult, FixOutcome, Selection
from profix.errors import ConfigError, EmptySelection, ModelError
from profix.fixer import TextDocument, unified_diff
from profix.logging_utils import configure_logging
from profix.pipeline import AnalysisProfile, analyze_selection, evaluate_response, get_profile
from profix.prompts import build_prompt
from profix.reporters.html_reporter import render_html
from profix.reporters.json_reporter import render_json
from profix.reporters.terminal import render_terminal
from profix.session import FIX_SUCCEEDED, AnalysisSession, SessionRegistry

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="ProFix: LLM-assisted code review with line-level fixes.",
)
console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def _main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose logs (printed to stderr)."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Reduce non-essential output."),
    ] = False,
) -> None:
    """ProFix CLI."""

    if verbose and quiet:
        raise typer.BadParameter("Choose at most one: --verbose or --quiet.")
    configure_logging(verbose=verbose, quiet=quiet)
    ctx.obj = {"verbose": verbose, "quiet": quiet}


def _cli_settings() -> dict[str, bool]:
    ctx = click.get_current_context(silent=True)
    if ctx is None or not isinstance(ctx.obj, dict):
        return {"verbose": False, "quiet": False}
    return {"verbose": bool(ctx.obj.get("verbose", False)), "quiet": bool(ctx.obj.get("quiet", False))}


def _load_config_or_exit(project_dir: Path) -> ProFixConfig:
    try:
        return load_config(project_dir)
    except ConfigError as exc:
        err_console.print(f"Invalid configuration: {exc}")
        raise typer.Exit(code=2) from exc


def _profile_or_exit(name: str) -> AnalysisProfile:
    try:
        return get_profile(name)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _select(document: TextDocument, start: int, end: int | None) -> Selection:
    last = document.line_count()
    if last == 0:
        raise EmptySelection()
    end_line = last if end is None else end
    if start < 1 or end_line < start or start > last:
        raise typer.BadParameter(f"Invalid line range {start}..{end_line} (file has {last} line(s)).")
    return document.selection(start - 1, min(end_line, last) - 1)


def _read_response(source: Path) -> str:
    if str(source) == "-":
        return sys.stdin.read()
    return source.read_text(encoding="utf-8", errors="replace")


def _emit(fmt: str, result: AnalysisResult, session: AnalysisSession | None, outcomes: list[FixOutcome] | None) -> None:
    surface = session.surface if session is not None else None
    normalized = fmt.strip().lower()
    if normalized == "terminal":
        render_terminal(result, console=console, surface=surface)
        return
    if normalized == "json":
        typer.echo(render_json(result, surface=surface, outcomes=outcomes))
        return
    if normalized == "html":
        typer.echo(render_html(result, surface=surface))
        return
    raise typer.BadParameter("Unsupported format. Use: terminal, json, html.")


def _apply_requested(session: AnalysisSession, lines: list[int], *, fix_all: bool) -> tuple[list[FixOutcome], list[int]]:
    """Dispatch fixes for the requested rows; returns outcomes and unknown lines."""

    if fix_all:
        targets = [row.row_id for row in session.surface.rows if row.can_apply]
        missing: list[int] = []
    else:
        targets = []
        missing = []
        for line in lines:
            rows = [row.row_id for row in session.surface.rows if row.relative_line == line and row.can_apply]
            if not rows:
                missing.append(line)
            targets.extend(r for r in rows if r not in targets)

    for row_id in targets:
        reply = session.dispatch(row_id)
        if reply is None:
            continue
        if reply.get("command") == FIX_SUCCEEDED:
            logger.info("%s", reply.get("message"))
        else:
            logger.error("%s", reply.get("reason") or "Failed to apply fix")
    return list(session.host.outcomes), missing


@app.command()
def analyze(
    path: Annotated[
        Path,
        typer.Argument(
            exists=True,
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
            help="Source file to analyze.",
        ),
    ],
    start: Annotated[int, typer.Option("--start", min=1, help="First selected line (1-based).")] = 1,
    end: Annotated[int | None, typer.Option("--end", min=1, help="Last selected line (default: end of file).")] = None,
    profile: Annotated[
        str | None,
        typer.Option("--profile", help="Analysis profile: review, edge-cases (default: config)."),
    ] = None,
    output_format: Annotated[
        str,
        typer.Option("--format", help="Output format: terminal, json, html.", show_default=True),
    ] = "terminal",
    response: Annotated[
        Path | None,
        typer.Option("--response", help="Use a saved model reply instead of calling the model ('-' for stdin)."),
    ] = None,
    fix: Annotated[
        list[int] | None,
        typer.Option("--fix", help="Apply the fix proposed for this selection line (repeatable)."),
    ] = None,
    fix_all: Annotated[bool, typer.Option("--fix-all", help="Apply every proposed fix.")] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Don't write changes; only print a unified diff."),
    ] = False,
    backup: Annotated[
        bool | None,
        typer.Option("--backup/--no-backup", help="Create a .profix.bak backup before writing."),
    ] = None,
) -> None:
    """
    Analyze a block of a file and optionally apply the proposed fixes.

    Every fix replaces exactly one line, so fixes can be applied in any order.
    """

    settings = _cli_settings()
    config = _load_config_or_exit(Path.cwd())
    resolved_profile = _profile_or_exit(profile or config.profile)
    document = TextDocument.from_path(path)
    original_text = document.text

    try:
        selection = _select(document, start, end)
        if response is not None:
            # Same validation as a live request, without the model call.
            build_prompt(selection.text, resolved_profile.template)
            result = evaluate_response(
                selection,
                _read_response(response),
                profile=resolved_profile,
                hide_severities=config.display.hide_severities,
            )
        else:
            from profix.llm import load_client

            client = load_client(config.model)
            with err_console.status(resolved_profile.title, spinner="dots"):
                result = analyze_selection(
                    selection,
                    client,
                    profile=resolved_profile,
                    hide_severities=config.display.hide_severities,
                )
    except EmptySelection as exc:
        err_console.print(str(exc))
        raise typer.Exit(code=1) from exc
    except ModelError as exc:
        err_console.print(f"Analysis failed: {exc}")
        raise typer.Exit(code=1) from exc

    registry = SessionRegistry()
    session, _reused = registry.open(document.uri or str(path), result, document)

    outcomes: list[FixOutcome] | None = None
    missing: list[int] = []
    if result.ok and (fix or fix_all):
        outcomes, missing = _apply_requested(session, list(fix or []), fix_all=fix_all)

    _emit(output_format, result, session, outcomes)

    if document.text != original_text:
        if dry_run:
            typer.echo(unified_diff(original_text, document.text, path=path))
        else:
            document.write_to(path, backup=config.backup if backup is None else backup)
            if not settings["quiet"]:
                err_console.print(f"Wrote {len([o for o in outcomes or [] if o.ok])} fix(es) to {path}")
    registry.close(session.key)

    for line in missing:
        err_console.print(f"No fixable finding at line {line}")
    if not result.ok or missing or any(not o.ok for o in outcomes or []):
        raise typer.Exit(code=1)


@app.command()
def prompt(
    path: Annotated[
        Path,
        typer.Argument(exists=True, file_okay=True, dir_okay=False, resolve_path=True, help="Source file."),
    ],
    start: Annotated[int, typer.Option("--start", min=1, help="First selected line (1-based).")] = 1,
    end: Annotated[int | None, typer.Option("--end", min=1, help="Last selected line (default: end of file).")] = None,
    profile: Annotated[str, typer.Option("--profile", help="Analysis profile: review, edge-cases.")] = "review",
) -> None:
    """
    Print the request that would be sent to the model.
    """

    resolved_profile = _profile_or_exit(profile)
    document = TextDocument.from_path(path)
    try:
        request = build_prompt(_select(document, start, end).text, resolved_profile.template)
    except EmptySelection as exc:
        err_console.print(str(exc))
        raise typer.Exit(code=1) from exc
    typer.echo(request.text)


@app.command()
def profiles() -> None:
    """
    List the available analysis profiles.
    """

    from rich.table import Table

    from profix.pipeline import PROFILES

    table = Table(title="ProFix Profiles")
    table.add_column("Name", style="bold")
    table.add_column("Hidden severities")
    table.add_column("Description")
    for name in sorted(PROFILES):
        item = PROFILES[name]
        hidden = ", ".join(sorted(item.hidden_severities)) or "-"
        table.add_row(name, hidden, item.template.preamble.splitlines()[-1])
    console.print(table)


@app.command()
def serve() -> None:
    """
    Run the ProFix host over stdio (JSON-RPC with Content-Length framing).

    Intended for editor integrations that render the results surface.
    """

    from profix.server import run_stdio_server

    run_stdio_server()

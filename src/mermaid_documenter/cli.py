"""Command line interface."""

from __future__ import annotations

import signal
import threading
import uuid
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mermaid_documenter.app import create_controller
from mermaid_documenter.config import Settings
from mermaid_documenter.core.run_log import read_run_log, run_log_path
from mermaid_documenter.core.sandbox import PathSandbox
from mermaid_documenter.core.types import ClarificationNeeded, Completed, Failed, RunOutcome
from mermaid_documenter.errors import ConfigurationError, TranscriptNotFoundError
from mermaid_documenter.logging_utils import configure_logging
from mermaid_documenter.operator import ConsoleOperator
from mermaid_documenter.tools.builtin import register_builtin_tools
from mermaid_documenter.tools.registry import ToolRegistry

app = typer.Typer(
    name="mad",
    help="Turn application transcripts into Mermaid diagram documentation.",
    add_completion=False,
)
console = Console()


def read_transcript(raw: str, project_root: Path | None) -> str:
    """Read a transcript; bare file names resolve under the project's transcripts/ directory."""
    path = Path(raw).expanduser()
    if project_root is not None and not path.is_absolute() and len(path.parts) == 1:
        path = project_root / "transcripts" / path
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise TranscriptNotFoundError(f"transcript file not found: {path}") from exc
    except OSError as exc:
        raise TranscriptNotFoundError(f"cannot read transcript {path}: {exc!s}") from exc


def _exit_with_error(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(message)}")
    raise typer.Exit(1)


def _render_outcome(outcome: RunOutcome) -> int:
    match outcome:
        case Completed(manifest=manifest):
            console.print("[bold green]Agent execution completed successfully![/bold green]")
            for name, status in manifest.items():
                console.print(f"  {name}: {status}", markup=False)
            return 0
        case ClarificationNeeded():
            console.print("[yellow]Agent execution stopped: clarification needed[/yellow]")
            return 1
        case Failed(reason=reason, detail=detail):
            console.print(f"[bold red]Agent execution failed ({reason}):[/bold red] {escape(detail)}")
            return 1
    return 1


@app.command()
def run(
    transcript: str = typer.Argument(..., help="Transcript file, resolved under <project>/transcripts/ if bare"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print planned actions without executing"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompts"),
    verbose: bool = typer.Option(False, "--verbose", help="Store transcripts and raw replies in the run log"),
) -> None:
    """Run the agent on a transcript."""
    settings = Settings()
    configure_logging(profile="chat" if console.is_terminal else "default", level=settings.log_level)
    try:
        config = settings.to_run_config(verbose=True if verbose else None)
        text = read_transcript(transcript, config.project_root)
    except ConfigurationError as exc:
        _exit_with_error(str(exc))
        return

    console.print(f"[bold]Transcript:[/bold] {transcript}")
    console.print(f"[bold]Provider:[/bold] {config.provider}, [bold]Model:[/bold] [magenta]{config.model}[/magenta]")
    console.print(f"[bold]Output directory:[/bold] [cyan]{config.output_dir}[/cyan]")
    if dry_run:
        console.print("Dry run mode - agent execution skipped.")
        return
    if not yes and not typer.confirm("Proceed with agent execution?", default=False):
        console.print("Cancelled.")
        return

    cancel = threading.Event()
    controller = create_controller(config, operator=ConsoleOperator(console), cancel=cancel)
    previous = signal.signal(signal.SIGINT, lambda _signum, _frame: cancel.set())
    try:
        outcome = controller.run(text)
    finally:
        signal.signal(signal.SIGINT, previous)

    console.print(f"[dim]Run log: {run_log_path(config.logs_dir, controller.state.run_id)}[/dim]")
    raise typer.Exit(_render_outcome(outcome))


PROJECT_DIRECTORIES = ("transcripts", "out", "logs")


@app.command()
def init(project: str | None = typer.Argument(None, help="Project to create under the current directory")) -> None:
    """Create the working area, or a project layout when a name is given."""
    settings = Settings()
    home = settings.resolve_home()
    try:
        home.mkdir(parents=True, exist_ok=True)
        if project is None:
            console.print(f"Global environment initialized at [cyan]{escape(str(home))}[/cyan]")
            return

        if not project.strip() or Path(project).name != project:
            _exit_with_error(f"invalid project name: {project!r}")
            return
        root = Path.cwd() / project
        for name in PROJECT_DIRECTORIES:
            (root / name).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        _exit_with_error(f"cannot initialize: {exc!s}")
        return

    console.print(f"Project '{escape(project)}' initialized at [cyan]{escape(str(root))}[/cyan]")
    console.print("  transcripts/  place your transcript files here", markup=False)
    console.print("  out/          generated diagrams will be saved here", markup=False)
    console.print("  logs/         execution logs", markup=False)
    console.print(f"\nMake it the active project with: export MAD_PROJECT_ROOT={root}", markup=False)


@app.command()
def tools() -> None:
    """List the tools available to the agent."""
    settings = Settings()
    registry = ToolRegistry()
    register_builtin_tools(
        registry,
        sandbox=PathSandbox([settings.resolve_home(), settings.resolve_out_dir()]),
        output_dir=settings.resolve_out_dir(),
        events_dir=settings.resolve_logs_dir(),
        operator=ConsoleOperator(console),
    )
    for row in registry.compact_rows():
        console.print(row, markup=False)


@app.command()
def logs(run_id: str = typer.Argument(..., help="Run id printed at the end of `mad run`")) -> None:
    """Show the recorded steps of one run."""
    try:
        run_id = str(uuid.UUID(run_id))
    except ValueError:
        _exit_with_error(f"invalid run id: {run_id}")
        return
    settings = Settings()
    entries = read_run_log(run_log_path(settings.resolve_logs_dir(), run_id))
    if not entries:
        _exit_with_error(f"no log entries for run {run_id}")
        return

    table = Table(title=f"Run {run_id}")
    for column in ("step", "type", "confidence", "tool", "rationale"):
        table.add_column(column)
    for entry in entries:
        table.add_row(
            str(entry.get("step", "")),
            str(entry.get("output_type", "")),
            f"{float(entry.get('confidence', 0.0)):.2f}",
            str(entry.get("tool", "")),
            str(entry.get("rationale", "")),
        )
    console.print(table)

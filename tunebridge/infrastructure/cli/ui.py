"""UI helpers for CLI interaction.

Presentation only: error handling for commands and Rich renderings of job
status and maintenance results.
"""

from collections.abc import Callable
import functools
import json
from typing import Any, ParamSpec, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
import typer

from tunebridge.config import get_logger
from tunebridge.domain.entities import JobStatus, TransferStatus
from tunebridge.domain.errors import TransferError

P = ParamSpec("P")
R = TypeVar("R")

console = Console()
logger = get_logger(__name__).bind(service="cli")

_STATUS_STYLES = {
    JobStatus.QUEUED: "yellow",
    JobStatus.PROCESSING: "cyan",
    JobStatus.SUCCEEDED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELED: "dim",
}


def command_error_handler(func: Callable[P, R]) -> Callable[P, R]:
    """Decorator to standardize error handling for CLI commands.

    Transfer errors are expected outcomes (bad input, unknown job) and are shown
    without a traceback; anything else is logged with one. Both exit with code 1.
    """

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        operation = func.__name__.replace("_", " ")

        with logger.contextualize(operation=operation):
            try:
                logger.debug(f"Executing {operation}")
                return func(*args, **kwargs)

            except (typer.Exit, typer.Abort):
                raise

            except TransferError as e:
                logger.warning(f"{operation} rejected: {e}")
                console.print(f"[bold red]✗[/bold red] {e}")
                raise typer.Exit(code=1) from e

            except Exception as e:
                logger.exception(f"Error during {operation}")
                console.print(f"\n[bold red]✗ Error during {operation}:[/bold red] {e}")
                raise typer.Exit(code=1) from e

    return wrapper


def display_job_status(status: TransferStatus, output_format: str = "table") -> None:
    """Render a job status as a table or as the polling JSON payload."""
    if output_format == "json":
        console.print_json(json.dumps(status.as_dict()))
        return

    style = _STATUS_STYLES.get(status.status, "bold")
    progress = status.progress
    total = "?" if progress.total_tracks is None else str(progress.total_tracks)

    table = Table(title=f"Transfer {status.id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", f"[{style}]{status.status}[/{style}]")
    table.add_row("Phase", progress.phase or "-")
    table.add_row("Tracks", f"{progress.transferred_tracks}/{total}")
    table.add_row("Updated", status.updated_at.isoformat(timespec="seconds"))
    if status.last_error:
        table.add_row("Last error", f"[red]{status.last_error}[/red]")
    console.print(table)


def display_submitted(job_ids: list[str]) -> None:
    console.print(
        Panel(
            "\n".join(f"[cyan]{job_id}[/cyan]" for job_id in job_ids),
            title=f"[bold green]Queued {len(job_ids)} transfer(s)[/bold green]",
            border_style="green",
            expand=False,
        )
    )


def display_counts(title: str, counts: dict[str, Any]) -> None:
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    for name, value in counts.items():
        table.add_row(name.replace("_", " ").title(), str(value))
    console.print(table)

"""TuneBridge CLI - main application entry point and command definitions."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated

from attrs import define
from rich.console import Console
import typer

from tunebridge import __version__
from tunebridge.application.services import TransferJobService, TransferRequest
from tunebridge.application.use_cases import TransferPlaylistUseCase
from tunebridge.config import (
    get_logger,
    log_startup_info,
    settings,
    setup_loguru_logger,
)
from tunebridge.domain.entities import ProviderCredential
from tunebridge.infrastructure.cli.ui import (
    command_error_handler,
    display_counts,
    display_job_status,
    display_submitted,
)
from tunebridge.infrastructure.connectors import supported_providers
from tunebridge.infrastructure.persistence.database import Database
from tunebridge.infrastructure.persistence.repositories import (
    SqlCredentialStore,
    SqlTransferJobStore,
)
from tunebridge.infrastructure.scheduling import TransferScheduler

console = Console(width=80)
logger = get_logger(__name__).bind(service="cli")

app = typer.Typer(
    help=f"🎵 TuneBridge v{__version__} - Move playlists between streaming services",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
    pretty_exceptions_enable=True,
    pretty_exceptions_short=True,
    pretty_exceptions_show_locals=False,
)

credentials_app = typer.Typer(help="Manage stored provider credentials", no_args_is_help=True)
app.add_typer(
    credentials_app,
    name="credentials",
    rich_help_panel="⚙️ System",
)


@define(slots=True)
class Runtime:
    """Database-backed collaborators for one command invocation."""

    database: Database
    jobs: SqlTransferJobStore
    credentials: SqlCredentialStore


@asynccontextmanager
async def open_runtime() -> AsyncGenerator[Runtime]:
    database = Database(settings.database.url)
    await database.init_schema()
    try:
        yield Runtime(
            database=database,
            jobs=SqlTransferJobStore(database),
            credentials=SqlCredentialStore(database),
        )
    finally:
        await database.dispose()


# -----------------------------------------------------------------------------
# System commands
# -----------------------------------------------------------------------------


@app.command(name="version", rich_help_panel="⚙️ System")
def version_command() -> None:
    """Show version information."""
    console.print(
        f"[bold bright_blue]🎵 TuneBridge[/bold bright_blue] [dim]v{__version__}[/dim]"
    )


@app.command(name="init-db", rich_help_panel="⚙️ System")
@command_error_handler
def init_db_command() -> None:
    """Create the job and credential tables."""

    async def run() -> None:
        async with open_runtime():
            pass

    asyncio.run(run())
    console.print(f"[green]✓[/green] Database ready at [dim]{settings.database.url}[/dim]")


@credentials_app.command(name="set")
@command_error_handler
def set_credential(
    user: Annotated[str, typer.Option("--user", "-u", help="User id")],
    provider: Annotated[str, typer.Option("--provider", "-p", help="Provider id")],
    token: Annotated[str, typer.Option("--token", help="Provider access token")],
    refresh_token: Annotated[
        str | None, typer.Option("--refresh-token", help="Provider refresh token")
    ] = None,
    account_id: Annotated[
        str | None, typer.Option("--account-id", help="Provider account id")
    ] = None,
) -> None:
    """Store an access token for a user and provider."""
    if provider not in supported_providers():
        console.print(
            f"[red]Unknown provider '{provider}'.[/red] "
            f"Choose one of: {', '.join(supported_providers())}"
        )
        raise typer.Exit(code=1)

    async def run() -> None:
        async with open_runtime() as runtime:
            await runtime.credentials.save_credential(
                ProviderCredential(
                    user_id=user,
                    provider=provider,
                    access_token=token,
                    refresh_token=refresh_token,
                    provider_account_id=account_id,
                )
            )

    asyncio.run(run())
    console.print(f"[green]✓[/green] Stored {provider} credential for {user}")


# -----------------------------------------------------------------------------
# Transfer commands
# -----------------------------------------------------------------------------


@app.command(name="submit", rich_help_panel="🎵 Transfers")
@command_error_handler
def submit_command(
    user: Annotated[str, typer.Option("--user", "-u", help="User id")],
    source_provider: Annotated[str, typer.Option("--from", help="Source provider")],
    source_playlist: Annotated[str, typer.Option("--playlist", help="Source playlist id")],
    target_provider: Annotated[str, typer.Option("--to", help="Destination provider")],
    target_playlist: Annotated[
        str | None,
        typer.Option("--target-playlist", help="Existing destination playlist id"),
    ] = None,
    target_name: Annotated[
        str | None, typer.Option("--name", help="Name for a new destination playlist")
    ] = None,
    create_if_missing: Annotated[
        bool,
        typer.Option(
            "--create/--no-create", help="Create the destination playlist if needed"
        ),
    ] = True,
) -> None:
    """Queue a playlist transfer."""
    options: dict[str, object] = {"create_if_missing": create_if_missing}
    if target_name:
        options["target_name"] = target_name
    request = TransferRequest(
        source_playlist_id=source_playlist,
        source_provider=source_provider,
        target_provider=target_provider,
        target_playlist_id=target_playlist,
        options=options,
    )

    async def run() -> list[str]:
        async with open_runtime() as runtime:
            service = TransferJobService(runtime.jobs, supported_providers())
            return await service.submit(user, [request])

    display_submitted(asyncio.run(run()))


@app.command(name="status", rich_help_panel="🎵 Transfers")
@command_error_handler
def status_command(
    job_id: Annotated[str, typer.Argument(help="Job id returned by submit")],
    output_format: Annotated[
        str, typer.Option("--format", "-f", help="Output format (table, json)")
    ] = "table",
) -> None:
    """Show the progress of a transfer job."""

    async def run():
        async with open_runtime() as runtime:
            return await TransferJobService(runtime.jobs, supported_providers()).status(
                job_id
            )

    status = asyncio.run(run())
    if status is None:
        console.print(f"[red]No job with id {job_id}[/red]")
        raise typer.Exit(code=1)
    display_job_status(status, output_format)


@app.command(name="cancel", rich_help_panel="🎵 Transfers")
@command_error_handler
def cancel_command(
    job_id: Annotated[str, typer.Argument(help="Job id returned by submit")],
) -> None:
    """Cancel a transfer that has not started yet."""

    async def run():
        async with open_runtime() as runtime:
            return await TransferJobService(runtime.jobs, supported_providers()).cancel(
                job_id
            )

    display_job_status(asyncio.run(run()))


# -----------------------------------------------------------------------------
# Worker commands
# -----------------------------------------------------------------------------


@app.command(name="worker", rich_help_panel="⚙️ Worker")
@command_error_handler
def worker_command(
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-c", help="Jobs to run at once"),
    ] = None,
    once: Annotated[
        bool, typer.Option("--once", help="Run one dispatch round and exit")
    ] = False,
) -> None:
    """Run the transfer scheduler until interrupted."""
    config = settings.scheduler
    if concurrency is not None:
        config = config.model_copy(update={"concurrency": max(1, concurrency)})

    async def run() -> None:
        async with open_runtime() as runtime:
            use_case = TransferPlaylistUseCase(runtime.jobs, runtime.credentials)
            scheduler = TransferScheduler(runtime.jobs, use_case, config)
            if once:
                dispatched = await scheduler.run_once()
                console.print(f"Processed {dispatched} job(s)")
                return

            await scheduler.start()
            console.print(
                f"[green]Worker {scheduler.worker_id} running[/green] "
                "[dim](Ctrl+C to stop)[/dim]"
            )
            try:
                await asyncio.Event().wait()
            finally:
                await scheduler.stop()

    log_startup_info()
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("[yellow]Worker stopped[/yellow]")


@app.command(name="cleanup", rich_help_panel="⚙️ Worker")
@command_error_handler
def cleanup_command() -> None:
    """Requeue stale jobs and prune expired finished ones."""

    async def run() -> dict[str, int]:
        async with open_runtime() as runtime:
            scheduler = TransferScheduler(
                runtime.jobs, TransferPlaylistUseCase(runtime.jobs, runtime.credentials)
            )
            return await scheduler.run_maintenance()

    display_counts("Maintenance", asyncio.run(run()))


@app.callback()
def init_cli(
    ctx: typer.Context,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose output"),
    ] = False,
) -> None:
    """Initialize TuneBridge CLI."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_loguru_logger(verbose)


def main() -> int:
    """Application entry point."""
    try:
        return app() or 0
    except Exception:
        logger.exception("Unhandled exception")
        return 1

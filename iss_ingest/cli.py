"""
CLI for MOEX ISS data ingestion.
"""
import asyncio
import functools
from typing import Optional

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from iss_ingest.clients.iss import ISSClient
from iss_ingest.config import Settings, get_settings
from iss_ingest.errors import IngestError, UnitFailures
from iss_ingest.ingestion.orchestrator import IngestionOrchestrator, IngestionResult
from iss_ingest.models import EmptyDayPolicy, SinkKind, SyncMode
from iss_ingest.sinks import DatabaseSink, get_sink
from iss_ingest.utils.logging import setup_logging

console = Console()
logger = structlog.get_logger()


def async_command(f):
    """Decorator to run async functions in click commands."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def run_options(f):
    """Options shared by the ingestion commands. Unset options keep the configured value."""
    options = [
        click.option("--sink", type=click.Choice([k.value for k in SinkKind]), help="Where records are written"),
        click.option("--md-path", type=click.Path(file_okay=False), help="Root directory for the file sink"),
        click.option("--sync-mode", type=click.Choice([m.value for m in SyncMode]), help="Reference table write mode"),
        click.option("--chunk-size", type=int, help="Rows per sink write"),
        click.option("--concurrency", "max_concurrency", type=int, help="Boards/securities processed at once"),
        click.option("--venues", help="Comma separated venue allow-list"),
        click.option("--markets", help="Comma separated market allow-list"),
        click.option("--boards", help="Comma separated board allow-list"),
        click.option("--securities", help="Comma separated security allow-list"),
        click.option("--all-boards", is_flag=True, default=False, help="Include boards that are not traded"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _settings_with(overrides: dict) -> Settings:
    """Apply CLI overrides on top of the environment settings."""
    settings = get_settings()
    all_boards = overrides.pop("all_boards", False)
    update = {k: v for k, v in overrides.items() if v is not None}
    if all_boards:
        update["traded_only"] = False
    if not update:
        return settings
    # Rebuild so comma separated lists and enum strings are coerced
    return Settings(**{**settings.model_dump(), **update})


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool):
    """MOEX ISS data ingestion CLI."""
    settings = get_settings()
    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        format_type="console" if verbose else settings.log_format,
    )


async def _run(settings: Settings, kind: str) -> None:
    sink = get_sink(settings)
    async with sink, ISSClient(settings=settings) as client:
        orchestrator = IngestionOrchestrator(client, sink, settings=settings)
        runner = {
            "taxonomy": orchestrator.run_taxonomy,
            "trades": orchestrator.run_trades,
            "candles": orchestrator.run_candles,
        }[kind]
        try:
            await runner()
        except UnitFailures as e:
            _display_result(orchestrator.last_result)
            _display_failures(e)
            raise SystemExit(1)
        except IngestError as e:
            console.print(f"[red]✗ {e}[/red]")
            raise SystemExit(1)
        finally:
            logger.info("API client metrics", **client.get_metrics())

    _display_result(orchestrator.last_result)


@cli.command()
@run_options
@async_command
async def taxonomy(**overrides):
    """Synchronize venues, markets, boards and securities."""
    settings = _settings_with(overrides)
    console.print(Panel(f"Synchronizing taxonomy ({settings.sync_mode.value})", style="bold blue"))
    await _run(settings, "taxonomy")


@cli.command()
@run_options
@async_command
async def trades(**overrides):
    """Ingest every trade of the admitted boards."""
    settings = _settings_with(overrides)
    console.print(Panel(
        f"Ingesting trades\n"
        f"Boards: {','.join(settings.boards) or 'all'}\n"
        f"Sink: {settings.sink.value}",
        style="bold blue",
    ))
    await _run(settings, "trades")


@cli.command()
@run_options
@click.option("--date-start", type=click.DateTime(formats=["%Y-%m-%d"]), help="First calendar day")
@click.option("--days", type=int, help="Number of calendar days")
@click.option("--interval", type=int, help="Candle interval in minutes")
@click.option("--reverse/--forward", default=None, help="Walk backwards from --date-start")
@click.option("--empty-day-threshold", type=int, help="Empty days tolerated per security")
@click.option("--empty-day-policy", type=click.Choice([p.value for p in EmptyDayPolicy]), help="How empty days are counted")
@async_command
async def candles(date_start, **overrides):
    """Ingest candles for the admitted securities, one calendar day at a time."""
    if date_start is not None:
        overrides["date_start"] = date_start.date()
    settings = _settings_with(overrides)
    direction = "backwards" if settings.reverse else "forwards"
    console.print(Panel(
        f"Ingesting {settings.interval}m candles\n"
        f"From {settings.date_start.isoformat()}, {settings.days} days {direction}\n"
        f"Sink: {settings.sink.value}",
        style="bold blue",
    ))
    await _run(settings, "candles")


@cli.command()
@async_command
async def migrate():
    """Run database migrations."""
    console.print(Panel("Running database migrations", style="bold blue"))

    async with DatabaseSink() as sink:
        try:
            applied = await sink.run_migrations()
        except Exception as e:
            console.print(f"[red]✗ Migration failed: {e}[/red]")
            raise SystemExit(1)

    for name in applied:
        console.print(f"  [green]✓ {name}[/green]")
    console.print("[green]✓ All migrations applied successfully[/green]")


@cli.command()
@async_command
async def health():
    """Test database and API connections."""
    console.print(Panel("Testing Connections", style="bold blue"))
    healthy = True

    console.print("\n[bold]Database Connection[/bold]")
    sink = DatabaseSink()
    if await sink.health_check():
        console.print("  [green]✓ Connected to PostgreSQL[/green]")
    else:
        console.print("  [red]✗ Database connection failed[/red]")
        healthy = False
    await sink.close()

    console.print("\n[bold]API Connection[/bold]")
    try:
        async with ISSClient() as client:
            venues = await client.fetch_venues()
        console.print("  [green]✓ API accessible[/green]")
        console.print(f"  [dim]Venues: {len(venues)}[/dim]")
    except IngestError as e:
        console.print(f"  [red]✗ API connection failed: {e}[/red]")
        healthy = False

    if not healthy:
        raise SystemExit(1)


def _display_result(result: Optional[IngestionResult]):
    """Display run metrics in a table."""
    if result is None:
        return
    data = result.to_dict()
    table = Table(title=f"Ingestion Results ({result.kind.value})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    for name, value in data["metrics"].items():
        if value:
            table.add_row(name, str(value))
    table.add_row("duration_seconds", str(result.duration_seconds))
    console.print(table)
    console.print(f"\n[dim]Run: {result.run_id}[/dim]")


def _display_failures(error: UnitFailures):
    table = Table(title=f"Failed units ({len(error.failures)})")
    table.add_column("Unit", style="magenta")
    table.add_column("Error", style="red")
    for unit, exc in error.failures.items():
        table.add_row(unit, str(exc))
    console.print(table)


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()

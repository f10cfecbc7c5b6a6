"""
Command-line interface for iCloud → Exchange calendar sync.
"""

import json
import logging
import time
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from icloud_exchange_sync.config import build_config
from icloud_exchange_sync.config import load_settings
from icloud_exchange_sync.graph_client import GraphCalendarClient
from icloud_exchange_sync.icloud_client import ICloudCalendarClient
from icloud_exchange_sync.icloud_client import normalize_calendar_name
from icloud_exchange_sync.models import DEFAULT_CONFIG
from icloud_exchange_sync.models import CalendarSyncError
from icloud_exchange_sync.models import RunResult
from icloud_exchange_sync.sync import run_sync

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Mirror iCloud calendars into an Exchange calendar via Microsoft Graph.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _run_once(dry_run: bool) -> RunResult:
    try:
        return run_sync(load_settings(state.config_path), dry_run=dry_run)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None
    except Exception as e:
        console.print_exception()
        console.print(f"[bold red]Unexpected error:[/] {e}")
        raise typer.Exit(1) from e


def _error_count(result: RunResult) -> int:
    return sum(
        len(part.errors)
        for part in (result.stats, result.write_back, result.busy_blocks)
        if part is not None
    )


def _print_result(result: RunResult) -> None:
    if result.paused:
        console.print(Panel(Text("Paused (SYNC_PAUSED is set); nothing was read or written", style="yellow")))
        return
    if not result.success:
        console.print(f"[bold red]Sync failed:[/] {result.error}")
        return

    stats, write_back, blocks = result.stats, result.write_back, result.busy_blocks

    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_column(justify="right")
    results.add_column(justify="right")
    results.add_row("", "[dim]Mirror[/]", "[dim]Write-back[/]", "[dim]Busy blocks[/]")
    results.add_row("Fetched", str(stats.fetched), "", "")
    results.add_row("Created", str(stats.created), str(write_back.created), str(blocks.created))
    results.add_row("Updated", str(stats.updated), str(write_back.updated), str(blocks.updated))
    results.add_row("Deleted", str(stats.deleted), str(write_back.deleted), str(blocks.deleted))
    results.add_row("Unchanged", str(stats.skipped), "", "")
    results.add_row("Candidates", "", str(write_back.candidates), "")
    results.add_row("No target", "", str(write_back.skipped_no_target), "")

    errors = _error_count(result)
    error_val = Text(str(errors))
    if errors == 0:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val, "", "")

    title = "[bold]Results[/bold]"
    if result.dry_run:
        title += " [magenta](dry run)[/magenta]"
    console.print(Panel(results, title=title, expand=False))
    console.print(f"[dim]{result.window.start.isoformat()} → {result.window.end.isoformat()} in {result.duration_ms} ms[/dim]")

    for part in (stats, write_back, blocks):
        for message in part.errors:
            console.print(f"  [red]•[/] {message}")


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------

_DRY_RUN = Annotated[bool, typer.Option("--dry-run", "-n", help="Preview changes without applying")]


@app.command()
def sync(
    dry_run: _DRY_RUN = False,
    json_output: Annotated[bool, typer.Option("--json", help="Print the raw result payload as JSON")] = False,
) -> None:
    """Run one sync pass: write-back, busy blocks, mirror, orphan sweep."""
    result = _run_once(dry_run)
    if json_output:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result)
    if not result.success:
        raise typer.Exit(1)


@app.command()
def watch(
    interval: Annotated[
        int,
        typer.Option("--interval", "-i", min=1, help="Minutes between sync passes"),
    ] = 15,
    dry_run: _DRY_RUN = False,
) -> None:
    """Run a sync pass every INTERVAL minutes until interrupted."""
    console.print(f"Syncing every [cyan]{interval}[/] minutes; press Ctrl+C to stop.")
    try:
        while True:
            result = _run_once(dry_run)
            _print_result(result)
            time.sleep(interval * 60)
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/]")
        raise typer.Exit(130) from None


@app.command()
def calendars() -> None:
    """List the iCloud and Exchange calendars visible with the configured credentials."""
    try:
        config = build_config(load_settings(state.config_path))
        icloud = ICloudCalendarClient(config.icloud_username, config.icloud_password, config.timezone)
        graph = GraphCalendarClient(
            config.ms_tenant_id,
            config.ms_client_id,
            config.ms_client_secret,
            config.ms_user_id,
            timezone=config.timezone,
        )
        icloud.connect()
        graph.connect()
        icloud_calendars = icloud.list_calendars()
        graph_calendars = graph.list_calendars()
    except CalendarSyncError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None

    roles = {
        normalize_calendar_name(config.icloud_cal1): "CAL1",
        normalize_calendar_name(config.icloud_cal2): "CAL2",
    }
    if config.busy_target_calendar:
        roles.setdefault(normalize_calendar_name(config.busy_target_calendar), "busy target")

    table = Table(title="iCloud calendars")
    table.add_column("Name", style="bold")
    table.add_column("Role", style="cyan")
    table.add_column("URL", style="dim")
    for cal in icloud_calendars:
        name = normalize_calendar_name(cal.name)
        table.add_row(name, roles.get(name, ""), str(cal.url))
    console.print(table)

    graph_roles = {config.ms_target_calendar: "mirror"}
    if config.busy_source_calendar:
        graph_roles[config.busy_source_calendar] = "availability source"

    table = Table(title="Exchange calendars")
    table.add_column("Name", style="bold")
    table.add_column("Role", style="cyan")
    table.add_column("ID", style="dim")
    for cal in graph_calendars:
        name = (cal.get("name") or "").strip()
        table.add_row(name, graph_roles.get(name, ""), cal.get("id", ""))
    console.print(table)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()

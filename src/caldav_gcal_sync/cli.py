"""
Command-line interface for CalDAV → Google Calendar sync.
"""

import logging
import signal
from configparser import ConfigParser
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

from caldav_gcal_sync.models import DEFAULT_CONFIG
from caldav_gcal_sync.models import DEFAULT_ORIGIN_TAG
from caldav_gcal_sync.models import DEFAULT_WINDOW_DAYS
from caldav_gcal_sync.models import CalendarSyncError
from caldav_gcal_sync.models import SyncConfig
from caldav_gcal_sync.models import SyncResult
from caldav_gcal_sync.preflight import run_preflight_checks
from caldav_gcal_sync.scheduler import SyncScheduler
from caldav_gcal_sync.sync import CalendarSynchronizer

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="One-way sync from a CalDAV calendar into a Google calendar.",
)

console = Console()

CONFIG_SECTION = "caldav-gcal-sync"


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
    # googleapiclient logs every discovery/HTTP detail at INFO
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def _as_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _as_int(config_file: dict[str, str], key: str, default: int | None) -> int | None:
    raw = config_file.get(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        console.print(f"[bold red]Error:[/] [cyan]{key}[/] must be an integer, got {raw!r}")
        raise typer.Exit(1) from None


def _build_config(
    caldav_password: str | None = None,
    google_credentials: Path | None = None,
    ics_url: str | None = None,
    window_days: int | None = None,
    text_filter: str | None = None,
    dry_run: bool = False,
    yes: bool = False,
    skip_unchanged: bool = False,
) -> SyncConfig:
    config_file = _load_config_file(state.config_path)

    values = {
        "ics_url": ics_url or config_file.get("ics_url"),
        "caldav_url": config_file.get("caldav_url"),
        "caldav_username": config_file.get("caldav_username"),
        "caldav_password": caldav_password or config_file.get("caldav_password"),
        "google_credentials_file": google_credentials or config_file.get("google_credentials_file"),
        "google_calendar_id": config_file.get("google_calendar_id"),
    }
    required = ["google_credentials_file", "google_calendar_id"]
    if not values["ics_url"]:
        required = ["caldav_url", "caldav_username", "caldav_password"] + required
    missing = [key for key in required if not values[key]]
    if missing:
        console.print(
            "[bold red]Error:[/] Missing required settings: "
            + ", ".join(f"[cyan]{key}[/]" for key in missing)
            + f"\n  Set them in [cyan]{state.config_path}[/] under [bold]\\[{CONFIG_SECTION}][/]"
            " (password, credentials and feed URL may also come from CALDAV_PASSWORD /"
            " GOOGLE_APPLICATION_CREDENTIALS / CALENDAR_URL)."
        )
        raise typer.Exit(1)

    if window_days is None:
        window_days = _as_int(config_file, "window_days", DEFAULT_WINDOW_DAYS)
    if window_days < 0:
        raise typer.BadParameter("window_days must be >= 0")

    return SyncConfig(
        caldav_url=values["caldav_url"],
        caldav_username=values["caldav_username"],
        caldav_password=values["caldav_password"],
        ics_url=values["ics_url"],
        google_credentials_file=Path(values["google_credentials_file"]).expanduser(),
        google_calendar_id=values["google_calendar_id"],
        caldav_calendar=config_file.get("caldav_calendar") or None,
        google_impersonate_user=config_file.get("google_impersonate_user") or None,
        origin_tag=config_file.get("origin_tag") or DEFAULT_ORIGIN_TAG,
        window_days=window_days,
        text_filter=text_filter or config_file.get("filter") or None,
        timezone=config_file.get("timezone") or "UTC",
        dry_run=dry_run,
        skip_unchanged=skip_unchanged or _as_bool(config_file.get("skip_unchanged")),
        verbose=state.verbose,
        yes=yes,
        daily_at=config_file.get("daily_at") or "00:00",
        interval_minutes=_as_int(config_file, "interval_minutes", None),
    )


def _info_panel(cfg: SyncConfig, operation: Text) -> Panel:
    info = Text()
    info.append("  Source:      ", style="bold")
    if cfg.ics_url:
        info.append(f"{cfg.ics_url}\n")
        info.append("               iCalendar feed\n", style="dim")
    else:
        info.append(f"{cfg.caldav_url}\n")
        info.append(f"               {cfg.caldav_calendar or 'all calendars'}\n", style="dim")
    info.append("  Destination: ", style="bold")
    info.append(f"{cfg.google_calendar_id}\n")
    info.append("  Window:      ", style="bold")
    info.append(f"next {cfg.window_days} days")
    if cfg.text_filter:
        info.append("\n  Filter:      ", style="bold")
        info.append(repr(cfg.text_filter), style="cyan")
    info.append("\n  Operation:   ")
    info.append_text(operation)
    if cfg.dry_run:
        info.append("\n  Mode:        ")
        info.append("DRY RUN", style="bold magenta")
    return Panel(info, title="[bold]CalDAV → Google Calendar Sync[/bold]")


def _print_results(result: SyncResult) -> None:
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Processed", str(result.processed))
    results.add_row("Created", str(result.created))
    results.add_row("Updated", str(result.updated))
    results.add_row("Deleted", str(result.deleted))
    if result.unchanged:
        results.add_row("Unchanged", str(result.unchanged))
    if result.duplicates:
        results.add_row("Duplicate UIDs", Text(str(result.duplicates), style="yellow"))
    if result.aborted:
        results.add_row("Deferred", Text(str(result.deferred), style="yellow"))
    error_val = Text(str(len(result.errors)))
    if not result.errors:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)

    title = "[bold]Results (dry run)[/bold]" if result.dry_run else "[bold]Results[/bold]"
    console.print(Panel(results, title=title, expand=False))

    for message in result.errors:
        console.print(f"  [red]✗[/] {message}")


def _run_sync(cfg: SyncConfig) -> None:
    """Core sync runner: check, display panel, confirm, run, show results."""
    synchronizer = CalendarSynchronizer(cfg)

    try:
        if not run_preflight_checks(synchronizer, console):
            raise typer.Exit(1)

        console.print(_info_panel(cfg, Text("SYNC", style="bold green")))

        if not cfg.yes and not cfg.dry_run:
            typer.confirm("Proceed?", abort=True)

        result = synchronizer.run(cfg.window_days, cfg.dry_run)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None
    finally:
        synchronizer.shutdown()

    _print_results(result)

    if not result.ok:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Shared options
# ---------------------------------------------------------------------------

_PASSWORD = Annotated[
    str | None,
    typer.Option(
        "--caldav-password",
        envvar="CALDAV_PASSWORD",
        help="CalDAV password (overrides config)",
        show_default=False,
    ),
]
_CREDENTIALS = Annotated[
    Path | None,
    typer.Option(
        "--google-credentials",
        envvar="GOOGLE_APPLICATION_CREDENTIALS",
        help="Service account JSON key file (overrides config)",
    ),
]
_ICS_URL = Annotated[
    str | None,
    typer.Option(
        "--ics-url",
        envvar="CALENDAR_URL",
        help="Read an iCalendar feed (URL or file) instead of CalDAV (overrides config)",
    ),
]
_WINDOW = Annotated[
    int | None,
    typer.Option("--window-days", "-d", min=0, help="Days ahead to sync (overrides config)"),
]
_FILTER = Annotated[
    str | None,
    typer.Option(
        "--filter",
        "-f",
        help="Only sync events whose summary, description or location contains this text",
    ),
]
_DRY_RUN = Annotated[bool, typer.Option("--dry-run", "-n", help="Preview changes without applying")]
_YES = Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")]
_SKIP_UNCHANGED = Annotated[
    bool,
    typer.Option(
        "--skip-unchanged",
        help="Skip updates for events whose content hash matches the synced copy",
    ),
]


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


@app.command()
def sync(
    caldav_password: _PASSWORD = None,
    google_credentials: _CREDENTIALS = None,
    ics_url: _ICS_URL = None,
    window_days: _WINDOW = None,
    text_filter: _FILTER = None,
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
    skip_unchanged: _SKIP_UNCHANGED = False,
) -> None:
    """Create, update and delete Google events so they mirror the source calendar."""
    _run_sync(
        _build_config(
            caldav_password,
            google_credentials,
            ics_url=ics_url,
            window_days=window_days,
            text_filter=text_filter,
            dry_run=dry_run,
            yes=yes,
            skip_unchanged=skip_unchanged,
        )
    )


@app.command()
def preview(
    caldav_password: _PASSWORD = None,
    google_credentials: _CREDENTIALS = None,
    ics_url: _ICS_URL = None,
    window_days: _WINDOW = None,
    text_filter: _FILTER = None,
) -> None:
    """Show how many events each side holds, without changing anything."""
    cfg = _build_config(
        caldav_password,
        google_credentials,
        ics_url=ics_url,
        window_days=window_days,
        text_filter=text_filter,
    )
    synchronizer = CalendarSynchronizer(cfg)
    try:
        summary = synchronizer.preview()
    except CalendarSyncError as e:
        console.print(f"[bold red]Preview failed:[/] {e}")
        raise typer.Exit(1) from None
    finally:
        synchronizer.shutdown()

    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(justify="right")
    table.add_row("Source events", str(summary.source_events))
    table.add_row("Synced events", str(summary.linked_events))
    table.add_row("Window", summary.window.describe())
    console.print(Panel(table, title="[bold]Sync preview[/bold]", expand=False))


@app.command()
def check(
    caldav_password: _PASSWORD = None,
    google_credentials: _CREDENTIALS = None,
    ics_url: _ICS_URL = None,
) -> None:
    """Test both calendar connections."""
    synchronizer = CalendarSynchronizer(
        _build_config(caldav_password, google_credentials, ics_url=ics_url)
    )
    try:
        ok = run_preflight_checks(synchronizer, console)
    finally:
        synchronizer.shutdown()
    if not ok:
        raise typer.Exit(1)
    console.print("[green]✓ Calendar source and Google calendar are reachable[/]")


@app.command()
def links(
    caldav_password: _PASSWORD = None,
    google_credentials: _CREDENTIALS = None,
    ics_url: _ICS_URL = None,
) -> None:
    """List the Google events this tool manages."""
    synchronizer = CalendarSynchronizer(
        _build_config(caldav_password, google_credentials, ics_url=ics_url)
    )
    try:
        found = synchronizer.list_links()
        duplicates = synchronizer.destination.duplicate_links
    except CalendarSyncError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    finally:
        synchronizer.shutdown()

    if not found:
        console.print("[yellow]No synced events found; run[/] [cyan]caldav-gcal-sync sync[/]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Source UID", overflow="fold")
    table.add_column("Google event ID", style="dim")
    table.add_column("Last synced")
    for link in found.values():
        table.add_row(link.source_uid, link.destination_id, link.last_synced or "—")
    for link in duplicates:
        table.add_row(
            Text(link.source_uid, style="yellow"),
            Text(f"{link.destination_id} (duplicate)", style="yellow"),
            link.last_synced or "—",
        )
    console.print(table)
    console.print(f"\n[bold]{len(found)} synced event(s)[/bold]")
    if duplicates:
        console.print(
            f"[yellow]{len(duplicates)} duplicate event(s) are ignored by sync; "
            "remove them with[/] [cyan]caldav-gcal-sync clear[/]"
        )


@app.command()
def calendars(
    caldav_password: _PASSWORD = None,
    google_credentials: _CREDENTIALS = None,
    ics_url: _ICS_URL = None,
) -> None:
    """List the source calendars that would be read."""
    synchronizer = CalendarSynchronizer(
        _build_config(caldav_password, google_credentials, ics_url=ics_url)
    )
    try:
        synchronizer.connect()
        entries = synchronizer.source.list_calendars()
    except CalendarSyncError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    finally:
        synchronizer.shutdown()

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Display Name", style="bold")
    table.add_column("URL", style="dim", overflow="fold")
    for name, url in entries:
        table.add_row(name, url)
    console.print(table)


@app.command()
def clear(
    caldav_password: _PASSWORD = None,
    google_credentials: _CREDENTIALS = None,
    ics_url: _ICS_URL = None,
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
) -> None:
    """Remove every Google event created by this tool, without re-syncing."""
    cfg = _build_config(
        caldav_password, google_credentials, ics_url=ics_url, dry_run=dry_run, yes=yes
    )
    synchronizer = CalendarSynchronizer(cfg)

    try:
        if not run_preflight_checks(synchronizer, console):
            raise typer.Exit(1)

        console.print(_info_panel(cfg, Text("CLEAR (remove all synced events)", style="bold red")))
        if not cfg.yes and not cfg.dry_run:
            typer.confirm("Proceed?", abort=True)

        result = synchronizer.clear(cfg.dry_run)
    except CalendarSyncError as e:
        console.print(f"[bold red]Clear failed:[/] {e}")
        raise typer.Exit(1) from None
    finally:
        synchronizer.shutdown()

    _print_results(result)
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def daemon(
    caldav_password: _PASSWORD = None,
    google_credentials: _CREDENTIALS = None,
    ics_url: _ICS_URL = None,
    window_days: _WINDOW = None,
    text_filter: _FILTER = None,
    at: Annotated[
        str | None,
        typer.Option("--at", help="Daily run time HH:MM (overrides config, default 00:00)"),
    ] = None,
    every: Annotated[
        int | None,
        typer.Option("--every", min=1, help="Run every N minutes instead of daily"),
    ] = None,
    skip_unchanged: _SKIP_UNCHANGED = False,
) -> None:
    """Run the sync on a schedule until interrupted."""
    cfg = _build_config(
        caldav_password,
        google_credentials,
        ics_url=ics_url,
        window_days=window_days,
        text_filter=text_filter,
        yes=True,
        skip_unchanged=skip_unchanged,
    )
    synchronizer = CalendarSynchronizer(cfg)
    if not run_preflight_checks(synchronizer, console):
        synchronizer.shutdown()
        raise typer.Exit(1)

    scheduler = SyncScheduler(
        synchronizer,
        daily_at=at or cfg.daily_at,
        interval_minutes=every or cfg.interval_minutes,
    )

    def _handle_signal(signum, frame):
        console.print(f"[yellow]Received {signal.Signals(signum).name}, shutting down...[/]")
        scheduler.shutdown()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    console.print(_info_panel(cfg, Text("DAEMON", style="bold green")))
    scheduler.start()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()

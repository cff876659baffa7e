"""
Command-line interface for Outline Calendar Sync.
"""

import asyncio
import logging
import os
from configparser import ConfigParser
from configparser import Error as ConfigParserError
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from outline_calendar_sync.dates import sync_window
from outline_calendar_sync.dates import utcnow
from outline_calendar_sync.db import MetadataStore
from outline_calendar_sync.db import query_status
from outline_calendar_sync.models import DEFAULT_CONFIG
from outline_calendar_sync.models import DEFAULT_OUTLINE
from outline_calendar_sync.models import DEFAULT_STATE_DB
from outline_calendar_sync.models import EVENTS_NAMESPACE
from outline_calendar_sync.models import TASKS_NAMESPACE
from outline_calendar_sync.models import TOKEN_ENV_VAR
from outline_calendar_sync.models import AuthError
from outline_calendar_sync.models import CalendarConfig
from outline_calendar_sync.models import CalendarSyncError
from outline_calendar_sync.models import ConfigError
from outline_calendar_sync.models import ConflictCandidate
from outline_calendar_sync.models import SyncConfig
from outline_calendar_sync.outline_store import OutlineStore
from outline_calendar_sync.sync import CalendarSynchronizer
from outline_calendar_sync.sync.orchestrator import CONFLICT_CHOICES

CONFIG_SECTION = "outline-calendar-sync"
CALENDAR_SECTION_PREFIX = "calendar:"

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Two-way sync between a local outline and remote calendars and task lists.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    state_db: Path = field(default_factory=lambda: DEFAULT_STATE_DB)
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    state_db: Annotated[
        Path,
        typer.Option("--state-db", help=f"State DB path (default: {DEFAULT_STATE_DB})"),
    ] = DEFAULT_STATE_DB,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.state_db = state_db
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


def _load_config_file(config_path: Path):
    """Return (settings section, calendars) from the INI config file.

    A missing file gives an empty section and no calendars.
    """
    parser = ConfigParser()
    if config_path.exists():
        try:
            parser.read(config_path)
        except ConfigParserError as e:
            raise ConfigError(f"Cannot parse {config_path}: {e}") from e
    if CONFIG_SECTION not in parser:
        parser.read_dict({CONFIG_SECTION: {}})

    calendars: list[CalendarConfig] = []
    for name in parser.sections():
        if not name.startswith(CALENDAR_SECTION_PREFIX):
            continue
        section = parser[name]
        calendar_id = name[len(CALENDAR_SECTION_PREFIX) :].strip()
        if not calendar_id:
            raise ConfigError(f"[{name}]: calendar id missing from section name")
        try:
            enabled = section.getboolean("enabled", fallback=True)
        except ValueError as e:
            raise ConfigError(f"[{name}] enabled: {e}") from e
        tags = [t.strip() for t in section.get("trigger_tags", "").split(",") if t.strip()]
        calendars.append(
            CalendarConfig(
                id=calendar_id,
                name=section.get("name", ""),
                kind=section.get("kind", "events"),
                enabled=enabled,
                trigger_tags=tags,
            )
        )
    return parser[CONFIG_SECTION], calendars


def _build_config(
    dry_run: bool = False,
    yes: bool = False,
    delete_local: bool = False,
) -> SyncConfig:
    try:
        settings, calendars = _load_config_file(state.config_path)
        return SyncConfig(
            state_db_path=state.state_db,
            outline_path=Path(settings.get("outline_path", str(DEFAULT_OUTLINE))).expanduser(),
            domain=settings.get("domain", "default"),
            access_token=os.environ.get(TOKEN_ENV_VAR) or settings.get("access_token"),
            calendars=calendars,
            request_timeout=settings.getfloat("request_timeout", fallback=30.0),
            window_days_back=settings.getint("window_days_back", fallback=30),
            window_days_forward=settings.getint("window_days_forward", fallback=90),
            cleanup_days=settings.getint("cleanup_days", fallback=7),
            auto_dedup=settings.getboolean("auto_dedup", fallback=True),
            end_attribute=settings.get("end_attribute", "until"),
            timezone=settings.get("timezone") or None,
            dry_run=dry_run,
            delete_local=delete_local,
            verbose=state.verbose,
            yes=yes,
        )
    except ValueError as e:
        console.print(f"[bold red]Error:[/] Invalid value in {state.config_path}: {e}")
        raise typer.Exit(1) from None
    except ConfigError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None


def _select_calendars(cfg: SyncConfig, calendar_ids: list[str] | None) -> list[CalendarConfig]:
    if not calendar_ids:
        return [c for c in cfg.calendars if c.enabled]
    by_id = {c.id: c for c in cfg.calendars}
    unknown = [c for c in calendar_ids if c not in by_id]
    if unknown:
        console.print(
            f"[bold red]Error:[/] Calendar(s) not configured: [cyan]{', '.join(unknown)}[/]"
        )
        raise typer.Exit(1)
    return [by_id[c] for c in calendar_ids]


def _require_preflight(cfg: SyncConfig) -> None:
    from outline_calendar_sync.preflight import run_preflight_checks

    if not run_preflight_checks(cfg, console):
        raise typer.Exit(1)


def _with_orchestrator(cfg: SyncConfig, action):
    """Run `await action(orchestrator)` inside a session and return its result."""

    async def _go():
        async with CalendarSynchronizer(cfg).session() as orchestrator:
            return await action(orchestrator)

    try:
        return asyncio.run(_go())
    except AuthError as e:
        console.print(f"[bold red]Authentication failed:[/] {e}")
        console.print(f"  [yellow]→ Refresh the access token ({TOKEN_ENV_VAR})[/]")
        raise typer.Exit(1) from None
    except CalendarSyncError as e:
        console.print(f"[bold red]Failed:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None
    except Exception as e:
        console.print_exception()
        console.print(f"[bold red]Unexpected error:[/] {e}")
        raise typer.Exit(1) from e


def _info_panel(cfg: SyncConfig, calendars: list[CalendarConfig], operation: Text) -> None:
    info = Text()
    info.append("  Outline:   ", style="bold")
    info.append(f"{cfg.outline_path}\n")
    for calendar in calendars:
        info.append("  Calendar:  ", style="bold")
        info.append(f"{calendar.name or calendar.id} ")
        info.append(f"({calendar.kind}, #{calendar.tag})\n", style="dim")
    info.append("  Operation: ")
    info.append_text(operation)
    if cfg.delete_local:
        info.append("\n  Deletes:   ")
        info.append("applied to the outline", style="yellow")
    if cfg.dry_run:
        info.append("\n  Mode:      ")
        info.append("DRY RUN", style="bold magenta")
    console.print(Panel(info, title="[bold]Outline Calendar Sync[/bold]"))


def _count_cell(value: int, bad: bool = False) -> Text:
    cell = Text(str(value))
    if bad and value:
        cell.stylize("bold red")
    return cell


def _print_conflict(candidate: ConflictCandidate) -> None:
    remote = candidate.remote
    body = Text()
    body.append("  Local:   ", style="bold")
    body.append(f"{candidate.local_content or '(missing)'}\n")
    body.append("  Remote:  ", style="bold")
    body.append(remote.summary or "(No title)")
    if remote.start is not None:
        body.append(f"  {remote.start.isoformat()}", style="dim")
    console.print(
        Panel(body, title=f"[bold yellow]Conflict[/] {candidate.record.local_id}", expand=False)
    )


async def _resolve_interactively(orchestrator, results) -> int:
    """Ask how to settle each conflict. Returns the number resolved."""
    resolved = 0
    for result in results:
        calendar = orchestrator.calendar_by_id(result.calendar_id)
        for candidate in result.stats.conflicts:
            _print_conflict(candidate)
            choice = ""
            while choice not in (*CONFLICT_CHOICES, "skip"):
                choice = typer.prompt("Keep which version? [remote/local/both/skip]", default="skip")
                choice = choice.strip().lower()
            if choice == "skip":
                continue
            try:
                await orchestrator.resolve_conflict(candidate, choice, calendar)
                resolved += 1
            except AuthError:
                raise
            except CalendarSyncError as e:
                console.print(f"[bold red]Could not resolve {candidate.record.local_id}:[/] {e}")
                result.stats.record_error(str(e))
    return resolved


# ---------------------------------------------------------------------------
# Shared option aliases
# ---------------------------------------------------------------------------

_CALENDAR_OPT = Annotated[
    list[str] | None,
    typer.Option("--calendar", "-k", help="Calendar ID to act on (repeatable; default: all enabled)"),
]
_DRY_RUN = Annotated[bool, typer.Option("--dry-run", "-n", help="Preview changes without applying")]
_YES = Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")]


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    calendar: _CALENDAR_OPT = None,
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
    delete_local: Annotated[
        bool,
        typer.Option(
            "--delete-local",
            help="Delete outline records whose remote counterpart was cancelled "
            "(listed but kept by default)",
        ),
    ] = False,
    no_resolve: Annotated[
        bool,
        typer.Option("--no-resolve", help="Report conflicts without prompting for resolution"),
    ] = False,
) -> None:
    """Pull remote changes into the outline and push local edits back.

    Conflicting edits are never settled automatically: each one is shown and
    you choose [cyan]remote[/], [cyan]local[/], [cyan]both[/] or [cyan]skip[/].
    """
    cfg = _build_config(dry_run=dry_run, yes=yes, delete_local=delete_local)
    _require_preflight(cfg)
    calendars = _select_calendars(cfg, calendar)

    _info_panel(cfg, calendars, Text("SYNC", style="bold green"))
    if not cfg.yes and not cfg.dry_run:
        typer.confirm("Proceed?", abort=True)

    async def _run(orchestrator):
        results = await orchestrator.full_sync(calendars)
        resolved = 0
        if not no_resolve and not cfg.dry_run and any(r.stats.conflicts for r in results):
            resolved = await _resolve_interactively(orchestrator, results)
        return results, resolved

    results, resolved = _with_orchestrator(cfg, _run)

    # -- Results table -------------------------------------------------------
    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Calendar", style="bold")
    for label in ("Imported", "Updated", "Recovered", "Deleted", "Conflicts", "Skipped", "Errors"):
        table.add_column(label, justify="right")
    failed = False
    for result in results:
        stats = result.stats
        if result.error:
            failed = True
            table.add_row(result.calendar_id, Text(result.error, style="bold red"))
            continue
        failed = failed or bool(stats.errors)
        table.add_row(
            result.calendar_id,
            str(stats.imported),
            str(stats.updated),
            str(stats.recovered),
            str(stats.deleted_local),
            _count_cell(len(stats.conflicts)),
            str(stats.skipped),
            _count_cell(stats.errors, bad=True),
        )
    console.print(Panel(table, title="[bold]Results[/bold]", expand=False))

    if resolved:
        console.print(f"[green]Resolved {resolved} conflict(s).[/]")
    pending = [i for r in results for i in r.stats.pending_local_deletes]
    if pending:
        console.print(
            f"[yellow]{len(pending)} outline record(s) belong to cancelled remote records:[/] "
            f"{', '.join(pending)}\n  → re-run with [cyan]--delete-local[/] to remove them"
        )
    for result in results:
        for message in result.stats.error_messages:
            console.print(f"  [red]✗[/] {result.calendar_id}: {message}")

    if failed:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: export
# ---------------------------------------------------------------------------


@app.command()
def export(
    calendar_id: Annotated[str, typer.Argument(help="Calendar to export to")],
    local_ids: Annotated[
        list[str] | None,
        typer.Argument(help="Outline record ids (default: every record carrying a trigger tag)"),
    ] = None,
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
) -> None:
    """Create or update remote records from outline records.

    Lost links are recovered first, and a record matching an existing unlinked
    remote record is linked to it rather than exported twice.
    """
    cfg = _build_config(dry_run=dry_run, yes=yes)
    _require_preflight(cfg)
    (calendar,) = _select_calendars(cfg, [calendar_id])

    _info_panel(cfg, [calendar], Text("EXPORT", style="bold green"))
    if not cfg.yes and not cfg.dry_run:
        typer.confirm("Proceed?", abort=True)

    stats = _with_orchestrator(cfg, lambda o: o.export_records(calendar, local_ids or None))

    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Exported", str(stats.exported))
    results.add_row("Linked", str(stats.linked))
    results.add_row("Updated", str(stats.updated))
    results.add_row("Recovered", str(stats.recovered))
    results.add_row("Skipped", str(stats.skipped))
    error_val = Text(str(stats.errors))
    if stats.errors == 0:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)
    console.print(Panel(results, title="[bold]Results[/bold]", expand=False))

    if stats.errors:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommands: dedup / recover
# ---------------------------------------------------------------------------


@app.command()
def dedup(
    calendar: _CALENDAR_OPT = None,
    dry_run: _DRY_RUN = False,
) -> None:
    """Remove duplicate remote records (ignores the 24h automatic cooldown)."""
    cfg = _build_config(dry_run=dry_run)
    _require_preflight(cfg)
    calendars = _select_calendars(cfg, calendar)

    async def _run(orchestrator):
        return [(c, await orchestrator.run_deduplication(c, manual=True)) for c in calendars]

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Calendar", style="bold")
    for label in ("Scanned", "Duplicates", "Removed", "Failed"):
        table.add_column(label, justify="right")
    failed = 0
    for calendar_cfg, stats in _with_orchestrator(cfg, _run):
        failed += stats.failed
        removed = f"{stats.removed}" if not cfg.dry_run else f"would remove {stats.duplicates_found}"
        table.add_row(
            calendar_cfg.id,
            str(stats.scanned),
            str(stats.duplicates_found),
            removed,
            _count_cell(stats.failed, bad=True),
        )
    console.print(Panel(table, title="[bold]Deduplication[/bold]", expand=False))
    if failed:
        raise typer.Exit(1)


@app.command()
def recover(calendar: _CALENDAR_OPT = None) -> None:
    """Rebuild lost links from the back-links embedded in remote descriptions."""
    cfg = _build_config()
    _require_preflight(cfg)
    calendars = _select_calendars(cfg, calendar)

    async def _run(orchestrator):
        return [(c, await orchestrator.recover(c)) for c in calendars]

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Calendar", style="bold")
    for label in ("Scanned", "Recovered", "Failed", "Skipped"):
        table.add_column(label, justify="right")
    for calendar_cfg, stats in _with_orchestrator(cfg, _run):
        table.add_row(
            calendar_cfg.id,
            str(stats.scanned),
            str(stats.recovered),
            _count_cell(stats.failed, bad=True),
            str(stats.skipped),
        )
    console.print(Panel(table, title="[bold]Recovery[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommands: cleanup / unlink
# ---------------------------------------------------------------------------


@app.command()
def cleanup(
    days: Annotated[
        int | None,
        typer.Option("--days", help="Drop links that ended more than N days ago (default: config)"),
    ] = None,
    all_past: Annotated[
        bool,
        typer.Option("--all", help="Drop every link that ended before today, open tasks included"),
    ] = False,
    yes: _YES = False,
) -> None:
    """Forget links to records that have ended. Remote and outline records are untouched."""
    cfg = _build_config(yes=yes)
    if all_past and days is not None:
        raise typer.BadParameter("--days and --all are mutually exclusive")
    days = cfg.cleanup_days if days is None else days

    if all_past and not cfg.yes:
        typer.confirm("Drop every past link, including open tasks?", abort=True)

    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(justify="right")
    for namespace in (EVENTS_NAMESPACE, TASKS_NAMESPACE):
        with MetadataStore(cfg.state_db_path, namespace) as store:
            before = store.stats()
            result = store.cleanup_all() if all_past else store.cleanup_older_than(days)
        line = f"{result['removed']} of {before['count']} removed"
        if result.get("retained"):
            line += f", {result['retained']} open task(s) kept"
        table.add_row(namespace.capitalize(), line)
    title = "Cleanup (all past)" if all_past else f"Cleanup (older than {days}d)"
    console.print(Panel(table, title=f"[bold]{title}[/bold]", expand=False))


@app.command()
def unlink(
    local_id: Annotated[str, typer.Argument(help="Outline record id")],
    delete_remote: Annotated[
        bool, typer.Option("--delete-remote", help="Also delete the linked remote record")
    ] = False,
    yes: _YES = False,
) -> None:
    """Forget the link of one outline record."""
    cfg = _build_config(yes=yes)

    if delete_remote:
        _require_preflight(cfg)
        if not cfg.yes:
            typer.confirm(f"Delete the remote record linked to {local_id}?", abort=True)

        async def _run(orchestrator):
            for calendar in cfg.calendars:
                if await orchestrator.delete_remote(local_id, calendar):
                    return True
            return False

        removed = _with_orchestrator(cfg, _run)
    else:
        removed = False
        for namespace in (EVENTS_NAMESPACE, TASKS_NAMESPACE):
            with MetadataStore(cfg.state_db_path, namespace) as store:
                removed = store.delete(local_id) or removed

    if not removed:
        console.print(f"[yellow]No link found for[/] [cyan]{local_id}[/]")
        raise typer.Exit(1)
    console.print(f"[green]Unlinked[/] [cyan]{local_id}[/]")


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status() -> None:
    """Show sync configuration and state database summary."""
    config_exists = state.config_path.exists()
    db_exists = state.state_db.exists()

    cfg_info = Text()
    cfg_info.append("  Config:   ", style="bold")
    cfg_info.append(str(state.config_path) + " ")
    cfg_info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "red"
    )
    cfg_info.append("\n  State DB: ", style="bold")
    cfg_info.append(str(state.state_db) + " ")
    cfg_info.append("✓" if db_exists else "(not found)", style="green" if db_exists else "yellow")

    cfg = _build_config()
    cfg_info.append("\n  Outline:  ", style="bold")
    cfg_info.append(str(cfg.outline_path))
    cfg_info.append("\n  Token:    ", style="bold")
    cfg_info.append(
        "configured" if cfg.access_token else "missing",
        style="green" if cfg.access_token else "red",
    )
    for calendar in cfg.calendars:
        cfg_info.append("\n  Calendar: ", style="bold")
        cfg_info.append(f"{calendar.name or calendar.id} ({calendar.kind})")
        if not calendar.enabled:
            cfg_info.append(" disabled", style="yellow")
        cfg_info.append(f"\n            {calendar.id}", style="dim")

    console.print(Panel(cfg_info, title="[bold]Outline Calendar Sync — Status[/bold]"))

    rows = query_status(state.state_db)
    if not rows:
        if not db_exists:
            console.print(
                "[yellow]No state database yet — run[/] "
                "[cyan]outline-calendar-sync sync[/] "
                "[yellow]to create it.[/]"
            )
        else:
            console.print("[yellow]State database is empty — no syncs recorded yet.[/]")
        return

    names = {c.id: c.name or c.id for c in cfg.calendars}
    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Calendar")
    table.add_column("Namespace")
    table.add_column("Linked", justify="right")
    table.add_column("Open tasks", justify="right")
    table.add_column("Last sync")
    for row in rows:
        last = row["last_sync_at"]
        last_str = datetime.fromisoformat(last).strftime("%Y-%m-%d %H:%M:%S") if last else "—"
        table.add_row(
            names.get(row["remote_calendar_id"], row["remote_calendar_id"]),
            row["namespace"],
            str(row["count"]),
            str(row["open_count"] or 0),
            last_str,
        )
    console.print(Panel(table, title="[bold]Links[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: calendars
# ---------------------------------------------------------------------------


@app.command()
def calendars() -> None:
    """List the calendars configured in the config file."""
    from outline_calendar_sync.debug import list_calendars as _list_calendars

    cfg = _build_config()
    if not cfg.calendars:
        console.print(f"[yellow]No [calendar:<id>] sections in[/] {state.config_path}")
        return
    with (
        MetadataStore(cfg.state_db_path, EVENTS_NAMESPACE) as events,
        MetadataStore(cfg.state_db_path, TASKS_NAMESPACE) as tasks,
    ):
        _list_calendars(cfg, {EVENTS_NAMESPACE: events, TASKS_NAMESPACE: tasks}, console)


# ---------------------------------------------------------------------------
# Subcommand: inspect
# ---------------------------------------------------------------------------


@app.command()
def inspect(
    local_id: Annotated[str, typer.Argument(help="Outline record id to inspect")],
    remote: Annotated[
        bool, typer.Option("--remote", help="Also fetch and show the linked remote payload")
    ] = False,
) -> None:
    """Inspect / debug one outline record and its links."""
    from outline_calendar_sync.debug import dump_record

    cfg = _build_config()
    links = []
    for namespace in (EVENTS_NAMESPACE, TASKS_NAMESPACE):
        with MetadataStore(cfg.state_db_path, namespace) as store:
            record = store.get(local_id)
        if record is not None:
            links.append((namespace, record))

    raw = None
    if remote and links:
        record = links[0][1]

        async def _fetch(orchestrator):
            calendar = orchestrator.calendar_by_id(record.remote_calendar_id)
            if calendar is None:
                return None
            payloads = await orchestrator.remote_for(calendar).list_events(
                calendar.id, *_window(cfg)
            )
            return next((p for p in payloads if p.get("id") == record.remote_id), None)

        raw = _with_orchestrator(cfg, _fetch)
        if raw is None:
            console.print(f"[yellow]Remote record {record.remote_id} not found in the sync window[/]")

    with OutlineStore(cfg.outline_path) as local:
        dump_record(local_id, local, links, console, raw=raw)


def _window(cfg: SyncConfig):
    return sync_window(utcnow(), cfg.window_days_back, cfg.window_days_forward)


# ---------------------------------------------------------------------------
# Subcommand: verify
# ---------------------------------------------------------------------------


@app.command()
def verify(calendar: _CALENDAR_OPT = None) -> None:
    """Check every link against the remote calendar without changing anything.

    Reports pending pulls and pushes, conflicts, orphaned links and remote
    records nothing links to.

    Exits with code 1 if any issues are found.
    """
    from outline_calendar_sync.verify import run_verify

    cfg = _build_config()
    _require_preflight(cfg)
    calendars = _select_calendars(cfg, calendar)

    async def _run(orchestrator):
        results = [await run_verify(orchestrator, c, console) for c in calendars]
        return all(results)

    if not _with_orchestrator(cfg, _run):
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()

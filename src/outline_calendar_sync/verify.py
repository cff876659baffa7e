"""
Sync audit: classify every SyncRecord of a calendar against a fresh remote listing.
"""

import logging
from dataclasses import dataclass
from dataclasses import field
from datetime import date

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from outline_calendar_sync.dates import sync_window
from outline_calendar_sync.dates import utcnow
from outline_calendar_sync.db import MetadataStore
from outline_calendar_sync.models import CalendarConfig
from outline_calendar_sync.models import Direction
from outline_calendar_sync.models import RemoteRecord
from outline_calendar_sync.models import SyncRecord
from outline_calendar_sync.models import SyncStatus
from outline_calendar_sync.sync.recovery import extract_back_link
from outline_calendar_sync.sync.status import classify
from outline_calendar_sync.sync.utils import record_start_date

_logger = logging.getLogger(__name__)


@dataclass
class VerifyReport:
    calendar_id: str
    ok: int = 0
    # (record, remote) pairs
    pending_pull: list[tuple[SyncRecord, RemoteRecord]] = field(default_factory=list)
    pending_push: list[tuple[SyncRecord, RemoteRecord]] = field(default_factory=list)
    conflicts: list[tuple[SyncRecord, RemoteRecord]] = field(default_factory=list)
    # SyncRecord whose remote record is absent from the listing or cancelled
    orphaned_db: list[SyncRecord] = field(default_factory=list)
    # SyncRecord whose local record no longer exists
    missing_local: list[SyncRecord] = field(default_factory=list)
    # Live remote records nothing links to, with the back-linked local id if any
    unlinked: list[tuple[RemoteRecord, str | None]] = field(default_factory=list)

    @property
    def issue_count(self) -> int:
        return (
            len(self.pending_pull)
            + len(self.pending_push)
            + len(self.conflicts)
            + len(self.orphaned_db)
            + len(self.missing_local)
            + len(self.unlinked)
        )


def build_report(
    store: MetadataStore,
    local_store,
    remote_records: list[RemoteRecord],
    calendar: CalendarConfig,
    window_start: date | None = None,
    domain: str | None = None,
) -> VerifyReport:
    """Compare the stored links of one calendar with its current remote records.

    Read-only: nothing is written to either side.  Links whose remote end date
    precedes `window_start` are outside the listing and are not reported.
    """
    report = VerifyReport(calendar.id)
    remote_by_id = {r.id: r for r in remote_records}

    for record in store.records_for_calendar(calendar.id):
        if window_start and record.remote_end_date and record.remote_end_date < window_start:
            continue
        if not local_store.record_exists(record.local_id):
            report.missing_local.append(record)
            continue
        remote = remote_by_id.get(record.remote_id)
        if remote is None or remote.is_cancelled:
            report.orphaned_db.append(record)
            continue

        observed = local_store.get_updated_at(record.local_id)
        if observed and (record.local_updated_at is None or observed > record.local_updated_at):
            record.local_updated_at = observed
        verdict = classify(record, remote)
        if verdict.status is SyncStatus.CONFLICT:
            report.conflicts.append((record, remote))
        elif verdict.direction is Direction.REMOTE_TO_LOCAL:
            report.pending_pull.append((record, remote))
        elif verdict.direction is Direction.LOCAL_TO_REMOTE:
            report.pending_push.append((record, remote))
        else:
            report.ok += 1

    for remote in remote_records:
        if remote.is_cancelled or store.find_by_remote_id(remote.id) is not None:
            continue
        report.unlinked.append((remote, extract_back_link(remote.description, domain)))

    _logger.debug(
        f"Verify {calendar.id}: {report.ok} ok, {report.issue_count} issue(s) "
        f"over {len(remote_records)} remote record(s)"
    )
    return report


def _short_id(value: str, max_len: int = 40) -> str:
    if len(value) <= max_len:
        return value
    return value[:max_len] + "…"


def _remote_date(remote: RemoteRecord) -> str:
    day = record_start_date(remote)
    return day.isoformat() if day else "?"


def _pair_table(title: str, pairs: list[tuple[SyncRecord, RemoteRecord]]) -> Table:
    t = Table(title=title, show_header=True, header_style="bold")
    t.add_column("Summary", overflow="fold", min_width=30)
    t.add_column("Date", width=12)
    t.add_column("Local id", width=10)
    t.add_column("Remote id", overflow="fold")
    for record, remote in pairs:
        t.add_row(
            remote.summary or "(No title)",
            _remote_date(remote),
            record.local_id,
            _short_id(record.remote_id),
        )
    return t


def render_report(report: VerifyReport, calendar: CalendarConfig, console: Console) -> bool:
    """Print the report; return True when no issues were found."""
    info = Text()
    info.append("  Calendar:  ", style="bold")
    info.append(f"{calendar.name or calendar.id}")
    info.append(f" ({calendar.kind})\n", style="dim")
    info.append("  Linked OK: ", style="bold")
    info.append(str(report.ok))
    console.print(Panel(info, title="[bold]Outline Calendar Sync — Verify[/bold]"))

    if not report.issue_count:
        console.print(f"[bold green]✓[/] All [bold]{report.ok}[/bold] linked record(s) in sync.")
        return True

    if report.conflicts:
        console.print(
            _pair_table(
                "[bold red]CONFLICT[/] — changed on both sides since last sync", report.conflicts
            )
        )
    if report.pending_pull:
        console.print(
            _pair_table("[bold cyan]PULL[/] — remote changed since last sync", report.pending_pull)
        )
    if report.pending_push:
        console.print(
            _pair_table("[bold cyan]PUSH[/] — local changed since last sync", report.pending_push)
        )

    if report.orphaned_db or report.missing_local:
        t = Table(
            title="[bold yellow]ORPHANED[/] — link whose other side is gone",
            show_header=True,
            header_style="bold",
        )
        t.add_column("Local id", width=10)
        t.add_column("Remote id", overflow="fold")
        t.add_column("Missing side")
        for record in report.orphaned_db:
            t.add_row(record.local_id, _short_id(record.remote_id), "remote")
        for record in report.missing_local:
            t.add_row(record.local_id, _short_id(record.remote_id), "local")
        console.print(t)

    if report.unlinked:
        t = Table(
            title="[bold magenta]UNLINKED[/] — remote records with no link",
            show_header=True,
            header_style="bold",
        )
        t.add_column("Summary", overflow="fold", min_width=30)
        t.add_column("Date", width=12)
        t.add_column("Remote id", overflow="fold")
        t.add_column("Back-link")
        for remote, local_id in report.unlinked:
            t.add_row(
                remote.summary or "(No title)",
                _remote_date(remote),
                _short_id(remote.id),
                Text(local_id, style="green") if local_id else Text("—", style="dim"),
            )
        console.print(t)

    console.print(
        f"\n[bold]{report.ok}[/bold] linked record(s) OK"
        f"\n[bold red]{report.issue_count}[/bold red] issue(s) found."
    )
    return False


async def run_verify(orchestrator, calendar: CalendarConfig, console: Console) -> bool:
    """Fetch the calendar's window, build the report and print it."""
    config = orchestrator.config
    records = await orchestrator.fetch(calendar)
    window_start, _ = sync_window(utcnow(), config.window_days_back, config.window_days_forward)
    report = build_report(
        orchestrator.store_for(calendar),
        orchestrator.local_store,
        records,
        calendar,
        window_start=window_start.date(),
        domain=config.domain,
    )
    return render_report(report, calendar, console)

"""
Debug/inspect tools for configured calendars and linked records.

Importable functions:
  list_calendars(config, stores, console): render a Rich table of configured calendars
  dump_record(local_id, local_store, links, console, raw=None): render one record in a Rich Panel
"""

import json

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from outline_calendar_sync.models import SyncConfig
from outline_calendar_sync.models import SyncRecord


def list_calendars(config: SyncConfig, stores: dict, console: Console) -> None:
    """Render the configured calendars as a Rich table."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Kind")
    table.add_column("Tags")
    table.add_column("Linked", justify="right")
    table.add_column("Last sync")
    table.add_column("ID", style="dim")

    for calendar in config.calendars:
        store = stores[calendar.namespace]
        last = store.get_last_sync_time(calendar.id)
        mode = Text("enabled", style="green") if calendar.enabled else Text("disabled", style="yellow")
        table.add_row(
            calendar.name or "(unnamed)",
            Text.assemble(f"{calendar.kind} ", mode),
            ", ".join(calendar.trigger_tags) or calendar.tag,
            str(len(store.records_for_calendar(calendar.id))),
            last.strftime("%Y-%m-%d %H:%M:%S") if last else "—",
            calendar.id,
        )

    console.print(table)


def _fmt(value):
    if value is None:
        return None
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value


def dump_record(
    local_id: str,
    local_store,
    links: list[tuple[str, SyncRecord]],
    console: Console,
    raw: dict | None = None,
) -> None:
    """Render a local record, its children and every link to it as a Rich Panel."""
    content = local_store.get_record_content(local_id)
    lines = Text()

    def row(label: str, value) -> None:
        if value is None:
            return
        lines.append(f"  {label:<18}: ", style="bold cyan")
        lines.append(f"{value}\n")

    row("LOCAL ID", local_id)
    if content is None:
        lines.append("  (local record does not exist)\n", style="bold red")
    else:
        row("CONTENT", content)
        row("PARENT", local_store.get_parent(local_id))
        row("UPDATED", _fmt(local_store.get_updated_at(local_id)))
        for child in local_store.get_children(local_id):
            row("CHILD", f"{child}  {local_store.get_record_content(child)}")

    for namespace, record in links:
        lines.append(f"\n  [{namespace}]\n", style="bold")
        row("REMOTE ID", record.remote_id)
        row("CALENDAR", record.remote_calendar_id)
        row("ETAG", record.etag)
        row("REMOTE UPDATED", _fmt(record.remote_updated_at))
        row("LOCAL UPDATED", _fmt(record.local_updated_at))
        row("LAST SYNC", _fmt(record.last_sync_at))
        row("END DATE", _fmt(record.remote_end_date))
        row("OPEN TASK", record.is_open_task)
        if record.keep_both:
            row("KEEP BOTH", True)
    if not links:
        lines.append("\n  (not linked)\n", style="dim")

    title = content if content else local_id
    console.print(Panel(lines, title=f"[bold]{title}[/bold]", expand=False))

    if raw is not None:
        console.print(Panel(
            Syntax(json.dumps(raw, indent=2, ensure_ascii=False), "json", theme="monokai", word_wrap=True),
            title="Remote payload",
            expand=False,
        ))

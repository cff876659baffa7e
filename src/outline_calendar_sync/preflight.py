"""
Preflight checks run before sync to catch common misconfigurations early.
"""

import json
import logging
import sqlite3

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from outline_calendar_sync.dates import resolve_timezone
from outline_calendar_sync.models import TOKEN_ENV_VAR
from outline_calendar_sync.models import ConfigError
from outline_calendar_sync.models import SyncConfig

logger = logging.getLogger(__name__)

_CALENDAR_KINDS = ("events", "tasks")


def run_preflight_checks(cfg: SyncConfig, console: Console) -> bool:
    """Return True if sync may proceed; print issues and return False otherwise."""
    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    # 1. Credentials
    if not cfg.access_token:
        logger.error("No access token configured")
        issues.append(
            (
                "Access token",
                "not configured",
                f"Set access_token in the config file or export {TOKEN_ENV_VAR}",
            )
        )

    # 2. Calendars
    enabled = [c for c in cfg.calendars if c.enabled]
    if not enabled:
        issues.append(
            (
                "Calendars",
                "no enabled calendar configured",
                "Add a [calendar:<id>] section to the config file",
            )
        )
    for calendar in cfg.calendars:
        if calendar.kind not in _CALENDAR_KINDS:
            logger.error(f"Calendar {calendar.id} has unknown kind {calendar.kind!r}")
            issues.append(
                (
                    f"Calendar {calendar.id}",
                    f"unknown kind {calendar.kind!r}",
                    "kind must be 'events' or 'tasks'",
                )
            )

    # 3. Timezone
    try:
        resolve_timezone(cfg.timezone)
    except ConfigError as e:
        issues.append(("Timezone", str(e), "Use an IANA name such as Europe/Amsterdam"))

    # 4. Outline file parses if present, and its directory is creatable
    outline = cfg.outline_path
    try:
        outline.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Cannot create outline directory {outline.parent}: {e}")
        issues.append(("Outline", f"{outline}: {e}", f"Check permissions on {outline.parent}"))
    else:
        if outline.exists():
            try:
                data = json.loads(outline.read_text(encoding="utf-8"))
                if not isinstance(data, dict) or "records" not in data:
                    raise ValueError("missing 'records'")
            except (OSError, ValueError) as e:
                logger.error(f"Outline not readable ({outline}): {e}")
                issues.append(
                    (
                        "Outline",
                        f"{outline}: {e}",
                        "Restore the outline file from a backup or point outline_path elsewhere",
                    )
                )

    # 5. State DB parent dir writable + DB readable if it exists
    db_path = cfg.state_db_path
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Cannot create state DB directory {db_path.parent}: {e}")
        issues.append(
            (
                "State database",
                f"{db_path}: {e}",
                f"Check permissions on {db_path.parent}",
            )
        )
    else:
        if db_path.exists():
            try:
                conn = sqlite3.connect(db_path)
                conn.execute("SELECT 1")
                # BEGIN IMMEDIATE takes the write lock and needs a journal file
                # beside the DB, so it also proves the directory is writable.
                conn.execute("BEGIN IMMEDIATE")
                conn.execute("ROLLBACK")
                conn.close()
            except sqlite3.Error as e:
                logger.error(f"State DB not readable/writable ({db_path}): {e}")
                issues.append(
                    (
                        "State database",
                        f"{db_path}: {e}",
                        f"Check permissions on {db_path.parent} "
                        f"(journal files must be creatable alongside the DB)",
                    )
                )

    if issues:
        _print_issues(issues, console)
        return False

    return True


def _print_issues(issues: list[tuple[str, str, str]], console: Console) -> None:
    body = Text()
    for i, (label, detail, hint) in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {label}: ", style="bold red")
        body.append(detail, style="bold red")
        body.append(f"\n       → {hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))

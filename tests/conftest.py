"""
Shared pytest fixtures and remote payload helpers.
"""

import logging
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from outline_calendar_sync.db import MetadataStore
from outline_calendar_sync.models import EVENTS_NAMESPACE
from outline_calendar_sync.models import TASKS_NAMESPACE
from outline_calendar_sync.models import CalendarConfig
from outline_calendar_sync.models import SyncConfig
from outline_calendar_sync.models import SyncRecord
from outline_calendar_sync.outline_store import OutlineStore
from outline_calendar_sync.sync.locks import LockManager
from outline_calendar_sync.sync.orchestrator import Orchestrator
from tests.fake_client import FakeRemoteCalendar

CAL_ID = "work@example.com"
TASKLIST_ID = "tasklist-1"
DOMAIN = "test"


def utc(day_offset: int = 0, hour: int = 9, minute: int = 0) -> datetime:
    """Aware UTC datetime `day_offset` days from today at hour:minute."""
    today = datetime.now(timezone.utc).date() + timedelta(days=day_offset)
    return datetime(today.year, today.month, today.day, hour, minute, tzinfo=timezone.utc)


def iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def back_link(local_id: str, domain: str = DOMAIN) -> str:
    return f"\n\n---\nOutline record: outline://{domain}/{local_id}"


def make_event_payload(
    event_id: str,
    summary: str = "Test Event",
    start: datetime | None = None,
    end: datetime | None = None,
    description: str = "",
    status: str = "confirmed",
    updated: datetime | None = None,
    created: datetime | None = None,
    all_day: date | None = None,
) -> dict:
    """Return a minimal Calendar v3 event payload.

    Timed by default (today 09:00-10:00 UTC); pass `all_day` for a one-day
    all-day event on that date.
    """
    payload = {
        "id": event_id,
        "status": status,
        "summary": summary,
        "etag": f'"{event_id}-1"',
        "updated": iso(updated or utc(-1)),
        "created": iso(created or utc(-2)),
    }
    if description:
        payload["description"] = description
    if all_day is not None:
        payload["start"] = {"date": all_day.isoformat()}
        payload["end"] = {"date": (all_day + timedelta(days=1)).isoformat()}
    else:
        start = start or utc(0, 9)
        end = end or start + timedelta(hours=1)
        payload["start"] = {"dateTime": iso(start)}
        payload["end"] = {"dateTime": iso(end)}
    return payload


def make_task_payload(
    task_id: str,
    title: str = "Test Task",
    due: date | None = None,
    status: str = "needsAction",
    notes: str = "",
    deleted: bool = False,
    updated: datetime | None = None,
) -> dict:
    """Return a minimal Tasks v1 task payload."""
    due = due or utc(0).date()
    payload = {
        "id": task_id,
        "title": title,
        "status": status,
        "due": f"{due.isoformat()}T00:00:00.000Z",
        "etag": f'"{task_id}-1"',
        "updated": iso(updated or utc(-1)),
    }
    if notes:
        payload["notes"] = notes
    if deleted:
        payload["deleted"] = True
    return payload


def make_record(
    local_id: str,
    remote_id: str,
    calendar_id: str = CAL_ID,
    last_sync_at: datetime | None = None,
    remote_updated_at: datetime | None = None,
    local_updated_at: datetime | None = None,
    remote_end_date: date | None = None,
    is_open_task: bool = False,
    keep_both: bool = False,
) -> SyncRecord:
    last_sync_at = last_sync_at or utc(-1, 12)
    return SyncRecord(
        local_id=local_id,
        remote_id=remote_id,
        remote_calendar_id=calendar_id,
        etag=f'"{remote_id}-1"',
        remote_updated_at=remote_updated_at or last_sync_at,
        local_updated_at=local_updated_at or last_sync_at,
        last_sync_at=last_sync_at,
        remote_end_date=remote_end_date,
        is_open_task=is_open_task,
        keep_both=keep_both,
    )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_state.db"


@pytest.fixture
def metadata_store(db_path):
    with MetadataStore(db_path, EVENTS_NAMESPACE) as store:
        yield store


@pytest.fixture
def task_metadata_store(db_path):
    with MetadataStore(db_path, TASKS_NAMESPACE) as store:
        yield store


@pytest.fixture
def outline(tmp_path):
    with OutlineStore(tmp_path / "outline.json") as store:
        yield store


@pytest.fixture
def calendar():
    return CalendarConfig(id=CAL_ID, name="Work", trigger_tags=["Work"])


@pytest.fixture
def task_calendar():
    return CalendarConfig(id=TASKLIST_ID, name="Tasks", kind="tasks", trigger_tags=["Tasks"])


@pytest.fixture
def sync_config(db_path, tmp_path, calendar, task_calendar):
    return SyncConfig(
        state_db_path=db_path,
        outline_path=tmp_path / "outline.json",
        domain=DOMAIN,
        access_token="test-token",
        calendars=[calendar, task_calendar],
        auto_dedup=False,
        timezone="UTC",
        dry_run=False,
        verbose=False,
    )


@pytest.fixture
def remote():
    return FakeRemoteCalendar()


@pytest.fixture
def task_remote():
    return FakeRemoteCalendar(kind="task")


@pytest.fixture
def locks():
    return LockManager()


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")


@pytest.fixture
def orchestrator(
    metadata_store, task_metadata_store, outline, remote, task_remote, locks, sync_config, sync_logger
):
    return Orchestrator(
        {EVENTS_NAMESPACE: metadata_store, TASKS_NAMESPACE: task_metadata_store},
        outline,
        {"events": remote, "tasks": task_remote},
        locks,
        sync_config,
        logger=sync_logger,
    )

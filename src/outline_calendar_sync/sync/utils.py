"""
Stateless helpers: remote payload parsing, title normalization and time
buckets.
"""

import logging
import re
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import tzinfo
from typing import Any

from outline_calendar_sync.dates import local_midnight
from outline_calendar_sync.dates import to_local
from outline_calendar_sync.models import EventRecord
from outline_calendar_sync.models import ParseError
from outline_calendar_sync.models import RemoteRecord
from outline_calendar_sync.models import TaskRecord

_logger = logging.getLogger(__name__)

# RFC 3339 timestamp with optional fraction and 'Z' or numeric offset.
_RFC3339_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|z|[+-]\d{2}:\d{2})?$"
)

# Title normalization patterns, applied in this order.
_STATUS_MARKER_RE = re.compile(r"\{\{\[\[(?:TODO|DONE)\]\]\}\}\s*|\[\[(?:TODO|DONE)\]\]\s*")
_CHECKBOX_RE = re.compile(r"^\s*\[(?:\s*|x|X)\]\s*")
_PAGE_LINK_RE = re.compile(r"#?\[\[([^\[\]]*)\]\]")
_BLOCK_REF_RE = re.compile(r"\(\([A-Za-z0-9_-]+\)\)")
_LEADING_DECORATION_RE = re.compile(r"^[\W_]+")
_WHITESPACE_RE = re.compile(r"\s+")


def parse_rfc3339(value: Any, field_name: str = "timestamp") -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime.

    Raises ParseError for anything that is not a well-formed string.
    """
    if not isinstance(value, str):
        raise ParseError(f"{field_name}: expected RFC 3339 string, got {type(value).__name__}")
    match = _RFC3339_RE.match(value.strip())
    if not match:
        raise ParseError(f"{field_name}: malformed timestamp {value!r}")
    day, clock, fraction, offset = match.groups()
    text = f"{day}T{clock}"
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    if offset is None or offset in ("Z", "z"):
        offset = "+00:00"
    return datetime.fromisoformat(text + offset)


def _parse_date(value: Any, field_name: str) -> date:
    if not isinstance(value, str):
        raise ParseError(f"{field_name}: expected YYYY-MM-DD string")
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ParseError(f"{field_name}: malformed date {value!r}") from e


def _parse_event_time(value: Any, field_name: str, tz: tzinfo | None) -> tuple[datetime, bool]:
    """Return (instant, all_day) from a {dateTime|date} object."""
    if not isinstance(value, dict):
        raise ParseError(f"{field_name}: expected object, got {type(value).__name__}")
    if "dateTime" in value:
        return parse_rfc3339(value["dateTime"], f"{field_name}.dateTime"), False
    if "date" in value:
        return local_midnight(_parse_date(value["date"], f"{field_name}.date"), tz), True
    raise ParseError(f"{field_name}: neither dateTime nor date present")


def _optional_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ParseError(f"{key}: expected string, got {type(value).__name__}")
    return value


def _optional_timestamp(payload: dict, key: str) -> datetime | None:
    if payload.get(key) is None:
        return None
    return parse_rfc3339(payload[key], key)


def parse_remote_record(
    payload: Any, calendar_id: str, kind: str = "event", tz: tzinfo | None = None
) -> RemoteRecord:
    """
    Validate a raw remote payload and build an EventRecord or TaskRecord.

    Cancelled events and deleted tasks may omit their time fields; every other
    record must carry them.  Unexpected shapes raise ParseError rather than
    being defaulted.
    """
    if not isinstance(payload, dict):
        raise ParseError(f"Remote record must be an object, got {type(payload).__name__}")
    record_id = payload.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise ParseError("Remote record has no id")

    if kind == "task":
        return _parse_task(payload, record_id, calendar_id, tz)
    if kind != "event":
        raise ParseError(f"Unknown record kind: {kind}")

    status = payload.get("status")
    if not isinstance(status, str):
        raise ParseError(f"Event {record_id}: missing status")

    start = end = None
    all_day = False
    if status != "cancelled" or "start" in payload:
        start, all_day = _parse_event_time(payload.get("start"), "start", tz)
        end, _ = _parse_event_time(payload.get("end"), "end", tz)

    return EventRecord(
        id=record_id,
        calendar_id=calendar_id,
        summary=_optional_str(payload, "summary"),
        description=_optional_str(payload, "description"),
        start=start,
        end=end,
        all_day=all_day,
        status=status,
        updated=_optional_timestamp(payload, "updated"),
        created=_optional_timestamp(payload, "created"),
        etag=payload.get("etag"),
    )


def _parse_task(payload: dict, record_id: str, calendar_id: str, tz: tzinfo | None) -> TaskRecord:
    status = payload.get("status")
    if status not in ("needsAction", "completed"):
        raise ParseError(f"Task {record_id}: unexpected status {status!r}")
    deleted = bool(payload.get("deleted", False))

    due = None
    if payload.get("due") is not None:
        # Tasks only carry a date; the time part of 'due' is always midnight UTC.
        due_day = parse_rfc3339(payload["due"], "due").date()
        due = local_midnight(due_day, tz)
    elif not deleted:
        raise ParseError(f"Task {record_id}: missing due date")

    return TaskRecord(
        id=record_id,
        calendar_id=calendar_id,
        summary=_optional_str(payload, "title"),
        description=_optional_str(payload, "notes"),
        start=due,
        end=due,
        all_day=True,
        status=status,
        updated=_optional_timestamp(payload, "updated"),
        created=None,
        etag=payload.get("etag"),
        deleted=deleted,
        completed=_optional_timestamp(payload, "completed"),
    )


def normalize_title(title: str | None) -> str:
    """
    Reduce a title to its comparable core.

    >>> normalize_title("{{[[TODO]]}} - Weekly  [[Standup]] ((abcdefghi))")
    'weekly standup'
    """
    text = title or ""
    text = _STATUS_MARKER_RE.sub("", text)
    text = _CHECKBOX_RE.sub("", text)
    text = _PAGE_LINK_RE.sub(r"\1", text)
    text = _BLOCK_REF_RE.sub("", text)
    text = _LEADING_DECORATION_RE.sub("", text.strip())
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


def minute_bucket(value: datetime | None, tz: tzinfo | None = None) -> str | None:
    """Wall-clock minute of value in the local zone, e.g. '2026-03-01T09:00'."""
    if value is None:
        return None
    return to_local(value, tz).strftime("%Y-%m-%dT%H:%M")


def record_start_date(record: RemoteRecord, tz: tzinfo | None = None) -> date | None:
    if record.start is None:
        return None
    return to_local(record.start, tz).date()


def record_end_date(record: RemoteRecord, tz: tzinfo | None = None) -> date | None:
    """Last calendar day the record covers.

    All-day event ends are exclusive on the wire, so one day is subtracted.
    """
    if record.end is None:
        return None
    end = to_local(record.end, tz).date()
    if record.kind == "event" and record.all_day:
        end -= timedelta(days=1)
    start = record_start_date(record, tz)
    if start and end < start:
        end = start
    return end


def is_multi_day(record: RemoteRecord, tz: tzinfo | None = None) -> bool:
    start = record_start_date(record, tz)
    end = record_end_date(record, tz)
    return start is not None and end is not None and end > start


"""
Pure data models; no sqlite or network imports.
"""

from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from enum import Enum
from pathlib import Path

DEFAULT_STATE_DB = Path.home() / ".local/share/outline-calendar-sync-state.db"
DEFAULT_CONFIG = Path.home() / ".config/outline-calendar-sync.conf"
DEFAULT_OUTLINE = Path.home() / ".local/share/outline-calendar-sync/outline.json"

TOKEN_ENV_VAR = "OUTLINE_CALENDAR_SYNC_TOKEN"

# Metadata namespaces: calendar events and tasks are tracked independently.
EVENTS_NAMESPACE = "events"
TASKS_NAMESPACE = "tasks"


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class ConfigError(CalendarSyncError):
    """Missing or invalid configuration."""

    pass


class AuthError(CalendarSyncError):
    """The remote service rejected our credentials. Aborts the current cycle."""

    pass


class RemoteAPIError(CalendarSyncError):
    """A remote call failed. Counted per record, never fatal to a batch."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class NetworkError(RemoteAPIError):
    """The remote service could not be reached (timeout, DNS, reset)."""

    pass


class LocalRecordMissing(CalendarSyncError):
    """A linked local record no longer exists."""

    pass


class LockContention(CalendarSyncError):
    """Another action currently holds the record lock."""

    pass


class ParseError(CalendarSyncError):
    """A remote payload did not have the expected shape."""

    pass


class SyncStatus(str, Enum):
    LOCAL_ONLY = "local_only"
    PENDING = "pending"
    CONFLICT = "conflict"
    SYNCED = "synced"


class Direction(str, Enum):
    REMOTE_TO_LOCAL = "remote_to_local"
    LOCAL_TO_REMOTE = "local_to_remote"


@dataclass
class SyncRecord:
    """Link between one local record and one remote record."""

    local_id: str
    remote_id: str
    remote_calendar_id: str
    etag: str | None = None
    remote_updated_at: datetime | None = None
    local_updated_at: datetime | None = None
    last_sync_at: datetime | None = None
    remote_end_date: date | None = None
    is_open_task: bool = False
    kind: str = "event"  # 'event' or 'task'
    # Set on both halves of a deliberately duplicated pair so dedup never merges them.
    keep_both: bool = False


@dataclass
class _RemoteBase:
    id: str
    calendar_id: str
    summary: str = ""
    description: str = ""
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool = False
    status: str = ""
    updated: datetime | None = None
    created: datetime | None = None
    etag: str | None = None


@dataclass
class EventRecord(_RemoteBase):
    """A calendar event as returned by the remote calendar service."""

    kind: str = field(default="event", init=False)

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def is_open_task(self) -> bool:
        return False


@dataclass
class TaskRecord(_RemoteBase):
    """A task; `start` and `end` both carry the due date."""

    deleted: bool = False
    completed: datetime | None = None
    kind: str = field(default="task", init=False)

    @property
    def is_cancelled(self) -> bool:
        return self.deleted

    @property
    def is_open_task(self) -> bool:
        return self.status != "completed"


RemoteRecord = EventRecord | TaskRecord


@dataclass
class SyncVerdict:
    status: SyncStatus
    direction: Direction | None = None


@dataclass
class ConflictCandidate:
    """A linked pair that changed on both sides since the last sync."""

    record: SyncRecord
    remote: RemoteRecord
    verdict: SyncVerdict
    local_content: str | None = None


@dataclass
class DuplicateGroup:
    key: str
    keeper: RemoteRecord
    members: list[RemoteRecord]
    # Members never removed: keep-both copies and copies linked to a live local record.
    exempt: list[RemoteRecord] = field(default_factory=list)

    @property
    def to_remove(self) -> list[RemoteRecord]:
        spared = {self.keeper.id} | {r.id for r in self.exempt}
        return [r for r in self.members if r.id not in spared]


@dataclass
class CalendarConfig:
    """One remote calendar (or task list) paired with the local store."""

    id: str
    name: str = ""
    kind: str = "events"  # 'events' or 'tasks'
    enabled: bool = True
    trigger_tags: list[str] = field(default_factory=list)
    last_sync_time: datetime | None = None

    @property
    def namespace(self) -> str:
        return TASKS_NAMESPACE if self.kind == "tasks" else EVENTS_NAMESPACE

    @property
    def tag(self) -> str:
        if self.trigger_tags:
            return self.trigger_tags[0]
        return self.name or self.id


@dataclass
class SyncConfig:
    """Configuration for a sync session."""

    state_db_path: Path
    outline_path: Path = DEFAULT_OUTLINE
    domain: str = "default"
    access_token: str | None = None
    calendars: list[CalendarConfig] = field(default_factory=list)
    request_timeout: float = 30.0
    window_days_back: int = 30
    window_days_forward: int = 90
    cleanup_days: int = 7
    auto_dedup: bool = True
    end_attribute: str = "until"
    timezone: str | None = None  # IANA name; None means the system zone
    dry_run: bool = False
    delete_local: bool = False
    verbose: bool = False
    yes: bool = False  # Auto-confirm without prompting


@dataclass
class SyncStats:
    """Statistics for one calendar's sync cycle."""

    imported: int = 0
    updated: int = 0
    exported: int = 0
    linked: int = 0
    recovered: int = 0
    deleted_local: int = 0
    skipped: int = 0
    errors: int = 0
    conflicts: list[ConflictCandidate] = field(default_factory=list)
    # Local records whose remote counterpart was cancelled, awaiting deletion.
    pending_local_deletes: list[str] = field(default_factory=list)
    error_messages: list[str] = field(default_factory=list)

    def record_error(self, message: str) -> None:
        self.errors += 1
        self.error_messages.append(message)


@dataclass
class CalendarSyncResult:
    calendar_id: str
    stats: SyncStats
    error: str | None = None


@dataclass
class RecoveryStats:
    scanned: int = 0
    recovered: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass
class DedupStats:
    scanned: int = 0
    duplicates_found: int = 0
    removed: int = 0
    failed: int = 0

"""
SQLite persistence for sync metadata.

One MetadataStore instance covers one namespace ('events' or 'tasks').  Rows
are mirrored in an in-memory dict so every mutation is visible to the next
read without a round trip; the dict is rebuilt from disk on connect().
"""

import dataclasses
import logging
import sqlite3
from datetime import date
from datetime import datetime
from datetime import timedelta
from pathlib import Path

from outline_calendar_sync.models import EVENTS_NAMESPACE
from outline_calendar_sync.models import CalendarSyncError
from outline_calendar_sync.models import SyncRecord

logger = logging.getLogger(__name__)

# Rough serialized size of one record, used for the storage estimate.
_APPROX_RECORD_BYTES = 200

_COLUMNS = (
    "local_id",
    "remote_id",
    "remote_calendar_id",
    "etag",
    "remote_updated_at",
    "local_updated_at",
    "last_sync_at",
    "remote_end_date",
    "is_open_task",
    "kind",
    "keep_both",
)


def _dt_to_db(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt_from_db(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_record(row: sqlite3.Row) -> SyncRecord:
    end = row["remote_end_date"]
    return SyncRecord(
        local_id=row["local_id"],
        remote_id=row["remote_id"],
        remote_calendar_id=row["remote_calendar_id"],
        etag=row["etag"],
        remote_updated_at=_dt_from_db(row["remote_updated_at"]),
        local_updated_at=_dt_from_db(row["local_updated_at"]),
        last_sync_at=_dt_from_db(row["last_sync_at"]),
        remote_end_date=date.fromisoformat(end) if end else None,
        is_open_task=bool(row["is_open_task"]),
        kind=row["kind"],
        keep_both=bool(row["keep_both"]),
    )


def _record_to_row(namespace: str, record: SyncRecord) -> tuple:
    return (
        namespace,
        record.local_id,
        record.remote_id,
        record.remote_calendar_id,
        record.etag,
        _dt_to_db(record.remote_updated_at),
        _dt_to_db(record.local_updated_at),
        _dt_to_db(record.last_sync_at),
        record.remote_end_date.isoformat() if record.remote_end_date else None,
        int(record.is_open_task),
        record.kind,
        int(record.keep_both),
    )


class MetadataStore:
    """Durable mapping of local record id to SyncRecord for one namespace."""

    def __init__(self, db_path: Path, namespace: str = EVENTS_NAMESPACE):
        self.db_path = db_path
        self.namespace = namespace
        self.conn: sqlite3.Connection | None = None
        self._cache: dict[str, SyncRecord] = {}

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Open the database and load this namespace into memory."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(str(self.db_path))
            self.conn.row_factory = sqlite3.Row  # Enable column access by name
            self._init_schema()
            self._load()
        except sqlite3.Error as e:
            self.close()
            raise CalendarSyncError(f"Cannot open state database {self.db_path}: {e}") from e

    def _init_schema(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS sync_metadata (
                namespace TEXT NOT NULL,
                local_id TEXT NOT NULL,
                remote_id TEXT NOT NULL,
                remote_calendar_id TEXT NOT NULL,
                etag TEXT,
                remote_updated_at TEXT,
                local_updated_at TEXT,
                last_sync_at TEXT,
                remote_end_date TEXT,
                is_open_task INTEGER NOT NULL DEFAULT 0,
                kind TEXT NOT NULL DEFAULT 'event',
                keep_both INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (namespace, local_id)
            );
            CREATE TABLE IF NOT EXISTS calendar_state (
                calendar_id TEXT PRIMARY KEY,
                last_sync_time TEXT
            );
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)
        self.conn.commit()

    def _load(self):
        cursor = self.conn.execute(
            "SELECT * FROM sync_metadata WHERE namespace = ?", (self.namespace,)
        )
        self._cache = {row["local_id"]: _row_to_record(row) for row in cursor.fetchall()}
        logger.debug(f"Loaded {len(self._cache)} {self.namespace} sync record(s)")

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise CalendarSyncError(f"Metadata store {self.db_path} is not connected")
        return self.conn

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run one statement and commit. sqlite failures surface as CalendarSyncError."""
        conn = self._require_conn()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
        except sqlite3.Error as e:
            raise CalendarSyncError(f"State database {self.db_path}: {e}") from e
        return cursor

    # ------------------------------------------------------------------ #
    # Record access                                                        #
    # ------------------------------------------------------------------ #

    def get(self, local_id: str) -> SyncRecord | None:
        record = self._cache.get(local_id)
        return dataclasses.replace(record) if record else None

    def save(self, local_id: str, record: SyncRecord) -> None:
        """Insert or replace the record for local_id."""
        if record.local_id != local_id:
            record = dataclasses.replace(record, local_id=local_id)
        placeholders = ", ".join("?" for _ in range(len(_COLUMNS) + 1))
        self._execute(
            f"INSERT OR REPLACE INTO sync_metadata (namespace, {', '.join(_COLUMNS)}) "
            f"VALUES ({placeholders})",
            _record_to_row(self.namespace, record),
        )
        self._cache[local_id] = dataclasses.replace(record)

    def update(self, local_id: str, **fields) -> SyncRecord | None:
        """Merge fields into an existing record. Returns None if there is none."""
        current = self._cache.get(local_id)
        if current is None:
            return None
        merged = dataclasses.replace(current, **fields)
        self.save(local_id, merged)
        return dataclasses.replace(merged)

    def delete(self, local_id: str) -> bool:
        self._execute(
            "DELETE FROM sync_metadata WHERE namespace = ? AND local_id = ?",
            (self.namespace, local_id),
        )
        return self._cache.pop(local_id, None) is not None

    def find_by_remote_id(self, remote_id: str) -> SyncRecord | None:
        for record in self._cache.values():
            if record.remote_id == remote_id:
                return dataclasses.replace(record)
        return None

    def all_records(self) -> list[SyncRecord]:
        return [dataclasses.replace(r) for r in self._cache.values()]

    def records_for_calendar(self, calendar_id: str) -> list[SyncRecord]:
        return [
            dataclasses.replace(r)
            for r in self._cache.values()
            if r.remote_calendar_id == calendar_id
        ]

    def clear_all(self) -> int:
        """Remove every record in this namespace."""
        self._execute("DELETE FROM sync_metadata WHERE namespace = ?", (self.namespace,))
        count = len(self._cache)
        self._cache.clear()
        return count

    # ------------------------------------------------------------------ #
    # Retention                                                            #
    # ------------------------------------------------------------------ #

    def stats(self) -> dict[str, int]:
        count = len(self._cache)
        return {
            "count": count,
            "open_count": sum(1 for r in self._cache.values() if r.is_open_task),
            "approximate_bytes": count * _APPROX_RECORD_BYTES,
        }

    def cleanup_older_than(self, days: int, today: date | None = None) -> dict[str, int]:
        """
        Remove records whose remote end date is more than `days` days in the past.

        Open tasks are kept regardless of age and reported as retained.
        Records without an end date are left alone.
        """
        today = today or date.today()
        cutoff = today - timedelta(days=days)
        removed = retained = 0
        for local_id, record in list(self._cache.items()):
            if record.remote_end_date is None or record.remote_end_date >= cutoff:
                continue
            if record.is_open_task:
                retained += 1
                continue
            self.delete(local_id)
            removed += 1
        logger.info(
            f"Cleanup ({self.namespace}, older than {days}d): "
            f"removed {removed}, retained {retained} open task(s)"
        )
        return {"removed": removed, "retained": retained}

    def cleanup_all(self, today: date | None = None) -> dict[str, int]:
        """Remove every record whose remote end date is before today, open tasks included."""
        today = today or date.today()
        removed = 0
        for local_id, record in list(self._cache.items()):
            if record.remote_end_date is not None and record.remote_end_date < today:
                self.delete(local_id)
                removed += 1
        logger.info(f"Cleanup ({self.namespace}, all past): removed {removed}")
        return {"removed": removed}

    # ------------------------------------------------------------------ #
    # Per-calendar state and settings                                      #
    # ------------------------------------------------------------------ #

    def get_last_sync_time(self, calendar_id: str) -> datetime | None:
        row = self._execute(
            "SELECT last_sync_time FROM calendar_state WHERE calendar_id = ?", (calendar_id,)
        ).fetchone()
        return _dt_from_db(row["last_sync_time"]) if row else None

    def set_last_sync_time(self, calendar_id: str, when: datetime) -> None:
        self._execute(
            "INSERT OR REPLACE INTO calendar_state (calendar_id, last_sync_time) VALUES (?, ?)",
            (calendar_id, _dt_to_db(when)),
        )

    def get_setting(self, key: str) -> str | None:
        row = self._execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str | None) -> None:
        if value is None:
            self._execute("DELETE FROM settings WHERE key = ?", (key,))
        else:
            self._execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value))

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None


def query_status(db_path: Path) -> list:
    """
    Return aggregate rows per (namespace, remote_calendar_id).

    Each row exposes: namespace, remote_calendar_id, count, open_count, last_sync_at.
    Returns an empty list when the DB file or table does not exist yet.
    """
    if not db_path.exists():
        return []
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        if "sync_metadata" not in tables:
            return []
        cursor = conn.execute("""
            SELECT
                namespace,
                remote_calendar_id,
                COUNT(*)           AS count,
                SUM(is_open_task)  AS open_count,
                MAX(last_sync_at)  AS last_sync_at
            FROM sync_metadata
            GROUP BY namespace, remote_calendar_id
            ORDER BY namespace, remote_calendar_id
        """)
        return cursor.fetchall()
    finally:
        conn.close()

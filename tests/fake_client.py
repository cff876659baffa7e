"""
In-memory fake remote calendar for testing.

Duck-type-compatible stand-in for GoogleCalendarClient / GoogleTasksClient.  No
network connection is required: payloads are kept in a plain dict keyed by id,
in insertion order, which is also the listing order.
"""

import copy
from datetime import datetime
from datetime import timezone

from outline_calendar_sync.models import AuthError
from outline_calendar_sync.models import RemoteAPIError
from outline_calendar_sync.sync.utils import parse_rfc3339


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class FakeRemoteCalendar:
    """In-memory stub that satisfies the RemoteCalendarAPI duck-type contract."""

    def __init__(self, initial: list[dict] | None = None, kind: str = "event"):
        self.kind = kind
        self._records: dict[str, dict] = {}
        for payload in initial or []:
            self.add(payload)
        self._counter = 0
        # Ids whose update/delete fail with HTTP 500.
        self.fail_ids: set[str] = set()
        # When set, every call raises AuthError.
        self.auth_failure = False
        self.creates: list[str] = []
        self.updates: list[str] = []
        self.deletes: list[str] = []
        self.list_calls: list[dict] = []

    # ------------------------------------------------------------------ #
    # Internal helpers                                                      #
    # ------------------------------------------------------------------ #

    def _check_auth(self):
        if self.auth_failure:
            raise AuthError("HTTP 401 invalid credentials")

    def _bump(self, record: dict):
        version = int(record.get("etag", '"0"').strip('"').rsplit("-", 1)[-1] or 0) + 1
        record["etag"] = f'"{record["id"]}-{version}"'
        record["updated"] = _now_iso()

    # ------------------------------------------------------------------ #
    # RemoteCalendarAPI interface                                          #
    # ------------------------------------------------------------------ #

    async def list_events(
        self, calendar_id, time_min, time_max, updated_min=None, show_deleted=False
    ) -> list[dict]:
        self._check_auth()
        self.list_calls.append({"calendar_id": calendar_id, "updated_min": updated_min})
        result = []
        for record in self._records.values():
            hidden = record.get("status") == "cancelled" or record.get("deleted")
            if hidden and not show_deleted:
                continue
            if updated_min and parse_rfc3339(record["updated"]) < updated_min:
                continue
            result.append(copy.deepcopy(record))
        return result

    async def create_event(self, calendar_id, payload: dict) -> dict:
        self._check_auth()
        self._counter += 1
        record_id = f"created-{self._counter}"
        now = _now_iso()
        record = {**copy.deepcopy(payload), "id": record_id, "updated": now}
        record["etag"] = f'"{record_id}-1"'
        if self.kind == "event":
            record.setdefault("status", "confirmed")
            record["created"] = now
        self._records[record_id] = record
        self.creates.append(record_id)
        return copy.deepcopy(record)

    async def update_event(self, calendar_id, record_id, payload: dict) -> dict:
        self._check_auth()
        if record_id in self.fail_ids:
            raise RemoteAPIError(f"PATCH {record_id}: HTTP 500", 500)
        if record_id not in self._records:
            raise RemoteAPIError(f"PATCH {record_id}: HTTP 404", 404)
        record = self._records[record_id]
        record.update(copy.deepcopy(payload))
        self._bump(record)
        self.updates.append(record_id)
        return copy.deepcopy(record)

    async def delete_event(self, calendar_id, record_id) -> None:
        self._check_auth()
        if record_id in self.fail_ids:
            raise RemoteAPIError(f"DELETE {record_id}: HTTP 500", 500)
        self._records.pop(record_id, None)
        self.deletes.append(record_id)

    # ------------------------------------------------------------------ #
    # Test helpers                                                          #
    # ------------------------------------------------------------------ #

    def add(self, payload: dict) -> dict:
        self._records[payload["id"]] = copy.deepcopy(payload)
        return payload

    def edit(self, record_id: str, updated: datetime | None = None, **fields) -> dict:
        """Change a record as another client would, bumping etag and updated."""
        record = self._records[record_id]
        record.update(fields)
        self._bump(record)
        if updated is not None:
            record["updated"] = updated.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        return copy.deepcopy(record)

    def cancel(self, record_id: str, updated: datetime | None = None) -> dict:
        if self.kind == "task":
            return self.edit(record_id, updated, deleted=True)
        return self.edit(record_id, updated, status="cancelled")

    def get(self, record_id: str) -> dict | None:
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record else None

    @property
    def ids(self) -> list[str]:
        return list(self._records)

    @property
    def event_count(self) -> int:
        return len(self._records)

    def reset_counters(self):
        """Clear call-tracking lists without touching stored records."""
        self.creates.clear()
        self.updates.clear()
        self.deletes.clear()
        self.list_calls.clear()

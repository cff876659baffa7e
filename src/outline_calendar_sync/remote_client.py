"""
Async REST clients for the remote calendar service (events) and task lists.

Both expose the same four calls, so the orchestrator treats a task list as
just another calendar:

    list_events(calendar_id, time_min, time_max, updated_min=None, show_deleted=False)
    create_event(calendar_id, payload) -> dict with id, etag, updated
    update_event(calendar_id, record_id, payload) -> dict with etag, updated
    delete_event(calendar_id, record_id)
"""

import asyncio
import logging
from datetime import datetime
from datetime import timezone
from urllib.parse import quote

import aiohttp

from outline_calendar_sync.models import AuthError
from outline_calendar_sync.models import NetworkError
from outline_calendar_sync.models import RemoteAPIError

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GOOGLE_TASKS_API = "https://tasks.googleapis.com/tasks/v1"

# 403 responses carrying these reasons are throttling, not a permissions problem.
_RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded")


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class _RestClient:
    """Shared session handling and error mapping."""

    base_url = ""

    def __init__(
        self,
        access_token: str,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
        base_url: str | None = None,
    ):
        self.access_token = access_token
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        if base_url:
            self.base_url = base_url

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout,
            )
            self._owns_session = True

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json: dict | None = None,
        missing_ok: bool = False,
    ):
        if self._session is None:
            await self.open()
        url = f"{self.base_url}{path}"
        try:
            async with self._session.request(
                method, url, params=params, json=json, timeout=self.timeout
            ) as response:
                if response.status in (401, 403):
                    body = await response.text()
                    if response.status == 403 and any(r in body for r in _RATE_LIMIT_REASONS):
                        raise RemoteAPIError(f"{method} {path}: rate limited", response.status)
                    raise AuthError(f"{method} {path}: HTTP {response.status} {body[:200]}")
                if missing_ok and response.status in (404, 410):
                    logger.debug(f"{method} {path}: already gone (HTTP {response.status})")
                    return None
                if response.status >= 400:
                    body = await response.text()
                    raise RemoteAPIError(
                        f"{method} {path}: HTTP {response.status} {body[:200]}", response.status
                    )
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{method} {path}: timed out") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"{method} {path}: {e}") from e

    async def _write(self, method: str, path: str, payload: dict) -> dict:
        """POST or PATCH a resource; the service must echo it back, with an id on create."""
        data = await self._request(method, path, json=payload)
        if not isinstance(data, dict):
            raise RemoteAPIError(f"{method} {path}: expected a resource, got {type(data).__name__}")
        if method == "POST" and not (isinstance(data.get("id"), str) and data["id"]):
            raise RemoteAPIError(f"{method} {path}: response carries no id")
        return data

    async def _paginate(self, path: str, params: dict) -> list[dict]:
        items: list[dict] = []
        page_token = None
        while True:
            page_params = dict(params)
            if page_token:
                page_params["pageToken"] = page_token
            data = await self._request("GET", path, params=page_params) or {}
            items.extend(data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return items


class GoogleCalendarClient(_RestClient):
    """Calendar v3 events."""

    base_url = GOOGLE_CALENDAR_API

    @staticmethod
    def _events_path(calendar_id: str, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id:
            path += f"/{quote(event_id, safe='')}"
        return path

    async def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        updated_min: datetime | None = None,
        show_deleted: bool = False,
    ) -> list[dict]:
        params = {
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
            "singleEvents": "true",
            "maxResults": "250",
        }
        if updated_min:
            params["updatedMin"] = _rfc3339(updated_min)
        if show_deleted:
            params["showDeleted"] = "true"
        events = await self._paginate(self._events_path(calendar_id), params)
        logger.debug(f"Listed {len(events)} event(s) from {calendar_id}")
        return events

    async def create_event(self, calendar_id: str, payload: dict) -> dict:
        return await self._write("POST", self._events_path(calendar_id), payload)

    async def update_event(self, calendar_id: str, event_id: str, payload: dict) -> dict:
        return await self._write("PATCH", self._events_path(calendar_id, event_id), payload)

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        await self._request("DELETE", self._events_path(calendar_id, event_id), missing_ok=True)


class GoogleTasksClient(_RestClient):
    """Tasks v1, exposing task lists through the calendar-shaped interface."""

    base_url = GOOGLE_TASKS_API

    @staticmethod
    def _tasks_path(tasklist_id: str, task_id: str | None = None) -> str:
        path = f"/lists/{quote(tasklist_id, safe='')}/tasks"
        if task_id:
            path += f"/{quote(task_id, safe='')}"
        return path

    async def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        updated_min: datetime | None = None,
        show_deleted: bool = False,
    ) -> list[dict]:
        params = {
            "dueMin": _rfc3339(time_min),
            "dueMax": _rfc3339(time_max),
            "showCompleted": "true",
            "showHidden": "true",
            "maxResults": "100",
        }
        if updated_min:
            params["updatedMin"] = _rfc3339(updated_min)
        if show_deleted:
            params["showDeleted"] = "true"
        tasks = await self._paginate(self._tasks_path(calendar_id), params)
        logger.debug(f"Listed {len(tasks)} task(s) from {calendar_id}")
        return tasks

    async def create_event(self, calendar_id: str, payload: dict) -> dict:
        return await self._write("POST", self._tasks_path(calendar_id), payload)

    async def update_event(self, calendar_id: str, task_id: str, payload: dict) -> dict:
        return await self._write("PATCH", self._tasks_path(calendar_id, task_id), payload)

    async def delete_event(self, calendar_id: str, task_id: str) -> None:
        await self._request("DELETE", self._tasks_path(calendar_id, task_id), missing_ok=True)

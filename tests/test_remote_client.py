"""
Tests for the REST clients' request building, pagination and error mapping,
using a scripted stand-in for aiohttp.ClientSession.
"""

import asyncio
import json
from datetime import datetime
from datetime import timezone

import aiohttp
import pytest

from outline_calendar_sync.models import AuthError
from outline_calendar_sync.models import NetworkError
from outline_calendar_sync.models import RemoteAPIError
from outline_calendar_sync.remote_client import GoogleCalendarClient
from outline_calendar_sync.remote_client import GoogleTasksClient

T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)
T1 = datetime(2026, 4, 1, tzinfo=timezone.utc)


class _Response:
    def __init__(self, status: int, body=None):
        self.status = status
        self._body = body

    async def text(self):
        if isinstance(self._body, str):
            return self._body
        return json.dumps(self._body) if self._body is not None else ""

    async def json(self, content_type="application/json"):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """Replays queued responses (or raises queued exceptions) and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[dict] = []

    def request(self, method, url, params=None, json=None, timeout=None):
        self.requests.append({"method": method, "url": url, "params": params, "json": json})
        outcome = self.responses.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _calendar(*responses):
    session = FakeSession(*responses)
    return GoogleCalendarClient("token", session=session), session


class TestRequests:
    @pytest.mark.asyncio
    async def test_list_events_params(self):
        client, session = _calendar(_Response(200, {"items": [{"id": "R1"}]}))

        items = await client.list_events("work@example.com", T0, T1, updated_min=T0, show_deleted=True)

        assert items == [{"id": "R1"}]
        request = session.requests[0]
        assert request["method"] == "GET"
        assert request["url"].endswith("/calendars/work%40example.com/events")
        assert request["params"]["timeMin"] == "2026-03-01T00:00:00Z"
        assert request["params"]["updatedMin"] == "2026-03-01T00:00:00Z"
        assert request["params"]["showDeleted"] == "true"
        assert request["params"]["singleEvents"] == "true"

    @pytest.mark.asyncio
    async def test_first_listing_omits_incremental_params(self):
        client, session = _calendar(_Response(200, {"items": []}))

        await client.list_events("cal", T0, T1)

        params = session.requests[0]["params"]
        assert "updatedMin" not in params
        assert "showDeleted" not in params

    @pytest.mark.asyncio
    async def test_pagination(self):
        client, session = _calendar(
            _Response(200, {"items": [{"id": "R1"}], "nextPageToken": "p2"}),
            _Response(200, {"items": [{"id": "R2"}]}),
        )

        items = await client.list_events("cal", T0, T1)

        assert [i["id"] for i in items] == ["R1", "R2"]
        assert session.requests[1]["params"]["pageToken"] == "p2"

    @pytest.mark.asyncio
    async def test_create_update_delete(self):
        client, session = _calendar(
            _Response(200, {"id": "R1", "etag": '"1"'}),
            _Response(200, {"id": "R1", "etag": '"2"'}),
            _Response(204),
        )

        created = await client.create_event("cal", {"summary": "Standup"})
        updated = await client.update_event("cal", "R1", {"summary": "Retro"})
        await client.delete_event("cal", "R1")

        assert created["etag"] == '"1"'
        assert updated["etag"] == '"2"'
        assert [r["method"] for r in session.requests] == ["POST", "PATCH", "DELETE"]
        assert session.requests[1]["url"].endswith("/calendars/cal/events/R1")
        assert session.requests[1]["json"] == {"summary": "Retro"}

    @pytest.mark.asyncio
    async def test_tasks_paths_and_params(self):
        session = FakeSession(_Response(200, {"items": []}), _Response(200, {"id": "T1"}))
        client = GoogleTasksClient("token", session=session)

        await client.list_events("list-1", T0, T1)
        await client.update_event("list-1", "T1", {"status": "completed"})

        assert session.requests[0]["url"].endswith("/lists/list-1/tasks")
        assert session.requests[0]["params"]["dueMin"] == "2026-03-01T00:00:00Z"
        assert session.requests[0]["params"]["showCompleted"] == "true"
        assert session.requests[1]["url"].endswith("/lists/list-1/tasks/T1")

    @pytest.mark.asyncio
    async def test_borrowed_session_not_closed(self):
        client, session = _calendar()
        await client.close()
        assert session.requests == []


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_401_is_auth_error(self):
        client, _ = _calendar(_Response(401, "invalid credentials"))
        with pytest.raises(AuthError):
            await client.list_events("cal", T0, T1)

    @pytest.mark.asyncio
    async def test_403_forbidden_is_auth_error(self):
        client, _ = _calendar(_Response(403, {"error": {"errors": [{"reason": "forbidden"}]}}))
        with pytest.raises(AuthError):
            await client.create_event("cal", {})

    @pytest.mark.asyncio
    async def test_403_rate_limit_is_api_error(self):
        body = {"error": {"errors": [{"reason": "rateLimitExceeded"}]}}
        client, _ = _calendar(_Response(403, body))
        with pytest.raises(RemoteAPIError) as exc_info:
            await client.create_event("cal", {})
        assert not isinstance(exc_info.value, AuthError)
        assert exc_info.value.status == 403

    @pytest.mark.asyncio
    async def test_404_on_update_carries_status(self):
        client, _ = _calendar(_Response(404, "not found"))
        with pytest.raises(RemoteAPIError) as exc_info:
            await client.update_event("cal", "R1", {})
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_delete_of_missing_record_is_quiet(self):
        client, _ = _calendar(_Response(410, "gone"))
        assert await client.delete_event("cal", "R1") is None

    @pytest.mark.asyncio
    async def test_server_error(self):
        client, _ = _calendar(_Response(503, "unavailable"))
        with pytest.raises(RemoteAPIError) as exc_info:
            await client.list_events("cal", T0, T1)
        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self):
        client, _ = _calendar(asyncio.TimeoutError())
        with pytest.raises(NetworkError):
            await client.list_events("cal", T0, T1)

    @pytest.mark.asyncio
    async def test_connection_error_is_network_error(self):
        client, _ = _calendar(aiohttp.ClientConnectionError("reset"))
        with pytest.raises(NetworkError):
            await client.delete_event("cal", "R1")

    @pytest.mark.asyncio
    async def test_create_without_id_is_api_error(self):
        client, _ = _calendar(_Response(200, {"etag": '"1"'}))
        with pytest.raises(RemoteAPIError, match="no id"):
            await client.create_event("cal", {"summary": "Standup"})

    @pytest.mark.asyncio
    async def test_update_with_empty_body_is_api_error(self):
        session = FakeSession(_Response(204))
        client = GoogleTasksClient("token", session=session)
        with pytest.raises(RemoteAPIError):
            await client.update_event("list-1", "T1", {"status": "completed"})

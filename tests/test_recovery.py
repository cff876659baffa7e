"""
Tests for RecoveryEngine: rebuilding lost SyncRecords from back-links.
"""

from datetime import timezone

import pytest

from outline_calendar_sync.dates import partition_id
from outline_calendar_sync.dates import partition_title
from outline_calendar_sync.sync.recovery import RecoveryEngine
from outline_calendar_sync.sync.recovery import extract_back_link
from outline_calendar_sync.sync.utils import parse_remote_record
from tests.conftest import CAL_ID
from tests.conftest import DOMAIN
from tests.conftest import back_link
from tests.conftest import make_event_payload
from tests.conftest import make_record
from tests.conftest import make_task_payload
from tests.conftest import utc


def _event(event_id, description="", **kwargs):
    payload = make_event_payload(event_id, description=description, **kwargs)
    return parse_remote_record(payload, CAL_ID, tz=timezone.utc)


def _local(outline, local_id, content="9:00-10:00 Standup #Work"):
    day = utc(0).date()
    pid = outline.ensure_partition(partition_id(day), partition_title(day))
    return outline.create_record(pid, content, record_id=local_id)


@pytest.fixture
def engine(metadata_store, outline):
    return RecoveryEngine(metadata_store, outline, DOMAIN, tz=timezone.utc)


class TestExtractBackLink:
    def test_finds_id(self):
        assert extract_back_link("Agenda" + back_link("abcdefghi")) == "abcdefghi"

    def test_none_and_empty(self):
        assert extract_back_link(None) is None
        assert extract_back_link("") is None

    def test_wrong_domain_ignored(self):
        description = back_link("abcdefghi", domain="elsewhere")
        assert extract_back_link(description, DOMAIN) is None
        assert extract_back_link(description) == "abcdefghi"

    def test_id_must_be_nine_characters(self):
        assert extract_back_link(back_link("abcdefghij")) is None
        assert extract_back_link(back_link("abc")) is None


class TestRecover:
    def test_recovers_single_back_linked_record(self, engine, metadata_store, outline):
        """One back-linked remote, an existing local record and an empty store recover one link."""
        _local(outline, "abcdefghi")
        remote = _event("R1", description="Notes" + back_link("abcdefghi"))

        stats = engine.recover([remote], CAL_ID)

        assert stats.recovered == 1
        record = metadata_store.get("abcdefghi")
        assert record.remote_id == "R1"
        assert record.remote_calendar_id == CAL_ID
        assert record.etag == '"R1-1"'
        assert record.remote_end_date == utc(0).date()

    def test_missing_local_record_counts_as_failed(self, engine, metadata_store):
        remote = _event("R1", description=back_link("abcdefghi"))

        stats = engine.recover([remote], CAL_ID)

        assert stats.failed == 1
        assert stats.recovered == 0
        assert metadata_store.get("abcdefghi") is None

    def test_already_linked_remote_skipped(self, engine, metadata_store, outline):
        _local(outline, "abcdefghi")
        metadata_store.save("abcdefghi", make_record("abcdefghi", "R1"))
        remote = _event("R1", description=back_link("abcdefghi"))

        stats = engine.recover([remote], CAL_ID)

        assert stats.skipped == 1
        assert stats.recovered == 0

    def test_records_without_back_link_skipped(self, engine):
        stats = engine.recover([_event("R1", description="plain")], CAL_ID)
        assert stats.scanned == 1
        assert stats.skipped == 1

    def test_other_domain_not_recovered(self, engine, outline, metadata_store):
        _local(outline, "abcdefghi")
        remote = _event("R1", description=back_link("abcdefghi", domain="elsewhere"))

        assert engine.recover([remote], CAL_ID).recovered == 0
        assert metadata_store.get("abcdefghi") is None

    def test_duplicate_copy_does_not_replace_live_link(self, engine, metadata_store, outline):
        """Two remotes claim the same local record; the linked one stays linked."""
        _local(outline, "abcdefghi")
        metadata_store.save("abcdefghi", make_record("abcdefghi", "R1"))
        original = _event("R1", description=back_link("abcdefghi"))
        copy = _event("R2", description=back_link("abcdefghi"))

        stats = engine.recover([original, copy], CAL_ID)

        assert stats.recovered == 0
        assert metadata_store.get("abcdefghi").remote_id == "R1"

    def test_stale_link_superseded(self, engine, metadata_store, outline):
        """A link to a remote that is no longer listed is replaced by the back-linked one."""
        _local(outline, "abcdefghi")
        metadata_store.save("abcdefghi", make_record("abcdefghi", "GONE"))
        remote = _event("R2", description=back_link("abcdefghi"))

        assert engine.recover([remote], CAL_ID).recovered == 1
        assert metadata_store.get("abcdefghi").remote_id == "R2"

    def test_open_task_flag(self, task_metadata_store, outline):
        _local(outline, "taskaaaaa", "{{[[TODO]]}} Call back #Tasks")
        payload = make_task_payload("T1", notes=back_link("taskaaaaa"))
        task = parse_remote_record(payload, "tasklist-1", kind="task", tz=timezone.utc)
        engine = RecoveryEngine(task_metadata_store, outline, DOMAIN, tz=timezone.utc)

        engine.recover([task], "tasklist-1")

        record = task_metadata_store.get("taskaaaaa")
        assert record.is_open_task is True
        assert record.kind == "task"

"""
Tests for the JSON-file-backed OutlineStore.
"""

import time

import pytest

from outline_calendar_sync.models import CalendarSyncError
from outline_calendar_sync.models import LocalRecordMissing
from outline_calendar_sync.outline_store import OutlineStore
from outline_calendar_sync.outline_store import generate_record_id


@pytest.fixture
def partition(outline):
    return outline.ensure_partition("03-01-2026", "March 1st, 2026")


class TestRecords:
    def test_generated_ids_are_nine_characters(self):
        assert len(generate_record_id()) == 9

    def test_create_and_read(self, outline, partition):
        record_id = outline.create_record(partition, "Standup #Work")

        assert outline.record_exists(record_id)
        assert outline.get_record_content(record_id) == "Standup #Work"
        assert outline.get_parent(record_id) == partition
        assert outline.get_children(partition) == [record_id]
        assert outline.get_updated_at(record_id) is not None

    def test_order_first_and_index(self, outline, partition):
        a = outline.create_record(partition, "a")
        b = outline.create_record(partition, "b", order="first")
        c = outline.create_record(partition, "c", order=1)

        assert outline.get_children(partition) == [b, c, a]

    def test_explicit_id_collision(self, outline, partition):
        outline.create_record(partition, "a", record_id="abcdefghi")
        with pytest.raises(CalendarSyncError):
            outline.create_record(partition, "b", record_id="abcdefghi")

    def test_update_bumps_timestamp(self, outline, partition):
        record_id = outline.create_record(partition, "old")
        before = outline.get_updated_at(record_id)
        time.sleep(0.001)

        outline.update_record(record_id, "new")

        assert outline.get_record_content(record_id) == "new"
        assert outline.get_updated_at(record_id) > before

    def test_delete_removes_subtree(self, outline, partition):
        parent = outline.create_record(partition, "parent")
        child = outline.create_record(parent, "child")

        outline.delete_record(parent)

        assert not outline.record_exists(parent)
        assert not outline.record_exists(child)
        assert outline.get_children(partition) == []

    def test_missing_record(self, outline):
        assert outline.get_record_content("missing00") is None
        assert outline.get_updated_at("missing00") is None
        with pytest.raises(LocalRecordMissing):
            outline.update_record("missing00", "x")

    def test_move(self, outline, partition):
        other = outline.ensure_partition("03-02-2026", "March 2nd, 2026")
        record_id = outline.create_record(partition, "Standup")

        outline.move_record(record_id, other)

        assert outline.get_parent(record_id) == other
        assert outline.get_children(partition) == []
        assert outline.get_children(other) == [record_id]

    def test_move_beneath_itself_rejected(self, outline, partition):
        parent = outline.create_record(partition, "parent")
        child = outline.create_record(parent, "child")

        with pytest.raises(CalendarSyncError):
            outline.move_record(parent, child)


class TestPartitionsAndTags:
    def test_ensure_partition_is_idempotent(self, outline, partition):
        assert outline.ensure_partition("03-01-2026", "March 1st, 2026") == partition
        assert outline.get_record_content(partition) == "March 1st, 2026"
        assert outline.get_parent(partition) is None

    def test_find_tagged(self, outline, partition):
        plain = outline.create_record(partition, "Standup #Work")
        bracketed = outline.create_record(partition, "Review #[[Work]]")
        outline.create_record(partition, "Workshop #Workshop")
        outline.create_record(partition, "Untagged")

        assert sorted(outline.find_tagged("Work")) == sorted([plain, bracketed])

    def test_partitions_never_tagged(self, outline):
        outline.ensure_partition("03-05-2026", "#Work day")
        assert outline.find_tagged("Work") == []


class TestPersistence:
    def test_reload(self, tmp_path):
        path = tmp_path / "outline.json"
        with OutlineStore(path) as store:
            pid = store.ensure_partition("03-01-2026", "March 1st, 2026")
            record_id = store.create_record(pid, "Standup #Work")

        with OutlineStore(path) as reopened:
            assert reopened.get_record_content(record_id) == "Standup #Work"
            assert reopened.get_children(pid) == [record_id]

    def test_missing_file_is_empty(self, tmp_path):
        with OutlineStore(tmp_path / "absent.json") as store:
            assert store.find_tagged("Work") == []

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "outline.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(CalendarSyncError):
            OutlineStore(path).load()

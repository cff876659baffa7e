"""
File-backed hierarchical outline store.

Records form a tree: top-level records are date partitions (id MM-DD-YYYY),
everything else hangs beneath them.  The whole tree lives in one JSON file
that is rewritten atomically after every mutation.
"""

import json
import logging
import os
import re
import secrets
import string
import tempfile
from datetime import datetime
from pathlib import Path

from outline_calendar_sync.dates import utcnow
from outline_calendar_sync.models import CalendarSyncError
from outline_calendar_sync.models import LocalRecordMissing

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits + "-_"
_ID_LENGTH = 9
_FORMAT_VERSION = 1


def generate_record_id() -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))


class OutlineStore:
    """Local record store backed by a JSON file."""

    def __init__(self, path: Path):
        self.path = path
        self._records: dict[str, dict] = {}
        self._roots: list[str] = []

    def __enter__(self):
        self.load()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def load(self):
        """Read the outline file; a missing file is an empty outline."""
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise CalendarSyncError(f"Cannot read outline {self.path}: {e}") from e
            self._records = data.get("records", {})
            self._roots = data.get("roots", [])
        else:
            self._records = {}
            self._roots = []
        logger.debug(f"Loaded outline {self.path} ({len(self._records)} records)")

    def close(self):
        """Nothing to release; every mutation is already on disk."""

    def _flush(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": _FORMAT_VERSION, "roots": self._roots, "records": self._records}
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".outline-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=1, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _node(self, record_id: str) -> dict:
        node = self._records.get(record_id)
        if node is None:
            raise LocalRecordMissing(f"Local record {record_id} does not exist")
        return node

    def _touch(self, node: dict):
        node["updated"] = utcnow().isoformat()

    def _new_id(self) -> str:
        record_id = generate_record_id()
        while record_id in self._records:
            record_id = generate_record_id()
        return record_id

    def _siblings(self, parent_id: str | None) -> list[str]:
        return self._roots if parent_id is None else self._node(parent_id)["children"]

    @staticmethod
    def _insert(siblings: list[str], record_id: str, order: str | int):
        if order == "first":
            siblings.insert(0, record_id)
        elif order == "last":
            siblings.append(record_id)
        else:
            siblings.insert(int(order), record_id)

    # ------------------------------------------------------------------ #
    # LocalStore interface                                                 #
    # ------------------------------------------------------------------ #

    def create_record(
        self,
        parent_id: str | None,
        content: str,
        order: str | int = "last",
        record_id: str | None = None,
    ) -> str:
        siblings = self._siblings(parent_id)
        record_id = record_id or self._new_id()
        if record_id in self._records:
            raise CalendarSyncError(f"Local record {record_id} already exists")
        node = {"content": content, "parent": parent_id, "children": []}
        self._touch(node)
        self._records[record_id] = node
        self._insert(siblings, record_id, order)
        self._flush()
        return record_id

    def update_record(self, record_id: str, content: str):
        node = self._node(record_id)
        node["content"] = content
        self._touch(node)
        self._flush()

    def delete_record(self, record_id: str):
        """Delete a record and its whole subtree."""
        node = self._node(record_id)
        siblings = self._siblings(node["parent"])
        if record_id in siblings:
            siblings.remove(record_id)
        stack = [record_id]
        while stack:
            current = stack.pop()
            removed = self._records.pop(current, None)
            if removed:
                stack.extend(removed["children"])
        self._flush()

    def move_record(self, record_id: str, new_parent_id: str | None, order: str | int = "last"):
        node = self._node(record_id)
        ancestor = new_parent_id
        while ancestor is not None:
            if ancestor == record_id:
                raise CalendarSyncError(f"Cannot move {record_id} beneath itself")
            ancestor = self._node(ancestor)["parent"]
        target = self._siblings(new_parent_id)
        old = self._siblings(node["parent"])
        if record_id in old:
            old.remove(record_id)
        self._insert(target, record_id, order)
        node["parent"] = new_parent_id
        self._touch(node)
        self._flush()

    def get_record_content(self, record_id: str) -> str | None:
        node = self._records.get(record_id)
        return node["content"] if node else None

    def record_exists(self, record_id: str) -> bool:
        return record_id in self._records

    def get_parent(self, record_id: str) -> str | None:
        return self._node(record_id)["parent"]

    def get_children(self, record_id: str) -> list[str]:
        return list(self._node(record_id)["children"])

    def get_updated_at(self, record_id: str) -> datetime | None:
        node = self._records.get(record_id)
        if not node or not node.get("updated"):
            return None
        return datetime.fromisoformat(node["updated"])

    def ensure_partition(self, partition_id: str, title: str) -> str:
        """Return the date partition record, creating it at top level if needed."""
        if partition_id not in self._records:
            self.create_record(None, title, record_id=partition_id)
        return partition_id

    def find_tagged(self, tag: str) -> list[str]:
        """Ids of non-partition records whose content carries #tag or #[[tag]]."""
        pattern = re.compile(rf"#(?:\[\[{re.escape(tag)}\]\]|{re.escape(tag)}(?![\w-]))")
        return [
            record_id
            for record_id, node in self._records.items()
            if node["parent"] is not None and pattern.search(node["content"])
        ]

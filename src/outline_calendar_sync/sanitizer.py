"""
Content mapping between outline records and remote calendar payloads.
"""

import re
from collections.abc import Callable
from datetime import date
from datetime import timedelta
from datetime import tzinfo

from outline_calendar_sync.dates import local_midnight
from outline_calendar_sync.dates import partition_title
from outline_calendar_sync.dates import to_local
from outline_calendar_sync.models import RemoteRecord

# Appended to every remote description we write; RecoveryEngine parses it back.
BACK_LINK_SEPARATOR = "\n\n---\n"
BACK_LINK_LABEL = "Outline record: "
BACK_LINK_RE = re.compile(
    r"Outline record: outline://(?P<domain>[^/\s]+)/(?P<local_id>[A-Za-z0-9_-]{9})(?![A-Za-z0-9_-])"
)
_BACK_LINK_BLOCK_RE = re.compile(r"\n*---\nOutline record:.*$", re.DOTALL)

_BULLET_RE = re.compile(r"^[•\-]\s*")
_PAGE_REF_RE = re.compile(r"\[\[(?!TODO\]\]|DONE\]\])([^\]]+)\]\]")
_BLOCK_REF_RE = re.compile(r"\(\(([A-Za-z0-9_-]+)\)\)")
_TAG_BRACKET_RE = re.compile(r"#\[\[([^\]]+)\]\]")
_TAG_RE = re.compile(r"#([^\s]+)")
_EMBED_RE = re.compile(r"\{\{embed:\s*\(\([A-Za-z0-9_-]+\)\)\}\}")
_MACRO_RE = re.compile(r"\{\{[^}]+\}\}")
_WHITESPACE_RE = re.compile(r"\s+")

_TODO_RE = re.compile(r"\{\{\[\[TODO\]\]\}\}|\[\[TODO\]\]")
_DONE_RE = re.compile(r"\{\{\[\[DONE\]\]\}\}|\[\[DONE\]\]")
# 9:00-10:30, 9h-10h30, 9 - 10; only at the start of content, after any TODO/DONE marker.
_TIME_RANGE_RE = re.compile(
    r"^(?P<lead>\s*(?:(?:\{\{\[\[(?:TODO|DONE)\]\]\}\}|\[\[(?:TODO|DONE)\]\])\s*)?)"
    r"(?P<h1>\d{1,2})(?:[:h](?P<m1>\d{1,2})?)?\s?-\s?(?P<h2>\d{1,2})(?:[:h](?P<m2>\d{1,2})?)?\b"
)
_DATE_MARKER_RE = re.compile(r"^(?P<attribute>[\w -]+)::\s*\[\[(?P<title>[^\]]+)\]\]\s*$")

# Reference expansion stops descending after this many nested records.
_MAX_REFERENCE_DEPTH = 8


class ContentSanitizer:
    """Converts record content in both directions and manages back-links."""

    @staticmethod
    def clean_title_for_remote(title: str | None) -> str:
        """Strip outline markup from a title before it is sent to the remote side.

        TODO/DONE markers survive in their plain [[TODO]]/[[DONE]] form so task
        status round-trips.
        """
        if not title:
            return "(No title)"
        cleaned = _BULLET_RE.sub("", title)
        cleaned = cleaned.replace("{{[[TODO]]}}", "[[TODO]]").replace("{{[[DONE]]}}", "[[DONE]]")
        cleaned = _PAGE_REF_RE.sub(r"\1", cleaned)
        cleaned = _BLOCK_REF_RE.sub("", cleaned)
        cleaned = _TAG_BRACKET_RE.sub("", cleaned)
        cleaned = _TAG_RE.sub("", cleaned)
        cleaned = _EMBED_RE.sub("", cleaned)
        cleaned = _MACRO_RE.sub("", cleaned)
        cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
        return cleaned or "(No title)"

    @staticmethod
    def has_todo_marker(content: str | None) -> bool:
        return bool(content and _TODO_RE.search(content))

    @staticmethod
    def has_done_marker(content: str | None) -> bool:
        return bool(content and _DONE_RE.search(content))

    @staticmethod
    def format_tag(tag: str | None) -> str:
        if not tag:
            return ""
        return f" #[[{tag}]]" if " " in tag else f" #{tag}"

    @classmethod
    def remote_to_local_content(
        cls, record: RemoteRecord, tag: str | None = None, tz: tzinfo | None = None
    ) -> str:
        """Render a remote record as outline text, e.g. '9:00-10:00 Standup #Work'."""
        content = ""
        if record.start is not None and not record.all_day:
            start = to_local(record.start, tz)
            content = f"{start.hour}:{start.minute:02d}"
            if record.end is not None:
                end = to_local(record.end, tz)
                content += f"-{end.hour}:{end.minute:02d}"
            content += " "

        title = record.summary or "(No title)"
        title = title.replace("{{[[TODO]]}}", "[[TODO]]").replace("{{[[DONE]]}}", "[[DONE]]")
        title = title.replace("[[TODO]]", "{{[[TODO]]}}").replace("[[DONE]]", "{{[[DONE]]}}")
        if record.kind == "task" and not (cls.has_todo_marker(title) or cls.has_done_marker(title)):
            marker = "{{[[DONE]]}}" if record.status == "completed" else "{{[[TODO]]}}"
            title = f"{marker} {title}"
        return content + title + cls.format_tag(tag)

    @staticmethod
    def parse_time_range(content: str) -> tuple[tuple[int, int], tuple[int, int]] | None:
        """Return ((h, m), (h, m)) for the time range leading the content, if any."""
        match = _TIME_RANGE_RE.match(content or "")
        if not match:
            return None
        h1, m1, h2, m2 = match.group("h1", "m1", "h2", "m2")
        start = (int(h1), int(m1 or 0))
        end = (int(h2), int(m2 or 0))
        if start[0] > 23 or end[0] > 23 or start[1] > 59 or end[1] > 59:
            return None
        return start, end

    @classmethod
    def local_title(cls, content: str) -> str:
        """Content with its time range removed, cleaned for the remote side."""
        without_range = _TIME_RANGE_RE.sub(r"\g<lead>", content or "", count=1)
        return cls.clean_title_for_remote(without_range)

    @classmethod
    def build_event_payload(
        cls,
        content: str,
        day: date,
        end_day: date | None = None,
        description: str = "",
        tz: tzinfo | None = None,
    ) -> dict:
        """Remote event body for an outline record dated `day`."""
        payload: dict = {"summary": cls.local_title(content)}
        if description:
            payload["description"] = description
        time_range = cls.parse_time_range(content)
        if time_range:
            (h1, m1), (h2, m2) = time_range
            start = local_midnight(day, tz).replace(hour=h1, minute=m1)
            end = local_midnight(end_day or day, tz).replace(hour=h2, minute=m2)
            if end <= start:
                end += timedelta(days=1)
            payload["start"] = {"dateTime": start.isoformat()}
            payload["end"] = {"dateTime": end.isoformat()}
        else:
            last_day = end_day or day
            payload["start"] = {"date": day.isoformat()}
            payload["end"] = {"date": (last_day + timedelta(days=1)).isoformat()}
        return payload

    @classmethod
    def build_task_payload(cls, content: str, day: date, description: str = "") -> dict:
        # Task status carries the TODO/DONE state, so the markers stay local.
        unmarked = _DONE_RE.sub("", _TODO_RE.sub("", content or ""))
        payload = {
            "title": cls.local_title(unmarked),
            "due": f"{day.isoformat()}T00:00:00.000Z",
            "status": "completed" if cls.has_done_marker(content) else "needsAction",
        }
        if description:
            payload["notes"] = description
        return payload

    # ------------------------------------------------------------------ #
    # Back-links                                                           #
    # ------------------------------------------------------------------ #

    @staticmethod
    def back_link(domain: str, local_id: str) -> str:
        return f"{BACK_LINK_LABEL}outline://{domain}/{local_id}"

    @staticmethod
    def strip_back_link(description: str | None) -> str:
        return _BACK_LINK_BLOCK_RE.sub("", description or "").strip()

    @classmethod
    def with_back_link(cls, description: str | None, domain: str, local_id: str) -> str:
        """Replace any existing back-link in description with one to local_id."""
        base = cls.strip_back_link(description)
        return f"{base}{BACK_LINK_SEPARATOR}{cls.back_link(domain, local_id)}".lstrip("\n")

    @staticmethod
    def has_back_link(description: str | None) -> bool:
        return bool(description and BACK_LINK_RE.search(description))

    # ------------------------------------------------------------------ #
    # Date markers                                                         #
    # ------------------------------------------------------------------ #

    @staticmethod
    def date_marker(attribute: str, day: date) -> str:
        return f"{attribute}:: [[{partition_title(day)}]]"

    @staticmethod
    def parse_date_marker(content: str | None) -> tuple[str, str] | None:
        """Return (attribute, date title) for a child like 'until:: [[March 3rd, 2026]]'."""
        match = _DATE_MARKER_RE.match((content or "").strip())
        if not match:
            return None
        return match.group("attribute").strip(), match.group("title")

    # ------------------------------------------------------------------ #
    # Reference expansion                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def resolve_references(
        cls,
        content: str,
        lookup: Callable[[str], str | None],
        root_id: str | None = None,
        max_depth: int = _MAX_REFERENCE_DEPTH,
    ) -> str:
        """Inline ((id)) references using lookup(id).

        Each chain of references is followed at most once per record and at
        most max_depth levels deep; a reference back into the chain expands to
        nothing.  Unknown ids are left as they are.
        """
        seen = frozenset([root_id]) if root_id else frozenset()
        return cls._expand(content or "", lookup, seen, max_depth)

    @classmethod
    def _expand(cls, content, lookup, seen: frozenset, depth: int) -> str:
        def replace(match: re.Match) -> str:
            ref_id = match.group(1)
            if ref_id in seen or depth <= 0:
                return ""
            referenced = lookup(ref_id)
            if referenced is None:
                return match.group(0)
            return cls._expand(referenced, lookup, seen | {ref_id}, depth - 1)

        return _BLOCK_REF_RE.sub(replace, content)

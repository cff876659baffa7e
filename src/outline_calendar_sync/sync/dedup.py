"""
Detection and removal of duplicate remote records.

Duplicates appear when the local state was lost and records were exported a
second time, or when the same item was entered on both sides by hand.  Two
records are duplicates when their normalized titles match and they start (and,
if both have one, end) in the same wall-clock minute.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from outline_calendar_sync.dates import utcnow
from outline_calendar_sync.db import MetadataStore
from outline_calendar_sync.models import AuthError
from outline_calendar_sync.models import DedupStats
from outline_calendar_sync.models import DuplicateGroup
from outline_calendar_sync.models import RemoteAPIError
from outline_calendar_sync.models import RemoteRecord
from outline_calendar_sync.sync.recovery import extract_back_link
from outline_calendar_sync.sync.utils import minute_bucket
from outline_calendar_sync.sync.utils import normalize_title

logger = logging.getLogger(__name__)

DEDUP_COOLDOWN = timedelta(hours=24)
_LAST_RUN_KEY = "dedup-last-run:{calendar_id}"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def is_duplicate(a: RemoteRecord, b: RemoteRecord, tz=None) -> bool:
    """Return True if a and b are distinct records describing the same item."""
    if a.id == b.id:
        return False
    if normalize_title(a.summary) != normalize_title(b.summary):
        return False
    if a.start is None or b.start is None:
        return False
    if minute_bucket(a.start, tz) != minute_bucket(b.start, tz):
        return False
    if a.end is not None and b.end is not None:
        return minute_bucket(a.end, tz) == minute_bucket(b.end, tz)
    return True


def find_duplicates_for(record: RemoteRecord, candidates: list[RemoteRecord], tz=None):
    """All candidates that duplicate `record`, in candidate order."""
    return [c for c in candidates if is_duplicate(record, c, tz)]


class DeduplicationEngine:
    """Groups a calendar's records by similarity key and removes the extras."""

    def __init__(
        self, store: MetadataStore, remote, domain: str | None = None, tz=None, local_store=None
    ):
        self.store = store
        self.remote = remote
        self.local_store = local_store
        self.domain = domain
        self.tz = tz

    def _start_key(self, record: RemoteRecord) -> str:
        return f"{normalize_title(record.summary)}|{minute_bucket(record.start, self.tz)}"

    def _end_key(self, record: RemoteRecord) -> str:
        return minute_bucket(record.end, self.tz) or "none"

    def _is_linked(self, record: RemoteRecord) -> bool:
        return self.store.find_by_remote_id(record.id) is not None

    def _has_back_link(self, record: RemoteRecord) -> bool:
        return extract_back_link(record.description, self.domain) is not None

    def _is_exempt(self, record: RemoteRecord) -> bool:
        """Keep-both copies, and copies still linked to a live local record."""
        linked = self.store.find_by_remote_id(record.id)
        if linked is None:
            return False
        if linked.keep_both:
            return True
        return self.local_store is not None and self.local_store.record_exists(linked.local_id)

    def _choose_keeper(self, members: list[RemoteRecord]) -> RemoteRecord:
        for predicate in (self._is_exempt, self._is_linked, self._has_back_link):
            for member in members:
                if predicate(member):
                    return member
        return min(members, key=lambda r: (r.created or r.updated or _EPOCH, r.id))

    def plan(self, records: list[RemoteRecord]) -> list[DuplicateGroup]:
        """Group records into confirmed duplicate groups without touching anything."""
        by_start: dict[str, list[RemoteRecord]] = {}
        for record in records:
            if record.is_cancelled or record.start is None:
                continue
            by_start.setdefault(self._start_key(record), []).append(record)

        groups: list[DuplicateGroup] = []
        for start_key, candidates in by_start.items():
            if len(candidates) < 2:
                continue
            by_end: dict[str, list[RemoteRecord]] = {}
            for record in candidates:
                by_end.setdefault(self._end_key(record), []).append(record)
            for end_key, members in by_end.items():
                if len(members) < 2:
                    continue
                keeper = self._choose_keeper(members)
                exempt = [m for m in members if m.id != keeper.id and self._is_exempt(m)]
                groups.append(
                    DuplicateGroup(
                        key=f"{start_key}|{end_key}", keeper=keeper, members=members, exempt=exempt
                    )
                )
        return groups

    async def deduplicate_all(
        self, records: list[RemoteRecord], calendar_id: str, dry_run: bool = False
    ) -> DedupStats:
        """Remove every duplicate but the keeper of each group.

        Individual removal failures are counted and the pass continues; an
        AuthError aborts it.
        """
        stats = DedupStats(scanned=len(records))
        groups = self.plan(records)
        to_remove = [record for group in groups for record in group.to_remove]
        stats.duplicates_found = len(to_remove)

        for group in groups:
            logger.debug(
                f"Duplicate group {group.key!r}: keeping {group.keeper.id}, "
                f"removing {[r.id for r in group.to_remove]}"
            )

        for record in to_remove:
            if dry_run:
                logger.info(f"[DRY RUN] Would remove duplicate {record.id} ({record.summary!r})")
                continue
            try:
                await self.remote.delete_event(calendar_id, record.id)
            except AuthError:
                raise
            except RemoteAPIError as e:
                logger.error(f"Failed to remove duplicate {record.id}: {e}")
                stats.failed += 1
                continue
            stats.removed += 1
            stale = self.store.find_by_remote_id(record.id)
            if stale is not None:
                logger.info(f"Dropping superseded link {stale.local_id} -> {record.id}")
                self.store.delete(stale.local_id)

        logger.info(
            f"Deduplication of {calendar_id}: {stats.scanned} scanned, "
            f"{stats.duplicates_found} duplicate(s), {stats.removed} removed, "
            f"{stats.failed} failed"
        )
        return stats

    # ------------------------------------------------------------------ #
    # Throttling                                                           #
    # ------------------------------------------------------------------ #

    def last_run(self, calendar_id: str) -> datetime | None:
        value = self.store.get_setting(_LAST_RUN_KEY.format(calendar_id=calendar_id))
        return datetime.fromisoformat(value) if value else None

    def should_run_auto(self, calendar_id: str, now: datetime | None = None) -> bool:
        last = self.last_run(calendar_id)
        if last is None:
            return True
        return (now or utcnow()) - last > DEDUP_COOLDOWN

    def mark_run(self, calendar_id: str, now: datetime | None = None) -> None:
        when = now or utcnow()
        self.store.set_setting(_LAST_RUN_KEY.format(calendar_id=calendar_id), when.isoformat())

    def reset_cooldown(self, calendar_id: str) -> None:
        self.store.set_setting(_LAST_RUN_KEY.format(calendar_id=calendar_id), None)

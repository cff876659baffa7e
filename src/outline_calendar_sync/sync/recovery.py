"""
Recovery of lost sync records from back-links embedded in remote descriptions.

The SQLite state is the only place a link is recorded on our side; if it is
lost (new machine, deleted DB), the back-link we append to every remote
description is enough to rebuild it.  Recovery must run before any export pass
so that records whose link was forgotten are not exported a second time.
"""

import logging

from outline_calendar_sync.dates import utcnow
from outline_calendar_sync.db import MetadataStore
from outline_calendar_sync.models import RecoveryStats
from outline_calendar_sync.models import RemoteRecord
from outline_calendar_sync.models import SyncRecord
from outline_calendar_sync.sanitizer import BACK_LINK_RE
from outline_calendar_sync.sanitizer import ContentSanitizer
from outline_calendar_sync.sync.utils import record_end_date

logger = logging.getLogger(__name__)


def extract_back_link(description: str | None, domain: str | None = None) -> str | None:
    """Return the local record id embedded in a remote description.

    When `domain` is given, links that point into a different outline are
    ignored.
    """
    if not description:
        return None
    for match in BACK_LINK_RE.finditer(description):
        if domain is None or match.group("domain") == domain:
            return match.group("local_id")
    return None


class RecoveryEngine:
    def __init__(self, store: MetadataStore, local_store, domain: str | None = None, tz=None):
        self.store = store
        self.local_store = local_store
        self.domain = domain
        self.tz = tz

    def recover(self, records: list[RemoteRecord], calendar_id: str) -> RecoveryStats:
        """Rebuild SyncRecords for back-linked remote records nobody references."""
        stats = RecoveryStats()
        claims: dict[str, set[str]] = {}
        for record in records:
            local_id = extract_back_link(record.description, self.domain)
            if local_id:
                claims.setdefault(local_id, set()).add(record.id)

        for record in records:
            stats.scanned += 1
            local_id = extract_back_link(record.description, self.domain)
            if not local_id:
                stats.skipped += 1
                continue
            if self.store.find_by_remote_id(record.id) is not None:
                stats.skipped += 1
                continue

            existing = self.store.get(local_id)
            if existing is not None and existing.remote_id in claims[local_id]:
                # Another copy claiming the same local record is already linked;
                # the extra copy is a duplicate for the dedup pass.
                logger.debug(
                    f"Not recovering {record.id}: {local_id} already linked to {existing.remote_id}"
                )
                stats.skipped += 1
                continue

            if not self.local_store.record_exists(local_id):
                logger.warning(
                    f"Cannot recover link for remote {record.id}: "
                    f"local record {local_id} no longer exists"
                )
                stats.failed += 1
                continue

            if existing is not None:
                logger.info(
                    f"Superseding stale link {local_id} -> {existing.remote_id} with {record.id}"
                )
            content = self.local_store.get_record_content(local_id)
            now = utcnow()
            self.store.save(
                local_id,
                SyncRecord(
                    local_id=local_id,
                    remote_id=record.id,
                    remote_calendar_id=calendar_id,
                    etag=record.etag,
                    remote_updated_at=record.updated,
                    local_updated_at=now,
                    last_sync_at=now,
                    remote_end_date=record_end_date(record, self.tz),
                    is_open_task=record.is_open_task or ContentSanitizer.has_todo_marker(content),
                    kind=record.kind,
                ),
            )
            logger.info(f"Recovered link {local_id} <-> {record.id}")
            stats.recovered += 1

        if stats.recovered:
            logger.info(
                f"Recovery: recovered {stats.recovered} lost link(s) "
                f"({stats.failed} failed, {stats.skipped} skipped)"
            )
        return stats

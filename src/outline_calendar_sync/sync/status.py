"""
Sync status classification for a linked pair.
"""

from outline_calendar_sync.models import Direction
from outline_calendar_sync.models import RemoteRecord
from outline_calendar_sync.models import SyncRecord
from outline_calendar_sync.models import SyncStatus
from outline_calendar_sync.models import SyncVerdict


def classify(record: SyncRecord | None, remote: RemoteRecord | None) -> SyncVerdict:
    """
    Classify a SyncRecord against the current remote snapshot.

    A side counts as changed when its timestamp is strictly later than the
    record's last_sync_at.  The remote timestamp is the snapshot's `updated`
    (falling back to the stored remote_updated_at); the local timestamp is
    local_updated_at, which defaults to last_sync_at when never set.

    Pure: the same inputs always give the same verdict.
    """
    if record is None or remote is None:
        return SyncVerdict(SyncStatus.LOCAL_ONLY)

    last_sync = record.last_sync_at
    remote_updated = remote.updated or record.remote_updated_at
    local_updated = record.local_updated_at or last_sync

    remote_changed = _after(remote_updated, last_sync)
    local_changed = _after(local_updated, last_sync)

    if remote_changed and local_changed:
        return SyncVerdict(SyncStatus.CONFLICT)
    if remote_changed:
        return SyncVerdict(SyncStatus.PENDING, Direction.REMOTE_TO_LOCAL)
    if local_changed:
        return SyncVerdict(SyncStatus.PENDING, Direction.LOCAL_TO_REMOTE)
    return SyncVerdict(SyncStatus.SYNCED)


def _after(timestamp, last_sync) -> bool:
    if timestamp is None:
        return False
    return last_sync is None or timestamp > last_sync

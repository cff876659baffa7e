"""
Sync cycle driver: pulls remote changes, repairs lost links, classifies each
linked pair and applies imports, updates and deletions.

Every action that writes a record holds a LockManager lock for that record,
keyed by local id (or by remote id for imports, which have no local id yet).
"""

import dataclasses
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from datetime import datetime
from datetime import timedelta

from outline_calendar_sync.dates import parse_partition_title
from outline_calendar_sync.dates import partition_date
from outline_calendar_sync.dates import partition_id
from outline_calendar_sync.dates import partition_title
from outline_calendar_sync.dates import resolve_timezone
from outline_calendar_sync.dates import sync_window
from outline_calendar_sync.dates import utcnow
from outline_calendar_sync.db import MetadataStore
from outline_calendar_sync.models import AuthError
from outline_calendar_sync.models import CalendarConfig
from outline_calendar_sync.models import CalendarSyncError
from outline_calendar_sync.models import CalendarSyncResult
from outline_calendar_sync.models import ConflictCandidate
from outline_calendar_sync.models import DedupStats
from outline_calendar_sync.models import Direction
from outline_calendar_sync.models import LocalRecordMissing
from outline_calendar_sync.models import LockContention
from outline_calendar_sync.models import ParseError
from outline_calendar_sync.models import RecoveryStats
from outline_calendar_sync.models import RemoteAPIError
from outline_calendar_sync.models import RemoteRecord
from outline_calendar_sync.models import SyncConfig
from outline_calendar_sync.models import SyncRecord
from outline_calendar_sync.models import SyncStats
from outline_calendar_sync.models import SyncStatus
from outline_calendar_sync.sanitizer import ContentSanitizer
from outline_calendar_sync.sync.dedup import DeduplicationEngine
from outline_calendar_sync.sync.dedup import find_duplicates_for
from outline_calendar_sync.sync.locks import LockManager
from outline_calendar_sync.sync.recovery import RecoveryEngine
from outline_calendar_sync.sync.status import classify
from outline_calendar_sync.sync.utils import is_multi_day
from outline_calendar_sync.sync.utils import parse_remote_record
from outline_calendar_sync.sync.utils import parse_rfc3339
from outline_calendar_sync.sync.utils import record_end_date
from outline_calendar_sync.sync.utils import record_start_date

CONFLICT_CHOICES = ("remote", "local", "both")
START_ATTRIBUTE = "start"

# Margin kept below the oldest unfinished record when advancing last_sync_time.
_WATERMARK_MARGIN = timedelta(seconds=1)


@dataclass
class _Action:
    kind: str  # 'import', 'update', 'delete_local'
    remote: RemoteRecord
    record: SyncRecord | None = None
    direction: Direction | None = None


class Orchestrator:
    """Drives sync cycles for any number of calendars against one local store."""

    def __init__(
        self,
        stores: dict[str, MetadataStore],
        local_store,
        remotes: dict,
        locks: LockManager,
        config: SyncConfig,
        sanitizer: type[ContentSanitizer] = ContentSanitizer,
        logger: logging.Logger | None = None,
    ):
        self.stores = stores
        self.local_store = local_store
        self.remotes = remotes
        self.locks = locks
        self.config = config
        self.sanitizer = sanitizer
        self.logger = logger or logging.getLogger(__name__)
        self.tz = resolve_timezone(config.timezone)

    # ------------------------------------------------------------------ #
    # Collaborator lookup                                                  #
    # ------------------------------------------------------------------ #

    def store_for(self, calendar: CalendarConfig) -> MetadataStore:
        return self.stores[calendar.namespace]

    def remote_for(self, calendar: CalendarConfig):
        try:
            return self.remotes[calendar.kind]
        except KeyError:
            raise CalendarSyncError(f"No remote client for {calendar.kind} calendars") from None

    def recovery_for(self, calendar: CalendarConfig) -> RecoveryEngine:
        return RecoveryEngine(self.store_for(calendar), self.local_store, self.config.domain, self.tz)

    def dedup_for(self, calendar: CalendarConfig) -> DeduplicationEngine:
        return DeduplicationEngine(
            self.store_for(calendar),
            self.remote_for(calendar),
            self.config.domain,
            self.tz,
            local_store=self.local_store,
        )

    def calendar_by_id(self, calendar_id: str) -> CalendarConfig | None:
        for calendar in self.config.calendars:
            if calendar.id == calendar_id:
                return calendar
        return None

    @staticmethod
    def _record_kind(calendar: CalendarConfig) -> str:
        return "task" if calendar.kind == "tasks" else "event"

    # ------------------------------------------------------------------ #
    # Remote listing                                                       #
    # ------------------------------------------------------------------ #

    async def fetch(
        self, calendar: CalendarConfig, stats: SyncStats | None = None, incremental: bool = False
    ) -> list[RemoteRecord]:
        """List and parse the calendar's records inside the sync window.

        Payloads that fail to parse are counted in `stats` and dropped.
        """
        time_min, time_max = sync_window(
            utcnow(), self.config.window_days_back, self.config.window_days_forward
        )
        options = {}
        if incremental:
            last = calendar.last_sync_time or self.store_for(calendar).get_last_sync_time(
                calendar.id
            )
            if last:
                options = {"updated_min": last, "show_deleted": True}
        payloads = await self.remote_for(calendar).list_events(
            calendar.id, time_min, time_max, **options
        )
        records = []
        for payload in payloads:
            try:
                records.append(
                    parse_remote_record(payload, calendar.id, self._record_kind(calendar), self.tz)
                )
            except ParseError as e:
                self.logger.error(f"Skipping malformed record from {calendar.id}: {e}")
                if stats is not None:
                    stats.record_error(str(e))
        return records

    # ------------------------------------------------------------------ #
    # Sync cycles                                                          #
    # ------------------------------------------------------------------ #

    async def incremental_sync(self, calendar: CalendarConfig) -> SyncStats:
        """Pull what changed remotely since the last cycle and reconcile it.

        Listing or authentication failures propagate; failures of individual
        records are counted and the cycle carries on.  The calendar's last
        sync time then advances to the start of this cycle, but stays just
        below any record that was skipped, failed or left in conflict so the
        next cycle lists it again.
        """
        stats = SyncStats()
        store = self.store_for(calendar)
        cycle_started = utcnow()

        records = await self.fetch(calendar, stats, incremental=True)
        self.logger.info(f"[{calendar.tag}] {len(records)} remote change(s) to process")

        recovery = self.recovery_for(calendar).recover(records, calendar.id)
        stats.recovered = recovery.recovered

        unfinished = []
        actions = self._plan(calendar, records, stats)
        for action in actions:
            if not await self._run_action(calendar, action, stats):
                unfinished.append(action.remote)
        unfinished.extend(c.remote for c in stats.conflicts)

        watermark = self._watermark(cycle_started, unfinished)
        if self.config.dry_run:
            self.logger.info(f"[DRY RUN] Would advance last sync time of {calendar.id}")
        else:
            calendar.last_sync_time = watermark
            store.set_last_sync_time(calendar.id, watermark)
        return stats

    @staticmethod
    def _watermark(cycle_started: datetime, unfinished: list[RemoteRecord]) -> datetime:
        pending = [r.updated for r in unfinished if r.updated is not None]
        if not pending:
            return cycle_started
        return min(cycle_started, min(pending) - _WATERMARK_MARGIN)

    def _plan(
        self, calendar: CalendarConfig, records: list[RemoteRecord], stats: SyncStats
    ) -> list[_Action]:
        store = self.store_for(calendar)
        actions: list[_Action] = []
        for remote in records:
            linked = store.find_by_remote_id(remote.id)
            if remote.is_cancelled:
                if linked is not None:
                    actions.append(_Action("delete_local", remote, linked))
                continue
            if linked is None:
                actions.append(_Action("import", remote))
                continue

            linked = dataclasses.replace(linked, local_updated_at=self._local_updated_at(linked))
            verdict = classify(linked, remote)
            if verdict.status is SyncStatus.CONFLICT:
                self.logger.info(f"Conflict on {linked.local_id} <-> {remote.id}")
                stats.conflicts.append(
                    ConflictCandidate(
                        record=linked,
                        remote=remote,
                        verdict=verdict,
                        local_content=self.local_store.get_record_content(linked.local_id),
                    )
                )
            elif verdict.status is SyncStatus.PENDING:
                actions.append(_Action("update", remote, linked, verdict.direction))
        return actions

    def _local_updated_at(self, record: SyncRecord):
        """Latest of the stored local timestamp and the local store's own one."""
        observed = self.local_store.get_updated_at(record.local_id)
        candidates = [t for t in (record.local_updated_at, observed) if t is not None]
        return max(candidates) if candidates else None

    def _changed_locally(self, record: SyncRecord) -> bool:
        local_updated = self._local_updated_at(record)
        if local_updated is None:
            return False
        return record.last_sync_at is None or local_updated > record.last_sync_at

    async def _run_action(self, calendar: CalendarConfig, action: _Action, stats: SyncStats) -> bool:
        """Apply one planned action. Returns False if it was skipped or failed."""
        remote = action.remote
        if self.config.dry_run:
            self._log_dry_run(action)
            return True

        if action.kind == "delete_local":
            return self._delete_local(calendar, action.record, stats)

        if action.kind == "import":
            label = f"import of {remote.id}"
            done = await self._attempt(stats, label, lambda: self.apply_import(remote, calendar))
            if done:
                stats.imported += 1
            return done

        local_id = action.record.local_id
        if action.direction is Direction.REMOTE_TO_LOCAL:

            def step():
                return self.apply_remote_to_local_update(local_id, remote, calendar)

        else:

            def step():
                return self.apply_local_to_remote_update(local_id, calendar)

        done = await self._attempt(stats, f"update of {local_id}", step)
        if done:
            stats.updated += 1
        return done

    async def _attempt(self, stats: SyncStats, label: str, step: Callable[[], Awaitable]) -> bool:
        """Run one action; count its failure instead of raising (AuthError excepted)."""
        try:
            await step()
            return True
        except LockContention as e:
            self.logger.info(f"Skipping {label}: {e}")
            stats.skipped += 1
        except AuthError:
            raise
        except (CalendarSyncError, OSError) as e:
            self.logger.error(f"Failed {label}: {e}")
            stats.record_error(f"{label}: {e}")
        return False

    def _log_dry_run(self, action: _Action):
        if action.kind == "import":
            self.logger.info(f"[DRY RUN] Would IMPORT {action.remote.id} ({action.remote.summary!r})")
        elif action.kind == "delete_local":
            self.logger.info(f"[DRY RUN] Would DELETE local {action.record.local_id} (cancelled)")
        else:
            self.logger.info(
                f"[DRY RUN] Would UPDATE {action.record.local_id} ({action.direction.value})"
            )

    def _delete_local(self, calendar: CalendarConfig, record: SyncRecord, stats: SyncStats) -> bool:
        """Drop the link of a cancelled remote record and delete or queue the local record.

        Nothing changes while another action holds the local record's lock; the
        link stays and the cancellation is picked up again next cycle.
        """
        if not self.locks.acquire(record.local_id):
            self.logger.info(f"Skipping delete of {record.local_id}: record is locked")
            stats.skipped += 1
            return False
        try:
            if self.config.delete_local and self.local_store.record_exists(record.local_id):
                self.local_store.delete_record(record.local_id)
            self.store_for(calendar).delete(record.local_id)
        except (CalendarSyncError, OSError) as e:
            self.logger.error(f"Failed to delete local {record.local_id}: {e}")
            stats.record_error(str(e))
            return False
        finally:
            self.locks.release(record.local_id)

        if self.config.delete_local:
            stats.deleted_local += 1
            self.logger.info(f"Deleted local {record.local_id} (remote {record.remote_id} cancelled)")
        else:
            self.logger.info(
                f"Remote {record.remote_id} cancelled; local {record.local_id} queued for deletion"
            )
            stats.pending_local_deletes.append(record.local_id)
        return True

    async def full_sync(self, calendars: list[CalendarConfig] | None = None):
        """Run incremental_sync over every enabled calendar, one after another.

        With auto_dedup on, each calendar is deduplicated (at most once per
        cooldown) before its changes are imported, so duplicates are removed
        before they get linked.  A calendar that fails is reported in its
        result and the next one still runs.  AuthError aborts the whole pass.
        """
        results: list[CalendarSyncResult] = []
        for calendar in calendars if calendars is not None else self.config.calendars:
            if not calendar.enabled:
                self.logger.debug(f"Skipping disabled calendar {calendar.id}")
                continue
            if self.config.auto_dedup:
                try:
                    await self.run_deduplication(calendar)
                except AuthError:
                    raise
                except CalendarSyncError as e:
                    self.logger.warning(f"Deduplication of {calendar.id} failed: {e}")
            try:
                stats = await self.incremental_sync(calendar)
            except AuthError:
                raise
            except CalendarSyncError as e:
                self.logger.error(f"Sync of {calendar.id} failed: {e}")
                results.append(CalendarSyncResult(calendar.id, SyncStats(), error=str(e)))
                continue
            except Exception as e:
                self.logger.exception(f"Sync of {calendar.id} failed unexpectedly")
                results.append(CalendarSyncResult(calendar.id, SyncStats(), error=repr(e)))
                continue
            results.append(CalendarSyncResult(calendar.id, stats))
        return results

    # ------------------------------------------------------------------ #
    # Actions                                                              #
    # ------------------------------------------------------------------ #

    async def apply_import(self, remote: RemoteRecord, calendar: CalendarConfig) -> str:
        """Create a local record for a remote one. Returns the local id.

        A remote record that is already linked is not imported twice.
        """
        with self.locks.guard(f"remote:{remote.id}"):
            existing = self.store_for(calendar).find_by_remote_id(remote.id)
            if existing is not None:
                self.logger.debug(f"{remote.id} already linked to {existing.local_id}")
                return existing.local_id
            return self._import(remote, calendar)

    def _import(self, remote: RemoteRecord, calendar: CalendarConfig, keep_both=False) -> str:
        start_day = record_start_date(remote, self.tz)
        if start_day is None:
            raise ParseError(f"Remote {remote.id} has no start date")
        parent = self.local_store.ensure_partition(
            partition_id(start_day), partition_title(start_day)
        )
        content = self.sanitizer.remote_to_local_content(remote, calendar.tag, self.tz)
        local_id = self.local_store.create_record(parent, content)
        if is_multi_day(remote, self.tz):
            self.local_store.create_record(
                local_id,
                self.sanitizer.date_marker(
                    self.config.end_attribute, record_end_date(remote, self.tz)
                ),
                order="first",
            )
        self.store_for(calendar).save(
            local_id, self._linked_record(local_id, remote, calendar, content, keep_both)
        )
        self.logger.info(f"Imported {remote.id} as {local_id} ({content!r})")
        return local_id

    def _linked_record(
        self,
        local_id: str,
        remote: RemoteRecord,
        calendar: CalendarConfig,
        content: str,
        keep_both: bool = False,
    ) -> SyncRecord:
        now = utcnow()
        synced_at = max(now, remote.updated) if remote.updated else now
        return SyncRecord(
            local_id=local_id,
            remote_id=remote.id,
            remote_calendar_id=calendar.id,
            etag=remote.etag,
            remote_updated_at=remote.updated,
            local_updated_at=synced_at,
            last_sync_at=synced_at,
            remote_end_date=record_end_date(remote, self.tz),
            is_open_task=remote.is_open_task or self.sanitizer.has_todo_marker(content),
            kind=remote.kind,
            keep_both=keep_both,
        )

    async def apply_remote_to_local_update(
        self, local_id: str, remote: RemoteRecord, calendar: CalendarConfig
    ) -> str:
        """Bring a local record in line with its remote snapshot. Returns the local id.

        When the local record has disappeared the stale link is dropped and
        the remote record is imported afresh, so the returned id may differ.
        """
        store = self.store_for(calendar)
        with self.locks.guard(local_id):
            existing = store.get(local_id)
            if not self.local_store.record_exists(local_id):
                self.logger.info(f"Local {local_id} is gone; re-importing {remote.id}")
                store.delete(local_id)
                return await self.apply_import(remote, calendar)

            current = self.local_store.get_record_content(local_id) or ""
            content = self.sanitizer.remote_to_local_content(remote, calendar.tag, self.tz)
            if self._content_differs(current, content):
                self.local_store.update_record(local_id, content)
            else:
                content = current

            start_day = record_start_date(remote, self.tz)
            if start_day is not None:
                self._relocate(local_id, start_day)
                self._sync_date_markers(local_id, remote)

            keep_both = existing.keep_both if existing else False
            store.save(local_id, self._linked_record(local_id, remote, calendar, content, keep_both))
            self.logger.info(f"Updated local {local_id} from {remote.id}")
            return local_id

    def _content_differs(self, current: str, incoming: str) -> bool:
        if self.sanitizer.local_title(current) != self.sanitizer.local_title(incoming):
            return True
        return self.sanitizer.parse_time_range(current) != self.sanitizer.parse_time_range(incoming)

    def _partition_of(self, local_id: str) -> str | None:
        """Top-level ancestor of a record, if that ancestor is a date partition."""
        current = local_id
        parent = self.local_store.get_parent(current)
        while parent is not None:
            current = parent
            parent = self.local_store.get_parent(current)
        if current == local_id or partition_date(current) is None:
            return None
        return current

    def _relocate(self, local_id: str, day: date):
        current = self._partition_of(local_id)
        target = partition_id(day)
        if current is None or current == target:
            return
        self.local_store.ensure_partition(target, partition_title(day))
        if self.local_store.get_parent(local_id) == current:
            self.local_store.move_record(local_id, target)
            self.logger.info(f"Moved {local_id} from {current} to {target}")

    def _date_markers(self, local_id: str) -> dict[str, tuple[str, str]]:
        """attribute -> (child id, date title) for the record's date marker children."""
        markers = {}
        for child in self.local_store.get_children(local_id):
            parsed = self.sanitizer.parse_date_marker(self.local_store.get_record_content(child))
            if parsed:
                markers.setdefault(parsed[0], (child, parsed[1]))
        return markers

    def _sync_date_markers(self, local_id: str, remote: RemoteRecord):
        markers = self._date_markers(local_id)
        start_day = record_start_date(remote, self.tz)
        end_day = record_end_date(remote, self.tz)

        if START_ATTRIBUTE in markers:
            child, title = markers[START_ATTRIBUTE]
            if title != partition_title(start_day):
                self.local_store.update_record(
                    child, self.sanitizer.date_marker(START_ATTRIBUTE, start_day)
                )

        end_attribute = self.config.end_attribute
        if is_multi_day(remote, self.tz):
            expected = self.sanitizer.date_marker(end_attribute, end_day)
            if end_attribute in markers:
                child, title = markers[end_attribute]
                if title != partition_title(end_day):
                    self.local_store.update_record(child, expected)
            else:
                self.local_store.create_record(local_id, expected, order="first")
        elif end_attribute in markers:
            self.local_store.delete_record(markers[end_attribute][0])

    def _record_days(self, local_id: str) -> tuple[date, date | None]:
        partition = self._partition_of(local_id)
        if partition is None:
            raise CalendarSyncError(f"Local record {local_id} is not under a date partition")
        end_day = None
        end_marker = self._date_markers(local_id).get(self.config.end_attribute)
        if end_marker:
            end_day = parse_partition_title(end_marker[1])
        return partition_date(partition), end_day

    def _build_payload(self, local_id: str, content: str, calendar: CalendarConfig, create: bool):
        day, end_day = self._record_days(local_id)
        resolved = self.sanitizer.resolve_references(
            content, self.local_store.get_record_content, root_id=local_id
        )
        description = ""
        if create:
            description = self.sanitizer.with_back_link("", self.config.domain, local_id)
        if calendar.kind == "tasks":
            return self.sanitizer.build_task_payload(resolved, day, description), day
        payload = self.sanitizer.build_event_payload(resolved, day, end_day, description, self.tz)
        return payload, end_day or day

    async def apply_local_to_remote_update(
        self, local_id: str, calendar: CalendarConfig
    ) -> SyncRecord | None:
        """Create or update the remote record from the current local content.

        Returns the new SyncRecord, or None when the linked remote record
        turned out to be deleted (the link is dropped in that case).
        """
        store = self.store_for(calendar)
        remote_api = self.remote_for(calendar)
        with self.locks.guard(local_id):
            content = self.local_store.get_record_content(local_id)
            if content is None:
                raise LocalRecordMissing(f"Local record {local_id} does not exist")
            existing = store.get(local_id)
            payload, end_day = self._build_payload(local_id, content, calendar, existing is None)

            if existing is None:
                response = await remote_api.create_event(calendar.id, payload)
                remote_id = response["id"]
                self.logger.info(f"Exported {local_id} as {remote_id}")
            else:
                remote_id = existing.remote_id
                try:
                    response = await remote_api.update_event(calendar.id, remote_id, payload)
                except RemoteAPIError as e:
                    if e.status not in (404, 410):
                        raise
                    self.logger.warning(
                        f"Remote {remote_id} was deleted; dropping link of {local_id}"
                    )
                    store.delete(local_id)
                    return None
                self.logger.info(f"Pushed {local_id} to {remote_id}")

            updated = parse_rfc3339(response["updated"], "updated") if response.get("updated") else None
            now = utcnow()
            synced_at = max(now, updated) if updated else now
            is_open = self.sanitizer.has_todo_marker(content)
            if calendar.kind == "tasks":
                is_open = not self.sanitizer.has_done_marker(content)
            record = SyncRecord(
                local_id=local_id,
                remote_id=remote_id,
                remote_calendar_id=calendar.id,
                etag=response.get("etag"),
                remote_updated_at=updated,
                local_updated_at=synced_at,
                last_sync_at=synced_at,
                remote_end_date=end_day,
                is_open_task=is_open,
                kind=self._record_kind(calendar),
                keep_both=existing.keep_both if existing else False,
            )
            store.save(local_id, record)
            return record

    async def resolve_conflict(
        self, candidate: ConflictCandidate, choice: str, calendar: CalendarConfig | None = None
    ) -> str:
        """Settle a conflict by explicit choice. Returns the local id holding the remote version.

        remote: overwrite the local record with the remote snapshot.
        local:  keep the local record and mark the pair synced; the remote
                record is left untouched until the next export.
        both:   keep two linked copies.  The remote snapshot is imported as a
                new local record which takes over the existing remote link,
                and the original local record is exported as a new remote
                record.  Both links carry the keep-both marker so the pair is
                never deduplicated.
        """
        if choice not in CONFLICT_CHOICES:
            raise ValueError(f"Unknown conflict choice: {choice!r}")
        remote = candidate.remote
        local_id = candidate.record.local_id
        calendar = calendar or self.calendar_by_id(remote.calendar_id)
        if calendar is None:
            calendar = CalendarConfig(
                id=remote.calendar_id, kind="tasks" if remote.kind == "task" else "events"
            )
        store = self.store_for(calendar)

        if choice == "remote":
            return await self.apply_remote_to_local_update(local_id, remote, calendar)

        if choice == "local":
            with self.locks.guard(local_id):
                now = utcnow()
                synced_at = max(now, remote.updated) if remote.updated else now
                store.update(
                    local_id,
                    etag=remote.etag,
                    remote_updated_at=remote.updated,
                    local_updated_at=synced_at,
                    last_sync_at=synced_at,
                )
            self.logger.info(f"Kept local version of {local_id}")
            return local_id

        with self.locks.guard(local_id), self.locks.guard(f"remote:{remote.id}"):
            store.delete(local_id)
            copy_id = self._import(remote, calendar, keep_both=True)
        await self._relink_remote(copy_id, remote, calendar)
        exported = await self.apply_local_to_remote_update(local_id, calendar)
        if exported is not None:
            store.update(local_id, keep_both=True)
        self.logger.info(f"Kept both: {copy_id} <-> {remote.id}, {local_id} exported separately")
        return copy_id

    async def _relink_remote(self, local_id: str, remote: RemoteRecord, calendar: CalendarConfig):
        """Point the remote record's back-link at local_id."""
        description = self.sanitizer.with_back_link(remote.description, self.config.domain, local_id)
        field_name = "notes" if calendar.kind == "tasks" else "description"
        with self.locks.guard(local_id):
            response = await self.remote_for(calendar).update_event(
                calendar.id, remote.id, {field_name: description}
            )
            updated = response.get("updated") if response else None
            if updated:
                updated_at = parse_rfc3339(updated, "updated")
                synced_at = max(utcnow(), updated_at)
                self.store_for(calendar).update(
                    local_id,
                    etag=response.get("etag"),
                    remote_updated_at=updated_at,
                    local_updated_at=synced_at,
                    last_sync_at=synced_at,
                )

    # ------------------------------------------------------------------ #
    # Export, linking and maintenance                                      #
    # ------------------------------------------------------------------ #

    async def export_records(
        self, calendar: CalendarConfig, local_ids: list[str] | None = None
    ) -> SyncStats:
        """Push local records to the remote calendar.

        Recovery runs first so records whose link was forgotten are re-linked
        rather than exported again.  An unlinked local record that matches an
        existing unlinked remote record is linked to it instead of creating a
        duplicate.  Linked records are pushed only when changed locally.
        """
        stats = SyncStats()
        store = self.store_for(calendar)
        records = await self.fetch(calendar, stats)
        stats.recovered = self.recovery_for(calendar).recover(records, calendar.id).recovered

        if local_ids is None:
            local_ids = []
            for tag in calendar.trigger_tags or [calendar.tag]:
                local_ids.extend(i for i in self.local_store.find_tagged(tag) if i not in local_ids)
        unlinked = [r for r in records if not r.is_cancelled and store.find_by_remote_id(r.id) is None]

        for local_id in local_ids:
            linked = store.get(local_id)
            if linked is not None:
                if not self._changed_locally(linked):
                    continue
                if self.config.dry_run:
                    self.logger.info(f"[DRY RUN] Would PUSH {local_id}")
                elif await self._attempt(
                    stats,
                    f"push of {local_id}",
                    lambda: self.apply_local_to_remote_update(local_id, calendar),
                ):
                    stats.updated += 1
                continue

            match = self._find_existing(local_id, calendar, unlinked)
            if match is not None:
                if self.config.dry_run:
                    self.logger.info(f"[DRY RUN] Would LINK {local_id} to existing {match.id}")
                elif await self._attempt(
                    stats,
                    f"link of {local_id}",
                    lambda: self.link_to_existing(local_id, match, calendar),
                ):
                    stats.linked += 1
                    unlinked.remove(match)
                continue

            if self.config.dry_run:
                self.logger.info(f"[DRY RUN] Would EXPORT {local_id}")
            elif await self._attempt(
                stats,
                f"export of {local_id}",
                lambda: self.apply_local_to_remote_update(local_id, calendar),
            ):
                stats.exported += 1
        return stats

    def _find_existing(
        self, local_id: str, calendar: CalendarConfig, candidates: list[RemoteRecord]
    ) -> RemoteRecord | None:
        """First unlinked remote record duplicating what exporting local_id would create."""
        content = self.local_store.get_record_content(local_id)
        if content is None or not candidates:
            return None
        try:
            payload, _ = self._build_payload(local_id, content, calendar, create=False)
            provisional = parse_remote_record(
                {
                    **payload,
                    "id": f"pending:{local_id}",
                    "status": payload.get("status", "confirmed"),
                },
                calendar.id,
                self._record_kind(calendar),
                self.tz,
            )
        except CalendarSyncError as e:
            self.logger.debug(f"Cannot match {local_id} against remote records: {e}")
            return None
        matches = find_duplicates_for(provisional, candidates, self.tz)
        return matches[0] if matches else None

    async def link_to_existing(
        self, local_id: str, remote: RemoteRecord, calendar: CalendarConfig
    ) -> SyncRecord:
        """Link an unlinked local record to an existing remote record."""
        store = self.store_for(calendar)
        if store.find_by_remote_id(remote.id) is not None:
            raise CalendarSyncError(f"Remote {remote.id} is already linked")
        content = self.local_store.get_record_content(local_id)
        if content is None:
            raise LocalRecordMissing(f"Local record {local_id} does not exist")
        store.save(local_id, self._linked_record(local_id, remote, calendar, content))
        await self._relink_remote(local_id, remote, calendar)
        self.logger.info(f"Linked {local_id} to existing {remote.id}")
        return store.get(local_id)

    def unlink(self, local_id: str) -> bool:
        """Forget the link of local_id in whichever namespace holds it."""
        removed = False
        for store in self.stores.values():
            removed = store.delete(local_id) or removed
        if removed:
            self.logger.info(f"Unlinked {local_id}")
        return removed

    async def delete_remote(self, local_id: str, calendar: CalendarConfig) -> bool:
        """Delete the remote counterpart of local_id and drop the link."""
        store = self.store_for(calendar)
        record = store.get(local_id)
        if record is None:
            return False
        with self.locks.guard(local_id):
            await self.remote_for(calendar).delete_event(record.remote_calendar_id, record.remote_id)
            store.delete(local_id)
        self.logger.info(f"Deleted remote {record.remote_id} of {local_id}")
        return True

    def note_local_change(self, local_id: str, when=None) -> bool:
        """Record that local_id was edited so the next cycle pushes it."""
        when = when or utcnow()
        for store in self.stores.values():
            if store.update(local_id, local_updated_at=when) is not None:
                return True
        return False

    async def recover(self, calendar: CalendarConfig) -> RecoveryStats:
        records = await self.fetch(calendar)
        return self.recovery_for(calendar).recover(records, calendar.id)

    async def run_deduplication(
        self, calendar: CalendarConfig, manual: bool = False
    ) -> DedupStats | None:
        """Deduplicate the calendar's records in the sync window.

        Automatic runs are skipped inside the 24h cooldown and reset it when
        they run; manual runs always run and leave the cooldown alone.
        """
        dedup = self.dedup_for(calendar)
        if not manual and not dedup.should_run_auto(calendar.id):
            self.logger.debug(f"Deduplication of {calendar.id} ran recently; skipping")
            return None
        records = await self.fetch(calendar)
        stats = await dedup.deduplicate_all(records, calendar.id, dry_run=self.config.dry_run)
        if not manual and not self.config.dry_run:
            dedup.mark_run(calendar.id)
        return stats

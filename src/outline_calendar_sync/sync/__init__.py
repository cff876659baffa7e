"""
CalendarSynchronizer: opens the stores and remote clients and hands them to the Orchestrator.
"""

import asyncio
import logging
from contextlib import ExitStack
from contextlib import asynccontextmanager

from outline_calendar_sync.db import MetadataStore
from outline_calendar_sync.models import EVENTS_NAMESPACE
from outline_calendar_sync.models import TASKS_NAMESPACE
from outline_calendar_sync.models import CalendarSyncResult
from outline_calendar_sync.models import ConfigError
from outline_calendar_sync.models import SyncConfig
from outline_calendar_sync.outline_store import OutlineStore
from outline_calendar_sync.remote_client import GoogleCalendarClient
from outline_calendar_sync.remote_client import GoogleTasksClient
from outline_calendar_sync.sync.locks import LockManager
from outline_calendar_sync.sync.orchestrator import Orchestrator


class CalendarSynchronizer:
    """Main synchronization engine."""

    def __init__(self, config: SyncConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def session(self):
        """Yield an Orchestrator wired to the configured stores and remote services."""
        if not self.config.access_token:
            raise ConfigError("No access token configured")

        with ExitStack() as stack:
            stores = {
                namespace: stack.enter_context(MetadataStore(self.config.state_db_path, namespace))
                for namespace in (EVENTS_NAMESPACE, TASKS_NAMESPACE)
            }
            local = stack.enter_context(OutlineStore(self.config.outline_path))

            self.logger.info("Connecting to the remote calendar service...")
            timeout = self.config.request_timeout
            async with (
                GoogleCalendarClient(self.config.access_token, timeout) as events,
                GoogleTasksClient(self.config.access_token, timeout) as tasks,
            ):
                yield Orchestrator(
                    stores,
                    local,
                    {"events": events, "tasks": tasks},
                    LockManager(),
                    self.config,
                )

    async def _run(self) -> list[CalendarSyncResult]:
        async with self.session() as orchestrator:
            return await orchestrator.full_sync()

    def run(self) -> list[CalendarSyncResult]:
        """Execute one sync cycle over every enabled calendar."""
        return asyncio.run(self._run())

"""
Per-record locks guarding import/export/update actions.
"""

import logging
import time
from collections.abc import Callable
from contextlib import contextmanager

from outline_calendar_sync.models import LockContention

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 30.0


class LockManager:
    """In-process lock table keyed by record id.

    A lock older than the TTL is treated as abandoned by a crashed holder and
    is taken over by the next acquire().
    """

    def __init__(self, ttl: float = LOCK_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._locks: dict[str, float] = {}

    def acquire(self, key: str) -> bool:
        now = self._clock()
        held_since = self._locks.get(key)
        if held_since is not None:
            age = now - held_since
            if age <= self.ttl:
                logger.debug(f"Lock busy: {key} (held {age:.1f}s)")
                return False
            logger.warning(f"Taking over stale lock {key} (held {age:.1f}s)")
        self._locks[key] = now
        return True

    def release(self, key: str) -> None:
        self._locks.pop(key, None)

    def is_locked(self, key: str) -> bool:
        return key in self._locks

    def clear(self) -> None:
        self._locks.clear()

    def stats(self) -> dict[str, int]:
        now = self._clock()
        stale = sum(1 for t in self._locks.values() if now - t > self.ttl)
        return {"held": len(self._locks), "stale": stale}

    @contextmanager
    def guard(self, key: str):
        """Hold the lock for the body of a with-block; raise LockContention if busy."""
        if not self.acquire(key):
            raise LockContention(f"Record {key} is locked by another sync action")
        try:
            yield
        finally:
            self.release(key)

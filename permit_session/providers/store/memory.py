"""
FILE: permit_session/providers/store/memory.py

In-process store backend. Used when STORE_BACKEND=memory, as the fallback when
Redis is unreachable at startup, and in tests.

Entries carry an absolute expiry. The map is bounded. When it is full,
expired entries are purged first. If it is still full, the oldest rate counter
or message marker is evicted, then the oldest session. Lock keys are never
evicted while their lease is live; the map grows past max_entries instead.
Access is guarded by a threading.Lock so the backend is safe when shared
across threads.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from permit_session.config import constants
from permit_session.config.settings import Settings
from permit_session.config.store_config import StoreKeyPattern
from permit_session.providers.store.base import IStoreBackend

logger = logging.getLogger(__name__)


class MemoryStoreBackend(IStoreBackend):
    """Bounded in-memory store with per-key expiry."""

    name = "memory"

    def __init__(
        self,
        max_entries: int = constants.MEMORY_STORE_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._data: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._clock = clock
        self.initialized = False

    async def initialize(self) -> None:
        self.initialized = True
        logger.info(f"✓ MemoryStoreBackend initialized (max_entries={self._max_entries})")

    async def ping(self) -> bool:
        return self.initialized

    # ------------------------------------------------------------------
    # internals (caller holds self._lock)
    # ------------------------------------------------------------------

    def _live(self, key: str, now: float) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= now:
            del self._data[key]
            return None
        return value

    def _put(self, key: str, value: str, expires_at: float) -> None:
        if key in self._data:
            del self._data[key]
        elif len(self._data) >= self._max_entries:
            self._make_room()
        self._data[key] = (value, expires_at)

    def _make_room(self) -> None:
        now = self._clock()
        for expired in [k for k, (_, exp) in self._data.items() if exp <= now]:
            del self._data[expired]
        if len(self._data) < self._max_entries:
            return

        victim = self._eviction_candidate()
        if victim is None:
            logger.warning(
                f"⚠️  MemoryStoreBackend holds only live locks, growing past {self._max_entries}"
            )
            return
        del self._data[victim]
        logger.debug(f"MemoryStoreBackend full, evicted {victim[:40]}")

    def _eviction_candidate(self) -> Optional[str]:
        """Oldest counter or marker, else oldest session, never a lock."""
        oldest_session = None
        for key in self._data:
            if StoreKeyPattern.is_lock_key(key):
                continue
            if StoreKeyPattern.is_session_key(key):
                if oldest_session is None:
                    oldest_session = key
                continue
            return key
        return oldest_session

    # ------------------------------------------------------------------
    # IStoreBackend
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key, self._clock())

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._put(key, value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._live(key, self._clock()) is not None
            self._data.pop(key, None)
            return existed

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        with self._lock:
            now = self._clock()
            if self._live(key, now) is not None:
                return False
            self._put(key, value, now + ttl_ms / 1000.0)
            return True

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._lock:
            if self._live(key, self._clock()) != expected:
                return False
            del self._data[key]
            return True

    async def incr(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            now = self._clock()
            current = self._live(key, now)
            if current is None:
                self._put(key, "1", now + ttl_seconds)
                return 1
            expires_at = self._data[key][1]
            value = int(current) + 1
            self._data[key] = (str(value), expires_at)
            return value

    async def shutdown(self) -> None:
        with self._lock:
            self._data.clear()
        self.initialized = False
        logger.info("MemoryStoreBackend shutdown")

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, exp) in self._data.items() if exp <= now]
            for key in expired:
                del self._data[key]
        if expired:
            logger.debug(f"MemoryStoreBackend purged {len(expired)} expired keys")
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


def create_backend(settings: Settings) -> MemoryStoreBackend:
    """Factory used by ServiceContainer."""
    return MemoryStoreBackend(max_entries=settings.memory_store_max_entries)

"""
================================================================================
FILE: permit_session/core/deduplicator.py
================================================================================

PURPOSE:
    Two layers of duplicate suppression for inbound messages:

    1. Deduplicator: in-process fingerprint cache. The fingerprint is
       SHA-256 over identity, raw text and the one-second bucket the message
       arrived in, so it only catches provider retransmits landing within
       the same second.
    2. ProcessedMessageRegistry: provider message-id marker in the shared
       store (set-if-absent, 1 hour TTL), so the same messageId is handled
       once across processes.

WORKFLOW (is_duplicate):
    1. fingerprint = sha256("{identity}:{raw}:{floor(now)}")
    2. evict entries older than 2 × window (opportunistic)
    3. seen → True
    4. record (fingerprint, now); over the cap → evict oldest-inserted
    5. → False

KEY FACTS:
    - threading.Lock guards the cache; the check is synchronous
    - Insertion order is observation order (OrderedDict), so eviction of
      the oldest entry is popitem(last=False)
    - Registry errors never block processing: a store failure is logged and
      the message is treated as new
"""

import hashlib
import logging
import math
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from permit_session.config import constants
from permit_session.config.store_config import StoreKeyPattern
from permit_session.core.exceptions import StoreError
from permit_session.providers.store.base import IStoreBackend
from permit_session.utils.helpers import mask_identity

logger = logging.getLogger(__name__)


class Deduplicator:
    """Bounded, thread-safe fingerprint cache."""

    def __init__(
        self,
        window_seconds: float = constants.DEDUP_WINDOW_SECONDS,
        max_entries: int = constants.DEDUP_MAX_ENTRIES,
        bucket_seconds: int = constants.DEDUP_BUCKET_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self.bucket_seconds = bucket_seconds
        self._clock = clock
        self._seen: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def fingerprint(self, identity: str, raw_message: str, now_seconds: float) -> str:
        bucket = math.floor(now_seconds / self.bucket_seconds)
        payload = f"{identity}:{raw_message}:{bucket}"
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def is_duplicate(
        self,
        identity: str,
        raw_message: str,
        now_seconds: Optional[float] = None,
    ) -> bool:
        now = self._clock() if now_seconds is None else now_seconds
        key = self.fingerprint(identity, raw_message, now)

        with self._lock:
            self._evict_older_than(now - 2 * self.window_seconds)

            if key in self._seen:
                logger.info(f"Duplicate message suppressed for {mask_identity(identity)}")
                return True

            self._seen[key] = now
            while len(self._seen) > self.max_entries:
                self._seen.popitem(last=False)
            return False

    def sweep(self, now_seconds: Optional[float] = None) -> int:
        """Periodic eviction; returns how many entries were removed."""
        now = self._clock() if now_seconds is None else now_seconds
        with self._lock:
            removed = self._evict_older_than(now - 2 * self.window_seconds)
        if removed:
            logger.debug(f"Deduplicator sweep removed {removed} fingerprints")
        return removed

    def _evict_older_than(self, cutoff: float) -> int:
        removed = 0
        # Oldest first; stop at the first entry that is still fresh
        while self._seen:
            oldest_key, seen_at = next(iter(self._seen.items()))
            if seen_at >= cutoff:
                break
            del self._seen[oldest_key]
            removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._seen)


class ProcessedMessageRegistry:
    """Provider message-id markers in the shared store."""

    def __init__(
        self,
        backend: IStoreBackend,
        ttl_seconds: int = constants.MESSAGE_MARKER_TTL_SECONDS,
    ):
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    async def is_processed(self, message_id: Optional[str]) -> bool:
        """True if message_id was already seen; marks it otherwise."""
        if not message_id:
            return False
        try:
            created = await self.backend.set_if_absent(
                StoreKeyPattern.message_marker_key(message_id),
                "1",
                self.ttl_seconds * 1000,
            )
        except StoreError as e:
            logger.warning(f"Message marker check failed, processing anyway: {e}")
            return False

        if not created:
            logger.info(f"Message {message_id[:24]} already processed, skipping")
        return not created

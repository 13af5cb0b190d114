"""
================================================================================
FILE: permit_session/core/distributed_lock.py
================================================================================

PURPOSE:
    Per-identity mutual exclusion around the Session read-modify-write.

WORKFLOW:
    acquire(identity, lease_ms):
        1. ping the backend; unreachable → None
        2. SET lock:wa:{identity} <token> NX PX lease_ms
        3. created → token, else None

    release(identity, token):
        - delete only if the stored value is still token (atomic
          compare-and-delete), so a holder whose lease expired cannot
          release the lock of the next holder

    hold(identity):
        - async context manager polling acquire() up to lock_wait_seconds,
          raising LockUnavailableError, releasing in finally

KEY FACTS:
    - Leases are short; a crashed holder self-heals when the lease expires
    - Never held across the extraction call
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from permit_session.config import constants
from permit_session.config.store_config import StoreKeyPattern
from permit_session.core.exceptions import LockUnavailableError, StoreError
from permit_session.providers.store.base import IStoreBackend
from permit_session.utils.helpers import mask_identity

logger = logging.getLogger(__name__)


class DistributedLock:
    """Owner-checked lease lock on an IStoreBackend."""

    def __init__(
        self,
        backend: IStoreBackend,
        lease_ms: int = constants.LOCK_LEASE_MS,
        wait_seconds: float = constants.LOCK_WAIT_SECONDS,
        poll_interval: float = constants.LOCK_POLL_INTERVAL_SECONDS,
    ):
        self.backend = backend
        self.lease_ms = lease_ms
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval

    async def acquire(self, identity: str, lease_ms: Optional[int] = None) -> Optional[str]:
        """Token on success, None when held or the backend is unreachable."""
        if not await self.backend.ping():
            logger.warning(f"Lock backend unreachable, cannot lock {mask_identity(identity)}")
            return None

        token = uuid.uuid4().hex
        acquired = await self.backend.set_if_absent(
            StoreKeyPattern.lock_key(identity),
            token,
            lease_ms or self.lease_ms,
        )
        if not acquired:
            logger.debug(f"Lock busy for {mask_identity(identity)}")
            return None
        return token

    async def release(self, identity: str, token: str) -> bool:
        """True only when token still owned the lock."""
        released = await self.backend.compare_and_delete(StoreKeyPattern.lock_key(identity), token)
        if not released:
            logger.warning(f"Lock for {mask_identity(identity)} was no longer owned at release")
        return released

    @asynccontextmanager
    async def hold(self, identity: str, lease_ms: Optional[int] = None) -> AsyncIterator[str]:
        """
        Acquire with bounded waiting, always release.

        Raises:
            LockUnavailableError: lock still busy after wait_seconds
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_seconds
        token = await self.acquire(identity, lease_ms)
        while token is None and loop.time() < deadline:
            await asyncio.sleep(self.poll_interval)
            token = await self.acquire(identity, lease_ms)

        if token is None:
            raise LockUnavailableError(
                f"Session lock unavailable for {mask_identity(identity)}",
                context={"wait_seconds": self.wait_seconds},
            )

        try:
            yield token
        finally:
            try:
                await self.release(identity, token)
            except StoreError as e:
                logger.error(f"Lock release failed for {mask_identity(identity)}, lease will expire: {e}")

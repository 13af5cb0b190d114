"""Per-identity lease lock."""

import asyncio

import pytest

from permit_session.config.store_config import StoreKeyPattern
from permit_session.core.distributed_lock import DistributedLock
from permit_session.core.exceptions import LockUnavailableError
from permit_session.providers.store.memory import MemoryStoreBackend

from tests.conftest import IDENTITY


@pytest.fixture
def lock(backend):
    return DistributedLock(backend, lease_ms=5000, wait_seconds=0.05, poll_interval=0.01)


class TestDistributedLock:
    async def test_acquire_and_release(self, lock, backend):
        token = await lock.acquire(IDENTITY)
        assert token
        assert await backend.get(StoreKeyPattern.lock_key(IDENTITY)) == token

        assert await lock.release(IDENTITY, token) is True
        assert await backend.get(StoreKeyPattern.lock_key(IDENTITY)) is None

    async def test_second_acquire_fails_while_held(self, lock):
        assert await lock.acquire(IDENTITY)
        assert await lock.acquire(IDENTITY) is None
        assert await lock.acquire("5210000000000")

    async def test_concurrent_acquires_have_one_winner(self, lock):
        tokens = await asyncio.gather(*(lock.acquire(IDENTITY) for _ in range(5)))
        assert len([token for token in tokens if token]) == 1

    async def test_concurrent_holds_do_not_overlap(self, backend):
        lock = DistributedLock(backend, lease_ms=5000, wait_seconds=1.0, poll_interval=0.005)
        inside = []
        overlaps = []

        async def worker(n):
            async with lock.hold(IDENTITY):
                inside.append(n)
                if len(inside) > 1:
                    overlaps.append(n)
                await asyncio.sleep(0.01)
                inside.remove(n)

        await asyncio.gather(*(worker(n) for n in range(3)))

        assert overlaps == []
        assert await backend.get(StoreKeyPattern.lock_key(IDENTITY)) is None

    async def test_lease_expires(self, lock, clock):
        await lock.acquire(IDENTITY)
        clock.advance(5.001)
        assert await lock.acquire(IDENTITY)

    async def test_release_with_stale_token_keeps_new_holder(self, lock, clock):
        stale = await lock.acquire(IDENTITY)
        clock.advance(6)
        fresh = await lock.acquire(IDENTITY)

        assert await lock.release(IDENTITY, stale) is False
        assert await lock.acquire(IDENTITY) is None
        assert await lock.release(IDENTITY, fresh) is True

    async def test_unreachable_backend_returns_none(self, clock):
        lock = DistributedLock(MemoryStoreBackend(clock=clock))
        assert await lock.acquire(IDENTITY) is None

    async def test_hold_releases_on_exit(self, lock, backend):
        async with lock.hold(IDENTITY) as token:
            assert await backend.get(StoreKeyPattern.lock_key(IDENTITY)) == token
        assert await backend.get(StoreKeyPattern.lock_key(IDENTITY)) is None

    async def test_hold_releases_on_error(self, lock, backend):
        with pytest.raises(ValueError):
            async with lock.hold(IDENTITY):
                raise ValueError("boom")
        assert await backend.get(StoreKeyPattern.lock_key(IDENTITY)) is None

    async def test_hold_times_out_when_busy(self, lock):
        await lock.acquire(IDENTITY)
        with pytest.raises(LockUnavailableError):
            async with lock.hold(IDENTITY):
                pass

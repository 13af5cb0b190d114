"""In-memory store backend: expiry and bounded eviction."""

import pytest

from permit_session.config.store_config import StoreKeyPattern
from permit_session.core.distributed_lock import DistributedLock
from permit_session.providers.store.memory import MemoryStoreBackend

from tests.conftest import IDENTITY

SESSION_KEY = StoreKeyPattern.session_key(IDENTITY)
LOCK_KEY = StoreKeyPattern.lock_key(IDENTITY)


@pytest.fixture
async def small_store(clock):
    store = MemoryStoreBackend(max_entries=3, clock=clock)
    await store.initialize()
    yield store
    await store.shutdown()


def marker(n: int) -> str:
    return StoreKeyPattern.message_marker_key(f"wamid.{n}")


class TestExpiry:
    async def test_value_expires(self, backend, clock):
        await backend.set("k", "v", 10)
        clock.advance(10)
        assert await backend.get("k") is None

    async def test_incr_keeps_first_expiry(self, backend, clock):
        assert await backend.incr("counter", 60) == 1
        clock.advance(30)
        assert await backend.incr("counter", 60) == 2
        clock.advance(30)
        assert await backend.incr("counter", 60) == 1


class TestEviction:
    async def test_held_lock_survives_eviction_pressure(self, small_store):
        lock = DistributedLock(small_store, lease_ms=5000, wait_seconds=0.05, poll_interval=0.01)
        token = await lock.acquire(IDENTITY)

        for n in range(3):
            await small_store.set(marker(n), "1", 3600)

        assert await lock.acquire(IDENTITY) is None
        assert await small_store.get(LOCK_KEY) == token

    async def test_expired_entries_go_before_live_ones(self, small_store, clock):
        await small_store.set(marker(0), "1", 3600)
        await small_store.set(marker(1), "1", 5)
        await small_store.set(marker(2), "1", 3600)
        clock.advance(6)

        await small_store.set(marker(3), "1", 3600)

        assert await small_store.get(marker(0)) == "1"
        assert await small_store.get(marker(3)) == "1"

    async def test_session_outlives_markers(self, small_store):
        await small_store.set(SESSION_KEY, "{}", 86400)
        for n in range(4):
            await small_store.set(marker(n), "1", 3600)

        assert await small_store.get(SESSION_KEY) == "{}"
        assert await small_store.get(marker(0)) is None
        assert await small_store.get(marker(3)) == "1"

    async def test_oldest_session_evicted_when_only_sessions_remain(self, small_store):
        keys = [StoreKeyPattern.session_key(f"52155000000{n}") for n in range(4)]
        for key in keys:
            await small_store.set(key, "{}", 86400)

        assert await small_store.get(keys[0]) is None
        assert await small_store.get(keys[3]) == "{}"

    async def test_grows_when_full_of_live_locks(self, small_store):
        for n in range(4):
            assert await small_store.set_if_absent(StoreKeyPattern.lock_key(f"52155000000{n}"), "t", 5000)
        assert len(small_store) == 4

    async def test_purge_expired(self, backend, clock):
        await backend.set("a", "1", 5)
        await backend.set("b", "1", 50)
        clock.advance(10)
        assert backend.purge_expired() == 1
        assert len(backend) == 1

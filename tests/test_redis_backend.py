"""Redis backend over a mocked async client."""

from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from permit_session.core.exceptions import StoreError
from permit_session.core.redis_handler import COMPARE_AND_DELETE_SCRIPT, INCR_WITH_EXPIRY_SCRIPT, RedisHandler
from permit_session.providers.store.redis import RedisStoreBackend


@pytest.fixture
def client():
    mock = AsyncMock()
    mock.ping.return_value = True
    return mock


@pytest.fixture
async def store(settings, client):
    settings = settings.model_copy(update={"store_retry_attempts": 3})
    backend = RedisStoreBackend(settings, RedisHandler(settings, client=client))
    await backend.initialize()
    return backend


class TestRedisStoreBackend:
    async def test_initialize_pings(self, store, client):
        assert store.initialized
        client.ping.assert_awaited()

    async def test_set_uses_setex(self, store, client):
        await store.set("wa_enhanced_state:1", "{}", 86400)
        client.setex.assert_awaited_once_with("wa_enhanced_state:1", 86400, "{}")

    async def test_get_and_delete(self, store, client):
        client.get.return_value = "{}"
        client.delete.return_value = 1
        assert await store.get("k") == "{}"
        assert await store.delete("k") is True

    async def test_set_if_absent(self, store, client):
        client.set.return_value = None
        assert await store.set_if_absent("lock:wa:1", "tok", 5000) is False
        client.set.assert_awaited_once_with("lock:wa:1", "tok", nx=True, px=5000)

    async def test_compare_and_delete_uses_script(self, store, client):
        client.eval.return_value = 1
        assert await store.compare_and_delete("lock:wa:1", "tok") is True
        client.eval.assert_awaited_once_with(COMPARE_AND_DELETE_SCRIPT, 1, "lock:wa:1", "tok")

    async def test_incr_uses_script(self, store, client):
        client.eval.return_value = 4
        assert await store.incr("rl:user:1:0", 7200) == 4
        client.eval.assert_awaited_once_with(INCR_WITH_EXPIRY_SCRIPT, 1, "rl:user:1:0", 7200)

    async def test_retries_then_succeeds(self, store, client):
        client.get.side_effect = [redis.ConnectionError("reset"), "{}"]
        assert await store.get("k") == "{}"
        assert client.get.await_count == 2

    async def test_gives_up_with_store_error(self, store, client):
        client.get.side_effect = redis.ConnectionError("Connection refused")
        with pytest.raises(StoreError) as exc_info:
            await store.get("k")
        assert "Redis GET failed" in exc_info.value.message
        assert client.get.await_count == 3

    async def test_set_if_absent_is_not_retried(self, store, client):
        client.set.side_effect = redis.TimeoutError("Timeout reading from socket")
        with pytest.raises(StoreError):
            await store.set_if_absent("lock:wa:1", "tok", 5000)
        assert client.set.await_count == 1

    async def test_incr_is_not_retried(self, store, client):
        client.eval.side_effect = redis.ConnectionError("reset")
        with pytest.raises(StoreError):
            await store.incr("rl:user:1:0", 7200)
        assert client.eval.await_count == 1

    async def test_compare_and_delete_is_retried(self, store, client):
        client.eval.side_effect = [redis.ConnectionError("reset"), 1]
        assert await store.compare_and_delete("lock:wa:1", "tok") is True
        assert client.eval.await_count == 2

    async def test_ping_false_on_error(self, store, client):
        client.ping.side_effect = OSError("unreachable")
        assert await store.ping() is False


class TestConnect:
    async def test_connect_failure_raises_store_error(self, settings, client):
        client.ping.side_effect = redis.ConnectionError("Connection refused")
        with pytest.raises(StoreError):
            await RedisHandler(settings, client=client).connect()

    async def test_unconnected_handler(self, settings):
        handler = RedisHandler(settings)
        assert await handler.ping() is False
        with pytest.raises(StoreError):
            await handler.get("k")

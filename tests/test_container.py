"""Provider discovery, store fallback and engine assembly."""

from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from permit_session.container.service_container import ServiceContainer
from permit_session.core.exceptions import ServiceInitializationError
from permit_session.core.redis_handler import RedisHandler
from permit_session.providers.extraction.pattern import PatternExtractionProvider
from permit_session.providers.messaging.log import LogMessageSender
from permit_session.providers.store import redis as redis_store
from permit_session.providers.store.memory import MemoryStoreBackend


@pytest.fixture
def unreachable_redis(monkeypatch):
    """Make the redis provider factory return a backend whose PING fails."""

    def create_backend(settings):
        client = AsyncMock()
        client.ping.side_effect = redis.ConnectionError("Error 111 connecting to localhost:6379")
        return redis_store.RedisStoreBackend(settings, RedisHandler(settings, client=client))

    monkeypatch.setattr(redis_store, "create_backend", create_backend)


class TestServiceContainer:
    async def test_loads_providers_by_name(self, settings):
        container = ServiceContainer(settings)
        await container.initialize()
        try:
            assert isinstance(container.get_backend(), MemoryStoreBackend)
            assert isinstance(container.get_sender(), LogMessageSender)
            assert container.get_engine().extraction.uses_fallback_only
            assert isinstance(container.get_engine().extraction.primary, PatternExtractionProvider)
        finally:
            await container.shutdown()

    async def test_falls_back_to_memory(self, settings, unreachable_redis):
        container = ServiceContainer(settings.model_copy(update={"store_backend": "redis"}))
        await container.initialize()
        try:
            assert container.store_fallback_active
            assert isinstance(container.get_backend(), MemoryStoreBackend)
        finally:
            await container.shutdown()

    async def test_fallback_disabled_fails_startup(self, settings, unreachable_redis):
        strict = settings.model_copy(update={"store_backend": "redis", "store_fallback_to_memory": False})
        with pytest.raises(ServiceInitializationError, match="Store backend unavailable"):
            await ServiceContainer(strict).initialize()

    async def test_http_sender_without_credentials_fails(self, settings):
        container = ServiceContainer(settings.model_copy(update={"messaging_provider": "http"}))
        with pytest.raises(ServiceInitializationError):
            await container.initialize()
        await container.shutdown()

    def test_accessors_before_initialize(self, settings):
        container = ServiceContainer(settings)
        with pytest.raises(RuntimeError):
            container.get_engine()
        with pytest.raises(RuntimeError):
            container.get_recovery()

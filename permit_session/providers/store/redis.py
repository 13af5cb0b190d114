"""
FILE: permit_session/providers/store/redis.py

Redis store backend. Every call is delegated to RedisHandler, which owns the
retry/backoff policy and raises StoreError once it gives up.
"""

import logging
from typing import Optional

from permit_session.config.settings import Settings
from permit_session.core.redis_handler import RedisHandler
from permit_session.providers.store.base import IStoreBackend

logger = logging.getLogger(__name__)


class RedisStoreBackend(IStoreBackend):
    """Redis store backend implementation."""

    name = "redis"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        redis_handler: Optional[RedisHandler] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.redis_handler = redis_handler or RedisHandler(self.settings)
        self.initialized = False

    async def initialize(self) -> None:
        """Connect and verify Redis (raises StoreError when unreachable)."""
        await self.redis_handler.connect()
        self.initialized = True
        logger.info("✓ RedisStoreBackend initialized (Redis connected)")

    async def ping(self) -> bool:
        return await self.redis_handler.ping()

    async def get(self, key: str) -> Optional[str]:
        return await self.redis_handler.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.redis_handler.setex(key, ttl_seconds, value)

    async def delete(self, key: str) -> bool:
        return await self.redis_handler.delete(key)

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        return await self.redis_handler.set_nx_px(key, value, ttl_ms)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        return await self.redis_handler.compare_and_delete(key, expected)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        return await self.redis_handler.incr_with_expiry(key, ttl_seconds)

    async def shutdown(self) -> None:
        """Shutdown Redis connection."""
        try:
            await self.redis_handler.shutdown()
            self.initialized = False
            logger.info("RedisStoreBackend shutdown")
        except Exception as e:
            logger.warning(f"Error shutting down RedisStoreBackend: {str(e)}")


def create_backend(settings: Settings) -> RedisStoreBackend:
    """Factory used by ServiceContainer."""
    return RedisStoreBackend(settings)

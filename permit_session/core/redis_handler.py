# Store transport
"""
================================================================================
FILE: permit_session/core/redis_handler.py
================================================================================

PURPOSE:
    Async Redis client used by the redis store backend. Wraps every command in
    a timeout plus a bounded retry loop with linear backoff, and exposes the
    handful of atomic primitives the engine relies on.

WORKFLOW:
    1. connect(): build connection pool from settings, verify with PING
    2. Every command goes through _execute():
       - asyncio.wait_for(command, redis_timeout)
       - on failure: sleep retry_delay * attempt, retry
       - after retry_attempts failures: raise StoreError("Redis ... failed")
       - SET NX and the increment script run once: a timed-out attempt may
         already have applied
    3. shutdown(): close client and pool

IMPORTS:
    - redis.asyncio: Async Redis client
    - asyncio: timeouts and backoff sleeps
    - logging: Logging
    - config: Settings (URL, pool size, timeout, retry policy)

ATOMIC PRIMITIVES:
    - set_nx_px: SET key value NX PX lease (lock acquire, message markers)
    - compare_and_delete: Lua GET == expected → DEL (owner-checked release)
    - incr_with_expiry: Lua INCR, EXPIRE on first increment (rate counters)

KEY FACTS:
    - All operations async (non-blocking)
    - decode_responses=True: values come back as str
    - Error messages always name Redis so the recovery classifier maps them
      to StoreFailure even when they arrive wrapped

TESTING ENVIRONMENT:
    - Pass a mocked client (AsyncMock) to RedisHandler(settings, client=...)
    - retry_delay 0 in tests
"""

# ================================================================================
# IMPORTS
# ================================================================================

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis

from permit_session.config.settings import Settings
from permit_session.core.exceptions import StoreError

logger = logging.getLogger(__name__)

# ================================================================================
# LUA SCRIPTS
# ================================================================================

COMPARE_AND_DELETE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

INCR_WITH_EXPIRY_SCRIPT = """
local value = redis.call('INCR', KEYS[1])
if value == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return value
"""

# ================================================================================
# REDIS HANDLER CLASS
# ================================================================================

class RedisHandler:
    """
    Redis async client with retry and linear backoff.

    All operations are async (non-blocking).
    """

    def __init__(self, settings: Settings, client: Optional[Any] = None):
        """
        Initialize Redis handler.

        Args:
            settings: Engine settings (Redis URL, pool size, timeout, retries)
            client: Optional pre-built client (tests pass a mock here)
        """
        self.settings = settings
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[Any] = client
        self._attempts = settings.store_retry_attempts
        self._delay = settings.store_retry_delay_seconds
        logger.info(f"RedisHandler initialized (attempts={self._attempts}, delay={self._delay}s)")

    async def connect(self) -> "RedisHandler":
        """
        Establish connection pool and verify it.

        Raises:
            StoreError: If connection fails
        """
        try:
            if self.client is None:
                self.pool = redis.ConnectionPool.from_url(
                    self.settings.resolved_redis_url,
                    max_connections=self.settings.redis_pool_size,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_keepalive=True,
                )
                self.client = redis.Redis(connection_pool=self.pool)

            await asyncio.wait_for(self.client.ping(), timeout=self.settings.redis_timeout)
            logger.info("Redis connection pool established and verified")
            return self

        except Exception as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            raise StoreError(
                f"Redis connection failed: {str(e)}",
                context={"redis_url": self.settings.resolved_redis_url.split("@")[-1]},
            )

    async def __aenter__(self):
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    async def shutdown(self) -> None:
        """Close client and pool."""
        if self.client is not None:
            await self.client.aclose()
            logger.info("Redis connection pool closed")
        if self.pool is not None:
            await self.pool.disconnect()

    # ========================================================================
    # RETRY CORE
    # ========================================================================

    async def _execute(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        key: Optional[str] = None,
        retry: bool = True,
    ) -> Any:
        """
        Run one Redis command with timeout, retry and linear backoff.

        Args:
            retry: False for commands that must run at most once (SET NX,
                counter increments); a timed-out attempt may have applied.

        Raises:
            StoreError: after the last attempt fails
        """
        if self.client is None:
            raise StoreError(f"Redis {operation} failed: client not connected", context={"key": key})

        attempts = self._attempts if retry else 1
        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(call(), timeout=self.settings.redis_timeout)
            except asyncio.TimeoutError as e:
                last_error = e
                reason = f"timeout after {self.settings.redis_timeout}s"
            except redis.RedisError as e:
                last_error = e
                reason = str(e)
            except OSError as e:
                last_error = e
                reason = str(e)

            if attempt < attempts:
                delay = self._delay * attempt
                logger.warning(
                    f"⚠️  Redis {operation} failed (attempt {attempt}/{attempts}): "
                    f"{reason}. Retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        logger.error(f"Redis {operation} failed after {attempts} attempt(s): {last_error}")
        raise StoreError(
            f"Redis {operation} failed: {last_error}",
            context={"key": key, "attempts": attempts},
        )

    # ========================================================================
    # COMMANDS
    # ========================================================================

    async def ping(self) -> bool:
        """Single PING without retries; False when Redis is unreachable."""
        if self.client is None:
            return False
        try:
            return bool(await asyncio.wait_for(self.client.ping(), timeout=self.settings.redis_timeout))
        except (asyncio.TimeoutError, redis.RedisError, OSError) as e:
            logger.warning(f"Redis PING failed: {str(e)}")
            return False

    async def get(self, key: str) -> Optional[str]:
        """GET key (None when missing)."""
        return await self._execute("GET", lambda: self.client.get(key), key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        """SETEX key ttl value."""
        await self._execute("SETEX", lambda: self.client.setex(key, ttl, value), key)
        return True

    async def delete(self, key: str) -> bool:
        """DEL key; True if a key was removed."""
        result = await self._execute("DEL", lambda: self.client.delete(key), key)
        return bool(result)

    async def set_nx_px(self, key: str, value: str, ttl_ms: int) -> bool:
        """SET key value NX PX ttl_ms; True only when the key was created."""
        result = await self._execute(
            "SET NX", lambda: self.client.set(key, value, nx=True, px=ttl_ms), key, retry=False
        )
        return bool(result)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """Delete key only if it still holds expected."""
        result = await self._execute(
            "EVAL compare_and_delete",
            lambda: self.client.eval(COMPARE_AND_DELETE_SCRIPT, 1, key, expected),
            key,
        )
        return int(result or 0) == 1

    async def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment key; expiry is set on the first increment."""
        result = await self._execute(
            "EVAL incr_with_expiry",
            lambda: self.client.eval(INCR_WITH_EXPIRY_SCRIPT, 1, key, ttl_seconds),
            key,
            retry=False,
        )
        return int(result)

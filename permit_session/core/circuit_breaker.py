# Resilience pattern
"""
================================================================================
FILE: permit_session/core/circuit_breaker.py
================================================================================

PURPOSE:
    Circuit breaker in front of the extraction collaborator. When the remote
    extractor keeps failing, calls fail fast and the extraction service goes
    straight to the deterministic pattern extractor instead of waiting on a
    timeout for every message.

STATE TRANSITIONS:
    CLOSED → OPEN: failure_count >= threshold
    OPEN → HALF_OPEN: recovery_timeout elapsed (next call is a probe)
    HALF_OPEN → CLOSED: probe succeeds
    HALF_OPEN → OPEN: probe fails

KEY FACTS:
    - asyncio.Lock guards state; the protected call runs outside the lock
    - clock is injectable for tests
    - Failures are re-raised after being counted
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from permit_session.config.constants import (
    CIRCUIT_BREAKER_FAILURE_THRESHOLD,
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT_SECONDS,
)
from permit_session.core.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Fail fast while a collaborator is down; probe after a cool-down."""

    def __init__(
        self,
        name: str = "extraction",
        failure_threshold: int = CIRCUIT_BREAKER_FAILURE_THRESHOLD,
        recovery_timeout: float = CIRCUIT_BREAKER_RECOVERY_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self._lock = asyncio.Lock()
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock

        self._state = CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None

        logger.info(
            f"CircuitBreaker[{name}] initialized: threshold={failure_threshold}, "
            f"timeout={recovery_timeout}s"
        )

    async def protect(self, fn: Callable, *args, **kwargs) -> Any:
        """
        Execute an async function under the breaker.

        Raises:
            CircuitBreakerOpenError: circuit is OPEN and still cooling down
        """
        async with self._lock:
            if self._state == OPEN:
                elapsed = self._clock() - self._opened_at
                if elapsed >= self._recovery_timeout:
                    self._state = HALF_OPEN
                    logger.info(f"CircuitBreaker[{self.name}] OPEN → HALF_OPEN (probing)")
                else:
                    raise CircuitBreakerOpenError(
                        f"{self.name} unavailable (circuit open, retry in "
                        f"{self._recovery_timeout - elapsed:.1f}s)"
                    )

        try:
            result = await fn(*args, **kwargs)
        except Exception as e:
            async with self._lock:
                self._failure_count += 1
                logger.error(
                    f"CircuitBreaker[{self.name}]: failure "
                    f"{self._failure_count}/{self._failure_threshold}: {str(e)}"
                )
                if self._state == HALF_OPEN or self._failure_count >= self._failure_threshold:
                    if self._state != OPEN:
                        logger.error(f"CircuitBreaker[{self.name}] → OPEN")
                    self._state = OPEN
                    self._opened_at = self._clock()
            raise

        async with self._lock:
            if self._state == HALF_OPEN:
                logger.info(f"CircuitBreaker[{self.name}] HALF_OPEN → CLOSED (recovered)")
            self._state = CLOSED
            self._failure_count = 0
        return result

    def get_state(self) -> str:
        return self._state

    def get_failure_count(self) -> int:
        return self._failure_count

    async def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED"""
        async with self._lock:
            old_state = self._state
            self._state = CLOSED
            self._failure_count = 0
            self._opened_at = None
            logger.info(f"CircuitBreaker[{self.name}] manually reset from {old_state} to CLOSED")

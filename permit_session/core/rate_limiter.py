"""
================================================================================
FILE: permit_session/core/rate_limiter.py
================================================================================

PURPOSE:
    Fixed-window rate limiting at three independent scopes:

    - USER:   messages per identity per hour (outbound messaging quota)
    - GLOBAL: messages across all identities per hour
    - STATE:  messages per identity per conversation state per minute

WORKFLOW (consume):
    1. window_start = floor(now / duration) * duration
    2. bucket = RateBucket(scope, subject, window_start)
    3. count = backend.incr(bucket key, retention TTL)   (atomic)
    4. count > points → rejected, retry_after = window end - now

KEY FACTS:
    - Buckets are structured tuples; the store key is rendered from them and
      never parsed back
    - Counters expire after duration × retention windows, so stale buckets
      are pruned by the store itself
    - Backend-atomic increments: safe across processes
"""

import logging
import math
import time
from typing import Callable, Dict, NamedTuple, Optional, Tuple, Union

from permit_session.config import constants
from permit_session.config.settings import Settings
from permit_session.config.store_config import StoreKeyPattern
from permit_session.core.exceptions import RateLimitExceededError
from permit_session.pipeline.schemas import RateLimitDecision, RateLimitScope
from permit_session.providers.store.base import IStoreBackend

logger = logging.getLogger(__name__)

GLOBAL_SUBJECT = "all"


class RateQuota(NamedTuple):
    points: int
    duration_seconds: int


class RateBucket(NamedTuple):
    scope: RateLimitScope
    subject: str
    window_start: int

    def store_key(self) -> str:
        return StoreKeyPattern.rate_counter_key(self.scope.value, self.subject, self.window_start)


DEFAULT_QUOTAS: Dict[RateLimitScope, RateQuota] = {
    RateLimitScope.USER: RateQuota(
        constants.RATE_LIMIT_USER_POINTS, constants.RATE_LIMIT_USER_DURATION_SECONDS
    ),
    RateLimitScope.GLOBAL: RateQuota(
        constants.RATE_LIMIT_GLOBAL_POINTS, constants.RATE_LIMIT_GLOBAL_DURATION_SECONDS
    ),
    RateLimitScope.STATE: RateQuota(
        constants.RATE_LIMIT_STATE_POINTS, constants.RATE_LIMIT_STATE_DURATION_SECONDS
    ),
}


def state_subject(identity: str, state_key: str) -> str:
    return f"{identity}|{state_key}"


class RateLimiter:
    """Three-scope fixed-window limiter on store counters."""

    def __init__(
        self,
        backend: IStoreBackend,
        quotas: Optional[Dict[RateLimitScope, RateQuota]] = None,
        retention_windows: int = constants.RATE_LIMIT_RETENTION_WINDOWS,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.quotas = dict(DEFAULT_QUOTAS)
        if quotas:
            self.quotas.update(quotas)
        self.retention_windows = retention_windows
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        backend: IStoreBackend,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> "RateLimiter":
        config = settings.get_rate_limit_config()
        return cls(
            backend,
            quotas={
                RateLimitScope.USER: RateQuota(*config["user"]),
                RateLimitScope.GLOBAL: RateQuota(*config["global"]),
                RateLimitScope.STATE: RateQuota(*config["state"]),
            },
            retention_windows=config["retention_windows"],
            clock=clock,
        )

    def bucket_for(self, scope: RateLimitScope, subject: str, now: float) -> RateBucket:
        duration = self.quotas[scope].duration_seconds
        window_start = int(math.floor(now / duration) * duration)
        return RateBucket(scope, subject, window_start)

    async def consume(
        self,
        scope: Union[RateLimitScope, str],
        subject: str = GLOBAL_SUBJECT,
    ) -> RateLimitDecision:
        """Count one request against (scope, subject)."""
        scope = RateLimitScope(scope)
        quota = self.quotas[scope]
        now = self._clock()
        bucket = self.bucket_for(scope, subject, now)

        count = await self.backend.incr(
            bucket.store_key(),
            quota.duration_seconds * self.retention_windows,
        )

        if count > quota.points:
            retry_after = max(0.0, bucket.window_start + quota.duration_seconds - now)
            logger.warning(
                f"Rate limit hit: scope={scope.value} count={count}/{quota.points} "
                f"retry_after={retry_after:.0f}s"
            )
            return RateLimitDecision(
                allowed=False, scope=scope, remaining=0, retry_after=retry_after
            )

        return RateLimitDecision(allowed=True, scope=scope, remaining=quota.points - count)

    async def enforce(
        self,
        scope: Union[RateLimitScope, str],
        subject: str = GLOBAL_SUBJECT,
    ) -> RateLimitDecision:
        """consume() that raises RateLimitExceededError when rejected."""
        decision = await self.consume(scope, subject)
        if not decision.allowed:
            raise RateLimitExceededError(
                f"Rate limit exceeded for scope {decision.scope.value}",
                retry_after=decision.retry_after,
                context={"scope": decision.scope.value},
            )
        return decision

    def describe(self) -> Dict[str, Tuple[int, int]]:
        return {scope.value: tuple(quota) for scope, quota in self.quotas.items()}

"""Fixed-window rate limiter over store counters."""

import pytest

from permit_session.core.exceptions import RateLimitExceededError
from permit_session.core.rate_limiter import RateLimiter, RateQuota, state_subject
from permit_session.pipeline.schemas import RateLimitScope

from tests.conftest import IDENTITY


@pytest.fixture
def limiter(backend, clock):
    return RateLimiter(
        backend,
        quotas={
            RateLimitScope.USER: RateQuota(3, 60),
            RateLimitScope.STATE: RateQuota(2, 60),
        },
        clock=clock,
    )


class TestRateLimiter:
    async def test_allows_up_to_quota(self, limiter):
        decisions = [await limiter.consume(RateLimitScope.USER, IDENTITY) for _ in range(3)]
        assert all(d.allowed for d in decisions)
        assert [d.remaining for d in decisions] == [2, 1, 0]

    async def test_rejects_over_quota_with_retry_after(self, limiter, clock):
        clock.now = 1_700_000_010.0  # window ends at 1_700_000_040
        for _ in range(3):
            await limiter.consume(RateLimitScope.USER, IDENTITY)

        decision = await limiter.consume(RateLimitScope.USER, IDENTITY)

        assert decision.allowed is False
        assert decision.scope is RateLimitScope.USER
        assert decision.retry_after == pytest.approx(30.0)

    async def test_new_window_resets_count(self, limiter, clock):
        for _ in range(4):
            await limiter.consume(RateLimitScope.USER, IDENTITY)
        clock.advance(60)
        assert (await limiter.consume(RateLimitScope.USER, IDENTITY)).allowed

    async def test_subjects_are_independent(self, limiter):
        for _ in range(2):
            await limiter.consume(RateLimitScope.STATE, state_subject(IDENTITY, "menu:main"))
        other = await limiter.consume(RateLimitScope.STATE, state_subject(IDENTITY, "form:new_permit"))
        assert other.allowed

    async def test_enforce_raises(self, limiter):
        for _ in range(2):
            await limiter.enforce("state", state_subject(IDENTITY, "menu:main"))
        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.enforce("state", state_subject(IDENTITY, "menu:main"))
        assert exc_info.value.retry_after > 0

    def test_bucket_aligns_to_window(self, limiter):
        bucket = limiter.bucket_for(RateLimitScope.USER, IDENTITY, 1_700_000_039.9)
        assert bucket.window_start == 1_699_999_980
        assert bucket.store_key() == f"rl:user:{IDENTITY}:1699999980"

    def test_from_settings_uses_configured_quotas(self, backend, settings):
        limiter = RateLimiter.from_settings(backend, settings)
        assert limiter.quotas[RateLimitScope.STATE] == RateQuota(
            settings.rate_limit_state_points, settings.rate_limit_state_duration_seconds
        )

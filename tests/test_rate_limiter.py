"""Tests for the tiered RateLimiter service."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, Mock

import pytest

from app.adapters.cache.redis_cache import RedisCache
from app.adapters.rate_limit.base import CounterStoreError, Tier, TierPolicy
from app.adapters.rate_limit.in_memory import InMemorySlidingWindowStore
from app.adapters.rate_limit.redis_counter import RedisCounterStore
from app.core.config import RateLimitSettings
from app.services.rate_limiter import (
    TIER_MESSAGES,
    RateLimiter,
    build_counter_store,
    build_tier_policies,
    counter_key,
)


@pytest.fixture
def rate_settings() -> RateLimitSettings:
    return RateLimitSettings(
        window_seconds=60,
        public_max_requests=100,
        search_max_requests=30,
        operator_max_requests=200,
        admin_max_requests=300,
    )


class TestPolicies:
    def test_default_budgets_per_tier(self, rate_settings) -> None:
        policies = build_tier_policies(rate_settings)

        assert {tier: p.max_requests for tier, p in policies.items()} == {
            Tier.PUBLIC: 100,
            Tier.SEARCH: 30,
            Tier.OPERATOR: 200,
            Tier.ADMIN: 300,
        }
        assert all(p.window_seconds == 60 for p in policies.values())
        assert policies[Tier.SEARCH].message == "Too many search requests, please slow down"

    def test_policies_are_read_only(self, rate_settings) -> None:
        policies = build_tier_policies(rate_settings)

        with pytest.raises(TypeError):
            policies[Tier.PUBLIC] = TierPolicy(60, 1, "x")  # type: ignore[index]

    def test_missing_tier_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter(InMemorySlidingWindowStore(), {Tier.PUBLIC: TierPolicy(60, 1, "x")})

    def test_counter_key_layout(self) -> None:
        assert counter_key(Tier.SEARCH, "203.0.113.7") == "rate_limit:SEARCH:203.0.113.7"


class TestBackendSelection:
    def test_memory_store_without_redis(self, rate_settings) -> None:
        store = build_counter_store(rate_settings, RedisCache())

        assert isinstance(store, InMemorySlidingWindowStore)

    def test_redis_store_when_configured(self, rate_settings, redis_cache) -> None:
        limiter = RateLimiter.from_settings(rate_settings, redis_cache)

        assert isinstance(limiter.store, RedisCounterStore)
        assert limiter.backend == "redis"


class TestCheckAndConsume:
    @pytest.mark.asyncio
    async def test_search_tier_scenario(self, rate_settings) -> None:
        """30 searches pass with a decreasing budget; the 31st is refused."""

        limiter = RateLimiter(
            InMemorySlidingWindowStore(clock=Mock(return_value=1000.0)),
            build_tier_policies(rate_settings),
        )

        remaining = []
        for _ in range(30):
            decision = await limiter.check_and_consume("203.0.113.7", Tier.SEARCH)
            assert decision.allowed is True
            remaining.append(decision.remaining)

        denied = await limiter.check_and_consume("203.0.113.7", Tier.SEARCH)

        assert remaining == list(range(29, -1, -1))
        assert denied.allowed is False
        assert denied.message == TIER_MESSAGES[Tier.SEARCH]

    @pytest.mark.asyncio
    async def test_tiers_are_counted_independently(self, rate_settings) -> None:
        limiter = RateLimiter(InMemorySlidingWindowStore(), build_tier_policies(rate_settings))

        for _ in range(30):
            await limiter.check_and_consume("203.0.113.7", Tier.SEARCH)

        assert (await limiter.check_and_consume("203.0.113.7", Tier.SEARCH)).allowed is False
        public = await limiter.check_and_consume("203.0.113.7", Tier.PUBLIC)
        assert public.allowed is True
        assert public.remaining == 99

    @pytest.mark.asyncio
    async def test_clients_are_counted_independently(self, rate_settings) -> None:
        limiter = RateLimiter(InMemorySlidingWindowStore(), build_tier_policies(rate_settings))

        for _ in range(30):
            await limiter.check_and_consume("203.0.113.7", Tier.SEARCH)

        assert (await limiter.check_and_consume("198.51.100.1", Tier.SEARCH)).allowed is True

    @pytest.mark.asyncio
    async def test_empty_identity_uses_unknown_bucket(self, rate_settings) -> None:
        store = AsyncMock()
        store.name = "mock"
        limiter = RateLimiter(store, build_tier_policies(rate_settings))

        await limiter.check_and_consume("", Tier.PUBLIC)

        assert store.hit.await_args.args[0] == "rate_limit:PUBLIC:unknown"

    @pytest.mark.asyncio
    async def test_fails_open_when_store_raises(self, rate_settings, caplog) -> None:
        caplog.set_level(logging.ERROR, logger="app.services.rate_limiter")
        store = AsyncMock()
        store.name = "redis"
        store.hit.side_effect = CounterStoreError("increment failed")
        limiter = RateLimiter(store, build_tier_policies(rate_settings), clock=Mock(return_value=1000.0))

        decision = await limiter.check_and_consume("203.0.113.7", Tier.SEARCH)

        assert decision.allowed is True
        assert decision.remaining == 30
        assert decision.limit == 30
        assert decision.reset_epoch_seconds == 1060
        errors = [r for r in caplog.records if r.getMessage() == "rate_limit.backend_error"]
        assert len(errors) == 1
        assert errors[0].fail_open is True
        assert "203.0.113.7" not in str(errors[0].__dict__)

    @pytest.mark.asyncio
    async def test_fails_open_when_redis_is_down(self, rate_settings, redis_cache, fake_redis) -> None:
        fake_redis.fail = True
        limiter = RateLimiter.from_settings(rate_settings, redis_cache)

        for _ in range(40):
            decision = await limiter.check_and_consume("203.0.113.7", Tier.SEARCH)
            assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_start_and_close_delegate_to_store(self, rate_settings) -> None:
        store = AsyncMock()
        limiter = RateLimiter(store, build_tier_policies(rate_settings))

        await limiter.start()
        await limiter.close()

        store.start.assert_awaited_once()
        store.close.assert_awaited_once()

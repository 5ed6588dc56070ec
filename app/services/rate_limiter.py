"""Tiered rate limiting service.

Decides, per (tier, client identity), whether a request may proceed. The
counter strategy is chosen once at startup:

- Redis configured: shared tumbling-window counters (``RedisCounterStore``).
- Otherwise: per-process sliding window (``InMemorySlidingWindowStore``).

The two strategies admit slightly different patterns at window boundaries
(a tumbling window can admit up to twice the limit across a reset, the
sliding window never does). This is accepted: the fallback only exists for
single-instance and development deployments.

Failure policy: throttling must never cost a legitimate request. Any error
raised by the store is logged at ERROR level and converted into an allowed
decision carrying the tier's full budget.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Callable, Mapping

from app.adapters.cache.redis_cache import RedisCache
from app.adapters.rate_limit.base import AbstractCounterStore, RateLimitDecision, Tier, TierPolicy
from app.adapters.rate_limit.in_memory import InMemorySlidingWindowStore
from app.adapters.rate_limit.redis_counter import RedisCounterStore
from app.core.config import RateLimitSettings
from app.core.logging import hash_identifier

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = "unknown"

TIER_MESSAGES: Mapping[Tier, str] = MappingProxyType(
    {
        Tier.PUBLIC: "Too many requests from this IP, please try again later",
        Tier.SEARCH: "Too many search requests, please slow down",
        Tier.OPERATOR: "Too many operator requests, please slow down",
        Tier.ADMIN: "Too many admin requests, please slow down",
    }
)


def build_tier_policies(rate_settings: RateLimitSettings) -> Mapping[Tier, TierPolicy]:
    """Build the immutable tier → policy table from settings."""

    budgets = {
        Tier.PUBLIC: rate_settings.public_max_requests,
        Tier.SEARCH: rate_settings.search_max_requests,
        Tier.OPERATOR: rate_settings.operator_max_requests,
        Tier.ADMIN: rate_settings.admin_max_requests,
    }
    return MappingProxyType(
        {
            tier: TierPolicy(
                window_seconds=rate_settings.window_seconds,
                max_requests=budgets[tier],
                message=TIER_MESSAGES[tier],
            )
            for tier in Tier
        }
    )


def build_counter_store(rate_settings: RateLimitSettings, cache: RedisCache) -> AbstractCounterStore:
    """Select the counter strategy based on whether a cache target exists."""

    if cache.configured:
        logger.info("rate_limit.backend_selected", extra={"backend": RedisCounterStore.name})
        return RedisCounterStore(cache)

    logger.info(
        "rate_limit.backend_selected",
        extra={"backend": InMemorySlidingWindowStore.name, "reason": "cache_not_configured"},
    )
    return InMemorySlidingWindowStore(
        cleanup_interval_seconds=rate_settings.cleanup_interval_seconds,
    )


def counter_key(tier: Tier, identity: str) -> str:
    return f"rate_limit:{tier.value}:{identity}"


class RateLimiter:
    """Check-and-consume front end over a single counter store."""

    def __init__(
        self,
        store: AbstractCounterStore,
        policies: Mapping[Tier, TierPolicy],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        missing = [tier.value for tier in Tier if tier not in policies]
        if missing:
            raise ValueError(f"missing tier policies: {', '.join(missing)}")

        self._store = store
        self._policies = MappingProxyType(dict(policies))
        self._clock = clock

    @classmethod
    def from_settings(cls, rate_settings: RateLimitSettings, cache: RedisCache) -> RateLimiter:
        return cls(
            build_counter_store(rate_settings, cache),
            build_tier_policies(rate_settings),
        )

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    @property
    def backend(self) -> str:
        return self._store.name

    @property
    def policies(self) -> Mapping[Tier, TierPolicy]:
        return self._policies

    def policy_for(self, tier: Tier) -> TierPolicy:
        return self._policies[tier]

    def _fail_open(self, policy: TierPolicy) -> RateLimitDecision:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return RateLimitDecision(
            allowed=True,
            count=0,
            remaining=policy.max_requests,
            limit=policy.max_requests,
            reset_at=now + timedelta(seconds=policy.window_seconds),
        )

    async def check_and_consume(self, identity: str, tier: Tier) -> RateLimitDecision:
        """Decide whether the client may make one more request in this tier.

        Args:
            identity: Client identity (usually an IP address).
            tier: Tier assigned to the endpoint.

        Returns:
            RateLimitDecision. Never raises because of the counter backend.
        """

        policy = self._policies[tier]
        key = counter_key(tier, identity or UNKNOWN_IDENTITY)

        try:
            return await self._store.hit(key, policy)
        except Exception as exc:
            logger.error(
                "rate_limit.backend_error",
                extra={
                    "tier": tier.value,
                    "backend": self._store.name,
                    "client_hash": hash_identifier(identity or UNKNOWN_IDENTITY),
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                    "fail_open": True,
                },
            )
            return self._fail_open(policy)

    async def start(self) -> None:
        await self._store.start()

    async def close(self) -> None:
        await self._store.close()

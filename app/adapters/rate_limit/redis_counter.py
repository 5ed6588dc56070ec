"""Shared tumbling-window counters on top of the Redis cache façade.

Algorithm per request:
1. Read the counter; if it already reached the limit, deny (reset from TTL).
2. INCR (single atomic round trip) and, when the new value is 1, EXPIRE the
   key for one window. The window therefore restarts on the first request
   after the previous one expired.
3. A post-increment value above the limit is also a denial, so concurrent
   bursts that all passed step 1 cannot admit more than the limit. Increments
   past ``limit + 1`` are given back with DECR, so the stored count (and the
   count reported to clients) never exceeds ``limit + 1``.

The façade swallows backend errors, so a failed read or increment shows up
here as ``None`` and is re-raised as CounterStoreError for the limiter to
fail open.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from app.adapters.cache.redis_cache import RedisCache
from app.adapters.rate_limit.base import (
    AbstractCounterStore,
    CounterStoreError,
    RateLimitDecision,
    TierPolicy,
)

logger = logging.getLogger(__name__)


class RedisCounterStore(AbstractCounterStore):
    """Counter store shared by every instance connected to the same Redis."""

    name = "redis"

    def __init__(self, cache: RedisCache, *, clock: Callable[[], float] = time.time) -> None:
        self._cache = cache
        self._clock = clock

    def _reset_at(self, now: float, seconds: int) -> datetime:
        return datetime.fromtimestamp(now, tz=timezone.utc) + timedelta(seconds=seconds)

    async def _seconds_until_reset(self, key: str, policy: TierPolicy) -> int:
        ttl = await self._cache.ttl(key)
        if ttl is None:
            return policy.window_seconds
        if ttl == -1:
            # Counter lost its expiry (e.g. EXPIRE failed earlier); re-arm it
            await self._cache.expire(key, policy.window_seconds)
            return policy.window_seconds
        if ttl < 0:
            return policy.window_seconds
        return ttl

    def _denied(self, count: int, policy: TierPolicy, now: float, reset_in: int) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=False,
            count=count,
            remaining=0,
            limit=policy.max_requests,
            reset_at=self._reset_at(now, reset_in),
            message=policy.message,
        )

    async def hit(self, key: str, policy: TierPolicy) -> RateLimitDecision:
        now = self._clock()

        raw = await self._cache.get(key)
        if raw is None and not self._cache.connected:
            # The read already found the backend down; an INCR would only wait again
            raise CounterStoreError(f"counter backend unavailable for {key}")
        try:
            current = int(raw) if raw is not None else 0
        except ValueError as exc:
            raise CounterStoreError(f"non-integer counter value at {key}") from exc

        if current >= policy.max_requests:
            reset_in = await self._seconds_until_reset(key, policy)
            return self._denied(min(current, policy.max_requests + 1), policy, now, reset_in)

        new_count = await self._cache.incr(key)
        if new_count is None:
            raise CounterStoreError(f"increment failed for {key}")

        if new_count == 1:
            if not await self._cache.expire(key, policy.window_seconds):
                logger.warning("rate_limit.expire_failed", extra={"counter_key": key})
            reset_in = policy.window_seconds
        else:
            reset_in = await self._seconds_until_reset(key, policy)

        if new_count > policy.max_requests:
            ceiling = policy.max_requests + 1
            if new_count > ceiling and await self._cache.decr(key) is None:
                logger.warning("rate_limit.decrement_failed", extra={"counter_key": key})
            return self._denied(min(new_count, ceiling), policy, now, reset_in)

        return RateLimitDecision(
            allowed=True,
            count=new_count,
            remaining=policy.max_requests - new_count,
            limit=policy.max_requests,
            reset_at=self._reset_at(now, reset_in),
        )

"""In-memory sliding-window counter store (fallback when Redis is not configured).

Notes:
- Per-process only: every worker/instance enforces its own independent limits.
- Thread-safe: one lock guards the read-filter-append sequence for all keys.
- Precise sliding window: each request timestamp is kept until it ages out.
- A cancellable asyncio task periodically purges keys with no live timestamps.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from app.adapters.rate_limit.base import AbstractCounterStore, RateLimitDecision, TierPolicy

logger = logging.getLogger(__name__)


@dataclass
class _RequestLog:
    window_seconds: int
    timestamps: deque[float] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


def _to_datetime(epoch_seconds: float) -> datetime:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)


class InMemorySlidingWindowStore(AbstractCounterStore):
    """Counter store keeping a timestamp log per key.

    Important:
        This store is per-process only. If the API runs with multiple workers
        or instances, each one enforces its own budget, so the effective limit
        is multiplied by the number of processes.
    """

    name = "memory"

    def __init__(
        self,
        *,
        cleanup_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            cleanup_interval_seconds: Period of the background purge task.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If cleanup_interval_seconds is not positive.
        """
        if cleanup_interval_seconds <= 0:
            raise ValueError("cleanup_interval_seconds must be > 0")

        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._logs: dict[str, _RequestLog] = {}
        self._cleanup_task: asyncio.Task[None] | None = None

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._logs)

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def hit(self, key: str, policy: TierPolicy) -> RateLimitDecision:
        return self.consume(key, policy)

    def consume(self, key: str, policy: TierPolicy) -> RateLimitDecision:
        """Check the sliding window for key and record the request if allowed.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()

        with self._lock:
            log = self._logs.get(key)
            if log is None:
                log = _RequestLog(window_seconds=policy.window_seconds)
                self._logs[key] = log
            log.window_seconds = policy.window_seconds
            log.prune(now)

            count = len(log.timestamps)
            if count >= policy.max_requests:
                # Budget frees up when the oldest request in the window ages out
                reset_at = log.timestamps[0] + policy.window_seconds
                return RateLimitDecision(
                    allowed=False,
                    count=count,
                    remaining=0,
                    limit=policy.max_requests,
                    reset_at=_to_datetime(reset_at),
                    message=policy.message,
                )

            log.timestamps.append(now)
            count += 1
            reset_at = log.timestamps[0] + policy.window_seconds

        return RateLimitDecision(
            allowed=True,
            count=count,
            remaining=policy.max_requests - count,
            limit=policy.max_requests,
            reset_at=_to_datetime(reset_at),
        )

    def purge_expired(self) -> int:
        """Drop keys whose whole log has aged out. Returns the number removed."""

        now = self._clock()
        with self._lock:
            expired = []
            for key, log in self._logs.items():
                log.prune(now)
                if not log.timestamps:
                    expired.append(key)
            for key in expired:
                del self._logs[key]
        return len(expired)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            removed = self.purge_expired()
            if removed:
                logger.debug(
                    "rate_limit.memory_purged",
                    extra={"removed": removed, "remaining_keys": self.tracked_keys},
                )

    async def start(self) -> None:
        """Start the periodic purge task on the running event loop."""

        if self.cleanup_running:
            return
        self._cleanup_task = asyncio.create_task(
            self._cleanup_loop(), name="rate-limit-memory-cleanup"
        )
        logger.debug(
            "rate_limit.memory_cleanup_started",
            extra={"interval_s": self._cleanup_interval},
        )

    async def close(self) -> None:
        """Cancel the purge task and wait for it to finish."""

        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("rate_limit.memory_cleanup_stopped")

"""Rate limiter interfaces.

The limiter service depends on this abstraction (not the concrete store) so
the shared Redis counters and the per-process fallback are interchangeable.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Tier(str, Enum):
    """Named rate-limit policy buckets, one per class of endpoints."""

    PUBLIC = "PUBLIC"
    SEARCH = "SEARCH"
    OPERATOR = "OPERATOR"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class TierPolicy:
    """Budget for one tier.

    Attributes:
        window_seconds: Length of the counting window.
        max_requests: Requests allowed per window and client.
        message: Refusal text returned to throttled clients.
    """

    window_seconds: int
    max_requests: int
    message: str

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a check-and-consume call.

    Attributes:
        allowed: Whether the request may proceed.
        count: Requests recorded in the current window (including this one when allowed).
        remaining: Requests left in the window (0 when blocked).
        limit: Max requests per window for the tier.
        reset_at: UTC instant at which the budget frees up again.
        message: Tier refusal text, set only on denial.
    """

    allowed: bool
    count: int
    remaining: int
    limit: int
    reset_at: datetime
    message: str | None = None

    @property
    def reset_epoch_seconds(self) -> int:
        return int(self.reset_at.timestamp())

    def retry_after_seconds(self, now: datetime | None = None) -> int:
        """Seconds until reset, rounded up and never negative."""

        current = now or datetime.now(timezone.utc)
        return max(0, math.ceil((self.reset_at - current).total_seconds()))

    def to_payload(self) -> dict[str, Any]:
        """Serialize in the wire shape shared with response formatting."""

        payload: dict[str, Any] = {
            "allowed": self.allowed,
            "count": self.count,
            "remaining": self.remaining,
            "maxRequests": self.limit,
            "resetTime": self.reset_at.isoformat(),
        }
        if self.message is not None:
            payload["message"] = self.message
        return payload


class CounterStoreError(Exception):
    """Raised by a counter store when its backend cannot answer.

    The limiter turns this (and anything else) into a fail-open decision.
    """


class AbstractCounterStore(ABC):
    """Strategy interface for per-key request counters."""

    name: str = "abstract"

    @abstractmethod
    async def hit(self, key: str, policy: TierPolicy) -> RateLimitDecision:
        """Check the budget for key and record the request when allowed.

        Args:
            key: Composite counter key (tier + client identity).
            policy: Budget to enforce.

        Returns:
            RateLimitDecision describing whether the request was allowed.

        Raises:
            CounterStoreError: If the backend cannot be consulted.
        """
        raise NotImplementedError

    async def start(self) -> None:
        """Start background work owned by the store (no-op by default)."""

    async def close(self) -> None:
        """Stop background work and release resources (no-op by default)."""

"""Rate limiting dependency for FastAPI routes.

This module wires the RateLimiter service into the HTTP layer.

Design goals:
- Minimal coupling: routers declare a tier via ``enforce_rate_limit(Tier.X)``.
- Ordering: the dependency runs before the endpoint, so a denied request never
  reaches the cache or the document store.
- Fail-open end to end: once a request is allowed, nothing in the quota
  bookkeeping (state, headers, logging) can prevent the handler from running.

Client identity is the caller IP, taken from proxy headers in priority order
(first match wins): X-Forwarded-For (first hop), X-Real-IP, X-Client-IP,
then the transport peer address, else ``unknown``.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Awaitable, Callable, Mapping

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from app.adapters.rate_limit.base import RateLimitDecision, Tier
from app.core.config import settings
from app.core.errors import RateLimitExceededError
from app.core.logging import hash_identifier
from app.core.responses import error_body
from app.services.rate_limiter import UNKNOWN_IDENTITY, RateLimiter

logger = logging.getLogger(__name__)

LIMIT_HEADER = "X-RateLimit-Limit"
REMAINING_HEADER = "X-RateLimit-Remaining"
RESET_HEADER = "X-RateLimit-Reset"
RETRY_AFTER_HEADER = "Retry-After"

DEFAULT_REFUSAL_MESSAGE = "Rate limit exceeded. Try again later."


def client_identity(request: Request) -> str:
    """Derive the rate-limit identity for the caller.

    Args:
        request: Incoming request.

    Returns:
        The first present value of the identity sources, or ``unknown``.
    """

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    for header in ("x-real-ip", "x-client-ip"):
        value = (request.headers.get(header) or "").strip()
        if value:
            return value

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN_IDENTITY


def decorate(headers: Mapping[str, str], decision: RateLimitDecision) -> dict[str, str]:
    """Return a copy of headers with the three quota fields added."""

    return {
        **headers,
        LIMIT_HEADER: str(decision.limit),
        REMAINING_HEADER: str(decision.remaining),
        RESET_HEADER: str(decision.reset_epoch_seconds),
    }


def deny_response(decision: RateLimitDecision, now: datetime | None = None) -> JSONResponse:
    """Build the 429 response for a denied decision.

    Retry-After is ``ceil((reset_at - now) / 1s)``; quota headers are included
    with the remaining budget forced to 0.
    """

    retry_after = decision.retry_after_seconds(now)
    headers = decorate(
        {RETRY_AFTER_HEADER: str(retry_after)},
        dataclasses.replace(decision, remaining=0),
    )
    body = error_body(
        code="rate_limit_exceeded",
        message=decision.message or DEFAULT_REFUSAL_MESSAGE,
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        details={"retryAfter": retry_after, "rateLimit": decision.to_payload()},
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=body,
        headers=headers,
    )


def get_rate_limiter(request: Request) -> RateLimiter:
    """Return the process-wide limiter created by the app factory."""

    return request.app.state.rate_limiter


def quota_headers(request: Request) -> dict[str, str]:
    """Quota headers for endpoints that build their own Response objects."""

    decision: RateLimitDecision | None = getattr(request.state, "rate_limit", None)
    if decision is None or not settings.rate_limit.include_headers:
        return {}
    try:
        return decorate({}, decision)
    except Exception as exc:
        logger.error(
            "rate_limit.bookkeeping_failed",
            extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
        )
        return {}


def enforce_rate_limit(tier: Tier) -> Callable[[Request, Response], Awaitable[None]]:
    """Create a FastAPI dependency enforcing the budget of ``tier``.

    Usage:
        router = APIRouter(dependencies=[Depends(enforce_rate_limit(Tier.PUBLIC))])

    Raises (from the dependency):
        RateLimitExceededError: When the client is over quota; rendered as 429.
    """

    async def _enforce(request: Request, response: Response) -> None:
        if not settings.rate_limit.enabled:
            return

        limiter = get_rate_limiter(request)
        identity = client_identity(request)
        decision = await limiter.check_and_consume(identity, tier)

        if not decision.allowed:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "tier": tier.value,
                    "client_hash": hash_identifier(identity),
                    "count": decision.count,
                    "limit": decision.limit,
                    "reset_at": decision.reset_at.isoformat(),
                    "path": request.url.path,
                },
            )
            raise RateLimitExceededError(
                code="rate_limit_exceeded",
                message=decision.message or DEFAULT_REFUSAL_MESSAGE,
                decision=decision,
            )

        try:
            request.state.rate_limit = decision
            if settings.rate_limit.include_headers:
                response.headers.update(decorate({}, decision))
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "tier": tier.value,
                    "client_hash": hash_identifier(identity),
                    "remaining": decision.remaining,
                    "limit": decision.limit,
                },
            )
        except Exception as exc:
            logger.error(
                "rate_limit.bookkeeping_failed",
                extra={
                    "tier": tier.value,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )

    _enforce.__name__ = f"enforce_rate_limit_{tier.value.lower()}"
    return _enforce

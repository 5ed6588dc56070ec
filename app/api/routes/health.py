from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from app.adapters.cache.redis_cache import RedisCache
from app.api.dependencies import get_cache
from app.core.config import settings
from app.core.responses import utc_now_iso

router = APIRouter(tags=["Health"])


async def cache_status(cache: RedisCache) -> str:
    """Report ``not_configured``, ``connected`` or ``disconnected``."""

    if not cache.configured:
        return "not_configured"
    return "connected" if await cache.ping() else "disconnected"


@router.get("/health")
async def health_check(
    request: Request,
    cache: Annotated[RedisCache, Depends(get_cache)],
) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems. Never rate limited and
    never fails because the cache is down: a degraded cache is reported, not
    raised.

    Returns:
        dict: Service status plus cache, rate-limit and store backends.
    """

    return {
        "status": "ok",
        "service": settings.app.service_name,
        "version": settings.app.version,
        "timestamp": utc_now_iso(),
        "cache": await cache_status(cache),
        "rate_limit_backend": request.app.state.rate_limiter.backend,
        "store_backend": request.app.state.store.name,
    }

"""Application factory for FastAPI app.

Centralizes app construction (components, middleware, handlers, routers) so
tests can build isolated apps with injected fakes.

Long-lived components are created exactly once per app and stored on
``app.state``:

- ``cache``: the Redis façade (permanently disconnected when unconfigured)
- ``store``: the document store
- ``rate_limiter``: tier policies plus the counter strategy chosen at startup
- ``route_service`` / ``bus_service`` / ``schedule_service`` / ``cache_invalidator``
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.adapters.cache.redis_cache import RedisCache
from app.adapters.store import AbstractDocumentStore, Tables, create_document_store
from app.api.routes import admin_router, health_router, operator_router, public_router, search_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.services.bus_service import BusService
from app.services.cache_invalidation import CacheInvalidator
from app.services.rate_limiter import RateLimiter
from app.services.route_service import RouteService
from app.services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)

EXPOSED_HEADERS = [
    "ETag",
    "Retry-After",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the counter store's cleanup task; release connections on shutdown."""

    limiter: RateLimiter = app.state.rate_limiter
    cache: RedisCache = app.state.cache

    await limiter.start()
    logger.info(
        "app.started",
        extra={
            "rate_limit_backend": limiter.backend,
            "store_backend": app.state.store.name,
            "cache_target": cache.target,
        },
    )
    try:
        yield
    finally:
        await limiter.close()
        await cache.close()
        logger.info("app.stopped")


def create_app(
    *,
    cache: RedisCache | None = None,
    store: AbstractDocumentStore | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        cache: Cache façade; built from ``REDIS_*`` settings when omitted.
        store: Document store; built from ``STORE_*`` settings when omitted.
        rate_limiter: Limiter; built from ``RATE_LIMIT_*`` settings (and the
            cache, which decides the counter strategy) when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    cache = cache or RedisCache.from_settings(settings.cache)
    store = store or create_document_store(settings.store)
    rate_limiter = rate_limiter or RateLimiter.from_settings(settings.rate_limit, cache)
    tables = Tables.from_settings(settings.store)
    invalidator = CacheInvalidator(cache, tables)

    app = FastAPI(
        title="Bus Tracking API",
        description=(
            "Real-time bus tracking: public route catalogue, schedules and live bus "
            "positions, operator fleet management and location reporting, and admin "
            "route management. Responses are cached in Redis when available and "
            "every endpoint group is rate limited per client IP "
            "(PUBLIC, SEARCH, OPERATOR, ADMIN tiers)."
        ),
        version=settings.app.version,
        debug=settings.app.debug,
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    app.state.cache = cache
    app.state.store = store
    app.state.rate_limiter = rate_limiter
    app.state.cache_invalidator = invalidator
    app.state.route_service = RouteService(store, cache, invalidator, tables, settings.cache_ttl)
    app.state.bus_service = BusService(store, cache, invalidator, tables, settings.cache_ttl)
    app.state.schedule_service = ScheduleService(store, cache, tables, settings.cache_ttl)

    # Middleware
    app.middleware("http")(request_id_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins_list,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "If-None-Match", settings.log.request_id_header],
        expose_headers=[*EXPOSED_HEADERS, settings.log.request_id_header],
    )

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(public_router, prefix="/v1")
    app.include_router(search_router, prefix="/v1")
    app.include_router(operator_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app

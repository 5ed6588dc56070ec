"""Route catalogue service: public reads, search and admin CRUD.

Reads are cache-aside through the Redis façade: look up the cache, fall back
to the document store on a miss, then populate the cache. Because the façade
reports an outage as a miss, the same code path serves requests whether or
not Redis is reachable. Writes go to the store first and then invalidate the
affected cache families.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable

from app.adapters.cache.redis_cache import RedisCache
from app.adapters.store.base import AbstractDocumentStore, Item, Tables
from app.core.config import CacheTTLSettings
from app.core.errors import NotFoundAppError, ValidationAppError
from app.schemas.routes import ALL_WEEKDAYS, RouteCreate, RouteUpdate
from app.services.cache_invalidation import (
    ADMIN_ROUTES_ALL_KEY,
    CacheInvalidator,
    admin_route_key,
    route_key,
    routes_page_key,
    search_key,
)
from app.utils.pagination import PageParams, pagination_meta

logger = logging.getLogger(__name__)

SEARCH_MIN_CHARS = 2
SEARCH_MAX_CHARS = 100

# Route attributes matched by free-text search
SEARCHABLE_FIELDS = ("route_name", "start_location", "end_location", "from_city", "to_city")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def route_matches(route: Item, needle: str) -> bool:
    """Case-insensitive substring match over names, endpoints and stops."""

    needle = needle.lower()
    for field_name in SEARCHABLE_FIELDS:
        value = route.get(field_name)
        if isinstance(value, str) and needle in value.lower():
            return True
    return any(
        isinstance(stop, str) and needle in stop.lower()
        for stop in route.get("intermediate_stops") or []
    )


class RouteService:
    """Business operations on bus routes."""

    def __init__(
        self,
        store: AbstractDocumentStore,
        cache: RedisCache,
        invalidator: CacheInvalidator,
        tables: Tables,
        ttl: CacheTTLSettings,
        *,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._cache = cache
        self._invalidator = invalidator
        self._tables = tables
        self._ttl = ttl
        self._now = now

    async def _all_routes(self) -> list[Item]:
        routes = await self._store.scan(self._tables.routes.name)
        return sorted(routes, key=lambda r: str(r.get("RouteID", "")))

    async def _route_statistics(self, route_id: str) -> dict[str, Any]:
        buses = await self._store.scan(self._tables.buses.name, filters={"RouteID": route_id})
        return {
            "totalBuses": len(buses),
            "activeBuses": sum(1 for b in buses if b.get("Status") == "ACTIVE"),
        }

    # ------------------------------------------------------------------
    # Public reads
    # ------------------------------------------------------------------

    async def list_routes(self, params: PageParams, base_url: str) -> dict[str, Any]:
        """One page of the route catalogue."""

        key = routes_page_key(params.page, params.limit)
        cached = await self._cache.get_json(key)
        if cached is not None:
            logger.info("routes.cache_hit", extra={"cache_key": key})
            return cached

        routes = await self._all_routes()
        payload = {
            "data": params.slice(routes),
            "pagination": pagination_meta(len(routes), params, base_url),
            "meta": {"generatedAt": self._now().isoformat()},
        }
        await self._cache.set_json(key, payload, self._ttl.routes)
        logger.info(
            "routes.listed",
            extra={"page": params.page, "limit": params.limit, "total": len(routes)},
        )
        return payload

    async def get_route(self, route_id: str) -> dict[str, Any]:
        """Route details with bus statistics.

        Raises:
            NotFoundAppError: If the route does not exist.
        """

        key = route_key(route_id)
        cached = await self._cache.get_json(key)
        if cached is not None:
            return cached

        route = await self._store.get(self._tables.routes.name, {"RouteID": route_id})
        if route is None:
            raise NotFoundAppError(
                code="route_not_found",
                message="Route not found",
                details={"resource": "route", "resource_id": route_id},
            )

        payload = {
            "data": {**route, "statistics": await self._route_statistics(route_id)},
            "meta": {"generatedAt": self._now().isoformat()},
        }
        await self._cache.set_json(key, payload, self._ttl.route_details)
        return payload

    async def search_routes(self, query: str, limit: int) -> dict[str, Any]:
        """Free-text route search.

        Raises:
            ValidationAppError: If the trimmed query is outside 2-100 characters.
        """

        needle = (query or "").strip()
        if not SEARCH_MIN_CHARS <= len(needle) <= SEARCH_MAX_CHARS:
            raise ValidationAppError(
                code="invalid_search_query",
                message=(
                    f"Search term must be between {SEARCH_MIN_CHARS} and "
                    f"{SEARCH_MAX_CHARS} characters"
                ),
            )

        key = search_key(needle, limit)
        cached = await self._cache.get_json(key)
        if cached is not None:
            return cached

        matches = [r for r in await self._all_routes() if route_matches(r, needle)]
        matches.sort(key=lambda r: str(r.get("route_name", "")).lower())
        payload = {
            "data": matches[:limit],
            "meta": {"query": needle, "totalMatches": len(matches), "limit": limit},
        }
        await self._cache.set_json(key, payload, self._ttl.search)
        logger.info("routes.searched", extra={"matches": len(matches), "limit": limit})
        return payload

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def admin_list_routes(self) -> dict[str, Any]:
        cached = await self._cache.get_json(ADMIN_ROUTES_ALL_KEY)
        if cached is not None:
            return cached

        routes = await self._all_routes()
        payload = {
            "data": routes,
            "stats": {
                "total": len(routes),
                "byStatus": dict(Counter(str(r.get("status", "UNKNOWN")) for r in routes)),
                "byType": dict(Counter(str(r.get("route_type", "unknown")) for r in routes)),
            },
        }
        await self._cache.set_json(ADMIN_ROUTES_ALL_KEY, payload, self._ttl.routes)
        return payload

    async def admin_get_route(self, route_id: str) -> Item:
        key = admin_route_key(route_id)
        cached = await self._cache.get_json(key)
        if cached is not None:
            return cached

        route = await self._store.get(self._tables.routes.name, {"RouteID": route_id})
        if route is None:
            raise NotFoundAppError(
                code="route_not_found",
                message="Route not found",
                details={"resource": "route", "resource_id": route_id},
            )
        await self._cache.set_json(key, route, self._ttl.route_details)
        return route

    async def create_route(self, body: RouteCreate, actor: str) -> Item:
        """Create a route; fails with ConflictAppError if the id is taken."""

        timestamp = self._now().isoformat()
        route_id = body.RouteID or f"route_{uuid.uuid4()}"
        minutes = body.estimated_duration_minutes or 0
        route: Item = {
            "RouteID": route_id,
            "route_name": body.route_name,
            "start_location": body.start_location,
            "end_location": body.end_location,
            "description": body.description or "",
            "total_stops": body.total_stops or 0,
            "distance_km": body.distance_km or 0,
            "estimated_duration_minutes": minutes,
            "estimated_duration_hours": round(minutes / 60, 2),
            "fare_rs": body.fare_rs or 0,
            "route_type": body.route_type or "local",
            "status": body.status or "ACTIVE",
            "service_frequency": body.service_frequency or "",
            "first_departure": body.first_departure or "05:00",
            "last_departure": body.last_departure or "20:00",
            "operates_on": body.operates_on or list(ALL_WEEKDAYS),
            "intermediate_stops": body.intermediate_stops or [],
            "from_city": body.from_city or "",
            "to_city": body.to_city or "",
            "created_at": timestamp,
            "updated_at": timestamp,
            "created_by": actor,
            "updated_by": actor,
        }

        await self._store.put(self._tables.routes.name, route, if_not_exists="RouteID")
        await self._invalidator.invalidate_route()
        logger.info("admin.route_created", extra={"route_id": route_id, "actor": actor})
        return route

    async def update_route(self, route_id: str, body: RouteUpdate, actor: str) -> Item:
        """Apply a partial update.

        Raises:
            ValidationAppError: If the body changes nothing.
            NotFoundAppError: If the route does not exist.
        """

        changes = body.changes()
        if not changes:
            raise ValidationAppError(code="no_fields_to_update", message="No valid fields to update")

        if "estimated_duration_minutes" in changes:
            changes["estimated_duration_hours"] = round(changes["estimated_duration_minutes"] / 60, 2)
        changes["updated_at"] = self._now().isoformat()
        changes["updated_by"] = actor

        updated = await self._store.update(self._tables.routes.name, {"RouteID": route_id}, changes)
        await self._invalidator.invalidate_route(route_id)
        logger.info(
            "admin.route_updated",
            extra={"route_id": route_id, "actor": actor, "fields": sorted(body.changes())},
        )
        return updated

    async def delete_route(self, route_id: str, actor: str) -> None:
        """Delete a route.

        Raises:
            NotFoundAppError: If the route does not exist.
        """

        deleted = await self._store.delete(self._tables.routes.name, {"RouteID": route_id})
        if not deleted:
            raise NotFoundAppError(
                code="route_not_found",
                message="Route not found",
                details={"resource": "route", "resource_id": route_id},
            )
        await self._invalidator.invalidate_route(route_id)
        logger.info("admin.route_deleted", extra={"route_id": route_id, "actor": actor})

"""Route schedule listings (read only)."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from app.adapters.cache.redis_cache import RedisCache
from app.adapters.store.base import AbstractDocumentStore, Tables
from app.core.config import CacheTTLSettings
from app.core.errors import ValidationAppError
from app.services.cache_invalidation import schedules_key
from app.utils.pagination import PageParams, pagination_meta

logger = logging.getLogger(__name__)

ROUTE_SCHEDULE_INDEX = "RouteScheduleIndex"


def parse_schedule_date(value: str | None) -> str | None:
    """Validate an optional ``YYYY-MM-DD`` filter.

    Raises:
        ValidationAppError: If the value is not a calendar date.
    """

    if value is None:
        return None
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError as exc:
        raise ValidationAppError(
            code="invalid_date",
            message="date must be formatted as YYYY-MM-DD",
        ) from exc


class ScheduleService:
    def __init__(
        self,
        store: AbstractDocumentStore,
        cache: RedisCache,
        tables: Tables,
        ttl: CacheTTLSettings,
    ) -> None:
        self._store = store
        self._cache = cache
        self._tables = tables
        self._ttl = ttl

    async def list_for_route(
        self,
        route_id: str,
        params: PageParams,
        base_url: str,
        schedule_date: str | None = None,
    ) -> dict[str, Any]:
        """Schedules of a route ordered by date then departure time."""

        schedule_date = parse_schedule_date(schedule_date)
        key = schedules_key(route_id, schedule_date, params.page, params.limit)
        cached = await self._cache.get_json(key)
        if cached is not None:
            return cached

        filters = {"schedule_date": schedule_date} if schedule_date else None
        schedules = await self._store.query(
            self._tables.schedules.name,
            "route_id",
            route_id,
            index_name=ROUTE_SCHEDULE_INDEX,
            filters=filters,
        )
        schedules.sort(key=lambda s: (str(s.get("schedule_date", "")), str(s.get("departure_time", ""))))

        payload = {
            "data": params.slice(schedules),
            "pagination": pagination_meta(len(schedules), params, base_url),
            "meta": {"routeId": route_id, "date": schedule_date},
        }
        await self._cache.set_json(key, payload, self._ttl.schedules)
        logger.info(
            "schedules.listed",
            extra={"route_id": route_id, "date": schedule_date, "total": len(schedules)},
        )
        return payload

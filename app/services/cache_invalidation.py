"""Cache key conventions and invalidation.

Every cache key used by the API is built here, so readers and writers agree
on the layout:

- ``public:routes:page:{page}:limit:{limit}``   paginated public route list
- ``public:route:{route_id}``                   public route details
- ``public:live:buses:{route_id}``              live buses on a route
- ``public:schedules:{route_id}:{date}:...``    paginated route schedules
- ``public:search:{digest}``                    route search results
- ``bus:location:{bus_id}``                     latest bus location
- ``admin:routes:all`` / ``admin:route:{id}``   admin route views

Invalidation goes through the cache façade, which never raises, so a failed
invalidation leaves stale entries to expire on their TTL and never fails the
write that triggered it.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from app.adapters.cache.redis_cache import RedisCache
from app.adapters.store.base import Tables

logger = logging.getLogger(__name__)

ADMIN_ROUTES_ALL_KEY = "admin:routes:all"

CHANGE_EVENTS = frozenset({"INSERT", "MODIFY", "REMOVE"})


def routes_page_key(page: int, limit: int) -> str:
    return f"public:routes:page:{page}:limit:{limit}"


def route_key(route_id: str) -> str:
    return f"public:route:{route_id}"


def live_buses_key(route_id: str) -> str:
    return f"public:live:buses:{route_id}"


def schedules_key(route_id: str, date: str | None, page: int, limit: int) -> str:
    return f"public:schedules:{route_id}:{date or 'all'}:page:{page}:limit:{limit}"


def search_key(query: str, limit: int) -> str:
    digest = hashlib.sha256(f"{query.strip().lower()}::{limit}".encode("utf-8")).hexdigest()[:16]
    return f"public:search:{digest}"


def bus_location_key(bus_id: str) -> str:
    return f"bus:location:{bus_id}"


def admin_route_key(route_id: str) -> str:
    return f"admin:route:{route_id}"


@dataclass
class InvalidationResult:
    """Outcome of processing one change record."""

    event_name: str
    table: str | None
    processed: bool
    keys_deleted: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "eventName": self.event_name,
            "table": self.table,
            "processed": self.processed,
            "keysDeleted": self.keys_deleted,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class InvalidationSummary:
    results: list[InvalidationResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(1 for r in self.results if r.processed)

    @property
    def errors(self) -> int:
        return len(self.results) - self.processed

    @property
    def keys_deleted(self) -> int:
        return sum(r.keys_deleted for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRecords": len(self.results),
            "processedSuccessfully": self.processed,
            "errors": self.errors,
            "keysDeleted": self.keys_deleted,
            "details": [r.to_dict() for r in self.results],
        }


class CacheInvalidator:
    """Removes cache entries made stale by writes to the document store."""

    def __init__(self, cache: RedisCache, tables: Tables) -> None:
        self._cache = cache
        self._tables = tables

    async def invalidate_route(self, route_id: str | None = None) -> int:
        """Drop listings, searches and (when given) one route's entries."""

        deleted = await self._cache.delete(ADMIN_ROUTES_ALL_KEY)
        count = int(deleted)
        if route_id:
            count += await self._cache.delete_many(route_key(route_id), admin_route_key(route_id))
            count += await self._cache.delete_pattern(f"public:schedules:{route_id}:*")
        count += await self._cache.delete_pattern("public:routes:page:*")
        count += await self._cache.delete_pattern("public:search:*")

        logger.info(
            "cache.invalidated",
            extra={"scope": "route", "route_id": route_id, "keys_deleted": count},
        )
        return count

    async def invalidate_bus(self, bus_id: str, route_id: str | None = None) -> int:
        """Drop a bus's location and the live-bus views that include it."""

        count = int(await self._cache.delete(bus_location_key(bus_id)))
        if route_id:
            count += int(await self._cache.delete(live_buses_key(route_id)))
        else:
            count += await self._cache.delete_pattern("public:live:buses:*")

        logger.info(
            "cache.invalidated",
            extra={"scope": "bus", "bus_id": bus_id, "route_id": route_id, "keys_deleted": count},
        )
        return count

    async def invalidate_schedules(self, route_id: str | None = None) -> int:
        pattern = f"public:schedules:{route_id}:*" if route_id else "public:schedules:*"
        count = await self._cache.delete_pattern(pattern)
        logger.info(
            "cache.invalidated",
            extra={"scope": "schedules", "route_id": route_id, "keys_deleted": count},
        )
        return count

    async def _invalidate_for(self, table: str | None, keys: Mapping[str, Any]) -> int:
        if table == self._tables.routes.name:
            return await self.invalidate_route(keys.get("RouteID"))
        if table in (self._tables.buses.name, self._tables.locations.name):
            bus_id = keys.get("BusID")
            if not bus_id:
                raise ValueError("change record for a bus table carries no BusID")
            return await self.invalidate_bus(str(bus_id))
        if table == self._tables.schedules.name:
            return await self.invalidate_schedules(keys.get("route_id"))
        raise ValueError(f"no cache mapping for table {table!r}")

    async def process_change_records(self, records: Iterable[Mapping[str, Any]]) -> InvalidationSummary:
        """Apply a batch of change records ``{eventName, table, keys}``.

        Each record is processed independently; a bad record is reported in
        the summary and does not stop the batch.
        """

        summary = InvalidationSummary()
        for record in records:
            event_name = str(record.get("eventName", ""))
            table = record.get("table")
            try:
                if event_name not in CHANGE_EVENTS:
                    raise ValueError(f"unhandled event type {event_name!r}")
                deleted = await self._invalidate_for(table, record.get("keys") or {})
                summary.results.append(
                    InvalidationResult(event_name, table, processed=True, keys_deleted=deleted)
                )
            except ValueError as exc:
                logger.warning(
                    "cache.invalidation_record_failed",
                    extra={"event_name": event_name, "table": table, "error_msg": str(exc)},
                )
                summary.results.append(
                    InvalidationResult(event_name, table, processed=False, error=str(exc))
                )

        logger.info(
            "cache.invalidation_batch",
            extra={
                "records": len(summary.results),
                "processed": summary.processed,
                "errors": summary.errors,
                "keys_deleted": summary.keys_deleted,
            },
        )
        return summary

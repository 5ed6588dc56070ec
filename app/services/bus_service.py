"""Bus fleet and location tracking service.

Operators manage only their own buses: every operator operation first loads
the bus and checks ``OperatorID`` against the caller (admins bypass the
ownership check). Location reports are appended to the locations table with a
24 h ``ttl`` attribute, mirrored onto the bus as ``LastLocation`` and primed
into the cache so public readers see them immediately.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from app.adapters.cache.redis_cache import RedisCache
from app.adapters.store.base import AbstractDocumentStore, Item, Tables
from app.core.auth import Principal
from app.core.config import CacheTTLSettings
from app.core.errors import (
    AuthorizationAppError,
    ConflictAppError,
    NotFoundAppError,
    ValidationAppError,
)
from app.core.logging import hash_identifier
from app.schemas.buses import BusCreate, BusUpdate, LocationUpdate
from app.services.cache_invalidation import CacheInvalidator, bus_location_key, live_buses_key

logger = logging.getLogger(__name__)

OPERATOR_INDEX = "OperatorIndex"

# Location reports older than this are rejected
MAX_REPORT_AGE = timedelta(minutes=5)
# Location records expire from the store after this long (DynamoDB TTL)
LOCATION_RETENTION = timedelta(hours=24)
# Buses without a report this recent are not shown as live
LIVE_FRESHNESS = timedelta(minutes=10)

# Request field → stored attribute
_BUS_ATTRIBUTES = {
    "busNumber": "BusNumber",
    "capacity": "Capacity",
    "routeId": "RouteID",
    "status": "Status",
    "model": "Model",
    "year": "Year",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def public_location(record: Item) -> dict[str, Any]:
    """Project a location record onto the fields exposed to the public."""

    location = {
        "busId": record.get("BusID"),
        "latitude": record.get("latitude"),
        "longitude": record.get("longitude"),
        "heading": record.get("heading", 0),
        "speed": record.get("speed", 0),
        "timestamp": record.get("timestamp"),
    }
    if record.get("accuracy") is not None:
        location["accuracy"] = record["accuracy"]
    return location


class BusService:
    """Business operations on buses and their locations."""

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

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    async def get_owned_bus(self, bus_id: str, principal: Principal) -> Item:
        """Load a bus the caller may manage.

        Raises:
            NotFoundAppError: If the bus does not exist.
            AuthorizationAppError: If it belongs to another operator.
        """

        bus = await self._store.get(self._tables.buses.name, {"BusID": bus_id})
        if bus is None:
            raise NotFoundAppError(
                code="bus_not_found",
                message="Bus not found",
                details={"resource": "bus", "resource_id": bus_id},
            )
        if principal.role != "admin" and bus.get("OperatorID") != principal.subject:
            logger.warning(
                "operator.ownership_denied",
                extra={"bus_id": bus_id, "subject_hash": hash_identifier(principal.subject)},
            )
            raise AuthorizationAppError(
                code="bus_not_owned",
                message="Access denied: you can only manage your own buses",
                details={"resource": "bus", "resource_id": bus_id},
            )
        return bus

    async def _ensure_unique_number(self, operator_id: str, bus_number: str) -> None:
        existing = await self._store.scan(
            self._tables.buses.name,
            filters={"OperatorID": operator_id, "BusNumber": bus_number},
            limit=1,
        )
        if existing:
            raise ConflictAppError(
                code="bus_number_exists",
                message="Bus number already exists for your operator",
                details={"resource": "bus", "resource_id": bus_number},
            )

    # ------------------------------------------------------------------
    # Fleet management
    # ------------------------------------------------------------------

    async def list_operator_buses(self, operator_id: str) -> list[Item]:
        buses = await self._store.query(
            self._tables.buses.name,
            "OperatorID",
            operator_id,
            index_name=OPERATOR_INDEX,
        )
        return sorted(buses, key=lambda b: str(b.get("BusNumber", "")))

    async def create_bus(self, operator_id: str, body: BusCreate) -> Item:
        await self._ensure_unique_number(operator_id, body.busNumber)

        timestamp = self._now().isoformat()
        bus: Item = {
            "BusID": f"bus_{uuid.uuid4().hex[:16]}",
            "OperatorID": operator_id,
            "BusNumber": body.busNumber,
            "Capacity": body.capacity,
            "Status": body.status,
            "CreatedAt": timestamp,
            "UpdatedAt": timestamp,
        }
        for field_name in ("routeId", "model", "year"):
            value = getattr(body, field_name)
            if value is not None:
                bus[_BUS_ATTRIBUTES[field_name]] = value

        await self._store.put(self._tables.buses.name, bus, if_not_exists="BusID")
        await self._invalidator.invalidate_bus(bus["BusID"], bus.get("RouteID"))
        logger.info(
            "operator.bus_created",
            extra={"bus_id": bus["BusID"], "operator_hash": hash_identifier(operator_id)},
        )
        return bus

    async def update_bus(self, bus_id: str, principal: Principal, body: BusUpdate) -> Item:
        bus = await self.get_owned_bus(bus_id, principal)

        changes = body.changes()
        if not changes:
            raise ValidationAppError(code="no_fields_to_update", message="No valid fields to update")
        if "busNumber" in changes and changes["busNumber"] != bus.get("BusNumber"):
            await self._ensure_unique_number(str(bus.get("OperatorID")), changes["busNumber"])

        patch = {_BUS_ATTRIBUTES[name]: value for name, value in changes.items()}
        patch["UpdatedAt"] = self._now().isoformat()
        updated = await self._store.update(self._tables.buses.name, {"BusID": bus_id}, patch)

        await self._invalidator.invalidate_bus(bus_id, bus.get("RouteID"))
        if updated.get("RouteID") != bus.get("RouteID") and updated.get("RouteID"):
            await self._cache.delete(live_buses_key(str(updated["RouteID"])))
        logger.info("operator.bus_updated", extra={"bus_id": bus_id, "fields": sorted(changes)})
        return updated

    async def delete_bus(self, bus_id: str, principal: Principal) -> None:
        bus = await self.get_owned_bus(bus_id, principal)
        await self._store.delete(self._tables.buses.name, {"BusID": bus_id})
        await self._invalidator.invalidate_bus(bus_id, bus.get("RouteID"))
        logger.info("operator.bus_deleted", extra={"bus_id": bus_id})

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    async def record_location(self, bus_id: str, principal: Principal, body: LocationUpdate) -> Item:
        """Store a location report for an owned bus.

        Raises:
            ValidationAppError: If the report is in the future or older than 5 minutes.
        """

        bus = await self.get_owned_bus(bus_id, principal)

        now = self._now()
        reported_at = body.timestamp or now
        if reported_at.tzinfo is None:
            reported_at = reported_at.replace(tzinfo=timezone.utc)
        if reported_at > now or reported_at < now - MAX_REPORT_AGE:
            raise ValidationAppError(
                code="invalid_timestamp",
                message="Invalid timestamp: must be within the last 5 minutes",
                details={"context": {"timestamp": reported_at.isoformat()}},
            )

        timestamp = reported_at.isoformat()
        record: Item = {
            "BusID": bus_id,
            "timestamp": timestamp,
            "latitude": body.latitude,
            "longitude": body.longitude,
            "heading": body.heading,
            "speed": body.speed,
            "OperatorID": bus.get("OperatorID"),
            "ttl": int((now + LOCATION_RETENTION).timestamp()),
        }
        if body.accuracy is not None:
            record["accuracy"] = body.accuracy

        await self._store.put(self._tables.locations.name, record)
        await self._store.update(
            self._tables.buses.name,
            {"BusID": bus_id},
            {
                "LastLocation": {
                    "latitude": body.latitude,
                    "longitude": body.longitude,
                    "heading": body.heading,
                    "speed": body.speed,
                },
                "LastLocationUpdate": timestamp,
            },
        )

        await self._invalidator.invalidate_bus(bus_id, bus.get("RouteID"))
        await self._cache.set_json(bus_location_key(bus_id), record, self._ttl.location)
        logger.info("operator.location_recorded", extra={"bus_id": bus_id, "timestamp": timestamp})
        return record

    async def _latest_location(self, bus_id: str) -> Item | None:
        key = bus_location_key(bus_id)
        cached = await self._cache.get_json(key)
        if cached is not None:
            return cached

        records = await self._store.query(
            self._tables.locations.name,
            "BusID",
            bus_id,
            newest_first=True,
            limit=1,
        )
        if not records:
            return None
        await self._cache.set_json(key, records[0], self._ttl.location)
        return records[0]

    async def latest_location(self, bus_id: str) -> Item:
        """Latest location record for a bus (public read).

        Raises:
            NotFoundAppError: If no location was ever reported for the bus.
        """

        record = await self._latest_location(bus_id)
        if record is None:
            raise NotFoundAppError(
                code="location_not_found",
                message="No location data found for this bus",
                details={"resource": "location", "resource_id": bus_id},
            )
        return record

    async def owned_location(self, bus_id: str, principal: Principal) -> Item:
        await self.get_owned_bus(bus_id, principal)
        return await self.latest_location(bus_id)

    async def live_buses(self, route_id: str) -> dict[str, Any]:
        """Active buses on a route that reported within the last 10 minutes."""

        key = live_buses_key(route_id)
        cached = await self._cache.get_json(key)
        if cached is not None:
            return cached

        buses = await self._store.scan(
            self._tables.buses.name,
            filters={"RouteID": route_id, "Status": "ACTIVE"},
        )
        locations = await asyncio.gather(*(self._latest_location(b["BusID"]) for b in buses))

        cutoff = self._now() - LIVE_FRESHNESS
        live = []
        for bus, record in zip(buses, locations):
            reported_at = _parse_timestamp(record.get("timestamp")) if record else None
            if reported_at is None or reported_at <= cutoff:
                continue
            live.append(
                {
                    "busId": bus["BusID"],
                    "busNumber": bus.get("BusNumber"),
                    "capacity": bus.get("Capacity"),
                    "status": bus.get("Status"),
                    "location": public_location(record),
                    "lastUpdate": record.get("timestamp"),
                }
            )

        payload = {
            "data": {
                "routeId": route_id,
                "buses": live,
                "count": len(live),
                "totalBusesOnRoute": len(buses),
            },
            "meta": {"dataFreshness": "10 minutes"},
        }
        await self._cache.set_json(key, payload, self._ttl.live_buses)
        return payload

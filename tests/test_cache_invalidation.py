"""Tests for cache key layout and invalidation."""

from __future__ import annotations

import pytest

from app.adapters.cache.redis_cache import RedisCache
from app.services.cache_invalidation import (
    ADMIN_ROUTES_ALL_KEY,
    CacheInvalidator,
    bus_location_key,
    live_buses_key,
    route_key,
    routes_page_key,
    schedules_key,
    search_key,
)


@pytest.fixture
def invalidator(redis_cache, tables) -> CacheInvalidator:
    return CacheInvalidator(redis_cache, tables)


async def _seed(cache: RedisCache, *keys: str) -> None:
    for key in keys:
        await cache.set(key, "{}", 300)


class TestKeys:
    def test_key_layout(self) -> None:
        assert routes_page_key(2, 20) == "public:routes:page:2:limit:20"
        assert route_key("r1") == "public:route:r1"
        assert live_buses_key("r1") == "public:live:buses:r1"
        assert schedules_key("r1", None, 1, 20) == "public:schedules:r1:all:page:1:limit:20"
        assert schedules_key("r1", "2024-05-01", 1, 20) == "public:schedules:r1:2024-05-01:page:1:limit:20"
        assert bus_location_key("b1") == "bus:location:b1"

    def test_search_key_normalizes_query(self) -> None:
        assert search_key("  Colombo ", 20) == search_key("colombo", 20)
        assert search_key("colombo", 20) != search_key("colombo", 10)
        assert search_key("colombo", 20).startswith("public:search:")


class TestCacheInvalidator:
    @pytest.mark.asyncio
    async def test_route_change_drops_listings_and_route(self, invalidator, redis_cache, fake_redis) -> None:
        await _seed(
            redis_cache,
            routes_page_key(1, 20),
            routes_page_key(2, 20),
            route_key("r1"),
            route_key("r2"),
            search_key("kandy", 20),
            schedules_key("r1", None, 1, 20),
            ADMIN_ROUTES_ALL_KEY,
        )

        deleted = await invalidator.invalidate_route("r1")

        assert deleted == 6
        assert set(fake_redis.data) == {route_key("r2")}

    @pytest.mark.asyncio
    async def test_route_creation_keeps_other_route_details(self, invalidator, redis_cache, fake_redis) -> None:
        await _seed(redis_cache, routes_page_key(1, 20), route_key("r2"))

        await invalidator.invalidate_route()

        assert set(fake_redis.data) == {route_key("r2")}

    @pytest.mark.asyncio
    async def test_bus_change_drops_location_and_live_view(self, invalidator, redis_cache, fake_redis) -> None:
        await _seed(redis_cache, bus_location_key("b1"), live_buses_key("r1"), live_buses_key("r2"))

        assert await invalidator.invalidate_bus("b1", "r1") == 2
        assert set(fake_redis.data) == {live_buses_key("r2")}

    @pytest.mark.asyncio
    async def test_bus_change_without_route_drops_all_live_views(self, invalidator, redis_cache, fake_redis) -> None:
        await _seed(redis_cache, live_buses_key("r1"), live_buses_key("r2"))

        assert await invalidator.invalidate_bus("b1") == 2
        assert fake_redis.data == {}

    @pytest.mark.asyncio
    async def test_invalidation_without_redis_is_a_no_op(self, tables) -> None:
        invalidator = CacheInvalidator(RedisCache(), tables)

        assert await invalidator.invalidate_route("r1") == 0
        assert await invalidator.invalidate_bus("b1", "r1") == 0

    @pytest.mark.asyncio
    async def test_invalidation_during_outage_does_not_raise(self, invalidator, fake_redis) -> None:
        fake_redis.fail = True

        assert await invalidator.invalidate_route("r1") == 0


class TestChangeRecords:
    @pytest.mark.asyncio
    async def test_processes_batch_and_reports_bad_records(self, invalidator, redis_cache, tables) -> None:
        await _seed(redis_cache, route_key("r1"), bus_location_key("b1"), schedules_key("r1", None, 1, 20))

        summary = await invalidator.process_change_records(
            [
                {"eventName": "MODIFY", "table": tables.routes.name, "keys": {"RouteID": "r1"}},
                {"eventName": "INSERT", "table": tables.locations.name, "keys": {"BusID": "b1", "timestamp": "t"}},
                {"eventName": "REMOVE", "table": tables.schedules.name, "keys": {"ScheduleID": "s1", "route_id": "r1"}},
                {"eventName": "TRUNCATE", "table": tables.routes.name, "keys": {}},
                {"eventName": "INSERT", "table": "Unknown", "keys": {}},
                {"eventName": "MODIFY", "table": tables.buses.name, "keys": {}},
            ]
        )

        result = summary.to_dict()
        assert result["totalRecords"] == 6
        assert result["processedSuccessfully"] == 3
        assert result["errors"] == 3
        assert result["keysDeleted"] == 3
        assert [d["processed"] for d in result["details"]] == [True, True, True, False, False, False]
        assert "unhandled event type" in result["details"][3]["error"]

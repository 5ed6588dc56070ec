"""FastAPI dependencies exposing the process-wide components.

Everything is constructed once by the application factory and stored on
``app.state``; these getters let routers (and tests, via
``app.dependency_overrides``) reach them without module-level globals.
"""

from __future__ import annotations

from fastapi import Request

from app.adapters.cache.redis_cache import RedisCache
from app.adapters.store.base import AbstractDocumentStore
from app.services.bus_service import BusService
from app.services.cache_invalidation import CacheInvalidator
from app.services.route_service import RouteService
from app.services.schedule_service import ScheduleService


def get_cache(request: Request) -> RedisCache:
    return request.app.state.cache


def get_store(request: Request) -> AbstractDocumentStore:
    return request.app.state.store


def get_route_service(request: Request) -> RouteService:
    return request.app.state.route_service


def get_bus_service(request: Request) -> BusService:
    return request.app.state.bus_service


def get_schedule_service(request: Request) -> ScheduleService:
    return request.app.state.schedule_service


def get_cache_invalidator(request: Request) -> CacheInvalidator:
    return request.app.state.cache_invalidator

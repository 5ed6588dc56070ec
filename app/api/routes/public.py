from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response

from app.adapters.rate_limit.base import Tier
from app.api.caching import cacheable_response
from app.api.dependencies import get_bus_service, get_route_service, get_schedule_service
from app.core.config import settings
from app.core.rate_limit import enforce_rate_limit
from app.services.bus_service import BusService, public_location
from app.services.route_service import RouteService
from app.services.schedule_service import ScheduleService
from app.utils.pagination import PageParams

router = APIRouter(
    prefix="/public",
    tags=["Public"],
    dependencies=[Depends(enforce_rate_limit(Tier.PUBLIC))],
)

PageQuery = Annotated[int | None, Query(ge=1, description="1-based page number")]
LimitQuery = Annotated[int | None, Query(ge=1, description="Page size (max 100)")]


@router.get("/routes")
async def list_routes(
    request: Request,
    routes: Annotated[RouteService, Depends(get_route_service)],
    page: PageQuery = None,
    limit: LimitQuery = None,
) -> Response:
    """Paginated route catalogue.

    Supports conditional requests: a matching ``If-None-Match`` yields 304.
    """

    payload = await routes.list_routes(PageParams.normalize(page, limit), request.url.path)
    return cacheable_response(request, payload, settings.cache_ttl.routes)


@router.get("/routes/{route_id}")
async def get_route(
    route_id: str,
    request: Request,
    routes: Annotated[RouteService, Depends(get_route_service)],
) -> Response:
    """Route details with bus statistics."""

    payload = await routes.get_route(route_id)
    return cacheable_response(request, payload, settings.cache_ttl.route_details)


@router.get("/routes/{route_id}/buses")
async def get_live_buses(
    route_id: str,
    request: Request,
    buses: Annotated[BusService, Depends(get_bus_service)],
) -> Response:
    """Active buses on a route with their latest reported position."""

    payload = await buses.live_buses(route_id)
    return cacheable_response(request, payload, settings.cache_ttl.live_buses)


@router.get("/routes/{route_id}/schedules")
async def get_route_schedules(
    route_id: str,
    request: Request,
    schedules: Annotated[ScheduleService, Depends(get_schedule_service)],
    page: PageQuery = None,
    limit: LimitQuery = None,
    date: Annotated[str | None, Query(description="Filter by service date (YYYY-MM-DD)")] = None,
) -> Response:
    payload = await schedules.list_for_route(
        route_id,
        PageParams.normalize(page, limit),
        request.url.path,
        schedule_date=date,
    )
    return cacheable_response(request, payload, settings.cache_ttl.schedules)


@router.get("/buses/{bus_id}/location")
async def get_bus_location(
    bus_id: str,
    request: Request,
    buses: Annotated[BusService, Depends(get_bus_service)],
) -> Response:
    """Latest reported position of a bus."""

    record = await buses.latest_location(bus_id)
    return cacheable_response(request, {"data": public_location(record)}, settings.cache_ttl.location)

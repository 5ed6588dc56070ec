from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response

from app.adapters.rate_limit.base import Tier
from app.api.caching import cacheable_response
from app.api.dependencies import get_route_service
from app.core.config import settings
from app.core.rate_limit import enforce_rate_limit
from app.services.route_service import RouteService
from app.utils.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter(
    prefix="/public/search",
    tags=["Search"],
    dependencies=[Depends(enforce_rate_limit(Tier.SEARCH))],
)


@router.get("/routes")
async def search_routes(
    request: Request,
    routes: Annotated[RouteService, Depends(get_route_service)],
    q: Annotated[str, Query(description="Text to match against names, endpoints and stops")] = "",
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_PAGE_SIZE,
) -> Response:
    """Search routes by name, start/end location, city or intermediate stop.

    Raises (via service):
        ValidationAppError: 400 if ``q`` is shorter than 2 or longer than 100 characters.
    """

    payload = await routes.search_routes(q, limit)
    return cacheable_response(request, payload, settings.cache_ttl.search)

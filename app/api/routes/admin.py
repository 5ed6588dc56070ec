from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from app.adapters.rate_limit.base import Tier
from app.api.dependencies import get_cache_invalidator, get_route_service
from app.core.auth import Principal, require_role
from app.core.rate_limit import enforce_rate_limit
from app.core.responses import success_body
from app.schemas.cache import CacheInvalidationRequest
from app.schemas.routes import RouteCreate, RouteUpdate
from app.services.cache_invalidation import CacheInvalidator
from app.services.route_service import RouteService

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(enforce_rate_limit(Tier.ADMIN))],
)

admin_principal = require_role("admin")

AdminPrincipal = Annotated[Principal, Depends(admin_principal)]
Routes = Annotated[RouteService, Depends(get_route_service)]


@router.get("/routes")
async def list_routes(principal: AdminPrincipal, routes: Routes) -> dict:
    """All routes with status and type breakdowns."""

    payload = await routes.admin_list_routes()
    return success_body(**payload)


@router.get("/routes/{route_id}")
async def get_route(route_id: str, principal: AdminPrincipal, routes: Routes) -> dict:
    route = await routes.admin_get_route(route_id)
    return success_body(data=route)


@router.post("/routes", status_code=status.HTTP_201_CREATED)
async def create_route(body: RouteCreate, principal: AdminPrincipal, routes: Routes) -> dict:
    """Create a route (409 when an explicit ``RouteID`` already exists)."""

    route = await routes.create_route(body, actor=principal.subject)
    return success_body(message="Route created successfully", data=route)


@router.put("/routes/{route_id}")
async def update_route(route_id: str, body: RouteUpdate, principal: AdminPrincipal, routes: Routes) -> dict:
    route = await routes.update_route(route_id, body, actor=principal.subject)
    return success_body(message="Route updated successfully", data=route)


@router.delete("/routes/{route_id}")
async def delete_route(route_id: str, principal: AdminPrincipal, routes: Routes) -> dict:
    await routes.delete_route(route_id, actor=principal.subject)
    return success_body(message="Route deleted successfully", data={"routeId": route_id})


@router.post("/cache/invalidate")
async def invalidate_cache(
    body: CacheInvalidationRequest,
    principal: AdminPrincipal,
    invalidator: Annotated[CacheInvalidator, Depends(get_cache_invalidator)],
) -> dict:
    """Drop cache entries affected by a batch of store change records."""

    summary = await invalidator.process_change_records(r.model_dump() for r in body.records)
    return success_body(message="Cache invalidation processed", data=summary.to_dict())

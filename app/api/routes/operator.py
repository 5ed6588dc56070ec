from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from app.adapters.rate_limit.base import Tier
from app.api.dependencies import get_bus_service
from app.core.auth import Principal, require_role
from app.core.rate_limit import enforce_rate_limit
from app.core.responses import success_body
from app.schemas.buses import BusCreate, BusUpdate, LocationUpdate
from app.services.bus_service import BusService

router = APIRouter(
    prefix="/operator",
    tags=["Operator"],
    dependencies=[Depends(enforce_rate_limit(Tier.OPERATOR))],
)

operator_principal = require_role("operator", "admin")

OperatorPrincipal = Annotated[Principal, Depends(operator_principal)]
Buses = Annotated[BusService, Depends(get_bus_service)]


@router.get("/buses")
async def list_buses(principal: OperatorPrincipal, buses: Buses) -> dict:
    """Buses owned by the calling operator."""

    items = await buses.list_operator_buses(principal.subject)
    return success_body(data=items, count=len(items))


@router.post("/buses", status_code=status.HTTP_201_CREATED)
async def create_bus(body: BusCreate, principal: OperatorPrincipal, buses: Buses) -> dict:
    """Register a bus for the calling operator (409 on duplicate bus number)."""

    bus = await buses.create_bus(principal.subject, body)
    return success_body(message="Bus created successfully", data=bus)


@router.get("/buses/{bus_id}")
async def get_bus(bus_id: str, principal: OperatorPrincipal, buses: Buses) -> dict:
    bus = await buses.get_owned_bus(bus_id, principal)
    return success_body(data=bus)


@router.put("/buses/{bus_id}")
async def update_bus(bus_id: str, body: BusUpdate, principal: OperatorPrincipal, buses: Buses) -> dict:
    bus = await buses.update_bus(bus_id, principal, body)
    return success_body(message="Bus updated successfully", data=bus)


@router.delete("/buses/{bus_id}")
async def delete_bus(bus_id: str, principal: OperatorPrincipal, buses: Buses) -> dict:
    await buses.delete_bus(bus_id, principal)
    return success_body(message="Bus deleted successfully", data={"busId": bus_id})


@router.put("/buses/{bus_id}/location")
async def update_location(
    bus_id: str,
    body: LocationUpdate,
    principal: OperatorPrincipal,
    buses: Buses,
) -> dict:
    """Report the current position of an owned bus.

    The report timestamp must not be in the future nor older than 5 minutes.
    """

    record = await buses.record_location(bus_id, principal, body)
    return success_body(message="Location updated successfully", data=record)


@router.get("/buses/{bus_id}/location")
async def get_location(bus_id: str, principal: OperatorPrincipal, buses: Buses) -> dict:
    record = await buses.owned_location(bus_id, principal)
    return success_body(data=record)

"""Pydantic schemas for operator bus management and location reports."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field

BusStatus = Literal["ACTIVE", "INACTIVE", "MAINTENANCE"]


class BusCreate(BaseModel):
    """Body of ``POST /v1/operator/buses``."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    busNumber: str = Field(..., min_length=1, max_length=32)
    capacity: int = Field(default=50, gt=0, le=200)
    routeId: str | None = Field(default=None, min_length=1)
    status: BusStatus = "ACTIVE"
    model: str | None = None
    year: int | None = Field(default=None, ge=1950, le=2100)


class BusUpdate(BaseModel):
    """Body of ``PUT /v1/operator/buses/{bus_id}``; only provided fields change."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    busNumber: str | None = Field(default=None, min_length=1, max_length=32)
    capacity: int | None = Field(default=None, gt=0, le=200)
    routeId: str | None = Field(default=None, min_length=1)
    status: BusStatus | None = None
    model: str | None = None
    year: int | None = Field(default=None, ge=1950, le=2100)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class LocationUpdate(BaseModel):
    """Body of ``PUT /v1/operator/buses/{bus_id}/location``.

    ``timestamp`` defaults to the time the report is received; when given it
    must be timezone-aware (or it is read as UTC).
    """

    model_config = ConfigDict(extra="ignore")

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    heading: float = Field(default=0, ge=0, lt=360, description="Degrees clockwise from north.")
    speed: float = Field(default=0, ge=0, description="km/h")
    accuracy: float | None = Field(default=None, ge=0, description="Meters")
    timestamp: datetime | None = None

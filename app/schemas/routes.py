"""Pydantic schemas for bus route administration."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

RouteStatus = Literal["ACTIVE", "INACTIVE", "MAINTENANCE", "SUSPENDED"]
RouteType = Literal["inter-provincial", "intra-provincial", "urban", "express", "local"]

ALL_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class _RouteFields(BaseModel):
    """Optional route attributes shared by create and update."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    description: str | None = Field(default=None, max_length=1000)
    total_stops: int | None = Field(default=None, ge=0)
    distance_km: float | None = Field(default=None, ge=0)
    estimated_duration_minutes: int | None = Field(default=None, ge=0)
    fare_rs: float | None = Field(default=None, ge=0)
    route_type: RouteType | None = None
    status: RouteStatus | None = None
    service_frequency: str | None = None
    first_departure: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    last_departure: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    operates_on: List[str] | None = None
    intermediate_stops: List[str] | None = None
    from_city: str | None = None
    to_city: str | None = None

    @field_validator("operates_on")
    @classmethod
    def _known_weekdays(cls, value: List[str] | None) -> List[str] | None:
        if value is None:
            return value
        days = [day.strip().lower() for day in value]
        unknown = sorted(set(days) - set(ALL_WEEKDAYS))
        if unknown:
            raise ValueError(f"unknown weekdays: {', '.join(unknown)}")
        return days


class RouteCreate(_RouteFields):
    """Body of ``POST /v1/admin/routes``."""

    RouteID: str | None = Field(
        default=None,
        min_length=1,
        max_length=64,
        description="Optional explicit route id; generated when omitted.",
    )
    route_name: str = Field(..., min_length=1, max_length=200)
    start_location: str = Field(..., min_length=1, max_length=200)
    end_location: str = Field(..., min_length=1, max_length=200)


class RouteUpdate(_RouteFields):
    """Body of ``PUT /v1/admin/routes/{route_id}``; only provided fields change."""

    route_name: str | None = Field(default=None, min_length=1, max_length=200)
    start_location: str | None = Field(default=None, min_length=1, max_length=200)
    end_location: str | None = Field(default=None, min_length=1, max_length=200)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)

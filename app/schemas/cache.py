"""Pydantic schemas for admin cache invalidation."""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class ChangeRecord(BaseModel):
    """One document-store change, shaped like a DynamoDB stream record."""

    eventName: str = Field(..., description="INSERT, MODIFY or REMOVE")
    table: str = Field(..., min_length=1, description="Table the change was written to")
    keys: Dict[str, Any] = Field(default_factory=dict, description="Key attributes of the item")


class CacheInvalidationRequest(BaseModel):
    """Body of ``POST /v1/admin/cache/invalidate``."""

    records: List[ChangeRecord] = Field(..., min_length=1, max_length=100)

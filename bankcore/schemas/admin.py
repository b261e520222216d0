"""
Pydantic schemas for admin-only endpoints.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from bankcore.models.alert import AlertKind


class AlertResponse(BaseModel):
    """An operator alert raised after money moved."""
    id: uuid.UUID
    movement_id: uuid.UUID
    kind: AlertKind
    detail: str
    created_at: datetime
    resolved_at: datetime | None
    resolved_by: uuid.UUID | None
    resolution_note: str | None

    model_config = {"from_attributes": True}


class AlertResolveRequest(BaseModel):
    note: str | None = Field(None, max_length=500)


class ExpireStaleRequest(BaseModel):
    max_age_seconds: int | None = Field(None, ge=0)


class ExpireStaleResponse(BaseModel):
    expired_movement_ids: list[uuid.UUID]


class RecoverRequest(BaseModel):
    max_age_seconds: int | None = Field(None, ge=0)


class RecoverResponse(BaseModel):
    recovered_movement_ids: list[uuid.UUID]

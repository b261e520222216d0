"""
Pydantic schemas for identity-verification endpoints.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from bankcore.models.verification import StepStatus, VerificationStatus


class VerificationStepResponse(BaseModel):
    step_id: str
    title: str
    required: bool
    status: StepStatus
    updated_at: datetime

    model_config = {"from_attributes": True}


class VerificationCaseResponse(BaseModel):
    """The caller's verification case and the limit it currently grants."""
    user_id: uuid.UUID
    status: VerificationStatus
    movement_limit_cents: int
    steps: list[VerificationStepResponse]


class VerificationEventRequest(BaseModel):
    """Step event reported by the verification provider."""
    user_id: uuid.UUID
    step_id: str = Field(min_length=1, max_length=32)
    status: StepStatus

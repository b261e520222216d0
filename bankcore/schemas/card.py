"""
Pydantic schemas for Card endpoints.

Card numbers and CVVs are NEVER returned in API responses; only the last
four digits are exposed. The activation code is returned to the owner at
issuance, so they can activate the card.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from bankcore.models.card import CardActivation, CardNetwork, CardStatus


class CardResponse(BaseModel):
    """Public representation of a card (masked — no full number or CVV)."""
    id: uuid.UUID
    account_id: uuid.UUID
    network: CardNetwork
    pan_last4: str
    expiry_month: int
    expiry_year: int
    activation_status: CardActivation
    status: CardStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class CardIssuedResponse(CardResponse):
    activation_code: str | None = None


class CardActivationRequest(BaseModel):
    """Request body for POST /cards/{card_id}/activate."""
    activation_code: str = Field(min_length=1, max_length=12)


class CardChargeRequest(BaseModel):
    """Request body for POST /cards/{card_id}/charges."""
    amount: str | int | float | None = None
    merchant: str | None = Field(None, max_length=100)
    idempotency_key: str | None = Field(None, max_length=128)

"""
Pydantic schemas for movement endpoints (transfers, deposits, withdrawals).

Form fields are deliberately optional and loosely typed: Request Intake
(services/intake.py) decides what is missing or malformed and answers with
a specific reason, instead of a generic schema error.

Amounts are entered in major units as strings or numbers ("40.00", 40) and
returned in integer minor units.
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from bankcore.models.movement import MovementKind, MovementState


Amount = str | int | float | None


class TransferForm(BaseModel):
    """Request body for POST /movements/transfers."""
    source_account_id: str | None = None
    destination_account_id: str | None = None
    amount: Amount = None
    memo: str | None = None
    idempotency_key: str | None = None
    displayed_balance: Amount = None


class DepositForm(BaseModel):
    """Request body for POST /movements/deposits."""
    destination_account_id: str | None = None
    amount: Amount = None
    rail: str | None = Field(None, description="ach, wire, crypto, check or card")
    bank_name: str | None = None
    routing_number: str | None = None
    external_account_number: str | None = None
    crypto_currency: str | None = None
    wallet_address: str | None = None
    check_number: str | None = None
    memo: str | None = None
    idempotency_key: str | None = None


class WithdrawalForm(BaseModel):
    """Request body for POST /movements/withdrawals."""
    source_account_id: str | None = None
    amount: Amount = None
    rail: str | None = Field(None, description="ach, wire, crypto, check or card")
    bank_name: str | None = None
    routing_number: str | None = None
    external_account_number: str | None = None
    crypto_currency: str | None = None
    wallet_address: str | None = None
    check_number: str | None = None
    memo: str | None = None
    idempotency_key: str | None = None
    displayed_balance: Amount = None


class AdjustmentRequest(BaseModel):
    """Request body for POST /admin/accounts/{id}/adjustments."""
    direction: Literal["credit", "debit"]
    amount: Amount = None
    memo: str | None = Field(None, max_length=255)
    idempotency_key: str | None = Field(None, max_length=128)


class MovementResponse(BaseModel):
    """Public representation of a movement."""
    id: uuid.UUID
    kind: MovementKind
    state: MovementState
    amount_cents: int
    source_account_id: uuid.UUID | None
    destination_account_id: uuid.UUID | None
    card_id: uuid.UUID | None
    memo: str | None
    idempotency_key: str
    failure_reason: str | None
    retryable: bool
    initiated_by: uuid.UUID
    created_at: datetime
    completed_at: datetime | None
    updated_at: datetime

    model_config = {"from_attributes": True}


class MovementOutcomeResponse(BaseModel):
    """
    Response body for every movement-creating endpoint.

    `replayed` is true when the idempotency key already named a movement;
    `idempotency_conflict` is additionally true when the replayed request
    carried different parameters (the original is returned unchanged).
    """
    movement: MovementResponse
    replayed: bool = False
    idempotency_conflict: bool = False
    alert_ids: list[uuid.UUID] = []

    @classmethod
    def from_outcome(cls, outcome) -> "MovementOutcomeResponse":
        return cls(
            movement=MovementResponse.model_validate(outcome.movement),
            replayed=outcome.replayed,
            idempotency_conflict=outcome.conflict,
            alert_ids=[alert.id for alert in outcome.alerts],
        )


class MovementPage(BaseModel):
    """Movement history page plus the recommended polling interval."""
    items: list[MovementResponse]
    poll_interval_seconds: int
    next_since: datetime | None = None


class ReceiptPartyResponse(BaseModel):
    label: str
    kind: str
    routing_number: str
    account_number_masked: str

    model_config = {"from_attributes": True}


class ReceiptResponse(BaseModel):
    """Human-readable receipt for one movement."""
    reference: str
    title: str
    state: str
    amount: str
    currency: str
    created_at: datetime
    completed_at: datetime | None
    memo: str | None
    source: ReceiptPartyResponse | None
    destination: ReceiptPartyResponse | None
    failure_reason: str | None

    model_config = {"from_attributes": True}

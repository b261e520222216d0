"""
Pydantic schemas for Account endpoints.

All monetary amounts are integer minor units (cents for USD).
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from bankcore.models.account import AccountKind, AccountStatus
from bankcore.schemas.card import CardIssuedResponse


class AccountCreateRequest(BaseModel):
    """Request body for POST /accounts."""
    kind: AccountKind = Field(
        default=AccountKind.CHECKING,
        description="Kind of account to open",
    )


class AccountResponse(BaseModel):
    """Public representation of a bank account."""
    id: uuid.UUID
    owner_id: uuid.UUID
    kind: AccountKind
    status: AccountStatus
    balance_cents: int
    currency: str
    routing_number: str
    account_number: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AccountOpenedResponse(AccountResponse):
    """Response body for POST /accounts: the account plus its new card."""
    card: CardIssuedResponse | None = None


class BalanceResponse(BaseModel):
    """
    Balance check response — stored and ledger-derived values.

    `match` is false only if the stored balance disagrees with the sum of
    applied movements, which would indicate a data integrity issue.
    """
    account_id: uuid.UUID
    balance_cents: int
    ledger_balance_cents: int
    match: bool
    currency: str
    poll_interval_seconds: int


class AccountStatusRequest(BaseModel):
    """Request body for POST /admin/accounts/{id}/status."""
    status: AccountStatus
    reason: str | None = Field(None, max_length=255)

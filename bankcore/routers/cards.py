"""
Cards router — activation, blocking and charges.

Endpoints:
  POST /cards/{card_id}/activate — Activate with the code delivered at issuance
  POST /cards/{card_id}/block    — Block the card permanently
  POST /cards/{card_id}/charges  — Settle a card charge against its account

Issuance lives under /accounts/{account_id}/card. Card numbers and CVVs are
encrypted at rest and never returned; only the last four digits are exposed.
"""

import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.context import CallerContext
from bankcore.database import get_db
from bankcore.dependencies import get_transfer_engine, idempotency_key_header, require_member
from bankcore.exceptions import ValidationError
from bankcore.routers.movements import outcome_response
from bankcore.schemas.card import CardActivationRequest, CardChargeRequest, CardResponse
from bankcore.schemas.movement import MovementOutcomeResponse
from bankcore.services import card_service, intake
from bankcore.services.transfer_engine import TransferEngine

router = APIRouter()


@router.post(
    "/{card_id}/activate",
    response_model=CardResponse,
    summary="Activate a card",
)
async def activate_card(
    card_id: uuid.UUID,
    request: CardActivationRequest,
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    """Activating an already active card is a no-op; blocked cards stay blocked."""
    return await card_service.activate_card(db, ctx, card_id, request.activation_code)


@router.post(
    "/{card_id}/block",
    response_model=CardResponse,
    summary="Block a card",
)
async def block_card(
    card_id: uuid.UUID,
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    return await card_service.block_card(db, ctx, card_id)


@router.post(
    "/{card_id}/charges",
    response_model=MovementOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Settle a card charge",
)
async def charge_card(
    card_id: uuid.UUID,
    request: CardChargeRequest,
    response: Response,
    header_key: str | None = Depends(idempotency_key_header),
    ctx: CallerContext = Depends(require_member),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """
    Debit the card's account as a card_settlement movement.

    The card must be active and the account must cover the amount (credit
    accounts may draw on their line). Same idempotency rules as
    /movements/*.
    """
    idempotency_key = header_key or request.idempotency_key
    if not idempotency_key:
        raise ValidationError("missing_fields", "Missing required fields: idempotency_key")

    outcome = await engine.settle_card_charge(
        ctx,
        card_id=card_id,
        amount_cents=intake.parse_amount(request.amount),
        idempotency_key=idempotency_key,
        memo=f"CARD {request.merchant}" if request.merchant else "CARD",
    )
    return outcome_response(outcome, response)

"""
Movements router — customer-initiated money movements.

Endpoints:
  POST /movements/transfers          — Move money between two accounts
  POST /movements/deposits           — Credit an account from an external rail
  POST /movements/withdrawals        — Debit an account to an external rail
  GET  /movements/{movement_id}          — Get one movement
  GET  /movements/{movement_id}/receipt  — Human-readable receipt

Every POST needs an idempotency key, sent as the `Idempotency-Key` header or
as `idempotency_key` in the body. Repeating a request with the same key
never moves money twice: the first response is 201 Created, every repeat is
200 OK with `replayed: true` and the movement as it stands now.

The raw form goes through Request Intake, then the Transfer Engine. Business
rejections (insufficient funds, inactive account, limit) are recorded as a
rejected movement before the error response is returned, so they can be
looked up by key afterwards.
"""

import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.context import CallerContext
from bankcore.database import get_db
from bankcore.dependencies import (
    get_caller_context,
    get_transfer_engine,
    idempotency_key_header,
    require_member,
)
from bankcore.models.account import Account
from bankcore.models.movement import MovementKind
from bankcore.schemas.movement import (
    DepositForm,
    MovementOutcomeResponse,
    MovementResponse,
    ReceiptResponse,
    TransferForm,
    WithdrawalForm,
)
from bankcore.services import intake, projection, receipts
from bankcore.services.transfer_engine import MovementOutcome, TransferEngine

router = APIRouter()


def form_with_key(body, header_key: str | None) -> dict:
    form = body.model_dump()
    if header_key:
        form["idempotency_key"] = header_key
    return form


def outcome_response(outcome: MovementOutcome, response: Response) -> MovementOutcomeResponse:
    if outcome.replayed:
        response.status_code = status.HTTP_200_OK
    return MovementOutcomeResponse.from_outcome(outcome)


async def _submit(
    ctx: CallerContext,
    engine: TransferEngine,
    form: dict,
    kind: MovementKind,
    response: Response,
) -> MovementOutcomeResponse:
    movement_request = intake.build_movement_request(form, kind)
    outcome = await engine.execute(ctx, movement_request)
    return outcome_response(outcome, response)


@router.post(
    "/transfers",
    response_model=MovementOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Transfer money between accounts",
)
async def create_transfer(
    body: TransferForm,
    response: Response,
    header_key: str | None = Depends(idempotency_key_header),
    ctx: CallerContext = Depends(require_member),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """
    Transfer money from one of your accounts to any other account.

    Both legs happen or neither does. The source must belong to you; the
    destination can belong to anyone.

    - **amount**: Major units, e.g. "40.00"; at most two decimals
    - **displayed_balance**: Optional; the balance your client was showing,
      checked before anything is stored
    """
    return await _submit(
        ctx, engine, form_with_key(body, header_key), MovementKind.INTERNAL, response
    )


@router.post(
    "/deposits",
    response_model=MovementOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Deposit from an external rail",
)
async def create_deposit(
    body: DepositForm,
    response: Response,
    header_key: str | None = Depends(idempotency_key_header),
    ctx: CallerContext = Depends(require_member),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """
    Credit one of your accounts from an external rail.

    - **rail**: ach, wire, crypto, check or card, with the reference
      fields that rail needs
    """
    return await _submit(
        ctx, engine, form_with_key(body, header_key), MovementKind.DEPOSIT, response
    )


@router.post(
    "/withdrawals",
    response_model=MovementOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Withdraw to an external rail",
)
async def create_withdrawal(
    body: WithdrawalForm,
    response: Response,
    header_key: str | None = Depends(idempotency_key_header),
    ctx: CallerContext = Depends(require_member),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """Debit one of your accounts to an external rail."""
    return await _submit(
        ctx, engine, form_with_key(body, header_key), MovementKind.WITHDRAWAL, response
    )


@router.get(
    "/{movement_id}",
    response_model=MovementResponse,
    summary="Get a movement",
)
async def get_movement(
    movement_id: uuid.UUID,
    ctx: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Visible to the customer who initiated it, the owners of the accounts it
    touches, and administrators. Anyone else gets 404.
    """
    return await projection.get_movement(db, ctx, movement_id)


@router.get(
    "/{movement_id}/receipt",
    response_model=ReceiptResponse,
    summary="Get a movement's receipt",
)
async def get_receipt(
    movement_id: uuid.UUID,
    ctx: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    """Receipt fields for display; account numbers are masked."""
    movement = await projection.get_movement(db, ctx, movement_id)
    source = (
        await db.get(Account, movement.source_account_id)
        if movement.source_account_id is not None else None
    )
    destination = (
        await db.get(Account, movement.destination_account_id)
        if movement.destination_account_id is not None else None
    )
    return ReceiptResponse.model_validate(receipts.build_receipt(movement, source, destination))

"""
Accounts router — account opening and customer read views.

Endpoints (require JWT, scoped to the authenticated customer):
  POST   /accounts                              — Open an account (and its card)
  GET    /accounts                              — List own accounts
  GET    /accounts/changes                      — Server-sent change events
  GET    /accounts/{account_id}                 — Get own account details
  GET    /accounts/{account_id}/balance         — Stored and ledger balances
  GET    /accounts/{account_id}/movements       — Movement history / polling
  POST   /accounts/{account_id}/card            — Issue the account's card
  GET    /accounts/{account_id}/card            — Get the card (masked)

Every read is served by the Read Projection, so it is never older than the
last committed movement. Clients stay fresh by polling
/movements?since=<next_since> every `poll_interval_seconds`, or by keeping
/accounts/changes open. Administrators use /admin/* instead.
"""

import asyncio
import json
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.config import settings
from bankcore.context import CallerContext
from bankcore.database import get_db
from bankcore.dependencies import get_caller_context, require_member
from bankcore.models.movement import MovementKind, MovementState
from bankcore.schemas.account import (
    AccountCreateRequest,
    AccountOpenedResponse,
    AccountResponse,
    BalanceResponse,
)
from bankcore.schemas.card import CardIssuedResponse, CardResponse
from bankcore.schemas.movement import MovementPage, MovementResponse
from bankcore.services import account_service, card_service, projection

router = APIRouter()


async def _issued(db: AsyncSession, card) -> CardIssuedResponse:
    response = CardIssuedResponse.model_validate(card)
    response.activation_code = await card_service.reveal_activation_code(db, card.id)
    return response


@router.post(
    "",
    response_model=AccountOpenedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a new bank account",
)
async def open_account(
    request: AccountCreateRequest,
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    """
    Open an account of the requested kind.

    The account starts active with a zero balance and a random 10-digit
    account number. Every kind except fixed and mortgage is issued a card,
    returned here together with its activation code.
    """
    account, card = await account_service.open_account(db, ctx, request.kind)

    body = AccountResponse.model_validate(account).model_dump()
    return AccountOpenedResponse(
        **body,
        card=await _issued(db, card) if card is not None else None,
    )


@router.get(
    "",
    response_model=list[AccountResponse],
    summary="List your accounts",
)
async def list_accounts(
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    """List every account owned by the authenticated customer."""
    return await projection.list_accounts(db, ctx.user_id)


@router.get(
    "/changes",
    summary="Stream movement changes (server-sent events)",
    response_class=StreamingResponse,
)
async def stream_changes(
    ctx: CallerContext = Depends(get_caller_context),
):
    """
    Server-sent events for movements touching the caller's accounts
    (administrators receive every event).

    Each event is `event: movement` with a JSON body of movement_id, state,
    account_ids and occurred_at. A comment line is sent as a heartbeat when
    nothing happened for CHANGE_FEED_HEARTBEAT_SECONDS.
    """

    async def events():
        async with projection.change_feed.subscribe(ctx) as subscription:
            yield f"retry: {settings.PROJECTION_POLL_INTERVAL_SECONDS * 1000}\n\n"
            while True:
                try:
                    event = await subscription.get(timeout=settings.CHANGE_FEED_HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"
                    continue
                yield f"event: movement\ndata: {json.dumps(event.as_dict())}\n\n"

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get(
    "/{account_id}",
    response_model=AccountResponse,
    summary="Get account details",
)
async def get_account(
    account_id: uuid.UUID,
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    """Returns 403 if the account belongs to someone else, 404 if unknown."""
    view = await projection.get_account_view(db, ctx, account_id)
    return view.account


@router.get(
    "/{account_id}/balance",
    response_model=BalanceResponse,
    summary="Check account balance",
)
async def get_balance(
    account_id: uuid.UUID,
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    """
    Get the stored balance and the balance recomputed from applied
    movements.

    `match` is false only if the two disagree, which would indicate a
    balance written outside the Transfer Engine.
    """
    view = await projection.get_account_view(db, ctx, account_id)
    return BalanceResponse(
        account_id=view.account.id,
        balance_cents=view.account.balance_cents,
        ledger_balance_cents=view.ledger_balance_cents,
        match=view.match,
        currency=view.account.currency,
        poll_interval_seconds=settings.PROJECTION_POLL_INTERVAL_SECONDS,
    )


@router.get(
    "/{account_id}/movements",
    response_model=MovementPage,
    summary="List an account's movements",
)
async def list_movements(
    account_id: uuid.UUID,
    state: MovementState | None = Query(None, description="Filter by movement state"),
    kind: MovementKind | None = Query(None, description="Filter by movement kind"),
    since: datetime | None = Query(
        None,
        description="Only movements created or changed after this instant (oldest first)",
    ),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    """
    Movement history for one of your accounts, newest first.

    Pass the returned `next_since` back as `since` to poll for changes.
    """
    movements = await projection.list_movements(
        db, ctx, account_id,
        state=state, kind=kind, since=since, limit=limit, offset=offset,
    )
    return MovementPage(
        items=[MovementResponse.model_validate(movement) for movement in movements],
        poll_interval_seconds=settings.PROJECTION_POLL_INTERVAL_SECONDS,
        next_since=max((movement.updated_at for movement in movements), default=since),
    )


@router.post(
    "/{account_id}/card",
    response_model=CardIssuedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a card for an account",
)
async def issue_card(
    account_id: uuid.UUID,
    response: Response,
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue the account's card.

    Idempotent: an account has at most one card. Asking again answers 200
    with the card that already exists; its activation code is only shown
    when the card is created.
    """
    card, created = await card_service.issue_card_for(db, ctx, account_id)
    if created:
        return await _issued(db, card)

    response.status_code = status.HTTP_200_OK
    return CardIssuedResponse.model_validate(card)


@router.get(
    "/{account_id}/card",
    response_model=CardResponse,
    summary="Get card details (masked)",
)
async def get_card(
    account_id: uuid.UUID,
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    """Only the last four digits are shown; the number and CVV never leave storage."""
    return await card_service.get_card(db, ctx, account_id)

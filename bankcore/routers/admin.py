"""
Admin router — back-office endpoints.

All endpoints require the ADMIN role. Admins can see every account and
movement, but they never write a balance directly: corrections are
admin_adjustment movements that go through the Transfer Engine like any
other movement, with the same idempotency and audit trail.

Endpoints:
  GET  /admin/accounts                           — List ALL accounts
  GET  /admin/accounts/{account_id}/balance      — Any account's balances
  POST /admin/accounts/{account_id}/adjustments  — Credit or debit an account
  POST /admin/accounts/{account_id}/status       — Hold, freeze, reactivate, close
  GET  /admin/movements                          — The complete movement log
  POST /admin/movements/expire                   — Reject stuck in-flight movements
  POST /admin/movements/recover                  — Complete applied but unrecorded movements
  GET  /admin/alerts                             — Operator alerts
  POST /admin/alerts/{alert_id}/resolve          — Mark an alert as handled

By consolidating all admin routes in one router, we avoid route-ordering
conflicts that arise when multiple routers share a prefix and have
overlapping parameterized paths.
"""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.config import settings
from bankcore.context import CallerContext
from bankcore.database import get_db
from bankcore.dependencies import get_transfer_engine, idempotency_key_header, require_admin
from bankcore.exceptions import ValidationError
from bankcore.models.movement import MovementKind, MovementState
from bankcore.routers.movements import outcome_response
from bankcore.schemas.account import AccountResponse, AccountStatusRequest, BalanceResponse
from bankcore.schemas.admin import (
    AlertResolveRequest,
    AlertResponse,
    ExpireStaleRequest,
    ExpireStaleResponse,
    RecoverRequest,
    RecoverResponse,
)
from bankcore.schemas.movement import AdjustmentRequest, MovementOutcomeResponse, MovementResponse
from bankcore.services import account_service, alert_service, intake, projection
from bankcore.services.transfer_engine import TransferEngine

router = APIRouter()


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

@router.get(
    "/accounts",
    response_model=list[AccountResponse],
    summary="[Admin] List all accounts",
)
async def admin_list_accounts(
    owner_id: uuid.UUID | None = Query(None, description="Only this owner's accounts"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: CallerContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await projection.admin_list_accounts(db, owner_id=owner_id, limit=limit, offset=offset)


@router.get(
    "/accounts/{account_id}/balance",
    response_model=BalanceResponse,
    summary="[Admin] Get any account's balance",
)
async def admin_get_balance(
    account_id: uuid.UUID,
    admin: CallerContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Stored and ledger-derived balance, for integrity checks."""
    view = await projection.get_account_view(db, admin, account_id)
    return BalanceResponse(
        account_id=view.account.id,
        balance_cents=view.account.balance_cents,
        ledger_balance_cents=view.ledger_balance_cents,
        match=view.match,
        currency=view.account.currency,
        poll_interval_seconds=settings.PROJECTION_POLL_INTERVAL_SECONDS,
    )


@router.post(
    "/accounts/{account_id}/adjustments",
    response_model=MovementOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Credit or debit an account",
)
async def admin_adjust_balance(
    account_id: uuid.UUID,
    request: AdjustmentRequest,
    response: Response,
    header_key: str | None = Depends(idempotency_key_header),
    admin: CallerContext = Depends(require_admin),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """
    Record an admin_adjustment movement. The account's overdraft rule still
    applies to debits; the account must be active.
    """
    idempotency_key = header_key or request.idempotency_key
    if not idempotency_key:
        raise ValidationError("missing_fields", "Missing required fields: idempotency_key")

    outcome = await engine.adjust_balance(
        admin,
        account_id=account_id,
        amount_cents=intake.parse_amount(request.amount),
        direction=request.direction,
        idempotency_key=idempotency_key,
        memo=request.memo,
    )
    return outcome_response(outcome, response)


@router.post(
    "/accounts/{account_id}/status",
    response_model=AccountResponse,
    summary="[Admin] Change an account's status",
)
async def admin_change_status(
    account_id: uuid.UUID,
    request: AccountStatusRequest,
    admin: CallerContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Allowed: active <-> hold, active <-> frozen, hold -> frozen, and any
    open status -> closed. Closing requires a zero balance.
    """
    return await account_service.change_status(
        db, admin, account_id, request.status, reason=request.reason
    )


# ---------------------------------------------------------------------------
# Movements
# ---------------------------------------------------------------------------

@router.get(
    "/movements",
    response_model=list[MovementResponse],
    summary="[Admin] List ALL movements",
)
async def admin_list_movements(
    account_id: uuid.UUID | None = Query(None),
    state: MovementState | None = Query(None, description="Filter by movement state"),
    kind: MovementKind | None = Query(None, description="Filter by movement kind"),
    since: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: CallerContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    The complete movement log, newest first, including rejected and
    reversal_required movements.
    """
    return await projection.admin_list_movements(
        db,
        account_id=account_id,
        state=state,
        kind=kind,
        since=since,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/movements/expire",
    response_model=ExpireStaleResponse,
    summary="[Admin] Expire stuck in-flight movements",
)
async def admin_expire_stale(
    request: ExpireStaleRequest,
    admin: CallerContext = Depends(require_admin),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """
    Reject movements that have been received or validated for longer than
    `max_age_seconds` (default STALE_MOVEMENT_SECONDS). None of them touched
    a balance, and each can still be retried with its key.
    """
    expired = await engine.expire_stale(request.max_age_seconds)
    return ExpireStaleResponse(expired_movement_ids=[movement.id for movement in expired])


@router.post(
    "/movements/recover",
    response_model=RecoverResponse,
    summary="[Admin] Complete applied but unrecorded movements",
)
async def admin_recover_unrecorded(
    request: RecoverRequest,
    admin: CallerContext = Depends(require_admin),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """
    Write the missing completion record of movements left `applied` for
    longer than `max_age_seconds` (default STALE_MOVEMENT_SECONDS), and of
    every `reversal_required` movement. Balances are not touched.
    """
    recovered = await engine.recover_unrecorded(request.max_age_seconds)
    return RecoverResponse(recovered_movement_ids=[movement.id for movement in recovered])


# ---------------------------------------------------------------------------
# Operator alerts
# ---------------------------------------------------------------------------

@router.get(
    "/alerts",
    response_model=list[AlertResponse],
    summary="[Admin] List operator alerts",
)
async def admin_list_alerts(
    unresolved_only: bool = Query(True),
    movement_id: uuid.UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: CallerContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await alert_service.list_alerts(
        db,
        unresolved_only=unresolved_only,
        movement_id=movement_id,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/alerts/{alert_id}/resolve",
    response_model=AlertResponse,
    summary="[Admin] Resolve an operator alert",
)
async def admin_resolve_alert(
    alert_id: uuid.UUID,
    request: AlertResolveRequest,
    admin: CallerContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Resolving never changes a balance; record corrections as adjustments."""
    return await alert_service.resolve_alert(db, alert_id, admin.user_id, note=request.note)

"""
Read Projection — display-oriented views of accounts and movements.

Nothing here writes financial state. Views are derived from the Ledger Store
on every read, so they are never more stale than the last committed
transaction; clients keep them fresh either by polling
(PROJECTION_POLL_INTERVAL_SECONDS, advertised in responses) or by
subscribing to the change feed.

Each account view carries two balances:
  - balance_cents: the stored balance the Transfer Engine maintains
  - ledger_balance_cents: recomputed from every movement that has been
    applied to the account
and a `match` flag. The two can only differ if something wrote a balance
outside the engine.

Change feed:
  ChangeFeed is an in-process publish/subscribe hub. The Transfer Engine
  publishes one ChangeEvent per movement it finishes; each subscriber gets
  its own bounded queue and sees only events for accounts its user owns
  (administrators see everything). The transport on top of it (server-sent
  events, polling) lives in the router.

Admin functions:
  Functions prefixed with `admin_` read any account or movement without
  ownership scoping. They are called from admin-only endpoints.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.context import CallerContext
from bankcore.exceptions import (
    AccountNotFoundError,
    MovementNotFoundError,
    UnauthorizedAccessError,
)
from bankcore.models.account import Account
from bankcore.models.movement import (
    BALANCE_AFFECTING_STATES,
    Movement,
    MovementKind,
    MovementState,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Account views
# ---------------------------------------------------------------------------

@dataclass
class AccountView:
    account: Account
    ledger_balance_cents: int

    @property
    def match(self) -> bool:
        return self.account.balance_cents == self.ledger_balance_cents


async def ledger_balance(
    db: AsyncSession,
    account_id: uuid.UUID,
    before: datetime | None = None,
) -> int:
    """
    Sum of every applied movement's effect on the account; with `before`,
    only movements created earlier than that instant (a statement's opening
    balance).
    """
    affecting = list(BALANCE_AFFECTING_STATES)

    credits = (
        select(func.coalesce(func.sum(Movement.amount_cents), 0))
        .where(Movement.destination_account_id == account_id)
        .where(Movement.state.in_(affecting))
    )
    debits = (
        select(func.coalesce(func.sum(Movement.amount_cents), 0))
        .where(Movement.source_account_id == account_id)
        .where(Movement.state.in_(affecting))
    )
    if before is not None:
        credits = credits.where(Movement.created_at < before)
        debits = debits.where(Movement.created_at < before)

    credit_total = (await db.execute(credits)).scalar_one()
    debit_total = (await db.execute(debits)).scalar_one()
    return credit_total - debit_total


async def _account_for(db: AsyncSession, ctx: CallerContext, account_id: uuid.UUID) -> Account:
    account = await db.get(Account, account_id)
    if account is None:
        raise AccountNotFoundError(account_id)
    if not ctx.is_admin and account.owner_id != ctx.user_id:
        raise UnauthorizedAccessError("You do not have access to this account")
    return account


async def get_account_view(
    db: AsyncSession,
    ctx: CallerContext,
    account_id: uuid.UUID,
) -> AccountView:
    """
    Raises:
        AccountNotFoundError: Unknown account.
        UnauthorizedAccessError: The caller is neither the owner nor an admin.
    """
    account = await _account_for(db, ctx, account_id)
    return AccountView(account, await ledger_balance(db, account.id))


async def list_accounts(db: AsyncSession, owner_id: uuid.UUID) -> list[Account]:
    result = await db.execute(
        select(Account)
        .where(Account.owner_id == owner_id)
        .order_by(Account.created_at)
    )
    return list(result.scalars().all())


def _movement_query(
    account_id: uuid.UUID | None = None,
    state: MovementState | None = None,
    kind: MovementKind | None = None,
    since: datetime | None = None,
):
    if since is not None:
        # Oldest first, so a poller can resume from the last updated_at it saw
        query = select(Movement).order_by(Movement.updated_at, Movement.id)
    else:
        query = select(Movement).order_by(Movement.created_at.desc(), Movement.id)

    if account_id is not None:
        query = query.where(
            or_(
                Movement.source_account_id == account_id,
                Movement.destination_account_id == account_id,
            )
        )
    if state is not None:
        query = query.where(Movement.state == state)
    if kind is not None:
        query = query.where(Movement.kind == kind)
    if since is not None:
        if since.tzinfo is not None:
            since = since.astimezone(timezone.utc)
        query = query.where(Movement.updated_at > since)
    return query


async def list_movements(
    db: AsyncSession,
    ctx: CallerContext,
    account_id: uuid.UUID,
    state: MovementState | None = None,
    kind: MovementKind | None = None,
    since: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Movement]:
    """
    Movement history for one account, newest first.

    With `since`, only movements created or changed after that instant are
    returned, oldest first.
    """
    await _account_for(db, ctx, account_id)
    result = await db.execute(
        _movement_query(account_id, state, kind, since).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


async def get_movement(
    db: AsyncSession,
    ctx: CallerContext,
    movement_id: uuid.UUID,
) -> Movement:
    """
    A movement is visible to its initiator, the owners of the accounts it
    touches, and administrators. Everyone else gets MovementNotFoundError.
    """
    movement = await db.get(Movement, movement_id)
    if movement is None:
        raise MovementNotFoundError(movement_id)
    if ctx.is_admin or movement.initiated_by == ctx.user_id:
        return movement

    result = await db.execute(
        select(Account.id)
        .where(Account.id.in_(movement.account_ids))
        .where(Account.owner_id == ctx.user_id)
    )
    if result.first() is None:
        raise MovementNotFoundError(movement_id)
    return movement


# ---------------------------------------------------------------------------
# Admin read-only functions
# ---------------------------------------------------------------------------

async def admin_list_accounts(
    db: AsyncSession,
    owner_id: uuid.UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Account]:
    """[ADMIN ONLY] List accounts across all owners."""
    query = select(Account).order_by(Account.created_at.desc()).limit(limit).offset(offset)
    if owner_id is not None:
        query = query.where(Account.owner_id == owner_id)

    result = await db.execute(query)
    return list(result.scalars().all())


async def admin_list_movements(
    db: AsyncSession,
    account_id: uuid.UUID | None = None,
    state: MovementState | None = None,
    kind: MovementKind | None = None,
    since: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Movement]:
    """[ADMIN ONLY] The complete movement log, with optional filters."""
    result = await db.execute(
        _movement_query(account_id, state, kind, since).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Change feed
# ---------------------------------------------------------------------------

@dataclass
class ChangeEvent:
    movement_id: uuid.UUID
    state: str
    account_ids: list[uuid.UUID]
    owner_ids: list[uuid.UUID] = field(default_factory=list)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        return {
            "movement_id": str(self.movement_id),
            "state": self.state,
            "account_ids": [str(account_id) for account_id in self.account_ids],
            "occurred_at": self.occurred_at.isoformat(),
        }


class Subscription:
    def __init__(self, ctx: CallerContext | None, maxsize: int):
        self.ctx = ctx
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=maxsize)

    def wants(self, event: ChangeEvent) -> bool:
        if self.ctx is None or self.ctx.is_admin:
            return True
        return self.ctx.user_id in event.owner_ids

    async def get(self, timeout: float | None = None) -> ChangeEvent:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)


class ChangeFeed:
    """In-process publish/subscribe hub for movement state changes."""

    def __init__(self, maxsize: int = 100):
        self._maxsize = maxsize
        self._subscriptions: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @asynccontextmanager
    async def subscribe(self, ctx: CallerContext | None = None):
        subscription = Subscription(ctx, self._maxsize)
        self._subscriptions.add(subscription)
        try:
            yield subscription
        finally:
            self._subscriptions.discard(subscription)

    def publish(self, event: ChangeEvent) -> None:
        """Hand `event` to every interested subscriber without waiting."""
        for subscription in list(self._subscriptions):
            if not subscription.wants(event):
                continue
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                # A subscriber that stopped reading falls back to polling
                logger.warning(
                    "change_feed.subscriber_lagging",
                    extra={"movement_id": str(event.movement_id)},
                )


change_feed = ChangeFeed()

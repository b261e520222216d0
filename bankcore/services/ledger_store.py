"""
Ledger Store — durable storage of account balances and the movement log.

This module holds no business rules. It knows how to:
  - read accounts and balances
  - serialize writers on an account (per-account locks, ascending id order)
  - apply a signed delta to one balance
  - append movements, resolving duplicate idempotency keys to the
    existing row instead of raising

Linearization:
  Every "read balance, validate, write balance" sequence runs while the
  caller holds the in-process lock of each account involved. Locks are
  always taken in ascending account-id order, whatever the direction of the
  movement, so two transfers between the same pair of accounts can never
  deadlock. Rows are then re-read with populate_existing and FOR UPDATE, so
  the holder validates against the latest committed balance. The Account
  `version` column backs this up across processes: an UPDATE that finds a
  different version fails with StaleDataError, surfaced as ConflictError.

Failure reporting:
  Storage I/O errors are translated into TransientStorageError and
  re-raised; nothing here is swallowed. A wait that exceeds
  LEDGER_TIMEOUT_SECONDS is reported the same way.
"""

import asyncio
import logging
import uuid
import weakref
from contextlib import asynccontextmanager, contextmanager
from typing import Awaitable, Iterable, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from bankcore.config import settings
from bankcore.exceptions import (
    AccountNotFoundError,
    AccountStateError,
    ConflictError,
    MovementNotFoundError,
    TransientStorageError,
)
from bankcore.models.account import Account, AccountStatus
from bankcore.models.movement import Movement, MovementState
from bankcore.money import check_representable

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Error translation and bounded waits
# ---------------------------------------------------------------------------

@contextmanager
def storage_errors(idempotency_key: str | None = None):
    """
    Translate SQLAlchemy failures into domain errors.

    StaleDataError (a lost compare-and-swap) becomes ConflictError; an
    operational failure or an invalidated connection becomes
    TransientStorageError. Anything else propagates unchanged.
    """
    try:
        yield
    except StaleDataError as exc:
        raise ConflictError("The record was changed by a concurrent update") from exc
    except OperationalError as exc:
        logger.warning("ledger.storage_unavailable", extra={"error": str(exc.orig)})
        raise TransientStorageError(idempotency_key=idempotency_key) from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.warning("ledger.connection_lost", extra={"error": str(exc.orig)})
            raise TransientStorageError(idempotency_key=idempotency_key) from exc
        raise


async def bounded(awaitable: Awaitable[T], idempotency_key: str | None = None) -> T:
    """Await a ledger call, giving up after LEDGER_TIMEOUT_SECONDS."""
    try:
        return await asyncio.wait_for(awaitable, settings.LEDGER_TIMEOUT_SECONDS)
    except asyncio.TimeoutError as exc:
        logger.warning("ledger.timeout", extra={"idempotency_key": idempotency_key})
        raise TransientStorageError(
            "Ledger read timed out", idempotency_key=idempotency_key
        ) from exc


# ---------------------------------------------------------------------------
# Per-account locks
# ---------------------------------------------------------------------------

class AccountLocks:
    """
    Registry of one asyncio.Lock per account id.

    Locks live only while someone holds or waits on them (weak values), and
    the registry starts over when it is used from a different event loop.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._loop: asyncio.AbstractEventLoop | None = None

    def _lock_for(self, account_id: uuid.UUID) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            self._locks = weakref.WeakValueDictionary()
            self._loop = loop

        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    @asynccontextmanager
    async def hold(
        self,
        account_ids: Iterable[uuid.UUID],
        timeout: float | None = None,
        idempotency_key: str | None = None,
    ):
        """
        Hold the locks of every account in `account_ids`.

        Locks are acquired in ascending id order. If they cannot all be
        acquired within `timeout` seconds, the ones already taken are
        released and TransientStorageError is raised.
        """
        timeout = settings.LEDGER_TIMEOUT_SECONDS if timeout is None else timeout
        ordered = sorted(set(account_ids))
        locks = [self._lock_for(account_id) for account_id in ordered]

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        acquired: list[asyncio.Lock] = []
        try:
            for lock in locks:
                remaining = max(deadline - loop.time(), 0)
                await asyncio.wait_for(lock.acquire(), remaining)
                acquired.append(lock)
        except asyncio.TimeoutError as exc:
            for lock in reversed(acquired):
                lock.release()
            logger.warning(
                "ledger.lock_timeout",
                extra={
                    "account_ids": [str(a) for a in ordered],
                    "idempotency_key": idempotency_key,
                },
            )
            raise TransientStorageError(
                "Timed out waiting for account lock", idempotency_key=idempotency_key
            ) from exc

        try:
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def is_locked(self, account_id: uuid.UUID) -> bool:
        lock = self._locks.get(account_id)
        return lock is not None and lock.locked()


# Process-wide registry shared by the Transfer Engine and account services
account_locks = AccountLocks()


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

async def get_account(db: AsyncSession, account_id: uuid.UUID) -> Account:
    """
    Return the account, or raise AccountNotFoundError.
    """
    with storage_errors():
        account = await db.get(Account, account_id)
    if account is None:
        raise AccountNotFoundError(account_id)
    return account


async def get_balance(db: AsyncSession, account_id: uuid.UUID) -> int:
    """Read-only convenience: the current balance in minor units."""
    with storage_errors():
        result = await db.execute(
            select(Account.balance_cents).where(Account.id == account_id)
        )
    balance = result.scalar_one_or_none()
    if balance is None:
        raise AccountNotFoundError(account_id)
    return balance


async def load_for_update(
    db: AsyncSession,
    account_ids: Iterable[uuid.UUID],
) -> dict[uuid.UUID, Account]:
    """
    Load accounts for a read-validate-write sequence.

    Rows are read in ascending id order with FOR UPDATE (a no-op on SQLite,
    a row lock on PostgreSQL) and populate_existing, so objects already in
    the session are refreshed with the latest committed values.

    Raises:
        AccountNotFoundError: If any of the ids is unknown.
    """
    ordered = sorted(set(account_ids))
    with storage_errors():
        result = await db.execute(
            select(Account)
            .where(Account.id.in_(ordered))
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    accounts = {account.id: account for account in result.scalars().all()}

    for account_id in ordered:
        if account_id not in accounts:
            raise AccountNotFoundError(account_id)
    return accounts


async def apply_delta(
    db: AsyncSession,
    account_id: uuid.UUID,
    signed_cents: int,
) -> int:
    """
    Add `signed_cents` to an account's balance and return the new balance.

    The caller must hold the account's lock. The write is flushed
    immediately so a lost compare-and-swap surfaces here, but it is only
    durable once the caller commits.

    Raises:
        AccountNotFoundError: Unknown account.
        AccountStateError: The account is not active.
        ConflictError: A concurrent writer changed the row first.
        ValidationError: The new balance would not fit the ledger.
    """
    account = await get_account(db, account_id)
    if account.status != AccountStatus.ACTIVE:
        raise AccountStateError(account.id, account.status.value)

    check_representable(account.balance_cents + signed_cents)
    account.balance_cents += signed_cents
    with storage_errors():
        await db.flush()
    return account.balance_cents


# ---------------------------------------------------------------------------
# Movements
# ---------------------------------------------------------------------------

async def get_movement(db: AsyncSession, movement_id: uuid.UUID) -> Movement:
    with storage_errors():
        movement = await db.get(Movement, movement_id, populate_existing=True)
    if movement is None:
        raise MovementNotFoundError(movement_id)
    return movement


async def get_movement_by_key(db: AsyncSession, idempotency_key: str) -> Movement | None:
    with storage_errors(idempotency_key):
        result = await db.execute(
            select(Movement)
            .where(Movement.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        )
    return result.scalar_one_or_none()


async def append_movement(db: AsyncSession, movement: Movement) -> tuple[Movement, bool]:
    """
    Insert a new movement and commit it.

    Returns (movement, True) when this call created the row. When the
    idempotency key already exists (including a concurrent insert that won
    the race), the session is rolled back and the existing movement is
    returned as (existing, False).
    """
    db.add(movement)
    try:
        with storage_errors(movement.idempotency_key):
            await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_movement_by_key(db, movement.idempotency_key)
        if existing is None:
            raise
        return existing, False
    return movement, True


async def mark_completed(db: AsyncSession, movement_id: uuid.UUID) -> Movement:
    """Write the completion record of an applied movement. A movement that
    is already completed is returned as it is."""
    movement = await get_movement(db, movement_id)
    if movement.state == MovementState.COMPLETED:
        return movement
    movement.transition(MovementState.COMPLETED)
    with storage_errors():
        await db.flush()
    return movement


async def mark_reversal_required(
    db: AsyncSession,
    movement_id: uuid.UUID,
    reason: str,
) -> Movement:
    movement = await get_movement(db, movement_id)
    movement.transition(MovementState.REVERSAL_REQUIRED)
    movement.failure_reason = reason
    with storage_errors():
        await db.flush()
    return movement

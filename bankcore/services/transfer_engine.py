"""
Transfer Engine — executes one funds movement as an all-or-nothing unit.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. Every change to an account
balance goes through `TransferEngine.execute`, which drives a Movement
through its state machine:

  1. Idempotency: a key that already names a movement returns that
     movement instead of executing again. Same key with different
     parameters is a client bug: the original is returned unchanged and the
     outcome is flagged `conflict`. Concurrent duplicates are resolved by
     the unique key: exactly one insert wins.
  2. Reserve: the movement is committed in `received` before any account is
     touched, so a retry after a crash or timeout finds it.
  3. Lock + validate: the locks of every account involved are taken in
     ascending id order, rows are re-read, and business rules are checked
     against the latest committed balances. Any failure moves the movement
     to `rejected` with a specific reason and re-raises the error.
  4. Apply: all balance deltas and the `applied` state are committed in ONE
     database transaction. Both legs of a transfer happen, or neither.
  5. Record: `completed` is written in a separate transaction, retried up
     to RECORD_WRITE_ATTEMPTS. If it never succeeds the movement is flagged
     `reversal_required` and an operator alert is raised. The balance
     mutation is never repeated and never rolled back.
  6. Notify: the owners of the accounts involved, and administrators for
     amounts above ADMIN_NOTIFICATION_THRESHOLD_CENTS. A failed
     notification raises an operator alert; the movement stays completed.
  7. Publish a ChangeEvent for the Read Projection.

Unrecorded movements:
  A movement left in `applied` (the process stopped between apply and record)
  or in `reversal_required` is finished by `recover_unrecorded`, the admin
  recovery sweep. It only writes the missing completion record.

Retryable rejections:
  A rejection caused by a timeout or a lost concurrent-update race touched
  no account. It is stored with `retryable=True`, and a retry with the same
  key and parameters re-opens it (rejected -> received) and runs it again.

Sessions:
  The engine opens its own sessions from the session factory, one per unit
  of work above, so a failure in one step cannot roll back a step that has
  already been committed.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bankcore.config import settings
from bankcore.context import CallerContext
from bankcore.exceptions import (
    AccountStateError,
    BankAPIError,
    CardNotFoundError,
    ConflictError,
    IdempotencyKeyConflictError,
    InsufficientFundsError,
    LimitExceededError,
    PostApplyNotificationError,
    TransientStorageError,
    UnauthorizedAccessError,
    ValidationError,
)
from bankcore.models.account import Account, AccountKind, AccountStatus
from bankcore.models.alert import AlertKind, OperatorAlert
from bankcore.models.card import Card
from bankcore.models.movement import IN_FLIGHT_STATES, Movement, MovementKind, MovementState
from bankcore.money import check_representable
from bankcore.services import alert_service, ledger_store, verification_service
from bankcore.services.notifications import NotificationDispatcher, NotificationEvent
from bankcore.services.projection import ChangeEvent, ChangeFeed, change_feed

logger = logging.getLogger(__name__)


# Which account ids a movement of each kind must carry: (source, destination)
_DIRECTIONS: dict[MovementKind, tuple[bool, bool]] = {
    MovementKind.INTERNAL: (True, True),
    MovementKind.DEPOSIT: (False, True),
    MovementKind.WITHDRAWAL: (True, False),
    MovementKind.CARD_SETTLEMENT: (True, False),
}

_TEMPLATE_KINDS = {
    MovementKind.INTERNAL: "transfer",
    MovementKind.DEPOSIT: "deposit",
    MovementKind.WITHDRAWAL: "withdrawal",
    MovementKind.CARD_SETTLEMENT: "card_settlement",
    MovementKind.ADMIN_ADJUSTMENT: "admin_adjustment",
}


def overdraft_allowance(kind: AccountKind) -> int:
    """How far below zero an account of this kind may go, in minor units."""
    if kind == AccountKind.CREDIT:
        return settings.CREDIT_LINE_LIMIT_CENTS
    if kind == AccountKind.MORTGAGE:
        return settings.MORTGAGE_LINE_LIMIT_CENTS
    return 0


@dataclass(frozen=True)
class MovementRequest:
    """A well-formed request to move money, as produced by Request Intake."""

    kind: MovementKind
    amount_cents: int
    idempotency_key: str
    source_account_id: uuid.UUID | None = None
    destination_account_id: uuid.UUID | None = None
    memo: str | None = None
    card_id: uuid.UUID | None = None

    def fingerprint(self) -> str:
        """Canonical form of the parameters that decide the financial effect."""
        return "|".join(
            [
                self.kind.value,
                str(self.amount_cents),
                str(self.source_account_id or ""),
                str(self.destination_account_id or ""),
                str(self.card_id or ""),
            ]
        )

    def check_shape(self) -> None:
        """
        Reject malformed requests before anything is stored.

        Raises:
            ValidationError: missing_fields, invalid_amount,
                non_positive_amount, invalid_direction, same_account.
                invalid_amount also covers amounts too large for the ledger.
        """
        if not self.idempotency_key or not self.idempotency_key.strip():
            raise ValidationError("missing_fields", "An idempotency key is required")
        if len(self.idempotency_key) > 128:
            raise ValidationError("invalid_idempotency_key", "Idempotency keys are at most 128 characters")

        if isinstance(self.amount_cents, bool) or not isinstance(self.amount_cents, int):
            raise ValidationError("invalid_amount", "Amounts are integer minor units")
        if self.amount_cents <= 0:
            raise ValidationError("non_positive_amount", "Amount must be greater than zero")
        check_representable(self.amount_cents)

        has_source = self.source_account_id is not None
        has_destination = self.destination_account_id is not None

        if self.kind == MovementKind.ADMIN_ADJUSTMENT:
            if has_source == has_destination:
                raise ValidationError(
                    "invalid_direction",
                    "An adjustment credits or debits exactly one account",
                )
        else:
            needs_source, needs_destination = _DIRECTIONS[self.kind]
            if (needs_source and not has_source) or (needs_destination and not has_destination):
                raise ValidationError("missing_fields", f"A {self.kind.value} needs its account ids")
            if (has_source and not needs_source) or (has_destination and not needs_destination):
                raise ValidationError(
                    "invalid_direction",
                    f"A {self.kind.value} does not take that account",
                )

        if self.kind == MovementKind.INTERNAL and self.source_account_id == self.destination_account_id:
            raise ValidationError("same_account", "Cannot transfer to the same account")

        if self.kind == MovementKind.CARD_SETTLEMENT and self.card_id is None:
            raise ValidationError("missing_fields", "A card settlement needs a card id")
        if self.kind != MovementKind.CARD_SETTLEMENT and self.card_id is not None:
            raise ValidationError("invalid_direction", "Only card settlements carry a card id")

        if self.memo is not None and len(self.memo) > 255:
            raise ValidationError("memo_too_long", "Memo is at most 255 characters")


@dataclass
class MovementOutcome:
    """
    What execute() returns.

    Attributes:
        movement: The movement as last written.
        replayed: The key already existed; nothing was executed this time.
        conflict: The key already existed with different parameters.
        alerts: Operator alerts raised while finishing this movement.
    """

    movement: Movement
    replayed: bool = False
    conflict: bool = False
    alerts: list[OperatorAlert] = field(default_factory=list)


def _deltas(movement: Movement) -> list[tuple[uuid.UUID, int]]:
    deltas = []
    if movement.source_account_id is not None:
        deltas.append((movement.source_account_id, -movement.amount_cents))
    if movement.destination_account_id is not None:
        deltas.append((movement.destination_account_id, movement.amount_cents))
    return deltas


def _log_fields(movement: Movement) -> dict:
    return {
        "movement_id": str(movement.id),
        "idempotency_key": movement.idempotency_key,
        "kind": movement.kind.value,
        "amount_cents": movement.amount_cents,
        "account_ids": [str(account_id) for account_id in movement.account_ids],
    }


class TransferEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        feed: ChangeFeed = change_feed,
        locks: ledger_store.AccountLocks = ledger_store.account_locks,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._feed = feed
        self._locks = locks

    # -----------------------------------------------------------------------
    # execute
    # -----------------------------------------------------------------------

    async def execute(self, ctx: CallerContext, request: MovementRequest) -> MovementOutcome:
        """
        Run one movement through the state machine.

        Returns:
            MovementOutcome for the new movement, or for the existing one
            when the idempotency key was already used by this caller.

        Raises:
            ValidationError: Malformed request (nothing stored), or a
                business rule failed (movement rejected).
            UnauthorizedAccessError: The caller may not move this money.
            NotFoundError / AccountStateError: Unknown or inactive account.
            IdempotencyKeyConflictError: Key already used by another caller.
            TransientStorageError: Timed out or storage unavailable before
                apply. The movement is rejected as retryable; retry with the
                same key.
        """
        request.check_shape()
        if request.kind == MovementKind.ADMIN_ADJUSTMENT and not ctx.is_admin:
            raise UnauthorizedAccessError("Only administrators can adjust balances")

        movement, replay = await self._reserve(ctx, request)
        if replay is not None:
            return replay

        movement, accounts = await self._validate_and_apply(ctx, movement)
        movement, alerts = await self._record(movement)
        alerts += await self._notify(movement, accounts)
        self._publish(movement, accounts)

        return MovementOutcome(movement, alerts=alerts)

    async def _reserve(
        self,
        ctx: CallerContext,
        request: MovementRequest,
    ) -> tuple[Movement, MovementOutcome | None]:
        key = request.idempotency_key
        async with self._session_factory() as db:
            existing = await ledger_store.get_movement_by_key(db, key)
            if existing is None:
                movement, created = await ledger_store.append_movement(
                    db,
                    Movement(
                        kind=request.kind,
                        state=MovementState.RECEIVED,
                        amount_cents=request.amount_cents,
                        source_account_id=request.source_account_id,
                        destination_account_id=request.destination_account_id,
                        card_id=request.card_id,
                        memo=request.memo,
                        idempotency_key=key,
                        request_fingerprint=request.fingerprint(),
                        initiated_by=ctx.user_id,
                    ),
                )
                if created:
                    logger.info("movement.received", extra=_log_fields(movement))
                    return movement, None
                existing = movement

            return await self._resolve_existing(db, ctx, request, existing)

    async def _resolve_existing(
        self,
        db: AsyncSession,
        ctx: CallerContext,
        request: MovementRequest,
        existing: Movement,
    ) -> tuple[Movement, MovementOutcome | None]:
        key = request.idempotency_key
        if existing.initiated_by != ctx.user_id:
            raise IdempotencyKeyConflictError(key)

        if existing.request_fingerprint != request.fingerprint():
            logger.warning(
                "movement.idempotency_conflict",
                extra={
                    **_log_fields(existing),
                    "requested_amount_cents": request.amount_cents,
                },
            )
            return existing, MovementOutcome(existing, replayed=True, conflict=True)

        if existing.state == MovementState.REJECTED and existing.retryable:
            existing.transition(MovementState.RECEIVED)
            try:
                with ledger_store.storage_errors(key):
                    await db.commit()
            except ConflictError:
                # Another retry re-opened it first; report what it did
                await db.rollback()
                current = await ledger_store.get_movement(db, existing.id)
                return current, MovementOutcome(current, replayed=True)
            logger.info("movement.retried", extra=_log_fields(existing))
            return existing, None

        logger.info(
            "movement.idempotent_hit",
            extra={**_log_fields(existing), "state": existing.state.value},
        )
        return existing, MovementOutcome(existing, replayed=True)

    async def _validate_and_apply(
        self,
        ctx: CallerContext,
        movement: Movement,
    ) -> tuple[Movement, dict[uuid.UUID, Account]]:
        key = movement.idempotency_key
        try:
            async with self._locks.hold(movement.account_ids, idempotency_key=key):
                async with self._session_factory() as db:
                    movement, accounts = await ledger_store.bounded(
                        self._load_and_validate(db, ctx, movement.id), key
                    )
                    movement.transition(MovementState.VALIDATED)

                    for account_id, delta in _deltas(movement):
                        await ledger_store.apply_delta(db, account_id, delta)

                    movement.transition(MovementState.APPLIED)
                    with ledger_store.storage_errors(key):
                        await db.commit()
        except BankAPIError as exc:
            if isinstance(exc, TransientStorageError):
                exc.idempotency_key = key
            await self._reject(movement.id, exc)
            raise

        logger.info("movement.applied", extra=_log_fields(movement))
        return movement, accounts

    async def _load_and_validate(
        self,
        db: AsyncSession,
        ctx: CallerContext,
        movement_id: uuid.UUID,
    ) -> tuple[Movement, dict[uuid.UUID, Account]]:
        movement = await ledger_store.get_movement(db, movement_id)
        accounts = await ledger_store.load_for_update(db, movement.account_ids)
        await self._validate(db, ctx, movement, accounts)
        return movement, accounts

    async def _validate(
        self,
        db: AsyncSession,
        ctx: CallerContext,
        movement: Movement,
        accounts: dict[uuid.UUID, Account],
    ) -> None:
        source = accounts.get(movement.source_account_id)
        destination = accounts.get(movement.destination_account_id)

        # Ownership: customers move money out of (or, for deposits, into)
        # their own accounts. Admins only act through adjustments.
        if movement.kind == MovementKind.ADMIN_ADJUSTMENT:
            if not ctx.is_admin:
                raise UnauthorizedAccessError("Only administrators can adjust balances")
        else:
            owned = source if source is not None else destination
            if owned.owner_id != ctx.user_id:
                raise UnauthorizedAccessError("You do not have access to this account")

        for account in (source, destination):
            if account is not None and account.status != AccountStatus.ACTIVE:
                raise AccountStateError(account.id, account.status.value)

        if source is not None:
            available = source.balance_cents + overdraft_allowance(source.kind)
            if movement.amount_cents > available:
                raise InsufficientFundsError(
                    account_id=source.id,
                    requested_cents=movement.amount_cents,
                    available_cents=available,
                )

        if not ctx.is_admin:
            limit = await verification_service.movement_limit_for(db, ctx.user_id)
            if movement.amount_cents > limit:
                raise LimitExceededError(movement.amount_cents, limit)

        if movement.kind == MovementKind.CARD_SETTLEMENT:
            card = await db.get(Card, movement.card_id)
            if card is None or card.account_id != movement.source_account_id:
                raise CardNotFoundError("Card not found for this account")
            if not card.can_settle:
                raise ValidationError("card_not_active", "Card is not active")

    async def _reject(self, movement_id: uuid.UUID, exc: BankAPIError) -> None:
        retryable = isinstance(exc, (TransientStorageError, ConflictError))
        try:
            async with self._session_factory() as db:
                movement = await ledger_store.get_movement(db, movement_id)
                if movement.state not in IN_FLIGHT_STATES:
                    return
                movement.reject(exc.reason, retryable=retryable)
                with ledger_store.storage_errors():
                    await db.commit()
        except (BankAPIError, SQLAlchemyError):
            # Left in flight; the stale-movement sweep rejects it later
            logger.error(
                "movement.reject_write_failed",
                exc_info=True,
                extra={"movement_id": str(movement_id), "reason": exc.reason},
            )
            return

        logger.info(
            "movement.rejected",
            extra={**_log_fields(movement), "reason": exc.reason, "retryable": retryable},
        )

    async def _record(self, movement: Movement) -> tuple[Movement, list[OperatorAlert]]:
        last_error: Exception | None = None
        for attempt in range(1, settings.RECORD_WRITE_ATTEMPTS + 1):
            try:
                async with self._session_factory() as db:
                    completed = await ledger_store.mark_completed(db, movement.id)
                    with ledger_store.storage_errors():
                        await db.commit()
            except (BankAPIError, SQLAlchemyError) as exc:
                last_error = exc
                logger.warning(
                    "movement.record_retry",
                    extra={"movement_id": str(movement.id), "attempt": attempt, "error": str(exc)},
                )
                continue

            logger.info("movement.completed", extra=_log_fields(completed))
            return completed, []

        detail = (
            f"Movement {movement.id} was applied but its completion record could not "
            f"be written after {settings.RECORD_WRITE_ATTEMPTS} attempts: {last_error}"
        )
        try:
            async with self._session_factory() as db:
                flagged = await ledger_store.mark_reversal_required(
                    db, movement.id, "record_write_failed"
                )
                alert = await alert_service.raise_alert(db, movement.id, detail)
                await db.commit()
        except (BankAPIError, SQLAlchemyError):
            logger.critical(
                "alert.persist_failed",
                exc_info=True,
                extra={"movement_id": str(movement.id), "detail": detail},
            )
            return movement, []
        return flagged, [alert]

    async def _notify(
        self,
        movement: Movement,
        accounts: dict[uuid.UUID, Account],
    ) -> list[OperatorAlert]:
        event = NotificationEvent(
            template_kind=_TEMPLATE_KINDS[movement.kind],
            movement_id=movement.id,
            kind=movement.kind.value,
            state=movement.state.value,
            amount_cents=movement.amount_cents,
            account_ids=list(movement.account_ids),
            memo=movement.memo,
        )

        deliveries = [
            (owner_id, self._dispatcher.notify(owner_id, event))
            for owner_id in _owner_ids(movement, accounts)
        ]
        if movement.amount_cents > settings.ADMIN_NOTIFICATION_THRESHOLD_CENTS:
            deliveries.append(
                (None, self._dispatcher.notify_admins(replace(event, template_kind="large_movement")))
            )

        # The money has already moved: no delivery error may reach the caller
        failures: list[str] = []
        for recipient, delivery in deliveries:
            try:
                await delivery
            except PostApplyNotificationError as exc:
                failures.append(exc.detail)
            except Exception as exc:
                logger.exception(
                    "notification.dispatch_error",
                    extra={"movement_id": str(movement.id), "user_id": str(recipient)},
                )
                failures.append(f"{type(exc).__name__}: {exc}")

        if not failures:
            return []

        detail = "Notification failed after apply: " + "; ".join(failures)
        logger.error("movement.notification_failed", extra={**_log_fields(movement), "detail": detail})
        try:
            async with self._session_factory() as db:
                alert = await alert_service.raise_alert(
                    db, movement.id, detail, kind=AlertKind.NOTIFICATION_FAILED
                )
                await db.commit()
        except SQLAlchemyError:
            logger.critical(
                "alert.persist_failed",
                exc_info=True,
                extra={"movement_id": str(movement.id), "detail": detail},
            )
            return []
        return [alert]

    def _publish(self, movement: Movement, accounts: dict[uuid.UUID, Account]) -> None:
        self._feed.publish(
            ChangeEvent(
                movement_id=movement.id,
                state=movement.state.value,
                account_ids=list(movement.account_ids),
                owner_ids=_owner_ids(movement, accounts),
            )
        )

    # -----------------------------------------------------------------------
    # Convenience wrappers
    # -----------------------------------------------------------------------

    async def transfer(
        self,
        ctx: CallerContext,
        source_account_id: uuid.UUID,
        destination_account_id: uuid.UUID,
        amount_cents: int,
        idempotency_key: str,
        memo: str | None = None,
    ) -> MovementOutcome:
        return await self.execute(
            ctx,
            MovementRequest(
                kind=MovementKind.INTERNAL,
                amount_cents=amount_cents,
                idempotency_key=idempotency_key,
                source_account_id=source_account_id,
                destination_account_id=destination_account_id,
                memo=memo,
            ),
        )

    async def deposit(
        self,
        ctx: CallerContext,
        account_id: uuid.UUID,
        amount_cents: int,
        idempotency_key: str,
        memo: str | None = None,
    ) -> MovementOutcome:
        return await self.execute(
            ctx,
            MovementRequest(
                kind=MovementKind.DEPOSIT,
                amount_cents=amount_cents,
                idempotency_key=idempotency_key,
                destination_account_id=account_id,
                memo=memo,
            ),
        )

    async def withdraw(
        self,
        ctx: CallerContext,
        account_id: uuid.UUID,
        amount_cents: int,
        idempotency_key: str,
        memo: str | None = None,
    ) -> MovementOutcome:
        return await self.execute(
            ctx,
            MovementRequest(
                kind=MovementKind.WITHDRAWAL,
                amount_cents=amount_cents,
                idempotency_key=idempotency_key,
                source_account_id=account_id,
                memo=memo,
            ),
        )

    async def settle_card_charge(
        self,
        ctx: CallerContext,
        card_id: uuid.UUID,
        amount_cents: int,
        idempotency_key: str,
        memo: str | None = None,
    ) -> MovementOutcome:
        """Debit the account a card is bound to."""
        async with self._session_factory() as db:
            card = await db.get(Card, card_id)
        if card is None:
            raise CardNotFoundError()

        return await self.execute(
            ctx,
            MovementRequest(
                kind=MovementKind.CARD_SETTLEMENT,
                amount_cents=amount_cents,
                idempotency_key=idempotency_key,
                source_account_id=card.account_id,
                card_id=card_id,
                memo=memo,
            ),
        )

    async def adjust_balance(
        self,
        ctx: CallerContext,
        account_id: uuid.UUID,
        amount_cents: int,
        direction: str,
        idempotency_key: str,
        memo: str | None = None,
    ) -> MovementOutcome:
        """
        [ADMIN ONLY] Credit or debit one account through the normal
        apply/record path. Corrections never write a balance directly.
        """
        if direction not in ("credit", "debit"):
            raise ValidationError("invalid_direction", "Adjustments are 'credit' or 'debit'")

        return await self.execute(
            ctx,
            MovementRequest(
                kind=MovementKind.ADMIN_ADJUSTMENT,
                amount_cents=amount_cents,
                idempotency_key=idempotency_key,
                source_account_id=account_id if direction == "debit" else None,
                destination_account_id=account_id if direction == "credit" else None,
                memo=memo,
            ),
        )

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    async def expire_stale(self, max_age_seconds: int | None = None) -> list[Movement]:
        """
        Reject movements stuck in received/validated for too long.

        They never reached `applied`, so no account was touched. They are
        rejected as retryable: the client may still retry with the same key.
        """
        max_age = settings.STALE_MOVEMENT_SECONDS if max_age_seconds is None else max_age_seconds
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age)

        async with self._session_factory() as db:
            result = await db.execute(
                select(Movement)
                .where(Movement.state.in_(list(IN_FLIGHT_STATES)))
                .where(Movement.updated_at <= cutoff)
            )
            expired = []
            for movement in result.scalars().all():
                if any(self._locks.is_locked(account_id) for account_id in movement.account_ids):
                    continue
                movement.reject("expired", retryable=True)
                expired.append(movement)

            with ledger_store.storage_errors():
                await db.commit()

        for movement in expired:
            logger.warning("movement.expired", extra=_log_fields(movement))
        return expired

    async def recover_unrecorded(self, max_age_seconds: int | None = None) -> list[Movement]:
        """
        Write the completion record of movements whose balances already
        changed but which never reached `completed`.

          - applied for longer than `max_age_seconds`: the process stopped
            between apply and record. Nobody was told about it, so an
            operator alert is raised with the completion.
          - reversal_required: every record attempt failed earlier. Its
            alert already exists; the write is simply retried.

        Balances are never touched. A movement whose write fails again is
        left as it was for the next sweep.
        """
        max_age = settings.STALE_MOVEMENT_SECONDS if max_age_seconds is None else max_age_seconds
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age)

        async with self._session_factory() as db:
            result = await db.execute(
                select(Movement.id, Movement.state).where(
                    or_(
                        (Movement.state == MovementState.APPLIED) & (Movement.updated_at <= cutoff),
                        Movement.state == MovementState.REVERSAL_REQUIRED,
                    )
                )
            )
            candidates = result.all()

        recovered = []
        for movement_id, previous_state in candidates:
            try:
                async with self._session_factory() as db:
                    movement = await ledger_store.get_movement(db, movement_id)
                    if movement.state != previous_state:
                        # Completed by its engine since the candidate query
                        continue
                    movement = await ledger_store.mark_completed(db, movement_id)
                    if previous_state == MovementState.APPLIED:
                        await alert_service.raise_alert(
                            db,
                            movement_id,
                            f"Movement {movement_id} was found applied without a completion "
                            "record; the record was written by the recovery sweep and its "
                            "owners were not notified",
                            kind=AlertKind.RECORD_RECOVERED,
                        )
                    with ledger_store.storage_errors():
                        await db.commit()
                    accounts = {
                        account_id: await ledger_store.get_account(db, account_id)
                        for account_id in movement.account_ids
                    }
            except (BankAPIError, SQLAlchemyError):
                logger.warning(
                    "movement.recover_failed",
                    exc_info=True,
                    extra={"movement_id": str(movement_id), "state": previous_state.value},
                )
                continue

            logger.warning(
                "movement.recovered",
                extra={**_log_fields(movement), "previous_state": previous_state.value},
            )
            self._publish(movement, accounts)
            recovered.append(movement)
        return recovered


def _owner_ids(movement: Movement, accounts: dict[uuid.UUID, Account]) -> list[uuid.UUID]:
    owners = []
    for account_id in movement.account_ids:
        account = accounts.get(account_id)
        if account is not None and account.owner_id not in owners:
            owners.append(account.owner_id)
    return owners

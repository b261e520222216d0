"""
Movement model — the append-only funds-movement log.

Every attempt to move money creates exactly one Movement, identified by the
client-supplied idempotency key. Direction is encoded by which account id is
present:

  - internal / card settlement: source and destination (card: source only)
  - deposit:     destination only (money arrives from an external rail)
  - withdrawal:  source only (money leaves to an external rail)
  - admin adjustment: exactly one side, depending on credit or debit

Amounts are always positive integer minor units.

State machine:

    received ──► validated ──► applied ──► completed
        │            │            │            ▲
        └────────────┴──► rejected└──► reversal_required

  - rejected: validation or storage failed before any account was touched.
    A rejection marked `retryable` (timeout, lost race) may be re-opened to
    received when the client retries with the same key and parameters.
  - reversal_required: the balances changed but the completion record could
    not be written; an operator alert exists for it. Money is never moved
    back automatically.

Rows in completed or rejected are otherwise immutable; corrections are new
admin_adjustment movements.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, String, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bankcore.database import Base, enum_column
from bankcore.exceptions import InvalidTransitionError


class MovementKind(str, enum.Enum):
    INTERNAL = "internal"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    CARD_SETTLEMENT = "card_settlement"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class MovementState(str, enum.Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    APPLIED = "applied"
    COMPLETED = "completed"
    REJECTED = "rejected"
    REVERSAL_REQUIRED = "reversal_required"


# States in which the movement's deltas are reflected in account balances
BALANCE_AFFECTING_STATES = frozenset({
    MovementState.APPLIED,
    MovementState.COMPLETED,
    MovementState.REVERSAL_REQUIRED,
})

# States a movement can be left in if the process dies mid-flight
IN_FLIGHT_STATES = frozenset({MovementState.RECEIVED, MovementState.VALIDATED})

_TRANSITIONS: dict[MovementState, frozenset[MovementState]] = {
    MovementState.RECEIVED: frozenset({MovementState.VALIDATED, MovementState.REJECTED}),
    MovementState.VALIDATED: frozenset({MovementState.APPLIED, MovementState.REJECTED}),
    MovementState.APPLIED: frozenset({MovementState.COMPLETED, MovementState.REVERSAL_REQUIRED}),
    MovementState.REVERSAL_REQUIRED: frozenset({MovementState.COMPLETED}),
    MovementState.REJECTED: frozenset({MovementState.RECEIVED}),
    MovementState.COMPLETED: frozenset(),
}


class Movement(Base):
    __tablename__ = "movements"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_movements_positive_amount"),
        CheckConstraint(
            "source_account_id IS NOT NULL OR destination_account_id IS NOT NULL",
            name="ck_movements_has_account",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    kind: Mapped[MovementKind] = mapped_column(
        enum_column(MovementKind),
        nullable=False,
    )

    state: Mapped[MovementState] = mapped_column(
        enum_column(MovementState),
        nullable=False,
        default=MovementState.RECEIVED,
        index=True,
    )

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    # NULL for money arriving from outside the bank
    source_account_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=True,
        index=True,
    )

    # NULL for money leaving the bank
    destination_account_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=True,
        index=True,
    )

    card_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("cards.id"),
        nullable=True,
    )

    memo: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Client-supplied; one key can never produce two movements
    idempotency_key: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        nullable=False,
    )

    # Canonical form of the request parameters, compared on retries
    request_fingerprint: Mapped[str] = mapped_column(String(255), nullable=False)

    initiated_by: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    failure_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Compare-and-swap guard: two writers reopening or completing the same
    # movement cannot both succeed
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def account_ids(self) -> tuple[uuid.UUID, ...]:
        return tuple(
            account_id
            for account_id in (self.source_account_id, self.destination_account_id)
            if account_id is not None
        )

    def transition(self, new_state: MovementState) -> None:
        """Move to `new_state`, enforcing the state machine."""
        allowed = _TRANSITIONS[self.state]
        if new_state not in allowed or (
            self.state == MovementState.REJECTED and not self.retryable
        ):
            raise InvalidTransitionError(self.id, self.state.value, new_state.value)

        self.state = new_state
        if new_state == MovementState.COMPLETED:
            self.completed_at = datetime.now(timezone.utc)
        elif new_state == MovementState.RECEIVED:
            self.failure_reason = None
            self.retryable = False

    def reject(self, reason: str, retryable: bool = False) -> None:
        self.transition(MovementState.REJECTED)
        self.failure_reason = reason
        self.retryable = retryable

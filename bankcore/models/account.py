"""
Account model — one ledger balance owned by a user.

Balance management:
  `balance_cents` is a signed integer in minor units (cents for USD). It is
  written only by the Ledger Store's apply_delta, which the Transfer Engine
  calls while holding the account's lock. Every write bumps `version`, which
  SQLAlchemy uses as an optimistic compare-and-swap: an UPDATE that finds a
  different version raises StaleDataError instead of overwriting a
  concurrent change.

  A CHECK constraint keeps the balance non-negative for every kind except
  credit and mortgage accounts, which may draw on a line up to the
  allowance configured for their kind.

Lifecycle:
  Accounts are never deleted. Status moves between active, hold and frozen,
  and ends at closed.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankcore.database import Base, enum_column


class AccountKind(str, enum.Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    BUSINESS = "business"
    INVESTMENT = "investment"
    CREDIT = "credit"
    FIXED = "fixed"
    MORTGAGE = "mortgage"


# Kinds allowed to carry a negative balance (a drawn credit line)
NEGATIVE_BALANCE_KINDS = frozenset({AccountKind.CREDIT, AccountKind.MORTGAGE})


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    HOLD = "hold"
    FROZEN = "frozen"
    CLOSED = "closed"


# Allowed status changes; CLOSED is terminal
STATUS_TRANSITIONS: dict[AccountStatus, frozenset[AccountStatus]] = {
    AccountStatus.ACTIVE: frozenset({AccountStatus.HOLD, AccountStatus.FROZEN, AccountStatus.CLOSED}),
    AccountStatus.HOLD: frozenset({AccountStatus.ACTIVE, AccountStatus.FROZEN, AccountStatus.CLOSED}),
    AccountStatus.FROZEN: frozenset({AccountStatus.ACTIVE, AccountStatus.CLOSED}),
    AccountStatus.CLOSED: frozenset(),
}


class Account(Base):
    __tablename__ = "accounts"

    __table_args__ = (
        CheckConstraint(
            "balance_cents >= 0 OR kind IN ('credit', 'mortgage')",
            name="ck_accounts_balance_floor",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    kind: Mapped[AccountKind] = mapped_column(
        enum_column(AccountKind),
        nullable=False,
        default=AccountKind.CHECKING,
    )

    status: Mapped[AccountStatus] = mapped_column(
        enum_column(AccountStatus),
        nullable=False,
        default=AccountStatus.ACTIVE,
    )

    balance_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # ISO 4217 currency code
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
    )

    # Stable external identifiers shown on receipts
    routing_number: Mapped[str] = mapped_column(String(9), nullable=False)
    account_number: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    owner: Mapped["User"] = relationship(
        back_populates="accounts",
    )

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

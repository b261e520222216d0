"""
Card model — a payment credential bound to one account.

Each account has at most ONE card (unique constraint on account_id); the
issuance service returns the existing card instead of creating a second.

Sensitive values are Fernet-encrypted at rest:
  - pan_encrypted: full card number
  - cvv_encrypted: security code
  - activation_code_encrypted: code mailed with the card

Only the last four digits are stored in plaintext for display.

A new card is `inactive` / `pending`. Activating it with the right code
makes it `active` / `active`; blocking it sets status `blocked`
permanently. Only an active, unblocked card can settle charges.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey, LargeBinary
from sqlalchemy.orm import Mapped, mapped_column

from bankcore.database import Base, enum_column


class CardNetwork(str, enum.Enum):
    VISA_LIKE = "visa_like"
    MASTERCARD_LIKE = "mastercard_like"
    AMEX_LIKE = "amex_like"
    DISCOVER_LIKE = "discover_like"


class CardActivation(str, enum.Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


class CardStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    BLOCKED = "blocked"


class Card(Base):
    __tablename__ = "cards"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # One card per account — UNIQUE constraint prevents duplicates
    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id"),
        unique=True,
        nullable=False,
        index=True,
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    network: Mapped[CardNetwork] = mapped_column(enum_column(CardNetwork), nullable=False)

    pan_encrypted: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    pan_last4: Mapped[str] = mapped_column(String(4), nullable=False)
    cvv_encrypted: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    activation_code_encrypted: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    expiry_month: Mapped[int] = mapped_column(Integer, nullable=False)
    expiry_year: Mapped[int] = mapped_column(Integer, nullable=False)

    activation_status: Mapped[CardActivation] = mapped_column(
        enum_column(CardActivation),
        nullable=False,
        default=CardActivation.INACTIVE,
    )
    status: Mapped[CardStatus] = mapped_column(
        enum_column(CardStatus),
        nullable=False,
        default=CardStatus.PENDING,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def can_settle(self) -> bool:
        return (
            self.activation_status == CardActivation.ACTIVE
            and self.status == CardStatus.ACTIVE
        )

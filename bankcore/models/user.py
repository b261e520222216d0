"""
User model — the authenticated identity.

A User is both the login credential (email + Argon2 hash) and the owner of
bank accounts. Its role decides which endpoints it may reach:

  - USER:  customer; moves money between accounts it owns
  - ADMIN: back-office operator; read access everywhere, balance adjustments
           and account status changes, but cannot initiate customer movements

The role travels in the JWT and is re-checked against this row on every
request.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankcore.database import Base, enum_column


class UserRole(str, enum.Enum):
    """Role carried by every caller context."""
    USER = "user"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    role: Mapped[UserRole] = mapped_column(
        enum_column(UserRole),
        default=UserRole.USER,
        nullable=False,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Used for SMS notifications when present
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Soft-disable: deactivated users can't log in but their data is preserved
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

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

    accounts: Mapped[list["Account"]] = relationship(
        back_populates="owner",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

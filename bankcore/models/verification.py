"""
Identity-verification progress for a user.

A VerificationCase holds an ordered list of steps reported on by the external
verification provider. The banking core never verifies anything itself; it
only reads the derived overall status to pick a movement limit.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, String, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankcore.database import Base, enum_column


class StepStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class VerificationStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class VerificationCase(Base):
    __tablename__ = "verification_cases"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        unique=True,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Eager "selectin" loading: async sessions cannot lazy-load on access
    steps: Mapped[list["VerificationStep"]] = relationship(
        back_populates="case",
        order_by="VerificationStep.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class VerificationStep(Base):
    __tablename__ = "verification_steps"

    __table_args__ = (
        UniqueConstraint("case_id", "step_id", name="uq_verification_steps_case_step"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    case_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("verification_cases.id"),
        nullable=False,
        index=True,
    )

    # Provider-facing identifier: "identity", "address", "phone", "income"
    step_id: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[StepStatus] = mapped_column(
        enum_column(StepStatus),
        nullable=False,
        default=StepStatus.PENDING,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    case: Mapped["VerificationCase"] = relationship(back_populates="steps")

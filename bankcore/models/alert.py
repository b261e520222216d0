"""
OperatorAlert model — follow-up work for back-office operators.

Raised by the Transfer Engine when money has already moved but something
after the apply step failed: the completion record could not be written, or
the owner could not be notified. The recovery sweep raises one too when it
completes a movement that was left applied. The alert is the only
remediation; the engine never reverses balances on its own.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from bankcore.database import Base, enum_column


class AlertKind(str, enum.Enum):
    # Balances changed but the completion record was never written
    REVERSAL_REQUIRED = "reversal_required"
    # The recovery sweep wrote a completion record the engine never did
    RECORD_RECOVERED = "record_recovered"
    NOTIFICATION_FAILED = "notification_failed"


class OperatorAlert(Base):
    __tablename__ = "operator_alerts"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    movement_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("movements.id"),
        nullable=False,
        index=True,
    )

    kind: Mapped[AlertKind] = mapped_column(
        enum_column(AlertKind),
        nullable=False,
        default=AlertKind.REVERSAL_REQUIRED,
    )

    detail: Mapped[str] = mapped_column(String(500), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    resolution_note: Mapped[str | None] = mapped_column(String(500), nullable=True)

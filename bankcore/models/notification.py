"""
UserNotification model — the in-app notification inbox.

Rows are written by the in-app notification channel and read by the owning
user through /notifications.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from bankcore.database import Base


class UserNotification(Base):
    __tablename__ = "user_notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    # "transfer", "deposit", "large_movement", ...
    template_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

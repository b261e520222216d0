"""
Notification Dispatch — tells users (and, for large amounts, administrators)
what happened to a movement.

The dispatcher turns one NotificationEvent into NotificationMessages, one per
channel the recipient can be reached on, and hands each to the channel
registered for it:

  - in_app: InAppChannel writes a UserNotification row (the /notifications
    inbox)
  - email / sms / push: WebhookChannel POSTs the message as JSON to
    NOTIFICATION_WEBHOOK_URL when it is configured; LogChannel just logs it
    otherwise

Delivery is not guaranteed and never retried here; retries belong to the
channel provider. If any delivery fails, the dispatcher raises
PostApplyNotificationError after attempting every channel. The Transfer
Engine turns that into an operator alert. A failed notification never
changes a movement that has already been applied.
"""

import enum
import logging
import uuid
from dataclasses import dataclass, field

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bankcore.config import settings
from bankcore.exceptions import NotFoundError, PostApplyNotificationError
from bankcore.models.notification import UserNotification
from bankcore.models.user import User, UserRole
from bankcore.money import format_minor_units

logger = logging.getLogger(__name__)


class ChannelKind(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"


# template_kind -> (title, message); message fields come from the event
TEMPLATES: dict[str, tuple[str, str]] = {
    "transfer": ("Transfer completed", "{amount} {currency} was transferred."),
    "deposit": ("Deposit received", "{amount} {currency} was deposited to your account."),
    "withdrawal": ("Withdrawal completed", "{amount} {currency} was withdrawn from your account."),
    "card_settlement": ("Card payment", "A card payment of {amount} {currency} was settled."),
    "admin_adjustment": ("Balance adjusted", "Your balance was adjusted by {amount} {currency}."),
    "large_movement": ("Large movement", "A {kind} movement of {amount} {currency} completed."),
}


@dataclass
class NotificationEvent:
    """What happened: the facts every message about one movement shares."""

    template_kind: str
    movement_id: uuid.UUID
    kind: str
    state: str
    amount_cents: int
    account_ids: list[uuid.UUID] = field(default_factory=list)
    memo: str | None = None

    def payload(self) -> dict:
        return {
            "movement_id": str(self.movement_id),
            "kind": self.kind,
            "state": self.state,
            "amount_cents": self.amount_cents,
            "amount": format_minor_units(self.amount_cents),
            "currency": settings.CURRENCY,
            "account_ids": [str(account_id) for account_id in self.account_ids],
            "memo": self.memo,
        }


@dataclass
class NotificationMessage:
    """One delivery on one channel, as accepted by the channel provider."""

    channel: ChannelKind
    recipient: str
    template_kind: str
    payload: dict
    user_id: uuid.UUID | None = None

    def render(self) -> tuple[str, str]:
        title, body = TEMPLATES.get(self.template_kind, ("Account activity", "{amount} {currency}"))
        return title, body.format(**self.payload)


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class InAppChannel:
    """Stores the message in the recipient's notification inbox."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def deliver(self, message: NotificationMessage) -> None:
        title, body = message.render()
        async with self._session_factory() as db:
            db.add(
                UserNotification(
                    user_id=message.user_id,
                    template_kind=message.template_kind,
                    title=title,
                    message=body,
                    payload=message.payload,
                )
            )
            await db.commit()


class WebhookChannel:
    """POSTs the message to an external email/SMS/push provider."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def deliver(self, message: NotificationMessage) -> None:
        title, body = message.render()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.url,
                json={
                    "channel": message.channel.value,
                    "recipient": message.recipient,
                    "template_kind": message.template_kind,
                    "title": title,
                    "message": body,
                    "payload": message.payload,
                },
            )
            response.raise_for_status()


class LogChannel:
    """Stand-in provider: records the message in the application log."""

    async def deliver(self, message: NotificationMessage) -> None:
        logger.info(
            "notification.logged",
            extra={
                "channel": message.channel.value,
                "template_kind": message.template_kind,
                "movement_id": message.payload.get("movement_id"),
            },
        )


# Errors a channel may raise that count as a failed delivery
DELIVERY_ERRORS = (httpx.HTTPError, httpx.InvalidURL, SQLAlchemyError, OSError)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class NotificationDispatcher:
    """
    Fans one event out to every channel a recipient can be reached on.

    `channels` maps a ChannelKind to an object with an async
    `deliver(message)` method. Kinds without a channel are skipped.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channels: dict[ChannelKind, object],
    ):
        self._session_factory = session_factory
        self.channels = channels

    def _messages_for(self, user: User, event: NotificationEvent) -> list[NotificationMessage]:
        payload = event.payload()
        messages = [
            NotificationMessage(ChannelKind.IN_APP, str(user.id), event.template_kind, payload, user.id),
            NotificationMessage(ChannelKind.EMAIL, user.email, event.template_kind, payload, user.id),
        ]
        if user.phone:
            messages.append(
                NotificationMessage(ChannelKind.SMS, user.phone, event.template_kind, payload, user.id)
            )
        return messages

    async def _deliver_all(self, messages: list[NotificationMessage]) -> list[str]:
        failures = []
        for message in messages:
            channel = self.channels.get(message.channel)
            if channel is None:
                continue
            try:
                await channel.deliver(message)
            except DELIVERY_ERRORS as exc:
                logger.warning(
                    "notification.failed",
                    extra={
                        "channel": message.channel.value,
                        "user_id": str(message.user_id),
                        "movement_id": message.payload.get("movement_id"),
                        "error": str(exc),
                    },
                )
                failures.append(f"{message.channel.value}: {exc}")
        return failures

    async def notify(self, user_id: uuid.UUID, event: NotificationEvent) -> None:
        """
        Deliver `event` to one user on all of their channels.

        Raises:
            PostApplyNotificationError: The user is unknown or could not be
                looked up, or at least one delivery failed.
        """
        try:
            async with self._session_factory() as db:
                user = await db.get(User, user_id)
        except SQLAlchemyError as exc:
            raise PostApplyNotificationError(user_id, [f"recipient lookup failed: {exc}"])
        if user is None:
            raise PostApplyNotificationError(user_id, [f"user {user_id} not found"])

        failures = await self._deliver_all(self._messages_for(user, event))
        if failures:
            raise PostApplyNotificationError(user_id, failures)

        logger.info(
            "notification.sent",
            extra={"user_id": str(user_id), "template_kind": event.template_kind},
        )

    async def notify_admins(self, event: NotificationEvent) -> None:
        """Deliver `event` to every active administrator."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(User).where(User.role == UserRole.ADMIN, User.is_active.is_(True))
                )
                admins = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise PostApplyNotificationError(None, [f"administrator lookup failed: {exc}"])

        failures = []
        for admin in admins:
            failures.extend(await self._deliver_all(self._messages_for(admin, event)))
        if failures:
            raise PostApplyNotificationError(None, failures)


def build_dispatcher(session_factory: async_sessionmaker[AsyncSession]) -> NotificationDispatcher:
    """Dispatcher wired to the channels configured in settings."""
    if settings.NOTIFICATION_WEBHOOK_URL:
        external = WebhookChannel(
            settings.NOTIFICATION_WEBHOOK_URL,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    else:
        external = LogChannel()

    return NotificationDispatcher(
        session_factory,
        {
            ChannelKind.IN_APP: InAppChannel(session_factory),
            ChannelKind.EMAIL: external,
            ChannelKind.SMS: external,
            ChannelKind.PUSH: external,
        },
    )


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------

async def list_notifications(
    db: AsyncSession,
    user_id: uuid.UUID,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[UserNotification]:
    query = (
        select(UserNotification)
        .where(UserNotification.user_id == user_id)
        .order_by(UserNotification.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    if unread_only:
        query = query.where(UserNotification.is_read.is_(False))

    result = await db.execute(query)
    return list(result.scalars().all())


async def mark_read(
    db: AsyncSession,
    user_id: uuid.UUID,
    notification_id: uuid.UUID,
) -> UserNotification:
    """
    Raises:
        NotFoundError: No such notification in this user's inbox.
    """
    notification = await db.get(UserNotification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError(f"Notification {notification_id} not found")

    notification.is_read = True
    await db.flush()
    return notification

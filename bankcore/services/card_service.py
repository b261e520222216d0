"""
Card service — idempotent card issuance, activation and blocking.

Each account has at most one card. `issue_card` is the single place a card
is created: it is called once when an account is opened, and again only if
the owner explicitly asks for one. It always checks for an existing card
first and returns it; a concurrent issuance that loses the race on the
unique account_id constraint also returns the winner's card.

When a card is issued:
  1. The network is chosen from the account kind
  2. A card number is generated with the network's prefix and a Luhn
     check digit
  3. A CVV (4 digits for amex_like, 3 otherwise) and a 6-digit activation
     code are generated
  4. The card number, CVV and activation code are encrypted with Fernet
     before storage; only the last four digits are stored in plaintext
  5. Expiry is CARD_VALIDITY_YEARS from now

All random digits come from the `secrets` module.
"""

import logging
import secrets
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.config import settings
from bankcore.context import CallerContext
from bankcore.exceptions import (
    AccountNotFoundError,
    CardNotFoundError,
    UnauthorizedAccessError,
    ValidationError,
)
from bankcore.models.account import Account, AccountKind
from bankcore.models.card import Card, CardActivation, CardNetwork, CardStatus
from bankcore.security import decrypt_value, encrypt_value

logger = logging.getLogger(__name__)


# network -> (number prefix, card number length, CVV length)
NETWORK_FORMATS: dict[CardNetwork, tuple[str, int, int]] = {
    CardNetwork.VISA_LIKE: ("4", 16, 3),
    CardNetwork.MASTERCARD_LIKE: ("54", 16, 3),
    CardNetwork.AMEX_LIKE: ("37", 15, 4),
    CardNetwork.DISCOVER_LIKE: ("6011", 16, 3),
}

# Account kinds that get a card, and on which network. Fixed deposits and
# mortgages have no card.
NETWORK_BY_KIND: dict[AccountKind, CardNetwork] = {
    AccountKind.CHECKING: CardNetwork.VISA_LIKE,
    AccountKind.SAVINGS: CardNetwork.VISA_LIKE,
    AccountKind.BUSINESS: CardNetwork.MASTERCARD_LIKE,
    AccountKind.INVESTMENT: CardNetwork.DISCOVER_LIKE,
    AccountKind.CREDIT: CardNetwork.AMEX_LIKE,
}


def luhn_check_digit(partial: str) -> str:
    """Check digit that makes `partial + digit` pass the Luhn test."""
    total = 0
    # Double every second digit counting from the right of the final number
    for index, char in enumerate(reversed(partial)):
        digit = int(char)
        if index % 2 == 0:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return str((10 - total % 10) % 10)


def luhn_valid(number: str) -> bool:
    return number.isdigit() and luhn_check_digit(number[:-1]) == number[-1]


def _random_digits(count: int) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(count))


def generate_card_number(network: CardNetwork) -> str:
    prefix, length, _ = NETWORK_FORMATS[network]
    partial = prefix + _random_digits(length - len(prefix) - 1)
    return partial + luhn_check_digit(partial)


def generate_cvv(network: CardNetwork) -> str:
    return _random_digits(NETWORK_FORMATS[network][2])


def is_card_eligible(kind: AccountKind) -> bool:
    return kind in NETWORK_BY_KIND


async def _card_for_account(db: AsyncSession, account_id: uuid.UUID) -> Card | None:
    result = await db.execute(select(Card).where(Card.account_id == account_id))
    return result.scalar_one_or_none()


async def _owned_account(db: AsyncSession, ctx: CallerContext, account_id: uuid.UUID) -> Account:
    account = await db.get(Account, account_id)
    if account is None:
        raise AccountNotFoundError(account_id)
    if not ctx.is_admin and account.owner_id != ctx.user_id:
        raise UnauthorizedAccessError("You do not have access to this account")
    return account


async def issue_card(db: AsyncSession, account: Account) -> tuple[Card, bool]:
    """
    Return (card, created): the account's card, creating it if it has none.

    Raises:
        ValidationError("card_not_available"): The account kind has no card.
    """
    existing = await _card_for_account(db, account.id)
    if existing is not None:
        return existing, False

    network = NETWORK_BY_KIND.get(account.kind)
    if network is None:
        raise ValidationError(
            "card_not_available",
            f"{account.kind.value.capitalize()} accounts are not issued cards",
        )

    card_number = generate_card_number(network)
    now = datetime.now(timezone.utc)
    card = Card(
        account_id=account.id,
        owner_id=account.owner_id,
        network=network,
        pan_encrypted=encrypt_value(card_number),
        pan_last4=card_number[-4:],
        cvv_encrypted=encrypt_value(generate_cvv(network)),
        activation_code_encrypted=encrypt_value(_random_digits(6)),
        expiry_month=now.month,
        expiry_year=now.year + settings.CARD_VALIDITY_YEARS,
        activation_status=CardActivation.INACTIVE,
        status=CardStatus.PENDING,
    )

    try:
        db.add(card)
        await db.flush()
    except IntegrityError:
        # Lost the race on the unique account_id: use the winner's card
        await db.rollback()
        existing = await _card_for_account(db, account.id)
        if existing is None:
            raise
        return existing, False

    logger.info(
        "card.issued",
        extra={"card_id": str(card.id), "account_id": str(account.id), "network": network.value},
    )
    return card, True


async def issue_card_for(
    db: AsyncSession,
    ctx: CallerContext,
    account_id: uuid.UUID,
) -> tuple[Card, bool]:
    """Owner-facing issuance: verifies ownership, then issue_card."""
    account = await _owned_account(db, ctx, account_id)
    return await issue_card(db, account)


async def get_card(db: AsyncSession, ctx: CallerContext, account_id: uuid.UUID) -> Card:
    """
    Get the card for an account (masked; encrypted fields are never
    serialized).

    Raises:
        AccountNotFoundError, UnauthorizedAccessError, CardNotFoundError
    """
    await _owned_account(db, ctx, account_id)
    card = await _card_for_account(db, account_id)
    if card is None:
        raise CardNotFoundError("No card found for this account")
    return card


async def _owned_card(db: AsyncSession, ctx: CallerContext, card_id: uuid.UUID) -> Card:
    card = await db.get(Card, card_id)
    if card is None:
        raise CardNotFoundError()
    if not ctx.is_admin and card.owner_id != ctx.user_id:
        raise UnauthorizedAccessError("You do not have access to this card")
    return card


async def activate_card(
    db: AsyncSession,
    ctx: CallerContext,
    card_id: uuid.UUID,
    activation_code: str,
) -> Card:
    """
    Activate a pending card with the code delivered alongside it.

    Raises:
        ValidationError: card_blocked, invalid_activation_code.
    """
    card = await _owned_card(db, ctx, card_id)
    if card.status == CardStatus.BLOCKED:
        raise ValidationError("card_blocked", "Blocked cards cannot be activated")
    if card.activation_status == CardActivation.ACTIVE:
        return card

    expected = decrypt_value(card.activation_code_encrypted)
    if not secrets.compare_digest(expected, activation_code.strip()):
        logger.warning("card.activation_failed", extra={"card_id": str(card.id)})
        raise ValidationError("invalid_activation_code", "Activation code is incorrect")

    card.activation_status = CardActivation.ACTIVE
    card.status = CardStatus.ACTIVE
    await db.flush()

    logger.info("card.activated", extra={"card_id": str(card.id)})
    return card


async def block_card(db: AsyncSession, ctx: CallerContext, card_id: uuid.UUID) -> Card:
    """Block a card permanently. Blocking an already blocked card is a no-op."""
    card = await _owned_card(db, ctx, card_id)
    if card.status != CardStatus.BLOCKED:
        card.status = CardStatus.BLOCKED
        await db.flush()
        logger.info("card.blocked", extra={"card_id": str(card.id)})
    return card


async def reveal_activation_code(db: AsyncSession, card_id: uuid.UUID) -> str:
    """Decrypt a card's activation code, for delivery to its owner."""
    card = await db.get(Card, card_id)
    if card is None:
        raise CardNotFoundError()
    return decrypt_value(card.activation_code_encrypted)

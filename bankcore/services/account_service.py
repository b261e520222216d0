"""
Account service — opening accounts and changing their status.

Account opening:
  `open_account` creates the account with a zero balance, a unique 10-digit
  account number and the bank's routing number, then issues its card
  through card_service.issue_card. It is the one lifecycle event that
  issues a card automatically; fixed and mortgage accounts get none.

Status changes (administrators):
  active <-> hold, active <-> frozen, hold -> frozen, and any open status
  -> closed. Closed is terminal and requires a zero balance. A status
  change takes the account's ledger lock and commits before releasing it,
  so a movement validated after the change sees the new status, and one
  applied concurrently loses its compare-and-swap on the version column.

Balances are never written here; see transfer_engine.py.
"""

import logging
import secrets
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.config import settings
from bankcore.context import CallerContext
from bankcore.exceptions import AccountStateError, UnauthorizedAccessError, ValidationError
from bankcore.models.account import Account, AccountKind, AccountStatus, STATUS_TRANSITIONS
from bankcore.models.card import Card
from bankcore.services import card_service, ledger_store

logger = logging.getLogger(__name__)


def _generate_account_number() -> str:
    """Random 10-digit account number; avoids sequential guessing."""
    return "".join(str(secrets.randbelow(10)) for _ in range(10))


async def open_account(
    db: AsyncSession,
    ctx: CallerContext,
    kind: AccountKind = AccountKind.CHECKING,
) -> tuple[Account, Card | None]:
    """
    Open an account for the caller and issue its card.

    Returns:
        (account, card); card is None for kinds that have no card.
    """
    if ctx.is_admin:
        raise UnauthorizedAccessError("Administrators cannot open customer accounts")

    # Retry on collision (extremely unlikely with 10 random digits)
    for _ in range(10):
        account_number = _generate_account_number()
        existing = await db.execute(
            select(Account.id).where(Account.account_number == account_number)
        )
        if existing.scalar_one_or_none() is None:
            break
    else:
        raise RuntimeError("Failed to generate a unique account number")

    account = Account(
        owner_id=ctx.user_id,
        kind=kind,
        status=AccountStatus.ACTIVE,
        balance_cents=0,
        currency=settings.CURRENCY,
        routing_number=settings.BANK_ROUTING_NUMBER,
        account_number=account_number,
    )
    db.add(account)
    await db.flush()

    card = None
    if card_service.is_card_eligible(kind):
        card, _ = await card_service.issue_card(db, account)

    logger.info(
        "account.opened",
        extra={"account_id": str(account.id), "owner_id": str(ctx.user_id), "kind": kind.value},
    )
    return account, card


async def change_status(
    db: AsyncSession,
    ctx: CallerContext,
    account_id: uuid.UUID,
    new_status: AccountStatus,
    reason: str | None = None,
) -> Account:
    """
    [ADMIN ONLY] Move an account to a new status.

    Raises:
        UnauthorizedAccessError: The caller is not an administrator.
        AccountNotFoundError: Unknown account.
        AccountStateError: The transition is not allowed.
        ValidationError("non_zero_balance"): Closing an account with money in it.
    """
    if not ctx.is_admin:
        raise UnauthorizedAccessError("Admin access required")

    async with ledger_store.account_locks.hold([account_id]):
        accounts = await ledger_store.load_for_update(db, [account_id])
        account = accounts[account_id]
        previous = account.status

        if new_status == previous:
            return account
        if new_status not in STATUS_TRANSITIONS[previous]:
            raise AccountStateError(
                account.id,
                previous.value,
                f"Account {account.id} cannot move from {previous.value} to {new_status.value}",
            )
        if new_status == AccountStatus.CLOSED and account.balance_cents != 0:
            raise ValidationError(
                "non_zero_balance",
                "Accounts can only be closed with a zero balance",
            )

        account.status = new_status
        with ledger_store.storage_errors():
            await db.commit()

    logger.info(
        "account.status_changed",
        extra={
            "account_id": str(account.id),
            "from_status": previous.value,
            "to_status": new_status.value,
            "changed_by": str(ctx.user_id),
            "reason": reason,
        },
    )
    return account

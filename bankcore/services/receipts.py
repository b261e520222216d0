"""
Receipt rendering — display fields for one movement.

`build_receipt` is a pure function of a movement and the display fields of
the accounts it touches: no database access, no clock. Account numbers are
masked down to their last four digits.
"""

from dataclasses import dataclass
from datetime import datetime

from bankcore.config import settings
from bankcore.models.account import Account
from bankcore.models.movement import Movement, MovementKind
from bankcore.money import format_minor_units


_TITLES = {
    MovementKind.INTERNAL: "Transfer",
    MovementKind.DEPOSIT: "Deposit",
    MovementKind.WITHDRAWAL: "Withdrawal",
    MovementKind.CARD_SETTLEMENT: "Card payment",
    MovementKind.ADMIN_ADJUSTMENT: "Balance adjustment",
}


@dataclass(frozen=True)
class ReceiptParty:
    label: str
    kind: str
    routing_number: str
    account_number_masked: str


@dataclass(frozen=True)
class Receipt:
    reference: str
    title: str
    state: str
    amount: str
    currency: str
    created_at: datetime
    completed_at: datetime | None
    memo: str | None
    source: ReceiptParty | None
    destination: ReceiptParty | None
    failure_reason: str | None = None


def mask_account_number(account_number: str) -> str:
    return f"****{account_number[-4:]}"


def _party(account: Account | None) -> ReceiptParty | None:
    if account is None:
        return None
    return ReceiptParty(
        label=f"{account.kind.value.capitalize()} {mask_account_number(account.account_number)}",
        kind=account.kind.value,
        routing_number=account.routing_number,
        account_number_masked=mask_account_number(account.account_number),
    )


def build_receipt(
    movement: Movement,
    source: Account | None = None,
    destination: Account | None = None,
) -> Receipt:
    # Short, human-friendly reference derived from the movement id
    reference = movement.id.hex[:12].upper()
    return Receipt(
        reference=reference,
        title=_TITLES[movement.kind],
        state=movement.state.value,
        amount=format_minor_units(movement.amount_cents),
        currency=settings.CURRENCY,
        created_at=movement.created_at,
        completed_at=movement.completed_at,
        memo=movement.memo,
        source=_party(source),
        destination=_party(destination),
        failure_reason=movement.failure_reason,
    )

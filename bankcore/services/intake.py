"""
Request Intake — turns raw form input into a well-formed MovementRequest.

Intake holds no financial state and writes nothing. It checks what can be
checked from the form alone and reports the first problem as a
ValidationError with a machine-readable reason:

    missing_fields                  a required field is absent or blank
    invalid_amount                  the amount is not a number
    non_positive_amount             the amount is zero or negative
    invalid_precision               more decimals than the currency has
    same_account                    transfer to the account it comes from
    insufficient_displayed_balance  the amount exceeds the balance the
                                    client was showing (a fast pre-check
                                    only; the Transfer Engine re-checks
                                    against the ledger)

Deposits and withdrawals name an external rail. Each rail needs its own
reference details, which are validated here and summarised into the memo:

    ach / wire  bank_name, routing_number (9 digits), external_account_number
    crypto      crypto_currency, wallet_address
    check       check_number
    card        (no extra fields)
"""

import re
import uuid
from typing import Any, Mapping

from bankcore.exceptions import ValidationError
from bankcore.models.movement import MovementKind
from bankcore.money import to_minor_units
from bankcore.services.transfer_engine import MovementRequest


RAIL_FIELDS: dict[str, tuple[str, ...]] = {
    "ach": ("bank_name", "routing_number", "external_account_number"),
    "wire": ("bank_name", "routing_number", "external_account_number"),
    "crypto": ("crypto_currency", "wallet_address"),
    "check": ("check_number",),
    "card": (),
}

_REQUIRED: dict[MovementKind, tuple[str, ...]] = {
    MovementKind.INTERNAL: ("source_account_id", "destination_account_id", "amount"),
    MovementKind.DEPOSIT: ("destination_account_id", "amount", "rail"),
    MovementKind.WITHDRAWAL: ("source_account_id", "amount", "rail"),
}

_ROUTING_NUMBER = re.compile(r"^\d{9}$")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _require(form: Mapping[str, Any], names: tuple[str, ...]) -> None:
    missing = [name for name in names if _blank(form.get(name))]
    if missing:
        raise ValidationError("missing_fields", f"Missing required fields: {', '.join(missing)}")


def _account_id(form: Mapping[str, Any], name: str) -> uuid.UUID | None:
    value = form.get(name)
    if _blank(value):
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError("invalid_account", f"{name} is not a valid account id")


def parse_amount(value: Any) -> int:
    """
    Convert an entered amount to positive integer minor units.

    Raises:
        ValidationError: missing_fields, invalid_amount, invalid_precision,
            non_positive_amount.
    """
    if _blank(value):
        raise ValidationError("missing_fields", "Missing required fields: amount")
    if isinstance(value, bool):
        raise ValidationError("invalid_amount", f"{value!r} is not a valid amount")

    cents = to_minor_units(value)
    if cents <= 0:
        raise ValidationError("non_positive_amount", "Amount must be greater than zero")
    return cents


def _mask(number: str) -> str:
    return f"****{number[-4:]}"


def _rail_memo(form: Mapping[str, Any]) -> str:
    rail = str(form.get("rail")).strip().lower()
    if rail not in RAIL_FIELDS:
        raise ValidationError(
            "invalid_rail",
            f"Unknown rail {rail!r}; expected one of {', '.join(RAIL_FIELDS)}",
        )
    _require(form, RAIL_FIELDS[rail])

    if rail in ("ach", "wire"):
        routing = str(form["routing_number"]).strip()
        if not _ROUTING_NUMBER.match(routing):
            raise ValidationError("invalid_routing_number", "Routing numbers are 9 digits")
        return (
            f"{rail.upper()} {form['bank_name']} routing {routing} "
            f"account {_mask(str(form['external_account_number']).strip())}"
        )
    if rail == "crypto":
        return f"CRYPTO {str(form['crypto_currency']).upper()} wallet {form['wallet_address']}"
    if rail == "check":
        check_number = str(form["check_number"]).strip()
        if not check_number.isdigit():
            raise ValidationError("invalid_check_number", "Check numbers are digits only")
        return f"CHECK #{check_number}"
    return "CARD"


def build_movement_request(
    form: Mapping[str, Any],
    kind: MovementKind,
    displayed_balance_cents: int | None = None,
) -> MovementRequest:
    """
    Shape one customer movement request from form input.

    Args:
        form: Raw field values (account ids, amount, memo, idempotency_key,
              rail details, optional displayed_balance).
        kind: internal, deposit or withdrawal.
        displayed_balance_cents: The source balance the client displayed,
              if known. Falls back to the form's `displayed_balance`.

    Raises:
        ValidationError: With one of the reasons listed in the module
            docstring.
    """
    if kind not in _REQUIRED:
        raise ValidationError("invalid_kind", f"{kind.value} movements are not entered through forms")

    _require(form, _REQUIRED[kind] + ("idempotency_key",))

    amount_cents = parse_amount(form.get("amount"))
    source_account_id = _account_id(form, "source_account_id") if kind != MovementKind.DEPOSIT else None
    destination_account_id = (
        _account_id(form, "destination_account_id") if kind != MovementKind.WITHDRAWAL else None
    )

    if kind == MovementKind.INTERNAL and source_account_id == destination_account_id:
        raise ValidationError("same_account", "Cannot transfer to the same account")

    if displayed_balance_cents is None and not _blank(form.get("displayed_balance")):
        displayed_balance_cents = to_minor_units(form["displayed_balance"])
    if (
        source_account_id is not None
        and displayed_balance_cents is not None
        and amount_cents > displayed_balance_cents
    ):
        raise ValidationError(
            "insufficient_displayed_balance",
            "Amount exceeds the available balance",
        )

    memo_parts = []
    if kind in (MovementKind.DEPOSIT, MovementKind.WITHDRAWAL):
        memo_parts.append(_rail_memo(form))
    if not _blank(form.get("memo")):
        memo_parts.append(str(form["memo"]).strip())
    memo = " | ".join(memo_parts)[:255] or None

    return MovementRequest(
        kind=kind,
        amount_cents=amount_cents,
        idempotency_key=str(form["idempotency_key"]).strip(),
        source_account_id=source_account_id,
        destination_account_id=destination_account_id,
        memo=memo,
    )

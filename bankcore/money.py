"""
Money conversion helpers.

All balances and movement amounts are integer minor units (cents for USD).
Values entered by people arrive as decimal strings ("40.00") and are
converted here with `Decimal`, never through binary floating point:

    >>> to_minor_units("40.00")
    4000
    >>> format_minor_units(-1050)
    '-10.50'

A value with more decimal places than the currency allows ("1.005") is
rejected rather than rounded. So is any value whose magnitude does not fit
the ledger's 64-bit integer columns.
"""

from decimal import Decimal, InvalidOperation

from bankcore.config import settings
from bankcore.exceptions import ValidationError

# Largest magnitude a balance or amount column can hold (signed 64-bit)
MAX_AMOUNT_CENTS = 2**63 - 1


def _quantum() -> Decimal:
    return Decimal(1).scaleb(-settings.CURRENCY_MINOR_UNITS)


def check_representable(cents: int) -> int:
    """
    Raises:
        ValidationError("invalid_amount"): Outside the ledger's integer range.
    """
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError("invalid_amount", "Amount is too large")
    return cents


def to_minor_units(amount: Decimal | str | int) -> int:
    """
    Convert a major-unit amount to integer minor units.

    Raises:
        ValidationError("invalid_amount"): Not a finite number, or too large
            for the ledger.
        ValidationError("invalid_precision"): More decimals than the currency has.
    """
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValidationError("invalid_amount", f"{amount!r} is not a valid amount")

    if not value.is_finite():
        raise ValidationError("invalid_amount", f"{amount!r} is not a valid amount")

    # Checked before quantize, which fails outright on huge exponents
    if abs(value.scaleb(settings.CURRENCY_MINOR_UNITS)) > MAX_AMOUNT_CENTS:
        raise ValidationError("invalid_amount", "Amount is too large")

    try:
        exact = value == value.quantize(_quantum())
    except InvalidOperation:
        raise ValidationError("invalid_amount", f"{amount!r} is not a valid amount")
    if not exact:
        raise ValidationError(
            "invalid_precision",
            f"Amounts use at most {settings.CURRENCY_MINOR_UNITS} decimal places",
        )

    return int(value.scaleb(settings.CURRENCY_MINOR_UNITS))


def format_minor_units(cents: int) -> str:
    """Render minor units as a major-unit string with thousands separators."""
    digits = settings.CURRENCY_MINOR_UNITS
    sign = "-" if cents < 0 else ""
    whole, fraction = divmod(abs(cents), 10 ** digits)
    if digits == 0:
        return f"{sign}{whole:,}"
    return f"{sign}{whole:,}.{fraction:0{digits}d}"

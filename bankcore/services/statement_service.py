"""
Statement service — account statements for a month or a custom period.

A statement is built from the movement log on demand:
  1. Opening balance: the effect of every applied movement created before
     the period starts
  2. Lines: every movement touching the account during the period, oldest
     first, including rejected ones so the customer sees failed attempts
  3. Totals: credits and debits of the lines that changed the balance
  4. Closing balance: opening + credits - debits

Nothing is cached, so a statement always agrees with the ledger. A movement
counts on the day it was created; one still in flight shows up with
`affects_balance=False` until it is applied.
"""

import csv
import io
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.context import CallerContext
from bankcore.exceptions import ValidationError
from bankcore.models.account import Account
from bankcore.models.movement import BALANCE_AFFECTING_STATES, Movement
from bankcore.money import format_minor_units
from bankcore.services import projection

# Longest custom period a single statement may cover
MAX_PERIOD_DAYS = 366


@dataclass
class StatementLine:
    movement: Movement
    # Positive for money in, negative for money out
    signed_cents: int
    affects_balance: bool
    balance_after_cents: int | None


@dataclass
class Statement:
    account: Account
    period_start: datetime
    period_end: datetime
    opening_balance_cents: int
    closing_balance_cents: int
    total_credits_cents: int = 0
    total_debits_cents: int = 0
    lines: list[StatementLine] = field(default_factory=list)


def month_period(year: int, month: int) -> tuple[datetime, datetime]:
    """[start, end) of a calendar month in UTC."""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


def custom_period(date_from: date, date_to: date) -> tuple[datetime, datetime]:
    """
    [start, end) covering both dates in full.

    Raises:
        ValidationError("invalid_period"): date_to is before date_from, or
            the period is longer than MAX_PERIOD_DAYS.
    """
    if date_to < date_from:
        raise ValidationError("invalid_period", "date_to is before date_from")
    if (date_to - date_from).days + 1 > MAX_PERIOD_DAYS:
        raise ValidationError(
            "invalid_period", f"A statement covers at most {MAX_PERIOD_DAYS} days"
        )

    start = datetime.combine(date_from, time.min, tzinfo=timezone.utc)
    end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start, end


async def generate_statement(
    db: AsyncSession,
    ctx: CallerContext,
    account_id: uuid.UUID,
    period_start: datetime,
    period_end: datetime,
) -> Statement:
    """
    Build the statement of one account for [period_start, period_end).

    Raises:
        AccountNotFoundError: Unknown account.
        UnauthorizedAccessError: The account belongs to someone else.
    """
    account = (await projection.get_account_view(db, ctx, account_id)).account
    opening = await projection.ledger_balance(db, account_id, before=period_start)

    result = await db.execute(
        select(Movement)
        .where(
            or_(
                Movement.source_account_id == account_id,
                Movement.destination_account_id == account_id,
            )
        )
        .where(Movement.created_at >= period_start)
        .where(Movement.created_at < period_end)
        .order_by(Movement.created_at, Movement.id)
    )

    statement = Statement(
        account=account,
        period_start=period_start,
        period_end=period_end,
        opening_balance_cents=opening,
        closing_balance_cents=opening,
    )
    balance = opening
    for movement in result.scalars().all():
        signed = movement.amount_cents
        if movement.destination_account_id != account_id:
            signed = -signed
        affects = movement.state in BALANCE_AFFECTING_STATES
        if affects:
            balance += signed
            if signed > 0:
                statement.total_credits_cents += signed
            else:
                statement.total_debits_cents -= signed

        statement.lines.append(
            StatementLine(
                movement=movement,
                signed_cents=signed,
                affects_balance=affects,
                balance_after_cents=balance if affects else None,
            )
        )

    statement.closing_balance_cents = balance
    return statement


CSV_COLUMNS = ["date", "reference", "kind", "state", "memo", "amount", "balance"]


def render_csv(statement: Statement) -> str:
    """One row per line, amounts in major units; the balance column is
    empty for lines that did not change the balance."""
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(CSV_COLUMNS)
    for line in statement.lines:
        movement = line.movement
        writer.writerow([
            movement.created_at.isoformat(),
            movement.id.hex[:12].upper(),
            movement.kind.value,
            movement.state.value,
            movement.memo or "",
            format_minor_units(line.signed_cents).replace(",", ""),
            "" if line.balance_after_cents is None
            else format_minor_units(line.balance_after_cents).replace(",", ""),
        ])
    return out.getvalue()

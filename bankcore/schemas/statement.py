"""
Pydantic schemas for account statements.

Aggregates come first (opening/closing balance, totals), followed by every
movement of the period, oldest first. Amounts are integer minor units;
line amounts are signed from the account's point of view.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel

from bankcore.models.movement import MovementKind, MovementState


class StatementLineResponse(BaseModel):
    movement_id: uuid.UUID
    kind: MovementKind
    state: MovementState
    memo: str | None
    created_at: datetime
    amount_cents: int
    affects_balance: bool
    balance_after_cents: int | None


class StatementResponse(BaseModel):
    account_id: uuid.UUID
    currency: str
    period_start: datetime
    period_end: datetime

    opening_balance_cents: int
    closing_balance_cents: int
    total_credits_cents: int
    total_debits_cents: int
    movement_count: int

    lines: list[StatementLineResponse]

    @classmethod
    def from_statement(cls, statement) -> "StatementResponse":
        return cls(
            account_id=statement.account.id,
            currency=statement.account.currency,
            period_start=statement.period_start,
            period_end=statement.period_end,
            opening_balance_cents=statement.opening_balance_cents,
            closing_balance_cents=statement.closing_balance_cents,
            total_credits_cents=statement.total_credits_cents,
            total_debits_cents=statement.total_debits_cents,
            movement_count=len(statement.lines),
            lines=[
                StatementLineResponse(
                    movement_id=line.movement.id,
                    kind=line.movement.kind,
                    state=line.movement.state,
                    memo=line.movement.memo,
                    created_at=line.movement.created_at,
                    amount_cents=line.signed_cents,
                    affects_balance=line.affects_balance,
                    balance_after_cents=line.balance_after_cents,
                )
                for line in statement.lines
            ],
        )

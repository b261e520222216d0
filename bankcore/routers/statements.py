"""
Statements router — account statements.

Endpoints:
  GET /accounts/{account_id}/statements?year=YYYY&month=MM
  GET /accounts/{account_id}/statements?date_from=YYYY-MM-DD&date_to=YYYY-MM-DD

Either a calendar month or a custom period (both dates inclusive) must be
given. `format=csv` returns the same lines as a CSV download instead of
JSON.
"""

import uuid
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.context import CallerContext
from bankcore.database import get_db
from bankcore.dependencies import require_member
from bankcore.exceptions import ValidationError
from bankcore.schemas.statement import StatementResponse
from bankcore.services import statement_service

router = APIRouter()


@router.get(
    "/{account_id}/statements",
    response_model=StatementResponse,
    summary="Get an account statement",
)
async def get_statement(
    account_id: uuid.UUID,
    year: int | None = Query(None, ge=2000, le=2100, description="Statement year"),
    month: int | None = Query(None, ge=1, le=12, description="Statement month (1-12)"),
    date_from: date | None = Query(None, description="First day of a custom period"),
    date_to: date | None = Query(None, description="Last day of a custom period"),
    output: Literal["json", "csv"] = Query("json", alias="format"),
    ctx: CallerContext = Depends(require_member),
    db: AsyncSession = Depends(get_db),
):
    """
    Generate a statement for one of your accounts.

    The statement includes:
    - **Opening balance**: the balance when the period starts
    - **Closing balance**: the balance when the period ends
    - **Total credits/debits**: money in and out that changed the balance
    - **Lines**: every movement of the period, oldest first, with the
      running balance; rejected movements are listed without one
    """
    if year is not None and month is not None:
        period_start, period_end = statement_service.month_period(year, month)
    elif date_from is not None and date_to is not None:
        period_start, period_end = statement_service.custom_period(date_from, date_to)
    else:
        raise ValidationError(
            "missing_fields",
            "Give year and month, or date_from and date_to",
        )

    statement = await statement_service.generate_statement(
        db, ctx, account_id, period_start, period_end
    )

    if output == "csv":
        filename = f"statement-{account_id}-{period_start:%Y%m%d}.csv"
        return Response(
            content=statement_service.render_csv(statement),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return StatementResponse.from_statement(statement)

"""
Operator alerts — follow-up work raised after money has already moved.

The Transfer Engine raises an alert when the completion record of an applied
movement cannot be written, when the owner could not be notified, or when
the recovery sweep completes a movement that had been left applied. Alerts
are resolved by administrators; resolving one never changes any balance.
Corrections, if needed, are separate admin_adjustment movements.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.exceptions import ConflictError, NotFoundError
from bankcore.models.alert import AlertKind, OperatorAlert

logger = logging.getLogger(__name__)


async def raise_alert(
    db: AsyncSession,
    movement_id: uuid.UUID,
    detail: str,
    kind: AlertKind = AlertKind.REVERSAL_REQUIRED,
) -> OperatorAlert:
    alert = OperatorAlert(movement_id=movement_id, kind=kind, detail=detail[:500])
    db.add(alert)
    await db.flush()

    logger.error(
        "alert.raised",
        extra={
            "kind": kind.value,
            "alert_id": str(alert.id),
            "movement_id": str(movement_id),
            "detail": detail,
        },
    )
    return alert


async def list_alerts(
    db: AsyncSession,
    unresolved_only: bool = True,
    movement_id: uuid.UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[OperatorAlert]:
    query = (
        select(OperatorAlert)
        .order_by(OperatorAlert.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    if unresolved_only:
        query = query.where(OperatorAlert.resolved_at.is_(None))
    if movement_id is not None:
        query = query.where(OperatorAlert.movement_id == movement_id)

    result = await db.execute(query)
    return list(result.scalars().all())


async def resolve_alert(
    db: AsyncSession,
    alert_id: uuid.UUID,
    resolved_by: uuid.UUID,
    note: str | None = None,
) -> OperatorAlert:
    """
    Mark an alert as handled.

    Raises:
        NotFoundError: Unknown alert.
        ConflictError: The alert was already resolved.
    """
    alert = await db.get(OperatorAlert, alert_id)
    if alert is None:
        raise NotFoundError(f"Alert {alert_id} not found")
    if alert.resolved_at is not None:
        raise ConflictError(f"Alert {alert_id} is already resolved")

    alert.resolved_at = datetime.now(timezone.utc)
    alert.resolved_by = resolved_by
    alert.resolution_note = note
    await db.flush()

    logger.info(
        "alert.resolved",
        extra={"alert_id": str(alert_id), "resolved_by": str(resolved_by)},
    )
    return alert

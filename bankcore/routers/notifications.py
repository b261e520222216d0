"""
Notifications router — the in-app inbox.

Endpoints:
  GET  /notifications                        — List your notifications
  POST /notifications/{notification_id}/read — Mark one as read

Administrators use the same inbox for large-movement notices.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bankcore.context import CallerContext
from bankcore.database import get_db
from bankcore.dependencies import get_caller_context
from bankcore.schemas.notification import NotificationResponse
from bankcore.services import notifications

router = APIRouter()


@router.get(
    "",
    response_model=list[NotificationResponse],
    summary="List your notifications",
)
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    """Newest first."""
    return await notifications.list_notifications(
        db, ctx.user_id, unread_only=unread_only, limit=limit, offset=offset
    )


@router.post(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Mark a notification as read",
)
async def mark_read(
    notification_id: uuid.UUID,
    ctx: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    return await notifications.mark_read(db, ctx.user_id, notification_id)

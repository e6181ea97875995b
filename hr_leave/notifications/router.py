"""Notification endpoints — list and mark read."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.auth.dependencies import get_current_actor
from hr_leave.auth.identity import Actor
from hr_leave.common.pagination import PaginationParams
from hr_leave.database import get_db
from hr_leave.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
)
from hr_leave.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


# ── GET / ──────────────────────────────────────────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None, description="Filter by read status"),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """List notifications for the authenticated user (paginated)."""
    return await NotificationService.get_notifications(
        db,
        employee_id=actor.employee_id,
        pagination=pagination,
        is_read=is_read,
    )


# ── PUT /{notification_id}/read ────────────────────────────────────

@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Mark one of the caller's notifications as read."""
    notification = await NotificationService.mark_read(
        db, notification_id, actor.employee_id,
    )
    return NotificationResponse.model_validate(notification)

"""Notification service — inbox CRUD, outbound messages and post-commit dispatch.

Ledger and workflow operations never talk to a transport directly. They
append ``OutboundMessage`` objects to a ``NotificationOutbox`` while their
transaction is open; the caller dispatches the outbox once the transaction
has committed. Delivery is best-effort: a failing send is logged and the
remaining messages are still attempted.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hr_leave.common.constants import NotificationType
from hr_leave.common.exceptions import ForbiddenException, NotFoundException
from hr_leave.common.pagination import PaginationParams
from hr_leave.notifications.models import Notification
from hr_leave.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationResponse,
)

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification inbox operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
            is_read=False,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
    ) -> NotificationListResponse:
        """Return paginated notifications for an employee, newest first."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == employee_id)
            .order_by(Notification.created_at.desc())
        )
        if is_read is not None:
            query = query.where(Notification.is_read == is_read)

        count_q = query.with_only_columns(func.count(), maintain_column_froms=True).order_by(None)
        total: int = (await db.execute(count_q)).scalar_one()

        rows = (
            await db.execute(
                query.offset(pagination.offset).limit(pagination.page_size)
            )
        ).scalars().all()

        total_pages = math.ceil(total / pagination.page_size) if total else 0

        unread = (
            await db.execute(
                select(func.count())
                .select_from(Notification)
                .where(
                    Notification.recipient_id == employee_id,
                    Notification.is_read.is_(False),
                )
            )
        ).scalar_one()

        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            meta=NotificationListMeta(
                page=pagination.page,
                page_size=pagination.page_size,
                total=total,
                total_pages=total_pages,
                has_next=pagination.page < total_pages,
                has_prev=pagination.page > 1,
                unread=unread,
            ),
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        result = await db.execute(
            select(Notification).where(Notification.id == notification_id)
        )
        notification = result.scalars().first()

        if notification is None:
            raise NotFoundException("Notification", notification_id)

        if notification.recipient_id != employee_id:
            raise ForbiddenException("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification


# ── Outbound messages ───────────────────────────────────────────────


@dataclass(frozen=True)
class OutboundMessage:
    """A notification waiting for its transaction to commit."""

    to: uuid.UUID
    type: NotificationType
    title: str
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[uuid.UUID] = None
    action_url: Optional[str] = None


class NotificationDispatcher(Protocol):
    """Fire-and-forget transport for outbound messages."""

    async def send(self, message: OutboundMessage) -> None: ...


class DatabaseDispatcher:
    """Writes each message into the in-app inbox using its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def send(self, message: OutboundMessage) -> None:
        async with self._session_factory() as session:
            await NotificationService.create_notification(
                session,
                recipient_id=message.to,
                type=message.type,
                title=message.title,
                message=message.message,
                action_url=message.action_url,
                entity_type=message.entity_type,
                entity_id=message.entity_id,
            )
            await session.commit()


@dataclass
class NotificationOutbox:
    """Collects messages during a unit of work for post-commit delivery."""

    messages: list[OutboundMessage] = field(default_factory=list)

    def add(
        self,
        to: uuid.UUID,
        type: NotificationType,
        title: str,
        message: str,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
        action_url: Optional[str] = None,
    ) -> None:
        self.messages.append(
            OutboundMessage(
                to=to,
                type=type,
                title=title,
                message=message,
                entity_type=entity_type,
                entity_id=entity_id,
                action_url=action_url,
            )
        )

    def __len__(self) -> int:
        return len(self.messages)

    async def dispatch(self, dispatcher: NotificationDispatcher) -> int:
        """Send every queued message; return how many were delivered."""
        pending, self.messages = self.messages, []
        delivered = 0
        for msg in pending:
            try:
                await dispatcher.send(msg)
            except Exception:
                logger.exception(
                    "Notification delivery failed (to=%s, entity=%s/%s)",
                    msg.to, msg.entity_type, msg.entity_id,
                )
                continue
            delivered += 1
        if pending:
            logger.info("Dispatched %d/%d notifications", delivered, len(pending))
        return delivered

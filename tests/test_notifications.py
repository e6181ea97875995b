"""Tests for the notification inbox and post-commit outbox dispatch.

Covers:
- NotificationService create / list / mark_read (ownership enforced)
- NotificationOutbox dispatch through DatabaseDispatcher
- Failing transports are logged and skipped
- Inbox endpoints
"""

from __future__ import annotations

import logging
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.common.constants import NotificationType
from hr_leave.common.exceptions import ForbiddenException, NotFoundException
from hr_leave.common.pagination import PaginationParams
from hr_leave.notifications.models import Notification
from hr_leave.notifications.service import (
    DatabaseDispatcher,
    NotificationOutbox,
    NotificationService,
    OutboundMessage,
)
from tests.conftest import TestSessionFactory, _seed_employee, auth_header


# ── Helpers ─────────────────────────────────────────────────────────


async def _create_notification(
    db: AsyncSession,
    recipient_id: uuid.UUID,
    *,
    type: NotificationType = NotificationType.info,
    title: str = "Leave update",
    message: str = "Your request moved forward",
) -> Notification:
    return await NotificationService.create_notification(
        db,
        recipient_id=recipient_id,
        type=type,
        title=title,
        message=message,
        entity_type="leave_request",
        entity_id=uuid.uuid4(),
    )


def _page(size: int = 10, page: int = 1) -> PaginationParams:
    return PaginationParams(page=page, page_size=size, sort=None)


class _RecordingDispatcher:
    def __init__(self, fail_for: set[uuid.UUID] | None = None) -> None:
        self.sent: list[OutboundMessage] = []
        self.fail_for = fail_for or set()

    async def send(self, message: OutboundMessage) -> None:
        if message.to in self.fail_for:
            raise RuntimeError("transport down")
        self.sent.append(message)


# ═════════════════════════════════════════════════════════════════════
# 1. INBOX SERVICE
# ═════════════════════════════════════════════════════════════════════


class TestNotificationService:

    async def test_create_defaults_to_unread(self, db: AsyncSession):
        emp = await _seed_employee(db)
        n = await _create_notification(db, emp.id, type=NotificationType.approval)

        assert n.id is not None
        assert n.is_read is False
        assert n.read_at is None
        assert n.type == NotificationType.approval

    async def test_list_counts_unread(self, db: AsyncSession):
        emp = await _seed_employee(db)
        other = await _seed_employee(db)
        first = await _create_notification(db, emp.id)
        await _create_notification(db, emp.id)
        await _create_notification(db, emp.id)
        await _create_notification(db, other.id)
        await NotificationService.mark_read(db, first.id, emp.id)

        result = await NotificationService.get_notifications(db, emp.id, _page())
        assert result.meta.total == 3
        assert result.meta.unread == 2
        assert len(result.data) == 3

        unread_only = await NotificationService.get_notifications(
            db, emp.id, _page(), is_read=False,
        )
        assert unread_only.meta.total == 2
        assert all(not n.is_read for n in unread_only.data)

    async def test_list_paginates(self, db: AsyncSession):
        emp = await _seed_employee(db)
        for i in range(5):
            await _create_notification(db, emp.id, title=f"Update {i}")

        result = await NotificationService.get_notifications(db, emp.id, _page(size=2, page=3))
        assert len(result.data) == 1
        assert result.meta.total_pages == 3
        assert result.meta.has_next is False
        assert result.meta.has_prev is True

    async def test_mark_read_stamps_time(self, db: AsyncSession):
        emp = await _seed_employee(db)
        n = await _create_notification(db, emp.id)

        updated = await NotificationService.mark_read(db, n.id, emp.id)
        assert updated.is_read is True
        assert updated.read_at is not None

    async def test_mark_read_other_recipient_forbidden(self, db: AsyncSession):
        owner = await _seed_employee(db)
        intruder = await _seed_employee(db)
        n = await _create_notification(db, owner.id)

        with pytest.raises(ForbiddenException):
            await NotificationService.mark_read(db, n.id, intruder.id)

    async def test_mark_read_unknown_id(self, db: AsyncSession):
        emp = await _seed_employee(db)
        with pytest.raises(NotFoundException):
            await NotificationService.mark_read(db, uuid.uuid4(), emp.id)


# ═════════════════════════════════════════════════════════════════════
# 2. OUTBOX DISPATCH
# ═════════════════════════════════════════════════════════════════════


class TestNotificationOutbox:

    async def test_dispatch_drains_queue(self):
        outbox = NotificationOutbox()
        a, b = uuid.uuid4(), uuid.uuid4()
        outbox.add(a, NotificationType.action_required, "Approve leave", "Pending")
        outbox.add(b, NotificationType.info, "Submitted", "Waiting on manager")
        assert len(outbox) == 2

        dispatcher = _RecordingDispatcher()
        delivered = await outbox.dispatch(dispatcher)

        assert delivered == 2
        assert [m.to for m in dispatcher.sent] == [a, b]
        assert len(outbox) == 0

    async def test_failed_send_is_logged_and_skipped(self, caplog):
        broken, healthy = uuid.uuid4(), uuid.uuid4()
        outbox = NotificationOutbox()
        outbox.add(broken, NotificationType.alert, "Escalated", "Overdue")
        outbox.add(healthy, NotificationType.alert, "Escalated", "Overdue")

        dispatcher = _RecordingDispatcher(fail_for={broken})
        with caplog.at_level(logging.ERROR, logger="hr_leave.notifications.service"):
            delivered = await outbox.dispatch(dispatcher)

        assert delivered == 1
        assert [m.to for m in dispatcher.sent] == [healthy]
        assert "Notification delivery failed" in caplog.text

    async def test_empty_outbox_sends_nothing(self):
        dispatcher = _RecordingDispatcher()
        assert await NotificationOutbox().dispatch(dispatcher) == 0
        assert dispatcher.sent == []

    async def test_database_dispatcher_writes_inbox(self):
        async with TestSessionFactory() as session:
            emp = await _seed_employee(session)
            await session.commit()

        outbox = NotificationOutbox()
        outbox.add(
            emp.id, NotificationType.approval, "Leave approved", "Enjoy the break",
            entity_type="leave_request", entity_id=uuid.uuid4(),
        )
        delivered = await outbox.dispatch(DatabaseDispatcher(TestSessionFactory))
        assert delivered == 1

        async with TestSessionFactory() as session:
            count = (
                await session.execute(
                    select(func.count())
                    .select_from(Notification)
                    .where(Notification.recipient_id == emp.id)
                )
            ).scalar_one()
        assert count == 1


# ═════════════════════════════════════════════════════════════════════
# 3. INBOX ENDPOINTS
# ═════════════════════════════════════════════════════════════════════


class TestNotificationEndpoints:

    async def test_list_and_mark_read(self, client: AsyncClient):
        async with TestSessionFactory() as session:
            emp = await _seed_employee(session)
            n = await _create_notification(session, emp.id)
            await session.commit()

        headers = auth_header(emp.id)
        resp = await client.get("/api/v1/notifications", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["meta"]["unread"] == 1

        resp = await client.put(f"/api/v1/notifications/{n.id}/read", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["is_read"] is True

        resp = await client.get(
            "/api/v1/notifications", params={"is_read": "false"}, headers=headers,
        )
        assert resp.json()["meta"]["total"] == 0

    async def test_mark_someone_elses_notification(self, client: AsyncClient):
        async with TestSessionFactory() as session:
            owner = await _seed_employee(session)
            other = await _seed_employee(session)
            n = await _create_notification(session, owner.id)
            await session.commit()

        resp = await client.put(
            f"/api/v1/notifications/{n.id}/read", headers=auth_header(other.id),
        )
        assert resp.status_code == 403
        assert resp.headers["content-type"].startswith("application/problem+json")

    async def test_requires_auth(self, client: AsyncClient):
        resp = await client.get("/api/v1/notifications")
        assert resp.status_code == 401

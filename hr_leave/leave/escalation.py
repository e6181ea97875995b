"""Overdue escalation sweep for requests idle in a review stage."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.auth.identity import SYSTEM_ACTOR_ID
from hr_leave.common.audit import create_audit_entry
from hr_leave.common.constants import EscalationDedupScope, NotificationType
from hr_leave.config import settings
from hr_leave.leave.models import LeaveRequest
from hr_leave.leave.workflow import PENDING_STATUSES, RequestWorkflow
from hr_leave.notifications.service import NotificationOutbox

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class EscalationRunResult:
    scanned: int = 0
    escalated: int = 0
    request_ids: list[uuid.UUID] = field(default_factory=list)


class OverdueEscalation:

    @staticmethod
    def already_escalated(
        leave_req: LeaveRequest,
        dedup: EscalationDedupScope,
        now: datetime,
    ) -> bool:
        escalated_at = _as_utc(leave_req.escalated_at)
        if escalated_at is None:
            return False
        if dedup == EscalationDedupScope.calendar_day:
            return escalated_at.date() == now.date()
        return escalated_at >= _as_utc(leave_req.stage_entered_at)

    @staticmethod
    async def check_and_escalate_overdue(
        db: AsyncSession,
        *,
        outbox: NotificationOutbox,
        threshold_hours: Optional[int] = None,
        dedup: Optional[EscalationDedupScope] = None,
        now: Optional[datetime] = None,
    ) -> EscalationRunResult:
        """Flag and notify reviewers of requests idle longer than the threshold.

        With ``stage_entry`` dedup a request is escalated once per stage
        entry; ``calendar_day`` allows one reminder per day while it stays
        overdue. The stamp is written by a guarded UPDATE, so two sweeps
        running together notify once.
        """
        threshold_hours = threshold_hours or settings.ESCALATION_THRESHOLD_HOURS
        dedup = dedup or EscalationDedupScope(settings.ESCALATION_DEDUP_SCOPE)
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=threshold_hours)

        result = await db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.status.in_(PENDING_STATUSES),
                LeaveRequest.stage_entered_at < cutoff,
            )
            .order_by(LeaveRequest.stage_entered_at.asc())
            .execution_options(populate_existing=True)
        )
        candidates = list(result.scalars().all())
        run = EscalationRunResult(scanned=len(candidates))

        if dedup == EscalationDedupScope.calendar_day:
            not_yet = or_(
                LeaveRequest.escalated_at.is_(None),
                LeaveRequest.escalated_at < datetime.combine(now.date(), time.min, tzinfo=timezone.utc),
            )
        else:
            not_yet = or_(
                LeaveRequest.escalated_at.is_(None),
                LeaveRequest.escalated_at < LeaveRequest.stage_entered_at,
            )

        for leave_req in candidates:
            if OverdueEscalation.already_escalated(leave_req, dedup, now):
                continue

            idle_hours = int((now - _as_utc(leave_req.stage_entered_at)).total_seconds() // 3600)
            reason = (
                f"Pending in {leave_req.status.value} for {idle_hours}h "
                f"(threshold {threshold_hours}h)"
            )
            stamped = await db.execute(
                update(LeaveRequest)
                .where(
                    LeaveRequest.id == leave_req.id,
                    LeaveRequest.status == leave_req.status,
                    LeaveRequest.version == leave_req.version,
                    not_yet,
                )
                .values(
                    escalated_at=now,
                    escalation_count=LeaveRequest.escalation_count + 1,
                    irregular_flag=True,
                    irregular_reason=reason,
                )
                .execution_options(synchronize_session=False)
            )
            if stamped.rowcount == 0:  # type: ignore[attr-defined]
                continue

            for reviewer_id in await RequestWorkflow.stage_reviewers(db, leave_req):
                outbox.add(
                    reviewer_id,
                    NotificationType.reminder,
                    "Overdue leave request",
                    f"A leave request from {leave_req.from_date.isoformat()} has been "
                    f"waiting {idle_hours} hours for your review.",
                    entity_type="leave_request",
                    entity_id=leave_req.id,
                    action_url=f"/leave/requests/{leave_req.id}",
                )
            await create_audit_entry(
                db,
                action="escalate",
                entity_type="leave_request",
                entity_id=leave_req.id,
                actor_id=SYSTEM_ACTOR_ID,
                new_values={"status": leave_req.status, "idle_hours": idle_hours, "dedup": dedup},
            )
            run.escalated += 1
            run.request_ids.append(leave_req.id)

        logger.info(
            "Escalation sweep: %d overdue, %d escalated (threshold=%sh, dedup=%s)",
            run.scanned, run.escalated, threshold_hours, dedup.value,
        )
        return run

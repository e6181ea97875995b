"""Leave request workflow — submission, manager and HR stages, cancellation.

Legal moves live in ``TRANSITIONS``, keyed by ``(current status, action)``.
Each entry names the target status and who may take it. Every transition is
one conditional UPDATE on ``status`` and ``version``; if another writer got
there first the UPDATE matches nothing and the caller gets a ConflictError.

Balance effects:
  - HR approval debits the entitlement (the debit guard can abort the approval)
  - cancelling an HR-approved request credits the consumed days back
  - nothing else touches the ledger
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.auth.identity import Actor
from hr_leave.common.audit import create_audit_entry
from hr_leave.common.constants import (
    HrDecision,
    LeaveRequestStatus,
    NotificationType,
    UserRole,
    WorkflowAction,
)
from hr_leave.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    NotFoundError,
    PolicyViolation,
    StateTransitionError,
    ValidationError,
)
from hr_leave.common.pagination import PaginationParams, paginate
from hr_leave.config import settings
from hr_leave.core_hr.models import Employee
from hr_leave.core_hr.service import EmployeeDirectory
from hr_leave.leave.duration import DurationResult, DurationRules, compute_duration
from hr_leave.leave.ledger import EntitlementLedger
from hr_leave.leave.models import Entitlement, LeaveRequest, LeaveRequestEvent, LeaveType
from hr_leave.leave.schemas import (
    BulkFinalizeError,
    BulkFinalizeOut,
    LeaveRequestCorrection,
    LeaveRequestCreate,
    LeaveRequestListResponse,
    LeaveRequestOut,
    LeaveRequestQuery,
)
from hr_leave.leave_calendar.service import CalendarService
from hr_leave.notifications.service import NotificationOutbox

logger = logging.getLogger(__name__)

S = LeaveRequestStatus
A = WorkflowAction

# Requests in these states hold their dates against new submissions
ACTIVE_STATUSES = (S.submitted, S.manager_approved, S.returned_for_correction, S.hr_approved)
PENDING_STATUSES = (S.submitted, S.manager_approved)


# ═════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Transition:
    target: LeaveRequestStatus
    roles: frozenset[UserRole] = frozenset()
    # The requesting employee may take this action regardless of role
    owner: bool = False
    # Managers must be the requester's reporting or L2 manager (HR is exempt)
    line_manager: bool = False


_MANAGER = frozenset({UserRole.manager})
_HR = frozenset({UserRole.hr_admin})
_REVIEWER = frozenset({UserRole.manager, UserRole.hr_admin})

TRANSITIONS: dict[tuple[LeaveRequestStatus, WorkflowAction], Transition] = {
    (S.submitted, A.manager_approve): Transition(S.manager_approved, _MANAGER, line_manager=True),
    (S.submitted, A.manager_reject): Transition(S.manager_rejected, _MANAGER, line_manager=True),
    (S.submitted, A.return_for_correction): Transition(
        S.returned_for_correction, _REVIEWER, line_manager=True,
    ),
    (S.manager_approved, A.return_for_correction): Transition(
        S.returned_for_correction, _REVIEWER, line_manager=True,
    ),
    (S.manager_approved, A.hr_approve): Transition(S.hr_approved, _HR),
    (S.manager_approved, A.hr_reject): Transition(S.hr_rejected, _HR),
    (S.returned_for_correction, A.resubmit): Transition(S.submitted, owner=True),
    (S.submitted, A.cancel): Transition(S.cancelled, _HR, owner=True),
    (S.manager_approved, A.cancel): Transition(S.cancelled, _HR, owner=True),
    (S.returned_for_correction, A.cancel): Transition(S.cancelled, _HR, owner=True),
    (S.hr_approved, A.cancel): Transition(S.cancelled, _HR, owner=True),
}

# The action has already taken effect; repeating it is a conflict, not a bad move
ALREADY_APPLIED: frozenset[tuple[LeaveRequestStatus, WorkflowAction]] = frozenset({
    (S.manager_approved, A.manager_approve),
    (S.manager_rejected, A.manager_reject),
    (S.returned_for_correction, A.return_for_correction),
    (S.submitted, A.resubmit),
    (S.hr_approved, A.hr_approve),
    (S.hr_approved, A.hr_reject),
    (S.hr_rejected, A.hr_approve),
    (S.hr_rejected, A.hr_reject),
    (S.cancelled, A.cancel),
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# RequestWorkflow
# ═════════════════════════════════════════════════════════════════════


class RequestWorkflow:
    """Async leave request state machine."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundError("LeaveRequest", request_id)
        return leave_req

    @staticmethod
    async def _authorize(
        db: AsyncSession,
        leave_req: LeaveRequest,
        action: WorkflowAction,
        actor: Actor,
        expected_version: Optional[int],
    ) -> Transition:
        """Resolve the transition for the request's current state and check the actor."""
        key = (leave_req.status, action)
        transition = TRANSITIONS.get(key)
        if transition is None:
            if key in ALREADY_APPLIED:
                raise ConflictError(
                    f"Leave request is already {leave_req.status.value}.",
                    rule="already_applied",
                )
            raise StateTransitionError(leave_req.status.value, action.value)

        if expected_version is not None and expected_version != leave_req.version:
            raise ConflictError(
                f"Leave request is at version {leave_req.version}, not {expected_version}.",
                rule="stale_version",
            )

        is_owner = actor.employee_id == leave_req.employee_id
        if transition.owner and is_owner:
            return transition
        if is_owner and transition.roles:
            raise ForbiddenException("You cannot review your own leave request.")
        if not actor.has_any_role(transition.roles):
            raise ForbiddenException(
                f"Role '{actor.role.value}' cannot {action.value.replace('_', ' ')} this request."
            )
        if transition.line_manager and not actor.is_hr:
            if not await EmployeeDirectory.is_manager_of(db, actor.employee_id, leave_req.employee_id):
                raise ForbiddenException("You are not a manager of this employee.")
        return transition

    @staticmethod
    async def _apply_transition(
        db: AsyncSession,
        leave_req: LeaveRequest,
        action: WorkflowAction,
        transition: Transition,
        actor: Actor,
        *,
        reason: Optional[str] = None,
        values: Optional[dict[str, Any]] = None,
    ) -> LeaveRequest:
        """Move the request with a status+version guarded UPDATE and record it."""
        now = _utcnow()
        from_status = leave_req.status
        observed_version = leave_req.version

        result = await db.execute(
            update(LeaveRequest)
            .where(
                LeaveRequest.id == leave_req.id,
                LeaveRequest.status == from_status,
                LeaveRequest.version == observed_version,
            )
            .values(
                status=transition.target,
                version=LeaveRequest.version + 1,
                stage_entered_at=now,
                updated_at=now,
                **(values or {}),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise ConflictError(
                "Leave request changed since it was read; refresh and retry.",
                rule="stale_version",
            )

        db.add(LeaveRequestEvent(
            leave_request_id=leave_req.id,
            action=action.value,
            from_status=from_status,
            to_status=transition.target,
            actor_id=actor.employee_id,
            actor_role=actor.role.value,
            reason=reason,
            created_at=now,
        ))
        await db.flush()

        await create_audit_entry(
            db,
            action=action.value,
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor.employee_id,
            old_values={"status": from_status, "version": observed_version},
            new_values={"status": transition.target, "reason": reason, **(values or {})},
        )
        logger.info(
            "Leave request %s: %s -> %s by %s (%s)",
            leave_req.id, from_status.value, transition.target.value,
            actor.employee_id, actor.role.value,
        )
        return await RequestWorkflow._load(db, leave_req.id)

    @staticmethod
    async def stage_reviewers(db: AsyncSession, leave_req: LeaveRequest) -> list[uuid.UUID]:
        """Who must act next: the line manager while SUBMITTED, HR once manager-approved."""
        if leave_req.status == S.submitted:
            employee = await EmployeeDirectory.get_employee(
                db, leave_req.employee_id, active_only=False,
            )
            manager = employee.reporting_manager_id or employee.l2_manager_id
            if manager is not None:
                return [manager]
        return list(await EmployeeDirectory.get_role_holders(db, UserRole.hr_admin))

    @staticmethod
    def _request_link(leave_req: LeaveRequest) -> str:
        return f"/leave/requests/{leave_req.id}"

    @staticmethod
    async def _notify_reviewers(
        db: AsyncSession,
        leave_req: LeaveRequest,
        outbox: NotificationOutbox,
        title: str,
    ) -> None:
        for reviewer_id in await RequestWorkflow.stage_reviewers(db, leave_req):
            outbox.add(
                reviewer_id,
                NotificationType.action_required,
                title,
                f"{leave_req.duration_days} day(s) from {leave_req.from_date.isoformat()} "
                f"to {leave_req.to_date.isoformat()} await your review.",
                entity_type="leave_request",
                entity_id=leave_req.id,
                action_url=RequestWorkflow._request_link(leave_req),
            )

    @staticmethod
    def _notify_owner(
        leave_req: LeaveRequest,
        outbox: NotificationOutbox,
        type: NotificationType,
        title: str,
        message: str,
    ) -> None:
        outbox.add(
            leave_req.employee_id,
            type,
            title,
            message,
            entity_type="leave_request",
            entity_id=leave_req.id,
            action_url=RequestWorkflow._request_link(leave_req),
        )

    # ─────────────────────────────────────────────────────────────────
    # Request evaluation (submit / resubmit / preview)
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _check_eligibility(employee: Employee, leave_type: LeaveType, today: date) -> None:
        if leave_type.min_tenure_months and employee.tenure_months(today) < leave_type.min_tenure_months:
            raise PolicyViolation(
                "eligibility",
                f"{leave_type.name} requires {leave_type.min_tenure_months} months of service.",
                retryable=False,
            )
        types = leave_type.eligible_employment_types or []
        if types and employee.employment_type.value not in types:
            raise PolicyViolation(
                "eligibility",
                f"{leave_type.name} is not available for {employee.employment_type.value} employees.",
                retryable=False,
            )
        statuses = leave_type.eligible_employment_statuses or []
        if statuses and employee.employment_status.value not in statuses:
            raise PolicyViolation(
                "eligibility",
                f"{leave_type.name} is not available during {employee.employment_status.value}.",
                retryable=False,
            )
        if leave_type.applicable_gender and employee.gender != leave_type.applicable_gender:
            raise PolicyViolation(
                "eligibility",
                f"{leave_type.name} is only applicable to {leave_type.applicable_gender.value} employees.",
                retryable=False,
            )

    @staticmethod
    async def _leave_type_with_policy(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveType:
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundError("LeaveType", leave_type_id)
        if not leave_type.is_active:
            raise PolicyViolation(
                "leave_type_inactive",
                f"Leave type {leave_type.code} is no longer available.",
                retryable=False,
            )
        if leave_type.policy is None:
            raise NotFoundError("LeavePolicy", leave_type_id)
        return leave_type

    @staticmethod
    async def _duration(
        db: AsyncSession,
        leave_type: LeaveType,
        from_date: date,
        to_date: date,
        *,
        today: date,
        post_leave: bool,
        blocked_exception: bool,
    ) -> DurationResult:
        if post_leave:
            if from_date > today:
                raise ValidationError(
                    {"from_date": ["A post-leave request must cover leave that has already started."]}
                )
            elapsed = (today - to_date).days
            if elapsed > settings.POST_LEAVE_MAX_DAYS:
                raise PolicyViolation(
                    "post_leave_window",
                    f"Post-leave requests must be submitted within {settings.POST_LEAVE_MAX_DAYS} "
                    f"days after the leave ends; this leave ended {elapsed} days ago.",
                    retryable=False,
                )
        snapshot = await CalendarService.load_snapshot(db, from_date, to_date)
        return compute_duration(
            from_date,
            to_date,
            snapshot,
            DurationRules.from_policy(leave_type.policy, leave_type),
            today=today,
            post_leave=post_leave,
            blocked_exception=blocked_exception,
        )

    @staticmethod
    async def _evaluate(
        db: AsyncSession,
        employee: Employee,
        leave_type: LeaveType,
        *,
        from_date: date,
        to_date: date,
        post_leave: bool,
        blocked_exception: bool,
        attachment_id: Optional[str],
        today: date,
        exclude_request_id: Optional[uuid.UUID] = None,
    ) -> tuple[DurationResult, Optional[uuid.UUID]]:
        """Run every submission check; return the duration and the entitlement to charge."""
        RequestWorkflow._check_eligibility(employee, leave_type, today)

        duration = await RequestWorkflow._duration(
            db, leave_type, from_date, to_date,
            today=today, post_leave=post_leave, blocked_exception=blocked_exception,
        )
        duration.raise_for_violations()
        if duration.days <= 0:
            raise ValidationError(
                {"to_date": ["The selected range contains no working days."]}
            )

        if leave_type.requires_attachment and not attachment_id:
            threshold = leave_type.attachment_required_after_days
            if threshold is None or duration.days > threshold:
                raise ValidationError({
                    "attachment_id": [
                        f"A {leave_type.attachment_type or 'supporting document'} is required "
                        f"for {leave_type.name}."
                    ]
                })

        overlap_q = select(LeaveRequest.id).where(
            LeaveRequest.employee_id == employee.id,
            LeaveRequest.status.in_(ACTIVE_STATUSES),
            LeaveRequest.from_date <= to_date,
            LeaveRequest.to_date >= from_date,
        )
        if exclude_request_id is not None:
            overlap_q = overlap_q.where(LeaveRequest.id != exclude_request_id)
        if (await db.execute(overlap_q.limit(1))).scalar() is not None:
            raise ConflictError(
                "You already have a leave request overlapping these dates.",
                field="from_date",
                rule="overlap",
            )

        if not leave_type.is_deductible:
            return duration, None

        entitlement_id = (
            await db.execute(
                select(Entitlement.id).where(
                    Entitlement.employee_id == employee.id,
                    Entitlement.leave_type_id == leave_type.id,
                    Entitlement.is_active.is_(True),
                    Entitlement.period_start <= from_date,
                    Entitlement.period_end >= from_date,
                )
            )
        ).scalar()
        if entitlement_id is None:
            raise NotFoundError("Entitlement", f"{employee.id}/{leave_type.code}/{from_date.isoformat()}")
        return duration, entitlement_id

    @staticmethod
    async def preview_duration(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        from_date: date,
        to_date: date,
        *,
        post_leave: bool = False,
        blocked_exception: bool = False,
        today: Optional[date] = None,
    ) -> DurationResult:
        """Chargeable days and rule violations for a range, without submitting."""
        leave_type = await RequestWorkflow._leave_type_with_policy(db, leave_type_id)
        return await RequestWorkflow._duration(
            db, leave_type, from_date, to_date,
            today=today or date.today(),
            post_leave=post_leave,
            blocked_exception=blocked_exception,
        )

    # ─────────────────────────────────────────────────────────────────
    # Submit / Resubmit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def submit(
        db: AsyncSession,
        actor: Actor,
        data: LeaveRequestCreate,
        *,
        outbox: NotificationOutbox,
        today: Optional[date] = None,
    ) -> LeaveRequest:
        """Create a request in SUBMITTED with a server-computed duration.

        The balance is not checked here; it is enforced when HR approves.
        """
        today = today or date.today()
        employee = await EmployeeDirectory.get_employee(db, actor.employee_id)
        leave_type = await RequestWorkflow._leave_type_with_policy(db, data.leave_type_id)

        duration, entitlement_id = await RequestWorkflow._evaluate(
            db,
            employee,
            leave_type,
            from_date=data.from_date,
            to_date=data.to_date,
            post_leave=data.post_leave,
            blocked_exception=data.blocked_period_exception,
            attachment_id=data.attachment_id,
            today=today,
        )

        now = _utcnow()
        leave_req = LeaveRequest(
            employee_id=employee.id,
            leave_type_id=leave_type.id,
            entitlement_id=entitlement_id,
            from_date=data.from_date,
            to_date=data.to_date,
            duration_days=duration.days,
            justification=data.justification,
            attachment_id=data.attachment_id,
            post_leave=data.post_leave,
            blocked_period_exception=data.blocked_period_exception,
            status=S.submitted,
            version=1,
            stage_entered_at=now,
            submitted_at=now,
            consumed_days=Decimal("0"),
            irregular_flag=False,
            escalation_count=0,
            created_at=now,
            updated_at=now,
        )
        db.add(leave_req)
        await db.flush()

        db.add(LeaveRequestEvent(
            leave_request_id=leave_req.id,
            action=A.submit.value,
            from_status=None,
            to_status=S.submitted,
            actor_id=actor.employee_id,
            actor_role=actor.role.value,
            reason=data.justification,
            created_at=now,
        ))
        await db.flush()

        await create_audit_entry(
            db,
            action=A.submit.value,
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor.employee_id,
            new_values={
                "leave_type": leave_type.code,
                "from_date": data.from_date,
                "to_date": data.to_date,
                "duration_days": duration.days,
                "post_leave": data.post_leave,
            },
        )

        leave_req = await RequestWorkflow._load(db, leave_req.id)
        await RequestWorkflow._notify_reviewers(
            db, leave_req, outbox, f"Leave request from {employee.full_name}",
        )
        logger.info(
            "Leave request %s submitted by %s: %s day(s) of %s",
            leave_req.id, employee.id, duration.days, leave_type.code,
        )
        return leave_req

    @staticmethod
    async def resubmit(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        corrections: LeaveRequestCorrection,
        *,
        outbox: NotificationOutbox,
        today: Optional[date] = None,
    ) -> LeaveRequest:
        """Re-enter SUBMITTED after correction, re-deriving the duration.

        Any earlier manager decision is cleared: the corrected request is
        reviewed from the start.
        """
        today = today or date.today()
        leave_req = await RequestWorkflow._load(db, request_id)
        transition = await RequestWorkflow._authorize(
            db, leave_req, A.resubmit, actor, corrections.expected_version,
        )

        employee = await EmployeeDirectory.get_employee(db, leave_req.employee_id)
        leave_type = await RequestWorkflow._leave_type_with_policy(db, leave_req.leave_type_id)

        from_date = corrections.from_date or leave_req.from_date
        to_date = corrections.to_date or leave_req.to_date
        attachment_id = corrections.attachment_id or leave_req.attachment_id
        blocked_exception = (
            corrections.blocked_period_exception
            if corrections.blocked_period_exception is not None
            else leave_req.blocked_period_exception
        )

        duration, entitlement_id = await RequestWorkflow._evaluate(
            db,
            employee,
            leave_type,
            from_date=from_date,
            to_date=to_date,
            post_leave=leave_req.post_leave,
            blocked_exception=blocked_exception,
            attachment_id=attachment_id,
            today=today,
            exclude_request_id=leave_req.id,
        )

        leave_req = await RequestWorkflow._apply_transition(
            db,
            leave_req,
            A.resubmit,
            transition,
            actor,
            reason=corrections.justification,
            values={
                "from_date": from_date,
                "to_date": to_date,
                "duration_days": duration.days,
                "justification": corrections.justification or leave_req.justification,
                "attachment_id": attachment_id,
                "blocked_period_exception": blocked_exception,
                "entitlement_id": entitlement_id,
                "submitted_at": _utcnow(),
                "manager_id": None,
                "manager_decided_at": None,
            },
        )
        await RequestWorkflow._notify_reviewers(
            db, leave_req, outbox, f"Corrected leave request from {employee.full_name}",
        )
        return leave_req

    # ─────────────────────────────────────────────────────────────────
    # Manager stage
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def manager_approve(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        *,
        outbox: NotificationOutbox,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> LeaveRequest:
        leave_req = await RequestWorkflow._load(db, request_id)
        transition = await RequestWorkflow._authorize(
            db, leave_req, A.manager_approve, actor, expected_version,
        )
        leave_req = await RequestWorkflow._apply_transition(
            db, leave_req, A.manager_approve, transition, actor,
            reason=reason,
            values={"manager_id": actor.employee_id, "manager_decided_at": _utcnow()},
        )
        RequestWorkflow._notify_owner(
            leave_req, outbox, NotificationType.info,
            "Leave approved by manager",
            "Your leave request was approved by your manager and is awaiting HR.",
        )
        await RequestWorkflow._notify_reviewers(db, leave_req, outbox, "Leave request awaiting HR")
        return leave_req

    @staticmethod
    async def manager_reject(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        *,
        outbox: NotificationOutbox,
        reason: str,
        expected_version: Optional[int] = None,
    ) -> LeaveRequest:
        """Terminal rejection at the manager stage. No balance effect."""
        if not (reason or "").strip():
            raise ValidationError({"reason": ["A reason is required to reject a request."]})
        leave_req = await RequestWorkflow._load(db, request_id)
        transition = await RequestWorkflow._authorize(
            db, leave_req, A.manager_reject, actor, expected_version,
        )
        leave_req = await RequestWorkflow._apply_transition(
            db, leave_req, A.manager_reject, transition, actor,
            reason=reason,
            values={
                "manager_id": actor.employee_id,
                "manager_decided_at": _utcnow(),
                "rejection_reason": reason,
            },
        )
        RequestWorkflow._notify_owner(
            leave_req, outbox, NotificationType.alert,
            "Leave rejected", f"Your leave request was rejected: {reason}",
        )
        return leave_req

    @staticmethod
    async def return_for_correction(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        *,
        outbox: NotificationOutbox,
        reason: str,
        expected_version: Optional[int] = None,
    ) -> LeaveRequest:
        if not (reason or "").strip():
            raise ValidationError({"reason": ["A reason is required to return a request."]})
        leave_req = await RequestWorkflow._load(db, request_id)
        transition = await RequestWorkflow._authorize(
            db, leave_req, A.return_for_correction, actor, expected_version,
        )
        leave_req = await RequestWorkflow._apply_transition(
            db, leave_req, A.return_for_correction, transition, actor,
            reason=reason,
            values={"return_reason": reason},
        )
        RequestWorkflow._notify_owner(
            leave_req, outbox, NotificationType.action_required,
            "Leave request returned", f"Please correct and resubmit: {reason}",
        )
        return leave_req

    # ─────────────────────────────────────────────────────────────────
    # HR stage
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def hr_finalize(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        decision: HrDecision,
        *,
        outbox: NotificationOutbox,
        allow_negative: bool = False,
        reason: Optional[str] = None,
        is_override: bool = False,
        expected_version: Optional[int] = None,
    ) -> LeaveRequest:
        """Approve (debiting the entitlement) or reject a manager-approved request.

        A failed debit raises PolicyViolation and the request stays
        MANAGER_APPROVED. Finalizing twice raises ConflictError.
        """
        action = A.hr_approve if decision == HrDecision.approve else A.hr_reject
        leave_req = await RequestWorkflow._load(db, request_id)
        transition = await RequestWorkflow._authorize(db, leave_req, action, actor, expected_version)

        if decision == HrDecision.reject:
            if not (reason or "").strip():
                raise ValidationError({"reason": ["A reason is required to reject a request."]})
            leave_req = await RequestWorkflow._apply_transition(
                db, leave_req, action, transition, actor,
                reason=reason,
                values={
                    "hr_reviewer_id": actor.employee_id,
                    "hr_decided_at": _utcnow(),
                    "rejection_reason": reason,
                },
            )
            RequestWorkflow._notify_owner(
                leave_req, outbox, NotificationType.alert,
                "Leave rejected by HR", f"Your leave request was rejected: {reason}",
            )
            return leave_req

        consumed = Decimal("0")
        # Debit and status change land together or not at all
        async with db.begin_nested():
            if leave_req.entitlement_id is not None:
                await EntitlementLedger.debit(
                    db,
                    leave_req.entitlement_id,
                    leave_req.duration_days,
                    reason=reason or f"Leave {leave_req.from_date.isoformat()} to {leave_req.to_date.isoformat()}",
                    actor_id=actor.employee_id,
                    allow_negative=allow_negative,
                    is_override=is_override,
                    leave_request_id=leave_req.id,
                )
                consumed = leave_req.duration_days

            leave_req = await RequestWorkflow._apply_transition(
                db, leave_req, action, transition, actor,
                reason=reason,
                values={
                    "hr_reviewer_id": actor.employee_id,
                    "hr_decided_at": _utcnow(),
                    "consumed_days": consumed,
                },
            )

        RequestWorkflow._notify_owner(
            leave_req, outbox, NotificationType.approval,
            "Leave approved",
            f"Your leave from {leave_req.from_date.isoformat()} to "
            f"{leave_req.to_date.isoformat()} is approved.",
        )
        return leave_req

    @staticmethod
    async def bulk_finalize(
        db: AsyncSession,
        request_ids: list[uuid.UUID],
        actor: Actor,
        decision: HrDecision,
        *,
        outbox: NotificationOutbox,
        reason: Optional[str] = None,
    ) -> BulkFinalizeOut:
        """Run ``hr_finalize`` for each request, collecting failures instead of stopping.

        Each request is finalized in its own savepoint, so one failure leaves
        the others untouched.
        """
        reason = (reason or "").strip() or f"Bulk {decision.value} by HR"
        processed: list[uuid.UUID] = []
        errors: list[BulkFinalizeError] = []

        for request_id in request_ids:
            try:
                async with db.begin_nested():
                    await RequestWorkflow.hr_finalize(
                        db, request_id, actor, decision, outbox=outbox, reason=reason,
                    )
            except AppException as exc:
                logger.warning(
                    "Bulk %s skipped request %s: %s", decision.value, request_id, exc.detail,
                )
                errors.append(BulkFinalizeError(request_id=request_id, rule=exc.rule, detail=exc.detail))
                continue
            processed.append(request_id)

        logger.info(
            "Bulk %s by %s: %d of %d processed",
            decision.value, actor.employee_id, len(processed), len(request_ids),
        )
        return BulkFinalizeOut(
            total=len(request_ids),
            processed=len(processed),
            ids=processed,
            errors=errors,
        )

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        *,
        outbox: NotificationOutbox,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> LeaveRequest:
        """Cancel a pending or approved request; approved leave is credited back."""
        leave_req = await RequestWorkflow._load(db, request_id)
        transition = await RequestWorkflow._authorize(db, leave_req, A.cancel, actor, expected_version)

        if leave_req.status == S.hr_approved and leave_req.consumed_days > 0:
            await EntitlementLedger.credit(
                db,
                leave_req.entitlement_id,
                leave_req.consumed_days,
                reason=reason or "Approved leave cancelled",
                actor_id=actor.employee_id,
                leave_request_id=leave_req.id,
            )

        leave_req = await RequestWorkflow._apply_transition(
            db, leave_req, A.cancel, transition, actor,
            reason=reason,
            values={"cancelled_by": actor.employee_id, "cancelled_at": _utcnow()},
        )
        if actor.employee_id != leave_req.employee_id:
            RequestWorkflow._notify_owner(
                leave_req, outbox, NotificationType.alert,
                "Leave cancelled", f"Your leave request was cancelled: {reason or 'no reason given'}",
            )
        return leave_req

    # ─────────────────────────────────────────────────────────────────
    # Irregularity flag
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def flag_irregular(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
        *,
        flag: bool = True,
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        """Mark or clear a request as irregular. Not a stage change."""
        leave_req = await RequestWorkflow._load(db, request_id)
        if not actor.is_hr and not await EmployeeDirectory.is_manager_of(
            db, actor.employee_id, leave_req.employee_id,
        ):
            raise ForbiddenException("Only HR or the employee's manager can flag a request.")

        old = {"irregular_flag": leave_req.irregular_flag, "irregular_reason": leave_req.irregular_reason}
        await db.execute(
            update(LeaveRequest)
            .where(LeaveRequest.id == leave_req.id)
            .values(
                irregular_flag=flag,
                irregular_reason=reason if flag else None,
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await create_audit_entry(
            db,
            action="flag_irregular",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor.employee_id,
            old_values=old,
            new_values={"irregular_flag": flag, "irregular_reason": reason if flag else None},
        )
        return await RequestWorkflow._load(db, leave_req.id)

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Actor,
    ) -> LeaveRequest:
        leave_req = await RequestWorkflow._load(db, request_id)
        if actor.employee_id == leave_req.employee_id or actor.is_hr:
            return leave_req
        if await EmployeeDirectory.is_manager_of(db, actor.employee_id, leave_req.employee_id):
            return leave_req
        raise ForbiddenException("You cannot view this leave request.")

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        actor: Actor,
        query: LeaveRequestQuery,
        pagination: PaginationParams,
    ) -> LeaveRequestListResponse:
        """List requests visible to *actor*.

        Scopes:
          - my: own requests only
          - team: requests of direct and L2 reports
          - all: every request (HR only)
        """
        stmt = select(LeaveRequest).order_by(LeaveRequest.created_at.desc())

        if query.scope == "my":
            stmt = stmt.where(LeaveRequest.employee_id == actor.employee_id)
        elif query.scope == "team":
            reports = select(Employee.id).where(
                or_(
                    Employee.reporting_manager_id == actor.employee_id,
                    Employee.l2_manager_id == actor.employee_id,
                )
            )
            stmt = stmt.where(LeaveRequest.employee_id.in_(reports))
        elif not actor.is_hr:
            raise ForbiddenException("Only HR can list all leave requests.")

        if query.employee_id is not None and query.scope != "my":
            stmt = stmt.where(LeaveRequest.employee_id == query.employee_id)
        if query.status is not None:
            stmt = stmt.where(LeaveRequest.status == query.status)
        if query.leave_type_id is not None:
            stmt = stmt.where(LeaveRequest.leave_type_id == query.leave_type_id)
        if query.from_date is not None:
            stmt = stmt.where(LeaveRequest.to_date >= query.from_date)
        if query.to_date is not None:
            stmt = stmt.where(LeaveRequest.from_date <= query.to_date)
        if query.irregular_only:
            stmt = stmt.where(LeaveRequest.irregular_flag.is_(True))

        rows, meta = await paginate(db, stmt, pagination, model=LeaveRequest)
        return LeaveRequestListResponse(
            data=[LeaveRequestOut.model_validate(r) for r in rows],
            meta=meta,
        )

    @staticmethod
    async def get_pending_for_manager(
        db: AsyncSession,
        manager_id: uuid.UUID,
    ) -> list[LeaveRequest]:
        """SUBMITTED requests of the manager's direct and L2 reports, oldest first."""
        reports = select(Employee.id).where(
            or_(
                Employee.reporting_manager_id == manager_id,
                Employee.l2_manager_id == manager_id,
            ),
            Employee.is_active.is_(True),
        )
        result = await db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.employee_id.in_(reports),
                LeaveRequest.status == S.submitted,
            )
            .order_by(LeaveRequest.stage_entered_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_pending_for_hr(db: AsyncSession) -> list[LeaveRequest]:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.status == S.manager_approved)
            .order_by(LeaveRequest.stage_entered_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def pending_days(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> dict[uuid.UUID, Decimal]:
        """Days requested but not yet finalized, per entitlement."""
        stmt = select(LeaveRequest.entitlement_id, LeaveRequest.duration_days).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status.in_(PENDING_STATUSES),
            LeaveRequest.entitlement_id.is_not(None),
        )
        totals: dict[uuid.UUID, Decimal] = {}
        for entitlement_id, days in (await db.execute(stmt)).all():
            totals[entitlement_id] = totals.get(entitlement_id, Decimal("0")) + Decimal(days)
        return totals

"""Leave administration — leave types, policies, entitlements and balances.

Balance components are never written here directly: entitlement sizing
goes through ``assign_entitlement`` and every balance change through the
ledger.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.common.audit import create_audit_entry
from hr_leave.common.constants import LeaveRequestStatus
from hr_leave.common.exceptions import ConflictError, NotFoundException
from hr_leave.config import settings
from hr_leave.core_hr.models import Employee
from hr_leave.core_hr.service import EmployeeDirectory
from hr_leave.leave.carry_forward import add_months
from hr_leave.leave.ledger import EntitlementKey, EntitlementLedger, LedgerFold, to_days
from hr_leave.leave.models import Entitlement, LeaveAdjustment, LeavePolicy, LeaveRequest, LeaveType
from hr_leave.leave.schemas import (
    AdjustmentCreate,
    EntitlementAssign,
    EntitlementOut,
    IrregularPatternOut,
    LeavePolicyIn,
    LeaveTypeCreate,
    TeamMemberBalancesOut,
)
from hr_leave.leave.workflow import RequestWorkflow

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# LeaveAdminService
# ═════════════════════════════════════════════════════════════════════


class LeaveAdminService:
    """Async leave administration: types, policies, entitlements, balances."""

    # ─────────────────────────────────────────────────────────────────
    # Leave types
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave_types(
        db: AsyncSession,
        *,
        active_only: bool = True,
    ) -> Sequence[LeaveType]:
        query = select(LeaveType).order_by(LeaveType.code)
        if active_only:
            query = query.where(LeaveType.is_active.is_(True))
        result = await db.execute(query)
        return result.scalars().all()

    @staticmethod
    async def get_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveType:
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)
        return leave_type

    @staticmethod
    async def create_leave_type(
        db: AsyncSession,
        data: LeaveTypeCreate,
        *,
        actor_id: uuid.UUID,
    ) -> LeaveType:
        code = data.code.strip().upper()
        existing = await db.execute(select(LeaveType.id).where(LeaveType.code == code))
        if existing.scalar() is not None:
            raise ConflictError(f"Leave type '{code}' already exists.", field="code")

        leave_type = LeaveType(
            code=code,
            name=data.name,
            description=data.description,
            category=data.category,
            is_paid=data.is_paid,
            is_deductible=data.is_deductible,
            requires_attachment=data.requires_attachment,
            attachment_type=data.attachment_type,
            attachment_required_after_days=data.attachment_required_after_days,
            min_tenure_months=data.min_tenure_months,
            max_duration_days=data.max_duration_days,
            eligible_employment_types=[t.value for t in data.eligible_employment_types],
            eligible_employment_statuses=[s.value for s in data.eligible_employment_statuses],
            applicable_gender=data.applicable_gender,
            is_active=True,
        )
        db.add(leave_type)
        await db.flush()

        if data.policy is not None:
            db.add(LeavePolicy(leave_type_id=leave_type.id, **data.policy.model_dump()))
            await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor_id,
            new_values={"code": code, "name": data.name, "is_deductible": data.is_deductible},
        )
        await db.refresh(leave_type, attribute_names=["policy"])
        return leave_type

    # ─────────────────────────────────────────────────────────────────
    # Policies
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_policy(db: AsyncSession, leave_type_id: uuid.UUID) -> LeavePolicy:
        result = await db.execute(
            select(LeavePolicy).where(LeavePolicy.leave_type_id == leave_type_id)
        )
        policy = result.scalars().first()
        if policy is None:
            raise NotFoundException("LeavePolicy", leave_type_id)
        return policy

    @staticmethod
    async def upsert_policy(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        data: LeavePolicyIn,
        *,
        actor_id: uuid.UUID,
    ) -> LeavePolicy:
        """Create or replace the policy of a leave type. Applies to future runs only."""
        await LeaveAdminService.get_leave_type(db, leave_type_id)
        result = await db.execute(
            select(LeavePolicy).where(LeavePolicy.leave_type_id == leave_type_id)
        )
        policy = result.scalars().first()
        old_values = None
        if policy is None:
            policy = LeavePolicy(leave_type_id=leave_type_id)
            db.add(policy)
        else:
            old_values = {k: getattr(policy, k) for k in LeavePolicyIn.model_fields}
        for key, value in data.model_dump().items():
            setattr(policy, key, value)
        await db.flush()

        await create_audit_entry(
            db,
            action="upsert_policy",
            entity_type="leave_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=data.model_dump(),
        )
        return policy

    # ─────────────────────────────────────────────────────────────────
    # Entitlements
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def assign_entitlement(
        db: AsyncSession,
        data: EntitlementAssign,
        *,
        actor_id: uuid.UUID,
    ) -> Entitlement:
        """Open an entitlement, or resize the yearly entitlement of an existing one.

        Only the yearly size is set here; days reach ``remaining`` through
        accrual, carry-forward and manual adjustments.
        """
        await EmployeeDirectory.get_employee(db, data.employee_id)
        await LeaveAdminService.get_leave_type(db, data.leave_type_id)
        key = EntitlementKey(data.employee_id, data.leave_type_id, data.leave_year)

        existing = await EntitlementLedger.find(db, key)
        if existing is None:
            entitlement = await EntitlementLedger.open_entitlement(
                db,
                key,
                period_start=data.period_start,
                period_end=data.period_end,
                yearly_entitlement=data.yearly_entitlement,
            )
            old_values = None
        else:
            old_values = {"yearly_entitlement": existing.yearly_entitlement}
            result = await db.execute(
                update(Entitlement)
                .where(
                    Entitlement.id == existing.id,
                    Entitlement.version == existing.version,
                )
                .values(
                    yearly_entitlement=to_days(data.yearly_entitlement),
                    period_start=data.period_start or existing.period_start,
                    period_end=data.period_end or existing.period_end,
                    is_active=True,
                    version=Entitlement.version + 1,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:  # type: ignore[attr-defined]
                raise ConflictError(
                    "Entitlement changed since it was read; refresh and retry.",
                    rule="stale_version",
                )
            entitlement = await EntitlementLedger.get_balance(db, existing.id)

        await create_audit_entry(
            db,
            action="assign_entitlement",
            entity_type="entitlement",
            entity_id=entitlement.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values={
                "leave_year": data.leave_year,
                "yearly_entitlement": data.yearly_entitlement,
            },
        )
        return entitlement

    @staticmethod
    async def create_adjustment(
        db: AsyncSession,
        data: AdjustmentCreate,
        *,
        actor_id: uuid.UUID,
    ) -> Entitlement:
        """Signed manual adjustment against an employee's entitlement for a year."""
        key = EntitlementKey(data.employee_id, data.leave_type_id, data.leave_year)
        before = await EntitlementLedger.get_balance(db, key)
        entitlement = await EntitlementLedger.adjust(
            db,
            before.id,
            data.amount,
            reason=data.reason,
            actor_id=actor_id,
            allow_negative=data.allow_negative,
        )
        await create_audit_entry(
            db,
            action="adjust",
            entity_type="entitlement",
            entity_id=entitlement.id,
            actor_id=actor_id,
            old_values={"remaining": before.remaining},
            new_values={
                "remaining": entitlement.remaining,
                "amount": data.amount,
                "reason": data.reason,
                "allow_negative": data.allow_negative,
            },
        )
        logger.info(
            "Manual adjustment of %s day(s) on entitlement %s by %s",
            data.amount, entitlement.id, actor_id,
        )
        return entitlement

    # ─────────────────────────────────────────────────────────────────
    # Balances and history
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_employee_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        year: Optional[int] = None,
    ) -> list[EntitlementOut]:
        """Active entitlements for the year, with days held by pending requests."""
        await EmployeeDirectory.get_employee(db, employee_id, active_only=False)
        year = year or date.today().year
        result = await db.execute(
            select(Entitlement)
            .where(
                Entitlement.employee_id == employee_id,
                Entitlement.leave_year == year,
                Entitlement.is_active.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        pending = await RequestWorkflow.pending_days(db, employee_id)

        balances = []
        for entitlement in result.scalars().all():
            out = EntitlementOut.model_validate(entitlement)
            out.pending_days = pending.get(entitlement.id, Decimal("0"))
            out.available = Decimal(entitlement.remaining) - out.pending_days
            balances.append(out)
        balances.sort(key=lambda b: b.leave_type.code if b.leave_type else "")
        return balances

    @staticmethod
    async def get_adjustment_history(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        leave_type_id: Optional[uuid.UUID] = None,
        leave_year: Optional[int] = None,
    ) -> Sequence[LeaveAdjustment]:
        query = (
            select(LeaveAdjustment)
            .where(LeaveAdjustment.employee_id == employee_id)
            .order_by(LeaveAdjustment.created_at, LeaveAdjustment.id)
        )
        if leave_type_id is not None:
            query = query.where(LeaveAdjustment.leave_type_id == leave_type_id)
        if leave_year is not None:
            query = query.where(LeaveAdjustment.leave_year == leave_year)
        result = await db.execute(query)
        return result.scalars().all()

    @staticmethod
    async def reconcile(
        db: AsyncSession,
        entitlement_id: uuid.UUID,
    ) -> tuple[Entitlement, LedgerFold]:
        """Compare the stored balance against a fold of its ledger entries."""
        entitlement = await EntitlementLedger.get_balance(db, entitlement_id)
        fold = await EntitlementLedger.rebuild_from_ledger(db, entitlement_id)
        if not fold.matches(entitlement):
            logger.error(
                "Entitlement %s drifted from its ledger: stored remaining=%s, folded=%s",
                entitlement_id, entitlement.remaining, fold.remaining,
            )
        return entitlement, fold

    # ─────────────────────────────────────────────────────────────────
    # Manager views
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def team_balances(
        db: AsyncSession,
        manager_id: uuid.UUID,
        *,
        year: Optional[int] = None,
        leave_type_id: Optional[uuid.UUID] = None,
    ) -> list[TeamMemberBalancesOut]:
        """Balances of every active direct and L2 report of *manager_id*."""
        team = []
        for employee in await EmployeeDirectory.get_reports(db, manager_id):
            balances = await LeaveAdminService.get_employee_balances(db, employee.id, year=year)
            if leave_type_id is not None:
                balances = [b for b in balances if b.leave_type_id == leave_type_id]
            team.append(TeamMemberBalancesOut(
                employee_id=employee.id,
                employee_name=employee.full_name,
                balances=balances,
            ))
        return team

    @staticmethod
    async def irregular_patterns(
        db: AsyncSession,
        *,
        today: date,
        manager_id: Optional[uuid.UUID] = None,
        category: Optional[str] = None,
        window_months: Optional[int] = None,
        threshold: Optional[int] = None,
    ) -> list[IrregularPatternOut]:
        """Employees with at least *threshold* requests of *category* starting in the window.

        Cancelled requests are not counted. With *manager_id* only that
        manager's reports are considered. Unset arguments come from settings.
        """
        category = category or settings.IRREGULAR_PATTERN_CATEGORY
        threshold = threshold or settings.IRREGULAR_PATTERN_THRESHOLD
        window_months = window_months or settings.IRREGULAR_PATTERN_WINDOW_MONTHS
        since = add_months(today, -window_months)
        query = (
            select(
                LeaveRequest.employee_id,
                func.count(LeaveRequest.id),
                func.min(LeaveRequest.from_date),
                func.max(LeaveRequest.from_date),
            )
            .join(LeaveType, LeaveType.id == LeaveRequest.leave_type_id)
            .where(
                func.lower(LeaveType.category) == category.lower(),
                LeaveRequest.from_date >= since,
                LeaveRequest.from_date <= today,
                LeaveRequest.status != LeaveRequestStatus.cancelled,
            )
            .group_by(LeaveRequest.employee_id)
            .having(func.count(LeaveRequest.id) >= threshold)
        )
        if manager_id is not None:
            reports = select(Employee.id).where(
                or_(
                    Employee.reporting_manager_id == manager_id,
                    Employee.l2_manager_id == manager_id,
                )
            )
            query = query.where(LeaveRequest.employee_id.in_(reports))

        rows = (await db.execute(query)).all()
        names = {}
        if rows:
            result = await db.execute(
                select(Employee).where(Employee.id.in_([r[0] for r in rows]))
            )
            names = {e.id: e.full_name for e in result.scalars().all()}

        patterns = [
            IrregularPatternOut(
                employee_id=employee_id,
                employee_name=names.get(employee_id, ""),
                request_count=count,
                first_from_date=first,
                last_from_date=last,
            )
            for employee_id, count, first, last in rows
        ]
        patterns.sort(key=lambda p: (-p.request_count, p.employee_name))
        if patterns:
            logger.info(
                "%d employee(s) with %d+ %s requests since %s",
                len(patterns), threshold, category, since,
            )
        return patterns

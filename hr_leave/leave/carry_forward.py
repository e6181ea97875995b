"""Carry-forward engine — year-boundary rollover with cap, expiry and override.

Preview, dry run and the committing run all go through ``plan_carry_forward``,
a pure function over a snapshot of candidate entitlements. The committing
run applies exactly the rows the plan produced.
"""

from __future__ import annotations

import calendar
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.common.audit import create_audit_entry
from hr_leave.common.exceptions import NotFoundError, ValidationError
from hr_leave.leave.ledger import EntitlementKey, EntitlementLedger, to_days
from hr_leave.leave.models import CarryForwardRecord, Entitlement, LeavePolicy, LeaveType

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

STATUS_CARRY = "carry"
STATUS_NOT_ALLOWED = "not_allowed"
STATUS_ALREADY_PROCESSED = "already_processed"


def add_months(day: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the target month's last day."""
    index = day.month - 1 + months
    year, month = day.year + index // 12, index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


# ═════════════════════════════════════════════════════════════════════
# Pure planning
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CarryForwardRules:
    """Run-level overrides; unset fields fall back to each leave policy."""

    cap: Optional[Decimal] = None
    expiry_months: Optional[int] = None
    source_year: Optional[int] = None
    leave_type_id: Optional[uuid.UUID] = None
    employee_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class CarryForwardCandidate:
    entitlement_id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_year: int
    remaining: Decimal
    carry_allowed: bool
    policy_cap: Optional[Decimal]
    policy_expiry_months: Optional[int]
    already_processed: bool
    target_remaining: Decimal


@dataclass(frozen=True)
class CarryForwardRow:
    entitlement_id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    source_year: int
    target_year: int
    previous_remaining: Decimal
    eligible_to_carry: Decimal
    carry_forward_days: Decimal
    expired_days: Decimal
    expiry_date: Optional[date]
    new_balance: Decimal
    status: str


@dataclass(frozen=True)
class CarryForwardSummary:
    rows: int
    carried: int
    total_carried: Decimal
    total_expired: Decimal


@dataclass(frozen=True)
class CarryForwardPlan:
    reference_date: date
    dry_run: bool
    rows: tuple[CarryForwardRow, ...]

    @property
    def summary(self) -> CarryForwardSummary:
        carried = [r for r in self.rows if r.status == STATUS_CARRY]
        return CarryForwardSummary(
            rows=len(self.rows),
            carried=len(carried),
            total_carried=sum((r.carry_forward_days for r in carried), ZERO),
            total_expired=sum((r.expired_days for r in carried), ZERO),
        )


def plan_carry_forward(
    candidates: Sequence[CarryForwardCandidate],
    reference_date: date,
    rules: CarryForwardRules,
    *,
    dry_run: bool = True,
) -> CarryForwardPlan:
    """Compute ``carry = min(max(remaining, 0), cap)`` for every candidate."""
    rows: list[CarryForwardRow] = []
    for c in candidates:
        target_year = c.leave_year + 1
        cap = rules.cap if rules.cap is not None else c.policy_cap
        expiry_months = (
            rules.expiry_months if rules.expiry_months is not None else c.policy_expiry_months
        )
        eligible = max(c.remaining, ZERO)

        if not c.carry_allowed:
            status, carry = STATUS_NOT_ALLOWED, ZERO
        elif c.already_processed:
            status, carry = STATUS_ALREADY_PROCESSED, ZERO
        else:
            status = STATUS_CARRY
            carry = eligible if cap is None else min(eligible, to_days(cap))

        expiry = (
            add_months(reference_date, expiry_months)
            if status == STATUS_CARRY and expiry_months
            else None
        )
        rows.append(CarryForwardRow(
            entitlement_id=c.entitlement_id,
            employee_id=c.employee_id,
            leave_type_id=c.leave_type_id,
            source_year=c.leave_year,
            target_year=target_year,
            previous_remaining=c.remaining,
            eligible_to_carry=eligible if status == STATUS_CARRY else ZERO,
            carry_forward_days=carry,
            expired_days=eligible - carry if status == STATUS_CARRY else ZERO,
            expiry_date=expiry,
            new_balance=c.target_remaining + carry,
            status=status,
        ))
    return CarryForwardPlan(reference_date=reference_date, dry_run=dry_run, rows=tuple(rows))


# ═════════════════════════════════════════════════════════════════════
# Report
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CarryForwardTypeTotal:
    leave_type_id: uuid.UUID
    records: int
    overridden: int
    total_days: Decimal


@dataclass
class CarryForwardReport:
    records: list[CarryForwardRecord] = field(default_factory=list)
    by_leave_type: list[CarryForwardTypeTotal] = field(default_factory=list)

    @property
    def total_days(self) -> Decimal:
        return sum((t.total_days for t in self.by_leave_type), ZERO)


# ═════════════════════════════════════════════════════════════════════
# CarryForwardEngine
# ═════════════════════════════════════════════════════════════════════


class CarryForwardEngine:
    """Year-end rollover of unused balances."""

    @staticmethod
    async def _gather(
        db: AsyncSession,
        reference_date: date,
        rules: CarryForwardRules,
    ) -> list[CarryForwardCandidate]:
        source_year = rules.source_year or reference_date.year
        target_year = source_year + 1

        query = (
            select(Entitlement, LeavePolicy)
            .join(LeavePolicy, LeavePolicy.leave_type_id == Entitlement.leave_type_id)
            .where(
                Entitlement.leave_year == source_year,
            )
            .order_by(Entitlement.employee_id, Entitlement.leave_type_id)
            .execution_options(populate_existing=True)
        )
        if rules.leave_type_id is not None:
            query = query.where(Entitlement.leave_type_id == rules.leave_type_id)
        if rules.employee_id is not None:
            query = query.where(Entitlement.employee_id == rules.employee_id)
        rows = (await db.execute(query)).all()

        processed = {
            (emp, lt)
            for emp, lt in (
                await db.execute(
                    select(CarryForwardRecord.employee_id, CarryForwardRecord.leave_type_id)
                    .where(CarryForwardRecord.target_year == target_year)
                )
            ).all()
        }
        target_remaining = {
            (emp, lt): rem
            for emp, lt, rem in (
                await db.execute(
                    select(
                        Entitlement.employee_id,
                        Entitlement.leave_type_id,
                        Entitlement.remaining,
                    ).where(Entitlement.leave_year == target_year)
                )
            ).all()
        }

        return [
            CarryForwardCandidate(
                entitlement_id=ent.id,
                employee_id=ent.employee_id,
                leave_type_id=ent.leave_type_id,
                leave_year=ent.leave_year,
                remaining=Decimal(ent.remaining),
                carry_allowed=bool(policy.carry_forward_allowed),
                policy_cap=policy.max_carry_forward,
                policy_expiry_months=policy.carry_forward_expiry_months,
                already_processed=(ent.employee_id, ent.leave_type_id) in processed,
                target_remaining=Decimal(
                    target_remaining.get((ent.employee_id, ent.leave_type_id), ZERO)
                ),
            )
            for ent, policy in rows
        ]

    @staticmethod
    async def preview_carry_forward(
        db: AsyncSession,
        reference_date: date,
        rules: Optional[CarryForwardRules] = None,
    ) -> CarryForwardPlan:
        """Compute the rollover without writing anything."""
        rules = rules or CarryForwardRules()
        candidates = await CarryForwardEngine._gather(db, reference_date, rules)
        return plan_carry_forward(candidates, reference_date, rules, dry_run=True)

    @staticmethod
    async def carry_forward(
        db: AsyncSession,
        reference_date: date,
        rules: Optional[CarryForwardRules] = None,
        *,
        dry_run: bool = False,
        actor_id: Optional[uuid.UUID] = None,
    ) -> CarryForwardPlan:
        """Roll unused balances into next year's entitlements.

        Entitlements whose target year already has a carry-forward record
        are reported as ``already_processed`` and left untouched.
        """
        rules = rules or CarryForwardRules()
        candidates = await CarryForwardEngine._gather(db, reference_date, rules)
        plan = plan_carry_forward(candidates, reference_date, rules, dry_run=dry_run)
        if dry_run:
            return plan

        for row in plan.rows:
            if row.status != STATUS_CARRY:
                continue
            source = await db.get(Entitlement, row.entitlement_id)
            target = await EntitlementLedger.open_entitlement(
                db,
                EntitlementKey(row.employee_id, row.leave_type_id, row.target_year),
                yearly_entitlement=source.yearly_entitlement if source else None,
            )
            if row.carry_forward_days > 0:
                await EntitlementLedger.post_carry_forward(
                    db,
                    target.id,
                    row.carry_forward_days,
                    reason=f"Carry forward from {row.source_year}",
                    actor_id=actor_id,
                )
            db.add(CarryForwardRecord(
                employee_id=row.employee_id,
                leave_type_id=row.leave_type_id,
                source_year=row.source_year,
                target_year=row.target_year,
                carry_forward_days=row.carry_forward_days,
                expiry_date=row.expiry_date,
                reason=f"Year-end carry forward ({reference_date.isoformat()})",
                overridden=False,
                actor_id=actor_id,
            ))
            await db.flush()

        summary = plan.summary
        logger.info(
            "Carry forward %s: %d/%d rows carried, %s days carried, %s expired",
            reference_date, summary.carried, summary.rows,
            summary.total_carried, summary.total_expired,
        )
        return plan

    @staticmethod
    async def override_carry_forward(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        days: Decimal,
        *,
        reason: str,
        actor_id: uuid.UUID,
        target_year: Optional[int] = None,
        expiry_date: Optional[date] = None,
    ) -> CarryForwardRecord:
        """Set the carried-forward days for a target year, bypassing cap and eligibility.

        The difference from what was carried before is posted as a MANUAL
        adjustment tagged as an override, so the ``carry_forward`` component
        keeps only what the rule-based run carried.
        """
        if not (reason or "").strip():
            raise ValidationError({"reason": ["A reason is required to override carry forward."]})
        days = to_days(days)
        if days < 0:
            raise ValidationError({"days": ["Carry-forward days cannot be negative."]})
        if await db.get(LeaveType, leave_type_id) is None:
            raise NotFoundError("LeaveType", leave_type_id)

        target_year = target_year or date.today().year
        target = await EntitlementLedger.open_entitlement(
            db, EntitlementKey(employee_id, leave_type_id, target_year),
        )
        record = (
            await db.execute(
                select(CarryForwardRecord).where(
                    CarryForwardRecord.employee_id == employee_id,
                    CarryForwardRecord.leave_type_id == leave_type_id,
                    CarryForwardRecord.target_year == target_year,
                )
            )
        ).scalars().first()
        old_days = record.carry_forward_days if record else None
        carried = Decimal(old_days if old_days is not None else target.carry_forward)

        delta = days - carried
        if delta != 0:
            await EntitlementLedger.adjust(
                db,
                target.id,
                delta,
                reason=f"Carry forward override: {reason}",
                actor_id=actor_id,
                allow_negative=True,
                is_override=True,
            )
        if record is None:
            record = CarryForwardRecord(
                employee_id=employee_id,
                leave_type_id=leave_type_id,
                source_year=target_year - 1,
                target_year=target_year,
            )
            db.add(record)
        record.carry_forward_days = days
        record.expiry_date = expiry_date
        record.reason = reason
        record.overridden = True
        record.actor_id = actor_id
        await db.flush()

        await create_audit_entry(
            db,
            action="override_carry_forward",
            entity_type="carry_forward_record",
            entity_id=record.id,
            actor_id=actor_id,
            old_values={"carry_forward_days": old_days},
            new_values={"carry_forward_days": days, "expiry_date": expiry_date, "reason": reason},
        )
        logger.warning(
            "Carry forward overridden for employee=%s type=%s year=%s: %s days (%s)",
            employee_id, leave_type_id, target_year, days, reason,
        )
        return record

    @staticmethod
    async def get_carry_forward_report(
        db: AsyncSession,
        *,
        target_year: Optional[int] = None,
        leave_type_id: Optional[uuid.UUID] = None,
        employee_id: Optional[uuid.UUID] = None,
    ) -> CarryForwardReport:
        query = select(CarryForwardRecord).order_by(
            CarryForwardRecord.target_year.desc(), CarryForwardRecord.employee_id,
        )
        if target_year is not None:
            query = query.where(CarryForwardRecord.target_year == target_year)
        if leave_type_id is not None:
            query = query.where(CarryForwardRecord.leave_type_id == leave_type_id)
        if employee_id is not None:
            query = query.where(CarryForwardRecord.employee_id == employee_id)
        records = list((await db.execute(query)).scalars().all())

        grouped: dict[uuid.UUID, list[CarryForwardRecord]] = defaultdict(list)
        for rec in records:
            grouped[rec.leave_type_id].append(rec)

        return CarryForwardReport(
            records=records,
            by_leave_type=[
                CarryForwardTypeTotal(
                    leave_type_id=lt_id,
                    records=len(recs),
                    overridden=sum(1 for r in recs if r.overridden),
                    total_days=sum((Decimal(r.carry_forward_days) for r in recs), ZERO),
                )
                for lt_id, recs in grouped.items()
            ],
        )

"""Leave-year reset: close each employee's current entitlement period and open the next.

Strategies decide where the new period starts:

* ``calendar_year`` — 1 January to 31 December of the reference year.
* ``hire_date``     — the work anniversary on or before the reference date.
* ``custom``        — twelve months starting on the reference date itself.

Only entitlements that already exist are renewed; first-time entitlements
come from ``LeaveAdminService.assign_entitlement``. The new period starts
empty and is credited by the next accrual sweep.
"""

from __future__ import annotations

import calendar
import logging
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.common.audit import create_audit_entry
from hr_leave.common.constants import ResetStrategy
from hr_leave.core_hr.models import Employee
from hr_leave.leave.carry_forward import add_months
from hr_leave.leave.ledger import EntitlementKey, EntitlementLedger
from hr_leave.leave.models import Entitlement

logger = logging.getLogger(__name__)

ACTION_RENEW = "renew"
ACTION_EXISTS = "exists"


def _anniversary(joined: date, year: int) -> date:
    day = min(joined.day, calendar.monthrange(year, joined.month)[1])
    return date(year, joined.month, day)


def next_period(
    strategy: ResetStrategy,
    reference_date: date,
    date_of_joining: date,
) -> tuple[date, date]:
    """Return ``(period_start, period_end)`` of the period containing *reference_date*."""
    if strategy == ResetStrategy.calendar_year:
        return date(reference_date.year, 1, 1), date(reference_date.year, 12, 31)
    if strategy == ResetStrategy.hire_date:
        start = _anniversary(date_of_joining, reference_date.year)
        if start > reference_date:
            start = _anniversary(date_of_joining, reference_date.year - 1)
        end = _anniversary(date_of_joining, start.year + 1) - timedelta(days=1)
        return start, end
    start = reference_date
    return start, add_months(start, 12) - timedelta(days=1)


# ═════════════════════════════════════════════════════════════════════
# Pure planning
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ResetCandidate:
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    date_of_joining: date
    current_entitlement_id: uuid.UUID
    current_year: int
    current_version: int
    yearly_entitlement: Decimal
    existing_years: frozenset[int]


@dataclass(frozen=True)
class ResetRow:
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    closing_entitlement_id: Optional[uuid.UUID]
    closing_year: int
    new_year: int
    period_start: date
    period_end: date
    yearly_entitlement: Decimal
    action: str


@dataclass(frozen=True)
class ResetPlan:
    strategy: ResetStrategy
    reference_date: date
    dry_run: bool
    rows: tuple[ResetRow, ...]

    @property
    def renewed(self) -> int:
        return sum(1 for r in self.rows if r.action == ACTION_RENEW)


def plan_year_reset(
    candidates: Sequence[ResetCandidate],
    strategy: ResetStrategy,
    reference_date: date,
    *,
    dry_run: bool = True,
) -> ResetPlan:
    rows = []
    for c in candidates:
        start, end = next_period(strategy, reference_date, c.date_of_joining)
        new_year = start.year
        renew = new_year > c.current_year and new_year not in c.existing_years
        rows.append(ResetRow(
            employee_id=c.employee_id,
            leave_type_id=c.leave_type_id,
            closing_entitlement_id=c.current_entitlement_id if renew else None,
            closing_year=c.current_year,
            new_year=new_year,
            period_start=start,
            period_end=end,
            yearly_entitlement=c.yearly_entitlement,
            action=ACTION_RENEW if renew else ACTION_EXISTS,
        ))
    return ResetPlan(
        strategy=strategy,
        reference_date=reference_date,
        dry_run=dry_run,
        rows=tuple(rows),
    )


# ═════════════════════════════════════════════════════════════════════
# Service
# ═════════════════════════════════════════════════════════════════════


class LeaveYearReset:

    @staticmethod
    async def _gather(
        db: AsyncSession,
        *,
        employee_id: Optional[uuid.UUID],
        leave_type_id: Optional[uuid.UUID],
    ) -> list[ResetCandidate]:
        query = (
            select(Entitlement, Employee.date_of_joining)
            .join(Employee, Employee.id == Entitlement.employee_id)
            .where(Employee.is_active.is_(True))
            .order_by(
                Entitlement.employee_id,
                Entitlement.leave_type_id,
                Entitlement.leave_year.desc(),
            )
            .execution_options(populate_existing=True)
        )
        if employee_id is not None:
            query = query.where(Entitlement.employee_id == employee_id)
        if leave_type_id is not None:
            query = query.where(Entitlement.leave_type_id == leave_type_id)

        years: dict[tuple[uuid.UUID, uuid.UUID], set[int]] = {}
        latest: dict[tuple[uuid.UUID, uuid.UUID], tuple[Entitlement, date]] = {}
        for ent, joined in (await db.execute(query)).all():
            key = (ent.employee_id, ent.leave_type_id)
            years.setdefault(key, set()).add(ent.leave_year)
            if ent.is_active and key not in latest:
                latest[key] = (ent, joined)

        return [
            ResetCandidate(
                employee_id=ent.employee_id,
                leave_type_id=ent.leave_type_id,
                date_of_joining=joined,
                current_entitlement_id=ent.id,
                current_year=ent.leave_year,
                current_version=ent.version,
                yearly_entitlement=Decimal(ent.yearly_entitlement or 0),
                existing_years=frozenset(years[key]),
            )
            for key, (ent, joined) in latest.items()
        ]

    @staticmethod
    async def reset_leave_year(
        db: AsyncSession,
        strategy: ResetStrategy,
        reference_date: date,
        *,
        employee_id: Optional[uuid.UUID] = None,
        leave_type_id: Optional[uuid.UUID] = None,
        dry_run: bool = False,
        actor_id: Optional[uuid.UUID] = None,
    ) -> ResetPlan:
        """Close current periods and open the next ones.

        Entitlements that already have the new year open are left alone, so
        running the reset twice for the same reference date changes nothing.
        """
        candidates = await LeaveYearReset._gather(
            db, employee_id=employee_id, leave_type_id=leave_type_id,
        )
        plan = plan_year_reset(candidates, strategy, reference_date, dry_run=dry_run)
        if dry_run:
            return plan

        versions = {c.current_entitlement_id: c.current_version for c in candidates}
        for row in plan.rows:
            if row.action != ACTION_RENEW:
                continue
            await EntitlementLedger.set_active(
                db,
                row.closing_entitlement_id,
                False,
                expected_version=versions[row.closing_entitlement_id],
            )
            opened = await EntitlementLedger.open_entitlement(
                db,
                EntitlementKey(row.employee_id, row.leave_type_id, row.new_year),
                period_start=row.period_start,
                period_end=row.period_end,
                yearly_entitlement=row.yearly_entitlement,
            )
            await create_audit_entry(
                db,
                action="reset_leave_year",
                entity_type="entitlement",
                entity_id=opened.id,
                actor_id=actor_id,
                old_values={"entitlement_id": row.closing_entitlement_id, "leave_year": row.closing_year},
                new_values={
                    "leave_year": row.new_year,
                    "period_start": row.period_start,
                    "period_end": row.period_end,
                    "strategy": strategy,
                },
            )

        logger.info(
            "Leave-year reset (%s, %s): %d of %d entitlements renewed",
            strategy.value, reference_date, plan.renewed, len(plan.rows),
        )
        return plan

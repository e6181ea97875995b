"""Accrual engine — periodic crediting of entitlements per policy.

Each entitlement carries an ``accrued_through`` marker. A period is credited
only if the marker has not reached its end, and the marker moves in the same
guarded UPDATE as the credit, so re-running a sweep for an already-covered
reference date writes nothing. Missed months are caught up one ledger entry
per month.

Monthly credits are posted in arrears (a month is due once it has ended);
yearly credits are posted up front, once the leave period has started.
"""

from __future__ import annotations

import calendar
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.common.constants import AccrualMethod, RoundingRule, RoundingScope
from hr_leave.leave.ledger import EntitlementLedger
from hr_leave.leave.models import Entitlement, LeavePolicy

logger = logging.getLogger(__name__)

EXACT = Decimal("0.000001")
Number = Union[Decimal, Fraction]


def apply_rounding(value: Number, rule: RoundingRule) -> Decimal:
    """Round to whole days using the policy rule (ROUND is half-up)."""
    exact = Fraction(value)
    if rule == RoundingRule.floor:
        return Decimal(math.floor(exact))
    if rule == RoundingRule.ceil:
        return Decimal(math.ceil(exact))
    return Decimal(math.floor(exact + Fraction(1, 2)))


def to_stored(value: Number) -> Decimal:
    """Quantize an exact amount to the six places the ledger stores."""
    exact = Fraction(value)
    return (Decimal(exact.numerator) / Decimal(exact.denominator)).quantize(
        EXACT, rounding=ROUND_HALF_UP,
    )


def _month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


# ═════════════════════════════════════════════════════════════════════
# Pure planning
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class AccrualStep:
    period_start: date
    period_end: date
    actual_delta: Decimal
    rounded_delta: Decimal


def due_periods(
    *,
    method: AccrualMethod,
    period_start: date,
    period_end: date,
    accrued_through: Optional[date],
    reference_date: date,
) -> list[tuple[date, date]]:
    """Accrual periods that have become due and are not yet covered."""
    if method == AccrualMethod.yearly:
        if accrued_through is None and reference_date >= period_start:
            return [(period_start, period_end)]
        return []

    cursor = period_start if accrued_through is None else accrued_through + timedelta(days=1)
    periods: list[tuple[date, date]] = []
    while cursor <= period_end:
        end = min(_month_end(cursor), period_end)
        if end > reference_date:
            break
        periods.append((cursor, end))
        cursor = end + timedelta(days=1)
    return periods


def plan_accrual(
    *,
    method: AccrualMethod,
    rate: Number,
    rounding_rule: RoundingRule,
    rounding_scope: RoundingScope,
    period_start: date,
    period_end: date,
    accrued_through: Optional[date],
    accrued_actual: Decimal,
    accrued_rounded: Decimal,
    reference_date: date,
) -> list[AccrualStep]:
    """Compute the credits a run would post, in order, without side effects.

    The running actual is ``rate * periods credited`` held as a fraction and
    only quantized for storage, so twelve months of ``yearly / 12`` land on
    the yearly figure exactly.
    """
    exact_rate = Fraction(rate)
    credited = 0
    if accrued_through is not None:
        credited = len(due_periods(
            method=method,
            period_start=period_start,
            period_end=period_end,
            accrued_through=None,
            reference_date=accrued_through,
        ))

    steps: list[AccrualStep] = []
    actual = accrued_actual
    rounded = accrued_rounded
    for start, end in due_periods(
        method=method,
        period_start=period_start,
        period_end=period_end,
        accrued_through=accrued_through,
        reference_date=reference_date,
    ):
        credited += 1
        running = exact_rate * credited
        actual_delta = to_stored(running) - actual
        actual += actual_delta
        if rounding_scope == RoundingScope.per_period:
            delta = apply_rounding(exact_rate, rounding_rule)
        else:
            delta = apply_rounding(running, rounding_rule) - rounded
        rounded += delta
        steps.append(AccrualStep(start, end, actual_delta, delta))
    return steps


def accrual_rate(
    policy: LeavePolicy,
    entitlement: Entitlement,
    method: AccrualMethod,
) -> Fraction:
    if method == AccrualMethod.yearly:
        if policy.yearly_rate is not None:
            return Fraction(Decimal(policy.yearly_rate))
        return Fraction(Decimal(entitlement.yearly_entitlement or 0))
    if policy.monthly_rate is not None:
        return Fraction(Decimal(policy.monthly_rate))
    return Fraction(Decimal(entitlement.yearly_entitlement or 0)) / 12


# ═════════════════════════════════════════════════════════════════════
# Sweep
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class AccrualItem:
    entitlement_id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    period_end: date
    actual_delta: Decimal
    rounded_delta: Decimal


@dataclass
class AccrualRunResult:
    reference_date: date
    entitlements_scanned: int = 0
    entries_posted: int = 0
    total_credited: Decimal = Decimal("0")
    items: list[AccrualItem] = field(default_factory=list)


class AccrualEngine:
    """Scheduled accrual sweep."""

    @staticmethod
    async def run_accrual(
        db: AsyncSession,
        reference_date: date,
        *,
        method: Optional[AccrualMethod] = None,
        rounding_rule: Optional[RoundingRule] = None,
        employee_id: Optional[uuid.UUID] = None,
        leave_type_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> AccrualRunResult:
        """Credit every active entitlement whose accrual period has become due.

        ``method`` restricts the sweep to policies of that accrual method and
        ``rounding_rule`` overrides the policy's rule for this run.
        """
        query = (
            select(Entitlement, LeavePolicy)
            .join(LeavePolicy, LeavePolicy.leave_type_id == Entitlement.leave_type_id)
            .where(
                Entitlement.is_active.is_(True),
                Entitlement.period_start <= reference_date,
            )
            .order_by(Entitlement.employee_id, Entitlement.leave_type_id)
            .execution_options(populate_existing=True)
        )
        if method is not None:
            query = query.where(LeavePolicy.accrual_method == method)
        if employee_id is not None:
            query = query.where(Entitlement.employee_id == employee_id)
        if leave_type_id is not None:
            query = query.where(Entitlement.leave_type_id == leave_type_id)

        rows = (await db.execute(query)).all()
        run = AccrualRunResult(reference_date=reference_date)

        for entitlement, policy in rows:
            run.entitlements_scanned += 1
            effective_method = policy.accrual_method
            steps = plan_accrual(
                method=effective_method,
                rate=accrual_rate(policy, entitlement, effective_method),
                rounding_rule=rounding_rule or policy.rounding_rule,
                rounding_scope=policy.rounding_scope,
                period_start=entitlement.period_start,
                period_end=entitlement.period_end,
                accrued_through=entitlement.accrued_through,
                accrued_actual=Decimal(entitlement.accrued_actual),
                accrued_rounded=Decimal(entitlement.accrued_rounded),
                reference_date=reference_date,
            )
            for step in steps:
                posted = await EntitlementLedger.post_accrual(
                    db,
                    entitlement.id,
                    rounded_delta=step.rounded_delta,
                    actual_delta=step.actual_delta,
                    accrued_through=step.period_end,
                    reason=(
                        f"{effective_method.value} accrual "
                        f"{step.period_start.isoformat()}..{step.period_end.isoformat()}"
                    ),
                    actor_id=actor_id,
                )
                if posted is None:
                    # Another sweep got there first; later steps are stale too
                    break
                run.entries_posted += 1
                run.total_credited += step.rounded_delta
                run.items.append(AccrualItem(
                    entitlement_id=entitlement.id,
                    employee_id=entitlement.employee_id,
                    leave_type_id=entitlement.leave_type_id,
                    period_end=step.period_end,
                    actual_delta=step.actual_delta,
                    rounded_delta=step.rounded_delta,
                ))

        logger.info(
            "Accrual run for %s: scanned=%d posted=%d credited=%s",
            reference_date, run.entitlements_scanned, run.entries_posted, run.total_credited,
        )
        return run

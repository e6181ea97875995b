"""Payroll-adjacent leave calculators.

Only computes figures for payroll to consume; nothing here pays out or
writes to the ledger. Money is rounded to two places, half-up.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.common.constants import LeaveRequestStatus
from hr_leave.common.exceptions import ValidationError
from hr_leave.config import settings
from hr_leave.leave.models import Entitlement, LeaveRequest, LeaveType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class UnpaidDeduction:
    employee_id: uuid.UUID
    base_salary: Decimal
    work_days_in_month: int
    unpaid_leave_days: Decimal
    daily_rate: Decimal
    deduction: Decimal
    net_salary: Decimal
    formula: str


@dataclass(frozen=True)
class Encashment:
    employee_id: uuid.UUID
    daily_salary_rate: Decimal
    unused_leave_days: Decimal
    max_encashable_days: Decimal
    days_encashed: Decimal
    days_forfeited: Decimal
    encashment_amount: Decimal


@dataclass(frozen=True)
class SettlementLine:
    leave_type_id: uuid.UUID
    leave_type_code: str
    remaining: Decimal
    encashment: Encashment


@dataclass
class SettlementPreview:
    employee_id: uuid.UUID
    leave_year: int
    daily_salary_rate: Decimal
    lines: list[SettlementLine] = field(default_factory=list)

    @property
    def total_days_encashed(self) -> Decimal:
        return sum((l.encashment.days_encashed for l in self.lines), ZERO)

    @property
    def total_amount(self) -> Decimal:
        return sum((l.encashment.encashment_amount for l in self.lines), ZERO)


def calculate_unpaid_deduction(
    employee_id: uuid.UUID,
    base_salary: Decimal,
    work_days_in_month: int,
    unpaid_leave_days: Decimal,
) -> UnpaidDeduction:
    """Deduction for unpaid leave: ``base / work_days * unpaid_days``."""
    errors: dict[str, list[str]] = {}
    if base_salary is None or Decimal(base_salary) <= 0:
        errors["base_salary"] = ["Base salary must be positive."]
    if not work_days_in_month or work_days_in_month <= 0:
        errors["work_days_in_month"] = ["Work days in month must be positive."]
    if unpaid_leave_days is None or Decimal(unpaid_leave_days) < 0:
        errors["unpaid_leave_days"] = ["Unpaid leave days cannot be negative."]
    if errors:
        raise ValidationError(errors)

    base_salary = Decimal(base_salary)
    unpaid_leave_days = Decimal(unpaid_leave_days)
    exact_rate = base_salary / Decimal(work_days_in_month)
    deduction = min(_money(exact_rate * unpaid_leave_days), _money(base_salary))
    return UnpaidDeduction(
        employee_id=employee_id,
        base_salary=_money(base_salary),
        work_days_in_month=work_days_in_month,
        unpaid_leave_days=unpaid_leave_days,
        daily_rate=_money(exact_rate),
        deduction=deduction,
        net_salary=_money(base_salary - deduction),
        formula=f"({base_salary} / {work_days_in_month}) x {unpaid_leave_days} = {deduction}",
    )


def calculate_encashment(
    employee_id: uuid.UUID,
    daily_salary_rate: Decimal,
    unused_leave_days: Decimal,
    max_encashable_days: Optional[Decimal] = None,
) -> Encashment:
    """Encash unused days up to the cap; the rest are forfeited."""
    cap = Decimal(
        max_encashable_days if max_encashable_days is not None else settings.MAX_ENCASHABLE_DAYS
    )
    errors: dict[str, list[str]] = {}
    if daily_salary_rate is None or Decimal(daily_salary_rate) <= 0:
        errors["daily_salary_rate"] = ["Daily salary rate must be positive."]
    if unused_leave_days is None or Decimal(unused_leave_days) < 0:
        errors["unused_leave_days"] = ["Unused leave days cannot be negative."]
    if cap < 0:
        errors["max_encashable_days"] = ["Maximum encashable days cannot be negative."]
    if errors:
        raise ValidationError(errors)

    rate = Decimal(daily_salary_rate)
    unused = Decimal(unused_leave_days)
    encashed = min(unused, cap)
    forfeited = unused - encashed
    if forfeited > 0:
        logger.warning(
            "Employee %s forfeits %s unused leave day(s) above the %s-day encashment cap",
            employee_id, forfeited, cap,
        )
    return Encashment(
        employee_id=employee_id,
        daily_salary_rate=_money(rate),
        unused_leave_days=unused,
        max_encashable_days=cap,
        days_encashed=encashed,
        days_forfeited=forfeited,
        encashment_amount=_money(rate * encashed),
    )


class PayrollCalculator:
    """Database-backed inputs for the calculators."""

    @staticmethod
    async def get_unpaid_leave_days(
        db: AsyncSession,
        employee_id: uuid.UUID,
        period_start: date,
        period_end: date,
    ) -> Decimal:
        """Calendar days of HR-approved unpaid leave falling inside the pay period."""
        if period_start > period_end:
            raise ValidationError({"period_end": ["period_end must be on or after period_start."]})
        result = await db.execute(
            select(LeaveRequest.from_date, LeaveRequest.to_date)
            .join(LeaveType, LeaveType.id == LeaveRequest.leave_type_id)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status == LeaveRequestStatus.hr_approved,
                LeaveType.is_paid.is_(False),
                LeaveRequest.from_date <= period_end,
                LeaveRequest.to_date >= period_start,
            )
        )
        total = 0
        for from_date, to_date in result.all():
            total += (min(to_date, period_end) - max(from_date, period_start)).days + 1
        return Decimal(total)

    @staticmethod
    async def preview_final_settlement(
        db: AsyncSession,
        employee_id: uuid.UUID,
        daily_salary_rate: Decimal,
        *,
        leave_year: Optional[int] = None,
        max_encashable_days: Optional[Decimal] = None,
    ) -> SettlementPreview:
        """Encashment of every paid, active entitlement for a leaving employee."""
        leave_year = leave_year or date.today().year
        result = await db.execute(
            select(Entitlement, LeaveType)
            .join(LeaveType, LeaveType.id == Entitlement.leave_type_id)
            .where(
                Entitlement.employee_id == employee_id,
                Entitlement.leave_year == leave_year,
                Entitlement.is_active.is_(True),
                LeaveType.is_paid.is_(True),
            )
            .order_by(LeaveType.code)
        )
        preview = SettlementPreview(
            employee_id=employee_id,
            leave_year=leave_year,
            daily_salary_rate=Decimal(daily_salary_rate),
        )
        for entitlement, leave_type in result.all():
            remaining = Decimal(entitlement.remaining)
            preview.lines.append(SettlementLine(
                leave_type_id=leave_type.id,
                leave_type_code=leave_type.code,
                remaining=remaining,
                encashment=calculate_encashment(
                    employee_id,
                    daily_salary_rate,
                    max(remaining, ZERO),
                    max_encashable_days,
                ),
            ))
        return preview

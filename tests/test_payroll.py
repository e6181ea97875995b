"""Payroll-adjacent calculator tests — unpaid deduction, encashment, settlement preview."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.auth.identity import Actor
from hr_leave.common.constants import HrDecision, UserRole
from hr_leave.common.exceptions import ValidationException
from hr_leave.leave.payroll import (
    PayrollCalculator,
    calculate_encashment,
    calculate_unpaid_deduction,
)
from hr_leave.leave.schemas import LeaveRequestCreate
from hr_leave.leave.workflow import RequestWorkflow
from hr_leave.notifications.service import NotificationOutbox
from tests.conftest import _seed_employee, _seed_entitlement, _seed_leave_type, _seed_role

EMP = uuid.uuid4()


class TestUnpaidDeduction:

    def test_prorated_deduction(self):
        result = calculate_unpaid_deduction(EMP, Decimal("30000"), 22, Decimal("2"))
        assert result.daily_rate == Decimal("1363.64")
        assert result.deduction == Decimal("2727.27")
        assert result.net_salary == Decimal("27272.73")

    def test_deduction_never_exceeds_salary(self):
        result = calculate_unpaid_deduction(EMP, Decimal("10000"), 20, Decimal("25"))
        assert result.deduction == Decimal("10000.00")
        assert result.net_salary == Decimal("0.00")

    def test_invalid_inputs_are_collected(self):
        with pytest.raises(ValidationException) as exc_info:
            calculate_unpaid_deduction(EMP, Decimal("0"), 0, Decimal("-1"))
        assert set(exc_info.value.errors) == {
            "base_salary", "work_days_in_month", "unpaid_leave_days",
        }


class TestEncashment:

    def test_within_cap(self):
        result = calculate_encashment(EMP, Decimal("1000"), Decimal("12.5"), Decimal("30"))
        assert result.days_encashed == Decimal("12.5")
        assert result.days_forfeited == Decimal("0")
        assert result.encashment_amount == Decimal("12500.00")

    def test_above_cap_forfeits(self):
        result = calculate_encashment(EMP, Decimal("1000"), Decimal("40"), Decimal("30"))
        assert result.days_encashed == Decimal("30")
        assert result.days_forfeited == Decimal("10")

    def test_default_cap_from_settings(self):
        result = calculate_encashment(EMP, Decimal("500"), Decimal("45"))
        assert result.max_encashable_days == Decimal("30")

    def test_rate_must_be_positive(self):
        with pytest.raises(ValidationException):
            calculate_encashment(EMP, Decimal("0"), Decimal("5"))


class TestPayrollCalculator:

    async def test_unpaid_days_clipped_to_period(self, db: AsyncSession):
        manager = await _seed_employee(db)
        hr = await _seed_employee(db)
        await _seed_role(db, hr.id, UserRole.hr_admin)
        emp = await _seed_employee(db, reporting_manager_id=manager.id)
        lwp = await _seed_leave_type(
            db, code="LWP", name="Leave Without Pay", is_paid=False, is_deductible=False,
        )

        req = await RequestWorkflow.submit(
            db, Actor(emp.id),
            LeaveRequestCreate(leave_type_id=lwp.id, from_date=date(2026, 3, 29), to_date=date(2026, 4, 2)),
            outbox=NotificationOutbox(), today=date(2026, 3, 1),
        )
        await RequestWorkflow.manager_approve(
            db, req.id, Actor(manager.id, UserRole.manager), outbox=NotificationOutbox(),
        )

        pending = await PayrollCalculator.get_unpaid_leave_days(
            db, emp.id, date(2026, 3, 1), date(2026, 3, 31),
        )
        assert pending == Decimal("0")

        await RequestWorkflow.hr_finalize(
            db, req.id, Actor(hr.id, UserRole.hr_admin), HrDecision.approve,
            outbox=NotificationOutbox(),
        )
        march = await PayrollCalculator.get_unpaid_leave_days(
            db, emp.id, date(2026, 3, 1), date(2026, 3, 31),
        )
        april = await PayrollCalculator.get_unpaid_leave_days(
            db, emp.id, date(2026, 4, 1), date(2026, 4, 30),
        )
        assert march == Decimal("3")
        assert april == Decimal("2")

    async def test_settlement_preview_covers_paid_types(self, db: AsyncSession):
        emp = await _seed_employee(db)
        cl = await _seed_leave_type(db, code="CL")
        pl = await _seed_leave_type(db, code="PL", name="Privilege Leave")
        lwp = await _seed_leave_type(db, code="LWP", name="Leave Without Pay", is_paid=False)
        await _seed_entitlement(db, emp.id, cl.id, opening=Decimal("4"))
        await _seed_entitlement(db, emp.id, pl.id, opening=Decimal("35"))
        await _seed_entitlement(db, emp.id, lwp.id, opening=Decimal("10"))

        preview = await PayrollCalculator.preview_final_settlement(
            db, emp.id, Decimal("800"), leave_year=2026,
        )

        assert [line.leave_type_code for line in preview.lines] == ["CL", "PL"]
        assert preview.total_days_encashed == Decimal("34")
        assert preview.total_amount == Decimal("27200.00")
        assert preview.lines[1].encashment.days_forfeited == Decimal("5")

"""Leave-year reset tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.common.constants import ResetStrategy
from hr_leave.leave.ledger import EntitlementKey, EntitlementLedger
from hr_leave.leave.year_reset import ACTION_EXISTS, ACTION_RENEW, LeaveYearReset, next_period
from tests.conftest import _seed_employee, _seed_entitlement, _seed_leave_type


class TestNextPeriod:

    def test_calendar_year(self):
        assert next_period(ResetStrategy.calendar_year, date(2027, 1, 1), date(2020, 6, 15)) == (
            date(2027, 1, 1), date(2027, 12, 31),
        )

    def test_hire_date_anniversary_already_passed(self):
        assert next_period(ResetStrategy.hire_date, date(2027, 7, 1), date(2020, 6, 15)) == (
            date(2027, 6, 15), date(2028, 6, 14),
        )

    def test_hire_date_anniversary_not_yet_reached(self):
        assert next_period(ResetStrategy.hire_date, date(2027, 3, 1), date(2020, 6, 15)) == (
            date(2026, 6, 15), date(2027, 6, 14),
        )

    def test_hire_date_leap_day_joiner(self):
        start, end = next_period(ResetStrategy.hire_date, date(2027, 3, 1), date(2020, 2, 29))
        assert start == date(2027, 2, 28)
        assert end == date(2028, 2, 28)

    def test_custom_starts_on_reference_date(self):
        assert next_period(ResetStrategy.custom, date(2027, 4, 1), date(2020, 6, 15)) == (
            date(2027, 4, 1), date(2028, 3, 31),
        )


class TestResetLeaveYear:

    async def test_renews_once(self, db: AsyncSession):
        emp = await _seed_employee(db)
        lt = await _seed_leave_type(db)
        old = await _seed_entitlement(db, emp.id, lt.id, year=2026, opening=Decimal("4"))

        first = await LeaveYearReset.reset_leave_year(
            db, ResetStrategy.calendar_year, date(2027, 1, 1),
        )
        second = await LeaveYearReset.reset_leave_year(
            db, ResetStrategy.calendar_year, date(2027, 1, 1),
        )

        assert [r.action for r in first.rows] == [ACTION_RENEW]
        assert first.renewed == 1
        assert [r.action for r in second.rows] == [ACTION_EXISTS]

        closed = await EntitlementLedger.get_balance(db, old.id)
        assert closed.is_active is False
        assert closed.remaining == Decimal("4")

        opened = await EntitlementLedger.find(db, EntitlementKey(emp.id, lt.id, 2027))
        assert opened.is_active is True
        assert opened.remaining == Decimal("0")
        assert opened.yearly_entitlement == Decimal("12")
        assert opened.period_start == date(2027, 1, 1)

    async def test_dry_run_writes_nothing(self, db: AsyncSession):
        emp = await _seed_employee(db)
        lt = await _seed_leave_type(db)
        await _seed_entitlement(db, emp.id, lt.id, year=2026)

        plan = await LeaveYearReset.reset_leave_year(
            db, ResetStrategy.calendar_year, date(2027, 1, 1), dry_run=True,
        )

        assert plan.renewed == 1
        assert await EntitlementLedger.find(db, EntitlementKey(emp.id, lt.id, 2027)) is None

    async def test_reference_inside_current_period_is_noop(self, db: AsyncSession):
        emp = await _seed_employee(db)
        lt = await _seed_leave_type(db)
        await _seed_entitlement(db, emp.id, lt.id, year=2026)

        plan = await LeaveYearReset.reset_leave_year(
            db, ResetStrategy.calendar_year, date(2026, 9, 1),
        )
        assert plan.renewed == 0

    async def test_inactive_employees_are_skipped(self, db: AsyncSession):
        emp = await _seed_employee(db, is_active=False)
        lt = await _seed_leave_type(db)
        await _seed_entitlement(db, emp.id, lt.id, year=2026)

        plan = await LeaveYearReset.reset_leave_year(
            db, ResetStrategy.calendar_year, date(2027, 1, 1),
        )
        assert plan.rows == ()

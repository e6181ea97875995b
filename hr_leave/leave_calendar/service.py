"""Calendar service — holiday / blocked-period registry and read snapshots.

The workflow never queries calendar tables while computing durations. It
loads a ``CalendarSnapshot`` for the requested window once, and the duration
calculator works on that immutable value.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.common.audit import create_audit_entry
from hr_leave.common.exceptions import ConflictError, NotFoundError, ValidationError
from hr_leave.leave_calendar.models import BlockedPeriod, CalendarHoliday, LeaveCalendar
from hr_leave.leave_calendar.schemas import CalendarUpdate

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# Snapshot value objects
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class BlockedWindow:
    from_date: date
    to_date: date
    reason: str

    def overlaps(self, start: date, end: date) -> bool:
        return self.from_date <= end and start <= self.to_date


@dataclass(frozen=True)
class CalendarSnapshot:
    """Immutable view of the calendar over a date window."""

    holidays: frozenset[date] = frozenset()
    blocked_periods: tuple[BlockedWindow, ...] = ()
    weekly_off_days: dict[int, frozenset[int]] = field(default_factory=dict)

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays

    def is_weekly_off(self, day: date) -> bool:
        return day.weekday() in self.weekly_off_days.get(day.year, frozenset())

    def blocked_overlaps(self, start: date, end: date) -> list[BlockedWindow]:
        return [bp for bp in self.blocked_periods if bp.overlaps(start, end)]


# ═════════════════════════════════════════════════════════════════════
# CalendarService
# ═════════════════════════════════════════════════════════════════════


class CalendarService:
    """Async calendar administration and snapshot loading."""

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_calendar(db: AsyncSession, year: int) -> LeaveCalendar:
        result = await db.execute(
            select(LeaveCalendar).where(LeaveCalendar.year == year)
        )
        calendar = result.scalars().first()
        if calendar is None:
            raise NotFoundError("LeaveCalendar", year)
        return calendar

    @staticmethod
    async def _get_or_create(db: AsyncSession, year: int) -> LeaveCalendar:
        result = await db.execute(
            select(LeaveCalendar).where(LeaveCalendar.year == year)
        )
        calendar = result.scalars().first()
        if calendar is None:
            calendar = LeaveCalendar(
                year=year, name=f"Leave calendar {year}", weekly_off_days=[],
                holidays=[], blocked_periods=[],
            )
            db.add(calendar)
            await db.flush()
        return calendar

    @staticmethod
    async def load_snapshot(
        db: AsyncSession,
        from_date: date,
        to_date: date,
    ) -> CalendarSnapshot:
        """Load holidays, blocked periods and weekly offs touching the window."""
        holiday_rows = await db.execute(
            select(CalendarHoliday.holiday_date).where(
                CalendarHoliday.holiday_date >= from_date,
                CalendarHoliday.holiday_date <= to_date,
            )
        )
        blocked_rows = await db.execute(
            select(BlockedPeriod).where(
                BlockedPeriod.from_date <= to_date,
                BlockedPeriod.to_date >= from_date,
            )
        )
        calendar_rows = await db.execute(
            select(LeaveCalendar.year, LeaveCalendar.weekly_off_days).where(
                LeaveCalendar.year >= from_date.year,
                LeaveCalendar.year <= to_date.year,
            )
        )
        return CalendarSnapshot(
            holidays=frozenset(row[0] for row in holiday_rows.all()),
            blocked_periods=tuple(
                BlockedWindow(bp.from_date, bp.to_date, bp.reason)
                for bp in blocked_rows.scalars().all()
            ),
            weekly_off_days={
                year: frozenset(days or []) for year, days in calendar_rows.all()
            },
        )

    # ─────────────────────────────────────────────────────────────────
    # Holidays
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def add_holiday(
        db: AsyncSession,
        holiday_date: date,
        reason: str,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> CalendarHoliday:
        calendar = await CalendarService._get_or_create(db, holiday_date.year)
        if any(h.holiday_date == holiday_date for h in calendar.holidays):
            raise ConflictError(
                f"A holiday on {holiday_date.isoformat()} is already registered.",
                field="holiday_date",
            )
        holiday = CalendarHoliday(
            calendar_id=calendar.id, holiday_date=holiday_date, reason=reason,
        )
        calendar.holidays.append(holiday)
        await db.flush()

        await create_audit_entry(
            db,
            action="add_holiday",
            entity_type="leave_calendar",
            entity_id=calendar.id,
            actor_id=actor_id,
            new_values={"holiday_date": holiday_date, "reason": reason},
        )
        logger.info("Holiday %s added to %s calendar", holiday_date, calendar.year)
        return holiday

    @staticmethod
    async def remove_holiday(
        db: AsyncSession,
        holiday_date: date,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        calendar = await CalendarService.get_calendar(db, holiday_date.year)
        holiday = next(
            (h for h in calendar.holidays if h.holiday_date == holiday_date), None,
        )
        if holiday is None:
            raise NotFoundError("Holiday", holiday_date.isoformat())
        calendar.holidays.remove(holiday)
        await db.flush()

        await create_audit_entry(
            db,
            action="remove_holiday",
            entity_type="leave_calendar",
            entity_id=calendar.id,
            actor_id=actor_id,
            old_values={"holiday_date": holiday_date, "reason": holiday.reason},
        )

    # ─────────────────────────────────────────────────────────────────
    # Blocked periods
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def add_blocked_period(
        db: AsyncSession,
        from_date: date,
        to_date: date,
        reason: str,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BlockedPeriod:
        if from_date > to_date:
            raise ValidationError({"to_date": ["to_date must be on or after from_date."]})

        calendar = await CalendarService._get_or_create(db, from_date.year)
        period = BlockedPeriod(
            calendar_id=calendar.id, from_date=from_date, to_date=to_date, reason=reason,
        )
        calendar.blocked_periods.append(period)
        await db.flush()

        await create_audit_entry(
            db,
            action="add_blocked_period",
            entity_type="leave_calendar",
            entity_id=calendar.id,
            actor_id=actor_id,
            new_values={"from_date": from_date, "to_date": to_date, "reason": reason},
        )
        return period

    @staticmethod
    async def remove_blocked_period(
        db: AsyncSession,
        blocked_period_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        period = await db.get(BlockedPeriod, blocked_period_id)
        if period is None:
            raise NotFoundError("BlockedPeriod", blocked_period_id)
        calendar_id = period.calendar_id
        old = {"from_date": period.from_date, "to_date": period.to_date, "reason": period.reason}
        await db.delete(period)
        await db.flush()

        await create_audit_entry(
            db,
            action="remove_blocked_period",
            entity_type="leave_calendar",
            entity_id=calendar_id,
            actor_id=actor_id,
            old_values=old,
        )

    # ─────────────────────────────────────────────────────────────────
    # Bulk update
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_calendar(
        db: AsyncSession,
        year: int,
        data: CalendarUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveCalendar:
        """Create or update the year's calendar; provided lists replace stored ones."""
        calendar = await CalendarService._get_or_create(db, year)

        if data.holidays is not None:
            wrong_year = [h.holiday_date for h in data.holidays if h.holiday_date.year != year]
            if wrong_year:
                raise ValidationError(
                    {"holidays": [f"{d.isoformat()} is not in {year}." for d in wrong_year]}
                )
            dates = [h.holiday_date for h in data.holidays]
            if len(dates) != len(set(dates)):
                raise ValidationError({"holidays": ["Holiday dates must be unique."]})

        if data.name is not None:
            calendar.name = data.name
        if data.weekly_off_days is not None:
            calendar.weekly_off_days = list(data.weekly_off_days)
        if data.holidays is not None:
            calendar.holidays.clear()
            await db.flush()
            for h in data.holidays:
                calendar.holidays.append(
                    CalendarHoliday(holiday_date=h.holiday_date, reason=h.reason)
                )
        if data.blocked_periods is not None:
            calendar.blocked_periods.clear()
            await db.flush()
            for bp in data.blocked_periods:
                calendar.blocked_periods.append(
                    BlockedPeriod(from_date=bp.from_date, to_date=bp.to_date, reason=bp.reason)
                )
        await db.flush()

        await create_audit_entry(
            db,
            action="update_calendar",
            entity_type="leave_calendar",
            entity_id=calendar.id,
            actor_id=actor_id,
            new_values={
                "weekly_off_days": ",".join(str(d) for d in calendar.weekly_off_days or []),
                "holidays": len(calendar.holidays),
                "blocked_periods": len(calendar.blocked_periods),
            },
        )
        return calendar

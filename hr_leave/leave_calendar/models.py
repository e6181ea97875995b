"""Calendar ORM models: LeaveCalendar, CalendarHoliday, BlockedPeriod."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_leave.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveCalendar(Base):
    """Organisation calendar for one year. Maintained by HR, read by the ledger."""

    __tablename__ = "leave_calendars"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    year: Mapped[int] = mapped_column(sa.Integer, unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    # Weekday numbers (0=Mon … 6=Sun) never charged as leave
    weekly_off_days: Mapped[list] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    holidays: Mapped[list[CalendarHoliday]] = relationship(
        back_populates="calendar",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CalendarHoliday.holiday_date",
    )
    blocked_periods: Mapped[list[BlockedPeriod]] = relationship(
        back_populates="calendar",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BlockedPeriod.from_date",
    )


class CalendarHoliday(Base):
    __tablename__ = "calendar_holidays"
    __table_args__ = (
        sa.UniqueConstraint("calendar_id", "holiday_date", name="uq_calendar_holiday_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    calendar_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_calendars.id", ondelete="CASCADE"),
        nullable=False,
    )
    holiday_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    calendar: Mapped[LeaveCalendar] = relationship(back_populates="holidays")


class BlockedPeriod(Base):
    """Organisation-wide range during which leave cannot be taken."""

    __tablename__ = "blocked_periods"
    __table_args__ = (
        sa.CheckConstraint("from_date <= to_date", name="ck_blocked_period_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    calendar_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_calendars.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    to_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    calendar: Mapped[LeaveCalendar] = relationship(back_populates="blocked_periods")

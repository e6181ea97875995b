"""Calendar router — holiday and blocked-period administration.

Reads are open to any authenticated user; writes require HR.
"""


import uuid
from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hr_leave.auth.dependencies import get_current_actor, require_role
from hr_leave.auth.identity import Actor
from hr_leave.common.constants import UserRole
from hr_leave.database import get_db
from hr_leave.leave_calendar.schemas import (
    BlockedPeriodIn,
    BlockedPeriodOut,
    CalendarOut,
    CalendarUpdate,
    HolidayIn,
    HolidayOut,
)
from hr_leave.leave_calendar.service import CalendarService

router = APIRouter(prefix="", tags=["calendar"])

_hr_only = require_role(UserRole.hr_admin, UserRole.system_admin)


# ── GET /{year} ─────────────────────────────────────────────────────

@router.get("/{year}", response_model=CalendarOut)
async def get_calendar(
    year: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await CalendarService.get_calendar(db, year)


# ── PUT /{year} ─────────────────────────────────────────────────────

@router.put("/{year}", response_model=CalendarOut)
async def update_calendar(
    year: int,
    body: CalendarUpdate,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    """Create or replace the year's weekly offs, holidays and blocked periods."""
    return await CalendarService.update_calendar(db, year, body, actor_id=actor.employee_id)


# ── POST /holidays ──────────────────────────────────────────────────

@router.post("/holidays", response_model=HolidayOut, status_code=201)
async def add_holiday(
    body: HolidayIn,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    return await CalendarService.add_holiday(
        db, body.holiday_date, body.reason, actor_id=actor.employee_id,
    )


# ── DELETE /holidays/{holiday_date} ─────────────────────────────────

@router.delete("/holidays/{holiday_date}", status_code=204)
async def remove_holiday(
    holiday_date: date,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    await CalendarService.remove_holiday(db, holiday_date, actor_id=actor.employee_id)


# ── POST /blocked-periods ───────────────────────────────────────────

@router.post("/blocked-periods", response_model=BlockedPeriodOut, status_code=201)
async def add_blocked_period(
    body: BlockedPeriodIn,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    return await CalendarService.add_blocked_period(
        db, body.from_date, body.to_date, body.reason, actor_id=actor.employee_id,
    )


# ── DELETE /blocked-periods/{id} ────────────────────────────────────

@router.delete("/blocked-periods/{blocked_period_id}", status_code=204)
async def remove_blocked_period(
    blocked_period_id: uuid.UUID,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    await CalendarService.remove_blocked_period(
        db, blocked_period_id, actor_id=actor.employee_id,
    )

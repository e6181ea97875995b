"""Calendar Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class HolidayIn(BaseModel):
    holiday_date: date
    reason: str = Field(..., min_length=1, max_length=150)


class HolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    holiday_date: date
    reason: str


class BlockedPeriodIn(BaseModel):
    from_date: date
    to_date: date
    reason: str = Field(..., min_length=1, max_length=255)

    @model_validator(mode="after")
    def _check_range(self) -> "BlockedPeriodIn":
        if self.from_date > self.to_date:
            raise ValueError("from_date must be on or before to_date")
        return self


class BlockedPeriodOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    from_date: date
    to_date: date
    reason: str


class CalendarOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    year: int
    name: Optional[str] = None
    weekly_off_days: list[int] = []
    holidays: list[HolidayOut] = []
    blocked_periods: list[BlockedPeriodOut] = []


class CalendarUpdate(BaseModel):
    """Replace-style update: any list provided replaces the stored one."""

    name: Optional[str] = Field(None, max_length=100)
    weekly_off_days: Optional[list[int]] = None
    holidays: Optional[list[HolidayIn]] = None
    blocked_periods: Optional[list[BlockedPeriodIn]] = None

    @field_validator("weekly_off_days")
    @classmethod
    def _check_weekdays(cls, v: Optional[list[int]]) -> Optional[list[int]]:
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("weekly_off_days must contain weekday numbers 0-6")
        return sorted(set(v)) if v is not None else v

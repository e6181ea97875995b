"""Chargeable-day computation for a leave date range.

``compute_duration`` is pure: it takes a calendar snapshot and the policy
rules by value and never touches the database or the clock, so the same
inputs always produce the same result.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from hr_leave.common.exceptions import PolicyViolation, ValidationError
from hr_leave.leave_calendar.service import CalendarSnapshot


@dataclass(frozen=True)
class RuleViolation:
    rule: str
    message: str


@dataclass(frozen=True)
class DurationRules:
    """The policy attributes that bound a single request."""

    min_notice_days: int = 0
    max_consecutive_days: Optional[int] = None
    max_duration_days: Optional[Decimal] = None
    allow_blocked_period_exception: bool = False

    @classmethod
    def from_policy(cls, policy, leave_type=None) -> "DurationRules":
        return cls(
            min_notice_days=(policy.min_notice_days or 0) if policy else 0,
            max_consecutive_days=policy.max_consecutive_days if policy else None,
            max_duration_days=leave_type.max_duration_days if leave_type else None,
            allow_blocked_period_exception=(
                bool(policy.allow_blocked_period_exception) if policy else False
            ),
        )


@dataclass(frozen=True)
class DurationResult:
    days: Decimal
    calendar_days: int
    excluded_dates: tuple[date, ...]
    blocked: bool
    violations: tuple[RuleViolation, ...]

    @property
    def ok(self) -> bool:
        return not self.violations

    def raise_for_violations(self) -> None:
        """Raise PolicyViolation naming the first broken rule, listing all."""
        if not self.violations:
            return
        first = self.violations[0]
        raise PolicyViolation(
            first.rule,
            first.message,
            violations=[{"rule": v.rule, "message": v.message} for v in self.violations],
        )


def compute_duration(
    from_date: date,
    to_date: date,
    calendar: CalendarSnapshot,
    rules: DurationRules,
    *,
    today: date,
    post_leave: bool = False,
    blocked_exception: bool = False,
) -> DurationResult:
    """Count chargeable days in ``[from_date, to_date]`` and check the rules.

    Registered holidays and the calendar's weekly off days are not charged.
    Raises ValidationError for a reversed range; every other breach is
    reported in ``violations`` so callers can show them together.
    """
    if from_date > to_date:
        raise ValidationError({"to_date": ["to_date must be on or after from_date."]})

    span = (to_date - from_date).days + 1
    excluded: list[date] = []
    day = from_date
    while day <= to_date:
        if calendar.is_holiday(day) or calendar.is_weekly_off(day):
            excluded.append(day)
        day += timedelta(days=1)
    days = Decimal(span - len(excluded))

    violations: list[RuleViolation] = []

    # A range may run max_consecutive_days past its first day
    stretch = span - 1
    if rules.max_consecutive_days is not None and stretch > rules.max_consecutive_days:
        violations.append(RuleViolation(
            "max_consecutive_days",
            f"The range runs {stretch} days past its first day; "
            f"at most {rules.max_consecutive_days} are allowed.",
        ))

    if rules.max_duration_days is not None and days > rules.max_duration_days:
        violations.append(RuleViolation(
            "max_duration_days",
            f"{days} chargeable days exceed the maximum of {rules.max_duration_days}.",
        ))

    if not post_leave and rules.min_notice_days:
        earliest = today + timedelta(days=rules.min_notice_days)
        if from_date < earliest:
            violations.append(RuleViolation(
                "min_notice_days",
                f"At least {rules.min_notice_days} days notice is required; "
                f"the earliest allowed start is {earliest.isoformat()}.",
            ))

    overlapping = calendar.blocked_overlaps(from_date, to_date)
    if overlapping and not (blocked_exception and rules.allow_blocked_period_exception):
        window = overlapping[0]
        violations.append(RuleViolation(
            "blocked_period",
            f"The range overlaps the blocked period {window.from_date.isoformat()} to "
            f"{window.to_date.isoformat()} ({window.reason}).",
        ))

    return DurationResult(
        days=days,
        calendar_days=span,
        excluded_dates=tuple(excluded),
        blocked=bool(overlapping),
        violations=tuple(violations),
    )

"""Leave ORM models: LeaveType, LeavePolicy, Entitlement, LeaveAdjustment,
LeaveRequest, LeaveRequestEvent, CarryForwardRecord."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_leave.common.constants import (
    AccrualMethod,
    AdjustmentType,
    GenderType,
    LeaveRequestStatus,
    RoundingRule,
    RoundingScope,
)
from hr_leave.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Day counts are exact to two places; the unrounded accrual total keeps six.
DAYS = sa.Numeric(8, 2)
RATE = sa.Numeric(8, 4)
EXACT = sa.Numeric(12, 6)


class LeaveType(Base):
    __tablename__ = "leave_types"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(sa.String(10), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    category: Mapped[Optional[str]] = mapped_column(sa.String(50))
    is_paid: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    # Deductible types are charged against an entitlement on HR approval
    is_deductible: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    requires_attachment: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    attachment_type: Mapped[Optional[str]] = mapped_column(sa.String(50))
    # Attachment only demanded above this many chargeable days (null = always)
    attachment_required_after_days: Mapped[Optional[Decimal]] = mapped_column(DAYS)
    min_tenure_months: Mapped[int] = mapped_column(sa.Integer, default=0)
    max_duration_days: Mapped[Optional[Decimal]] = mapped_column(DAYS)
    # Eligibility rule set; empty lists mean "everyone"
    eligible_employment_types: Mapped[list] = mapped_column(JSONB, default=list)
    eligible_employment_statuses: Mapped[list] = mapped_column(JSONB, default=list)
    applicable_gender: Mapped[Optional[GenderType]] = mapped_column(
        sa.Enum(GenderType, name="gender_type", create_type=False)
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    policy: Mapped[Optional[LeavePolicy]] = relationship(
        back_populates="leave_type", uselist=False, lazy="selectin"
    )


class LeavePolicy(Base):
    """Accrual, rounding, carry-forward and request rules for one leave type."""

    __tablename__ = "leave_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_types.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    accrual_method: Mapped[AccrualMethod] = mapped_column(
        sa.Enum(AccrualMethod, name="accrual_method", create_type=False),
        default=AccrualMethod.monthly,
    )
    # Null rates fall back to the entitlement's yearly_entitlement (÷12 monthly)
    monthly_rate: Mapped[Optional[Decimal]] = mapped_column(RATE)
    yearly_rate: Mapped[Optional[Decimal]] = mapped_column(RATE)
    rounding_rule: Mapped[RoundingRule] = mapped_column(
        sa.Enum(RoundingRule, name="rounding_rule", create_type=False),
        default=RoundingRule.round,
    )
    rounding_scope: Mapped[RoundingScope] = mapped_column(
        sa.Enum(RoundingScope, name="rounding_scope", create_type=False),
        default=RoundingScope.per_period,
    )
    carry_forward_allowed: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    max_carry_forward: Mapped[Optional[Decimal]] = mapped_column(DAYS)
    carry_forward_expiry_months: Mapped[Optional[int]] = mapped_column(sa.Integer)
    min_notice_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    max_consecutive_days: Mapped[Optional[int]] = mapped_column(sa.Integer)
    allow_blocked_period_exception: Mapped[bool] = mapped_column(
        sa.Boolean, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    leave_type: Mapped[LeaveType] = relationship(back_populates="policy")


class Entitlement(Base):
    """Balance record for (employee, leave type, leave year).

    ``remaining = accrued_rounded + carry_forward + manual_adjustment - taken``
    holds for every committed row. Rows are only mutated by the ledger's
    conditional UPDATE statements, each paired with one LeaveAdjustment.
    """

    __tablename__ = "entitlements"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type_id", "leave_year", name="uq_entitlement_key"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    leave_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    period_start: Mapped[date] = mapped_column(sa.Date, nullable=False)
    period_end: Mapped[date] = mapped_column(sa.Date, nullable=False)
    yearly_entitlement: Mapped[Decimal] = mapped_column(DAYS, default=Decimal("0"))
    accrued_actual: Mapped[Decimal] = mapped_column(EXACT, default=Decimal("0"))
    accrued_rounded: Mapped[Decimal] = mapped_column(DAYS, default=Decimal("0"))
    carry_forward: Mapped[Decimal] = mapped_column(DAYS, default=Decimal("0"))
    manual_adjustment: Mapped[Decimal] = mapped_column(DAYS, default=Decimal("0"))
    taken: Mapped[Decimal] = mapped_column(DAYS, default=Decimal("0"))
    remaining: Mapped[Decimal] = mapped_column(DAYS, default=Decimal("0"))
    # Last day covered by accrual; null until the first credit
    accrued_through: Mapped[Optional[date]] = mapped_column(sa.Date)
    version: Mapped[int] = mapped_column(sa.Integer, default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    leave_type: Mapped[LeaveType] = relationship(lazy="selectin")


class LeaveAdjustment(Base):
    """Append-only ledger entry. ``amount`` is the signed effect on remaining."""

    __tablename__ = "leave_adjustments"
    __table_args__ = (
        sa.Index("ix_leave_adjustments_entitlement", "entitlement_id", "created_at"),
        sa.Index("ix_leave_adjustments_employee", "employee_id", "leave_type_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    entitlement_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("entitlements.id"), nullable=False
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    leave_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    leave_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    adjustment_type: Mapped[AdjustmentType] = mapped_column(
        sa.Enum(AdjustmentType, name="adjustment_type", create_type=False),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    # Unrounded increment carried by accrual entries
    accrual_actual: Mapped[Optional[Decimal]] = mapped_column(EXACT)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    is_override: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    leave_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_requests.id")
    )
    balance_after: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.Index("ix_leave_requests_employee_dates", "employee_id", "from_date", "to_date"),
        sa.Index("ix_leave_requests_status_stage", "status", "stage_entered_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    entitlement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("entitlements.id")
    )
    from_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    to_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    duration_days: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    justification: Mapped[Optional[str]] = mapped_column(sa.Text)
    attachment_id: Mapped[Optional[str]] = mapped_column(sa.String(100))
    post_leave: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    blocked_period_exception: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    status: Mapped[LeaveRequestStatus] = mapped_column(
        sa.Enum(LeaveRequestStatus, name="leave_request_status", create_type=False),
        default=LeaveRequestStatus.submitted,
        nullable=False,
    )
    version: Mapped[int] = mapped_column(sa.Integer, default=1, nullable=False)
    stage_entered_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, nullable=False
    )
    submitted_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    manager_decided_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    hr_reviewer_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    hr_decided_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    return_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    # Days actually debited on HR approval; credited back on cancellation
    consumed_days: Mapped[Decimal] = mapped_column(DAYS, default=Decimal("0"))
    irregular_flag: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    irregular_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    escalation_count: Mapped[int] = mapped_column(sa.Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    leave_type: Mapped[LeaveType] = relationship(lazy="selectin")
    events: Mapped[list[LeaveRequestEvent]] = relationship(
        back_populates="leave_request",
        lazy="selectin",
        order_by="LeaveRequestEvent.created_at",
    )


class LeaveRequestEvent(Base):
    """Immutable stage history of a leave request."""

    __tablename__ = "leave_request_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    from_status: Mapped[Optional[LeaveRequestStatus]] = mapped_column(
        sa.Enum(LeaveRequestStatus, name="leave_request_status", create_type=False)
    )
    to_status: Mapped[LeaveRequestStatus] = mapped_column(
        sa.Enum(LeaveRequestStatus, name="leave_request_status", create_type=False),
        nullable=False,
    )
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    actor_role: Mapped[Optional[str]] = mapped_column(sa.String(30))
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    # Relationships
    leave_request: Mapped[LeaveRequest] = relationship(back_populates="events")


class CarryForwardRecord(Base):
    __tablename__ = "carry_forward_records"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type_id", "target_year", name="uq_carry_forward_target"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    source_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    target_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    carry_forward_days: Mapped[Decimal] = mapped_column(DAYS, nullable=False)
    expiry_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    overridden: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

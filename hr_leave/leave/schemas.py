"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request / *In → request bodies (write)
  - *Out                     → response bodies (read)
  - *Brief                   → compact embedded representations
  - *Query                   → typed list filters
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hr_leave.common.constants import (
    AccrualMethod,
    AdjustmentType,
    EmploymentStatus,
    EmploymentType,
    GenderType,
    HrDecision,
    LeaveRequestStatus,
    ResetStrategy,
    RoundingRule,
    RoundingScope,
)
from hr_leave.common.pagination import PaginationMeta


# ═════════════════════════════════════════════════════════════════════
# Leave Type / Policy
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeBrief(BaseModel):
    """Minimal leave type info embedded in other responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    is_paid: bool = True


class LeavePolicyIn(BaseModel):
    accrual_method: AccrualMethod = AccrualMethod.monthly
    monthly_rate: Optional[Decimal] = Field(None, ge=0)
    yearly_rate: Optional[Decimal] = Field(None, ge=0)
    rounding_rule: RoundingRule = RoundingRule.round
    rounding_scope: RoundingScope = RoundingScope.per_period
    carry_forward_allowed: bool = False
    max_carry_forward: Optional[Decimal] = Field(None, ge=0)
    carry_forward_expiry_months: Optional[int] = Field(None, ge=0)
    min_notice_days: int = Field(0, ge=0)
    max_consecutive_days: Optional[int] = Field(None, ge=1)
    allow_blocked_period_exception: bool = False


class LeavePolicyOut(LeavePolicyIn):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    leave_type_id: uuid.UUID


class LeaveTypeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=50)
    is_paid: bool = True
    is_deductible: bool = True
    requires_attachment: bool = False
    attachment_type: Optional[str] = Field(None, max_length=50)
    attachment_required_after_days: Optional[Decimal] = Field(None, ge=0)
    min_tenure_months: int = Field(0, ge=0)
    max_duration_days: Optional[Decimal] = Field(None, gt=0)
    eligible_employment_types: list[EmploymentType] = []
    eligible_employment_statuses: list[EmploymentStatus] = []
    applicable_gender: Optional[GenderType] = None
    policy: Optional[LeavePolicyIn] = None


class LeaveTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    is_paid: bool = True
    is_deductible: bool = True
    requires_attachment: bool = False
    attachment_type: Optional[str] = None
    attachment_required_after_days: Optional[Decimal] = None
    min_tenure_months: int = 0
    max_duration_days: Optional[Decimal] = None
    eligible_employment_types: list[str] = []
    eligible_employment_statuses: list[str] = []
    applicable_gender: Optional[GenderType] = None
    is_active: bool = True
    policy: Optional[LeavePolicyOut] = None


# ═════════════════════════════════════════════════════════════════════
# Entitlements / Ledger
# ═════════════════════════════════════════════════════════════════════


class EntitlementAssign(BaseModel):
    """Open (or resize) an employee's entitlement for a leave year."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_year: int = Field(..., ge=2000, le=2100)
    yearly_entitlement: Decimal = Field(..., ge=0)
    period_start: Optional[date] = None
    period_end: Optional[date] = None

    @model_validator(mode="after")
    def _check_period(self) -> "EntitlementAssign":
        if self.period_start and self.period_end and self.period_start > self.period_end:
            raise ValueError("period_start must be on or before period_end")
        return self


class AdjustmentCreate(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_year: int = Field(..., ge=2000, le=2100)
    amount: Decimal = Field(..., description="Signed number of days")
    reason: str = Field(..., min_length=3, max_length=1000)
    allow_negative: bool = False


class EntitlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_year: int
    period_start: date
    period_end: date
    yearly_entitlement: Decimal
    accrued_actual: Decimal
    accrued_rounded: Decimal
    carry_forward: Decimal
    manual_adjustment: Decimal
    taken: Decimal
    remaining: Decimal
    accrued_through: Optional[date] = None
    version: int
    is_active: bool

    # Filled by the service, not from the ORM
    pending_days: Decimal = Decimal("0")
    available: Decimal = Decimal("0")

    leave_type: Optional[LeaveTypeBrief] = None


class TeamMemberBalancesOut(BaseModel):
    employee_id: uuid.UUID
    employee_name: str
    balances: list[EntitlementOut]


class IrregularPatternOut(BaseModel):
    employee_id: uuid.UUID
    employee_name: str
    request_count: int
    first_from_date: date
    last_from_date: date


class AdjustmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    entitlement_id: uuid.UUID
    leave_year: int
    adjustment_type: AdjustmentType
    amount: Decimal
    accrual_actual: Optional[Decimal] = None
    reason: str
    actor_id: Optional[uuid.UUID] = None
    is_override: bool = False
    leave_request_id: Optional[uuid.UUID] = None
    balance_after: Decimal
    created_at: datetime


class LedgerFoldOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    accrued_actual: Decimal
    accrued_rounded: Decimal
    carry_forward: Decimal
    manual_adjustment: Decimal
    taken: Decimal
    remaining: Decimal
    entries: int


class ReconcileOut(BaseModel):
    """Stored balance next to the fold of its ledger entries."""

    entitlement: EntitlementOut
    folded: LedgerFoldOut
    in_sync: bool


# ═════════════════════════════════════════════════════════════════════
# Leave Request: write
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for submitting a leave request. Duration is always computed server-side."""

    leave_type_id: uuid.UUID
    from_date: date = Field(..., description="Leave start date (inclusive)")
    to_date: date = Field(..., description="Leave end date (inclusive)")
    justification: Optional[str] = Field(None, max_length=1000)
    attachment_id: Optional[str] = Field(None, max_length=100)
    post_leave: bool = Field(False, description="Submitted after the leave was taken")
    blocked_period_exception: bool = False


class LeaveRequestCorrection(BaseModel):
    """Corrections applied on resubmit; omitted fields keep their values."""

    from_date: Optional[date] = None
    to_date: Optional[date] = None
    justification: Optional[str] = Field(None, max_length=1000)
    attachment_id: Optional[str] = Field(None, max_length=100)
    blocked_period_exception: Optional[bool] = None
    expected_version: Optional[int] = None


class ReviewDecision(BaseModel):
    """Manager approve / reject / return, and cancel."""

    reason: Optional[str] = Field(None, max_length=1000)
    expected_version: Optional[int] = None


class HrFinalizeRequest(BaseModel):
    decision: HrDecision
    allow_negative: bool = False
    reason: Optional[str] = Field(None, max_length=1000)
    is_override: bool = False
    expected_version: Optional[int] = None


class IrregularFlagRequest(BaseModel):
    flag: bool = True
    reason: Optional[str] = Field(None, max_length=1000)


class BulkFinalizeRequest(BaseModel):
    request_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=100)
    decision: HrDecision
    reason: Optional[str] = Field(None, max_length=1000)


class BulkFinalizeError(BaseModel):
    request_id: uuid.UUID
    rule: Optional[str] = None
    detail: str


class BulkFinalizeOut(BaseModel):
    """Per-request outcome of a bulk HR decision; failures do not stop the batch."""

    total: int
    processed: int
    ids: list[uuid.UUID]
    errors: list[BulkFinalizeError] = []


class DurationPreviewRequest(BaseModel):
    leave_type_id: uuid.UUID
    from_date: date
    to_date: date
    post_leave: bool = False
    blocked_period_exception: bool = False


# ═════════════════════════════════════════════════════════════════════
# Leave Request: read
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action: str
    from_status: Optional[LeaveRequestStatus] = None
    to_status: LeaveRequestStatus
    actor_id: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    entitlement_id: Optional[uuid.UUID] = None
    from_date: date
    to_date: date
    duration_days: Decimal
    justification: Optional[str] = None
    attachment_id: Optional[str] = None
    post_leave: bool = False
    blocked_period_exception: bool = False
    status: LeaveRequestStatus
    version: int
    stage_entered_at: datetime
    submitted_at: Optional[datetime] = None
    manager_id: Optional[uuid.UUID] = None
    manager_decided_at: Optional[datetime] = None
    hr_reviewer_id: Optional[uuid.UUID] = None
    hr_decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    return_reason: Optional[str] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancelled_at: Optional[datetime] = None
    consumed_days: Decimal = Decimal("0")
    irregular_flag: bool = False
    irregular_reason: Optional[str] = None
    escalated_at: Optional[datetime] = None
    escalation_count: int = 0

    leave_type: Optional[LeaveTypeBrief] = None
    events: list[LeaveRequestEventOut] = []


class LeaveRequestListResponse(BaseModel):
    data: list[LeaveRequestOut]
    meta: PaginationMeta


class LeaveRequestQuery(BaseModel):
    """Typed filter set for listing leave requests."""

    scope: Literal["my", "team", "all"] = "my"
    employee_id: Optional[uuid.UUID] = None
    status: Optional[LeaveRequestStatus] = None
    leave_type_id: Optional[uuid.UUID] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    irregular_only: bool = False


class DurationPreviewOut(BaseModel):
    days: Decimal
    calendar_days: int
    excluded_dates: list[date] = []
    blocked: bool = False
    violations: list[dict[str, str]] = []


# ═════════════════════════════════════════════════════════════════════
# Scheduled sweeps
# ═════════════════════════════════════════════════════════════════════


class AccrualRunRequest(BaseModel):
    reference_date: date
    method: Optional[AccrualMethod] = None
    rounding_rule: Optional[RoundingRule] = None
    employee_id: Optional[uuid.UUID] = None
    leave_type_id: Optional[uuid.UUID] = None


class AccrualItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entitlement_id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    period_end: date
    actual_delta: Decimal
    rounded_delta: Decimal


class AccrualRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reference_date: date
    entitlements_scanned: int
    entries_posted: int
    total_credited: Decimal
    items: list[AccrualItemOut] = []


class CarryForwardRulesIn(BaseModel):
    reference_date: date
    cap: Optional[Decimal] = Field(None, ge=0)
    expiry_months: Optional[int] = Field(None, ge=0)
    source_year: Optional[int] = None
    leave_type_id: Optional[uuid.UUID] = None
    employee_id: Optional[uuid.UUID] = None
    dry_run: bool = False


class CarryForwardRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entitlement_id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    source_year: int
    target_year: int
    previous_remaining: Decimal
    eligible_to_carry: Decimal
    carry_forward_days: Decimal
    expired_days: Decimal
    expiry_date: Optional[date] = None
    new_balance: Decimal
    status: str


class CarryForwardSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rows: int
    carried: int
    total_carried: Decimal
    total_expired: Decimal


class CarryForwardPlanOut(BaseModel):
    reference_date: date
    dry_run: bool
    rows: list[CarryForwardRowOut]
    summary: CarryForwardSummaryOut


class CarryForwardOverrideIn(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    days: Decimal = Field(..., ge=0)
    target_year: Optional[int] = None
    expiry_date: Optional[date] = None
    reason: str = Field(..., min_length=3, max_length=1000)


class CarryForwardRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    source_year: int
    target_year: int
    carry_forward_days: Decimal
    expiry_date: Optional[date] = None
    reason: Optional[str] = None
    overridden: bool = False
    actor_id: Optional[uuid.UUID] = None


class CarryForwardTypeTotalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    leave_type_id: uuid.UUID
    records: int
    overridden: int
    total_days: Decimal


class CarryForwardReportOut(BaseModel):
    records: list[CarryForwardRecordOut]
    by_leave_type: list[CarryForwardTypeTotalOut]
    total_days: Decimal


class YearResetRequest(BaseModel):
    strategy: ResetStrategy
    reference_date: date
    employee_id: Optional[uuid.UUID] = None
    leave_type_id: Optional[uuid.UUID] = None
    dry_run: bool = False


class YearResetRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    closing_entitlement_id: Optional[uuid.UUID] = None
    closing_year: int
    new_year: int
    period_start: date
    period_end: date
    yearly_entitlement: Decimal
    action: str


class YearResetOut(BaseModel):
    strategy: ResetStrategy
    reference_date: date
    dry_run: bool
    renewed: int
    rows: list[YearResetRowOut]


class EscalationRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    scanned: int
    escalated: int
    request_ids: list[uuid.UUID] = []


# ═════════════════════════════════════════════════════════════════════
# Payroll-adjacent calculators
# ═════════════════════════════════════════════════════════════════════


class UnpaidDeductionRequest(BaseModel):
    employee_id: uuid.UUID
    base_salary: Decimal
    work_days_in_month: int
    unpaid_leave_days: Decimal


class UnpaidDeductionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: uuid.UUID
    base_salary: Decimal
    work_days_in_month: int
    unpaid_leave_days: Decimal
    daily_rate: Decimal
    deduction: Decimal
    net_salary: Decimal
    formula: str


class EncashmentRequest(BaseModel):
    employee_id: uuid.UUID
    daily_salary_rate: Decimal
    unused_leave_days: Decimal
    max_encashable_days: Optional[Decimal] = None


class EncashmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: uuid.UUID
    daily_salary_rate: Decimal
    unused_leave_days: Decimal
    max_encashable_days: Decimal
    days_encashed: Decimal
    days_forfeited: Decimal
    encashment_amount: Decimal


class SettlementLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    leave_type_id: uuid.UUID
    leave_type_code: str
    remaining: Decimal
    encashment: EncashmentOut


class SettlementPreviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: uuid.UUID
    leave_year: int
    daily_salary_rate: Decimal
    lines: list[SettlementLineOut]
    total_days_encashed: Decimal
    total_amount: Decimal

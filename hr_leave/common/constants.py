"""Shared enums and constants for the leave ledger service."""

import enum

# ═════════════════════════════════════════════════════════════════════
# Employee directory
# ═════════════════════════════════════════════════════════════════════


class EmploymentStatus(str, enum.Enum):
    active = "active"
    probation = "probation"
    notice_period = "notice_period"
    relieved = "relieved"


class EmploymentType(str, enum.Enum):
    full_time = "full_time"
    part_time = "part_time"
    contract = "contract"
    intern = "intern"


class GenderType(str, enum.Enum):
    male = "male"
    female = "female"
    other = "other"
    undisclosed = "undisclosed"


# ── Roles ───────────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


# ═════════════════════════════════════════════════════════════════════
# Leave
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestStatus(str, enum.Enum):
    submitted = "submitted"
    manager_approved = "manager_approved"
    manager_rejected = "manager_rejected"
    returned_for_correction = "returned_for_correction"
    hr_approved = "hr_approved"
    hr_rejected = "hr_rejected"
    cancelled = "cancelled"


class WorkflowAction(str, enum.Enum):
    submit = "submit"
    manager_approve = "manager_approve"
    manager_reject = "manager_reject"
    return_for_correction = "return_for_correction"
    resubmit = "resubmit"
    hr_approve = "hr_approve"
    hr_reject = "hr_reject"
    cancel = "cancel"


class HrDecision(str, enum.Enum):
    approve = "approve"
    reject = "reject"


class AccrualMethod(str, enum.Enum):
    monthly = "monthly"
    yearly = "yearly"


class RoundingRule(str, enum.Enum):
    round = "round"
    floor = "floor"
    ceil = "ceil"


class RoundingScope(str, enum.Enum):
    # Round each period's credit on its own
    per_period = "per_period"
    # Round the running unrounded total and credit the difference
    cumulative = "cumulative"


class AdjustmentType(str, enum.Enum):
    accrual = "accrual"
    carry_forward = "carry_forward"
    manual = "manual"
    consumption = "consumption"
    reversal = "reversal"


class ResetStrategy(str, enum.Enum):
    hire_date = "hire_date"
    calendar_year = "calendar_year"
    custom = "custom"


class EscalationDedupScope(str, enum.Enum):
    stage_entry = "stage_entry"
    calendar_day = "calendar_day"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    reminder = "reminder"
    alert = "alert"


# ── Misc constants ──────────────────────────────────────────────────

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

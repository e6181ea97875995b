"""Common module — shared utilities for the leave ledger service."""

from hr_leave.common.audit import AuditTrail, create_audit_entry
from hr_leave.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    AccrualMethod,
    AdjustmentType,
    EmploymentStatus,
    EmploymentType,
    EscalationDedupScope,
    GenderType,
    HrDecision,
    LeaveRequestStatus,
    NotificationType,
    ResetStrategy,
    RoundingRule,
    RoundingScope,
    UserRole,
    WorkflowAction,
)
from hr_leave.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    NotFoundError,
    NotFoundException,
    PolicyViolation,
    StateTransitionError,
    ValidationError,
    ValidationException,
    register_exception_handlers,
)
from hr_leave.common.pagination import (
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "AccrualMethod",
    "AdjustmentType",
    "EmploymentStatus",
    "EmploymentType",
    "EscalationDedupScope",
    "GenderType",
    "HrDecision",
    "LeaveRequestStatus",
    "NotificationType",
    "ResetStrategy",
    "RoundingRule",
    "RoundingScope",
    "UserRole",
    "WorkflowAction",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "NotFoundError",
    "NotFoundException",
    "PolicyViolation",
    "StateTransitionError",
    "ValidationError",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]

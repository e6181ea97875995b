"""Leave router — requests and approvals, balances, administration, scheduled sweeps.

All endpoints require authentication. Administrative and sweep endpoints
require HR. Notifications produced by a request are dispatched after the
response, once the unit of work has committed.
"""


import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hr_leave.auth.dependencies import get_current_actor, require_role
from hr_leave.auth.identity import Actor
from hr_leave.common.constants import UserRole
from hr_leave.common.exceptions import ForbiddenException
from hr_leave.common.pagination import PaginationParams
from hr_leave.core_hr.service import EmployeeDirectory
from hr_leave.database import get_db, get_session_factory
from hr_leave.leave.accrual import AccrualEngine
from hr_leave.leave.carry_forward import CarryForwardEngine, CarryForwardPlan, CarryForwardRules
from hr_leave.leave.escalation import OverdueEscalation
from hr_leave.leave.payroll import (
    PayrollCalculator,
    calculate_encashment,
    calculate_unpaid_deduction,
)
from hr_leave.leave.schemas import (
    AccrualRunOut,
    AccrualRunRequest,
    AdjustmentCreate,
    AdjustmentOut,
    BulkFinalizeOut,
    BulkFinalizeRequest,
    CarryForwardOverrideIn,
    CarryForwardPlanOut,
    CarryForwardRecordOut,
    CarryForwardReportOut,
    CarryForwardRowOut,
    CarryForwardRulesIn,
    CarryForwardSummaryOut,
    CarryForwardTypeTotalOut,
    DurationPreviewOut,
    DurationPreviewRequest,
    EncashmentOut,
    EncashmentRequest,
    EntitlementAssign,
    EntitlementOut,
    EscalationRunOut,
    HrFinalizeRequest,
    IrregularFlagRequest,
    IrregularPatternOut,
    LeavePolicyIn,
    LeavePolicyOut,
    LeaveRequestCorrection,
    LeaveRequestCreate,
    LeaveRequestListResponse,
    LeaveRequestOut,
    LeaveRequestQuery,
    LeaveTypeCreate,
    LeaveTypeOut,
    LedgerFoldOut,
    ReconcileOut,
    ReviewDecision,
    SettlementPreviewOut,
    TeamMemberBalancesOut,
    UnpaidDeductionOut,
    UnpaidDeductionRequest,
    YearResetOut,
    YearResetRequest,
    YearResetRowOut,
)
from hr_leave.leave.service import LeaveAdminService
from hr_leave.leave.workflow import RequestWorkflow
from hr_leave.leave.year_reset import LeaveYearReset
from hr_leave.notifications.service import DatabaseDispatcher, NotificationOutbox

router = APIRouter(prefix="", tags=["leave"])

_hr_only = require_role(UserRole.hr_admin, UserRole.system_admin)
_manager = require_role(UserRole.manager, UserRole.hr_admin, UserRole.system_admin)


def _dispatch_after_commit(
    background_tasks: BackgroundTasks,
    outbox: NotificationOutbox,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    if len(outbox):
        background_tasks.add_task(outbox.dispatch, DatabaseDispatcher(session_factory))


async def _ensure_can_view_employee(db: AsyncSession, actor: Actor, employee_id: uuid.UUID) -> None:
    if actor.employee_id == employee_id or actor.is_hr:
        return
    if not await EmployeeDirectory.is_manager_of(db, actor.employee_id, employee_id):
        raise ForbiddenException("You cannot view another employee's leave balances.")


def _plan_out(plan: CarryForwardPlan) -> CarryForwardPlanOut:
    return CarryForwardPlanOut(
        reference_date=plan.reference_date,
        dry_run=plan.dry_run,
        rows=[CarryForwardRowOut.model_validate(r) for r in plan.rows],
        summary=CarryForwardSummaryOut.model_validate(plan.summary),
    )


# ═════════════════════════════════════════════════════════════════════
# Leave types and policies
# ═════════════════════════════════════════════════════════════════════


# ── GET /types ──────────────────────────────────────────────────────

@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    include_inactive: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveAdminService.get_leave_types(db, active_only=not include_inactive)


# ── POST /types ─────────────────────────────────────────────────────

@router.post("/types", response_model=LeaveTypeOut, status_code=201)
async def create_leave_type(
    body: LeaveTypeCreate,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveAdminService.create_leave_type(db, body, actor_id=actor.employee_id)


# ── GET /types/{id}/policy ──────────────────────────────────────────

@router.get("/types/{leave_type_id}/policy", response_model=LeavePolicyOut)
async def get_policy(
    leave_type_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveAdminService.get_policy(db, leave_type_id)


# ── PUT /types/{id}/policy ──────────────────────────────────────────

@router.put("/types/{leave_type_id}/policy", response_model=LeavePolicyOut)
async def upsert_policy(
    leave_type_id: uuid.UUID,
    body: LeavePolicyIn,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveAdminService.upsert_policy(
        db, leave_type_id, body, actor_id=actor.employee_id,
    )


# ═════════════════════════════════════════════════════════════════════
# Entitlements and balances
# ═════════════════════════════════════════════════════════════════════


# ── POST /entitlements ──────────────────────────────────────────────

@router.post("/entitlements", response_model=EntitlementOut, status_code=201)
async def assign_entitlement(
    body: EntitlementAssign,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveAdminService.assign_entitlement(db, body, actor_id=actor.employee_id)


# ── POST /adjustments ───────────────────────────────────────────────

@router.post("/adjustments", response_model=EntitlementOut, status_code=201)
async def create_adjustment(
    body: AdjustmentCreate,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    """Signed manual adjustment. Overdrawing needs ``allow_negative``."""
    return await LeaveAdminService.create_adjustment(db, body, actor_id=actor.employee_id)


# ── GET /balances/me ────────────────────────────────────────────────

@router.get("/balances/me", response_model=list[EntitlementOut])
async def my_balances(
    year: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveAdminService.get_employee_balances(db, actor.employee_id, year=year)


# ── GET /balances/team ──────────────────────────────────────────────

@router.get("/balances/team", response_model=list[TeamMemberBalancesOut])
async def team_balances(
    year: Optional[int] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    manager_id: Optional[uuid.UUID] = Query(None, description="HR only; defaults to the caller"),
    actor: Actor = Depends(_manager),
    db: AsyncSession = Depends(get_db),
):
    """Balances of the manager's direct and L2 reports."""
    if manager_id is not None and manager_id != actor.employee_id and not actor.is_hr:
        raise ForbiddenException("Only HR can view another manager's team.")
    return await LeaveAdminService.team_balances(
        db, manager_id or actor.employee_id, year=year, leave_type_id=leave_type_id,
    )


# ── GET /balances/{employee_id} ─────────────────────────────────────

@router.get("/balances/{employee_id}", response_model=list[EntitlementOut])
async def employee_balances(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_can_view_employee(db, actor, employee_id)
    return await LeaveAdminService.get_employee_balances(db, employee_id, year=year)


# ── GET /adjustments/{employee_id} ──────────────────────────────────

@router.get("/adjustments/{employee_id}", response_model=list[AdjustmentOut])
async def adjustment_history(
    employee_id: uuid.UUID,
    leave_type_id: Optional[uuid.UUID] = Query(None),
    leave_year: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_can_view_employee(db, actor, employee_id)
    return await LeaveAdminService.get_adjustment_history(
        db, employee_id, leave_type_id=leave_type_id, leave_year=leave_year,
    )


# ── GET /entitlements/{entitlement_id}/reconcile ────────────────────

@router.get("/entitlements/{entitlement_id}/reconcile", response_model=ReconcileOut)
async def reconcile_entitlement(
    entitlement_id: uuid.UUID,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    """Fold the adjustment ledger and compare it with the stored balance."""
    entitlement, fold = await LeaveAdminService.reconcile(db, entitlement_id)
    return ReconcileOut(
        entitlement=EntitlementOut.model_validate(entitlement),
        folded=LedgerFoldOut.model_validate(fold),
        in_sync=fold.matches(entitlement),
    )


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
async def submit_request(
    body: LeaveRequestCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Submit a leave request. Duration is computed against the leave calendar."""
    outbox = NotificationOutbox()
    leave_req = await RequestWorkflow.submit(db, actor, body, outbox=outbox)
    _dispatch_after_commit(background_tasks, outbox, session_factory)
    return leave_req


# ── POST /requests/preview-duration ─────────────────────────────────

@router.post("/requests/preview-duration", response_model=DurationPreviewOut)
async def preview_duration(
    body: DurationPreviewRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await RequestWorkflow.preview_duration(
        db,
        body.leave_type_id,
        body.from_date,
        body.to_date,
        post_leave=body.post_leave,
        blocked_exception=body.blocked_period_exception,
    )
    return DurationPreviewOut(
        days=result.days,
        calendar_days=result.calendar_days,
        excluded_dates=list(result.excluded_dates),
        blocked=result.blocked,
        violations=[{"rule": v.rule, "message": v.message} for v in result.violations],
    )


# ── GET /requests ───────────────────────────────────────────────────

@router.get("/requests", response_model=LeaveRequestListResponse)
async def list_requests(
    query: LeaveRequestQuery = Depends(),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RequestWorkflow.list_requests(db, actor, query, pagination)


# ── GET /requests/pending ───────────────────────────────────────────

@router.get("/requests/pending", response_model=list[LeaveRequestOut])
async def pending_for_manager(
    actor: Actor = Depends(_manager),
    db: AsyncSession = Depends(get_db),
):
    """Requests awaiting the caller's decision as line manager."""
    return await RequestWorkflow.get_pending_for_manager(db, actor.employee_id)


# ── GET /requests/pending-hr ────────────────────────────────────────

@router.get("/requests/pending-hr", response_model=list[LeaveRequestOut])
async def pending_for_hr(
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    return await RequestWorkflow.get_pending_for_hr(db)


# ── GET /requests/irregular-patterns ────────────────────────────────

@router.get("/requests/irregular-patterns", response_model=list[IrregularPatternOut])
async def irregular_patterns(
    today: Optional[date] = Query(None),
    actor: Actor = Depends(_manager),
    db: AsyncSession = Depends(get_db),
):
    """Employees with repeated sick-category requests; HR sees everyone, managers their reports."""
    return await LeaveAdminService.irregular_patterns(
        db,
        today=today or date.today(),
        manager_id=None if actor.is_hr else actor.employee_id,
    )


# ── POST /requests/bulk-finalize ────────────────────────────────────

@router.post("/requests/bulk-finalize", response_model=BulkFinalizeOut)
async def bulk_finalize(
    body: BulkFinalizeRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Approve or reject many manager-approved requests; failures are reported per request."""
    outbox = NotificationOutbox()
    result = await RequestWorkflow.bulk_finalize(
        db, body.request_ids, actor, body.decision, outbox=outbox, reason=body.reason,
    )
    _dispatch_after_commit(background_tasks, outbox, session_factory)
    return result


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RequestWorkflow.get_request(db, request_id, actor)


# ── POST /requests/{id}/manager-approve ─────────────────────────────

@router.post("/requests/{request_id}/manager-approve", response_model=LeaveRequestOut)
async def manager_approve(
    request_id: uuid.UUID,
    body: ReviewDecision,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    outbox = NotificationOutbox()
    leave_req = await RequestWorkflow.manager_approve(
        db, request_id, actor,
        outbox=outbox, reason=body.reason, expected_version=body.expected_version,
    )
    _dispatch_after_commit(background_tasks, outbox, session_factory)
    return leave_req


# ── POST /requests/{id}/manager-reject ──────────────────────────────

@router.post("/requests/{request_id}/manager-reject", response_model=LeaveRequestOut)
async def manager_reject(
    request_id: uuid.UUID,
    body: ReviewDecision,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    outbox = NotificationOutbox()
    leave_req = await RequestWorkflow.manager_reject(
        db, request_id, actor,
        outbox=outbox, reason=body.reason or "", expected_version=body.expected_version,
    )
    _dispatch_after_commit(background_tasks, outbox, session_factory)
    return leave_req


# ── POST /requests/{id}/return ──────────────────────────────────────

@router.post("/requests/{request_id}/return", response_model=LeaveRequestOut)
async def return_for_correction(
    request_id: uuid.UUID,
    body: ReviewDecision,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    outbox = NotificationOutbox()
    leave_req = await RequestWorkflow.return_for_correction(
        db, request_id, actor,
        outbox=outbox, reason=body.reason or "", expected_version=body.expected_version,
    )
    _dispatch_after_commit(background_tasks, outbox, session_factory)
    return leave_req


# ── POST /requests/{id}/resubmit ────────────────────────────────────

@router.post("/requests/{request_id}/resubmit", response_model=LeaveRequestOut)
async def resubmit(
    request_id: uuid.UUID,
    body: LeaveRequestCorrection,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    outbox = NotificationOutbox()
    leave_req = await RequestWorkflow.resubmit(db, request_id, actor, body, outbox=outbox)
    _dispatch_after_commit(background_tasks, outbox, session_factory)
    return leave_req


# ── POST /requests/{id}/hr-finalize ─────────────────────────────────

@router.post("/requests/{request_id}/hr-finalize", response_model=LeaveRequestOut)
async def hr_finalize(
    request_id: uuid.UUID,
    body: HrFinalizeRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Approve (debiting the balance) or reject a manager-approved request."""
    outbox = NotificationOutbox()
    leave_req = await RequestWorkflow.hr_finalize(
        db, request_id, actor, body.decision,
        outbox=outbox,
        allow_negative=body.allow_negative,
        reason=body.reason,
        is_override=body.is_override,
        expected_version=body.expected_version,
    )
    _dispatch_after_commit(background_tasks, outbox, session_factory)
    return leave_req


# ── POST /requests/{id}/cancel ──────────────────────────────────────

@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_request(
    request_id: uuid.UUID,
    body: ReviewDecision,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    outbox = NotificationOutbox()
    leave_req = await RequestWorkflow.cancel(
        db, request_id, actor,
        outbox=outbox, reason=body.reason, expected_version=body.expected_version,
    )
    _dispatch_after_commit(background_tasks, outbox, session_factory)
    return leave_req


# ── PUT /requests/{id}/irregular ────────────────────────────────────

@router.put("/requests/{request_id}/irregular", response_model=LeaveRequestOut)
async def flag_irregular(
    request_id: uuid.UUID,
    body: IrregularFlagRequest,
    actor: Actor = Depends(_manager),
    db: AsyncSession = Depends(get_db),
):
    return await RequestWorkflow.flag_irregular(
        db, request_id, actor, flag=body.flag, reason=body.reason,
    )


# ═════════════════════════════════════════════════════════════════════
# Scheduled sweeps (HR-triggered)
# ═════════════════════════════════════════════════════════════════════


# ── POST /accrual/run ───────────────────────────────────────────────

@router.post("/accrual/run", response_model=AccrualRunOut)
async def run_accrual(
    body: AccrualRunRequest,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    return await AccrualEngine.run_accrual(
        db,
        body.reference_date,
        method=body.method,
        rounding_rule=body.rounding_rule,
        employee_id=body.employee_id,
        leave_type_id=body.leave_type_id,
        actor_id=actor.employee_id,
    )


# ── POST /carry-forward/preview ─────────────────────────────────────

@router.post("/carry-forward/preview", response_model=CarryForwardPlanOut)
async def preview_carry_forward(
    body: CarryForwardRulesIn,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    rules = CarryForwardRules(
        cap=body.cap,
        expiry_months=body.expiry_months,
        source_year=body.source_year,
        leave_type_id=body.leave_type_id,
        employee_id=body.employee_id,
    )
    return _plan_out(await CarryForwardEngine.preview_carry_forward(db, body.reference_date, rules))


# ── POST /carry-forward/run ─────────────────────────────────────────

@router.post("/carry-forward/run", response_model=CarryForwardPlanOut)
async def run_carry_forward(
    body: CarryForwardRulesIn,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    rules = CarryForwardRules(
        cap=body.cap,
        expiry_months=body.expiry_months,
        source_year=body.source_year,
        leave_type_id=body.leave_type_id,
        employee_id=body.employee_id,
    )
    plan = await CarryForwardEngine.carry_forward(
        db, body.reference_date, rules, dry_run=body.dry_run, actor_id=actor.employee_id,
    )
    return _plan_out(plan)


# ── POST /carry-forward/override ────────────────────────────────────

@router.post("/carry-forward/override", response_model=CarryForwardRecordOut)
async def override_carry_forward(
    body: CarryForwardOverrideIn,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    return await CarryForwardEngine.override_carry_forward(
        db,
        body.employee_id,
        body.leave_type_id,
        body.days,
        reason=body.reason,
        actor_id=actor.employee_id,
        target_year=body.target_year,
        expiry_date=body.expiry_date,
    )


# ── GET /carry-forward/report ───────────────────────────────────────

@router.get("/carry-forward/report", response_model=CarryForwardReportOut)
async def carry_forward_report(
    target_year: Optional[int] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    report = await CarryForwardEngine.get_carry_forward_report(
        db, target_year=target_year, leave_type_id=leave_type_id, employee_id=employee_id,
    )
    return CarryForwardReportOut(
        records=[CarryForwardRecordOut.model_validate(r) for r in report.records],
        by_leave_type=[CarryForwardTypeTotalOut.model_validate(t) for t in report.by_leave_type],
        total_days=report.total_days,
    )


# ── POST /year-reset ────────────────────────────────────────────────

@router.post("/year-reset", response_model=YearResetOut)
async def reset_leave_year(
    body: YearResetRequest,
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    plan = await LeaveYearReset.reset_leave_year(
        db,
        body.strategy,
        body.reference_date,
        employee_id=body.employee_id,
        leave_type_id=body.leave_type_id,
        dry_run=body.dry_run,
        actor_id=actor.employee_id,
    )
    return YearResetOut(
        strategy=plan.strategy,
        reference_date=plan.reference_date,
        dry_run=plan.dry_run,
        renewed=plan.renewed,
        rows=[YearResetRowOut.model_validate(r) for r in plan.rows],
    )


# ── POST /escalations/run ───────────────────────────────────────────

@router.post("/escalations/run", response_model=EscalationRunOut)
async def run_escalations(
    background_tasks: BackgroundTasks,
    threshold_hours: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    outbox = NotificationOutbox()
    run = await OverdueEscalation.check_and_escalate_overdue(
        db, outbox=outbox, threshold_hours=threshold_hours,
    )
    _dispatch_after_commit(background_tasks, outbox, session_factory)
    return run


# ═════════════════════════════════════════════════════════════════════
# Payroll-adjacent calculators
# ═════════════════════════════════════════════════════════════════════


# ── POST /payroll/unpaid-deduction ──────────────────────────────────

@router.post("/payroll/unpaid-deduction", response_model=UnpaidDeductionOut)
async def unpaid_deduction(
    body: UnpaidDeductionRequest,
    actor: Actor = Depends(_hr_only),
):
    return calculate_unpaid_deduction(
        body.employee_id, body.base_salary, body.work_days_in_month, body.unpaid_leave_days,
    )


# ── POST /payroll/encashment ────────────────────────────────────────

@router.post("/payroll/encashment", response_model=EncashmentOut)
async def encashment(
    body: EncashmentRequest,
    actor: Actor = Depends(_hr_only),
):
    return calculate_encashment(
        body.employee_id, body.daily_salary_rate, body.unused_leave_days, body.max_encashable_days,
    )


# ── GET /payroll/unpaid-days/{employee_id} ──────────────────────────

@router.get("/payroll/unpaid-days/{employee_id}")
async def unpaid_days(
    employee_id: uuid.UUID,
    period_start: date = Query(...),
    period_end: date = Query(...),
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    days = await PayrollCalculator.get_unpaid_leave_days(db, employee_id, period_start, period_end)
    return {"employee_id": employee_id, "unpaid_leave_days": days}


# ── GET /payroll/settlement-preview/{employee_id} ───────────────────

@router.get("/payroll/settlement-preview/{employee_id}", response_model=SettlementPreviewOut)
async def settlement_preview(
    employee_id: uuid.UUID,
    daily_salary_rate: Decimal = Query(..., gt=0),
    leave_year: Optional[int] = Query(None),
    actor: Actor = Depends(_hr_only),
    db: AsyncSession = Depends(get_db),
):
    preview = await PayrollCalculator.preview_final_settlement(
        db, employee_id, daily_salary_rate, leave_year=leave_year,
    )
    return SettlementPreviewOut.model_validate(preview)

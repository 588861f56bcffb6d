"""Leave ledger router — accrual, carry-forward, entitlements, adjustments,
finalization, suspensions and pattern analysis.

Mutations require the ``X-Actor-Id`` header; bulk runs are rate-limited.
"""

import uuid
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.pagination import PaginatedResponse, PaginationParams
from leave_ledger.common.rate_limit import limiter
from leave_ledger.config import settings
from leave_ledger.database import get_db
from leave_ledger.dependencies import get_actor_id, get_ledger_policy
from leave_ledger.leave.accrual import AccrualEngine
from leave_ledger.leave.carry_forward import CarryForwardProcessor
from leave_ledger.leave.models import LeaveEntitlement
from leave_ledger.leave.patterns import (
    PatternAnalysisResult,
    PatternConfig,
    analyze_team_leave_patterns,
)
from leave_ledger.leave.policy import LedgerPolicy
from leave_ledger.leave.schemas import (
    AccrualRunRequest,
    AccrualRunResponse,
    AccrualSuspensionOut,
    AdjustmentCreateRequest,
    AdjustmentOut,
    AdjustmentResponse,
    CarryForwardCommitResponse,
    CarryForwardOverrideRequest,
    CarryForwardOverrideResponse,
    CarryForwardPreviewResponse,
    CarryForwardReportResponse,
    CarryForwardRequest,
    EmployeeBalancesResponse,
    EntitlementAssignRequest,
    EntitlementOut,
    FinalizeRequest,
    FinalizeResponse,
    FlagIrregularRequest,
    LeaveRequestOut,
    PatternAnalyzeRequest,
    RecalcResponse,
    SuspensionApplyRequest,
    SuspensionApplyResponse,
    SuspensionPreviewOut,
    SuspensionPreviewRequest,
)
from leave_ledger.leave.service import LedgerService
from leave_ledger.leave.suspension import apply_suspension, preview_suspension

router = APIRouter(prefix="", tags=["leave-ledger"])


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _entitlement_out(entitlement: LeaveEntitlement, as_of: date) -> EntitlementOut:
    out = EntitlementOut.model_validate(entitlement)
    return out.model_copy(update={"remaining": entitlement.remaining_as_of(as_of)})


# ── POST /accrual/run ───────────────────────────────────────────────

@router.post("/accrual/run", response_model=AccrualRunResponse)
@limiter.limit(settings.RATE_LIMIT_BULK)
async def run_accrual(
    request: Request,
    body: AccrualRunRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    db: AsyncSession = Depends(get_db),
):
    """Accrue one period for every entitlement. Not idempotent by default."""
    return await AccrualEngine.run_accrual(
        db,
        reference_date=body.reference_date,
        method=body.method,
        rounding_rule=body.rounding_rule,
        policy=policy,
        actor_id=actor_id,
        skip_already_accrued=body.skip_already_accrued,
    )


# ── Carry-forward ───────────────────────────────────────────────────

@router.post("/carry-forward/preview", response_model=CarryForwardPreviewResponse)
async def preview_carry_forward(
    body: CarryForwardRequest,
    policy: LedgerPolicy = Depends(get_ledger_policy),
    db: AsyncSession = Depends(get_db),
):
    """Year-end carry-forward dry run; nothing is written."""
    return await CarryForwardProcessor.preview(
        db,
        reference_date=body.reference_date,
        policy=policy,
        leave_type_rules=body.leave_type_rules,
    )


@router.post("/carry-forward", response_model=CarryForwardCommitResponse)
@limiter.limit(settings.RATE_LIMIT_BULK)
async def commit_carry_forward(
    request: Request,
    body: CarryForwardRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    db: AsyncSession = Depends(get_db),
):
    return await CarryForwardProcessor.commit(
        db,
        reference_date=body.reference_date,
        policy=policy,
        leave_type_rules=body.leave_type_rules,
        actor_id=actor_id,
    )


@router.put("/carry-forward/override", response_model=CarryForwardOverrideResponse)
async def override_carry_forward(
    body: CarryForwardOverrideRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Manually set an employee's carry-forward; reason is mandatory."""
    return await CarryForwardProcessor.override(
        db,
        employee_id=body.employee_id,
        leave_type_id=body.leave_type_id,
        carry_forward_days=body.carry_forward_days,
        expiry_date=body.expiry_date,
        reason=body.reason,
        actor_id=actor_id,
    )


@router.get("/carry-forward/report", response_model=CarryForwardReportResponse)
async def carry_forward_report(
    employee_id: Optional[uuid.UUID] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    as_of: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await CarryForwardProcessor.report(
        db, employee_id=employee_id, leave_type_id=leave_type_id, as_of=as_of,
    )


# ── Entitlements ────────────────────────────────────────────────────

@router.put("/entitlements", response_model=EntitlementOut)
async def assign_entitlement(
    body: EntitlementAssignRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    db: AsyncSession = Depends(get_db),
):
    entitlement = await LedgerService.assign_entitlement(
        db,
        employee_id=body.employee_id,
        leave_type_id=body.leave_type_id,
        yearly_entitlement=body.yearly_entitlement,
        policy=policy,
        allow_negative=body.allow_negative,
        reason=body.reason,
        actor_id=actor_id,
    )
    return _entitlement_out(entitlement, _today())


@router.get("/entitlements/{employee_id}", response_model=EmployeeBalancesResponse)
async def employee_balances(
    employee_id: uuid.UUID,
    as_of: Optional[date] = Query(None),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    db: AsyncSession = Depends(get_db),
):
    """Every balance of the employee; missing entitlements are initialized."""
    as_of = as_of or _today()
    entitlements = await LedgerService.get_employee_balances(
        db, employee_id, policy=policy, as_of=as_of,
    )
    return EmployeeBalancesResponse(
        employee_id=employee_id,
        as_of=as_of,
        balances=[_entitlement_out(e, as_of) for e in entitlements],
    )


@router.get(
    "/entitlements/{employee_id}/adjustments",
    response_model=PaginatedResponse[AdjustmentOut],
)
async def list_adjustments(
    employee_id: uuid.UUID,
    leave_type_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    page = await LedgerService.list_adjustments(
        db, employee_id, pagination, leave_type_id=leave_type_id,
    )
    return PaginatedResponse[AdjustmentOut](
        data=[AdjustmentOut.model_validate(row) for row in page.data],
        meta=page.meta,
    )


# ── POST /adjustments ───────────────────────────────────────────────

@router.post("/adjustments", response_model=AdjustmentResponse, status_code=201)
async def create_adjustment(
    body: AdjustmentCreateRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    db: AsyncSession = Depends(get_db),
):
    """Manual add/deduct. Amount must be positive and the reason non-empty."""
    entitlement, adjustment = await LedgerService.create_adjustment(
        db,
        employee_id=body.employee_id,
        leave_type_id=body.leave_type_id,
        adjustment_type=body.adjustment_type,
        amount=body.amount,
        reason=body.reason,
        actor_id=actor_id,
        policy=policy,
        allow_negative=body.allow_negative,
    )
    return AdjustmentResponse(
        entitlement=_entitlement_out(entitlement, _today()),
        adjustment=AdjustmentOut.model_validate(adjustment),
    )


# ── POST /employees/{employee_id}/recalc ────────────────────────────

@router.post("/employees/{employee_id}/recalc", response_model=RecalcResponse)
async def recalc_employee(
    employee_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(get_actor_id),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    db: AsyncSession = Depends(get_db),
):
    lines = await LedgerService.recalc_employee(
        db, employee_id, actor_id=actor_id, policy=policy,
    )
    return RecalcResponse(employee_id=employee_id, entitlements=lines)


# ── Requests ────────────────────────────────────────────────────────

@router.post("/requests/{request_id}/finalize", response_model=FinalizeResponse)
async def finalize_request(
    request_id: uuid.UUID,
    body: FinalizeRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    db: AsyncSession = Depends(get_db),
):
    """Terminal HR approve/reject. Overrides reverse a prior decision."""
    leave_request, entitlement = await LedgerService.finalize_request(
        db,
        request_id,
        actor_id=actor_id,
        decision=body.decision,
        policy=policy,
        allow_negative=body.allow_negative,
        reason=body.reason,
        is_override=body.is_override,
    )
    return FinalizeResponse(
        request=LeaveRequestOut.model_validate(leave_request),
        entitlement=_entitlement_out(entitlement, _today()),
    )


@router.put("/requests/{request_id}/flag", response_model=LeaveRequestOut)
async def flag_irregular(
    request_id: uuid.UUID,
    body: FlagIrregularRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await LedgerService.flag_irregular(
        db, request_id, flagged=body.flagged, reason=body.reason, actor_id=actor_id,
    )


# ── Suspensions ─────────────────────────────────────────────────────

@router.post("/suspensions/preview", response_model=SuspensionPreviewOut)
async def suspension_preview(
    body: SuspensionPreviewRequest,
    policy: LedgerPolicy = Depends(get_ledger_policy),
):
    return preview_suspension(
        body.from_date,
        body.to_date,
        body.yearly_entitlement,
        baseline=policy.suspension_baseline_entitlement,
    )


@router.post("/suspensions", response_model=SuspensionApplyResponse, status_code=201)
async def suspension_apply(
    body: SuspensionApplyRequest,
    actor_id: uuid.UUID = Depends(get_actor_id),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    db: AsyncSession = Depends(get_db),
):
    suspension, preview, entitlement = await apply_suspension(
        db,
        employee_id=body.employee_id,
        leave_type_id=body.leave_type_id,
        suspension_type=body.suspension_type,
        from_date=body.from_date,
        to_date_=body.to_date,
        reason=body.reason,
        actor_id=actor_id,
        policy=policy,
    )
    return SuspensionApplyResponse(
        suspension=AccrualSuspensionOut.model_validate(suspension),
        preview=SuspensionPreviewOut.model_validate(preview),
        entitlement=_entitlement_out(entitlement, _today()),
    )


# ── Pattern analysis ────────────────────────────────────────────────

@router.post("/patterns/analyze", response_model=list[PatternAnalysisResult])
async def analyze_patterns(body: PatternAnalyzeRequest):
    """Pure analysis over caller-supplied leave histories."""
    config = body.config or PatternConfig()
    if body.holidays:
        config = config.model_copy(
            update={"holidays": set(config.holidays) | set(body.holidays)}
        )
    leaves_by_employee = {
        employee_id: {"leaves": data.leaves, "employeeName": data.employee_name}
        for employee_id, data in body.leaves_by_employee.items()
    }
    return analyze_team_leave_patterns(leaves_by_employee, config, as_of=body.as_of)


@router.get("/patterns/team", response_model=list[PatternAnalysisResult])
async def team_patterns(
    employee_ids: Optional[list[uuid.UUID]] = Query(None),
    as_of: Optional[date] = Query(None),
    holidays: Optional[list[date]] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Analyze stored requests for the given employees (or everyone)."""
    return await LedgerService.analyze_stored_patterns(
        db, employee_ids=employee_ids, as_of=as_of, holidays=holidays,
    )

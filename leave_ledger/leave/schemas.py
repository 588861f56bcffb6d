"""Leave ledger Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Request            → request bodies (write)
  - *Response / *Out    → response bodies (read)
  - *Brief              → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from leave_ledger.common.constants import (
    AccrualMethod,
    AdjustmentSource,
    AdjustmentType,
    FinalizeDecision,
    LeaveStatus,
    RoundingRule,
    SuspensionType,
)
from leave_ledger.leave.patterns import PatternConfig
from leave_ledger.leave.policy import CarryForwardRule


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeBrief(BaseModel):
    """Minimal leave type info embedded in ledger responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    is_paid: bool = True
    allow_negative_balance: bool = False


class BatchFailure(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    error: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Entitlements & adjustments
# ═════════════════════════════════════════════════════════════════════


class EntitlementOut(BaseModel):
    """Entitlement with the computed ``remaining`` balance."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    yearly_entitlement: Decimal
    accrued: Decimal
    carry_forward: Decimal
    carry_forward_expiry: Optional[date] = None
    taken: Decimal
    pending: Decimal
    period_start: Optional[date] = None
    last_accrual_date: Optional[date] = None
    carry_forward_processed_at: Optional[date] = None
    version: int

    # Computed — filled by the router, not from the ORM
    remaining: Decimal = Decimal("0")

    leave_type: Optional[LeaveTypeBrief] = None


class EntitlementAssignRequest(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    yearly_entitlement: Decimal
    allow_negative: bool = False
    reason: Optional[str] = Field(None, max_length=1000)


class AdjustmentCreateRequest(BaseModel):
    """Manual add/deduct against an employee's entitlement."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    adjustment_type: AdjustmentType
    amount: Decimal
    reason: str = Field(..., max_length=1000)
    allow_negative: bool = False


class AdjustmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    entitlement_id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    adjustment_type: AdjustmentType
    source: AdjustmentSource
    amount: Decimal
    reason: str
    actor_id: Optional[uuid.UUID] = None
    leave_request_id: Optional[uuid.UUID] = None
    created_at: datetime


class AdjustmentResponse(BaseModel):
    entitlement: EntitlementOut
    adjustment: AdjustmentOut


class EmployeeBalancesResponse(BaseModel):
    employee_id: uuid.UUID
    as_of: date
    balances: list[EntitlementOut]


class RecalcLine(BaseModel):
    leave_type_id: uuid.UUID
    leave_type_name: str
    previous_taken: Decimal
    previous_pending: Decimal
    taken: Decimal
    pending: Decimal
    remaining: Decimal
    changed: bool


class RecalcResponse(BaseModel):
    employee_id: uuid.UUID
    entitlements: list[RecalcLine]


# ═════════════════════════════════════════════════════════════════════
# Accrual
# ═════════════════════════════════════════════════════════════════════


class AccrualRunRequest(BaseModel):
    reference_date: date
    method: AccrualMethod = AccrualMethod.monthly
    rounding_rule: RoundingRule = RoundingRule.none
    skip_already_accrued: bool = Field(
        False,
        description="Skip entitlements already accrued in the same period",
    )


class AccrualRunResponse(BaseModel):
    processed: int
    created: int
    skipped: int
    failed: int
    total_entitlements: int
    total_accrued: Decimal
    failures: list[BatchFailure] = []
    reference_date: date
    method: AccrualMethod
    rounding_rule: RoundingRule


# ═════════════════════════════════════════════════════════════════════
# Carry-forward
# ═════════════════════════════════════════════════════════════════════


class CarryForwardRequest(BaseModel):
    reference_date: date
    leave_type_rules: Optional[dict[str, CarryForwardRule]] = Field(
        None,
        description="Per leave-type code or policy key: cap, expiryMonths, canCarryForward",
    )


class CarryForwardDetail(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type_name: str
    previous_remaining: Decimal
    capped_amount: Decimal
    carried_forward: Decimal
    expired: Decimal
    expiry_date: Optional[date] = None


class CarryForwardTypeSummary(BaseModel):
    employees: int
    carried_forward: Decimal
    expired: Decimal


class CarryForwardSummary(BaseModel):
    by_leave_type: dict[str, CarryForwardTypeSummary]
    employees_processed: int
    total_carried_forward: Decimal
    total_expired: Decimal


class CarryForwardPreviewResponse(BaseModel):
    reference_date: date
    details: list[CarryForwardDetail]
    summary: CarryForwardSummary


class CarryForwardCommitResponse(BaseModel):
    reference_date: date
    processed: int
    total_carried_forward: Decimal
    total_expired: Decimal
    failed: int
    failures: list[BatchFailure] = []


class CarryForwardOverrideRequest(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    carry_forward_days: Decimal
    expiry_date: Optional[date] = None
    reason: str = Field(..., max_length=1000)


class CarryForwardOverrideResponse(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    previous_carry_forward: Decimal
    new_carry_forward: Decimal
    carry_forward_expiry: Optional[date] = None
    new_remaining: Decimal


class CarryForwardReportRow(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type_name: str
    yearly_entitlement: Decimal
    accrued: Decimal
    carry_forward: Decimal
    carry_forward_expiry: Optional[date] = None
    taken: Decimal
    pending: Decimal
    remaining: Decimal
    last_accrual_date: Optional[date] = None
    override_reason: Optional[str] = None


class CarryForwardReportTypeSummary(BaseModel):
    employees: int
    carry_forward: Decimal


class CarryForwardReportSummary(BaseModel):
    total_employees: int
    total_carry_forward: Decimal
    by_leave_type: dict[str, CarryForwardReportTypeSummary]


class CarryForwardReportResponse(BaseModel):
    summary: CarryForwardReportSummary
    report: list[CarryForwardReportRow]


# ═════════════════════════════════════════════════════════════════════
# Requests — finalization & flags
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: Optional[str] = None
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    duration_days: Decimal
    status: LeaveStatus
    reason: Optional[str] = None
    finalized_by: Optional[uuid.UUID] = None
    finalized_at: Optional[datetime] = None
    reviewer_remarks: Optional[str] = None
    is_override: bool = False
    override_reason: Optional[str] = None
    flagged_irregular: bool = False
    irregular_reason: Optional[str] = None
    created_at: datetime


class FinalizeRequest(BaseModel):
    """Terminal HR decision on a leave request."""

    decision: FinalizeDecision
    allow_negative: bool = False
    reason: Optional[str] = Field(None, max_length=1000)
    is_override: bool = Field(
        False, description="Reverses a prior decision; requires a reason"
    )


class FinalizeResponse(BaseModel):
    request: LeaveRequestOut
    entitlement: EntitlementOut


class FlagIrregularRequest(BaseModel):
    flagged: bool
    reason: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Suspensions
# ═════════════════════════════════════════════════════════════════════


class SuspensionPreviewRequest(BaseModel):
    from_date: date
    to_date: date
    yearly_entitlement: Optional[Decimal] = Field(
        None, description="Defaults to the policy baseline (21 days)"
    )


class SuspensionPreviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    working_days: int
    total_days: int
    month_working_days: int
    prorate_ratio: Decimal
    original_accrual: Decimal
    adjusted_accrual: Decimal
    adjustment_days: Decimal


class SuspensionApplyRequest(BaseModel):
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    suspension_type: SuspensionType
    from_date: date
    to_date: date
    reason: str = Field(..., max_length=1000)


class AccrualSuspensionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: Optional[uuid.UUID] = None
    suspension_type: SuspensionType
    from_date: date
    to_date: date
    reason: str
    adjustment_days: Decimal
    created_at: datetime


class SuspensionApplyResponse(BaseModel):
    suspension: AccrualSuspensionOut
    preview: SuspensionPreviewOut
    entitlement: EntitlementOut


# ═════════════════════════════════════════════════════════════════════
# Pattern analysis
# ═════════════════════════════════════════════════════════════════════


class EmployeeLeaves(BaseModel):
    employee_name: Optional[str] = None
    # Raw records: malformed entries are dropped by the analyzer, not rejected
    leaves: list[dict[str, Any]] = []


class PatternAnalyzeRequest(BaseModel):
    leaves_by_employee: dict[str, EmployeeLeaves]
    holidays: list[date] = []
    as_of: Optional[date] = None
    config: Optional[PatternConfig] = None

"""Leave ORM models: LeaveType, LeaveEntitlement, LeaveAdjustment,
AccrualSuspension, LeaveRequest."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_ledger.common.constants import (
    AdjustmentSource,
    AdjustmentType,
    LeaveStatus,
    SuspensionType,
)
from leave_ledger.database import Base

ZERO = Decimal("0")

# Day amounts: half-days and fractional accruals both need to survive storage.
Days = sa.Numeric(10, 4)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveType(Base):
    __tablename__ = "leave_types"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(sa.String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    # Overrides the policy default for this type when set
    default_entitlement: Mapped[Optional[Decimal]] = mapped_column(Days)
    is_paid: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    allow_negative_balance: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )


class LeaveEntitlement(Base):
    """Per-employee, per-leave-type balance for the current policy period."""

    __tablename__ = "leave_entitlements"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type_id", name="uq_leave_entitlement"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    yearly_entitlement: Mapped[Decimal] = mapped_column(Days, default=ZERO)
    # Accrual increments and manual credits beyond what was taken
    accrued: Mapped[Decimal] = mapped_column(Days, default=ZERO)
    carry_forward: Mapped[Decimal] = mapped_column(Days, default=ZERO)
    carry_forward_expiry: Mapped[Optional[date]] = mapped_column(sa.Date)
    carry_forward_processed_at: Mapped[Optional[date]] = mapped_column(sa.Date)
    carry_forward_override_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    taken: Mapped[Decimal] = mapped_column(Days, default=ZERO)
    pending: Mapped[Decimal] = mapped_column(Days, default=ZERO)
    period_start: Mapped[Optional[date]] = mapped_column(sa.Date)
    last_accrual_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    leave_type: Mapped[LeaveType] = relationship(lazy="joined", innerjoin=True)

    # ── Balance math ────────────────────────────────────────────────

    def unused_carry_forward(self) -> Decimal:
        """Carry-forward days not yet consumed (taken draws on them first)."""
        return max(self.carry_forward - self.taken, ZERO)

    def carry_forward_lapsed(self, as_of: date) -> bool:
        return (
            self.carry_forward_expiry is not None
            and as_of > self.carry_forward_expiry
            and self.unused_carry_forward() > 0
        )

    def effective_carry_forward(self, as_of: Optional[date] = None) -> Decimal:
        if as_of is not None and self.carry_forward_lapsed(as_of):
            return self.carry_forward - self.unused_carry_forward()
        return self.carry_forward

    def remaining_as_of(self, as_of: Optional[date] = None) -> Decimal:
        return (
            self.yearly_entitlement
            + self.accrued
            + self.effective_carry_forward(as_of)
            - self.taken
            - self.pending
        )

    @property
    def remaining(self) -> Decimal:
        return self.remaining_as_of(None)


class LeaveAdjustment(Base):
    """Append-only ledger entry; never updated or deleted."""

    __tablename__ = "leave_adjustments"
    __table_args__ = (
        sa.Index("ix_leave_adjustments_emp_type", "employee_id", "leave_type_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    entitlement_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_entitlements.id"), nullable=False
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    adjustment_type: Mapped[AdjustmentType] = mapped_column(
        sa.Enum(AdjustmentType, name="adjustment_type"), nullable=False
    )
    source: Mapped[AdjustmentSource] = mapped_column(
        sa.Enum(AdjustmentSource, name="adjustment_source"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Days, nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    leave_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_requests.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )


class AccrualSuspension(Base):
    """A period during which accrual is prorated (unpaid leave, long absence)."""

    __tablename__ = "accrual_suspensions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    # NULL applies the suspension to every leave type of the employee
    leave_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id")
    )
    suspension_type: Mapped[SuspensionType] = mapped_column(
        sa.Enum(SuspensionType, name="suspension_type"), nullable=False
    )
    from_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    to_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    adjustment_days: Mapped[Decimal] = mapped_column(Days, default=ZERO)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )


class LeaveRequest(Base):
    """Leave request as owned by the request workflow; read-mostly here."""

    __tablename__ = "leave_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    employee_name: Mapped[Optional[str]] = mapped_column(sa.String(200))
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    duration_days: Mapped[Decimal] = mapped_column(Days, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        default=LeaveStatus.pending,
    )
    finalized_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    finalized_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    reviewer_remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    is_override: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    override_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    flagged_irregular: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    irregular_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now()
    )

    # Relationships
    leave_type: Mapped[LeaveType] = relationship(lazy="joined", innerjoin=True)

"""Entitlement store — lookups, auto-initialization, lazy expiry, ledger writes.

All reads of an entitlement that feed a balance go through here so the
carry-forward expiry is reconciled before anyone computes ``remaining``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from leave_ledger.common.constants import AdjustmentSource, AdjustmentType, LeaveStatus
from leave_ledger.common.exceptions import ConcurrentUpdateException, NotFoundException
from leave_ledger.leave.models import (
    ZERO,
    AccrualSuspension,
    LeaveAdjustment,
    LeaveEntitlement,
    LeaveRequest,
    LeaveType,
)
from leave_ledger.leave.policy import LedgerPolicy

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(timezone.utc).date()


class EntitlementStore:
    """Async persistence helpers for entitlements and their adjustment ledger."""

    # ─────────────────────────────────────────────────────────────────
    # Leave types
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveType:
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))
        return leave_type

    @staticmethod
    async def list_leave_types(
        db: AsyncSession, *, active_only: bool = True,
    ) -> Sequence[LeaveType]:
        query = select(LeaveType).order_by(LeaveType.code)
        if active_only:
            query = query.where(LeaveType.is_active.is_(True))
        return (await db.execute(query)).scalars().all()

    # ─────────────────────────────────────────────────────────────────
    # Entitlements
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_entitlement(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveEntitlement]:
        query = select(LeaveEntitlement).where(
            LeaveEntitlement.employee_id == employee_id,
            LeaveEntitlement.leave_type_id == leave_type_id,
        )
        if for_update:
            query = query.with_for_update(of=LeaveEntitlement)
        return (await db.execute(query)).scalars().first()

    @staticmethod
    async def list_entitlements(
        db: AsyncSession,
        *,
        employee_id: Optional[uuid.UUID] = None,
        leave_type_id: Optional[uuid.UUID] = None,
    ) -> Sequence[LeaveEntitlement]:
        query = select(LeaveEntitlement).order_by(
            LeaveEntitlement.employee_id, LeaveEntitlement.leave_type_id
        )
        if employee_id is not None:
            query = query.where(LeaveEntitlement.employee_id == employee_id)
        if leave_type_id is not None:
            query = query.where(LeaveEntitlement.leave_type_id == leave_type_id)
        return (await db.execute(query)).scalars().all()

    @classmethod
    async def get_or_create(
        cls,
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        policy: LedgerPolicy,
        *,
        actor_id: Optional[uuid.UUID] = None,
        for_update: bool = False,
        as_of: Optional[date] = None,
    ) -> tuple[LeaveEntitlement, bool]:
        """Return ``(entitlement, created)``; a missing record is initialized
        from the policy default and its yearly amount is put on the ledger."""
        entitlement = await cls.get_entitlement(
            db, employee_id, leave_type.id, for_update=for_update
        )
        if entitlement is not None:
            await cls.apply_lazy_expiry(db, entitlement, as_of or _today())
            return entitlement, False

        yearly = policy.default_entitlement_for(leave_type)
        entitlement = await cls.create_entitlement(
            db,
            employee_id,
            leave_type,
            yearly,
            actor_id=actor_id,
            reason=f"Auto-initialized with policy default for {leave_type.name}",
            as_of=as_of,
        )
        logger.info(
            "Auto-initialized entitlement employee=%s leave_type=%s yearly=%s",
            employee_id, leave_type.code, yearly,
        )
        return entitlement, True

    @classmethod
    async def create_entitlement(
        cls,
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        yearly: Decimal,
        *,
        actor_id: Optional[uuid.UUID],
        reason: str,
        as_of: Optional[date] = None,
    ) -> LeaveEntitlement:
        entitlement = LeaveEntitlement(
            employee_id=employee_id,
            leave_type_id=leave_type.id,
            leave_type=leave_type,
            yearly_entitlement=yearly,
            accrued=ZERO,
            carry_forward=ZERO,
            taken=ZERO,
            pending=ZERO,
            period_start=as_of or _today(),
        )
        db.add(entitlement)
        await cls.save(db, entitlement)
        await cls.record_adjustment(
            db,
            entitlement,
            adjustment_type=AdjustmentType.add,
            source=AdjustmentSource.assignment,
            amount=yearly,
            reason=reason,
            actor_id=actor_id,
        )
        return entitlement

    @classmethod
    async def apply_lazy_expiry(
        cls, db: AsyncSession, entitlement: LeaveEntitlement, as_of: date,
    ) -> Decimal:
        """Zero the unused carry-forward once its expiry date has passed.

        Returns the number of days expired (0 when nothing changed).
        """
        if not entitlement.carry_forward_lapsed(as_of):
            return ZERO
        expired = entitlement.unused_carry_forward()
        entitlement.carry_forward = entitlement.carry_forward - expired
        await cls.save(db, entitlement)
        await cls.record_adjustment(
            db,
            entitlement,
            adjustment_type=AdjustmentType.deduct,
            source=AdjustmentSource.expiry,
            amount=expired,
            reason=(
                f"Carry-forward expired on {entitlement.carry_forward_expiry.isoformat()}"
            ),
            actor_id=None,
        )
        logger.info(
            "Expired %s carry-forward days employee=%s leave_type_id=%s",
            expired, entitlement.employee_id, entitlement.leave_type_id,
        )
        return expired

    @staticmethod
    async def save(db: AsyncSession, entitlement: LeaveEntitlement) -> None:
        """Flush pending changes; a version mismatch becomes a 409."""
        entitlement.updated_at = datetime.now(timezone.utc)
        try:
            await db.flush()
        except StaleDataError as exc:
            raise ConcurrentUpdateException(
                "LeaveEntitlement", str(entitlement.id)
            ) from exc

    # ─────────────────────────────────────────────────────────────────
    # Adjustment ledger
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def record_adjustment(
        db: AsyncSession,
        entitlement: LeaveEntitlement,
        *,
        adjustment_type: AdjustmentType,
        source: AdjustmentSource,
        amount: Decimal,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
        leave_request_id: Optional[uuid.UUID] = None,
    ) -> LeaveAdjustment:
        entry = LeaveAdjustment(
            entitlement_id=entitlement.id,
            employee_id=entitlement.employee_id,
            leave_type_id=entitlement.leave_type_id,
            adjustment_type=adjustment_type,
            source=source,
            amount=amount,
            reason=reason,
            actor_id=actor_id,
            leave_request_id=leave_request_id,
        )
        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    def adjustments_query(
        employee_id: uuid.UUID, leave_type_id: Optional[uuid.UUID] = None,
    ):
        query = (
            select(LeaveAdjustment)
            .where(LeaveAdjustment.employee_id == employee_id)
            .order_by(LeaveAdjustment.created_at.desc())
        )
        if leave_type_id is not None:
            query = query.where(LeaveAdjustment.leave_type_id == leave_type_id)
        return query

    # ─────────────────────────────────────────────────────────────────
    # Request store / roster
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_request(
        db: AsyncSession, request_id: uuid.UUID, *, for_update: bool = False,
    ) -> LeaveRequest:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if for_update:
            query = query.with_for_update(of=LeaveRequest)
        request = (await db.execute(query)).scalars().first()
        if request is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return request

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        *,
        employee_ids: Optional[Iterable[uuid.UUID]] = None,
        statuses: Optional[Iterable[LeaveStatus]] = None,
        leave_type_id: Optional[uuid.UUID] = None,
    ) -> Sequence[LeaveRequest]:
        query = select(LeaveRequest).order_by(
            LeaveRequest.employee_id, LeaveRequest.start_date
        )
        if employee_ids is not None:
            query = query.where(LeaveRequest.employee_id.in_(list(employee_ids)))
        if statuses is not None:
            query = query.where(LeaveRequest.status.in_(list(statuses)))
        if leave_type_id is not None:
            query = query.where(LeaveRequest.leave_type_id == leave_type_id)
        return (await db.execute(query)).scalars().all()

    @staticmethod
    async def employee_ids(db: AsyncSession) -> list[uuid.UUID]:
        """Every employee known to the ledger or the request store."""
        roster = union(
            select(LeaveEntitlement.employee_id),
            select(LeaveRequest.employee_id),
        ).subquery()
        rows = await db.execute(select(roster.c.employee_id))
        return sorted({row[0] for row in rows}, key=str)

    @staticmethod
    async def list_suspensions(
        db: AsyncSession, employee_id: uuid.UUID, leave_type_id: uuid.UUID,
    ) -> Sequence[AccrualSuspension]:
        """Suspensions that still prorate accrual for this leave type.

        A suspension whose adjustment days were already deducted from the
        balance is excluded, so the same absence is not charged twice.
        """
        query = select(AccrualSuspension).where(
            AccrualSuspension.employee_id == employee_id,
            (
                AccrualSuspension.leave_type_id.is_(None)
                | (AccrualSuspension.leave_type_id == leave_type_id)
            ),
            (
                AccrualSuspension.adjustment_days.is_(None)
                | (AccrualSuspension.adjustment_days == 0)
            ),
        )
        return (await db.execute(query)).scalars().all()

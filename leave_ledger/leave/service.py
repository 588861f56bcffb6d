"""Leave ledger service layer — balance operations on entitlements.

Business logic:
  - Entitlement assignment and manual add/deduct adjustments
  - Recalculation of taken/pending from the request store
  - Terminal HR finalization (approve/reject, with override) of requests
  - Balance reads with lazy carry-forward expiry, adjustment history
  - Irregular-request flag passthrough
  - Pattern analysis over the stored request history
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.audit import create_audit_entry
from leave_ledger.common.constants import (
    AdjustmentSource,
    AdjustmentType,
    FinalizeDecision,
    LeaveStatus,
)
from leave_ledger.common.exceptions import (
    InsufficientBalanceException,
    ValidationException,
)
from leave_ledger.common.pagination import PaginatedResponse, PaginationParams, paginate
from leave_ledger.leave.models import ZERO, LeaveAdjustment, LeaveEntitlement, LeaveRequest
from leave_ledger.leave.patterns import (
    LeaveHistoryEntry,
    PatternAnalysisResult,
    PatternConfig,
    analyze_team_leave_patterns,
)
from leave_ledger.leave.policy import LedgerPolicy
from leave_ledger.leave.store import EntitlementStore

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def require_reason(reason: Optional[str], field: str = "reason") -> str:
    text = (reason or "").strip()
    if not text:
        raise ValidationException({field: ["A non-empty reason is required."]})
    return text


# ═════════════════════════════════════════════════════════════════════
# LedgerService
# ═════════════════════════════════════════════════════════════════════


class LedgerService:
    """Async balance operations: assignment, adjustments, recalc, finalization."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _check_balance(
        entitlement: LeaveEntitlement,
        policy: LedgerPolicy,
        *,
        available: Decimal,
        requested: Decimal,
        allow_negative: bool,
    ) -> None:
        """Raise unless *requested* fits in *available* or overdraft is allowed."""
        if available - requested >= 0:
            return
        if allow_negative or policy.allows_overdraft(entitlement.leave_type):
            return
        raise InsufficientBalanceException(
            employee_id=entitlement.employee_id,
            leave_type=entitlement.leave_type.name,
            requested=requested,
            remaining=available,
        )

    @staticmethod
    def _credit(entitlement: LeaveEntitlement, amount: Decimal) -> None:
        """Give days back: reduce ``taken`` first, overflow into ``accrued``."""
        from_taken = min(entitlement.taken, amount)
        entitlement.taken = entitlement.taken - from_taken
        entitlement.accrued = entitlement.accrued + (amount - from_taken)

    # ─────────────────────────────────────────────────────────────────
    # Entitlement assignment
    # ─────────────────────────────────────────────────────────────────

    @classmethod
    async def assign_entitlement(
        cls,
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        yearly_entitlement: Decimal,
        actor_id: Optional[uuid.UUID],
        policy: LedgerPolicy,
        allow_negative: bool = False,
        reason: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> LeaveEntitlement:
        """Set (or create) the base yearly entitlement; must be positive.

        Lowering it below what is already consumed is rejected for
        non-overdraft types unless *allow_negative* is set.
        """
        yearly = Decimal(yearly_entitlement)
        if yearly <= 0:
            raise ValidationException(
                {"yearly_entitlement": ["Yearly entitlement must be greater than 0."]}
            )
        leave_type = await EntitlementStore.get_leave_type(db, leave_type_id)
        note = (reason or "").strip() or "Entitlement assigned"

        entitlement = await EntitlementStore.get_entitlement(
            db, employee_id, leave_type_id, for_update=True
        )
        if entitlement is None:
            return await EntitlementStore.create_entitlement(
                db, employee_id, leave_type, yearly,
                actor_id=actor_id, reason=note, as_of=as_of,
            )

        as_of = as_of or _today()
        await EntitlementStore.apply_lazy_expiry(db, entitlement, as_of)
        delta = yearly - entitlement.yearly_entitlement
        if delta == 0:
            return entitlement
        if delta < 0:
            cls._check_balance(
                entitlement,
                policy,
                available=entitlement.remaining_as_of(as_of),
                requested=-delta,
                allow_negative=allow_negative,
            )
        entitlement.yearly_entitlement = yearly
        await EntitlementStore.save(db, entitlement)
        await EntitlementStore.record_adjustment(
            db,
            entitlement,
            adjustment_type=AdjustmentType.add if delta > 0 else AdjustmentType.deduct,
            source=AdjustmentSource.assignment,
            amount=abs(delta),
            reason=note,
            actor_id=actor_id,
        )
        return entitlement

    # ─────────────────────────────────────────────────────────────────
    # Manual adjustments
    # ─────────────────────────────────────────────────────────────────

    @classmethod
    async def create_adjustment(
        cls,
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        adjustment_type: AdjustmentType,
        amount: Decimal,
        reason: str,
        actor_id: Optional[uuid.UUID],
        policy: LedgerPolicy,
        allow_negative: bool = False,
        source: AdjustmentSource = AdjustmentSource.manual,
        as_of: Optional[date] = None,
    ) -> tuple[LeaveEntitlement, LeaveAdjustment]:
        """Add or deduct days against an entitlement and record the entry."""
        amount = Decimal(amount)
        errors: dict[str, list[str]] = {}
        if amount <= 0:
            errors["amount"] = ["Amount must be greater than 0."]
        if not (reason or "").strip():
            errors["reason"] = ["A non-empty reason is required."]
        try:
            adjustment_type = AdjustmentType(adjustment_type)
        except ValueError:
            errors["adjustment_type"] = ["Adjustment type must be 'add' or 'deduct'."]
        if errors:
            raise ValidationException(errors)

        as_of = as_of or _today()
        leave_type = await EntitlementStore.get_leave_type(db, leave_type_id)
        entitlement, _ = await EntitlementStore.get_or_create(
            db, employee_id, leave_type, policy,
            actor_id=actor_id, for_update=True, as_of=as_of,
        )

        if adjustment_type == AdjustmentType.deduct:
            cls._check_balance(
                entitlement,
                policy,
                available=entitlement.remaining_as_of(as_of),
                requested=amount,
                allow_negative=allow_negative,
            )
            entitlement.taken = entitlement.taken + amount
        else:
            cls._credit(entitlement, amount)

        await EntitlementStore.save(db, entitlement)
        entry = await EntitlementStore.record_adjustment(
            db,
            entitlement,
            adjustment_type=adjustment_type,
            source=source,
            amount=amount,
            reason=reason.strip(),
            actor_id=actor_id,
        )
        return entitlement, entry

    # ─────────────────────────────────────────────────────────────────
    # Recalculation
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def recalc_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID],
        policy: LedgerPolicy,
        as_of: Optional[date] = None,
    ) -> list[dict]:
        """Rebuild taken/pending from approved/pending request durations.

        Only requests starting after the entitlement's last carry-forward
        count, since the carry-forward closed the previous period. Running
        it twice with no request changes is a no-op the second time.
        """
        as_of = as_of or _today()
        requests = await EntitlementStore.list_requests(
            db,
            employee_ids=[employee_id],
            statuses=[LeaveStatus.approved, LeaveStatus.pending],
        )
        by_type: dict[uuid.UUID, list[LeaveRequest]] = defaultdict(list)
        leave_types = {}
        for req in requests:
            leave_types[req.leave_type_id] = req.leave_type
            by_type[req.leave_type_id].append(req)

        entitlements = {
            ent.leave_type_id: ent
            for ent in await EntitlementStore.list_entitlements(
                db, employee_id=employee_id
            )
        }
        for leave_type_id, leave_type in leave_types.items():
            if leave_type_id not in entitlements:
                ent, _ = await EntitlementStore.get_or_create(
                    db, employee_id, leave_type, policy,
                    actor_id=actor_id, as_of=as_of,
                )
                entitlements[leave_type_id] = ent

        results = []
        for leave_type_id, ent in entitlements.items():
            await EntitlementStore.apply_lazy_expiry(db, ent, as_of)
            boundary = ent.carry_forward_processed_at
            new_taken = new_pending = ZERO
            for req in by_type[leave_type_id]:
                if boundary is not None and req.start_date <= boundary:
                    continue
                if req.status == LeaveStatus.approved:
                    new_taken += Decimal(req.duration_days)
                else:
                    new_pending += Decimal(req.duration_days)
            previous_taken, previous_pending = ent.taken, ent.pending
            changed = previous_taken != new_taken or previous_pending != new_pending
            if changed:
                ent.taken = new_taken
                ent.pending = new_pending
                await EntitlementStore.save(db, ent)
                delta = new_taken - previous_taken
                await EntitlementStore.record_adjustment(
                    db,
                    ent,
                    adjustment_type=(
                        AdjustmentType.deduct if delta > 0 else AdjustmentType.add
                    ),
                    source=AdjustmentSource.recalculation,
                    amount=abs(delta),
                    reason=(
                        f"Recalculated from requests: taken {previous_taken} -> "
                        f"{new_taken}, pending {previous_pending} -> {new_pending}"
                    ),
                    actor_id=actor_id,
                )
            results.append({
                "leave_type_id": leave_type_id,
                "leave_type_name": ent.leave_type.name,
                "previous_taken": previous_taken,
                "previous_pending": previous_pending,
                "taken": ent.taken,
                "pending": ent.pending,
                "remaining": ent.remaining_as_of(as_of),
                "changed": changed,
            })
        return results

    # ─────────────────────────────────────────────────────────────────
    # Finalization (terminal HR decision)
    # ─────────────────────────────────────────────────────────────────

    @classmethod
    async def finalize_request(
        cls,
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID],
        decision: FinalizeDecision,
        policy: LedgerPolicy,
        allow_negative: bool = False,
        reason: Optional[str] = None,
        is_override: bool = False,
        as_of: Optional[date] = None,
    ) -> tuple[LeaveRequest, LeaveEntitlement]:
        """Approve or reject a request and move its days between pools.

        Allowed transitions:
          approve: pending → approved; rejected → approved (override only)
          reject:  pending → rejected; approved → rejected (override only)
        """
        decision = FinalizeDecision(decision)
        if is_override:
            reason = require_reason(reason)

        request = await EntitlementStore.get_request(db, request_id, for_update=True)
        old_status = request.status
        target = (
            LeaveStatus.approved
            if decision == FinalizeDecision.approve
            else LeaveStatus.rejected
        )
        reversible = (
            LeaveStatus.rejected
            if decision == FinalizeDecision.approve
            else LeaveStatus.approved
        )
        if old_status == reversible and not is_override:
            raise ValidationException({
                "status": [
                    f"Request is already {old_status.value}; "
                    "reversing it requires isOverride with a reason."
                ]
            })
        if old_status not in (LeaveStatus.pending, reversible):
            raise ValidationException({
                "status": [
                    f"Cannot {decision.value} a request that is {old_status.value}."
                ]
            })

        as_of = as_of or _today()
        entitlement, _ = await EntitlementStore.get_or_create(
            db, request.employee_id, request.leave_type, policy,
            actor_id=actor_id, for_update=True, as_of=as_of,
        )
        days = Decimal(request.duration_days)
        released = (
            min(entitlement.pending, days)
            if old_status == LeaveStatus.pending
            else ZERO
        )

        if decision == FinalizeDecision.approve:
            cls._check_balance(
                entitlement,
                policy,
                available=entitlement.remaining_as_of(as_of) + released,
                requested=days,
                allow_negative=allow_negative,
            )
            entitlement.pending = entitlement.pending - released
            entitlement.taken = entitlement.taken + days
            adjustment_type, amount = AdjustmentType.deduct, days
        elif old_status == LeaveStatus.approved:
            # Override of an approval gives the consumed days back
            returned = min(entitlement.taken, days)
            entitlement.taken = entitlement.taken - returned
            adjustment_type, amount = AdjustmentType.add, returned
        else:
            entitlement.pending = entitlement.pending - released
            adjustment_type, amount = AdjustmentType.add, released

        await EntitlementStore.save(db, entitlement)
        note = (reason or "").strip() or None
        await EntitlementStore.record_adjustment(
            db,
            entitlement,
            adjustment_type=adjustment_type,
            source=AdjustmentSource.finalization,
            amount=amount,
            reason=(
                f"Request {decision.value}d"
                + (" (override)" if is_override else "")
                + (f": {note}" if note else "")
            ),
            actor_id=actor_id,
            leave_request_id=request.id,
        )

        now = datetime.now(timezone.utc)
        request.status = target
        request.finalized_by = actor_id
        request.finalized_at = now
        request.reviewer_remarks = note
        request.is_override = is_override
        request.override_reason = note if is_override else None
        request.updated_at = now
        await db.flush()

        await create_audit_entry(
            db,
            action="override" if is_override else "finalize",
            entity_type="leave_request",
            entity_id=request.id,
            actor_id=actor_id,
            old_values={"status": old_status.value},
            new_values={
                "status": target.value,
                "decision": decision.value,
                "days": str(days),
                "allow_negative": allow_negative,
                "reason": note,
            },
        )
        if is_override:
            logger.info(
                "Override finalization request=%s %s -> %s by %s",
                request.id, old_status.value, target.value, actor_id,
            )
        return request, entitlement

    # ─────────────────────────────────────────────────────────────────
    # Irregular flag passthrough
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def flag_irregular(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        flagged: bool,
        reason: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveRequest:
        request = await EntitlementStore.get_request(db, request_id)
        old = {
            "flagged_irregular": request.flagged_irregular,
            "irregular_reason": request.irregular_reason,
        }
        request.flagged_irregular = flagged
        request.irregular_reason = ((reason or "").strip() or None) if flagged else None
        request.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action="flag",
            entity_type="leave_request",
            entity_id=request.id,
            actor_id=actor_id,
            old_values=old,
            new_values={
                "flagged_irregular": request.flagged_irregular,
                "irregular_reason": request.irregular_reason,
            },
        )
        return request

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_employee_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        policy: LedgerPolicy,
        as_of: Optional[date] = None,
    ) -> Sequence[LeaveEntitlement]:
        """Every entitlement of the employee, initializing active leave types
        that have none yet."""
        as_of = as_of or _today()
        for leave_type in await EntitlementStore.list_leave_types(db):
            await EntitlementStore.get_or_create(
                db, employee_id, leave_type, policy, as_of=as_of,
            )
        return await EntitlementStore.list_entitlements(db, employee_id=employee_id)

    @staticmethod
    async def list_adjustments(
        db: AsyncSession,
        employee_id: uuid.UUID,
        params: PaginationParams,
        *,
        leave_type_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        query = EntitlementStore.adjustments_query(employee_id, leave_type_id)
        return await paginate(db, query, params, model=LeaveAdjustment)

    # ─────────────────────────────────────────────────────────────────
    # Pattern analysis over the request store
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def analyze_stored_patterns(
        db: AsyncSession,
        *,
        employee_ids: Optional[Sequence[uuid.UUID]] = None,
        as_of: Optional[date] = None,
        holidays: Optional[Sequence[date]] = None,
        employee_names: Optional[dict[str, str]] = None,
        config: Optional[PatternConfig] = None,
    ) -> list[PatternAnalysisResult]:
        """Load requests and run the team analyzer over them."""
        config = config or PatternConfig()
        if holidays:
            config = config.model_copy(
                update={"holidays": set(config.holidays) | set(holidays)}
            )
        requests = await EntitlementStore.list_requests(
            db, employee_ids=employee_ids, statuses=config.statuses,
        )
        names = {str(k): v for k, v in (employee_names or {}).items()}
        grouped: dict[str, dict] = {}
        for req in requests:
            key = str(req.employee_id)
            bucket = grouped.setdefault(
                key, {"leaves": [], "employeeName": names.get(key) or req.employee_name}
            )
            bucket["leaves"].append(LeaveHistoryEntry(
                id=str(req.id),
                leave_type_name=req.leave_type.name,
                leave_type_code=req.leave_type.code,
                start_date=req.start_date,
                end_date=req.end_date,
                duration_days=float(req.duration_days),
                status=req.status,
                created_at=req.created_at,
            ))
        return analyze_team_leave_patterns(grouped, config, as_of=as_of)

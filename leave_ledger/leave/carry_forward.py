"""Carry-forward processor — year-end preview/commit, overrides and report."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.audit import create_audit_entry
from leave_ledger.common.constants import AdjustmentSource, AdjustmentType
from leave_ledger.common.dates import DateLike, add_months, to_date
from leave_ledger.common.exceptions import (
    AppException,
    NotFoundException,
    ValidationException,
)
from leave_ledger.leave.models import ZERO, LeaveEntitlement
from leave_ledger.leave.policy import CarryForwardRule, LedgerPolicy
from leave_ledger.leave.service import require_reason
from leave_ledger.leave.store import EntitlementStore

logger = logging.getLogger(__name__)

Rules = Optional[Mapping[str, CarryForwardRule]]


@dataclass
class CarryForwardLine:
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type_name: str
    previous_remaining: Decimal
    capped_amount: Decimal
    carried_forward: Decimal
    expired: Decimal
    expiry_date: Optional[date]


def compute_carry_forward(
    previous_remaining: Decimal, rule: CarryForwardRule, reference: date,
) -> tuple[Decimal, Decimal, Decimal, Optional[date]]:
    """Return ``(capped, carried, expired, expiry_date)`` for one balance."""
    positive = max(previous_remaining, ZERO)
    if not rule.can_carry_forward:
        return ZERO, ZERO, positive, None
    capped = min(positive, rule.cap)
    expired = max(previous_remaining - capped, ZERO)
    return capped, capped, expired, add_months(reference, rule.expiry_months)


def _line(
    entitlement: LeaveEntitlement,
    policy: LedgerPolicy,
    rules: Rules,
    reference: date,
) -> CarryForwardLine:
    rule = policy.carry_forward_rule_for(entitlement.leave_type, rules)
    previous = entitlement.remaining_as_of(reference)
    capped, carried, expired, expiry = compute_carry_forward(previous, rule, reference)
    return CarryForwardLine(
        employee_id=entitlement.employee_id,
        leave_type_id=entitlement.leave_type_id,
        leave_type_name=entitlement.leave_type.name,
        previous_remaining=previous,
        capped_amount=capped,
        carried_forward=carried,
        expired=expired,
        expiry_date=expiry,
    )


def _summarize(lines: list[CarryForwardLine]) -> dict:
    by_type: dict[str, dict] = defaultdict(
        lambda: {"employees": 0, "carried_forward": ZERO, "expired": ZERO}
    )
    for line in lines:
        bucket = by_type[line.leave_type_name]
        bucket["employees"] += 1
        bucket["carried_forward"] += line.carried_forward
        bucket["expired"] += line.expired
    return {
        "by_leave_type": dict(by_type),
        "employees_processed": len({line.employee_id for line in lines}),
        "total_carried_forward": sum((l.carried_forward for l in lines), ZERO),
        "total_expired": sum((l.expired for l in lines), ZERO),
    }


def _parse_reference(reference_date: DateLike) -> date:
    try:
        return to_date(reference_date)
    except (TypeError, ValueError) as exc:
        raise ValidationException({"reference_date": [str(exc)]}) from exc


class CarryForwardProcessor:
    """Year-end carry-forward across every entitlement."""

    @staticmethod
    async def preview(
        db: AsyncSession,
        *,
        reference_date: DateLike,
        policy: LedgerPolicy,
        leave_type_rules: Rules = None,
    ) -> dict:
        """Compute what :meth:`commit` would do without writing anything."""
        reference = _parse_reference(reference_date)
        lines = [
            _line(ent, policy, leave_type_rules, reference)
            for ent in await EntitlementStore.list_entitlements(db)
        ]
        return {
            "reference_date": reference,
            "details": [asdict(line) for line in lines],
            "summary": _summarize(lines),
        }

    @staticmethod
    async def _commit_one(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        *,
        reference: date,
        policy: LedgerPolicy,
        rules: Rules,
        actor_id: Optional[uuid.UUID],
    ) -> CarryForwardLine:
        entitlement = await EntitlementStore.get_entitlement(
            db, employee_id, leave_type_id, for_update=True
        )
        if entitlement is None:
            raise NotFoundException("LeaveEntitlement", f"{employee_id}/{leave_type_id}")
        line = _line(entitlement, policy, rules, reference)

        entitlement.carry_forward = line.carried_forward
        entitlement.carry_forward_expiry = line.expiry_date
        entitlement.carry_forward_override_reason = None
        entitlement.taken = ZERO
        entitlement.pending = ZERO
        entitlement.accrued = ZERO
        entitlement.period_start = reference
        entitlement.carry_forward_processed_at = reference
        await EntitlementStore.save(db, entitlement)

        carried = line.carried_forward > 0
        if carried or line.expired > 0:
            await EntitlementStore.record_adjustment(
                db,
                entitlement,
                adjustment_type=AdjustmentType.add if carried else AdjustmentType.deduct,
                source=AdjustmentSource.carry_forward,
                amount=line.carried_forward if carried else line.expired,
                reason=(
                    f"Year-end carry-forward {reference.isoformat()}: "
                    f"previous remaining {line.previous_remaining}, "
                    f"carried {line.carried_forward}, expired {line.expired}"
                ),
                actor_id=actor_id,
            )
        logger.debug(
            "Carried forward %s (expired %s) employee=%s leave_type_id=%s",
            line.carried_forward, line.expired, employee_id, leave_type_id,
        )
        return line

    @classmethod
    async def commit(
        cls,
        db: AsyncSession,
        *,
        reference_date: DateLike,
        policy: LedgerPolicy,
        leave_type_rules: Rules = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> dict:
        """Set each entitlement's carry-forward and open the new period.

        The carry-forward is SET, not added; taken, pending and accrued
        restart at zero.
        """
        reference = _parse_reference(reference_date)
        keys = [
            (ent.employee_id, ent.leave_type_id)
            for ent in await EntitlementStore.list_entitlements(db)
        ]

        lines: list[CarryForwardLine] = []
        failures: list[dict] = []
        for employee_id, leave_type_id in keys:
            try:
                async with db.begin_nested():
                    line = await cls._commit_one(
                        db,
                        employee_id,
                        leave_type_id,
                        reference=reference,
                        policy=policy,
                        rules=leave_type_rules,
                        actor_id=actor_id,
                    )
            except (AppException, SQLAlchemyError) as exc:
                logger.warning(
                    "Carry-forward failed employee=%s leave_type_id=%s: %s",
                    employee_id, leave_type_id, exc,
                )
                failures.append({
                    "employee_id": employee_id,
                    "leave_type_id": leave_type_id,
                    "error": str(exc),
                })
                continue
            lines.append(line)

        summary = _summarize(lines)
        result = {
            "reference_date": reference,
            "processed": len(lines),
            "total_carried_forward": summary["total_carried_forward"],
            "total_expired": summary["total_expired"],
            "failed": len(failures),
            "failures": failures,
        }
        logger.info(
            "Carry-forward run %s: processed=%d carried=%s expired=%s failed=%d",
            reference.isoformat(), result["processed"],
            result["total_carried_forward"], result["total_expired"], result["failed"],
        )
        return result

    @staticmethod
    async def override(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        carry_forward_days: Decimal,
        reason: str,
        actor_id: Optional[uuid.UUID],
        expiry_date: Optional[DateLike] = None,
        as_of: Optional[date] = None,
    ) -> dict:
        """Manually set an entitlement's carry-forward, bypassing the formula."""
        days = Decimal(carry_forward_days)
        if days < 0:
            raise ValidationException(
                {"carry_forward_days": ["Carry-forward days cannot be negative."]}
            )
        note = require_reason(reason)
        expiry = to_date(expiry_date) if expiry_date is not None else None

        entitlement = await EntitlementStore.get_entitlement(
            db, employee_id, leave_type_id, for_update=True
        )
        if entitlement is None:
            raise NotFoundException("LeaveEntitlement", f"{employee_id}/{leave_type_id}")

        previous = entitlement.carry_forward
        previous_expiry = entitlement.carry_forward_expiry
        entitlement.carry_forward = days
        if expiry is not None:
            entitlement.carry_forward_expiry = expiry
        entitlement.carry_forward_override_reason = note
        await EntitlementStore.save(db, entitlement)

        delta = days - previous
        await EntitlementStore.record_adjustment(
            db,
            entitlement,
            adjustment_type=AdjustmentType.add if delta >= 0 else AdjustmentType.deduct,
            source=AdjustmentSource.carry_forward_override,
            amount=abs(delta),
            reason=f"Carry-forward override {previous} -> {days}: {note}",
            actor_id=actor_id,
        )
        await create_audit_entry(
            db,
            action="carry_forward_override",
            entity_type="leave_entitlement",
            entity_id=entitlement.id,
            actor_id=actor_id,
            old_values={
                "carry_forward": str(previous),
                "carry_forward_expiry": (
                    previous_expiry.isoformat() if previous_expiry else None
                ),
            },
            new_values={
                "carry_forward": str(days),
                "carry_forward_expiry": (
                    entitlement.carry_forward_expiry.isoformat()
                    if entitlement.carry_forward_expiry
                    else None
                ),
                "reason": note,
            },
        )
        logger.info(
            "Carry-forward override employee=%s leave_type_id=%s %s -> %s by %s",
            employee_id, leave_type_id, previous, days, actor_id,
        )
        as_of = as_of or datetime.now(timezone.utc).date()
        return {
            "employee_id": employee_id,
            "leave_type_id": leave_type_id,
            "previous_carry_forward": previous,
            "new_carry_forward": days,
            "carry_forward_expiry": entitlement.carry_forward_expiry,
            "new_remaining": entitlement.remaining_as_of(as_of),
        }

    @staticmethod
    async def report(
        db: AsyncSession,
        *,
        employee_id: Optional[uuid.UUID] = None,
        leave_type_id: Optional[uuid.UUID] = None,
        as_of: Optional[date] = None,
    ) -> dict:
        """Current carry-forward snapshot; lapsed carry-forward is reconciled."""
        as_of = as_of or datetime.now(timezone.utc).date()
        entitlements = await EntitlementStore.list_entitlements(
            db, employee_id=employee_id, leave_type_id=leave_type_id
        )
        rows = []
        by_type: dict[str, dict] = defaultdict(
            lambda: {"employees": 0, "carry_forward": ZERO}
        )
        for ent in entitlements:
            await EntitlementStore.apply_lazy_expiry(db, ent, as_of)
            rows.append({
                "employee_id": ent.employee_id,
                "leave_type_id": ent.leave_type_id,
                "leave_type_name": ent.leave_type.name,
                "yearly_entitlement": ent.yearly_entitlement,
                "accrued": ent.accrued,
                "carry_forward": ent.carry_forward,
                "carry_forward_expiry": ent.carry_forward_expiry,
                "taken": ent.taken,
                "pending": ent.pending,
                "remaining": ent.remaining_as_of(as_of),
                "last_accrual_date": ent.last_accrual_date,
                "override_reason": ent.carry_forward_override_reason,
            })
            bucket = by_type[ent.leave_type.name]
            bucket["employees"] += 1
            bucket["carry_forward"] += ent.carry_forward

        return {
            "summary": {
                "total_employees": len({row["employee_id"] for row in rows}),
                "total_carry_forward": sum(
                    (row["carry_forward"] for row in rows), ZERO
                ),
                "by_leave_type": dict(by_type),
            },
            "report": rows,
        }

"""Accrual engine — periodic increments onto every entitlement.

Each (employee, leave type) record is processed inside its own SAVEPOINT so
one failure rolls back that record only; the run reports every failure.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.constants import (
    ACCRUAL_DIVISORS,
    AccrualMethod,
    AdjustmentSource,
    AdjustmentType,
    RoundingRule,
)
from leave_ledger.common.dates import DateLike, accrual_period, to_date
from leave_ledger.common.exceptions import AppException, ValidationException
from leave_ledger.leave.models import LeaveType
from leave_ledger.leave.policy import LedgerPolicy
from leave_ledger.leave.store import EntitlementStore
from leave_ledger.leave.suspension import FOUR_PLACES, ONE, accrual_ratio

logger = logging.getLogger(__name__)

_ROUNDING = {
    RoundingRule.round: ROUND_HALF_UP,
    RoundingRule.round_up: ROUND_CEILING,
    RoundingRule.round_down: ROUND_FLOOR,
}


def round_increment(value: Decimal, rule: RoundingRule) -> Decimal:
    """Whole-day rounding; ``none`` keeps the exact amount at storage scale."""
    if rule == RoundingRule.none:
        return value.quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)
    return value.quantize(ONE, rounding=_ROUNDING[rule])


def accrual_increment(
    yearly_entitlement: Decimal,
    method: AccrualMethod,
    rounding: RoundingRule,
    ratio: Decimal = ONE,
) -> Decimal:
    nominal = Decimal(yearly_entitlement) / ACCRUAL_DIVISORS[method]
    return round_increment(nominal * ratio, rounding)


@dataclass
class _Outcome:
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    status: str  # processed | skipped | failed
    created: bool = False
    amount: Decimal = Decimal("0")
    error: Optional[str] = None


@dataclass
class _Candidate:
    employee_id: uuid.UUID
    leave_type: LeaveType


class AccrualEngine:
    """Runs accrual across every employee × leave type the ledger knows."""

    @staticmethod
    async def _candidates(db: AsyncSession) -> list[_Candidate]:
        leave_types = await EntitlementStore.list_leave_types(db, active_only=False)
        active = [lt for lt in leave_types if lt.is_active]
        existing = await EntitlementStore.list_entitlements(db)
        seen = {(e.employee_id, e.leave_type_id) for e in existing}

        candidates = [
            _Candidate(e.employee_id, e.leave_type) for e in existing
        ]
        for employee_id in await EntitlementStore.employee_ids(db):
            for leave_type in active:
                if (employee_id, leave_type.id) not in seen:
                    candidates.append(
                        _Candidate(employee_id, leave_type)
                    )
        return candidates

    @staticmethod
    async def _accrue_one(
        db: AsyncSession,
        candidate: _Candidate,
        *,
        reference: date,
        period: tuple[date, date],
        method: AccrualMethod,
        rounding: RoundingRule,
        policy: LedgerPolicy,
        actor_id: Optional[uuid.UUID],
        skip_already_accrued: bool,
    ) -> _Outcome:
        leave_type = candidate.leave_type
        outcome = _Outcome(candidate.employee_id, leave_type.id, "skipped")
        if not leave_type.is_active:
            return outcome

        entitlement, created = await EntitlementStore.get_or_create(
            db, candidate.employee_id, leave_type, policy,
            actor_id=actor_id, for_update=True, as_of=reference,
        )
        outcome.created = created
        if entitlement.yearly_entitlement <= 0:
            return outcome
        if (
            skip_already_accrued
            and entitlement.last_accrual_date is not None
            and period[0] <= entitlement.last_accrual_date <= period[1]
        ):
            logger.debug(
                "Skipping already-accrued employee=%s leave_type=%s",
                candidate.employee_id, leave_type.code,
            )
            return outcome

        suspensions = await EntitlementStore.list_suspensions(
            db, candidate.employee_id, leave_type.id
        )
        ratio = accrual_ratio(period[0], period[1], suspensions)
        increment = accrual_increment(
            entitlement.yearly_entitlement, method, rounding, ratio
        )

        entitlement.accrued = entitlement.accrued + increment
        entitlement.last_accrual_date = reference
        await EntitlementStore.save(db, entitlement)

        reason = (
            f"{method.value.capitalize()} accrual for "
            f"{period[0].isoformat()} to {period[1].isoformat()}"
        )
        if ratio < ONE:
            reason += f" (prorated {ratio.quantize(FOUR_PLACES)} for suspension)"
        await EntitlementStore.record_adjustment(
            db,
            entitlement,
            adjustment_type=AdjustmentType.add,
            source=AdjustmentSource.accrual,
            amount=increment,
            reason=reason,
            actor_id=actor_id,
        )
        logger.debug(
            "Accrued %s days employee=%s leave_type=%s",
            increment, candidate.employee_id, leave_type.code,
        )
        outcome.status = "processed"
        outcome.amount = increment
        return outcome

    @classmethod
    async def run_accrual(
        cls,
        db: AsyncSession,
        *,
        reference_date: DateLike,
        method: AccrualMethod,
        rounding_rule: RoundingRule,
        policy: LedgerPolicy,
        actor_id: Optional[uuid.UUID] = None,
        skip_already_accrued: bool = False,
    ) -> dict:
        """Add one period's increment to every entitlement.

        Not idempotent unless *skip_already_accrued* is set: a second run
        for the same period accrues again.
        """
        try:
            reference = to_date(reference_date)
            method = AccrualMethod(method)
            rounding_rule = RoundingRule(rounding_rule)
        except ValueError as exc:
            raise ValidationException({"accrual": [str(exc)]}) from exc
        period = accrual_period(reference, method)

        outcomes: list[_Outcome] = []
        for candidate in await cls._candidates(db):
            employee_id = candidate.employee_id
            leave_type_id = candidate.leave_type.id
            try:
                async with db.begin_nested():
                    outcome = await cls._accrue_one(
                        db,
                        candidate,
                        reference=reference,
                        period=period,
                        method=method,
                        rounding=rounding_rule,
                        policy=policy,
                        actor_id=actor_id,
                        skip_already_accrued=skip_already_accrued,
                    )
            except (AppException, SQLAlchemyError) as exc:
                logger.warning(
                    "Accrual failed employee=%s leave_type_id=%s: %s",
                    employee_id, leave_type_id, exc,
                )
                outcome = _Outcome(employee_id, leave_type_id, "failed", error=str(exc))
            outcomes.append(outcome)

        result = {
            "processed": sum(1 for o in outcomes if o.status == "processed"),
            "created": sum(1 for o in outcomes if o.created and o.status != "failed"),
            "skipped": sum(1 for o in outcomes if o.status == "skipped"),
            "failed": sum(1 for o in outcomes if o.status == "failed"),
            "total_entitlements": len(outcomes),
            "total_accrued": sum((o.amount for o in outcomes), Decimal("0")),
            "failures": [
                {
                    "employee_id": o.employee_id,
                    "leave_type_id": o.leave_type_id,
                    "error": o.error,
                }
                for o in outcomes
                if o.status == "failed"
            ],
            "reference_date": reference,
            "method": method,
            "rounding_rule": rounding_rule,
        }
        logger.info(
            "Accrual run %s %s: processed=%d created=%d skipped=%d failed=%d",
            method.value, reference.isoformat(), result["processed"],
            result["created"], result["skipped"], result["failed"],
        )
        return result

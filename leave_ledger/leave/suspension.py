"""Accrual suspension — proration preview and manual application.

The preview is pure; applying it persists an ``AccrualSuspension`` (which the
accrual engine consults later) and deducts the difference from the balance.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from leave_ledger.common.constants import (
    SUSPENSION_LABELS,
    AdjustmentSource,
    AdjustmentType,
    SuspensionType,
)
from leave_ledger.common.dates import (
    DateLike,
    count_weekdays,
    is_weekday,
    iter_days,
    month_bounds,
    overlap,
    to_date,
)
from leave_ledger.common.exceptions import ValidationException
from leave_ledger.leave.models import ZERO, AccrualSuspension, LeaveEntitlement
from leave_ledger.leave.policy import LedgerPolicy
from leave_ledger.leave.service import LedgerService, require_reason
from leave_ledger.leave.store import EntitlementStore

logger = logging.getLogger(__name__)

FOUR_PLACES = Decimal("0.0001")
ONE = Decimal("1")


@dataclass(frozen=True)
class SuspensionPreview:
    working_days: int
    total_days: int
    month_working_days: int
    prorate_ratio: Decimal
    original_accrual: Decimal
    adjusted_accrual: Decimal
    adjustment_days: Decimal


def _parse_range(from_date: DateLike, to_date_: DateLike) -> tuple[date, date]:
    try:
        start, end = to_date(from_date), to_date(to_date_)
    except (TypeError, ValueError) as exc:
        raise ValidationException({"dates": [f"Invalid date: {exc}"]}) from exc
    if start > end:
        raise ValidationException(
            {"from_date": ["from_date must be on or before to_date."]}
        )
    return start, end


def preview_suspension(
    from_date: DateLike,
    to_date_: DateLike,
    yearly_entitlement: Optional[Decimal] = None,
    *,
    baseline: Decimal = Decimal("21"),
) -> SuspensionPreview:
    """Monthly accrual, prorated by the weekdays absent in the start month.

    ``prorate_ratio = max(0, (monthWD - absentWD) / monthWD)``; the 21-day
    *baseline* stands in when no yearly entitlement is given.
    """
    start, end = _parse_range(from_date, to_date_)
    working_days = count_weekdays(start, end)
    total_days = (end - start).days + 1
    month_start, month_end = month_bounds(start)
    month_working_days = count_weekdays(month_start, month_end)

    ratio = max(
        ZERO,
        Decimal(month_working_days - working_days) / Decimal(month_working_days),
    )
    yearly = Decimal(yearly_entitlement) if yearly_entitlement is not None else baseline
    original = yearly / 12
    adjusted = original * ratio

    return SuspensionPreview(
        working_days=working_days,
        total_days=total_days,
        month_working_days=month_working_days,
        prorate_ratio=ratio.quantize(FOUR_PLACES, rounding=ROUND_HALF_UP),
        original_accrual=original.quantize(FOUR_PLACES, rounding=ROUND_HALF_UP),
        adjusted_accrual=adjusted.quantize(FOUR_PLACES, rounding=ROUND_HALF_UP),
        adjustment_days=(original - adjusted).quantize(
            FOUR_PLACES, rounding=ROUND_HALF_UP
        ),
    )


def suspended_weekdays(
    period_start: date,
    period_end: date,
    suspensions: Iterable[AccrualSuspension],
) -> int:
    """Weekdays in the period covered by at least one suspension."""
    days: set[date] = set()
    for suspension in suspensions:
        window = overlap(
            period_start, period_end, suspension.from_date, suspension.to_date
        )
        if window is None:
            continue
        days.update(d for d in iter_days(*window) if is_weekday(d))
    return len(days)


def accrual_ratio(
    period_start: date,
    period_end: date,
    suspensions: Iterable[AccrualSuspension],
) -> Decimal:
    """Fraction of the accrual period not covered by suspensions (0..1)."""
    period_weekdays = count_weekdays(period_start, period_end)
    if period_weekdays == 0:
        return ONE
    suspended = suspended_weekdays(period_start, period_end, suspensions)
    if suspended == 0:
        return ONE
    return max(ZERO, Decimal(period_weekdays - suspended) / Decimal(period_weekdays))


async def apply_suspension(
    db: AsyncSession,
    *,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    suspension_type: SuspensionType,
    from_date: DateLike,
    to_date_: DateLike,
    reason: str,
    actor_id: Optional[uuid.UUID],
    policy: LedgerPolicy,
    as_of: Optional[date] = None,
) -> tuple[AccrualSuspension, SuspensionPreview, LeaveEntitlement]:
    """Record the suspension and deduct its adjustment days from the balance."""
    suspension_type = SuspensionType(suspension_type)
    note = require_reason(reason)
    start, end = _parse_range(from_date, to_date_)

    leave_type = await EntitlementStore.get_leave_type(db, leave_type_id)
    entitlement, _ = await EntitlementStore.get_or_create(
        db, employee_id, leave_type, policy, actor_id=actor_id, as_of=as_of,
    )
    yearly = entitlement.yearly_entitlement
    preview = preview_suspension(
        start,
        end,
        yearly if yearly > 0 else None,
        baseline=policy.suspension_baseline_entitlement,
    )

    suspension = AccrualSuspension(
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        suspension_type=suspension_type,
        from_date=start,
        to_date=end,
        reason=note,
        adjustment_days=preview.adjustment_days,
        actor_id=actor_id,
    )
    db.add(suspension)
    await db.flush()

    if preview.adjustment_days <= 0:
        return suspension, preview, entitlement

    label = SUSPENSION_LABELS[suspension_type]
    entitlement, _ = await LedgerService.create_adjustment(
        db,
        employee_id=employee_id,
        leave_type_id=leave_type_id,
        adjustment_type=AdjustmentType.deduct,
        amount=preview.adjustment_days,
        reason=(
            f"Accrual suspension ({label}): {note} | "
            f"Period: {start.isoformat()} to {end.isoformat()}"
        ),
        actor_id=actor_id,
        policy=policy,
        allow_negative=True,
        source=AdjustmentSource.suspension,
        as_of=as_of,
    )
    logger.info(
        "Applied %s suspension employee=%s days=%s",
        suspension_type.value, employee_id, preview.adjustment_days,
    )
    return suspension, preview, entitlement

"""Enums and constants for the leave ledger — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Leave requests ──────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    returned_for_correction = "returned_for_correction"
    cancelled = "cancelled"


class FinalizeDecision(str, enum.Enum):
    approve = "approve"
    reject = "reject"


# ── Ledger ──────────────────────────────────────────────────────────

class AdjustmentType(str, enum.Enum):
    add = "add"
    deduct = "deduct"


class AdjustmentSource(str, enum.Enum):
    """What produced a ledger entry."""

    manual = "manual"
    accrual = "accrual"
    suspension = "suspension"
    carry_forward = "carry_forward"
    carry_forward_override = "carry_forward_override"
    expiry = "expiry"
    finalization = "finalization"
    recalculation = "recalculation"
    assignment = "assignment"


class AccrualMethod(str, enum.Enum):
    monthly = "monthly"
    yearly = "yearly"
    per_term = "per-term"


class RoundingRule(str, enum.Enum):
    none = "none"
    round = "round"
    round_up = "round_up"
    round_down = "round_down"


class SuspensionType(str, enum.Enum):
    unpaid = "unpaid"
    long_absence = "long_absence"


SUSPENSION_LABELS: dict[SuspensionType, str] = {
    SuspensionType.unpaid: "Unpaid Leave",
    SuspensionType.long_absence: "Long Absence",
}


# ── Pattern analysis ────────────────────────────────────────────────

class PatternType(str, enum.Enum):
    monday_friday = "monday_friday"
    holiday_extension = "holiday_extension"
    short_notice = "short_notice"
    clustering = "clustering"
    behavioral_change = "behavioral_change"
    excessive_sick_leave = "excessive_sick_leave"


class Severity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class RiskLevel(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


# ── Misc constants ──────────────────────────────────────────────────

ACCRUAL_DIVISORS: dict[AccrualMethod, int] = {
    AccrualMethod.monthly: 12,
    AccrualMethod.yearly: 1,
    AccrualMethod.per_term: 3,
}

MONTHS_PER_TERM = 4
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50

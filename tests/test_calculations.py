"""Tests for the pure calculations — calendar math, suspension proration,
accrual increments and ledger policy resolution. No database involved.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from leave_ledger.common.constants import AccrualMethod, RoundingRule
from leave_ledger.common.dates import (
    accrual_period,
    add_months,
    count_weekdays,
    month_bounds,
    overlap,
    to_date,
)
from leave_ledger.common.exceptions import ValidationException
from leave_ledger.leave.accrual import accrual_increment, round_increment
from leave_ledger.leave.carry_forward import compute_carry_forward
from leave_ledger.leave.policy import CarryForwardRule, LedgerPolicy, load_policy
from leave_ledger.leave.suspension import accrual_ratio, preview_suspension


def _leave_type(code: str, name: str = "", **kwargs) -> SimpleNamespace:
    return SimpleNamespace(code=code, name=name, **kwargs)


def _suspension(start: date, end: date) -> SimpleNamespace:
    return SimpleNamespace(from_date=start, to_date=end)


# ═════════════════════════════════════════════════════════════════════
# CALENDAR
# ═════════════════════════════════════════════════════════════════════


class TestDates:

    def test_count_weekdays_skips_weekend(self):
        # June 2026 starts on a Monday
        assert count_weekdays(date(2026, 6, 1), date(2026, 6, 12)) == 10
        assert count_weekdays(date(2026, 6, 1), date(2026, 6, 30)) == 22

    def test_count_weekdays_empty_range(self):
        assert count_weekdays(date(2026, 6, 5), date(2026, 6, 1)) == 0

    def test_month_bounds_leap_february(self):
        assert month_bounds(date(2028, 2, 10)) == (date(2028, 2, 1), date(2028, 2, 29))

    def test_add_months_clamps_to_month_end(self):
        assert add_months(date(2026, 8, 31), 6) == date(2027, 2, 28)
        assert add_months(date(2026, 12, 31), 6) == date(2027, 6, 30)

    def test_accrual_periods(self):
        ref = date(2026, 6, 15)
        assert accrual_period(ref, AccrualMethod.monthly) == (date(2026, 6, 1), date(2026, 6, 30))
        assert accrual_period(ref, AccrualMethod.per_term) == (date(2026, 5, 1), date(2026, 8, 31))
        assert accrual_period(ref, AccrualMethod.yearly) == (date(2026, 1, 1), date(2026, 12, 31))

    def test_to_date_ignores_time_of_day(self):
        assert to_date("2026-03-04T23:30:00Z") == date(2026, 3, 4)
        assert to_date(datetime(2026, 3, 4, 8, 0)) == date(2026, 3, 4)
        assert to_date("2026-03-04") == date(2026, 3, 4)

    def test_overlap(self):
        assert overlap(date(2026, 1, 1), date(2026, 1, 10),
                       date(2026, 1, 5), date(2026, 2, 1)) == (date(2026, 1, 5), date(2026, 1, 10))
        assert overlap(date(2026, 1, 1), date(2026, 1, 10),
                       date(2026, 1, 11), date(2026, 1, 12)) is None


# ═════════════════════════════════════════════════════════════════════
# SUSPENSION PRORATION
# ═════════════════════════════════════════════════════════════════════


class TestSuspensionPreview:

    def test_ten_weekday_absence_in_22_day_month(self):
        preview = preview_suspension("2026-06-01", "2026-06-12")

        assert preview.working_days == 10
        assert preview.total_days == 12
        assert preview.month_working_days == 22
        assert preview.prorate_ratio == Decimal("0.5455")
        assert preview.original_accrual == Decimal("1.7500")
        assert preview.adjusted_accrual == Decimal("0.9545")
        assert preview.adjustment_days == Decimal("0.7955")

    def test_uses_yearly_entitlement_when_given(self):
        preview = preview_suspension(date(2026, 6, 1), date(2026, 6, 12), Decimal("12"))
        assert preview.original_accrual == Decimal("1.0000")
        assert preview.adjustment_days == Decimal("0.4545")

    def test_absence_longer_than_month_floors_ratio_at_zero(self):
        preview = preview_suspension(date(2026, 6, 1), date(2026, 7, 31))
        assert preview.prorate_ratio == Decimal("0")
        assert preview.adjusted_accrual == Decimal("0")
        assert preview.adjustment_days == Decimal("1.7500")

    def test_weekend_only_absence_changes_nothing(self):
        preview = preview_suspension(date(2026, 6, 6), date(2026, 6, 7))
        assert preview.working_days == 0
        assert preview.total_days == 2
        assert preview.adjustment_days == Decimal("0")

    def test_from_after_to_is_rejected(self):
        with pytest.raises(ValidationException):
            preview_suspension("2026-06-12", "2026-06-01")


class TestAccrualRatio:

    def test_no_suspensions(self):
        assert accrual_ratio(date(2026, 6, 1), date(2026, 6, 30), []) == Decimal("1")

    def test_single_suspension(self):
        ratio = accrual_ratio(
            date(2026, 6, 1), date(2026, 6, 30),
            [_suspension(date(2026, 6, 1), date(2026, 6, 12))],
        )
        assert ratio == Decimal(12) / Decimal(22)

    def test_overlapping_suspensions_count_each_weekday_once(self):
        ratio = accrual_ratio(
            date(2026, 6, 1), date(2026, 6, 30),
            [
                _suspension(date(2026, 6, 1), date(2026, 6, 12)),
                _suspension(date(2026, 6, 8), date(2026, 6, 19)),
            ],
        )
        assert ratio == Decimal(7) / Decimal(22)

    def test_suspension_outside_period_is_ignored(self):
        ratio = accrual_ratio(
            date(2026, 6, 1), date(2026, 6, 30),
            [_suspension(date(2026, 5, 1), date(2026, 5, 29))],
        )
        assert ratio == Decimal("1")


# ═════════════════════════════════════════════════════════════════════
# ACCRUAL INCREMENTS & CARRY-FORWARD FORMULA
# ═════════════════════════════════════════════════════════════════════


class TestAccrualIncrement:

    @pytest.mark.parametrize(
        "method, rounding, expected",
        [
            (AccrualMethod.monthly, RoundingRule.none, Decimal("1.7500")),
            (AccrualMethod.monthly, RoundingRule.round, Decimal("2")),
            (AccrualMethod.monthly, RoundingRule.round_up, Decimal("2")),
            (AccrualMethod.monthly, RoundingRule.round_down, Decimal("1")),
            (AccrualMethod.per_term, RoundingRule.none, Decimal("7.0000")),
            (AccrualMethod.yearly, RoundingRule.none, Decimal("21.0000")),
        ],
    )
    def test_increment(self, method, rounding, expected):
        assert accrual_increment(Decimal("21"), method, rounding) == expected

    def test_increment_is_prorated_before_rounding(self):
        assert accrual_increment(
            Decimal("21"), AccrualMethod.monthly, RoundingRule.none, Decimal("0.5"),
        ) == Decimal("0.8750")

    def test_round_half_up(self):
        assert round_increment(Decimal("2.5"), RoundingRule.round) == Decimal("3")


class TestCarryForwardFormula:

    def test_capped(self):
        rule = CarryForwardRule(cap=Decimal("10"), expiry_months=6)
        capped, carried, expired, expiry = compute_carry_forward(
            Decimal("15"), rule, date(2026, 12, 31),
        )
        assert (capped, carried, expired) == (Decimal("10"), Decimal("10"), Decimal("5"))
        assert expiry == date(2027, 6, 30)

    def test_under_cap(self):
        rule = CarryForwardRule(cap=Decimal("10"), expiry_months=6)
        _, carried, expired, _ = compute_carry_forward(Decimal("4"), rule, date(2026, 12, 31))
        assert carried == Decimal("4")
        assert expired == Decimal("0")

    def test_not_carryable_expires_everything_without_expiry_date(self):
        rule = CarryForwardRule(can_carry_forward=False)
        _, carried, expired, expiry = compute_carry_forward(
            Decimal("6"), rule, date(2026, 12, 31),
        )
        assert carried == Decimal("0")
        assert expired == Decimal("6")
        assert expiry is None

    def test_negative_balance_carries_nothing(self):
        rule = CarryForwardRule(cap=Decimal("10"), expiry_months=6)
        _, carried, expired, _ = compute_carry_forward(Decimal("-2"), rule, date(2026, 12, 31))
        assert carried == Decimal("0")
        assert expired == Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# POLICY
# ═════════════════════════════════════════════════════════════════════


class TestLedgerPolicy:

    def test_category_by_code_then_name(self):
        assert LedgerPolicy.category_for(_leave_type("AL", "Annual Leave")) == "annual"
        assert LedgerPolicy.category_for(_leave_type("sick-2026", "Medical")) == "sick"
        assert LedgerPolicy.category_for(_leave_type("CO", "Comp Off")) == "default"

    def test_default_entitlements(self):
        policy = LedgerPolicy()
        assert policy.default_entitlement_for(_leave_type("annual")) == Decimal("21")
        assert policy.default_entitlement_for(_leave_type("SL", "Sick Leave")) == Decimal("14")
        assert policy.default_entitlement_for(_leave_type("CO", "Comp Off")) == Decimal("5")

    def test_leave_type_column_overrides_default(self):
        policy = LedgerPolicy()
        leave_type = _leave_type("annual", default_entitlement=Decimal("18"))
        assert policy.default_entitlement_for(leave_type) == Decimal("18")

    def test_overdraft(self):
        policy = LedgerPolicy()
        assert policy.allows_overdraft(_leave_type("LWP", "Unpaid Leave"))
        assert policy.allows_overdraft(_leave_type("CO", allow_negative_balance=True))
        assert not policy.allows_overdraft(_leave_type("annual"))

    def test_caller_rules_keyed_by_code_win(self):
        policy = LedgerPolicy()
        leave_type = _leave_type("AL", "Annual Leave")
        overrides = {
            "annual": CarryForwardRule(cap=Decimal("3")),
            "al": CarryForwardRule(cap=Decimal("7")),
        }
        assert policy.carry_forward_rule_for(leave_type, overrides).cap == Decimal("7")
        assert policy.carry_forward_rule_for(
            leave_type, {"ANNUAL": CarryForwardRule(cap=Decimal("3"))}
        ).cap == Decimal("3")
        assert policy.carry_forward_rule_for(leave_type).cap == Decimal("10")

    def test_rules_accept_camel_case_aliases(self):
        rule = CarryForwardRule.model_validate(
            {"cap": 4, "expiryMonths": 2, "canCarryForward": False}
        )
        assert rule.expiry_months == 2
        assert rule.can_carry_forward is False

    def test_load_policy_merges_over_defaults(self):
        policy = load_policy(
            '{"carry_forward_rules": {"annual": {"cap": 15}, "Study": {"expiryMonths": 2}},'
            ' "default_entitlements": {"annual": 24}}'
        )
        annual = policy.carry_forward_rules["annual"]
        assert annual.cap == Decimal("15")
        assert annual.expiry_months == 6
        assert policy.carry_forward_rules["study"].expiry_months == 2
        assert policy.default_entitlements["annual"] == Decimal("24")
        assert policy.default_entitlements["sick"] == Decimal("14")

    def test_load_policy_without_document(self):
        assert load_policy(None) == LedgerPolicy()

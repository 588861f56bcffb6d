"""Ledger policy: default entitlements, carry-forward rules, overdraft types.

Every literal that drives the ledger lives here so deployments can override
it through ``LEDGER_POLICY_JSON`` instead of editing code.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Matched against leave-type code first, then name
POLICY_KEYWORDS = ("annual", "sick", "personal", "paternity", "maternity", "unpaid")
DEFAULT_KEY = "default"


class CarryForwardRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cap: Decimal = Field(default=Decimal("0"), ge=0)
    expiry_months: int = Field(default=0, ge=0, alias="expiryMonths")
    can_carry_forward: bool = Field(default=True, alias="canCarryForward")


def _default_entitlements() -> dict[str, Decimal]:
    return {
        "annual": Decimal("21"),
        "sick": Decimal("14"),
        "personal": Decimal("5"),
        "paternity": Decimal("5"),
        "maternity": Decimal("90"),
        "unpaid": Decimal("0"),
        DEFAULT_KEY: Decimal("5"),
    }


def _default_carry_forward_rules() -> dict[str, CarryForwardRule]:
    not_carryable = CarryForwardRule(can_carry_forward=False)
    return {
        "annual": CarryForwardRule(cap=Decimal("10"), expiry_months=6),
        "sick": not_carryable,
        "personal": CarryForwardRule(cap=Decimal("5"), expiry_months=3),
        "paternity": CarryForwardRule(cap=Decimal("5"), expiry_months=3),
        "maternity": not_carryable,
        "unpaid": not_carryable,
        DEFAULT_KEY: CarryForwardRule(cap=Decimal("5"), expiry_months=6),
    }


class LedgerPolicy(BaseModel):
    default_entitlements: dict[str, Decimal] = Field(
        default_factory=_default_entitlements
    )
    carry_forward_rules: dict[str, CarryForwardRule] = Field(
        default_factory=_default_carry_forward_rules
    )
    overdraft_categories: set[str] = Field(default_factory=lambda: {"unpaid"})
    suspension_baseline_entitlement: Decimal = Decimal("21")

    @field_validator("default_entitlements", "carry_forward_rules", mode="after")
    @classmethod
    def _lower_keys(cls, value: dict) -> dict:
        return {k.lower(): v for k, v in value.items()}

    # ── Resolution ──────────────────────────────────────────────────

    @staticmethod
    def category_for(leave_type: Any) -> str:
        """Map a leave type onto a policy key by keyword, else ``default``."""
        for text in (getattr(leave_type, "code", None), getattr(leave_type, "name", None)):
            if not text:
                continue
            lowered = text.lower()
            for keyword in POLICY_KEYWORDS:
                if keyword in lowered:
                    return keyword
        return DEFAULT_KEY

    def default_entitlement_for(self, leave_type: Any) -> Decimal:
        explicit = getattr(leave_type, "default_entitlement", None)
        if explicit is not None:
            return Decimal(explicit)
        category = self.category_for(leave_type)
        return self.default_entitlements.get(
            category, self.default_entitlements.get(DEFAULT_KEY, Decimal("0"))
        )

    def allows_overdraft(self, leave_type: Any) -> bool:
        if getattr(leave_type, "allow_negative_balance", False):
            return True
        return self.category_for(leave_type) in self.overdraft_categories

    def carry_forward_rule_for(
        self,
        leave_type: Any,
        overrides: Optional[Mapping[str, CarryForwardRule]] = None,
    ) -> CarryForwardRule:
        """Caller rules keyed by leave-type code win over category keys,
        which win over the policy's own rules."""
        category = self.category_for(leave_type)
        if overrides:
            lowered = {k.lower(): v for k, v in overrides.items()}
            code = (getattr(leave_type, "code", None) or "").lower()
            if code and code in lowered:
                return lowered[code]
            if category in lowered:
                return lowered[category]
        rule = self.carry_forward_rules.get(category)
        if rule is None:
            rule = self.carry_forward_rules.get(DEFAULT_KEY, CarryForwardRule())
        return rule


def _deep_merge(base: dict, updates: Mapping) -> dict:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_policy(raw: Optional[str] = None) -> LedgerPolicy:
    """Build the policy from defaults, overlaid with a JSON document if given."""
    policy = LedgerPolicy()
    if not raw:
        return policy
    overrides = json.loads(raw)
    base = policy.model_dump()
    return LedgerPolicy.model_validate(_deep_merge(base, overrides))

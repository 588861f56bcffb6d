"""Shared FastAPI dependencies."""

import uuid
from functools import lru_cache
from typing import Optional

from fastapi import Header

from leave_ledger.common.exceptions import ValidationException
from leave_ledger.config import settings
from leave_ledger.leave.policy import LedgerPolicy, load_policy


async def get_actor_id(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
) -> uuid.UUID:
    """Identity of the operator performing a mutation.

    Authentication happens upstream; the gateway forwards the actor's id.
    """
    if not x_actor_id:
        raise ValidationException({"X-Actor-Id": ["Header is required for mutations."]})
    try:
        return uuid.UUID(x_actor_id)
    except ValueError as exc:
        raise ValidationException({"X-Actor-Id": ["Must be a UUID."]}) from exc


@lru_cache
def _policy_from_settings(raw: Optional[str]) -> LedgerPolicy:
    return load_policy(raw)


def get_ledger_policy() -> LedgerPolicy:
    """Default ledger policy overlaid with ``LEDGER_POLICY_JSON``."""
    return _policy_from_settings(settings.LEDGER_POLICY_JSON)

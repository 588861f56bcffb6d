#!/usr/bin/env python3
"""Leave Ledger batch trigger — accrual and year-end carry-forward runs.

Meant to be scheduled by cron (monthly accrual, yearly carry-forward):
    5 0 1 * *     python -m scripts.ledger_batch accrual --date $(date -d yesterday +%F)
    30 0 1 1 *    python -m scripts.ledger_batch carry-forward --date $(date -d yesterday +%F)

Usage:
    python -m scripts.ledger_batch accrual --date 2026-01-31 --method monthly --rounding none
    python -m scripts.ledger_batch accrual --date 2026-01-31 --skip-already-accrued
    python -m scripts.ledger_batch carry-forward --date 2026-12-31 --preview
    python -m scripts.ledger_batch carry-forward --date 2026-12-31 --rules rules.json

Exit codes:
    0 = run completed, no record failed
    1 = one or more records failed (details in the JSON output)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from datetime import date
from pathlib import Path
from typing import Optional

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from pydantic import BaseModel, TypeAdapter

from leave_ledger.common.constants import AccrualMethod, RoundingRule
from leave_ledger.common.logging import setup_logging
from leave_ledger.config import settings
from leave_ledger.database import async_session_factory, engine
from leave_ledger.dependencies import get_ledger_policy
from leave_ledger.leave.accrual import AccrualEngine
from leave_ledger.leave.carry_forward import CarryForwardProcessor
from leave_ledger.leave.policy import CarryForwardRule
from leave_ledger.leave.schemas import (
    AccrualRunResponse,
    CarryForwardCommitResponse,
    CarryForwardPreviewResponse,
)

logger = logging.getLogger("ledger_batch")

_RULES = TypeAdapter(dict[str, CarryForwardRule])


def _load_rules(path: Optional[str]) -> Optional[dict[str, CarryForwardRule]]:
    if not path:
        return None
    return _RULES.validate_json(Path(path).read_text())


# ══════════════════════════════════════════════════════════════════════
# Runs
# ══════════════════════════════════════════════════════════════════════


async def run_accrual(args: argparse.Namespace) -> BaseModel:
    async with async_session_factory() as session:
        async with session.begin():
            result = await AccrualEngine.run_accrual(
                session,
                reference_date=args.date,
                method=AccrualMethod(args.method),
                rounding_rule=RoundingRule(args.rounding),
                policy=get_ledger_policy(),
                actor_id=args.actor_id,
                skip_already_accrued=args.skip_already_accrued,
            )
    return AccrualRunResponse.model_validate(result)


async def run_carry_forward(args: argparse.Namespace) -> BaseModel:
    rules = _load_rules(args.rules)
    async with async_session_factory() as session:
        if args.preview:
            result = await CarryForwardProcessor.preview(
                session,
                reference_date=args.date,
                policy=get_ledger_policy(),
                leave_type_rules=rules,
            )
            return CarryForwardPreviewResponse.model_validate(result)
        async with session.begin():
            result = await CarryForwardProcessor.commit(
                session,
                reference_date=args.date,
                policy=get_ledger_policy(),
                leave_type_rules=rules,
                actor_id=args.actor_id,
            )
    return CarryForwardCommitResponse.model_validate(result)


async def _dispatch(args: argparse.Namespace) -> BaseModel:
    try:
        return await args.handler(args)
    finally:
        await engine.dispose()


# ══════════════════════════════════════════════════════════════════════
# CLI
# ══════════════════════════════════════════════════════════════════════


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Leave ledger batch runs (accrual / carry-forward)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--actor-id", type=uuid.UUID, default=None,
                        help="Operator recorded on ledger entries (default: system)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging (one line per record)")
    sub = parser.add_subparsers(dest="command", required=True)

    accrual = sub.add_parser("accrual", help="Accrue one period for every entitlement")
    accrual.add_argument("--date", type=date.fromisoformat, required=True,
                         help="Reference date (YYYY-MM-DD)")
    accrual.add_argument("--method", choices=[m.value for m in AccrualMethod],
                         default=AccrualMethod.monthly.value)
    accrual.add_argument("--rounding", choices=[r.value for r in RoundingRule],
                         default=RoundingRule.none.value)
    accrual.add_argument("--skip-already-accrued", action="store_true",
                         help="Skip entitlements already accrued in this period")
    accrual.set_defaults(handler=run_accrual)

    carry = sub.add_parser("carry-forward", help="Year-end carry-forward")
    carry.add_argument("--date", type=date.fromisoformat, required=True,
                       help="Reference date (YYYY-MM-DD)")
    carry.add_argument("--preview", action="store_true",
                       help="Dry run; nothing is written")
    carry.add_argument("--rules", type=str, default=None,
                       help="JSON file of per-leave-type carry-forward rules")
    carry.set_defaults(handler=run_carry_forward)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("debug" if args.verbose else settings.LOG_LEVEL,
                  json_output=settings.LOG_JSON)

    result = asyncio.run(_dispatch(args))
    print(json.dumps(result.model_dump(mode="json"), indent=2))

    failed = getattr(result, "failed", 0)
    if failed:
        logger.warning("%s run finished with %d failed record(s)", args.command, failed)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

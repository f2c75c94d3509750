#!/usr/bin/env python3
"""
Run one step of the repricing pipeline from the command line.

  python scripts/run_pricing_job.py simulate --ruleset-id <uuid> [--category Cahiers]
  python scripts/run_pricing_job.py apply --simulation-id <uuid> --actor ops@shop
  python scripts/run_pricing_job.py rollback --simulation-id <uuid> --actor ops@shop

Prints the result as JSON. Exits 1 when the engine rejects the request
(unknown id, wrong status, nothing to apply, ...).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import uuid
from datetime import datetime

# Add backend to path so imports work when script is run directly.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.session import standalone_session
from pricing.apply import apply_simulation
from pricing.errors import BatchFailed, PricingError
from pricing.rollback import rollback_simulation
from pricing.simulation import run_simulation


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate, apply, or roll back catalog repricing")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    simulate = sub.add_parser("simulate", help="Dry-run a ruleset over the active catalog")
    simulate.add_argument("--ruleset-id", type=uuid.UUID, required=True)
    simulate.add_argument("--category", default=None)
    simulate.add_argument(
        "--as-of",
        type=datetime.fromisoformat,
        default=None,
        help="Evaluation instant (ISO 8601), defaults to now",
    )
    simulate.add_argument("--actor", default="cli")

    for name, help_text in (
        ("apply", "Commit a completed simulation to live prices"),
        ("rollback", "Restore the prices replaced by an applied simulation"),
    ):
        step = sub.add_parser(name, help=help_text)
        step.add_argument("--simulation-id", type=uuid.UUID, required=True)
        step.add_argument("--actor", default="cli")

    return parser.parse_args(argv)


async def _execute(args: argparse.Namespace) -> dict:
    async with standalone_session(args.database_url) as db:
        if args.command == "simulate":
            result = await run_simulation(
                db, args.ruleset_id, category=args.category, actor=args.actor, as_of=args.as_of
            )
        elif args.command == "apply":
            result = await apply_simulation(db, args.simulation_id, actor=args.actor)
        else:
            result = await rollback_simulation(db, args.simulation_id, actor=args.actor)
        return result.to_dict()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        payload = asyncio.run(_execute(args))
    except PricingError as exc:
        error = {"error": type(exc).__name__, "message": str(exc)}
        if isinstance(exc, BatchFailed):
            error["errors"] = exc.errors
        print(json.dumps(error, indent=2), file=sys.stderr)
        return 1
    print(json.dumps(payload, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import asyncio
import json
import os
import subprocess
import sys
import uuid
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.session import Base

REPO_ROOT = Path(__file__).resolve().parents[2]
SCRIPT_PATH = REPO_ROOT / "backend" / "scripts" / "run_pricing_job.py"


def _parse_json_block(output: str) -> dict:
    # Log lines may precede the result; the result is the last top-level object.
    lines = output.splitlines()
    start = max(i for i, line in enumerate(lines) if line == "{")
    return json.loads("\n".join(lines[start:]))


def _run(db_url: str, *args: str) -> subprocess.CompletedProcess:
    env = os.environ.copy()
    env["APP_ENV"] = "test"
    env["DATABASE_URL"] = db_url
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), "--database-url", db_url, *args],
        cwd=str(REPO_ROOT),
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )


def _seed_database(tmp_path) -> tuple[str, uuid.UUID]:
    from db.models import PricingRule, PricingRuleset, Product

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    ruleset_id = uuid.uuid4()

    async def _seed() -> None:
        engine = create_async_engine(db_url, echo=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)() as db:
            db.add_all(
                [
                    Product(sku="SKU-001", name="Cahier A5", category="Cahiers", price_ht=3.0, price_ttc=3.6),
                    Product(sku="SKU-002", name="Cahier A4", category="Cahiers", price_ht=4.0, price_ttc=4.8),
                    PricingRuleset(ruleset_id=ruleset_id, name="Always on"),
                    PricingRule(
                        ruleset_id=ruleset_id,
                        name="Every month",
                        rule_type="seasonality",
                        priority=10,
                        params={"months": list(range(1, 13)), "adjustment_percent": 10},
                    ),
                ]
            )
            await db.commit()
        await engine.dispose()

    asyncio.run(_seed())
    return db_url, ruleset_id


def test_simulate_apply_rollback_from_cli(tmp_path):
    db_url, ruleset_id = _seed_database(tmp_path)

    completed = _run(db_url, "simulate", "--ruleset-id", str(ruleset_id), "--category", "Cahiers")
    assert completed.returncode == 0, completed.stderr
    simulation = _parse_json_block(completed.stdout)
    assert simulation["status"] == "completed"
    assert simulation["product_count"] == 2
    assert simulation["affected_count"] == 2

    completed = _run(db_url, "apply", "--simulation-id", simulation["simulation_id"], "--actor", "ops@shop")
    assert completed.returncode == 0, completed.stderr
    assert _parse_json_block(completed.stdout)["applied_count"] == 2

    completed = _run(db_url, "rollback", "--simulation-id", simulation["simulation_id"])
    assert completed.returncode == 0, completed.stderr
    assert _parse_json_block(completed.stdout)["rolled_back_count"] == 2


def test_cli_exits_non_zero_on_rejection(tmp_path):
    db_url, _ = _seed_database(tmp_path)

    completed = _run(db_url, "apply", "--simulation-id", str(uuid.uuid4()))

    assert completed.returncode == 1
    payload = _parse_json_block(completed.stderr)
    assert payload["error"] == "SimulationNotFound"

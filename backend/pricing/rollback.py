"""
Rollback Engine — restore prices from the change log.

For every original (non-rollback) log entry of an applied simulation, the
product goes back to old_price_ht and a mirror entry is appended with
is_rollback=True and rollback_of pointing at the original. History is
never edited.

Entries that cannot be restored are collected and skipped; each restore
runs in its own savepoint.

A rolled-back simulation cannot be re-applied (its status is no longer
'completed'); to replay a price change, run a new simulation.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import PriceChangeLog, Product
from pricing.context import naive_utc
from pricing.errors import BatchFailed
from pricing.rules import change_percent, price_including_tax
from pricing.state import claim_transition, load_simulation

logger = structlog.get_logger()


@dataclass
class RollbackResult:
    simulation_id: uuid.UUID
    rolled_back_count: int
    total: int
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["simulation_id"] = str(self.simulation_id)
        return payload


async def rollback_simulation(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    actor: str | None = None,
    now: datetime | None = None,
) -> RollbackResult:
    """
    Revert an applied simulation.

    Raises:
        SimulationNotFound: unknown simulation_id
        InvalidState: simulation is not 'applied'
        BatchFailed: no ledger entry could be reverted
    """
    settings = get_settings()
    now = naive_utc(now or datetime.utcnow())

    await load_simulation(db, simulation_id, expected="applied")

    logs = (
        (
            await db.execute(
                select(PriceChangeLog)
                .where(
                    PriceChangeLog.simulation_id == simulation_id,
                    PriceChangeLog.is_rollback.is_(False),
                )
                .order_by(PriceChangeLog.applied_at, PriceChangeLog.product_id)
            )
        )
        .scalars()
        .all()
    )
    if not logs:
        raise BatchFailed(f"No price change log entries found for simulation {simulation_id}", total=0)

    products_result = await db.execute(
        select(Product).where(Product.product_id.in_(list({log.product_id for log in logs})))
    )
    products = {product.product_id: product for product in products_result.scalars().all()}

    errors: list[str] = []
    ready: list[tuple[PriceChangeLog, Product]] = []
    for log in logs:
        product = products.get(log.product_id)
        if product is None:
            errors.append(f"Product {log.product_id}: not found")
            logger.warning(
                "pricing.rollback_item_skipped",
                simulation_id=str(simulation_id),
                product_id=str(log.product_id),
            )
            continue
        ready.append((log, product))

    if not ready:
        raise BatchFailed(
            f"No price of simulation {simulation_id} could be restored",
            total=len(logs),
            errors=errors,
        )

    await claim_transition(db, simulation_id, "rolled_back")

    # One savepoint per entry, as in apply.
    rolled_back_count = 0
    for log, product in ready:
        product_id = log.product_id
        try:
            async with db.begin_nested():
                product.price_ht = log.old_price_ht
                product.price_ttc = price_including_tax(log.old_price_ht, settings.pricing_vat_rate)
                db.add(
                    PriceChangeLog(
                        product_id=product_id,
                        simulation_id=simulation_id,
                        rule_type=log.rule_type,
                        old_price_ht=log.new_price_ht,
                        new_price_ht=log.old_price_ht,
                        price_change_percent=change_percent(log.new_price_ht, log.old_price_ht),
                        old_margin_percent=log.new_margin_percent,
                        new_margin_percent=log.old_margin_percent,
                        reason=f"Rollback of simulation {simulation_id}",
                        applied_by=actor,
                        applied_at=now,
                        is_rollback=True,
                        rollback_of=log.log_id,
                    )
                )
                await db.flush()
        except SQLAlchemyError as exc:
            errors.append(f"Product {product_id}: restore failed ({type(exc).__name__})")
            logger.warning(
                "pricing.rollback_item_failed",
                simulation_id=str(simulation_id),
                product_id=str(product_id),
                error=str(exc),
            )
            continue
        rolled_back_count += 1

    if not rolled_back_count:
        await db.rollback()
        raise BatchFailed(
            f"No price of simulation {simulation_id} could be restored",
            total=len(logs),
            errors=errors,
        )
    await db.commit()

    result = RollbackResult(
        simulation_id=simulation_id,
        rolled_back_count=rolled_back_count,
        total=len(logs),
        errors=errors,
    )
    logger.info(
        "pricing.simulation_rolled_back",
        simulation_id=str(simulation_id),
        rolled_back_count=result.rolled_back_count,
        total=result.total,
        failed=len(errors),
        rolled_back_by=actor,
    )
    return result

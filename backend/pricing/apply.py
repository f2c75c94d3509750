"""
Apply Engine — commit a reviewed simulation to live prices.

For every simulation item:
  1. Check the product still exists and (optionally) that its live price
     still equals the simulated old price
  2. Write price_ht (and the derived price_ttc)
  3. Append an immutable price_changes_log row carrying the old/new prices
     and margins recorded at simulation time

Per-item failures (pre-check or write) are collected and skipped; each
write runs in its own savepoint. If nothing can be applied, nothing is
written and the simulation stays 'completed'.
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
from db.models import PriceChangeLog, PricingSimulationItem, Product
from pricing.context import naive_utc
from pricing.errors import BatchFailed
from pricing.rules import price_including_tax
from pricing.state import claim_transition, load_simulation

logger = structlog.get_logger()


@dataclass
class ApplyResult:
    simulation_id: uuid.UUID
    applied_count: int
    total: int
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["simulation_id"] = str(self.simulation_id)
        return payload


async def apply_simulation(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    actor: str | None = None,
    now: datetime | None = None,
) -> ApplyResult:
    """
    Write a completed simulation's proposed prices to the catalog.

    Raises:
        SimulationNotFound: unknown simulation_id
        InvalidState: simulation is not 'completed' (or another apply won the race)
        BatchFailed: no item could be applied
    """
    settings = get_settings()
    now = naive_utc(now or datetime.utcnow())

    await load_simulation(db, simulation_id, expected="completed")

    items = (
        (
            await db.execute(
                select(PricingSimulationItem)
                .where(PricingSimulationItem.simulation_id == simulation_id)
                .order_by(PricingSimulationItem.product_id)
            )
        )
        .scalars()
        .all()
    )
    if not items:
        raise BatchFailed(f"Simulation {simulation_id} has no items to apply", total=0)

    products_result = await db.execute(
        select(Product).where(Product.product_id.in_(list({item.product_id for item in items})))
    )
    products = {product.product_id: product for product in products_result.scalars().all()}

    errors: list[str] = []
    ready: list[tuple[PricingSimulationItem, Product]] = []
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            errors.append(f"Product {item.product_id}: not found")
            continue
        if settings.pricing_verify_live_price and (
            product.price_ht is None
            or abs(product.price_ht - item.old_price_ht) > settings.pricing_price_tolerance
        ):
            errors.append(
                f"Product {item.product_id}: live price {product.price_ht} differs from "
                f"simulated price {item.old_price_ht}"
            )
            continue
        ready.append((item, product))

    for message in errors:
        logger.warning("pricing.apply_item_skipped", simulation_id=str(simulation_id), error=message)

    if not ready:
        raise BatchFailed(
            f"No price of simulation {simulation_id} could be applied",
            total=len(items),
            errors=errors,
        )

    await claim_transition(db, simulation_id, "applied", applied_by=actor, applied_at=now)

    # One savepoint per item: a rejected write only loses its own row.
    applied_count = 0
    for item, product in ready:
        product_id = item.product_id
        try:
            async with db.begin_nested():
                product.price_ht = item.new_price_ht
                product.price_ttc = price_including_tax(item.new_price_ht, settings.pricing_vat_rate)
                db.add(
                    PriceChangeLog(
                        product_id=product_id,
                        simulation_id=simulation_id,
                        rule_type=item.rule_type,
                        old_price_ht=item.old_price_ht,
                        new_price_ht=item.new_price_ht,
                        price_change_percent=item.price_change_percent,
                        old_margin_percent=item.old_margin_percent,
                        new_margin_percent=item.new_margin_percent,
                        reason=item.reason,
                        applied_by=actor,
                        applied_at=now,
                        is_rollback=False,
                        rollback_of=None,
                    )
                )
                await db.flush()
        except SQLAlchemyError as exc:
            errors.append(f"Product {product_id}: write failed ({type(exc).__name__})")
            logger.warning(
                "pricing.apply_item_failed",
                simulation_id=str(simulation_id),
                product_id=str(product_id),
                error=str(exc),
            )
            continue
        applied_count += 1

    if not applied_count:
        await db.rollback()
        raise BatchFailed(
            f"No price of simulation {simulation_id} could be applied",
            total=len(items),
            errors=errors,
        )
    await db.commit()

    result = ApplyResult(
        simulation_id=simulation_id,
        applied_count=applied_count,
        total=len(items),
        errors=errors,
    )
    logger.info(
        "pricing.simulation_applied",
        simulation_id=str(simulation_id),
        applied_count=result.applied_count,
        total=result.total,
        failed=len(errors),
        applied_by=actor,
    )
    return result

"""
Simulation Engine — dry-run repricing of the catalog.

Workflow:
  1. Load active proposer rules + margin guards for the ruleset
  2. Load the active product population (optionally one category)
  3. Load cost / stock / last-sale context (degrades, never aborts)
  4. Evaluate each product: first matching rule, then margin guard
  5. Persist one pricing_simulations row (status='completed') and one
     pricing_simulation_items row per changed product

Never writes product prices. Every call creates a new, independent
simulation, so concurrent runs against the same ruleset are safe.
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
from db.models import PricingSimulation, PricingSimulationItem, Product
from pricing.context import load_pricing_context, naive_utc
from pricing.errors import EmptyPopulation, NoActiveRules
from pricing.rules import PriceProposal, ProductSnapshot, known_cost, price_product, round_pct
from pricing.rulesets import get_ruleset, load_rule_specs

logger = structlog.get_logger()


@dataclass
class SimulationResult:
    simulation_id: uuid.UUID
    ruleset_id: uuid.UUID
    category: str | None
    status: str
    product_count: int
    affected_count: int
    avg_change_pct: float
    proposals: list[PriceProposal] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("proposals")
        payload["simulation_id"] = str(self.simulation_id)
        payload["ruleset_id"] = str(self.ruleset_id)
        return payload


async def run_simulation(
    db: AsyncSession,
    ruleset_id: uuid.UUID,
    category: str | None = None,
    actor: str | None = None,
    as_of: datetime | None = None,
) -> SimulationResult:
    """
    Evaluate a ruleset over the active catalog and persist the proposal.

    Args:
        db: Database session
        ruleset_id: Ruleset to evaluate
        category: Optional product category filter
        actor: Operator recorded as created_by
        as_of: Evaluation instant (defaults to now, UTC; aware values are
            converted to UTC). Drives the seasonality month and
            days-since-last-sale.

    Raises:
        RulesetNotFound, NoActiveRules, EmptyPopulation
    """
    settings = get_settings()
    as_of = naive_utc(as_of or datetime.utcnow())

    await get_ruleset(db, ruleset_id)
    proposers, guards = await load_rule_specs(db, ruleset_id)
    if not proposers:
        raise NoActiveRules(ruleset_id)

    query = select(Product.product_id, Product.category, Product.price_ht).where(Product.is_active.is_(True))
    if category:
        query = query.where(Product.category == category)
    population = (await db.execute(query.order_by(Product.sku))).all()
    if not population:
        raise EmptyPopulation(category)

    product_ids = [row.product_id for row in population]
    context = await load_pricing_context(db, product_ids, as_of, settings.pricing_sales_lookback_days)

    proposals: list[PriceProposal] = []
    guarded = 0
    for row in population:
        snapshot = ProductSnapshot(
            product_id=row.product_id,
            category=row.category,
            price_ht=row.price_ht,
            cost=known_cost(context.costs.get(row.product_id)),
            stock_quantity=context.stock.get(row.product_id),
            days_since_last_sale=context.days_since_last_sale(row.product_id, as_of),
        )
        proposal = price_product(snapshot, proposers, guards, current_month=as_of.month)
        if proposal is None:
            continue
        proposals.append(proposal)
        guarded += proposal.blocked_by_guard

    avg_change_pct = (
        round_pct(sum(p.price_change_percent for p in proposals) / len(proposals)) if proposals else 0.0
    )

    simulation = PricingSimulation(
        simulation_id=uuid.uuid4(),
        ruleset_id=ruleset_id,
        category=category,
        status="completed",
        product_count=len(population),
        affected_count=len(proposals),
        avg_change_pct=avg_change_pct,
        created_by=actor,
        created_at=as_of,
    )
    try:
        db.add(simulation)
        await db.flush()
        batch_size = max(1, settings.pricing_item_batch_size)
        for start in range(0, len(proposals), batch_size):
            db.add_all(
                PricingSimulationItem(simulation_id=simulation.simulation_id, **asdict(proposal))
                for proposal in proposals[start : start + batch_size]
            )
            await db.flush()
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.error("pricing.simulation_persist_failed", ruleset_id=str(ruleset_id), exc_info=True)
        raise

    result = SimulationResult(
        simulation_id=simulation.simulation_id,
        ruleset_id=ruleset_id,
        category=category,
        status="completed",
        product_count=len(population),
        affected_count=len(proposals),
        avg_change_pct=avg_change_pct,
        proposals=proposals,
    )
    logger.info(
        "pricing.simulation_completed",
        simulation_id=str(result.simulation_id),
        ruleset_id=str(ruleset_id),
        category=category,
        product_count=result.product_count,
        affected_count=result.affected_count,
        guarded_count=guarded,
        avg_change_pct=avg_change_pct,
        rules=len(proposers),
        guards=len(guards),
    )
    return result

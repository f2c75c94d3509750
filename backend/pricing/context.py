"""
Pricing Context — read-only inputs for the rule evaluator.

  cost basis   lowest supplier unit price per product
  stock        sum over locations of each location's latest snapshot
  last sale    most recent 'sale' transaction inside the lookback window

Every lookup is non-blocking: a failed query is logged and treated as
"unknown" for the whole population, which only reduces the precision of
the evaluation (no guard, no low_stock trigger, no rotation discount).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import InventoryLevel, SupplierProduct, Transaction

logger = structlog.get_logger()

LOOKUP_CHUNK_SIZE = 1000


def naive_utc(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC; convert aware values to match."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@dataclass
class PricingContext:
    costs: dict[uuid.UUID, float] = field(default_factory=dict)
    stock: dict[uuid.UUID, int] = field(default_factory=dict)
    last_sales: dict[uuid.UUID, datetime] = field(default_factory=dict)

    def days_since_last_sale(self, product_id: uuid.UUID, as_of: datetime) -> int:
        """Whole days since the last sale; 0 when no sale is on record."""
        last_sale = self.last_sales.get(product_id)
        if last_sale is None:
            return 0
        return max(0, (as_of - last_sale).days)


async def load_cost_basis(db: AsyncSession, product_ids: list[uuid.UUID]) -> dict[uuid.UUID, float]:
    result = await db.execute(
        select(SupplierProduct.product_id, func.min(SupplierProduct.supplier_price))
        .where(
            SupplierProduct.product_id.in_(product_ids),
            SupplierProduct.supplier_price > 0,
        )
        .group_by(SupplierProduct.product_id)
    )
    return {product_id: float(cost) for product_id, cost in result.all()}


async def load_stock_levels(db: AsyncSession, product_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    latest = (
        select(
            InventoryLevel.product_id,
            InventoryLevel.location,
            func.max(InventoryLevel.timestamp).label("latest_ts"),
        )
        .where(InventoryLevel.product_id.in_(product_ids))
        .group_by(InventoryLevel.product_id, InventoryLevel.location)
        .subquery()
    )
    result = await db.execute(
        select(InventoryLevel.product_id, func.sum(InventoryLevel.quantity_on_hand))
        .join(
            latest,
            (InventoryLevel.product_id == latest.c.product_id)
            & (InventoryLevel.location == latest.c.location)
            & (InventoryLevel.timestamp == latest.c.latest_ts),
        )
        .group_by(InventoryLevel.product_id)
    )
    return {product_id: int(total) for product_id, total in result.all()}


async def load_last_sales(
    db: AsyncSession,
    product_ids: list[uuid.UUID],
    since: datetime,
) -> dict[uuid.UUID, datetime]:
    result = await db.execute(
        select(Transaction.product_id, func.max(Transaction.timestamp))
        .where(
            Transaction.product_id.in_(product_ids),
            Transaction.transaction_type == "sale",
            Transaction.timestamp >= since,
        )
        .group_by(Transaction.product_id)
    )
    return {product_id: last_sale for product_id, last_sale in result.all()}


async def load_pricing_context(
    db: AsyncSession,
    product_ids: list[uuid.UUID],
    as_of: datetime,
    lookback_days: int,
) -> PricingContext:
    """
    Gather cost, stock, and sales context for a product population.

    Callers must not hold ORM instances across this call: a failed lookup
    rolls the session back, which expires everything loaded so far.
    """
    context = PricingContext()
    if not product_ids:
        return context

    since = as_of - timedelta(days=lookback_days)
    lookups = (
        ("costs", "supplier_products", lambda ids: load_cost_basis(db, ids)),
        ("stock", "inventory_levels", lambda ids: load_stock_levels(db, ids)),
        ("last_sales", "transactions", lambda ids: load_last_sales(db, ids, since)),
    )
    for attr, source, lookup in lookups:
        merged: dict = {}
        try:
            # Bounded IN lists keep large catalogs under driver parameter limits
            for start in range(0, len(product_ids), LOOKUP_CHUNK_SIZE):
                merged.update(await lookup(product_ids[start : start + LOOKUP_CHUNK_SIZE]))
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.warning("pricing.context_unavailable", source=source, error=str(exc))
            continue
        setattr(context, attr, merged)

    logger.debug(
        "pricing.context_loaded",
        products=len(product_ids),
        with_cost=len(context.costs),
        with_stock=len(context.stock),
        with_recent_sale=len(context.last_sales),
    )
    return context

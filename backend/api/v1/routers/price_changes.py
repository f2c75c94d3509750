"""
Price Changes Router — read access to the append-only price ledger.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_actor, get_db
from db.models import PriceChangeLog

router = APIRouter(prefix="/api/v1/pricing/price-changes", tags=["pricing-ledger"])


class PriceChangeResponse(BaseModel):
    log_id: UUID
    product_id: UUID
    simulation_id: UUID | None
    rule_type: str | None
    old_price_ht: float
    new_price_ht: float
    price_change_percent: float | None
    old_margin_percent: float | None
    new_margin_percent: float | None
    reason: str | None
    applied_by: str | None
    applied_at: datetime
    is_rollback: bool
    rollback_of: UUID | None

    model_config = {"from_attributes": True}


@router.get("", response_model=list[PriceChangeResponse])
async def list_price_changes(
    simulation_id: UUID | None = None,
    product_id: UUID | None = None,
    is_rollback: bool | None = None,
    limit: int = Query(200, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """Ledger entries, newest first."""
    query = select(PriceChangeLog)
    if simulation_id:
        query = query.where(PriceChangeLog.simulation_id == simulation_id)
    if product_id:
        query = query.where(PriceChangeLog.product_id == product_id)
    if is_rollback is not None:
        query = query.where(PriceChangeLog.is_rollback.is_(is_rollback))
    query = query.order_by(PriceChangeLog.applied_at.desc(), PriceChangeLog.is_rollback.desc()).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()

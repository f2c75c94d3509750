"""
Simulations Router — the human-in-the-loop repricing workflow.

  1. POST /simulations          → dry run, status='completed', prices untouched
  2. GET  /simulations/{id}/items → operator reviews proposed changes
  3. POST /simulations/{id}/apply → live prices written, status='applied'
  4. POST /simulations/{id}/rollback → prices restored, status='rolled_back'

Apply and rollback always report counts next to the total so a partial
outcome is visible without reading logs.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_actor, get_db
from db.models import PricingSimulation, PricingSimulationItem
from pricing.apply import apply_simulation
from pricing.errors import (
    BatchFailed,
    EmptyPopulation,
    InvalidState,
    NoActiveRules,
    RulesetNotFound,
    SimulationNotFound,
)
from pricing.rollback import rollback_simulation
from pricing.simulation import run_simulation

router = APIRouter(prefix="/api/v1/pricing/simulations", tags=["pricing-simulations"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class SimulationRequest(BaseModel):
    ruleset_id: UUID
    category: str | None = Field(None, description="Restrict the run to one product category")


class SimulationRunResponse(BaseModel):
    simulation_id: UUID
    ruleset_id: UUID
    category: str | None
    status: str
    product_count: int
    affected_count: int
    avg_change_pct: float


class SimulationResponse(BaseModel):
    simulation_id: UUID
    ruleset_id: UUID
    category: str | None
    status: str
    product_count: int
    affected_count: int
    avg_change_pct: float | None
    created_by: str | None
    created_at: datetime
    applied_by: str | None
    applied_at: datetime | None

    model_config = {"from_attributes": True}


class SimulationItemResponse(BaseModel):
    item_id: UUID
    simulation_id: UUID
    product_id: UUID
    rule_id: UUID | None
    rule_type: str | None
    old_price_ht: float
    new_price_ht: float
    price_change_percent: float | None
    old_margin_percent: float | None
    new_margin_percent: float | None
    reason: str | None
    blocked_by_guard: bool

    model_config = {"from_attributes": True}


class ApplyResponse(BaseModel):
    simulation_id: UUID
    applied_count: int
    total: int
    errors: list[str]


class RollbackResponse(BaseModel):
    simulation_id: UUID
    rolled_back_count: int
    total: int
    errors: list[str]


def _batch_failed(exc: BatchFailed) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"message": str(exc), "total": exc.total, "errors": exc.errors},
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("", response_model=SimulationRunResponse, status_code=201)
async def create_simulation(
    body: SimulationRequest,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """
    Evaluate a ruleset over the active catalog without touching prices.

    Each call creates a new simulation; re-running is always safe.
    """
    try:
        result = await run_simulation(db, body.ruleset_id, category=body.category, actor=actor)
    except RulesetNotFound:
        raise HTTPException(status_code=404, detail="Ruleset not found")
    except (NoActiveRules, EmptyPopulation) as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return SimulationRunResponse(**result.to_dict())


@router.get("", response_model=list[SimulationResponse])
async def list_simulations(
    ruleset_id: UUID | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """Latest simulations, newest first."""
    query = select(PricingSimulation)
    if ruleset_id:
        query = query.where(PricingSimulation.ruleset_id == ruleset_id)
    if status:
        query = query.where(PricingSimulation.status == status)
    query = query.order_by(PricingSimulation.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{simulation_id}", response_model=SimulationResponse)
async def get_simulation(
    simulation_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    simulation = await db.get(PricingSimulation, simulation_id)
    if not simulation:
        raise HTTPException(status_code=404, detail="Simulation not found")
    return simulation


@router.get("/{simulation_id}/items", response_model=list[SimulationItemResponse])
async def list_simulation_items(
    simulation_id: UUID,
    guarded_only: bool = False,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """Proposed changes for review, largest decrease first."""
    if not await db.get(PricingSimulation, simulation_id):
        raise HTTPException(status_code=404, detail="Simulation not found")
    query = select(PricingSimulationItem).where(PricingSimulationItem.simulation_id == simulation_id)
    if guarded_only:
        query = query.where(PricingSimulationItem.blocked_by_guard.is_(True))
    result = await db.execute(query.order_by(PricingSimulationItem.price_change_percent.asc()))
    return result.scalars().all()


@router.post("/{simulation_id}/apply", response_model=ApplyResponse)
async def apply(
    simulation_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """Commit a completed simulation's prices to the catalog."""
    try:
        result = await apply_simulation(db, simulation_id, actor=actor)
    except SimulationNotFound:
        raise HTTPException(status_code=404, detail="Simulation not found")
    except InvalidState as exc:
        raise HTTPException(status_code=400, detail=f"Cannot apply: {exc}")
    except BatchFailed as exc:
        raise _batch_failed(exc)
    return ApplyResponse(**result.to_dict())


@router.post("/{simulation_id}/rollback", response_model=RollbackResponse)
async def rollback(
    simulation_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """Restore the prices an applied simulation replaced."""
    try:
        result = await rollback_simulation(db, simulation_id, actor=actor)
    except SimulationNotFound:
        raise HTTPException(status_code=404, detail="Simulation not found")
    except InvalidState as exc:
        raise HTTPException(status_code=400, detail=f"Cannot roll back: {exc}")
    except BatchFailed as exc:
        raise _batch_failed(exc)
    return RollbackResponse(**result.to_dict())

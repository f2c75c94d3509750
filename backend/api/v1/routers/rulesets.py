"""
Rulesets Router — pricing ruleset and rule management.

Operators maintain named rulesets of prioritized rules:
  - seasonality / low_stock / low_rotation propose a new price
    (first active rule by ascending priority wins)
  - margin_guard raises any proposal that would undercut a minimum margin

Params are validated per rule type; omitted params take their defaults.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_actor, get_db
from pricing import rulesets as store
from pricing.errors import RuleNotFound, RulesetInUse, RulesetNotFound

router = APIRouter(prefix="/api/v1/pricing", tags=["pricing-rulesets"])

RuleTypeName = Literal["seasonality", "low_stock", "low_rotation", "margin_guard"]


# ─── Schemas ────────────────────────────────────────────────────────────────


class RulesetCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    is_active: bool = True


class RulesetUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    is_active: bool | None = None


class RulesetResponse(BaseModel):
    ruleset_id: UUID
    name: str
    description: str | None
    is_active: bool
    created_by: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    rule_type: RuleTypeName
    priority: int = Field(100, ge=0)
    is_active: bool = True
    params: dict[str, Any] = Field(
        default_factory=dict,
        examples=[{"days_without_sale": 60, "discount_percent": 15}],
    )


class RuleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    rule_type: RuleTypeName | None = None
    priority: int | None = Field(None, ge=0)
    is_active: bool | None = None
    params: dict[str, Any] | None = None


class RuleResponse(BaseModel):
    rule_id: UUID
    ruleset_id: UUID
    name: str
    rule_type: str
    priority: int
    is_active: bool
    params: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints: Rulesets ────────────────────────────────────────────────────


@router.get("/rulesets", response_model=list[RulesetResponse])
async def list_rulesets(
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """List rulesets, newest first."""
    return await store.list_rulesets(db, active_only=active_only)


@router.post("/rulesets", response_model=RulesetResponse, status_code=201)
async def create_ruleset(
    body: RulesetCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """Create an empty ruleset."""
    return await store.create_ruleset(db, **body.model_dump(), created_by=actor)


@router.get("/rulesets/{ruleset_id}", response_model=RulesetResponse)
async def get_ruleset(
    ruleset_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    try:
        return await store.get_ruleset(db, ruleset_id)
    except RulesetNotFound:
        raise HTTPException(status_code=404, detail="Ruleset not found")


@router.patch("/rulesets/{ruleset_id}", response_model=RulesetResponse)
async def update_ruleset(
    ruleset_id: UUID,
    body: RulesetUpdate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """Rename, describe, or (de)activate a ruleset."""
    try:
        return await store.update_ruleset(db, ruleset_id, body.model_dump(exclude_unset=True))
    except RulesetNotFound:
        raise HTTPException(status_code=404, detail="Ruleset not found")


@router.delete("/rulesets/{ruleset_id}", status_code=204)
async def delete_ruleset(
    ruleset_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """
    Delete a ruleset and its rules.

    Rejected once any simulation references the ruleset; deactivate it instead.
    """
    try:
        await store.delete_ruleset(db, ruleset_id)
    except RulesetNotFound:
        raise HTTPException(status_code=404, detail="Ruleset not found")
    except RulesetInUse as exc:
        raise HTTPException(status_code=409, detail=str(exc))


# ─── Endpoints: Rules ───────────────────────────────────────────────────────


@router.get("/rulesets/{ruleset_id}/rules", response_model=list[RuleResponse])
async def list_rules(
    ruleset_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """Rules of a ruleset in evaluation order (ascending priority)."""
    try:
        return await store.list_rules(db, ruleset_id)
    except RulesetNotFound:
        raise HTTPException(status_code=404, detail="Ruleset not found")


@router.post("/rulesets/{ruleset_id}/rules", response_model=RuleResponse, status_code=201)
async def create_rule(
    ruleset_id: UUID,
    body: RuleCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    try:
        return await store.add_rule(db, ruleset_id, **body.model_dump())
    except RulesetNotFound:
        raise HTTPException(status_code=404, detail="Ruleset not found")
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.patch("/rules/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: UUID,
    body: RuleUpdate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """Edit a rule. Past simulations keep the values they were computed with."""
    try:
        return await store.update_rule(db, rule_id, body.model_dump(exclude_unset=True))
    except RuleNotFound:
        raise HTTPException(status_code=404, detail="Rule not found")
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    try:
        await store.delete_rule(db, rule_id)
    except RuleNotFound:
        raise HTTPException(status_code=404, detail="Rule not found")
    except RulesetInUse as exc:
        raise HTTPException(status_code=409, detail=str(exc))

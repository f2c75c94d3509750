"""
Ruleset Store — named collections of prioritized pricing rules.

Pure data: this module validates and persists rulesets and rules, and hands
the simulation engine an immutable RuleSpec view. Edits only affect future
simulations; simulation items snapshot everything they need for review.
"""

import uuid
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import PricingRule, PricingRuleset, PricingSimulation, PricingSimulationItem
from pricing.errors import RuleNotFound, RulesetInUse, RulesetNotFound
from pricing.rules import RuleSpec, split_rules, validate_rule_params

logger = structlog.get_logger()

_RULESET_FIELDS = {"name", "description", "is_active"}
_RULE_FIELDS = {"name", "rule_type", "is_active", "priority", "params"}


# ─── Rulesets ───────────────────────────────────────────────────────────────


async def get_ruleset(db: AsyncSession, ruleset_id: uuid.UUID) -> PricingRuleset:
    ruleset = await db.get(PricingRuleset, ruleset_id)
    if ruleset is None:
        raise RulesetNotFound(ruleset_id)
    return ruleset


async def list_rulesets(db: AsyncSession, active_only: bool = False) -> list[PricingRuleset]:
    query = select(PricingRuleset)
    if active_only:
        query = query.where(PricingRuleset.is_active.is_(True))
    result = await db.execute(query.order_by(PricingRuleset.created_at.desc()))
    return list(result.scalars().all())


async def create_ruleset(
    db: AsyncSession,
    name: str,
    description: str | None = None,
    is_active: bool = True,
    created_by: str | None = None,
) -> PricingRuleset:
    ruleset = PricingRuleset(
        name=name,
        description=description,
        is_active=is_active,
        created_by=created_by,
    )
    db.add(ruleset)
    await db.commit()
    await db.refresh(ruleset)
    logger.info("pricing.ruleset_created", ruleset_id=str(ruleset.ruleset_id), name=name)
    return ruleset


async def update_ruleset(db: AsyncSession, ruleset_id: uuid.UUID, changes: dict[str, Any]) -> PricingRuleset:
    ruleset = await get_ruleset(db, ruleset_id)
    for field, value in changes.items():
        if field in _RULESET_FIELDS:
            setattr(ruleset, field, value)
    ruleset.updated_at = datetime.utcnow()
    await db.commit()
    await db.refresh(ruleset)
    return ruleset


async def delete_ruleset(db: AsyncSession, ruleset_id: uuid.UUID) -> None:
    """Delete a ruleset and its rules, unless a simulation already used it."""
    ruleset = await get_ruleset(db, ruleset_id)
    used = await db.scalar(
        select(func.count(PricingSimulation.simulation_id)).where(PricingSimulation.ruleset_id == ruleset_id)
    )
    if used:
        raise RulesetInUse(f"Ruleset {ruleset_id} is referenced by {used} simulation(s); deactivate it instead")
    await db.delete(ruleset)
    await db.commit()
    logger.info("pricing.ruleset_deleted", ruleset_id=str(ruleset_id))


# ─── Rules ──────────────────────────────────────────────────────────────────


async def get_rule(db: AsyncSession, rule_id: uuid.UUID) -> PricingRule:
    rule = await db.get(PricingRule, rule_id)
    if rule is None:
        raise RuleNotFound(rule_id)
    return rule


async def list_rules(db: AsyncSession, ruleset_id: uuid.UUID) -> list[PricingRule]:
    await get_ruleset(db, ruleset_id)
    result = await db.execute(
        select(PricingRule)
        .where(PricingRule.ruleset_id == ruleset_id)
        .order_by(PricingRule.priority.asc(), PricingRule.created_at.asc())
    )
    return list(result.scalars().all())


async def add_rule(
    db: AsyncSession,
    ruleset_id: uuid.UUID,
    name: str,
    rule_type: str,
    params: dict[str, Any] | None = None,
    priority: int = 100,
    is_active: bool = True,
) -> PricingRule:
    """Validate params for the rule type and append the rule to a ruleset."""
    await get_ruleset(db, ruleset_id)
    rule = PricingRule(
        ruleset_id=ruleset_id,
        name=name,
        rule_type=rule_type,
        priority=priority,
        is_active=is_active,
        params=validate_rule_params(rule_type, params),
    )
    db.add(rule)
    await db.commit()
    await db.refresh(rule)
    logger.info(
        "pricing.rule_created",
        ruleset_id=str(ruleset_id),
        rule_id=str(rule.rule_id),
        rule_type=rule_type,
        priority=priority,
    )
    return rule


async def update_rule(db: AsyncSession, rule_id: uuid.UUID, changes: dict[str, Any]) -> PricingRule:
    rule = await get_rule(db, rule_id)
    rule_type = changes.get("rule_type", rule.rule_type)
    if "rule_type" in changes or "params" in changes:
        # Switching type without new params re-validates the old bag under the new type
        changes = {**changes, "params": validate_rule_params(rule_type, changes.get("params", rule.params))}
    for field, value in changes.items():
        if field in _RULE_FIELDS:
            setattr(rule, field, value)
    rule.updated_at = datetime.utcnow()
    await db.commit()
    await db.refresh(rule)
    return rule


async def delete_rule(db: AsyncSession, rule_id: uuid.UUID) -> None:
    rule = await get_rule(db, rule_id)
    used = await db.scalar(
        select(func.count(PricingSimulationItem.item_id)).where(PricingSimulationItem.rule_id == rule_id)
    )
    if used:
        raise RulesetInUse(f"Rule {rule_id} produced {used} simulation item(s); deactivate it instead")
    await db.delete(rule)
    await db.commit()


async def load_rule_specs(db: AsyncSession, ruleset_id: uuid.UUID) -> tuple[list[RuleSpec], list[RuleSpec]]:
    """
    Active rules of a ruleset as (proposers by priority, margin guards).
    """
    result = await db.execute(
        select(PricingRule)
        .where(PricingRule.ruleset_id == ruleset_id, PricingRule.is_active.is_(True))
        .order_by(PricingRule.priority.asc())
    )
    specs = [RuleSpec.from_row(rule) for rule in result.scalars().all()]
    return split_rules(specs)

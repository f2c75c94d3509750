"""
Pricing Workers — batch entry points for the repricing pipeline.

Schedule: crontab(hour=settings.pricing_schedule_hour), a nightly simulation
of every active ruleset. Apply and rollback tasks exist for operator-triggered
runs; the schedule never applies on its own.
Queue: pricing

Business rejections (PricingError) and constraint violations (IntegrityError)
are reported in the task result and not retried. Anything else is retried;
the status gate makes apply and rollback safe to re-run.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pricing.errors import EmptyPopulation, NoActiveRules, PricingError
from workers.celery_app import celery_app

logger = structlog.get_logger()

SCHEDULER_ACTOR = "scheduler"


async def simulate_rulesets(
    db: AsyncSession,
    category: str | None = None,
    actor: str = SCHEDULER_ACTOR,
    as_of: datetime | None = None,
) -> dict[str, Any]:
    """
    Simulate every active ruleset once.

    A ruleset without active rules, or a scope without products, is skipped
    rather than failing the whole sweep.
    """
    from pricing.rulesets import list_rulesets
    from pricing.simulation import run_simulation

    ruleset_ids = [ruleset.ruleset_id for ruleset in await list_rulesets(db, active_only=True)]

    simulations = []
    skipped = []
    for ruleset_id in ruleset_ids:
        try:
            result = await run_simulation(db, ruleset_id, category=category, actor=actor, as_of=as_of)
        except (NoActiveRules, EmptyPopulation) as exc:
            skipped.append({"ruleset_id": str(ruleset_id), "reason": str(exc)})
            logger.info("pricing.scheduled_ruleset_skipped", ruleset_id=str(ruleset_id), reason=str(exc))
            continue
        simulations.append(result.to_dict())

    return {
        "status": "success",
        "ruleset_count": len(ruleset_ids),
        "simulations": simulations,
        "skipped": skipped,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }


def _run(task, label: str, work: Callable[[], Awaitable[dict]], **context: Any) -> dict:
    run_id = task.request.id or "manual"
    logger.info(f"pricing.{label}_started", run_id=run_id, **context)
    try:
        summary = asyncio.run(work())
    except (PricingError, IntegrityError) as exc:
        logger.warning(f"pricing.{label}_rejected", run_id=run_id, error=str(exc), **context)
        return {"status": "rejected", "reason": type(exc).__name__, "error": str(exc), "run_id": run_id, **context}
    except Exception as exc:
        logger.error(f"pricing.{label}_failed", run_id=run_id, error=str(exc), exc_info=True, **context)
        raise task.retry(exc=exc)
    logger.info(f"pricing.{label}_completed", run_id=run_id, **context)
    return {**summary, "run_id": run_id}


@celery_app.task(
    name="workers.pricing.simulate_active_rulesets",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def simulate_active_rulesets(self, category: str | None = None):
    """Nightly job: one fresh, reviewable simulation per active ruleset."""
    from db.session import standalone_session

    async def _work():
        async with standalone_session() as db:
            return await simulate_rulesets(db, category=category)

    return _run(self, "scheduled_simulation", _work, category=category)


@celery_app.task(
    name="workers.pricing.simulate_ruleset",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def simulate_ruleset(self, ruleset_id: str, category: str | None = None, actor: str | None = None):
    from db.session import standalone_session
    from pricing.simulation import run_simulation

    async def _work():
        async with standalone_session() as db:
            result = await run_simulation(
                db, uuid.UUID(ruleset_id), category=category, actor=actor or SCHEDULER_ACTOR
            )
            return result.to_dict()

    return _run(self, "simulation", _work, ruleset_id=ruleset_id, category=category)


@celery_app.task(
    name="workers.pricing.apply_simulation",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def apply_simulation(self, simulation_id: str, actor: str):
    from db.session import standalone_session
    from pricing.apply import apply_simulation as apply_prices

    async def _work():
        async with standalone_session() as db:
            result = await apply_prices(db, uuid.UUID(simulation_id), actor=actor)
            return result.to_dict()

    return _run(self, "apply", _work, simulation_id=simulation_id)


@celery_app.task(
    name="workers.pricing.rollback_simulation",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def rollback_simulation(self, simulation_id: str, actor: str):
    from db.session import standalone_session
    from pricing.rollback import rollback_simulation as restore_prices

    async def _work():
        async with standalone_session() as db:
            result = await restore_prices(db, uuid.UUID(simulation_id), actor=actor)
            return result.to_dict()

    return _run(self, "rollback", _work, simulation_id=simulation_id)

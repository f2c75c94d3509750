"""
Simulation status machine.

    completed ──apply──▶ applied ──rollback──▶ rolled_back

Each transition is a one-way door taken at most once. The precondition
check doubles as the concurrency gate: the move is a single conditional
UPDATE, so of two racing callers only one sees a matched row.
"""

import uuid
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import PricingSimulation
from pricing.errors import InvalidState, SimulationNotFound

TRANSITIONS = {
    "applied": "completed",
    "rolled_back": "applied",
}


async def load_simulation(db: AsyncSession, simulation_id: uuid.UUID, expected: str) -> PricingSimulation:
    """Fetch a simulation and check it sits in the expected status."""
    simulation = await db.get(PricingSimulation, simulation_id)
    if simulation is None:
        raise SimulationNotFound(simulation_id)
    if simulation.status != expected:
        raise InvalidState(simulation_id, simulation.status, expected)
    return simulation


async def claim_transition(
    db: AsyncSession,
    simulation_id: uuid.UUID,
    target: str,
    **values: Any,
) -> None:
    """
    Move a simulation to `target` iff it is still in the source status.

    Runs inside the caller's transaction; the caller commits together with
    the price writes. Raises InvalidState when another caller got there first.
    """
    source = TRANSITIONS[target]
    result = await db.execute(
        update(PricingSimulation)
        .where(
            PricingSimulation.simulation_id == simulation_id,
            PricingSimulation.status == source,
        )
        .values(status=target, **values)
    )
    if result.rowcount != 1:
        await db.rollback()
        current = await db.get(PricingSimulation, simulation_id, populate_existing=True)
        raise InvalidState(simulation_id, current.status if current else "missing", source)

"""Pricing engine exceptions."""

import uuid


class PricingError(Exception):
    """Base class for pricing engine failures surfaced to callers."""


class RulesetNotFound(PricingError):
    def __init__(self, ruleset_id: uuid.UUID):
        self.ruleset_id = ruleset_id
        super().__init__(f"Ruleset {ruleset_id} not found")


class RuleNotFound(PricingError):
    def __init__(self, rule_id: uuid.UUID):
        self.rule_id = rule_id
        super().__init__(f"Rule {rule_id} not found")


class SimulationNotFound(PricingError):
    def __init__(self, simulation_id: uuid.UUID):
        self.simulation_id = simulation_id
        super().__init__(f"Simulation {simulation_id} not found")


class NoActiveRules(PricingError):
    def __init__(self, ruleset_id: uuid.UUID):
        self.ruleset_id = ruleset_id
        super().__init__(f"Ruleset {ruleset_id} has no active price-adjusting rules")


class EmptyPopulation(PricingError):
    def __init__(self, category: str | None = None):
        self.category = category
        scope = f"category '{category}'" if category else "the catalog"
        super().__init__(f"No active products found in {scope}")


class InvalidState(PricingError):
    """A simulation is not in the status the requested transition starts from."""

    def __init__(self, simulation_id: uuid.UUID, status: str, expected: str):
        self.simulation_id = simulation_id
        self.status = status
        self.expected = expected
        super().__init__(f"Simulation {simulation_id} is '{status}'. Must be '{expected}'.")


class BatchFailed(PricingError):
    """Apply or rollback changed nothing; the simulation keeps its status."""

    def __init__(self, message: str, total: int = 0, errors: list[str] | None = None):
        self.total = total
        self.errors = list(errors or [])
        super().__init__(message)


class RulesetInUse(PricingError):
    """Deleting would orphan the audit trail of an existing simulation."""

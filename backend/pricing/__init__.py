"""
Dynamic pricing engine package.

Plan / commit / rollback pipeline for repricing the catalog:
  - rules.py       Pure rule evaluation and margin guard
  - rulesets.py    Ruleset + rule storage and param validation
  - context.py     Cost / stock / sales lookups feeding the evaluator
  - simulation.py  Dry-run over the catalog, persisted for review
  - apply.py       Commit a reviewed simulation to live prices
  - rollback.py    Restore prices from the append-only change log

Usage:
    from pricing.simulation import run_simulation
    from pricing.apply import apply_simulation

    result = await run_simulation(db, ruleset_id, category="Cahiers", actor="ops@shop")
    outcome = await apply_simulation(db, result.simulation_id, actor="ops@shop")
"""

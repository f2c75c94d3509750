"""
Pricing Rules — Pure rule evaluation and margin guard.

Rules are a tagged variant (rule_type + typed params) walked in strict
priority order; there is no per-type class hierarchy.

  seasonality   current month in params.months      → price × (1 + adjustment%)
  low_stock     0 ≤ stock ≤ params.threshold         → price × (1 + adjustment%)
  low_rotation  days since sale ≥ days_without_sale  → price × (1 − discount%)
  margin_guard  overlay: raises any candidate whose margin falls under the floor

First triggering proposer wins. Guards never lower a price and never fire
when the cost basis is unknown.

Nothing in this module touches the database or the clock: the evaluation
month and the rotation age are inputs, so a simulation can be replayed.
"""

import uuid
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

RuleType = Literal["seasonality", "low_stock", "low_rotation", "margin_guard"]

PROPOSER_TYPES = ("seasonality", "low_stock", "low_rotation")
GUARD_TYPE = "margin_guard"

_CENT = Decimal("0.01")
_MICRO = Decimal("0.000001")


# ─── Rule Params ────────────────────────────────────────────────────────────


class SeasonalityParams(BaseModel):
    months: list[int] = Field(default_factory=lambda: [8, 9])
    adjustment_percent: float = Field(10.0, gt=-100)

    @field_validator("months")
    @classmethod
    def _months_in_calendar(cls, months: list[int]) -> list[int]:
        if any(m < 1 or m > 12 for m in months):
            raise ValueError("months must be between 1 and 12")
        return sorted(set(months))


class LowStockParams(BaseModel):
    threshold: int = Field(5, ge=0)
    adjustment_percent: float = Field(10.0, gt=-100)


class LowRotationParams(BaseModel):
    days_without_sale: int = Field(60, ge=0)
    discount_percent: float = Field(15.0, ge=0, le=100)


class MarginGuardParams(BaseModel):
    min_margin_percent: float = Field(15.0, ge=0, lt=100)


PARAM_MODELS: dict[str, type[BaseModel]] = {
    "seasonality": SeasonalityParams,
    "low_stock": LowStockParams,
    "low_rotation": LowRotationParams,
    "margin_guard": MarginGuardParams,
}


def parse_rule_params(rule_type: str, params: dict[str, Any] | None) -> BaseModel:
    """Validate a raw params bag for its rule type, filling defaults."""
    model = PARAM_MODELS.get(rule_type)
    if model is None:
        raise ValueError(f"Unknown rule_type '{rule_type}'")
    return model.model_validate(params or {})


def validate_rule_params(rule_type: str, params: dict[str, Any] | None) -> dict[str, Any]:
    """Normalized params dict, ready to store on a PricingRule row."""
    return parse_rule_params(rule_type, params).model_dump()


# ─── Value Types ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RuleSpec:
    """An immutable, validated view of one active rule."""

    rule_id: uuid.UUID | None
    name: str
    rule_type: str
    priority: int
    params: BaseModel

    @classmethod
    def from_row(cls, rule) -> "RuleSpec":
        return cls(
            rule_id=rule.rule_id,
            name=rule.name,
            rule_type=rule.rule_type,
            priority=rule.priority,
            params=parse_rule_params(rule.rule_type, rule.params),
        )

    @property
    def is_guard(self) -> bool:
        return self.rule_type == GUARD_TYPE


@dataclass(frozen=True)
class ProductSnapshot:
    """Everything the evaluator may know about one product."""

    product_id: uuid.UUID
    category: str | None
    price_ht: float
    cost: float | None = None  # Lowest supplier price, None when unknown
    stock_quantity: int | None = None  # None when unknown
    days_since_last_sale: int = 0


@dataclass(frozen=True)
class RuleMatch:
    candidate_price: float
    rule: RuleSpec
    reason: str


@dataclass(frozen=True)
class GuardOutcome:
    price: float
    blocked: bool
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class PriceProposal:
    """One proposed price change; maps 1:1 onto a PricingSimulationItem."""

    product_id: uuid.UUID
    rule_id: uuid.UUID | None
    rule_type: str
    old_price_ht: float
    new_price_ht: float
    price_change_percent: float
    old_margin_percent: float | None
    new_margin_percent: float | None
    reason: str
    blocked_by_guard: bool


# ─── Arithmetic ─────────────────────────────────────────────────────────────


def round_money(value: float, up: bool = False) -> float:
    """
    Round to the currency minor unit, half-up (or ceiling when up=True).

    Float noise is squashed at 6 decimals first so 10.6250000001 and
    10.6249999999 both behave like 10.625.
    """
    d = Decimal(str(value)).quantize(_MICRO, rounding=ROUND_HALF_UP)
    return float(d.quantize(_CENT, rounding=ROUND_CEILING if up else ROUND_HALF_UP))


def round_pct(value: float) -> float:
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def price_including_tax(price_ht: float, vat_rate: float) -> float:
    return round_money(price_ht * (1 + vat_rate))


def change_percent(old_price: float, new_price: float) -> float | None:
    if not old_price:
        return None
    return round_pct((new_price - old_price) / old_price * 100)


def known_cost(cost: float | None) -> float | None:
    """Non-positive supplier prices carry no cost information."""
    if cost is None or cost <= 0:
        return None
    return cost


def margin_percent(price: float, cost: float | None) -> float | None:
    cost = known_cost(cost)
    if cost is None or price <= 0:
        return None
    return (price - cost) / price * 100


def _fmt_pct(value: float) -> str:
    return f"{value:g}"


def split_rules(specs: list[RuleSpec]) -> tuple[list[RuleSpec], list[RuleSpec]]:
    """Separate proposers (priority ascending) from margin guards."""
    proposers = sorted((s for s in specs if not s.is_guard), key=lambda s: s.priority)
    guards = sorted((s for s in specs if s.is_guard), key=lambda s: s.priority)
    return proposers, guards


# ─── Rule Evaluator ─────────────────────────────────────────────────────────


def _propose(snapshot: ProductSnapshot, rule: RuleSpec, current_month: int) -> tuple[float, str] | None:
    price = snapshot.price_ht
    p = rule.params

    if rule.rule_type == "seasonality":
        if current_month in p.months:
            return price * (1 + p.adjustment_percent / 100), f"Seasonality {p.adjustment_percent:+g}%"
        return None

    if rule.rule_type == "low_stock":
        stock = snapshot.stock_quantity
        if stock is not None and 0 <= stock <= p.threshold:
            return (
                price * (1 + p.adjustment_percent / 100),
                f"Low stock ({stock} units) {p.adjustment_percent:+g}%",
            )
        return None

    if rule.rule_type == "low_rotation":
        days = snapshot.days_since_last_sale
        if days >= p.days_without_sale:
            return (
                price * (1 - p.discount_percent / 100),
                f"Low rotation ({days} days without sale) -{_fmt_pct(p.discount_percent)}%",
            )
        return None

    return None


def evaluate_rules(
    snapshot: ProductSnapshot,
    rules: list[RuleSpec],
    current_month: int,
) -> RuleMatch | None:
    """
    Walk proposer rules by ascending priority; the first one that changes
    the price wins. The candidate is already rounded to the minor unit.

    A rule whose rounded candidate equals the current price does not count
    as triggered, so a 0% rule falls through to the next one. The same goes
    for a candidate that rounds to zero or below.
    """
    current = round_money(snapshot.price_ht)
    for rule in sorted(rules, key=lambda r: r.priority):
        if rule.is_guard:
            continue
        proposal = _propose(snapshot, rule, current_month)
        if proposal is None:
            continue
        raw_price, reason = proposal
        candidate = round_money(raw_price)
        if candidate <= 0 or candidate == current:
            continue
        return RuleMatch(candidate_price=candidate, rule=rule, reason=reason)
    return None


# ─── Margin Guard ───────────────────────────────────────────────────────────


def _meets_margin(price: float, cost: float, min_margin: float) -> bool:
    margin = margin_percent(price, cost)
    return margin is not None and round_pct(margin) >= min_margin


def apply_margin_guards(
    candidate: float,
    cost: float | None,
    guards: list[RuleSpec],
) -> GuardOutcome:
    """
    Raise a candidate so every guard's minimum margin holds.

    The floor price cost / (1 − min%) is rounded up to the cent, so the
    committed price never sits a fraction of a cent under the floor.
    Margins are compared as they are stored, rounded to 2 decimals; a
    floor with more decimals than that may need one more cent.
    """
    cost = known_cost(cost)
    if cost is None:
        return GuardOutcome(price=candidate, blocked=False)

    price = candidate
    blocked = False
    notes: list[str] = []
    for guard in guards:
        min_margin = guard.params.min_margin_percent
        if _meets_margin(price, cost, min_margin):
            continue
        floor_price = round_money(cost / (1 - min_margin / 100), up=True)
        while not _meets_margin(floor_price, cost, min_margin):
            floor_price = round_money(floor_price + 0.01)
        if floor_price > price:
            price = floor_price
            blocked = True
            notes.append(f" [margin guard: min {_fmt_pct(min_margin)}%]")
    return GuardOutcome(price=price, blocked=blocked, notes=tuple(notes))


# ─── Composition ────────────────────────────────────────────────────────────


def price_product(
    snapshot: ProductSnapshot,
    rules: list[RuleSpec],
    guards: list[RuleSpec],
    current_month: int,
) -> PriceProposal | None:
    """Rule Evaluator then Margin Guard for one product; None means no change."""
    if snapshot.price_ht is None or snapshot.price_ht <= 0:
        return None

    match = evaluate_rules(snapshot, rules, current_month)
    if match is None:
        return None

    guarded = apply_margin_guards(match.candidate_price, snapshot.cost, guards)
    new_price = guarded.price
    old_price = snapshot.price_ht
    if new_price == round_money(old_price):
        return None

    old_margin = margin_percent(old_price, snapshot.cost)
    new_margin = margin_percent(new_price, snapshot.cost)
    return PriceProposal(
        product_id=snapshot.product_id,
        rule_id=match.rule.rule_id,
        rule_type=match.rule.rule_type,
        old_price_ht=old_price,
        new_price_ht=new_price,
        price_change_percent=change_percent(old_price, new_price),
        old_margin_percent=round_pct(old_margin) if old_margin is not None else None,
        new_margin_percent=round_pct(new_margin) if new_margin is not None else None,
        reason=match.reason + "".join(guarded.notes),
        blocked_by_guard=guarded.blocked,
    )

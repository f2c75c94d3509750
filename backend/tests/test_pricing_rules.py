"""
Tests for the pure pricing core: rule params, evaluation order, margin
guard, and rounding. No database involved.
"""

import uuid

import pytest
from pydantic import ValidationError

from pricing.rules import (
    ProductSnapshot,
    RuleSpec,
    apply_margin_guards,
    change_percent,
    evaluate_rules,
    margin_percent,
    parse_rule_params,
    price_including_tax,
    price_product,
    round_money,
    split_rules,
    validate_rule_params,
)


def _rule(rule_type: str, priority: int = 100, **params) -> RuleSpec:
    return RuleSpec(
        rule_id=uuid.uuid4(),
        name=f"{rule_type}-{priority}",
        rule_type=rule_type,
        priority=priority,
        params=parse_rule_params(rule_type, params),
    )


def _snapshot(price=10.0, cost=None, stock=None, days=0, category="Cahiers") -> ProductSnapshot:
    return ProductSnapshot(
        product_id=uuid.uuid4(),
        category=category,
        price_ht=price,
        cost=cost,
        stock_quantity=stock,
        days_since_last_sale=days,
    )


class TestRuleParams:
    def test_defaults_are_filled(self):
        assert validate_rule_params("seasonality", {}) == {"months": [8, 9], "adjustment_percent": 10.0}
        assert validate_rule_params("low_stock", None) == {"threshold": 5, "adjustment_percent": 10.0}
        assert validate_rule_params("low_rotation", {}) == {"days_without_sale": 60, "discount_percent": 15.0}
        assert validate_rule_params("margin_guard", {}) == {"min_margin_percent": 15.0}

    def test_months_are_sorted_and_deduplicated(self):
        params = validate_rule_params("seasonality", {"months": [12, 1, 12]})
        assert params["months"] == [1, 12]

    def test_month_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            parse_rule_params("seasonality", {"months": [13]})

    def test_discount_over_100_rejected(self):
        with pytest.raises(ValidationError):
            parse_rule_params("low_rotation", {"discount_percent": 150})

    def test_margin_of_100_rejected(self):
        with pytest.raises(ValidationError):
            parse_rule_params("margin_guard", {"min_margin_percent": 100})

    @pytest.mark.parametrize("rule_type", ["seasonality", "low_stock"])
    @pytest.mark.parametrize("adjustment", [-100, -150])
    def test_adjustment_cannot_wipe_out_price(self, rule_type, adjustment):
        with pytest.raises(ValidationError):
            parse_rule_params(rule_type, {"adjustment_percent": adjustment})

    def test_deep_markdown_allowed(self):
        assert parse_rule_params("low_stock", {"adjustment_percent": -99.5}).adjustment_percent == -99.5

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValidationError):
            parse_rule_params("low_stock", {"threshold": -1})

    def test_unknown_rule_type_rejected(self):
        with pytest.raises(ValueError, match="Unknown rule_type"):
            parse_rule_params("clearance", {})


class TestArithmetic:
    def test_round_money_half_up(self):
        assert round_money(10.625) == 10.63
        assert round_money(2.675) == 2.68
        assert round_money(2.2000000000000002) == 2.2

    def test_round_money_ceiling(self):
        assert round_money(10.621, up=True) == 10.63
        assert round_money(10.0, up=True) == 10.0

    def test_price_including_tax(self):
        assert price_including_tax(10.63, 0.20) == 12.76
        assert price_including_tax(2.2, 0.20) == 2.64

    def test_change_percent(self):
        assert change_percent(10.0, 10.63) == 6.3
        assert change_percent(10.63, 10.0) == -5.93
        assert change_percent(0, 5.0) is None

    def test_margin_percent_needs_positive_cost(self):
        assert margin_percent(10.0, 8.5) == pytest.approx(15.0)
        assert margin_percent(10.0, None) is None
        assert margin_percent(10.0, 0.0) is None


class TestRuleEvaluator:
    def test_seasonality_in_season(self):
        match = evaluate_rules(_snapshot(price=10.0), [_rule("seasonality")], current_month=8)
        assert match.candidate_price == 11.0
        assert match.reason == "Seasonality +10%"

    def test_seasonality_out_of_season(self):
        assert evaluate_rules(_snapshot(), [_rule("seasonality")], current_month=3) is None

    def test_low_stock_triggers_at_threshold_and_zero(self):
        rules = [_rule("low_stock", threshold=5, adjustment_percent=10)]
        match = evaluate_rules(_snapshot(price=2.0, stock=3), rules, current_month=3)
        assert match.candidate_price == 2.2
        assert match.reason == "Low stock (3 units) +10%"
        assert evaluate_rules(_snapshot(stock=5), rules, current_month=3) is not None
        assert evaluate_rules(_snapshot(stock=0), rules, current_month=3) is not None
        assert evaluate_rules(_snapshot(stock=6), rules, current_month=3) is None

    def test_unknown_stock_never_triggers_low_stock(self):
        assert evaluate_rules(_snapshot(stock=None), [_rule("low_stock")], current_month=3) is None

    def test_low_rotation_discount(self):
        rules = [_rule("low_rotation", days_without_sale=60, discount_percent=15)]
        match = evaluate_rules(_snapshot(price=10.0, days=90), rules, current_month=3)
        assert match.candidate_price == 8.5
        assert match.reason == "Low rotation (90 days without sale) -15%"
        assert evaluate_rules(_snapshot(days=59), rules, current_month=3) is None

    def test_first_matching_rule_by_priority_wins(self):
        seasonal = _rule("seasonality", priority=20, months=[3])
        low_stock = _rule("low_stock", priority=10, adjustment_percent=5)
        match = evaluate_rules(_snapshot(price=10.0, stock=1), [seasonal, low_stock], current_month=3)
        assert match.rule is low_stock
        assert match.candidate_price == 10.5

    def test_zero_adjustment_falls_through(self):
        flat = _rule("seasonality", priority=1, months=[3], adjustment_percent=0)
        low_stock = _rule("low_stock", priority=2)
        match = evaluate_rules(_snapshot(price=10.0, stock=1), [flat, low_stock], current_month=3)
        assert match.rule is low_stock

    def test_non_positive_candidate_falls_through(self):
        clearance = _rule("low_rotation", priority=1, days_without_sale=0, discount_percent=100)
        low_stock = _rule("low_stock", priority=2)
        match = evaluate_rules(_snapshot(price=10.0, stock=1, days=90), [clearance, low_stock], current_month=3)
        assert match.rule is low_stock
        assert match.candidate_price == 11.0

    def test_candidate_rounding_to_zero_is_no_proposal(self):
        markdown = _rule("low_stock", adjustment_percent=-90)
        assert evaluate_rules(_snapshot(price=0.04, stock=1), [markdown], current_month=3) is None
        assert price_product(_snapshot(price=0.04, stock=1), [markdown], [], current_month=3) is None

    def test_guards_are_not_proposers(self):
        assert evaluate_rules(_snapshot(cost=9.9), [_rule("margin_guard")], current_month=3) is None

    def test_split_rules(self):
        guard = _rule("margin_guard", priority=1)
        late = _rule("low_stock", priority=50)
        early = _rule("seasonality", priority=5)
        proposers, guards = split_rules([guard, late, early])
        assert proposers == [early, late]
        assert guards == [guard]


class TestMarginGuard:
    def test_raises_candidate_to_floor(self):
        outcome = apply_margin_guards(8.5, cost=8.5, guards=[_rule("margin_guard", min_margin_percent=20)])
        assert outcome.price == 10.63
        assert outcome.blocked is True
        assert outcome.notes == (" [margin guard: min 20%]",)

    def test_never_lowers_a_price(self):
        outcome = apply_margin_guards(12.0, cost=1.0, guards=[_rule("margin_guard", min_margin_percent=20)])
        assert outcome.price == 12.0
        assert outcome.blocked is False

    def test_unknown_cost_disables_guard(self):
        guards = [_rule("margin_guard", min_margin_percent=50)]
        assert apply_margin_guards(1.0, cost=None, guards=guards).blocked is False
        assert apply_margin_guards(1.0, cost=0.0, guards=guards).blocked is False

    def test_strictest_guard_wins(self):
        guards = [
            _rule("margin_guard", priority=1, min_margin_percent=15),
            _rule("margin_guard", priority=2, min_margin_percent=25),
        ]
        outcome = apply_margin_guards(8.5, cost=8.5, guards=guards)
        assert outcome.price == 11.34
        assert margin_percent(outcome.price, 8.5) >= 25
        assert len(outcome.notes) == 2

    def test_fractional_floor_checked_on_stored_margin(self):
        # 100.00 over 79.9955 is a 20.0045% margin, stored as 20.00
        guard = _rule("margin_guard", min_margin_percent=20.004)
        outcome = apply_margin_guards(100.0, cost=79.9955, guards=[guard])
        assert outcome.price == 100.01
        assert outcome.blocked is True

        seasonal = _rule("seasonality", months=[3], adjustment_percent=25)
        proposal = price_product(_snapshot(price=80.0, cost=79.9955), [seasonal], [guard], current_month=3)
        assert proposal.new_price_ht == 100.01
        assert proposal.new_margin_percent == 20.01
        assert proposal.blocked_by_guard is True


class TestMarginFloorHolds:
    """Whatever the rule proposes, the stored margin never sits under a guard."""

    @pytest.mark.parametrize("price", [0.5, 2.0, 9.99, 10.0, 47.35, 199.0])
    @pytest.mark.parametrize("cost", [0.3, 1.0, 8.5, 45.0, 150.0])
    @pytest.mark.parametrize("discount", [5, 15, 50, 90])
    @pytest.mark.parametrize("min_margin", [0, 12.5, 20, 33.333, 60])
    def test_new_margin_respects_every_guard(self, price, cost, discount, min_margin):
        rotation = _rule("low_rotation", priority=10, days_without_sale=30, discount_percent=discount)
        guards = [
            _rule("margin_guard", priority=1, min_margin_percent=min_margin),
            _rule("margin_guard", priority=2, min_margin_percent=10),
        ]
        snapshot = _snapshot(price=price, cost=cost, days=45)

        proposal = price_product(snapshot, [rotation], guards, current_month=3)
        if proposal is None:
            return

        assert proposal.new_price_ht > 0
        assert proposal.new_margin_percent >= max(min_margin, 10)
        candidate = evaluate_rules(snapshot, [rotation], current_month=3).candidate_price
        if proposal.blocked_by_guard:
            assert proposal.new_price_ht > candidate
            assert proposal.reason.endswith("%]")
        else:
            assert proposal.new_price_ht == candidate


class TestPriceProduct:
    def test_rotation_discount_clamped_by_guard(self):
        rotation = _rule("low_rotation", priority=10, days_without_sale=60, discount_percent=15)
        guard = _rule("margin_guard", min_margin_percent=20)
        snapshot = _snapshot(price=10.0, cost=8.5, days=90)

        proposal = price_product(snapshot, [rotation], [guard], current_month=3)

        assert proposal.new_price_ht == 10.63
        assert proposal.blocked_by_guard is True
        assert proposal.price_change_percent == 6.3
        assert proposal.old_margin_percent == 15.0
        assert proposal.new_margin_percent == 20.04
        assert proposal.rule_id == rotation.rule_id
        assert proposal.rule_type == "low_rotation"
        assert proposal.reason == "Low rotation (90 days without sale) -15% [margin guard: min 20%]"

    def test_guard_restoring_current_price_is_no_change(self):
        rotation = _rule("low_rotation", days_without_sale=60, discount_percent=15)
        guard = _rule("margin_guard", min_margin_percent=10)
        snapshot = _snapshot(price=10.0, cost=9.0, days=90)
        assert price_product(snapshot, [rotation], [guard], current_month=3) is None

    def test_margins_are_null_without_cost(self):
        proposal = price_product(_snapshot(price=2.0, stock=3), [_rule("low_stock")], [], current_month=3)
        assert proposal.new_price_ht == 2.2
        assert proposal.old_margin_percent is None
        assert proposal.new_margin_percent is None
        assert proposal.blocked_by_guard is False

    def test_unpriced_product_is_skipped(self):
        rules = [_rule("seasonality", months=[3])]
        assert price_product(_snapshot(price=0.0), rules, [], current_month=3) is None
        assert price_product(_snapshot(price=None), rules, [], current_month=3) is None

    def test_snapshot_is_not_mutated(self):
        snapshot = _snapshot(price=10.0, stock=1)
        price_product(snapshot, [_rule("low_stock")], [], current_month=3)
        assert snapshot.price_ht == 10.0

"""Tests for the decision engine and Executive Action Brief.

Covers:
    - REORDER_NOW / HOLD_LINE / DISCOUNT_SLOW rules and their order
    - Dollar impact formulas, unknown impact never fabricated
    - Sorting by urgency then dollar impact
    - Brief: top-3 cap, headline, margin data, suppressed items
"""

from datetime import UTC, datetime

import pytest

from velocity_verdict.decisions import (
    Decision,
    DecisionEngine,
    DecisionType,
    Timeframe,
    sort_decisions,
)
from velocity_verdict.fact_tables import (
    FactTables,
    InventoryFact,
    SalesFact,
    SuppressedItem,
)
from velocity_verdict.models import DataIssue

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _make_inventory_fact(
    sku: str = "SKU-1",
    quantity: int = 20,
    velocity: float = 1.0,
    coverage: int | None = None,
    days_since_last_sale: int | None = 1,
    unit_margin: float | None = None,
    is_slow_mover: bool | None = None,
) -> InventoryFact:
    if coverage is None and velocity > 0:
        coverage = -(-quantity // velocity) if quantity else 0
    if is_slow_mover is None:
        is_slow_mover = velocity < 0.1 or (
            days_since_last_sale is not None and days_since_last_sale >= 14
        )
    return InventoryFact(
        sku=sku,
        product_name=f"Product {sku}",
        variant_name=None,
        display_name=f"Product {sku}",
        available_quantity=quantity,
        unit_cost=None,
        retail=None,
        unit_margin=unit_margin,
        velocity=velocity,
        days_of_coverage=int(coverage) if coverage is not None else None,
        days_since_last_sale=days_since_last_sale,
        is_slow_mover=is_slow_mover,
    )


def _make_sales_fact(
    sku: str = "SKU-1",
    units_sold: int = 30,
    revenue: float | None = 300.0,
    unit_cost: float | None = None,
) -> SalesFact:
    unit_margin = None
    margin_percent = None
    if unit_cost and revenue:
        avg = revenue / units_sold
        unit_margin = avg - unit_cost
        margin_percent = unit_margin / avg * 100
    return SalesFact(
        sku=sku,
        product_name=f"Product {sku}",
        variant_name=None,
        display_name=f"Product {sku}",
        units_sold=units_sold,
        revenue=revenue,
        unit_cost=unit_cost,
        unit_margin=unit_margin,
        margin_percent=margin_percent,
    )


def _tables(inventory=(), sales=(), suppressed=()) -> FactTables:
    return FactTables(
        sales_facts={f.sku: f for f in sales},
        inventory_facts={f.sku: f for f in inventory},
        suppressed=tuple(suppressed),
    )


def _make_decision(sku: str, urgency: int, impact: float | None) -> Decision:
    return Decision(
        type=DecisionType.REORDER_NOW,
        sku=sku,
        name=sku,
        reason="",
        action="",
        dollar_impact=impact,
        impact_label="",
        timeframe=Timeframe.THIS_WEEK,
        urgency=urgency,
        has_financial_data=impact is not None,
    )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class TestReorder:
    def setup_method(self):
        self.engine = DecisionEngine()

    def test_critical_reorder(self):
        tables = _tables(
            [_make_inventory_fact(quantity=4, velocity=1.0)],
            [_make_sales_fact(units_sold=30, revenue=300.0)],
        )
        [decision] = self.engine.generate_decisions(tables)
        assert decision.type == DecisionType.REORDER_NOW
        assert decision.urgency == 3
        assert decision.timeframe == Timeframe.TODAY
        # $10 avg price x 1/day x 7
        assert decision.dollar_impact == pytest.approx(70.0)
        assert decision.metrics["days_of_coverage"] == 4

    def test_this_week_reorder(self):
        tables = _tables(
            [_make_inventory_fact(quantity=8, velocity=1.0)],
            [_make_sales_fact()],
        )
        [decision] = self.engine.generate_decisions(tables)
        assert decision.urgency == 2
        assert decision.timeframe == Timeframe.THIS_WEEK

    def test_requires_sales_fact(self):
        tables = _tables([_make_inventory_fact(quantity=4, velocity=1.0)])
        assert all(d.type != DecisionType.REORDER_NOW for d in self.engine.generate_decisions(tables))

    def test_slow_velocity_not_reordered(self):
        tables = _tables(
            [_make_inventory_fact(quantity=2, velocity=0.4)],
            [_make_sales_fact(units_sold=12)],
        )
        assert self.engine.generate_decisions(tables) == []

    def test_unknown_revenue_is_explicit(self):
        tables = _tables(
            [_make_inventory_fact(quantity=4, velocity=1.0)],
            [_make_sales_fact(revenue=None)],
        )
        [decision] = self.engine.generate_decisions(tables)
        assert decision.dollar_impact is None
        assert decision.has_financial_data is False
        assert "unknown" in decision.impact_label


class TestHoldLine:
    def setup_method(self):
        self.engine = DecisionEngine()

    def test_high_margin_seller(self):
        tables = _tables(
            [_make_inventory_fact(quantity=100, velocity=1.0)],
            [_make_sales_fact(units_sold=30, revenue=600.0, unit_cost=8.0)],  # 60%
        )
        [decision] = self.engine.generate_decisions(tables)
        assert decision.type == DecisionType.HOLD_LINE
        assert decision.urgency == 0
        assert decision.timeframe == Timeframe.ONGOING
        # $12 unit margin x 1/day x 7
        assert decision.dollar_impact == pytest.approx(84.0)
        assert "NOT discount" in decision.action

    def test_reorder_wins_over_hold_line(self):
        tables = _tables(
            [_make_inventory_fact(quantity=4, velocity=1.0)],
            [_make_sales_fact(units_sold=30, revenue=600.0, unit_cost=8.0)],
        )
        decisions = self.engine.generate_decisions(tables)
        assert [d.type for d in decisions] == [DecisionType.REORDER_NOW]

    def test_low_margin_no_decision(self):
        tables = _tables(
            [_make_inventory_fact(quantity=100, velocity=1.0)],
            [_make_sales_fact(units_sold=30, revenue=300.0, unit_cost=8.0)],  # 20%
        )
        assert self.engine.generate_decisions(tables) == []


class TestDiscountSlow:
    def setup_method(self):
        self.engine = DecisionEngine()

    def test_slow_mover_with_margin(self):
        """Margin 65% on $20 retail, velocity 0.1, 20 units, no sales fact."""
        fact = _make_inventory_fact(
            quantity=20, velocity=0.1, days_since_last_sale=20, unit_margin=13.0
        )
        [decision] = self.engine.generate_decisions(_tables([fact]))
        assert decision.type == DecisionType.DISCOUNT_SLOW
        assert decision.urgency == 1
        assert decision.dollar_impact == pytest.approx(13.0 * 20)
        assert decision.has_financial_data is True

    def test_unknown_margin_is_zero_and_labelled(self):
        fact = _make_inventory_fact(quantity=12, velocity=0.0, days_since_last_sale=None)
        [decision] = self.engine.generate_decisions(_tables([fact]))
        assert decision.dollar_impact == 0
        assert decision.has_financial_data is False
        assert "margin unknown" in decision.impact_label

    def test_too_little_stock(self):
        fact = _make_inventory_fact(quantity=4, velocity=0.0)
        assert self.engine.generate_decisions(_tables([fact])) == []


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


class TestOrdering:
    def test_tie_on_urgency_sorted_by_impact(self):
        tables = _tables(
            [
                _make_inventory_fact("CHEAP", quantity=8, velocity=1.0),
                _make_inventory_fact("PRICEY", quantity=8, velocity=1.0),
            ],
            [
                _make_sales_fact("CHEAP", revenue=150.0),
                _make_sales_fact("PRICEY", revenue=900.0),
            ],
        )
        decisions = DecisionEngine().generate_decisions(tables)
        assert [d.urgency for d in decisions] == [2, 2]
        assert [d.sku for d in decisions] == ["PRICEY", "CHEAP"]

    def test_sorted_invariant(self):
        decisions = sort_decisions(
            [
                _make_decision("A", 1, 500.0),
                _make_decision("B", 3, 10.0),
                _make_decision("C", 2, None),
                _make_decision("D", 2, 40.0),
                _make_decision("E", 0, 900.0),
            ]
        )
        assert [d.sku for d in decisions] == ["B", "D", "C", "A", "E"]
        for a, b in zip(decisions, decisions[1:]):
            assert a.urgency >= b.urgency
            if a.urgency == b.urgency and b.dollar_impact is not None:
                assert a.dollar_impact is not None
                assert a.dollar_impact >= b.dollar_impact


# ---------------------------------------------------------------------------
# Executive Action Brief
# ---------------------------------------------------------------------------


class TestExecutiveActionBrief:
    def setup_method(self):
        self.engine = DecisionEngine()

    def test_empty_brief(self):
        brief = self.engine.executive_action_brief(_tables(), generated_at=NOW)
        assert brief.actions == ()
        assert brief.headline == "No high-confidence actions this period."
        assert brief.margin_data.average_margin is None
        assert brief.margin_data.reason

    def test_capped_at_three_actions(self):
        inventory = [
            _make_inventory_fact(f"S{i}", quantity=20, velocity=0.0, unit_margin=2.0 + i)
            for i in range(5)
        ]
        brief = self.engine.executive_action_brief(_tables(inventory), generated_at=NOW)
        assert len(brief.actions) == 3
        assert [a.sku for a in brief.actions] == ["S4", "S3", "S2"]
        assert brief.summary["DISCOUNT_SLOW"] == 5
        assert brief.summary["total"] == 5
        assert brief.ignore_count == 2
        # (6 + 5 + 4) x 20
        assert brief.headline == "3 actions identified. $300 at stake."

    def test_actions_are_leading_decisions(self):
        inventory = [
            _make_inventory_fact("SLOW", quantity=20, velocity=0.0, unit_margin=4.0),
            _make_inventory_fact("STEADY", quantity=100, velocity=1.0),
        ]
        tables = _tables(inventory)
        decisions = self.engine.generate_decisions(tables)
        assert all(d.type != DecisionType.DEPRIORITIZE for d in decisions)

        brief = self.engine.executive_action_brief(tables, generated_at=NOW)
        assert brief.actions == tuple(decisions)
        assert brief.summary["DEPRIORITIZE"] == 1
        assert brief.summary["total"] == 2

    def test_single_action_headline(self):
        fact = _make_inventory_fact(quantity=20, velocity=0.0, unit_margin=13.0)
        brief = self.engine.executive_action_brief(_tables([fact]), generated_at=NOW)
        assert brief.headline == "Product SKU-1: $260 margin tied up in 20 units"

    def test_headline_flags_unknown_impact(self):
        inventory = [
            _make_inventory_fact("A", quantity=20, velocity=0.0, unit_margin=5.0),
            _make_inventory_fact("B", quantity=20, velocity=0.0),
        ]
        brief = self.engine.executive_action_brief(_tables(inventory), generated_at=NOW)
        assert brief.headline == "2 actions identified. $100 at stake. 1 with unknown dollar impact."

    def test_margin_and_diagnostics(self):
        tables = _tables(
            [_make_inventory_fact(quantity=100, velocity=1.0)],
            [_make_sales_fact(units_sold=30, revenue=600.0, unit_cost=8.0)],
            [SuppressedItem("BAD", "Missing product name", DataIssue.MISSING_REQUIRED_FIELD)],
        )
        brief = self.engine.executive_action_brief(tables, generated_at=NOW)
        assert brief.margin_data.average_margin == pytest.approx(60.0)
        assert brief.fact_layer_stats == {"sales_facts": 1, "inventory_facts": 1, "excluded": 1}
        assert brief.suppressed_items[0].sku == "BAD"

        data = brief.to_dict()
        assert data["generated_at"] == NOW.isoformat()
        assert "generated_at" not in brief.to_dict(include_generated_at=False)
        assert data["actions"][0]["type"] == "HOLD_LINE"

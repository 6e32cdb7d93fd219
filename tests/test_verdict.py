"""Tests for the cross-signal verdict ranker and forecasts."""

import logging
from datetime import UTC, datetime

import pytest

from velocity_verdict.models import Confidence, InventoryItem, PeriodMetrics, Pricing, Snapshot
from velocity_verdict.velocity import (
    EnrichedItem,
    VelocityMetric,
    compute_days_until_depletion,
)
from velocity_verdict.verdict import STABLE_VERDICT, VerdictRanker, VerdictType

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _make_item(
    sku: str = "SKU-1",
    quantity: int = 20,
    daily: float | None = 1.0,
    pricing: Pricing | None = None,
    revenue: float | None = None,
    name: str | None = None,
    confidence: Confidence = Confidence.MEDIUM,
) -> EnrichedItem:
    units = None if daily is None else round(daily * 30)
    metric = VelocityMetric(
        sku=sku,
        daily_velocity=daily,
        weekly_velocity=None if daily is None else daily * 7,
        total_units_sold=units,
        observation_days=30,
        days_with_sales=min(units or 0, 30),
        confidence=confidence,
        message="test window",
        total_revenue=revenue,
        priced_units=units if revenue is not None else 0,
    )
    return EnrichedItem(
        item=InventoryItem(
            sku=sku, quantity=quantity, product_name=name or f"Item {sku}", pricing=pricing or Pricing()
        ),
        velocity=metric,
        depletion=compute_days_until_depletion(quantity, daily, confidence),
    )


def _previous(
    revenue: float | None = None,
    margin: float | None = None,
    velocities: dict[str, float] | None = None,
) -> Snapshot:
    return Snapshot(
        store_id="main-street",
        as_of=NOW,
        metrics=PeriodMetrics(total_revenue=revenue, average_margin=margin),
        velocities=velocities or {},
    )


class TestSignalFamilies:
    def setup_method(self):
        self.ranker = VerdictRanker()

    def test_stockout_from_retail(self):
        item = _make_item(quantity=5, daily=1.0, pricing=Pricing(retail=10.0))
        verdict = self.ranker.rank([item])
        assert verdict.verdict_type == VerdictType.STOCKOUT_IMMINENT
        assert verdict.verdict == "REORDER NOW: Item SKU-1"
        assert verdict.consequence_amount == pytest.approx(70.0)
        assert "$70" in verdict.consequence
        assert verdict.focus_item == "Item SKU-1"

    def test_stockout_from_average_paid_price(self):
        item = _make_item(quantity=5, daily=1.0, revenue=240.0)  # 30 units, $8 each
        verdict = self.ranker.rank([item])
        assert verdict.consequence_amount == pytest.approx(56.0)

    def test_stockout_without_price_is_unknown(self):
        verdict = self.ranker.rank([_make_item(quantity=5, daily=1.0)])
        assert verdict.verdict_type == VerdictType.STOCKOUT_IMMINENT
        assert verdict.consequence_amount is None
        assert "unknown" in verdict.consequence

    def test_stockout_skipped_for_invalid_quantity(self):
        verdict = self.ranker.rank([_make_item(quantity=-3, daily=1.0)])
        assert verdict.verdict_type == VerdictType.STABLE

    def test_slow_seller_is_not_stockout(self):
        verdict = self.ranker.rank([_make_item(quantity=2, daily=0.4)])
        assert verdict.verdict_type != VerdictType.STOCKOUT_IMMINENT

    def test_under_promoted(self):
        item = _make_item(quantity=20, daily=0.2, pricing=Pricing(retail=20.0, margin=60.0))
        verdict = self.ranker.rank([item])
        assert verdict.verdict_type == VerdictType.UNDER_PROMOTED
        assert verdict.consequence_amount == pytest.approx(240.0)
        assert verdict.verdict == "PROMOTE: Item SKU-1"

    def test_under_promoted_limited_to_two_by_profit(self):
        items = [
            _make_item("A", quantity=10, daily=0.1, pricing=Pricing(retail=10.0, margin=60.0)),
            _make_item("B", quantity=30, daily=0.1, pricing=Pricing(retail=10.0, margin=60.0)),
            _make_item("C", quantity=20, daily=0.1, pricing=Pricing(retail=10.0, margin=60.0)),
        ]
        signals = self.ranker.collect_signals(items, PeriodMetrics())
        promoted = [s for s in signals if s.type == VerdictType.UNDER_PROMOTED]
        assert [s.item for s in promoted] == ["Item B", "Item C"]

    def test_revenue_decline(self):
        verdict = self.ranker.rank([], PeriodMetrics(total_revenue=800.0), _previous(revenue=1000.0))
        assert verdict.verdict_type == VerdictType.REVENUE_DECLINE
        assert verdict.consequence_amount == pytest.approx(200.0)
        assert "20%" in verdict.reason

    def test_small_revenue_dip_ignored(self):
        verdict = self.ranker.rank([], PeriodMetrics(total_revenue=900.0), _previous(revenue=1000.0))
        assert verdict.verdict_type == VerdictType.STABLE

    def test_unknown_revenue_never_fires(self):
        verdict = self.ranker.rank([], PeriodMetrics(), _previous(revenue=1000.0))
        assert verdict.verdict_type == VerdictType.STABLE

    def test_dead_stock(self):
        items = [
            _make_item("A", quantity=20, daily=0.0, pricing=Pricing(cost=30.0)),
            _make_item("B", quantity=10, daily=0.1, pricing=Pricing(cost=40.0)),
        ]
        verdict = self.ranker.rank(items)
        assert verdict.verdict_type == VerdictType.DEAD_STOCK
        assert verdict.consequence_amount == pytest.approx(1000.0)
        assert verdict.focus_item == "Item A"

    def test_dead_stock_below_capital_floor(self):
        items = [_make_item(quantity=20, daily=0.0, pricing=Pricing(cost=10.0))]
        assert self.ranker.rank(items).verdict_type == VerdictType.STABLE

    def test_dead_stock_ignores_unknown_cost(self):
        items = [_make_item(quantity=500, daily=0.0)]
        assert self.ranker.rank(items).verdict_type == VerdictType.STABLE

    def test_margin_compression_in_dollars(self):
        verdict = self.ranker.rank(
            [],
            PeriodMetrics(total_revenue=1000.0, average_margin=40.0),
            _previous(revenue=1000.0, margin=50.0),
        )
        assert verdict.verdict_type == VerdictType.MARGIN_COMPRESSION
        assert verdict.consequence_amount == pytest.approx(100.0)

    def test_margin_compression_without_revenue(self):
        verdict = self.ranker.rank(
            [], PeriodMetrics(average_margin=40.0), _previous(margin=50.0)
        )
        assert verdict.verdict_type == VerdictType.MARGIN_COMPRESSION
        assert verdict.consequence_amount is None
        assert "unknown" in verdict.consequence


class TestRanking:
    def setup_method(self):
        self.ranker = VerdictRanker()

    def test_stable_when_nothing_fires(self, caplog):
        with caplog.at_level(logging.INFO, logger="verdict.verdict"):
            verdict = self.ranker.rank([_make_item(quantity=100, daily=1.0)])
        assert verdict.verdict == STABLE_VERDICT
        assert verdict.verdict_type == VerdictType.STABLE
        assert verdict.runner_up is None
        assert verdict.all_signals == ()
        assert verdict.signal_count == 0
        assert "stable" in caplog.text

    def test_priority_beats_consequence(self):
        items = [
            _make_item("FAST", quantity=3, daily=1.0, pricing=Pricing(retail=5.0)),
            _make_item("DEAD", quantity=100, daily=0.0, pricing=Pricing(cost=50.0)),
        ]
        verdict = self.ranker.rank(items)
        assert verdict.verdict_type == VerdictType.STOCKOUT_IMMINENT
        assert verdict.runner_up.type == VerdictType.DEAD_STOCK
        assert verdict.to_dict()["runner_up"] == {
            "action": verdict.runner_up.action,
            "reason": verdict.runner_up.reason,
        }

    def test_same_priority_sorted_by_consequence(self):
        items = [_make_item(quantity=20, daily=0.2, pricing=Pricing(retail=20.0, margin=60.0))]
        verdict = self.ranker.rank(
            items, PeriodMetrics(total_revenue=800.0), _previous(revenue=1000.0)
        )
        assert verdict.verdict_type == VerdictType.UNDER_PROMOTED  # $240 > $200
        assert verdict.runner_up.type == VerdictType.REVENUE_DECLINE

    def test_unknown_consequence_ranks_last_in_priority(self):
        items = [
            _make_item("NOPRICE", quantity=2, daily=1.0),
            _make_item("PRICED", quantity=6, daily=1.0, pricing=Pricing(retail=1.0)),
        ]
        signals = self.ranker.collect_signals(items, PeriodMetrics())
        assert [s.item for s in signals] == ["Item PRICED", "Item NOPRICE"]

    def test_all_signals_capped_at_five(self):
        items = [
            _make_item(f"S{i}", quantity=3, daily=1.0, pricing=Pricing(retail=float(i + 1)))
            for i in range(7)
        ]
        verdict = self.ranker.rank(items)
        assert verdict.signal_count == 7
        assert len(verdict.all_signals) == 5
        assert verdict.focus_item == "Item S6"


class TestForecasts:
    def setup_method(self):
        self.ranker = VerdictRanker()

    def test_no_forecasts_without_data(self):
        assert self.ranker.forecast_consequences([_make_item(quantity=100, daily=1.0)]) == []

    def test_stockout_forecast(self):
        items = [
            _make_item("A", quantity=10, daily=1.0),
            _make_item("B", quantity=5, daily=1.0),
            _make_item("C", quantity=100, daily=1.0),
        ]
        [forecast] = self.ranker.forecast_consequences(items)
        assert forecast.type == "stockout_forecast"
        assert forecast.prediction == "Item B will be out of stock in 5 days"
        assert forecast.impact.startswith("1 other items")

    def test_revenue_growth_forecast(self):
        [forecast] = self.ranker.forecast_consequences(
            [], PeriodMetrics(total_revenue=1200.0), _previous(revenue=1000.0)
        )
        assert forecast.type == "revenue_forecast"
        assert "$1,400" in forecast.prediction
        assert forecast.impact == "That's 40% above last period."

    def test_revenue_decline_forecast(self):
        [forecast] = self.ranker.forecast_consequences(
            [], PeriodMetrics(total_revenue=800.0), _previous(revenue=1000.0)
        )
        assert "trending down" in forecast.prediction
        assert forecast.impact == "That's 40% below last period."

    def test_thin_margin_forecast(self):
        [forecast] = self.ranker.forecast_consequences([], PeriodMetrics(average_margin=30.0))
        assert forecast.type == "margin_forecast"

    def test_momentum_forecast(self):
        items = [_make_item("A", quantity=100, daily=1.0), _make_item("B", quantity=100, daily=1.0)]
        forecasts = self.ranker.forecast_consequences(
            items, PeriodMetrics(), _previous(velocities={"A": 0.5, "B": 0.9})
        )
        [forecast] = forecasts
        assert forecast.type == "momentum_forecast"
        assert forecast.prediction == "Item A is accelerating (+100% velocity)"

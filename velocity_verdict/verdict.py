"""Cross-signal verdict: "if you do ONE thing this period".

Five independent signal families compete for the verdict:

    priority 1  STOCKOUT_IMMINENT   <= 7 days left, velocity >= 0.5/day
    priority 2  UNDER_PROMOTED      margin >= 50%, velocity < 0.5, qty >= 10
    priority 2  REVENUE_DECLINE     revenue down >= 15% vs prior snapshot
    priority 3  DEAD_STOCK          >= $500 of capital in slow inventory
    priority 3  MARGIN_COMPRESSION  average margin down > 5 points

Signals are ranked by priority, then by dollar consequence (largest
first, unknown last). The top one is the verdict and the second the
runner-up. With no signal the verdict is a stable-state message; no
action is invented.

A consequence is only a number when its inputs are known. Otherwise it
is ``None`` and the consequence text says the impact is unknown.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from .config import DEFAULT_THRESHOLDS, Thresholds
from .models import Confidence, PeriodMetrics, Snapshot
from .velocity import EnrichedItem

logger = logging.getLogger("verdict.verdict")

STABLE_VERDICT = "Business looks stable. Optimize incrementally."


class VerdictType(str, Enum):
    STOCKOUT_IMMINENT = "STOCKOUT_IMMINENT"
    UNDER_PROMOTED = "UNDER_PROMOTED"
    REVENUE_DECLINE = "REVENUE_DECLINE"
    DEAD_STOCK = "DEAD_STOCK"
    MARGIN_COMPRESSION = "MARGIN_COMPRESSION"
    STABLE = "STABLE"


@dataclass(frozen=True)
class VerdictSignal:
    priority: int
    consequence: float | None
    type: VerdictType
    action: str
    reason: str
    consequence_text: str
    item: str | None = None

    def to_dict(self) -> dict:
        return {
            "priority": self.priority,
            "consequence": round(self.consequence, 2) if self.consequence is not None else None,
            "type": self.type.value,
            "action": self.action,
            "reason": self.reason,
            "consequence_text": self.consequence_text,
            "item": self.item,
        }


@dataclass(frozen=True)
class Verdict:
    verdict: str
    verdict_type: VerdictType
    reason: str
    consequence: str
    consequence_amount: float | None
    focus_item: str | None
    runner_up: VerdictSignal | None
    all_signals: tuple[VerdictSignal, ...]
    signal_count: int

    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict,
            "verdict_type": self.verdict_type.value,
            "reason": self.reason,
            "consequence": self.consequence,
            "consequence_amount": (
                round(self.consequence_amount, 2)
                if self.consequence_amount is not None
                else None
            ),
            "focus_item": self.focus_item,
            "runner_up": (
                {"action": self.runner_up.action, "reason": self.runner_up.reason}
                if self.runner_up
                else None
            ),
            "all_signals": [s.to_dict() for s in self.all_signals],
            "signal_count": self.signal_count,
        }


@dataclass(frozen=True)
class Forecast:
    """A short-horizon "if this continues" projection."""

    type: str
    horizon: str
    prediction: str
    impact: str
    action: str

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "horizon": self.horizon,
            "prediction": self.prediction,
            "impact": self.impact,
            "action": self.action,
        }


def _money(amount: float) -> str:
    return f"${amount:,.0f}"


def _unit_price(item: EnrichedItem) -> float | None:
    """Retail price, else the average price actually paid in the window."""
    if item.pricing.retail is not None and item.pricing.retail > 0:
        return item.pricing.retail
    metric = item.velocity
    if metric.total_revenue is not None and metric.priced_units > 0:
        return metric.total_revenue / metric.priced_units
    return None


def _rank_key(signal: VerdictSignal) -> tuple:
    return (
        signal.priority,
        signal.consequence is None,
        -(signal.consequence or 0.0),
        signal.type.value,
        signal.item or "",
    )


class VerdictRanker:
    """Rank cross-cutting business signals into a single verdict.

    Usage:
        ranker = VerdictRanker()
        verdict = ranker.rank(enriched, metrics, previous=last_snapshot)
        forecasts = ranker.forecast_consequences(enriched, metrics, previous=last_snapshot)
    """

    def __init__(self, thresholds: Thresholds | None = None):
        self.thresholds = thresholds or DEFAULT_THRESHOLDS

    # -----------------------------------------------------------------
    # Signal families
    # -----------------------------------------------------------------

    def collect_signals(
        self,
        items: Sequence[EnrichedItem],
        metrics: PeriodMetrics,
        previous: Snapshot | None = None,
    ) -> list[VerdictSignal]:
        signals: list[VerdictSignal] = []
        signals.extend(self._stockout_signals(items))
        signals.extend(self._under_promoted_signals(items))
        signals.extend(self._revenue_decline_signals(metrics, previous))
        signals.extend(self._dead_stock_signals(items))
        signals.extend(self._margin_compression_signals(metrics, previous))
        signals.sort(key=_rank_key)
        return signals

    def _stockout_signals(self, items: Sequence[EnrichedItem]) -> list[VerdictSignal]:
        t = self.thresholds.verdict
        signals = []
        for item in items:
            days = item.depletion.days_until_depletion
            velocity = item.velocity.daily_velocity
            if days is None or velocity is None or item.depletion.confidence is Confidence.ERROR:
                continue
            if days > t.stockout_days or velocity < t.stockout_min_velocity:
                continue

            price = _unit_price(item)
            weekly_loss = price * velocity * 7 if price is not None else None
            if weekly_loss is not None:
                text = (
                    f"If you don't act: You'll lose ~{_money(weekly_loss)} "
                    f"in the next week from missed sales."
                )
            else:
                text = (
                    "If you don't act: You'll miss sales. "
                    "Revenue impact unknown (pricing data unavailable)."
                )
            signals.append(
                VerdictSignal(
                    priority=1,
                    consequence=weekly_loss,
                    type=VerdictType.STOCKOUT_IMMINENT,
                    action=f"REORDER NOW: {item.display_name}",
                    reason=(
                        f"Will stock out in {days} days at current velocity "
                        f"({velocity:.1f}/day)"
                    ),
                    consequence_text=text,
                    item=item.display_name,
                )
            )
        return signals

    def _under_promoted_signals(self, items: Sequence[EnrichedItem]) -> list[VerdictSignal]:
        t = self.thresholds.verdict
        candidates = []
        for item in items:
            margin = item.pricing.margin_percent
            velocity = item.velocity.daily_velocity
            if margin is None or velocity is None:
                continue
            if (
                margin >= t.under_promoted_margin
                and velocity < t.under_promoted_max_velocity
                and item.quantity_on_hand >= t.under_promoted_min_quantity
            ):
                retail = item.pricing.retail
                profit = (
                    item.quantity_on_hand * retail * margin / 100
                    if retail is not None
                    else None
                )
                candidates.append((item, margin, profit))

        candidates.sort(key=lambda c: (c[2] is None, -(c[2] or 0.0), c[0].sku))
        signals = []
        for item, margin, profit in candidates[: t.under_promoted_limit]:
            if profit is not None:
                text = (
                    f"If you don't act: {_money(profit)} potential profit sits on "
                    f"the shelf while cash-flow tightens."
                )
            else:
                text = (
                    "If you don't act: Profit sits on the shelf. "
                    "Dollar amount unknown (retail price unavailable)."
                )
            signals.append(
                VerdictSignal(
                    priority=2,
                    consequence=profit,
                    type=VerdictType.UNDER_PROMOTED,
                    action=f"PROMOTE: {item.display_name}",
                    reason=f"{margin:.0f}% margin but barely moving. You're sitting on profit.",
                    consequence_text=text,
                    item=item.display_name,
                )
            )
        return signals

    def _revenue_decline_signals(
        self, metrics: PeriodMetrics, previous: Snapshot | None
    ) -> list[VerdictSignal]:
        if previous is None:
            return []
        current = metrics.total_revenue
        prior = previous.metrics.total_revenue
        if current is None or prior is None or prior <= 0:
            return []
        if current >= prior * self.thresholds.verdict.revenue_decline_ratio:
            return []

        decline = (prior - current) / prior * 100
        return [
            VerdictSignal(
                priority=2,
                consequence=prior - current,
                type=VerdictType.REVENUE_DECLINE,
                action="INVESTIGATE: Revenue down significantly",
                reason=(
                    f"Revenue dropped {decline:.0f}% vs last period "
                    f"({_money(current)} vs {_money(prior)})"
                ),
                consequence_text=(
                    f"If this continues: You're on track to lose "
                    f"{_money(prior - current)} every period vs last."
                ),
            )
        ]

    def _dead_stock_signals(self, items: Sequence[EnrichedItem]) -> list[VerdictSignal]:
        t = self.thresholds.verdict
        slow = []
        for item in items:
            velocity = item.velocity.daily_velocity
            if velocity is None or item.pricing.cost is None:
                continue
            if item.quantity_on_hand >= t.dead_stock_min_quantity and velocity < t.dead_stock_max_velocity:
                slow.append((item, item.quantity_on_hand * item.pricing.cost))

        slow.sort(key=lambda s: (-s[1], s[0].sku))
        slow = slow[: t.dead_stock_limit]
        capital = sum(c for _, c in slow)
        if capital < t.dead_stock_min_capital:
            return []

        return [
            VerdictSignal(
                priority=3,
                consequence=capital,
                type=VerdictType.DEAD_STOCK,
                action="CLEAR OUT: Slow inventory blocking cash flow",
                reason=(
                    f"{len(slow)} items with {_money(capital)} tied up, moving at "
                    f"<{t.dead_stock_max_velocity:g} units/day"
                ),
                consequence_text=(
                    "If you don't act: That capital stays frozen while you pay "
                    "carrying costs. Discount 20% and free up cash."
                ),
                item=slow[0][0].display_name,
            )
        ]

    def _margin_compression_signals(
        self, metrics: PeriodMetrics, previous: Snapshot | None
    ) -> list[VerdictSignal]:
        if previous is None:
            return []
        current = metrics.average_margin
        prior = previous.metrics.average_margin
        if current is None or prior is None or prior <= 0:
            return []
        if current >= prior - self.thresholds.verdict.margin_compression_points:
            return []

        revenue = metrics.total_revenue
        lost = (prior - current) / 100 * revenue if revenue is not None else None
        if lost is not None:
            text = (
                f"If this continues: At this period's revenue that is "
                f"{_money(lost)} less profit. Every $100 in sales now makes you "
                f"${current:.0f} instead of ${prior:.0f}."
            )
        else:
            text = (
                f"If this continues: Every $100 in sales now makes you "
                f"${current:.0f} instead of ${prior:.0f}. Dollar impact unknown "
                f"(revenue unavailable)."
            )
        return [
            VerdictSignal(
                priority=3,
                consequence=lost,
                type=VerdictType.MARGIN_COMPRESSION,
                action="REVIEW PRICING: Margins are shrinking",
                reason=f"Average margin dropped from {prior:.1f}% to {current:.1f}%",
                consequence_text=text,
            )
        ]

    # -----------------------------------------------------------------
    # Verdict
    # -----------------------------------------------------------------

    def rank(
        self,
        items: Sequence[EnrichedItem],
        metrics: PeriodMetrics | None = None,
        previous: Snapshot | None = None,
    ) -> Verdict:
        signals = self.collect_signals(items, metrics or PeriodMetrics(), previous)
        top = signals[0] if signals else None
        runner_up = signals[1] if len(signals) > 1 else None

        if top is None:
            logger.info("No verdict signals fired; business stable")
            return Verdict(
                verdict=STABLE_VERDICT,
                verdict_type=VerdictType.STABLE,
                reason="No critical signals detected.",
                consequence="Continue monitoring velocity and margins.",
                consequence_amount=None,
                focus_item=None,
                runner_up=None,
                all_signals=(),
                signal_count=0,
            )

        logger.info("Verdict %s from %d signals", top.type.value, len(signals))
        return Verdict(
            verdict=top.action,
            verdict_type=top.type,
            reason=top.reason,
            consequence=top.consequence_text,
            consequence_amount=top.consequence,
            focus_item=top.item,
            runner_up=runner_up,
            all_signals=tuple(signals[:5]),
            signal_count=len(signals),
        )

    # -----------------------------------------------------------------
    # Forecasts
    # -----------------------------------------------------------------

    def forecast_consequences(
        self,
        items: Sequence[EnrichedItem],
        metrics: PeriodMetrics | None = None,
        previous: Snapshot | None = None,
    ) -> list[Forecast]:
        """Short-horizon projections: stockout, revenue, margin, momentum."""
        t = self.thresholds.verdict
        metrics = metrics or PeriodMetrics()
        forecasts: list[Forecast] = []

        at_risk = [
            i
            for i in items
            if i.depletion.days_until_depletion is not None
            and i.depletion.days_until_depletion <= t.forecast_stockout_days
            and (i.velocity.daily_velocity or 0) > 0
            and i.depletion.confidence is not Confidence.ERROR
        ]
        if at_risk:
            at_risk.sort(key=lambda i: (i.depletion.days_until_depletion, i.sku))
            soonest = at_risk[0]
            forecasts.append(
                Forecast(
                    type="stockout_forecast",
                    horizon="2 weeks",
                    prediction=(
                        f"{soonest.display_name} will be out of stock in "
                        f"{soonest.depletion.days_until_depletion} days"
                    ),
                    impact=(
                        f"{len(at_risk) - 1} other items also at risk of stockout within 2 weeks."
                        if len(at_risk) > 1
                        else "No other immediate stockout risks."
                    ),
                    action="Place orders now for lead time coverage.",
                )
            )

        current = metrics.total_revenue
        prior = previous.metrics.total_revenue if previous else None
        if current is not None and prior is not None and prior > 0:
            change = current - prior
            if abs(change) >= prior * t.forecast_revenue_change_ratio:
                projected = max(0.0, current + change)
                percent = (projected / prior - 1) * 100
                if change > 0:
                    forecasts.append(
                        Forecast(
                            type="revenue_forecast",
                            horizon="next period",
                            prediction=(
                                f"At current trajectory, next period revenue will be "
                                f"~{_money(projected)}"
                            ),
                            impact=f"That's {percent:.0f}% above last period.",
                            action="Keep momentum. Ensure top sellers stay stocked.",
                        )
                    )
                else:
                    forecasts.append(
                        Forecast(
                            type="revenue_forecast",
                            horizon="next period",
                            prediction=(
                                f"Revenue trending down. Projected next period: "
                                f"~{_money(projected)}"
                            ),
                            impact=f"That's {abs(percent):.0f}% below last period.",
                            action="Diagnose the drop. Check traffic, pricing, and product mix.",
                        )
                    )

        margin = metrics.average_margin
        if margin is not None and 0 < margin < t.forecast_thin_margin:
            forecasts.append(
                Forecast(
                    type="margin_forecast",
                    horizon="ongoing",
                    prediction=f"Operating at {margin:.1f}% margin leaves little room for error",
                    impact="A 10% discount on any item could push you into loss territory.",
                    action="Review supplier costs or raise prices on low-margin SKUs.",
                )
            )

        if previous is not None and previous.velocities:
            momentum = []
            for item in items:
                now_velocity = item.velocity.daily_velocity
                before = previous.velocities.get(item.sku)
                if now_velocity is None or not before or before <= 0:
                    continue
                ratio = now_velocity / before
                if ratio > t.forecast_momentum_ratio:
                    momentum.append((ratio, item))
            if momentum:
                momentum.sort(key=lambda m: (-m[0], m[1].sku))
                ratio, top = momentum[0]
                forecasts.append(
                    Forecast(
                        type="momentum_forecast",
                        horizon="2 weeks",
                        prediction=(
                            f"{top.display_name} is accelerating "
                            f"(+{(ratio - 1) * 100:.0f}% velocity)"
                        ),
                        impact="This could become a top performer if sustained.",
                        action="Ensure stock depth and consider featuring prominently.",
                    )
                )

        return forecasts

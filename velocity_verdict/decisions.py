"""Typed decisions from the split fact layer.

Rules, first match per SKU wins:

    REORDER_NOW    sales fact, velocity >= 0.5/day, coverage <= 10 days
                   (critical at <= 5). Impact: avg price * velocity * 7
    HOLD_LINE      sales fact with margin >= 50%.
                   Impact: unit margin * velocity * 7
    DISCOUNT_SLOW  slow mover with >= 5 units available.
                   Impact: unit margin * available quantity, 0 if unknown

Decisions are ordered by urgency (highest first), then dollar impact
(largest first, unknown last). The Executive Action Brief keeps the top
three and summarizes the dollar exposure in a headline.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .config import DEFAULT_THRESHOLDS, Thresholds
from .fact_tables import FactTables, MarginResult, SuppressedItem, compute_weighted_margin

logger = logging.getLogger("verdict.decisions")


class DecisionType(str, Enum):
    """Decision kinds. ``DEPRIORITIZE`` is never emitted; it labels the
    brief's count of inventory facts no rule fired for."""

    REORDER_NOW = "REORDER_NOW"
    HOLD_LINE = "HOLD_LINE"
    DISCOUNT_SLOW = "DISCOUNT_SLOW"
    DEPRIORITIZE = "DEPRIORITIZE"


class Timeframe(str, Enum):
    TODAY = "TODAY"
    THIS_WEEK = "THIS_WEEK"
    ONGOING = "ONGOING"


@dataclass(frozen=True)
class Decision:
    type: DecisionType
    sku: str
    name: str
    reason: str
    action: str
    dollar_impact: float | None
    impact_label: str
    timeframe: Timeframe
    urgency: int
    has_financial_data: bool
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "sku": self.sku,
            "name": self.name,
            "reason": self.reason,
            "action": self.action,
            "dollar_impact": (
                round(self.dollar_impact, 2) if self.dollar_impact is not None else None
            ),
            "impact_label": self.impact_label,
            "timeframe": self.timeframe.value,
            "urgency": self.urgency,
            "has_financial_data": self.has_financial_data,
            "metrics": dict(self.metrics),
        }


@dataclass(frozen=True)
class ExecutiveActionBrief:
    headline: str
    actions: tuple[Decision, ...]
    summary: dict[str, int]
    ignore_count: int
    margin_data: MarginResult
    fact_layer_stats: dict[str, int]
    suppressed_items: tuple[SuppressedItem, ...]
    generated_at: datetime

    def to_dict(self, include_generated_at: bool = True) -> dict:
        data = {
            "headline": self.headline,
            "actions": [a.to_dict() for a in self.actions],
            "summary": dict(self.summary),
            "ignore_count": self.ignore_count,
            "margin_data": self.margin_data.to_dict(),
            "fact_layer_stats": dict(self.fact_layer_stats),
            "suppressed_items": [s.to_dict() for s in self.suppressed_items],
        }
        if include_generated_at:
            data["generated_at"] = self.generated_at.isoformat()
        return data


def _money(amount: float) -> str:
    return f"${amount:,.0f}"


def sort_decisions(decisions: list[Decision]) -> list[Decision]:
    """Urgency desc, then dollar impact desc with unknown impact last."""
    return sorted(
        decisions,
        key=lambda d: (
            -d.urgency,
            d.dollar_impact is None,
            -(d.dollar_impact or 0.0),
            d.sku,
        ),
    )


class DecisionEngine:
    """Turn fact tables into ranked decisions.

    Usage:
        engine = DecisionEngine()
        decisions = engine.generate_decisions(tables)
        brief = engine.executive_action_brief(tables)
    """

    def __init__(self, thresholds: Thresholds | None = None):
        self.thresholds = thresholds or DEFAULT_THRESHOLDS

    def generate_decisions(self, tables: FactTables) -> list[Decision]:
        decisions: dict[str, Decision] = {}

        for sku in sorted(tables.inventory_facts):
            decision = self._reorder(tables, sku)
            if decision:
                decisions[sku] = decision

        for sku in sorted(tables.sales_facts):
            if sku in decisions:
                continue
            decision = self._hold_line(tables, sku)
            if decision:
                decisions[sku] = decision

        for sku in sorted(tables.inventory_facts):
            if sku in decisions:
                continue
            decision = self._discount_slow(tables, sku)
            if decision:
                decisions[sku] = decision

        ranked = sort_decisions(list(decisions.values()))
        logger.info(
            "Generated %d decisions (%s)",
            len(ranked),
            ", ".join(f"{k}={v}" for k, v in sorted(Counter(d.type.value for d in ranked).items()))
            or "none",
        )
        return ranked

    # -----------------------------------------------------------------
    # Rules
    # -----------------------------------------------------------------

    def _reorder(self, tables: FactTables, sku: str) -> Decision | None:
        t = self.thresholds.decisions
        sales = tables.sales_facts.get(sku)
        inv = tables.inventory_facts[sku]
        if sales is None or inv.velocity < t.high_velocity:
            return None
        if inv.days_of_coverage is None or inv.days_of_coverage > t.low_stock_days:
            return None

        critical = inv.days_of_coverage <= t.critical_stock_days
        avg_price = sales.average_price
        weekly_revenue = avg_price * inv.velocity * 7 if avg_price is not None else None

        if weekly_revenue is not None:
            label = f"{_money(weekly_revenue)}/week at risk"
        else:
            label = "Revenue at risk unknown (no sale prices recorded)"

        return Decision(
            type=DecisionType.REORDER_NOW,
            sku=sku,
            name=inv.display_name,
            reason=(
                f"Selling {inv.velocity:.1f}/day, only {inv.days_of_coverage} days of stock"
            ),
            action="Reorder immediately" if critical else "Place reorder this week",
            dollar_impact=weekly_revenue,
            impact_label=label,
            timeframe=Timeframe.TODAY if critical else Timeframe.THIS_WEEK,
            urgency=3 if critical else 2,
            has_financial_data=weekly_revenue is not None,
            metrics={
                "quantity": inv.available_quantity,
                "velocity": round(inv.velocity, 2),
                "days_of_coverage": inv.days_of_coverage,
                "units_sold": sales.units_sold,
            },
        )

    def _hold_line(self, tables: FactTables, sku: str) -> Decision | None:
        t = self.thresholds.decisions
        sales = tables.sales_facts[sku]
        if sales.margin_percent is None or sales.unit_margin is None:
            return None
        if sales.margin_percent < t.high_margin_percent:
            return None

        inv = tables.inventory_facts.get(sku)
        weekly_profit = sales.unit_margin * inv.velocity * 7 if inv is not None else None

        if weekly_profit is not None:
            label = f"{_money(weekly_profit)}/week at full margin"
        else:
            label = "Weekly profit unknown (velocity unavailable)"

        return Decision(
            type=DecisionType.HOLD_LINE,
            sku=sku,
            name=sales.display_name,
            reason=f"{sales.margin_percent:.0f}% margin, sold {sales.units_sold} units",
            action="Do NOT discount - protect margin",
            dollar_impact=weekly_profit,
            impact_label=label,
            timeframe=Timeframe.ONGOING,
            urgency=0,
            has_financial_data=weekly_profit is not None,
            metrics={
                "margin_percent": round(sales.margin_percent, 2),
                "units_sold": sales.units_sold,
                "revenue": round(sales.revenue, 2) if sales.revenue is not None else None,
            },
        )

    def _discount_slow(self, tables: FactTables, sku: str) -> Decision | None:
        t = self.thresholds.decisions
        inv = tables.inventory_facts[sku]
        if not inv.is_slow_mover or inv.available_quantity < t.min_stock_for_discount:
            return None

        has_margin = inv.unit_margin is not None
        impact = inv.unit_margin * inv.available_quantity if has_margin else 0.0
        if has_margin:
            label = f"{_money(impact)} margin tied up in {inv.available_quantity} units"
        else:
            label = f"{inv.available_quantity} units (margin unknown)"

        if inv.days_since_last_sale is not None:
            reason = (
                f"No sale in {inv.days_since_last_sale} days, "
                f"{inv.available_quantity} units sitting"
            )
        else:
            reason = f"{inv.available_quantity} units, velocity {inv.velocity:.2f}/day"

        return Decision(
            type=DecisionType.DISCOUNT_SLOW,
            sku=sku,
            name=inv.display_name,
            reason=reason,
            action="Consider 15-20% discount to move inventory",
            dollar_impact=impact,
            impact_label=label,
            timeframe=Timeframe.THIS_WEEK,
            urgency=1,
            has_financial_data=has_margin,
            metrics={
                "quantity": inv.available_quantity,
                "velocity": round(inv.velocity, 2),
                "days_since_last_sale": inv.days_since_last_sale,
                "unit_margin": round(inv.unit_margin, 2) if has_margin else None,
            },
        )

    # -----------------------------------------------------------------
    # Executive Action Brief
    # -----------------------------------------------------------------

    def executive_action_brief(
        self,
        tables: FactTables,
        decisions: list[Decision] | None = None,
        margin: MarginResult | None = None,
        generated_at: datetime | None = None,
    ) -> ExecutiveActionBrief:
        """Top actions plus headline, margin data and fact-layer diagnostics."""
        if decisions is None:
            decisions = self.generate_decisions(tables)
        if margin is None:
            margin = compute_weighted_margin(
                tables.sales_facts, self.thresholds.facts.min_skus_for_margin
            )

        actions = tuple(decisions[: self.thresholds.decisions.max_actions])

        counts = Counter(d.type for d in decisions)
        decided = {d.sku for d in decisions}
        summary = {
            DecisionType.REORDER_NOW.value: counts[DecisionType.REORDER_NOW],
            DecisionType.HOLD_LINE.value: counts[DecisionType.HOLD_LINE],
            DecisionType.DISCOUNT_SLOW.value: counts[DecisionType.DISCOUNT_SLOW],
            DecisionType.DEPRIORITIZE.value: sum(
                1 for sku in tables.inventory_facts if sku not in decided
            ),
            "total": len(tables.inventory_facts),
        }

        return ExecutiveActionBrief(
            headline=_headline(actions),
            actions=actions,
            summary=summary,
            ignore_count=max(0, len(tables.inventory_facts) - len(actions)),
            margin_data=margin,
            fact_layer_stats=tables.stats(),
            suppressed_items=tables.suppressed,
            generated_at=generated_at or datetime.now(UTC),
        )


def _headline(actions: tuple[Decision, ...]) -> str:
    if not actions:
        return "No high-confidence actions this period."
    if len(actions) == 1:
        return f"{actions[0].name}: {actions[0].impact_label}"

    known = [a.dollar_impact for a in actions if a.has_financial_data and a.dollar_impact]
    unknown = sum(1 for a in actions if not a.has_financial_data)
    headline = f"{len(actions)} actions identified."
    if known:
        headline += f" {_money(sum(known))} at stake."
    if unknown:
        headline += f" {unknown} with unknown dollar impact."
    return headline

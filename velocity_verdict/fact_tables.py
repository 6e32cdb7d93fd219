"""Split fact layer: SALES_FACTS and INVENTORY_FACTS.

Two independently gated tables are built from the same enriched
inventory:

1. SALES_FACTS (historical) - SKUs that sold in the period
   - units_sold > 0, revenue, unit_cost, unit_margin, margin_percent
   - margin only when unit_cost > 0 and revenue > 0; otherwise None

2. INVENTORY_FACTS (forward-looking) - every sellable SKU
   - available_quantity >= 0, velocity (0 allowed), days_of_coverage
   - is_slow_mover = velocity < 0.1 or days_since_last_sale >= 14

Rows that cannot be identified (no SKU, no product name, placeholder
names) or that carry invalid quantities are dropped and reported as
``SuppressedItem`` instead of being filled with made-up values.

The store's average margin comes from SALES_FACTS only, weighted by
revenue, so SKUs that did not sell can never drag it to zero.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .config import DEFAULT_THRESHOLDS, FactThresholds, Thresholds
from .models import DataIssue, PeriodSales, as_utc
from .velocity import EnrichedItem

logger = logging.getLogger("verdict.facts")

_PLACEHOLDER_NAMES = ("missing", "unknown")


# ---------------------------------------------------------------------------
# Fact records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SalesFact:
    sku: str
    product_name: str
    variant_name: str | None
    display_name: str
    units_sold: int
    revenue: float | None
    unit_cost: float | None
    unit_margin: float | None
    margin_percent: float | None

    @property
    def average_price(self) -> float | None:
        if self.revenue is None or self.units_sold <= 0:
            return None
        return self.revenue / self.units_sold

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "display_name": self.display_name,
            "units_sold": self.units_sold,
            "revenue": _round(self.revenue),
            "unit_cost": _round(self.unit_cost),
            "unit_margin": _round(self.unit_margin),
            "margin_percent": _round(self.margin_percent),
        }


@dataclass(frozen=True)
class InventoryFact:
    sku: str
    product_name: str
    variant_name: str | None
    display_name: str
    available_quantity: int
    unit_cost: float | None
    retail: float | None
    unit_margin: float | None
    velocity: float
    days_of_coverage: int | None
    days_since_last_sale: int | None
    is_slow_mover: bool

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "display_name": self.display_name,
            "available_quantity": self.available_quantity,
            "unit_cost": _round(self.unit_cost),
            "retail": _round(self.retail),
            "unit_margin": _round(self.unit_margin),
            "velocity": round(self.velocity, 2),
            "days_of_coverage": self.days_of_coverage,
            "days_since_last_sale": self.days_since_last_sale,
            "is_slow_mover": self.is_slow_mover,
        }


@dataclass(frozen=True)
class SuppressedItem:
    """A row kept out of one or both fact tables, and why."""

    sku: str | None
    reason: str
    issue: DataIssue
    table: str = "both"

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "reason": self.reason,
            "issue": self.issue.value,
            "table": self.table,
        }


@dataclass(frozen=True)
class FactTables:
    sales_facts: dict[str, SalesFact] = field(default_factory=dict)
    inventory_facts: dict[str, InventoryFact] = field(default_factory=dict)
    suppressed: tuple[SuppressedItem, ...] = ()

    def stats(self) -> dict:
        return {
            "sales_facts": len(self.sales_facts),
            "inventory_facts": len(self.inventory_facts),
            "excluded": len(self.suppressed),
        }


@dataclass(frozen=True)
class MarginResult:
    """Revenue-weighted average margin. ``average_margin`` is ``None``
    with a ``reason`` whenever it cannot be computed."""

    average_margin: float | None
    total_revenue: float
    total_margin_dollars: float
    skus_with_margin: int
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "average_margin": _round(self.average_margin),
            "total_revenue": round(self.total_revenue, 2),
            "total_margin_dollars": round(self.total_margin_dollars, 2),
            "skus_with_margin": self.skus_with_margin,
            "reason": self.reason,
        }


def _round(value: float | None, digits: int = 2) -> float | None:
    return round(value, digits) if value is not None else None


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class FactTableBuilder:
    """Build SALES_FACTS and INVENTORY_FACTS from enriched inventory.

    Usage:
        builder = FactTableBuilder()
        tables = builder.build(enriched, period_sales={"SKU-1": PeriodSales(units_sold=4)})
        margin = compute_weighted_margin(tables.sales_facts)
    """

    def __init__(self, thresholds: Thresholds | None = None):
        self.thresholds = thresholds or DEFAULT_THRESHOLDS

    def build(
        self,
        enriched: Sequence[EnrichedItem],
        period_sales: Mapping[str, PeriodSales] | None = None,
        now: datetime | None = None,
    ) -> FactTables:
        """Build both tables.

        Args:
            enriched: Items with velocity and depletion attached.
            period_sales: Explicit per-SKU sales for the period. When a SKU
                is absent, units and revenue come from its velocity window.
            now: Reference time for days since last sale.
        """
        period_sales = period_sales or {}
        now = as_utc(now) if now is not None else datetime.now(UTC)

        sales_facts: dict[str, SalesFact] = {}
        inventory_facts: dict[str, InventoryFact] = {}
        suppressed: list[SuppressedItem] = []

        for item in enriched:
            identity_problem = _identity_problem(item)
            if identity_problem:
                suppressed.append(
                    SuppressedItem(item.sku, identity_problem, DataIssue.MISSING_REQUIRED_FIELD)
                )
                continue

            inv_fact, problem = self._inventory_fact(item, now)
            if inv_fact is not None:
                inventory_facts[item.sku] = inv_fact
            elif problem is not None:
                suppressed.append(problem)

            sales = period_sales.get(item.sku)
            if sales is None:
                sales = _sales_from_velocity(item)
            if sales is not None and sales.units_sold > 0:
                sales_facts[item.sku] = self._sales_fact(item, sales)

        for row in suppressed:
            logger.warning(
                "Suppressed %s from %s facts: %s", row.sku, row.table, row.reason
            )
        logger.info(
            "Built %d sales facts, %d inventory facts (%d suppressed)",
            len(sales_facts),
            len(inventory_facts),
            len(suppressed),
        )
        return FactTables(
            sales_facts=sales_facts,
            inventory_facts=inventory_facts,
            suppressed=tuple(suppressed),
        )

    def _sales_fact(self, item: EnrichedItem, sales: PeriodSales) -> SalesFact:
        revenue = sales.revenue
        unit_cost = item.pricing.cost
        unit_margin = None
        margin_percent = None
        if unit_cost is not None and unit_cost > 0 and revenue is not None and revenue > 0:
            avg_price = revenue / sales.units_sold
            unit_margin = avg_price - unit_cost
            margin_percent = unit_margin / avg_price * 100

        return SalesFact(
            sku=item.sku,
            product_name=item.item.resolved_name,
            variant_name=item.item.variant_name,
            display_name=item.display_name,
            units_sold=sales.units_sold,
            revenue=revenue,
            unit_cost=unit_cost,
            unit_margin=unit_margin,
            margin_percent=margin_percent,
        )

    def _inventory_fact(
        self, item: EnrichedItem, now: datetime
    ) -> tuple[InventoryFact | None, SuppressedItem | None]:
        t: FactThresholds = self.thresholds.facts
        qty = item.quantity_on_hand

        if qty < 0:
            return None, SuppressedItem(
                item.sku,
                f"Negative available quantity ({qty})",
                DataIssue.INVALID_QUANTITY,
                table="inventory",
            )

        metric = item.velocity
        if not metric.is_measured:
            return None, SuppressedItem(
                item.sku,
                f"Velocity unavailable: {metric.message}",
                metric.issue or DataIssue.MISSING_REQUIRED_FIELD,
                table="inventory",
            )

        velocity = metric.daily_velocity
        days_since_last_sale = None
        if metric.last_sold_at is not None:
            days_since_last_sale = max(0, (now - metric.last_sold_at).days)

        days_of_coverage = None
        if velocity > 0:
            days_of_coverage = item.depletion.days_until_depletion

        pricing = item.pricing
        unit_margin = None
        if pricing.retail is not None and pricing.cost is not None:
            unit_margin = pricing.retail - pricing.cost
        elif pricing.retail is not None and pricing.margin is not None:
            unit_margin = pricing.retail * pricing.margin / 100

        is_slow_mover = velocity < t.slow_mover_velocity or (
            days_since_last_sale is not None and days_since_last_sale >= t.slow_mover_days
        )

        return (
            InventoryFact(
                sku=item.sku,
                product_name=item.item.resolved_name,
                variant_name=item.item.variant_name,
                display_name=item.display_name,
                available_quantity=qty,
                unit_cost=pricing.cost,
                retail=pricing.retail,
                unit_margin=unit_margin,
                velocity=velocity,
                days_of_coverage=days_of_coverage,
                days_since_last_sale=days_since_last_sale,
                is_slow_mover=is_slow_mover,
            ),
            None,
        )


def _identity_problem(item: EnrichedItem) -> str | None:
    name = item.item.resolved_name
    if not name or not name.strip():
        return "Missing product name"
    combined = f"{name} {item.item.variant_name or ''}".lower()
    for placeholder in _PLACEHOLDER_NAMES:
        if placeholder in combined:
            return f"Placeholder name {item.display_name!r}"
    return None


def _sales_from_velocity(item: EnrichedItem) -> PeriodSales | None:
    """Period sales taken from the velocity window.

    Revenue is only reported when every sold unit carried a price.
    """
    metric = item.velocity
    if not metric.total_units_sold:
        return None
    revenue = metric.total_revenue if metric.priced_units == metric.total_units_sold else None
    return PeriodSales(units_sold=metric.total_units_sold, revenue=revenue)


# ---------------------------------------------------------------------------
# Weighted margin (SALES_FACTS only)
# ---------------------------------------------------------------------------


def compute_weighted_margin(
    sales_facts: Mapping[str, SalesFact] | Iterable[SalesFact],
    min_skus: int | None = None,
) -> MarginResult:
    """Revenue-weighted average margin percent.

        average_margin = sum(unit_margin * units_sold) / sum(revenue) * 100

    Only facts with a known margin, positive revenue and positive units
    count. With fewer than ``min_skus`` such facts the result is ``None``
    with a reason; it is never defaulted to 0.
    """
    if min_skus is None:
        min_skus = DEFAULT_THRESHOLDS.facts.min_skus_for_margin
    facts = sales_facts.values() if isinstance(sales_facts, Mapping) else sales_facts

    total_revenue = 0.0
    total_margin = 0.0
    counted = 0
    for fact in facts:
        if fact.unit_margin is None or fact.revenue is None or fact.revenue <= 0:
            continue
        if fact.units_sold <= 0:
            continue
        total_revenue += fact.revenue
        total_margin += fact.unit_margin * fact.units_sold
        counted += 1

    if counted == 0 or total_revenue <= 0:
        return MarginResult(
            average_margin=None,
            total_revenue=total_revenue,
            total_margin_dollars=total_margin,
            skus_with_margin=counted,
            reason="No sales with margin data in period",
        )
    if counted < min_skus:
        return MarginResult(
            average_margin=None,
            total_revenue=total_revenue,
            total_margin_dollars=total_margin,
            skus_with_margin=counted,
            reason=(
                f"Insufficient data ({counted} SKUs with valid margin, need {min_skus})"
            ),
        )

    return MarginResult(
        average_margin=total_margin / total_revenue * 100,
        total_revenue=total_revenue,
        total_margin_dollars=total_margin,
        skus_with_margin=counted,
    )

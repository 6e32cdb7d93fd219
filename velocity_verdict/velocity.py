"""Sales velocity and depletion forecasting.

Computes rate-of-sale per SKU from a bounded window of sales events and
extrapolates days until the on-hand quantity runs out.

Algorithm:
    daily_velocity      = units_sold_in_window / observation_days
    days_until_depletion = ceil(qty_on_hand / daily_velocity)

Confidence tiers for velocity (data density):
    high:   >= 20 days with sales and >= 10 units
    medium: >= 10 days with sales and >= 5 units
    low:    anything sparser

Zero sales is a measurement, not missing data: velocity 0 with high
confidence. Windows shorter than 7 days are not measured at all, and an
event store failure marks only the affected SKU as ``error``.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .config import DEFAULT_THRESHOLDS, Thresholds, VelocityThresholds
from .errors import EventStoreError, InvalidInputError
from .event_store import SalesEventStore
from .models import Confidence, DataIssue, InventoryItem, Pricing, SalesEvent, as_utc

logger = logging.getLogger("verdict.velocity")


# ---------------------------------------------------------------------------
# Result data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VelocityMetric:
    """Rate of sale for one SKU over an observation window."""

    sku: str
    daily_velocity: float | None
    weekly_velocity: float | None
    total_units_sold: int | None
    observation_days: int
    days_with_sales: int
    confidence: Confidence
    message: str
    issue: DataIssue | None = None
    last_sold_at: datetime | None = None
    total_revenue: float | None = None
    priced_units: int = 0

    @property
    def is_measured(self) -> bool:
        return self.daily_velocity is not None

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "daily_velocity": _round(self.daily_velocity),
            "weekly_velocity": _round(self.weekly_velocity),
            "total_units_sold": self.total_units_sold,
            "observation_days": self.observation_days,
            "days_with_sales": self.days_with_sales,
            "confidence": self.confidence.value,
            "message": self.message,
            "issue": self.issue.value if self.issue else None,
            "last_sold_at": self.last_sold_at.isoformat() if self.last_sold_at else None,
            "total_revenue": _round(self.total_revenue),
            "priced_units": self.priced_units,
        }


@dataclass(frozen=True)
class DepletionForecast:
    """Days until stock runs out. ``None`` means it cannot be forecast."""

    days_until_depletion: int | None
    confidence: Confidence
    message: str
    issue: DataIssue | None = None

    def to_dict(self) -> dict:
        return {
            "days_until_depletion": self.days_until_depletion,
            "confidence": self.confidence.value,
            "message": self.message,
            "issue": self.issue.value if self.issue else None,
        }


@dataclass(frozen=True)
class EnrichedItem:
    """An inventory item with its velocity and depletion forecast attached."""

    item: InventoryItem
    velocity: VelocityMetric
    depletion: DepletionForecast

    @property
    def sku(self) -> str:
        return self.velocity.sku

    @property
    def quantity_on_hand(self) -> int:
        return self.item.quantity

    @property
    def pricing(self) -> Pricing:
        return self.item.pricing

    @property
    def display_name(self) -> str:
        return self.item.display_name

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "name": self.display_name,
            "quantity_on_hand": self.quantity_on_hand,
            "velocity": self.velocity.to_dict(),
            "depletion": self.depletion.to_dict(),
        }


@dataclass(frozen=True)
class VelocityTrend:
    """Current vs. previous period velocity for one SKU."""

    sku: str
    current_velocity: float | None
    current_confidence: Confidence
    previous_velocity: float | None
    previous_units_sold: int | None
    delta: float | None
    percent_change: float | None
    trend: str

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "current_velocity": _round(self.current_velocity),
            "current_confidence": self.current_confidence.value,
            "previous_velocity": _round(self.previous_velocity),
            "previous_units_sold": self.previous_units_sold,
            "delta": _round(self.delta),
            "percent_change": _round(self.percent_change, 1),
            "trend": self.trend,
        }


def _round(value: float | None, digits: int = 2) -> float | None:
    return round(value, digits) if value is not None else None


# ---------------------------------------------------------------------------
# Pure computations
# ---------------------------------------------------------------------------


def velocity_from_events(
    sku: str,
    events: Sequence[SalesEvent],
    observation_days: int,
    thresholds: VelocityThresholds | None = None,
) -> VelocityMetric:
    """Compute a velocity metric from the events of one window.

    ``events`` may contain other SKUs; only ``sku`` is counted.
    """
    t = thresholds or DEFAULT_THRESHOLDS.velocity
    sku_events = [e for e in events if e.sku == sku]
    total_units = sum(e.quantity for e in sku_events)

    if total_units == 0:
        return VelocityMetric(
            sku=sku,
            daily_velocity=0.0,
            weekly_velocity=0.0,
            total_units_sold=0,
            observation_days=observation_days,
            days_with_sales=0,
            confidence=Confidence.HIGH,
            message=f"No sales observed in {observation_days} days",
            issue=DataIssue.NO_SALES_OBSERVED,
        )

    daily = total_units / observation_days
    days_with_sales = len({e.sold_at.astimezone(UTC).date() for e in sku_events})

    if days_with_sales >= t.high_confidence_days and total_units >= t.high_confidence_units:
        confidence = Confidence.HIGH
    elif days_with_sales >= t.medium_confidence_days and total_units >= t.medium_confidence_units:
        confidence = Confidence.MEDIUM
    else:
        confidence = Confidence.LOW

    priced = [e for e in sku_events if e.sold_price is not None]
    revenue = sum(e.sold_price * e.quantity for e in priced) if priced else None

    return VelocityMetric(
        sku=sku,
        daily_velocity=daily,
        weekly_velocity=daily * 7,
        total_units_sold=total_units,
        observation_days=observation_days,
        days_with_sales=days_with_sales,
        confidence=confidence,
        message=(
            f"{total_units} units sold over {observation_days} days "
            f"({days_with_sales} days with sales)"
        ),
        last_sold_at=max(e.sold_at for e in sku_events),
        total_revenue=revenue,
        priced_units=sum(e.quantity for e in priced),
    )


def compute_days_until_depletion(
    quantity_on_hand: int,
    daily_velocity: float | None,
    velocity_confidence: Confidence = Confidence.MEDIUM,
    thresholds: VelocityThresholds | None = None,
) -> DepletionForecast:
    """Forecast days until ``quantity_on_hand`` reaches zero.

    On-hand state is checked first: an empty shelf is 0 days whatever the
    velocity, and a negative count is a data defect reported as 0 days
    with ``error`` confidence. Only then does a missing or zero velocity
    make the forecast ``None``.

    Near-term horizons (< 3 days) gain one confidence tier; far-future
    horizons (> 90 days) lose one.
    """
    t = thresholds or DEFAULT_THRESHOLDS.velocity

    if quantity_on_hand < 0:
        return DepletionForecast(
            days_until_depletion=0,
            confidence=Confidence.ERROR,
            message=f"Invalid quantity on hand ({quantity_on_hand}); treated as out of stock",
            issue=DataIssue.INVALID_QUANTITY,
        )

    if quantity_on_hand == 0:
        return DepletionForecast(
            days_until_depletion=0,
            confidence=Confidence.HIGH,
            message="Item already out of stock",
        )

    if daily_velocity is None or daily_velocity <= 0:
        confidence = (
            velocity_confidence
            if velocity_confidence in (Confidence.ERROR, Confidence.INSUFFICIENT_DATA)
            else Confidence.INSUFFICIENT_DATA
        )
        return DepletionForecast(
            days_until_depletion=None,
            confidence=confidence,
            message="No sales velocity - cannot forecast depletion",
        )

    raw_days = quantity_on_hand / daily_velocity
    days = math.ceil(raw_days)

    confidence = velocity_confidence
    if raw_days < t.near_term_days:
        confidence = confidence.upgraded()
    elif raw_days > t.far_future_days:
        confidence = confidence.downgraded()

    return DepletionForecast(
        days_until_depletion=days,
        confidence=confidence,
        message=f"Estimated {days} days until depletion at current rate",
    )


# ---------------------------------------------------------------------------
# Velocity model (event store access)
# ---------------------------------------------------------------------------


class VelocityModel:
    """Compute per-SKU velocity from a sales event store.

    Usage:
        model = VelocityModel(JsonlEventStore("data/sales"))
        metric = await model.compute_velocity("main-street", "SKU-1")
        enriched = await model.compute_inventory_velocities("main-street", items)
    """

    def __init__(
        self,
        event_store: SalesEventStore,
        thresholds: Thresholds | None = None,
        max_concurrency: int = 16,
    ):
        if max_concurrency < 1:
            raise InvalidInputError("max_concurrency must be >= 1")
        self.event_store = event_store
        self.thresholds = thresholds or DEFAULT_THRESHOLDS
        self.max_concurrency = max_concurrency

    async def compute_velocity(
        self,
        store_id: str,
        sku: str,
        observation_days: int | None = None,
        now: datetime | None = None,
    ) -> VelocityMetric:
        """Velocity for one SKU over ``[now - observation_days, now]``."""
        t = self.thresholds.velocity
        days = observation_days if observation_days is not None else t.default_observation_days

        if days < t.min_observation_days:
            return VelocityMetric(
                sku=sku,
                daily_velocity=None,
                weekly_velocity=None,
                total_units_sold=None,
                observation_days=days,
                days_with_sales=0,
                confidence=Confidence.INSUFFICIENT_DATA,
                message=(
                    f"Observation window too short ({days} days, "
                    f"minimum {t.min_observation_days} required)"
                ),
                issue=DataIssue.INSUFFICIENT_OBSERVATION_WINDOW,
            )

        end = as_utc(now) if now is not None else datetime.now(UTC)
        start = end - timedelta(days=days)

        try:
            events = await self.event_store.query_sales_events(store_id, start, end)
        except EventStoreError as exc:
            logger.warning(
                "Event store query failed for store=%s sku=%s: %s", store_id, sku, exc
            )
            return VelocityMetric(
                sku=sku,
                daily_velocity=None,
                weekly_velocity=None,
                total_units_sold=None,
                observation_days=days,
                days_with_sales=0,
                confidence=Confidence.ERROR,
                message=f"Sales events unavailable: {exc}",
                issue=DataIssue.EVENT_STORE_ERROR,
            )

        return velocity_from_events(sku, events, days, t)

    async def compute_inventory_velocities(
        self,
        store_id: str,
        inventory: Sequence[InventoryItem],
        observation_days: int | None = None,
        now: datetime | None = None,
    ) -> list[EnrichedItem]:
        """Velocity and depletion for every item in a snapshot.

        Items without a SKU are skipped with a warning. Queries run
        concurrently, bounded by ``max_concurrency``; output keeps the
        input order.
        """
        if not isinstance(inventory, (list, tuple)):
            raise InvalidInputError(
                f"inventory must be a list, got {type(inventory).__name__}"
            )

        end = as_utc(now) if now is not None else datetime.now(UTC)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _one(item: InventoryItem) -> EnrichedItem:
            async with semaphore:
                metric = await self.compute_velocity(
                    store_id, item.sku, observation_days, now=end
                )
            depletion = compute_days_until_depletion(
                item.quantity,
                metric.daily_velocity,
                metric.confidence,
                self.thresholds.velocity,
            )
            return EnrichedItem(item=item, velocity=metric, depletion=depletion)

        valid: list[InventoryItem] = []
        for item in inventory:
            if not item.sku:
                logger.warning(
                    "Skipping inventory item without SKU (name=%r)", item.resolved_name
                )
                continue
            valid.append(item)

        return list(await asyncio.gather(*(_one(item) for item in valid)))

    async def get_velocity_trend(
        self,
        store_id: str,
        sku: str,
        current_days: int | None = None,
        previous_days: int | None = None,
        now: datetime | None = None,
    ) -> VelocityTrend:
        """Compare the current window with the window immediately before it."""
        t = self.thresholds.velocity
        current_days = current_days or t.default_observation_days
        previous_days = previous_days or t.default_observation_days
        end = as_utc(now) if now is not None else datetime.now(UTC)

        current = await self.compute_velocity(store_id, sku, current_days, now=end)

        boundary = end - timedelta(days=current_days)
        previous_velocity: float | None = None
        previous_units: int | None = None
        try:
            events = await self.event_store.query_sales_events(
                store_id, boundary - timedelta(days=previous_days), boundary
            )
        except EventStoreError as exc:
            logger.warning(
                "Previous-period query failed for store=%s sku=%s: %s", store_id, sku, exc
            )
        else:
            previous_units = sum(
                e.quantity for e in events if e.sku == sku and e.sold_at < boundary
            )
            previous_velocity = previous_units / previous_days

        delta = None
        percent = None
        trend = "unknown"
        if current.daily_velocity is not None and previous_velocity is not None:
            delta = current.daily_velocity - previous_velocity
            if previous_velocity > 0:
                percent = delta / previous_velocity * 100
                if percent > t.trend_change_percent:
                    trend = "accelerating"
                elif percent < -t.trend_change_percent:
                    trend = "decelerating"
                else:
                    trend = "stable"

        return VelocityTrend(
            sku=sku,
            current_velocity=current.daily_velocity,
            current_confidence=current.confidence,
            previous_velocity=previous_velocity,
            previous_units_sold=previous_units,
            delta=delta,
            percent_change=percent,
            trend=trend,
        )


# ---------------------------------------------------------------------------
# Selections over enriched items
# ---------------------------------------------------------------------------


def get_top_movers(items: Sequence[EnrichedItem], limit: int = 10) -> list[EnrichedItem]:
    """Fastest-selling items, highest velocity first."""
    movers = [i for i in items if (i.velocity.daily_velocity or 0) > 0]
    movers.sort(key=lambda i: (-i.velocity.daily_velocity, i.sku))
    return movers[:limit]


def get_slow_movers(
    items: Sequence[EnrichedItem], max_velocity: float = 0.5
) -> list[EnrichedItem]:
    """Measured items with stock selling at or below ``max_velocity``."""
    slow = [
        i
        for i in items
        if i.velocity.daily_velocity is not None
        and i.velocity.daily_velocity <= max_velocity
        and i.quantity_on_hand > 0
    ]
    slow.sort(key=lambda i: (-i.quantity_on_hand, i.sku))
    return slow


def get_depletion_risks(
    items: Sequence[EnrichedItem],
    max_days: int = 14,
    min_confidence: Confidence = Confidence.LOW,
) -> list[EnrichedItem]:
    """Items forecast to run out within ``max_days``, soonest first."""
    floor = min_confidence.rank or 0
    risks = [
        i
        for i in items
        if i.depletion.days_until_depletion is not None
        and i.depletion.days_until_depletion <= max_days
        and (i.depletion.confidence.rank or -1) >= max(floor, 1)
    ]
    risks.sort(key=lambda i: (i.depletion.days_until_depletion, i.sku))
    return risks

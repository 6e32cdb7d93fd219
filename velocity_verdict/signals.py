"""Inventory movement signal classification.

Maps an item's velocity, depletion forecast and snapshot delta to one
signal from a fixed taxonomy. The first matching rule wins:

    1. no velocity data / zero units sold  -> STAGNANT
    2. depletion rate accelerating         -> ACCELERATING_DEPLETION
    3. sharp quantity drop                 -> SUDDEN_DROP
    4. large quantity increase             -> RESTOCKED (informational)
    5. low stock still selling             -> STABLE_LOW_STOCK
    6. otherwise                           -> NORMAL_VARIANCE

Each signal cites the raw numbers it was classified from, and carries a
0-100 priority score:

    velocity      0-50  min(daily_velocity * 5, 50)
    acceleration  0-25  min(|rate_change| / 4, 25), accelerating only
    stock risk    0-15  max(0, 15 - days_until_depletion)
    margin        0-10  min(margin_percent / 10, 10), tie-breaker only
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from . import temporal_decay
from .config import DEFAULT_THRESHOLDS, Thresholds
from .models import Confidence, as_utc
from .snapshot_delta import InventoryDelta
from .velocity import EnrichedItem

logger = logging.getLogger("verdict.signals")


class SignalType(str, Enum):
    STAGNANT = "STAGNANT"
    ACCELERATING_DEPLETION = "ACCELERATING_DEPLETION"
    SUDDEN_DROP = "SUDDEN_DROP"
    RESTOCKED = "RESTOCKED"
    STABLE_LOW_STOCK = "STABLE_LOW_STOCK"
    NORMAL_VARIANCE = "NORMAL_VARIANCE"

    @property
    def is_actionable(self) -> bool:
        return self not in (SignalType.RESTOCKED, SignalType.NORMAL_VARIANCE)

    @property
    def from_snapshots(self) -> bool:
        """Whether the pattern is read from snapshot-to-snapshot movement."""
        return self in (
            SignalType.ACCELERATING_DEPLETION,
            SignalType.SUDDEN_DROP,
            SignalType.RESTOCKED,
        )


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"
    NONE = "none"

    @property
    def order(self) -> int:
        return {
            Severity.CRITICAL: 0,
            Severity.HIGH: 1,
            Severity.MEDIUM: 2,
            Severity.LOW: 3,
            Severity.INFO: 4,
            Severity.NONE: 5,
        }[self]


@dataclass(frozen=True)
class Signal:
    """A classified movement pattern for one SKU."""

    sku: str
    name: str
    type: SignalType
    severity: Severity
    reason: str
    confidence: Confidence
    cited_data: dict[str, Any] = field(default_factory=dict)
    priority_score: int = 0
    urgency: int = 0

    @property
    def actionable(self) -> bool:
        return self.type.is_actionable

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "name": self.name,
            "type": self.type.value,
            "severity": self.severity.value,
            "reason": self.reason,
            "confidence": self.confidence.value,
            "cited_data": dict(self.cited_data),
            "priority_score": self.priority_score,
            "urgency": self.urgency,
            "actionable": self.actionable,
        }


def evolve_confidence(current: Confidence, snapshot_count: int) -> Confidence:
    """Adjust confidence by how many snapshots a pattern has persisted across.

    Three or more snapshots upgrade one tier (capped at high); a single
    snapshot downgrades one tier; two leave it unchanged.
    """
    if snapshot_count >= 3:
        return current.upgraded()
    if snapshot_count == 1:
        return current.downgraded()
    return current


def _round(value: float | None) -> float | None:
    return round(value, 2) if value is not None else None


def _tiered(days: int | None, *limits: tuple[int, Severity], default: Severity) -> Severity:
    if days is None:
        return default
    for limit, severity in limits:
        if days <= limit:
            return severity
    return default


class SignalClassifier:
    """Classify enriched inventory items into movement signals.

    Usage:
        classifier = SignalClassifier()
        signal = classifier.classify_signal(item, delta)
        signals = classifier.classify_all(items, deltas, snapshot_count=3)
    """

    def __init__(
        self,
        thresholds: Thresholds | None = None,
        decay_constant: float = temporal_decay.DEFAULT_DECAY,
    ):
        self.thresholds = thresholds or DEFAULT_THRESHOLDS
        self.decay_constant = decay_constant

    # -----------------------------------------------------------------
    # Single item
    # -----------------------------------------------------------------

    def classify_signal(
        self,
        item: EnrichedItem,
        delta: InventoryDelta | None = None,
    ) -> Signal:
        t = self.thresholds.signals
        velocity = item.velocity
        qty = item.quantity_on_hand
        days = item.depletion.days_until_depletion

        if not velocity.is_measured or velocity.total_units_sold == 0:
            if velocity.is_measured:
                reason = (
                    f"No sales in {velocity.observation_days} days "
                    f"with {qty} units on hand"
                )
            else:
                reason = f"No velocity data: {velocity.message}"
            return self._signal(
                item,
                SignalType.STAGNANT,
                Severity.HIGH if qty > 0 else Severity.LOW,
                reason,
                velocity.confidence,
                {
                    "quantity_on_hand": qty,
                    "observation_days": velocity.observation_days,
                    "total_units_sold": velocity.total_units_sold,
                    "daily_velocity": velocity.daily_velocity,
                },
            )

        if delta is not None and delta.has_accelerated:
            severity = _tiered(
                days,
                (t.accelerating_critical_days, Severity.CRITICAL),
                (t.accelerating_high_days, Severity.HIGH),
                default=Severity.MEDIUM,
            )
            return self._signal(
                item,
                SignalType.ACCELERATING_DEPLETION,
                severity,
                (
                    f"Depletion rate increased by {delta.velocity_delta_percent or 0:.1f}% "
                    f"- depleting faster than before"
                ),
                item.depletion.confidence,
                {
                    "current_quantity": delta.current_quantity,
                    "depletion_rate": round(delta.depletion_rate, 2),
                    "previous_depletion_rate": _round(delta.previous_depletion_rate),
                    "rate_change": _round(delta.velocity_delta_percent),
                    "days_until_depletion": days,
                    "quantity_delta": delta.quantity_delta,
                },
            )

        if (
            delta is not None
            and delta.quantity_delta < -t.sudden_drop_units
            and delta.quantity_delta_percent is not None
            and abs(delta.quantity_delta_percent) > t.sudden_drop_percent
        ):
            severity = _tiered(
                days, (t.sudden_drop_high_days, Severity.HIGH), default=Severity.MEDIUM
            )
            return self._signal(
                item,
                SignalType.SUDDEN_DROP,
                severity,
                (
                    f"Quantity dropped by {abs(delta.quantity_delta)} units "
                    f"({abs(delta.quantity_delta_percent):.1f}%) since last snapshot"
                ),
                item.depletion.confidence,
                {
                    "current_quantity": delta.current_quantity,
                    "previous_quantity": delta.previous_quantity,
                    "quantity_delta": delta.quantity_delta,
                    "quantity_delta_percent": round(delta.quantity_delta_percent, 2),
                    "depletion_rate": round(delta.depletion_rate, 2),
                    "days_until_depletion": days,
                },
            )

        if delta is not None and delta.quantity_delta > t.restock_units:
            return self._signal(
                item,
                SignalType.RESTOCKED,
                Severity.INFO,
                f"Inventory restocked (+{delta.quantity_delta} units)",
                item.depletion.confidence,
                {
                    "current_quantity": delta.current_quantity,
                    "previous_quantity": delta.previous_quantity,
                    "quantity_delta": delta.quantity_delta,
                },
            )

        daily = velocity.daily_velocity
        if 0 < qty < t.low_stock_units and daily > 0:
            severity = _tiered(
                days,
                (t.low_stock_critical_days, Severity.CRITICAL),
                (t.low_stock_high_days, Severity.HIGH),
                default=Severity.MEDIUM,
            )
            return self._signal(
                item,
                SignalType.STABLE_LOW_STOCK,
                severity,
                (
                    f"Selling {daily:.1f} units/day with {qty} remaining "
                    f"- {days} days until out of stock"
                ),
                item.depletion.confidence,
                {
                    "current_quantity": qty,
                    "daily_velocity": round(daily, 2),
                    "days_until_depletion": days,
                },
            )

        return self._signal(
            item,
            SignalType.NORMAL_VARIANCE,
            Severity.NONE,
            "Normal inventory movement",
            item.depletion.confidence,
            {
                "current_quantity": qty,
                "quantity_delta": delta.quantity_delta if delta else None,
            },
        )

    def _signal(
        self,
        item: EnrichedItem,
        signal_type: SignalType,
        severity: Severity,
        reason: str,
        confidence: Confidence,
        cited: dict[str, Any],
    ) -> Signal:
        return Signal(
            sku=item.sku,
            name=item.display_name,
            type=signal_type,
            severity=severity,
            reason=reason,
            confidence=confidence,
            cited_data=cited,
        )

    def calculate_priority_score(
        self,
        item: EnrichedItem,
        signal: Signal,
        delta: InventoryDelta | None = None,
    ) -> int:
        """Weighted 0-100 score; see module docstring for the factors."""
        w = self.thresholds.priority
        score = 0.0

        daily = item.velocity.daily_velocity or 0.0
        score += min(max(daily, 0.0) * w.velocity_multiplier, w.velocity_cap)

        if delta is not None and delta.has_accelerated and delta.velocity_delta_percent is not None:
            score += min(abs(delta.velocity_delta_percent) / w.acceleration_divisor, w.acceleration_cap)

        days = item.depletion.days_until_depletion
        if days is not None:
            score += min(max(0.0, w.stock_risk_cap - days), w.stock_risk_cap)

        margin = item.pricing.margin_percent
        if margin is not None:
            score += min(max(margin, 0.0) / w.margin_divisor, w.margin_cap)

        return max(0, min(100, round(score)))

    # -----------------------------------------------------------------
    # Whole snapshot
    # -----------------------------------------------------------------

    def classify_all(
        self,
        items: Sequence[EnrichedItem],
        deltas: Mapping[str, InventoryDelta] | None = None,
        snapshot_count: int = 1,
        observed_at: datetime | None = None,
        now: datetime | None = None,
    ) -> list[Signal]:
        """Classify every item and rank the results.

        Snapshot-derived signals have their confidence evolved by
        ``snapshot_count``; every signal is then capped by the age of the
        observation and given a decayed urgency.

        Returns:
            Signals sorted by severity, then priority score (highest first).
        """
        deltas = deltas or {}
        now = as_utc(now) if now is not None else datetime.now(UTC)
        observed_at = as_utc(observed_at) if observed_at is not None else now

        signals: list[Signal] = []
        for item in items:
            delta = deltas.get(item.sku)
            signal = self.classify_signal(item, delta)

            confidence = signal.confidence
            if signal.type.from_snapshots:
                confidence = evolve_confidence(confidence, snapshot_count)
            confidence = temporal_decay.adjust_confidence_for_age(confidence, observed_at, now)

            signal = replace(
                signal,
                confidence=confidence,
                priority_score=self.calculate_priority_score(item, signal, delta),
                urgency=temporal_decay.urgency(
                    signal.severity.value, observed_at, self.decay_constant, now
                ),
            )
            logger.debug(
                "Classified %s as %s (%s, score=%d)",
                signal.sku,
                signal.type.value,
                signal.severity.value,
                signal.priority_score,
            )
            signals.append(signal)

        signals.sort(key=lambda s: (s.severity.order, -s.priority_score, s.sku))
        return signals


# ---------------------------------------------------------------------------
# Consumer helpers (alert hooks filter on these)
# ---------------------------------------------------------------------------


def filter_signals_by_severity(
    signals: Iterable[Signal], severities: Severity | Iterable[Severity]
) -> list[Signal]:
    wanted = {severities} if isinstance(severities, Severity) else set(severities)
    return [s for s in signals if s.severity in wanted]


def filter_signals_by_type(
    signals: Iterable[Signal], types: SignalType | Iterable[SignalType]
) -> list[Signal]:
    wanted = {types} if isinstance(types, SignalType) else set(types)
    return [s for s in signals if s.type in wanted]


def filter_signals_by_confidence(
    signals: Iterable[Signal], min_confidence: Confidence = Confidence.LOW
) -> list[Signal]:
    """Signals whose confidence tier is at least ``min_confidence``.

    Error, insufficient-data and stale signals never pass.
    """
    floor = max(min_confidence.rank or 1, 1)
    return [s for s in signals if (s.confidence.rank or 0) >= floor]


def summarize_signals(signals: Sequence[Signal]) -> dict:
    return {
        "total": len(signals),
        "by_severity": dict(Counter(s.severity.value for s in signals)),
        "by_type": dict(Counter(s.type.value for s in signals)),
        "by_confidence": dict(Counter(s.confidence.value for s in signals)),
    }

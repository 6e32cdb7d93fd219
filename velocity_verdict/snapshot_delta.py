"""Quantity deltas between inventory snapshots.

Compares the current inventory with the previous snapshot (and, when
available, the one before it) to measure how fast stock is draining and
whether that drain is speeding up.

    depletion_rate = units_lost / days_between_snapshots
    rate_change    = (rate_now - rate_before) / rate_before * 100

A SKU with no prior record uses its current quantity as the baseline,
so it shows no movement instead of a fabricated drop or restock.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from .config import DEFAULT_THRESHOLDS, SignalThresholds
from .models import InventoryItem, Snapshot, as_utc


@dataclass(frozen=True)
class InventoryDelta:
    """Movement of one SKU between two snapshots."""

    sku: str
    current_quantity: int
    previous_quantity: int
    quantity_delta: int
    quantity_delta_percent: float | None
    time_delta_days: int
    depletion_rate: float
    previous_depletion_rate: float | None = None
    velocity_delta_percent: float | None = None
    has_accelerated: bool = False

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "current_quantity": self.current_quantity,
            "previous_quantity": self.previous_quantity,
            "quantity_delta": self.quantity_delta,
            "quantity_delta_percent": (
                round(self.quantity_delta_percent, 2)
                if self.quantity_delta_percent is not None
                else None
            ),
            "time_delta_days": self.time_delta_days,
            "depletion_rate": round(self.depletion_rate, 2),
            "previous_depletion_rate": (
                round(self.previous_depletion_rate, 2)
                if self.previous_depletion_rate is not None
                else None
            ),
            "velocity_delta_percent": (
                round(self.velocity_delta_percent, 2)
                if self.velocity_delta_percent is not None
                else None
            ),
            "has_accelerated": self.has_accelerated,
        }


def _days_between(later: datetime, earlier: datetime) -> int:
    return max(1, round((later - earlier).total_seconds() / 86400))


def _drain_rate(quantity_delta: int, days: int) -> float:
    return abs(quantity_delta) / days if quantity_delta < 0 else 0.0


def compute_inventory_deltas(
    current_items: Sequence[InventoryItem],
    current_as_of: datetime,
    previous: Snapshot,
    older: Snapshot | None = None,
    thresholds: SignalThresholds | None = None,
) -> dict[str, InventoryDelta]:
    """Per-SKU deltas of ``current_items`` against ``previous``.

    Args:
        current_items: Items of the period being analysed.
        current_as_of: When the current quantities were observed.
        previous: The snapshot immediately before.
        older: The snapshot before ``previous``; enables acceleration.

    Returns:
        Mapping of SKU to delta. Items without a SKU are left out.
    """
    t = thresholds or DEFAULT_THRESHOLDS.signals
    days = _days_between(as_utc(current_as_of), previous.as_of)
    older_days = _days_between(previous.as_of, older.as_of) if older else None

    deltas: dict[str, InventoryDelta] = {}
    for item in current_items:
        if not item.sku:
            continue

        current_qty = item.quantity
        prior = previous.quantity_of(item.sku)
        previous_qty = prior if prior is not None else current_qty
        quantity_delta = current_qty - previous_qty
        percent = quantity_delta / previous_qty * 100 if previous_qty > 0 else None
        rate = _drain_rate(quantity_delta, days)

        previous_rate = None
        rate_change = None
        accelerated = False
        if older is not None and prior is not None:
            older_qty = older.quantity_of(item.sku)
            if older_qty is not None:
                previous_rate = _drain_rate(prior - older_qty, older_days)
                if previous_rate > 0 and rate > 0:
                    rate_change = (rate - previous_rate) / previous_rate * 100
                    accelerated = rate_change > t.acceleration_percent

        deltas[item.sku] = InventoryDelta(
            sku=item.sku,
            current_quantity=current_qty,
            previous_quantity=previous_qty,
            quantity_delta=quantity_delta,
            quantity_delta_percent=percent,
            time_delta_days=days,
            depletion_rate=rate,
            previous_depletion_rate=previous_rate,
            velocity_delta_percent=rate_change,
            has_accelerated=accelerated,
        )
    return deltas

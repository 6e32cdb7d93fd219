"""Exponential time decay for confidence and urgency.

    weight = e^(-lambda * age_in_days)

With lambda = 0.1 a one-day-old observation weighs 0.90, a week-old one
0.50, a two-week-old one 0.25. Recent evidence dominates averages and
older signals lose urgency.

All functions take ``now`` so results are reproducible; it defaults to
the current UTC time.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .models import Confidence, as_utc


class DecayRate(float, Enum):
    FAST = 0.2  # halves in ~3.5 days
    MEDIUM = 0.1  # halves in ~7 days
    SLOW = 0.05  # halves in ~14 days
    VERY_SLOW = 0.02  # halves in ~35 days


DEFAULT_DECAY = DecayRate.MEDIUM.value

SEVERITY_SCORES = {
    "critical": 100,
    "high": 75,
    "medium": 50,
    "low": 25,
}

# Upper bounds (exclusive, in days) for each recency tier.
FRESH_DAYS = 1
RECENT_DAYS = 7
AGING_DAYS = 14


def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now is not None else datetime.now(UTC)


def age_in_days(timestamp: datetime, now: datetime | None = None) -> float:
    """Age of ``timestamp`` in fractional days. Future timestamps count as age 0."""
    return max(0.0, (_now(now) - as_utc(timestamp)).total_seconds() / 86400)


def weight(age_days: float, decay_constant: float = DEFAULT_DECAY) -> float:
    """Decay weight for an observation ``age_days`` old. 1.0 at age 0."""
    return math.exp(-decay_constant * age_days)


def weighted_average(
    items: Iterable[tuple[float, datetime]],
    decay_constant: float = DEFAULT_DECAY,
    now: datetime | None = None,
) -> float | None:
    """Recency-weighted mean of ``(value, timestamp)`` pairs.

    Returns ``None`` when there is nothing to average.
    """
    weighted_sum = 0.0
    total_weight = 0.0
    for value, timestamp in items:
        w = weight(age_in_days(timestamp, now), decay_constant)
        weighted_sum += value * w
        total_weight += w
    if total_weight <= 0:
        return None
    return weighted_sum / total_weight


def recency_confidence(timestamp: datetime, now: datetime | None = None) -> Confidence:
    age = age_in_days(timestamp, now)
    if age < FRESH_DAYS:
        return Confidence.HIGH
    if age < RECENT_DAYS:
        return Confidence.MEDIUM
    if age < AGING_DAYS:
        return Confidence.LOW
    return Confidence.STALE


def adjust_confidence_for_age(
    base: Confidence,
    timestamp: datetime,
    now: datetime | None = None,
) -> Confidence:
    """The more conservative of ``base`` and the recency tier.

    Non-tier labels (error, insufficient data) pass through unchanged;
    age can only lower confidence, never repair it.
    """
    if base.rank is None:
        return base
    recency = recency_confidence(timestamp, now)
    return Confidence.from_rank(min(base.rank, recency.rank))


def urgency(
    severity: str,
    timestamp: datetime,
    decay_constant: float = DEFAULT_DECAY,
    now: datetime | None = None,
) -> int:
    """Severity score (critical=100 ... low=25) decayed by age. Unknown severities score 0."""
    base = SEVERITY_SCORES.get(severity, 0)
    return round(base * weight(age_in_days(timestamp, now), decay_constant))


def sort_by_time_weighted_priority(
    items: Sequence[dict[str, Any]],
    decay_constant: float = DEFAULT_DECAY,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Copies of ``items`` (each with ``severity`` and ``timestamp``) with an
    ``urgency_score`` key, most urgent first."""
    scored = [
        {**item, "urgency_score": urgency(item["severity"], item["timestamp"], decay_constant, now)}
        for item in items
    ]
    scored.sort(key=lambda i: i["urgency_score"], reverse=True)
    return scored


def filter_stale(
    items: Sequence[dict[str, Any]],
    max_age_days: float = 30,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    return [i for i in items if age_in_days(i["timestamp"], now) <= max_age_days]

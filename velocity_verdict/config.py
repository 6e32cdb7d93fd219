"""Pipeline configuration.

Two layers:

- ``VerdictSettings`` - process settings loaded from environment
  variables (prefix ``VERDICT_``) and an optional ``.env`` file.
- ``Thresholds`` - every hand-tuned business constant (velocity tiers,
  signal cut-offs, priority weights, decision and verdict thresholds)
  as named, overridable values. Defaults are the production constants;
  a YAML file can override any subset.

Usage:
    from velocity_verdict.config import get_settings, load_thresholds

    settings = get_settings()
    thresholds = load_thresholds(settings.thresholds_path)
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("verdict.config")


# ---------------------------------------------------------------------------
# Business thresholds
# ---------------------------------------------------------------------------


class VelocityThresholds(BaseModel):
    min_observation_days: int = 7
    default_observation_days: int = 30
    high_confidence_days: int = 20
    high_confidence_units: int = 10
    medium_confidence_days: int = 10
    medium_confidence_units: int = 5
    near_term_days: int = 3
    far_future_days: int = 90
    trend_change_percent: float = 20.0

    @model_validator(mode="after")
    def check_tiers(self) -> VelocityThresholds:
        if self.medium_confidence_days > self.high_confidence_days:
            raise ValueError(
                "velocity.medium_confidence_days must not exceed high_confidence_days"
            )
        if self.medium_confidence_units > self.high_confidence_units:
            raise ValueError(
                "velocity.medium_confidence_units must not exceed high_confidence_units"
            )
        if self.min_observation_days > self.default_observation_days:
            raise ValueError(
                "velocity.min_observation_days must not exceed default_observation_days"
            )
        return self


class SignalThresholds(BaseModel):
    accelerating_critical_days: int = 7
    accelerating_high_days: int = 14
    acceleration_percent: float = 20.0
    sudden_drop_units: int = 5
    sudden_drop_percent: float = 30.0
    sudden_drop_high_days: int = 7
    restock_units: int = 10
    low_stock_units: int = 10
    low_stock_critical_days: int = 3
    low_stock_high_days: int = 7


class PriorityWeights(BaseModel):
    """Per-factor caps of the 0-100 priority score."""

    velocity_multiplier: float = 5.0
    velocity_cap: float = 50.0
    acceleration_divisor: float = 4.0
    acceleration_cap: float = 25.0
    stock_risk_cap: float = 15.0
    margin_divisor: float = 10.0
    margin_cap: float = 10.0

    @model_validator(mode="after")
    def check_total(self) -> PriorityWeights:
        total = self.velocity_cap + self.acceleration_cap + self.stock_risk_cap + self.margin_cap
        if abs(total - 100.0) > 1e-9:
            raise ValueError(f"priority caps must sum to 100, got {total:g}")
        if self.margin_cap > min(self.velocity_cap, self.acceleration_cap, self.stock_risk_cap):
            raise ValueError("priority.margin_cap must be the smallest factor")
        return self


class FactThresholds(BaseModel):
    slow_mover_velocity: float = 0.1
    slow_mover_days: int = 14
    min_skus_for_margin: int = 1


class DecisionThresholds(BaseModel):
    high_velocity: float = 0.5
    high_margin_percent: float = 50.0
    low_stock_days: int = 10
    critical_stock_days: int = 5
    min_stock_for_discount: int = 5
    max_actions: int = 3

    @model_validator(mode="after")
    def check_coverage(self) -> DecisionThresholds:
        if self.critical_stock_days > self.low_stock_days:
            raise ValueError(
                "decisions.critical_stock_days must not exceed low_stock_days"
            )
        return self


class VerdictThresholds(BaseModel):
    stockout_days: int = 7
    stockout_min_velocity: float = 0.5
    under_promoted_margin: float = 50.0
    under_promoted_max_velocity: float = 0.5
    under_promoted_min_quantity: int = 10
    under_promoted_limit: int = 2
    revenue_decline_ratio: float = 0.85
    dead_stock_min_quantity: int = 5
    dead_stock_max_velocity: float = 0.2
    dead_stock_limit: int = 5
    dead_stock_min_capital: float = 500.0
    margin_compression_points: float = 5.0
    forecast_stockout_days: int = 14
    forecast_revenue_change_ratio: float = 0.05
    forecast_thin_margin: float = 45.0
    forecast_momentum_ratio: float = 1.5


class Thresholds(BaseModel):
    """All overridable business constants, grouped by stage."""

    velocity: VelocityThresholds = Field(default_factory=VelocityThresholds)
    signals: SignalThresholds = Field(default_factory=SignalThresholds)
    priority: PriorityWeights = Field(default_factory=PriorityWeights)
    facts: FactThresholds = Field(default_factory=FactThresholds)
    decisions: DecisionThresholds = Field(default_factory=DecisionThresholds)
    verdict: VerdictThresholds = Field(default_factory=VerdictThresholds)


DEFAULT_THRESHOLDS = Thresholds()


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_thresholds(path: str | Path | None = None) -> Thresholds:
    """Load thresholds, overriding defaults with a YAML file if given.

    Args:
        path: YAML file with any subset of the ``Thresholds`` sections.

    Raises:
        ValueError: If overrides are inconsistent.
        FileNotFoundError: If ``path`` is given but does not exist.
    """
    if path is None:
        return DEFAULT_THRESHOLDS

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Thresholds file not found: {path}")

    raw = _load_yaml(path)
    if not isinstance(raw, dict):
        raise ValueError(f"Thresholds file must contain a mapping: {path}")

    thresholds = Thresholds.model_validate(raw)
    logger.info(
        "Loaded thresholds from %s (sections: %s)",
        path,
        ", ".join(sorted(raw)) or "none",
    )
    return thresholds


# ---------------------------------------------------------------------------
# Process settings
# ---------------------------------------------------------------------------


class VerdictSettings(BaseSettings):
    """Runtime settings. All values can be set via ``VERDICT_*`` env vars."""

    default_observation_days: int = Field(
        default=30,
        description="Sales window (days) used for velocity when none is given.",
    )
    max_concurrency: int = Field(
        default=16,
        ge=1,
        description="Upper bound on concurrent event-store queries per run.",
    )
    decay_constant: float = Field(
        default=0.1,
        gt=0,
        description="Decay constant (lambda) for signal urgency.",
    )
    thresholds_path: str | None = Field(
        default=None,
        description="Optional YAML file overriding business thresholds.",
    )
    events_dir: str = Field(
        default="data/sales",
        description="Root of the JSONL sales event store.",
    )
    log_level: str = Field(default="INFO", description="Root log level for the CLI.")

    model_config = SettingsConfigDict(
        env_prefix="VERDICT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> VerdictSettings:
    """Get cached settings singleton."""
    return VerdictSettings()

"""Pydantic models for the records the pipeline consumes.

These are the boundary contracts: sales events from the append-only
event store, inventory items from catalog resolution, and the prior
period snapshots used for delta analysis. Every model is frozen, so no
stage can mutate a caller's input.

Field aliases accept the camelCase JSON emitted by the webhook and
catalog collaborators (``soldAt``, ``soldPrice``, ``productName`` ...).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

_FROZEN = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Confidence(str, Enum):
    """Qualitative reliability label attached to a derived number."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    STALE = "stale"
    INSUFFICIENT_DATA = "insufficient_data"
    ERROR = "error"

    @property
    def rank(self) -> int | None:
        """Position on the low < medium < high scale.

        ``None`` for labels that are not tiers (error, insufficient data);
        those are never upgraded or downgraded.
        """
        return {
            Confidence.STALE: 0,
            Confidence.LOW: 1,
            Confidence.MEDIUM: 2,
            Confidence.HIGH: 3,
        }.get(self)

    @classmethod
    def from_rank(cls, rank: int) -> Confidence:
        return [cls.STALE, cls.LOW, cls.MEDIUM, cls.HIGH][max(0, min(rank, 3))]

    def upgraded(self) -> Confidence:
        """One tier up, capped at high. Stale stays stale."""
        if self.rank is None or self is Confidence.STALE:
            return self
        return Confidence.from_rank(self.rank + 1)

    def downgraded(self) -> Confidence:
        """One tier down, floored at low."""
        if self.rank is None or self is Confidence.STALE:
            return self
        return Confidence.from_rank(max(self.rank - 1, 1))


class DataIssue(str, Enum):
    """Why a derived value is degraded or a record was dropped."""

    INSUFFICIENT_OBSERVATION_WINDOW = "insufficient_observation_window"
    NO_SALES_OBSERVED = "no_sales_observed"
    INVALID_QUANTITY = "invalid_quantity"
    EVENT_STORE_ERROR = "event_store_error"
    MISSING_REQUIRED_FIELD = "missing_required_field"


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SalesEvent(BaseModel):
    """A single recorded sale. Immutable and never synthesized."""

    model_config = _FROZEN

    sku: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    sold_at: datetime = Field(alias="soldAt")
    store_id: str = Field(alias="storeId")
    sold_price: float | None = Field(default=None, gt=0, alias="soldPrice")
    event_id: str | None = Field(default=None, alias="eventId")

    @field_validator("sold_at")
    @classmethod
    def _normalize_sold_at(cls, value: datetime) -> datetime:
        return as_utc(value)


class Pricing(BaseModel):
    """Unit pricing. Any field may be unknown; unknown stays ``None``."""

    model_config = _FROZEN

    cost: float | None = None
    retail: float | None = None
    margin: float | None = None  # percent, 0-100

    @property
    def margin_percent(self) -> float | None:
        """Explicit margin, or one derived from retail and cost."""
        if self.margin is not None:
            return self.margin
        if self.retail is not None and self.cost is not None and self.retail > 0:
            return (self.retail - self.cost) / self.retail * 100
        return None


class InventoryItem(BaseModel):
    """One sellable SKU in a store's inventory snapshot.

    ``sku`` may be missing on malformed catalog rows; such rows are
    skipped downstream with a warning rather than rejected here.
    """

    model_config = _FROZEN

    sku: str | None = None
    quantity: int = 0
    product_name: str | None = Field(default=None, alias="productName")
    variant_name: str | None = Field(default=None, alias="variantName")
    name: str | None = None
    pricing: Pricing = Field(default_factory=Pricing)

    @field_validator("sku")
    @classmethod
    def _strip_sku(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def resolved_name(self) -> str | None:
        return self.product_name or self.name

    @property
    def display_name(self) -> str:
        base = self.resolved_name or self.sku or "?"
        if self.variant_name:
            return f"{base} ({self.variant_name})"
        return base


class PeriodSales(BaseModel):
    """Units and revenue sold for one SKU during the analysed period."""

    model_config = _FROZEN

    units_sold: int = Field(default=0, ge=0, alias="unitsSold")
    revenue: float | None = None


class PeriodMetrics(BaseModel):
    """Store-level totals for a period. Unknown stays ``None``."""

    model_config = _FROZEN

    total_revenue: float | None = Field(default=None, alias="totalRevenue")
    average_margin: float | None = Field(default=None, alias="averageMargin")


class Snapshot(BaseModel):
    """A point-in-time view of a store, as produced by a previous run."""

    model_config = _FROZEN

    store_id: str = Field(alias="storeId")
    as_of: datetime = Field(alias="asOf")
    items: tuple[InventoryItem, ...] = ()
    metrics: PeriodMetrics = Field(default_factory=PeriodMetrics)
    velocities: dict[str, float] = Field(default_factory=dict)

    @field_validator("as_of")
    @classmethod
    def _normalize_as_of(cls, value: datetime) -> datetime:
        return as_utc(value)

    def quantity_of(self, sku: str) -> int | None:
        for item in self.items:
            if item.sku == sku:
                return item.quantity
        return None

"""Velocity-to-verdict pipeline.

Runs the five stages for one store over caller-supplied inputs:

    events + inventory -> velocity/depletion -> signals
                       -> fact tables -> decisions -> verdict + forecasts

Inputs are validated once here. Nothing is persisted between runs; the
``snapshot`` on the result is what a caller stores and passes back as
``history`` next time.

Usage:
    pipeline = VerdictPipeline(JsonlEventStore("data/sales"))
    result = await pipeline.run("main-street", inventory, history=[last_snapshot])
    print(result.verdict.verdict)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from .config import Thresholds, VerdictSettings, load_thresholds
from .decisions import DecisionEngine, ExecutiveActionBrief
from .errors import InvalidInputError
from .event_store import SalesEventStore
from .fact_tables import FactTableBuilder, FactTables, SuppressedItem, compute_weighted_margin
from .models import DataIssue, InventoryItem, PeriodMetrics, PeriodSales, Snapshot, as_utc
from .signals import Signal, SignalClassifier
from .snapshot_delta import compute_inventory_deltas
from .velocity import VelocityModel
from .verdict import Forecast, Verdict, VerdictRanker

logger = logging.getLogger("verdict.pipeline")


@dataclass(frozen=True)
class PipelineResult:
    store_id: str
    signals: tuple[Signal, ...]
    brief: ExecutiveActionBrief
    verdict: Verdict
    forecasts: tuple[Forecast, ...]
    snapshot: Snapshot
    generated_at: datetime

    def to_dict(self, include_generated_at: bool = False) -> dict:
        """JSON-shaped output.

        Run timestamps (``generated_at`` and the snapshot's ``asOf``) are
        left out by default so identical runs compare equal.
        """
        snapshot = self.snapshot.model_dump(mode="json", by_alias=True)
        if not include_generated_at:
            snapshot.pop("asOf")
        data = {
            "store_id": self.store_id,
            "signals": [s.to_dict() for s in self.signals],
            "brief": self.brief.to_dict(include_generated_at=include_generated_at),
            "verdict": self.verdict.to_dict(),
            "forecasts": [f.to_dict() for f in self.forecasts],
            "snapshot": snapshot,
        }
        if include_generated_at:
            data["generated_at"] = self.generated_at.isoformat()
        return data


def _coerce_items(inventory: Any) -> list[InventoryItem]:
    if not isinstance(inventory, (list, tuple)):
        raise InvalidInputError(
            f"inventory must be a list, got {type(inventory).__name__}"
        )
    items = []
    for index, raw in enumerate(inventory):
        if isinstance(raw, InventoryItem):
            items.append(raw)
            continue
        try:
            items.append(InventoryItem.model_validate(raw))
        except ValidationError as exc:
            raise InvalidInputError(f"inventory[{index}] is not a valid item: {exc}") from exc
    return items


def _coerce_history(history: Any) -> list[Snapshot]:
    if not isinstance(history, (list, tuple)):
        raise InvalidInputError(f"history must be a list, got {type(history).__name__}")
    snapshots = []
    for index, raw in enumerate(history):
        if isinstance(raw, Snapshot):
            snapshots.append(raw)
            continue
        try:
            snapshots.append(Snapshot.model_validate(raw))
        except ValidationError as exc:
            raise InvalidInputError(f"history[{index}] is not a valid snapshot: {exc}") from exc
    snapshots.sort(key=lambda s: s.as_of)
    return snapshots


def _coerce_period_sales(period_sales: Any) -> dict[str, PeriodSales] | None:
    if period_sales is None:
        return None
    if not isinstance(period_sales, Mapping):
        raise InvalidInputError(
            f"period_sales must be a mapping, got {type(period_sales).__name__}"
        )
    try:
        return {
            sku: v if isinstance(v, PeriodSales) else PeriodSales.model_validate(v)
            for sku, v in period_sales.items()
        }
    except ValidationError as exc:
        raise InvalidInputError(f"period_sales is invalid: {exc}") from exc


def _period_metrics(tables: FactTables, average_margin: float | None) -> PeriodMetrics:
    """Store totals from SALES_FACTS. Revenue is unknown if any fact's is."""
    revenues = [f.revenue for f in tables.sales_facts.values()]
    total_revenue = None
    if revenues and all(r is not None for r in revenues):
        total_revenue = sum(revenues)
    return PeriodMetrics(total_revenue=total_revenue, average_margin=average_margin)


class VerdictPipeline:
    """Run the full pipeline for one store.

    Usage:
        pipeline = VerdictPipeline(InMemoryEventStore(events))
        result = await pipeline.run("main-street", items, now=now)
    """

    def __init__(
        self,
        event_store: SalesEventStore,
        thresholds: Thresholds | None = None,
        settings: VerdictSettings | None = None,
    ):
        self.settings = settings or VerdictSettings()
        self.thresholds = thresholds or load_thresholds(self.settings.thresholds_path)
        self.velocity_model = VelocityModel(
            event_store, self.thresholds, max_concurrency=self.settings.max_concurrency
        )
        self.classifier = SignalClassifier(self.thresholds, self.settings.decay_constant)
        self.fact_builder = FactTableBuilder(self.thresholds)
        self.decision_engine = DecisionEngine(self.thresholds)
        self.ranker = VerdictRanker(self.thresholds)

    async def run(
        self,
        store_id: str,
        inventory: Sequence[InventoryItem | dict],
        history: Sequence[Snapshot | dict] = (),
        period_sales: Mapping[str, PeriodSales | dict] | None = None,
        now: datetime | None = None,
        observed_at: datetime | None = None,
        observation_days: int | None = None,
    ) -> PipelineResult:
        """Analyse one inventory snapshot.

        Args:
            store_id: Store whose sales events are read.
            inventory: Current items (models or camelCase dicts).
            history: Earlier snapshots, any order; the two latest drive
                deltas and acceleration.
            period_sales: Explicit per-SKU sales for the period.
            now: Reference time, resolved once per run.
            observed_at: When ``inventory`` was counted; defaults to ``now``.
            observation_days: Velocity window; defaults to settings.

        Raises:
            InvalidInputError: If an argument has the wrong shape.
        """
        if not isinstance(store_id, str) or not store_id.strip():
            raise InvalidInputError("store_id must be a non-empty string")
        items = _coerce_items(inventory)
        snapshots = _coerce_history(history)
        sales = _coerce_period_sales(period_sales)

        now = as_utc(now) if now is not None else datetime.now(UTC)
        observed_at = as_utc(observed_at) if observed_at is not None else now
        days = (
            observation_days
            if observation_days is not None
            else self.settings.default_observation_days
        )

        # Stage 1: velocity and depletion
        enriched = await self.velocity_model.compute_inventory_velocities(
            store_id, items, days, now=now
        )

        # Stage 2: deltas and signals
        previous = snapshots[-1] if snapshots else None
        older = snapshots[-2] if len(snapshots) > 1 else None
        deltas = {}
        if previous is not None:
            deltas = compute_inventory_deltas(
                items, observed_at, previous, older, self.thresholds.signals
            )
        signals = self.classifier.classify_all(
            enriched,
            deltas,
            snapshot_count=len(snapshots) + 1,
            observed_at=observed_at,
            now=now,
        )

        # Stage 3: fact tables
        tables = self.fact_builder.build(enriched, sales, now=now)
        skipped = tuple(
            SuppressedItem(None, f"Missing SKU ({item.display_name})", DataIssue.MISSING_REQUIRED_FIELD)
            for item in items
            if not item.sku
        )
        if skipped:
            tables = replace(tables, suppressed=skipped + tables.suppressed)
        margin = compute_weighted_margin(
            tables.sales_facts, self.thresholds.facts.min_skus_for_margin
        )

        # Stage 4: decisions
        decisions = self.decision_engine.generate_decisions(tables)
        brief = self.decision_engine.executive_action_brief(
            tables, decisions, margin, generated_at=now
        )

        # Stage 5: verdict
        metrics = _period_metrics(tables, margin.average_margin)
        verdict = self.ranker.rank(enriched, metrics, previous)
        forecasts = self.ranker.forecast_consequences(enriched, metrics, previous)

        snapshot = Snapshot(
            store_id=store_id,
            as_of=observed_at,
            items=tuple(items),
            metrics=metrics,
            velocities={
                e.sku: e.velocity.daily_velocity
                for e in enriched
                if e.velocity.daily_velocity is not None
            },
        )

        logger.info(
            "Pipeline for %s: %d items, %d signals, %d decisions, verdict=%s",
            store_id,
            len(enriched),
            len(signals),
            len(decisions),
            verdict.verdict_type.value,
        )
        return PipelineResult(
            store_id=store_id,
            signals=tuple(signals),
            brief=brief,
            verdict=verdict,
            forecasts=tuple(forecasts),
            snapshot=snapshot,
            generated_at=now,
        )


def run_pipeline(
    event_store: SalesEventStore,
    store_id: str,
    inventory: Sequence[InventoryItem | dict],
    history: Sequence[Snapshot | dict] = (),
    period_sales: Mapping[str, PeriodSales | dict] | None = None,
    now: datetime | None = None,
    observed_at: datetime | None = None,
    observation_days: int | None = None,
    thresholds: Thresholds | None = None,
    settings: VerdictSettings | None = None,
) -> PipelineResult:
    """Synchronous wrapper around :meth:`VerdictPipeline.run`."""
    pipeline = VerdictPipeline(event_store, thresholds, settings)
    return asyncio.run(
        pipeline.run(
            store_id,
            inventory,
            history=history,
            period_sales=period_sales,
            now=now,
            observed_at=observed_at,
            observation_days=observation_days,
        )
    )

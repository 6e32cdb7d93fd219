"""Velocity Verdict - inventory velocity to ranked business decisions.

Turns a store's inventory snapshot and its sales event history into
depletion forecasts, movement signals, typed decisions and a single
"if you do ONE thing" verdict. Every derived number carries a confidence
label, and numbers without source data are ``None``, never zero.

Usage:
    from velocity_verdict import JsonlEventStore, VerdictPipeline

    pipeline = VerdictPipeline(JsonlEventStore("data/sales"))
    result = await pipeline.run("main-street", inventory, history=[last_snapshot])
    print(result.verdict.verdict)
    print(result.brief.headline)

Individual stages:
    from velocity_verdict import (
        VelocityModel, SignalClassifier, FactTableBuilder,
        DecisionEngine, VerdictRanker,
    )
"""

from .config import (
    DEFAULT_THRESHOLDS,
    Thresholds,
    VerdictSettings,
    get_settings,
    load_thresholds,
)
from .decisions import (
    Decision,
    DecisionEngine,
    DecisionType,
    ExecutiveActionBrief,
    Timeframe,
)
from .errors import EventStoreError, InvalidInputError, VerdictError
from .event_store import InMemoryEventStore, JsonlEventStore, SalesEventStore
from .fact_tables import (
    FactTableBuilder,
    FactTables,
    InventoryFact,
    MarginResult,
    SalesFact,
    SuppressedItem,
    compute_weighted_margin,
)
from .models import (
    Confidence,
    DataIssue,
    InventoryItem,
    PeriodMetrics,
    PeriodSales,
    Pricing,
    SalesEvent,
    Snapshot,
)
from .pipeline import PipelineResult, VerdictPipeline, run_pipeline
from .signals import (
    Severity,
    Signal,
    SignalClassifier,
    SignalType,
    evolve_confidence,
    filter_signals_by_confidence,
    filter_signals_by_severity,
    filter_signals_by_type,
    summarize_signals,
)
from .snapshot_delta import InventoryDelta, compute_inventory_deltas
from .temporal_decay import DecayRate
from .velocity import (
    DepletionForecast,
    EnrichedItem,
    VelocityMetric,
    VelocityModel,
    VelocityTrend,
    compute_days_until_depletion,
    get_depletion_risks,
    get_slow_movers,
    get_top_movers,
)
from .verdict import Forecast, Verdict, VerdictRanker, VerdictSignal, VerdictType

__all__ = [
    # Models
    "Confidence",
    "DataIssue",
    "InventoryItem",
    "PeriodMetrics",
    "PeriodSales",
    "Pricing",
    "SalesEvent",
    "Snapshot",
    # Config
    "DEFAULT_THRESHOLDS",
    "Thresholds",
    "VerdictSettings",
    "get_settings",
    "load_thresholds",
    # Errors
    "EventStoreError",
    "InvalidInputError",
    "VerdictError",
    # Event store
    "InMemoryEventStore",
    "JsonlEventStore",
    "SalesEventStore",
    # Velocity
    "DepletionForecast",
    "EnrichedItem",
    "VelocityMetric",
    "VelocityModel",
    "VelocityTrend",
    "compute_days_until_depletion",
    "get_depletion_risks",
    "get_slow_movers",
    "get_top_movers",
    # Signals
    "DecayRate",
    "InventoryDelta",
    "Severity",
    "Signal",
    "SignalClassifier",
    "SignalType",
    "compute_inventory_deltas",
    "evolve_confidence",
    "filter_signals_by_confidence",
    "filter_signals_by_severity",
    "filter_signals_by_type",
    "summarize_signals",
    # Facts and decisions
    "Decision",
    "DecisionEngine",
    "DecisionType",
    "ExecutiveActionBrief",
    "FactTableBuilder",
    "FactTables",
    "InventoryFact",
    "MarginResult",
    "SalesFact",
    "SuppressedItem",
    "Timeframe",
    "compute_weighted_margin",
    # Verdict
    "Forecast",
    "Verdict",
    "VerdictRanker",
    "VerdictSignal",
    "VerdictType",
    # Pipeline
    "PipelineResult",
    "VerdictPipeline",
    "run_pipeline",
]

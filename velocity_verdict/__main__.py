"""CLI entry point for Velocity Verdict.

Usage:
    # Analyse an inventory snapshot against the JSONL event store
    python -m velocity_verdict run --inventory inventory.json --store-id main-street
    python -m velocity_verdict run --inventory inventory.json --store-id main-street \\
        --events-dir data/sales --previous last_snapshot.json

    # Full JSON output (includes the snapshot to pass as --previous next time)
    python -m velocity_verdict run --inventory inventory.json --store-id main-street --json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any


def _read_json(path: str) -> Any:
    source = Path(path)
    if not source.exists():
        print(f"Error: Path not found: {source}", file=sys.stderr)
        sys.exit(1)
    with open(source, encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as exc:
            print(f"Error: Invalid JSON in {source}: {exc}", file=sys.stderr)
            sys.exit(1)


def _print_summary(result) -> None:
    verdict = result.verdict
    print(f"VERDICT: {verdict.verdict}")
    print(f"  Why: {verdict.reason}")
    print(f"  {verdict.consequence}")
    if verdict.runner_up:
        print(f"  Runner-up: {verdict.runner_up.action}")
    print()

    brief = result.brief
    print(f"--- {brief.headline} ---")
    for i, action in enumerate(brief.actions, 1):
        print(f"  {i}. [{action.timeframe.value}] {action.name}: {action.action}")
        print(f"     {action.reason} ({action.impact_label})")
    margin = brief.margin_data
    if margin.average_margin is not None:
        print(f"  Average margin: {margin.average_margin:.1f}%")
    else:
        print(f"  Average margin: unknown ({margin.reason})")
    if brief.suppressed_items:
        print(f"  Suppressed items: {len(brief.suppressed_items)}")
    print()

    actionable = [s for s in result.signals if s.actionable]
    if actionable:
        print(f"--- Signals ({len(actionable)} actionable) ---")
        for signal in actionable[:10]:
            print(
                f"  {signal.severity.value:<8} {signal.type.value:<22} "
                f"{signal.name[:35]:<35} score={signal.priority_score:>3} "
                f"({signal.confidence.value})"
            )
        print()

    for forecast in result.forecasts:
        print(f"  [{forecast.horizon}] {forecast.prediction}")


def _cmd_run(args: argparse.Namespace) -> None:
    """Run the pipeline once and print the result."""
    from .config import get_settings
    from .errors import VerdictError
    from .event_store import JsonlEventStore
    from .pipeline import run_pipeline

    settings = get_settings()

    raw_inventory = _read_json(args.inventory)
    if isinstance(raw_inventory, dict):
        raw_inventory = raw_inventory.get("items", [])

    history = []
    if args.previous:
        raw_previous = _read_json(args.previous)
        if isinstance(raw_previous, dict) and "snapshot" in raw_previous:
            raw_previous = raw_previous["snapshot"]
        history = raw_previous if isinstance(raw_previous, list) else [raw_previous]

    store = JsonlEventStore(args.events_dir or settings.events_dir)
    try:
        result = run_pipeline(
            store,
            args.store_id,
            raw_inventory,
            history=history,
            settings=settings,
        )
    except VerdictError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict(include_generated_at=True), indent=2))
    else:
        _print_summary(result)


def main() -> None:
    from .config import get_settings

    parser = argparse.ArgumentParser(
        prog="velocity_verdict",
        description="Velocity Verdict - inventory velocity to ranked decisions",
    )
    subparsers = parser.add_subparsers(dest="command")

    # run
    run_parser = subparsers.add_parser("run", help="Analyse an inventory snapshot")
    run_parser.add_argument(
        "--inventory",
        required=True,
        help="JSON file with a list of inventory items (or {\"items\": [...]})",
    )
    run_parser.add_argument(
        "--store-id",
        required=True,
        help="Store whose sales events are read",
    )
    run_parser.add_argument(
        "--events-dir",
        help="Root of the JSONL event store (default: VERDICT_EVENTS_DIR)",
    )
    run_parser.add_argument(
        "--previous",
        help="JSON file with a previous snapshot, a list of them, or a prior --json output",
    )
    run_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full result as JSON",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "run":
        _cmd_run(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

"""Read-only access to the append-only sales event log.

Two backends:
    - InMemoryEventStore  - events held in a list, for dev/testing
    - JsonlEventStore     - daily JSONL files on disk

On-disk layout (one event per line, one file per UTC day):

    <root>/<store_id>/events/YYYY-MM-DD.jsonl

Stores only read. They never write, backfill, or synthesize events; a
window with no files is simply an empty result.

Usage:
    store = JsonlEventStore("data/sales")
    events = await store.query_sales_events("main-street", start, end)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from .errors import EventStoreError
from .models import SalesEvent

logger = logging.getLogger("verdict.event_store")

_STORE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,50}$")


def validate_store_id(store_id: str) -> str:
    """Reject store ids that could escape the event root."""
    if not isinstance(store_id, str) or not _STORE_ID_PATTERN.match(store_id):
        raise EventStoreError(f"Invalid store id: {store_id!r}", store_id=None)
    return store_id


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------


class SalesEventStore(ABC):
    """Abstract sales event source."""

    @abstractmethod
    async def query_sales_events(
        self,
        store_id: str,
        start: datetime,
        end: datetime,
    ) -> list[SalesEvent]:
        """Return events with ``start <= sold_at <= end``, ordered by ``sold_at``.

        Raises:
            EventStoreError: If the events cannot be read.
        """


# ---------------------------------------------------------------------------
# In-memory implementation (dev/testing)
# ---------------------------------------------------------------------------


class InMemoryEventStore(SalesEventStore):
    """Events held in memory. The event list is copied on construction."""

    def __init__(self, events: Iterable[SalesEvent] = ()) -> None:
        self._events: tuple[SalesEvent, ...] = tuple(
            sorted(events, key=lambda e: e.sold_at)
        )

    async def query_sales_events(
        self,
        store_id: str,
        start: datetime,
        end: datetime,
    ) -> list[SalesEvent]:
        return [
            e
            for e in self._events
            if e.store_id == store_id and start <= e.sold_at <= end
        ]


# ---------------------------------------------------------------------------
# JSONL implementation
# ---------------------------------------------------------------------------


class JsonlEventStore(SalesEventStore):
    """Reads daily JSONL event files under ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _events_dir(self, store_id: str) -> Path:
        return self.root / validate_store_id(store_id) / "events"

    def _day_files(self, store_id: str, start: datetime, end: datetime) -> list[Path]:
        events_dir = self._events_dir(store_id)
        files = []
        day = start.date()
        while day <= end.date():
            candidate = events_dir / f"{day.isoformat()}.jsonl"
            if candidate.is_file():
                files.append(candidate)
            day += timedelta(days=1)
        return files

    def _read_file(self, path: Path) -> list[SalesEvent]:
        events: list[SalesEvent] = []
        try:
            with open(path, encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        events.append(SalesEvent.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as exc:
                        logger.warning(
                            "Skipping malformed event %s:%d: %s", path.name, line_no, exc
                        )
        except OSError as exc:
            raise EventStoreError(f"Cannot read {path}: {exc}") from exc
        return events

    def _query(self, store_id: str, start: datetime, end: datetime) -> list[SalesEvent]:
        events: list[SalesEvent] = []
        for path in self._day_files(store_id, start, end):
            events.extend(self._read_file(path))
        selected = [
            e for e in events if e.store_id == store_id and start <= e.sold_at <= end
        ]
        selected.sort(key=lambda e: e.sold_at)
        return selected

    async def query_sales_events(
        self,
        store_id: str,
        start: datetime,
        end: datetime,
    ) -> list[SalesEvent]:
        return await asyncio.to_thread(self._query, store_id, start, end)

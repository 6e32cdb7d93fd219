"""Exceptions raised by the pipeline.

Data defects never raise: they degrade confidence or drop a record and
are reported through :class:`~velocity_verdict.models.DataIssue`. The
exceptions here cover the two cases that do propagate: event store I/O
failures (caught per SKU by the velocity model) and programmer errors
at the public entry points.
"""

from __future__ import annotations


class VerdictError(Exception):
    """Base class for velocity-verdict errors."""


class EventStoreError(VerdictError):
    """Raised by a sales event store when a query cannot be served."""

    def __init__(self, message: str, store_id: str | None = None):
        self.store_id = store_id
        super().__init__(message)


class InvalidInputError(VerdictError, ValueError):
    """Raised when a caller passes arguments of the wrong shape."""

"""Prometheus metrics instrumentation for the freight exchange.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus business counters.
- Business counters updated by the services after their transaction commits.
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

LOAD_TRANSITIONS_TOTAL: Counter = Counter(
    "freight_load_transitions_total",
    "Committed load state transitions",
    ["from_state", "to_state"],
)

BIDS_PLACED: Counter = Counter(
    "freight_bids_placed_total",
    "Bids placed by carriers",
    ["carrier_type"],
)

LOADS_AWARDED: Counter = Counter(
    "freight_loads_awarded_total",
    "Loads awarded to a carrier",
)

INVOICES_PAID: Counter = Counter(
    "freight_invoices_paid_total",
    "Invoices whose payment was confirmed",
)

CONCURRENCY_CONFLICTS: Counter = Counter(
    "freight_concurrency_conflicts_total",
    "Writes rejected because of a stale version",
    ["entity"],
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Excludes health/ready/metrics endpoints from instrumentation to avoid
    noise in dashboards.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)

"""Prometheus metrics instrumentation for the mail correlation service.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus custom business counters.
- ``EMAILS_SENT`` / ``EMAILS_RECEIVED``: Counters labelled by outcome.
- ``THREADS_STALLED``: Counter of threads moved to ``stalled`` by the sweep.
- ``DIGESTS_CREATED``: Counter of newly stored daily digests.
- ``MAILBOX_POLLS``: Gmail inbox polls by outcome.
- ``ALERTS_CREATED``: Automation alerts raised, by rule.

Business metrics are updated where the outcome is decided (not by polling the database).
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

EMAILS_SENT: Counter = Counter(
    "mailtrack_emails_sent_total",
    "Outbound send attempts by outcome",
    ["outcome"],
)

EMAILS_RECEIVED: Counter = Counter(
    "mailtrack_emails_received_total",
    "Inbound messages processed by outcome",
    ["outcome"],
)

THREADS_STALLED: Counter = Counter(
    "mailtrack_threads_stalled_total",
    "Total number of threads transitioned to stalled",
)

DIGESTS_CREATED: Counter = Counter(
    "mailtrack_digests_created_total",
    "Total number of daily digests stored",
)

MAILBOX_POLLS: Counter = Counter(
    "mailtrack_mailbox_polls_total",
    "Gmail inbox polls by outcome",
    ["outcome"],
)

ALERTS_CREATED: Counter = Counter(
    "mailtrack_alerts_created_total",
    "Automation alerts raised, by rule",
    ["rule"],
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

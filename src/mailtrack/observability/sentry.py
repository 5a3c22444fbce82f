"""Error reporting to Sentry, fed by structlog.

ERROR-level log events travel to Sentry through ``structlog_sentry``.  Mail
content and mailbox secrets are stripped from every event before it leaves
the process.
"""

from __future__ import annotations

import logging
from typing import Any

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration
from structlog_sentry import SentryProcessor

# Log-context keys that may carry message content or credentials.
SCRUBBED_KEYS: frozenset[str] = frozenset(
    {"body", "app_password", "access_token", "refresh_token", "authorization"}
)
SCRUBBED = "[scrubbed]"


def scrub_event(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any]:
    """``before_send`` hook: blank out sensitive values in the event extras."""
    extra = event.get("extra")
    if isinstance(extra, dict):
        for key in extra.keys() & SCRUBBED_KEYS:
            extra[key] = SCRUBBED
    return event


def init_sentry(dsn: str, environment: str = "development") -> None:
    """Start the Sentry SDK, or do nothing when *dsn* is empty.

    Args:
        dsn: Sentry DSN.  Empty disables reporting.
        environment: Environment tag attached to every event.
    """
    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1,
        send_default_pii=False,
        before_send=scrub_event,
        # structlog-sentry already reports errors; the logging integration
        # would report each one twice.
        integrations=[LoggingIntegration(event_level=None, level=None)],
    )


def get_sentry_processor() -> structlog.types.Processor:
    """Return the structlog processor that forwards ERROR events to Sentry."""
    return SentryProcessor(event_level=logging.ERROR)

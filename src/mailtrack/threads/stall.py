"""Periodic sweep promoting idle threads to ``stalled``."""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from mailtrack.observability.metrics import THREADS_STALLED
from mailtrack.threads.models import StallSweepResult
from mailtrack.threads.registry import ThreadRegistry
from mailtrack.timestamps import utc_now

logger = structlog.get_logger()

DEFAULT_STALL_THRESHOLD_DAYS = 7


class StallDetector:
    """Select active or awaiting-reply threads idle past a threshold and stall them.

    Safe to run concurrently with live traffic and with itself: a run's own
    writes remove the rows from the next run's selection predicate.

    Args:
        registry: The thread registry to sweep.
        threshold_days: Idle age after which a thread counts as stalled.
    """

    def __init__(
        self,
        registry: ThreadRegistry,
        threshold_days: int = DEFAULT_STALL_THRESHOLD_DAYS,
    ) -> None:
        if threshold_days < 1:
            raise ValueError("threshold_days must be at least 1")
        self._registry = registry
        self._threshold = timedelta(days=threshold_days)

    def sweep(self, now: datetime | None = None) -> StallSweepResult:
        """Run one sweep.

        Args:
            now: Reference time for the threshold.  Defaults to now.

        Returns:
            The number and ids of threads moved to ``stalled``.

        Raises:
            PersistenceError: If the store rejects the bulk update.
        """
        now = now or utc_now()
        cutoff = now - self._threshold
        thread_ids = self._registry.mark_stalled(cutoff, now=now)

        if thread_ids:
            THREADS_STALLED.inc(len(thread_ids))
            logger.info("threads_marked_stalled", count=len(thread_ids))
        else:
            logger.debug("no_threads_to_stall")

        return StallSweepResult(count=len(thread_ids), thread_ids=thread_ids)

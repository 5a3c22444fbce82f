"""Daily digest aggregator.

For each active user, gathers three bounded collections from the CRM
collaborators and folds them into a fixed-priority action list:

- ``high``: any gathered obligation expires within the urgent window
- ``medium``: any pipeline item has stalled
- ``low``: any review item awaits approval

Generation is idempotent per (user, calendar day).  When two generators race
past the existence check, the store's unique key rejects the second insert and
the loser returns the winner's digest.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from mailtrack.digest.models import (
    ActionItem,
    Digest,
    DigestSummary,
    DigestSweepResult,
    ExpiringObligation,
    PendingReviewItem,
    PriorityCounts,
    StalledPipelineItem,
)
from mailtrack.digest.sources import DigestSources
from mailtrack.digest.store import DigestStore
from mailtrack.domain.errors import DigestExistsError, PersistenceError
from mailtrack.domain.types import PRIORITY_ORDER, Priority
from mailtrack.observability.metrics import DIGESTS_CREATED
from mailtrack.timestamps import utc_now

logger = structlog.get_logger()


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'s' if count > 1 else ''}"


def build_action_items(
    expiring: list[ExpiringObligation],
    stalled: list[StalledPipelineItem],
    pending_review: list[PendingReviewItem],
    *,
    urgent_days: int = 30,
    stale_days: int = 7,
) -> list[ActionItem]:
    """Derive the prioritized action list, highest priority first."""
    items: list[ActionItem] = []

    urgent = sum(1 for item in expiring if item.days_until_expiry <= urgent_days)
    if urgent:
        items.append(
            ActionItem(
                priority=Priority.HIGH,
                type="expiring_tariff",
                message=f"{_plural(urgent, 'tariff')} expiring within {urgent_days} days",
                action="Review and start renewal process",
            )
        )
    if stalled:
        items.append(
            ActionItem(
                priority=Priority.MEDIUM,
                type="stalled_csp",
                message=f"{_plural(len(stalled), 'CSP')} with no activity in {stale_days}+ days",
                action="Follow up with carriers or advance pipeline",
            )
        )
    if pending_review:
        items.append(
            ActionItem(
                priority=Priority.LOW,
                type="pending_sop",
                message=f"{_plural(len(pending_review), 'SOP')} awaiting review",
                action="Review and approve SOPs",
            )
        )

    return sorted(items, key=lambda item: PRIORITY_ORDER[item.priority])


def summarize(action_items: list[ActionItem], generated_at: datetime) -> DigestSummary:
    counts = {priority.value: 0 for priority in Priority}
    for item in action_items:
        counts[item.priority.value] += 1
    return DigestSummary(
        generated_at=generated_at,
        total_items=len(action_items),
        priorities=PriorityCounts(**counts),
    )


class DigestAggregator:
    """Generate at most one digest per user per calendar day.

    Args:
        sources: Collaborator queries.
        store: Digest persistence.
        horizon_days: How far ahead to look for expiring obligations.
        urgent_days: Expiry window that raises a ``high`` action item.
        stale_days: Idle age after which a pipeline item counts as stalled.
        top_n: Bound on each gathered collection.
    """

    def __init__(
        self,
        sources: DigestSources,
        store: DigestStore,
        *,
        horizon_days: int = 90,
        urgent_days: int = 30,
        stale_days: int = 7,
        top_n: int = 5,
    ) -> None:
        self._sources = sources
        self._store = store
        self._horizon_days = horizon_days
        self._urgent_days = urgent_days
        self._stale_days = stale_days
        self._top_n = top_n

    def _compose(self, user_id: str, now: datetime) -> Digest:
        expiring = self._sources.expiring_obligations(
            user_id, now, self._horizon_days, self._top_n
        )
        stalled = self._sources.stalled_pipeline_items(
            user_id, now, self._stale_days, self._top_n
        )
        pending = self._sources.pending_review_items(self._top_n)
        action_items = build_action_items(
            expiring,
            stalled,
            pending,
            urgent_days=self._urgent_days,
            stale_days=self._stale_days,
        )
        return Digest(
            user_id=user_id,
            digest_date=now.date(),
            summary=summarize(action_items, now),
            expiring=expiring,
            stalled=stalled,
            pending_review=pending,
            action_items=action_items,
        )

    def _generate(self, user_id: str, now: datetime) -> tuple[Digest, bool]:
        """Return ``(digest, created)`` for *user_id* on ``now``'s date."""
        existing = self._store.get(user_id, now.date())
        if existing is not None:
            logger.debug("digest_exists", user_id=user_id, digest_date=str(now.date()))
            return existing, False

        digest = self._compose(user_id, now)
        try:
            stored = self._store.insert(digest)
        except DigestExistsError:
            winner = self._store.get(user_id, now.date())
            if winner is None:
                raise
            logger.info("digest_insert_lost_race", user_id=user_id)
            return winner, False

        DIGESTS_CREATED.inc()
        logger.info(
            "digest_created",
            user_id=user_id,
            digest_date=str(stored.digest_date),
            total_items=stored.summary.total_items,
        )
        return stored, True

    def generate_for_user(self, user_id: str, *, now: datetime | None = None) -> Digest:
        """Return today's digest for *user_id*, creating it if needed.

        Raises:
            PersistenceError: If the store rejects the write.
        """
        digest, _ = self._generate(user_id, now or utc_now())
        return digest

    def generate_for_all(self, *, now: datetime | None = None) -> DigestSweepResult:
        """Generate today's digest for every active user.

        One user's failure is logged and skipped; the sweep carries on.
        ``digests_created`` counts only digests that did not already exist.
        """
        now = now or utc_now()
        users = self._sources.active_users()
        created = 0
        failed: list[str] = []

        for user in users:
            try:
                _, was_created = self._generate(user.id, now)
            except PersistenceError as exc:
                logger.error("digest_generation_failed", user_id=user.id, error=str(exc))
                failed.append(user.id)
                continue
            except Exception:
                logger.exception("digest_generation_crashed", user_id=user.id)
                failed.append(user.id)
                continue
            created += int(was_created)

        logger.info(
            "digest_sweep_complete",
            users_processed=len(users),
            digests_created=created,
            failed=len(failed),
        )
        return DigestSweepResult(
            users_processed=len(users), digests_created=created, failed_user_ids=failed
        )

"""Tests for DigestStore persistence."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from mailtrack.digest.aggregator import summarize
from mailtrack.digest.models import ActionItem, Digest, PendingReviewItem
from mailtrack.digest.store import DigestStore
from mailtrack.domain.errors import DigestExistsError
from mailtrack.domain.types import Priority


def _digest(now: datetime, user_id: str = "u1") -> Digest:
    actions = [
        ActionItem(
            priority=Priority.LOW,
            type="pending_sop",
            message="1 SOP awaiting review",
            action="Review and approve SOPs",
        )
    ]
    return Digest(
        user_id=user_id,
        digest_date=now.date(),
        summary=summarize(actions, now),
        pending_review=[PendingReviewItem(id="s1", title="SOP s1", created_at=now)],
        action_items=actions,
    )


class TestDigestStore:
    def test_insert_then_get(self, digest_store: DigestStore, now: datetime) -> None:
        stored = digest_store.insert(_digest(now))

        assert stored.id is not None
        fetched = digest_store.get("u1", now.date())
        assert fetched == stored
        assert fetched.summary.priorities.low == 1  # type: ignore[union-attr]
        assert fetched.pending_review[0].created_at == now  # type: ignore[union-attr]

    def test_get_missing(self, digest_store: DigestStore) -> None:
        assert digest_store.get("u1", date(2026, 3, 2)) is None

    def test_one_per_user_per_day(self, digest_store: DigestStore, now: datetime) -> None:
        digest_store.insert(_digest(now))

        with pytest.raises(DigestExistsError):
            digest_store.insert(_digest(now))

        digest_store.insert(_digest(now, user_id="u2"))

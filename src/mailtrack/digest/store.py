"""SQLite-backed daily digest store, one row per (user, calendar day)."""

from __future__ import annotations

import json
import sqlite3
from datetime import date

import structlog
from pydantic import BaseModel, TypeAdapter

from mailtrack.digest.models import (
    ActionItem,
    Digest,
    DigestSummary,
    ExpiringObligation,
    PendingReviewItem,
    StalledPipelineItem,
)
from mailtrack.domain.errors import DigestExistsError, PersistenceError
from mailtrack.schema import LockedConnection, serialized

logger = structlog.get_logger()

_EXPIRING = TypeAdapter(list[ExpiringObligation])
_STALLED = TypeAdapter(list[StalledPipelineItem])
_PENDING = TypeAdapter(list[PendingReviewItem])
_ACTIONS = TypeAdapter(list[ActionItem])


def _dump(items: list[BaseModel]) -> str:
    return json.dumps([item.model_dump(mode="json") for item in items])


def _row_to_digest(row: sqlite3.Row) -> Digest:
    return Digest(
        id=row["id"],
        user_id=row["user_id"],
        digest_date=date.fromisoformat(row["digest_date"]),
        summary=DigestSummary.model_validate_json(row["summary_json"]),
        expiring=_EXPIRING.validate_json(row["expiring_json"]),
        stalled=_STALLED.validate_json(row["stalled_json"]),
        pending_review=_PENDING.validate_json(row["pending_review_json"]),
        action_items=_ACTIONS.validate_json(row["action_items_json"]),
    )


class DigestStore:
    """Persist and look up daily digests.

    The ``UNIQUE (user_id, digest_date)`` constraint is what keeps two racing
    generators from storing two digests for the same day.
    """

    def __init__(self, conn: LockedConnection) -> None:
        self._conn = conn

    @serialized
    def get(self, user_id: str, digest_date: date) -> Digest | None:
        """Return the stored digest for *user_id* on *digest_date*, or ``None``."""
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        row = cursor.execute(
            "SELECT * FROM daily_digests WHERE user_id = ? AND digest_date = ?",
            (user_id, digest_date.isoformat()),
        ).fetchone()
        return _row_to_digest(row) if row else None

    @serialized
    def insert(self, digest: Digest) -> Digest:
        """Store *digest* and return it with its row id.

        Raises:
            DigestExistsError: If a digest for the same user and day exists.
            PersistenceError: If the store rejects the write for any other reason.
        """
        digest_date = digest.digest_date.isoformat()
        try:
            cursor = self._conn.execute(
                """
                INSERT INTO daily_digests (
                    user_id, digest_date, summary_json, expiring_json,
                    stalled_json, pending_review_json, action_items_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    digest.user_id,
                    digest_date,
                    digest.summary.model_dump_json(),
                    _dump(list(digest.expiring)),
                    _dump(list(digest.stalled)),
                    _dump(list(digest.pending_review)),
                    _dump(list(digest.action_items)),
                ),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            raise DigestExistsError(digest.user_id, digest_date) from exc
        except sqlite3.Error as exc:
            self._conn.rollback()
            logger.error("digest_insert_failed", user_id=digest.user_id, error=str(exc))
            raise PersistenceError(f"Failed to store digest for user '{digest.user_id}'") from exc

        return digest.model_copy(update={"id": cursor.lastrowid})

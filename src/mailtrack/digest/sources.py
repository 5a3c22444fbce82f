"""Read-only collaborator queries feeding the digest.

The CRM owns ``users``, ``tariffs``, ``pipeline_events`` and ``review_items``;
this module only selects from them.  Each collection is bounded by ``limit``.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from typing import Protocol

from mailtrack.digest.models import (
    ActiveUser,
    ExpiringObligation,
    PendingReviewItem,
    StalledPipelineItem,
)
from mailtrack.schema import LockedConnection, serialized
from mailtrack.timestamps import from_db, to_db

# Pipeline stages that end a pipeline item's life; never reported as stalled.
TERMINAL_STAGES: tuple[str, ...] = ("Awarded", "Declined")

_DAY = timedelta(days=1)


class DigestSources(Protocol):
    """Collaborator data the aggregator reads."""

    def active_users(self) -> list[ActiveUser]: ...

    def expiring_obligations(
        self, user_id: str, now: datetime, horizon_days: int, limit: int
    ) -> list[ExpiringObligation]: ...

    def stalled_pipeline_items(
        self, user_id: str, now: datetime, stale_days: int, limit: int
    ) -> list[StalledPipelineItem]: ...

    def pending_review_items(self, limit: int) -> list[PendingReviewItem]: ...


class SqliteDigestSources:
    """``DigestSources`` over the collaborator tables in the service database."""

    def __init__(self, conn: LockedConnection) -> None:
        self._conn = conn

    @serialized
    def _rows(self, query: str, params: tuple[object, ...]) -> list[sqlite3.Row]:
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        return cursor.execute(query, params).fetchall()

    def active_users(self) -> list[ActiveUser]:
        rows = self._rows(
            "SELECT id, full_name, email FROM users WHERE is_active = 1 ORDER BY id", ()
        )
        return [ActiveUser(id=r["id"], full_name=r["full_name"], email=r["email"]) for r in rows]

    def expiring_obligations(
        self, user_id: str, now: datetime, horizon_days: int, limit: int
    ) -> list[ExpiringObligation]:
        """Active tariffs owned by *user_id* expiring within the horizon, soonest first."""
        rows = self._rows(
            """
            SELECT id, reference, customer_name, carrier_name, expiry_date
            FROM tariffs
            WHERE owner_id = ? AND status = 'active'
              AND expiry_date >= ? AND expiry_date <= ?
            ORDER BY expiry_date ASC
            LIMIT ?
            """,
            (user_id, to_db(now), to_db(now + timedelta(days=horizon_days)), limit),
        )
        items = []
        for row in rows:
            expiry = from_db(row["expiry_date"])
            items.append(
                ExpiringObligation(
                    id=row["id"],
                    reference=row["reference"],
                    customer_name=row["customer_name"],
                    carrier_name=row["carrier_name"],
                    expiry_date=expiry,
                    days_until_expiry=(expiry - now) // _DAY,
                )
            )
        return items

    def stalled_pipeline_items(
        self, user_id: str, now: datetime, stale_days: int, limit: int
    ) -> list[StalledPipelineItem]:
        """Active, non-terminal pipeline items idle for *stale_days*, oldest first."""
        placeholders = ", ".join("?" for _ in TERMINAL_STAGES)
        rows = self._rows(
            f"""
            SELECT id, title, stage, customer_name, updated_at
            FROM pipeline_events
            WHERE owner_id = ? AND status = 'active'
              AND stage NOT IN ({placeholders})
              AND updated_at <= ?
            ORDER BY updated_at ASC
            LIMIT ?
            """,
            (user_id, *TERMINAL_STAGES, to_db(now - timedelta(days=stale_days)), limit),
        )
        items = []
        for row in rows:
            updated = from_db(row["updated_at"])
            items.append(
                StalledPipelineItem(
                    id=row["id"],
                    title=row["title"],
                    stage=row["stage"],
                    customer_name=row["customer_name"],
                    updated_at=updated,
                    days_idle=(now - updated) // _DAY,
                )
            )
        return items

    def pending_review_items(self, limit: int) -> list[PendingReviewItem]:
        """Review items awaiting approval, oldest first."""
        rows = self._rows(
            """
            SELECT id, title, created_at FROM review_items
            WHERE status = 'pending_review'
            ORDER BY created_at ASC
            LIMIT ?
            """,
            (limit,),
        )
        return [
            PendingReviewItem(id=r["id"], title=r["title"], created_at=from_db(r["created_at"]))
            for r in rows
        ]

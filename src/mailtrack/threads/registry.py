"""SQLite-backed thread registry: token lookups and lifecycle transitions.

Every status change is validated against the thread transition map.  Single
row changes use a compare-and-set ``UPDATE ... WHERE status = ?`` so two
writers racing on the same thread never apply an edge that the map forbids;
bulk changes (the stall sweep) use the map's source statuses as their SQL
predicate.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime

import structlog

from mailtrack.domain.errors import PersistenceError, TokenCollisionError
from mailtrack.domain.types import ThreadStatus
from mailtrack.lifecycle.machine import ThreadLifecycle
from mailtrack.lifecycle.transitions import THREAD_TRANSITIONS, ThreadEvent, statuses_accepting
from mailtrack.schema import LockedConnection, serialized
from mailtrack.threads.models import Thread
from mailtrack.timestamps import from_db, to_db, utc_now

logger = structlog.get_logger()

# Compare-and-set attempts before giving up on a contended row.
_CAS_ATTEMPTS = 3


def _row_to_thread(row: sqlite3.Row) -> Thread:
    return Thread(
        id=row["id"],
        token=row["token"],
        status=ThreadStatus(row["status"]),
        pipeline_event_id=row["pipeline_event_id"],
        customer_id=row["customer_id"],
        carrier_id=row["carrier_id"],
        created_by=row["created_by"],
        last_activity_at=from_db(row["last_activity_at"]),
        created_at=from_db(row["created_at"]),
        updated_at=from_db(row["updated_at"]),
    )


class ThreadRegistry:
    """Own thread rows and token-to-thread lookups.

    Invariant: at most one non-closed thread per token, enforced by the
    ``idx_threads_open_token`` partial unique index.
    """

    def __init__(self, conn: LockedConnection) -> None:
        """Initialize with an open database connection.

        Args:
            conn: Connection from ``mailtrack.schema.open_database``; its
                  lock is shared with every other store on the database.
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def _fetch_one(self, query: str, params: tuple[object, ...]) -> Thread | None:
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        row = cursor.execute(query, params).fetchone()
        return _row_to_thread(row) if row else None

    @serialized
    def get(self, thread_id: str) -> Thread | None:
        """Return the thread with *thread_id*, or ``None``."""
        return self._fetch_one("SELECT * FROM email_threads WHERE id = ?", (thread_id,))

    @serialized
    def find_open(self, token: str) -> Thread | None:
        """Return the non-closed thread for *token*, or ``None``."""
        return self._fetch_one(
            "SELECT * FROM email_threads WHERE token = ? AND status != ?",
            (token, ThreadStatus.CLOSED.value),
        )

    @serialized
    def find_latest(self, token: str) -> Thread | None:
        """Return the open thread for *token*, else its most recently closed one."""
        return self._fetch_one(
            "SELECT * FROM email_threads WHERE token = ? "
            "ORDER BY (status = ?) ASC, created_at DESC LIMIT 1",
            (token, ThreadStatus.CLOSED.value),
        )

    @serialized
    def token_in_use(self, token: str) -> bool:
        """Return True if any thread, open or closed, was ever keyed by *token*."""
        row = self._conn.execute(
            "SELECT 1 FROM email_threads WHERE token = ? LIMIT 1", (token,)
        ).fetchone()
        return row is not None

    @serialized
    def list_by_status(self, status: ThreadStatus) -> list[Thread]:
        """Return all threads currently in *status*, oldest activity first."""
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        rows = cursor.execute(
            "SELECT * FROM email_threads WHERE status = ? ORDER BY last_activity_at ASC",
            (status.value,),
        ).fetchall()
        return [_row_to_thread(row) for row in rows]

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    @serialized
    def create(
        self,
        token: str,
        *,
        pipeline_event_id: str | None = None,
        customer_id: str | None = None,
        carrier_id: str | None = None,
        created_by: str | None = None,
        now: datetime | None = None,
    ) -> Thread:
        """Insert a new active thread for *token*.

        Raises:
            TokenCollisionError: If a non-closed thread already uses *token*.
            PersistenceError: If the store rejects the insert for any other
                reason.
        """
        stamp = to_db(now or utc_now())
        thread_id = str(uuid.uuid4())
        try:
            self._conn.execute(
                """
                INSERT INTO email_threads (
                    id, token, status, pipeline_event_id, customer_id, carrier_id,
                    created_by, last_activity_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    thread_id,
                    token,
                    ThreadStatus.ACTIVE.value,
                    pipeline_event_id,
                    customer_id,
                    carrier_id,
                    created_by,
                    stamp,
                    stamp,
                    stamp,
                ),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            raise TokenCollisionError(token) from exc
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceError(f"Failed to create thread for token '{token}'") from exc

        thread = self.get(thread_id)
        if thread is None:
            raise PersistenceError(f"Thread '{thread_id}' vanished after insert")
        logger.info("thread_created", thread_id=thread_id, token=token)
        return thread

    @serialized
    def transition(
        self,
        thread_id: str,
        event: ThreadEvent,
        *,
        now: datetime | None = None,
        bump_activity: bool = False,
    ) -> Thread:
        """Apply a lifecycle *event* to one thread.

        Args:
            thread_id: The thread to transition.
            event: The lifecycle event.
            now: Timestamp for ``updated_at`` (and ``last_activity_at`` when
                *bump_activity* is set).  Defaults to the current time.
            bump_activity: Also move ``last_activity_at`` to *now*.

        Returns:
            The thread after the transition.

        Raises:
            InvalidTransitionError: If *event* is not valid from the thread's
                current status (including any event on a closed thread).
            PersistenceError: If the thread does not exist, the store rejects
                the write, or the row keeps changing underneath us.
        """
        stamp = to_db(now or utc_now())
        for _ in range(_CAS_ATTEMPTS):
            current = self.get(thread_id)
            if current is None:
                raise PersistenceError(f"Thread '{thread_id}' not found")

            new_status = ThreadLifecycle(current.status).trigger(event)

            assignments = "status = ?, updated_at = ?"
            params: list[object] = [new_status.value, stamp]
            if bump_activity:
                assignments += ", last_activity_at = ?"
                params.append(stamp)
            params.extend([thread_id, current.status.value])

            try:
                cursor = self._conn.execute(
                    f"UPDATE email_threads SET {assignments} WHERE id = ? AND status = ?",
                    params,
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceError(f"Failed to transition thread '{thread_id}'") from exc

            if cursor.rowcount == 1:
                updated = self.get(thread_id)
                if updated is None:
                    raise PersistenceError(f"Thread '{thread_id}' vanished after update")
                return updated

            logger.debug("thread_transition_contended", thread_id=thread_id, event=str(event))

        raise PersistenceError(f"Thread '{thread_id}' changed concurrently, giving up")

    def touch(self, thread_id: str, event: ThreadEvent, *, now: datetime | None = None) -> Thread:
        """Record new activity: reset status to active and bump the activity time."""
        return self.transition(thread_id, event, now=now, bump_activity=True)

    def mark_awaiting_reply(self, thread_id: str, *, now: datetime | None = None) -> Thread:
        """Flag an active thread as waiting on the counterparty."""
        return self.transition(thread_id, ThreadEvent.AWAIT_REPLY, now=now)

    def close(self, thread_id: str, *, now: datetime | None = None) -> Thread:
        """Close a thread as the result of an explicit business action."""
        return self.transition(thread_id, ThreadEvent.CLOSE, now=now)

    @serialized
    def mark_stalled(self, cutoff: datetime, *, now: datetime | None = None) -> list[str]:
        """Bulk-transition idle threads to stalled.

        Selects threads whose status accepts the ``stall`` event and whose
        ``last_activity_at`` is strictly older than *cutoff*, then moves them
        to ``stalled`` in the same write transaction.  ``last_activity_at`` is
        left untouched.  Because ``stalled`` does not accept ``stall``, a
        repeat run selects nothing until new activity arrives.

        Args:
            cutoff: Threads idle since before this instant are stalled.
            now: Timestamp for ``updated_at``.  Defaults to the current time.

        Returns:
            The ids of the threads that were transitioned, oldest first.
        """
        sources = sorted(s.value for s in statuses_accepting(ThreadEvent.STALL))
        placeholders = ", ".join("?" for _ in sources)
        cutoff_stamp = to_db(cutoff)
        stamp = to_db(now or utc_now())
        target = THREAD_TRANSITIONS[(ThreadStatus.ACTIVE, ThreadEvent.STALL)]

        try:
            self._conn.execute("BEGIN IMMEDIATE")
            rows = self._conn.execute(
                f"SELECT id FROM email_threads WHERE status IN ({placeholders}) "
                "AND last_activity_at < ? ORDER BY last_activity_at ASC",
                [*sources, cutoff_stamp],
            ).fetchall()
            thread_ids = [row[0] for row in rows]
            if thread_ids:
                id_placeholders = ", ".join("?" for _ in thread_ids)
                self._conn.execute(
                    f"UPDATE email_threads SET status = ?, updated_at = ? "
                    f"WHERE id IN ({id_placeholders}) AND status IN ({placeholders})",
                    [target.value, stamp, *thread_ids, *sources],
                )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceError("Failed to mark threads as stalled") from exc

        return thread_ids

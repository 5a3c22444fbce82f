"""Follow-up task store with reply-driven auto-closure."""

from __future__ import annotations

import sqlite3
from datetime import datetime

from mailtrack.domain.errors import PersistenceError
from mailtrack.domain.types import TaskStatus
from mailtrack.schema import LockedConnection, serialized
from mailtrack.threads.models import FollowUpTask
from mailtrack.timestamps import from_db, to_db, utc_now


def _row_to_task(row: sqlite3.Row) -> FollowUpTask:
    return FollowUpTask(
        id=row["id"],
        thread_id=row["thread_id"],
        status=TaskStatus(row["status"]),
        auto_close_on_reply=bool(row["auto_close_on_reply"]),
        title=row["title"],
        due_at=from_db(row["due_at"]) if row["due_at"] else None,
        completed_at=from_db(row["completed_at"]) if row["completed_at"] else None,
        completion_notes=row["completion_notes"],
        created_by=row["created_by"],
    )


class FollowUpTaskStore:
    """Persist follow-up tasks owned by conversation threads.

    Tasks are created by external collaborators when a sender expects a
    reply; the inbound receiver completes them in bulk when one lands.
    """

    def __init__(self, conn: LockedConnection) -> None:
        self._conn = conn

    @serialized
    def create(
        self,
        thread_id: str,
        *,
        title: str = "",
        auto_close_on_reply: bool = True,
        due_at: datetime | None = None,
        created_by: str | None = None,
    ) -> FollowUpTask:
        """Insert a pending follow-up task for *thread_id*.

        Raises:
            PersistenceError: If the store rejects the insert.
        """
        try:
            cursor = self._conn.execute(
                """
                INSERT INTO email_follow_up_tasks (
                    thread_id, status, auto_close_on_reply, title, due_at, created_by
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    thread_id,
                    TaskStatus.PENDING.value,
                    int(auto_close_on_reply),
                    title,
                    to_db(due_at) if due_at else None,
                    created_by,
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceError(f"Failed to create follow-up task for '{thread_id}'") from exc

        task = self.get(cursor.lastrowid or 0)
        if task is None:
            raise PersistenceError("Follow-up task vanished after insert")
        return task

    @serialized
    def get(self, task_id: int) -> FollowUpTask | None:
        """Return the task with *task_id*, or ``None``."""
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        row = cursor.execute(
            "SELECT * FROM email_follow_up_tasks WHERE id = ?", (task_id,)
        ).fetchone()
        return _row_to_task(row) if row else None

    @serialized
    def list_for_thread(self, thread_id: str) -> list[FollowUpTask]:
        """Return every task owned by *thread_id*, oldest first."""
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        rows = cursor.execute(
            "SELECT * FROM email_follow_up_tasks WHERE thread_id = ? ORDER BY id ASC",
            (thread_id,),
        ).fetchall()
        return [_row_to_task(row) for row in rows]

    @serialized
    def list_overdue(self, now: datetime) -> list[FollowUpTask]:
        """Return pending tasks whose due time is before *now*, earliest due first."""
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        rows = cursor.execute(
            """
            SELECT * FROM email_follow_up_tasks
            WHERE status = ? AND due_at IS NOT NULL AND due_at < ?
            ORDER BY due_at ASC
            """,
            (TaskStatus.PENDING.value, to_db(now)),
        ).fetchall()
        return [_row_to_task(row) for row in rows]

    @serialized
    def close_on_reply(
        self,
        thread_id: str,
        sender: str,
        *,
        now: datetime | None = None,
    ) -> int:
        """Complete every pending, auto-close-eligible task on *thread_id*.

        The ``status = 'pending'`` predicate makes this idempotent: a second
        call for the same reply matches no rows.

        Args:
            thread_id: The thread a reply just landed on.
            sender: The reply's sender address, recorded in the notes.
            now: Completion timestamp.  Defaults to the current time.

        Returns:
            The number of tasks transitioned to completed.

        Raises:
            PersistenceError: If the store rejects the update.
        """
        stamp = to_db(now or utc_now())
        try:
            cursor = self._conn.execute(
                """
                UPDATE email_follow_up_tasks
                SET status = ?, completed_at = ?, completion_notes = ?
                WHERE thread_id = ? AND auto_close_on_reply = 1 AND status = ?
                """,
                (
                    TaskStatus.COMPLETED.value,
                    stamp,
                    f"Auto-closed: Reply received from {sender}",
                    thread_id,
                    TaskStatus.PENDING.value,
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceError(f"Failed to close follow-up tasks for '{thread_id}'") from exc
        return cursor.rowcount

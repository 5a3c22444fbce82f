"""Append-only log of outbound and inbound email activities."""

from __future__ import annotations

import json
import sqlite3

from mailtrack.domain.errors import DuplicateMessageError, PersistenceError
from mailtrack.domain.types import Direction
from mailtrack.schema import LockedConnection, serialized
from mailtrack.threads.models import EmailActivity
from mailtrack.timestamps import from_db, to_db


def _row_to_activity(row: sqlite3.Row) -> EmailActivity:
    return EmailActivity(
        id=row["id"],
        thread_id=row["thread_id"],
        token=row["token"],
        message_id=row["message_id"],
        in_reply_to=row["in_reply_to"],
        direction=Direction(row["direction"]),
        from_email=row["from_email"],
        from_name=row["from_name"],
        to_emails=json.loads(row["to_emails"]),
        cc_emails=json.loads(row["cc_emails"]),
        subject=row["subject"],
        body=row["body"],
        sent_at=from_db(row["sent_at"]),
        is_thread_starter=bool(row["is_thread_starter"]),
        pipeline_event_id=row["pipeline_event_id"],
        customer_id=row["customer_id"],
        carrier_id=row["carrier_id"],
        created_by=row["created_by"],
    )


class ActivityLog:
    """Persist email activities; rows are never updated or deleted.

    Concurrent appends for the same token are independent inserts, so neither
    is lost.  A non-empty ``message_id`` is unique across the log.
    """

    def __init__(self, conn: LockedConnection) -> None:
        self._conn = conn

    @serialized
    def append(self, activity: EmailActivity) -> EmailActivity:
        """Insert *activity* and return it with its assigned row id.

        Raises:
            DuplicateMessageError: If the message id is already recorded.
            PersistenceError: If the store rejects the insert.
        """
        try:
            cursor = self._conn.execute(
                """
                INSERT INTO email_activities (
                    thread_id, token, message_id, in_reply_to, direction,
                    from_email, from_name, to_emails, cc_emails, subject, body,
                    sent_at, is_thread_starter, pipeline_event_id, customer_id,
                    carrier_id, created_by
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    activity.thread_id,
                    activity.token,
                    activity.message_id,
                    activity.in_reply_to,
                    activity.direction.value,
                    activity.from_email,
                    activity.from_name,
                    json.dumps(activity.to_emails),
                    json.dumps(activity.cc_emails),
                    activity.subject,
                    activity.body,
                    to_db(activity.sent_at),
                    int(activity.is_thread_starter),
                    activity.pipeline_event_id,
                    activity.customer_id,
                    activity.carrier_id,
                    activity.created_by,
                ),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            if activity.message_id and self.find_by_message_id(activity.message_id):
                raise DuplicateMessageError(activity.message_id) from exc
            raise PersistenceError("Failed to record email activity") from exc
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceError("Failed to record email activity") from exc

        return activity.model_copy(update={"id": cursor.lastrowid})

    def _fetch(self, query: str, params: tuple[object, ...]) -> list[EmailActivity]:
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        return [_row_to_activity(row) for row in cursor.execute(query, params).fetchall()]

    @serialized
    def find_by_message_id(self, message_id: str) -> EmailActivity | None:
        """Return the activity recorded under *message_id*, or ``None``."""
        if not message_id:
            return None
        rows = self._fetch(
            "SELECT * FROM email_activities WHERE message_id = ? LIMIT 1", (message_id,)
        )
        return rows[0] if rows else None

    @serialized
    def thread_starter(self, token: str) -> EmailActivity | None:
        """Return the first outbound activity that opened *token*, or ``None``."""
        rows = self._fetch(
            "SELECT * FROM email_activities WHERE token = ? AND is_thread_starter = 1 "
            "ORDER BY id ASC LIMIT 1",
            (token,),
        )
        return rows[0] if rows else None

    @serialized
    def list_for_token(self, token: str) -> list[EmailActivity]:
        """Return every activity for *token* in insertion order."""
        return self._fetch(
            "SELECT * FROM email_activities WHERE token = ? ORDER BY id ASC", (token,)
        )

"""Alert store for the email automations."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime

from mailtrack.domain.errors import PersistenceError
from mailtrack.domain.types import AlertRule, AlertStatus
from mailtrack.schema import LockedConnection, serialized
from mailtrack.threads.models import Alert
from mailtrack.timestamps import from_db, to_db, utc_now


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        id=row["id"],
        rule=AlertRule(row["rule"]),
        entity_id=row["entity_id"],
        user_id=row["user_id"],
        message=row["message"],
        details=json.loads(row["details_json"]),
        status=AlertStatus(row["status"]),
        created_at=from_db(row["created_at"]),
        resolved_at=from_db(row["resolved_at"]) if row["resolved_at"] else None,
    )


class AlertStore:
    """Persist automation alerts.

    At most one alert per ``(rule, entity_id)`` is open at a time; the
    partial unique index enforces it, so concurrent automation runs cannot
    raise the same alert twice.
    """

    def __init__(self, conn: LockedConnection) -> None:
        self._conn = conn

    @serialized
    def create_if_absent(
        self,
        rule: AlertRule,
        entity_id: str,
        message: str,
        *,
        user_id: str | None = None,
        details: dict[str, str] | None = None,
        now: datetime | None = None,
    ) -> Alert | None:
        """Open an alert unless one is already open for *rule* and *entity_id*.

        Returns:
            The new alert, or ``None`` when an open alert already exists.

        Raises:
            PersistenceError: If the store rejects the insert.
        """
        try:
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO email_alerts (
                    rule, entity_id, user_id, message, details_json, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rule.value,
                    entity_id,
                    user_id,
                    message,
                    json.dumps(details or {}),
                    AlertStatus.OPEN.value,
                    to_db(now or utc_now()),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceError(f"Failed to create {rule} alert for '{entity_id}'") from exc

        if cursor.rowcount == 0:
            return None
        return self.get(cursor.lastrowid or 0)

    @serialized
    def get(self, alert_id: int) -> Alert | None:
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        row = cursor.execute("SELECT * FROM email_alerts WHERE id = ?", (alert_id,)).fetchone()
        return _row_to_alert(row) if row else None

    @serialized
    def list_open(self, user_id: str | None = None) -> list[Alert]:
        """Return open alerts, newest first, optionally only those owned by *user_id*."""
        query = "SELECT * FROM email_alerts WHERE status = ?"
        params: tuple[object, ...] = (AlertStatus.OPEN.value,)
        if user_id is not None:
            query += " AND user_id = ?"
            params += (user_id,)
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        rows = cursor.execute(query + " ORDER BY id DESC", params).fetchall()
        return [_row_to_alert(row) for row in rows]

    @serialized
    def resolve(self, alert_id: int, *, now: datetime | None = None) -> Alert | None:
        """Mark an open alert resolved.

        Resolving an already resolved alert leaves it untouched.

        Returns:
            The alert after the update, or ``None`` if no such alert exists.

        Raises:
            PersistenceError: If the store rejects the update.
        """
        try:
            self._conn.execute(
                "UPDATE email_alerts SET status = ?, resolved_at = ? WHERE id = ? AND status = ?",
                (
                    AlertStatus.RESOLVED.value,
                    to_db(now or utc_now()),
                    alert_id,
                    AlertStatus.OPEN.value,
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceError(f"Failed to resolve alert {alert_id}") from exc
        return self.get(alert_id)

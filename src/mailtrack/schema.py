"""SQLite schema for threads, activities, tasks, credentials, and digests.

Uniqueness constraints here carry the service's concurrency guarantees:

- at most one non-closed thread per token (partial unique index)
- at most one activity per non-empty message id
- at most one credential per user (primary key)
- at most one digest per user per calendar day
- at most one open alert per rule and entity

The collaborator tables (``users``, ``tariffs``, ``pipeline_events``,
``review_items``) are owned by the surrounding CRM and only read here.
"""

from __future__ import annotations

import functools
import sqlite3
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

_F = TypeVar("_F", bound=Callable[..., Any])


class LockedConnection(sqlite3.Connection):
    """Connection shared by the request handlers and background sweeps.

    Transaction state belongs to the connection, not to the calling thread,
    so a unit of work must hold ``lock`` from its first statement until its
    commit or rollback.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.lock = threading.RLock()


def serialized(method: _F) -> _F:
    """Run a store method while holding its connection's lock.

    The decorated object must keep its ``LockedConnection`` as ``_conn``.
    The lock is re-entrant, so serialized methods may call each other.
    """

    @functools.wraps(method)
    def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        with self._conn.lock:
            return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


def open_database(db_path: Path | str) -> LockedConnection:
    """Open the service database with WAL mode and foreign keys enabled.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.

    Returns:
        An open LockedConnection with all tables created.
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False, factory=LockedConnection)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    init_schema(conn)
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create every table and index if it does not already exist.

    Args:
        conn: An open sqlite3.Connection.
    """
    init_thread_tables(conn)
    init_credential_table(conn)
    init_digest_table(conn)
    init_sync_table(conn)
    init_alert_table(conn)
    init_collaborator_tables(conn)


def init_thread_tables(conn: sqlite3.Connection) -> None:
    """Create the thread, activity, and follow-up task tables."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS email_threads (
            id TEXT PRIMARY KEY,
            token TEXT NOT NULL,
            status TEXT NOT NULL
                CHECK (status IN ('active', 'awaiting_reply', 'stalled', 'closed')),
            pipeline_event_id TEXT,
            customer_id TEXT,
            carrier_id TEXT,
            created_by TEXT,
            last_activity_at TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        )
    """)
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_threads_open_token "
        "ON email_threads (token) WHERE status != 'closed'"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_threads_status_activity "
        "ON email_threads (status, last_activity_at)"
    )

    conn.execute("""
        CREATE TABLE IF NOT EXISTS email_activities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            thread_id TEXT REFERENCES email_threads (id),
            token TEXT NOT NULL,
            message_id TEXT NOT NULL DEFAULT '',
            in_reply_to TEXT,
            direction TEXT NOT NULL CHECK (direction IN ('outbound', 'inbound')),
            from_email TEXT NOT NULL,
            from_name TEXT,
            to_emails TEXT NOT NULL DEFAULT '[]',
            cc_emails TEXT NOT NULL DEFAULT '[]',
            subject TEXT NOT NULL,
            body TEXT NOT NULL DEFAULT '',
            sent_at TEXT NOT NULL,
            is_thread_starter INTEGER NOT NULL DEFAULT 0,
            pipeline_event_id TEXT,
            customer_id TEXT,
            carrier_id TEXT,
            created_by TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        )
    """)
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_activities_message_id "
        "ON email_activities (message_id) WHERE message_id != ''"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_activities_token ON email_activities (token)")

    conn.execute("""
        CREATE TABLE IF NOT EXISTS email_follow_up_tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            thread_id TEXT NOT NULL REFERENCES email_threads (id),
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'completed')),
            auto_close_on_reply INTEGER NOT NULL DEFAULT 1,
            title TEXT NOT NULL DEFAULT '',
            due_at TEXT,
            completed_at TEXT,
            completion_notes TEXT,
            created_by TEXT,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        )
    """)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_tasks_thread_status "
        "ON email_follow_up_tasks (thread_id, status)"
    )

    conn.commit()


def init_credential_table(conn: sqlite3.Connection) -> None:
    """Create the mailbox credential table (one row per user)."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS mailbox_credentials (
            user_id TEXT PRIMARY KEY,
            kind TEXT NOT NULL CHECK (kind IN ('oauth', 'smtp')),
            email_address TEXT NOT NULL,
            app_password TEXT,
            access_token TEXT,
            refresh_token TEXT,
            token_expiry TEXT,
            smtp_host TEXT,
            smtp_port INTEGER,
            updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        )
    """)
    conn.commit()


def init_digest_table(conn: sqlite3.Connection) -> None:
    """Create the daily digest table keyed by (user, day)."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS daily_digests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            digest_date TEXT NOT NULL,
            summary_json TEXT NOT NULL,
            expiring_json TEXT NOT NULL DEFAULT '[]',
            stalled_json TEXT NOT NULL DEFAULT '[]',
            pending_review_json TEXT NOT NULL DEFAULT '[]',
            action_items_json TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            UNIQUE (user_id, digest_date)
        )
    """)
    conn.commit()


def init_sync_table(conn: sqlite3.Connection) -> None:
    """Create the per-user Gmail history cursor table."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS gmail_sync_state (
            user_id TEXT PRIMARY KEY,
            last_history_id TEXT NOT NULL,
            last_checked_at TEXT NOT NULL
        )
    """)
    conn.commit()


def init_alert_table(conn: sqlite3.Connection) -> None:
    """Create the automation alert table."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS email_alerts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            rule TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            user_id TEXT,
            message TEXT NOT NULL,
            details_json TEXT NOT NULL DEFAULT '{}',
            status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'resolved')),
            created_at TEXT NOT NULL,
            resolved_at TEXT
        )
    """)
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_open_entity "
        "ON email_alerts (rule, entity_id) WHERE status = 'open'"
    )
    conn.commit()


def init_collaborator_tables(conn: sqlite3.Connection) -> None:
    """Create the read-only collaborator tables consulted by the digest."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            full_name TEXT NOT NULL DEFAULT '',
            email TEXT NOT NULL DEFAULT '',
            is_active INTEGER NOT NULL DEFAULT 1
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS tariffs (
            id TEXT PRIMARY KEY,
            reference TEXT NOT NULL DEFAULT '',
            owner_id TEXT,
            customer_name TEXT,
            carrier_name TEXT,
            status TEXT NOT NULL DEFAULT 'active',
            expiry_date TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS pipeline_events (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL DEFAULT '',
            stage TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'active',
            owner_id TEXT,
            customer_name TEXT,
            updated_at TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS review_items (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'pending_review',
            created_at TEXT NOT NULL
        )
    """)
    conn.commit()

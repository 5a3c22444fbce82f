"""Fixtures for digest tests: collaborator rows seeded straight into SQLite."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from datetime import datetime

import pytest

from mailtrack.digest.aggregator import DigestAggregator
from mailtrack.digest.sources import SqliteDigestSources
from mailtrack.digest.store import DigestStore
from mailtrack.timestamps import to_db

Seeder = Callable[..., None]


@pytest.fixture
def sources(conn: sqlite3.Connection) -> SqliteDigestSources:
    return SqliteDigestSources(conn)


@pytest.fixture
def digest_store(conn: sqlite3.Connection) -> DigestStore:
    return DigestStore(conn)


@pytest.fixture
def aggregator(sources: SqliteDigestSources, digest_store: DigestStore) -> DigestAggregator:
    return DigestAggregator(sources, digest_store)


@pytest.fixture
def add_user(conn: sqlite3.Connection) -> Seeder:
    def _add(user_id: str, *, active: bool = True) -> None:
        conn.execute(
            "INSERT INTO users (id, full_name, email, is_active) VALUES (?, ?, ?, ?)",
            (user_id, f"User {user_id}", f"{user_id}@freight.example", int(active)),
        )
        conn.commit()

    return _add


@pytest.fixture
def add_tariff(conn: sqlite3.Connection) -> Seeder:
    def _add(
        tariff_id: str,
        owner_id: str,
        expiry: datetime,
        *,
        status: str = "active",
        customer: str = "Acme Foods",
    ) -> None:
        conn.execute(
            "INSERT INTO tariffs (id, reference, owner_id, customer_name, carrier_name, "
            "status, expiry_date) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (tariff_id, f"REF-{tariff_id}", owner_id, customer, "Blue Line", status, to_db(expiry)),
        )
        conn.commit()

    return _add


@pytest.fixture
def add_pipeline_item(conn: sqlite3.Connection) -> Seeder:
    def _add(
        item_id: str,
        owner_id: str,
        updated: datetime,
        *,
        stage: str = "Negotiating",
        status: str = "active",
    ) -> None:
        conn.execute(
            "INSERT INTO pipeline_events (id, title, stage, status, owner_id, customer_name, "
            "updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (item_id, f"CSP {item_id}", stage, status, owner_id, "Acme Foods", to_db(updated)),
        )
        conn.commit()

    return _add


@pytest.fixture
def add_review_item(conn: sqlite3.Connection) -> Seeder:
    def _add(item_id: str, created: datetime, *, status: str = "pending_review") -> None:
        conn.execute(
            "INSERT INTO review_items (id, title, status, created_at) VALUES (?, ?, ?, ?)",
            (item_id, f"SOP {item_id}", status, to_db(created)),
        )
        conn.commit()

    return _add

"""Shared pytest fixtures for the mail correlation service test suite."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from pydantic import SecretStr

from mailtrack.auth.credentials import CredentialStore
from mailtrack.auth.models import MailboxCredential
from mailtrack.domain.types import CredentialKind
from mailtrack.email.inbound import InboundReceiver
from mailtrack.email.outbound import OutboundSender
from mailtrack.email.tokens import TokenCodec
from mailtrack.schema import LockedConnection, open_database
from mailtrack.threads.activities import ActivityLog
from mailtrack.threads.alerts import AlertStore
from mailtrack.threads.registry import ThreadRegistry
from mailtrack.threads.tasks import FollowUpTaskStore

# A fixed reference instant so timestamp comparisons are deterministic.
NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def conn() -> Iterator[LockedConnection]:
    """In-memory SQLite connection with the full schema created."""
    connection = open_database(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def registry(conn: LockedConnection) -> ThreadRegistry:
    return ThreadRegistry(conn)


@pytest.fixture
def activities(conn: LockedConnection) -> ActivityLog:
    return ActivityLog(conn)


@pytest.fixture
def tasks(conn: LockedConnection) -> FollowUpTaskStore:
    return FollowUpTaskStore(conn)


@pytest.fixture
def alerts(conn: LockedConnection) -> AlertStore:
    return AlertStore(conn)


@pytest.fixture
def credentials(conn: LockedConnection) -> CredentialStore:
    return CredentialStore(conn)


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec("FO")


@pytest.fixture
def smtp_credential() -> MailboxCredential:
    """An app-password credential for the default test user."""
    return MailboxCredential(
        user_id="user-1",
        kind=CredentialKind.SMTP,
        email_address="rep@freight.example",
        app_password=SecretStr("app-pass"),
    )


@pytest.fixture
def transport() -> MagicMock:
    """A mail transport that accepts every message."""
    return MagicMock()


@pytest.fixture
def sender(
    credentials: CredentialStore,
    registry: ThreadRegistry,
    activities: ActivityLog,
    transport: MagicMock,
    codec: TokenCodec,
) -> OutboundSender:
    return OutboundSender(credentials, registry, activities, transport, codec)


@pytest.fixture
def receiver(
    registry: ThreadRegistry,
    activities: ActivityLog,
    tasks: FollowUpTaskStore,
    codec: TokenCodec,
) -> InboundReceiver:
    return InboundReceiver(registry, activities, tasks, codec)

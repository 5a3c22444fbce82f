"""Tests for the Gmail inbox poller and its history cursor store.

The Gmail client is a MagicMock handed in through ``service_builder``.
"""

from __future__ import annotations

import base64
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError
from prometheus_client import REGISTRY
from pydantic import SecretStr

from mailtrack.auth.credentials import CredentialStore
from mailtrack.auth.models import MailboxCredential
from mailtrack.domain.types import CredentialKind, Direction
from mailtrack.email.gmail_inbox import (
    FULL_SYNC_QUERY,
    GmailInboxPoller,
    SyncCursorStore,
    gmail_message_to_inbound,
)
from mailtrack.email.inbound import InboundReceiver
from mailtrack.email.models import PollOutcome
from mailtrack.schema import LockedConnection
from mailtrack.threads.activities import ActivityLog
from mailtrack.threads.models import Thread
from mailtrack.threads.registry import ThreadRegistry

TOKEN = "FO-A1B2C3D4"


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _message(
    gmail_id: str,
    *,
    sender: str = "Dispatch <ops@carrier.example>",
    subject: str = f"Re: Rate request [{TOKEN}]",
    body: str = "We can cover it.",
    message_id: str | None = None,
) -> dict[str, Any]:
    headers = [
        {"name": "From", "value": sender},
        {"name": "To", "value": "Rep <rep@freight.example>"},
        {"name": "Subject", "value": subject},
    ]
    if message_id is not None:
        headers.append({"name": "Message-ID", "value": message_id})
    return {
        "id": gmail_id,
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": headers,
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64(body)}},
                {"mimeType": "text/html", "body": {"data": _b64(f"<p>{body}</p>")}},
            ],
        },
    }


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": str(status), "reason": "err"}), b"{}")


def _polls(outcome: PollOutcome) -> float:
    return (
        REGISTRY.get_sample_value("mailtrack_mailbox_polls_total", {"outcome": outcome.value})
        or 0.0
    )


class FakeGmail:
    """Wires canned responses into a MagicMock Gmail service."""

    def __init__(self, messages: dict[str, dict[str, Any]], history_id: str = "900") -> None:
        self.builder = MagicMock()
        self.users = self.builder.return_value.users.return_value
        self.users.getProfile.return_value.execute.return_value = {"historyId": history_id}
        self.users.messages.return_value.list.return_value.execute.return_value = {
            "messages": [{"id": gmail_id} for gmail_id in messages]
        }
        self.users.messages.return_value.get.side_effect = lambda **kw: MagicMock(
            execute=MagicMock(return_value=messages[kw["id"]])
        )

    @property
    def history_list(self) -> MagicMock:
        return self.users.history.return_value.list

    @property
    def messages_list(self) -> MagicMock:
        return self.users.messages.return_value.list


@pytest.fixture
def oauth_credential() -> MailboxCredential:
    return MailboxCredential(
        user_id="user-1",
        kind=CredentialKind.OAUTH,
        email_address="Rep@Freight.example",
        access_token=SecretStr("ya29.token"),
        refresh_token=SecretStr("1//refresh"),
        token_expiry=datetime.now(tz=UTC) + timedelta(hours=1),
    )


@pytest.fixture
def cursors(conn: LockedConnection) -> SyncCursorStore:
    return SyncCursorStore(conn)


@pytest.fixture
def thread(registry: ThreadRegistry, now: datetime) -> Thread:
    return registry.create(TOKEN, now=now - timedelta(days=2))


@pytest.fixture
def connected(
    credentials: CredentialStore, oauth_credential: MailboxCredential
) -> MailboxCredential:
    return credentials.put(oauth_credential)


def _poller(
    credentials: CredentialStore,
    cursors: SyncCursorStore,
    receiver: InboundReceiver,
    gmail: FakeGmail,
) -> GmailInboxPoller:
    return GmailInboxPoller(
        credentials,
        cursors,
        receiver,
        client_id="client-id",
        client_secret="client-secret",
        service_builder=gmail.builder,
    )


# ---------------------------------------------------------------------------
# Message parsing
# ---------------------------------------------------------------------------


class TestGmailMessageToInbound:
    def test_headers_and_plain_part(self) -> None:
        inbound = gmail_message_to_inbound(
            _message("g-1", message_id="<reply-1@carrier.example>")
        )

        assert inbound.from_ == "Dispatch <ops@carrier.example>"
        assert inbound.to == ["rep@freight.example"]
        assert inbound.subject == f"Re: Rate request [{TOKEN}]"
        assert inbound.body == "We can cover it."
        assert inbound.message_id == "<reply-1@carrier.example>"

    def test_gmail_id_when_header_missing(self) -> None:
        assert gmail_message_to_inbound(_message("g-7")).message_id == "g-7"

    def test_single_part_body(self) -> None:
        message = {
            "id": "g-2",
            "payload": {
                "mimeType": "text/plain",
                "headers": [{"name": "subject", "value": "Hi"}],
                "body": {"data": _b64("plain only")},
            },
        }

        inbound = gmail_message_to_inbound(message)

        assert inbound.subject == "Hi"
        assert inbound.body == "plain only"


# ---------------------------------------------------------------------------
# SyncCursorStore
# ---------------------------------------------------------------------------


class TestSyncCursorStore:
    def test_put_replaces(self, cursors: SyncCursorStore, now: datetime) -> None:
        assert cursors.get("user-1") is None

        cursors.put("user-1", "100", now)
        cursors.put("user-1", "250", now)

        assert cursors.get("user-1") == "250"


# ---------------------------------------------------------------------------
# GmailInboxPoller
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("connected", "thread")
class TestPollUser:
    def test_first_poll_is_full_sync(
        self,
        credentials: CredentialStore,
        cursors: SyncCursorStore,
        receiver: InboundReceiver,
        activities: ActivityLog,
        now: datetime,
    ) -> None:
        gmail = FakeGmail({"g-1": _message("g-1", message_id="<reply-1@carrier.example>")})
        before = _polls(PollOutcome.POLLED)

        result = _poller(credentials, cursors, receiver, gmail).poll_user("user-1", now=now)

        assert result.ok
        assert result.full_sync is True
        assert result.new_messages == 1
        assert result.history_id == "900"
        assert result.checked_at == now
        assert gmail.messages_list.call_args.kwargs["q"] == FULL_SYNC_QUERY
        gmail.history_list.assert_not_called()
        assert cursors.get("user-1") == "900"
        recorded = activities.find_by_message_id("<reply-1@carrier.example>")
        assert recorded is not None
        assert recorded.direction == Direction.INBOUND
        assert _polls(PollOutcome.POLLED) == before + 1

    def test_incremental_poll_follows_pages(
        self,
        credentials: CredentialStore,
        cursors: SyncCursorStore,
        receiver: InboundReceiver,
        now: datetime,
    ) -> None:
        gmail = FakeGmail(
            {
                "g-1": _message("g-1", message_id="<a@carrier.example>"),
                "g-2": _message("g-2", message_id="<b@carrier.example>"),
            }
        )
        gmail.history_list.return_value.execute.side_effect = [
            {
                "history": [{"messagesAdded": [{"message": {"id": "g-1"}}]}],
                "historyId": "150",
                "nextPageToken": "page-2",
            },
            {"history": [{"messagesAdded": [{"message": {"id": "g-2"}}]}], "historyId": "160"},
        ]
        cursors.put("user-1", "100", now)

        result = _poller(credentials, cursors, receiver, gmail).poll_user("user-1", now=now)

        assert result.full_sync is False
        assert result.fetched == 2
        assert result.new_messages == 2
        first, second = gmail.history_list.call_args_list
        assert first.kwargs["startHistoryId"] == "100"
        assert first.kwargs["historyTypes"] == ["messageAdded"]
        assert second.kwargs["pageToken"] == "page-2"
        assert cursors.get("user-1") == "160"
        gmail.messages_list.assert_not_called()

    def test_expired_cursor_falls_back_to_full_sync(
        self,
        credentials: CredentialStore,
        cursors: SyncCursorStore,
        receiver: InboundReceiver,
        now: datetime,
    ) -> None:
        gmail = FakeGmail({"g-1": _message("g-1")}, history_id="990")
        gmail.history_list.return_value.execute.side_effect = _http_error(404)
        cursors.put("user-1", "5", now)

        result = _poller(credentials, cursors, receiver, gmail).poll_user("user-1", now=now)

        assert result.ok
        assert result.full_sync is True
        assert cursors.get("user-1") == "990"

    def test_own_and_repeated_messages_not_counted(
        self,
        credentials: CredentialStore,
        cursors: SyncCursorStore,
        receiver: InboundReceiver,
        activities: ActivityLog,
        now: datetime,
    ) -> None:
        gmail = FakeGmail(
            {
                "g-1": _message("g-1", sender="Rep <rep@freight.example>"),
                "g-2": _message("g-2", message_id="<reply-2@carrier.example>"),
            }
        )
        gmail.history_list.return_value.execute.return_value = {
            "history": [
                {"messagesAdded": [{"message": {"id": "g-1"}}, {"message": {"id": "g-2"}}]}
            ],
            "historyId": "910",
        }
        poller = _poller(credentials, cursors, receiver, gmail)

        first = poller.poll_user("user-1", now=now)
        second = poller.poll_user("user-1", now=now)

        assert (first.fetched, first.new_messages) == (2, 1)
        assert (second.fetched, second.new_messages) == (2, 0)
        assert [a.message_id for a in activities.list_for_token(TOKEN)] == [
            "<reply-2@carrier.example>"
        ]

    def test_rejected_credential(
        self,
        credentials: CredentialStore,
        cursors: SyncCursorStore,
        receiver: InboundReceiver,
        now: datetime,
    ) -> None:
        gmail = FakeGmail({})
        gmail.history_list.return_value.execute.side_effect = _http_error(401)
        cursors.put("user-1", "100", now)

        result = _poller(credentials, cursors, receiver, gmail).poll_user("user-1", now=now)

        assert result.outcome is PollOutcome.CREDENTIAL_INVALID
        assert cursors.get("user-1") == "100"

    def test_provider_outage_keeps_cursor(
        self,
        credentials: CredentialStore,
        cursors: SyncCursorStore,
        receiver: InboundReceiver,
        now: datetime,
    ) -> None:
        gmail = FakeGmail({"g-1": _message("g-1")})
        gmail.users.messages.return_value.get.side_effect = _http_error(503)
        cursors.put("user-1", "100", now)
        gmail.history_list.return_value.execute.return_value = {
            "history": [{"messagesAdded": [{"message": {"id": "g-1"}}]}],
            "historyId": "120",
        }

        result = _poller(credentials, cursors, receiver, gmail).poll_user("user-1", now=now)

        assert result.outcome is PollOutcome.FAILED
        assert result.error == "Gmail API unavailable (503)"
        assert cursors.get("user-1") == "100"


class TestPollEligibility:
    def test_not_connected(
        self,
        credentials: CredentialStore,
        cursors: SyncCursorStore,
        receiver: InboundReceiver,
    ) -> None:
        gmail = FakeGmail({})

        result = _poller(credentials, cursors, receiver, gmail).poll_user("user-1")

        assert result.outcome is PollOutcome.NOT_CONNECTED
        gmail.builder.assert_not_called()

    def test_smtp_mailbox_not_polled(
        self,
        credentials: CredentialStore,
        cursors: SyncCursorStore,
        receiver: InboundReceiver,
        smtp_credential: MailboxCredential,
    ) -> None:
        credentials.put(smtp_credential)
        gmail = FakeGmail({})

        result = _poller(credentials, cursors, receiver, gmail).poll_user("user-1")

        assert result.outcome is PollOutcome.NOT_CONNECTED
        gmail.builder.assert_not_called()

    def test_poll_all_covers_oauth_users_only(
        self,
        credentials: CredentialStore,
        cursors: SyncCursorStore,
        receiver: InboundReceiver,
        oauth_credential: MailboxCredential,
        smtp_credential: MailboxCredential,
        now: datetime,
    ) -> None:
        credentials.put(oauth_credential.model_copy(update={"user_id": "user-2"}))
        credentials.put(smtp_credential)
        gmail = FakeGmail({})

        results = _poller(credentials, cursors, receiver, gmail).poll_all(now=now)

        assert [(r.user_id, r.outcome) for r in results] == [("user-2", PollOutcome.POLLED)]

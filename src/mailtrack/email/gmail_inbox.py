"""Pull replies out of connected Gmail inboxes and feed the inbound receiver.

Each OAuth-connected user has a history cursor.  A poll lists the messages
added since that cursor through ``users.history.list``; when there is no
cursor yet, or Gmail answers 404 because the cursor has expired, it falls
back to a full sync of recent inbox mail and starts a fresh cursor from the
mailbox profile.  Every fetched message goes through the same
``InboundReceiver.receive`` path as webhook deliveries, so redelivered
messages are recognised by their Message-ID.
"""

from __future__ import annotations

import base64
import email.utils
import sqlite3
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailtrack.auth.credentials import CredentialStore
from mailtrack.domain.errors import (
    CredentialInvalidError,
    MailtrackError,
    NotConnectedError,
    PersistenceError,
)
from mailtrack.domain.types import CredentialKind
from mailtrack.email.addresses import bare_address
from mailtrack.email.inbound import InboundReceiver
from mailtrack.email.models import InboundEmail, PollOutcome, PollResult, ReceiveOutcome
from mailtrack.email.transport import gmail_error, gmail_service, google_credentials
from mailtrack.observability.metrics import MAILBOX_POLLS
from mailtrack.schema import LockedConnection, serialized
from mailtrack.timestamps import to_db, utc_now

logger = structlog.get_logger()

FULL_SYNC_QUERY = "in:inbox -from:me newer_than:7d"
FULL_SYNC_LIMIT = 50

_GMAIL_ERRORS = (RefreshError, HttpError, TransportError, OSError)


class SyncCursorStore:
    """Per-user Gmail ``historyId`` cursors."""

    def __init__(self, conn: LockedConnection) -> None:
        self._conn = conn

    @serialized
    def get(self, user_id: str) -> str | None:
        row = self._conn.execute(
            "SELECT last_history_id FROM gmail_sync_state WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row[0] if row else None

    @serialized
    def put(self, user_id: str, history_id: str, checked_at: datetime) -> None:
        """Store *history_id* as the point the next poll resumes from.

        Raises:
            PersistenceError: If the store rejects the write.
        """
        try:
            self._conn.execute(
                """
                INSERT INTO gmail_sync_state (user_id, last_history_id, last_checked_at)
                VALUES (?, ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    last_history_id = excluded.last_history_id,
                    last_checked_at = excluded.last_checked_at
                """,
                (user_id, history_id, to_db(checked_at)),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceError(f"Failed to save sync cursor for '{user_id}'") from exc


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _plain_text(payload: dict[str, Any]) -> str:
    """Return the first ``text/plain`` body in a Gmail message payload."""
    data = payload.get("body", {}).get("data")
    if data and payload.get("mimeType", "text/plain").startswith("text/plain"):
        return _decode_body(data)
    for part in payload.get("parts", []):
        text = _plain_text(part)
        if text:
            return text
    return ""


def _addresses(value: str) -> list[str]:
    return [addr for _, addr in email.utils.getaddresses([value]) if addr]


def gmail_message_to_inbound(message: dict[str, Any]) -> InboundEmail:
    """Convert a ``users.messages.get(format="full")`` resource to an ``InboundEmail``.

    The RFC 5322 Message-ID header is used as the message id so that replies
    already delivered through the webhook are recognised; Gmail's own id is
    the fallback when the header is missing.
    """
    payload = message.get("payload", {})
    headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
    return InboundEmail(
        from_=headers.get("from", ""),
        to=_addresses(headers.get("to", "")),
        cc=_addresses(headers.get("cc", "")),
        subject=headers.get("subject", ""),
        body=_plain_text(payload),
        message_id=headers.get("message-id") or message.get("id", ""),
        in_reply_to=headers.get("in-reply-to") or None,
        references=headers.get("references") or None,
        date=headers.get("date") or None,
    )


class GmailInboxPoller:
    """Poll OAuth-connected inboxes for replies.

    Args:
        credentials: Store holding the users' OAuth token pairs.
        cursors: History cursor store.
        receiver: Receiver every fetched message is handed to.
        client_id: OAuth client id the tokens were issued to.
        client_secret: OAuth client secret.
        timeout: Socket timeout in seconds for API calls.
        service_builder: ``googleapiclient.discovery.build`` (injected in tests).
    """

    def __init__(
        self,
        credentials: CredentialStore,
        cursors: SyncCursorStore,
        receiver: InboundReceiver,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        service_builder: Callable[..., Any] = build,
    ) -> None:
        self._credentials = credentials
        self._cursors = cursors
        self._receiver = receiver
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._build = service_builder

    def _result(self, outcome: PollOutcome, user_id: str, **fields: Any) -> PollResult:
        MAILBOX_POLLS.labels(outcome=outcome.value).inc()
        return PollResult(outcome=outcome, user_id=user_id, **fields)

    def _history(self, service: Any, start: str) -> tuple[list[str], str] | None:
        """List ids added since *start*, or ``None`` if the cursor expired."""
        message_ids: list[str] = []
        latest = start
        page_token = None
        while True:
            try:
                response = (
                    service.users()
                    .history()
                    .list(
                        userId="me",
                        startHistoryId=start,
                        historyTypes=["messageAdded"],
                        pageToken=page_token,
                    )
                    .execute()
                )
            except HttpError as exc:
                if int(exc.resp.status) == 404:
                    return None
                raise
            for record in response.get("history", []):
                for added in record.get("messagesAdded", []):
                    message_ids.append(added["message"]["id"])
            latest = str(response.get("historyId", latest))
            page_token = response.get("nextPageToken")
            if not page_token:
                return message_ids, latest

    def _full_sync(self, service: Any) -> tuple[list[str], str]:
        profile = service.users().getProfile(userId="me").execute()
        listing = (
            service.users()
            .messages()
            .list(userId="me", q=FULL_SYNC_QUERY, maxResults=FULL_SYNC_LIMIT)
            .execute()
        )
        message_ids = [m["id"] for m in listing.get("messages", [])]
        return message_ids, str(profile["historyId"])

    def poll_user(self, user_id: str, *, now: datetime | None = None) -> PollResult:
        """Fetch and record new inbox messages for *user_id*.

        The cursor only advances after every fetched message was handed to
        the receiver, so a failed poll is retried from the same point.

        Returns:
            The typed poll result; this method does not raise for expected
            provider or credential failures.

        Raises:
            PersistenceError: If the new cursor cannot be stored.
        """
        now = now or utc_now()
        log = logger.bind(user_id=user_id)

        try:
            credential = self._credentials.get(user_id)
        except NotConnectedError:
            return self._result(PollOutcome.NOT_CONNECTED, user_id, error="No mailbox connected")
        if credential.kind is not CredentialKind.OAUTH:
            return self._result(
                PollOutcome.NOT_CONNECTED, user_id, error="Inbox polling needs a Gmail connection"
            )
        own_address = credential.email_address.lower()

        try:
            creds = google_credentials(credential, self._client_id, self._client_secret)
            service = gmail_service(creds, self._timeout, self._build)
            cursor = self._cursors.get(user_id)
            found = self._history(service, cursor) if cursor else None
            full_sync = found is None
            if found is None:
                if cursor:
                    log.info("gmail_history_expired", history_id=cursor)
                found = self._full_sync(service)
            message_ids, history_id = found

            new_messages = 0
            for message_id in message_ids:
                message = (
                    service.users()
                    .messages()
                    .get(userId="me", id=message_id, format="full")
                    .execute()
                )
                inbound = gmail_message_to_inbound(message)
                if bare_address(inbound.from_).lower() == own_address:
                    continue
                if self._receiver.receive(inbound, now=now).outcome is ReceiveOutcome.RECORDED:
                    new_messages += 1
        except CredentialInvalidError as exc:
            self._credentials.invalidate(user_id, str(exc))
            return self._result(PollOutcome.CREDENTIAL_INVALID, user_id, error=str(exc))
        except _GMAIL_ERRORS as exc:
            error = gmail_error(exc, "request")
            log.warning("gmail_poll_failed", error=str(error))
            if isinstance(error, CredentialInvalidError):
                self._credentials.invalidate(user_id, str(error))
                return self._result(PollOutcome.CREDENTIAL_INVALID, user_id, error=str(error))
            return self._result(PollOutcome.FAILED, user_id, error=str(error))

        self._cursors.put(user_id, history_id, now)
        log.info(
            "gmail_poll_completed",
            fetched=len(message_ids),
            new_messages=new_messages,
            full_sync=full_sync,
        )
        return self._result(
            PollOutcome.POLLED,
            user_id,
            new_messages=new_messages,
            fetched=len(message_ids),
            full_sync=full_sync,
            history_id=history_id,
            checked_at=now,
        )

    def poll_all(self, *, now: datetime | None = None) -> list[PollResult]:
        """Poll every OAuth-connected mailbox; one user's failure never stops the rest."""
        results: list[PollResult] = []
        for user_id in self._credentials.list_user_ids(CredentialKind.OAUTH):
            try:
                results.append(self.poll_user(user_id, now=now))
            except MailtrackError as exc:
                logger.error("gmail_poll_user_failed", user_id=user_id, error=str(exc))
                results.append(self._result(PollOutcome.FAILED, user_id, error=str(exc)))
        return results

"""Outbound sender: stamp a correlation token, transmit, and record the send.

Flow for one ``send``:

1. Resolve the token -- the caller's, the replied-to message's, or a freshly
   minted one -- and embed it in the subject.
2. Load the user's mailbox credential (``NOT_CONNECTED`` if absent).
3. Transmit through the mail transport, classifying failures.
4. Upsert the thread and append the outbound activity.

Step 4 runs only after the transport accepted the message.  External mail
cannot be unsent, so a transmitted-but-unrecorded email is reported as
``PERSISTENCE_FAILED`` and logged; nothing is rolled back.
"""

from __future__ import annotations

import email.utils
from datetime import datetime
from email.message import EmailMessage

import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from mailtrack.auth.credentials import CredentialStore
from mailtrack.auth.models import MailboxCredential
from mailtrack.domain.errors import (
    CredentialInvalidError,
    InvalidTransitionError,
    NotConnectedError,
    PersistenceError,
    SendFailedError,
    TokenCollisionError,
    TransientError,
)
from mailtrack.domain.types import Direction
from mailtrack.email.addresses import bare_addresses
from mailtrack.email.models import OutboundRequest, SendOutcome, SendResult
from mailtrack.email.tokens import TokenCodec
from mailtrack.email.transport import MailTransport
from mailtrack.lifecycle.transitions import ThreadEvent
from mailtrack.observability.metrics import EMAILS_SENT
from mailtrack.threads.activities import ActivityLog
from mailtrack.threads.models import EmailActivity, Thread
from mailtrack.threads.registry import ThreadRegistry
from mailtrack.timestamps import utc_now

logger = structlog.get_logger()

HINTS: dict[SendOutcome, str] = {
    SendOutcome.NOT_CONNECTED: "Connect your mailbox in Settings before sending email.",
    SendOutcome.CREDENTIAL_INVALID: (
        "Your mailbox connection is no longer valid. Reconnect your mailbox and try again."
    ),
    SendOutcome.TRANSIENT: "The mail service is temporarily unavailable. Try again shortly.",
    SendOutcome.SEND_FAILED: "The mail service refused the message. Check the recipients.",
    SendOutcome.PERSISTENCE_FAILED: (
        "The email was sent but could not be added to the conversation history."
    ),
}

_NOT_SENT_HINT = "The email was not sent. Please try again."


def compose_message(
    credential: MailboxCredential,
    request: OutboundRequest,
    subject: str,
    message_id: str,
    from_name: str | None = None,
) -> EmailMessage:
    """Build the RFC 5322 message for *request*.

    Args:
        credential: The sender's mailbox credential (supplies ``From``).
        request: The outbound request.
        subject: The subject with the correlation token embedded.
        message_id: The ``Message-ID`` header value.
        from_name: Optional display name for ``From``.

    Returns:
        A ready-to-send ``EmailMessage``.
    """
    message = EmailMessage()
    message["From"] = email.utils.formataddr((from_name or "", credential.email_address))
    message["To"] = ", ".join(request.to)
    if request.cc:
        message["Cc"] = ", ".join(request.cc)
    message["Subject"] = subject
    message["Message-ID"] = message_id
    message["Date"] = email.utils.formatdate(usegmt=True)
    if request.in_reply_to:
        message["In-Reply-To"] = request.in_reply_to
        message["References"] = request.in_reply_to
    message.set_content(request.body)
    return message


class OutboundSender:
    """Compose and transmit email on behalf of a user, keeping threads current.

    Args:
        credentials: Per-user mailbox credentials.
        registry: Thread registry.
        activities: Activity log.
        transport: Mail transport (usually a ``TransportRouter``).
        codec: Token codec for minting and embedding tokens.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        registry: ThreadRegistry,
        activities: ActivityLog,
        transport: MailTransport,
        codec: TokenCodec,
    ) -> None:
        self._credentials = credentials
        self._registry = registry
        self._activities = activities
        self._transport = transport
        self._codec = codec

    def _mint_unused_token(self) -> str:
        """Mint a token no thread has used, retrying once on collision."""
        for attempt in Retrying(
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(TokenCollisionError),
            reraise=True,
        ):
            with attempt:
                token = self._codec.mint()
                if self._registry.token_in_use(token):
                    logger.warning("token_collision", token=token)
                    raise TokenCollisionError(token)
        return token

    def _resolve_token(self, request: OutboundRequest) -> tuple[str, bool]:
        """Return ``(token, freshly_minted)`` for *request*."""
        if request.tracking_code:
            if not self._codec.is_valid(request.tracking_code):
                raise ValueError(f"Malformed tracking code: {request.tracking_code!r}")
            return request.tracking_code, False

        if request.in_reply_to:
            parent = self._activities.find_by_message_id(request.in_reply_to)
            if parent is not None:
                return parent.token, False

        return self._mint_unused_token(), True

    def _upsert_thread(
        self,
        token: str,
        fresh: bool,
        request: OutboundRequest,
        user_id: str,
        now: datetime,
    ) -> Thread:
        thread = self._registry.find_open(token)
        if thread is not None:
            return self._registry.touch(thread.id, ThreadEvent.SEND, now=now)

        try:
            return self._registry.create(
                token,
                pipeline_event_id=request.pipeline_event_id,
                customer_id=request.customer_id,
                carrier_id=request.carrier_id,
                created_by=user_id,
                now=now,
            )
        except TokenCollisionError:
            if fresh:
                raise
            # Another send on the same token opened the thread first.
            thread = self._registry.find_open(token)
            if thread is None:
                raise
            return self._registry.touch(thread.id, ThreadEvent.SEND, now=now)

    def _fail(self, outcome: SendOutcome, error: str, **fields: object) -> SendResult:
        EMAILS_SENT.labels(outcome=outcome.value).inc()
        hint = fields.pop("hint", None) or HINTS.get(outcome)
        return SendResult(outcome=outcome, error=error, hint=hint, **fields)  # type: ignore[arg-type]

    def send(
        self,
        user_id: str,
        request: OutboundRequest,
        *,
        from_name: str | None = None,
        now: datetime | None = None,
    ) -> SendResult:
        """Send *request* as *user_id*.

        Never raises for anticipated failures; inspect ``SendResult.outcome``.

        Args:
            user_id: The authenticated sender.
            request: What to send.
            from_name: Optional display name for the ``From`` header.
            now: Timestamp for the thread and activity rows.

        Returns:
            The typed send result.
        """
        log = logger.bind(user_id=user_id)

        try:
            token, fresh = self._resolve_token(request)
        except ValueError as exc:
            return self._fail(SendOutcome.SEND_FAILED, str(exc), hint="Remove the tracking code.")
        except TokenCollisionError as exc:
            log.error("token_mint_exhausted", token=exc.token)
            return self._fail(SendOutcome.PERSISTENCE_FAILED, str(exc), hint=_NOT_SENT_HINT)

        subject = self._codec.embed(request.subject, token)
        log = log.bind(token=token)

        try:
            credential = self._credentials.get(user_id)
        except NotConnectedError as exc:
            log.info("send_blocked_not_connected")
            return self._fail(SendOutcome.NOT_CONNECTED, str(exc), token=token)

        message_id = email.utils.make_msgid(domain=credential.domain)
        message = compose_message(credential, request, subject, message_id, from_name)

        try:
            self._transport.send(credential, message)
        except CredentialInvalidError as exc:
            self._credentials.invalidate(user_id, str(exc))
            return self._fail(SendOutcome.CREDENTIAL_INVALID, str(exc), token=token)
        except TransientError as exc:
            log.warning("send_transient_failure", error=str(exc))
            return self._fail(SendOutcome.TRANSIENT, str(exc), token=token)
        except SendFailedError as exc:
            log.warning("send_failed", error=str(exc))
            return self._fail(SendOutcome.SEND_FAILED, str(exc), token=token)

        now = now or utc_now()
        try:
            thread = self._upsert_thread(token, fresh, request, user_id, now)
            activity = self._activities.append(
                EmailActivity(
                    thread_id=thread.id,
                    token=token,
                    message_id=message_id,
                    in_reply_to=request.in_reply_to,
                    direction=Direction.OUTBOUND,
                    from_email=credential.email_address,
                    from_name=from_name or credential.email_address,
                    to_emails=bare_addresses(request.to),
                    cc_emails=bare_addresses(request.cc),
                    subject=subject,
                    body=request.body,
                    sent_at=now,
                    is_thread_starter=fresh,
                    pipeline_event_id=request.pipeline_event_id or thread.pipeline_event_id,
                    customer_id=request.customer_id or thread.customer_id,
                    carrier_id=request.carrier_id or thread.carrier_id,
                    created_by=user_id,
                )
            )
        except (PersistenceError, InvalidTransitionError) as exc:
            log.error("email_sent_not_recorded", message_id=message_id, error=str(exc))
            return self._fail(
                SendOutcome.PERSISTENCE_FAILED,
                str(exc),
                token=token,
                subject=subject,
                message_id=message_id,
            )

        EMAILS_SENT.labels(outcome=SendOutcome.SENT.value).inc()
        log.info("email_sent", thread_id=thread.id, message_id=message_id, thread_starter=fresh)
        return SendResult(
            outcome=SendOutcome.SENT,
            token=token,
            subject=subject,
            message_id=message_id,
            thread_id=thread.id,
            activity_id=activity.id,
        )

"""Pydantic v2 models for the outbound and inbound email entry points.

Request models accept the camelCase wire names used by the mail webhook and
the compose UI; result models are frozen and returned from the sender and
receiver instead of raising past their boundaries.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class InboundEmail(BaseModel):
    """A raw inbound message as posted by the mail forwarding webhook."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: str = Field(alias="from")
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    subject: str = ""
    body: str = ""
    message_id: str = Field(default="", alias="messageId")  # RFC 5322 Message-ID
    in_reply_to: str | None = Field(default=None, alias="inReplyTo")
    references: str | None = None
    date: str | None = None


class OutboundRequest(BaseModel):
    """An email to compose and send on behalf of an authenticated user.

    Without ``tracking_code`` a new conversation is started.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tracking_code: str | None = Field(default=None, alias="trackingCode")
    to: list[str] = Field(min_length=1)
    cc: list[str] = Field(default_factory=list)
    subject: str
    body: str
    pipeline_event_id: str | None = Field(default=None, alias="cspEventId")
    customer_id: str | None = Field(default=None, alias="customerId")
    carrier_id: str | None = Field(default=None, alias="carrierId")
    in_reply_to: str | None = Field(default=None, alias="inReplyTo")


class SendOutcome(StrEnum):
    """How an outbound send ended."""

    SENT = "sent"
    NOT_CONNECTED = "not_connected"
    CREDENTIAL_INVALID = "credential_invalid"
    TRANSIENT = "transient"
    SEND_FAILED = "send_failed"
    PERSISTENCE_FAILED = "persistence_failed"


class SendResult(BaseModel):
    """Typed result of ``OutboundSender.send``.

    ``hint`` carries a human-readable remediation for UI-facing failures.
    """

    model_config = ConfigDict(frozen=True)

    outcome: SendOutcome
    token: str | None = None
    subject: str | None = None
    message_id: str | None = None
    thread_id: str | None = None
    activity_id: int | None = None
    error: str | None = None
    hint: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is SendOutcome.SENT

    @property
    def needs_reconnect(self) -> bool:
        """Return True when the user must (re)connect their mailbox."""
        return self.outcome in (SendOutcome.NOT_CONNECTED, SendOutcome.CREDENTIAL_INVALID)


class ReceiveOutcome(StrEnum):
    """How an inbound message was handled."""

    RECORDED = "recorded"
    UNCORRELATED = "uncorrelated"
    UNKNOWN_TOKEN = "unknown_token"
    DUPLICATE = "duplicate"
    PERSISTENCE_FAILED = "persistence_failed"


class ReceiveResult(BaseModel):
    """Typed result of ``InboundReceiver.receive``."""

    model_config = ConfigDict(frozen=True)

    outcome: ReceiveOutcome
    message: str
    token: str | None = None
    thread_id: str | None = None
    activity_id: int | None = None
    tasks_closed: int = 0


class PollOutcome(StrEnum):
    """How one mailbox poll ended."""

    POLLED = "polled"
    NOT_CONNECTED = "not_connected"
    CREDENTIAL_INVALID = "credential_invalid"
    FAILED = "failed"


class PollResult(BaseModel):
    """Typed result of ``GmailInboxPoller.poll_user``.

    ``new_messages`` counts only messages recorded onto a thread; duplicates,
    self-sent mail and uncorrelated messages are fetched but not counted.
    """

    model_config = ConfigDict(frozen=True)

    outcome: PollOutcome
    user_id: str
    new_messages: int = 0
    fetched: int = 0
    full_sync: bool = False
    history_id: str | None = None
    checked_at: datetime | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is PollOutcome.POLLED

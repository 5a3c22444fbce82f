"""Email domain: correlation tokens, transports, outbound sender, inbound receiver,
and the Gmail inbox poller."""

from mailtrack.email.gmail_inbox import GmailInboxPoller, SyncCursorStore, gmail_message_to_inbound
from mailtrack.email.inbound import InboundReceiver
from mailtrack.email.models import (
    InboundEmail,
    OutboundRequest,
    PollOutcome,
    PollResult,
    ReceiveOutcome,
    ReceiveResult,
    SendOutcome,
    SendResult,
)
from mailtrack.email.outbound import OutboundSender, compose_message
from mailtrack.email.tokens import TokenCodec
from mailtrack.email.transport import (
    GmailApiTransport,
    MailTransport,
    SmtpTransport,
    TransportRouter,
)

__all__ = [
    "GmailApiTransport",
    "GmailInboxPoller",
    "InboundEmail",
    "InboundReceiver",
    "MailTransport",
    "OutboundRequest",
    "OutboundSender",
    "PollOutcome",
    "PollResult",
    "ReceiveOutcome",
    "ReceiveResult",
    "SendOutcome",
    "SendResult",
    "SmtpTransport",
    "SyncCursorStore",
    "TokenCodec",
    "TransportRouter",
    "compose_message",
    "gmail_message_to_inbound",
]

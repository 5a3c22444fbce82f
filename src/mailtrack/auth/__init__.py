"""Mailbox credentials, reconnect flow, and caller authentication."""

from mailtrack.auth.credentials import CredentialStore
from mailtrack.auth.models import (
    MailboxCredential,
    OAuthCredentialPayload,
    SmtpCredentialPayload,
)
from mailtrack.auth.reconnect import ReconnectSession, ReconnectSupervisor

__all__ = [
    "CredentialStore",
    "MailboxCredential",
    "OAuthCredentialPayload",
    "ReconnectSession",
    "ReconnectSupervisor",
    "SmtpCredentialPayload",
]

"""Mail transports that deliver a composed message with a user's credential.

Every transport classifies its failures into the same three errors:

- ``CredentialInvalidError`` -- the provider rejected the credential
- ``TransientError`` -- network or provider hiccup, safe for the caller to retry
- ``SendFailedError`` -- anything else

No transport retries on its own; retry policy belongs to the caller.
"""

from __future__ import annotations

import base64
import smtplib
from collections.abc import Callable
from email.message import EmailMessage
from typing import Any, Protocol

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailtrack.auth.models import MailboxCredential
from mailtrack.domain.errors import (
    CredentialInvalidError,
    MailtrackError,
    SendFailedError,
    TransientError,
)
from mailtrack.domain.types import CredentialKind

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GMAIL_SCOPES: list[str] = [
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.readonly",
]
SMTPS_PORT = 465


def google_credentials(
    credential: MailboxCredential, client_id: str, client_secret: str
) -> Credentials:
    """Build refreshable google-auth credentials from a stored OAuth pair.

    Raises:
        CredentialInvalidError: If the credential carries no token pair.
    """
    if credential.access_token is None or credential.refresh_token is None:
        raise CredentialInvalidError("No OAuth tokens on file for this mailbox")
    expiry = None
    if credential.token_expiry is not None:
        # google-auth compares against a naive UTC datetime.
        expiry = credential.token_expiry.replace(tzinfo=None)
    return Credentials(  # type: ignore[no-untyped-call]
        token=credential.access_token.get_secret_value(),
        refresh_token=credential.refresh_token.get_secret_value(),
        token_uri=GOOGLE_TOKEN_URI,
        client_id=client_id,
        client_secret=client_secret,
        scopes=GMAIL_SCOPES,
        expiry=expiry,
    )


def gmail_service(
    creds: Credentials, timeout: float, service_builder: Callable[..., Any] = build
) -> Any:
    """Return a Gmail v1 client whose calls time out after *timeout* seconds."""
    http = AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
    return service_builder("gmail", "v1", http=http, cache_discovery=False)


def gmail_error(exc: Exception, subject: str = "message") -> MailtrackError:
    """Map a Gmail client failure onto the transport error taxonomy.

    Args:
        exc: A ``RefreshError``, ``HttpError``, ``TransportError`` or
            ``OSError`` raised by google-auth or googleapiclient.
        subject: What Gmail was asked to handle, for the error text.
    """
    if isinstance(exc, RefreshError):
        return CredentialInvalidError("Gmail refused to refresh the access token")
    if isinstance(exc, HttpError):
        status = int(exc.resp.status)
        if status in (401, 403):
            return CredentialInvalidError(f"Gmail rejected the credential ({status})")
        if status == 429 or status >= 500:
            return TransientError(f"Gmail API unavailable ({status})")
        return SendFailedError(f"Gmail API rejected the {subject} ({status})")
    return TransientError("Network error talking to the Gmail API")


class MailTransport(Protocol):
    """Anything that can deliver an ``EmailMessage`` using a credential."""

    def send(self, credential: MailboxCredential, message: EmailMessage) -> None: ...


class SmtpTransport:
    """Deliver mail over SMTP with an app password.

    Port 465 uses implicit TLS; any other port upgrades with STARTTLS.

    Args:
        default_host: Host used when the credential names none.
        default_port: Port used when the credential names none.
        timeout: Socket timeout in seconds for the whole exchange.
        smtp_factory: Callable returning an ``smtplib.SMTP``-like client
            (injected in tests).
        smtps_factory: Same, for implicit-TLS connections.
    """

    def __init__(
        self,
        default_host: str = "smtp.gmail.com",
        default_port: int = 587,
        timeout: float = 30.0,
        smtp_factory: Callable[..., Any] = smtplib.SMTP,
        smtps_factory: Callable[..., Any] = smtplib.SMTP_SSL,
    ) -> None:
        self._default_host = default_host
        self._default_port = default_port
        self._timeout = timeout
        self._smtp_factory = smtp_factory
        self._smtps_factory = smtps_factory

    def send(self, credential: MailboxCredential, message: EmailMessage) -> None:
        if credential.app_password is None:
            raise CredentialInvalidError("No app password on file for this mailbox")

        host = credential.smtp_host or self._default_host
        port = credential.smtp_port or self._default_port
        implicit_tls = port == SMTPS_PORT
        factory = self._smtps_factory if implicit_tls else self._smtp_factory

        try:
            with factory(host, port, timeout=self._timeout) as server:
                server.ehlo()
                if not implicit_tls:
                    server.starttls()
                    server.ehlo()
                server.login(credential.email_address, credential.app_password.get_secret_value())
                server.send_message(message)
        except smtplib.SMTPAuthenticationError as exc:
            raise CredentialInvalidError(f"SMTP authentication failed ({exc.smtp_code})") from exc
        except (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError) as exc:
            raise TransientError(f"SMTP connection to {host}:{port} failed") from exc
        except smtplib.SMTPResponseException as exc:
            if 400 <= exc.smtp_code < 500:
                raise TransientError(f"SMTP server deferred the message ({exc.smtp_code})") from exc
            raise SendFailedError(f"SMTP server rejected the message ({exc.smtp_code})") from exc
        except smtplib.SMTPException as exc:
            raise SendFailedError(f"SMTP delivery failed: {exc}") from exc
        except OSError as exc:
            # Timeouts, DNS failures, refused connections.
            raise TransientError(f"Network error talking to {host}:{port}") from exc


class GmailApiTransport:
    """Deliver mail through the Gmail API with a stored OAuth token pair.

    The access token is refreshed from the refresh token when expired;
    a refresh rejected by Google means the user must reconnect.

    Args:
        client_id: OAuth client id the tokens were issued to.
        client_secret: OAuth client secret.
        timeout: Socket timeout in seconds for API calls.
        service_builder: ``googleapiclient.discovery.build`` (injected in tests).
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        service_builder: Callable[..., Any] = build,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._build = service_builder

    def send(self, credential: MailboxCredential, message: EmailMessage) -> None:
        creds = google_credentials(credential, self._client_id, self._client_secret)
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode()

        try:
            service = gmail_service(creds, self._timeout, self._build)
            service.users().messages().send(userId="me", body={"raw": raw}).execute()
        except (RefreshError, HttpError, TransportError, OSError) as exc:
            raise gmail_error(exc) from exc


class TransportRouter:
    """Dispatch each send to the transport matching the credential kind."""

    def __init__(self, transports: dict[CredentialKind, MailTransport]) -> None:
        self._transports = transports

    def transport_for(self, credential: MailboxCredential) -> MailTransport:
        """Return the transport for *credential*'s kind.

        Raises:
            SendFailedError: If no transport handles that kind.
        """
        transport = self._transports.get(credential.kind)
        if transport is None:
            raise SendFailedError(f"No transport configured for {credential.kind} credentials")
        return transport

    def send(self, credential: MailboxCredential, message: EmailMessage) -> None:
        self.transport_for(credential).send(credential, message)

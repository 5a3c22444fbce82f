"""Pydantic v2 models for mailbox credentials and their save payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from mailtrack.domain.types import CredentialKind


class MailboxCredential(BaseModel):
    """The one live mail-sending credential of a user.

    Validity is not tracked: a credential is presumed valid until the mail
    transport rejects it at send time.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    kind: CredentialKind
    email_address: str
    app_password: SecretStr | None = None
    access_token: SecretStr | None = None
    refresh_token: SecretStr | None = None
    token_expiry: datetime | None = None
    smtp_host: str | None = None
    smtp_port: int | None = None

    @property
    def domain(self) -> str:
        """Return the domain part of the mailbox address."""
        _, _, domain = self.email_address.rpartition("@")
        return domain or "localhost"


class OAuthCredentialPayload(BaseModel):
    """Save request for an OAuth-style (token pair) credential."""

    email_address: str = Field(min_length=3)
    access_token: SecretStr
    refresh_token: SecretStr
    token_expiry: datetime

    def to_credential(self, user_id: str) -> MailboxCredential:
        return MailboxCredential(
            user_id=user_id,
            kind=CredentialKind.OAUTH,
            email_address=self.email_address,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_expiry=self.token_expiry,
        )


class SmtpCredentialPayload(BaseModel):
    """Save request for an SMTP-style (app password) credential."""

    email_address: str = Field(min_length=3)
    app_password: SecretStr
    smtp_host: str | None = None
    smtp_port: int | None = Field(default=None, gt=0, lt=65536)

    def to_credential(self, user_id: str) -> MailboxCredential:
        return MailboxCredential(
            user_id=user_id,
            kind=CredentialKind.SMTP,
            email_address=self.email_address,
            app_password=self.app_password,
            smtp_host=self.smtp_host,
            smtp_port=self.smtp_port,
        )

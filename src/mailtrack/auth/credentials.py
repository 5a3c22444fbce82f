"""SQLite-backed mailbox credential store.

Holds at most one credential per user.  Replacing a credential is a
delete-then-insert saga rather than a single transaction: if the insert
fails after the delete committed, the caller gets a ``CredentialReplaceError``
with ``prior_lost=True`` instead of a silent success.
"""

from __future__ import annotations

import sqlite3

import structlog
from pydantic import SecretStr

from mailtrack.auth.models import MailboxCredential
from mailtrack.domain.errors import CredentialReplaceError, NotConnectedError, PersistenceError
from mailtrack.domain.types import CredentialKind
from mailtrack.schema import LockedConnection, serialized
from mailtrack.timestamps import from_db, to_db, utc_now

logger = structlog.get_logger()


def _secret(value: SecretStr | None) -> str | None:
    return value.get_secret_value() if value is not None else None


def _row_to_credential(row: sqlite3.Row) -> MailboxCredential:
    return MailboxCredential(
        user_id=row["user_id"],
        kind=CredentialKind(row["kind"]),
        email_address=row["email_address"],
        app_password=row["app_password"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        token_expiry=from_db(row["token_expiry"]) if row["token_expiry"] else None,
        smtp_host=row["smtp_host"],
        smtp_port=row["smtp_port"],
    )


class CredentialStore:
    """Own per-user mail-sending credentials."""

    def __init__(self, conn: LockedConnection) -> None:
        self._conn = conn

    @serialized
    def put(self, credential: MailboxCredential) -> MailboxCredential:
        """Replace any existing credential for ``credential.user_id``.

        Returns:
            The stored credential as read back from the store.

        Raises:
            CredentialReplaceError: If either step fails.  ``prior_lost`` tells
                the caller whether the user is now left without a credential.
        """
        user_id = credential.user_id
        had_prior = self.find(user_id) is not None

        try:
            self._conn.execute("DELETE FROM mailbox_credentials WHERE user_id = ?", (user_id,))
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            logger.error("credential_delete_failed", user_id=user_id)
            raise CredentialReplaceError(user_id, prior_lost=False) from exc

        try:
            self._conn.execute(
                """
                INSERT INTO mailbox_credentials (
                    user_id, kind, email_address, app_password, access_token,
                    refresh_token, token_expiry, smtp_host, smtp_port, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    credential.kind.value,
                    credential.email_address,
                    _secret(credential.app_password),
                    _secret(credential.access_token),
                    _secret(credential.refresh_token),
                    to_db(credential.token_expiry) if credential.token_expiry else None,
                    credential.smtp_host,
                    credential.smtp_port,
                    to_db(utc_now()),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            logger.error("credential_insert_failed", user_id=user_id, prior_lost=had_prior)
            raise CredentialReplaceError(user_id, prior_lost=had_prior) from exc

        stored = self.find(user_id)
        if stored is None:
            raise CredentialReplaceError(user_id, prior_lost=had_prior)
        logger.info("credential_stored", user_id=user_id, kind=str(credential.kind))
        return stored

    @serialized
    def find(self, user_id: str) -> MailboxCredential | None:
        """Return the credential for *user_id*, or ``None``."""
        cursor = self._conn.cursor()
        cursor.row_factory = sqlite3.Row
        row = cursor.execute(
            "SELECT * FROM mailbox_credentials WHERE user_id = ?", (user_id,)
        ).fetchone()
        return _row_to_credential(row) if row else None

    @serialized
    def list_user_ids(self, kind: CredentialKind | None = None) -> list[str]:
        """Return the ids of users with a credential on file, optionally of one *kind*."""
        if kind is None:
            rows = self._conn.execute(
                "SELECT user_id FROM mailbox_credentials ORDER BY user_id"
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT user_id FROM mailbox_credentials WHERE kind = ? ORDER BY user_id",
                (kind.value,),
            ).fetchall()
        return [row[0] for row in rows]

    def get(self, user_id: str) -> MailboxCredential:
        """Return the credential for *user_id*.

        Raises:
            NotConnectedError: If the user has no credential on file.  This is
                an expected, user-facing condition.
        """
        credential = self.find(user_id)
        if credential is None:
            raise NotConnectedError(user_id)
        return credential

    @serialized
    def delete(self, user_id: str) -> bool:
        """Remove the credential for *user_id*.

        Returns:
            ``True`` if a credential was removed.
        """
        try:
            cursor = self._conn.execute(
                "DELETE FROM mailbox_credentials WHERE user_id = ?", (user_id,)
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceError(f"Failed to delete credential for '{user_id}'") from exc
        return cursor.rowcount > 0

    def invalidate(self, user_id: str, reason: str) -> None:
        """Record that the transport rejected the user's credential.

        No validity flag is stored: the credential stays in place until it is
        replaced, and staleness is rediscovered on the next send attempt.
        """
        logger.warning("credential_rejected_by_transport", user_id=user_id, reason=reason)

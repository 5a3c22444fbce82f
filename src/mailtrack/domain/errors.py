"""Domain-specific exception classes for the mail correlation service.

Components raise these internally and convert them to typed results at their
public boundary.  Only truly unanticipated faults escape as other exceptions.
"""

from __future__ import annotations

from enum import StrEnum


class MailtrackError(Exception):
    """Base class for all domain errors in the mail correlation service."""


class NotConnectedError(MailtrackError):
    """Raised when a user has no mailbox credential on file.

    Attributes:
        user_id: The user without a credential.
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"No mailbox connected for user '{user_id}'")


class CredentialInvalidError(MailtrackError):
    """Raised when the mail transport rejects the stored credential."""


class TransientError(MailtrackError):
    """Raised for network or service hiccups that the caller may retry."""


class SendFailedError(MailtrackError):
    """Raised when the transport refuses a message for any other reason."""


class PersistenceError(MailtrackError):
    """Raised when the store rejects a write."""


class CredentialReplaceError(PersistenceError):
    """Raised when replacing a credential fails part-way.

    Attributes:
        user_id: The user whose credential was being replaced.
        prior_lost: ``True`` when the previous credential was already deleted
            before the insert failed, leaving the user with no credential.
    """

    def __init__(self, user_id: str, prior_lost: bool) -> None:
        self.user_id = user_id
        self.prior_lost = prior_lost
        detail = "prior credential was removed" if prior_lost else "prior credential kept"
        super().__init__(f"Failed to store credential for user '{user_id}' ({detail})")


class TokenCollisionError(PersistenceError):
    """Raised when a freshly minted correlation token is already in use.

    Attributes:
        token: The colliding token.
    """

    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__(f"Correlation token '{token}' is already in use")


class DuplicateMessageError(PersistenceError):
    """Raised when an activity with the same message id was already recorded.

    Attributes:
        message_id: The duplicated RFC 5322 Message-ID.
    """

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"Message '{message_id}' is already recorded")


class DigestExistsError(PersistenceError):
    """Raised when a digest for the same user and day is already stored."""

    def __init__(self, user_id: str, digest_date: str) -> None:
        self.user_id = user_id
        self.digest_date = digest_date
        super().__init__(f"Digest for user '{user_id}' on {digest_date} already exists")


class InvalidTransitionError(MailtrackError):
    """Raised when a lifecycle event is not allowed from the current state.

    Attributes:
        current_state: The state the machine was in when the event arrived.
        event: The event that was rejected.
    """

    def __init__(self, current_state: StrEnum, event: str) -> None:
        self.current_state = current_state
        self.event = event
        super().__init__(f"Cannot apply event '{event}' in state '{current_state}'")

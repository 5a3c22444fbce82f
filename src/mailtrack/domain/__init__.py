"""Domain types and error taxonomy."""

from mailtrack.domain.errors import (
    CredentialInvalidError,
    CredentialReplaceError,
    DigestExistsError,
    DuplicateMessageError,
    InvalidTransitionError,
    MailtrackError,
    NotConnectedError,
    PersistenceError,
    SendFailedError,
    TokenCollisionError,
    TransientError,
)
from mailtrack.domain.types import (
    PRIORITY_ORDER,
    CredentialKind,
    Direction,
    Priority,
    ReconnectState,
    TaskStatus,
    ThreadStatus,
)

__all__ = [
    "PRIORITY_ORDER",
    "CredentialInvalidError",
    "CredentialKind",
    "CredentialReplaceError",
    "DigestExistsError",
    "Direction",
    "DuplicateMessageError",
    "InvalidTransitionError",
    "MailtrackError",
    "NotConnectedError",
    "PersistenceError",
    "Priority",
    "ReconnectState",
    "SendFailedError",
    "TaskStatus",
    "ThreadStatus",
    "TokenCollisionError",
    "TransientError",
]

"""Transition maps for thread lifecycle and mailbox reconnect flows."""

from enum import StrEnum

from mailtrack.domain.types import ReconnectState, ThreadStatus


class ThreadEvent(StrEnum):
    """Events that move a conversation thread between statuses."""

    SEND = "send"
    RECEIVE = "receive"
    AWAIT_REPLY = "await_reply"
    STALL = "stall"
    CLOSE = "close"


# All valid (current_status, event) -> next_status mappings.
# Any pair not in this dict is an invalid transition.
THREAD_TRANSITIONS: dict[tuple[ThreadStatus, str], ThreadStatus] = {
    # From ACTIVE
    (ThreadStatus.ACTIVE, ThreadEvent.SEND): ThreadStatus.ACTIVE,
    (ThreadStatus.ACTIVE, ThreadEvent.RECEIVE): ThreadStatus.ACTIVE,
    (ThreadStatus.ACTIVE, ThreadEvent.AWAIT_REPLY): ThreadStatus.AWAITING_REPLY,
    (ThreadStatus.ACTIVE, ThreadEvent.STALL): ThreadStatus.STALLED,
    (ThreadStatus.ACTIVE, ThreadEvent.CLOSE): ThreadStatus.CLOSED,
    # From AWAITING_REPLY
    (ThreadStatus.AWAITING_REPLY, ThreadEvent.SEND): ThreadStatus.ACTIVE,
    (ThreadStatus.AWAITING_REPLY, ThreadEvent.RECEIVE): ThreadStatus.ACTIVE,
    (ThreadStatus.AWAITING_REPLY, ThreadEvent.STALL): ThreadStatus.STALLED,
    (ThreadStatus.AWAITING_REPLY, ThreadEvent.CLOSE): ThreadStatus.CLOSED,
    # From STALLED
    (ThreadStatus.STALLED, ThreadEvent.SEND): ThreadStatus.ACTIVE,
    (ThreadStatus.STALLED, ThreadEvent.RECEIVE): ThreadStatus.ACTIVE,
    (ThreadStatus.STALLED, ThreadEvent.CLOSE): ThreadStatus.CLOSED,
}

# Statuses that reject all events.
TERMINAL_THREAD_STATUSES: frozenset[ThreadStatus] = frozenset({ThreadStatus.CLOSED})


def statuses_accepting(event: ThreadEvent) -> frozenset[ThreadStatus]:
    """Return every status from which *event* is a valid transition.

    Bulk store updates use this as their status predicate so a row is only
    ever moved along an edge of the transition map.

    Args:
        event: The lifecycle event.

    Returns:
        The set of source statuses for *event*.
    """
    return frozenset(status for status, ev in THREAD_TRANSITIONS if ev == event)


class ReconnectEvent(StrEnum):
    """Events that drive the per-session mailbox reconnect flow."""

    CREDENTIAL_INVALID = "credential_invalid"
    BEGIN = "begin"
    RECONNECTED = "reconnected"
    FAILED = "failed"
    DISMISS = "dismiss"


RECONNECT_TRANSITIONS: dict[tuple[ReconnectState, str], ReconnectState] = {
    # From IDLE
    (ReconnectState.IDLE, ReconnectEvent.CREDENTIAL_INVALID): ReconnectState.PROMPTING,
    # From PROMPTING -- a repeated failure refreshes the prompt in place
    (ReconnectState.PROMPTING, ReconnectEvent.CREDENTIAL_INVALID): ReconnectState.PROMPTING,
    (ReconnectState.PROMPTING, ReconnectEvent.BEGIN): ReconnectState.RECONNECTING,
    (ReconnectState.PROMPTING, ReconnectEvent.RECONNECTED): ReconnectState.IDLE,
    (ReconnectState.PROMPTING, ReconnectEvent.DISMISS): ReconnectState.IDLE,
    # From RECONNECTING
    (ReconnectState.RECONNECTING, ReconnectEvent.CREDENTIAL_INVALID): (
        ReconnectState.RECONNECTING
    ),
    (ReconnectState.RECONNECTING, ReconnectEvent.RECONNECTED): ReconnectState.IDLE,
    (ReconnectState.RECONNECTING, ReconnectEvent.FAILED): ReconnectState.PROMPTING,
    (ReconnectState.RECONNECTING, ReconnectEvent.DISMISS): ReconnectState.IDLE,
}

"""Thread lifecycle and reconnect state machines with transition validation."""

from mailtrack.lifecycle.machine import ThreadLifecycle
from mailtrack.lifecycle.transitions import (
    RECONNECT_TRANSITIONS,
    TERMINAL_THREAD_STATUSES,
    THREAD_TRANSITIONS,
    ReconnectEvent,
    ThreadEvent,
    statuses_accepting,
)

__all__ = [
    "RECONNECT_TRANSITIONS",
    "TERMINAL_THREAD_STATUSES",
    "THREAD_TRANSITIONS",
    "ReconnectEvent",
    "ThreadEvent",
    "ThreadLifecycle",
    "statuses_accepting",
]

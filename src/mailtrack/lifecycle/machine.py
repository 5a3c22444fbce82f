"""ThreadLifecycle class validating single-thread status changes."""

from __future__ import annotations

from mailtrack.domain.errors import InvalidTransitionError
from mailtrack.domain.types import ThreadStatus
from mailtrack.lifecycle.transitions import TERMINAL_THREAD_STATUSES, THREAD_TRANSITIONS


class ThreadLifecycle:
    """Finite state machine governing a single conversation thread.

    The registry builds one per compare-and-set attempt from the row's
    current status and asks it for the next status.

    Usage::

        lc = ThreadLifecycle(ThreadStatus.STALLED)
        lc.trigger("receive")   # -> ACTIVE
        lc.trigger("close")     # -> CLOSED (terminal)
    """

    def __init__(self, initial_status: ThreadStatus = ThreadStatus.ACTIVE) -> None:
        self._status: ThreadStatus = initial_status

    @property
    def status(self) -> ThreadStatus:
        """Return the current thread status."""
        return self._status

    @property
    def is_terminal(self) -> bool:
        """Return True if the thread is closed."""
        return self._status in TERMINAL_THREAD_STATUSES

    def trigger(self, event: str) -> ThreadStatus:
        """Apply an event to the current status and transition.

        Args:
            event: The event string (e.g. ``"receive"``).

        Returns:
            The new status after the transition.

        Raises:
            InvalidTransitionError: If the transition is not allowed from
                the current status, or if the thread is closed.
        """
        if self.is_terminal:
            raise InvalidTransitionError(self._status, event)

        key = (self._status, event)
        if key not in THREAD_TRANSITIONS:
            raise InvalidTransitionError(self._status, event)

        self._status = THREAD_TRANSITIONS[key]
        return self._status

"""Per-session mailbox reconnect flow.

Each user session owns one ``ReconnectSession`` state machine::

    idle --credential_invalid--> prompting --begin--> reconnecting
      ^                              |                    |
      +------ reconnected/dismiss ---+---- reconnected ---+

A session shows at most one prompt.  A repeated credential failure while a
prompt is open only refreshes the error message; the continuation captured
by the first failure is kept and runs exactly once, on successful
reconnection, even when two re-issues for the session overlap.  Dismissal
drops it without running it.  Sessions are forgotten once they settle back
to idle.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from mailtrack.auth.credentials import CredentialStore
from mailtrack.auth.models import MailboxCredential
from mailtrack.domain.errors import CredentialReplaceError, InvalidTransitionError
from mailtrack.domain.types import ReconnectState
from mailtrack.lifecycle.transitions import RECONNECT_TRANSITIONS, ReconnectEvent

if TYPE_CHECKING:
    from mailtrack.email.models import SendResult

logger = structlog.get_logger()

Continuation = Callable[[], Any]


class ReconnectSession:
    """Reconnect state machine for one user session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._state = ReconnectState.IDLE
        self._error_message = ""
        self._continuation: Continuation | None = None
        self._lock = threading.Lock()

    @property
    def state(self) -> ReconnectState:
        return self._state

    @property
    def error_message(self) -> str:
        return self._error_message

    @property
    def has_continuation(self) -> bool:
        return self._continuation is not None

    def _apply(self, event: ReconnectEvent) -> ReconnectState:
        key = (self._state, event)
        if key not in RECONNECT_TRANSITIONS:
            raise InvalidTransitionError(self._state, event)
        self._state = RECONNECT_TRANSITIONS[key]
        return self._state

    def report_failure(self, message: str, continuation: Continuation | None = None) -> bool:
        """Open the prompt, or refresh its message if one is already open.

        Args:
            message: The triggering error, shown to the user.
            continuation: Optional callable to run after reconnection.  Ignored
                when a prompt is already open.

        Returns:
            ``True`` if this call opened a new prompt.
        """
        with self._lock:
            opened = self._state is ReconnectState.IDLE
            self._apply(ReconnectEvent.CREDENTIAL_INVALID)
            self._error_message = message
            if opened:
                self._continuation = continuation
        logger.info("reconnect_prompt", session_id=self.session_id, opened=opened)
        return opened

    def claim(self) -> bool:
        """Enter ``reconnecting`` if a prompt is open.

        Returns:
            ``True`` if the session was prompting or already reconnecting,
            ``False`` if it is idle.
        """
        with self._lock:
            if self._state is ReconnectState.PROMPTING:
                self._apply(ReconnectEvent.BEGIN)
            return self._state is ReconnectState.RECONNECTING

    def fail(self, message: str) -> None:
        """Return from ``reconnecting`` to ``prompting`` with a new message.

        A no-op unless reconnecting: an overlapping re-issue may already have
        settled the session.
        """
        with self._lock:
            if self._state is not ReconnectState.RECONNECTING:
                return
            self._apply(ReconnectEvent.FAILED)
            self._error_message = message

    def complete(self) -> Any:
        """Finish reconnection and run the stored continuation once.

        Returns:
            Whatever the continuation returned, or ``None``.  Also ``None``
            when the session is already idle, because an overlapping
            re-issue completed it first.
        """
        with self._lock:
            if self._state is ReconnectState.IDLE:
                logger.info("reconnect_already_settled", session_id=self.session_id)
                return None
            self._apply(ReconnectEvent.RECONNECTED)
            continuation, self._continuation = self._continuation, None
            self._error_message = ""
        logger.info("reconnect_completed", session_id=self.session_id)
        return continuation() if continuation is not None else None

    def dismiss(self) -> None:
        """Close the prompt without reconnecting; the continuation is dropped."""
        with self._lock:
            self._apply(ReconnectEvent.DISMISS)
            self._continuation = None
            self._error_message = ""
        logger.info("reconnect_dismissed", session_id=self.session_id)


class ReconnectSupervisor:
    """Hold reconnect sessions and drive them from send results.

    Only sessions with an open prompt are kept; a session is dropped as soon
    as it settles back to idle.

    Args:
        credentials: Store that receives re-issued credentials.
    """

    def __init__(self, credentials: CredentialStore) -> None:
        self._credentials = credentials
        self._sessions: dict[str, ReconnectSession] = {}
        self._lock = threading.Lock()

    def find(self, session_id: str) -> ReconnectSession | None:
        """Return the session for *session_id*, or ``None`` if it is idle."""
        with self._lock:
            return self._sessions.get(session_id)

    def _forget_if_idle(self, session: ReconnectSession) -> None:
        with self._lock:
            if (
                session.state is ReconnectState.IDLE
                and self._sessions.get(session.session_id) is session
            ):
                del self._sessions[session.session_id]

    def observe(
        self,
        session_id: str,
        result: SendResult,
        continuation: Continuation | None = None,
    ) -> bool:
        """Open or refresh the session's prompt if *result* needs a reconnect.

        Returns:
            ``True`` if the session is now prompting because of *result*.
        """
        if not result.needs_reconnect:
            return False
        message = result.hint or result.error or "Reconnect your mailbox."
        with self._lock:
            session = self._sessions.setdefault(session_id, ReconnectSession(session_id))
            session.report_failure(message, continuation)
        return True

    def reissue(
        self, session_id: str, credential: MailboxCredential
    ) -> tuple[MailboxCredential, Any]:
        """Store a re-issued credential and settle the session's prompt.

        Without an open prompt (a user connecting from Settings) the
        credential is simply stored.  When two re-issues overlap, the first to
        finish runs the continuation and the other returns ``None`` for it.

        Returns:
            ``(stored_credential, continuation_result)``; the second item is
            ``None`` when no continuation was waiting.

        Raises:
            CredentialReplaceError: If storing fails; an open prompt returns to
                ``prompting`` with the failure message.
        """
        session = self.find(session_id)
        prompted = session is not None and session.claim()

        try:
            stored = self._credentials.put(credential)
        except CredentialReplaceError as exc:
            if prompted:
                session.fail(f"{exc}. Please try connecting again.")
            raise

        resumed = None
        if prompted:
            resumed = session.complete()
            self._forget_if_idle(session)
        return stored, resumed

    def dismiss(self, session_id: str) -> None:
        """Dismiss the session's prompt if one is open."""
        session = self.find(session_id)
        if session is None:
            return
        if session.state is not ReconnectState.IDLE:
            session.dismiss()
        self._forget_if_idle(session)

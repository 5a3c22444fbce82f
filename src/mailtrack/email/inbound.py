"""Inbound receiver: correlate a forwarded message to its thread and record it.

Outcomes, in the order they are decided:

- ``UNCORRELATED`` -- the subject carries no token (spam, bounces, clients
  that rewrote the subject).  Expected; logged at INFO.
- ``DUPLICATE`` -- the message id is already recorded (redelivery).
- ``UNKNOWN_TOKEN`` -- a well-formed token with no thread (stale or forged).
- ``RECORDED`` -- the activity was appended, the thread reset to active, and
  pending auto-close follow-up tasks on the thread completed.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from mailtrack.domain.errors import (
    DuplicateMessageError,
    InvalidTransitionError,
    PersistenceError,
)
from mailtrack.domain.types import Direction
from mailtrack.email.addresses import bare_addresses, split_address
from mailtrack.email.models import InboundEmail, ReceiveOutcome, ReceiveResult
from mailtrack.email.tokens import TokenCodec
from mailtrack.lifecycle.transitions import ThreadEvent
from mailtrack.observability.metrics import EMAILS_RECEIVED
from mailtrack.threads.activities import ActivityLog
from mailtrack.threads.models import EmailActivity
from mailtrack.threads.registry import ThreadRegistry
from mailtrack.threads.tasks import FollowUpTaskStore
from mailtrack.timestamps import parse_message_date, utc_now

logger = structlog.get_logger()


class InboundReceiver:
    """Accept inbound messages and fold them into their conversation threads.

    Args:
        registry: Thread registry.
        activities: Activity log.
        tasks: Follow-up task store.
        codec: Token codec used to read the subject line.
    """

    def __init__(
        self,
        registry: ThreadRegistry,
        activities: ActivityLog,
        tasks: FollowUpTaskStore,
        codec: TokenCodec,
    ) -> None:
        self._registry = registry
        self._activities = activities
        self._tasks = tasks
        self._codec = codec

    def _result(self, outcome: ReceiveOutcome, message: str, **fields: object) -> ReceiveResult:
        EMAILS_RECEIVED.labels(outcome=outcome.value).inc()
        return ReceiveResult(outcome=outcome, message=message, **fields)  # type: ignore[arg-type]

    def receive(self, inbound: InboundEmail, *, now: datetime | None = None) -> ReceiveResult:
        """Process one inbound message.

        Safe to call again with the same payload: the duplicate message id is
        detected before anything is written, and task closure is guarded by
        the pending-status predicate regardless.

        Args:
            inbound: The parsed webhook payload.
            now: Processing time for thread and task timestamps.

        Returns:
            The typed receive result.
        """
        now = now or utc_now()
        from_name, from_email = split_address(inbound.from_)
        log = logger.bind(from_email=from_email, message_id=inbound.message_id)

        token = self._codec.extract(inbound.subject)
        if token is None:
            log.info("inbound_uncorrelated", subject=inbound.subject)
            return self._result(ReceiveOutcome.UNCORRELATED, "No tracking code found")
        log = log.bind(token=token)

        if self._activities.find_by_message_id(inbound.message_id) is not None:
            log.info("inbound_duplicate")
            return self._result(
                ReceiveOutcome.DUPLICATE, "Email already recorded", token=token
            )

        thread = self._registry.find_latest(token)
        if thread is None:
            log.warning("inbound_unknown_token")
            return self._result(
                ReceiveOutcome.UNKNOWN_TOKEN, "Thread token not found", token=token
            )

        starter = self._activities.thread_starter(token)
        in_reply_to = inbound.in_reply_to or (starter.message_id if starter else None)
        sent_at = parse_message_date(inbound.date) or now

        try:
            activity = self._activities.append(
                EmailActivity(
                    thread_id=thread.id,
                    token=token,
                    message_id=inbound.message_id,
                    in_reply_to=in_reply_to,
                    direction=Direction.INBOUND,
                    from_email=from_email,
                    from_name=from_name or from_email,
                    to_emails=bare_addresses(inbound.to),
                    cc_emails=bare_addresses(inbound.cc),
                    subject=inbound.subject,
                    body=inbound.body,
                    sent_at=sent_at,
                    is_thread_starter=False,
                    pipeline_event_id=starter.pipeline_event_id if starter else thread.pipeline_event_id,
                    customer_id=starter.customer_id if starter else thread.customer_id,
                    carrier_id=starter.carrier_id if starter else thread.carrier_id,
                )
            )
        except DuplicateMessageError:
            # Lost a race with a concurrent delivery of the same message.
            log.info("inbound_duplicate")
            return self._result(ReceiveOutcome.DUPLICATE, "Email already recorded", token=token)
        except PersistenceError as exc:
            log.error("inbound_record_failed", error=str(exc))
            return self._result(
                ReceiveOutcome.PERSISTENCE_FAILED, "Failed to save email activity", token=token
            )

        try:
            thread = self._registry.touch(thread.id, ThreadEvent.RECEIVE, now=now)
        except InvalidTransitionError:
            log.info("inbound_on_closed_thread", thread_id=thread.id)
        except PersistenceError as exc:
            log.error("inbound_thread_update_failed", thread_id=thread.id, error=str(exc))

        tasks_closed = 0
        try:
            tasks_closed = self._tasks.close_on_reply(thread.id, from_email, now=now)
        except PersistenceError as exc:
            log.error("follow_up_close_failed", thread_id=thread.id, error=str(exc))

        log.info(
            "inbound_recorded",
            thread_id=thread.id,
            activity_id=activity.id,
            tasks_closed=tasks_closed,
        )
        return self._result(
            ReceiveOutcome.RECORDED,
            "Email received and processed",
            token=token,
            thread_id=thread.id,
            activity_id=activity.id,
            tasks_closed=tasks_closed,
        )

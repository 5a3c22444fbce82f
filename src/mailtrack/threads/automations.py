"""Email automation rules that raise alerts for follow-ups needing attention.

Two rules run on a schedule or on demand:

- ``overdue_followup_tasks``: a pending follow-up task past its due time.
- ``unanswered_email_reminder``: a thread still awaiting a reply after a
  number of days without activity.

Each candidate gets at most one open alert, so reruns are harmless.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from mailtrack.domain.types import AlertRule, ThreadStatus
from mailtrack.observability.metrics import ALERTS_CREATED
from mailtrack.threads.activities import ActivityLog
from mailtrack.threads.alerts import AlertStore
from mailtrack.threads.models import AutomationResult
from mailtrack.threads.registry import ThreadRegistry
from mailtrack.threads.tasks import FollowUpTaskStore
from mailtrack.timestamps import utc_now

logger = structlog.get_logger()

DEFAULT_UNANSWERED_DAYS = 3


class EmailAutomations:
    """Evaluate the automation rules against the thread and task stores.

    Args:
        registry: Thread registry, for awaiting-reply threads.
        activities: Activity log, for each thread's opening subject.
        tasks: Follow-up task store.
        alerts: Where raised alerts are kept.
        unanswered_days: Idle days before an awaiting-reply thread is flagged.
    """

    def __init__(
        self,
        registry: ThreadRegistry,
        activities: ActivityLog,
        tasks: FollowUpTaskStore,
        alerts: AlertStore,
        unanswered_days: int = DEFAULT_UNANSWERED_DAYS,
    ) -> None:
        if unanswered_days < 1:
            raise ValueError("unanswered_days must be at least 1")
        self._registry = registry
        self._activities = activities
        self._tasks = tasks
        self._alerts = alerts
        self._unanswered_days = unanswered_days

    def overdue_followups(self, now: datetime | None = None) -> AutomationResult:
        now = now or utc_now()
        overdue = self._tasks.list_overdue(now)
        alert_ids: list[int] = []
        for task in overdue:
            alert = self._alerts.create_if_absent(
                AlertRule.OVERDUE_FOLLOWUP,
                str(task.id),
                f"Overdue email follow-up: {task.title or 'Untitled task'}",
                user_id=task.created_by,
                details={"thread_id": task.thread_id, "priority": "high"},
                now=now,
            )
            if alert is not None:
                alert_ids.append(alert.id)
        return self._finish(AlertRule.OVERDUE_FOLLOWUP, len(overdue), alert_ids)

    def unanswered_threads(
        self, now: datetime | None = None, days_waiting: int | None = None
    ) -> AutomationResult:
        """Flag awaiting-reply threads idle for at least *days_waiting* days.

        The alert names the subject of the thread's opening email and is owned
        by whoever created the thread.
        """
        now = now or utc_now()
        days = days_waiting or self._unanswered_days
        cutoff = now - timedelta(days=days)
        waiting = [
            thread
            for thread in self._registry.list_by_status(ThreadStatus.AWAITING_REPLY)
            if thread.last_activity_at <= cutoff
        ]
        alert_ids: list[int] = []
        for thread in waiting:
            starter = self._activities.thread_starter(thread.token)
            subject = starter.subject if starter else thread.token
            alert = self._alerts.create_if_absent(
                AlertRule.UNANSWERED_EMAIL,
                thread.id,
                f"No response after {days} days: {subject}",
                user_id=thread.created_by,
                details={"token": thread.token, "days_waiting": str(days)},
                now=now,
            )
            if alert is not None:
                alert_ids.append(alert.id)
        return self._finish(AlertRule.UNANSWERED_EMAIL, len(waiting), alert_ids)

    def run(
        self, rule: AlertRule | None = None, *, now: datetime | None = None
    ) -> list[AutomationResult]:
        """Run one rule, or every rule when *rule* is ``None``.

        Raises:
            PersistenceError: If an alert cannot be stored.
        """
        now = now or utc_now()
        results: list[AutomationResult] = []
        if rule in (None, AlertRule.OVERDUE_FOLLOWUP):
            results.append(self.overdue_followups(now))
        if rule in (None, AlertRule.UNANSWERED_EMAIL):
            results.append(self.unanswered_threads(now))
        return results

    def _finish(self, rule: AlertRule, processed: int, alert_ids: list[int]) -> AutomationResult:
        if alert_ids:
            ALERTS_CREATED.labels(rule=rule.value).inc(len(alert_ids))
            logger.info("automation_alerts_created", rule=rule.value, count=len(alert_ids))
        else:
            logger.debug("automation_no_new_alerts", rule=rule.value, processed=processed)
        return AutomationResult(
            rule=rule, processed=processed, alerts_created=len(alert_ids), alert_ids=alert_ids
        )

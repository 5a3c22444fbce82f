"""Thread registry, activity log, follow-up tasks, stall detection, and automations."""

from mailtrack.threads.activities import ActivityLog
from mailtrack.threads.alerts import AlertStore
from mailtrack.threads.automations import EmailAutomations
from mailtrack.threads.models import (
    Alert,
    AutomationResult,
    EmailActivity,
    FollowUpTask,
    StallSweepResult,
    Thread,
)
from mailtrack.threads.registry import ThreadRegistry
from mailtrack.threads.stall import StallDetector
from mailtrack.threads.tasks import FollowUpTaskStore

__all__ = [
    "ActivityLog",
    "Alert",
    "AlertStore",
    "AutomationResult",
    "EmailActivity",
    "EmailAutomations",
    "FollowUpTask",
    "FollowUpTaskStore",
    "StallDetector",
    "StallSweepResult",
    "Thread",
    "ThreadRegistry",
]

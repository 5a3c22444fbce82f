"""Domain enumerations for email correlation and thread lifecycle."""

from enum import StrEnum


class ThreadStatus(StrEnum):
    """Lifecycle states of a conversation thread."""

    ACTIVE = "active"
    AWAITING_REPLY = "awaiting_reply"
    STALLED = "stalled"
    CLOSED = "closed"


class Direction(StrEnum):
    """Direction of an email activity relative to the mailbox owner."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"


class TaskStatus(StrEnum):
    """States of a follow-up task."""

    PENDING = "pending"
    COMPLETED = "completed"


class CredentialKind(StrEnum):
    """How a mailbox credential authenticates against the mail transport."""

    OAUTH = "oauth"
    SMTP = "smtp"


class Priority(StrEnum):
    """Digest action-item priorities, highest first."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ReconnectState(StrEnum):
    """States of the per-session mailbox reconnect flow."""

    IDLE = "idle"
    PROMPTING = "prompting"
    RECONNECTING = "reconnecting"


class AlertRule(StrEnum):
    """Automation rules that raise alerts."""

    OVERDUE_FOLLOWUP = "overdue_followup_tasks"
    UNANSWERED_EMAIL = "unanswered_email_reminder"


class AlertStatus(StrEnum):
    """States of an automation alert."""

    OPEN = "open"
    RESOLVED = "resolved"


# Sort rank for action items; lower is more urgent.
PRIORITY_ORDER: dict[Priority, int] = {
    Priority.HIGH: 0,
    Priority.MEDIUM: 1,
    Priority.LOW: 2,
}

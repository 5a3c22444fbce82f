"""Pydantic v2 models for threads, email activities, follow-up tasks, and alerts.

Models are frozen (immutable) snapshots of store rows; the stores own every
mutation.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from mailtrack.domain.types import AlertRule, AlertStatus, Direction, TaskStatus, ThreadStatus


class Thread(BaseModel):
    """A stateful conversation keyed by its correlation token."""

    model_config = ConfigDict(frozen=True)

    id: str
    token: str
    status: ThreadStatus
    pipeline_event_id: str | None = None
    customer_id: str | None = None
    carrier_id: str | None = None
    created_by: str | None = None
    last_activity_at: datetime
    created_at: datetime
    updated_at: datetime


class EmailActivity(BaseModel):
    """One immutable outbound or inbound email record.

    ``id`` is ``None`` until the activity log assigns a row id.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    thread_id: str | None = None
    token: str
    message_id: str = ""  # RFC 5322 Message-ID header
    in_reply_to: str | None = None
    direction: Direction
    from_email: str
    from_name: str | None = None
    to_emails: list[str] = Field(default_factory=list)
    cc_emails: list[str] = Field(default_factory=list)
    subject: str
    body: str = ""
    sent_at: datetime
    is_thread_starter: bool = False
    pipeline_event_id: str | None = None
    customer_id: str | None = None
    carrier_id: str | None = None
    created_by: str | None = None


class FollowUpTask(BaseModel):
    """An obligation to act if no reply arrives on a thread."""

    model_config = ConfigDict(frozen=True)

    id: int
    thread_id: str
    status: TaskStatus
    auto_close_on_reply: bool
    title: str = ""
    due_at: datetime | None = None
    completed_at: datetime | None = None
    completion_notes: str | None = None
    created_by: str | None = None


class StallSweepResult(BaseModel):
    """Outcome of one stall detector run."""

    model_config = ConfigDict(frozen=True)

    count: int
    thread_ids: list[str] = Field(default_factory=list)

    @property
    def message(self) -> str:
        """Human-readable summary matching the sweep entry point."""
        if self.count == 0:
            return "No threads to mark as stalled"
        return f"Marked {self.count} thread{'s' if self.count != 1 else ''} as stalled"


class Alert(BaseModel):
    """A notice raised by an email automation for one thread or task."""

    model_config = ConfigDict(frozen=True)

    id: int
    rule: AlertRule
    entity_id: str
    user_id: str | None = None
    message: str
    details: dict[str, str] = Field(default_factory=dict)
    status: AlertStatus = AlertStatus.OPEN
    created_at: datetime
    resolved_at: datetime | None = None


class AutomationResult(BaseModel):
    """Outcome of one automation rule run.

    ``processed`` counts the candidates the rule looked at; ``alerts_created``
    only the ones that did not already have an open alert.
    """

    model_config = ConfigDict(frozen=True)

    rule: AlertRule
    processed: int
    alerts_created: int
    alert_ids: list[int] = Field(default_factory=list)

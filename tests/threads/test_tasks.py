"""Tests for FollowUpTaskStore creation and reply-driven auto-closure."""

from __future__ import annotations

from datetime import datetime, timedelta

from mailtrack.domain.types import TaskStatus
from mailtrack.threads.registry import ThreadRegistry
from mailtrack.threads.tasks import FollowUpTaskStore


class TestCreate:
    def test_create_pending_task(
        self, registry: ThreadRegistry, tasks: FollowUpTaskStore, now: datetime
    ) -> None:
        thread = registry.create("FO-A1B2C3D4", now=now)

        task = tasks.create(
            thread.id,
            title="Chase carrier for rates",
            due_at=now + timedelta(days=3),
            created_by="user-1",
        )

        assert task.status == TaskStatus.PENDING
        assert task.auto_close_on_reply is True
        assert task.due_at == now + timedelta(days=3)
        assert tasks.list_for_thread(thread.id) == [task]


class TestCloseOnReply:
    def test_closes_only_pending_auto_close_tasks(
        self, registry: ThreadRegistry, tasks: FollowUpTaskStore, now: datetime
    ) -> None:
        thread = registry.create("FO-A1B2C3D4", now=now)
        other = registry.create("FO-ZZZZZZZZ", now=now)
        eligible = tasks.create(thread.id, title="Follow up")
        manual = tasks.create(thread.id, title="Call", auto_close_on_reply=False)
        elsewhere = tasks.create(other.id, title="Other thread")

        closed = tasks.close_on_reply(thread.id, "ops@carrier.example", now=now)

        assert closed == 1
        done = tasks.get(eligible.id)
        assert done is not None
        assert done.status == TaskStatus.COMPLETED
        assert done.completed_at == now
        assert done.completion_notes == "Auto-closed: Reply received from ops@carrier.example"
        assert tasks.get(manual.id).status == TaskStatus.PENDING  # type: ignore[union-attr]
        assert tasks.get(elsewhere.id).status == TaskStatus.PENDING  # type: ignore[union-attr]

    def test_second_call_is_noop(
        self, registry: ThreadRegistry, tasks: FollowUpTaskStore, now: datetime
    ) -> None:
        thread = registry.create("FO-A1B2C3D4", now=now)
        task = tasks.create(thread.id)

        assert tasks.close_on_reply(thread.id, "a@carrier.example", now=now) == 1
        assert tasks.close_on_reply(thread.id, "b@carrier.example", now=now + timedelta(hours=1)) == 0

        done = tasks.get(task.id)
        assert done is not None
        assert done.completed_at == now
        assert done.completion_notes == "Auto-closed: Reply received from a@carrier.example"

"""Tests for the automation, alert, and inbox poll endpoints."""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from mailtrack.domain.errors import PersistenceError
from mailtrack.domain.types import AlertRule
from mailtrack.email.models import PollOutcome, PollResult
from mailtrack.timestamps import utc_now


def _overdue_task(services: dict[str, Any], owner: str = "user-1") -> int:
    thread = services["registry"].create("FO-A1B2C3D4")
    task = services["tasks"].create(
        thread.id, title="Chase carrier", due_at=utc_now() - timedelta(hours=2), created_by=owner
    )
    return task.id


class TestRunAutomations:
    def test_runs_all_rules(self, client: TestClient, services: dict[str, Any]) -> None:
        _overdue_task(services)

        resp = client.post("/automations/run")

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "results": [
                {"ruleType": "overdue_followup_tasks", "processed": 1, "alertsCreated": 1},
                {"ruleType": "unanswered_email_reminder", "processed": 0, "alertsCreated": 0},
            ],
        }

    def test_single_rule(self, client: TestClient) -> None:
        resp = client.post("/automations/run", json={"ruleType": "unanswered_email_reminder"})

        assert [r["ruleType"] for r in resp.json()["results"]] == ["unanswered_email_reminder"]

    def test_unknown_rule(self, client: TestClient) -> None:
        resp = client.post("/automations/run", json={"ruleType": "weekly_report"})

        assert resp.status_code == 422

    def test_store_failure(self, client: TestClient, services: dict[str, Any]) -> None:
        services["automations"] = MagicMock()
        services["automations"].run.side_effect = PersistenceError("locked")

        resp = client.post("/automations/run")

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Failed to run email automations"}


class TestAlerts:
    def test_list_and_resolve(
        self, client: TestClient, services: dict[str, Any], auth_headers: dict[str, str]
    ) -> None:
        task_id = _overdue_task(services)
        client.post("/automations/run", json={"ruleType": AlertRule.OVERDUE_FOLLOWUP.value})

        [alert] = client.get("/alerts", headers=auth_headers).json()["alerts"]
        assert alert["entityId"] == str(task_id)
        assert alert["message"] == "Overdue email follow-up: Chase carrier"

        resolved = client.post(f"/alerts/{alert['id']}/resolve", headers=auth_headers)

        assert resolved.status_code == 200
        assert resolved.json()["alert"]["status"] == "resolved"
        assert client.get("/alerts", headers=auth_headers).json() == {"alerts": []}

    def test_other_users_alert_not_found(
        self, client: TestClient, services: dict[str, Any], auth_headers: dict[str, str]
    ) -> None:
        _overdue_task(services, owner="user-2")
        client.post("/automations/run")
        [alert] = services["alerts"].list_open("user-2")

        resp = client.post(f"/alerts/{alert.id}/resolve", headers=auth_headers)

        assert resp.status_code == 404
        assert client.get("/alerts", headers=auth_headers).json() == {"alerts": []}

    def test_requires_auth(self, client: TestClient) -> None:
        assert client.get("/alerts").status_code == 401


class TestPollEndpoint:
    def test_not_configured(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        resp = client.post("/emails/poll", headers=auth_headers)

        assert resp.status_code == 503
        assert resp.json()["success"] is False

    def test_polls_caller_inbox(
        self, client: TestClient, services: dict[str, Any], auth_headers: dict[str, str]
    ) -> None:
        checked = utc_now()
        services["inbox_poller"] = MagicMock()
        services["inbox_poller"].poll_user.return_value = PollResult(
            outcome=PollOutcome.POLLED, user_id="user-1", new_messages=2, checked_at=checked
        )

        resp = client.post("/emails/poll", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "newMessages": 2,
            "lastChecked": checked.isoformat(),
        }
        services["inbox_poller"].poll_user.assert_called_once_with("user-1")

    def test_rejected_credential(
        self, client: TestClient, services: dict[str, Any], auth_headers: dict[str, str]
    ) -> None:
        services["inbox_poller"] = MagicMock()
        services["inbox_poller"].poll_user.return_value = PollResult(
            outcome=PollOutcome.CREDENTIAL_INVALID,
            user_id="user-1",
            error="Gmail rejected the credential (401)",
        )

        resp = client.post("/emails/poll", headers=auth_headers)

        assert resp.status_code == 409
        assert resp.json()["outcome"] == "credential_invalid"

"""Tests for the send and inbound endpoints."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from mailtrack.domain.errors import CredentialInvalidError, TransientError
from mailtrack.domain.types import ThreadStatus

SEND_BODY = {
    "to": ["ops@carrier.example"],
    "subject": "Rate request",
    "body": "Please quote Chicago to Dallas.",
    "customerId": "cust-9",
}


def _connect(client: TestClient, headers: dict[str, str], payload: dict[str, Any]) -> None:
    assert client.post("/credentials", json=payload, headers=headers).status_code == 200


class TestSendEndpoint:
    def test_send_success(
        self,
        client: TestClient,
        services: dict[str, Any],
        transport: MagicMock,
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        _connect(client, auth_headers, smtp_payload)

        resp = client.post("/emails/send", json=SEND_BODY, headers=auth_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Email sent successfully"
        assert body["subject"] == f"Rate request [{body['trackingCode']}]"
        assert body["messageId"].endswith("@freight.example>")
        transport.send.assert_called_once()
        thread = services["registry"].get(body["threadId"])
        assert thread.status == ThreadStatus.ACTIVE
        assert thread.customer_id == "cust-9"

    def test_not_connected_opens_reconnect_prompt(
        self, client: TestClient, transport: MagicMock, auth_headers: dict[str, str]
    ) -> None:
        resp = client.post("/emails/send", json=SEND_BODY, headers=auth_headers)

        assert resp.status_code == 409
        body = resp.json()
        assert body["success"] is False
        assert body["outcome"] == "not_connected"
        assert body["reconnect"] is True
        transport.send.assert_not_called()

        status = client.get("/reconnect", headers=auth_headers).json()
        assert status["state"] == "prompting"
        assert status["pendingAction"] is True

    def test_transient_failure_does_not_prompt(
        self,
        client: TestClient,
        transport: MagicMock,
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        _connect(client, auth_headers, smtp_payload)
        transport.send.side_effect = TransientError("Gmail API unavailable (503)")

        resp = client.post("/emails/send", json=SEND_BODY, headers=auth_headers)

        assert resp.status_code == 503
        assert resp.json()["outcome"] == "transient"
        assert resp.json()["reconnect"] is False
        assert client.get("/reconnect", headers=auth_headers).json()["state"] == "idle"

    def test_invalid_request_body(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        resp = client.post(
            "/emails/send", json={"to": [], "subject": "x", "body": "y"}, headers=auth_headers
        )
        assert resp.status_code == 422


class TestReconnectResume:
    def test_reissue_resends_the_failed_email(
        self,
        client: TestClient,
        services: dict[str, Any],
        transport: MagicMock,
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        _connect(client, auth_headers, smtp_payload)
        transport.send.side_effect = [CredentialInvalidError("SMTP authentication failed (535)"), None]
        headers = {**auth_headers, "X-Session-ID": "tab-1"}

        failed = client.post("/emails/send", json=SEND_BODY, headers=headers)
        assert failed.status_code == 409
        assert failed.json()["outcome"] == "credential_invalid"

        prompt = client.get("/reconnect", headers=headers).json()
        assert prompt["state"] == "prompting"
        assert prompt["message"] == failed.json()["hint"]
        assert client.get("/reconnect", headers=auth_headers).json()["state"] == "idle"

        saved = client.post(
            "/credentials", json={**smtp_payload, "app_password": "new-pass"}, headers=headers
        )

        assert saved.status_code == 200
        resumed = saved.json()["resumed"]
        assert resumed["success"] is True
        assert resumed["subject"].startswith("Rate request [")
        assert transport.send.call_count == 2
        credential = transport.send.call_args.args[0]
        assert credential.app_password.get_secret_value() == "new-pass"
        assert client.get("/reconnect", headers=headers).json()["state"] == "idle"

    def test_dismiss_discards_pending_send(
        self,
        client: TestClient,
        transport: MagicMock,
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        client.post("/emails/send", json=SEND_BODY, headers=auth_headers)

        dismissed = client.post("/reconnect/dismiss", headers=auth_headers)
        assert dismissed.json() == {"state": "idle", "message": None, "pendingAction": False}

        saved = client.post("/credentials", json=smtp_payload, headers=auth_headers)
        assert "resumed" not in saved.json()
        transport.send.assert_not_called()

    def test_overlapping_reissue_still_succeeds(
        self,
        client: TestClient,
        services: dict[str, Any],
        transport: MagicMock,
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        client.post("/emails/send", json=SEND_BODY, headers=auth_headers)
        in_flight = services["reconnect"].find("user-1")
        assert in_flight.claim() is True

        saved = client.post("/credentials", json=smtp_payload, headers=auth_headers)

        assert saved.status_code == 200
        assert saved.json()["resumed"]["success"] is True
        assert in_flight.complete() is None
        transport.send.assert_called_once()

    def test_status_poll_does_not_create_session(
        self, client: TestClient, services: dict[str, Any], auth_headers: dict[str, str]
    ) -> None:
        headers = {**auth_headers, "X-Session-ID": "tab-9"}

        status = client.get("/reconnect", headers=headers)
        client.post("/reconnect/dismiss", headers=headers)

        assert status.json() == {"state": "idle", "message": None, "pendingAction": False}
        assert services["reconnect"].find("user-1:tab-9") is None


class TestInboundEndpoint:
    def _send(
        self, client: TestClient, headers: dict[str, str], payload: dict[str, Any]
    ) -> dict[str, Any]:
        _connect(client, headers, payload)
        return client.post("/emails/send", json=SEND_BODY, headers=headers).json()

    def test_reply_is_recorded(
        self,
        client: TestClient,
        services: dict[str, Any],
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        sent = self._send(client, auth_headers, smtp_payload)
        services["tasks"].create(sent["threadId"], title="Chase carrier")

        resp = client.post(
            "/emails/inbound",
            json={
                "from": "Dispatch <ops@carrier.example>",
                "to": ["rep@freight.example"],
                "subject": f"RE: Rate request [{sent['trackingCode']}]",
                "body": "We can cover it.",
                "messageId": "<reply-1@carrier.example>",
            },
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Email received and processed"
        assert body["threadId"] == sent["threadId"]
        assert body["trackingCode"] == sent["trackingCode"]
        assert body["tasksClosed"] == 1

    def test_redelivery_is_acknowledged(
        self,
        client: TestClient,
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        sent = self._send(client, auth_headers, smtp_payload)
        payload = {
            "from": "ops@carrier.example",
            "subject": f"Re: [{sent['trackingCode']}]",
            "messageId": "<reply-2@carrier.example>",
        }

        client.post("/emails/inbound", json=payload)
        resp = client.post("/emails/inbound", json=payload)

        assert resp.status_code == 200
        assert resp.json() == {"success": False, "message": "Email already recorded"}

    def test_uncorrelated(self, client: TestClient) -> None:
        resp = client.post(
            "/emails/inbound", json={"from": "spam@example.com", "subject": "You won!"}
        )

        assert resp.status_code == 200
        assert resp.json() == {"success": False, "message": "No tracking code found"}

    def test_unknown_token(self, client: TestClient) -> None:
        resp = client.post(
            "/emails/inbound",
            json={"from": "ops@carrier.example", "subject": "Re: [FO-ZZZZZZZZ]"},
        )

        assert resp.status_code == 404
        assert resp.json() == {"success": False, "message": "Thread token not found"}
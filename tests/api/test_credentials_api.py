"""Tests for mailbox credential connect, status, and disconnect endpoints."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from mailtrack.auth.reconnect import ReconnectSupervisor
from mailtrack.domain.errors import CredentialReplaceError, PersistenceError


class TestCredentialEndpoints:
    def test_status_when_not_connected(
        self, client: TestClient, auth_headers: dict[str, str]
    ) -> None:
        resp = client.get("/credentials", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json() == {"connected": False}

    def test_save_smtp_then_status(
        self,
        client: TestClient,
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        saved = client.post("/credentials", json=smtp_payload, headers=auth_headers)

        assert saved.status_code == 200
        assert saved.json() == {
            "success": True,
            "userId": "user-1",
            "email": "rep@freight.example",
            "kind": "smtp",
        }
        assert client.get("/credentials", headers=auth_headers).json() == {
            "connected": True,
            "email": "rep@freight.example",
            "kind": "smtp",
        }

    def test_save_oauth_replaces_smtp(
        self,
        client: TestClient,
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        client.post("/credentials", json=smtp_payload, headers=auth_headers)

        resp = client.post(
            "/credentials",
            json={
                "email_address": "rep@freight.example",
                "access_token": "ya29.token",
                "refresh_token": "1//refresh",
                "token_expiry": "2026-03-02T13:00:00Z",
            },
            headers=auth_headers,
        )

        assert resp.json()["kind"] == "oauth"
        assert client.get("/credentials", headers=auth_headers).json()["kind"] == "oauth"

    def test_secrets_never_echoed(
        self,
        client: TestClient,
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        saved = client.post("/credentials", json=smtp_payload, headers=auth_headers)
        status = client.get("/credentials", headers=auth_headers)

        assert "app-pass" not in saved.text
        assert "app-pass" not in status.text

    def test_delete(
        self,
        client: TestClient,
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        client.post("/credentials", json=smtp_payload, headers=auth_headers)

        first = client.delete("/credentials", headers=auth_headers)
        second = client.delete("/credentials", headers=auth_headers)

        assert first.json() == {"success": True, "removed": True}
        assert second.json() == {"success": True, "removed": False}
        assert client.get("/credentials", headers=auth_headers).json() == {"connected": False}

    def test_partial_replace_failure(
        self,
        client: TestClient,
        services: dict[str, Any],
        auth_headers: dict[str, str],
        smtp_payload: dict[str, Any],
    ) -> None:
        store = MagicMock()
        store.put.side_effect = CredentialReplaceError("user-1", prior_lost=True)
        services["reconnect"] = ReconnectSupervisor(store)

        resp = client.post("/credentials", json=smtp_payload, headers=auth_headers)

        assert resp.status_code == 500
        body = resp.json()
        assert body["success"] is False
        assert body["priorLost"] is True
        assert body["hint"] == "Please try connecting your mailbox again."

    def test_delete_failure(
        self, client: TestClient, services: dict[str, Any], auth_headers: dict[str, str]
    ) -> None:
        services["credentials"] = MagicMock()
        services["credentials"].delete.side_effect = PersistenceError("locked")

        resp = client.delete("/credentials", headers=auth_headers)

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Failed to disconnect mailbox"}

    def test_invalid_payload(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        resp = client.post(
            "/credentials", json={"email_address": "rep@freight.example"}, headers=auth_headers
        )
        assert resp.status_code == 422

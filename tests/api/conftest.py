"""Fixtures for HTTP API tests: a real app over an in-memory store.

The mail transport is swapped for a MagicMock so no mail leaves the process.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from mailtrack.app import create_app, initialize_services
from mailtrack.auth.jwt import create_access_token
from mailtrack.config import Settings
from mailtrack.email.outbound import OutboundSender


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        db_path=Path(":memory:"),
        jwt_secret="test-secret",  # type: ignore[arg-type]
    )


@pytest.fixture
def services(settings: Settings, transport: MagicMock) -> Iterator[dict[str, Any]]:
    services = initialize_services(settings)
    services["sender"] = OutboundSender(
        services["credentials"],
        services["registry"],
        services["activities"],
        transport,
        services["codec"],
    )
    yield services
    services["db_conn"].close()


@pytest.fixture
def client(services: dict[str, Any]) -> TestClient:
    return TestClient(create_app(services), raise_server_exceptions=False)


@pytest.fixture
def auth_headers(settings: Settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('user-1', settings)}"}


@pytest.fixture
def smtp_payload() -> dict[str, Any]:
    return {"email_address": "rep@freight.example", "app_password": "app-pass"}

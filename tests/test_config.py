"""Tests for centralized Settings, startup validation, and get_settings cache.

Covers: defaults, env-override, production secret gate, dev-mode warnings,
and lru_cache behavior.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from mailtrack.config import Settings, get_settings, validate_settings

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    """Clear get_settings lru_cache before each test."""
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Settings defaults
# ---------------------------------------------------------------------------

class TestSettingsDefaults:
    """Verify that Settings fields have the expected default values."""

    def test_settings_defaults(self) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.production is False
        assert s.http_port == 8000
        assert s.db_path == Path("data/mailtrack.db")
        assert s.token_prefix == "FO"
        assert s.stall_threshold_days == 7
        assert s.digest_top_n == 5
        assert s.jwt_algorithm == "HS256"
        assert s.gmail_client_id == ""

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PRODUCTION", "true")
        monkeypatch.setenv("HTTP_PORT", "9090")
        monkeypatch.setenv("STALL_THRESHOLD_DAYS", "3")
        monkeypatch.setenv("JWT_SECRET", "from-env")

        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.production is True
        assert s.http_port == 9090
        assert s.stall_threshold_days == 3
        assert s.jwt_secret.get_secret_value() == "from-env"

    def test_secrets_are_masked(self) -> None:
        s = Settings(_env_file=None, jwt_secret="hunter2")  # type: ignore[call-arg]
        assert "hunter2" not in repr(s)


# ---------------------------------------------------------------------------
# Startup validation
# ---------------------------------------------------------------------------

class TestValidateSettings:
    """Verify validate_settings behaviour in production and dev modes."""

    def test_production_missing_jwt_secret_exits(self) -> None:
        settings = Settings(_env_file=None, production=True)  # type: ignore[call-arg]

        with pytest.raises(SystemExit) as exc_info:
            validate_settings(settings)

        assert exc_info.value.code == 1

    def test_production_gmail_client_without_secret_exits(self) -> None:
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            production=True,
            jwt_secret="s3cret",  # type: ignore[arg-type]
            gmail_client_id="client-id.apps.googleusercontent.com",
        )

        with pytest.raises(SystemExit):
            validate_settings(settings)

    def test_production_valid(self) -> None:
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            production=True,
            jwt_secret="s3cret",  # type: ignore[arg-type]
        )

        # Should NOT raise or exit
        validate_settings(settings)

    def test_dev_mode_warns(self) -> None:
        """Dev mode logs warnings but does NOT exit."""
        settings = Settings(_env_file=None, production=False)  # type: ignore[call-arg]

        validate_settings(settings)


# ---------------------------------------------------------------------------
# get_settings cache
# ---------------------------------------------------------------------------

class TestGetSettingsCached:
    """Verify lru_cache on get_settings."""

    def test_get_settings_cached(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Calling get_settings() twice returns the exact same object."""
        monkeypatch.delenv("PRODUCTION", raising=False)

        first = get_settings()
        second = get_settings()

        assert first is second

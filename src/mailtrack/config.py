"""Service settings read from the environment (and an optional ``.env``).

``get_settings()`` parses once and caches; ``validate_settings()`` refuses to
start a production process whose caller-auth or Gmail secrets are missing.

Nothing from ``mailtrack`` is imported here, so any module may import it.
"""

from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file.

    ``SecretStr`` fields prevent accidental leaks in logs or error output.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    http_port: int = 8000

    # -- Store -----------------------------------------------------------------
    db_path: Path = Path("data/mailtrack.db")

    # -- Correlation tokens ----------------------------------------------------
    token_prefix: str = "FO"

    # -- Stall detection -------------------------------------------------------
    stall_threshold_days: int = 7
    stall_sweep_interval_seconds: int = 86400

    # -- Digest ----------------------------------------------------------------
    digest_interval_seconds: int = 86400
    digest_horizon_days: int = 90
    digest_urgent_days: int = 30
    digest_top_n: int = 5

    # -- Automations -----------------------------------------------------------
    automation_interval_seconds: int = 3600
    unanswered_reply_days: int = 3

    # -- Mail transport --------------------------------------------------------
    default_smtp_host: str = "smtp.gmail.com"
    default_smtp_port: int = 587
    transport_timeout_seconds: float = 30.0
    gmail_client_id: str = ""
    gmail_client_secret: SecretStr = SecretStr("")
    gmail_poll_interval_seconds: int = 300

    # -- Caller authentication -------------------------------------------------
    jwt_secret: SecretStr = SecretStr("")
    jwt_algorithm: str = "HS256"

    # -- Observability ---------------------------------------------------------
    sentry_dsn: str = ""


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    Call ``get_settings.cache_clear()`` in tests to reset.

    Returns:
        The application ``Settings``.
    """
    try:
        return Settings()
    except ValidationError as exc:
        # Log only the structured errors list -- never the full exception
        # which may contain raw SecretStr values.
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)


def validate_settings(settings: Settings) -> None:
    """Enforce secret presence at startup.

    In **production** mode the application exits with a clear error block if
    a required secret is missing.  In **development** mode each problem is
    logged as a warning and startup continues.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    if not settings.jwt_secret.get_secret_value():
        errors.append("JWT_SECRET is empty or not set")

    if settings.gmail_client_id and not settings.gmail_client_secret.get_secret_value():
        errors.append("GMAIL_CLIENT_ID is set but GMAIL_CLIENT_SECRET is empty")

    if not errors:
        logger.info("settings_validation_passed")
        return

    if settings.production:
        for err in errors:
            logger.error("setting_missing", detail=err)
        print("\n=== STARTUP FAILED ===", file=sys.stderr)
        print("Missing required settings for production mode:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print("======================\n", file=sys.stderr)
        sys.exit(1)
    else:
        for err in errors:
            logger.warning("setting_missing_dev", detail=err)

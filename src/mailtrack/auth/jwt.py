"""JWT access token creation and validation for API callers.

Both directions refuse to work without a configured secret: an empty HMAC
key would let anyone mint a valid token.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from mailtrack.config import Settings


def _signing_key(settings: Settings) -> str:
    secret = settings.jwt_secret.get_secret_value()
    if not secret:
        raise JWTError("JWT secret is not configured")
    return secret


def create_access_token(
    user_id: str,
    settings: Settings,
    expires_in: timedelta = timedelta(hours=1),
    **claims: Any,
) -> str:
    """Create a signed JWT access token for *user_id*.

    Raises ``JWTError`` if no secret is configured.
    """
    payload: dict[str, Any] = {
        "sub": user_id,
        "exp": datetime.now(UTC) + expires_in,
        "type": "access",
        **claims,
    }
    return jwt.encode(payload, _signing_key(settings), algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    """Decode and validate a JWT token. Raises ``JWTError`` on failure."""
    return jwt.decode(token, _signing_key(settings), algorithms=[settings.jwt_algorithm])

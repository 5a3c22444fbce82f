"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from mailtrack.auth.jwt import decode_token
from mailtrack.config import Settings

logger = structlog.get_logger()

_bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> dict[str, Any]:
    return request.app.state.services


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> str:
    """Decode the bearer JWT and return the caller's user id."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_token(credentials.credentials, settings)
    except JWTError:
        logger.info("auth_token_rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    if payload.get("type") != "access" or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return str(payload["sub"])


def get_session_id(
    request: Request,
    user_id: Annotated[str, Depends(get_current_user)],
) -> str:
    """Reconnect session key, scoped to the caller.

    Browser tabs send ``X-Session-ID``; without it the user has one session.
    """
    client_session = request.headers.get("X-Session-ID")
    return f"{user_id}:{client_session}" if client_session else user_id


Services = Annotated[dict[str, Any], Depends(get_services)]
CurrentUser = Annotated[str, Depends(get_current_user)]
SessionId = Annotated[str, Depends(get_session_id)]

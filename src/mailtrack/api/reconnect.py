"""Reconnect prompt status and dismissal for the caller's session."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from mailtrack.api.deps import Services, SessionId
from mailtrack.auth.reconnect import ReconnectSession
from mailtrack.domain.types import ReconnectState

router = APIRouter(prefix="/reconnect", tags=["reconnect"])

IDLE_PAYLOAD: dict[str, Any] = {
    "state": ReconnectState.IDLE.value,
    "message": None,
    "pendingAction": False,
}


def session_payload(session: ReconnectSession | None) -> dict[str, Any]:
    if session is None:
        return dict(IDLE_PAYLOAD)
    return {
        "state": session.state.value,
        "message": session.error_message or None,
        "pendingAction": session.has_continuation,
    }


@router.get("")
async def reconnect_status(session_id: SessionId, services: Services) -> dict[str, Any]:
    return session_payload(services["reconnect"].find(session_id))


@router.post("/dismiss")
async def dismiss_reconnect(session_id: SessionId, services: Services) -> dict[str, Any]:
    """Close the prompt; the pending action is discarded."""
    supervisor = services["reconnect"]
    supervisor.dismiss(session_id)
    return session_payload(supervisor.find(session_id))

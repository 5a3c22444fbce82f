"""Mailbox credential endpoints: connect, inspect, disconnect."""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from mailtrack.api.deps import CurrentUser, Services, SessionId
from mailtrack.api.emails import send_payload
from mailtrack.auth.models import OAuthCredentialPayload, SmtpCredentialPayload
from mailtrack.domain.errors import CredentialReplaceError, PersistenceError
from mailtrack.email.models import SendResult

logger = structlog.get_logger()

router = APIRouter(prefix="/credentials", tags=["credentials"])


@router.get("")
async def credential_status(user_id: CurrentUser, services: Services) -> JSONResponse:
    """Report whether the caller has a mailbox connected."""
    credential = await asyncio.to_thread(services["credentials"].find, user_id)
    if credential is None:
        return JSONResponse({"connected": False})
    return JSONResponse(
        {
            "connected": True,
            "email": credential.email_address,
            "kind": credential.kind.value,
        }
    )


@router.post("")
async def save_credential(
    payload: OAuthCredentialPayload | SmtpCredentialPayload,
    user_id: CurrentUser,
    session_id: SessionId,
    services: Services,
) -> JSONResponse:
    """Store (or replace) the caller's mailbox credential.

    If the caller's session was prompting for a reconnect, the send that
    triggered the prompt is retried and its result returned as ``resumed``.
    """
    credential = payload.to_credential(user_id)
    try:
        stored, resumed = await asyncio.to_thread(
            services["reconnect"].reissue, session_id, credential
        )
    except CredentialReplaceError as exc:
        return JSONResponse(
            {
                "success": False,
                "error": str(exc),
                "priorLost": exc.prior_lost,
                "hint": "Please try connecting your mailbox again.",
            },
            status_code=500,
        )

    body = {
        "success": True,
        "userId": stored.user_id,
        "email": stored.email_address,
        "kind": stored.kind.value,
    }
    if isinstance(resumed, SendResult):
        body["resumed"] = send_payload(resumed)
    return JSONResponse(body)


@router.delete("")
async def delete_credential(user_id: CurrentUser, services: Services) -> JSONResponse:
    """Disconnect the caller's mailbox."""
    try:
        removed = await asyncio.to_thread(services["credentials"].delete, user_id)
    except PersistenceError:
        logger.error("credential_delete_failed", user_id=user_id)
        return JSONResponse(
            {"success": False, "error": "Failed to disconnect mailbox"}, status_code=500
        )
    return JSONResponse({"success": True, "removed": removed})

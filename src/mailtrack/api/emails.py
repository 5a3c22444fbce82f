"""Outbound send, inbound webhook, and Gmail inbox poll endpoints."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from mailtrack.api.deps import CurrentUser, Services, SessionId
from mailtrack.domain.errors import PersistenceError
from mailtrack.email.models import (
    InboundEmail,
    OutboundRequest,
    PollOutcome,
    PollResult,
    ReceiveOutcome,
    ReceiveResult,
    SendOutcome,
    SendResult,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/emails", tags=["emails"])

SEND_STATUS: dict[SendOutcome, int] = {
    SendOutcome.SENT: 200,
    SendOutcome.NOT_CONNECTED: 409,
    SendOutcome.CREDENTIAL_INVALID: 409,
    SendOutcome.TRANSIENT: 503,
    SendOutcome.SEND_FAILED: 502,
    SendOutcome.PERSISTENCE_FAILED: 500,
}

RECEIVE_STATUS: dict[ReceiveOutcome, int] = {
    ReceiveOutcome.RECORDED: 200,
    ReceiveOutcome.UNCORRELATED: 200,
    ReceiveOutcome.DUPLICATE: 200,
    ReceiveOutcome.UNKNOWN_TOKEN: 404,
    ReceiveOutcome.PERSISTENCE_FAILED: 500,
}

POLL_STATUS: dict[PollOutcome, int] = {
    PollOutcome.POLLED: 200,
    PollOutcome.NOT_CONNECTED: 409,
    PollOutcome.CREDENTIAL_INVALID: 409,
    PollOutcome.FAILED: 502,
}


def send_payload(result: SendResult) -> dict[str, Any]:
    """Render a ``SendResult`` as the JSON body of the send endpoint."""
    if result.ok:
        return {
            "success": True,
            "message": "Email sent successfully",
            "trackingCode": result.token,
            "subject": result.subject,
            "messageId": result.message_id,
            "threadId": result.thread_id,
            "emailId": result.activity_id,
        }
    return {
        "success": False,
        "outcome": result.outcome.value,
        "error": result.error,
        "hint": result.hint,
        "reconnect": result.needs_reconnect,
        "trackingCode": result.token,
        "messageId": result.message_id,
    }


def receive_payload(result: ReceiveResult) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": result.outcome is ReceiveOutcome.RECORDED,
        "message": result.message,
    }
    if result.outcome is ReceiveOutcome.RECORDED:
        body.update(
            emailId=result.activity_id,
            trackingCode=result.token,
            threadId=result.thread_id,
            tasksClosed=result.tasks_closed,
        )
    return body


@router.post("/send")
async def send_email(
    payload: OutboundRequest,
    user_id: CurrentUser,
    session_id: SessionId,
    services: Services,
) -> JSONResponse:
    """Send an email as the authenticated user and record it on its thread.

    A missing or rejected mailbox credential opens the caller's reconnect
    prompt; the send is retried once the user reconnects.
    """
    sender = services["sender"]
    result: SendResult = await asyncio.to_thread(sender.send, user_id, payload)

    if result.needs_reconnect:
        services["reconnect"].observe(
            session_id, result, continuation=lambda: sender.send(user_id, payload)
        )

    return JSONResponse(send_payload(result), status_code=SEND_STATUS[result.outcome])


@router.post("/inbound")
async def receive_email(inbound: InboundEmail, services: Services) -> JSONResponse:
    """Webhook for forwarded inbound mail.

    Unauthenticated; failure responses carry only a generic message.
    """
    result: ReceiveResult = await asyncio.to_thread(services["receiver"].receive, inbound)
    return JSONResponse(receive_payload(result), status_code=RECEIVE_STATUS[result.outcome])


@router.post("/poll")
async def poll_inbox(user_id: CurrentUser, services: Services) -> JSONResponse:
    """Fetch new replies from the caller's Gmail inbox."""
    poller = services.get("inbox_poller")
    if poller is None:
        return JSONResponse(
            {"success": False, "error": "Gmail inbox polling is not configured"}, status_code=503
        )
    try:
        result: PollResult = await asyncio.to_thread(poller.poll_user, user_id)
    except PersistenceError:
        return JSONResponse(
            {"success": False, "error": "Failed to save sync state"}, status_code=500
        )

    body: dict[str, Any] = {"success": result.ok, "newMessages": result.new_messages}
    if result.ok:
        body["lastChecked"] = result.checked_at.isoformat() if result.checked_at else None
    else:
        body.update(outcome=result.outcome.value, error=result.error)
    return JSONResponse(body, status_code=POLL_STATUS[result.outcome])

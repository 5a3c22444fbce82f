"""Stall sweep endpoint."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from mailtrack.api.deps import Services
from mailtrack.domain.errors import PersistenceError
from mailtrack.threads.models import StallSweepResult

router = APIRouter(prefix="/threads", tags=["threads"])


@router.post("/stall-sweep")
async def stall_sweep(services: Services) -> JSONResponse:
    """Mark idle active/awaiting-reply threads as stalled."""
    try:
        result: StallSweepResult = await asyncio.to_thread(services["stall_detector"].sweep)
    except PersistenceError:
        return JSONResponse(
            {"success": False, "error": "Failed to mark threads as stalled"}, status_code=500
        )
    return JSONResponse(
        {
            "success": True,
            "message": result.message,
            "count": result.count,
            "threadIds": result.thread_ids,
        }
    )

"""Daily digest endpoint."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from mailtrack.api.deps import Services
from mailtrack.digest.models import Digest, DigestSweepResult
from mailtrack.domain.errors import PersistenceError

router = APIRouter(prefix="/digests", tags=["digests"])


class DigestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")


@router.post("/generate")
async def generate_digest(services: Services, body: DigestRequest | None = None) -> JSONResponse:
    """Generate today's digest for one user, or for every active user."""
    aggregator = services["digest_aggregator"]

    if body is not None and body.user_id:
        try:
            digest: Digest = await asyncio.to_thread(aggregator.generate_for_user, body.user_id)
        except PersistenceError:
            return JSONResponse(
                {"success": False, "error": "Failed to generate digest"}, status_code=500
            )
        return JSONResponse({"success": True, "digest": digest.model_dump(mode="json")})

    result: DigestSweepResult = await asyncio.to_thread(aggregator.generate_for_all)
    return JSONResponse(
        {
            "success": True,
            "users_processed": result.users_processed,
            "digests_created": result.digests_created,
            "failed_user_ids": result.failed_user_ids,
        }
    )

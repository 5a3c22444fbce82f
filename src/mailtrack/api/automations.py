"""Email automation runs and the alerts they raise."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from mailtrack.api.deps import CurrentUser, Services
from mailtrack.domain.errors import PersistenceError
from mailtrack.domain.types import AlertRule
from mailtrack.threads.models import Alert, AutomationResult

router = APIRouter(tags=["automations"])


class AutomationRequest(BaseModel):
    """Body of ``POST /automations/run``; no rule type runs every rule."""

    model_config = ConfigDict(populate_by_name=True)

    rule_type: AlertRule | None = Field(default=None, alias="ruleType")


def alert_payload(alert: Alert) -> dict[str, Any]:
    return {
        "id": alert.id,
        "rule": alert.rule.value,
        "entityId": alert.entity_id,
        "message": alert.message,
        "details": alert.details,
        "status": alert.status.value,
        "createdAt": alert.created_at.isoformat(),
        "resolvedAt": alert.resolved_at.isoformat() if alert.resolved_at else None,
    }


def result_payload(result: AutomationResult) -> dict[str, Any]:
    return {
        "ruleType": result.rule.value,
        "processed": result.processed,
        "alertsCreated": result.alerts_created,
    }


@router.post("/automations/run")
async def run_automations(
    services: Services, payload: AutomationRequest | None = None
) -> JSONResponse:
    """Evaluate one automation rule, or all of them."""
    rule = payload.rule_type if payload else None
    try:
        results: list[AutomationResult] = await asyncio.to_thread(
            services["automations"].run, rule
        )
    except PersistenceError:
        return JSONResponse(
            {"success": False, "error": "Failed to run email automations"}, status_code=500
        )
    return JSONResponse({"success": True, "results": [result_payload(r) for r in results]})


@router.get("/alerts")
async def list_alerts(user_id: CurrentUser, services: Services) -> dict[str, Any]:
    """Open alerts owned by the caller."""
    alerts = await asyncio.to_thread(services["alerts"].list_open, user_id)
    return {"alerts": [alert_payload(a) for a in alerts]}


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(alert_id: int, user_id: CurrentUser, services: Services) -> JSONResponse:
    store = services["alerts"]
    alert: Alert | None = await asyncio.to_thread(store.get, alert_id)
    if alert is None or alert.user_id != user_id:
        return JSONResponse({"success": False, "error": "Alert not found"}, status_code=404)
    try:
        resolved = await asyncio.to_thread(store.resolve, alert_id)
    except PersistenceError:
        return JSONResponse({"success": False, "error": "Failed to resolve alert"}, status_code=500)
    return JSONResponse({"success": True, "alert": alert_payload(resolved)})

"""Liveness and readiness checks.

``/health`` answers as long as the process serves requests.  ``/ready``
reports per-check status and answers 503 until every check passes:

- ``store``: the thread table can be queried
- ``mail``: an outbound sender is wired
"""

from __future__ import annotations

import asyncio
import sqlite3
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mailtrack.schema import LockedConnection


def _check_store(conn: LockedConnection | None) -> str:
    if conn is None:
        return "fail"
    try:
        with conn.lock:
            conn.execute("SELECT 1 FROM email_threads LIMIT 1").fetchall()
    except sqlite3.Error:
        return "fail"
    return "ok"


def register_health_routes(app: FastAPI) -> None:
    """Add ``/health`` and ``/ready`` to *app*."""

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        services: dict[str, Any] = request.app.state.services
        checks = {
            "store": await asyncio.to_thread(_check_store, services.get("db_conn")),
            "mail": "ok" if services.get("sender") is not None else "fail",
        }
        ok = all(result == "ok" for result in checks.values())
        return JSONResponse(
            {"status": "ready" if ok else "not_ready", "checks": checks},
            status_code=200 if ok else 503,
        )

"""Liveness and readiness probes.

``GET /health`` answers as long as the process is serving.  ``GET /ready``
answers 200 only when the freight database responds and every freight table
exists; otherwise it answers 503 with the failing checks.
"""

from __future__ import annotations

import asyncio
import sqlite3

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from freight.store.database import Database

logger = structlog.get_logger()


def _check_database(db: Database | None) -> dict[str, str]:
    if db is None:
        return {"database": "fail", "schema": "fail"}
    try:
        db.ping()
        missing = db.missing_tables()
    except sqlite3.Error:
        logger.warning("readiness_database_failed", exc_info=True)
        return {"database": "fail", "schema": "fail"}
    if missing:
        logger.warning("readiness_schema_incomplete", missing=missing)
        return {"database": "ok", "schema": "fail"}
    return {"database": "ok", "schema": "ok"}


def register_health_routes(app: FastAPI) -> None:
    """Attach ``/health`` and ``/ready`` to *app*."""

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        checks = await asyncio.to_thread(_check_database, request.app.state.services.get("db"))
        ok = all(result == "ok" for result in checks.values())
        return JSONResponse(
            content={"status": "ready" if ok else "not_ready", "checks": checks},
            status_code=200 if ok else 503,
        )

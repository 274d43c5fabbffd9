"""Map domain errors onto HTTP responses.

Every ``FreightError`` becomes ``{"error": kind, "context": {...}}`` with a
status code chosen by its kind; services never format human text.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from freight.domain.errors import FreightError

logger = structlog.get_logger()

STATUS_BY_KIND: dict[str, int] = {
    "load_not_found": 404,
    "bid_not_found": 404,
    "invoice_not_found": 404,
    "not_verified": 403,
    "carrier_not_eligible": 403,
    "illegal_transition": 409,
    "guard_violation": 409,
    "concurrency_conflict": 409,
    "load_closed": 409,
    "already_awarded": 409,
    "invalid_bid_state": 409,
    "duplicate_bid": 409,
    "duplicate_idempotency_key": 409,
    "not_awarded": 409,
    "invoice_closed": 409,
    "insufficient_payment": 422,
    "invalid_post_mode": 422,
    "pricing_error": 422,
}


def status_for(error: FreightError) -> int:
    """Return the HTTP status code for *error* (409 for unknown kinds)."""
    return STATUS_BY_KIND.get(error.kind, 409)


def register_error_handlers(app: FastAPI) -> None:
    """Install the domain and value error handlers on *app*."""

    @app.exception_handler(FreightError)
    async def freight_error_handler(request: Request, exc: FreightError) -> JSONResponse:
        code = status_for(exc)
        logger.info("request_rejected", path=request.url.path, error=exc.kind, status_code=code)
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.info("request_invalid", path=request.url.path, detail=str(exc))
        return JSONResponse(
            status_code=422,
            content={"error": "invalid_request", "context": {"detail": str(exc)}},
        )

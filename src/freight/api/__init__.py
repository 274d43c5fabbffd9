"""HTTP API routers over the freight services."""

from fastapi import FastAPI

from freight.api.bids import router as bids_router
from freight.api.errors import register_error_handlers
from freight.api.invoices import router as invoices_router
from freight.api.loads import router as loads_router


def register_routes(app: FastAPI) -> None:
    """Mount every API router and the domain error handlers on *app*."""
    app.include_router(loads_router)
    app.include_router(bids_router)
    app.include_router(invoices_router)
    register_error_handlers(app)


__all__ = ["register_routes"]

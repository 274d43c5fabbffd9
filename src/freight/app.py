"""Application entry point for the freight exchange HTTP service.

Configures:
- **structlog** with JSON rendering (production) or colored console (development)
- **SQLite** storage shared by every repository through one ``Database``
- **Services** (state machine, negotiation engine, invoice workflow, load
  service) wired together and exposed to routes via ``app.state.services``
- **Prometheus** metrics and request-id tracing middleware
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from freight.api import register_routes
from freight.audit.logger import AuditLogger
from freight.config import Settings, get_settings, validate_settings
from freight.health import register_health_routes
from freight.invoicing.workflow import InvoiceWorkflow
from freight.loads.service import LoadService
from freight.negotiation.engine import NegotiationEngine
from freight.observability.metrics import setup_metrics
from freight.observability.middleware import RequestIdMiddleware
from freight.pricing.engine import MarginPricingFormula
from freight.state_machine.machine import LoadStateMachine
from freight.store import (
    BidRepository,
    Database,
    InvoiceRepository,
    LoadRepository,
    NegotiationLog,
    SqliteAccountDirectory,
)

logger = structlog.get_logger()


def configure_logging(production: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Production mode (*production=True*): JSON rendering at INFO level.
    Development mode: colored console rendering at DEBUG level.

    Args:
        production: Enable production mode if ``True``.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service="freight-exchange")


def initialize_services(settings: Settings | None = None, db: Database | None = None) -> dict[str, Any]:
    """Set up all shared services for the application.

    Opens the freight database (unless one is passed in), builds one
    repository per aggregate, then the state machine and the three services
    layered on top of it.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.
        db: An already-open database, e.g. an in-memory one in tests.

    Returns:
        A dict of initialized service instances keyed by name.
    """
    if settings is None:
        settings = get_settings()
    if db is None:
        db = Database.open(settings.database_path)
        logger.info("Freight database opened", path=str(settings.database_path))

    services: dict[str, Any] = {"settings": settings, "db": db}

    loads = LoadRepository(db)
    bids = BidRepository(db)
    log = NegotiationLog(db)
    invoices = InvoiceRepository(db)
    accounts = SqliteAccountDirectory(db)
    audit_logger = AuditLogger(db)
    services.update(
        loads=loads,
        bids=bids,
        log=log,
        invoices=invoices,
        accounts=accounts,
        audit_logger=audit_logger,
    )

    machine = LoadStateMachine(db, loads, bids, invoices)
    services["machine"] = machine

    negotiation = NegotiationEngine(db, loads, bids, log, machine, audit_logger)
    services["negotiation"] = negotiation

    invoicing = InvoiceWorkflow(
        db,
        loads,
        invoices,
        machine,
        audit_logger,
        payment_terms_days=settings.payment_terms_days,
    )
    services["invoicing"] = invoicing

    pricing = MarginPricingFormula(
        margin_percent=settings.default_margin_percent,
        max_margin_percent=settings.max_margin_percent,
    )
    services["load_service"] = LoadService(
        db,
        loads,
        negotiation,
        invoices,
        machine,
        invoicing,
        accounts,
        audit_logger,
        pricing,
        max_margin_percent=settings.max_margin_percent,
    )

    logger.info("Services initialized", services=sorted(services))
    return services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Lifespan context manager for FastAPI startup and shutdown.

    On shutdown: closes the freight database connection.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application.
    """
    logger.info("FastAPI application starting")
    yield
    db = app.state.services.get("db")
    if db is not None:
        db.close()
        logger.info("Freight database connection closed")


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app with lifespan, API routers, health, and metrics.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="Freight Exchange", lifespan=lifespan)
    fastapi_app.state.services = services
    fastapi_app.state.settings = services.get("settings") or get_settings()
    fastapi_app.add_middleware(RequestIdMiddleware)
    setup_metrics(fastapi_app)
    register_routes(fastapi_app)
    register_health_routes(fastapi_app)
    return fastapi_app


def main() -> None:
    """Main entry point: configure logging, build services, and serve the API."""
    settings = get_settings()
    configure_logging(production=settings.production)
    logger.info("Application starting")

    validate_settings(settings)

    services = initialize_services(settings)
    fastapi_app = create_app(services)

    uvicorn.run(
        fastapi_app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()

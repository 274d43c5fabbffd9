"""FastAPI dependencies resolving services from ``app.state.services``."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from freight.config import Settings
from freight.invoicing.workflow import InvoiceWorkflow
from freight.loads.service import LoadService
from freight.negotiation.engine import NegotiationEngine


def get_load_service(request: Request) -> LoadService:
    return request.app.state.services["load_service"]


def get_negotiation(request: Request) -> NegotiationEngine:
    return request.app.state.services["negotiation"]


def get_invoicing(request: Request) -> InvoiceWorkflow:
    return request.app.state.services["invoicing"]


LoadServiceDep = Annotated[LoadService, Depends(get_load_service)]
NegotiationDep = Annotated[NegotiationEngine, Depends(get_negotiation)]
InvoicingDep = Annotated[InvoiceWorkflow, Depends(get_invoicing)]


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


SettingsDep = Annotated[Settings, Depends(get_app_settings)]

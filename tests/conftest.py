"""Shared pytest fixtures for the freight exchange test suite."""

from __future__ import annotations

from collections.abc import Iterator
from decimal import Decimal
from typing import Any

import pytest

from freight.app import initialize_services
from freight.config import Settings
from freight.domain.models import Bid, Invoice, InvoiceBreakdown, Load, LoadDraft
from freight.domain.types import ActorRole, PostMode, ShipperResponseType, UserRole
from freight.invoicing.workflow import InvoiceWorkflow
from freight.loads.service import LoadService
from freight.negotiation.engine import NegotiationEngine
from freight.state_machine.machine import LoadStateMachine
from freight.store.database import MEMORY, Database

SHIPPER_ID = "shipper-1"
ADMIN_ID = "admin-1"
CARRIER_ID = "carrier-1"
OTHER_CARRIER_ID = "carrier-2"


class LoadDriver:
    """Drive loads through the lifecycle using the real services.

    Each step builds on the previous one and returns fresh snapshots, so a
    test can start from any state with one call.
    """

    shipper_id = SHIPPER_ID
    admin_id = ADMIN_ID
    carrier_id = CARRIER_ID
    other_carrier_id = OTHER_CARRIER_ID

    def __init__(self, services: dict[str, Any]) -> None:
        self.loads: LoadService = services["load_service"]
        self.negotiation: NegotiationEngine = services["negotiation"]
        self.invoicing: InvoiceWorkflow = services["invoicing"]

    @staticmethod
    def untaxed_breakdown(amount: str = "49000") -> InvoiceBreakdown:
        return InvoiceBreakdown(base_freight=Decimal(amount), tax_percent=Decimal("0"))

    def draft(self) -> Load:
        return self.loads.submit_load(
            SHIPPER_ID,
            LoadDraft(
                pickup_city="Mumbai",
                dropoff_city="Delhi",
                cargo_description="Steel coils",
                weight_tons=Decimal("12"),
                required_truck_type="open_body",
            ),
        )

    def pending(self) -> Load:
        load = self.draft()
        return self.loads.submit_for_review(load.id, SHIPPER_ID, load.version)

    def priced(self, price: str = "50000") -> Load:
        load = self.pending()
        return self.loads.price_load(load.id, ADMIN_ID, price, expected_version=load.version)

    def posted(
        self,
        mode: PostMode = PostMode.OPEN,
        invited: list[str] | None = None,
        assigned: str | None = None,
    ) -> Load:
        load = self.priced()
        return self.loads.post_to_carriers(
            load.id,
            ADMIN_ID,
            mode,
            invited_carrier_ids=invited,
            assigned_carrier_id=assigned,
            expected_version=load.version,
        )

    def bidding(self, amount: str = "48000") -> tuple[Load, Bid]:
        load = self.posted()
        bid = self.negotiation.place_bid(load.id, CARRIER_ID, amount)
        return self.loads.get_load(load.id), bid

    def countered(self, amount: str = "49000") -> tuple[Load, Bid]:
        load, bid = self.bidding()
        bid = self.negotiation.counter_offer(bid.id, ADMIN_ID, ActorRole.ADMIN, amount)
        return self.loads.get_load(load.id), bid

    def awarded(self) -> tuple[Load, Bid]:
        load, bid = self.countered()
        bid = self.negotiation.accept_bid(bid.id, CARRIER_ID, ActorRole.CARRIER)
        return self.loads.get_load(load.id), bid

    def invoiced(self, breakdown: InvoiceBreakdown | None = None) -> tuple[Load, Invoice]:
        load, _ = self.awarded()
        invoice = self.invoicing.create_invoice(
            load.id, ADMIN_ID, breakdown or self.untaxed_breakdown(), f"invoice-{load.id}"
        )
        return self.loads.get_load(load.id), invoice

    def sent(self, breakdown: InvoiceBreakdown | None = None) -> tuple[Load, Invoice]:
        load, invoice = self.invoiced(breakdown)
        invoice = self.invoicing.send_invoice(invoice.id, ADMIN_ID)
        return self.loads.get_load(load.id), invoice

    def acknowledged(self) -> tuple[Load, Invoice]:
        load, invoice = self.sent()
        invoice = self.invoicing.respond_to_invoice(invoice.id, SHIPPER_ID, ShipperResponseType.APPROVE)
        return self.loads.get_load(load.id), invoice

    def paid(self) -> tuple[Load, Invoice]:
        load, invoice = self.acknowledged()
        invoice = self.invoicing.confirm_payment(invoice.id, ADMIN_ID, invoice.total_amount, "UTR-0001")
        return self.loads.get_load(load.id), invoice


@pytest.fixture
def db() -> Iterator[Database]:
    """A fresh in-memory freight database."""
    database = Database.open(MEMORY)
    yield database
    database.close()


@pytest.fixture
def settings() -> Settings:
    """Default settings, ignoring any local ``.env`` file."""
    return Settings(_env_file=None)  # type: ignore[call-arg]


@pytest.fixture
def services(db: Database, settings: Settings) -> dict[str, Any]:
    """Fully wired services over the in-memory database, with a verified shipper."""
    wired = initialize_services(settings, db=db)
    wired["accounts"].register(SHIPPER_ID, UserRole.SHIPPER, verified=True)
    return wired


@pytest.fixture
def load_service(services: dict[str, Any]) -> LoadService:
    return services["load_service"]


@pytest.fixture
def negotiation(services: dict[str, Any]) -> NegotiationEngine:
    return services["negotiation"]


@pytest.fixture
def invoicing(services: dict[str, Any]) -> InvoiceWorkflow:
    return services["invoicing"]


@pytest.fixture
def machine(services: dict[str, Any]) -> LoadStateMachine:
    return services["machine"]


@pytest.fixture
def driver(services: dict[str, Any]) -> LoadDriver:
    return LoadDriver(services)

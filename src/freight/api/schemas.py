"""Request bodies for the HTTP API.

Monetary fields use the domain ``Money`` type, so amounts must be sent as
JSON strings or integers; floats are rejected.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from freight.domain.models import InvoiceBreakdown, LoadDraft, Money, PriceBreakdown
from freight.domain.types import ActorRole, CarrierType, LoadStatus, PostMode, ShipperResponseType

# -- Loads ---------------------------------------------------------------------


class SubmitLoadRequest(LoadDraft):
    shipper_id: str


class SubmitForReviewRequest(BaseModel):
    shipper_id: str
    expected_version: int


class LoadActionRequest(BaseModel):
    """Body shared by the simple admin/system load actions."""

    actor_id: str
    reason: str | None = None
    expected_version: int | None = None


class PriceLoadRequest(BaseModel):
    admin_id: str
    admin_final_price: Money
    breakdown: PriceBreakdown | None = None
    suggested_price: Money | None = None
    expected_version: int | None = None


class LockPriceRequest(BaseModel):
    admin_id: str
    admin_final_price: Money
    breakdown: PriceBreakdown | None = None
    reason: str | None = None
    expected_version: int | None = None


class UnlockPriceRequest(BaseModel):
    admin_id: str
    reason: str = Field(min_length=1)
    expected_version: int | None = None


class PostToCarriersRequest(BaseModel):
    admin_id: str
    mode: PostMode
    invited_carrier_ids: list[str] = Field(default_factory=list)
    assigned_carrier_id: str | None = None
    expected_version: int | None = None


class TransitionRequest(BaseModel):
    actor_id: str
    target_state: LoadStatus
    expected_version: int
    reason: str | None = None


# -- Negotiation ---------------------------------------------------------------


class PlaceBidRequest(BaseModel):
    carrier_id: str
    amount: Money
    notes: str | None = None
    carrier_type: CarrierType = CarrierType.SOLO


class AcceptPostedPriceRequest(BaseModel):
    carrier_id: str
    carrier_type: CarrierType = CarrierType.SOLO


class CounterOfferRequest(BaseModel):
    actor_id: str
    actor_role: ActorRole
    amount: Money
    message: str | None = None


class AcceptBidRequest(BaseModel):
    actor_id: str
    actor_role: ActorRole


class RejectBidRequest(BaseModel):
    actor_id: str
    actor_role: ActorRole = ActorRole.ADMIN
    reason: str | None = None


class SimulatedOfferRequest(BaseModel):
    actor_id: str
    amount: Money
    counter: bool = False


class NoteRequest(BaseModel):
    actor_id: str
    body: str = Field(min_length=1)


# -- Invoicing -----------------------------------------------------------------


class CreateInvoiceRequest(BaseModel):
    admin_id: str
    idempotency_key: str = Field(min_length=1)
    breakdown: InvoiceBreakdown
    expected_version: int | None = None


class InvoiceActionRequest(BaseModel):
    actor_id: str
    reason: str | None = None
    expected_version: int | None = None


class RespondToInvoiceRequest(BaseModel):
    shipper_id: str
    response_type: ShipperResponseType
    counter_amount: Money | None = None
    message: str | None = None
    expected_version: int | None = None


class ReviseInvoiceRequest(BaseModel):
    admin_id: str
    breakdown: InvoiceBreakdown
    reason: str | None = None
    expected_version: int | None = None


class ConfirmPaymentRequest(BaseModel):
    actor_id: str
    amount: Money
    reference: str = Field(min_length=1)
    expected_version: int | None = None

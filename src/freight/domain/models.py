"""Pydantic v2 models for the freight exchange aggregates.

All monetary fields are ``Decimal`` quantized to paise; float inputs are
rejected to avoid precision errors.  Aggregates returned by the store are
frozen snapshots: a new snapshot is read back after every write.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator

from freight.domain.types import (
    ActorRole,
    BidStatus,
    BidType,
    CarrierType,
    InvoiceStatus,
    LoadStatus,
    MessageType,
    PostMode,
    ShipperResponseType,
)

TWO_PLACES = Decimal("0.01")


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def quantize_money(value: Decimal) -> Decimal:
    """Round a monetary value to paise with ROUND_HALF_UP."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _coerce_money(v: object) -> object:
    if isinstance(v, float):
        raise ValueError("Use Decimal or string, not float, for monetary values")
    if isinstance(v, (int, str)):
        try:
            v = Decimal(str(v))
        except InvalidOperation:
            raise ValueError(f"Not a monetary value: {v!r}") from None
    if isinstance(v, Decimal):
        if not v.is_finite():
            raise ValueError(f"Not a monetary value: {v!r}")
        return quantize_money(v)
    return v


Money = Annotated[Decimal, BeforeValidator(_coerce_money)]


def to_money(value: Decimal | int | str) -> Decimal:
    """Coerce *value* to a paise-quantized Decimal, rejecting floats."""
    coerced = _coerce_money(value)
    if not isinstance(coerced, Decimal):
        raise ValueError(f"Not a monetary value: {value!r}")
    return coerced


def _non_negative(value: Decimal | None, name: str) -> None:
    if value is not None and value < 0:
        raise ValueError(f"{name} must not be negative")


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


class PriceBreakdown(BaseModel):
    """Split of the shipper-facing gross price into carrier payout and platform margin."""

    model_config = ConfigDict(frozen=True)

    gross_price: Money
    platform_margin_percent: Decimal
    platform_margin: Money
    carrier_payout: Money

    @field_validator("platform_margin_percent", mode="before")
    @classmethod
    def reject_float_percent(cls, v: object) -> object:
        """Reject float margin percentages."""
        if isinstance(v, float):
            raise ValueError("Use Decimal or string, not float, for percentages")
        return v


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


class LoadDraft(BaseModel):
    """Shipper-supplied descriptors for a new load."""

    model_config = ConfigDict(frozen=True)

    pickup_city: str
    dropoff_city: str
    cargo_description: str = ""
    weight_tons: Decimal = Decimal("0")
    required_truck_type: str | None = None
    shipper_price_per_ton: Money | None = None

    @field_validator("pickup_city", "dropoff_city")
    @classmethod
    def city_must_not_be_empty(cls, v: str) -> str:
        """Ensure route endpoints are not empty or whitespace-only."""
        if not v.strip():
            raise ValueError("city must not be empty")
        return v

    @field_validator("weight_tons", mode="before")
    @classmethod
    def reject_float_weight(cls, v: object) -> object:
        """Reject float weights; tons are stored as exact decimals."""
        if isinstance(v, float):
            raise ValueError("Use Decimal or string, not float, for weight_tons")
        return v

    @model_validator(mode="after")
    def amounts_must_not_be_negative(self) -> LoadDraft:
        """Ensure weight and shipper price are non-negative."""
        _non_negative(self.weight_tons, "weight_tons")
        _non_negative(self.shipper_price_per_ton, "shipper_price_per_ton")
        return self


class Load(BaseModel):
    """A freight shipment request moving through the marketplace lifecycle."""

    model_config = ConfigDict(frozen=True)

    id: str
    shipper_id: str
    assigned_carrier_id: str | None = None
    pickup_city: str
    dropoff_city: str
    cargo_description: str = ""
    weight_tons: Decimal = Decimal("0")
    required_truck_type: str | None = None
    status: LoadStatus = LoadStatus.DRAFT
    previous_status: LoadStatus | None = None
    version: int = 1
    shipper_price_per_ton: Money | None = None
    admin_suggested_price: Money | None = None
    admin_final_price: Money | None = None
    price_breakdown: PriceBreakdown | None = None
    price_locked: bool = False
    price_locked_by: str | None = None
    price_locked_at: datetime | None = None
    post_mode: PostMode | None = None
    invited_carrier_ids: list[str] = Field(default_factory=list)
    awarded_bid_id: str | None = None
    awarded_amount: Money | None = None
    invoice_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def lock_requires_final_price(self) -> Load:
        """A locked price must have a final price behind it."""
        if self.price_locked and self.admin_final_price is None:
            raise ValueError("price_locked requires admin_final_price")
        return self


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


class Bid(BaseModel):
    """A carrier's offer against a load."""

    model_config = ConfigDict(frozen=True)

    id: str
    load_id: str
    carrier_id: str
    carrier_type: CarrierType = CarrierType.SOLO
    amount: Money
    counter_amount: Money | None = None
    previous_amount: Money | None = None
    status: BidStatus = BidStatus.PENDING
    bid_type: BidType = BidType.CARRIER_BID
    notes: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("amount")
    @classmethod
    def amount_must_be_positive(cls, v: Decimal) -> Decimal:
        """Ensure the bid amount is greater than zero."""
        if v <= 0:
            raise ValueError("amount must be positive")
        return v

    @property
    def agreed_amount(self) -> Decimal:
        """The amount on the table: the latest counter if any, else the original bid."""
        return self.counter_amount if self.counter_amount is not None else self.amount


class NegotiationMessage(BaseModel):
    """An immutable entry in a load's negotiation ledger."""

    model_config = ConfigDict(frozen=True)

    id: str
    load_id: str
    sequence: int
    bid_id: str | None = None
    carrier_id: str | None = None
    sender_id: str
    sender_role: ActorRole
    message_type: MessageType
    amount: Money | None = None
    previous_amount: Money | None = None
    body: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class NegotiationThread(BaseModel):
    """Per-load summary derived from the negotiation message log."""

    model_config = ConfigDict(frozen=True)

    load_id: str
    total_bids: int = 0
    real_bids: int = 0
    simulated_bids: int = 0
    pending_counter_count: int = 0
    countered_bid_ids: list[str] = Field(default_factory=list)
    accepted_bid_id: str | None = None
    accepted_carrier_id: str | None = None
    accepted_amount: Money | None = None
    last_sequence: int = 0
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Invoicing
# ---------------------------------------------------------------------------


class InvoiceBreakdown(BaseModel):
    """Cost lines an admin supplies when creating or revising an invoice."""

    model_config = ConfigDict(frozen=True)

    base_freight: Money
    fuel_surcharge: Money = Decimal("0")
    toll_charges: Money = Decimal("0")
    handling_fee: Money = Decimal("0")
    insurance_fee: Money = Decimal("0")
    discount_amount: Money = Decimal("0")
    discount_reason: str | None = None
    tax_percent: Decimal = Decimal("18")

    @field_validator("tax_percent", mode="before")
    @classmethod
    def reject_float_tax(cls, v: object) -> object:
        """Reject float tax percentages."""
        if isinstance(v, float):
            raise ValueError("Use Decimal or string, not float, for tax_percent")
        return v

    @model_validator(mode="after")
    def lines_must_be_valid(self) -> InvoiceBreakdown:
        """Ensure every line is non-negative and tax is a sane percentage."""
        for name in (
            "base_freight",
            "fuel_surcharge",
            "toll_charges",
            "handling_fee",
            "insurance_fee",
            "discount_amount",
        ):
            _non_negative(getattr(self, name), name)
        if not Decimal("0") <= self.tax_percent <= Decimal("100"):
            raise ValueError("tax_percent must be between 0 and 100")
        return self


class Invoice(BaseModel):
    """A shipper invoice for an awarded load."""

    model_config = ConfigDict(frozen=True)

    id: str
    invoice_number: str
    load_id: str
    shipper_id: str
    admin_id: str
    base_freight: Money
    fuel_surcharge: Money = Decimal("0")
    toll_charges: Money = Decimal("0")
    handling_fee: Money = Decimal("0")
    insurance_fee: Money = Decimal("0")
    discount_amount: Money = Decimal("0")
    discount_reason: str | None = None
    tax_percent: Decimal = Decimal("18")
    subtotal: Money
    tax_amount: Money
    total_amount: Money
    status: InvoiceStatus = InvoiceStatus.DRAFT
    shipper_response_type: ShipperResponseType | None = None
    shipper_counter_amount: Money | None = None
    shipper_message: str | None = None
    revision_number: int = 1
    previous_invoice_id: str | None = None
    idempotency_key: str
    payment_terms_days: int = 30
    due_date: datetime | None = None
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    responded_at: datetime | None = None
    paid_at: datetime | None = None
    paid_amount: Money | None = None
    payment_reference: str | None = None
    version: int = 1
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Audit rows
# ---------------------------------------------------------------------------


class LoadStateChange(BaseModel):
    """One row of the load state change log."""

    model_config = ConfigDict(frozen=True)

    id: int
    load_id: str
    actor_id: str
    from_state: LoadStatus
    to_state: LoadStatus
    reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class InvoiceHistoryEntry(BaseModel):
    """One row of an invoice's status history."""

    model_config = ConfigDict(frozen=True)

    id: int
    invoice_id: str
    actor_id: str
    from_status: InvoiceStatus | None = None
    to_status: InvoiceStatus
    reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

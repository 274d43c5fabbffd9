"""Domain types, models, and errors for the freight exchange core."""

from freight.domain.errors import (
    AlreadyAwardedError,
    BidNotFoundError,
    CarrierNotEligibleError,
    ConcurrencyConflictError,
    DuplicateBidError,
    DuplicateIdempotencyKeyError,
    FreightError,
    GuardViolationError,
    IllegalTransitionError,
    InsufficientPaymentError,
    InvalidBidStateError,
    InvalidPostModeError,
    InvoiceClosedError,
    InvoiceNotFoundError,
    LoadClosedError,
    LoadNotFoundError,
    NotAwardedError,
    NotVerifiedError,
    PricingError,
)
from freight.domain.models import (
    Bid,
    Invoice,
    InvoiceBreakdown,
    InvoiceHistoryEntry,
    Load,
    LoadDraft,
    LoadStateChange,
    NegotiationMessage,
    NegotiationThread,
    PriceBreakdown,
)
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
    UserRole,
)

__all__ = [
    "ActorRole",
    "AlreadyAwardedError",
    "Bid",
    "BidNotFoundError",
    "BidStatus",
    "BidType",
    "CarrierNotEligibleError",
    "CarrierType",
    "ConcurrencyConflictError",
    "DuplicateBidError",
    "DuplicateIdempotencyKeyError",
    "FreightError",
    "GuardViolationError",
    "IllegalTransitionError",
    "InsufficientPaymentError",
    "InvalidBidStateError",
    "InvalidPostModeError",
    "Invoice",
    "InvoiceBreakdown",
    "InvoiceClosedError",
    "InvoiceHistoryEntry",
    "InvoiceNotFoundError",
    "InvoiceStatus",
    "Load",
    "LoadClosedError",
    "LoadDraft",
    "LoadNotFoundError",
    "LoadStateChange",
    "LoadStatus",
    "MessageType",
    "NegotiationMessage",
    "NegotiationThread",
    "NotAwardedError",
    "NotVerifiedError",
    "PostMode",
    "PriceBreakdown",
    "PricingError",
    "ShipperResponseType",
    "UserRole",
]

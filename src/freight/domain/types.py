"""Domain enumerations for the freight exchange core.

Every status and kind column is one of these closed sets; values are the
strings persisted in SQLite.
"""

from enum import StrEnum


class LoadStatus(StrEnum):
    """States in the load lifecycle."""

    DRAFT = "draft"
    PENDING = "pending"
    PRICED = "priced"
    POSTED_TO_CARRIERS = "posted_to_carriers"
    OPEN_FOR_BID = "open_for_bid"
    COUNTER_RECEIVED = "counter_received"
    AWARDED = "awarded"
    INVOICE_CREATED = "invoice_created"
    INVOICE_SENT = "invoice_sent"
    INVOICE_ACKNOWLEDGED = "invoice_acknowledged"
    INVOICE_PAID = "invoice_paid"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class BidStatus(StrEnum):
    """States of a single carrier bid."""

    PENDING = "pending"
    COUNTERED = "countered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class BidType(StrEnum):
    """How a bid came into existence."""

    CARRIER_BID = "carrier_bid"
    ADMIN_POSTED_ACCEPTANCE = "admin_posted_acceptance"
    ADMIN_COUNTER = "admin_counter"


class CarrierType(StrEnum):
    """Carrier segment, carried on bids for downstream reporting."""

    ENTERPRISE = "enterprise"
    SOLO = "solo"


class ActorRole(StrEnum):
    """Who sent a negotiation message."""

    CARRIER = "carrier"
    ADMIN = "admin"
    SYSTEM = "system"


class MessageType(StrEnum):
    """Kinds of entries in the negotiation ledger."""

    CARRIER_BID = "carrier_bid"
    CARRIER_COUNTER = "carrier_counter"
    ADMIN_COUNTER = "admin_counter"
    ACCEPT = "accept"
    REJECT = "reject"
    AWARD_REVOKED = "award_revoked"
    SYSTEM_NOTE = "system_note"
    SIMULATED_BID = "simulated_bid"
    SIMULATED_COUNTER = "simulated_counter"


class PostMode(StrEnum):
    """How a priced load is offered to carriers."""

    OPEN = "open"
    INVITE = "invite"
    ASSIGN = "assign"


class InvoiceStatus(StrEnum):
    """States of a shipper invoice."""

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    NEGOTIATING = "negotiating"
    REVISED = "revised"
    APPROVED = "approved"
    PAID = "paid"
    OVERDUE = "overdue"
    DISPUTED = "disputed"
    PUSH_FAILED = "push_failed"
    CANCELLED = "cancelled"
    SUPERSEDED = "superseded"


class ShipperResponseType(StrEnum):
    """Shipper replies to a sent invoice."""

    APPROVE = "approve"
    NEGOTIATE = "negotiate"
    QUERY = "query"
    REJECT = "reject"


class UserRole(StrEnum):
    """Marketplace account roles known to the account directory."""

    SHIPPER = "shipper"
    CARRIER = "carrier"
    ADMIN = "admin"


# Bids a carrier or admin can still act on
OPEN_BID_STATUSES: frozenset[BidStatus] = frozenset({BidStatus.PENDING, BidStatus.COUNTERED})

# Load states in which carriers may place bids
BIDDABLE_STATUSES: frozenset[LoadStatus] = frozenset(
    {
        LoadStatus.POSTED_TO_CARRIERS,
        LoadStatus.OPEN_FOR_BID,
        LoadStatus.COUNTER_RECEIVED,
    }
)

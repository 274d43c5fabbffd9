"""Transition tables for loads, bids, and invoices.

These maps are the single source of truth for legality; guards in
``machine.py`` only add preconditions on top of them.
"""

from freight.domain.types import BidStatus, InvoiceStatus, LoadStatus

# Each load state maps to the states it may move to next.
# Any pair not listed here is an illegal transition.
LOAD_TRANSITIONS: dict[LoadStatus, frozenset[LoadStatus]] = {
    LoadStatus.DRAFT: frozenset({LoadStatus.PENDING, LoadStatus.CANCELLED}),
    LoadStatus.PENDING: frozenset({LoadStatus.PRICED, LoadStatus.CANCELLED}),
    LoadStatus.PRICED: frozenset({LoadStatus.POSTED_TO_CARRIERS, LoadStatus.CANCELLED}),
    LoadStatus.POSTED_TO_CARRIERS: frozenset({LoadStatus.OPEN_FOR_BID, LoadStatus.CANCELLED}),
    LoadStatus.OPEN_FOR_BID: frozenset(
        {
            LoadStatus.COUNTER_RECEIVED,
            LoadStatus.AWARDED,
            LoadStatus.POSTED_TO_CARRIERS,
            LoadStatus.CANCELLED,
        }
    ),
    LoadStatus.COUNTER_RECEIVED: frozenset(
        {
            LoadStatus.OPEN_FOR_BID,
            LoadStatus.AWARDED,
            LoadStatus.POSTED_TO_CARRIERS,
            LoadStatus.CANCELLED,
        }
    ),
    # Reopening bidding is only possible before an invoice exists (guarded).
    # Revoking an award at all still needs product sign-off.
    LoadStatus.AWARDED: frozenset(
        {LoadStatus.INVOICE_CREATED, LoadStatus.OPEN_FOR_BID, LoadStatus.CANCELLED}
    ),
    LoadStatus.INVOICE_CREATED: frozenset({LoadStatus.INVOICE_SENT, LoadStatus.CANCELLED}),
    LoadStatus.INVOICE_SENT: frozenset({LoadStatus.INVOICE_ACKNOWLEDGED, LoadStatus.CANCELLED}),
    LoadStatus.INVOICE_ACKNOWLEDGED: frozenset({LoadStatus.INVOICE_PAID, LoadStatus.CANCELLED}),
    # Cancelling after payment needs product sign-off (refund flow).
    LoadStatus.INVOICE_PAID: frozenset({LoadStatus.IN_TRANSIT, LoadStatus.CANCELLED}),
    LoadStatus.IN_TRANSIT: frozenset({LoadStatus.DELIVERED, LoadStatus.CANCELLED}),
    LoadStatus.DELIVERED: frozenset({LoadStatus.CLOSED, LoadStatus.CANCELLED}),
    LoadStatus.CLOSED: frozenset(),
    LoadStatus.CANCELLED: frozenset(),
}

# Load states that accept no further mutation.
TERMINAL_STATES: frozenset[LoadStatus] = frozenset({LoadStatus.CLOSED, LoadStatus.CANCELLED})

BID_TRANSITIONS: dict[BidStatus, frozenset[BidStatus]] = {
    BidStatus.PENDING: frozenset(
        {BidStatus.ACCEPTED, BidStatus.REJECTED, BidStatus.COUNTERED, BidStatus.EXPIRED}
    ),
    BidStatus.COUNTERED: frozenset(
        {BidStatus.COUNTERED, BidStatus.ACCEPTED, BidStatus.REJECTED, BidStatus.EXPIRED}
    ),
    BidStatus.ACCEPTED: frozenset(),
    BidStatus.REJECTED: frozenset(),
    BidStatus.EXPIRED: frozenset(),
}

INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset(
        {InvoiceStatus.SENT, InvoiceStatus.PUSH_FAILED, InvoiceStatus.CANCELLED}
    ),
    InvoiceStatus.PUSH_FAILED: frozenset({InvoiceStatus.SENT, InvoiceStatus.CANCELLED}),
    InvoiceStatus.SENT: frozenset(
        {
            InvoiceStatus.VIEWED,
            InvoiceStatus.APPROVED,
            InvoiceStatus.NEGOTIATING,
            InvoiceStatus.OVERDUE,
            InvoiceStatus.DISPUTED,
            InvoiceStatus.CANCELLED,
        }
    ),
    InvoiceStatus.VIEWED: frozenset(
        {
            InvoiceStatus.APPROVED,
            InvoiceStatus.NEGOTIATING,
            InvoiceStatus.OVERDUE,
            InvoiceStatus.DISPUTED,
            InvoiceStatus.CANCELLED,
        }
    ),
    InvoiceStatus.REVISED: frozenset(
        {
            InvoiceStatus.VIEWED,
            InvoiceStatus.APPROVED,
            InvoiceStatus.NEGOTIATING,
            InvoiceStatus.OVERDUE,
            InvoiceStatus.DISPUTED,
            InvoiceStatus.CANCELLED,
        }
    ),
    InvoiceStatus.NEGOTIATING: frozenset(
        {
            InvoiceStatus.APPROVED,
            InvoiceStatus.SUPERSEDED,
            InvoiceStatus.DISPUTED,
            InvoiceStatus.CANCELLED,
        }
    ),
    InvoiceStatus.APPROVED: frozenset(
        {
            InvoiceStatus.PAID,
            InvoiceStatus.OVERDUE,
            InvoiceStatus.DISPUTED,
            InvoiceStatus.CANCELLED,
        }
    ),
    # Payment of an overdue invoice needs the shipper to have approved it.
    InvoiceStatus.OVERDUE: frozenset(
        {InvoiceStatus.PAID, InvoiceStatus.DISPUTED, InvoiceStatus.CANCELLED}
    ),
    InvoiceStatus.DISPUTED: frozenset({InvoiceStatus.SUPERSEDED, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.CANCELLED: frozenset(),
    InvoiceStatus.SUPERSEDED: frozenset(),
}

# Invoice states a shipper may still respond to.
RESPONDABLE_INVOICE_STATUSES: frozenset[InvoiceStatus] = frozenset(
    {
        InvoiceStatus.SENT,
        InvoiceStatus.VIEWED,
        InvoiceStatus.REVISED,
        InvoiceStatus.NEGOTIATING,
    }
)

FINAL_INVOICE_STATUSES: frozenset[InvoiceStatus] = frozenset(
    {InvoiceStatus.PAID, InvoiceStatus.CANCELLED, InvoiceStatus.SUPERSEDED}
)


def allowed_load_targets(status: LoadStatus) -> frozenset[LoadStatus]:
    """Return the set of states a load in *status* may move to."""
    return LOAD_TRANSITIONS[status]


def can_transition_load(current: LoadStatus, target: LoadStatus) -> bool:
    """Return True if *target* is in the transition table for *current*."""
    return target in LOAD_TRANSITIONS[current]


def can_transition_bid(current: BidStatus, target: BidStatus) -> bool:
    """Return True if a bid may move from *current* to *target*."""
    return target in BID_TRANSITIONS[current]


def can_transition_invoice(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    """Return True if an invoice may move from *current* to *target*."""
    return target in INVOICE_TRANSITIONS[current]

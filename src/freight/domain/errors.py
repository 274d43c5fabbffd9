"""Domain-specific exception classes for the freight exchange core.

Each error carries a machine-readable ``kind`` and a ``context`` dict so the
caller can render its own message; ``to_dict()`` is the structured form
returned over HTTP.
"""

from __future__ import annotations

from typing import Any

from freight.domain.types import BidStatus, InvoiceStatus, LoadStatus


class FreightError(Exception):
    """Base class for all domain errors in the freight exchange core."""

    kind: str = "freight_error"

    def __init__(self, message: str, **context: Any) -> None:
        self.context: dict[str, Any] = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Return the error as ``{"error": kind, "context": {...}}``."""
        return {
            "error": self.kind,
            "context": {k: str(v) if v is not None else None for k, v in self.context.items()},
        }


class IllegalTransitionError(FreightError):
    """Raised when the target state is not reachable from the current state.

    Attributes:
        current_state: The state the load was in.
        target_state: The state that was requested.
    """

    kind = "illegal_transition"

    def __init__(self, load_id: str, current_state: LoadStatus, target_state: LoadStatus) -> None:
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Cannot move load '{load_id}' from '{current_state}' to '{target_state}'",
            load_id=load_id,
            current_state=current_state,
            target_state=target_state,
        )


class GuardViolationError(FreightError):
    """Raised when a transition is in the table but its guard condition fails."""

    kind = "guard_violation"

    def __init__(self, load_id: str, target_state: LoadStatus, guard: str) -> None:
        self.target_state = target_state
        self.guard = guard
        super().__init__(
            f"Guard '{guard}' failed for load '{load_id}' entering '{target_state}'",
            load_id=load_id,
            target_state=target_state,
            guard=guard,
        )


class ConcurrencyConflictError(FreightError):
    """Raised when a write was based on a stale version of the row."""

    kind = "concurrency_conflict"

    def __init__(self, entity: str, entity_id: str, expected_version: int, current_version: int | None) -> None:
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"{entity} '{entity_id}' is at version {current_version}, not {expected_version}",
            entity=entity,
            entity_id=entity_id,
            expected_version=expected_version,
            current_version=current_version,
        )


class LoadClosedError(FreightError):
    """Raised for any mutation of a closed or cancelled load."""

    kind = "load_closed"

    def __init__(self, load_id: str, status: LoadStatus) -> None:
        self.status = status
        super().__init__(f"Load '{load_id}' is {status}", load_id=load_id, status=status)


class AlreadyAwardedError(FreightError):
    """Raised when a bid is accepted on a load that already has a winner."""

    kind = "already_awarded"

    def __init__(self, load_id: str, awarded_bid_id: str | None, attempted_bid_id: str) -> None:
        super().__init__(
            f"Load '{load_id}' is already awarded",
            load_id=load_id,
            awarded_bid_id=awarded_bid_id,
            attempted_bid_id=attempted_bid_id,
        )


class InvalidBidStateError(FreightError):
    """Raised when a bid operation is not valid for the bid's status."""

    kind = "invalid_bid_state"

    def __init__(self, bid_id: str, status: BidStatus, attempted: BidStatus) -> None:
        self.status = status
        super().__init__(
            f"Bid '{bid_id}' cannot move from '{status}' to '{attempted}'",
            bid_id=bid_id,
            status=status,
            attempted=attempted,
        )


class CarrierNotEligibleError(FreightError):
    """Raised when a carrier bids on a load it was not invited or assigned to."""

    kind = "carrier_not_eligible"


class DuplicateBidError(FreightError):
    """Raised when a carrier already has an open bid on the load."""

    kind = "duplicate_bid"


class InvalidPostModeError(FreightError):
    """Raised when a posting mode is missing its invite list or assignee."""

    kind = "invalid_post_mode"


class NotVerifiedError(FreightError):
    """Raised when an unverified account tries to submit a load."""

    kind = "not_verified"


class NotAwardedError(FreightError):
    """Raised when an invoice is requested for a load that is not awarded and price-locked."""

    kind = "not_awarded"


class InvoiceClosedError(FreightError):
    """Raised when an invoice operation is not valid for the invoice's status."""

    kind = "invoice_closed"

    def __init__(self, invoice_id: str, status: InvoiceStatus, operation: str) -> None:
        self.status = status
        super().__init__(
            f"Invoice '{invoice_id}' in status '{status}' does not accept '{operation}'",
            invoice_id=invoice_id,
            status=status,
            operation=operation,
        )


class InsufficientPaymentError(FreightError):
    """Raised when a payment is less than the invoice total."""

    kind = "insufficient_payment"


class DuplicateIdempotencyKeyError(FreightError):
    """Raised when an idempotency key is replayed against a different load."""

    kind = "duplicate_idempotency_key"


class PricingError(FreightError):
    """Raised when a pricing calculation or breakdown is invalid."""

    kind = "pricing_error"


class LoadNotFoundError(FreightError):
    """Raised when a load id does not exist."""

    kind = "load_not_found"

    def __init__(self, load_id: str) -> None:
        super().__init__(f"Load '{load_id}' not found", load_id=load_id)


class BidNotFoundError(FreightError):
    """Raised when a bid id does not exist."""

    kind = "bid_not_found"

    def __init__(self, bid_id: str) -> None:
        super().__init__(f"Bid '{bid_id}' not found", bid_id=bid_id)


class InvoiceNotFoundError(FreightError):
    """Raised when an invoice id does not exist."""

    kind = "invoice_not_found"

    def __init__(self, invoice_id: str) -> None:
        super().__init__(f"Invoice '{invoice_id}' not found", invoice_id=invoice_id)

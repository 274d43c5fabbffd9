"""Admin audit trail models.

State transitions have their own change log; this trail records the admin
actions that change a load or invoice without moving the load's status.
"""

from enum import StrEnum

from pydantic import BaseModel


class EventType(StrEnum):
    """Types of admin actions tracked in the audit trail."""

    PRICE_LOCKED = "price_locked"
    PRICE_UNLOCKED = "price_unlocked"
    BIDDING_REOPENED = "bidding_reopened"
    LOAD_RESOLICITED = "load_resolicited"
    INVOICE_REVISED = "invoice_revised"
    SIMULATED_OFFER = "simulated_offer"
    LOAD_CANCELLED = "load_cancelled"


class AuditEntry(BaseModel):
    """A single admin audit trail entry.

    ``before_state`` / ``after_state`` hold the relevant fields as strings so
    the row is readable without the domain models.
    """

    event_type: EventType
    actor_id: str
    load_id: str | None = None
    invoice_id: str | None = None
    reason: str | None = None
    before_state: dict[str, str | None] | None = None
    after_state: dict[str, str | None] | None = None
    metadata: dict[str, str] | None = None

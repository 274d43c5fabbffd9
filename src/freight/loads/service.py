"""Load lifecycle operations outside negotiation and invoicing.

Shippers submit loads; admins price, lock, post and cancel them; the
post-payment chain (transit, delivery, close) runs through here as well.
Every status change goes through :class:`LoadStateMachine`.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Protocol

import structlog

from freight.audit.logger import AuditLogger
from freight.domain.errors import (
    ConcurrencyConflictError,
    GuardViolationError,
    IllegalTransitionError,
    InvalidPostModeError,
    LoadClosedError,
    NotVerifiedError,
    PricingError,
)
from freight.domain.models import Load, LoadDraft, LoadStateChange, PriceBreakdown, to_money, utc_now
from freight.domain.types import LoadStatus, PostMode, UserRole
from freight.invoicing.workflow import InvoiceWorkflow
from freight.negotiation.engine import NegotiationEngine
from freight.pricing.engine import MAX_MARGIN_PERCENT, PricingFormula, validate_pricing
from freight.state_machine.machine import LoadStateMachine
from freight.state_machine.transitions import FINAL_INVOICE_STATUSES, TERMINAL_STATES
from freight.store.database import Database
from freight.store.invoices import InvoiceRepository
from freight.store.loads import LoadRepository

logger = structlog.get_logger()

# Load states in which an admin may re-lock a released price
_LOCKABLE_STATUSES = frozenset(
    {
        LoadStatus.PRICED,
        LoadStatus.POSTED_TO_CARRIERS,
        LoadStatus.OPEN_FOR_BID,
        LoadStatus.COUNTER_RECEIVED,
        LoadStatus.AWARDED,
    }
)


class AccountDirectory(Protocol):
    """Answers whether a user is a verified account of a role."""

    def is_verified(self, user_id: str, role: UserRole) -> bool: ...


class LoadService:
    """Shipper and admin operations on a load's lifecycle.

    Args:
        db: The shared freight database.
        loads: Load repository.
        negotiation: Negotiation engine, used to expire open bids with their load.
        invoices: Invoice repository.
        machine: The load state machine.
        invoicing: Invoice workflow, used to cancel an open invoice with its load.
        accounts: Account directory consulted on submission.
        audit: Admin audit trail writer.
        pricing: Formula used when an admin prices a load without a breakdown.
        max_margin_percent: Upper bound for supplied breakdowns.
    """

    def __init__(
        self,
        db: Database,
        loads: LoadRepository,
        negotiation: NegotiationEngine,
        invoices: InvoiceRepository,
        machine: LoadStateMachine,
        invoicing: InvoiceWorkflow,
        accounts: AccountDirectory,
        audit: AuditLogger,
        pricing: PricingFormula,
        max_margin_percent: Decimal = MAX_MARGIN_PERCENT,
    ) -> None:
        self._db = db
        self._loads = loads
        self._negotiation = negotiation
        self._invoices = invoices
        self._machine = machine
        self._invoicing = invoicing
        self._accounts = accounts
        self._audit = audit
        self._pricing = pricing
        self._max_margin_percent = max_margin_percent

    # ------------------------------------------------------------------
    # Shipper operations
    # ------------------------------------------------------------------

    def submit_load(self, shipper_id: str, draft: LoadDraft) -> Load:
        """Create a new load in ``draft`` at version 1.

        Raises:
            NotVerifiedError: If *shipper_id* is not a verified shipper.
        """
        if not self._accounts.is_verified(shipper_id, UserRole.SHIPPER):
            raise NotVerifiedError(f"Shipper '{shipper_id}' is not verified", shipper_id=shipper_id)
        load = self._loads.insert(Load(id=str(uuid.uuid4()), shipper_id=shipper_id, **draft.model_dump()))
        logger.info("load_submitted", load_id=load.id, shipper_id=shipper_id)
        return load

    def submit_for_review(self, load_id: str, shipper_id: str, expected_version: int) -> Load:
        """Send a draft load to the admin pricing queue."""
        with self._db.transaction():
            load = self._loads.require(load_id)
            if load.shipper_id != shipper_id:
                raise NotVerifiedError(
                    f"Shipper '{shipper_id}' does not own load '{load_id}'",
                    shipper_id=shipper_id,
                    load_id=load_id,
                )
            return self._machine.transition(
                load_id,
                LoadStatus.PENDING,
                shipper_id,
                expected_version=expected_version,
                reason="submitted for pricing",
            )

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def price_load(
        self,
        load_id: str,
        admin_id: str,
        admin_final_price: Decimal | int | str,
        breakdown: PriceBreakdown | None = None,
        suggested_price: Decimal | int | str | None = None,
        expected_version: int | None = None,
    ) -> Load:
        """Fix the final price of a pending load and move it to ``priced``.

        The price is locked in the same write as the transition.  A supplied
        breakdown must match the final price and pass validation; otherwise
        the configured pricing formula computes one.

        Raises:
            PricingError: If the price or breakdown is invalid.
            IllegalTransitionError: If the load is not pending.
        """
        final_price = self._final_price(admin_final_price, breakdown)
        with self._db.transaction():
            load = self._require_open_load(load_id)
            now = utc_now()
            return self._machine.transition(
                load_id,
                LoadStatus.PRICED,
                admin_id,
                expected_version=expected_version if expected_version is not None else load.version,
                reason="priced by admin",
                updates={
                    "admin_final_price": final_price,
                    "admin_suggested_price": (
                        to_money(suggested_price) if suggested_price is not None else load.admin_suggested_price
                    ),
                    "price_breakdown": breakdown or self._pricing.price(final_price),
                    "price_locked": True,
                    "price_locked_by": admin_id,
                    "price_locked_at": now,
                },
                metadata={"admin_final_price": str(final_price)},
            )

    def lock_price(
        self,
        load_id: str,
        admin_id: str,
        admin_final_price: Decimal | int | str,
        reason: str | None = None,
        breakdown: PriceBreakdown | None = None,
        expected_version: int | None = None,
    ) -> Load:
        """Re-lock a released price, optionally at a new final price.

        Raises:
            GuardViolationError: If the price is already locked, the load is
                not yet priced, or an invoice exists.
        """
        final_price = self._final_price(admin_final_price, breakdown)
        with self._db.transaction():
            load = self._require_price_editable(load_id, expected_version)
            if load.price_locked:
                raise GuardViolationError(load_id, load.status, "price_unlocked")
            if load.status not in _LOCKABLE_STATUSES:
                raise GuardViolationError(load_id, load.status, "priced")
            updated = self._loads.compare_and_swap(
                load_id,
                load.version,
                {
                    "admin_final_price": final_price,
                    "price_breakdown": breakdown or self._pricing.price(final_price),
                    "price_locked": True,
                    "price_locked_by": admin_id,
                    "price_locked_at": utc_now(),
                },
            )
            self._audit.log_price_locked(admin_id, load_id, load.admin_final_price, final_price, reason)
        logger.info("price_locked", load_id=load_id, admin_id=admin_id, admin_final_price=str(final_price))
        return updated

    def unlock_price(
        self,
        load_id: str,
        admin_id: str,
        reason: str,
        expected_version: int | None = None,
    ) -> Load:
        """Release a price lock so the final price can be changed.

        Raises:
            GuardViolationError: If the price is not locked or an invoice exists.
        """
        with self._db.transaction():
            load = self._require_price_editable(load_id, expected_version)
            if not load.price_locked:
                raise GuardViolationError(load_id, load.status, "price_locked")
            updated = self._loads.compare_and_swap(
                load_id,
                load.version,
                {"price_locked": False, "price_locked_by": None, "price_locked_at": None},
            )
            self._audit.log_price_unlocked(admin_id, load_id, load.admin_final_price, reason)
        logger.info("price_unlocked", load_id=load_id, admin_id=admin_id, reason=reason)
        return updated

    # ------------------------------------------------------------------
    # Posting and execution
    # ------------------------------------------------------------------

    def post_to_carriers(
        self,
        load_id: str,
        admin_id: str,
        mode: PostMode,
        invited_carrier_ids: list[str] | None = None,
        assigned_carrier_id: str | None = None,
        expected_version: int | None = None,
    ) -> Load:
        """Offer a priced load to carriers.

        Raises:
            InvalidPostModeError: If ``invite`` has no invitees or ``assign``
                has no carrier.
            IllegalTransitionError: If the load is not priced.
        """
        invited = [c for c in (invited_carrier_ids or []) if c]
        if mode == PostMode.INVITE and not invited:
            raise InvalidPostModeError("Invite mode needs at least one invited carrier", load_id=load_id)
        if mode == PostMode.ASSIGN and not assigned_carrier_id:
            raise InvalidPostModeError("Assign mode needs an assigned carrier", load_id=load_id)

        with self._db.transaction():
            load = self._require_open_load(load_id)
            if load.status != LoadStatus.PRICED:
                raise IllegalTransitionError(load_id, load.status, LoadStatus.POSTED_TO_CARRIERS)
            return self._machine.transition(
                load_id,
                LoadStatus.POSTED_TO_CARRIERS,
                admin_id,
                expected_version=expected_version if expected_version is not None else load.version,
                reason=f"posted ({mode.value})",
                updates={
                    "post_mode": mode,
                    "invited_carrier_ids": invited if mode == PostMode.INVITE else [],
                    "assigned_carrier_id": assigned_carrier_id if mode == PostMode.ASSIGN else None,
                },
                metadata={"post_mode": mode.value, "invited": len(invited)},
            )

    def start_transit(self, load_id: str, actor_id: str, expected_version: int | None = None) -> Load:
        """Dispatch a paid load."""
        return self._advance(load_id, LoadStatus.IN_TRANSIT, actor_id, expected_version, "shipment dispatched")

    def mark_delivered(self, load_id: str, actor_id: str, expected_version: int | None = None) -> Load:
        """Record delivery of an in-transit load."""
        return self._advance(load_id, LoadStatus.DELIVERED, actor_id, expected_version, "shipment delivered")

    def close_load(self, load_id: str, actor_id: str, expected_version: int | None = None) -> Load:
        """Archive a delivered load."""
        return self._advance(load_id, LoadStatus.CLOSED, actor_id, expected_version, "load closed")

    def cancel_load(
        self,
        load_id: str,
        actor_id: str,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> Load:
        """Cancel a non-terminal load.

        Open bids are expired and an unpaid active invoice is cancelled in
        the same transaction.

        Raises:
            LoadClosedError: If the load is already closed or cancelled.
        """
        with self._db.transaction():
            load = self._require_open_load(load_id)
            updated = self._machine.transition(
                load_id,
                LoadStatus.CANCELLED,
                actor_id,
                expected_version=expected_version if expected_version is not None else load.version,
                reason=reason or "cancelled",
            )

            open_bids = self._negotiation.expire_open_bids(load_id, actor_id, reason or "load cancelled")

            cancelled_invoice_id = None
            invoice = self._invoices.get(load.invoice_id) if load.invoice_id else None
            if invoice is not None and invoice.status not in FINAL_INVOICE_STATUSES:
                self._invoicing.cancel_invoice(invoice.id, actor_id, reason or "load cancelled")
                cancelled_invoice_id = invoice.id

            self._audit.log_load_cancelled(
                actor_id, load_id, load.status.value, len(open_bids), cancelled_invoice_id, reason
            )
            self._db.after_commit(
                lambda: logger.info(
                    "load_cancelled",
                    load_id=load_id,
                    from_state=load.status.value,
                    expired_bids=len(open_bids),
                    cancelled_invoice_id=cancelled_invoice_id,
                )
            )
        return updated

    def transition(
        self,
        load_id: str,
        target_state: LoadStatus,
        actor_id: str,
        expected_version: int,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Load:
        """Apply a raw state machine transition (no field updates)."""
        return self._machine.transition(
            load_id, target_state, actor_id, expected_version=expected_version, reason=reason, metadata=metadata
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_load(self, load_id: str) -> Load:
        """Return a load or raise ``LoadNotFoundError``."""
        return self._loads.require(load_id)

    def list_loads(
        self,
        status: LoadStatus | None = None,
        shipper_id: str | None = None,
        limit: int = 100,
    ) -> list[Load]:
        """List loads, newest first."""
        return self._loads.find(status=status, shipper_id=shipper_id, limit=limit)

    def list_state_changes(self, load_id: str) -> list[LoadStateChange]:
        """Return a load's state change log in order."""
        self._loads.require(load_id)
        return self._loads.list_state_changes(load_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _final_price(self, admin_final_price: Decimal | int | str, breakdown: PriceBreakdown | None) -> Decimal:
        final_price = to_money(admin_final_price)
        if final_price <= 0:
            raise PricingError(f"admin_final_price must be positive, got {final_price}", price=final_price)
        if breakdown is not None:
            validate_pricing(breakdown, self._max_margin_percent)
            if breakdown.gross_price != final_price:
                raise PricingError(
                    "Breakdown gross_price does not match admin_final_price",
                    gross_price=breakdown.gross_price,
                    admin_final_price=final_price,
                )
        return final_price

    def _require_open_load(self, load_id: str) -> Load:
        load = self._loads.require(load_id)
        if load.status in TERMINAL_STATES:
            raise LoadClosedError(load_id, load.status)
        return load

    def _require_price_editable(self, load_id: str, expected_version: int | None) -> Load:
        """Load checks shared by lock and unlock: open, current, and not invoiced."""
        load = self._require_open_load(load_id)
        if expected_version is not None and expected_version != load.version:
            raise ConcurrencyConflictError("load", load_id, expected_version, load.version)
        if load.invoice_id is not None or self._invoices.list_for_load(load_id):
            raise GuardViolationError(load_id, load.status, "no_invoice")
        return load

    def _advance(
        self,
        load_id: str,
        target: LoadStatus,
        actor_id: str,
        expected_version: int | None,
        reason: str,
    ) -> Load:
        with self._db.transaction():
            load = self._require_open_load(load_id)
            return self._machine.transition(
                load_id,
                target,
                actor_id,
                expected_version=expected_version if expected_version is not None else load.version,
                reason=reason,
            )

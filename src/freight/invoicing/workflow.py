"""Invoice workflow: creation, delivery, shipper responses, revisions, payment.

Each operation runs in one database transaction together with the load
transition it drives, so a reader never sees an invoice that is ``paid``
on a load that is not ``invoice_paid`` (or the reverse).  Every invoice
write is a compare-and-swap on the invoice ``version`` and every status
change appends an ``invoice_history`` row.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import structlog

from freight.audit.logger import AuditLogger
from freight.domain.errors import (
    ConcurrencyConflictError,
    DuplicateIdempotencyKeyError,
    InsufficientPaymentError,
    InvoiceClosedError,
    LoadClosedError,
    NotAwardedError,
    NotVerifiedError,
)
from freight.domain.models import Invoice, InvoiceBreakdown, InvoiceHistoryEntry, Load, to_money, utc_now
from freight.domain.types import InvoiceStatus, LoadStatus, ShipperResponseType
from freight.invoicing.totals import compute_totals
from freight.observability.metrics import CONCURRENCY_CONFLICTS, INVOICES_PAID
from freight.state_machine.machine import LoadStateMachine
from freight.state_machine.transitions import (
    RESPONDABLE_INVOICE_STATUSES,
    TERMINAL_STATES,
    can_transition_invoice,
)
from freight.store.database import Database
from freight.store.invoices import InvoiceRepository
from freight.store.loads import LoadRepository

logger = structlog.get_logger()

_SENDABLE_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.PUSH_FAILED})
_REVISABLE_STATUSES = frozenset({InvoiceStatus.NEGOTIATING, InvoiceStatus.DISPUTED})
_VIEWABLE_STATUSES = frozenset({InvoiceStatus.SENT, InvoiceStatus.REVISED})
_PAYABLE_STATUSES = frozenset({InvoiceStatus.APPROVED, InvoiceStatus.OVERDUE})
_DISPUTABLE_STATUSES = frozenset({InvoiceStatus.APPROVED, InvoiceStatus.OVERDUE})

# Load states driven by the active invoice, in lifecycle order.
_INVOICE_STAGES = (LoadStatus.INVOICE_CREATED, LoadStatus.INVOICE_SENT, LoadStatus.INVOICE_ACKNOWLEDGED)


class InvoiceWorkflow:
    """Drive shipper invoices from draft to paid.

    Args:
        db: The shared freight database.
        loads: Load repository.
        invoices: Invoice repository.
        machine: The load state machine.
        audit: Admin audit trail writer.
        payment_terms_days: Days between sending and the due date.
    """

    def __init__(
        self,
        db: Database,
        loads: LoadRepository,
        invoices: InvoiceRepository,
        machine: LoadStateMachine,
        audit: AuditLogger,
        payment_terms_days: int = 30,
    ) -> None:
        self._db = db
        self._loads = loads
        self._invoices = invoices
        self._machine = machine
        self._audit = audit
        self._payment_terms_days = payment_terms_days

    # ------------------------------------------------------------------
    # Creation and delivery
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        load_id: str,
        admin_id: str,
        breakdown: InvoiceBreakdown,
        idempotency_key: str,
        expected_version: int | None = None,
    ) -> Invoice:
        """Create the draft invoice for an awarded, price-locked load.

        A repeated call with the same key for the same load returns the
        invoice created by the first call and writes nothing.  After the
        active invoice is cancelled, a new key issues its replacement; the
        load keeps the invoice stage it already reached.

        Args:
            load_id: The awarded load.
            admin_id: The admin issuing the invoice.
            breakdown: Cost lines used to compute the totals.
            idempotency_key: Caller-supplied retry token.
            expected_version: The load version the caller last observed.

        Returns:
            The draft invoice.

        Raises:
            DuplicateIdempotencyKeyError: If the key was used for another load.
            LoadClosedError: If the load is closed or cancelled.
            NotAwardedError: If the load is not awarded with a locked price.
            ConcurrencyConflictError: If *expected_version* is stale.
        """
        with self._db.transaction():
            existing = self._invoices.get_by_idempotency_key(idempotency_key)
            if existing is not None:
                if existing.load_id != load_id:
                    raise DuplicateIdempotencyKeyError(
                        f"Idempotency key '{idempotency_key}' belongs to another load",
                        idempotency_key=idempotency_key,
                        load_id=load_id,
                        existing_load_id=existing.load_id,
                    )
                logger.info("invoice_create_replayed", invoice_id=existing.id, load_id=load_id)
                return existing

            load = self._require_open_load(load_id)
            replacing = load.status in _INVOICE_STAGES and load.invoice_id is None
            if not (load.status == LoadStatus.AWARDED or replacing) or not load.price_locked:
                raise NotAwardedError(
                    f"Load '{load_id}' is not awarded with a locked price",
                    load_id=load_id,
                    status=load.status,
                    price_locked=load.price_locked,
                )

            totals = compute_totals(breakdown)
            now = utc_now()
            invoice = self._invoices.insert(
                Invoice(
                    id=str(uuid.uuid4()),
                    invoice_number=self._invoices.next_invoice_number(now),
                    load_id=load_id,
                    shipper_id=load.shipper_id,
                    admin_id=admin_id,
                    **breakdown.model_dump(),
                    subtotal=totals.subtotal,
                    tax_amount=totals.tax_amount,
                    total_amount=totals.total_amount,
                    idempotency_key=idempotency_key,
                    payment_terms_days=self._payment_terms_days,
                    created_at=now,
                    updated_at=now,
                )
            )
            self._invoices.append_history(invoice.id, admin_id, None, InvoiceStatus.DRAFT, "created")
            self._advance_load(
                load,
                LoadStatus.INVOICE_CREATED,
                admin_id,
                expected_version if expected_version is not None else load.version,
                "invoice created",
                updates={"invoice_id": invoice.id},
                metadata={"invoice_id": invoice.id, "total_amount": str(invoice.total_amount)},
            )
            self._db.after_commit(
                lambda: logger.info(
                    "invoice_created",
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    load_id=load_id,
                    total_amount=str(invoice.total_amount),
                    replacement=replacing,
                )
            )
        return invoice

    def send_invoice(self, invoice_id: str, actor_id: str, expected_version: int | None = None) -> Invoice:
        """Send a draft (or previously failed) invoice to the shipper.

        Stamps ``sent_at`` and ``due_date`` and moves the load to
        ``invoice_sent``.

        Raises:
            InvoiceClosedError: If the invoice is not draft or push_failed.
        """
        with self._db.transaction():
            invoice = self._invoices.require(invoice_id)
            load = self._require_open_load(invoice.load_id)
            if invoice.status not in _SENDABLE_STATUSES:
                raise InvoiceClosedError(invoice_id, invoice.status, "send")

            now = utc_now()
            updated = self._change_status(
                invoice,
                InvoiceStatus.SENT,
                actor_id,
                "send",
                changes={"sent_at": now, "due_date": now + timedelta(days=invoice.payment_terms_days)},
                expected_version=expected_version,
            )
            self._advance_load(
                load,
                LoadStatus.INVOICE_SENT,
                actor_id,
                load.version,
                "invoice sent",
                metadata={"invoice_id": invoice_id},
            )
            self._db.after_commit(
                lambda: logger.info("invoice_sent", invoice_id=invoice_id, due_date=str(updated.due_date))
            )
        return updated

    def record_push_failure(self, invoice_id: str, actor_id: str, reason: str) -> Invoice:
        """Record that delivering a draft invoice to the shipper failed."""
        with self._db.transaction():
            invoice = self._invoices.require(invoice_id)
            self._require_open_load(invoice.load_id)
            if invoice.status != InvoiceStatus.DRAFT:
                raise InvoiceClosedError(invoice_id, invoice.status, "record_push_failure")
            updated = self._change_status(invoice, InvoiceStatus.PUSH_FAILED, actor_id, "record_push_failure", reason)
        logger.warning("invoice_push_failed", invoice_id=invoice_id, reason=reason)
        return updated

    def mark_viewed(self, invoice_id: str, actor_id: str) -> Invoice:
        """Record that the shipper opened a sent or revised invoice.

        Viewing an already viewed invoice returns it unchanged.
        """
        with self._db.transaction():
            invoice = self._invoices.require(invoice_id)
            if invoice.status == InvoiceStatus.VIEWED:
                return invoice
            self._require_open_load(invoice.load_id)
            if invoice.status not in _VIEWABLE_STATUSES:
                raise InvoiceClosedError(invoice_id, invoice.status, "mark_viewed")
            return self._change_status(
                invoice,
                InvoiceStatus.VIEWED,
                actor_id,
                "mark_viewed",
                changes={"viewed_at": utc_now()},
            )

    # ------------------------------------------------------------------
    # Shipper responses and revisions
    # ------------------------------------------------------------------

    def respond_to_invoice(
        self,
        invoice_id: str,
        shipper_id: str,
        response_type: ShipperResponseType,
        counter_amount: Decimal | int | str | None = None,
        message: str | None = None,
        expected_version: int | None = None,
    ) -> Invoice:
        """Apply a shipper's response to a sent invoice.

        ``approve`` moves the invoice to ``approved`` and the load to
        ``invoice_acknowledged``; ``negotiate`` records a counter amount;
        ``query`` records the question without changing status; ``reject``
        disputes the invoice.

        Raises:
            InvoiceClosedError: If the invoice no longer accepts responses.
            NotVerifiedError: If *shipper_id* does not own the load.
            ValueError: If ``negotiate`` comes without a positive counter amount.
        """
        counter: Decimal | None = None
        if response_type == ShipperResponseType.NEGOTIATE:
            if counter_amount is None:
                raise ValueError("counter_amount is required to negotiate an invoice")
            counter = to_money(counter_amount)
            if counter <= 0:
                raise ValueError("counter_amount must be positive")

        with self._db.transaction():
            invoice = self._invoices.require(invoice_id)
            load = self._require_open_load(invoice.load_id)
            operation = f"respond_{response_type.value}"
            if invoice.status not in RESPONDABLE_INVOICE_STATUSES:
                raise InvoiceClosedError(invoice_id, invoice.status, operation)
            if load.shipper_id != shipper_id:
                raise NotVerifiedError(
                    f"Shipper '{shipper_id}' does not own load '{load.id}'",
                    shipper_id=shipper_id,
                    load_id=load.id,
                )

            changes: dict[str, Any] = {
                "shipper_response_type": response_type,
                "shipper_message": message,
                "responded_at": utc_now(),
            }
            if counter is not None:
                changes["shipper_counter_amount"] = counter

            match response_type:
                case ShipperResponseType.APPROVE:
                    updated = self._change_status(
                        invoice, InvoiceStatus.APPROVED, shipper_id, operation, message, changes, expected_version
                    )
                    self._advance_load(
                        load,
                        LoadStatus.INVOICE_ACKNOWLEDGED,
                        shipper_id,
                        load.version,
                        "invoice approved",
                        metadata={"invoice_id": invoice_id},
                    )
                case ShipperResponseType.REJECT:
                    updated = self._change_status(
                        invoice, InvoiceStatus.DISPUTED, shipper_id, operation, message, changes, expected_version
                    )
                case ShipperResponseType.NEGOTIATE if invoice.status != InvoiceStatus.NEGOTIATING:
                    updated = self._change_status(
                        invoice,
                        InvoiceStatus.NEGOTIATING,
                        shipper_id,
                        operation,
                        message,
                        changes,
                        expected_version,
                        metadata={"counter_amount": str(counter)},
                    )
                case _:
                    # Queries and repeated counters keep the status; history still records them.
                    updated = self._record_response(invoice, shipper_id, response_type, message, changes, expected_version)

        logger.info(
            "invoice_response_recorded",
            invoice_id=invoice_id,
            response_type=response_type.value,
            status=updated.status.value,
        )
        return updated

    def revise_invoice(
        self,
        invoice_id: str,
        admin_id: str,
        breakdown: InvoiceBreakdown,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> Invoice:
        """Issue a revision of a negotiated or disputed invoice.

        The prior invoice is marked ``superseded`` and never changed
        otherwise; the new invoice carries ``revision_number + 1``, points
        back through ``previous_invoice_id``, and becomes the load's active
        invoice.

        Returns:
            The new invoice, in status ``revised``.

        Raises:
            InvoiceClosedError: If the invoice is not negotiating or disputed.
        """
        with self._db.transaction():
            prior = self._invoices.require(invoice_id)
            load = self._require_open_load(prior.load_id)
            if prior.status not in _REVISABLE_STATUSES:
                raise InvoiceClosedError(invoice_id, prior.status, "revise")

            totals = compute_totals(breakdown)
            revision = prior.revision_number + 1
            root_number = prior.invoice_number.rsplit("-R", 1)[0] if prior.revision_number > 1 else prior.invoice_number
            now = utc_now()

            self._change_status(
                prior, InvoiceStatus.SUPERSEDED, admin_id, "revise", reason, expected_version=expected_version
            )
            revised = self._invoices.insert(
                Invoice(
                    id=str(uuid.uuid4()),
                    invoice_number=f"{root_number}-R{revision}",
                    load_id=prior.load_id,
                    shipper_id=prior.shipper_id,
                    admin_id=admin_id,
                    **breakdown.model_dump(),
                    subtotal=totals.subtotal,
                    tax_amount=totals.tax_amount,
                    total_amount=totals.total_amount,
                    status=InvoiceStatus.REVISED,
                    revision_number=revision,
                    previous_invoice_id=prior.id,
                    idempotency_key=f"{prior.idempotency_key}:r{revision}",
                    payment_terms_days=prior.payment_terms_days,
                    sent_at=prior.sent_at,
                    due_date=prior.due_date,
                    created_at=now,
                    updated_at=now,
                )
            )
            self._invoices.append_history(
                revised.id,
                admin_id,
                None,
                InvoiceStatus.REVISED,
                reason,
                {"previous_invoice_id": prior.id},
            )
            self._loads.compare_and_swap(load.id, load.version, {"invoice_id": revised.id})
            self._audit.log_invoice_revised(
                admin_id,
                load.id,
                prior.id,
                revised.id,
                prior.total_amount,
                revised.total_amount,
                reason,
            )
            self._db.after_commit(
                lambda: logger.info(
                    "invoice_revised",
                    invoice_id=revised.id,
                    previous_invoice_id=prior.id,
                    revision_number=revision,
                    total_amount=str(revised.total_amount),
                )
            )
        return revised

    # ------------------------------------------------------------------
    # Payment and side branches
    # ------------------------------------------------------------------

    def confirm_payment(
        self,
        invoice_id: str,
        actor_id: str,
        amount: Decimal | int | str,
        reference: str,
        expected_version: int | None = None,
    ) -> Invoice:
        """Confirm full payment of an approved invoice.

        An approved invoice that has since gone overdue is still payable.
        Retrying with the reference of an already recorded payment returns
        the paid invoice unchanged.

        Raises:
            InvoiceClosedError: If the invoice is not approved (or overdue
                after approval).
            InsufficientPaymentError: If *amount* is below the invoice total.
        """
        paid_amount = to_money(amount)
        with self._db.transaction():
            invoice = self._invoices.require(invoice_id)
            if invoice.status == InvoiceStatus.PAID and invoice.payment_reference == reference:
                logger.info("payment_replayed", invoice_id=invoice_id, reference=reference)
                return invoice

            load = self._require_open_load(invoice.load_id)
            if invoice.status not in _PAYABLE_STATUSES:
                raise InvoiceClosedError(invoice_id, invoice.status, "confirm_payment")
            if invoice.shipper_response_type != ShipperResponseType.APPROVE:
                raise InvoiceClosedError(invoice_id, invoice.status, "confirm_payment_unapproved")
            if paid_amount < invoice.total_amount:
                raise InsufficientPaymentError(
                    f"Payment {paid_amount} is less than invoice total {invoice.total_amount}",
                    invoice_id=invoice_id,
                    amount=paid_amount,
                    total_amount=invoice.total_amount,
                )

            updated = self._change_status(
                invoice,
                InvoiceStatus.PAID,
                actor_id,
                "confirm_payment",
                changes={"paid_at": utc_now(), "paid_amount": paid_amount, "payment_reference": reference},
                expected_version=expected_version,
                metadata={"reference": reference, "amount": str(paid_amount)},
            )
            self._machine.transition(
                load.id,
                LoadStatus.INVOICE_PAID,
                actor_id,
                expected_version=load.version,
                reason="payment confirmed",
                metadata={"invoice_id": invoice_id, "reference": reference},
            )

            def _paid() -> None:
                INVOICES_PAID.inc()
                logger.info(
                    "payment_confirmed",
                    invoice_id=invoice_id,
                    load_id=load.id,
                    amount=str(paid_amount),
                    reference=reference,
                )

            self._db.after_commit(_paid)
        return updated

    def mark_overdue(self, invoice_id: str, actor_id: str, now: datetime | None = None) -> Invoice:
        """Mark an unpaid invoice overdue once its due date has passed.

        Raises:
            InvoiceClosedError: If the status does not allow it or the
                invoice is not yet due.
        """
        now = now or utc_now()
        with self._db.transaction():
            invoice = self._invoices.require(invoice_id)
            if not can_transition_invoice(invoice.status, InvoiceStatus.OVERDUE):
                raise InvoiceClosedError(invoice_id, invoice.status, "mark_overdue")
            if invoice.due_date is None or now <= invoice.due_date:
                raise InvoiceClosedError(invoice_id, invoice.status, "mark_overdue_before_due")
            updated = self._change_status(
                invoice,
                InvoiceStatus.OVERDUE,
                actor_id,
                "mark_overdue",
                metadata={"due_date": invoice.due_date.isoformat()},
            )
        logger.info("invoice_overdue", invoice_id=invoice_id, due_date=invoice.due_date.isoformat())
        return updated

    def dispute_invoice(
        self,
        invoice_id: str,
        actor_id: str,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> Invoice:
        """Reopen an approved or overdue invoice so it can be revised.

        Raises:
            InvoiceClosedError: If the invoice is not approved or overdue.
        """
        with self._db.transaction():
            invoice = self._invoices.require(invoice_id)
            self._require_open_load(invoice.load_id)
            if invoice.status not in _DISPUTABLE_STATUSES:
                raise InvoiceClosedError(invoice_id, invoice.status, "dispute")
            updated = self._change_status(
                invoice, InvoiceStatus.DISPUTED, actor_id, "dispute", reason, expected_version=expected_version
            )
        logger.info("invoice_disputed", invoice_id=invoice_id, reason=reason)
        return updated

    def cancel_invoice(self, invoice_id: str, actor_id: str, reason: str | None = None) -> Invoice:
        """Cancel an invoice that is not yet paid, cancelled or superseded.

        On an open load the cancelled invoice is unlinked, so
        ``create_invoice`` can issue a replacement.
        """
        with self._db.transaction():
            invoice = self._invoices.require(invoice_id)
            updated = self._change_status(invoice, InvoiceStatus.CANCELLED, actor_id, "cancel", reason)
            load = self._loads.require(invoice.load_id)
            if load.status not in TERMINAL_STATES and load.invoice_id == invoice_id:
                self._loads.compare_and_swap(load.id, load.version, {"invoice_id": None})
        logger.info("invoice_cancelled", invoice_id=invoice_id, reason=reason)
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_invoice(self, invoice_id: str) -> Invoice:
        """Return an invoice or raise ``InvoiceNotFoundError``."""
        return self._invoices.require(invoice_id)

    def get_active_invoice(self, load_id: str) -> Invoice | None:
        """Return the invoice currently linked to the load, if any."""
        load = self._loads.require(load_id)
        return self._invoices.get(load.invoice_id) if load.invoice_id else None

    def list_revisions(self, load_id: str) -> list[Invoice]:
        """Return every invoice issued for a load, oldest revision first."""
        self._loads.require(load_id)
        return self._invoices.list_for_load(load_id)

    def list_history(self, invoice_id: str) -> list[InvoiceHistoryEntry]:
        """Return an invoice's status history."""
        self._invoices.require(invoice_id)
        return self._invoices.list_history(invoice_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_open_load(self, load_id: str) -> Load:
        load = self._loads.require(load_id)
        if load.status in TERMINAL_STATES:
            raise LoadClosedError(load_id, load.status)
        return load

    def _advance_load(
        self,
        load: Load,
        target: LoadStatus,
        actor_id: str,
        expected_version: int,
        reason: str,
        updates: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Load:
        """Move *load* to *target*, or only relink it if it is already there.

        A replacement invoice repeats steps its load has already passed;
        those steps never move the load backwards.
        """
        if load.status in _INVOICE_STAGES and _INVOICE_STAGES.index(load.status) >= _INVOICE_STAGES.index(target):
            if load.version != expected_version:
                CONCURRENCY_CONFLICTS.labels(entity="load").inc()
                raise ConcurrencyConflictError("load", load.id, expected_version, load.version)
            if not updates:
                return load
            return self._loads.compare_and_swap(load.id, expected_version, updates)
        return self._machine.transition(
            load.id,
            target,
            actor_id,
            expected_version=expected_version,
            reason=reason,
            updates=updates,
            metadata=metadata,
        )

    def _check_version(self, invoice: Invoice, expected_version: int | None) -> int:
        if expected_version is not None and expected_version != invoice.version:
            CONCURRENCY_CONFLICTS.labels(entity="invoice").inc()
            raise ConcurrencyConflictError("invoice", invoice.id, expected_version, invoice.version)
        return invoice.version

    def _change_status(
        self,
        invoice: Invoice,
        target: InvoiceStatus,
        actor_id: str,
        operation: str,
        reason: str | None = None,
        changes: dict[str, Any] | None = None,
        expected_version: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Invoice:
        """Move *invoice* to *target* with a CAS write and a history row."""
        version = self._check_version(invoice, expected_version)
        if not can_transition_invoice(invoice.status, target):
            raise InvoiceClosedError(invoice.id, invoice.status, operation)
        updated = self._invoices.compare_and_swap(invoice.id, version, {**(changes or {}), "status": target})
        self._invoices.append_history(invoice.id, actor_id, invoice.status, target, reason, metadata)
        return updated

    def _record_response(
        self,
        invoice: Invoice,
        shipper_id: str,
        response_type: ShipperResponseType,
        message: str | None,
        changes: dict[str, Any],
        expected_version: int | None,
    ) -> Invoice:
        version = self._check_version(invoice, expected_version)
        updated = self._invoices.compare_and_swap(invoice.id, version, changes)
        metadata: dict[str, Any] = {"response_type": response_type.value}
        if "shipper_counter_amount" in changes:
            metadata["counter_amount"] = str(changes["shipper_counter_amount"])
        self._invoices.append_history(invoice.id, shipper_id, invoice.status, invoice.status, message, metadata)
        return updated

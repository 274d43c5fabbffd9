"""LoadStateMachine: validated, versioned, audited load transitions."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

import structlog

from freight.domain.errors import (
    ConcurrencyConflictError,
    GuardViolationError,
    IllegalTransitionError,
    LoadClosedError,
)
from freight.domain.models import Load, LoadStateChange
from freight.domain.types import OPEN_BID_STATUSES, BidStatus, InvoiceStatus, LoadStatus
from freight.observability.metrics import CONCURRENCY_CONFLICTS, LOAD_TRANSITIONS_TOTAL
from freight.state_machine.transitions import LOAD_TRANSITIONS, TERMINAL_STATES
from freight.store.database import Database
from freight.store.invoices import InvoiceRepository
from freight.store.loads import LoadRepository
from freight.store.negotiation import BidRepository

logger = structlog.get_logger()

# A guard receives the current load and the load as it would look after the
# transition's field updates; it returns the name of the failed check or None.
Guard = Callable[[Load, Load], str | None]


def replay_status(changes: Iterable[LoadStateChange], initial: LoadStatus = LoadStatus.DRAFT) -> LoadStatus:
    """Rebuild a load's status by replaying its state change log.

    Args:
        changes: Change rows in the order they were written.
        initial: The status the load was created in.

    Returns:
        The status after applying every change.

    Raises:
        ValueError: If a row does not start where the previous one ended.
    """
    status = initial
    for change in changes:
        if change.from_state != status:
            raise ValueError(
                f"Change log broken at row {change.id}: expected from '{status}', "
                f"found '{change.from_state}'"
            )
        status = change.to_state
    return status


class LoadStateMachine:
    """Finite state machine governing the load lifecycle.

    Every transition is checked against ``LOAD_TRANSITIONS`` and the
    state-specific guards, written with a compare-and-swap on the load
    version, and recorded in the state change log in the same transaction.

    Usage::

        machine = LoadStateMachine(db, loads, bids, invoices)
        load = machine.transition(load.id, LoadStatus.PENDING, "shipper-1",
                                  expected_version=load.version)
    """

    def __init__(
        self,
        db: Database,
        loads: LoadRepository,
        bids: BidRepository,
        invoices: InvoiceRepository,
    ) -> None:
        self._db = db
        self._loads = loads
        self._bids = bids
        self._invoices = invoices
        self._guards: dict[LoadStatus, Guard] = {
            LoadStatus.PRICED: self._guard_priced,
            LoadStatus.POSTED_TO_CARRIERS: self._guard_posted,
            LoadStatus.OPEN_FOR_BID: self._guard_open_for_bid,
            LoadStatus.AWARDED: self._guard_awarded,
            LoadStatus.INVOICE_CREATED: self._guard_invoice_created,
            LoadStatus.INVOICE_SENT: self._invoice_status_guard(
                {InvoiceStatus.SENT, InvoiceStatus.REVISED}
            ),
            LoadStatus.INVOICE_ACKNOWLEDGED: self._invoice_status_guard({InvoiceStatus.APPROVED}),
            LoadStatus.INVOICE_PAID: self._invoice_status_guard({InvoiceStatus.PAID}),
            LoadStatus.IN_TRANSIT: self._guard_in_transit,
        }

    @staticmethod
    def allowed_targets(load: Load) -> list[LoadStatus]:
        """Return a sorted list of states *load* may move to next.

        Guards are not evaluated; an empty list means the load is terminal.
        """
        return sorted(LOAD_TRANSITIONS[load.status])

    def transition(
        self,
        load_id: str,
        target_state: LoadStatus,
        actor_id: str,
        expected_version: int,
        reason: str | None = None,
        updates: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Load:
        """Move a load to *target_state*.

        Args:
            load_id: The load to transition.
            target_state: The requested next state.
            actor_id: Who is making the change (recorded in the change log).
            expected_version: The load version the caller last observed.
            reason: Free-text reason for the change log.
            updates: Extra load fields written in the same versioned update.
            metadata: Extra key-values for the change log row.

        Returns:
            The updated load, one version higher.

        Raises:
            LoadNotFoundError: If the load does not exist.
            LoadClosedError: If the load is closed or cancelled.
            ConcurrencyConflictError: If *expected_version* is stale.
            IllegalTransitionError: If the table does not allow the move.
            GuardViolationError: If a state-specific precondition fails.
        """
        updates = dict(updates or {})
        with self._db.transaction():
            load = self._loads.require(load_id)

            if load.status in TERMINAL_STATES:
                raise LoadClosedError(load_id, load.status)

            if load.version != expected_version:
                CONCURRENCY_CONFLICTS.labels(entity="load").inc()
                logger.info(
                    "concurrency_conflict",
                    load_id=load_id,
                    expected_version=expected_version,
                    current_version=load.version,
                )
                raise ConcurrencyConflictError("load", load_id, expected_version, load.version)

            if target_state not in LOAD_TRANSITIONS[load.status]:
                raise IllegalTransitionError(load_id, load.status, target_state)

            candidate = load.model_copy(update=updates)
            guard = self._guards.get(target_state)
            if guard is not None:
                failed = guard(load, candidate)
                if failed is not None:
                    raise GuardViolationError(load_id, target_state, failed)

            updates.update(status=target_state, previous_status=load.status)
            updated = self._loads.compare_and_swap(load_id, expected_version, updates)
            self._loads.append_state_change(
                load_id, actor_id, load.status, target_state, reason, metadata
            )

            from_state = load.status
            self._db.after_commit(
                lambda: self._record_committed(load_id, actor_id, from_state, target_state, updated.version)
            )
        return updated

    @staticmethod
    def _record_committed(
        load_id: str,
        actor_id: str,
        from_state: LoadStatus,
        to_state: LoadStatus,
        version: int,
    ) -> None:
        LOAD_TRANSITIONS_TOTAL.labels(from_state=from_state.value, to_state=to_state.value).inc()
        logger.info(
            "load_transitioned",
            load_id=load_id,
            actor_id=actor_id,
            from_state=from_state.value,
            to_state=to_state.value,
            version=version,
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def _guard_priced(current: Load, candidate: Load) -> str | None:
        if not candidate.price_locked or candidate.admin_final_price is None:
            return "price_locked"
        return None

    def _has_open_bids(self, load_id: str) -> bool:
        return bool(self._bids.list_for_load(load_id, OPEN_BID_STATUSES))

    def _guard_posted(self, current: Load, candidate: Load) -> str | None:
        # Re-soliciting from a bidding state needs every bid closed first.
        if current.status != LoadStatus.PRICED and self._has_open_bids(current.id):
            return "no_open_bids"
        return None

    def _guard_open_for_bid(self, current: Load, candidate: Load) -> str | None:
        if current.status == LoadStatus.AWARDED:
            if candidate.invoice_id is not None or self._invoices.list_for_load(current.id):
                return "no_invoice"
            if candidate.awarded_bid_id is not None:
                return "award_revoked"
        return None

    def _guard_awarded(self, current: Load, candidate: Load) -> str | None:
        if candidate.awarded_bid_id is None:
            return "accepted_bid"
        bid = self._bids.get(candidate.awarded_bid_id)
        if bid is None or bid.load_id != current.id or bid.status != BidStatus.ACCEPTED:
            return "accepted_bid"
        return None

    def _guard_invoice_created(self, current: Load, candidate: Load) -> str | None:
        if not candidate.price_locked:
            return "price_locked"
        if candidate.invoice_id is None or self._invoices.get(candidate.invoice_id) is None:
            return "active_invoice"
        return None

    def _invoice_status_guard(self, allowed: set[InvoiceStatus]) -> Guard:
        def guard(current: Load, candidate: Load) -> str | None:
            if candidate.invoice_id is None:
                return "active_invoice"
            invoice = self._invoices.get(candidate.invoice_id)
            if invoice is None or invoice.status not in allowed:
                return "invoice_status"
            return None

        return guard

    @staticmethod
    def _guard_in_transit(current: Load, candidate: Load) -> str | None:
        if current.status != LoadStatus.INVOICE_PAID:
            return "payment_confirmed"
        return None

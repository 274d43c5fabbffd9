"""Negotiation engine: bids, counter-offers, awards, and the message log.

Every operation runs in one database transaction: the bid rows, the
negotiation messages, the cached thread summary, and any load transition
commit together or not at all.  The award path checks the load's
``awarded_bid_id`` inside that transaction, so of two concurrent accepts on
the same load the second always fails with ``AlreadyAwardedError``.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import structlog

from freight.audit.logger import AuditLogger
from freight.domain.errors import (
    AlreadyAwardedError,
    CarrierNotEligibleError,
    DuplicateBidError,
    GuardViolationError,
    IllegalTransitionError,
    InvalidBidStateError,
    LoadClosedError,
)
from freight.domain.models import Bid, Load, NegotiationMessage, NegotiationThread, to_money
from freight.domain.types import (
    BIDDABLE_STATUSES,
    OPEN_BID_STATUSES,
    ActorRole,
    BidStatus,
    BidType,
    CarrierType,
    LoadStatus,
    MessageType,
    PostMode,
)
from freight.negotiation.thread import apply_message, derive_thread, empty_thread
from freight.observability.metrics import BIDS_PLACED, LOADS_AWARDED
from freight.state_machine.machine import LoadStateMachine
from freight.state_machine.transitions import TERMINAL_STATES, can_transition_bid
from freight.store.database import Database
from freight.store.loads import LoadRepository
from freight.store.negotiation import BidRepository, NegotiationLog

logger = structlog.get_logger()

# Load states from which an admin may send a load back to open bidding.
_REOPENABLE_STATUSES = frozenset({LoadStatus.AWARDED, LoadStatus.COUNTER_RECEIVED})

# Load states from which an admin may re-post a load with no open bids.
_RESOLICITABLE_STATUSES = frozenset({LoadStatus.OPEN_FOR_BID, LoadStatus.COUNTER_RECEIVED})


class NegotiationEngine:
    """Mediate bid and counter-offer traffic for loads.

    Args:
        db: The shared freight database.
        loads: Load repository.
        bids: Bid repository.
        log: Negotiation message log and thread cache.
        machine: The load state machine, used for every status change.
        audit: Admin audit trail writer.
    """

    def __init__(
        self,
        db: Database,
        loads: LoadRepository,
        bids: BidRepository,
        log: NegotiationLog,
        machine: LoadStateMachine,
        audit: AuditLogger,
    ) -> None:
        self._db = db
        self._loads = loads
        self._bids = bids
        self._log = log
        self._machine = machine
        self._audit = audit

    # ------------------------------------------------------------------
    # Carrier bids
    # ------------------------------------------------------------------

    def place_bid(
        self,
        load_id: str,
        carrier_id: str,
        amount: Decimal | int | str,
        notes: str | None = None,
        carrier_type: CarrierType = CarrierType.SOLO,
    ) -> Bid:
        """Place a carrier bid on a load that is open to carriers.

        The first bid on a ``posted_to_carriers`` load moves it to
        ``open_for_bid``.

        Returns:
            The new pending bid.

        Raises:
            LoadNotFoundError: If the load does not exist.
            LoadClosedError: If the load is closed or cancelled.
            IllegalTransitionError: If the load is not accepting bids.
            CarrierNotEligibleError: If the post mode excludes this carrier.
            DuplicateBidError: If the carrier already has an open bid here.
        """
        with self._db.transaction():
            load = self._require_open_load(load_id)
            if load.status not in BIDDABLE_STATUSES:
                raise IllegalTransitionError(load_id, load.status, LoadStatus.OPEN_FOR_BID)
            self._check_eligible(load, carrier_id)
            self._check_no_open_bid(load_id, carrier_id)

            bid = self._bids.insert(
                Bid(
                    id=str(uuid.uuid4()),
                    load_id=load_id,
                    carrier_id=carrier_id,
                    carrier_type=carrier_type,
                    amount=amount,
                    notes=notes,
                )
            )
            self._record(
                load_id,
                sender_id=carrier_id,
                sender_role=ActorRole.CARRIER,
                message_type=MessageType.CARRIER_BID,
                bid_id=bid.id,
                carrier_id=carrier_id,
                amount=bid.amount,
                body=notes,
            )
            if load.status == LoadStatus.POSTED_TO_CARRIERS:
                self._machine.transition(
                    load_id,
                    LoadStatus.OPEN_FOR_BID,
                    carrier_id,
                    expected_version=load.version,
                    reason="first bid received",
                    metadata={"bid_id": bid.id},
                )

            def _placed() -> None:
                BIDS_PLACED.labels(carrier_type=carrier_type.value).inc()
                logger.info(
                    "bid_placed",
                    load_id=load_id,
                    bid_id=bid.id,
                    carrier_id=carrier_id,
                    amount=str(bid.amount),
                )

            self._db.after_commit(_placed)
        return bid

    def counter_offer(
        self,
        bid_id: str,
        actor_id: str,
        actor_role: ActorRole,
        amount: Decimal | int | str,
        message: str | None = None,
    ) -> Bid:
        """Counter a pending or countered bid.

        Records the prior agreed amount as ``previous_amount``.  An admin
        counter moves the load to ``counter_received``.

        Raises:
            BidNotFoundError: If the bid does not exist.
            LoadClosedError: If the load is closed or cancelled.
            InvalidBidStateError: If the bid is no longer open.
            IllegalTransitionError: If the load is not in a bidding state.
        """
        if actor_role == ActorRole.SYSTEM:
            raise ValueError("Counter-offers come from a carrier or an admin")
        amount = to_money(amount)
        if amount <= 0:
            raise ValueError("counter amount must be positive")

        with self._db.transaction():
            bid = self._bids.require(bid_id)
            load = self._require_open_load(bid.load_id)
            if bid.status not in OPEN_BID_STATUSES:
                raise InvalidBidStateError(bid_id, bid.status, BidStatus.COUNTERED)
            if load.status not in BIDDABLE_STATUSES:
                raise IllegalTransitionError(load.id, load.status, LoadStatus.COUNTER_RECEIVED)
            if actor_role == ActorRole.CARRIER and actor_id != bid.carrier_id:
                raise CarrierNotEligibleError(
                    f"Carrier '{actor_id}' cannot counter bid '{bid_id}'",
                    bid_id=bid_id,
                    carrier_id=actor_id,
                )

            previous = bid.agreed_amount
            bid = self._move_bid(bid, BidStatus.COUNTERED, counter_amount=amount, previous_amount=previous)
            message_type = (
                MessageType.ADMIN_COUNTER if actor_role == ActorRole.ADMIN else MessageType.CARRIER_COUNTER
            )
            self._record(
                load.id,
                sender_id=actor_id,
                sender_role=actor_role,
                message_type=message_type,
                bid_id=bid_id,
                carrier_id=bid.carrier_id,
                amount=amount,
                previous_amount=previous,
                body=message,
            )
            if actor_role == ActorRole.ADMIN and load.status != LoadStatus.COUNTER_RECEIVED:
                self._machine.transition(
                    load.id,
                    LoadStatus.COUNTER_RECEIVED,
                    actor_id,
                    expected_version=load.version,
                    reason="admin counter-offer",
                    metadata={"bid_id": bid_id, "amount": str(amount)},
                )

            self._db.after_commit(
                lambda: logger.info(
                    "bid_countered",
                    load_id=load.id,
                    bid_id=bid_id,
                    actor_role=actor_role.value,
                    amount=str(amount),
                    previous_amount=str(previous),
                )
            )
        return bid

    # ------------------------------------------------------------------
    # Awards
    # ------------------------------------------------------------------

    def accept_bid(self, bid_id: str, actor_id: str, actor_role: ActorRole) -> Bid:
        """Accept a bid and award its load.

        Atomically accepts the bid, rejects every other open bid on the load,
        and moves the load to ``awarded`` at the bid's agreed amount.

        Raises:
            BidNotFoundError: If the bid does not exist.
            LoadClosedError: If the load is closed or cancelled.
            AlreadyAwardedError: If the load already has an accepted bid.
            InvalidBidStateError: If the bid is no longer open.
            CarrierNotEligibleError: If a carrier accepts another carrier's bid.
        """
        with self._db.transaction():
            bid = self._bids.require(bid_id)
            load = self._require_open_load(bid.load_id)
            if load.awarded_bid_id is not None:
                raise AlreadyAwardedError(load.id, load.awarded_bid_id, bid_id)
            if bid.status not in OPEN_BID_STATUSES:
                raise InvalidBidStateError(bid_id, bid.status, BidStatus.ACCEPTED)
            if actor_role == ActorRole.CARRIER:
                if actor_id != bid.carrier_id:
                    raise CarrierNotEligibleError(
                        f"Carrier '{actor_id}' cannot accept bid '{bid_id}'",
                        bid_id=bid_id,
                        carrier_id=actor_id,
                    )
                # A carrier can only accept a counter made on its bid.
                if bid.status != BidStatus.COUNTERED:
                    raise InvalidBidStateError(bid_id, bid.status, BidStatus.ACCEPTED)
            return self._award(load, bid, actor_id, actor_role)

    def accept_posted_price(
        self,
        load_id: str,
        carrier_id: str,
        carrier_type: CarrierType = CarrierType.SOLO,
    ) -> Bid:
        """Let a carrier take the locked admin price without negotiating.

        Creates an ``admin_posted_acceptance`` bid at the final price and
        accepts it in the same transaction.

        Raises:
            LoadClosedError: If the load is closed or cancelled.
            AlreadyAwardedError: If the load already has an accepted bid.
            IllegalTransitionError: If the load is not accepting bids.
            CarrierNotEligibleError: If the post mode excludes this carrier.
            GuardViolationError: If the load has no locked final price.
        """
        with self._db.transaction():
            load = self._require_open_load(load_id)
            if load.awarded_bid_id is not None:
                raise AlreadyAwardedError(load_id, load.awarded_bid_id, f"posted:{carrier_id}")
            if load.status not in BIDDABLE_STATUSES:
                raise IllegalTransitionError(load_id, load.status, LoadStatus.AWARDED)
            self._check_eligible(load, carrier_id)
            if not load.price_locked or load.admin_final_price is None:
                raise GuardViolationError(load_id, LoadStatus.AWARDED, "price_locked")

            bid = self._bids.insert(
                Bid(
                    id=str(uuid.uuid4()),
                    load_id=load_id,
                    carrier_id=carrier_id,
                    carrier_type=carrier_type,
                    amount=load.admin_final_price,
                    bid_type=BidType.ADMIN_POSTED_ACCEPTANCE,
                )
            )
            self._record(
                load_id,
                sender_id=carrier_id,
                sender_role=ActorRole.CARRIER,
                message_type=MessageType.CARRIER_BID,
                bid_id=bid.id,
                carrier_id=carrier_id,
                amount=bid.amount,
                body="accepted posted price",
            )
            if load.status == LoadStatus.POSTED_TO_CARRIERS:
                load = self._machine.transition(
                    load_id,
                    LoadStatus.OPEN_FOR_BID,
                    carrier_id,
                    expected_version=load.version,
                    reason="posted price accepted",
                    metadata={"bid_id": bid.id},
                )
            self._db.after_commit(lambda: BIDS_PLACED.labels(carrier_type=carrier_type.value).inc())
            return self._award(load, bid, carrier_id, ActorRole.CARRIER)

    def _award(self, load: Load, bid: Bid, actor_id: str, actor_role: ActorRole) -> Bid:
        """Accept *bid*, reject its open siblings, and move *load* to awarded.

        Must run inside the caller's transaction.
        """
        accepted = self._move_bid(bid, BidStatus.ACCEPTED)

        for sibling in self._bids.list_for_load(load.id, OPEN_BID_STATUSES):
            self._move_bid(sibling, BidStatus.REJECTED)
            self._record(
                load.id,
                sender_id=actor_id,
                sender_role=ActorRole.SYSTEM,
                message_type=MessageType.REJECT,
                bid_id=sibling.id,
                carrier_id=sibling.carrier_id,
                amount=sibling.agreed_amount,
                body="another bid was accepted",
            )

        self._record(
            load.id,
            sender_id=actor_id,
            sender_role=actor_role,
            message_type=MessageType.ACCEPT,
            bid_id=accepted.id,
            carrier_id=accepted.carrier_id,
            amount=accepted.agreed_amount,
            previous_amount=accepted.previous_amount,
        )
        self._machine.transition(
            load.id,
            LoadStatus.AWARDED,
            actor_id,
            expected_version=load.version,
            reason="bid accepted",
            updates={
                "awarded_bid_id": accepted.id,
                "awarded_amount": accepted.agreed_amount,
                "assigned_carrier_id": accepted.carrier_id,
            },
            metadata={"bid_id": accepted.id, "amount": str(accepted.agreed_amount)},
        )

        def _awarded() -> None:
            LOADS_AWARDED.inc()
            logger.info(
                "bid_accepted",
                load_id=load.id,
                bid_id=accepted.id,
                carrier_id=accepted.carrier_id,
                amount=str(accepted.agreed_amount),
            )

        self._db.after_commit(_awarded)
        return accepted

    def reject_bid(
        self,
        bid_id: str,
        actor_id: str,
        reason: str | None = None,
        actor_role: ActorRole = ActorRole.ADMIN,
    ) -> Bid:
        """Reject an open bid.  The load's status is left unchanged.

        Raises:
            BidNotFoundError: If the bid does not exist.
            LoadClosedError: If the load is closed or cancelled.
            InvalidBidStateError: If the bid is no longer open.
        """
        with self._db.transaction():
            bid = self._bids.require(bid_id)
            load = self._require_open_load(bid.load_id)
            if bid.status not in OPEN_BID_STATUSES:
                raise InvalidBidStateError(bid_id, bid.status, BidStatus.REJECTED)
            bid = self._move_bid(bid, BidStatus.REJECTED)
            self._record(
                load.id,
                sender_id=actor_id,
                sender_role=actor_role,
                message_type=MessageType.REJECT,
                bid_id=bid_id,
                carrier_id=bid.carrier_id,
                amount=bid.agreed_amount,
                body=reason,
            )
            self._db.after_commit(
                lambda: logger.info("bid_rejected", load_id=load.id, bid_id=bid_id, actor_id=actor_id)
            )
        return bid

    def expire_open_bids(self, load_id: str, actor_id: str, reason: str | None = None) -> list[Bid]:
        """Expire every open bid on a load and write a ``reject`` message for each.

        The load's status is left to the caller, whose transaction this joins.
        """
        with self._db.transaction():
            expired = []
            for bid in self._bids.list_for_load(load_id, OPEN_BID_STATUSES):
                expired.append(self._move_bid(bid, BidStatus.EXPIRED))
                self._record(
                    load_id,
                    sender_id=actor_id,
                    sender_role=ActorRole.SYSTEM,
                    message_type=MessageType.REJECT,
                    bid_id=bid.id,
                    carrier_id=bid.carrier_id,
                    amount=bid.agreed_amount,
                    body=reason or "bid expired",
                )
        return expired

    # ------------------------------------------------------------------
    # Admin controls
    # ------------------------------------------------------------------

    def resolicit(self, load_id: str, actor_id: str, expected_version: int | None = None) -> Load:
        """Return a bidding load with no open bids to ``posted_to_carriers``.

        Raises:
            IllegalTransitionError: If the load is not in a bidding state.
            GuardViolationError: If the load still has open bids.
        """
        with self._db.transaction():
            load = self._require_open_load(load_id)
            if load.status not in _RESOLICITABLE_STATUSES:
                raise IllegalTransitionError(load_id, load.status, LoadStatus.POSTED_TO_CARRIERS)
            updated = self._machine.transition(
                load_id,
                LoadStatus.POSTED_TO_CARRIERS,
                actor_id,
                expected_version=expected_version if expected_version is not None else load.version,
                reason="re-solicited carriers",
            )
            self._audit.log_load_resolicited(actor_id, load_id, load.status.value)
        return updated

    def reopen_bidding(
        self,
        load_id: str,
        actor_id: str,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> Load:
        """Send an awarded (not yet invoiced) or countered load back to open bidding.

        From ``awarded`` the accepted bid is expired and an ``award_revoked``
        message clears the thread's acceptance.

        Raises:
            IllegalTransitionError: If the load is in any other state.
            GuardViolationError: If the awarded load already has an invoice.
        """
        with self._db.transaction():
            load = self._require_open_load(load_id)
            if load.status not in _REOPENABLE_STATUSES:
                raise IllegalTransitionError(load_id, load.status, LoadStatus.OPEN_FOR_BID)

            updates: dict[str, object] = {}
            revoked_bid_id = load.awarded_bid_id if load.status == LoadStatus.AWARDED else None
            if revoked_bid_id is not None:
                updates = {"awarded_bid_id": None, "awarded_amount": None}
                # An assign-mode load stays reserved for its carrier.
                if load.post_mode != PostMode.ASSIGN:
                    updates["assigned_carrier_id"] = None

            updated = self._machine.transition(
                load_id,
                LoadStatus.OPEN_FOR_BID,
                actor_id,
                expected_version=expected_version if expected_version is not None else load.version,
                reason=reason or "bidding reopened",
                updates=updates,
                metadata={"revoked_bid_id": revoked_bid_id} if revoked_bid_id else None,
            )

            if revoked_bid_id is not None:
                # Revoking an award is the one path out of the accepted state,
                # so it bypasses BID_TRANSITIONS.
                revoked = self._bids.update(revoked_bid_id, BidStatus.ACCEPTED, {"status": BidStatus.EXPIRED})
                self._record(
                    load_id,
                    sender_id=actor_id,
                    sender_role=ActorRole.ADMIN,
                    message_type=MessageType.AWARD_REVOKED,
                    bid_id=revoked.id,
                    carrier_id=revoked.carrier_id,
                    amount=revoked.agreed_amount,
                    body=reason,
                )

            self._audit.log_bidding_reopened(actor_id, load_id, load.status.value, revoked_bid_id, reason)
            self._db.after_commit(
                lambda: logger.info(
                    "bidding_reopened",
                    load_id=load_id,
                    from_state=load.status.value,
                    revoked_bid_id=revoked_bid_id,
                )
            )
        return updated

    def post_simulated_offer(
        self,
        load_id: str,
        actor_id: str,
        amount: Decimal | int | str,
        counter: bool = False,
    ) -> NegotiationMessage:
        """Post an admin market-probe offer into the negotiation thread.

        No bid row is created; the message only moves the thread counters.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValueError("simulated amount must be positive")
        message_type = MessageType.SIMULATED_COUNTER if counter else MessageType.SIMULATED_BID

        with self._db.transaction():
            load = self._require_open_load(load_id)
            if load.status not in BIDDABLE_STATUSES:
                raise IllegalTransitionError(load_id, load.status, LoadStatus.OPEN_FOR_BID)
            message = self._record(
                load_id,
                sender_id=actor_id,
                sender_role=ActorRole.ADMIN,
                message_type=message_type,
                amount=amount,
            )
            self._audit.log_simulated_offer(actor_id, load_id, amount, message_type.value)
        return message

    def add_note(
        self,
        load_id: str,
        actor_id: str,
        body: str,
        sender_role: ActorRole = ActorRole.SYSTEM,
    ) -> NegotiationMessage:
        """Append a free-text note to the load's negotiation log."""
        with self._db.transaction():
            self._require_open_load(load_id)
            return self._record(
                load_id,
                sender_id=actor_id,
                sender_role=sender_role,
                message_type=MessageType.SYSTEM_NOTE,
                body=body,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_bid(self, bid_id: str) -> Bid:
        """Return a bid or raise ``BidNotFoundError``."""
        return self._bids.require(bid_id)

    def list_bids(self, load_id: str, statuses: frozenset[BidStatus] | None = None) -> list[Bid]:
        """Return a load's bids in the order they were placed."""
        self._loads.require(load_id)
        return self._bids.list_for_load(load_id, statuses)

    def list_messages(self, load_id: str, after_sequence: int = 0) -> list[NegotiationMessage]:
        """Return a load's negotiation messages in sequence order."""
        self._loads.require(load_id)
        return self._log.list_messages(load_id, after_sequence)

    def get_thread(self, load_id: str) -> NegotiationThread:
        """Return the cached negotiation summary for a load."""
        self._loads.require(load_id)
        return self._log.get_thread(load_id) or empty_thread(load_id)

    def rebuild_thread(self, load_id: str) -> NegotiationThread:
        """Replay the message log and overwrite the cached summary."""
        with self._db.transaction():
            self._loads.require(load_id)
            thread = derive_thread(load_id, self._log.list_messages(load_id))
            self._log.save_thread(thread)
        logger.info("thread_rebuilt", load_id=load_id, last_sequence=thread.last_sequence)
        return thread

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_open_load(self, load_id: str) -> Load:
        load = self._loads.require(load_id)
        if load.status in TERMINAL_STATES:
            raise LoadClosedError(load_id, load.status)
        return load

    @staticmethod
    def _check_eligible(load: Load, carrier_id: str) -> None:
        if load.post_mode == PostMode.INVITE and carrier_id not in load.invited_carrier_ids:
            raise CarrierNotEligibleError(
                f"Carrier '{carrier_id}' was not invited to load '{load.id}'",
                load_id=load.id,
                carrier_id=carrier_id,
                post_mode=load.post_mode,
            )
        if load.post_mode == PostMode.ASSIGN and carrier_id != load.assigned_carrier_id:
            raise CarrierNotEligibleError(
                f"Load '{load.id}' is assigned to another carrier",
                load_id=load.id,
                carrier_id=carrier_id,
                post_mode=load.post_mode,
            )

    def _check_no_open_bid(self, load_id: str, carrier_id: str) -> None:
        for bid in self._bids.list_for_load(load_id, OPEN_BID_STATUSES):
            if bid.carrier_id == carrier_id:
                raise DuplicateBidError(
                    f"Carrier '{carrier_id}' already has an open bid on load '{load_id}'",
                    load_id=load_id,
                    carrier_id=carrier_id,
                    bid_id=bid.id,
                )

    def _move_bid(self, bid: Bid, target: BidStatus, **fields: object) -> Bid:
        """Move *bid* to *target* if ``BID_TRANSITIONS`` allows it."""
        if not can_transition_bid(bid.status, target):
            raise InvalidBidStateError(bid.id, bid.status, target)
        return self._bids.update(bid.id, bid.status, {"status": target, **fields})

    def _record(self, load_id: str, **fields: object) -> NegotiationMessage:
        """Append a message and fold it into the cached thread summary."""
        message = self._log.append(load_id, **fields)  # type: ignore[arg-type]
        thread = self._log.get_thread(load_id) or empty_thread(load_id)
        self._log.save_thread(apply_message(thread, message))
        return message

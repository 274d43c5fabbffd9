"""Tests for LoadStateMachine: legality, guards, versioning, and the change log."""

from __future__ import annotations

import threading
import uuid
from decimal import Decimal
from typing import Any

import pytest

from freight.domain.errors import (
    ConcurrencyConflictError,
    GuardViolationError,
    IllegalTransitionError,
    LoadClosedError,
    LoadNotFoundError,
)
from freight.domain.models import Bid, Load
from freight.domain.types import LoadStatus
from freight.state_machine.machine import LoadStateMachine, replay_status
from freight.state_machine.transitions import LOAD_TRANSITIONS, TERMINAL_STATES
from freight.store.loads import LoadRepository

# ---------------------------------------------------------------------------
# Transition grid
# ---------------------------------------------------------------------------

ILLEGAL_PAIRS: list[tuple[LoadStatus, LoadStatus]] = [
    (current, target)
    for current in LoadStatus
    if current not in TERMINAL_STATES
    for target in LoadStatus
    if target not in LOAD_TRANSITIONS[current]
]

# Targets whose guard needs more than a bare load row to pass.
_GUARDED_TARGETS = {
    LoadStatus.PRICED,
    LoadStatus.AWARDED,
    LoadStatus.INVOICE_CREATED,
    LoadStatus.INVOICE_SENT,
    LoadStatus.INVOICE_ACKNOWLEDGED,
    LoadStatus.INVOICE_PAID,
}

UNGUARDED_LEGAL_PAIRS: list[tuple[LoadStatus, LoadStatus]] = [
    (current, target)
    for current, targets in LOAD_TRANSITIONS.items()
    for target in sorted(targets)
    if target not in _GUARDED_TARGETS
]


def _insert(loads: LoadRepository, status: LoadStatus, **fields: Any) -> Load:
    return loads.insert(
        Load(
            id=str(uuid.uuid4()),
            shipper_id="shipper-1",
            pickup_city="Pune",
            dropoff_city="Chennai",
            status=status,
            **fields,
        )
    )


@pytest.fixture
def loads(services: dict[str, Any]) -> LoadRepository:
    return services["loads"]


class TestIllegalTransitions:
    """Every pair outside the table is rejected and leaves the load untouched."""

    @pytest.mark.parametrize(
        ("current", "target"),
        ILLEGAL_PAIRS,
        ids=[f"{c.value}->{t.value}" for c, t in ILLEGAL_PAIRS],
    )
    def test_illegal_pair_raises(
        self,
        machine: LoadStateMachine,
        loads: LoadRepository,
        current: LoadStatus,
        target: LoadStatus,
    ) -> None:
        load = _insert(loads, current)

        with pytest.raises(IllegalTransitionError) as exc_info:
            machine.transition(load.id, target, "admin-1", expected_version=load.version)

        assert exc_info.value.current_state == current
        assert exc_info.value.target_state == target
        after = loads.require(load.id)
        assert after.status == current
        assert after.version == load.version
        assert loads.list_state_changes(load.id) == []

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES), ids=lambda s: s.value)
    @pytest.mark.parametrize("target", list(LoadStatus), ids=lambda s: s.value)
    def test_terminal_load_is_closed(
        self,
        machine: LoadStateMachine,
        loads: LoadRepository,
        terminal: LoadStatus,
        target: LoadStatus,
    ) -> None:
        load = _insert(loads, terminal)

        with pytest.raises(LoadClosedError):
            machine.transition(load.id, target, "admin-1", expected_version=load.version)

    def test_unknown_load(self, machine: LoadStateMachine) -> None:
        with pytest.raises(LoadNotFoundError):
            machine.transition("missing", LoadStatus.PENDING, "admin-1", expected_version=1)


class TestLegalTransitions:
    @pytest.mark.parametrize(
        ("current", "target"),
        UNGUARDED_LEGAL_PAIRS,
        ids=[f"{c.value}->{t.value}" for c, t in UNGUARDED_LEGAL_PAIRS],
    )
    def test_legal_pair_succeeds(
        self,
        machine: LoadStateMachine,
        loads: LoadRepository,
        current: LoadStatus,
        target: LoadStatus,
    ) -> None:
        load = _insert(loads, current)

        updated = machine.transition(load.id, target, "admin-1", expected_version=load.version, reason="test")

        assert updated.status == target
        assert updated.previous_status == current
        assert updated.version == load.version + 1
        (change,) = loads.list_state_changes(load.id)
        assert change.from_state == current
        assert change.to_state == target
        assert change.actor_id == "admin-1"
        assert change.reason == "test"

    def test_updates_are_written_with_the_transition(
        self, machine: LoadStateMachine, loads: LoadRepository
    ) -> None:
        load = _insert(loads, LoadStatus.PENDING)

        updated = machine.transition(
            load.id,
            LoadStatus.PRICED,
            "admin-1",
            expected_version=1,
            updates={"admin_final_price": Decimal("50000"), "price_locked": True, "price_locked_by": "admin-1"},
        )

        assert updated.price_locked is True
        assert updated.admin_final_price == Decimal("50000.00")

    def test_metadata_is_recorded(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.DRAFT)

        machine.transition(load.id, LoadStatus.PENDING, "shipper-1", expected_version=1, metadata={"source": "web"})

        (change,) = loads.list_state_changes(load.id)
        assert change.metadata == {"source": "web"}

    def test_allowed_targets(self, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.DRAFT)
        assert LoadStateMachine.allowed_targets(load) == [LoadStatus.CANCELLED, LoadStatus.PENDING]


class TestGuards:
    def test_priced_requires_locked_price(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.PENDING)

        with pytest.raises(GuardViolationError) as exc_info:
            machine.transition(load.id, LoadStatus.PRICED, "admin-1", expected_version=1)

        assert exc_info.value.guard == "price_locked"
        assert loads.require(load.id).status == LoadStatus.PENDING

    def test_awarded_requires_accepted_bid(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.OPEN_FOR_BID)

        with pytest.raises(GuardViolationError) as exc_info:
            machine.transition(load.id, LoadStatus.AWARDED, "admin-1", expected_version=1)

        assert exc_info.value.guard == "accepted_bid"

    def test_awarded_rejects_a_pending_bid(
        self, machine: LoadStateMachine, loads: LoadRepository, services: dict[str, Any]
    ) -> None:
        load = _insert(loads, LoadStatus.OPEN_FOR_BID)
        bid = services["bids"].insert(
            Bid(id="bid-1", load_id=load.id, carrier_id="carrier-1", amount=Decimal("48000"))
        )

        with pytest.raises(GuardViolationError) as exc_info:
            machine.transition(
                load.id, LoadStatus.AWARDED, "admin-1", expected_version=1, updates={"awarded_bid_id": bid.id}
            )

        assert exc_info.value.guard == "accepted_bid"

    def test_invoice_created_requires_locked_price(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.AWARDED)

        with pytest.raises(GuardViolationError) as exc_info:
            machine.transition(load.id, LoadStatus.INVOICE_CREATED, "admin-1", expected_version=1)

        assert exc_info.value.guard == "price_locked"

    def test_invoice_created_requires_invoice(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.AWARDED, admin_final_price=Decimal("50000"), price_locked=True)

        with pytest.raises(GuardViolationError) as exc_info:
            machine.transition(load.id, LoadStatus.INVOICE_CREATED, "admin-1", expected_version=1)

        assert exc_info.value.guard == "active_invoice"

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (LoadStatus.INVOICE_CREATED, LoadStatus.INVOICE_SENT),
            (LoadStatus.INVOICE_SENT, LoadStatus.INVOICE_ACKNOWLEDGED),
            (LoadStatus.INVOICE_ACKNOWLEDGED, LoadStatus.INVOICE_PAID),
        ],
        ids=lambda s: s.value,
    )
    def test_invoice_states_require_an_invoice(
        self,
        machine: LoadStateMachine,
        loads: LoadRepository,
        current: LoadStatus,
        target: LoadStatus,
    ) -> None:
        load = _insert(loads, current)

        with pytest.raises(GuardViolationError) as exc_info:
            machine.transition(load.id, target, "admin-1", expected_version=1)

        assert exc_info.value.guard == "active_invoice"

    def test_resolicit_requires_no_open_bids(
        self, machine: LoadStateMachine, loads: LoadRepository, services: dict[str, Any]
    ) -> None:
        load = _insert(loads, LoadStatus.COUNTER_RECEIVED)
        services["bids"].insert(Bid(id="bid-1", load_id=load.id, carrier_id="carrier-1", amount=Decimal("48000")))

        with pytest.raises(GuardViolationError) as exc_info:
            machine.transition(load.id, LoadStatus.POSTED_TO_CARRIERS, "admin-1", expected_version=1)

        assert exc_info.value.guard == "no_open_bids"

    def test_reopen_requires_award_cleared(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.AWARDED, awarded_bid_id="bid-1")

        with pytest.raises(GuardViolationError) as exc_info:
            machine.transition(load.id, LoadStatus.OPEN_FOR_BID, "admin-1", expected_version=1)

        assert exc_info.value.guard == "award_revoked"

    def test_reopen_is_blocked_by_an_invoice(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.AWARDED, invoice_id="inv-1")

        with pytest.raises(GuardViolationError) as exc_info:
            machine.transition(load.id, LoadStatus.OPEN_FOR_BID, "admin-1", expected_version=1)

        assert exc_info.value.guard == "no_invoice"


class TestVersioning:
    def test_stale_version_is_rejected(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.DRAFT)
        machine.transition(load.id, LoadStatus.PENDING, "shipper-1", expected_version=1)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            machine.transition(load.id, LoadStatus.CANCELLED, "admin-1", expected_version=1)

        assert exc_info.value.expected_version == 1
        assert exc_info.value.current_version == 2
        assert loads.require(load.id).status == LoadStatus.PENDING

    def test_version_check_precedes_legality(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.DRAFT)

        with pytest.raises(ConcurrencyConflictError):
            machine.transition(load.id, LoadStatus.CLOSED, "admin-1", expected_version=7)

    def test_exactly_one_of_two_racing_transitions_wins(
        self, machine: LoadStateMachine, loads: LoadRepository
    ) -> None:
        load = _insert(loads, LoadStatus.DRAFT)
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        lock = threading.Lock()

        def attempt(actor_id: str) -> None:
            barrier.wait()
            try:
                machine.transition(load.id, LoadStatus.PENDING, actor_id, expected_version=1)
                result = "ok"
            except ConcurrencyConflictError:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [
            threading.Thread(target=attempt, args=("shipper-1",)),
            threading.Thread(target=attempt, args=("admin-1",)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "ok"]
        after = loads.require(load.id)
        assert after.version == 2
        assert len(loads.list_state_changes(load.id)) == 1


class TestReplay:
    def test_replay_reproduces_status(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.DRAFT)
        load = machine.transition(load.id, LoadStatus.PENDING, "s", expected_version=load.version)
        load = machine.transition(load.id, LoadStatus.CANCELLED, "a", expected_version=load.version)

        changes = loads.list_state_changes(load.id)

        assert len(changes) == 2
        assert replay_status(changes) == load.status

    def test_replay_of_nothing_is_initial(self) -> None:
        assert replay_status([]) == LoadStatus.DRAFT

    def test_broken_chain_raises(self, machine: LoadStateMachine, loads: LoadRepository) -> None:
        load = _insert(loads, LoadStatus.DRAFT)
        machine.transition(load.id, LoadStatus.PENDING, "s", expected_version=1)
        changes = loads.list_state_changes(load.id)

        with pytest.raises(ValueError, match="Change log broken"):
            replay_status(changes, initial=LoadStatus.PRICED)

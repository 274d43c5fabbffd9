"""Load state machine with transition validation, guards, and change log."""

from freight.state_machine.machine import LoadStateMachine, replay_status
from freight.state_machine.transitions import (
    BID_TRANSITIONS,
    INVOICE_TRANSITIONS,
    LOAD_TRANSITIONS,
    TERMINAL_STATES,
    can_transition_bid,
    can_transition_invoice,
    can_transition_load,
)

__all__ = [
    "BID_TRANSITIONS",
    "INVOICE_TRANSITIONS",
    "LOAD_TRANSITIONS",
    "TERMINAL_STATES",
    "LoadStateMachine",
    "can_transition_bid",
    "can_transition_invoice",
    "can_transition_load",
    "replay_status",
]

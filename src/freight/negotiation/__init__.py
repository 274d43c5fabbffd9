"""Bid negotiation: carrier bids, counter-offers, awards, and the thread summary."""

from freight.negotiation.engine import NegotiationEngine
from freight.negotiation.thread import apply_message, derive_thread, empty_thread

__all__ = [
    "NegotiationEngine",
    "apply_message",
    "derive_thread",
    "empty_thread",
]

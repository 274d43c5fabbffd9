"""Derive the per-load negotiation summary from the message log.

The cached ``negotiation_threads`` row is a materialized view: the engine
folds each new message into it with :func:`apply_message`, and
:func:`derive_thread` rebuilds it from scratch by folding the full log with
the same function, so both paths always agree.
"""

from __future__ import annotations

from collections.abc import Iterable

from freight.domain.models import NegotiationMessage, NegotiationThread
from freight.domain.types import MessageType


def empty_thread(load_id: str) -> NegotiationThread:
    """Return the summary of a load with no negotiation messages."""
    return NegotiationThread(load_id=load_id)


def apply_message(thread: NegotiationThread, message: NegotiationMessage) -> NegotiationThread:
    """Fold one message into *thread* and return the new summary.

    Args:
        thread: The summary covering every message before *message*.
        message: The next message in sequence order.

    Returns:
        A new ``NegotiationThread`` snapshot.

    Raises:
        ValueError: If *message* belongs to another load or is out of sequence.
    """
    if message.load_id != thread.load_id:
        raise ValueError(f"Message {message.id} belongs to load {message.load_id}, not {thread.load_id}")
    if message.sequence != thread.last_sequence + 1:
        raise ValueError(
            f"Message sequence {message.sequence} does not follow {thread.last_sequence} "
            f"for load {thread.load_id}"
        )

    changes: dict[str, object] = {
        "last_sequence": message.sequence,
        "updated_at": message.created_at,
    }
    countered = list(thread.countered_bid_ids)

    match message.message_type:
        case MessageType.CARRIER_BID:
            changes["total_bids"] = thread.total_bids + 1
            changes["real_bids"] = thread.real_bids + 1
        case MessageType.SIMULATED_BID:
            changes["total_bids"] = thread.total_bids + 1
            changes["simulated_bids"] = thread.simulated_bids + 1
        case MessageType.ADMIN_COUNTER | MessageType.CARRIER_COUNTER:
            if message.bid_id is not None and message.bid_id not in countered:
                countered.append(message.bid_id)
        case MessageType.ACCEPT:
            changes["accepted_bid_id"] = message.bid_id
            changes["accepted_carrier_id"] = message.carrier_id
            changes["accepted_amount"] = message.amount
            if message.bid_id in countered:
                countered.remove(message.bid_id)
        case MessageType.REJECT:
            if message.bid_id in countered:
                countered.remove(message.bid_id)
        case MessageType.AWARD_REVOKED:
            changes["accepted_bid_id"] = None
            changes["accepted_carrier_id"] = None
            changes["accepted_amount"] = None
        case MessageType.SYSTEM_NOTE | MessageType.SIMULATED_COUNTER:
            pass

    changes["countered_bid_ids"] = countered
    changes["pending_counter_count"] = len(countered)
    return thread.model_copy(update=changes)


def derive_thread(load_id: str, messages: Iterable[NegotiationMessage]) -> NegotiationThread:
    """Rebuild a load's summary by replaying *messages* in sequence order."""
    thread = empty_thread(load_id)
    for message in messages:
        thread = apply_message(thread, message)
    return thread

"""Negotiation endpoints: bids, counters, awards, and the message log."""

from __future__ import annotations

from fastapi import APIRouter

from freight.api.deps import NegotiationDep
from freight.api.schemas import (
    AcceptBidRequest,
    AcceptPostedPriceRequest,
    CounterOfferRequest,
    LoadActionRequest,
    NoteRequest,
    PlaceBidRequest,
    RejectBidRequest,
    SimulatedOfferRequest,
)
from freight.domain.models import Bid, Load, NegotiationMessage, NegotiationThread
from freight.domain.types import ActorRole

router = APIRouter(tags=["negotiation"])


# -- Per-load ------------------------------------------------------------------


@router.get("/loads/{load_id}/bids")
def list_bids(load_id: str, engine: NegotiationDep) -> list[Bid]:
    return engine.list_bids(load_id)


@router.post("/loads/{load_id}/bids", status_code=201)
def place_bid(load_id: str, body: PlaceBidRequest, engine: NegotiationDep) -> Bid:
    """Place a carrier bid on a posted load."""
    return engine.place_bid(load_id, body.carrier_id, body.amount, notes=body.notes, carrier_type=body.carrier_type)


@router.post("/loads/{load_id}/accept-posted-price", status_code=201)
def accept_posted_price(load_id: str, body: AcceptPostedPriceRequest, engine: NegotiationDep) -> Bid:
    return engine.accept_posted_price(load_id, body.carrier_id, carrier_type=body.carrier_type)


@router.get("/loads/{load_id}/messages")
def list_messages(load_id: str, engine: NegotiationDep, after_sequence: int = 0) -> list[NegotiationMessage]:
    return engine.list_messages(load_id, after_sequence)


@router.get("/loads/{load_id}/thread")
def get_thread(load_id: str, engine: NegotiationDep) -> NegotiationThread:
    return engine.get_thread(load_id)


@router.post("/loads/{load_id}/thread/rebuild")
def rebuild_thread(load_id: str, engine: NegotiationDep) -> NegotiationThread:
    return engine.rebuild_thread(load_id)


@router.post("/loads/{load_id}/resolicit")
def resolicit(load_id: str, body: LoadActionRequest, engine: NegotiationDep) -> Load:
    return engine.resolicit(load_id, body.actor_id, expected_version=body.expected_version)


@router.post("/loads/{load_id}/reopen-bidding")
def reopen_bidding(load_id: str, body: LoadActionRequest, engine: NegotiationDep) -> Load:
    return engine.reopen_bidding(load_id, body.actor_id, body.reason, expected_version=body.expected_version)


@router.post("/loads/{load_id}/simulated-offers", status_code=201)
def post_simulated_offer(load_id: str, body: SimulatedOfferRequest, engine: NegotiationDep) -> NegotiationMessage:
    return engine.post_simulated_offer(load_id, body.actor_id, body.amount, counter=body.counter)


@router.post("/loads/{load_id}/notes", status_code=201)
def add_note(load_id: str, body: NoteRequest, engine: NegotiationDep) -> NegotiationMessage:
    return engine.add_note(load_id, body.actor_id, body.body, sender_role=ActorRole.ADMIN)


# -- Per-bid -------------------------------------------------------------------


@router.get("/bids/{bid_id}")
def get_bid(bid_id: str, engine: NegotiationDep) -> Bid:
    return engine.get_bid(bid_id)


@router.post("/bids/{bid_id}/counter")
def counter_offer(bid_id: str, body: CounterOfferRequest, engine: NegotiationDep) -> Bid:
    return engine.counter_offer(bid_id, body.actor_id, body.actor_role, body.amount, body.message)


@router.post("/bids/{bid_id}/accept")
def accept_bid(bid_id: str, body: AcceptBidRequest, engine: NegotiationDep) -> Bid:
    """Accept a bid and award its load."""
    return engine.accept_bid(bid_id, body.actor_id, body.actor_role)


@router.post("/bids/{bid_id}/reject")
def reject_bid(bid_id: str, body: RejectBidRequest, engine: NegotiationDep) -> Bid:
    return engine.reject_bid(bid_id, body.actor_id, body.reason, actor_role=body.actor_role)

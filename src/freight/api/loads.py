"""Load lifecycle endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from freight.api.deps import LoadServiceDep
from freight.api.schemas import (
    LoadActionRequest,
    LockPriceRequest,
    PostToCarriersRequest,
    PriceLoadRequest,
    SubmitForReviewRequest,
    SubmitLoadRequest,
    TransitionRequest,
    UnlockPriceRequest,
)
from freight.domain.models import Load, LoadDraft, LoadStateChange
from freight.domain.types import LoadStatus

router = APIRouter(prefix="/loads", tags=["loads"])


@router.post("", status_code=201)
def submit_load(body: SubmitLoadRequest, service: LoadServiceDep) -> Load:
    """Create a draft load for a verified shipper."""
    draft = LoadDraft(**body.model_dump(exclude={"shipper_id"}))
    return service.submit_load(body.shipper_id, draft)


@router.get("")
def list_loads(
    service: LoadServiceDep,
    status: LoadStatus | None = None,
    shipper_id: str | None = None,
    limit: int = 100,
) -> list[Load]:
    return service.list_loads(status=status, shipper_id=shipper_id, limit=limit)


@router.get("/{load_id}")
def get_load(load_id: str, service: LoadServiceDep) -> Load:
    return service.get_load(load_id)


@router.get("/{load_id}/state-changes")
def list_state_changes(load_id: str, service: LoadServiceDep) -> list[LoadStateChange]:
    return service.list_state_changes(load_id)


@router.post("/{load_id}/submit")
def submit_for_review(load_id: str, body: SubmitForReviewRequest, service: LoadServiceDep) -> Load:
    return service.submit_for_review(load_id, body.shipper_id, body.expected_version)


@router.post("/{load_id}/price")
def price_load(load_id: str, body: PriceLoadRequest, service: LoadServiceDep) -> Load:
    """Fix and lock the final price of a pending load."""
    return service.price_load(
        load_id,
        body.admin_id,
        body.admin_final_price,
        breakdown=body.breakdown,
        suggested_price=body.suggested_price,
        expected_version=body.expected_version,
    )


@router.post("/{load_id}/price/lock")
def lock_price(load_id: str, body: LockPriceRequest, service: LoadServiceDep) -> Load:
    return service.lock_price(
        load_id,
        body.admin_id,
        body.admin_final_price,
        reason=body.reason,
        breakdown=body.breakdown,
        expected_version=body.expected_version,
    )


@router.post("/{load_id}/price/unlock")
def unlock_price(load_id: str, body: UnlockPriceRequest, service: LoadServiceDep) -> Load:
    return service.unlock_price(load_id, body.admin_id, body.reason, expected_version=body.expected_version)


@router.post("/{load_id}/post")
def post_to_carriers(load_id: str, body: PostToCarriersRequest, service: LoadServiceDep) -> Load:
    return service.post_to_carriers(
        load_id,
        body.admin_id,
        body.mode,
        invited_carrier_ids=body.invited_carrier_ids,
        assigned_carrier_id=body.assigned_carrier_id,
        expected_version=body.expected_version,
    )


@router.post("/{load_id}/transit")
def start_transit(load_id: str, body: LoadActionRequest, service: LoadServiceDep) -> Load:
    return service.start_transit(load_id, body.actor_id, expected_version=body.expected_version)


@router.post("/{load_id}/deliver")
def mark_delivered(load_id: str, body: LoadActionRequest, service: LoadServiceDep) -> Load:
    return service.mark_delivered(load_id, body.actor_id, expected_version=body.expected_version)


@router.post("/{load_id}/close")
def close_load(load_id: str, body: LoadActionRequest, service: LoadServiceDep) -> Load:
    return service.close_load(load_id, body.actor_id, expected_version=body.expected_version)


@router.post("/{load_id}/cancel")
def cancel_load(load_id: str, body: LoadActionRequest, service: LoadServiceDep) -> Load:
    """Cancel a load, expiring its open bids and any unpaid invoice."""
    return service.cancel_load(load_id, body.actor_id, body.reason, expected_version=body.expected_version)


@router.post("/{load_id}/transition")
def transition(load_id: str, body: TransitionRequest, service: LoadServiceDep) -> Load:
    """Apply a raw state machine transition."""
    return service.transition(
        load_id,
        body.target_state,
        body.actor_id,
        expected_version=body.expected_version,
        reason=body.reason,
    )

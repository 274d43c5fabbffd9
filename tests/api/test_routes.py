"""Tests for the HTTP API routes and domain error mapping.

Uses FastAPI TestClient over the fully wired services on an in-memory
database; no lifespan is entered so the shared database stays open.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient

from freight.app import create_app
from freight.config import Settings

SHIPPER = "shipper-1"
ADMIN = "admin-1"
CARRIER = "carrier-1"


@pytest.fixture
def client(services: dict[str, Any]) -> TestClient:
    return TestClient(create_app(services))


def _draft_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "shipper_id": SHIPPER,
        "pickup_city": "Mumbai",
        "dropoff_city": "Delhi",
        "cargo_description": "Steel coils",
        "weight_tons": "12",
    }
    body.update(overrides)
    return body


def _posted_load(client: TestClient) -> dict[str, Any]:
    load = client.post("/loads", json=_draft_body()).json()
    load = client.post(
        f"/loads/{load['id']}/submit", json={"shipper_id": SHIPPER, "expected_version": load["version"]}
    ).json()
    load = client.post(
        f"/loads/{load['id']}/price",
        json={"admin_id": ADMIN, "admin_final_price": "50000", "expected_version": load["version"]},
    ).json()
    return client.post(
        f"/loads/{load['id']}/post",
        json={"admin_id": ADMIN, "mode": "open", "expected_version": load["version"]},
    ).json()


def _awarded_load(client: TestClient) -> dict[str, Any]:
    load = _posted_load(client)
    bid = client.post(f"/loads/{load['id']}/bids", json={"carrier_id": CARRIER, "amount": "48000"}).json()
    client.post(
        f"/bids/{bid['id']}/counter", json={"actor_id": ADMIN, "actor_role": "admin", "amount": "49000"}
    )
    client.post(f"/bids/{bid['id']}/accept", json={"actor_id": CARRIER, "actor_role": "carrier"})
    return client.get(f"/loads/{load['id']}").json()


class TestLoadRoutes:
    """Load lifecycle over HTTP."""

    def test_submit_load_returns_draft(self, client: TestClient) -> None:
        response = client.post("/loads", json=_draft_body())

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "draft"
        assert body["version"] == 1
        assert body["weight_tons"] == "12"

    def test_price_and_post(self, client: TestClient) -> None:
        load = _posted_load(client)

        assert load["status"] == "posted_to_carriers"
        assert load["version"] == 4
        assert load["price_locked"] is True
        assert load["admin_final_price"] == "50000.00"

    def test_get_and_list(self, client: TestClient) -> None:
        created = client.post("/loads", json=_draft_body()).json()

        assert client.get(f"/loads/{created['id']}").json()["id"] == created["id"]
        listed = client.get("/loads", params={"status": "draft", "shipper_id": SHIPPER}).json()
        assert [item["id"] for item in listed] == [created["id"]]

    def test_state_changes(self, client: TestClient) -> None:
        load = _posted_load(client)

        changes = client.get(f"/loads/{load['id']}/state-changes").json()

        assert [c["to_state"] for c in changes] == ["pending", "priced", "posted_to_carriers"]

    def test_raw_transition(self, client: TestClient) -> None:
        load = client.post("/loads", json=_draft_body()).json()

        response = client.post(
            f"/loads/{load['id']}/transition",
            json={"actor_id": SHIPPER, "target_state": "pending", "expected_version": 1},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "pending"

    def test_cancel(self, client: TestClient) -> None:
        load = _posted_load(client)

        response = client.post(f"/loads/{load['id']}/cancel", json={"actor_id": ADMIN, "reason": "truck shortage"})

        assert response.json()["status"] == "cancelled"

    def test_unlock_requires_reason(self, client: TestClient) -> None:
        load = _posted_load(client)

        response = client.post(f"/loads/{load['id']}/price/unlock", json={"admin_id": ADMIN, "reason": ""})

        assert response.status_code == 422


class TestNegotiationRoutes:
    def test_bid_counter_accept(self, client: TestClient) -> None:
        load = _posted_load(client)

        bid = client.post(f"/loads/{load['id']}/bids", json={"carrier_id": CARRIER, "amount": "48000"})
        assert bid.status_code == 201
        bid_id = bid.json()["id"]

        countered = client.post(
            f"/bids/{bid_id}/counter", json={"actor_id": ADMIN, "actor_role": "admin", "amount": "49000"}
        ).json()
        assert countered["status"] == "countered"
        assert countered["counter_amount"] == "49000.00"

        accepted = client.post(f"/bids/{bid_id}/accept", json={"actor_id": CARRIER, "actor_role": "carrier"})
        assert accepted.json()["status"] == "accepted"

        awarded = client.get(f"/loads/{load['id']}").json()
        assert awarded["status"] == "awarded"
        assert awarded["awarded_bid_id"] == bid_id
        assert awarded["awarded_amount"] == "49000.00"

    def test_messages_and_thread(self, client: TestClient) -> None:
        load = _posted_load(client)
        client.post(f"/loads/{load['id']}/bids", json={"carrier_id": CARRIER, "amount": "48000"})
        client.post(f"/loads/{load['id']}/notes", json={"actor_id": ADMIN, "body": "Loading bay 4"})

        messages = client.get(f"/loads/{load['id']}/messages").json()
        later = client.get(f"/loads/{load['id']}/messages", params={"after_sequence": 1}).json()
        thread = client.get(f"/loads/{load['id']}/thread").json()

        assert [m["sequence"] for m in messages] == [1, 2]
        assert [m["sequence"] for m in later] == [2]
        assert thread["last_sequence"] == 2
        rebuilt = client.post(f"/loads/{load['id']}/thread/rebuild").json()
        assert rebuilt["last_sequence"] == thread["last_sequence"]
        assert rebuilt["total_bids"] == thread["total_bids"] == 1

    def test_list_bids(self, client: TestClient) -> None:
        load = _posted_load(client)
        client.post(f"/loads/{load['id']}/bids", json={"carrier_id": CARRIER, "amount": "48000"})
        client.post(f"/loads/{load['id']}/bids", json={"carrier_id": "carrier-2", "amount": "47500"})

        bids = client.get(f"/loads/{load['id']}/bids").json()

        assert {b["carrier_id"] for b in bids} == {CARRIER, "carrier-2"}

    def test_float_amount_is_rejected(self, client: TestClient) -> None:
        load = _posted_load(client)

        response = client.post(f"/loads/{load['id']}/bids", json={"carrier_id": CARRIER, "amount": 48000.5})

        assert response.status_code == 422


class TestInvoiceRoutes:
    def test_create_applies_configured_default_tax(self, services: dict[str, Any]) -> None:
        app = create_app(services)
        app.state.settings = Settings(_env_file=None, default_tax_percent=Decimal("5"))  # type: ignore[call-arg]
        client = TestClient(app)
        load = _awarded_load(client)

        response = client.post(
            f"/loads/{load['id']}/invoices",
            json={"admin_id": ADMIN, "idempotency_key": "inv-key-1", "breakdown": {"base_freight": "49000"}},
        )

        assert response.status_code == 201
        assert response.json()["tax_amount"] == "2450.00"
        assert response.json()["total_amount"] == "51450.00"

    def test_explicit_tax_is_kept(self, client: TestClient) -> None:
        load = _awarded_load(client)

        invoice = client.post(
            f"/loads/{load['id']}/invoices",
            json={
                "admin_id": ADMIN,
                "idempotency_key": "inv-key-1",
                "breakdown": {"base_freight": "49000", "tax_percent": "0"},
            },
        ).json()

        assert invoice["total_amount"] == "49000.00"

    def test_send_approve_pay(self, client: TestClient) -> None:
        load = _awarded_load(client)
        invoice = client.post(
            f"/loads/{load['id']}/invoices",
            json={
                "admin_id": ADMIN,
                "idempotency_key": "inv-key-1",
                "breakdown": {"base_freight": "49000", "tax_percent": "0"},
            },
        ).json()
        invoice_id = invoice["id"]

        sent = client.post(f"/invoices/{invoice_id}/send", json={"actor_id": ADMIN}).json()
        assert sent["status"] == "sent"

        approved = client.post(
            f"/invoices/{invoice_id}/respond", json={"shipper_id": SHIPPER, "response_type": "approve"}
        ).json()
        assert approved["status"] == "approved"

        paid = client.post(
            f"/invoices/{invoice_id}/payment",
            json={"actor_id": ADMIN, "amount": "49000", "reference": "UTR-0001"},
        ).json()
        assert paid["status"] == "paid"

        assert client.get(f"/loads/{load['id']}").json()["status"] == "invoice_paid"
        assert client.get(f"/loads/{load['id']}/invoice").json()["id"] == invoice_id
        history = client.get(f"/invoices/{invoice_id}/history").json()
        assert [h["to_status"] for h in history][-1] == "paid"

    def test_dispute_and_cancel(self, client: TestClient) -> None:
        load = _awarded_load(client)
        invoice_id = client.post(
            f"/loads/{load['id']}/invoices",
            json={
                "admin_id": ADMIN,
                "idempotency_key": "inv-key-1",
                "breakdown": {"base_freight": "49000", "tax_percent": "0"},
            },
        ).json()["id"]
        client.post(f"/invoices/{invoice_id}/send", json={"actor_id": ADMIN})

        early = client.post(f"/invoices/{invoice_id}/dispute", json={"actor_id": ADMIN})
        assert early.status_code == 409
        assert early.json()["error"] == "invoice_closed"

        client.post(f"/invoices/{invoice_id}/respond", json={"shipper_id": SHIPPER, "response_type": "approve"})
        disputed = client.post(f"/invoices/{invoice_id}/dispute", json={"actor_id": ADMIN, "reason": "wrong tolls"})
        assert disputed.json()["status"] == "disputed"

        cancelled = client.post(f"/invoices/{invoice_id}/cancel", json={"actor_id": ADMIN})
        assert cancelled.json()["status"] == "cancelled"
        assert client.get(f"/loads/{load['id']}/invoice").json() is None


class TestErrorMapping:
    """Domain errors become ``{"error", "context"}`` bodies with mapped status codes."""

    def test_unknown_load_is_404(self, client: TestClient) -> None:
        response = client.get("/loads/missing")

        assert response.status_code == 404
        assert response.json() == {"error": "load_not_found", "context": {"load_id": "missing"}}

    @pytest.mark.parametrize(
        ("path", "kind"),
        [("/bids/missing", "bid_not_found"), ("/invoices/missing", "invoice_not_found")],
        ids=["bid", "invoice"],
    )
    def test_other_not_found(self, client: TestClient, path: str, kind: str) -> None:
        response = client.get(path)

        assert response.status_code == 404
        assert response.json()["error"] == kind

    def test_unverified_shipper_is_403(self, client: TestClient) -> None:
        response = client.post("/loads", json=_draft_body(shipper_id="stranger"))

        assert response.status_code == 403
        assert response.json()["error"] == "not_verified"

    def test_stale_version_is_409(self, client: TestClient) -> None:
        load = client.post("/loads", json=_draft_body()).json()
        client.post(f"/loads/{load['id']}/submit", json={"shipper_id": SHIPPER, "expected_version": 1})

        response = client.post(f"/loads/{load['id']}/submit", json={"shipper_id": SHIPPER, "expected_version": 1})

        assert response.status_code == 409
        assert response.json()["error"] == "concurrency_conflict"
        assert response.json()["context"]["current_version"] == "2"

    def test_illegal_transition_is_409(self, client: TestClient) -> None:
        load = client.post("/loads", json=_draft_body()).json()

        response = client.post(
            f"/loads/{load['id']}/transition",
            json={"actor_id": ADMIN, "target_state": "awarded", "expected_version": 1},
        )

        assert response.status_code == 409
        assert response.json()["context"] == {
            "load_id": load["id"],
            "current_state": "draft",
            "target_state": "awarded",
        }

    def test_guard_violation_names_guard(self, client: TestClient) -> None:
        load = client.post("/loads", json=_draft_body()).json()
        load = client.post(
            f"/loads/{load['id']}/submit", json={"shipper_id": SHIPPER, "expected_version": 1}
        ).json()

        response = client.post(
            f"/loads/{load['id']}/transition",
            json={"actor_id": ADMIN, "target_state": "priced", "expected_version": 2},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "guard_violation"
        assert response.json()["context"]["guard"] == "price_locked"

    def test_missing_field_is_422(self, client: TestClient) -> None:
        response = client.post("/loads", json={"shipper_id": SHIPPER})

        assert response.status_code == 422

    def test_response_carries_request_id(self, client: TestClient) -> None:
        response = client.get("/loads/missing", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

"""Invoice endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from freight.api.deps import InvoicingDep, SettingsDep
from freight.api.schemas import (
    ConfirmPaymentRequest,
    CreateInvoiceRequest,
    InvoiceActionRequest,
    RespondToInvoiceRequest,
    ReviseInvoiceRequest,
)
from freight.config import Settings
from freight.domain.models import Invoice, InvoiceBreakdown, InvoiceHistoryEntry

router = APIRouter(tags=["invoices"])


def _with_default_tax(breakdown: InvoiceBreakdown, settings: Settings) -> InvoiceBreakdown:
    """Apply the configured tax rate when the client did not send one."""
    if "tax_percent" in breakdown.model_fields_set:
        return breakdown
    return breakdown.model_copy(update={"tax_percent": settings.default_tax_percent})


@router.post("/loads/{load_id}/invoices", status_code=201)
def create_invoice(
    load_id: str, body: CreateInvoiceRequest, invoicing: InvoicingDep, settings: SettingsDep
) -> Invoice:
    """Create (or replay by idempotency key) the invoice of an awarded load."""
    return invoicing.create_invoice(
        load_id,
        body.admin_id,
        _with_default_tax(body.breakdown, settings),
        body.idempotency_key,
        expected_version=body.expected_version,
    )


@router.get("/loads/{load_id}/invoices")
def list_revisions(load_id: str, invoicing: InvoicingDep) -> list[Invoice]:
    return invoicing.list_revisions(load_id)


@router.get("/loads/{load_id}/invoice")
def get_active_invoice(load_id: str, invoicing: InvoicingDep) -> Invoice | None:
    return invoicing.get_active_invoice(load_id)


@router.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: str, invoicing: InvoicingDep) -> Invoice:
    return invoicing.get_invoice(invoice_id)


@router.get("/invoices/{invoice_id}/history")
def list_history(invoice_id: str, invoicing: InvoicingDep) -> list[InvoiceHistoryEntry]:
    return invoicing.list_history(invoice_id)


@router.post("/invoices/{invoice_id}/send")
def send_invoice(invoice_id: str, body: InvoiceActionRequest, invoicing: InvoicingDep) -> Invoice:
    return invoicing.send_invoice(invoice_id, body.actor_id, expected_version=body.expected_version)


@router.post("/invoices/{invoice_id}/push-failure")
def record_push_failure(invoice_id: str, body: InvoiceActionRequest, invoicing: InvoicingDep) -> Invoice:
    return invoicing.record_push_failure(invoice_id, body.actor_id, body.reason or "delivery failed")


@router.post("/invoices/{invoice_id}/view")
def mark_viewed(invoice_id: str, body: InvoiceActionRequest, invoicing: InvoicingDep) -> Invoice:
    return invoicing.mark_viewed(invoice_id, body.actor_id)


@router.post("/invoices/{invoice_id}/respond")
def respond_to_invoice(invoice_id: str, body: RespondToInvoiceRequest, invoicing: InvoicingDep) -> Invoice:
    """Record a shipper's approve / negotiate / query / reject response."""
    return invoicing.respond_to_invoice(
        invoice_id,
        body.shipper_id,
        body.response_type,
        counter_amount=body.counter_amount,
        message=body.message,
        expected_version=body.expected_version,
    )


@router.post("/invoices/{invoice_id}/revise", status_code=201)
def revise_invoice(
    invoice_id: str, body: ReviseInvoiceRequest, invoicing: InvoicingDep, settings: SettingsDep
) -> Invoice:
    return invoicing.revise_invoice(
        invoice_id,
        body.admin_id,
        _with_default_tax(body.breakdown, settings),
        reason=body.reason,
        expected_version=body.expected_version,
    )


@router.post("/invoices/{invoice_id}/payment")
def confirm_payment(invoice_id: str, body: ConfirmPaymentRequest, invoicing: InvoicingDep) -> Invoice:
    return invoicing.confirm_payment(
        invoice_id,
        body.actor_id,
        body.amount,
        body.reference,
        expected_version=body.expected_version,
    )


@router.post("/invoices/{invoice_id}/overdue")
def mark_overdue(invoice_id: str, body: InvoiceActionRequest, invoicing: InvoicingDep) -> Invoice:
    return invoicing.mark_overdue(invoice_id, body.actor_id)


@router.post("/invoices/{invoice_id}/dispute")
def dispute_invoice(invoice_id: str, body: InvoiceActionRequest, invoicing: InvoicingDep) -> Invoice:
    return invoicing.dispute_invoice(invoice_id, body.actor_id, body.reason, body.expected_version)


@router.post("/invoices/{invoice_id}/cancel")
def cancel_invoice(invoice_id: str, body: InvoiceActionRequest, invoicing: InvoicingDep) -> Invoice:
    return invoicing.cancel_invoice(invoice_id, body.actor_id, body.reason)

"""Shipper invoicing for awarded loads."""

from freight.invoicing.totals import InvoiceTotals, compute_totals
from freight.invoicing.workflow import InvoiceWorkflow

__all__ = [
    "InvoiceTotals",
    "InvoiceWorkflow",
    "compute_totals",
]

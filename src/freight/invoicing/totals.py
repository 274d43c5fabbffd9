"""Invoice total calculation.

All monetary calculations use Decimal arithmetic; every intermediate amount
is quantized to paise with ROUND_HALF_UP.
"""

from __future__ import annotations

from decimal import Decimal
from typing import NamedTuple

from freight.domain.errors import PricingError
from freight.domain.models import InvoiceBreakdown, quantize_money

HUNDRED = Decimal("100")


class InvoiceTotals(NamedTuple):
    """Computed amounts for an invoice breakdown."""

    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def compute_totals(breakdown: InvoiceBreakdown) -> InvoiceTotals:
    """Compute subtotal, tax and total for *breakdown*.

    Formula: ``subtotal = base + fuel + tolls + handling + insurance``,
    ``tax = subtotal * tax_percent / 100``, ``total = subtotal + tax - discount``.

    Args:
        breakdown: The validated cost lines.

    Returns:
        The three amounts, each quantized to paise.

    Raises:
        PricingError: If the discount exceeds the taxed subtotal.
    """
    subtotal = quantize_money(
        breakdown.base_freight
        + breakdown.fuel_surcharge
        + breakdown.toll_charges
        + breakdown.handling_fee
        + breakdown.insurance_fee
    )
    tax_amount = quantize_money(subtotal * breakdown.tax_percent / HUNDRED)
    total_amount = quantize_money(subtotal + tax_amount - breakdown.discount_amount)
    if total_amount < 0:
        raise PricingError(
            f"Discount {breakdown.discount_amount} exceeds the invoice amount {subtotal + tax_amount}",
            discount_amount=breakdown.discount_amount,
            subtotal=subtotal,
            tax_amount=tax_amount,
        )
    return InvoiceTotals(subtotal, tax_amount, total_amount)

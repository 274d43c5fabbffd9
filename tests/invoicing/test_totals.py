"""Tests for invoice total calculation."""

from decimal import Decimal

import pytest

from freight.domain.errors import PricingError
from freight.domain.models import InvoiceBreakdown
from freight.invoicing.totals import compute_totals


class TestComputeTotals:
    def test_untaxed_base_only(self) -> None:
        totals = compute_totals(InvoiceBreakdown(base_freight=Decimal("49000"), tax_percent=Decimal("0")))

        assert totals.subtotal == Decimal("49000.00")
        assert totals.tax_amount == Decimal("0.00")
        assert totals.total_amount == Decimal("49000.00")

    def test_all_lines_with_default_tax(self) -> None:
        breakdown = InvoiceBreakdown(
            base_freight=Decimal("49000"),
            fuel_surcharge=Decimal("1500"),
            toll_charges=Decimal("800"),
            handling_fee=Decimal("500"),
            insurance_fee=Decimal("200"),
            discount_amount=Decimal("1000"),
            discount_reason="repeat shipper",
        )

        totals = compute_totals(breakdown)

        assert totals.subtotal == Decimal("52000.00")
        assert totals.tax_amount == Decimal("9360.00")
        assert totals.total_amount == Decimal("60360.00")

    @pytest.mark.parametrize(
        ("base", "tax", "expected_tax"),
        [
            ("100.05", "18", "18.01"),
            ("0.03", "50", "0.02"),
            ("333.33", "5", "16.67"),
        ],
    )
    def test_tax_rounds_half_up_to_paise(self, base: str, tax: str, expected_tax: str) -> None:
        totals = compute_totals(InvoiceBreakdown(base_freight=Decimal(base), tax_percent=Decimal(tax)))

        assert totals.tax_amount == Decimal(expected_tax)

    def test_total_equals_subtotal_plus_tax_minus_discount(self) -> None:
        breakdown = InvoiceBreakdown(
            base_freight=Decimal("12345.67"),
            toll_charges=Decimal("89.10"),
            discount_amount=Decimal("99.99"),
            tax_percent=Decimal("12"),
        )

        totals = compute_totals(breakdown)

        assert totals.total_amount == totals.subtotal + totals.tax_amount - breakdown.discount_amount

    def test_discount_larger_than_invoice(self) -> None:
        breakdown = InvoiceBreakdown(
            base_freight=Decimal("100"), discount_amount=Decimal("500"), tax_percent=Decimal("0")
        )

        with pytest.raises(PricingError):
            compute_totals(breakdown)

    def test_discount_equal_to_invoice_gives_zero(self) -> None:
        breakdown = InvoiceBreakdown(
            base_freight=Decimal("100"), discount_amount=Decimal("100"), tax_percent=Decimal("0")
        )

        assert compute_totals(breakdown).total_amount == Decimal("0.00")


class TestBreakdownValidation:
    def test_negative_line_rejected(self) -> None:
        with pytest.raises(ValueError, match="toll_charges"):
            InvoiceBreakdown(base_freight=Decimal("100"), toll_charges=Decimal("-1"))

    @pytest.mark.parametrize("tax", ["-1", "100.01"])
    def test_tax_out_of_range(self, tax: str) -> None:
        with pytest.raises(ValueError, match="tax_percent"):
            InvoiceBreakdown(base_freight=Decimal("100"), tax_percent=Decimal(tax))

    def test_float_tax_rejected(self) -> None:
        with pytest.raises(ValueError):
            InvoiceBreakdown(base_freight=Decimal("100"), tax_percent=18.0)  # type: ignore[arg-type]

    def test_float_money_rejected(self) -> None:
        with pytest.raises(ValueError):
            InvoiceBreakdown(base_freight=100.0)  # type: ignore[arg-type]

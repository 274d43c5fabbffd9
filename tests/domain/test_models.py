"""Tests for Pydantic domain models, money coercion, and domain errors."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from freight.domain.errors import (
    ConcurrencyConflictError,
    GuardViolationError,
    IllegalTransitionError,
    LoadNotFoundError,
)
from freight.domain.models import Bid, InvoiceBreakdown, Load, LoadDraft, to_money
from freight.domain.types import BidStatus, LoadStatus


class TestMoney:
    """Tests for paise quantization and float rejection."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("49000", Decimal("49000.00")),
            (49000, Decimal("49000.00")),
            (Decimal("0.005"), Decimal("0.01")),
            (Decimal("0.004"), Decimal("0.00")),
            ("123.455", Decimal("123.46")),
        ],
        ids=["string", "int", "half_up", "round_down", "string_half_up"],
    )
    def test_to_money(self, value, expected):
        result = to_money(value)
        assert result == expected
        assert result.as_tuple().exponent == -2

    def test_rejects_float(self):
        with pytest.raises(ValueError, match="not float"):
            to_money(49000.0)

    def test_rejects_garbage(self):
        with pytest.raises(ValueError, match="Not a monetary value"):
            to_money("forty thousand")

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity", Decimal("sNaN")])
    def test_rejects_non_finite(self, value):
        with pytest.raises(ValueError, match="Not a monetary value"):
            to_money(value)


class TestLoadDraft:
    def test_string_prices_are_coerced(self):
        draft = LoadDraft(pickup_city="Pune", dropoff_city="Goa", shipper_price_per_ton="2500")
        assert draft.shipper_price_per_ton == Decimal("2500.00")

    def test_rejects_float_weight(self):
        with pytest.raises(ValidationError, match="not float"):
            LoadDraft(pickup_city="Pune", dropoff_city="Goa", weight_tons=12.5)

    def test_rejects_negative_price(self):
        with pytest.raises(ValidationError, match="shipper_price_per_ton"):
            LoadDraft(pickup_city="Pune", dropoff_city="Goa", shipper_price_per_ton="-1")

    def test_is_frozen(self):
        draft = LoadDraft(pickup_city="Pune", dropoff_city="Goa")
        with pytest.raises(ValidationError):
            draft.pickup_city = "Nagpur"


class TestLoad:
    def test_defaults(self):
        load = Load(id="l1", shipper_id="s1", pickup_city="Pune", dropoff_city="Goa")
        assert load.status == LoadStatus.DRAFT
        assert load.version == 1
        assert load.invited_carrier_ids == []
        assert load.created_at.tzinfo is not None

    def test_lock_requires_final_price(self):
        with pytest.raises(ValidationError, match="price_locked requires admin_final_price"):
            Load(id="l1", shipper_id="s1", pickup_city="Pune", dropoff_city="Goa", price_locked=True)


class TestBid:
    def test_agreed_amount_prefers_counter(self):
        bid = Bid(id="b1", load_id="l1", carrier_id="c1", amount="48000")
        assert bid.agreed_amount == Decimal("48000.00")
        countered = bid.model_copy(update={"counter_amount": Decimal("49000.00"), "status": BidStatus.COUNTERED})
        assert countered.agreed_amount == Decimal("49000.00")

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_amount_must_be_positive(self, amount):
        with pytest.raises(ValidationError, match="amount must be positive"):
            Bid(id="b1", load_id="l1", carrier_id="c1", amount=amount)


class TestInvoiceBreakdown:
    def test_defaults(self):
        breakdown = InvoiceBreakdown(base_freight="49000")
        assert breakdown.tax_percent == Decimal("18")
        assert breakdown.discount_amount == Decimal("0")

    def test_rejects_negative_discount(self):
        with pytest.raises(ValidationError, match="discount_amount"):
            InvoiceBreakdown(base_freight="49000", discount_amount="-1")


class TestErrors:
    def test_to_dict_stringifies_context(self):
        err = IllegalTransitionError("l1", LoadStatus.DRAFT, LoadStatus.AWARDED)
        assert err.to_dict() == {
            "error": "illegal_transition",
            "context": {"load_id": "l1", "current_state": "draft", "target_state": "awarded"},
        }

    def test_none_context_stays_none(self):
        err = ConcurrencyConflictError("load", "l1", 3, None)
        assert err.to_dict()["context"]["current_version"] is None
        assert err.expected_version == 3

    def test_guard_name_is_exposed(self):
        err = GuardViolationError("l1", LoadStatus.PRICED, "price_locked")
        assert err.guard == "price_locked"
        assert "price_locked" in str(err)

    def test_not_found_kind(self):
        assert LoadNotFoundError("l9").kind == "load_not_found"

"""Platform margin pricing for loads.

Splits the shipper-facing gross price into the carrier payout and the
platform margin.  The split uses integer arithmetic (paise for amounts,
basis points for percentages) so that ``gross_price = carrier_payout +
platform_margin`` holds exactly.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from freight.domain.errors import PricingError
from freight.domain.models import PriceBreakdown, to_money

MIN_MARGIN_PERCENT = Decimal("0")
MAX_MARGIN_PERCENT = Decimal("50")
DEFAULT_MARGIN_PERCENT = Decimal("10")

# Rounding slack allowed when checking a caller-supplied breakdown
PAYOUT_TOLERANCE = Decimal("1")

ONE_DECIMAL = Decimal("0.1")


class PricingFormula(Protocol):
    """Anything that can turn a final gross price into a breakdown."""

    def price(self, gross_price: Decimal) -> PriceBreakdown: ...


def _to_paise(amount: Decimal) -> int:
    return int(to_money(amount) * 100)


def _from_paise(paise: int) -> Decimal:
    return (Decimal(paise) / 100).quantize(Decimal("0.01"))


def calculate_from_margin(
    gross_price: Decimal,
    margin_percent: Decimal,
    max_margin_percent: Decimal = MAX_MARGIN_PERCENT,
) -> PriceBreakdown:
    """Split *gross_price* by a platform margin percentage.

    The margin is clamped to ``[0, max_margin_percent]`` before use.

    Args:
        gross_price: What the shipper pays.
        margin_percent: Platform margin, e.g. ``Decimal("10.5")``.
        max_margin_percent: Upper bound for the margin.

    Returns:
        The breakdown with carrier payout and margin in paise precision.

    Raises:
        PricingError: If *gross_price* is negative.
    """
    if gross_price < 0:
        raise PricingError(f"gross_price must not be negative, got {gross_price}", gross_price=gross_price)

    clamped = min(max_margin_percent, max(MIN_MARGIN_PERCENT, margin_percent))
    gross_paise = _to_paise(gross_price)
    margin_bps = int((clamped * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    # Half-up rounding of gross * bps / 10000 on non-negative integers
    margin_paise = (gross_paise * margin_bps + 5000) // 10000
    payout_paise = gross_paise - margin_paise

    return PriceBreakdown(
        gross_price=_from_paise(gross_paise),
        platform_margin_percent=clamped,
        platform_margin=_from_paise(margin_paise),
        carrier_payout=_from_paise(payout_paise),
    )


def calculate_from_payout(
    gross_price: Decimal,
    carrier_payout: Decimal,
    max_margin_percent: Decimal = MAX_MARGIN_PERCENT,
) -> PriceBreakdown:
    """Derive the platform margin from a gross price and a desired carrier payout.

    The margin percentage is rounded to one decimal place.

    Args:
        gross_price: What the shipper pays.
        carrier_payout: What the carrier should receive.
        max_margin_percent: Upper bound for the derived margin.

    Returns:
        The breakdown with the derived margin.

    Raises:
        PricingError: If the gross price is not positive, the payout is
            outside ``[0, gross_price]``, or the derived margin exceeds
            *max_margin_percent*.
    """
    if gross_price <= 0:
        raise PricingError(f"gross_price must be positive, got {gross_price}", gross_price=gross_price)
    if carrier_payout < 0 or carrier_payout > gross_price:
        raise PricingError(
            "carrier_payout must be between 0 and gross_price",
            gross_price=gross_price,
            carrier_payout=carrier_payout,
        )

    gross_paise = _to_paise(gross_price)
    payout_paise = _to_paise(carrier_payout)
    margin_paise = gross_paise - payout_paise
    margin_percent = (Decimal(margin_paise) * 100 / Decimal(gross_paise)).quantize(
        ONE_DECIMAL, rounding=ROUND_HALF_UP
    )
    if margin_percent > max_margin_percent:
        raise PricingError(
            f"Margin {margin_percent}% exceeds the {max_margin_percent}% maximum",
            margin_percent=margin_percent,
            max_margin_percent=max_margin_percent,
        )

    return PriceBreakdown(
        gross_price=_from_paise(gross_paise),
        platform_margin_percent=margin_percent,
        platform_margin=_from_paise(margin_paise),
        carrier_payout=_from_paise(payout_paise),
    )


def validate_pricing(breakdown: PriceBreakdown, max_margin_percent: Decimal = MAX_MARGIN_PERCENT) -> None:
    """Check that a caller-supplied breakdown is internally consistent.

    Allows one rupee of rounding slack between the supplied payout and the
    payout recomputed from the margin percentage.

    Args:
        breakdown: The breakdown to check.
        max_margin_percent: Upper bound for the margin.

    Raises:
        PricingError: If any bound or the sum invariant is violated.
    """
    gross = breakdown.gross_price
    if gross <= 0:
        raise PricingError("gross_price must be positive", gross_price=gross)
    if not MIN_MARGIN_PERCENT <= breakdown.platform_margin_percent <= max_margin_percent:
        raise PricingError(
            f"Margin must be between {MIN_MARGIN_PERCENT}% and {max_margin_percent}%",
            margin_percent=breakdown.platform_margin_percent,
        )
    if breakdown.carrier_payout < 0 or breakdown.carrier_payout > gross:
        raise PricingError(
            "carrier_payout must be between 0 and gross_price",
            gross_price=gross,
            carrier_payout=breakdown.carrier_payout,
        )
    if abs(gross - breakdown.carrier_payout - breakdown.platform_margin) > PAYOUT_TOLERANCE:
        raise PricingError(
            "gross_price must equal carrier_payout + platform_margin",
            gross_price=gross,
            carrier_payout=breakdown.carrier_payout,
            platform_margin=breakdown.platform_margin,
        )

    expected = calculate_from_margin(gross, breakdown.platform_margin_percent, max_margin_percent)
    if abs(expected.carrier_payout - breakdown.carrier_payout) > PAYOUT_TOLERANCE:
        raise PricingError(
            "Pricing values are inconsistent",
            carrier_payout=breakdown.carrier_payout,
            expected_carrier_payout=expected.carrier_payout,
        )


class MarginPricingFormula:
    """Default pricing formula: a fixed platform margin on the gross price.

    Args:
        margin_percent: Platform margin applied to every load.
        max_margin_percent: Upper bound the margin is clamped to.
    """

    def __init__(
        self,
        margin_percent: Decimal = DEFAULT_MARGIN_PERCENT,
        max_margin_percent: Decimal = MAX_MARGIN_PERCENT,
    ) -> None:
        self.margin_percent = margin_percent
        self.max_margin_percent = max_margin_percent

    def price(self, gross_price: Decimal) -> PriceBreakdown:
        """Return the breakdown of *gross_price* at the configured margin."""
        return calculate_from_margin(gross_price, self.margin_percent, self.max_margin_percent)

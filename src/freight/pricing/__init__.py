"""Platform margin pricing.

Re-exports key functions and types for convenient access:
    from freight.pricing import MarginPricingFormula, validate_pricing
"""

from freight.pricing.engine import (
    DEFAULT_MARGIN_PERCENT,
    MAX_MARGIN_PERCENT,
    MarginPricingFormula,
    PricingFormula,
    calculate_from_margin,
    calculate_from_payout,
    validate_pricing,
)

__all__ = [
    "DEFAULT_MARGIN_PERCENT",
    "MAX_MARGIN_PERCENT",
    "MarginPricingFormula",
    "PricingFormula",
    "calculate_from_margin",
    "calculate_from_payout",
    "validate_pricing",
]

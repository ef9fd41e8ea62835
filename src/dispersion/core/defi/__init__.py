"""
Dispersion DeFi primitives.

- Safe Math: checked WAD fixed-point arithmetic (mul, div, pow, exp, ln)
- Pricing: supply-driven base price, congestion premium and purchase sizing
"""

from .pricing import (
    CostBreakdown,
    PricingState,
    calculate_base_price,
    calculate_premium,
    calculate_tokens_for_currency,
    calculate_total_cost,
    find_max_affordable,
)
from .safe_math import MAX_UINT256, WAD, SafeMath, from_wad, to_wad

__all__ = [
    "CostBreakdown",
    "PricingState",
    "calculate_base_price",
    "calculate_premium",
    "calculate_tokens_for_currency",
    "calculate_total_cost",
    "find_max_affordable",
    "MAX_UINT256",
    "WAD",
    "SafeMath",
    "from_wad",
    "to_wad",
]

"""
Supply-driven pricing curve.

Prices a purchase in two parts:
- A power-law base price driven by the remaining/total supply ratio
- An exponential premium that grows with purchase size relative to a
  beta-weighted "effective supply"

The premium is a flat multiplier on the whole purchase. It is not
integrated over the supply consumed by the purchase itself.

All values are WAD-scaled integers; the only failure modes are the typed
errors raised by the fixed-point kernel.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, NamedTuple

from ..exceptions import InvalidParameterError, ZeroSupplyError
from .safe_math import WAD, wad_div, wad_exp, wad_mul, wad_pow

logger = logging.getLogger("dispersion.core.defi.pricing")

# Operational parameter bounds
MIN_ALPHA = -10
MAX_ALPHA = 0
MAX_K = 250
MAX_BETA = WAD


@dataclass
class PricingState:
    """Curve parameters and supply counters for one distribution."""

    initial_price: int
    total_supply: int
    remaining_supply: int
    alpha: int = -1
    k: int = 0
    beta: int = WAD

    def validate(self) -> None:
        """Enforce operational bounds.

        Raises:
            InvalidParameterError: If any field is outside its bounds
        """
        if self.initial_price <= 0:
            raise InvalidParameterError(
                "Initial price must be positive",
                details={"initial_price": self.initial_price},
            )
        if self.total_supply <= 0:
            raise InvalidParameterError(
                "Total supply must be positive",
                details={"total_supply": self.total_supply},
            )
        if not 0 <= self.remaining_supply <= self.total_supply:
            raise InvalidParameterError(
                "Remaining supply must be between 0 and total supply",
                details={
                    "remaining_supply": self.remaining_supply,
                    "total_supply": self.total_supply,
                },
            )
        self.validate_curve(self.alpha, self.k, self.beta)

    @staticmethod
    def validate_curve(alpha: int, k: int, beta: int) -> None:
        if not MIN_ALPHA <= alpha <= MAX_ALPHA:
            raise InvalidParameterError(
                f"Alpha must be between {MIN_ALPHA} and {MAX_ALPHA}",
                details={"alpha": alpha},
            )
        if not 0 <= k <= MAX_K:
            raise InvalidParameterError(
                f"K must be between 0 and {MAX_K}",
                details={"k": k},
            )
        if not 0 <= beta <= MAX_BETA:
            raise InvalidParameterError(
                "Beta must be between 0 and 1",
                details={"beta": beta},
            )

    @property
    def sold_supply(self) -> int:
        return self.total_supply - self.remaining_supply

    def with_remaining(self, remaining_supply: int) -> "PricingState":
        return replace(self, remaining_supply=remaining_supply)


class CostBreakdown(NamedTuple):
    base_price: int
    premium: int
    base_cost: int
    final_cost: int


def calculate_base_price(state: PricingState) -> int:
    """
    Price per unit at the current supply ratio.

    alpha < 0:  initial * (total / remaining) ** |alpha|
    alpha >= 0: initial * (remaining / total) ** alpha

    Raises:
        ZeroSupplyError: If total or remaining supply is zero
    """
    if state.total_supply == 0 or state.remaining_supply == 0:
        raise ZeroSupplyError(
            "Cannot price with zero supply",
            details={
                "total_supply": state.total_supply,
                "remaining_supply": state.remaining_supply,
            },
        )

    if state.alpha < 0:
        inverse_ratio = wad_div(state.total_supply, state.remaining_supply)
        multiplier = wad_pow(inverse_ratio, -state.alpha * WAD)
    else:
        ratio = wad_div(state.remaining_supply, state.total_supply)
        multiplier = wad_pow(ratio, state.alpha * WAD)
    return wad_mul(state.initial_price, multiplier)


def calculate_premium(state: PricingState, amount: int) -> int:
    """
    Congestion premium multiplier for a purchase (WAD means none).

    effective = remaining * beta + total * (1 - beta)
    premium = exp(k * amount / effective)
    """
    if amount == 0 or state.remaining_supply == 0 or state.k == 0:
        return WAD

    effective_supply = wad_mul(state.remaining_supply, state.beta) + wad_mul(
        state.total_supply, WAD - state.beta
    )
    exponent = wad_div(state.k * amount, effective_supply)
    return wad_exp(exponent)


def calculate_total_cost(state: PricingState, amount: int) -> CostBreakdown:
    if amount == 0:
        return CostBreakdown(0, WAD, 0, 0)

    base_price = calculate_base_price(state)
    premium = calculate_premium(state, amount)
    base_cost = wad_mul(base_price, amount)
    final_cost = wad_mul(base_cost, premium)
    return CostBreakdown(base_price, premium, base_cost, final_cost)


def find_max_affordable(cost_at: Callable[[int], int], budget: int, upper: int) -> int:
    """
    Largest amount in [0, upper] whose cost fits the budget.

    ``cost_at`` must be non-decreasing. Uses upper-biased midpoints so the
    search always terminates with low == high. Errors raised by ``cost_at``
    propagate unchanged.
    """
    if budget == 0 or upper == 0:
        return 0

    low, high = 0, upper
    while low < high:
        mid = low + (high - low + 1) // 2
        if cost_at(mid) <= budget:
            low = mid
        else:
            high = mid - 1
    return low


def calculate_tokens_for_currency(state: PricingState, budget: int) -> int:
    """Largest purchase amount whose final cost is within ``budget``."""
    amount = find_max_affordable(
        lambda candidate: calculate_total_cost(state, candidate).final_cost,
        budget,
        state.remaining_supply,
    )
    logger.debug(
        "Sized purchase for budget %s: %s tokens (remaining %s)",
        budget,
        amount,
        state.remaining_supply,
    )
    return amount

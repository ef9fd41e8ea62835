"""
Token distribution ledger.

Owns the ``PricingState`` for one sale and commits purchases atomically:
quote, payment check, vesting duration from the pre-purchase supply,
supply mutation and grant creation run under one lock. If the grant cannot
be opened the supply is restored and the error re-raised.

Refunds are computed and reported on the receipt; moving currency is the
caller's concern.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..core.defi.pricing import (
    CostBreakdown,
    PricingState,
    calculate_base_price,
    calculate_premium,
    calculate_tokens_for_currency,
    calculate_total_cost,
)
from ..core.defi.safe_math import WAD
from ..core.exceptions import (
    DispersionError,
    ExceedsMaxPurchaseError,
    InsufficientPaymentError,
    InsufficientSupplyError,
    InvalidParameterError,
    ValidationError,
    ZeroAddressError,
)
from .vesting_manager import VestingManager, is_zero_address

if TYPE_CHECKING:
    from ..config_manager import DistributionConfig, VestingConfig
    from ..core.metrics import DistributionMetrics

logger = logging.getLogger("dispersion.blockchain.distribution_manager")


@dataclass(frozen=True)
class PurchasePreview:
    token_amount: int
    total_cost: int
    base_price: int
    premium: int


@dataclass(frozen=True)
class PurchaseReceipt:
    buyer: str
    token_amount: int
    base_price: int
    premium: int
    token_cost: int
    fee: int
    refund: int
    vesting_duration: int
    grant_id: int

    @property
    def total_paid(self) -> int:
        return self.token_cost + self.fee


@dataclass(frozen=True)
class DistributionStats:
    total_raised: int
    total_participants: int
    largest_purchase: int
    largest_purchaser: Optional[str]
    total_sold: int
    remaining_supply: int
    percentage_sold: int


class DistributionManager:
    """Sale ledger that sizes, prices and vests purchases."""

    def __init__(
        self,
        pricing_state: PricingState,
        vesting_manager: VestingManager,
        asset: str,
        transaction_fee: int,
        max_purchase_amount: int,
        purchase_cliff_duration: int = 0,
        metrics: "DistributionMetrics | None" = None,
    ):
        pricing_state.validate()
        self._validate_fee(transaction_fee)
        self._validate_max_purchase(max_purchase_amount)
        if not vesting_manager.is_registered(asset):
            raise InvalidParameterError(
                f"Asset {asset} must be registered for vesting before a sale opens",
                details={"asset": asset},
            )
        if purchase_cliff_duration < 0:
            raise InvalidParameterError(
                "Purchase cliff cannot be negative",
                details={"purchase_cliff_duration": purchase_cliff_duration},
            )

        self._state = replace(pricing_state)
        self._vesting = vesting_manager
        self._asset = asset
        self._transaction_fee = transaction_fee
        self._max_purchase_amount = max_purchase_amount
        self._purchase_cliff_duration = purchase_cliff_duration
        self._metrics = metrics
        self._lock = threading.RLock()

        self._total_raised = 0
        self._participants: set[str] = set()
        self._largest_purchase = 0
        self._largest_purchaser: Optional[str] = None

        if self._metrics:
            self._metrics.update_supply(self._state.remaining_supply)
        logger.info(
            "DistributionManager initialized for %s (supply %s, alpha %s, k %s, beta %s)",
            asset,
            self._state.total_supply,
            self._state.alpha,
            self._state.k,
            self._state.beta,
        )

    @classmethod
    def from_config(
        cls,
        distribution: "DistributionConfig",
        vesting: "VestingConfig",
        vesting_manager: VestingManager | None = None,
        metrics: "DistributionMetrics | None" = None,
    ) -> "DistributionManager":
        """Build a sale from configuration, registering the asset if needed."""
        manager = vesting_manager or VestingManager(metrics=metrics)
        if not manager.is_registered(distribution.asset):
            manager.register_asset(
                distribution.asset,
                vesting.min_duration,
                vesting.max_duration,
                vesting.supply_cap or distribution.total_supply,
                asset_total_supply=distribution.total_supply,
            )
        remaining = distribution.remaining_supply
        state = PricingState(
            initial_price=distribution.initial_price,
            total_supply=distribution.total_supply,
            remaining_supply=distribution.total_supply if remaining is None else remaining,
            alpha=distribution.alpha,
            k=distribution.k,
            beta=distribution.beta,
        )
        return cls(
            state,
            manager,
            distribution.asset,
            distribution.transaction_fee,
            distribution.max_purchase_amount,
            purchase_cliff_duration=vesting.purchase_cliff_duration,
            metrics=metrics,
        )

    @staticmethod
    def _validate_fee(fee: int) -> None:
        if fee <= 0:
            raise InvalidParameterError("Transaction fee must be positive", details={"fee": fee})

    @staticmethod
    def _validate_max_purchase(amount: int) -> None:
        if amount <= 0:
            raise InvalidParameterError(
                "Max purchase amount must be positive", details={"amount": amount}
            )

    # ==================== Read-only accessors ====================

    @property
    def asset(self) -> str:
        return self._asset

    @property
    def vesting_manager(self) -> VestingManager:
        return self._vesting

    @property
    def metrics(self) -> "DistributionMetrics | None":
        return self._metrics

    @property
    def pricing_state(self) -> PricingState:
        with self._lock:
            return replace(self._state)

    @property
    def transaction_fee(self) -> int:
        return self._transaction_fee

    @property
    def max_purchase_amount(self) -> int:
        return self._max_purchase_amount

    def get_remaining_supply(self) -> int:
        with self._lock:
            return self._state.remaining_supply

    def has_participated(self, buyer: str) -> bool:
        with self._lock:
            return buyer in self._participants

    # ==================== Quotes ====================

    def get_base_price(self) -> int:
        with self._lock:
            return calculate_base_price(self._state)

    def calculate_premium(self, amount: int) -> int:
        with self._lock:
            return calculate_premium(self._state, amount)

    def calculate_purchase_cost(self, amount: int) -> CostBreakdown:
        with self._lock:
            return calculate_total_cost(self._state, amount)

    def calculate_total_cost(self, amount: int) -> tuple[int, int]:
        """Return (token cost, token cost plus transaction fee)."""
        total_cost = self.calculate_purchase_cost(amount).final_cost
        return total_cost, total_cost + self._transaction_fee

    def calculate_vesting_duration(self) -> int:
        with self._lock:
            return self._vesting.calculate_vesting_duration(
                self._asset, self._state.remaining_supply, self._state.total_supply
            )

    def calculate_tokens_for_currency(self, budget: int) -> int:
        with self._lock:
            return calculate_tokens_for_currency(self._state, budget)

    def _size_currency_purchase(self, payment: int) -> int:
        amount = calculate_tokens_for_currency(self._state, payment - self._transaction_fee)
        return min(amount, self._max_purchase_amount)

    def preview_purchase_with_currency(self, payment: int) -> PurchasePreview:
        """
        What ``payment`` would buy right now.

        All fields are zero when the payment does not exceed the fee or
        buys nothing. ``total_cost`` includes the fee.
        """
        with self._lock:
            if payment <= self._transaction_fee:
                return PurchasePreview(0, 0, 0, 0)
            amount = self._size_currency_purchase(payment)
            if amount == 0:
                return PurchasePreview(0, 0, 0, 0)
            breakdown = calculate_total_cost(self._state, amount)
            return PurchasePreview(
                token_amount=amount,
                total_cost=breakdown.final_cost + self._transaction_fee,
                base_price=breakdown.base_price,
                premium=breakdown.premium,
            )

    # ==================== Statistics ====================

    def get_percentage_sold(self) -> int:
        """Scaled percentage of supply sold (100% == 100 * WAD)."""
        with self._lock:
            return self._state.sold_supply * 100 * WAD // self._state.total_supply

    def get_distribution_stats(self) -> DistributionStats:
        with self._lock:
            return DistributionStats(
                total_raised=self._total_raised,
                total_participants=len(self._participants),
                largest_purchase=self._largest_purchase,
                largest_purchaser=self._largest_purchaser,
                total_sold=self._state.sold_supply,
                remaining_supply=self._state.remaining_supply,
                percentage_sold=self.get_percentage_sold(),
            )

    # ==================== Purchases ====================

    def purchase_tokens(
        self, buyer: str, amount: int, payment: int, at_time: int | None = None
    ) -> PurchaseReceipt:
        """
        Buy exactly ``amount`` tokens.

        Raises:
            ZeroAddressError: Empty or zero buyer
            InvalidParameterError: Zero amount
            ExceedsMaxPurchaseError: Amount above the per-purchase maximum
            InsufficientSupplyError: Amount above the remaining supply
            InsufficientPaymentError: Payment below token cost plus fee
        """
        with self._lock:
            try:
                self._require_buyer(buyer)
                if amount <= 0:
                    raise InvalidParameterError(
                        "Purchase amount must be positive", details={"amount": amount}
                    )
                if amount > self._max_purchase_amount:
                    raise ExceedsMaxPurchaseError(
                        "Purchase exceeds the maximum purchase amount",
                        details={"amount": amount, "max_purchase_amount": self._max_purchase_amount},
                    )
                if amount > self._state.remaining_supply:
                    raise InsufficientSupplyError(
                        "Purchase exceeds the remaining supply",
                        details={"amount": amount, "remaining_supply": self._state.remaining_supply},
                    )
                breakdown = calculate_total_cost(self._state, amount)
                required = breakdown.final_cost + self._transaction_fee
                if payment < required:
                    raise InsufficientPaymentError(
                        "Payment does not cover cost plus fee",
                        details={"payment": payment, "required": required},
                    )
                return self._commit_purchase(buyer, amount, breakdown, payment, at_time)
            except DispersionError as exc:
                self._record_failure(buyer, exc)
                raise

    def purchase_tokens_with_currency(
        self, buyer: str, payment: int, at_time: int | None = None
    ) -> PurchaseReceipt:
        """
        Spend ``payment`` (fee included) on as many tokens as it buys.

        The amount is capped at the per-purchase maximum; the unspent part of
        the payment is reported as the refund.
        """
        with self._lock:
            try:
                self._require_buyer(buyer)
                if payment <= self._transaction_fee:
                    raise InsufficientPaymentError(
                        "Payment must exceed the transaction fee",
                        details={"payment": payment, "fee": self._transaction_fee},
                    )
                if self._state.remaining_supply == 0:
                    raise InsufficientSupplyError("No supply remaining")
                amount = self._size_currency_purchase(payment)
                if amount == 0:
                    raise InsufficientPaymentError(
                        "Payment does not cover a single unit",
                        details={"payment": payment},
                    )
                breakdown = calculate_total_cost(self._state, amount)
                return self._commit_purchase(buyer, amount, breakdown, payment, at_time)
            except DispersionError as exc:
                self._record_failure(buyer, exc)
                raise

    def _require_buyer(self, buyer: str) -> None:
        if is_zero_address(buyer):
            raise ZeroAddressError("Buyer cannot be empty or the zero address")

    def _record_failure(self, buyer: str, exc: DispersionError) -> None:
        status = "rejected" if isinstance(exc, ValidationError) else "failed"
        logger.warning("Purchase by %s %s: %s", buyer, status, exc.message)
        if self._metrics:
            self._metrics.record_purchase(status=status)

    def _commit_purchase(
        self,
        buyer: str,
        amount: int,
        breakdown: CostBreakdown,
        payment: int,
        at_time: int | None,
    ) -> PurchaseReceipt:
        total_supply = self._state.total_supply
        pre_remaining = self._state.remaining_supply
        duration = self._vesting.calculate_vesting_duration(self._asset, pre_remaining, total_supply)
        start_time = self._vesting.now() if at_time is None else at_time

        self._state.remaining_supply = pre_remaining - amount
        try:
            grant = self._vesting.create_grant(
                self._asset,
                buyer,
                start_time,
                duration,
                self._purchase_cliff_duration,
                amount,
            )
        except Exception:
            self._state.remaining_supply = pre_remaining
            raise

        self._total_raised += breakdown.final_cost
        self._participants.add(buyer)
        if amount > self._largest_purchase:
            self._largest_purchase = amount
            self._largest_purchaser = buyer

        refund = payment - breakdown.final_cost - self._transaction_fee
        receipt = PurchaseReceipt(
            buyer=buyer,
            token_amount=amount,
            base_price=breakdown.base_price,
            premium=breakdown.premium,
            token_cost=breakdown.final_cost,
            fee=self._transaction_fee,
            refund=refund,
            vesting_duration=duration,
            grant_id=grant.id,
        )

        logger.info(
            "Purchase by %s: %s tokens for %s (premium %s, vesting %ss, grant %s)",
            buyer,
            amount,
            breakdown.final_cost,
            breakdown.premium,
            duration,
            grant.id,
        )
        if self._metrics:
            self._metrics.record_purchase(
                status="success",
                amount=amount,
                cost=breakdown.final_cost,
                premium=breakdown.premium,
            )
            self._metrics.update_supply(self._state.remaining_supply)
            if self._state.remaining_supply > 0:
                self._metrics.update_base_price(calculate_base_price(self._state))
        return receipt

    # ==================== Administration ====================

    def update_price_parameters(self, alpha: int, k: int, beta: int) -> None:
        PricingState.validate_curve(alpha, k, beta)
        with self._lock:
            self._state.alpha = alpha
            self._state.k = k
            self._state.beta = beta
        logger.info("Price parameters updated: alpha=%s k=%s beta=%s", alpha, k, beta)

    def set_transaction_fee(self, fee: int) -> None:
        self._validate_fee(fee)
        with self._lock:
            self._transaction_fee = fee
        logger.info("Transaction fee set to %s", fee)

    def set_max_purchase_amount(self, amount: int) -> None:
        self._validate_max_purchase(amount)
        with self._lock:
            self._max_purchase_amount = amount
        logger.info("Max purchase amount set to %s", amount)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            stats = self.get_distribution_stats()
            return {
                "asset": self._asset,
                "initial_price": self._state.initial_price,
                "total_supply": self._state.total_supply,
                "remaining_supply": self._state.remaining_supply,
                "alpha": self._state.alpha,
                "k": self._state.k,
                "beta": self._state.beta,
                "transaction_fee": self._transaction_fee,
                "max_purchase_amount": self._max_purchase_amount,
                "total_raised": stats.total_raised,
                "total_participants": stats.total_participants,
                "percentage_sold": stats.percentage_sold,
            }

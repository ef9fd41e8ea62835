"""
Dispersion - Distribution Metrics

Prometheus metrics for the sale and vesting engines:
- Purchase outcomes, tokens sold and currency raised
- Remaining supply and current base price
- Premium multiplier distribution
- Grants opened and consumption recorded

Values are exported as floats in whole-token units. Metrics are
observability only; nothing reads them back into a calculation.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from .defi.safe_math import from_wad

if TYPE_CHECKING:
    from ..config_manager import MetricsConfig

logger = logging.getLogger("dispersion.core.metrics")


def _to_float(value: int) -> float:
    return float(from_wad(value))


class DistributionMetrics:
    """
    Metrics collector for one or more distributions.

    Each instance registers its collectors on ``registry``; pass a fresh
    ``CollectorRegistry`` per instance when several coexist in a process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, port: int = 9108):
        self.registry = registry if registry is not None else CollectorRegistry()
        self.metrics_port = port
        self._lock = threading.Lock()

        # ==================== SALE METRICS ====================
        self.purchases_total = Counter(
            "dispersion_purchases_total",
            "Purchase attempts by outcome",
            ["status"],
            registry=self.registry,
        )

        self.tokens_sold = Counter(
            "dispersion_tokens_sold_total",
            "Tokens sold across all purchases",
            registry=self.registry,
        )

        self.currency_raised = Counter(
            "dispersion_currency_raised_total",
            "Currency raised, excluding transaction fees",
            registry=self.registry,
        )

        self.remaining_supply = Gauge(
            "dispersion_remaining_supply",
            "Tokens still available for sale",
            registry=self.registry,
        )

        self.base_price = Gauge(
            "dispersion_base_price",
            "Current base price per token",
            registry=self.registry,
        )

        self.premium_multiplier = Histogram(
            "dispersion_premium_multiplier",
            "Premium multiplier applied to purchases",
            buckets=[1.0, 1.01, 1.05, 1.1, 1.25, 1.5, 2, 3, 5, 10],
            registry=self.registry,
        )

        # ==================== VESTING METRICS ====================
        self.grants_created = Counter(
            "dispersion_grants_created_total",
            "Vesting grants opened",
            ["asset"],
            registry=self.registry,
        )

        self.granted_amount = Counter(
            "dispersion_granted_amount_total",
            "Amount placed under vesting",
            ["asset"],
            registry=self.registry,
        )

        self.consumption_recorded = Counter(
            "dispersion_consumption_recorded_total",
            "Unlocked amount consumed by transfers",
            ["asset"],
            registry=self.registry,
        )

        logger.debug("DistributionMetrics initialized", extra={"port": port})

    @classmethod
    def from_config(cls, config: "MetricsConfig") -> Optional["DistributionMetrics"]:
        """Build a collector when metrics are enabled, otherwise return None."""
        if not config.enabled:
            return None
        return cls(port=config.port)

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        return generate_latest(self.registry).decode("utf-8")

    def record_purchase(
        self,
        status: str = "success",
        amount: int = 0,
        cost: int = 0,
        premium: int = 0,
    ) -> None:
        with self._lock:
            self.purchases_total.labels(status=status).inc()
            if status != "success":
                return
            if amount > 0:
                self.tokens_sold.inc(_to_float(amount))
            if cost > 0:
                self.currency_raised.inc(_to_float(cost))
            if premium > 0:
                self.premium_multiplier.observe(_to_float(premium))

    def update_supply(self, remaining: int) -> None:
        with self._lock:
            self.remaining_supply.set(_to_float(remaining))

    def update_base_price(self, price: int) -> None:
        with self._lock:
            self.base_price.set(_to_float(price))

    def record_grant_created(self, asset: str, amount: int) -> None:
        with self._lock:
            self.grants_created.labels(asset=asset).inc()
            self.granted_amount.labels(asset=asset).inc(_to_float(amount))

    def record_consumption(self, asset: str, amount: int) -> None:
        with self._lock:
            self.consumption_recorded.labels(asset=asset).inc(_to_float(amount))


# ==================== GLOBAL METRICS INSTANCE ====================

_metrics_instance: Optional[DistributionMetrics] = None
_metrics_lock = threading.Lock()


def get_metrics() -> DistributionMetrics:
    """Get or create the process-wide metrics instance on the default registry."""
    global _metrics_instance
    if _metrics_instance is None:
        with _metrics_lock:
            if _metrics_instance is None:
                _metrics_instance = DistributionMetrics(registry=REGISTRY)
    return _metrics_instance

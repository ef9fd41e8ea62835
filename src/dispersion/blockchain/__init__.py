"""Sale ledger and vesting accrual."""

from .distribution_manager import (
    DistributionManager,
    DistributionStats,
    PurchasePreview,
    PurchaseReceipt,
)
from .vesting_manager import AssetVestingPolicy, Grant, VestingManager

__all__ = [
    "DistributionManager",
    "DistributionStats",
    "PurchasePreview",
    "PurchaseReceipt",
    "AssetVestingPolicy",
    "Grant",
    "VestingManager",
]

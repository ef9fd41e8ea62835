from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable

from ..core.exceptions import (
    AssetRegistrationError,
    GrantNotFoundError,
    InvalidParameterError,
    InvalidScheduleParamsError,
    InvalidVestingConfigError,
    NoGrantsForBeneficiaryError,
    TransferNotAllowedError,
    ZeroSupplyError,
)

if TYPE_CHECKING:
    from ..core.metrics import DistributionMetrics

logger = logging.getLogger("dispersion.blockchain.vesting_manager")

SECONDS_PER_DAY = 86_400
MAX_VESTING_DURATION = 10 * 365 * SECONDS_PER_DAY
MAX_START_TIME_PAST = 365 * SECONDS_PER_DAY
MAX_START_TIME_FUTURE = 365 * SECONDS_PER_DAY
ZERO_ADDRESS = "0x" + "0" * 40


def is_zero_address(identity: str | None) -> bool:
    """True for empty identities and any all-zero hex address."""
    if not identity:
        return True
    value = identity.strip().lower()
    if value.startswith("0x"):
        digits = value[2:]
        return not digits or set(digits) == {"0"}
    return not value


@dataclass
class Grant:
    id: int
    asset: str
    beneficiary: str
    start_time: int
    cliff_end_time: int
    end_time: int
    total_amount: int
    consumed_amount: int = 0

    def vested_amount(self, at_time: int) -> int:
        """
        Amount unlocked at ``at_time``.

        Nothing vests before the cliff ends; after it, the amount grows
        linearly over the post-cliff window and is complete at end_time.
        """
        if at_time < self.start_time:
            return 0
        if at_time >= self.end_time:
            return self.total_amount
        if at_time < self.cliff_end_time:
            return 0

        window = self.end_time - self.cliff_end_time
        if window == 0:
            return self.total_amount
        elapsed = at_time - self.cliff_end_time
        return self.total_amount * elapsed // window

    def available(self, at_time: int) -> int:
        return max(0, self.vested_amount(at_time) - self.consumed_amount)


@dataclass
class AssetVestingPolicy:
    min_duration: int
    max_duration: int
    supply_cap: int

    def validate(self) -> None:
        if self.min_duration <= 0:
            raise InvalidVestingConfigError(
                "Minimum vesting duration must be positive",
                details={"min_duration": self.min_duration},
            )
        if self.max_duration <= 0:
            raise InvalidVestingConfigError(
                "Maximum vesting duration must be positive",
                details={"max_duration": self.max_duration},
            )
        if self.min_duration >= self.max_duration:
            raise InvalidVestingConfigError(
                "Minimum vesting duration must be less than maximum",
                details={"min_duration": self.min_duration, "max_duration": self.max_duration},
            )
        if self.supply_cap <= 0:
            raise InvalidVestingConfigError(
                "Supply cap must be positive",
                details={"supply_cap": self.supply_cap},
            )


class VestingManager:
    """
    Tracks per-asset vesting policies and per-beneficiary grants.

    Grants for an (asset, beneficiary) pair live in an append-only list in
    creation order; consumption always drains the oldest grants first.
    """

    def __init__(
        self,
        time_provider: Callable[[], int] | None = None,
        metrics: "DistributionMetrics | None" = None,
    ):
        self._policies: dict[str, AssetVestingPolicy] = {}
        self._allocated: dict[str, int] = {}
        self._grants: dict[tuple[str, str], list[Grant]] = {}
        self._grants_by_id: dict[int, Grant] = {}
        self._next_grant_id = 1
        self._time_provider = time_provider or (lambda: int(time.time()))
        self._metrics = metrics
        self._lock = threading.RLock()
        logger.info("VestingManager initialized with deterministic time provider: %s", bool(time_provider))

    def _current_time(self) -> int:
        timestamp = self._time_provider()
        try:
            return int(timestamp)
        except (TypeError, ValueError) as exc:
            raise ValueError("time_provider must return an integer timestamp") from exc

    def now(self) -> int:
        return self._current_time()

    def _resolve_time(self, at_time: int | None) -> int:
        return self._current_time() if at_time is None else at_time

    def _require_policy(self, asset: str) -> AssetVestingPolicy:
        policy = self._policies.get(asset)
        if policy is None:
            raise AssetRegistrationError(
                f"Asset {asset} is not registered for vesting",
                details={"asset": asset},
            )
        return policy

    # ==================== Asset registration ====================

    def register_asset(
        self,
        asset: str,
        min_duration: int,
        max_duration: int,
        supply_cap: int,
        asset_total_supply: int | None = None,
    ) -> AssetVestingPolicy:
        """
        Register an asset with its vesting policy.

        Raises:
            InvalidVestingConfigError: For a zero asset identity or a malformed policy
            AssetRegistrationError: If the asset is already registered
        """
        if is_zero_address(asset):
            raise InvalidVestingConfigError("Asset identity cannot be empty or zero")

        policy = AssetVestingPolicy(min_duration, max_duration, supply_cap)
        policy.validate()
        if asset_total_supply is not None and supply_cap > asset_total_supply:
            raise InvalidVestingConfigError(
                "Supply cap exceeds the asset's total supply",
                details={"supply_cap": supply_cap, "asset_total_supply": asset_total_supply},
            )

        with self._lock:
            if asset in self._policies:
                raise AssetRegistrationError(
                    f"Asset {asset} is already registered",
                    details={"asset": asset},
                )
            self._policies[asset] = policy
            self._allocated[asset] = 0

        logger.info(
            "Registered asset %s (duration %s..%s, cap %s)",
            asset,
            min_duration,
            max_duration,
            supply_cap,
        )
        return replace(policy)

    def set_vesting_policy(
        self, asset: str, min_duration: int, max_duration: int, supply_cap: int
    ) -> AssetVestingPolicy:
        policy = AssetVestingPolicy(min_duration, max_duration, supply_cap)
        policy.validate()
        with self._lock:
            self._require_policy(asset)
            allocated = self._allocated[asset]
            if supply_cap < allocated:
                raise InvalidVestingConfigError(
                    "Supply cap is below the amount already granted",
                    details={"supply_cap": supply_cap, "allocated": allocated},
                )
            self._policies[asset] = policy

        logger.info(
            "Updated vesting policy for %s (duration %s..%s, cap %s)",
            asset,
            min_duration,
            max_duration,
            supply_cap,
        )
        return replace(policy)

    def get_vesting_policy(self, asset: str) -> AssetVestingPolicy:
        with self._lock:
            return replace(self._require_policy(asset))

    def is_registered(self, asset: str) -> bool:
        with self._lock:
            return asset in self._policies

    def allocated_amount(self, asset: str) -> int:
        with self._lock:
            self._require_policy(asset)
            return self._allocated[asset]

    # ==================== Grants ====================

    @property
    def next_grant_id(self) -> int:
        return self._next_grant_id

    def create_grant(
        self,
        asset: str,
        beneficiary: str,
        start_time: int,
        duration: int,
        cliff_duration: int,
        amount: int,
    ) -> Grant:
        """
        Open a new grant for ``beneficiary``.

        Returns a copy of the stored grant.

        Raises:
            AssetRegistrationError: If the asset is not registered
            InvalidScheduleParamsError: For invalid identity, timing or amount
        """
        with self._lock:
            policy = self._require_policy(asset)
            now = self._current_time()

            if is_zero_address(beneficiary):
                raise InvalidScheduleParamsError("Beneficiary cannot be empty or the zero address")
            if duration <= 0:
                raise InvalidScheduleParamsError(
                    "Vesting duration must be positive", details={"duration": duration}
                )
            if duration > MAX_VESTING_DURATION:
                raise InvalidScheduleParamsError(
                    "Vesting duration exceeds the maximum",
                    details={"duration": duration, "max_duration": MAX_VESTING_DURATION},
                )
            if cliff_duration < 0 or cliff_duration > duration:
                raise InvalidScheduleParamsError(
                    "Cliff duration must be between zero and the vesting duration",
                    details={"cliff_duration": cliff_duration, "duration": duration},
                )
            if amount <= 0:
                raise InvalidScheduleParamsError(
                    "Grant amount must be positive", details={"amount": amount}
                )
            if start_time < now - MAX_START_TIME_PAST:
                raise InvalidScheduleParamsError(
                    "Start time is too far in the past",
                    details={"start_time": start_time, "now": now},
                )
            if start_time > now + MAX_START_TIME_FUTURE:
                raise InvalidScheduleParamsError(
                    "Start time is too far in the future",
                    details={"start_time": start_time, "now": now},
                )
            end_time = start_time + duration
            if end_time <= now:
                raise InvalidScheduleParamsError(
                    "Grant would already be fully vested",
                    details={"end_time": end_time, "now": now},
                )
            allocated = self._allocated[asset]
            if allocated + amount > policy.supply_cap:
                raise InvalidScheduleParamsError(
                    "Grant exceeds the asset's vesting supply cap",
                    details={
                        "amount": amount,
                        "allocated": allocated,
                        "supply_cap": policy.supply_cap,
                    },
                )

            grant = Grant(
                id=self._next_grant_id,
                asset=asset,
                beneficiary=beneficiary,
                start_time=start_time,
                cliff_end_time=start_time + cliff_duration,
                end_time=end_time,
                total_amount=amount,
            )
            self._next_grant_id += 1
            self._grants.setdefault((asset, beneficiary), []).append(grant)
            self._grants_by_id[grant.id] = grant
            self._allocated[asset] = allocated + amount

        logger.info(
            "Grant %s created for %s: %s of %s over %ss (cliff %ss)",
            grant.id,
            beneficiary,
            amount,
            asset,
            duration,
            cliff_duration,
        )
        if self._metrics:
            self._metrics.record_grant_created(asset, amount)
        return replace(grant)

    def get_grants(self, asset: str, beneficiary: str) -> list[Grant]:
        with self._lock:
            self._require_policy(asset)
            return [replace(grant) for grant in self._grants.get((asset, beneficiary), [])]

    def get_grant_by_id(self, grant_id: int) -> Grant:
        with self._lock:
            grant = self._grants_by_id.get(grant_id)
            if grant is None:
                raise GrantNotFoundError(
                    f"Grant {grant_id} not found", details={"grant_id": grant_id}
                )
            return replace(grant)

    # ==================== Accrual ====================

    def vested_amount(self, grant: Grant, at_time: int | None = None) -> int:
        return grant.vested_amount(self._resolve_time(at_time))

    def total_unlocked_for_beneficiary(
        self, asset: str, beneficiary: str, at_time: int | None = None
    ) -> int:
        """Sum of vested-but-unconsumed amounts across the beneficiary's grants."""
        at = self._resolve_time(at_time)
        with self._lock:
            self._require_policy(asset)
            return sum(grant.available(at) for grant in self._grants.get((asset, beneficiary), []))

    def is_transfer_allowed(
        self, asset: str, beneficiary: str, amount: int, at_time: int | None = None
    ) -> bool:
        return amount <= self.total_unlocked_for_beneficiary(asset, beneficiary, at_time)

    def record_consumption(
        self, asset: str, beneficiary: str, amount: int, at_time: int | None = None
    ) -> list[tuple[int, int]]:
        """
        Deduct ``amount`` from the beneficiary's grants, oldest first.

        Draws are planned across all grants before any is applied, so a
        failed call leaves every grant untouched.

        Returns:
            (grant_id, drawn_amount) pairs in the order they were drawn

        Raises:
            AssetRegistrationError: If the asset is not registered
            NoGrantsForBeneficiaryError: If the beneficiary has no grants,
                even for a zero amount
            TransferNotAllowedError: If amount exceeds the unlocked total
        """
        if amount < 0:
            raise InvalidParameterError(
                "Consumption amount cannot be negative", details={"amount": amount}
            )
        at = self._resolve_time(at_time)

        with self._lock:
            self._require_policy(asset)
            grants = self._grants.get((asset, beneficiary))
            if not grants:
                raise NoGrantsForBeneficiaryError(
                    f"No grants for {beneficiary} on {asset}",
                    details={"asset": asset, "beneficiary": beneficiary},
                )
            if amount == 0:
                return []

            draws: list[tuple[Grant, int]] = []
            outstanding = amount
            for grant in grants:
                if outstanding == 0:
                    break
                available = grant.available(at)
                if available > 0:
                    draw = min(available, outstanding)
                    draws.append((grant, draw))
                    outstanding -= draw

            if outstanding > 0:
                unlocked = amount - outstanding
                logger.warning(
                    "Transfer of %s by %s rejected: only %s unlocked",
                    amount,
                    beneficiary,
                    unlocked,
                )
                raise TransferNotAllowedError(
                    "Amount exceeds unlocked balance",
                    requested=amount,
                    unlocked=unlocked,
                    details={"asset": asset, "beneficiary": beneficiary},
                )

            for grant, draw in draws:
                grant.consumed_amount += draw

        logger.info(
            "Recorded consumption of %s for %s across %d grant(s)",
            amount,
            beneficiary,
            len(draws),
        )
        if self._metrics:
            self._metrics.record_consumption(asset, amount)
        return [(grant.id, draw) for grant, draw in draws]

    # ==================== Duration sizing ====================

    def calculate_vesting_duration(self, asset: str, remaining_supply: int, total_supply: int) -> int:
        """
        Duration for a new purchase grant.

        Scales linearly from max_duration at full supply down to
        min_duration at zero remaining supply. Callers pass the supply as it
        was before the purchase.
        """
        policy = self.get_vesting_policy(asset)
        if total_supply <= 0:
            raise ZeroSupplyError(
                "Cannot size vesting duration with zero total supply",
                details={"total_supply": total_supply},
            )
        if not 0 <= remaining_supply <= total_supply:
            raise InvalidParameterError(
                "Remaining supply must be between 0 and total supply",
                details={"remaining_supply": remaining_supply, "total_supply": total_supply},
            )
        span = policy.max_duration - policy.min_duration
        return policy.min_duration + span * remaining_supply // total_supply

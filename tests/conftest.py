"""
Test configuration and fixtures
"""
import sys
from pathlib import Path

# Add project root and src to Python path
project_root = Path(__file__).parent.parent
src_path = project_root / "src"

sys.path.insert(0, str(project_root))
sys.path.insert(0, str(src_path))

import pytest

from dispersion.blockchain.vesting_manager import SECONDS_PER_DAY, VestingManager
from dispersion.core.defi.pricing import PricingState
from dispersion.core.defi.safe_math import WAD

GENESIS_TIME = 1_700_000_000


class ManualClock:
    def __init__(self, start_time: int):
        self.current_time = start_time

    def now(self) -> int:
        return self.current_time

    def advance(self, seconds: int):
        self.current_time += seconds


@pytest.fixture
def clock():
    return ManualClock(start_time=GENESIS_TIME)


@pytest.fixture
def vesting_manager(clock):
    manager = VestingManager(time_provider=clock.now)
    manager.register_asset(
        "DLP",
        min_duration=SECONDS_PER_DAY,
        max_duration=30 * SECONDS_PER_DAY,
        supply_cap=1_000_000 * WAD,
    )
    return manager


@pytest.fixture
def scenario_state():
    """0.0001 initial price, 10M supply, alpha -1, k 10, beta 0.7."""
    return PricingState(
        initial_price=WAD // 10_000,
        total_supply=10_000_000 * WAD,
        remaining_supply=10_000_000 * WAD,
        alpha=-1,
        k=10,
        beta=7 * WAD // 10,
    )


@pytest.fixture(autouse=True)
def _clear_dispersion_env(monkeypatch):
    """Keep host DISPERSION_* variables out of configuration tests."""
    import os

    for key in list(os.environ):
        if key.startswith("DISPERSION_"):
            monkeypatch.delenv(key, raising=False)

import pytest
from prometheus_client import CollectorRegistry

from dispersion.blockchain.vesting_manager import (
    MAX_START_TIME_FUTURE,
    MAX_START_TIME_PAST,
    MAX_VESTING_DURATION,
    SECONDS_PER_DAY,
    ZERO_ADDRESS,
    Grant,
    VestingManager,
    is_zero_address,
)
from dispersion.core.defi.safe_math import WAD
from dispersion.core.exceptions import (
    AssetRegistrationError,
    GrantNotFoundError,
    InvalidScheduleParamsError,
    InvalidVestingConfigError,
    NoGrantsForBeneficiaryError,
    TransferNotAllowedError,
)
from dispersion.core.metrics import DistributionMetrics

DAY = SECONDS_PER_DAY


def test_thirty_day_grant_vests_linearly(vesting_manager, clock):
    now = clock.now()
    grant = vesting_manager.create_grant("DLP", "0xuser", now, 30 * DAY, 0, 1000 * WAD)

    assert vesting_manager.vested_amount(grant, now) == 0
    assert vesting_manager.vested_amount(grant, now + 15 * DAY) == 500 * WAD
    assert vesting_manager.vested_amount(grant, now + 30 * DAY) == 1000 * WAD
    assert vesting_manager.vested_amount(grant, now + 30 * DAY + 1) == 1000 * WAD


def test_vested_amount_defaults_to_clock(vesting_manager, clock):
    grant = vesting_manager.create_grant("DLP", "0xuser", clock.now(), 10 * DAY, 0, 100 * WAD)
    clock.advance(5 * DAY)
    assert vesting_manager.vested_amount(grant) == 50 * WAD


def test_cliff_blocks_accrual_then_vests_over_post_cliff_window():
    grant = Grant(
        id=1,
        asset="DLP",
        beneficiary="0xuser",
        start_time=1_000,
        cliff_end_time=1_100,
        end_time=1_300,
        total_amount=200,
    )
    assert grant.vested_amount(999) == 0
    assert grant.vested_amount(1_050) == 0
    assert grant.vested_amount(1_099) == 0
    assert grant.vested_amount(1_100) == 0
    assert grant.vested_amount(1_200) == 100
    assert grant.vested_amount(1_299) == 199
    assert grant.vested_amount(1_300) == 200


def test_cliff_equal_to_duration_vests_everything_at_end():
    grant = Grant(1, "DLP", "0xuser", 0, 100, 100, 50)
    assert grant.vested_amount(99) == 0
    assert grant.vested_amount(100) == 50


def test_vested_amount_rounds_down():
    grant = Grant(1, "DLP", "0xuser", 0, 0, 3, 10)
    assert grant.vested_amount(1) == 3
    assert grant.vested_amount(2) == 6


# ==================== Registration ====================

def test_register_asset_and_policy_roundtrip(clock):
    manager = VestingManager(time_provider=clock.now)
    assert not manager.is_registered("DLP")
    policy = manager.register_asset("DLP", DAY, 30 * DAY, 500 * WAD, asset_total_supply=1_000 * WAD)
    assert manager.is_registered("DLP")
    assert manager.get_vesting_policy("DLP") == policy
    assert manager.allocated_amount("DLP") == 0


def test_register_asset_twice_fails(vesting_manager):
    with pytest.raises(AssetRegistrationError):
        vesting_manager.register_asset("DLP", DAY, 2 * DAY, WAD)


@pytest.mark.parametrize(
    "asset, min_duration, max_duration, cap, total",
    [
        ("", DAY, 2 * DAY, WAD, None),
        (ZERO_ADDRESS, DAY, 2 * DAY, WAD, None),
        ("TOK", 0, 2 * DAY, WAD, None),
        ("TOK", DAY, 0, WAD, None),
        ("TOK", 2 * DAY, 2 * DAY, WAD, None),
        ("TOK", 3 * DAY, 2 * DAY, WAD, None),
        ("TOK", DAY, 2 * DAY, 0, None),
        ("TOK", DAY, 2 * DAY, 2 * WAD, WAD),
    ],
)
def test_register_asset_rejects_invalid_policy(clock, asset, min_duration, max_duration, cap, total):
    manager = VestingManager(time_provider=clock.now)
    with pytest.raises(InvalidVestingConfigError):
        manager.register_asset(asset, min_duration, max_duration, cap, asset_total_supply=total)
    assert not manager.is_registered(asset)


def test_set_vesting_policy_requires_registration(clock):
    manager = VestingManager(time_provider=clock.now)
    with pytest.raises(AssetRegistrationError):
        manager.set_vesting_policy("TOK", DAY, 2 * DAY, WAD)


def test_set_vesting_policy_updates_and_guards_allocation(vesting_manager, clock):
    vesting_manager.create_grant("DLP", "0xuser", clock.now(), DAY, 0, 100 * WAD)
    with pytest.raises(InvalidVestingConfigError):
        vesting_manager.set_vesting_policy("DLP", DAY, 2 * DAY, 99 * WAD)

    updated = vesting_manager.set_vesting_policy("DLP", 2 * DAY, 10 * DAY, 100 * WAD)
    assert vesting_manager.get_vesting_policy("DLP") == updated
    assert updated.max_duration == 10 * DAY


def test_is_zero_address():
    assert is_zero_address("")
    assert is_zero_address(None)
    assert is_zero_address(ZERO_ADDRESS)
    assert is_zero_address("0x0")
    assert not is_zero_address("0xabc")
    assert not is_zero_address("alice")


# ==================== Grant creation ====================

def test_grant_ids_start_at_one_and_increase(vesting_manager, clock):
    assert vesting_manager.next_grant_id == 1
    first = vesting_manager.create_grant("DLP", "0xa", clock.now(), DAY, 0, WAD)
    second = vesting_manager.create_grant("DLP", "0xb", clock.now(), DAY, 0, WAD)
    third = vesting_manager.create_grant("DLP", "0xa", clock.now(), DAY, 0, WAD)
    assert (first.id, second.id, third.id) == (1, 2, 3)
    assert vesting_manager.next_grant_id == 4
    assert [g.id for g in vesting_manager.get_grants("DLP", "0xa")] == [1, 3]


def test_grant_fields_and_allocation(vesting_manager, clock):
    now = clock.now()
    grant = vesting_manager.create_grant("DLP", "0xuser", now + 10, 30 * DAY, 5 * DAY, 7 * WAD)
    assert grant.start_time == now + 10
    assert grant.cliff_end_time == now + 10 + 5 * DAY
    assert grant.end_time == now + 10 + 30 * DAY
    assert grant.consumed_amount == 0
    assert vesting_manager.allocated_amount("DLP") == 7 * WAD
    assert vesting_manager.get_grant_by_id(grant.id) == grant


def test_get_grants_returns_copies(vesting_manager, clock):
    vesting_manager.create_grant("DLP", "0xuser", clock.now(), DAY, 0, 10 * WAD)
    copies = vesting_manager.get_grants("DLP", "0xuser")
    copies[0].consumed_amount = 10 * WAD
    assert vesting_manager.get_grants("DLP", "0xuser")[0].consumed_amount == 0
    assert vesting_manager.get_grants("DLP", "0xnobody") == []


def test_get_grant_by_id_unknown(vesting_manager):
    with pytest.raises(GrantNotFoundError):
        vesting_manager.get_grant_by_id(42)


def test_create_grant_requires_registered_asset(vesting_manager, clock):
    with pytest.raises(AssetRegistrationError):
        vesting_manager.create_grant("NOPE", "0xuser", clock.now(), DAY, 0, WAD)


@pytest.mark.parametrize(
    "beneficiary, start_offset, duration, cliff, amount",
    [
        ("", 0, DAY, 0, WAD),
        (ZERO_ADDRESS, 0, DAY, 0, WAD),
        ("0xuser", 0, 0, 0, WAD),
        ("0xuser", 0, MAX_VESTING_DURATION + 1, 0, WAD),
        ("0xuser", 0, DAY, DAY + 1, WAD),
        ("0xuser", 0, DAY, -1, WAD),
        ("0xuser", 0, DAY, 0, 0),
        ("0xuser", -MAX_START_TIME_PAST - 1, MAX_VESTING_DURATION, 0, WAD),
        ("0xuser", MAX_START_TIME_FUTURE + 1, DAY, 0, WAD),
        ("0xuser", -2 * DAY, DAY, 0, WAD),
        ("0xuser", -DAY, DAY, 0, WAD),
    ],
)
def test_create_grant_rejects_invalid_schedule(
    vesting_manager, clock, beneficiary, start_offset, duration, cliff, amount
):
    with pytest.raises(InvalidScheduleParamsError):
        vesting_manager.create_grant(
            "DLP", beneficiary, clock.now() + start_offset, duration, cliff, amount
        )
    assert vesting_manager.next_grant_id == 1
    assert vesting_manager.allocated_amount("DLP") == 0


def test_create_grant_accepts_window_edges(vesting_manager, clock):
    now = clock.now()
    vesting_manager.create_grant("DLP", "0xuser", now - MAX_START_TIME_PAST, MAX_VESTING_DURATION, 0, WAD)
    vesting_manager.create_grant("DLP", "0xuser", now + MAX_START_TIME_FUTURE, DAY, 0, WAD)
    vesting_manager.create_grant("DLP", "0xuser", now, MAX_VESTING_DURATION, MAX_VESTING_DURATION, WAD)
    assert len(vesting_manager.get_grants("DLP", "0xuser")) == 3


def test_supply_cap_bounds_aggregate_grants(clock):
    manager = VestingManager(time_provider=clock.now)
    manager.register_asset("DLP", DAY, 2 * DAY, 100 * WAD)
    manager.create_grant("DLP", "0xa", clock.now(), DAY, 0, 60 * WAD)
    with pytest.raises(InvalidScheduleParamsError):
        manager.create_grant("DLP", "0xb", clock.now(), DAY, 0, 41 * WAD)
    manager.create_grant("DLP", "0xb", clock.now(), DAY, 0, 40 * WAD)
    assert manager.allocated_amount("DLP") == 100 * WAD


# ==================== Unlocked totals and consumption ====================

def _two_grants(manager, now):
    manager.create_grant("DLP", "0xuser", now, 10 * DAY, 0, 100 * WAD)
    manager.create_grant("DLP", "0xuser", now, 20 * DAY, 0, 200 * WAD)


def test_total_unlocked_sums_grants(vesting_manager, clock):
    now = clock.now()
    _two_grants(vesting_manager, now)
    # 50% of the first, 25% of the second
    assert vesting_manager.total_unlocked_for_beneficiary("DLP", "0xuser", now + 5 * DAY) == 100 * WAD
    assert vesting_manager.total_unlocked_for_beneficiary("DLP", "0xuser", now + 20 * DAY) == 300 * WAD
    assert vesting_manager.total_unlocked_for_beneficiary("DLP", "0xother", now + 20 * DAY) == 0


def test_is_transfer_allowed(vesting_manager, clock):
    now = clock.now()
    _two_grants(vesting_manager, now)
    at = now + 5 * DAY
    assert vesting_manager.is_transfer_allowed("DLP", "0xuser", 100 * WAD, at)
    assert not vesting_manager.is_transfer_allowed("DLP", "0xuser", 100 * WAD + 1, at)
    assert vesting_manager.is_transfer_allowed("DLP", "0xother", 0, at)


def test_consumption_drains_grants_in_creation_order(vesting_manager, clock):
    now = clock.now()
    _two_grants(vesting_manager, now)
    at = now + 5 * DAY

    draws = vesting_manager.record_consumption("DLP", "0xuser", 70 * WAD, at)
    assert draws == [(1, 50 * WAD), (2, 20 * WAD)]

    first, second = vesting_manager.get_grants("DLP", "0xuser")
    assert first.consumed_amount == 50 * WAD
    assert second.consumed_amount == 20 * WAD
    assert vesting_manager.total_unlocked_for_beneficiary("DLP", "0xuser", at) == 30 * WAD


def test_consumption_skips_grants_with_nothing_available(vesting_manager, clock):
    now = clock.now()
    vesting_manager.create_grant("DLP", "0xuser", now, 10 * DAY, 5 * DAY, 100 * WAD)
    vesting_manager.create_grant("DLP", "0xuser", now, 10 * DAY, 0, 100 * WAD)

    draws = vesting_manager.record_consumption("DLP", "0xuser", 10 * WAD, now + 2 * DAY)
    assert draws == [(2, 10 * WAD)]


def test_consumption_beyond_unlocked_fails_without_mutation(vesting_manager, clock):
    now = clock.now()
    _two_grants(vesting_manager, now)
    at = now + 5 * DAY

    with pytest.raises(TransferNotAllowedError) as exc_info:
        vesting_manager.record_consumption("DLP", "0xuser", 100 * WAD + 1, at)
    assert exc_info.value.requested == 100 * WAD + 1
    assert exc_info.value.unlocked == 100 * WAD
    assert all(g.consumed_amount == 0 for g in vesting_manager.get_grants("DLP", "0xuser"))


def test_consumption_without_grants_fails_even_for_zero(vesting_manager):
    with pytest.raises(NoGrantsForBeneficiaryError):
        vesting_manager.record_consumption("DLP", "0xuser", 0)
    with pytest.raises(NoGrantsForBeneficiaryError):
        vesting_manager.record_consumption("DLP", "0xuser", WAD)


def test_unregistered_asset_rejected_by_balance_queries_and_consumption(vesting_manager):
    with pytest.raises(AssetRegistrationError):
        vesting_manager.total_unlocked_for_beneficiary("NOPE", "0xuser")
    with pytest.raises(AssetRegistrationError):
        vesting_manager.is_transfer_allowed("NOPE", "0xuser", 0)
    with pytest.raises(AssetRegistrationError):
        vesting_manager.get_grants("NOPE", "0xuser")
    with pytest.raises(AssetRegistrationError):
        vesting_manager.record_consumption("NOPE", "0xuser", 0)


def test_zero_consumption_with_grants_is_noop(vesting_manager, clock):
    _two_grants(vesting_manager, clock.now())
    assert vesting_manager.record_consumption("DLP", "0xuser", 0) == []


def test_consumption_conserves_and_respects_vesting(vesting_manager, clock):
    now = clock.now()
    _two_grants(vesting_manager, now)
    consumed_total = 0
    for day, amount in ((2, 10 * WAD), (5, 60 * WAD), (12, 150 * WAD), (25, 80 * WAD)):
        at = now + day * DAY
        assert amount <= vesting_manager.total_unlocked_for_beneficiary("DLP", "0xuser", at)
        vesting_manager.record_consumption("DLP", "0xuser", amount, at)
        consumed_total += amount
        grants = vesting_manager.get_grants("DLP", "0xuser")
        assert sum(g.consumed_amount for g in grants) == consumed_total
        assert all(g.consumed_amount <= g.vested_amount(at) for g in grants)
    assert consumed_total == 300 * WAD


# ==================== Duration sizing ====================

def test_vesting_duration_scales_with_remaining_supply(vesting_manager):
    total = 1_000 * WAD
    assert vesting_manager.calculate_vesting_duration("DLP", total, total) == 30 * DAY
    assert vesting_manager.calculate_vesting_duration("DLP", 0, total) == DAY
    assert vesting_manager.calculate_vesting_duration("DLP", total // 2, total) == DAY + 29 * DAY // 2


def test_vesting_duration_requires_registered_asset(vesting_manager):
    with pytest.raises(AssetRegistrationError):
        vesting_manager.calculate_vesting_duration("NOPE", 1, 1)


# ==================== Metrics ====================

def test_vesting_metrics_are_recorded(clock):
    registry = CollectorRegistry()
    manager = VestingManager(time_provider=clock.now, metrics=DistributionMetrics(registry=registry))
    manager.register_asset("DLP", DAY, 2 * DAY, 100 * WAD)
    manager.create_grant("DLP", "0xuser", clock.now(), DAY, 0, 10 * WAD)
    manager.record_consumption("DLP", "0xuser", 4 * WAD, clock.now() + DAY)

    assert registry.get_sample_value("dispersion_grants_created_total", {"asset": "DLP"}) == 1.0
    assert registry.get_sample_value("dispersion_granted_amount_total", {"asset": "DLP"}) == 10.0
    assert registry.get_sample_value("dispersion_consumption_recorded_total", {"asset": "DLP"}) == 4.0

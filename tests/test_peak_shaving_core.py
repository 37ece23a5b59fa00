import itertools
import logging
import math

import pytest

from services.battery_specs import ZERO_BATTERY, BatterySpec, get_battery_by_id
from services.offset_cap import build_offset_display
from services.peak_shaving_core import (
    CYCLES_PER_YEAR,
    UsageDistribution,
    annual_battery_throughput,
    calculate_frd_peak_shaving,
    calculate_simple_peak_shaving,
    calculate_solar_battery_combined,
    calculate_solar_only_savings,
    resolve_distribution,
    split_usage,
)
from services.peak_shaving_formulas import BUCKETS
from services.rate_plans import TOU_RATE_PLAN, ULO_RATE_PLAN

SCENARIO_BATTERY = BatterySpec(
    id="scenario",
    brand="Test",
    model="10 kWh",
    nominal_kwh=13.5,
    usable_kwh=10.0,
    usable_percent=74.0,
    round_trip_efficiency=0.9,
    inverter_kw=5.0,
    price=9000.0,
)
SCENARIO_DISTRIBUTION = UsageDistribution(on_peak_percent=20.0, mid_peak_percent=30.0, off_peak_percent=50.0)

USAGES = [4_000.0, 14_000.0, 40_000.0]
PRODUCTIONS = [0.0, 3_000.0, 8_000.0, 20_000.0]
BATTERY_IDS = ["none", "growatt-10", "renon-32"]
PLANS = [TOU_RATE_PLAN, ULO_RATE_PLAN]


def _battery(battery_id: str) -> BatterySpec:
    return ZERO_BATTERY if battery_id == "none" else get_battery_by_id(battery_id)


GRID = list(itertools.product(USAGES, PRODUCTIONS, BATTERY_IDS, PLANS, [False, True]))


@pytest.mark.parametrize("usage,production,battery_id,plan,ai_mode", GRID)
def test_combined_energy_is_conserved_per_bucket(usage, production, battery_id, plan, ai_mode):
    result = calculate_solar_battery_combined(
        usage, production, _battery(battery_id), plan, offset_cap_fraction=0.9, ai_mode=ai_mode
    )
    breakdown = result.breakdown

    for bucket in BUCKETS:
        rebuilt = (
            breakdown.solar_allocation.get(bucket)
            + breakdown.battery_offsets.get(bucket)
            + breakdown.usage_after_battery.get(bucket)
        )
        assert rebuilt == pytest.approx(breakdown.original_usage.get(bucket), abs=1e-6)
    assert breakdown.solar_allocation.total <= usage * 0.5 + 1e-6


@pytest.mark.parametrize("usage,production,battery_id,plan,ai_mode", GRID)
def test_frd_percentages_close_at_one_hundred(usage, production, battery_id, plan, ai_mode):
    result = calculate_frd_peak_shaving(usage, production, _battery(battery_id), plan, ai_mode=ai_mode)

    assert result.offset_percentages.total == pytest.approx(100.0, abs=0.1)
    assert result.solar_to_day <= result.day_load + 1e-6
    assert result.batt_total_effective <= result.batt_total + 1e-6


@pytest.mark.parametrize("usage,production,plan,ai_mode", itertools.product(USAGES, PRODUCTIONS, PLANS, [False, True]))
def test_zero_battery_matches_solar_only(usage, production, plan, ai_mode):
    combined = calculate_solar_battery_combined(usage, production, ZERO_BATTERY, plan, offset_cap_fraction=0.9, ai_mode=ai_mode)
    solar_only = calculate_solar_only_savings(usage, production, plan)

    assert combined.battery_offsets.total == 0
    assert combined.batt_grid_charged == 0
    assert combined.solar_charged_battery_kwh == 0
    assert combined.battery_annual_cycles == 0
    assert combined.battery_on_top_savings == pytest.approx(0.0, abs=1e-9)
    assert combined.solar_only_savings == pytest.approx(solar_only.annual_savings)
    assert combined.combined_annual_savings == pytest.approx(solar_only.annual_savings)
    assert combined.breakdown.solar_allocation == solar_only.solar_allocation


def test_engine_functions_are_idempotent():
    battery = get_battery_by_id("renon-16")
    calls = [
        lambda: calculate_simple_peak_shaving(14_000, battery, ULO_RATE_PLAN, solar_production_kwh=8_000),
        lambda: calculate_solar_only_savings(14_000, 8_000, TOU_RATE_PLAN),
        lambda: calculate_solar_battery_combined(14_000, 8_000, battery, ULO_RATE_PLAN, offset_cap_fraction=0.9, ai_mode=True),
        lambda: calculate_frd_peak_shaving(14_000, 8_000, battery, ULO_RATE_PLAN, ai_mode=True),
    ]
    for call in calls:
        assert call() == call()


def test_concrete_tou_scenario_respects_solar_and_offset_caps():
    frd = calculate_frd_peak_shaving(14_000, 8_000, SCENARIO_BATTERY, TOU_RATE_PLAN, SCENARIO_DISTRIBUTION, ai_mode=False)
    percentages = frd.offset_percentages

    assert percentages.solar_direct <= 50.0 + 1e-6
    assert percentages.ulo_charged_battery == 0
    assert percentages.solar_direct + percentages.solar_charged_battery <= 90.0

    display = build_offset_display(percentages, 0.9)
    assert display.solar_direct + display.solar_charged_battery <= 90.0 + 1e-6

    combined = calculate_solar_battery_combined(
        14_000, 8_000, SCENARIO_BATTERY, TOU_RATE_PLAN, SCENARIO_DISTRIBUTION, offset_cap_fraction=0.9
    )
    assert combined.solar_direct_kwh + combined.solar_charged_battery_kwh <= 0.9 * 14_000 + 1e-6
    assert combined.batt_grid_charged == 0
    assert combined.combined_annual_savings > combined.solar_only_savings > 0


def test_zero_usage_returns_all_zero_results():
    battery = get_battery_by_id("renon-16")

    frd = calculate_frd_peak_shaving(0, 8_000, battery, ULO_RATE_PLAN, ai_mode=True)
    assert frd.offset_percentages.total == 0
    assert frd.annual_savings == 0
    assert frd.grid_kwh_by_bucket.total == 0

    combined = calculate_solar_battery_combined(0, 8_000, battery, ULO_RATE_PLAN, offset_cap_fraction=0.9)
    assert combined.total_usage_kwh == 0
    assert combined.annual_savings == 0
    assert combined.savings_percent == 0
    assert combined.solar_direct_kwh == 0
    assert combined.leftover_energy.total_kwh == 0

    simple = calculate_simple_peak_shaving(0, battery, TOU_RATE_PLAN)
    assert simple.annual_savings == 0
    assert simple.savings_percent == 0


def test_degenerate_numbers_are_coerced_to_zero():
    result = calculate_solar_battery_combined(-500, float("nan"), ZERO_BATTERY, TOU_RATE_PLAN, offset_cap_fraction=float("inf"))
    assert result.total_usage_kwh == 0
    assert result.offset_cap_fraction is None
    assert not math.isnan(result.annual_savings)


def test_throughput_is_bounded_by_inverter_power():
    renon = get_battery_by_id("renon-32")
    assert annual_battery_throughput(renon) == pytest.approx(28.8 * CYCLES_PER_YEAR)

    weak_inverter = BatterySpec(
        id="weak",
        brand="Test",
        model="weak",
        nominal_kwh=20.0,
        usable_kwh=18.0,
        usable_percent=90.0,
        round_trip_efficiency=0.9,
        inverter_kw=1.0,
        price=1.0,
    )
    assert annual_battery_throughput(weak_inverter) == pytest.approx(12.0 * CYCLES_PER_YEAR)
    assert annual_battery_throughput(ZERO_BATTERY) == 0


def test_simple_peak_shaving_shifts_expensive_usage():
    battery = get_battery_by_id("renon-16")
    result = calculate_simple_peak_shaving(14_000, battery, ULO_RATE_PLAN)

    assert result.battery_offsets.on_peak == pytest.approx(result.usage_by_period.on_peak)
    assert result.battery_offsets.ultra_low == 0
    assert result.annual_savings > 0
    assert result.monthly_savings == pytest.approx(result.annual_savings / 12)
    assert result.new_cost.ultra_low > result.original_cost.ultra_low
    assert 0 < result.leftover_energy.total_kwh <= 14_000

    no_battery = calculate_simple_peak_shaving(14_000, ZERO_BATTERY, ULO_RATE_PLAN)
    assert no_battery.annual_savings == pytest.approx(0.0)
    assert no_battery.effective_cycles == 0


def test_ulo_limits_keep_grid_purchases_above_minimum():
    renon = get_battery_by_id("renon-32")
    result = calculate_solar_battery_combined(10_000, 20_000, renon, ULO_RATE_PLAN, ai_mode=True)

    assert result.breakdown.usage_after_battery.total >= 10_000 * 0.10 - 1e-6
    assert result.solar_direct_kwh + result.battery_offsets.total <= 10_000 * 0.85 + 1e-6


def test_ai_mode_charges_from_grid_in_cheapest_bucket():
    battery = get_battery_by_id("renon-16")
    result = calculate_solar_battery_combined(20_000, 0, battery, ULO_RATE_PLAN, ai_mode=True)

    assert result.batt_grid_charged > 0
    assert result.breakdown.grid_charge_bucket == "ultra_low"
    assert result.grid_kwh_by_bucket.ultra_low == pytest.approx(
        result.breakdown.usage_after_battery.ultra_low + result.batt_grid_charged
    )


def test_frd_edge_case_labels():
    battery = get_battery_by_id("growatt-10")
    assert calculate_frd_peak_shaving(40_000, 5_000, battery, TOU_RATE_PLAN).edge_case == "high_usage"
    assert calculate_frd_peak_shaving(5_000, 10_000, battery, TOU_RATE_PLAN).edge_case == "high_capacity"


def test_split_usage_and_distribution_warning(caplog):
    dist = UsageDistribution(on_peak_percent=20.0, mid_peak_percent=20.0, off_peak_percent=20.0)
    with caplog.at_level(logging.WARNING):
        assert resolve_distribution(TOU_RATE_PLAN, dist) is dist
    assert "60.0%" in caplog.text

    split = split_usage(1_000, dist)
    assert split.total == pytest.approx(600)
    assert split.ultra_low == 0


def test_frd_day_load_follows_short_distribution():
    dist = UsageDistribution(on_peak_percent=20.0, mid_peak_percent=20.0, off_peak_percent=20.0)
    result = calculate_frd_peak_shaving(1_000, 5_000, ZERO_BATTERY, TOU_RATE_PLAN, dist)

    assert result.day_load == pytest.approx(300)
    assert result.night_load == pytest.approx(300)
    assert result.solar_to_day <= result.day_load + 1e-6
    assert result.offset_percentages.solar_direct <= 50.0 + 1e-6
    assert result.offset_percentages.total == pytest.approx(100.0, abs=0.1)


def test_tou_bills_ultra_low_usage_at_off_peak():
    dist = UsageDistribution(on_peak_percent=20.0, mid_peak_percent=30.0, off_peak_percent=0.0, ultra_low_percent=50.0)
    result = calculate_solar_battery_combined(10_000, 0, ZERO_BATTERY, TOU_RATE_PLAN, dist)

    assert result.usage_by_period.ultra_low == pytest.approx(5_000)
    assert result.original_cost.ultra_low == pytest.approx(5_000 * 0.098)
    assert result.baseline_annual_bill == pytest.approx(2_000 * 0.203 + 3_000 * 0.157 + 5_000 * 0.098)
    assert result.breakdown.grid_charge_bucket == "off_peak"

    frd = calculate_frd_peak_shaving(10_000, 0, ZERO_BATTERY, TOU_RATE_PLAN, dist)
    assert frd.baseline_cost == pytest.approx(result.baseline_annual_bill)


def test_ulo_solar_reaches_overnight_usage_once_daytime_is_covered():
    dist = UsageDistribution(on_peak_percent=5.0, mid_peak_percent=5.0, off_peak_percent=5.0, ultra_low_percent=85.0)
    ulo = calculate_solar_only_savings(10_000, 10_000, ULO_RATE_PLAN, dist)

    assert ulo.solar_allocation.mid_peak == pytest.approx(500)
    assert ulo.solar_allocation.on_peak == pytest.approx(500)
    assert ulo.solar_allocation.off_peak == pytest.approx(500)
    assert ulo.solar_allocation.ultra_low == pytest.approx(3_500)
    assert ulo.solar_allocation.total == pytest.approx(ulo.solar_cap_kwh)

    tou = calculate_solar_only_savings(10_000, 10_000, TOU_RATE_PLAN, dist)
    assert tou.solar_allocation.ultra_low == 0

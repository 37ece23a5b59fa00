import pytest

from services.battery_specs import get_battery_by_id
from services.plan_results import EstimatorInputs, build_combined_plan_result, build_plan_results
from services.rate_plans import TOU_RATE_PLAN
from services.peak_shaving_core import DEFAULT_TOU_DISTRIBUTION
from utils.economics import calculate_solar_rebate, calculate_system_cost


def _inputs(**overrides) -> EstimatorInputs:
    values = dict(
        annual_usage_kwh=14_000.0,
        selected_battery_ids=("renon-16",),
        solar_production_kwh=8_000.0,
        system_size_kw=7.0,
        monthly_bill=200.0,
    )
    values.update(overrides)
    return EstimatorInputs(**values)


def test_build_plan_results_covers_both_plans():
    results = build_plan_results(_inputs())

    assert set(results) == {"tou", "ulo"}
    for result in results.values():
        assert 0 < result.annual <= 200.0 * 12
        assert result.monthly == round(result.annual / 12)
        assert result.solar_only_annual + result.battery_annual == pytest.approx(result.annual)
        assert result.post_annual_bill == pytest.approx(2400.0 - result.annual)
        assert result.offset_display.total_energy_offset <= result.offset_cap.cap_fraction * 100 + 1e-6


def test_net_cost_combines_solar_and_battery_after_rebates():
    result = build_plan_results(_inputs())["ulo"]

    solar_net = calculate_system_cost(7.0) - calculate_solar_rebate(7.0)
    assert result.solar_net_cost == pytest.approx(solar_net)
    assert result.battery_rebate_applied == pytest.approx(4800.0)
    assert result.battery_net_cost == pytest.approx(3200.0)
    assert result.net_cost == pytest.approx(solar_net + 3200.0)

    quoted = build_plan_results(_inputs(solar_net_cost_override=15_000.0))["ulo"]
    assert quoted.net_cost == pytest.approx(18_200.0)


def test_reported_bill_bounds_annual_savings():
    result = build_plan_results(_inputs(monthly_bill=20.0))["ulo"]

    assert result.annual == pytest.approx(240.0)
    assert result.post_annual_bill == pytest.approx(0.0)


def test_missing_bill_falls_back_to_engine_baseline():
    result = build_plan_results(_inputs(monthly_bill=0.0))["tou"]

    assert result.annual <= result.baseline_annual_bill
    assert result.post_annual_bill == pytest.approx(result.baseline_annual_bill - result.annual)


def test_alberta_disables_grid_charging():
    ai_off = build_plan_results(_inputs(ai_mode=False))
    alberta = build_plan_results(_inputs(ai_mode=True, is_alberta=True))

    assert alberta == ai_off
    assert alberta["ulo"].frd.batt_grid_charged == 0

    ontario = build_plan_results(_inputs(ai_mode=True, solar_production_kwh=0.0, system_size_kw=0.0))
    assert ontario["ulo"].frd.batt_grid_charged > 0


def test_empty_selection_is_solar_only():
    result = build_plan_results(_inputs(selected_battery_ids=()))["tou"]

    assert result.battery.id == "none"
    assert result.battery_annual == 0
    assert result.battery_net_cost == 0
    assert result.battery_only.annual_savings == 0


def test_explicit_batteries_override_catalog_lookup():
    batteries = [get_battery_by_id("growatt-10"), get_battery_by_id("growatt-10")]
    result = build_combined_plan_result(_inputs(), TOU_RATE_PLAN, DEFAULT_TOU_DISTRIBUTION, batteries=batteries)

    assert result.battery.usable_kwh == pytest.approx(18.0)
    assert result.battery_gross_cost == pytest.approx(20_000.0)
    assert result.battery_rebate_applied == pytest.approx(5_000.0)

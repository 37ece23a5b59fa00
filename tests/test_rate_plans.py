from datetime import datetime

import pandas as pd
import pytest

from services.rate_plans import (
    CustomRates,
    PERIOD_MID_PEAK,
    PERIOD_OFF_PEAK,
    PERIOD_ON_PEAK,
    PERIOD_ULTRA_LOW,
    TOU_RATE_PLAN,
    ULO_RATE_PLAN,
    calculate_cost_with_rate_plan,
    get_cheapest_charging_hours,
    get_custom_tou_rate_plan,
    get_custom_ulo_rate_plan,
    get_most_expensive_discharge_hours,
    get_rate_for_datetime,
    get_rate_plan,
    is_weekend_or_holiday,
    rate_plan_to_dict,
    resolve_rates,
    summarize_cost_by_period,
)

# 2025-11-05 is a Wednesday, 2025-11-08 a Saturday.
WEDNESDAY = datetime(2025, 11, 5)
SATURDAY = datetime(2025, 11, 8)


def test_ulo_weekday_periods_follow_published_schedule():
    assert get_rate_for_datetime(ULO_RATE_PLAN, WEDNESDAY.replace(hour=2)) == (3.9, PERIOD_ULTRA_LOW)
    assert get_rate_for_datetime(ULO_RATE_PLAN, WEDNESDAY.replace(hour=23)) == (3.9, PERIOD_ULTRA_LOW)
    assert get_rate_for_datetime(ULO_RATE_PLAN, WEDNESDAY.replace(hour=10)) == (15.7, PERIOD_MID_PEAK)
    assert get_rate_for_datetime(ULO_RATE_PLAN, WEDNESDAY.replace(hour=17)) == (39.1, PERIOD_ON_PEAK)
    assert get_rate_for_datetime(ULO_RATE_PLAN, WEDNESDAY.replace(hour=22)) == (15.7, PERIOD_MID_PEAK)


def test_tou_has_two_on_peak_windows():
    assert get_rate_for_datetime(TOU_RATE_PLAN, WEDNESDAY.replace(hour=8))[1] == PERIOD_ON_PEAK
    assert get_rate_for_datetime(TOU_RATE_PLAN, WEDNESDAY.replace(hour=18))[1] == PERIOD_ON_PEAK
    assert get_rate_for_datetime(TOU_RATE_PLAN, WEDNESDAY.replace(hour=12))[1] == PERIOD_MID_PEAK
    assert get_rate_for_datetime(TOU_RATE_PLAN, WEDNESDAY.replace(hour=21))[1] == PERIOD_OFF_PEAK


def test_weekends_and_holidays_use_weekend_rate():
    assert is_weekend_or_holiday(SATURDAY)
    assert is_weekend_or_holiday(datetime(2025, 7, 1, 17))
    assert not is_weekend_or_holiday(WEDNESDAY)

    assert get_rate_for_datetime(ULO_RATE_PLAN, SATURDAY.replace(hour=17)) == (9.8, PERIOD_OFF_PEAK)
    # Canada Day falls on a Tuesday in 2025.
    assert get_rate_for_datetime(ULO_RATE_PLAN, datetime(2025, 7, 1, 17)) == (9.8, PERIOD_OFF_PEAK)


def test_resolve_rates_converts_to_dollars_and_picks_cheapest_bucket():
    ulo = resolve_rates(ULO_RATE_PLAN)
    assert ulo.has_ultra_low
    assert ulo.ultra_low == pytest.approx(0.039)
    assert ulo.off_peak == pytest.approx(0.098)  # weekend rate stands in for off-peak
    assert ulo.on_peak == pytest.approx(0.391)
    assert ulo.cheapest_bucket == "ultra_low"
    assert ulo.cheapest_rate == pytest.approx(0.039)

    tou = resolve_rates(TOU_RATE_PLAN)
    assert not tou.has_ultra_low
    assert tou.ultra_low == pytest.approx(tou.off_peak)  # no ultra-low tier, billed at off-peak
    assert tou.cheapest_bucket == "off_peak"
    assert tou.mid_peak == pytest.approx(0.157)


def test_custom_rate_plans_carry_overrides():
    rates = CustomRates(ultra_low=2.8, on_peak_ulo=28.6, on_peak_tou=18.2, weekend_off_peak=7.6)
    ulo = get_custom_ulo_rate_plan(rates)
    tou = get_custom_tou_rate_plan(rates)

    assert ulo.rate_for_period(PERIOD_ULTRA_LOW) == 2.8
    assert ulo.rate_for_period(PERIOD_ON_PEAK) == 28.6
    assert ulo.weekend_rate == 7.6
    assert tou.rate_for_period(PERIOD_ON_PEAK) == 18.2
    assert resolve_rates(ulo).cheapest_rate == pytest.approx(0.028)


def test_get_rate_plan_rejects_unknown_id():
    assert get_rate_plan("ulo") is ULO_RATE_PLAN
    with pytest.raises(KeyError):
        get_rate_plan("flat")


def test_cheapest_and_most_expensive_hours_for_ulo():
    cheapest = get_cheapest_charging_hours(ULO_RATE_PLAN, hours_needed=8)
    assert len(cheapest) == 8
    assert {period for _, _, period in cheapest} == {PERIOD_ULTRA_LOW}
    assert {hour for hour, _, _ in cheapest} == {23, 0, 1, 2, 3, 4, 5, 6}

    priciest = get_most_expensive_discharge_hours(ULO_RATE_PLAN, hours_needed=5)
    assert sorted(hour for hour, _, _ in priciest) == [16, 17, 18, 19, 20]


def test_calculate_cost_with_rate_plan_prices_each_row():
    usage = pd.DataFrame(
        {
            "timestamp": ["2025-11-05 02:00", "2025-11-05 17:00", "2025-11-08 17:00"],
            "kwh": [10.0, 2.0, 5.0],
        }
    )
    priced = calculate_cost_with_rate_plan(usage, ULO_RATE_PLAN)

    assert list(priced["period"]) == [PERIOD_ULTRA_LOW, PERIOD_ON_PEAK, PERIOD_OFF_PEAK]
    assert priced["cost"].sum() == pytest.approx(10 * 0.039 + 2 * 0.391 + 5 * 0.098)

    summary = summarize_cost_by_period(priced)
    assert list(summary["period"]) == [PERIOD_ULTRA_LOW, PERIOD_OFF_PEAK, PERIOD_MID_PEAK, PERIOD_ON_PEAK]
    mid = summary.loc[summary["period"] == PERIOD_MID_PEAK].iloc[0]
    assert mid["kwh"] == 0.0


def test_calculate_cost_with_rate_plan_handles_empty_frame():
    priced = calculate_cost_with_rate_plan(pd.DataFrame(columns=["timestamp", "kwh"]), TOU_RATE_PLAN)
    assert priced.empty
    assert {"rate_cents", "period", "cost"}.issubset(priced.columns)


def test_rate_plan_to_dict_uses_camel_case():
    payload = rate_plan_to_dict(ULO_RATE_PLAN)
    assert payload["id"] == "ulo"
    assert payload["weekendRate"] == 9.8
    assert payload["periods"][0]["startHour"] == 23

import logging
from datetime import datetime

import pandas as pd
import pytest

from services.battery_dispatch import (
    DAILY_COLUMNS,
    analyze_annual_dispatch,
    compare_battery_options,
    optimize_daily_dispatch,
)
from services.battery_specs import ZERO_BATTERY, BatterySpec
from services.rate_plans import PERIOD_ON_PEAK, PERIOD_ULTRA_LOW, TOU_RATE_PLAN, ULO_RATE_PLAN

BATTERY = BatterySpec(
    id="dispatch-10",
    brand="Test",
    model="10 kWh",
    nominal_kwh=10.0,
    usable_kwh=10.0,
    usable_percent=100.0,
    round_trip_efficiency=0.9,
    inverter_kw=5.0,
    price=4000.0,
)
PRICEY_BATTERY = BatterySpec(
    id="dispatch-20",
    brand="Test",
    model="20 kWh",
    nominal_kwh=20.0,
    usable_kwh=20.0,
    usable_percent=100.0,
    round_trip_efficiency=0.9,
    inverter_kw=5.0,
    price=30000.0,
)


def _flat_usage(start: datetime, hours: int, kwh: float = 1.0) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "timestamp": pd.date_range(start, periods=hours, freq=pd.Timedelta(hours=1)),
            "kwh": kwh,
        }
    )


@pytest.fixture(scope="module")
def year_of_usage() -> pd.DataFrame:
    return _flat_usage(datetime(2025, 1, 1), 8760)


def test_weekday_dispatch_moves_on_peak_usage_to_off_peak():
    # Wednesday: TOU has six on-peak hours (7-11 and 17-19).
    dispatch = optimize_daily_dispatch(_flat_usage(datetime(2025, 11, 5), 24), BATTERY, TOU_RATE_PLAN)
    hourly = dispatch.hourly

    assert dispatch.kwh_shifted == pytest.approx(6.0)
    assert dispatch.kwh_charged == pytest.approx(6.0 / 0.9)
    assert set(hourly.loc[hourly["discharge_kwh"] > 0, "period"]) == {PERIOD_ON_PEAK}
    assert hourly.loc[hourly["period"] == PERIOD_ON_PEAK, "grid_kwh"].sum() == pytest.approx(0.0)
    assert dispatch.daily_savings == pytest.approx(6.0 * 0.203 - 6.0 / 0.9 * 0.098)
    assert dispatch.original_cost - dispatch.optimized_cost == pytest.approx(dispatch.daily_savings)
    assert hourly["soc_kwh"].min() >= 0
    assert hourly["soc_kwh"].max() <= BATTERY.usable_kwh + 1e-9


def test_ulo_charges_overnight_and_discharges_evening_peak():
    dispatch = optimize_daily_dispatch(_flat_usage(datetime(2025, 11, 5), 24), BATTERY, ULO_RATE_PLAN)
    hourly = dispatch.hourly

    assert set(hourly.loc[hourly["charge_kwh"] > 0, "period"]) == {PERIOD_ULTRA_LOW}
    assert sorted(hourly.loc[hourly["discharge_kwh"] > 0, "timestamp"].dt.hour) == [16, 17, 18, 19, 20]
    assert dispatch.daily_savings == pytest.approx(5.0 * 0.391 - 5.0 / 0.9 * 0.039)


def test_inverter_rating_bounds_each_hour():
    dispatch = optimize_daily_dispatch(
        _flat_usage(datetime(2025, 11, 5), 24, kwh=5.0),
        BatterySpec(
            id="slow",
            brand="Test",
            model="slow",
            nominal_kwh=10.0,
            usable_kwh=10.0,
            usable_percent=100.0,
            round_trip_efficiency=0.9,
            inverter_kw=2.0,
            price=1.0,
        ),
        TOU_RATE_PLAN,
    )

    assert dispatch.kwh_shifted == pytest.approx(10.0)
    assert dispatch.hourly["discharge_kwh"].max() <= 2.0 + 1e-9
    assert dispatch.hourly["charge_kwh"].max() <= 2.0 + 1e-9


def test_weekends_and_empty_batteries_idle():
    saturday = optimize_daily_dispatch(_flat_usage(datetime(2025, 11, 8), 24), BATTERY, ULO_RATE_PLAN)
    assert saturday.kwh_shifted == 0
    assert saturday.hourly["charge_kwh"].sum() == 0
    assert saturday.daily_savings == pytest.approx(0.0)

    no_battery = optimize_daily_dispatch(_flat_usage(datetime(2025, 11, 5), 24), ZERO_BATTERY, TOU_RATE_PLAN)
    assert no_battery.kwh_shifted == 0
    assert no_battery.optimized_cost == pytest.approx(no_battery.original_cost)

    with pytest.raises(ValueError):
        optimize_daily_dispatch(pd.DataFrame(columns=["timestamp", "kwh"]), BATTERY, TOU_RATE_PLAN)


def test_annual_dispatch_counts_active_days(year_of_usage):
    analysis = analyze_annual_dispatch(year_of_usage, BATTERY, TOU_RATE_PLAN)

    assert list(analysis.daily.columns) == DAILY_COLUMNS
    assert len(analysis.daily) == 365
    # 261 weekdays in 2025, ten of them statutory holidays.
    assert analysis.cycles_per_year == 251
    assert analysis.total_kwh_shifted == pytest.approx(251 * 6.0)
    assert analysis.total_savings == pytest.approx(analysis.original_annual_cost - analysis.optimized_annual_cost)
    assert analysis.average_daily_savings == pytest.approx(analysis.total_savings / 365)


def test_annual_dispatch_without_usage_warns(caplog):
    with caplog.at_level(logging.WARNING):
        analysis = analyze_annual_dispatch(pd.DataFrame(columns=["timestamp", "kwh"]), BATTERY, TOU_RATE_PLAN)
    assert analysis.total_savings == 0
    assert analysis.cycles_per_year == 0
    assert "no usage rows" in caplog.text


def test_compare_battery_options_flags_fastest_payback(year_of_usage):
    df = compare_battery_options(year_of_usage, [BATTERY, PRICEY_BATTERY], TOU_RATE_PLAN)

    assert list(df["battery_id"]) == ["dispatch-10", "dispatch-20"]
    assert df["is_best"].sum() == 1
    best = df.loc[df["is_best"]].iloc[0]
    assert best["battery_id"] == "dispatch-10"
    assert best["net_cost"] == pytest.approx(1000.0)
    assert best["savings_per_dollar"] > 1
    # On-peak usage, not capacity, limits what the larger battery can shift.
    assert df["annual_savings"].iloc[1] == pytest.approx(df["annual_savings"].iloc[0])
    assert pd.isna(df["payback_years"].iloc[1])

import logging

import pandas as pd
import pytest

from services.battery_specs import BATTERY_SPECS
from services.plan_results import EstimatorInputs
from utils.sweeps import generate_values, run_offset_cap_grid, sweep_battery_options

INPUTS = EstimatorInputs(
    annual_usage_kwh=14_000.0,
    solar_production_kwh=8_000.0,
    system_size_kw=7.0,
    monthly_bill=200.0,
)


def test_generate_values():
    assert generate_values(0.0, 1.0, 5) == [0.0, 0.25, 0.5, 0.75, 1.0]
    assert generate_values(2.0, 4.0, 1) == [3.0]
    assert generate_values(5.0, 5.0, 3) == [5.0]


def test_sweep_flags_fastest_payback():
    df = sweep_battery_options(INPUTS)

    assert len(df) == len(BATTERY_SPECS)
    assert df["is_best"].sum() == 1
    best = df.loc[df["is_best"]].iloc[0]
    assert best["payback_years"] == df["payback_years"].min()


def test_sweep_supports_other_kpis_and_combinations():
    df = sweep_battery_options(
        INPUTS,
        options=[("renon-16",), ("renon-16", "growatt-10"), ()],
        plan_id="tou",
        ranking_kpi="annual_savings",
    )

    assert list(df["option_id"]) == ["renon-16", "renon-16+growatt-10", "none"]
    assert df.loc[df["option_id"] == "none", "battery_annual"].iloc[0] == 0
    best = df.loc[df["is_best"]].iloc[0]
    assert best["annual_savings"] == df["annual_savings"].max()


def test_sweep_marks_unknown_batteries():
    df = sweep_battery_options(INPUTS, options=[("bogus",), ("growatt-10",)])

    bogus = df.loc[df["option_id"] == "bogus"].iloc[0]
    assert bogus["status"] == "unknown_battery"
    assert not bogus["is_best"]
    assert df.loc[df["option_id"] == "growatt-10", "is_best"].iloc[0]


def test_sweep_falls_back_on_unknown_kpi(caplog):
    with caplog.at_level(logging.WARNING):
        df = sweep_battery_options(INPUTS, options=[("renon-16",)], ranking_kpi="irr")
    assert "irr" in caplog.text
    assert df["is_best"].iloc[0]


def test_empty_sweep_returns_empty_frame(caplog):
    with caplog.at_level(logging.WARNING):
        df = sweep_battery_options(INPUTS, options=[])
    assert isinstance(df, pd.DataFrame)
    assert df.empty


def test_sweep_rejects_unknown_plan():
    with pytest.raises(ValueError):
        sweep_battery_options(INPUTS, plan_id="flat")


def test_offset_cap_grid_is_monotonic_per_roof():
    grid = run_offset_cap_grid(10_000, steps=31, roof_pitches=(None, 40), roof_azimuths=(180.0,))

    assert len(grid) == 31 * 2
    for _, group in grid.groupby(grid["roof_pitch"].astype(str)):
        caps = group.sort_values("production_to_load_ratio")["cap_fraction"].tolist()
        assert all(b >= a for a, b in zip(caps, caps[1:]))

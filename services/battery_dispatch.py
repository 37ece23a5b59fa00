"""Hour-by-hour battery dispatch against a time-of-use rate plan.

The annual models in :mod:`services.peak_shaving_core` work on period
totals. This module works on interval data instead (for example a utility
usage export): each day the battery buys energy in the plan's cheapest
period and spends it on that day's on-peak hours.

A day is treated as one cycle. Energy bought in any cheap hour of the day
is what the battery carries into the on-peak hours, so overnight charging
that lands after the evening peak on the clock still counts.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd

from services.battery_specs import BatterySpec, calculate_net_price
from services.rate_plans import (
    ONTARIO_HOLIDAYS_2025,
    PERIOD_OFF_PEAK,
    PERIOD_ON_PEAK,
    PERIOD_ULTRA_LOW,
    RatePlan,
    calculate_cost_with_rate_plan,
    get_cheapest_charging_hours,
    get_most_expensive_discharge_hours,
)
from utils.economics import DEFAULT_PROJECTION_YEARS, DEFAULT_RATE_ESCALATION, calculate_simple_multi_year

HOURS_PER_DAY = 24
DAILY_COLUMNS = ["day", "original_cost", "optimized_cost", "daily_savings", "kwh_shifted", "kwh_charged"]


@dataclass
class DailyDispatch:
    """One day of dispatch.

    ``hourly`` keeps the priced usage columns (``timestamp``, ``kwh``,
    ``rate_cents``, ``period``, ``cost``) and adds ``charge_kwh``,
    ``discharge_kwh``, ``grid_kwh``, ``soc_kwh`` and ``optimized_cost``.
    """

    day: date
    battery: BatterySpec
    plan_id: str
    hourly: pd.DataFrame
    original_cost: float
    optimized_cost: float
    daily_savings: float
    kwh_shifted: float
    kwh_charged: float


@dataclass
class AnnualDispatchAnalysis:
    battery: BatterySpec
    plan_id: str
    daily: pd.DataFrame  # one row per day, DAILY_COLUMNS
    total_savings: float
    average_daily_savings: float
    total_kwh_shifted: float
    cycles_per_year: int  # days the battery actually discharged
    original_annual_cost: float
    optimized_annual_cost: float


def charge_period(plan: RatePlan) -> str:
    return PERIOD_ULTRA_LOW if plan.is_ulo else PERIOD_OFF_PEAK


def _hour_rank(ranked: Sequence[Tuple[int, float, str]]) -> Dict[int, int]:
    return {hour: position for position, (hour, _, _) in enumerate(ranked)}


def _clean_usage(usage: pd.DataFrame) -> pd.DataFrame:
    cleaned = usage.loc[:, ["timestamp", "kwh"]].copy()
    cleaned["timestamp"] = pd.to_datetime(cleaned["timestamp"])
    kwh = pd.to_numeric(cleaned["kwh"], errors="coerce").replace([np.inf, -np.inf], np.nan)
    cleaned["kwh"] = kwh.fillna(0.0).clip(lower=0.0)
    return cleaned.sort_values("timestamp", kind="stable").reset_index(drop=True)


def optimize_daily_dispatch(
    usage: pd.DataFrame,
    battery: BatterySpec,
    plan: RatePlan,
    holidays: Sequence[str] = ONTARIO_HOLIDAYS_2025,
) -> DailyDispatch:
    """Charge in the cheapest period and discharge into on-peak usage for one day.

    The battery targets the smaller of its usable capacity and the day's
    on-peak usage. Charging buys ``target / round_trip_efficiency`` kWh,
    cheapest hours first; discharging covers the priciest on-peak hours
    first. Every hour is bounded by the inverter rating (when known), the
    stored energy and that hour's own usage. Weekends and holidays have no
    on-peak hours, so the battery idles.

    Raises ``ValueError`` when ``usage`` has no rows.
    """

    if usage.empty:
        raise ValueError("Daily dispatch needs at least one usage row.")

    priced = calculate_cost_with_rate_plan(_clean_usage(usage), plan, holidays)
    day = priced["timestamp"].iloc[0].date()
    hours = priced["timestamp"].dt.hour
    priced["charge_kwh"] = 0.0
    priced["discharge_kwh"] = 0.0

    usable = max(0.0, float(battery.usable_kwh or 0.0))
    on_peak = priced["period"] == PERIOD_ON_PEAK
    target_discharge = min(usable, float(priced.loc[on_peak, "kwh"].sum()))

    stored = 0.0
    charged = 0.0
    discharged = 0.0
    if target_discharge > 0:
        efficiency = battery.round_trip_efficiency if battery.round_trip_efficiency > 0 else 1.0
        inverter_kwh = battery.inverter_kw if battery.inverter_kw > 0 else math.inf
        target_charge = target_discharge / efficiency

        charge_rank = _hour_rank(get_cheapest_charging_hours(plan, HOURS_PER_DAY, day))
        charge_rows = priced.index[priced["period"] == charge_period(plan)]
        for idx in sorted(charge_rows, key=lambda i: charge_rank.get(hours[i], HOURS_PER_DAY)):
            amount = min(target_charge - charged, inverter_kwh, (usable - stored) / efficiency)
            if amount <= 0:
                break
            priced.at[idx, "charge_kwh"] = amount
            charged += amount
            stored += amount * efficiency

        discharge_rank = _hour_rank(get_most_expensive_discharge_hours(plan, HOURS_PER_DAY, day))
        available = stored
        for idx in sorted(priced.index[on_peak], key=lambda i: discharge_rank.get(hours[i], HOURS_PER_DAY)):
            if available <= 0 or discharged >= target_discharge:
                break
            amount = min(target_discharge - discharged, inverter_kwh, available, priced.at[idx, "kwh"])
            if amount <= 0:
                continue
            priced.at[idx, "discharge_kwh"] = amount
            discharged += amount
            available -= amount

    priced["grid_kwh"] = (priced["kwh"] + priced["charge_kwh"] - priced["discharge_kwh"]).clip(lower=0.0)
    priced["soc_kwh"] = (stored - priced["discharge_kwh"].cumsum()).clip(lower=0.0)
    priced["optimized_cost"] = priced["grid_kwh"] * priced["rate_cents"] / 100.0

    original_cost = float(priced["cost"].sum())
    optimized_cost = float(priced["optimized_cost"].sum())
    return DailyDispatch(
        day=day,
        battery=battery,
        plan_id=plan.id,
        hourly=priced,
        original_cost=original_cost,
        optimized_cost=optimized_cost,
        daily_savings=original_cost - optimized_cost,
        kwh_shifted=discharged,
        kwh_charged=charged,
    )


def analyze_annual_dispatch(
    usage: pd.DataFrame,
    battery: BatterySpec,
    plan: RatePlan,
    holidays: Sequence[str] = ONTARIO_HOLIDAYS_2025,
) -> AnnualDispatchAnalysis:
    """Run :func:`optimize_daily_dispatch` for every calendar day in ``usage``."""

    if usage.empty:
        logging.getLogger(__name__).warning("Annual dispatch received no usage rows; reporting zero savings.")
        return AnnualDispatchAnalysis(
            battery=battery,
            plan_id=plan.id,
            daily=pd.DataFrame(columns=DAILY_COLUMNS),
            total_savings=0.0,
            average_daily_savings=0.0,
            total_kwh_shifted=0.0,
            cycles_per_year=0,
            original_annual_cost=0.0,
            optimized_annual_cost=0.0,
        )

    cleaned = _clean_usage(usage)
    rows: List[Dict[str, object]] = []
    for _, day_usage in cleaned.groupby(cleaned["timestamp"].dt.date, sort=True):
        dispatch = optimize_daily_dispatch(day_usage, battery, plan, holidays)
        rows.append(
            {
                "day": dispatch.day,
                "original_cost": dispatch.original_cost,
                "optimized_cost": dispatch.optimized_cost,
                "daily_savings": dispatch.daily_savings,
                "kwh_shifted": dispatch.kwh_shifted,
                "kwh_charged": dispatch.kwh_charged,
            }
        )

    daily = pd.DataFrame(rows, columns=DAILY_COLUMNS)
    total_savings = float(daily["daily_savings"].sum())
    return AnnualDispatchAnalysis(
        battery=battery,
        plan_id=plan.id,
        daily=daily,
        total_savings=total_savings,
        average_daily_savings=total_savings / len(daily),
        total_kwh_shifted=float(daily["kwh_shifted"].sum()),
        cycles_per_year=int((daily["kwh_shifted"] > 0).sum()),
        original_annual_cost=float(daily["original_cost"].sum()),
        optimized_annual_cost=float(daily["optimized_cost"].sum()),
    )


def compare_battery_options(
    usage: pd.DataFrame,
    batteries: Sequence[BatterySpec],
    plan: RatePlan,
    rate_escalation: float = DEFAULT_RATE_ESCALATION,
    years: int = DEFAULT_PROJECTION_YEARS,
    holidays: Sequence[str] = ONTARIO_HOLIDAYS_2025,
) -> pd.DataFrame:
    """Dispatch each battery over ``usage`` and rank them by payback.

    ``usage`` is taken as one year of interval data. Each row carries the
    first-year dispatch figures, the projection after the battery rebate and
    ``savings_per_dollar`` (lifetime savings over net cost, NaN for a free
    battery). The fastest payback is flagged with ``is_best``; batteries
    that never pay back have a NaN payback and are never flagged.
    """

    rows: List[Dict[str, object]] = []
    for battery in batteries:
        analysis = analyze_annual_dispatch(usage, battery, plan, holidays)
        net_cost = calculate_net_price(battery.price, battery.nominal_kwh)
        projection = calculate_simple_multi_year(analysis.total_savings, net_cost, rate_escalation, years)
        payback = projection.payback_years
        rows.append(
            {
                "battery_id": battery.id,
                "label": f"{battery.brand} {battery.model}",
                "usable_kwh": battery.usable_kwh,
                "net_cost": net_cost,
                "annual_savings": analysis.total_savings,
                "kwh_shifted": analysis.total_kwh_shifted,
                "cycles_per_year": analysis.cycles_per_year,
                "payback_years": payback if math.isfinite(payback) else np.nan,
                "total_savings_25_year": projection.total_savings_25_year,
                "net_profit_25_year": projection.net_profit_25_year,
                "savings_per_dollar": (
                    round(projection.total_savings_25_year / net_cost, 2) if net_cost > 0 else np.nan
                ),
                "annual_roi": projection.annual_roi,
            }
        )

    df = pd.DataFrame(rows)
    if df.empty:
        logging.getLogger(__name__).warning("Battery comparison received no batteries to dispatch.")
        return df

    df["is_best"] = False
    eligible = df[df["payback_years"].notna()]
    if not eligible.empty:
        best_idx = eligible["payback_years"].sort_values(kind="stable").index[0]
        df.loc[best_idx, "is_best"] = True
    return df


__all__ = [
    "AnnualDispatchAnalysis",
    "DAILY_COLUMNS",
    "DailyDispatch",
    "analyze_annual_dispatch",
    "charge_period",
    "compare_battery_options",
    "optimize_daily_dispatch",
]

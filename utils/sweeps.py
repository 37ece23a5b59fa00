"""Sweep utilities used by the API and tests."""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from services.battery_specs import BATTERY_SPECS, BatterySpec, combine_batteries, get_battery_by_id
from services.offset_cap import DEFAULT_OFFSET_CAP_POLICY, OffsetCapPolicy, compute_solar_battery_offset_cap
from services.plan_results import EstimatorInputs, build_plan_results

# Column -> ascending flag. Payback is the headline KPI a homeowner compares options on.
RANKING_COLUMNS: Dict[str, bool] = {
    "payback_years": True,
    "annual_savings": False,
    "net_profit_25_year": False,
    "net_cost": True,
}


def generate_values(min_value: float, max_value: float, steps: int) -> List[float]:
    """Return an inclusive list of evenly spaced values.

    When ``steps`` is ``1`` the midpoint is returned to keep the sweep centered.
    """

    steps = max(1, int(steps))
    if steps == 1:
        return [float((min_value + max_value) / 2.0)]
    if max_value <= min_value:
        return [float(min_value)]
    return [float(v) for v in np.linspace(min_value, max_value, steps)]


def _resolve_options(options: Optional[Iterable[Sequence[str]]]) -> List[Tuple[str, ...]]:
    if options is None:
        return [(spec.id,) for spec in BATTERY_SPECS]
    return [tuple(option) for option in options]


def _evaluate_option(inputs: EstimatorInputs, option: Tuple[str, ...], plan_id: str) -> Dict[str, Any]:
    batteries: List[BatterySpec] = []
    missing = []
    for battery_id in option:
        spec = get_battery_by_id(battery_id)
        if spec is None:
            missing.append(battery_id)
        else:
            batteries.append(spec)

    row: Dict[str, Any] = {
        "option_id": "+".join(option) if option else "none",
        "battery_count": len(option),
    }
    if missing:
        row.update({"status": "unknown_battery", "payback_years": np.nan})
        return row

    combined = combine_batteries(batteries)
    result = build_plan_results(inputs, batteries=batteries)[plan_id]
    payback = result.projection.payback_years
    row.update(
        {
            "label": " + ".join(f"{b.brand} {b.model}" for b in batteries) or "Solar only",
            "usable_kwh": combined.usable_kwh,
            "battery_net_cost": result.battery_net_cost,
            "net_cost": result.net_cost,
            "annual_savings": result.annual,
            "monthly_savings": result.monthly,
            "battery_annual": result.battery_annual,
            "payback_years": payback if math.isfinite(payback) else np.nan,
            "net_profit_25_year": result.projection.net_profit_25_year,
            "annual_roi": result.projection.annual_roi,
            "status": "evaluated",
        }
    )
    return row


def sweep_battery_options(
    inputs: EstimatorInputs,
    options: Optional[Iterable[Sequence[str]]] = None,
    plan_id: str = "ulo",
    ranking_kpi: str = "payback_years",
) -> pd.DataFrame:
    """Evaluate each battery option for one household and flag the best one.

    Parameters
    ----------
    options
        Battery id combinations to try. Defaults to every catalog battery on
        its own. Unknown ids produce a row with status ``unknown_battery``.
    plan_id
        ``"tou"`` or ``"ulo"``.
    ranking_kpi
        One of :data:`RANKING_COLUMNS`. Options whose savings never repay the
        cost have a NaN payback and are ranked last.
    """

    if plan_id not in ("tou", "ulo"):
        raise ValueError(f"Unknown rate plan '{plan_id}'.")

    rows = [_evaluate_option(inputs, option, plan_id) for option in _resolve_options(options)]
    df = pd.DataFrame(rows)
    if df.empty:
        logging.getLogger(__name__).warning("Battery sweep received no options to evaluate.")
        return df

    ascending = RANKING_COLUMNS.get(ranking_kpi)
    if ascending is None:
        logging.getLogger(__name__).warning(
            "Ranking KPI '%s' is not supported; falling back to 'payback_years'.",
            ranking_kpi,
        )
        ranking_kpi, ascending = "payback_years", True
    if ranking_kpi not in df.columns:
        df[ranking_kpi] = np.nan

    df["is_best"] = False
    eligible = df[(df["status"] == "evaluated") & df[ranking_kpi].notna()]
    if not eligible.empty:
        best_idx = eligible[ranking_kpi].sort_values(ascending=ascending, kind="stable").index[0]
        df.loc[best_idx, "is_best"] = True
    return df


def run_offset_cap_grid(
    usage_kwh: float,
    ratio_min: float = 0.0,
    ratio_max: float = 1.5,
    steps: int = 16,
    roof_pitches: Sequence[Any] = (None,),
    roof_azimuths: Sequence[Optional[float]] = (None,),
    policy: OffsetCapPolicy = DEFAULT_OFFSET_CAP_POLICY,
) -> pd.DataFrame:
    """Tabulate the offset cap over production-to-usage ratios and roof shapes."""

    rows: List[Dict[str, Any]] = []
    for ratio in generate_values(ratio_min, ratio_max, steps):
        for pitch in roof_pitches:
            for azimuth in roof_azimuths:
                cap = compute_solar_battery_offset_cap(
                    usage_kwh,
                    usage_kwh * ratio,
                    roof_pitch=pitch,
                    roof_azimuth=azimuth,
                    policy=policy,
                )
                rows.append(
                    {
                        "production_to_load_ratio": ratio,
                        "roof_pitch": pitch,
                        "roof_azimuth": azimuth,
                        "cap_fraction": cap.cap_fraction,
                        "base_fraction": cap.base_fraction,
                        "orientation_bonus": cap.orientation_bonus,
                        "production_bonus": cap.production_bonus,
                    }
                )
    return pd.DataFrame(rows)


__all__ = [
    "RANKING_COLUMNS",
    "generate_values",
    "run_offset_cap_grid",
    "sweep_battery_options",
]

"""Economic helpers shared by the estimator engine, the API and reports.

Covers the 25-year savings projections (payback, profit, ROI), solar system
pricing tiers and the provincial solar rebate.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import List, Optional, Union

import numpy as np
import pandas as pd

DEFAULT_RATE_ESCALATION = 0.05
DEFAULT_SYSTEM_DEGRADATION = 0.005
DEFAULT_PROJECTION_YEARS = 25

SOLAR_REBATE_PER_KW = 1000.0
SOLAR_REBATE_MAX = 5000.0

# Installed price in $/W by system size in kW; sizes between tiers interpolate linearly.
SOLAR_PRICING_TIERS = (
    (4.0, 5.33),
    (4.5, 4.76),
    (5.0, 4.34),
    (5.5, 4.18),
    (6.0, 4.05),
    (6.5, 3.92),
    (7.0, 3.81),
    (7.5, 3.67),
    (8.0, 3.56),
    (8.5, 3.48),
    (9.0, 3.39),
    (10.0, 3.31),
    (11.0, 3.29),
    (12.0, 3.27),
    (13.0, 3.27),
    (14.0, 3.27),
    (15.0, 3.22),
    (16.0, 3.22),
    (17.0, 3.21),
    (18.0, 3.18),
    (19.0, 3.15),
    (20.0, 3.14),
    (21.0, 3.13),
    (22.0, 3.12),
    (23.0, 3.11),
    (24.0, 3.10),
    (25.0, 3.09),
)

AnnualROI = Union[float, str]


@dataclass(frozen=True)
class ProjectionAssumptions:
    """Escalation and wear assumptions behind a projection."""

    rate_escalation: float = DEFAULT_RATE_ESCALATION
    system_degradation: float = DEFAULT_SYSTEM_DEGRADATION
    years: int = DEFAULT_PROJECTION_YEARS
    offset_cap_fraction: Optional[float] = None


@dataclass(frozen=True)
class YearProjection:
    year: int
    annual_savings: float
    cumulative_savings: float
    rate_multiplier: float
    degradation_multiplier: float = 1.0


@dataclass(frozen=True)
class MultiYearProjection:
    """Year-by-year savings plus payback and lifetime summary figures.

    ``payback_years`` is ``0.0`` when the system costs nothing after
    rebates and ``math.inf`` when savings never catch up with the cost
    (the combined projection also reports ``math.inf`` with no savings).
    ``annual_roi`` is a percentage rounded to one decimal, or ``"N/A"``.
    """

    yearly_projections: List[YearProjection]
    total_savings_25_year: float
    net_cost: float
    payback_years: float
    net_profit_25_year: float
    annual_roi: AnnualROI
    assumptions: ProjectionAssumptions = field(default_factory=ProjectionAssumptions)


def _finite_or_zero(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    value = float(value)
    return value if math.isfinite(value) else 0.0


def _project(
    first_year_savings: float,
    net_cost: float,
    assumptions: ProjectionAssumptions,
    baseline_annual_bill: Optional[float] = None,
    require_savings: bool = False,
) -> MultiYearProjection:
    first_year = _finite_or_zero(first_year_savings)
    cost = _finite_or_zero(net_cost)
    years = max(1, int(assumptions.years))
    escalation = _finite_or_zero(assumptions.rate_escalation)
    degradation = _finite_or_zero(assumptions.system_degradation)
    baseline = _finite_or_zero(baseline_annual_bill)
    cap_fraction = assumptions.offset_cap_fraction
    payback_target = max(0.0, cost)

    rows: List[YearProjection] = []
    cumulative = 0.0
    payback: Optional[float] = None
    for year in range(1, years + 1):
        rate_multiplier = (1 + escalation) ** (year - 1)
        degradation_multiplier = (1 - degradation) ** (year - 1)
        savings = max(0.0, first_year * rate_multiplier * degradation_multiplier)
        if baseline > 0 and cap_fraction is not None:
            # Escalation must not push savings past the capped share of the bill.
            savings = min(savings, baseline * rate_multiplier * cap_fraction)

        previous = cumulative
        cumulative += savings
        if payback is None and savings > 0 and cumulative >= payback_target:
            payback = year - 1 + (payback_target - previous) / savings

        rows.append(
            YearProjection(
                year=year,
                annual_savings=float(round(savings)),
                cumulative_savings=float(round(cumulative)),
                rate_multiplier=round(rate_multiplier, 2),
                degradation_multiplier=round(degradation_multiplier, 3),
            )
        )

    if require_savings and first_year <= 0:
        payback_years = math.inf
    elif cost <= 0:
        payback_years = 0.0
    elif payback is None:
        payback_years = math.inf
    else:
        payback_years = round(payback, 1)

    net_profit = cumulative - cost
    annual_roi: AnnualROI = "N/A" if cost <= 0 else round(net_profit / cost / years * 100.0, 1)

    return MultiYearProjection(
        yearly_projections=rows,
        total_savings_25_year=float(round(cumulative)),
        net_cost=float(round(cost)),
        payback_years=payback_years,
        net_profit_25_year=float(round(net_profit)),
        annual_roi=annual_roi,
        assumptions=assumptions,
    )


def calculate_simple_multi_year(
    first_year_savings: float,
    net_cost: float,
    rate_escalation: float = DEFAULT_RATE_ESCALATION,
    years: int = DEFAULT_PROJECTION_YEARS,
    system_degradation: float = 0.0,
) -> MultiYearProjection:
    """Project battery-only savings with rate escalation and optional degradation."""

    assumptions = ProjectionAssumptions(
        rate_escalation=rate_escalation,
        system_degradation=system_degradation,
        years=years,
    )
    return _project(first_year_savings, net_cost, assumptions)


def calculate_combined_multi_year(
    first_year_savings: float,
    net_cost: float,
    rate_escalation: float = DEFAULT_RATE_ESCALATION,
    system_degradation: float = DEFAULT_SYSTEM_DEGRADATION,
    years: int = DEFAULT_PROJECTION_YEARS,
    baseline_annual_bill: Optional[float] = None,
    offset_cap_fraction: Optional[float] = None,
) -> MultiYearProjection:
    """Project solar + battery savings, capped each year by the winter safeguard.

    When ``baseline_annual_bill`` is given, year *n* savings never exceed
    ``baseline_annual_bill * (1 + rate_escalation) ** (n - 1) * cap``. The
    cap is ``offset_cap_fraction`` (clipped to 0..1) or, when omitted, the
    first-year share of the baseline bill. A system with no first-year
    savings never pays back, even when it costs nothing.
    """

    baseline = _finite_or_zero(baseline_annual_bill)
    first_year = _finite_or_zero(first_year_savings)
    cap_fraction: Optional[float] = None
    if offset_cap_fraction is not None and math.isfinite(offset_cap_fraction):
        cap_fraction = min(max(float(offset_cap_fraction), 0.0), 1.0)
    elif baseline > 0:
        cap_fraction = min(first_year / baseline, 1.0) if first_year > 0 else 0.0

    assumptions = ProjectionAssumptions(
        rate_escalation=rate_escalation,
        system_degradation=system_degradation,
        years=years,
        offset_cap_fraction=cap_fraction,
    )
    return _project(
        first_year,
        net_cost,
        assumptions,
        baseline_annual_bill=baseline if baseline > 0 else None,
        require_savings=True,
    )


def projection_frame(projection: MultiYearProjection) -> pd.DataFrame:
    """Return the yearly rows as a DataFrame, one row per project year."""

    frame = pd.DataFrame([asdict(row) for row in projection.yearly_projections])
    if frame.empty:
        frame = pd.DataFrame(
            columns=["year", "annual_savings", "cumulative_savings", "rate_multiplier", "degradation_multiplier"]
        )
    frame["net_position"] = frame["cumulative_savings"] - projection.net_cost
    return frame


def get_price_per_watt(system_size_kw: float) -> float:
    """Installed $/W for a system size, clamped to the first and last tiers."""

    sizes = np.array([size for size, _ in SOLAR_PRICING_TIERS])
    prices = np.array([price for _, price in SOLAR_PRICING_TIERS])
    return float(np.interp(_finite_or_zero(system_size_kw), sizes, prices))


def calculate_system_cost(system_size_kw: float) -> float:
    size = max(0.0, _finite_or_zero(system_size_kw))
    if size == 0:
        return 0.0
    return float(round(size * 1000.0 * get_price_per_watt(size)))


def get_pricing_tier_info(system_size_kw: float) -> dict:
    price_per_watt = get_price_per_watt(system_size_kw)
    return {
        "price_per_watt": round(price_per_watt, 2),
        "price_per_kw": float(round(price_per_watt * 1000.0)),
        "total_system_cost": calculate_system_cost(system_size_kw),
    }


def calculate_solar_rebate(system_size_kw: float) -> float:
    size = _finite_or_zero(system_size_kw)
    if size <= 0:
        return 0.0
    return min(size * SOLAR_REBATE_PER_KW, SOLAR_REBATE_MAX)


__all__ = [
    "DEFAULT_PROJECTION_YEARS",
    "DEFAULT_RATE_ESCALATION",
    "DEFAULT_SYSTEM_DEGRADATION",
    "MultiYearProjection",
    "ProjectionAssumptions",
    "SOLAR_PRICING_TIERS",
    "SOLAR_REBATE_MAX",
    "SOLAR_REBATE_PER_KW",
    "YearProjection",
    "calculate_combined_multi_year",
    "calculate_simple_multi_year",
    "calculate_solar_rebate",
    "calculate_system_cost",
    "get_price_per_watt",
    "get_pricing_tier_info",
    "projection_frame",
]

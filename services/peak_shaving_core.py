"""Annual peak-shaving savings models for solar, battery, and both together.

All functions in this module are pure and never raise for degenerate
numeric input. Negative, missing or non-finite quantities are treated as
zero and every ratio guards its denominator, so callers always receive a
well-formed (possibly all-zero) result to render.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from services.battery_specs import BatterySpec
from services.offset_cap import OffsetPercentages, scale_to_cap
from services.peak_shaving_formulas import (
    PeriodBreakdown,
    allocate_in_order,
    allocate_solar_weighted,
    cap_total_offset,
    clamp_breakdown,
    cost_by_period,
    cost_from_usage,
    discharge_battery,
    enforce_minimum_grid_purchases,
    solar_spill_order,
)
from services.rate_plans import PeriodRates, RatePlan, resolve_rates

CYCLES_PER_YEAR = 365
# Inverter power can only drain the battery over the expensive part of a day.
PEAK_DISCHARGE_HOURS_PER_DAY = 12.0
SOLAR_DIRECT_FRACTION = 0.5
LEFTOVER_SHIFT_BUFFER_FRACTION = 0.05
DISTRIBUTION_TOLERANCE_PERCENT = 0.5


@dataclass(frozen=True)
class UsageDistribution:
    """Percent of annual usage falling in each rate period."""

    on_peak_percent: float
    mid_peak_percent: float
    off_peak_percent: float
    ultra_low_percent: Optional[float] = None

    @property
    def total(self) -> float:
        return (
            self.on_peak_percent
            + self.mid_peak_percent
            + self.off_peak_percent
            + (self.ultra_low_percent or 0.0)
        )


DEFAULT_TOU_DISTRIBUTION = UsageDistribution(on_peak_percent=19.0, mid_peak_percent=18.0, off_peak_percent=63.0)
DEFAULT_ULO_DISTRIBUTION = UsageDistribution(
    on_peak_percent=17.9,
    mid_peak_percent=33.1,
    off_peak_percent=23.0,
    ultra_low_percent=26.0,
)


@dataclass(frozen=True)
class DayNightSplit:
    day_fraction: float = 0.5
    night_fraction: float = 0.5


DEFAULT_DAY_NIGHT_SPLIT = DayNightSplit()


@dataclass(frozen=True)
class UloLimits:
    """Winter-aware ceilings applied when the plan has an ultra-low overnight tier."""

    max_solar_to_battery_kwh: float = 2000.0
    max_solar_to_battery_winter_kwh: float = 200.0
    max_solar_to_battery_summer_kwh: float = 1800.0
    max_grid_to_battery_kwh: float = 3000.0
    max_offset_fraction: float = 0.85
    min_grid_fraction: float = 0.10

    @property
    def solar_to_battery_ceiling(self) -> float:
        return min(
            self.max_solar_to_battery_kwh,
            self.max_solar_to_battery_winter_kwh + self.max_solar_to_battery_summer_kwh,
        )


DEFAULT_ULO_LIMITS = UloLimits()


@dataclass(frozen=True)
class LeftoverEnergy:
    total_kwh: float
    consumption_percent: float
    cost_at_off_peak: float
    cost_percent: float
    rate_per_kwh: float
    breakdown: PeriodBreakdown


@dataclass(frozen=True)
class SimplePeakShavingResult:
    total_usage_kwh: float
    usage_by_period: PeriodBreakdown
    original_cost: PeriodBreakdown
    battery_annual_cycles: float  # kWh the battery can move in a year
    battery_offsets: PeriodBreakdown
    new_cost: PeriodBreakdown
    annual_savings: float
    savings_percent: float
    monthly_savings: float
    leftover_energy: LeftoverEnergy
    effective_cycles: float


@dataclass(frozen=True)
class SolarOnlyResult:
    bill_before: float
    bill_after: float
    annual_savings: float
    usage_by_period: PeriodBreakdown
    solar_allocation: PeriodBreakdown
    usage_after_solar: PeriodBreakdown
    solar_cap_kwh: float


@dataclass(frozen=True)
class CombinedBreakdown:
    original_usage: PeriodBreakdown
    solar_allocation: PeriodBreakdown
    usage_after_solar: PeriodBreakdown
    battery_offsets: PeriodBreakdown
    usage_after_battery: PeriodBreakdown
    grid_kwh_by_bucket: PeriodBreakdown
    solar_cap_kwh: float
    battery_charge_from_grid: float
    grid_charge_bucket: str


@dataclass(frozen=True)
class SolarBatteryCombinedResult:
    total_usage_kwh: float
    usage_by_period: PeriodBreakdown
    original_cost: PeriodBreakdown
    battery_annual_cycles: float
    battery_offsets: PeriodBreakdown
    new_cost: PeriodBreakdown
    annual_savings: float
    savings_percent: float
    monthly_savings: float
    leftover_energy: LeftoverEnergy
    effective_cycles: float
    breakdown: CombinedBreakdown
    solar_only_savings: float
    battery_on_top_savings: float
    combined_annual_savings: float
    combined_monthly_savings: float
    uncapped_annual_savings: float
    baseline_annual_bill: float
    post_solar_annual_bill: float
    post_solar_battery_annual_bill: float
    batt_grid_charged: float
    grid_kwh_by_bucket: PeriodBreakdown
    solar_direct_kwh: float
    solar_charged_battery_kwh: float
    capped_offset_reduction_kwh: float
    offset_cap_fraction: Optional[float]


@dataclass(frozen=True)
class FRDPeakShavingResult:
    day_load: float
    night_load: float
    solar_to_day: float
    solar_excess: float
    day_grid_after_solar: float
    batt_solar_charged: float
    batt_grid_charged: float
    batt_total: float
    battery_discharge_by_bucket: PeriodBreakdown
    edge_case: str  # "none", "high_usage" or "high_capacity"
    batt_total_effective: float
    effective_cycles: float
    solar_unused: float
    grid_kwh_by_bucket: PeriodBreakdown
    baseline_cost: float
    annual_cost_after: float
    annual_savings: float
    monthly_savings: float
    offset_percentages: OffsetPercentages = field(default_factory=OffsetPercentages)


def _non_negative(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    value = float(value)
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def resolve_distribution(plan: RatePlan, distribution: Optional[UsageDistribution]) -> UsageDistribution:
    """Return ``distribution`` or the plan's default, warning when it does not sum to 100%."""

    dist = distribution or (DEFAULT_ULO_DISTRIBUTION if plan.is_ulo else DEFAULT_TOU_DISTRIBUTION)
    if abs(dist.total - 100.0) > DISTRIBUTION_TOLERANCE_PERCENT:
        logging.getLogger(__name__).warning(
            "Usage distribution sums to %.1f%% instead of 100%%; results follow the entered split.",
            dist.total,
        )
    return dist


def split_usage(annual_usage_kwh: float, distribution: UsageDistribution) -> PeriodBreakdown:
    usage = _non_negative(annual_usage_kwh)
    return PeriodBreakdown(
        ultra_low=usage * _non_negative(distribution.ultra_low_percent) / 100.0,
        off_peak=usage * _non_negative(distribution.off_peak_percent) / 100.0,
        mid_peak=usage * _non_negative(distribution.mid_peak_percent) / 100.0,
        on_peak=usage * _non_negative(distribution.on_peak_percent) / 100.0,
    )


def annual_battery_throughput(battery: BatterySpec) -> float:
    """kWh the battery can discharge per year, one cycle a day.

    Daily energy is bounded by usable capacity and, when an inverter rating
    is known, by what that inverter can push out over the peak hours.
    """

    usable = _non_negative(battery.usable_kwh)
    inverter_kw = _non_negative(battery.inverter_kw)
    daily = min(usable, inverter_kw * PEAK_DISCHARGE_HOURS_PER_DAY) if inverter_kw > 0 else usable
    return daily * CYCLES_PER_YEAR


def _leftover_energy(
    leftover_kwh: float,
    room: PeriodBreakdown,
    rates: PeriodRates,
    usage_kwh: float,
    baseline_cost: float,
) -> LeftoverEnergy:
    cheapest = rates.cheapest_bucket
    room = room.with_value(cheapest, room.get(cheapest) + usage_kwh * LEFTOVER_SHIFT_BUFFER_FRACTION)
    if rates.has_ultra_low:
        order = ("ultra_low", "off_peak", "mid_peak", "on_peak")
    else:
        order = ("off_peak", "mid_peak", "on_peak")
    breakdown = clamp_breakdown(room, leftover_kwh, order)
    cost = cost_from_usage(breakdown, rates)
    return LeftoverEnergy(
        total_kwh=leftover_kwh,
        consumption_percent=_ratio(leftover_kwh, usage_kwh) * 100.0,
        cost_at_off_peak=cost,
        cost_percent=_ratio(cost, baseline_cost) * 100.0,
        rate_per_kwh=_ratio(cost, leftover_kwh),
        breakdown=breakdown,
    )


def calculate_simple_peak_shaving(
    annual_usage_kwh: float,
    battery: BatterySpec,
    rate_plan: RatePlan,
    distribution: Optional[UsageDistribution] = None,
    solar_production_kwh: Optional[float] = None,
) -> SimplePeakShavingResult:
    """Battery-only load shifting against a time-of-use plan.

    The battery discharges into on-peak, then mid-peak, then off-peak usage
    and recharges at the plan's cheapest rate. Usage it does not cover is
    billed at its own period rate.
    """

    usage = _non_negative(annual_usage_kwh)
    production = _non_negative(solar_production_kwh)
    rates = resolve_rates(rate_plan)
    dist = resolve_distribution(rate_plan, distribution)

    usage_by_period = split_usage(usage, dist)
    original_cost = cost_by_period(usage_by_period, rates)

    throughput = annual_battery_throughput(battery)
    offsets, usage_after_battery, _ = discharge_battery(usage_by_period, throughput)
    shifted_kwh = offsets.total

    new_cost = cost_by_period(usage_after_battery, rates)
    charge_bucket = rates.cheapest_bucket
    new_cost = new_cost.with_value(charge_bucket, new_cost.get(charge_bucket) + shifted_kwh * rates.cheapest_rate)

    annual_savings = original_cost.total - new_cost.total

    # Daytime solar covers at most half of usage; leftover solar reaches the
    # night only through the battery.
    solar_offset = min(usage * SOLAR_DIRECT_FRACTION, production)
    night_offset = min(max(0.0, production - solar_offset), shifted_kwh)
    combined_offset = min(usage, solar_offset + night_offset)
    leftover = _leftover_energy(
        max(0.0, usage - combined_offset),
        usage_by_period,
        rates,
        usage,
        original_cost.total,
    )

    return SimplePeakShavingResult(
        total_usage_kwh=usage,
        usage_by_period=usage_by_period,
        original_cost=original_cost,
        battery_annual_cycles=throughput,
        battery_offsets=offsets,
        new_cost=new_cost,
        annual_savings=annual_savings,
        savings_percent=_ratio(annual_savings, original_cost.total) * 100.0,
        monthly_savings=annual_savings / 12.0,
        leftover_energy=leftover,
        effective_cycles=_ratio(shifted_kwh, _non_negative(battery.usable_kwh)),
    )


def calculate_solar_only_savings(
    annual_usage_kwh: float,
    solar_production_kwh: float,
    rate_plan: RatePlan,
    distribution: Optional[UsageDistribution] = None,
) -> SolarOnlyResult:
    """Bill reduction from daytime solar alone.

    Uses the same half-of-usage direct cap and weighted period spread as the
    combined model, so a combined run with no battery reports the same numbers.
    """

    usage = _non_negative(annual_usage_kwh)
    production = _non_negative(solar_production_kwh)
    rates = resolve_rates(rate_plan)
    dist = resolve_distribution(rate_plan, distribution)

    usage_by_period = split_usage(usage, dist)
    solar_cap = min(usage * SOLAR_DIRECT_FRACTION, production)
    allocation, usage_after_solar, _ = allocate_solar_weighted(
        usage_by_period, solar_cap, spill_order=solar_spill_order(rates)
    )

    bill_before = cost_from_usage(usage_by_period, rates)
    bill_after = cost_from_usage(usage_after_solar, rates)
    return SolarOnlyResult(
        bill_before=bill_before,
        bill_after=bill_after,
        annual_savings=bill_before - bill_after,
        usage_by_period=usage_by_period,
        solar_allocation=allocation,
        usage_after_solar=usage_after_solar,
        solar_cap_kwh=solar_cap,
    )


def calculate_solar_battery_combined(
    annual_usage_kwh: float,
    solar_production_kwh: float,
    battery: BatterySpec,
    rate_plan: RatePlan,
    distribution: Optional[UsageDistribution] = None,
    offset_cap_fraction: Optional[float] = None,
    ai_mode: bool = False,
    ulo_limits: UloLimits = DEFAULT_ULO_LIMITS,
) -> SolarBatteryCombinedResult:
    """Dollar savings for solar plus battery, before and after the offset cap.

    Steps
    -----
    1. Solar direct use is capped at half of annual usage and spread over the
       daytime periods by weight.
    2. Production beyond direct use charges the battery, bounded by its
       annual throughput. With ``ai_mode`` the battery also tops up from the
       grid in the cheapest period.
    3. The battery discharges most-expensive-first. Plans with an ultra-low
       tier also honour :class:`UloLimits`.
    4. If solar direct plus solar-charged battery exceeds
       ``offset_cap_fraction`` of usage, both are scaled down together and
       the trimmed energy is re-billed at the cheapest rate.

    For every bucket ``original_usage == solar_allocation + battery_offsets +
    usage_after_battery``. Grid energy bought to charge the battery is kept
    separately in ``grid_kwh_by_bucket``.
    """

    usage = _non_negative(annual_usage_kwh)
    production = _non_negative(solar_production_kwh)
    rates = resolve_rates(rate_plan)
    dist = resolve_distribution(rate_plan, distribution)
    ulo_plan = rates.has_ultra_low

    original_usage = split_usage(usage, dist)
    original_cost = cost_by_period(original_usage, rates)
    baseline_bill = original_cost.total

    solar_cap = min(usage * SOLAR_DIRECT_FRACTION, production)
    solar_allocation, usage_after_solar, _ = allocate_solar_weighted(
        original_usage, solar_cap, spill_order=solar_spill_order(rates)
    )
    solar_used = solar_allocation.total
    post_solar_bill = cost_from_usage(usage_after_solar, rates)

    throughput = annual_battery_throughput(battery)
    solar_excess = max(0.0, production - solar_used)
    solar_to_battery = min(solar_excess, throughput)
    if ulo_plan:
        solar_to_battery = min(solar_to_battery, ulo_limits.solar_to_battery_ceiling)
    grid_to_battery = 0.0
    if ai_mode:
        grid_to_battery = max(0.0, throughput - solar_to_battery)
        if ulo_plan:
            grid_to_battery = min(grid_to_battery, ulo_limits.max_grid_to_battery_kwh)

    battery_offsets, usage_after_battery, _ = discharge_battery(usage_after_solar, solar_to_battery + grid_to_battery)
    if ulo_plan:
        usage_after_battery, battery_offsets = cap_total_offset(
            usage_after_battery, battery_offsets, solar_used, usage, ulo_limits.max_offset_fraction
        )
        usage_after_battery, battery_offsets = enforce_minimum_grid_purchases(
            usage_after_battery, battery_offsets, usage * ulo_limits.min_grid_fraction
        )

    discharged = battery_offsets.total
    solar_charged = min(solar_to_battery, discharged)
    grid_charged = max(0.0, discharged - solar_charged)

    grid_bucket = rates.cheapest_bucket
    grid_kwh_by_bucket = usage_after_battery.with_value(grid_bucket, usage_after_battery.get(grid_bucket) + grid_charged)
    uncapped_bill = cost_from_usage(grid_kwh_by_bucket, rates)

    solar_only_savings = baseline_bill - post_solar_bill
    battery_on_top_savings = post_solar_bill - uncapped_bill
    uncapped_savings = baseline_bill - uncapped_bill

    cap = None
    if offset_cap_fraction is not None and math.isfinite(offset_cap_fraction):
        cap = min(max(float(offset_cap_fraction), 0.0), 1.0)
    reduction_kwh = 0.0
    if cap is not None and solar_used + solar_charged > cap * usage:
        reduction_kwh = solar_used + solar_charged - sum(scale_to_cap([solar_used, solar_charged], cap * usage))

    new_cost = cost_by_period(grid_kwh_by_bucket, rates)
    new_cost = new_cost.with_value(grid_bucket, new_cost.get(grid_bucket) + reduction_kwh * rates.cheapest_rate)
    post_solar_battery_bill = new_cost.total
    combined_savings = baseline_bill - post_solar_battery_bill

    leftover_kwh = grid_kwh_by_bucket.total - grid_charged + reduction_kwh
    leftover = _leftover_energy(max(0.0, leftover_kwh), original_usage, rates, usage, baseline_bill)

    breakdown = CombinedBreakdown(
        original_usage=original_usage,
        solar_allocation=solar_allocation,
        usage_after_solar=usage_after_solar,
        battery_offsets=battery_offsets,
        usage_after_battery=usage_after_battery,
        grid_kwh_by_bucket=grid_kwh_by_bucket,
        solar_cap_kwh=solar_cap,
        battery_charge_from_grid=grid_charged,
        grid_charge_bucket=grid_bucket,
    )

    return SolarBatteryCombinedResult(
        total_usage_kwh=usage,
        usage_by_period=original_usage,
        original_cost=original_cost,
        battery_annual_cycles=throughput,
        battery_offsets=battery_offsets,
        new_cost=new_cost,
        annual_savings=combined_savings,
        savings_percent=_ratio(combined_savings, baseline_bill) * 100.0,
        monthly_savings=combined_savings / 12.0,
        leftover_energy=leftover,
        effective_cycles=_ratio(discharged, _non_negative(battery.usable_kwh)),
        breakdown=breakdown,
        solar_only_savings=solar_only_savings,
        battery_on_top_savings=battery_on_top_savings,
        combined_annual_savings=combined_savings,
        combined_monthly_savings=combined_savings / 12.0,
        uncapped_annual_savings=uncapped_savings,
        baseline_annual_bill=baseline_bill,
        post_solar_annual_bill=post_solar_bill,
        post_solar_battery_annual_bill=post_solar_battery_bill,
        batt_grid_charged=grid_charged,
        grid_kwh_by_bucket=grid_kwh_by_bucket,
        solar_direct_kwh=solar_used,
        solar_charged_battery_kwh=solar_charged,
        capped_offset_reduction_kwh=reduction_kwh,
        offset_cap_fraction=cap,
    )


def _empty_frd_result() -> FRDPeakShavingResult:
    empty = PeriodBreakdown()
    return FRDPeakShavingResult(
        day_load=0.0,
        night_load=0.0,
        solar_to_day=0.0,
        solar_excess=0.0,
        day_grid_after_solar=0.0,
        batt_solar_charged=0.0,
        batt_grid_charged=0.0,
        batt_total=0.0,
        battery_discharge_by_bucket=empty,
        edge_case="none",
        batt_total_effective=0.0,
        effective_cycles=0.0,
        solar_unused=0.0,
        grid_kwh_by_bucket=empty,
        baseline_cost=0.0,
        annual_cost_after=0.0,
        annual_savings=0.0,
        monthly_savings=0.0,
        offset_percentages=OffsetPercentages(),
    )


def calculate_frd_peak_shaving(
    annual_usage_kwh: float,
    solar_production_kwh: float,
    battery: BatterySpec,
    rate_plan: RatePlan,
    distribution: Optional[UsageDistribution] = None,
    ai_mode: bool = False,
    day_night_split: DayNightSplit = DEFAULT_DAY_NIGHT_SPLIT,
) -> FRDPeakShavingResult:
    """Energy-source percentages for the savings breakdown, without the offset cap.

    A. Usage splits into day and night load.
    B. Solar serves day load first (never more than the day load).
    C. Solar beyond the day load charges the battery, up to annual
       throughput and night load; ``ai_mode`` fills the remaining headroom
       from the grid.
    D. The battery discharges on-peak, mid-peak, off-peak, then ultra-low.
    E. The result is labelled ``high_usage`` when usage outstrips solar plus
       battery capacity and ``high_capacity`` in the opposite case.
    F. Remaining grid kWh per bucket (including grid charging) are priced.

    ``offset_percentages`` always sums to 100 when usage is positive. Capping
    belongs to display code (see :func:`services.offset_cap.build_offset_display`).
    """

    usage = _non_negative(annual_usage_kwh)
    production = _non_negative(solar_production_kwh)
    if usage <= 0:
        return _empty_frd_result()

    usable = _non_negative(battery.usable_kwh)
    rates = resolve_rates(rate_plan)
    dist = resolve_distribution(rate_plan, distribution)
    usage_by_period = split_usage(usage, dist)
    baseline_cost = cost_from_usage(usage_by_period, rates)

    # Day and night loads split the distributed usage so every share below
    # is measured against the same total.
    distributed = usage_by_period.total
    day_load = distributed * day_night_split.day_fraction
    night_load = distributed * day_night_split.night_fraction

    solar_allocation, usage_after_solar, _ = allocate_solar_weighted(
        usage_by_period, min(production, day_load), spill_order=solar_spill_order(rates)
    )
    solar_to_day = solar_allocation.total
    solar_excess = max(0.0, production - solar_to_day)
    day_grid_after_solar = max(0.0, day_load - solar_to_day)

    throughput = annual_battery_throughput(battery)
    batt_solar = min(solar_excess, throughput, night_load)
    batt_grid = 0.0
    if ai_mode:
        batt_grid = min(max(0.0, throughput - batt_solar), max(0.0, night_load - batt_solar))
    batt_total = batt_solar + batt_grid

    discharge, usage_after_battery, _ = allocate_in_order(
        usage_after_solar, batt_total, ("on_peak", "mid_peak", "off_peak", "ultra_low")
    )
    discharged = discharge.total
    solar_charged_used = min(batt_solar, discharged)
    grid_charged_used = max(0.0, discharged - solar_charged_used)

    grid_bucket = rates.cheapest_bucket
    grid_kwh_by_bucket = usage_after_battery.with_value(
        grid_bucket, usage_after_battery.get(grid_bucket) + grid_charged_used
    )

    edge_case = "none"
    if usage > production + throughput:
        edge_case = "high_usage"
    elif production + throughput > usage:
        edge_case = "high_capacity"
    solar_unused = max(0.0, production - solar_to_day - batt_solar)

    annual_cost_after = cost_from_usage(grid_kwh_by_bucket, rates)
    annual_savings = baseline_cost - annual_cost_after

    percentages = OffsetPercentages(
        solar_direct=_ratio(solar_to_day, distributed) * 100.0,
        solar_charged_battery=_ratio(solar_charged_used, distributed) * 100.0,
        ulo_charged_battery=_ratio(grid_charged_used, distributed) * 100.0,
        grid_remaining=_ratio(usage_after_battery.total, distributed) * 100.0,
    )

    return FRDPeakShavingResult(
        day_load=day_load,
        night_load=night_load,
        solar_to_day=solar_to_day,
        solar_excess=solar_excess,
        day_grid_after_solar=day_grid_after_solar,
        batt_solar_charged=solar_charged_used,
        batt_grid_charged=grid_charged_used,
        batt_total=batt_total,
        battery_discharge_by_bucket=discharge,
        edge_case=edge_case,
        batt_total_effective=discharged,
        effective_cycles=_ratio(discharged, usable),
        solar_unused=solar_unused,
        grid_kwh_by_bucket=grid_kwh_by_bucket,
        baseline_cost=baseline_cost,
        annual_cost_after=annual_cost_after,
        annual_savings=annual_savings,
        monthly_savings=annual_savings / 12.0,
        offset_percentages=percentages,
    )


__all__ = [
    "CYCLES_PER_YEAR",
    "CombinedBreakdown",
    "DEFAULT_DAY_NIGHT_SPLIT",
    "DEFAULT_TOU_DISTRIBUTION",
    "DEFAULT_ULO_DISTRIBUTION",
    "DEFAULT_ULO_LIMITS",
    "DayNightSplit",
    "FRDPeakShavingResult",
    "LeftoverEnergy",
    "SimplePeakShavingResult",
    "SolarBatteryCombinedResult",
    "SolarOnlyResult",
    "UloLimits",
    "UsageDistribution",
    "annual_battery_throughput",
    "calculate_frd_peak_shaving",
    "calculate_simple_peak_shaving",
    "calculate_solar_battery_combined",
    "calculate_solar_only_savings",
    "resolve_distribution",
    "split_usage",
]

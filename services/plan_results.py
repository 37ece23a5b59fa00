"""Assemble the per-rate-plan results the estimator shows a customer.

This is where caller policy lives: which batteries are combined, which
rebates apply, whether AI charging is allowed in the customer's province,
and how the annual savings are reconciled with the bill the customer
actually reported.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from services.battery_specs import (
    BatterySpec,
    calculate_battery_rebate,
    combine_batteries,
    resolve_batteries,
)
from services.offset_cap import (
    OffsetCapResult,
    OffsetDisplay,
    build_offset_display,
    compute_solar_battery_offset_cap,
    scale_to_cap,
)
from services.peak_shaving_core import (
    DEFAULT_TOU_DISTRIBUTION,
    DEFAULT_ULO_DISTRIBUTION,
    CombinedBreakdown,
    FRDPeakShavingResult,
    SimplePeakShavingResult,
    UsageDistribution,
    calculate_frd_peak_shaving,
    calculate_simple_peak_shaving,
    calculate_solar_battery_combined,
)
from services.rate_plans import (
    DEFAULT_CUSTOM_RATES,
    CustomRates,
    RatePlan,
    get_custom_tou_rate_plan,
    get_custom_ulo_rate_plan,
)
from utils.economics import (
    MultiYearProjection,
    ProjectionAssumptions,
    calculate_combined_multi_year,
    calculate_simple_multi_year,
    calculate_solar_rebate,
    calculate_system_cost,
)


@dataclass(frozen=True)
class EstimatorInputs:
    """Everything the estimator step needs, passed explicitly instead of read from UI state."""

    annual_usage_kwh: float
    selected_battery_ids: Tuple[str, ...] = ()
    solar_production_kwh: float = 0.0
    system_size_kw: float = 0.0
    monthly_bill: float = 0.0
    tou_distribution: UsageDistribution = DEFAULT_TOU_DISTRIBUTION
    ulo_distribution: UsageDistribution = DEFAULT_ULO_DISTRIBUTION
    custom_rates: CustomRates = DEFAULT_CUSTOM_RATES
    solar_net_cost_override: Optional[float] = None  # net cost quoted by a production estimate
    roof_pitch: Any = None
    roof_azimuth: Optional[float] = None
    roof_sections: Tuple[Mapping[str, Any], ...] = ()
    ai_mode: bool = False
    is_alberta: bool = False
    assumptions: ProjectionAssumptions = field(default_factory=ProjectionAssumptions)

    @property
    def effective_ai_mode(self) -> bool:
        # Alberta's retail market does not reward overnight grid charging.
        return self.ai_mode and not self.is_alberta


@dataclass(frozen=True)
class CombinedPlanResult:
    annual: float
    monthly: float
    net_cost: float
    baseline_annual_bill: float
    post_solar_battery_annual_bill: float
    uncapped_annual_savings: float
    breakdown: CombinedBreakdown
    projection: MultiYearProjection
    post_annual_bill: float
    solar_only_annual: float
    battery_annual: float
    solar_net_cost: float
    solar_rebate_applied: float
    solar_production_kwh: float
    battery_net_cost: float
    battery_rebate_applied: float
    battery_gross_cost: float
    battery: BatterySpec
    offset_cap: OffsetCapResult
    offset_display: OffsetDisplay
    frd: FRDPeakShavingResult
    battery_only: SimplePeakShavingResult
    battery_only_projection: MultiYearProjection


def offset_cap_for_inputs(inputs: EstimatorInputs) -> OffsetCapResult:
    return compute_solar_battery_offset_cap(
        inputs.annual_usage_kwh,
        inputs.solar_production_kwh,
        roof_pitch=inputs.roof_pitch,
        roof_azimuth=inputs.roof_azimuth,
        roof_sections=inputs.roof_sections,
    )


def build_combined_plan_result(
    inputs: EstimatorInputs,
    rate_plan: RatePlan,
    distribution: UsageDistribution,
    offset_cap: Optional[OffsetCapResult] = None,
    batteries: Optional[Sequence[BatterySpec]] = None,
) -> CombinedPlanResult:
    """Run the combined, battery-only and percentage models for one rate plan.

    ``batteries`` overrides the catalog lookup of ``inputs.selected_battery_ids``;
    an empty selection is modelled as solar only.
    """

    if batteries is None:
        batteries = resolve_batteries(inputs.selected_battery_ids)
    battery = combine_batteries(batteries)
    cap = offset_cap or offset_cap_for_inputs(inputs)
    assumptions = inputs.assumptions
    ai_mode = inputs.effective_ai_mode
    usage = inputs.annual_usage_kwh
    production = max(0.0, inputs.solar_production_kwh or 0.0)

    solar_rebate = calculate_solar_rebate(inputs.system_size_kw)
    battery_rebate = calculate_battery_rebate(battery.nominal_kwh)
    battery_net = battery.price - battery_rebate

    battery_only = calculate_simple_peak_shaving(
        usage,
        battery,
        rate_plan,
        distribution,
        production if production > 0 else None,
    )
    battery_only_projection = calculate_simple_multi_year(
        battery_only.annual_savings,
        battery_net,
        rate_escalation=assumptions.rate_escalation,
        years=assumptions.years,
    )

    combined = calculate_solar_battery_combined(
        usage,
        production,
        battery,
        rate_plan,
        distribution,
        offset_cap_fraction=cap.cap_fraction,
        ai_mode=ai_mode,
    )

    # The customer's reported bill bounds what we may promise to save.
    baseline_display = inputs.monthly_bill * 12 if inputs.monthly_bill > 0 else combined.baseline_annual_bill
    annual = min(baseline_display, combined.combined_annual_savings)
    solar_share, battery_share = scale_to_cap(
        [combined.solar_only_savings, combined.battery_on_top_savings], annual
    )

    if inputs.solar_net_cost_override is not None:
        solar_net = inputs.solar_net_cost_override
    else:
        solar_net = max(0.0, calculate_system_cost(inputs.system_size_kw) - solar_rebate)
    net_cost = max(0.0, solar_net + battery_net)

    projection = calculate_combined_multi_year(
        annual,
        net_cost,
        rate_escalation=assumptions.rate_escalation,
        system_degradation=assumptions.system_degradation,
        years=assumptions.years,
        baseline_annual_bill=baseline_display,
        offset_cap_fraction=cap.cap_fraction,
    )

    frd = calculate_frd_peak_shaving(usage, production, battery, rate_plan, distribution, ai_mode=ai_mode)

    return CombinedPlanResult(
        annual=annual,
        monthly=float(round(annual / 12)),
        net_cost=net_cost,
        baseline_annual_bill=combined.baseline_annual_bill,
        post_solar_battery_annual_bill=combined.post_solar_battery_annual_bill,
        uncapped_annual_savings=combined.uncapped_annual_savings,
        breakdown=combined.breakdown,
        projection=projection,
        post_annual_bill=max(0.0, baseline_display - annual),
        solar_only_annual=solar_share,
        battery_annual=battery_share,
        solar_net_cost=solar_net,
        solar_rebate_applied=solar_rebate,
        solar_production_kwh=production,
        battery_net_cost=battery_net,
        battery_rebate_applied=battery_rebate,
        battery_gross_cost=battery.price,
        battery=battery,
        offset_cap=cap,
        offset_display=build_offset_display(frd.offset_percentages, cap.cap_fraction),
        frd=frd,
        battery_only=battery_only,
        battery_only_projection=battery_only_projection,
    )


def build_plan_results(
    inputs: EstimatorInputs,
    batteries: Optional[Sequence[BatterySpec]] = None,
) -> Dict[str, CombinedPlanResult]:
    """Results for both Ontario plans, keyed ``"tou"`` and ``"ulo"``."""

    cap = offset_cap_for_inputs(inputs)
    return {
        "tou": build_combined_plan_result(
            inputs,
            get_custom_tou_rate_plan(inputs.custom_rates),
            inputs.tou_distribution,
            offset_cap=cap,
            batteries=batteries,
        ),
        "ulo": build_combined_plan_result(
            inputs,
            get_custom_ulo_rate_plan(inputs.custom_rates),
            inputs.ulo_distribution,
            offset_cap=cap,
            batteries=batteries,
        ),
    }


__all__ = [
    "CombinedPlanResult",
    "EstimatorInputs",
    "build_combined_plan_result",
    "build_plan_results",
    "offset_cap_for_inputs",
]

"""JSON boundary for estimator inputs and results.

The engine never touches these helpers; they exist for the API, the lead
capture payload and session persistence.
"""
from __future__ import annotations

import json
import math
from dataclasses import asdict, fields, is_dataclass
from typing import Any, Dict, Mapping, Optional

from services.peak_shaving_core import UsageDistribution
from services.peak_shaving_formulas import PeriodBreakdown
from services.plan_results import CombinedPlanResult, EstimatorInputs
from services.rate_plans import CustomRates
from utils.economics import ProjectionAssumptions


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_payload(value: Any) -> Any:
    """Convert dataclasses and containers into camelCase JSON-safe structures.

    Non-finite floats (an unreachable payback, for example) become ``None``
    so the result survives ``json.dumps(..., allow_nan=False)``.
    """

    if isinstance(value, PeriodBreakdown):
        payload = {snake_to_camel(k): to_payload(v) for k, v in value.as_dict().items()}
        payload["total"] = to_payload(value.total)
        return payload
    if is_dataclass(value) and not isinstance(value, type):
        return {snake_to_camel(f.name): to_payload(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {snake_to_camel(str(k)): to_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def combined_plan_summary(result: CombinedPlanResult) -> Dict[str, Any]:
    """The UI-facing subset of a plan result."""

    return {
        "annual": result.annual,
        "monthly": result.monthly,
        "netCost": result.net_cost,
        "baselineAnnualBill": result.baseline_annual_bill,
        "postAnnualBill": result.post_annual_bill,
        "postSolarBatteryAnnualBill": result.post_solar_battery_annual_bill,
        "uncappedAnnualSavings": result.uncapped_annual_savings,
        "solarOnlyAnnual": result.solar_only_annual,
        "batteryAnnual": result.battery_annual,
        "solarNetCost": result.solar_net_cost,
        "solarRebateApplied": result.solar_rebate_applied,
        "solarProductionKwh": result.solar_production_kwh,
        "batteryNetCost": result.battery_net_cost,
        "batteryRebateApplied": result.battery_rebate_applied,
        "batteryGrossCost": result.battery_gross_cost,
        "breakdown": to_payload(result.breakdown),
        "projection": to_payload(result.projection),
        "offsetCap": to_payload(result.offset_cap),
        "offsetDisplay": to_payload(result.offset_display),
        "offsetPercentages": to_payload(result.frd.offset_percentages),
    }


def plan_result_to_payload(result: CombinedPlanResult) -> Dict[str, Any]:
    """Lead-capture block for one plan: battery-only result, its projection and the combined summary."""

    return {
        "result": to_payload(result.battery_only),
        "projection": to_payload(result.battery_only_projection),
        "combined": combined_plan_summary(result),
    }


def peak_shaving_payload(
    results: Mapping[str, CombinedPlanResult],
    selected_battery: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"selectedBattery": selected_battery}
    for plan_id, result in results.items():
        payload[plan_id] = plan_result_to_payload(result)
    return payload


def estimator_inputs_to_dict(inputs: EstimatorInputs) -> Dict[str, Any]:
    data = asdict(inputs)
    data["selected_battery_ids"] = list(inputs.selected_battery_ids)
    data["roof_sections"] = [dict(section) for section in inputs.roof_sections]
    return data


def estimator_inputs_from_dict(data: Mapping[str, Any]) -> EstimatorInputs:
    """Rebuild :class:`EstimatorInputs` from :func:`estimator_inputs_to_dict` output.

    Unknown keys are ignored so older sessions keep loading.
    """

    known = {f.name for f in fields(EstimatorInputs)}
    values = {k: v for k, v in data.items() if k in known}
    for key in ("tou_distribution", "ulo_distribution"):
        if isinstance(values.get(key), Mapping):
            values[key] = UsageDistribution(**values[key])
    if isinstance(values.get("custom_rates"), Mapping):
        values["custom_rates"] = CustomRates(**values["custom_rates"])
    if isinstance(values.get("assumptions"), Mapping):
        values["assumptions"] = ProjectionAssumptions(**values["assumptions"])
    values["selected_battery_ids"] = tuple(values.get("selected_battery_ids") or ())
    values["roof_sections"] = tuple(dict(s) for s in values.get("roof_sections") or ())
    return EstimatorInputs(**values)


def dumps_inputs(inputs: EstimatorInputs) -> str:
    return json.dumps(estimator_inputs_to_dict(inputs), sort_keys=True)


def loads_inputs(text: str) -> EstimatorInputs:
    return estimator_inputs_from_dict(json.loads(text))


__all__ = [
    "combined_plan_summary",
    "dumps_inputs",
    "estimator_inputs_from_dict",
    "estimator_inputs_to_dict",
    "loads_inputs",
    "peak_shaving_payload",
    "plan_result_to_payload",
    "snake_to_camel",
    "to_payload",
]

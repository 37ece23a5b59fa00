from __future__ import annotations

import os
from typing import Any, Dict, List, Literal, Optional, Union

from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator, model_validator

from frontend.ui.pdf import build_savings_pdf
from services.battery_specs import BATTERY_SPECS, compare_batteries, get_battery_by_id
from services.offset_cap import compute_solar_battery_offset_cap
from services.peak_shaving_core import DEFAULT_TOU_DISTRIBUTION, DEFAULT_ULO_DISTRIBUTION, UsageDistribution
from services.plan_results import EstimatorInputs, build_plan_results
from services.rate_plans import DEFAULT_CUSTOM_RATES, RATE_PLANS, CustomRates, rate_plan_to_dict
from utils.economics import (
    DEFAULT_PROJECTION_YEARS,
    DEFAULT_RATE_ESCALATION,
    DEFAULT_SYSTEM_DEGRADATION,
    ProjectionAssumptions,
)
from utils.serialization import peak_shaving_payload, to_payload
from utils.sweeps import RANKING_COLUMNS, sweep_battery_options

_USAGE_REQUIRED = "Annual energy usage must be greater than 0 kWh"


class UsageDistributionPayload(BaseModel):
    on_peak_percent: float = Field(ge=0)
    mid_peak_percent: float = Field(ge=0)
    off_peak_percent: float = Field(ge=0)
    ultra_low_percent: Optional[float] = Field(default=None, ge=0)

    def build(self) -> UsageDistribution:
        return UsageDistribution(
            on_peak_percent=self.on_peak_percent,
            mid_peak_percent=self.mid_peak_percent,
            off_peak_percent=self.off_peak_percent,
            ultra_low_percent=self.ultra_low_percent,
        )


class CustomRatesPayload(BaseModel):
    """Rate overrides in cents/kWh; omitted fields keep the published rates."""

    ultra_low: float = Field(default=DEFAULT_CUSTOM_RATES.ultra_low, ge=0)
    mid_peak_ulo: float = Field(default=DEFAULT_CUSTOM_RATES.mid_peak_ulo, ge=0)
    on_peak_ulo: float = Field(default=DEFAULT_CUSTOM_RATES.on_peak_ulo, ge=0)
    weekend_off_peak: float = Field(default=DEFAULT_CUSTOM_RATES.weekend_off_peak, ge=0)
    off_peak_tou: float = Field(default=DEFAULT_CUSTOM_RATES.off_peak_tou, ge=0)
    mid_peak_tou: float = Field(default=DEFAULT_CUSTOM_RATES.mid_peak_tou, ge=0)
    on_peak_tou: float = Field(default=DEFAULT_CUSTOM_RATES.on_peak_tou, ge=0)

    def build(self) -> CustomRates:
        return CustomRates(**self.model_dump())


class AssumptionsPayload(BaseModel):
    rate_escalation: float = DEFAULT_RATE_ESCALATION
    system_degradation: float = Field(default=DEFAULT_SYSTEM_DEGRADATION, ge=0, lt=1)
    years: int = Field(default=DEFAULT_PROJECTION_YEARS, ge=1, le=50)

    def build(self) -> ProjectionAssumptions:
        return ProjectionAssumptions(
            rate_escalation=self.rate_escalation,
            system_degradation=self.system_degradation,
            years=self.years,
        )


class EstimatorPayload(BaseModel):
    """Pydantic mirror of :class:`EstimatorInputs` for FastAPI requests."""

    annual_usage_kwh: float
    battery_ids: List[str] = Field(default_factory=list)
    solar_production_kwh: float = 0.0
    system_size_kw: float = 0.0
    monthly_bill: float = 0.0
    tou_distribution: Optional[UsageDistributionPayload] = None
    ulo_distribution: Optional[UsageDistributionPayload] = None
    custom_rates: Optional[CustomRatesPayload] = None
    solar_net_cost_override: Optional[float] = None
    roof_pitch: Optional[Union[float, str]] = None
    roof_azimuth: Optional[float] = None
    roof_sections: List[Dict[str, Any]] = Field(default_factory=list)
    ai_mode: bool = False
    is_alberta: bool = False
    assumptions: AssumptionsPayload = Field(default_factory=AssumptionsPayload)

    @field_validator("solar_production_kwh", "system_size_kw", "monthly_bill")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be zero or greater")
        return value

    @model_validator(mode="after")
    def _check_roof_azimuth(self) -> "EstimatorPayload":
        if self.roof_azimuth is not None and not 0 <= self.roof_azimuth <= 360:
            raise ValueError("roof_azimuth must be between 0 and 360 degrees")
        return self

    def build(self) -> EstimatorInputs:
        """Return :class:`EstimatorInputs`, rejecting what the engine would silently zero."""

        if self.annual_usage_kwh <= 0:
            raise HTTPException(status_code=400, detail=_USAGE_REQUIRED)
        unknown = [battery_id for battery_id in self.battery_ids if get_battery_by_id(battery_id) is None]
        if unknown:
            raise HTTPException(status_code=404, detail=f"Unknown battery id(s): {', '.join(unknown)}")

        return EstimatorInputs(
            annual_usage_kwh=self.annual_usage_kwh,
            selected_battery_ids=tuple(self.battery_ids),
            solar_production_kwh=self.solar_production_kwh,
            system_size_kw=self.system_size_kw,
            monthly_bill=self.monthly_bill,
            tou_distribution=self.tou_distribution.build() if self.tou_distribution else DEFAULT_TOU_DISTRIBUTION,
            ulo_distribution=self.ulo_distribution.build() if self.ulo_distribution else DEFAULT_ULO_DISTRIBUTION,
            custom_rates=self.custom_rates.build() if self.custom_rates else DEFAULT_CUSTOM_RATES,
            solar_net_cost_override=self.solar_net_cost_override,
            roof_pitch=self.roof_pitch,
            roof_azimuth=self.roof_azimuth,
            roof_sections=tuple(self.roof_sections),
            ai_mode=self.ai_mode,
            is_alberta=self.is_alberta,
            assumptions=self.assumptions.build(),
        )


class OffsetCapRequest(BaseModel):
    usage_kwh: float = Field(ge=0)
    production_kwh: float = Field(ge=0)
    roof_pitch: Optional[Union[float, str]] = None
    roof_azimuth: Optional[float] = None
    roof_sections: List[Dict[str, Any]] = Field(default_factory=list)


class SweepRequest(BaseModel):
    estimator: EstimatorPayload
    options: Optional[List[List[str]]] = None
    plan_id: Literal["tou", "ulo"] = "ulo"
    ranking_kpi: str = "payback_years"

    @field_validator("ranking_kpi")
    @classmethod
    def _validate_ranking_kpi(cls, value: str) -> str:
        if value not in RANKING_COLUMNS:
            raise ValueError(f"ranking_kpi must be one of {sorted(RANKING_COLUMNS)}")
        return value


class ReportRequest(BaseModel):
    estimator: EstimatorPayload
    customer_name: Optional[str] = None


app = FastAPI(
    title="Solar + Battery Savings API",
    description="Peak-shaving savings, offset caps and payback projections for residential solar and storage.",
    version="0.1.0",
)


_default_cors_origins = [
    # Vite dev/preview servers
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:4173",
    "http://127.0.0.1:4173",
]
_allowed_origins_env = os.getenv("ESTIMATOR_CORS_ORIGINS", "")
_allowed_origins = [
    origin.strip()
    for origin in _allowed_origins_env.split(",")
    if origin.strip()
] or _default_cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _selected_battery_label(inputs: EstimatorInputs) -> Optional[str]:
    return "+".join(inputs.selected_battery_ids) or None


@app.get("/health")
def health() -> Dict[str, str]:
    """Simple liveness check for container orchestrators."""
    return {"status": "ok"}


@app.get("/rate-plans")
def rate_plans() -> Dict[str, Any]:
    return {"plans": [rate_plan_to_dict(plan) for plan in RATE_PLANS.values()]}


@app.get("/batteries")
def batteries() -> Dict[str, Any]:
    """Battery catalog with rebates and value scores."""

    return {"batteries": [to_payload(comparison) for comparison in compare_batteries(BATTERY_SPECS)]}


@app.post("/offset-cap")
def offset_cap(request: OffsetCapRequest) -> Dict[str, Any]:
    cap = compute_solar_battery_offset_cap(
        request.usage_kwh,
        request.production_kwh,
        roof_pitch=request.roof_pitch,
        roof_azimuth=request.roof_azimuth,
        roof_sections=request.roof_sections,
    )
    return to_payload(cap)


@app.post("/peak-shaving/calculate")
def calculate(request: EstimatorPayload) -> Dict[str, Any]:
    """Combined solar + battery results for both TOU and ULO plans."""

    inputs = request.build()
    results = build_plan_results(inputs)
    return {"peakShaving": peak_shaving_payload(results, _selected_battery_label(inputs))}


@app.post("/peak-shaving/sweep")
def sweep(request: SweepRequest) -> Dict[str, Any]:
    """Compare battery options for one household, flagging the best by the chosen KPI."""

    inputs = request.estimator.build()
    results_df = sweep_battery_options(
        inputs,
        options=request.options,
        plan_id=request.plan_id,
        ranking_kpi=request.ranking_kpi,
    )
    # NaN payback (never repaid) is not valid JSON.
    records = results_df.astype(object).where(results_df.notna(), None).to_dict(orient="records")
    return {"planId": request.plan_id, "rows": records}


@app.post("/peak-shaving/report")
def report(request: ReportRequest) -> Response:
    inputs = request.estimator.build()
    results = build_plan_results(inputs)
    pdf_bytes = build_savings_pdf(inputs, results, customer_name=request.customer_name)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": 'attachment; filename="savings-summary.pdf"'},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=False)

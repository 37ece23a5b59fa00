"""Ontario residential rate plans and the clock helpers that price energy.

Rates are stored in cents per kWh the way utilities publish them. The
peak-shaving engine converts them to dollars through :func:`resolve_rates`
so callers never have to remember which unit a plan uses.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

PERIOD_ULTRA_LOW = "ultra-low"
PERIOD_OFF_PEAK = "off-peak"
PERIOD_MID_PEAK = "mid-peak"
PERIOD_ON_PEAK = "on-peak"
PERIOD_NAMES = (PERIOD_ULTRA_LOW, PERIOD_OFF_PEAK, PERIOD_MID_PEAK, PERIOD_ON_PEAK)

WEEKDAYS = (1, 2, 3, 4, 5)  # Monday=1 ... Friday=5, matching the published schedules

# Statutory holidays are billed at the weekend rate.
ONTARIO_HOLIDAYS_2025 = (
    "2025-01-01",
    "2025-02-17",
    "2025-04-18",
    "2025-05-19",
    "2025-07-01",
    "2025-08-04",
    "2025-09-01",
    "2025-10-13",
    "2025-12-25",
    "2025-12-26",
)

# Fallbacks (cents/kWh) used when a plan is missing a period the distribution references.
DEFAULT_TOU_RATES_CENTS = {PERIOD_OFF_PEAK: 9.8, PERIOD_MID_PEAK: 15.7, PERIOD_ON_PEAK: 20.3}
DEFAULT_ULO_RATES_CENTS = {
    PERIOD_ULTRA_LOW: 3.9,
    PERIOD_OFF_PEAK: 9.8,
    PERIOD_MID_PEAK: 15.7,
    PERIOD_ON_PEAK: 39.1,
}


@dataclass(frozen=True)
class TimePeriod:
    start_hour: int
    end_hour: int  # exclusive; 24 means midnight
    rate: float  # cents/kWh
    period: str
    days: Tuple[int, ...] = WEEKDAYS

    def contains(self, hour: int) -> bool:
        if self.start_hour <= self.end_hour:
            return self.start_hour <= hour < self.end_hour
        return hour >= self.start_hour or hour < self.end_hour


@dataclass(frozen=True)
class RatePlan:
    """Named pricing scheme with weekday periods and a weekend override."""

    id: str
    name: str
    description: str
    periods: Tuple[TimePeriod, ...]
    weekend_rate: float
    weekend_period: str = PERIOD_OFF_PEAK
    effective_date: str = "2025-11-01"

    @property
    def is_ulo(self) -> bool:
        return any(p.period == PERIOD_ULTRA_LOW for p in self.periods) or self.id == "ulo"

    def rate_for_period(self, period: str) -> Optional[float]:
        for entry in self.periods:
            if entry.period == period:
                return entry.rate
        return None


@dataclass(frozen=True)
class CustomRates:
    """User-entered rate overrides in cents/kWh."""

    ultra_low: float = 3.9
    mid_peak_ulo: float = 15.7
    on_peak_ulo: float = 39.1
    weekend_off_peak: float = 9.8
    off_peak_tou: float = 9.8
    mid_peak_tou: float = 15.7
    on_peak_tou: float = 20.3


DEFAULT_CUSTOM_RATES = CustomRates()


def _ulo_periods(ultra_low: float, mid_peak: float, on_peak: float) -> Tuple[TimePeriod, ...]:
    return (
        TimePeriod(23, 7, ultra_low, PERIOD_ULTRA_LOW),
        TimePeriod(7, 16, mid_peak, PERIOD_MID_PEAK),
        TimePeriod(16, 21, on_peak, PERIOD_ON_PEAK),
        TimePeriod(21, 23, mid_peak, PERIOD_MID_PEAK),
    )


def _tou_periods(off_peak: float, mid_peak: float, on_peak: float) -> Tuple[TimePeriod, ...]:
    return (
        TimePeriod(0, 7, off_peak, PERIOD_OFF_PEAK),
        TimePeriod(7, 11, on_peak, PERIOD_ON_PEAK),
        TimePeriod(11, 17, mid_peak, PERIOD_MID_PEAK),
        TimePeriod(17, 19, on_peak, PERIOD_ON_PEAK),
        TimePeriod(19, 24, off_peak, PERIOD_OFF_PEAK),
    )


ULO_RATE_PLAN = RatePlan(
    id="ulo",
    name="Ultra-Low Overnight (ULO)",
    description="Lowest overnight rate with a steep 4-9pm weekday peak.",
    periods=_ulo_periods(3.9, 15.7, 39.1),
    weekend_rate=9.8,
)

TOU_RATE_PLAN = RatePlan(
    id="tou",
    name="Time-of-Use (TOU)",
    description="Standard three-tier plan with morning and evening on-peak windows.",
    periods=_tou_periods(9.8, 15.7, 20.3),
    weekend_rate=9.8,
)

RATE_PLANS: Dict[str, RatePlan] = {ULO_RATE_PLAN.id: ULO_RATE_PLAN, TOU_RATE_PLAN.id: TOU_RATE_PLAN}


def get_rate_plan(plan_id: str) -> RatePlan:
    try:
        return RATE_PLANS[plan_id]
    except KeyError as exc:
        raise KeyError(f"Unknown rate plan '{plan_id}'") from exc


def get_custom_ulo_rate_plan(rates: CustomRates = DEFAULT_CUSTOM_RATES) -> RatePlan:
    return replace(
        ULO_RATE_PLAN,
        periods=_ulo_periods(rates.ultra_low, rates.mid_peak_ulo, rates.on_peak_ulo),
        weekend_rate=rates.weekend_off_peak,
    )


def get_custom_tou_rate_plan(rates: CustomRates = DEFAULT_CUSTOM_RATES) -> RatePlan:
    return replace(
        TOU_RATE_PLAN,
        periods=_tou_periods(rates.off_peak_tou, rates.mid_peak_tou, rates.on_peak_tou),
        weekend_rate=rates.off_peak_tou,
    )


@dataclass(frozen=True)
class PeriodRates:
    """Dollar-per-kWh rates for each bucket the engine allocates into."""

    ultra_low: float
    off_peak: float
    mid_peak: float
    on_peak: float
    has_ultra_low: bool = False

    def as_dict(self) -> Dict[str, float]:
        return {
            "ultra_low": self.ultra_low,
            "off_peak": self.off_peak,
            "mid_peak": self.mid_peak,
            "on_peak": self.on_peak,
        }

    @property
    def cheapest_bucket(self) -> str:
        """Bucket the battery charges from when it buys grid energy."""
        return "ultra_low" if self.has_ultra_low and self.ultra_low > 0 else "off_peak"

    @property
    def cheapest_rate(self) -> float:
        return getattr(self, self.cheapest_bucket)


def resolve_rates(plan: RatePlan) -> PeriodRates:
    """Return per-bucket rates in $/kWh, filling gaps with the published defaults.

    Off-peak falls back to the plan's weekend rate because ULO has no
    weekday off-peak window; the weekend rate is what customers pay then.
    Plans without an ultra-low tier bill ultra-low usage at off-peak.
    """

    defaults = DEFAULT_ULO_RATES_CENTS if plan.is_ulo else DEFAULT_TOU_RATES_CENTS
    ultra_low = plan.rate_for_period(PERIOD_ULTRA_LOW)
    if ultra_low is None:
        ultra_low = defaults.get(PERIOD_ULTRA_LOW, 0.0)
    off_peak = plan.rate_for_period(PERIOD_OFF_PEAK)
    if off_peak is None:
        off_peak = plan.weekend_rate if plan.weekend_rate else defaults[PERIOD_OFF_PEAK]
    if not plan.is_ulo:
        ultra_low = off_peak
    mid_peak = plan.rate_for_period(PERIOD_MID_PEAK)
    on_peak = plan.rate_for_period(PERIOD_ON_PEAK)

    return PeriodRates(
        ultra_low=ultra_low / 100.0,
        off_peak=off_peak / 100.0,
        mid_peak=(mid_peak if mid_peak is not None else defaults[PERIOD_MID_PEAK]) / 100.0,
        on_peak=(on_peak if on_peak is not None else defaults[PERIOD_ON_PEAK]) / 100.0,
        has_ultra_low=plan.is_ulo,
    )


def _as_date(value: date | str) -> date:
    if isinstance(value, str):
        return date.fromisoformat(value)
    return value


def is_weekend_or_holiday(when: datetime, holidays: Sequence[str] = ONTARIO_HOLIDAYS_2025) -> bool:
    if when.weekday() >= 5:
        return True
    return when.date() in {_as_date(h) for h in holidays}


def get_rate_for_datetime(
    plan: RatePlan,
    when: datetime,
    holidays: Sequence[str] = ONTARIO_HOLIDAYS_2025,
) -> Tuple[float, str]:
    """Return ``(rate_cents, period)`` that applies at ``when``.

    Weekends and statutory holidays bill every hour at the weekend rate.
    Periods whose start hour is after their end hour wrap past midnight.
    """

    if is_weekend_or_holiday(when, holidays):
        return plan.weekend_rate, plan.weekend_period

    hour = when.hour
    day = when.isoweekday() % 7  # Sunday=0 ... Saturday=6
    for entry in plan.periods:
        if day in entry.days and entry.contains(hour):
            return entry.rate, entry.period
    return plan.weekend_rate or DEFAULT_TOU_RATES_CENTS[PERIOD_OFF_PEAK], PERIOD_OFF_PEAK


def calculate_cost_with_rate_plan(
    usage: pd.DataFrame,
    plan: RatePlan,
    holidays: Sequence[str] = ONTARIO_HOLIDAYS_2025,
) -> pd.DataFrame:
    """Price a timestamped usage frame against ``plan``.

    ``usage`` must carry ``timestamp`` and ``kwh`` columns. The returned frame
    adds ``rate_cents``, ``period`` and ``cost`` (dollars) columns; use
    :func:`summarize_cost_by_period` for per-period totals.
    """

    result = usage.copy()
    if result.empty:
        result["rate_cents"] = pd.Series(dtype=float)
        result["period"] = pd.Series(dtype=str)
        result["cost"] = pd.Series(dtype=float)
        return result

    timestamps = pd.to_datetime(result["timestamp"])
    priced = [get_rate_for_datetime(plan, ts.to_pydatetime(), holidays) for ts in timestamps]
    result["rate_cents"] = [rate for rate, _ in priced]
    result["period"] = [period for _, period in priced]
    result["cost"] = result["kwh"].astype(float) * result["rate_cents"] / 100.0
    return result


def summarize_cost_by_period(priced: pd.DataFrame) -> pd.DataFrame:
    """Aggregate a priced usage frame into one row per rate period."""

    summary = (
        priced.groupby("period")[["kwh", "cost"]]
        .sum()
        .reindex(list(PERIOD_NAMES), fill_value=0.0)
        .rename_axis("period")
        .reset_index()
    )
    return summary


# A weekday outside any holiday, used to read a plan's weekday shape.
_REFERENCE_WEEKDAY = date(2025, 11, 4)


def _hourly_rates(plan: RatePlan, reference_day: date) -> List[Tuple[int, float, str]]:
    start = datetime(reference_day.year, reference_day.month, reference_day.day)
    rows = []
    for hour in range(24):
        rate, period = get_rate_for_datetime(plan, start + timedelta(hours=hour))
        rows.append((hour, rate, period))
    return rows


def get_cheapest_charging_hours(
    plan: RatePlan,
    hours_needed: int = 8,
    reference_day: date = _REFERENCE_WEEKDAY,
) -> List[Tuple[int, float, str]]:
    """Return ``(hour, rate_cents, period)`` for the cheapest weekday hours."""
    ranked = sorted(_hourly_rates(plan, reference_day), key=lambda row: row[1])
    return ranked[:hours_needed]


def get_most_expensive_discharge_hours(
    plan: RatePlan,
    hours_needed: int = 5,
    reference_day: date = _REFERENCE_WEEKDAY,
) -> List[Tuple[int, float, str]]:
    """Return ``(hour, rate_cents, period)`` for the priciest weekday hours."""
    ranked = sorted(_hourly_rates(plan, reference_day), key=lambda row: row[1], reverse=True)
    return ranked[:hours_needed]


def rate_plan_to_dict(plan: RatePlan) -> Dict[str, object]:
    return {
        "id": plan.id,
        "name": plan.name,
        "description": plan.description,
        "effectiveDate": plan.effective_date,
        "weekendRate": plan.weekend_rate,
        "periods": [
            {
                "startHour": p.start_hour,
                "endHour": p.end_hour,
                "days": list(p.days),
                "rate": p.rate,
                "period": p.period,
            }
            for p in plan.periods
        ],
    }


__all__ = [
    "CustomRates",
    "DEFAULT_CUSTOM_RATES",
    "ONTARIO_HOLIDAYS_2025",
    "PERIOD_MID_PEAK",
    "PERIOD_NAMES",
    "PERIOD_OFF_PEAK",
    "PERIOD_ON_PEAK",
    "PERIOD_ULTRA_LOW",
    "PeriodRates",
    "RATE_PLANS",
    "RatePlan",
    "TOU_RATE_PLAN",
    "TimePeriod",
    "ULO_RATE_PLAN",
    "calculate_cost_with_rate_plan",
    "get_cheapest_charging_hours",
    "get_custom_tou_rate_plan",
    "get_custom_ulo_rate_plan",
    "get_most_expensive_discharge_hours",
    "get_rate_for_datetime",
    "get_rate_plan",
    "is_weekend_or_holiday",
    "rate_plan_to_dict",
    "resolve_rates",
    "summarize_cost_by_period",
]

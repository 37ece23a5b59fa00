"""Battery catalog, rebate rules and selection helpers."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

import pandas as pd

BATTERY_REBATE_PER_KWH = 300.0  # $ per kWh of nominal capacity
BATTERY_REBATE_MAX = 5000.0


@dataclass(frozen=True)
class Warranty:
    years: int
    cycles: int


@dataclass(frozen=True)
class BatterySpec:
    """Single battery product, or the ephemeral sum of a customer's selection."""

    id: str
    brand: str
    model: str
    nominal_kwh: float
    usable_kwh: float
    usable_percent: float
    round_trip_efficiency: float
    inverter_kw: float
    price: float  # CAD before rebates
    warranty: Warranty = field(default_factory=lambda: Warranty(years=0, cycles=0))
    description: str = ""


@dataclass(frozen=True)
class BatteryFinancials:
    battery: BatterySpec
    rebate: float
    net_price: float
    price_per_usable_kwh: float
    net_price_per_usable_kwh: float


@dataclass(frozen=True)
class BatteryComparison:
    battery: BatterySpec
    financials: BatteryFinancials
    score: int  # 0-100 value score
    strengths: List[str]
    considerations: List[str]


BATTERY_SPECS: List[BatterySpec] = [
    BatterySpec(
        id="renon-16",
        brand="Renon",
        model="16 kWh",
        nominal_kwh=16.0,
        usable_kwh=14.4,
        usable_percent=90.0,
        round_trip_efficiency=0.90,
        inverter_kw=5.0,
        price=8000.0,
        warranty=Warranty(years=10, cycles=6000),
        description="Compact and affordable solution for basic peak shaving",
    ),
    BatterySpec(
        id="renon-32",
        brand="Renon",
        model="32 kWh",
        nominal_kwh=32.0,
        usable_kwh=28.8,
        usable_percent=90.0,
        round_trip_efficiency=0.90,
        inverter_kw=10.0,
        price=11000.0,
        warranty=Warranty(years=10, cycles=6000),
        description="High capacity for maximum peak shaving potential",
    ),
    BatterySpec(
        id="tesla-powerwall",
        brand="Tesla",
        model="Powerwall 13.5",
        nominal_kwh=13.5,
        usable_kwh=12.825,
        usable_percent=95.0,
        round_trip_efficiency=0.92,
        inverter_kw=5.0,
        price=17000.0,
        warranty=Warranty(years=10, cycles=3650),
        description="Premium battery with industry-leading efficiency",
    ),
    BatterySpec(
        id="growatt-10",
        brand="Growatt",
        model="10 kWh",
        nominal_kwh=10.0,
        usable_kwh=9.0,
        usable_percent=90.0,
        round_trip_efficiency=0.90,
        inverter_kw=5.0,
        price=10000.0,
        warranty=Warranty(years=10, cycles=6000),
        description="Entry-level battery for small homes",
    ),
    BatterySpec(
        id="growatt-15",
        brand="Growatt",
        model="15 kWh",
        nominal_kwh=15.0,
        usable_kwh=13.5,
        usable_percent=90.0,
        round_trip_efficiency=0.90,
        inverter_kw=5.0,
        price=13000.0,
        warranty=Warranty(years=10, cycles=6000),
        description="Mid-sized battery for average households",
    ),
    BatterySpec(
        id="growatt-20",
        brand="Growatt",
        model="20 kWh",
        nominal_kwh=20.0,
        usable_kwh=18.0,
        usable_percent=90.0,
        round_trip_efficiency=0.90,
        inverter_kw=5.0,
        price=16000.0,
        warranty=Warranty(years=10, cycles=6000),
        description="Large capacity for high-usage homes",
    ),
]

# Capacity-0 sentinel so solar-only estimates flow through the same code path.
ZERO_BATTERY = BatterySpec(
    id="none",
    brand="",
    model="No battery",
    nominal_kwh=0.0,
    usable_kwh=0.0,
    usable_percent=0.0,
    round_trip_efficiency=0.0,
    inverter_kw=0.0,
    price=0.0,
)


def get_battery_by_id(battery_id: str) -> Optional[BatterySpec]:
    for battery in BATTERY_SPECS:
        if battery.id == battery_id:
            return battery
    return None


def get_batteries_by_brand(brand: str) -> List[BatterySpec]:
    return [battery for battery in BATTERY_SPECS if battery.brand == brand]


def resolve_batteries(battery_ids: Iterable[str]) -> List[BatterySpec]:
    """Look up catalog entries, skipping (and logging) unknown ids."""

    resolved: List[BatterySpec] = []
    for battery_id in battery_ids:
        battery = get_battery_by_id(battery_id)
        if battery is None:
            logging.getLogger(__name__).warning("Skipping unknown battery id %r", battery_id)
            continue
        resolved.append(battery)
    return resolved


def combine_batteries(batteries: Sequence[BatterySpec]) -> BatterySpec:
    """Collapse a multi-battery selection into one equivalent spec.

    Capacities, inverter power and price add up. Round-trip efficiency is
    the usable-capacity-weighted average, and the warranty is the most
    conservative of the set (minimum years and cycles). An empty selection
    returns :data:`ZERO_BATTERY`; a single battery is returned unchanged.
    """

    if not batteries:
        return ZERO_BATTERY
    if len(batteries) == 1:
        return batteries[0]

    nominal = sum(b.nominal_kwh for b in batteries)
    usable = sum(b.usable_kwh for b in batteries)
    if usable > 0:
        efficiency = sum(b.round_trip_efficiency * b.usable_kwh for b in batteries) / usable
    else:
        efficiency = sum(b.round_trip_efficiency for b in batteries) / len(batteries)

    return BatterySpec(
        id="+".join(b.id for b in batteries),
        brand=" + ".join(dict.fromkeys(b.brand for b in batteries)),
        model=" + ".join(b.model for b in batteries),
        nominal_kwh=nominal,
        usable_kwh=usable,
        usable_percent=(usable / nominal * 100.0) if nominal > 0 else 0.0,
        round_trip_efficiency=efficiency,
        inverter_kw=sum(b.inverter_kw for b in batteries),
        price=sum(b.price for b in batteries),
        warranty=Warranty(
            years=min(b.warranty.years for b in batteries),
            cycles=min(b.warranty.cycles for b in batteries),
        ),
        description=f"Combined selection of {len(batteries)} batteries",
    )


def calculate_battery_rebate(nominal_kwh: float) -> float:
    if nominal_kwh <= 0:
        return 0.0
    return min(nominal_kwh * BATTERY_REBATE_PER_KWH, BATTERY_REBATE_MAX)


def calculate_net_price(price: float, nominal_kwh: float) -> float:
    return price - calculate_battery_rebate(nominal_kwh)


def calculate_battery_financials(battery: BatterySpec) -> BatteryFinancials:
    rebate = calculate_battery_rebate(battery.nominal_kwh)
    net_price = battery.price - rebate
    usable = battery.usable_kwh
    return BatteryFinancials(
        battery=battery,
        rebate=rebate,
        net_price=net_price,
        price_per_usable_kwh=float(round(battery.price / usable)) if usable > 0 else 0.0,
        net_price_per_usable_kwh=float(round(net_price / usable)) if usable > 0 else 0.0,
    )


def recommend_battery(
    daily_on_peak_kwh: float,
    budget: Optional[float] = None,
    batteries: Sequence[BatterySpec] = BATTERY_SPECS,
) -> Optional[BatterySpec]:
    """Pick the battery whose usable capacity is closest to 90% of daily on-peak use.

    ``budget`` filters on net (post-rebate) price. Ties keep catalog order.
    """

    candidates = list(batteries)
    if budget:
        candidates = [b for b in candidates if calculate_net_price(b.price, b.nominal_kwh) <= budget]

    target_kwh = daily_on_peak_kwh * 0.9
    best: Optional[BatterySpec] = None
    smallest_diff = float("inf")
    for battery in candidates:
        diff = abs(battery.usable_kwh - target_kwh)
        if diff < smallest_diff:
            smallest_diff = diff
            best = battery
    return best


def compare_batteries(batteries: Sequence[BatterySpec]) -> List[BatteryComparison]:
    """Score each battery on efficiency (50), net cost per usable kWh (30) and capacity (20)."""

    comparisons: List[BatteryComparison] = []
    for battery in batteries:
        financials = calculate_battery_financials(battery)
        efficiency_score = battery.round_trip_efficiency * 50
        # $1,500 per usable kWh is treated as the expensive end of the market.
        cost_score = (1 - financials.net_price_per_usable_kwh / 1500) * 30
        capacity_score = min(battery.usable_kwh / 30 * 20, 20)
        score = max(0.0, min(100.0, efficiency_score + cost_score + capacity_score))

        strengths: List[str] = []
        if battery.round_trip_efficiency >= 0.92:
            strengths.append("Excellent efficiency")
        if financials.net_price_per_usable_kwh < 600:
            strengths.append("Great value")
        if battery.usable_kwh >= 20:
            strengths.append("High capacity")
        if battery.warranty.years >= 10:
            strengths.append("Strong warranty")

        considerations: List[str] = []
        if battery.round_trip_efficiency < 0.90:
            considerations.append("Lower efficiency")
        if financials.net_price_per_usable_kwh > 1000:
            considerations.append("Premium pricing")
        if battery.usable_kwh < 10:
            considerations.append("Limited capacity")

        comparisons.append(
            BatteryComparison(
                battery=battery,
                financials=financials,
                score=int(round(score)),
                strengths=strengths,
                considerations=considerations,
            )
        )
    return comparisons


def battery_catalog_frame(batteries: Sequence[BatterySpec] = BATTERY_SPECS) -> pd.DataFrame:
    """Tabular view of the catalog with rebates and value scores."""

    rows = []
    for comparison in compare_batteries(batteries):
        battery = comparison.battery
        rows.append(
            {
                "id": battery.id,
                "brand": battery.brand,
                "model": battery.model,
                "nominal_kwh": battery.nominal_kwh,
                "usable_kwh": battery.usable_kwh,
                "round_trip_efficiency": battery.round_trip_efficiency,
                "inverter_kw": battery.inverter_kw,
                "price": battery.price,
                "rebate": comparison.financials.rebate,
                "net_price": comparison.financials.net_price,
                "net_price_per_usable_kwh": comparison.financials.net_price_per_usable_kwh,
                "warranty_years": battery.warranty.years,
                "warranty_cycles": battery.warranty.cycles,
                "score": comparison.score,
            }
        )
    return pd.DataFrame(rows)


__all__ = [
    "BATTERY_REBATE_MAX",
    "BATTERY_REBATE_PER_KWH",
    "BATTERY_SPECS",
    "BatteryComparison",
    "BatteryFinancials",
    "BatterySpec",
    "Warranty",
    "ZERO_BATTERY",
    "battery_catalog_frame",
    "calculate_battery_financials",
    "calculate_battery_rebate",
    "calculate_net_price",
    "combine_batteries",
    "compare_batteries",
    "get_batteries_by_brand",
    "get_battery_by_id",
    "recommend_battery",
    "resolve_batteries",
]

"""Per-period energy bookkeeping shared by the peak-shaving models.

Every helper here is pure: it takes a :class:`PeriodBreakdown` and returns
new breakdowns instead of mutating its inputs, so callers can keep the
before/after snapshots they report.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Dict, Mapping, Optional, Sequence, Tuple

from services.rate_plans import PeriodRates

BUCKETS = ("ultra_low", "off_peak", "mid_peak", "on_peak")

# Weekday solar lands mostly in mid-peak; weekends count as off-peak.
SOLAR_ALLOCATION_WEIGHTS: Mapping[str, float] = {
    "mid_peak": 0.5,
    "on_peak": 0.22,
    "off_peak": 0.28,
    "ultra_low": 0.0,
}
SOLAR_SPILL_ORDER = ("mid_peak", "on_peak", "off_peak")
# Overnight usage takes solar only after every daytime bucket is full.
ULO_SOLAR_SPILL_ORDER = SOLAR_SPILL_ORDER + ("ultra_low",)
DISCHARGE_ORDER = ("on_peak", "mid_peak", "off_peak")


@dataclass(frozen=True)
class PeriodBreakdown:
    """kWh (or dollars) split across the four rate buckets."""

    ultra_low: float = 0.0
    off_peak: float = 0.0
    mid_peak: float = 0.0
    on_peak: float = 0.0

    @property
    def total(self) -> float:
        return self.ultra_low + self.off_peak + self.mid_peak + self.on_peak

    def get(self, bucket: str) -> float:
        return getattr(self, bucket)

    def with_value(self, bucket: str, value: float) -> "PeriodBreakdown":
        return replace(self, **{bucket: value})

    def add(self, other: "PeriodBreakdown") -> "PeriodBreakdown":
        return PeriodBreakdown(*(self.get(b) + other.get(b) for b in BUCKETS))

    def subtract(self, other: "PeriodBreakdown") -> "PeriodBreakdown":
        return PeriodBreakdown(*(self.get(b) - other.get(b) for b in BUCKETS))

    def scale(self, factor: float) -> "PeriodBreakdown":
        return PeriodBreakdown(*(self.get(b) * factor for b in BUCKETS))

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: Mapping[str, float]) -> "PeriodBreakdown":
        return cls(**{b: float(values.get(b, 0.0) or 0.0) for b in BUCKETS})


def cost_from_usage(usage: PeriodBreakdown, rates: PeriodRates) -> float:
    """Dollar cost of ``usage`` at each bucket's rate."""
    return (
        usage.ultra_low * rates.ultra_low
        + usage.off_peak * rates.off_peak
        + usage.mid_peak * rates.mid_peak
        + usage.on_peak * rates.on_peak
    )


def cost_by_period(usage: PeriodBreakdown, rates: PeriodRates) -> PeriodBreakdown:
    return PeriodBreakdown(
        ultra_low=usage.ultra_low * rates.ultra_low,
        off_peak=usage.off_peak * rates.off_peak,
        mid_peak=usage.mid_peak * rates.mid_peak,
        on_peak=usage.on_peak * rates.on_peak,
    )


def solar_spill_order(rates: PeriodRates) -> Tuple[str, ...]:
    return ULO_SOLAR_SPILL_ORDER if rates.has_ultra_low else SOLAR_SPILL_ORDER


def allocate_solar_weighted(
    usage: PeriodBreakdown,
    solar_kwh: float,
    weights: Mapping[str, float] = SOLAR_ALLOCATION_WEIGHTS,
    spill_order: Sequence[str] = SOLAR_SPILL_ORDER,
) -> Tuple[PeriodBreakdown, PeriodBreakdown, float]:
    """Spread ``solar_kwh`` over daytime buckets by weight.

    A bucket never receives more than its own usage. Whatever a full bucket
    could not absorb is re-spread in ``spill_order`` on a second pass.
    Returns ``(allocation, usage_after_solar, unallocated_solar)``.
    """

    allocation = PeriodBreakdown()
    remaining_usage = usage
    solar_left = max(0.0, solar_kwh)

    for bucket in spill_order:
        if solar_left <= 0:
            break
        share = weights.get(bucket, 0.0)
        if share <= 0:
            continue
        available = remaining_usage.get(bucket)
        applied = min(available, solar_kwh * share, solar_left)
        allocation = allocation.with_value(bucket, applied)
        remaining_usage = remaining_usage.with_value(bucket, available - applied)
        solar_left -= applied

    for bucket in spill_order:
        if solar_left <= 0:
            break
        available = remaining_usage.get(bucket)
        if available <= 0:
            continue
        applied = min(available, solar_left)
        allocation = allocation.with_value(bucket, allocation.get(bucket) + applied)
        remaining_usage = remaining_usage.with_value(bucket, available - applied)
        solar_left -= applied

    return allocation, remaining_usage, max(0.0, solar_left)


def allocate_in_order(
    usage: PeriodBreakdown,
    energy_kwh: float,
    order: Sequence[str],
) -> Tuple[PeriodBreakdown, PeriodBreakdown, float]:
    """Apply ``energy_kwh`` to buckets strictly in ``order``.

    Used for battery discharge (most expensive bucket first). Returns
    ``(offsets, usage_after, unused_energy)``.
    """

    offsets = PeriodBreakdown()
    remaining_usage = usage
    energy_left = max(0.0, energy_kwh)
    for bucket in order:
        if energy_left <= 0:
            break
        available = remaining_usage.get(bucket)
        if available <= 0:
            continue
        applied = min(available, energy_left)
        offsets = offsets.with_value(bucket, offsets.get(bucket) + applied)
        remaining_usage = remaining_usage.with_value(bucket, available - applied)
        energy_left -= applied
    return offsets, remaining_usage, energy_left


def discharge_battery(
    usage: PeriodBreakdown,
    battery_kwh: float,
    order: Sequence[str] = DISCHARGE_ORDER,
) -> Tuple[PeriodBreakdown, PeriodBreakdown, float]:
    return allocate_in_order(usage, battery_kwh, order)


def cap_total_offset(
    usage_after_battery: PeriodBreakdown,
    battery_offsets: PeriodBreakdown,
    solar_used_kwh: float,
    annual_usage_kwh: float,
    max_offset_fraction: float,
) -> Tuple[PeriodBreakdown, PeriodBreakdown]:
    """Trim battery offsets proportionally so solar plus battery stays under a ceiling.

    Trimmed energy moves back into grid usage of the same bucket.
    """

    total_offset = solar_used_kwh + battery_offsets.total
    max_offset = annual_usage_kwh * max_offset_fraction
    if total_offset <= max_offset or battery_offsets.total <= 0:
        return usage_after_battery, battery_offsets

    ratio = min(1.0, (total_offset - max_offset) / battery_offsets.total)
    reduction = battery_offsets.scale(ratio)
    return usage_after_battery.add(reduction), battery_offsets.subtract(reduction)


def enforce_minimum_grid_purchases(
    usage_after_battery: PeriodBreakdown,
    battery_offsets: PeriodBreakdown,
    min_grid_kwh: float,
    order: Sequence[str] = ("off_peak", "mid_peak", "on_peak"),
) -> Tuple[PeriodBreakdown, PeriodBreakdown]:
    """Give energy back to the grid until purchases reach ``min_grid_kwh``.

    Cheapest battery offsets are surrendered first.
    """

    deficit = min_grid_kwh - usage_after_battery.total
    if deficit <= 0:
        return usage_after_battery, battery_offsets

    for bucket in order:
        if deficit <= 0:
            break
        offset = battery_offsets.get(bucket)
        if offset <= 0:
            continue
        reduction = min(offset, deficit)
        battery_offsets = battery_offsets.with_value(bucket, offset - reduction)
        usage_after_battery = usage_after_battery.with_value(
            bucket, usage_after_battery.get(bucket) + reduction
        )
        deficit -= reduction
    return usage_after_battery, battery_offsets


def clamp_breakdown(
    breakdown: Optional[PeriodBreakdown],
    target_total: float,
    order: Sequence[str],
    caps: Optional[Mapping[str, float]] = None,
) -> PeriodBreakdown:
    """Fill buckets in ``order`` until ``target_total`` is placed.

    ``breakdown`` is the room available per bucket. The first pass honours
    ``caps``; the second ignores them so the total reconciles whenever the
    room allows it.
    """

    if target_total <= 0:
        return PeriodBreakdown()

    room = PeriodBreakdown(*(max(0.0, (breakdown or PeriodBreakdown()).get(b)) for b in BUCKETS))
    result = PeriodBreakdown()
    remaining = target_total

    for bucket in order:
        if remaining <= 0:
            break
        available = room.get(bucket)
        if available <= 0:
            continue
        cap = caps.get(bucket) if caps else None
        allowed = max(0.0, min(cap, available)) if cap is not None else available
        if allowed <= 0:
            continue
        allocation = min(allowed, remaining)
        result = result.with_value(bucket, allocation)
        remaining -= allocation

    for bucket in order:
        if remaining <= 0:
            break
        space_left = max(0.0, room.get(bucket) - result.get(bucket))
        if space_left <= 0:
            continue
        allocation = min(space_left, remaining)
        result = result.with_value(bucket, result.get(bucket) + allocation)
        remaining -= allocation

    return result


__all__ = [
    "BUCKETS",
    "DISCHARGE_ORDER",
    "PeriodBreakdown",
    "SOLAR_ALLOCATION_WEIGHTS",
    "SOLAR_SPILL_ORDER",
    "ULO_SOLAR_SPILL_ORDER",
    "allocate_in_order",
    "allocate_solar_weighted",
    "cap_total_offset",
    "clamp_breakdown",
    "cost_by_period",
    "cost_from_usage",
    "discharge_battery",
    "enforce_minimum_grid_purchases",
    "solar_spill_order",
]

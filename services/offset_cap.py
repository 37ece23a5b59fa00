"""Winter-aware ceiling on how much of a bill solar may claim to erase.

Annual production can equal annual usage while winter months still draw
heavily from the grid. The cap keeps the "free energy" share (solar direct
plus solar-charged battery) at a believable level. It is a reporting
policy, so the coefficients live in :class:`OffsetCapPolicy` rather than in
the formula.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class OffsetCapPolicy:
    floor_fraction: float = 0.50  # cap with no production at all
    match_band_low: float = 0.95
    match_band_high: float = 1.05
    match_fraction: float = 0.90
    surplus_ratio: float = 1.10
    surplus_fraction: float = 0.92
    orientation_bonus: float = 0.01
    production_bonus: float = 0.01
    ceiling_fraction: float = 0.95
    steep_pitch_degrees: float = 35.0
    south_tolerance_degrees: float = 25.0


DEFAULT_OFFSET_CAP_POLICY = OffsetCapPolicy()


@dataclass(frozen=True)
class OffsetCapResult:
    cap_fraction: float
    base_fraction: float
    matches_usage: bool
    orientation_bonus: bool
    production_bonus: bool
    production_to_load_ratio: float


@dataclass(frozen=True)
class OffsetPercentages:
    """Share of annual usage (0-100) met by each energy source."""

    solar_direct: float = 0.0
    solar_charged_battery: float = 0.0
    ulo_charged_battery: float = 0.0
    grid_remaining: float = 0.0

    @property
    def total(self) -> float:
        return self.solar_direct + self.solar_charged_battery + self.ulo_charged_battery + self.grid_remaining


@dataclass(frozen=True)
class OffsetDisplay:
    """Capped percentages as shown to a customer."""

    solar_direct: float
    solar_charged_battery: float
    grid_charged_battery: float
    grid_remaining: float
    capped_reduction: float
    total_energy_offset: float
    bought_from_grid: float
    cap_applied: bool


def _normalize_azimuth(value: float) -> float:
    return ((value % 360) + 360) % 360


def _angular_difference(a: float, b: float) -> float:
    diff = abs(_normalize_azimuth(a) - _normalize_azimuth(b))
    return 360 - diff if diff > 180 else diff


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and np.isfinite(value)


def _clean_kwh(value: Optional[float]) -> float:
    number = float(value or 0.0)
    return number if np.isfinite(number) and number > 0 else 0.0


def is_steep_pitch(pitch: Any, policy: OffsetCapPolicy = DEFAULT_OFFSET_CAP_POLICY) -> bool:
    if _is_number(pitch):
        return float(pitch) >= policy.steep_pitch_degrees
    if isinstance(pitch, str):
        normalized = pitch.lower()
        return "steep" in normalized or "40" in normalized or "45" in normalized
    return False


def resolve_azimuth(
    roof_azimuth: Optional[float] = None,
    roof_sections: Optional[Sequence[Mapping[str, Any]]] = None,
) -> Optional[float]:
    """First usable azimuth from the explicit value, then roof sections in order."""

    if _is_number(roof_azimuth):
        return float(roof_azimuth)
    for section in roof_sections or []:
        if not section:
            continue
        if _is_number(section.get("azimuth")):
            return float(section["azimuth"])
        if _is_number(section.get("orientation_azimuth")):
            return float(section["orientation_azimuth"])
        direction = section.get("direction")
        if isinstance(direction, str) and "south" in direction.lower():
            return 180.0
    return None


def base_cap_fraction(ratio: float, policy: OffsetCapPolicy = DEFAULT_OFFSET_CAP_POLICY) -> float:
    """Piecewise-linear base cap; flat across the match band and beyond the surplus ratio."""

    return float(
        np.interp(
            ratio,
            [0.0, policy.match_band_low, policy.match_band_high, policy.surplus_ratio],
            [policy.floor_fraction, policy.match_fraction, policy.match_fraction, policy.surplus_fraction],
        )
    )


def compute_solar_battery_offset_cap(
    usage_kwh: Optional[float],
    production_kwh: Optional[float],
    roof_pitch: Any = None,
    roof_azimuth: Optional[float] = None,
    roof_sections: Optional[Sequence[Mapping[str, Any]]] = None,
    policy: OffsetCapPolicy = DEFAULT_OFFSET_CAP_POLICY,
) -> OffsetCapResult:
    """Return the maximum fraction of usage that may be reported as free energy.

    Parameters
    ----------
    usage_kwh, production_kwh
        Annual consumption and solar production. Missing, negative or
        non-finite values count as zero; zero usage yields a zero cap.
    roof_pitch
        Degrees, or a label such as ``"Steep (40°)"``.
    roof_azimuth, roof_sections
        Orientation sources. Sections are mappings with ``azimuth``,
        ``orientation_azimuth`` or ``direction`` keys.

    The result never decreases as ``production_kwh`` grows for a fixed usage.
    """

    usage = _clean_kwh(usage_kwh)
    production = _clean_kwh(production_kwh)
    if usage == 0:
        return OffsetCapResult(
            cap_fraction=0.0,
            base_fraction=0.0,
            matches_usage=False,
            orientation_bonus=False,
            production_bonus=False,
            production_to_load_ratio=0.0,
        )

    ratio = production / usage
    matches_usage = policy.match_band_low < ratio < policy.match_band_high
    azimuth = resolve_azimuth(roof_azimuth, roof_sections)
    orientation_bonus = (
        is_steep_pitch(roof_pitch, policy)
        and azimuth is not None
        and _angular_difference(azimuth, 180.0) <= policy.south_tolerance_degrees
    )
    production_bonus = ratio >= policy.surplus_ratio

    base = base_cap_fraction(ratio, policy)
    cap = base
    if orientation_bonus:
        cap += policy.orientation_bonus
    if production_bonus:
        cap += policy.production_bonus
    cap = min(max(cap, policy.floor_fraction), policy.ceiling_fraction)

    return OffsetCapResult(
        cap_fraction=cap,
        base_fraction=base,
        matches_usage=matches_usage,
        orientation_bonus=orientation_bonus,
        production_bonus=production_bonus,
        production_to_load_ratio=ratio,
    )


def scale_to_cap(components: Sequence[float], cap_total: float) -> List[float]:
    """Scale ``components`` by one common factor so their sum is at most ``cap_total``.

    Ratios between components are preserved. Components already under the
    cap come back unchanged; a non-positive cap zeroes everything.
    """

    values = [max(0.0, float(c)) for c in components]
    total = sum(values)
    if cap_total <= 0:
        return [0.0 for _ in values]
    if total <= cap_total or total <= 0:
        return values
    factor = cap_total / total
    return [v * factor for v in values]


def build_offset_display(
    percentages: OffsetPercentages,
    cap_fraction: Optional[float],
    tolerance: float = 0.1,
) -> OffsetDisplay:
    """Apply the cap to uncapped percentages and close the total at 100%.

    Only solar direct and solar-charged battery are capped. The trimmed
    share is bought from the grid, alongside grid-charged battery energy and
    the remaining grid draw.
    """

    solar_direct = percentages.solar_direct
    solar_battery = percentages.solar_charged_battery
    capped_reduction = 0.0
    cap_applied = False

    if cap_fraction is not None and np.isfinite(cap_fraction):
        cap_percent = min(max(cap_fraction, 0.0), 1.0) * 100.0
        if solar_direct + solar_battery > cap_percent:
            solar_direct, solar_battery = scale_to_cap([solar_direct, solar_battery], cap_percent)
            capped_reduction = percentages.solar_direct + percentages.solar_charged_battery - solar_direct - solar_battery
            cap_applied = True

    total_offset = solar_direct + solar_battery
    bought = percentages.ulo_charged_battery + percentages.grid_remaining + capped_reduction
    if percentages.total > 0 and abs(total_offset + bought - 100.0) > tolerance:
        bought = 100.0 - total_offset

    return OffsetDisplay(
        solar_direct=solar_direct,
        solar_charged_battery=solar_battery,
        grid_charged_battery=percentages.ulo_charged_battery,
        grid_remaining=percentages.grid_remaining,
        capped_reduction=capped_reduction,
        total_energy_offset=total_offset,
        bought_from_grid=bought,
        cap_applied=cap_applied,
    )


__all__ = [
    "DEFAULT_OFFSET_CAP_POLICY",
    "OffsetCapPolicy",
    "OffsetCapResult",
    "OffsetDisplay",
    "OffsetPercentages",
    "base_cap_fraction",
    "build_offset_display",
    "compute_solar_battery_offset_cap",
    "is_steep_pitch",
    "resolve_azimuth",
    "scale_to_cap",
]

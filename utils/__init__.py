"""Utility helpers shared by the estimator services, API and reports."""

from utils.economics import (
    calculate_combined_multi_year,
    calculate_simple_multi_year,
    calculate_solar_rebate,
    calculate_system_cost,
)

__all__ = [
    "calculate_combined_multi_year",
    "calculate_simple_multi_year",
    "calculate_solar_rebate",
    "calculate_system_cost",
]

"""Common utility functions."""

from .geo import distance_km
from .fare import (
    DEFAULT_FARE_TIERS,
    DEFAULT_TIER,
    calculate_fare,
    estimate_time,
    fare_estimates,
    pickup_eta_minutes,
    resolve_tier,
)

__all__ = [
    "distance_km",
    "DEFAULT_FARE_TIERS",
    "DEFAULT_TIER",
    "calculate_fare",
    "estimate_time",
    "fare_estimates",
    "pickup_eta_minutes",
    "resolve_tier",
]

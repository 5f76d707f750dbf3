"""
Fare and travel-time estimates.

Fares are tiered: each tier has a base fare, a per-km rate and an average
speed used for time estimates. Unknown tiers fall back to the default tier.
"""

from typing import Any, Dict, Mapping, Optional

from .geo import PointLike, distance_km

DEFAULT_TIER = "economy"

DEFAULT_FARE_TIERS: Dict[str, Dict[str, float]] = {
    "economy": {"base": 20.0, "per_km": 5.0, "avg_speed_kmh": 25.0},
    "classic": {"base": 30.0, "per_km": 8.0, "avg_speed_kmh": 35.0},
}

# Client-facing names that map onto a tier
TIER_ALIASES = {
    "bike": "economy",
    "ride": "economy",
    "car": "classic",
    "delivery": "classic",
}


def resolve_tier(
    tier: Optional[str],
    tiers: Mapping[str, Mapping[str, float]] = DEFAULT_FARE_TIERS,
    default: str = DEFAULT_TIER,
) -> str:
    """Normalize a requested tier name; never raises."""
    if not tier:
        return default
    name = str(tier).strip().lower()
    name = TIER_ALIASES.get(name, name)
    return name if name in tiers else default


def _tier_config(tier, tiers, default) -> Mapping[str, float]:
    return tiers[resolve_tier(tier, tiers, default)]


def calculate_fare(
    distance: float,
    tier: Optional[str] = None,
    tiers: Mapping[str, Mapping[str, float]] = DEFAULT_FARE_TIERS,
    default: str = DEFAULT_TIER,
) -> float:
    """
    Calculate fare as ``base + per_km * distance``, rounded to 2 decimals.

    Args:
        distance: Trip distance in kilometers
        tier: Tier name (aliases accepted, unknown falls back to default)
        tiers: Tier table
        default: Fallback tier name

    Returns:
        Fare amount
    """
    config = _tier_config(tier, tiers, default)
    fare = config["base"] + config["per_km"] * (distance or 0)
    return round(fare, 2)


def estimate_time(
    distance: float,
    tier: Optional[str] = None,
    tiers: Mapping[str, Mapping[str, float]] = DEFAULT_FARE_TIERS,
    default: str = DEFAULT_TIER,
) -> float:
    """Estimated travel time in minutes at the tier's average speed."""
    config = _tier_config(tier, tiers, default)
    return round((distance or 0) / config["avg_speed_kmh"] * 60, 2)


def pickup_eta_minutes(driver_position: Optional[PointLike], pickup: PointLike, speed_kmh: float = 30.0) -> int:
    """Naive straight-line ETA for a driver heading to pickup; 10 minutes when position is unknown."""
    if driver_position is None:
        return 10
    return max(1, round(distance_km(driver_position, pickup) / speed_kmh * 60))


def fare_estimates(
    pickup: PointLike,
    dropoff: PointLike,
    tiers: Mapping[str, Mapping[str, float]] = DEFAULT_FARE_TIERS,
) -> Dict[str, Any]:
    """Fare and time estimates for every configured tier."""
    distance = distance_km(pickup, dropoff)
    estimates: Dict[str, Any] = {"distance_km": round(distance, 2), "tiers": {}}
    for name in tiers:
        estimates["tiers"][name] = {
            "amount": calculate_fare(distance, name, tiers),
            "est_time_minutes": estimate_time(distance, name, tiers),
        }
    return estimates

"""
Candidate selection for ride requests.

Uses live driver presence and distance from pickup to build the ordered
list of drivers a ride is offered to (closest first).
"""

import logging
from typing import Any, Dict, List

from common.utils import distance_km
from common.utils.geo import PointLike

from .presence import PresenceRegistry

logger = logging.getLogger(__name__)


def _ranked(registry: PresenceRegistry, pickup: PointLike, radius_km: float) -> List[tuple]:
    candidates: List[tuple] = []
    for record in registry.all_available():
        distance = distance_km(pickup, record.position)
        # Only keep drivers inside the search radius
        if distance <= radius_km:
            candidates.append((distance, record.driver_id, record))

    # Sort closest → farthest, driver id breaks ties
    candidates.sort(key=lambda item: (item[0], item[1]))
    return candidates


def find_candidates(registry: PresenceRegistry, pickup: PointLike, radius_km: float = 5.0) -> List[int]:
    """
    Build the ordered candidate queue for one pickup point.

    Args:
        registry: Presence registry to read live drivers from
        pickup: Pickup point
        radius_km: Search radius in kilometers

    Returns:
        Driver ids sorted by ascending distance; empty when nobody qualifies
    """
    driver_ids = [driver_id for _, driver_id, _ in _ranked(registry, pickup, radius_km)]
    logger.debug("Found %d candidates (radius=%skm)", len(driver_ids), radius_km)
    return driver_ids


def nearby_drivers(registry: PresenceRegistry, point: PointLike, radius_km: float = 5.0) -> List[Dict[str, Any]]:
    """Available drivers around a point, for a rider's map view."""
    return [
        {
            "driver_id": driver_id,
            "lat": record.lat,
            "lng": record.lng,
            "distance_km": round(distance, 2),
        }
        for distance, driver_id, record in _ranked(registry, point, radius_km)
    ]

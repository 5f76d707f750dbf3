"""Dispatch tunables, read once from ``settings.DISPATCH``."""

from dataclasses import dataclass, field
from typing import Dict, Mapping

from common.utils.fare import DEFAULT_FARE_TIERS, DEFAULT_TIER


@dataclass(frozen=True)
class DispatchConfig:
    search_radius_km: float = 5.0
    response_timeout: float = 15.0          # seconds a driver has to answer an offer
    liveness_window: float = 60.0           # seconds before a heartbeat counts as stale
    abandoned_offer_grace: float = 30.0
    pickup_speed_kmh: float = 30.0
    default_tier: str = DEFAULT_TIER
    fare_tiers: Mapping[str, Mapping[str, float]] = field(
        default_factory=lambda: dict(DEFAULT_FARE_TIERS)
    )

    @classmethod
    def from_settings(cls) -> "DispatchConfig":
        from django.conf import settings

        conf: Dict = getattr(settings, "DISPATCH", {})
        defaults = cls()
        return cls(
            search_radius_km=float(conf.get("SEARCH_RADIUS_KM", defaults.search_radius_km)),
            response_timeout=float(conf.get("DRIVER_RESPONSE_TIMEOUT", defaults.response_timeout)),
            liveness_window=float(conf.get("PRESENCE_LIVENESS_SECONDS", defaults.liveness_window)),
            abandoned_offer_grace=float(conf.get("ABANDONED_OFFER_GRACE_SECONDS", defaults.abandoned_offer_grace)),
            pickup_speed_kmh=float(conf.get("PICKUP_SPEED_KMH", defaults.pickup_speed_kmh)),
            default_tier=conf.get("DEFAULT_TIER", defaults.default_tier),
            fare_tiers=conf.get("FARE_TIERS", defaults.fare_tiers),
        )

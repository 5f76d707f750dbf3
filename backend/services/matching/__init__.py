"""
Driver matching and offer dispatch service.

This module handles:
    - Tracking live driver presence
    - Selecting and ordering candidate drivers for a pickup
    - Dispatching offers to drivers one at a time (daisy-chain pattern)
"""

from .config import DispatchConfig
from .presence import PresenceRegistry
from .candidates import find_candidates, nearby_drivers
from .offer_dispatch import DispatchCoordinator

__all__ = [
    "DispatchConfig",
    "PresenceRegistry",
    "find_candidates",
    "nearby_drivers",
    "DispatchCoordinator",
]

"""
Storage layer for the dispatch core.

    - records: plain record types and status constants
    - base: the DispatchStore contract
    - memory: in-memory DispatchStore
"""

from .base import UNSET, DispatchStore
from .memory import InMemoryStore
from .records import (
    AttemptOutcome,
    AttemptRecord,
    Availability,
    DriverSummary,
    GeoPoint,
    PresenceRecord,
    RideRequestRecord,
    RideStatus,
    TripLocationRecord,
    TripRecord,
    TripStatus,
)

__all__ = [
    "UNSET",
    "DispatchStore",
    "InMemoryStore",
    "AttemptOutcome",
    "AttemptRecord",
    "Availability",
    "DriverSummary",
    "GeoPoint",
    "PresenceRecord",
    "RideRequestRecord",
    "RideStatus",
    "TripLocationRecord",
    "TripRecord",
    "TripStatus",
]

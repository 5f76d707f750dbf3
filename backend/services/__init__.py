"""
Services package - Dispatch core.

This package contains the dispatch logic. It talks to persistence through
``services.storage.DispatchStore`` and to clients through
``services.transport.Transport``, so it is decoupled from the ORM and from
the WebSocket layer.

Modules:
    - storage: Store contract, records and the in-memory store
    - matching: Driver presence, candidate selection and offer dispatch
    - ride_management: Trip lifecycle, errors and the engine facade
    - transport: Session bindings and best-effort notification
"""

from .matching import DispatchConfig, DispatchCoordinator, PresenceRegistry, find_candidates
from .ride_management import (
    RideResult,
    TripLifecycleManager,
    DispatchError,
    RideNotFoundError,
    RideNotAvailableError,
    ActiveRideExistsError,
    UnauthorizedError,
    ValidationError,
)
from .ride_management.engine import DispatchEngine

__all__ = [
    # Matching
    "DispatchConfig",
    "DispatchCoordinator",
    "PresenceRegistry",
    "find_candidates",
    # Ride management
    "DispatchEngine",
    "RideResult",
    "TripLifecycleManager",
    # Exceptions
    "DispatchError",
    "RideNotFoundError",
    "RideNotAvailableError",
    "ActiveRideExistsError",
    "UnauthorizedError",
    "ValidationError",
]

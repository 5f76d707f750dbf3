"""
Ride management service - Trip lifecycle and error taxonomy.

This module handles:
    - Driver status updates after acceptance
    - Creating and completing trips
    - Trip location logging
    - Querying trips

The ``DispatchEngine`` facade lives in ``services.ride_management.engine``.
"""

from .exceptions import (
    DispatchError,
    ValidationError,
    NotFoundError,
    RideNotFoundError,
    TripNotFoundError,
    DriverNotFoundError,
    ConflictError,
    RideNotAvailableError,
    ActiveRideExistsError,
    InvalidTransitionError,
    UnauthorizedError,
    TransientUnavailable,
)
from .results import RideResult
from .trip_lifecycle import TripLifecycleManager

__all__ = [
    "RideResult",
    "TripLifecycleManager",
    # Exceptions
    "DispatchError",
    "ValidationError",
    "NotFoundError",
    "RideNotFoundError",
    "TripNotFoundError",
    "DriverNotFoundError",
    "ConflictError",
    "RideNotAvailableError",
    "ActiveRideExistsError",
    "InvalidTransitionError",
    "UnauthorizedError",
    "TransientUnavailable",
]

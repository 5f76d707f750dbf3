"""
Storage contract for the dispatch core.

Every method is a coroutine so that database-backed implementations can
suspend. Implementations must make ``transition_request`` and
``resolve_attempt`` atomic compare-and-set operations: they only write
when the current persisted value matches and report whether they did.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from .records import (
    AttemptRecord,
    DriverSummary,
    GeoPoint,
    PresenceRecord,
    RideRequestRecord,
    TripLocationRecord,
    TripRecord,
)


class _Unset:
    def __repr__(self):
        return "UNSET"


UNSET = _Unset()


class DispatchStore(ABC):
    """Persistent state used by the dispatch engine."""

    # ---------------------- Ride requests ----------------------

    @abstractmethod
    async def create_request(
        self,
        rider_id: int,
        pickup: GeoPoint,
        dropoff: GeoPoint,
        distance_km: float,
        estimated_fare: float,
        tier: str,
    ) -> RideRequestRecord:
        """Persist a new request in the ``searching`` state."""

    @abstractmethod
    async def get_request(self, request_id: int) -> Optional[RideRequestRecord]:
        ...

    @abstractmethod
    async def find_requests(
        self,
        rider_id: Optional[int] = None,
        statuses: Optional[Iterable[str]] = None,
        driver_id: Optional[int] = None,
    ) -> List[RideRequestRecord]:
        """Requests filtered by rider, status and/or accepted driver, oldest first."""

    @abstractmethod
    async def transition_request(
        self,
        request_id: int,
        from_statuses: Iterable[str],
        to_status: str,
        accepted_driver_id: Optional[int] = None,
    ) -> bool:
        """Set ``status`` only if the current status is in ``from_statuses``."""

    # ---------------------- Attempts ----------------------

    @abstractmethod
    async def create_attempt(self, request_id: int, driver_id: int, outcome: str) -> AttemptRecord:
        ...

    @abstractmethod
    async def resolve_attempt(self, request_id: int, driver_id: int, outcome: str) -> bool:
        """Move the driver's ``sent`` attempt for the request to ``outcome``."""

    @abstractmethod
    async def list_attempts(
        self,
        request_id: Optional[int] = None,
        outcome: Optional[str] = None,
        sent_before: Optional[datetime] = None,
    ) -> List[AttemptRecord]:
        """Attempts in the order they were recorded."""

    # ---------------------- Driver presence ----------------------

    @abstractmethod
    async def upsert_presence(
        self,
        driver_id: int,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        availability: Optional[str] = None,
        session_id=UNSET,
        last_seen: Optional[datetime] = None,
    ) -> PresenceRecord:
        """Create or update a heartbeat row; ``None``/``UNSET`` fields are left unchanged."""

    @abstractmethod
    async def get_presence(self, driver_id: int) -> Optional[PresenceRecord]:
        ...

    @abstractmethod
    async def list_presence(self) -> List[PresenceRecord]:
        ...

    @abstractmethod
    async def get_driver_summary(self, driver_id: int) -> Optional[DriverSummary]:
        """Driver/vehicle details, or ``None`` if the id is not a registered driver."""

    # ---------------------- Trips ----------------------

    @abstractmethod
    async def create_trip(
        self,
        rider_id: int,
        driver_id: int,
        pickup: GeoPoint,
        dropoff: GeoPoint,
        distance_km: float,
        fare: Optional[float],
        status: str,
        request_id: Optional[int] = None,
        started_at: Optional[datetime] = None,
    ) -> TripRecord:
        ...

    @abstractmethod
    async def get_trip(self, trip_id: int) -> Optional[TripRecord]:
        ...

    @abstractmethod
    async def find_open_trip(self, rider_id: int, driver_id: int) -> Optional[TripRecord]:
        """The most recent non-terminal trip for a (rider, driver) pair."""

    @abstractmethod
    async def find_driver_trip(self, driver_id: int, status: str) -> Optional[TripRecord]:
        ...

    @abstractmethod
    async def find_request_trip(self, request_id: int) -> Optional[TripRecord]:
        ...

    @abstractmethod
    async def update_trip(self, trip_id: int, **fields) -> TripRecord:
        ...

    @abstractmethod
    async def list_trips(
        self,
        rider_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple:
        """Return ``(total, trips)`` newest first."""

    @abstractmethod
    async def append_trip_location(
        self,
        trip_id: int,
        lat: float,
        lng: float,
        actor: str = "driver",
        heading: Optional[int] = None,
        speed_kph: Optional[float] = None,
    ) -> TripLocationRecord:
        ...

    @abstractmethod
    async def list_trip_locations(self, trip_id: int) -> List[TripLocationRecord]:
        ...

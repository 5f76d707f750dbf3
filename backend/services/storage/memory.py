"""
In-memory implementation of the dispatch store.

Used by the test-suite and for running the engine without a database
(``DISPATCH["STORE"] = "services.storage.memory.InMemoryStore"``). Every
method completes without yielding to the event loop, so each call is
atomic with respect to other coroutines.
"""

import itertools
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from django.utils import timezone

from .base import UNSET, DispatchStore
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


class InMemoryStore(DispatchStore):

    def __init__(self, clock: Callable[[], datetime] = timezone.now):
        self._clock = clock
        self._ids = itertools.count(1)
        self.requests: Dict[int, RideRequestRecord] = {}
        self.attempts: List[AttemptRecord] = []
        self.presence: Dict[int, PresenceRecord] = {}
        self.drivers: Dict[int, DriverSummary] = {}
        self.trips: Dict[int, TripRecord] = {}
        self.trip_locations: List[TripLocationRecord] = []

    def register_driver(self, driver_id: int, name: str = "Driver", vehicle_number: str = "", vehicle_type: str = "economy"):
        """Add a driver profile (the ORM store reads these from DriverProfile)."""
        self.drivers[driver_id] = DriverSummary(
            driver_id=driver_id,
            name=name,
            vehicle_number=vehicle_number,
            vehicle_type=vehicle_type,
        )

    # ---------------------- Ride requests ----------------------

    async def create_request(self, rider_id, pickup, dropoff, distance_km, estimated_fare, tier):
        record = RideRequestRecord(
            id=next(self._ids),
            rider_id=rider_id,
            pickup=replace(pickup),
            dropoff=replace(dropoff),
            distance_km=distance_km,
            estimated_fare=estimated_fare,
            tier=tier,
            status=RideStatus.SEARCHING,
            created_at=self._clock(),
        )
        self.requests[record.id] = record
        return replace(record)

    async def get_request(self, request_id):
        record = self.requests.get(request_id)
        return replace(record) if record else None

    async def find_requests(self, rider_id=None, statuses=None, driver_id=None):
        statuses = set(statuses) if statuses is not None else None
        return [
            replace(r) for r in self.requests.values()
            if (rider_id is None or r.rider_id == rider_id)
            and (driver_id is None or r.accepted_driver_id == driver_id)
            and (statuses is None or r.status in statuses)
        ]

    async def transition_request(self, request_id, from_statuses, to_status, accepted_driver_id=None):
        record = self.requests.get(request_id)
        if record is None or record.status not in set(from_statuses):
            return False
        record.status = to_status
        if accepted_driver_id is not None:
            record.accepted_driver_id = accepted_driver_id
        return True

    # ---------------------- Attempts ----------------------

    async def create_attempt(self, request_id, driver_id, outcome):
        now = self._clock()
        attempt = AttemptRecord(
            id=next(self._ids),
            request_id=request_id,
            driver_id=driver_id,
            outcome=outcome,
            sent_at=now,
            responded_at=None if outcome == AttemptOutcome.SENT else now,
        )
        self.attempts.append(attempt)
        return replace(attempt)

    async def resolve_attempt(self, request_id, driver_id, outcome):
        for attempt in self.attempts:
            if (
                attempt.request_id == request_id
                and attempt.driver_id == driver_id
                and attempt.outcome == AttemptOutcome.SENT
            ):
                attempt.outcome = outcome
                attempt.responded_at = self._clock()
                return True
        return False

    async def list_attempts(self, request_id=None, outcome=None, sent_before=None):
        return [
            replace(a) for a in self.attempts
            if (request_id is None or a.request_id == request_id)
            and (outcome is None or a.outcome == outcome)
            and (sent_before is None or a.sent_at < sent_before)
        ]

    # ---------------------- Driver presence ----------------------

    async def upsert_presence(self, driver_id, lat=None, lng=None, availability=None, session_id=UNSET, last_seen=None):
        record = self.presence.get(driver_id)
        if record is None:
            record = PresenceRecord(driver_id=driver_id, availability=Availability.OFFLINE)
            self.presence[driver_id] = record
        if lat is not None and lng is not None:
            record.lat, record.lng = float(lat), float(lng)
        if availability is not None:
            record.availability = availability
        if session_id is not UNSET:
            record.session_id = session_id
        record.last_seen = last_seen or self._clock()
        return replace(record)

    async def get_presence(self, driver_id):
        record = self.presence.get(driver_id)
        return replace(record) if record else None

    async def list_presence(self):
        return [replace(p) for p in self.presence.values()]

    async def get_driver_summary(self, driver_id):
        summary = self.drivers.get(driver_id)
        return replace(summary) if summary else None

    # ---------------------- Trips ----------------------

    async def create_trip(self, rider_id, driver_id, pickup, dropoff, distance_km, fare, status, request_id=None, started_at=None):
        trip = TripRecord(
            id=next(self._ids),
            rider_id=rider_id,
            driver_id=driver_id,
            pickup=replace(pickup),
            dropoff=replace(dropoff),
            distance_km=distance_km,
            fare=fare,
            status=status,
            request_id=request_id,
            started_at=started_at,
            created_at=self._clock(),
        )
        self.trips[trip.id] = trip
        return replace(trip)

    async def get_trip(self, trip_id):
        trip = self.trips.get(trip_id)
        return replace(trip) if trip else None

    def _newest(self, trips: Iterable[TripRecord]) -> Optional[TripRecord]:
        trips = sorted(trips, key=lambda t: t.id, reverse=True)
        return replace(trips[0]) if trips else None

    async def find_open_trip(self, rider_id, driver_id):
        return self._newest(
            t for t in self.trips.values()
            if t.rider_id == rider_id and t.driver_id == driver_id and t.status in TripStatus.OPEN
        )

    async def find_driver_trip(self, driver_id, status):
        return self._newest(
            t for t in self.trips.values() if t.driver_id == driver_id and t.status == status
        )

    async def find_request_trip(self, request_id):
        return self._newest(t for t in self.trips.values() if t.request_id == request_id)

    async def update_trip(self, trip_id, **fields):
        trip = self.trips[trip_id]
        for name, value in fields.items():
            setattr(trip, name, value)
        return replace(trip)

    async def list_trips(self, rider_id=None, driver_id=None, limit=20, offset=0):
        trips = sorted(
            (
                t for t in self.trips.values()
                if (rider_id is None or t.rider_id == rider_id)
                and (driver_id is None or t.driver_id == driver_id)
            ),
            key=lambda t: t.id,
            reverse=True,
        )
        return len(trips), [replace(t) for t in trips[offset:offset + limit]]

    async def append_trip_location(self, trip_id, lat, lng, actor="driver", heading=None, speed_kph=None):
        location = TripLocationRecord(
            id=next(self._ids),
            trip_id=trip_id,
            lat=float(lat),
            lng=float(lng),
            actor=actor,
            heading=heading,
            speed_kph=speed_kph,
            recorded_at=self._clock(),
        )
        self.trip_locations.append(location)
        return replace(location)

    async def list_trip_locations(self, trip_id):
        return [replace(loc) for loc in self.trip_locations if loc.trip_id == trip_id]

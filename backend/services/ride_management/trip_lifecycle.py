"""
Trip lifecycle after a ride request has been accepted.

The accepted driver drives the trip forward with status updates
(arrived at pickup, ride started, completed). Location pings sent while
a trip is in progress are logged and relayed to the rider.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from django.utils import timezone

from services.matching.presence import PresenceRegistry
from services.storage import (
    Availability,
    DispatchStore,
    RideRequestRecord,
    RideStatus,
    TripRecord,
    TripStatus,
)
from services.transport import Notifier

from .exceptions import (
    ConflictError,
    InvalidTransitionError,
    RideNotAvailableError,
    RideNotFoundError,
    TripNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from .results import RideResult

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"
ARRIVED_AT_PICKUP = "arrived_at_pickup"
RIDE_STARTED = "ride_started"
COMPLETED = "completed"
CANCELLED = "cancelled"

DRIVER_STATUSES = (ACCEPTED, ARRIVED_AT_PICKUP, RIDE_STARTED, COMPLETED, CANCELLED)

STATUS_MESSAGES = {
    ACCEPTED: "Driver accepted your ride",
    ARRIVED_AT_PICKUP: "Driver has arrived at your pickup location",
    RIDE_STARTED: "Your ride has started",
    COMPLETED: "Ride completed",
    CANCELLED: "Driver cancelled the ride",
}

MAX_HISTORY_LIMIT = 100


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, "Status updated")


class TripLifecycleManager:
    """Owns trip state from acceptance to completion."""

    def __init__(
        self,
        store: DispatchStore,
        presence: PresenceRegistry,
        notifier: Notifier,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.store = store
        self.presence = presence
        self.notifier = notifier
        self._clock = clock

    # ===================== Driver Operations =====================

    async def status_update(
        self,
        driver_id: int,
        request_id: int,
        status: str,
        fare: Optional[float] = None,
    ) -> RideResult:
        """
        Apply a driver's status update to an accepted ride.

        Args:
            driver_id: Driver sending the update
            request_id: Accepted ride request
            status: One of ``DRIVER_STATUSES``
            fare: Final fare for ``completed``; defaults to the estimate

        Returns:
            RideResult whose ``ride`` is the affected trip (if any)

        Raises:
            ValidationError: Unknown status
            RideNotFoundError: Unknown request
            UnauthorizedError: Driver is not the accepted driver
            RideNotAvailableError: Request is not in the accepted state
            InvalidTransitionError: Trip cannot move to the requested state
        """
        if status not in DRIVER_STATUSES:
            raise ValidationError(f"Unknown ride status '{status}'")

        request = await self.store.get_request(request_id)
        if request is None:
            raise RideNotFoundError("Ride not found")
        if request.accepted_driver_id != driver_id:
            raise UnauthorizedError("You are not assigned to this ride")
        if request.status != RideStatus.ACCEPTED:
            raise RideNotAvailableError(f"Ride is {request.status}, not accepted")

        extra: Dict[str, Any] = {}
        trip = None
        if status == RIDE_STARTED:
            trip, created = await self._start_trip(request, driver_id)
            extra["trip_created"] = created
        elif status == COMPLETED:
            trip = await self._complete_trip(request, driver_id, fare)
            extra["trip_completed"] = True
        elif status == CANCELLED:
            trip = await self._cancel_by_driver(request, driver_id)

        logger.info("Ride %s status '%s' from driver %s", request_id, status, driver_id)

        payload = {
            "request_id": request_id,
            "status": status,
            "message": status_message(status),
        }
        if trip is not None:
            payload["trip_id"] = trip.id
        await self.notifier.to_rider(request.rider_id, "ride-status-update", payload)

        if status == COMPLETED:
            await self._send_summary(request, trip)
        else:
            await self.notifier.to_driver(driver_id, "ride-status-update", payload)

        return RideResult(success=True, ride=trip, message=status_message(status), extra=extra)

    async def _start_trip(self, request: RideRequestRecord, driver_id: int):
        trip = await self.store.find_request_trip(request.id)
        if trip is None:
            trip = await self.store.find_open_trip(request.rider_id, driver_id)

        if trip is not None:
            if trip.status == TripStatus.IN_PROGRESS:
                return trip, False
            if not TripStatus.can_transition(trip.status, TripStatus.IN_PROGRESS):
                raise InvalidTransitionError(f"Trip is already {trip.status}")
            trip = await self.store.update_trip(
                trip.id,
                status=TripStatus.IN_PROGRESS,
                started_at=trip.started_at or self._clock(),
            )
            return trip, False

        # one in-progress trip per driver
        busy = await self.store.find_driver_trip(driver_id, TripStatus.IN_PROGRESS)
        if busy is not None:
            raise ConflictError(f"Driver already has trip {busy.id} in progress")

        trip = await self.store.create_trip(
            rider_id=request.rider_id,
            driver_id=driver_id,
            pickup=request.pickup,
            dropoff=request.dropoff,
            distance_km=request.distance_km,
            fare=request.estimated_fare,
            status=TripStatus.IN_PROGRESS,
            request_id=request.id,
            started_at=self._clock(),
        )
        await self.presence.set_availability(driver_id, Availability.BUSY)
        logger.info("Trip %s started for ride %s", trip.id, request.id)
        return trip, True

    async def _complete_trip(self, request: RideRequestRecord, driver_id: int, fare: Optional[float]) -> TripRecord:
        trip = await self.store.find_request_trip(request.id)
        if trip is None or trip.status != TripStatus.IN_PROGRESS:
            raise InvalidTransitionError("Ride has not started yet")

        final_fare = round(float(fare), 2) if fare is not None else request.estimated_fare
        trip = await self.store.update_trip(
            trip.id,
            status=TripStatus.COMPLETED,
            fare=final_fare,
            completed_at=self._clock(),
        )
        await self.presence.set_availability(driver_id, Availability.AVAILABLE)
        logger.info("Trip %s completed (fare=%s)", trip.id, final_fare)
        return trip

    async def _cancel_by_driver(self, request: RideRequestRecord, driver_id: int) -> Optional[TripRecord]:
        moved = await self.store.transition_request(request.id, [RideStatus.ACCEPTED], RideStatus.CANCELLED)
        if not moved:
            raise RideNotAvailableError("Ride was resolved before it could be cancelled")
        trip = await self.cancel_open_trip(request.rider_id, driver_id)
        await self.presence.set_availability(driver_id, Availability.AVAILABLE)
        return trip

    async def _send_summary(self, request: RideRequestRecord, trip: TripRecord) -> None:
        duration = None
        if trip.started_at and trip.completed_at:
            duration = round((trip.completed_at - trip.started_at).total_seconds() / 60, 1)
        summary = {
            "request_id": request.id,
            "trip_id": trip.id,
            "fare": trip.fare,
            "distance_km": trip.distance_km,
            "duration_minutes": duration,
        }
        await self.notifier.to_rider(request.rider_id, "ride-summary", summary)
        await self.notifier.to_driver(trip.driver_id, "ride-completed", summary)

    async def record_location(
        self,
        driver_id: int,
        lat: float,
        lng: float,
        heading: Optional[int] = None,
        speed_kph: Optional[float] = None,
    ) -> Optional[TripRecord]:
        """Log and relay a driver ping if the driver has a trip in progress."""
        trip = await self.store.find_driver_trip(driver_id, TripStatus.IN_PROGRESS)
        if trip is None:
            return None
        await self.store.append_trip_location(trip.id, lat, lng, heading=heading, speed_kph=speed_kph)
        await self.notifier.to_rider(trip.rider_id, "driver-location", {
            "trip_id": trip.id,
            "request_id": trip.request_id,
            "driver_id": driver_id,
            "lat": lat,
            "lng": lng,
            "heading": heading,
            "speed_kph": speed_kph,
        })
        return trip

    async def cancel_open_trip(self, rider_id: int, driver_id: int) -> Optional[TripRecord]:
        trip = await self.store.find_open_trip(rider_id, driver_id)
        if trip is None:
            return None
        if not TripStatus.can_transition(trip.status, TripStatus.CANCELLED):
            return None
        trip = await self.store.update_trip(trip.id, status=TripStatus.CANCELLED)
        logger.info("Trip %s cancelled", trip.id)
        return trip

    # ===================== Queries =====================

    async def get_trip(self, actor_id: int, trip_id: int) -> TripRecord:
        trip = await self.store.get_trip(trip_id)
        if trip is None:
            raise TripNotFoundError("Trip not found")
        if actor_id not in (trip.rider_id, trip.driver_id):
            raise UnauthorizedError("You are not part of this trip")
        return trip

    async def history(self, actor_id: int, role: str = "rider", limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        limit = max(1, min(int(limit), MAX_HISTORY_LIMIT))
        offset = max(0, int(offset))
        if role == "driver":
            total, trips = await self.store.list_trips(driver_id=actor_id, limit=limit, offset=offset)
        else:
            total, trips = await self.store.list_trips(rider_id=actor_id, limit=limit, offset=offset)
        return {
            "total": total,
            "limit": limit,
            "offset": offset,
            "trips": [trip.to_payload() for trip in trips],
        }

"""
ORM-backed DispatchStore.

Every call runs in a worker thread via ``database_sync_to_async``. Status
changes that decide a race (request transitions, attempt resolution) are
single conditional ``UPDATE`` statements, so the database picks the winner.
"""

import logging
from decimal import Decimal

from channels.db import database_sync_to_async
from django.utils import timezone

from drivers.models import DriverPresence, DriverProfile
from rides.models import RideRequest, RideRequestAttempt, Trip, TripLocation
from services.ride_management.exceptions import TripNotFoundError
from services.storage import (
    UNSET,
    AttemptOutcome,
    AttemptRecord,
    DispatchStore,
    DriverSummary,
    GeoPoint,
    PresenceRecord,
    RideRequestRecord,
    RideStatus,
    TripLocationRecord,
    TripRecord,
    TripStatus,
)

logger = logging.getLogger(__name__)

TRIP_UPDATE_FIELDS = {"status", "fare", "started_at", "completed_at"}


def _float(value):
    return float(value) if value is not None else None


def _coord(value) -> Decimal:
    return Decimal(str(round(float(value), 6)))


def _money(value) -> Decimal:
    return Decimal(str(round(float(value), 2)))


def _point(obj, prefix: str) -> GeoPoint:
    return GeoPoint(
        lat=float(getattr(obj, f"{prefix}_latitude")),
        lng=float(getattr(obj, f"{prefix}_longitude")),
        address=getattr(obj, f"{prefix}_address") or "",
    )


def _point_fields(point: GeoPoint, prefix: str) -> dict:
    return {
        f"{prefix}_latitude": _coord(point.lat),
        f"{prefix}_longitude": _coord(point.lng),
        f"{prefix}_address": point.address or "",
    }


def request_record(ride: RideRequest) -> RideRequestRecord:
    return RideRequestRecord(
        id=ride.id,
        rider_id=ride.rider_id,
        pickup=_point(ride, "pickup"),
        dropoff=_point(ride, "dropoff"),
        distance_km=float(ride.distance_km),
        estimated_fare=float(ride.estimated_fare),
        tier=ride.tier,
        status=ride.status,
        accepted_driver_id=ride.accepted_driver_id,
        created_at=ride.requested_at,
    )


def attempt_record(attempt: RideRequestAttempt) -> AttemptRecord:
    return AttemptRecord(
        id=attempt.id,
        request_id=attempt.ride_id,
        driver_id=attempt.driver_id,
        outcome=attempt.outcome,
        sent_at=attempt.sent_at,
        responded_at=attempt.responded_at,
    )


def presence_record(presence: DriverPresence) -> PresenceRecord:
    return PresenceRecord(
        driver_id=presence.driver_id,
        lat=_float(presence.latitude),
        lng=_float(presence.longitude),
        availability=presence.status,
        last_seen=presence.last_seen_at,
        session_id=presence.session_id or None,
    )


def trip_record(trip: Trip) -> TripRecord:
    return TripRecord(
        id=trip.id,
        rider_id=trip.rider_id,
        driver_id=trip.driver_id,
        pickup=_point(trip, "pickup"),
        dropoff=_point(trip, "dropoff"),
        distance_km=float(trip.distance_km),
        fare=_float(trip.fare),
        status=trip.status,
        request_id=trip.ride_request_id,
        started_at=trip.started_at,
        completed_at=trip.completed_at,
        created_at=trip.created_at,
    )


def location_record(location: TripLocation) -> TripLocationRecord:
    return TripLocationRecord(
        id=location.id,
        trip_id=location.trip_id,
        lat=float(location.latitude),
        lng=float(location.longitude),
        actor=location.actor,
        heading=location.heading,
        speed_kph=_float(location.speed_kph),
        recorded_at=location.recorded_at,
    )


class DjangoDispatchStore(DispatchStore):
    """DispatchStore on the ``rides`` and ``drivers`` models."""

    # ---------------------- Ride requests ----------------------

    @database_sync_to_async
    def create_request(self, rider_id, pickup, dropoff, distance_km, estimated_fare, tier):
        ride = RideRequest.objects.create(
            rider_id=rider_id,
            distance_km=_money(distance_km),
            estimated_fare=_money(estimated_fare),
            tier=tier,
            status=RideStatus.SEARCHING,
            **_point_fields(pickup, "pickup"),
            **_point_fields(dropoff, "dropoff"),
        )
        return request_record(ride)

    @database_sync_to_async
    def get_request(self, request_id):
        ride = RideRequest.objects.filter(pk=request_id).first()
        return request_record(ride) if ride else None

    @database_sync_to_async
    def find_requests(self, rider_id=None, statuses=None, driver_id=None):
        rides = RideRequest.objects.all()
        if rider_id is not None:
            rides = rides.filter(rider_id=rider_id)
        if driver_id is not None:
            rides = rides.filter(accepted_driver_id=driver_id)
        if statuses is not None:
            rides = rides.filter(status__in=list(statuses))
        return [request_record(ride) for ride in rides.order_by("requested_at", "id")]

    @database_sync_to_async
    def transition_request(self, request_id, from_statuses, to_status, accepted_driver_id=None):
        now = timezone.now()
        fields = {"status": to_status, "updated_at": now}
        if accepted_driver_id is not None:
            fields["accepted_driver_id"] = accepted_driver_id
        if to_status == RideStatus.ACCEPTED:
            fields["accepted_at"] = now
        elif to_status == RideStatus.CANCELLED:
            fields["cancelled_at"] = now

        updated = RideRequest.objects.filter(
            pk=request_id,
            status__in=list(from_statuses),
        ).update(**fields)
        if not updated:
            logger.debug("Ride %s not moved to %s (status changed)", request_id, to_status)
        return updated == 1

    # ---------------------- Attempts ----------------------

    @database_sync_to_async
    def create_attempt(self, request_id, driver_id, outcome):
        now = timezone.now()
        attempt = RideRequestAttempt.objects.create(
            ride_id=request_id,
            driver_id=driver_id,
            outcome=outcome,
            sent_at=now,
            responded_at=None if outcome == AttemptOutcome.SENT else now,
        )
        return attempt_record(attempt)

    @database_sync_to_async
    def resolve_attempt(self, request_id, driver_id, outcome):
        updated = RideRequestAttempt.objects.filter(
            ride_id=request_id,
            driver_id=driver_id,
            outcome=AttemptOutcome.SENT,
        ).update(outcome=outcome, responded_at=timezone.now())
        return updated > 0

    @database_sync_to_async
    def list_attempts(self, request_id=None, outcome=None, sent_before=None):
        attempts = RideRequestAttempt.objects.all()
        if request_id is not None:
            attempts = attempts.filter(ride_id=request_id)
        if outcome is not None:
            attempts = attempts.filter(outcome=outcome)
        if sent_before is not None:
            attempts = attempts.filter(sent_at__lt=sent_before)
        return [attempt_record(a) for a in attempts.order_by("sent_at", "id")]

    # ---------------------- Driver presence ----------------------

    @database_sync_to_async
    def upsert_presence(self, driver_id, lat=None, lng=None, availability=None, session_id=UNSET, last_seen=None):
        defaults = {"last_seen_at": last_seen or timezone.now()}
        if lat is not None and lng is not None:
            defaults["latitude"] = _coord(lat)
            defaults["longitude"] = _coord(lng)
        if availability is not None:
            defaults["status"] = availability
        if session_id is not UNSET:
            defaults["session_id"] = session_id or ""

        presence, _ = DriverPresence.objects.update_or_create(driver_id=driver_id, defaults=defaults)
        return presence_record(presence)

    @database_sync_to_async
    def get_presence(self, driver_id):
        presence = DriverPresence.objects.filter(driver_id=driver_id).first()
        return presence_record(presence) if presence else None

    @database_sync_to_async
    def list_presence(self):
        return [presence_record(p) for p in DriverPresence.objects.all()]

    @database_sync_to_async
    def get_driver_summary(self, driver_id):
        profile = DriverProfile.objects.select_related("user").filter(user_id=driver_id).first()
        if profile is None:
            return None
        return DriverSummary(
            driver_id=driver_id,
            name=profile.display_name,
            vehicle_number=profile.vehicle_number,
            vehicle_type=profile.vehicle_type,
        )

    # ---------------------- Trips ----------------------

    @database_sync_to_async
    def create_trip(self, rider_id, driver_id, pickup, dropoff, distance_km, fare, status, request_id=None, started_at=None):
        trip = Trip.objects.create(
            ride_request_id=request_id,
            rider_id=rider_id,
            driver_id=driver_id,
            distance_km=_money(distance_km),
            fare=_money(fare) if fare is not None else None,
            status=status,
            started_at=started_at,
            **_point_fields(pickup, "pickup"),
            **_point_fields(dropoff, "dropoff"),
        )
        return trip_record(trip)

    @database_sync_to_async
    def get_trip(self, trip_id):
        trip = Trip.objects.filter(pk=trip_id).first()
        return trip_record(trip) if trip else None

    @database_sync_to_async
    def find_open_trip(self, rider_id, driver_id):
        trip = (
            Trip.objects.filter(rider_id=rider_id, driver_id=driver_id, status__in=list(TripStatus.OPEN))
            .order_by("-created_at", "-id")
            .first()
        )
        return trip_record(trip) if trip else None

    @database_sync_to_async
    def find_driver_trip(self, driver_id, status):
        trip = Trip.objects.filter(driver_id=driver_id, status=status).order_by("-created_at", "-id").first()
        return trip_record(trip) if trip else None

    @database_sync_to_async
    def find_request_trip(self, request_id):
        trip = Trip.objects.filter(ride_request_id=request_id).order_by("-created_at", "-id").first()
        return trip_record(trip) if trip else None

    @database_sync_to_async
    def update_trip(self, trip_id, **fields):
        unknown = set(fields) - TRIP_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update trip fields: {sorted(unknown)}")
        if fields.get("fare") is not None:
            fields["fare"] = _money(fields["fare"])

        updated = Trip.objects.filter(pk=trip_id).update(updated_at=timezone.now(), **fields)
        if not updated:
            raise TripNotFoundError("Trip not found")
        return trip_record(Trip.objects.get(pk=trip_id))

    @database_sync_to_async
    def list_trips(self, rider_id=None, driver_id=None, limit=20, offset=0):
        trips = Trip.objects.all()
        if rider_id is not None:
            trips = trips.filter(rider_id=rider_id)
        if driver_id is not None:
            trips = trips.filter(driver_id=driver_id)
        total = trips.count()
        page = trips.order_by("-created_at", "-id")[offset:offset + limit]
        return total, [trip_record(trip) for trip in page]

    @database_sync_to_async
    def append_trip_location(self, trip_id, lat, lng, actor="driver", heading=None, speed_kph=None):
        location = TripLocation.objects.create(
            trip_id=trip_id,
            actor=actor,
            latitude=_coord(lat),
            longitude=_coord(lng),
            heading=int(heading) if heading is not None else None,
            speed_kph=_money(speed_kph) if speed_kph is not None else None,
        )
        return location_record(location)

    @database_sync_to_async
    def list_trip_locations(self, trip_id):
        return [location_record(loc) for loc in TripLocation.objects.filter(trip_id=trip_id).order_by("recorded_at", "id")]

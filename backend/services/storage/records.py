"""
Plain records exchanged between the dispatch core and its store.

Stores return fresh record instances; mutating a record never changes
persisted state.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


class RideStatus:
    SEARCHING = "searching"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    FAILED = "failed"

    CHOICES = [
        (SEARCHING, "Searching"),
        (ACCEPTED, "Accepted"),
        (CANCELLED, "Cancelled"),
        (FAILED, "Failed"),
    ]
    # accepted can still be cancelled by the rider
    TERMINAL = frozenset({CANCELLED, FAILED})


class AttemptOutcome:
    SENT = "sent"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TIMEOUT = "timeout"
    OFFLINE = "offline"

    CHOICES = [
        (SENT, "Sent"),
        (ACCEPTED, "Accepted"),
        (DECLINED, "Declined"),
        (TIMEOUT, "Timeout"),
        (OFFLINE, "Offline"),
    ]


class Availability:
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"

    CHOICES = [
        (AVAILABLE, "Available"),
        (BUSY, "Busy"),
        (OFFLINE, "Offline"),
    ]


class TripStatus:
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    CHOICES = [
        (REQUESTED, "Requested"),
        (ACCEPTED, "Accepted"),
        (IN_PROGRESS, "In progress"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
    ]
    OPEN = frozenset({REQUESTED, ACCEPTED, IN_PROGRESS})

    TRANSITIONS = {
        REQUESTED: frozenset({ACCEPTED, CANCELLED}),
        ACCEPTED: frozenset({IN_PROGRESS, CANCELLED}),
        IN_PROGRESS: frozenset({COMPLETED, CANCELLED}),
        COMPLETED: frozenset(),
        CANCELLED: frozenset(),
    }

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.TRANSITIONS.get(current, frozenset())


@dataclass
class GeoPoint:
    lat: float
    lng: float
    address: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeoPoint":
        return cls(
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            address=data.get("address") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RideRequestRecord:
    id: int
    rider_id: int
    pickup: GeoPoint
    dropoff: GeoPoint
    distance_km: float
    estimated_fare: float
    tier: str
    status: str = RideStatus.SEARCHING
    accepted_driver_id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "request_id": self.id,
            "rider_id": self.rider_id,
            "pickup": self.pickup.to_dict(),
            "dropoff": self.dropoff.to_dict(),
            "distance_km": self.distance_km,
            "estimated_fare": self.estimated_fare,
            "tier": self.tier,
            "status": self.status,
            "accepted_driver_id": self.accepted_driver_id,
        }


@dataclass
class AttemptRecord:
    id: int
    request_id: int
    driver_id: int
    outcome: str
    sent_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None


@dataclass
class PresenceRecord:
    driver_id: int
    lat: Optional[float] = None
    lng: Optional[float] = None
    availability: str = Availability.OFFLINE
    last_seen: Optional[datetime] = None
    session_id: Optional[str] = None

    @property
    def position(self) -> Optional[Tuple[float, float]]:
        if self.lat is None or self.lng is None:
            return None
        return (self.lat, self.lng)


@dataclass
class TripRecord:
    id: int
    rider_id: int
    driver_id: int
    pickup: GeoPoint
    dropoff: GeoPoint
    distance_km: float
    fare: Optional[float]
    status: str = TripStatus.REQUESTED
    request_id: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "trip_id": self.id,
            "request_id": self.request_id,
            "rider_id": self.rider_id,
            "driver_id": self.driver_id,
            "pickup": self.pickup.to_dict(),
            "dropoff": self.dropoff.to_dict(),
            "distance_km": self.distance_km,
            "fare": self.fare,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class TripLocationRecord:
    id: int
    trip_id: int
    lat: float
    lng: float
    actor: str = "driver"
    heading: Optional[int] = None
    speed_kph: Optional[float] = None
    recorded_at: Optional[datetime] = None


@dataclass
class DriverSummary:
    """Public driver/vehicle details shown to a rider."""
    driver_id: int
    name: str = "Driver"
    vehicle_number: str = ""
    vehicle_type: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.driver_id,
            "name": self.name,
            "vehicle_number": self.vehicle_number,
            "vehicle_type": self.vehicle_type,
        }

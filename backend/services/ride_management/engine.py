"""
Dispatch engine facade.

One engine per process wires the presence registry, the dispatch
coordinator and the trip lifecycle manager to a store and a transport,
and routes every inbound rider/driver event to the component that owns it.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from django.utils import timezone

from common.utils import fare_estimates
from services.matching.candidates import nearby_drivers
from services.matching.config import DispatchConfig
from services.matching.offer_dispatch import DispatchCoordinator, as_point
from services.matching.presence import PresenceRegistry
from services.storage import Availability, DispatchStore, RideStatus, TripStatus
from services.transport import DRIVER, RIDER, Notifier, SessionRegistry, Transport

from .exceptions import DispatchError, ValidationError
from .results import RideResult
from .trip_lifecycle import TripLifecycleManager

logger = logging.getLogger(__name__)


class DispatchEngine:

    def __init__(
        self,
        store: DispatchStore,
        transport: Transport,
        config: Optional[DispatchConfig] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.store = store
        self.config = config or DispatchConfig()
        self.sessions = SessionRegistry()
        self.notifier = Notifier(transport, self.sessions)
        self.presence = PresenceRegistry(store, self.config.liveness_window, clock)
        self.coordinator = DispatchCoordinator(store, self.presence, self.notifier, self.config, clock)
        self.trips = TripLifecycleManager(store, self.presence, self.notifier, clock)
        self._clock = clock
        self._last_prune: Optional[datetime] = None
        self._started = False

    async def start(self) -> None:
        """Seed presence from persisted heartbeats. Safe to call repeatedly."""
        if self._started:
            return
        self.presence.load(await self.store.list_presence())
        self._started = True
        logger.info("Dispatch engine started with %d known drivers", len(self.presence))

    async def shutdown(self) -> None:
        await self.coordinator.shutdown()

    # ===================== Connections =====================

    async def driver_connected(
        self,
        driver_id: int,
        session_id: str,
        position: Optional[Tuple[float, float]] = None,
    ) -> str:
        """Bind the driver's session and mark them available (or busy when on a ride)."""
        await self.start()
        availability = Availability.AVAILABLE
        if await self._driver_engaged(driver_id):
            availability = Availability.BUSY

        await self.presence.upsert(driver_id, position=position, availability=availability, session_id=session_id)
        self.sessions.bind(DRIVER, driver_id, session_id)
        logger.info("Driver %s connected (%s) as %s", driver_id, session_id, availability)
        self._maybe_prune()
        return availability

    async def rider_connected(self, rider_id: int, session_id: str) -> None:
        await self.start()
        self.sessions.bind(RIDER, rider_id, session_id)
        logger.info("Rider %s connected (%s)", rider_id, session_id)

    async def driver_disconnected(self, driver_id: int, session_id: Optional[str] = None) -> None:
        """
        Drop the driver's session. A pending offer is withdrawn and escalated,
        and a rider waiting on this driver is told the driver went away.
        """
        if not self.sessions.unbind(DRIVER, driver_id, session_id):
            logger.debug("Ignoring stale disconnect for driver %s", driver_id)
            return

        await self.presence.mark_offline(driver_id)
        self._maybe_prune()
        await self.coordinator.withdraw_driver(driver_id)

        riders = set()
        trip = await self.store.find_driver_trip(driver_id, TripStatus.IN_PROGRESS)
        if trip is not None:
            riders.add(trip.rider_id)
        for request in await self.store.find_requests(statuses=[RideStatus.ACCEPTED], driver_id=driver_id):
            request_trip = await self.store.find_request_trip(request.id)
            if request_trip is None or request_trip.status in TripStatus.OPEN:
                riders.add(request.rider_id)

        for rider_id in riders:
            await self.notifier.to_rider(rider_id, "driver-disconnected", {
                "driver_id": driver_id,
                "message": "Driver disconnected",
            })

    async def rider_disconnected(self, rider_id: int, session_id: Optional[str] = None) -> None:
        """Drop the rider's session and cancel any request still searching."""
        if not self.sessions.unbind(RIDER, rider_id, session_id):
            return
        for request_id in self.coordinator.active_requests_for_rider(rider_id):
            try:
                await self.coordinator.cancel(request_id, rider_id)
            except DispatchError as exc:
                logger.debug("Ride %s not cancelled on disconnect: %s", request_id, exc)
        logger.info("Rider %s disconnected", rider_id)

    # ===================== Driver Events =====================

    async def location_update(
        self,
        driver_id: int,
        lat: float,
        lng: float,
        heading: Optional[int] = None,
        speed_kph: Optional[float] = None,
    ) -> None:
        await self.presence.upsert(driver_id, position=(lat, lng))
        self._maybe_prune()
        await self.trips.record_location(driver_id, lat, lng, heading=heading, speed_kph=speed_kph)

    async def accept(self, driver_id: int, request_id: int) -> RideResult:
        return await self.coordinator.accept(request_id, driver_id)

    async def decline(self, driver_id: int, request_id: int) -> RideResult:
        return await self.coordinator.decline(request_id, driver_id)

    async def status_update(self, driver_id: int, request_id: int, status: str, fare: Optional[float] = None) -> RideResult:
        return await self.trips.status_update(driver_id, request_id, status, fare=fare)

    # ===================== Rider Events =====================

    async def request_ride(self, rider_id: int, pickup, dropoff, tier: Optional[str] = None) -> RideResult:
        return await self.coordinator.submit(rider_id, pickup, dropoff, tier)

    async def cancel(self, rider_id: int, request_id: int) -> RideResult:
        result = await self.coordinator.cancel(request_id, rider_id)
        driver_id = (result.extra or {}).get("driver_id")
        if driver_id is not None:
            await self.trips.cancel_open_trip(rider_id, driver_id)
        return result

    def fare_estimate(self, pickup, dropoff) -> Dict[str, Any]:
        if pickup is None or dropoff is None:
            raise ValidationError("pickup and dropoff are required")
        return fare_estimates(as_point(pickup), as_point(dropoff), self.config.fare_tiers)

    def nearby(self, point, radius_km: Optional[float] = None):
        return nearby_drivers(self.presence, as_point(point), radius_km or self.config.search_radius_km)

    async def is_driver(self, user_id: int) -> bool:
        return await self.store.get_driver_summary(user_id) is not None

    # ===================== Maintenance =====================

    def prune_presence(self) -> int:
        self._last_prune = self._clock()
        return self.presence.prune(self._last_prune)

    def _maybe_prune(self) -> None:
        """Prune stale presence at most once per liveness window, driven by driver traffic."""
        now = self._clock()
        if self._last_prune is not None and (now - self._last_prune).total_seconds() < self.config.liveness_window:
            return
        self.prune_presence()

    async def _driver_engaged(self, driver_id: int) -> bool:
        if self.coordinator.offered_request_for_driver(driver_id) is not None:
            return True
        if await self.store.find_driver_trip(driver_id, TripStatus.IN_PROGRESS) is not None:
            return True
        for request in await self.store.find_requests(statuses=[RideStatus.ACCEPTED], driver_id=driver_id):
            trip = await self.store.find_request_trip(request.id)
            if trip is None or trip.status in TripStatus.OPEN:
                return True
        return False

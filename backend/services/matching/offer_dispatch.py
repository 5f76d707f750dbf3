"""
Sequential offer dispatch for ride requests.

Handles the daisy-chain pattern for ride offers:
1. Offer sent to the nearest reachable driver
2. Wait for a response or the response window to elapse
3. If declined/expired, offer to the next driver
4. Repeat until accepted, cancelled or the queue runs out

The coordinator exclusively owns the queue, the offered driver and the
timer of every ``searching`` request. All transitions of one request run
under that request's lock, and each armed timer remembers the version it
was armed for so that a late expiry becomes a no-op.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Set

from django.utils import timezone

from common.utils import calculate_fare, distance_km, pickup_eta_minutes, resolve_tier
from services.ride_management.exceptions import (
    ActiveRideExistsError,
    RideNotAvailableError,
    RideNotFoundError,
    TransientUnavailable,
    UnauthorizedError,
    ValidationError,
)
from services.ride_management.results import RideResult
from services.storage import (
    AttemptOutcome,
    Availability,
    DispatchStore,
    DriverSummary,
    GeoPoint,
    RideRequestRecord,
    RideStatus,
    TripStatus,
)
from services.transport import DRIVER, Notifier

from .candidates import find_candidates
from .config import DispatchConfig
from .presence import PresenceRegistry

logger = logging.getLogger(__name__)


def as_point(value) -> GeoPoint:
    """Coerce a dict/GeoPoint into a GeoPoint, raising ValidationError on bad input."""
    if isinstance(value, GeoPoint):
        return value
    if not isinstance(value, dict):
        raise ValidationError("Location must be an object with lat and lng")
    try:
        point = GeoPoint.from_dict(value)
    except (KeyError, TypeError, ValueError):
        raise ValidationError("Location requires numeric lat and lng")
    if not (-90 <= point.lat <= 90 and -180 <= point.lng <= 180):
        raise ValidationError("Location is out of range")
    return point


@dataclass
class _OfferState:
    """In-flight dispatch state of one searching request."""
    request: RideRequestRecord
    queue: Deque[int]
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    offered_driver_id: Optional[int] = None
    deadline: Optional[datetime] = None
    timer: Optional[asyncio.TimerHandle] = None
    version: int = 0
    offers_sent: int = 0

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        self.version += 1


class DispatchCoordinator:
    """Owns the ride-request lifecycle while a request is searching."""

    def __init__(
        self,
        store: DispatchStore,
        presence: PresenceRegistry,
        notifier: Notifier,
        config: Optional[DispatchConfig] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.store = store
        self.presence = presence
        self.notifier = notifier
        self.config = config or DispatchConfig()
        self._clock = clock
        self._active: Dict[int, _OfferState] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ===================== Queries =====================

    def is_active(self, request_id: int) -> bool:
        return request_id in self._active

    def offered_driver(self, request_id: int) -> Optional[int]:
        state = self._active.get(request_id)
        return state.offered_driver_id if state else None

    def active_requests_for_rider(self, rider_id: int) -> List[int]:
        return [rid for rid, state in self._active.items() if state.request.rider_id == rider_id]

    def offered_request_for_driver(self, driver_id: int) -> Optional[int]:
        for request_id, state in self._active.items():
            if state.offered_driver_id == driver_id:
                return request_id
        return None

    async def has_open_ride(self, rider_id: int) -> bool:
        """A rider has an open ride while searching, or accepted with no finished trip."""
        requests = await self.store.find_requests(
            rider_id=rider_id,
            statuses=[RideStatus.SEARCHING, RideStatus.ACCEPTED],
        )
        for request in requests:
            if request.status == RideStatus.SEARCHING:
                return True
            trip = await self.store.find_request_trip(request.id)
            if trip is None or trip.status in TripStatus.OPEN:
                return True
        return False

    # ===================== Rider Operations =====================

    async def submit(self, rider_id: int, pickup, dropoff, tier: Optional[str] = None) -> RideResult:
        """
        Create a ride request and start offering it to nearby drivers.

        Args:
            rider_id: Requesting rider
            pickup: Pickup point (GeoPoint or {lat, lng, address})
            dropoff: Dropoff point (GeoPoint or {lat, lng, address})
            tier: Fare tier; unknown tiers fall back to the default

        Returns:
            RideResult with the created request

        Raises:
            ValidationError: If pickup or dropoff is missing or malformed
            ActiveRideExistsError: If the rider already has an open ride
        """
        if pickup is None or dropoff is None:
            raise ValidationError("pickup and dropoff are required")
        pickup = as_point(pickup)
        dropoff = as_point(dropoff)

        if await self.has_open_ride(rider_id):
            raise ActiveRideExistsError("You already have an active ride request")

        tier = resolve_tier(tier, self.config.fare_tiers, self.config.default_tier)
        distance = round(distance_km(pickup, dropoff), 2)
        fare = calculate_fare(distance, tier, self.config.fare_tiers, self.config.default_tier)

        request = await self.store.create_request(
            rider_id=rider_id,
            pickup=pickup,
            dropoff=dropoff,
            distance_km=distance,
            estimated_fare=fare,
            tier=tier,
        )
        logger.info("Ride %s created for rider %s (%.2fkm, %s, fare=%s)", request.id, rider_id, distance, tier, fare)

        candidates = find_candidates(self.presence, pickup, self.config.search_radius_km)

        await self.notifier.to_rider(rider_id, "ride-searching", {
            "request_id": request.id,
            "status": request.status,
            "drivers_found": len(candidates),
            "distance_km": distance,
            "estimated_fare": fare,
            "tier": tier,
        })

        if not candidates:
            await self.store.transition_request(request.id, [RideStatus.SEARCHING], RideStatus.FAILED)
            request.status = RideStatus.FAILED
            logger.info("Ride %s failed: no drivers within %skm", request.id, self.config.search_radius_km)
            await self.notifier.to_rider(rider_id, "ride-no-drivers", {
                "request_id": request.id,
                "message": "No drivers available in your area",
            })
            return RideResult(
                success=True,
                ride=request,
                message="No available drivers found nearby.",
                extra={"driver_candidates": 0},
            )

        state = _OfferState(request=request, queue=deque(candidates))
        self._active[request.id] = state
        async with state.lock:
            await self._try_next(state)

        return RideResult(
            success=True,
            ride=request,
            message="Notifying nearby drivers...",
            extra={"driver_candidates": len(candidates)},
        )

    async def cancel(self, request_id: int, rider_id: int) -> RideResult:
        """
        Cancel a searching or accepted request on behalf of its rider.

        Raises:
            RideNotFoundError: Unknown request
            UnauthorizedError: The rider does not own the request
            RideNotAvailableError: The request already failed or was cancelled
        """
        request = await self.store.get_request(request_id)
        if request is None:
            raise RideNotFoundError("Ride not found")
        if request.rider_id != rider_id:
            raise UnauthorizedError("You are not the rider of this request")

        state = self._active.get(request_id)
        if state is None:
            return await self._cancel(request_id, None)
        async with state.lock:
            return await self._cancel(request_id, state)

    async def _cancel(self, request_id: int, state: Optional[_OfferState]) -> RideResult:
        request = await self.store.get_request(request_id)
        if request.status not in (RideStatus.SEARCHING, RideStatus.ACCEPTED):
            raise RideNotAvailableError(f"Cannot cancel - ride is already {request.status}")

        moved = await self.store.transition_request(
            request_id,
            [RideStatus.SEARCHING, RideStatus.ACCEPTED],
            RideStatus.CANCELLED,
        )
        if not moved:
            raise RideNotAvailableError("Ride was resolved before it could be cancelled")

        affected_driver = request.accepted_driver_id
        if state is not None:
            offered = state.offered_driver_id
            if offered is not None:
                # the withdrawn offer never got an answer
                await self.store.resolve_attempt(request_id, offered, AttemptOutcome.TIMEOUT)
                state.offered_driver_id = None
                affected_driver = affected_driver or offered
            self._release(state)

        logger.info("Ride %s cancelled by rider %s", request_id, request.rider_id)

        if affected_driver is not None:
            await self._release_driver(affected_driver)
            await self.notifier.to_driver(affected_driver, "ride-cancelled", {
                "request_id": request_id,
                "message": "Rider cancelled this ride.",
            })
        await self.notifier.to_rider(request.rider_id, "ride-cancelled", {
            "request_id": request_id,
            "message": "Ride cancelled.",
        })

        request.status = RideStatus.CANCELLED
        return RideResult(
            success=True,
            ride=request,
            message="Ride cancelled successfully",
            extra={
                "was_assigned": request.accepted_driver_id is not None,
                "driver_id": affected_driver,
            },
        )

    # ===================== Driver Operations =====================

    async def accept(self, request_id: int, driver_id: int) -> RideResult:
        """
        Accept the ride currently offered to ``driver_id``.

        The store's compare-and-set on ``searching`` decides the winner. A
        driver that is not the current candidate, or loses the race, gets
        ``ride-already-accepted`` and nothing else changes.
        """
        state = self._active.get(request_id)
        if state is None:
            if await self.store.get_request(request_id) is None:
                raise RideNotFoundError("Ride not found")
            return await self._reject_late(request_id, driver_id)

        async with state.lock:
            if state.offered_driver_id != driver_id:
                return await self._reject_late(request_id, driver_id)

            won = await self.store.transition_request(
                request_id,
                [RideStatus.SEARCHING],
                RideStatus.ACCEPTED,
                accepted_driver_id=driver_id,
            )
            if not won:
                # resolved outside this coordinator (e.g. another process)
                state.offered_driver_id = None
                self._release(state)
                await self._release_driver(driver_id)
                return await self._reject_late(request_id, driver_id)

            state.cancel_timer()
            await self.store.resolve_attempt(request_id, driver_id, AttemptOutcome.ACCEPTED)
            await self.presence.set_availability(driver_id, Availability.BUSY)
            state.offered_driver_id = None
            self._release(state)

            request = state.request
            request.status = RideStatus.ACCEPTED
            request.accepted_driver_id = driver_id

        logger.info("Ride %s accepted by driver %s", request_id, driver_id)
        await self._notify_accepted(request, driver_id)
        return RideResult(
            success=True,
            ride=request,
            message="Ride accepted successfully! Navigate to pickup location.",
        )

    async def decline(self, request_id: int, driver_id: int) -> RideResult:
        """Decline the current offer and move straight on to the next candidate."""
        state = self._active.get(request_id)
        if state is None:
            if await self.store.get_request(request_id) is None:
                raise RideNotFoundError("Ride not found")
            return RideResult(success=False, message="No active offer found for this ride", error_code="no_active_offer")

        async with state.lock:
            if state.offered_driver_id != driver_id:
                logger.debug("Ignoring decline of ride %s from non-candidate %s", request_id, driver_id)
                return RideResult(success=False, message="No active offer found for this ride", error_code="no_active_offer")

            current = await self.store.get_request(request_id)
            if current is None or current.status != RideStatus.SEARCHING:
                self._release(state)
                return RideResult(success=False, message="This ride was already handled or cancelled", error_code="ride_unavailable")

            await self.store.resolve_attempt(request_id, driver_id, AttemptOutcome.DECLINED)
            state.cancel_timer()
            state.offered_driver_id = None
            await self._release_driver(driver_id)
            logger.info("Driver %s declined ride %s", driver_id, request_id)

            dispatched = await self._try_next(state)

        return RideResult(
            success=True,
            ride=state.request,
            message="Offer declined." + (" We will notify the next available driver." if dispatched else ""),
            extra={"queued_next_driver": dispatched},
        )

    async def withdraw_driver(self, driver_id: int) -> Optional[int]:
        """
        The offered driver went away: close their offer as timed out and
        escalate immediately. Returns the affected request id.
        """
        request_id = self.offered_request_for_driver(driver_id)
        if request_id is None:
            return None
        state = self._active[request_id]
        async with state.lock:
            if state.offered_driver_id != driver_id:
                return None
            await self.store.resolve_attempt(request_id, driver_id, AttemptOutcome.TIMEOUT)
            state.cancel_timer()
            state.offered_driver_id = None
            logger.info("Driver %s dropped offer for ride %s", driver_id, request_id)
            await self._try_next(state)
        return request_id

    # ===================== Escalation Loop =====================

    def _reachable_session(self, driver_id: int) -> str:
        if not self.presence.is_available(driver_id, self._clock()):
            raise TransientUnavailable(f"Driver {driver_id} is not available")
        session_id = self.notifier.sessions.resolve(DRIVER, driver_id)
        if session_id is None:
            raise TransientUnavailable(f"Driver {driver_id} has no active session")
        return session_id

    async def _try_next(self, state: _OfferState) -> bool:
        """
        Offer the request to the next reachable candidate.

        Must be called with ``state.lock`` held. Returns True if an offer
        went out, False if the queue ran out and the request failed.

        If a store write fails the request is failed and the error re-raised,
        so it never stays ``searching`` without a timer.
        """
        state.cancel_timer()
        try:
            return await self._offer_next(state)
        except Exception:
            await self._abort(state)
            raise

    async def _offer_next(self, state: _OfferState) -> bool:
        request = state.request

        while state.queue:
            driver_id = state.queue[0]
            try:
                session_id = self._reachable_session(driver_id)
            except TransientUnavailable as exc:
                await self.store.create_attempt(request.id, driver_id, AttemptOutcome.OFFLINE)
                state.queue.popleft()
                logger.debug("Skipping driver %s for ride %s: %s", driver_id, request.id, exc)
                continue

            # held before the first await so no other request can pick this driver
            previous = self.presence.reserve(driver_id)
            try:
                await self.store.create_attempt(request.id, driver_id, AttemptOutcome.SENT)
            except Exception:
                self.presence.restore(driver_id, previous)
                raise
            state.queue.popleft()
            state.offered_driver_id = driver_id
            await self.presence.set_availability(driver_id, Availability.BUSY)

            state.offers_sent += 1
            state.deadline = self._clock() + timedelta(seconds=self.config.response_timeout)
            self._arm_timer(state)

            logger.debug("Dispatching offer to driver %s for ride %s", driver_id, request.id)
            await self.notifier.send_session(session_id, "ride-offer", self._offer_payload(state))
            return True

        await self._fail(state)
        return False

    async def _fail(self, state: _OfferState) -> None:
        request = state.request
        moved = await self.store.transition_request(request.id, [RideStatus.SEARCHING], RideStatus.FAILED)
        self._release(state)
        if not moved:
            return
        request.status = RideStatus.FAILED
        logger.info("Ride %s failed after %d offer(s)", request.id, state.offers_sent)

        if state.offers_sent:
            await self.notifier.to_rider(request.rider_id, "ride-expired", {
                "request_id": request.id,
                "message": "No drivers accepted your ride request. Please try again later.",
            })
        else:
            await self.notifier.to_rider(request.rider_id, "ride-no-drivers", {
                "request_id": request.id,
                "message": "No drivers available nearby. Please try again later.",
            })

    async def _abort(self, state: _OfferState) -> None:
        """A store write failed mid-escalation: stop offering and fail the request."""
        request = state.request
        logger.error("Store error while dispatching ride %s, failing it", request.id)
        self._release(state)
        driver_id = state.offered_driver_id
        state.offered_driver_id = None
        try:
            if driver_id is not None:
                await self.store.resolve_attempt(request.id, driver_id, AttemptOutcome.TIMEOUT)
                await self._release_driver(driver_id)
            await self._fail(state)
        except Exception:
            logger.exception("Could not fail ride %s after a store error", request.id)

    # ---------------------- Timers ----------------------

    def _arm_timer(self, state: _OfferState) -> None:
        loop = asyncio.get_running_loop()
        state.timer = loop.call_later(
            self.config.response_timeout,
            self._on_timer,
            state.request.id,
            state.version,
        )

    def _on_timer(self, request_id: int, version: int) -> None:
        task = asyncio.ensure_future(self._expire_offer(request_id, version))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _expire_offer(self, request_id: int, version: int) -> None:
        """Timer expiry: the offered driver did not answer in time."""
        state = self._active.get(request_id)
        if state is None:
            return
        try:
            async with state.lock:
                if state.version != version or state.offered_driver_id is None:
                    logger.debug("Stale timer for ride %s ignored", request_id)
                    return
                state.timer = None

                current = await self.store.get_request(request_id)
                if current is None or current.status != RideStatus.SEARCHING:
                    self._release(state)
                    return

                driver_id = state.offered_driver_id
                await self.store.resolve_attempt(request_id, driver_id, AttemptOutcome.TIMEOUT)
                state.offered_driver_id = None
                await self._release_driver(driver_id)
                logger.info("Offer for ride %s to driver %s timed out", request_id, driver_id)

                await self.notifier.to_driver(driver_id, "ride-expired", {
                    "request_id": request_id,
                    "message": "Your ride offer has timed out.",
                })
                await self._try_next(state)
        except Exception:
            logger.exception("Error expiring offer for ride %s", request_id)

    # ===================== Helpers =====================

    def _release(self, state: _OfferState) -> None:
        state.cancel_timer()
        self._active.pop(state.request.id, None)

    async def _release_driver(self, driver_id: int) -> None:
        """Return a reserved/assigned driver to ``available`` unless they went offline."""
        record = self.presence.get(driver_id)
        if record is not None and record.availability == Availability.BUSY:
            await self.presence.set_availability(driver_id, Availability.AVAILABLE)

    async def _reject_late(self, request_id: int, driver_id: int) -> RideResult:
        logger.info("Late or losing accept for ride %s from driver %s", request_id, driver_id)
        await self.notifier.to_driver(driver_id, "ride-already-accepted", {
            "request_id": request_id,
            "message": "This ride was already accepted or is no longer available.",
        })
        return RideResult(
            success=False,
            message="This ride was already handled or cancelled",
            error_code="ride_already_accepted",
        )

    def _offer_payload(self, state: _OfferState) -> Dict:
        payload = state.request.to_payload()
        payload.update({
            "expires_in": self.config.response_timeout,
            "deadline": state.deadline.isoformat() if state.deadline else None,
        })
        return payload

    async def _notify_accepted(self, request: RideRequestRecord, driver_id: int) -> None:
        summary = await self.store.get_driver_summary(driver_id) or DriverSummary(driver_id=driver_id)
        record = self.presence.get(driver_id)
        position = record.position if record else None
        driver = summary.to_payload()
        driver["location"] = {"lat": position[0], "lng": position[1]} if position else None

        await self.notifier.to_rider(request.rider_id, "ride-accepted", {
            "request_id": request.id,
            "status": request.status,
            "driver": driver,
            "eta_minutes": pickup_eta_minutes(position, request.pickup, self.config.pickup_speed_kmh),
        })
        await self.notifier.to_driver(driver_id, "ride-accepted-confirm", {
            "request_id": request.id,
            "rider_id": request.rider_id,
            "pickup": request.pickup.to_dict(),
            "dropoff": request.dropoff.to_dict(),
            "distance_km": request.distance_km,
            "estimated_fare": request.estimated_fare,
        })

    async def shutdown(self) -> None:
        """Cancel armed timers and pending expiry tasks."""
        for state in list(self._active.values()):
            state.cancel_timer()
        self._active.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

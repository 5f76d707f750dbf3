import asyncio

from django.test import SimpleTestCase

from common.utils import calculate_fare
from services.ride_management.exceptions import (
	ActiveRideExistsError,
	RideNotAvailableError,
	RideNotFoundError,
	UnauthorizedError,
	ValidationError,
)
from services.storage import AttemptOutcome, Availability, RideStatus
from services.transport import DRIVER

from .utils import (
	DROPOFF,
	PICKUP,
	FailingAttemptStore,
	YieldingStore,
	connect_driver,
	connect_rider,
	driver_session,
	make_engine,
	rider_session,
)

RIDER = 100


class DispatchCoordinatorTests(SimpleTestCase):
	def setUp(self):
		self.engine, self.store, self.transport = make_engine(response_timeout=5)

	async def _setup_drivers(self, count=2):
		# 0.22 km, 1.1 km, 2.2 km from pickup
		offsets = [0.002, 0.01, 0.02]
		for driver_id in range(1, count + 1):
			await connect_driver(
				self.engine, self.store, driver_id,
				PICKUP["lat"] + offsets[driver_id - 1], PICKUP["lng"],
			)
		await connect_rider(self.engine, RIDER)

	async def _request(self, **kwargs):
		result = await self.engine.request_ride(RIDER, PICKUP, DROPOFF, **kwargs)
		return result.ride.id

	async def _attempts(self, request_id):
		return [(a.driver_id, a.outcome) for a in await self.store.list_attempts(request_id=request_id)]

	async def _status(self, request_id):
		return (await self.store.get_request(request_id)).status

	async def _sent_count(self, request_id):
		return len(await self.store.list_attempts(request_id=request_id, outcome=AttemptOutcome.SENT))

	# ---------------------- Submit ----------------------

	async def test_no_drivers_fails_with_zero_attempts(self):
		await connect_rider(self.engine, RIDER)
		request_id = await self._request()

		self.assertEqual(await self._status(request_id), RideStatus.FAILED)
		self.assertEqual(await self._attempts(request_id), [])
		self.assertEqual(self.transport.events(rider_session(RIDER)), ["ride-searching", "ride-no-drivers"])
		await self.engine.shutdown()

	async def test_offer_goes_to_nearest_driver(self):
		await self._setup_drivers()
		request_id = await self._request()

		self.assertEqual(self.engine.coordinator.offered_driver(request_id), 1)
		self.assertEqual(await self._attempts(request_id), [(1, AttemptOutcome.SENT)])
		self.assertEqual(self.engine.presence.get(1).availability, Availability.BUSY)

		offer = self.transport.payloads(driver_session(1), "ride-offer")[0]
		self.assertEqual(offer["request_id"], request_id)
		self.assertEqual(offer["expires_in"], 5)
		self.assertIsNotNone(offer["deadline"])
		self.assertNotIn("ride-offer", self.transport.events(driver_session(2)))

		searching = self.transport.payloads(rider_session(RIDER), "ride-searching")[0]
		self.assertEqual(searching["drivers_found"], 2)
		await self.engine.shutdown()

	async def test_fare_uses_requested_tier(self):
		await self._setup_drivers()
		request_id = await self._request(tier="classic")

		request = await self.store.get_request(request_id)
		self.assertEqual(request.tier, "classic")
		self.assertEqual(request.estimated_fare, calculate_fare(request.distance_km, "classic"))
		await self.engine.shutdown()

	async def test_missing_or_invalid_location_is_rejected(self):
		with self.assertRaises(ValidationError):
			await self.engine.request_ride(RIDER, None, DROPOFF)
		with self.assertRaises(ValidationError):
			await self.engine.request_ride(RIDER, {"lat": 123, "lng": 0}, DROPOFF)
		with self.assertRaises(ValidationError):
			await self.engine.request_ride(RIDER, {"lat": "north"}, DROPOFF)

	async def test_rider_with_open_request_cannot_submit_again(self):
		await self._setup_drivers()
		request_id = await self._request()

		with self.assertRaises(ActiveRideExistsError):
			await self._request()

		await self.engine.cancel(RIDER, request_id)
		second = await self._request()
		self.assertNotEqual(second, request_id)
		await self.engine.shutdown()

	async def test_unreachable_driver_is_recorded_offline_and_skipped(self):
		await self._setup_drivers()
		self.engine.sessions.unbind(DRIVER, 1)

		request_id = await self._request()

		self.assertEqual(
			await self._attempts(request_id),
			[(1, AttemptOutcome.OFFLINE), (2, AttemptOutcome.SENT)],
		)
		self.assertEqual(self.engine.coordinator.offered_driver(request_id), 2)
		await self.engine.shutdown()

	# ---------------------- Accept ----------------------

	async def test_accept_assigns_driver_and_notifies_both_parties(self):
		await self._setup_drivers()
		request_id = await self._request()

		result = await self.engine.accept(1, request_id)

		self.assertTrue(result.success)
		request = await self.store.get_request(request_id)
		self.assertEqual(request.status, RideStatus.ACCEPTED)
		self.assertEqual(request.accepted_driver_id, 1)
		self.assertEqual(await self._attempts(request_id), [(1, AttemptOutcome.ACCEPTED)])
		self.assertEqual(self.engine.presence.get(1).availability, Availability.BUSY)
		self.assertFalse(self.engine.coordinator.is_active(request_id))

		accepted = self.transport.payloads(rider_session(RIDER), "ride-accepted")[0]
		self.assertEqual(accepted["driver"]["id"], 1)
		self.assertEqual(accepted["driver"]["vehicle_number"], "KA-01-0001")
		self.assertEqual(accepted["eta_minutes"], 1)
		self.assertIn("ride-accepted-confirm", self.transport.events(driver_session(1)))

	async def test_concurrent_accepts_have_one_winner(self):
		await self._setup_drivers()
		request_id = await self._request()

		results = await asyncio.gather(
			self.engine.accept(1, request_id),
			self.engine.accept(2, request_id),
			self.engine.accept(1, request_id),
		)

		self.assertEqual(sum(1 for r in results if r.success), 1)
		self.assertEqual((await self.store.get_request(request_id)).accepted_driver_id, 1)
		self.assertIn("ride-already-accepted", self.transport.events(driver_session(2)))
		accepted = await self.store.list_attempts(request_id=request_id, outcome=AttemptOutcome.ACCEPTED)
		self.assertEqual(len(accepted), 1)

	async def test_accept_from_driver_without_offer_is_rejected(self):
		await self._setup_drivers()
		request_id = await self._request()

		result = await self.engine.accept(2, request_id)

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, "ride_already_accepted")
		self.assertEqual(await self._status(request_id), RideStatus.SEARCHING)
		self.assertEqual(self.engine.coordinator.offered_driver(request_id), 1)
		await self.engine.shutdown()

	async def test_accept_unknown_request(self):
		with self.assertRaises(RideNotFoundError):
			await self.engine.accept(1, 999)

	# ---------------------- Decline & escalation ----------------------

	async def test_decline_offers_next_candidate_immediately(self):
		await self._setup_drivers()
		request_id = await self._request()

		result = await self.engine.decline(1, request_id)

		self.assertTrue(result.success)
		self.assertTrue(result.extra["queued_next_driver"])
		self.assertEqual(self.engine.coordinator.offered_driver(request_id), 2)
		self.assertEqual(
			await self._attempts(request_id),
			[(1, AttemptOutcome.DECLINED), (2, AttemptOutcome.SENT)],
		)
		self.assertEqual(self.engine.presence.get(1).availability, Availability.AVAILABLE)
		self.assertIn("ride-offer", self.transport.events(driver_session(2)))
		await self.engine.shutdown()

	async def test_decline_from_non_candidate_is_ignored(self):
		await self._setup_drivers()
		request_id = await self._request()

		result = await self.engine.decline(2, request_id)

		self.assertFalse(result.success)
		self.assertEqual(self.engine.coordinator.offered_driver(request_id), 1)
		await self.engine.shutdown()

	async def test_never_more_than_one_sent_attempt(self):
		await self._setup_drivers(count=3)
		request_id = await self._request()

		for driver_id in (1, 2, 3):
			self.assertEqual(await self._sent_count(request_id), 1)
			await self.engine.decline(driver_id, request_id)
			self.assertLessEqual(await self._sent_count(request_id), 1)

		self.assertEqual(await self._status(request_id), RideStatus.FAILED)
		self.assertEqual(self.transport.events(rider_session(RIDER))[-1], "ride-expired")
		self.assertEqual(
			[outcome for _, outcome in await self._attempts(request_id)],
			[AttemptOutcome.DECLINED] * 3,
		)

	# ---------------------- Cancel ----------------------

	async def test_cancel_while_searching_closes_offer(self):
		await self._setup_drivers()
		request_id = await self._request()

		result = await self.engine.cancel(RIDER, request_id)

		self.assertTrue(result.success)
		self.assertEqual(await self._status(request_id), RideStatus.CANCELLED)
		self.assertEqual(await self._attempts(request_id), [(1, AttemptOutcome.TIMEOUT)])
		self.assertEqual(self.engine.presence.get(1).availability, Availability.AVAILABLE)
		self.assertIn("ride-cancelled", self.transport.events(driver_session(1)))
		self.assertIn("ride-cancelled", self.transport.events(rider_session(RIDER)))
		self.assertFalse(self.engine.coordinator.is_active(request_id))

	async def test_cancel_after_accept_frees_driver(self):
		await self._setup_drivers()
		request_id = await self._request()
		await self.engine.accept(1, request_id)

		result = await self.engine.cancel(RIDER, request_id)

		self.assertTrue(result.extra["was_assigned"])
		self.assertEqual(await self._status(request_id), RideStatus.CANCELLED)
		self.assertEqual(self.engine.presence.get(1).availability, Availability.AVAILABLE)
		self.assertIn("ride-cancelled", self.transport.events(driver_session(1)))

	async def test_cancel_checks_ownership(self):
		await self._setup_drivers()
		request_id = await self._request()

		with self.assertRaises(UnauthorizedError):
			await self.engine.cancel(RIDER + 1, request_id)
		with self.assertRaises(RideNotFoundError):
			await self.engine.cancel(RIDER, 999)
		await self.engine.shutdown()

	async def test_terminal_request_is_immutable(self):
		await connect_rider(self.engine, RIDER)
		request_id = await self._request()
		self.assertEqual(await self._status(request_id), RideStatus.FAILED)

		result = await self.engine.accept(1, request_id)
		self.assertFalse(result.success)
		with self.assertRaises(RideNotAvailableError):
			await self.engine.cancel(RIDER, request_id)
		self.assertEqual(await self._status(request_id), RideStatus.FAILED)

	# ---------------------- Disconnects ----------------------

	async def test_offered_driver_disconnect_escalates(self):
		await self._setup_drivers()
		request_id = await self._request()

		await self.engine.driver_disconnected(1, driver_session(1))

		self.assertEqual(self.engine.presence.get(1).availability, Availability.OFFLINE)
		self.assertEqual(
			await self._attempts(request_id),
			[(1, AttemptOutcome.TIMEOUT), (2, AttemptOutcome.SENT)],
		)
		await self.engine.shutdown()

	async def test_stale_driver_disconnect_is_ignored(self):
		await self._setup_drivers()
		await self.engine.driver_connected(1, "driver-1-reconnected")

		await self.engine.driver_disconnected(1, driver_session(1))

		self.assertEqual(self.engine.presence.get(1).availability, Availability.AVAILABLE)
		self.assertEqual(self.engine.sessions.resolve(DRIVER, 1), "driver-1-reconnected")

	async def test_rider_disconnect_cancels_searching_request(self):
		await self._setup_drivers()
		request_id = await self._request()

		await self.engine.rider_disconnected(RIDER, rider_session(RIDER))

		self.assertEqual(await self._status(request_id), RideStatus.CANCELLED)
		self.assertEqual(self.engine.presence.get(1).availability, Availability.AVAILABLE)

	async def test_assigned_driver_reconnects_busy_and_rider_is_told_of_disconnect(self):
		await self._setup_drivers()
		request_id = await self._request()
		await self.engine.accept(1, request_id)

		await self.engine.driver_disconnected(1, driver_session(1))
		self.assertIn("driver-disconnected", self.transport.events(rider_session(RIDER)))

		availability = await self.engine.driver_connected(1, driver_session(1))
		self.assertEqual(availability, Availability.BUSY)


class OfferTimeoutTests(SimpleTestCase):
	"""Runs the real response timers with short windows."""

	async def test_timeout_fails_request_and_frees_driver(self):
		engine, store, transport = make_engine(response_timeout=0.05)
		await connect_driver(engine, store, 1, PICKUP["lat"] + 0.002, PICKUP["lng"])
		await connect_rider(engine, RIDER)

		result = await engine.request_ride(RIDER, PICKUP, DROPOFF)
		await asyncio.sleep(0.3)

		request_id = result.ride.id
		self.assertEqual((await store.get_request(request_id)).status, RideStatus.FAILED)
		attempts = await store.list_attempts(request_id=request_id)
		self.assertEqual([(a.driver_id, a.outcome) for a in attempts], [(1, AttemptOutcome.TIMEOUT)])
		self.assertEqual(engine.presence.get(1).availability, Availability.AVAILABLE)
		self.assertIn("ride-expired", transport.events(driver_session(1)))
		self.assertEqual(transport.events(rider_session(RIDER))[-1], "ride-expired")
		await engine.shutdown()

	async def test_timeout_escalates_to_next_driver(self):
		engine, store, transport = make_engine(response_timeout=0.2)
		await connect_driver(engine, store, 1, PICKUP["lat"] + 0.002, PICKUP["lng"])
		await connect_driver(engine, store, 2, PICKUP["lat"] + 0.01, PICKUP["lng"])
		await connect_rider(engine, RIDER)

		result = await engine.request_ride(RIDER, PICKUP, DROPOFF)
		await asyncio.sleep(0.3)

		attempts = await store.list_attempts(request_id=result.ride.id)
		self.assertEqual(
			[(a.driver_id, a.outcome) for a in attempts],
			[(1, AttemptOutcome.TIMEOUT), (2, AttemptOutcome.SENT)],
		)
		self.assertEqual(engine.coordinator.offered_driver(result.ride.id), 2)
		await engine.shutdown()

	async def test_accept_after_timeout_is_rejected(self):
		engine, store, transport = make_engine(response_timeout=0.05)
		await connect_driver(engine, store, 1, PICKUP["lat"] + 0.002, PICKUP["lng"])
		await connect_rider(engine, RIDER)

		result = await engine.request_ride(RIDER, PICKUP, DROPOFF)
		await asyncio.sleep(0.3)

		late = await engine.accept(1, result.ride.id)
		self.assertFalse(late.success)
		self.assertEqual((await store.get_request(result.ride.id)).status, RideStatus.FAILED)
		self.assertIn("ride-already-accepted", transport.events(driver_session(1)))
		await engine.shutdown()

	async def test_cancelled_request_timer_does_not_fire(self):
		engine, store, transport = make_engine(response_timeout=0.05)
		await connect_driver(engine, store, 1, PICKUP["lat"] + 0.002, PICKUP["lng"])
		await connect_driver(engine, store, 2, PICKUP["lat"] + 0.01, PICKUP["lng"])
		await connect_rider(engine, RIDER)

		result = await engine.request_ride(RIDER, PICKUP, DROPOFF)
		await engine.cancel(RIDER, result.ride.id)
		await asyncio.sleep(0.2)

		self.assertEqual((await store.get_request(result.ride.id)).status, RideStatus.CANCELLED)
		self.assertNotIn("ride-offer", transport.events(driver_session(2)))
		self.assertNotIn("ride-expired", transport.events(driver_session(1)))
		await engine.shutdown()


class SuspendingStoreTests(SimpleTestCase):
	"""Stores that yield or fail inside writes, like the database-backed one."""

	async def test_concurrent_requests_never_share_a_driver(self):
		engine, store, transport = make_engine(response_timeout=5, store=YieldingStore())
		await connect_driver(engine, store, 1, PICKUP["lat"] + 0.002, PICKUP["lng"])
		await connect_rider(engine, 100)
		await connect_rider(engine, 200)

		results = await asyncio.gather(
			engine.request_ride(100, PICKUP, DROPOFF),
			engine.request_ride(200, PICKUP, DROPOFF),
		)

		sent = await store.list_attempts(outcome=AttemptOutcome.SENT)
		self.assertEqual([a.driver_id for a in sent], [1])
		self.assertEqual(len(transport.payloads(driver_session(1), "ride-offer")), 1)

		offered = [r.ride.id for r in results if engine.coordinator.offered_driver(r.ride.id) == 1]
		other = [r.ride.id for r in results if r.ride.id not in offered]
		self.assertEqual(len(offered), 1)
		self.assertEqual((await store.get_request(other[0])).status, RideStatus.FAILED)

		self.assertFalse((await engine.accept(1, other[0])).success)
		self.assertTrue((await engine.accept(1, offered[0])).success)
		await engine.shutdown()

	async def test_failed_offer_write_fails_request_instead_of_stranding_it(self):
		engine, store, transport = make_engine(response_timeout=5, store=FailingAttemptStore(fail_on=1))
		await connect_driver(engine, store, 1, PICKUP["lat"] + 0.002, PICKUP["lng"])
		await connect_rider(engine, RIDER)

		with self.assertRaises(RuntimeError):
			await engine.request_ride(RIDER, PICKUP, DROPOFF)

		[request] = await store.find_requests(rider_id=RIDER)
		self.assertEqual(request.status, RideStatus.FAILED)
		self.assertFalse(engine.coordinator.is_active(request.id))
		self.assertEqual(engine.presence.get(1).availability, Availability.AVAILABLE)
		self.assertEqual(transport.events(rider_session(RIDER))[-1], "ride-no-drivers")

		retry = await engine.request_ride(RIDER, PICKUP, DROPOFF)
		self.assertEqual(engine.coordinator.offered_driver(retry.ride.id), 1)
		await engine.shutdown()

	async def test_failed_write_during_timeout_escalation_fails_request(self):
		engine, store, transport = make_engine(response_timeout=0.05, store=FailingAttemptStore(fail_on=2))
		await connect_driver(engine, store, 1, PICKUP["lat"] + 0.002, PICKUP["lng"])
		await connect_driver(engine, store, 2, PICKUP["lat"] + 0.01, PICKUP["lng"])
		await connect_rider(engine, RIDER)

		result = await engine.request_ride(RIDER, PICKUP, DROPOFF)
		await asyncio.sleep(0.3)

		request_id = result.ride.id
		self.assertEqual((await store.get_request(request_id)).status, RideStatus.FAILED)
		self.assertFalse(engine.coordinator.is_active(request_id))
		self.assertEqual(engine.presence.get(1).availability, Availability.AVAILABLE)
		self.assertEqual(engine.presence.get(2).availability, Availability.AVAILABLE)
		self.assertEqual(transport.events(rider_session(RIDER))[-1], "ride-expired")

		retry = await engine.request_ride(RIDER, PICKUP, DROPOFF)
		self.assertTrue(engine.coordinator.is_active(retry.ride.id))
		await engine.shutdown()

from django.test import SimpleTestCase

from services.ride_management.exceptions import (
	InvalidTransitionError,
	RideNotAvailableError,
	TripNotFoundError,
	UnauthorizedError,
	ValidationError,
)
from services.storage import Availability, RideStatus, TripStatus

from .utils import (
	DROPOFF,
	PICKUP,
	connect_driver,
	connect_rider,
	driver_session,
	make_engine,
	rider_session,
)

RIDER = 100
DRIVER_ID = 1


class TripLifecycleTests(SimpleTestCase):
	def setUp(self):
		self.engine, self.store, self.transport = make_engine(response_timeout=5)

	async def _accepted_ride(self):
		await connect_driver(self.engine, self.store, DRIVER_ID, PICKUP["lat"] + 0.002, PICKUP["lng"])
		await connect_rider(self.engine, RIDER)
		result = await self.engine.request_ride(RIDER, PICKUP, DROPOFF)
		await self.engine.accept(DRIVER_ID, result.ride.id)
		return result.ride.id

	async def test_ride_started_twice_creates_one_trip(self):
		request_id = await self._accepted_ride()

		first = await self.engine.status_update(DRIVER_ID, request_id, "ride_started")
		second = await self.engine.status_update(DRIVER_ID, request_id, "ride_started")

		self.assertTrue(first.extra["trip_created"])
		self.assertFalse(second.extra["trip_created"])
		self.assertEqual(first.ride.id, second.ride.id)
		total, trips = await self.store.list_trips(rider_id=RIDER)
		self.assertEqual(total, 1)
		self.assertEqual(trips[0].status, TripStatus.IN_PROGRESS)
		self.assertEqual(trips[0].request_id, request_id)
		self.assertIsNotNone(trips[0].started_at)

	async def test_status_updates_are_relayed_to_rider(self):
		request_id = await self._accepted_ride()

		await self.engine.status_update(DRIVER_ID, request_id, "arrived_at_pickup")

		update = self.transport.payloads(rider_session(RIDER), "ride-status-update")[0]
		self.assertEqual(update["status"], "arrived_at_pickup")
		self.assertEqual(update["message"], "Driver has arrived at your pickup location")
		self.assertIn("ride-status-update", self.transport.events(driver_session(DRIVER_ID)))

	async def test_complete_requires_started_trip(self):
		request_id = await self._accepted_ride()

		with self.assertRaises(InvalidTransitionError):
			await self.engine.status_update(DRIVER_ID, request_id, "completed")

	async def test_complete_falls_back_to_estimate_and_frees_driver(self):
		request_id = await self._accepted_ride()
		request = await self.store.get_request(request_id)
		await self.engine.status_update(DRIVER_ID, request_id, "ride_started")

		result = await self.engine.status_update(DRIVER_ID, request_id, "completed")

		self.assertEqual(result.ride.status, TripStatus.COMPLETED)
		self.assertEqual(result.ride.fare, request.estimated_fare)
		self.assertIsNotNone(result.ride.completed_at)
		self.assertEqual(self.engine.presence.get(DRIVER_ID).availability, Availability.AVAILABLE)

		summary = self.transport.payloads(rider_session(RIDER), "ride-summary")[0]
		self.assertEqual(summary["fare"], request.estimated_fare)
		self.assertIsNotNone(summary["duration_minutes"])
		self.assertIn("ride-completed", self.transport.events(driver_session(DRIVER_ID)))

	async def test_complete_with_final_fare(self):
		request_id = await self._accepted_ride()
		await self.engine.status_update(DRIVER_ID, request_id, "ride_started")

		result = await self.engine.status_update(DRIVER_ID, request_id, "completed", fare=142.5)

		self.assertEqual(result.ride.fare, 142.5)

	async def test_completed_trip_cannot_restart(self):
		request_id = await self._accepted_ride()
		await self.engine.status_update(DRIVER_ID, request_id, "ride_started")
		await self.engine.status_update(DRIVER_ID, request_id, "completed")

		with self.assertRaises(InvalidTransitionError):
			await self.engine.status_update(DRIVER_ID, request_id, "ride_started")
		total, _ = await self.store.list_trips(rider_id=RIDER)
		self.assertEqual(total, 1)

	async def test_rider_can_request_again_after_completion(self):
		request_id = await self._accepted_ride()
		await self.engine.status_update(DRIVER_ID, request_id, "ride_started")
		await self.engine.status_update(DRIVER_ID, request_id, "completed")

		result = await self.engine.request_ride(RIDER, PICKUP, DROPOFF)

		self.assertEqual(result.ride.status, RideStatus.SEARCHING)
		await self.engine.shutdown()

	async def test_only_accepted_driver_may_update(self):
		request_id = await self._accepted_ride()

		with self.assertRaises(UnauthorizedError):
			await self.engine.status_update(DRIVER_ID + 1, request_id, "ride_started")

	async def test_unknown_status_is_rejected(self):
		request_id = await self._accepted_ride()

		with self.assertRaises(ValidationError):
			await self.engine.status_update(DRIVER_ID, request_id, "teleported")

	async def test_driver_cancel_closes_trip_and_request(self):
		request_id = await self._accepted_ride()
		await self.engine.status_update(DRIVER_ID, request_id, "ride_started")

		result = await self.engine.status_update(DRIVER_ID, request_id, "cancelled")

		self.assertEqual(result.ride.status, TripStatus.CANCELLED)
		self.assertEqual((await self.store.get_request(request_id)).status, RideStatus.CANCELLED)
		self.assertEqual(self.engine.presence.get(DRIVER_ID).availability, Availability.AVAILABLE)
		with self.assertRaises(RideNotAvailableError):
			await self.engine.status_update(DRIVER_ID, request_id, "ride_started")

	async def test_rider_cancel_after_start_cancels_trip(self):
		request_id = await self._accepted_ride()
		await self.engine.status_update(DRIVER_ID, request_id, "ride_started")

		await self.engine.cancel(RIDER, request_id)

		trip = await self.store.find_request_trip(request_id)
		self.assertEqual(trip.status, TripStatus.CANCELLED)

	async def test_location_pings_logged_only_during_trip(self):
		request_id = await self._accepted_ride()

		await self.engine.location_update(DRIVER_ID, 12.9740, 77.5950)
		self.assertEqual(self.store.trip_locations, [])

		started = await self.engine.status_update(DRIVER_ID, request_id, "ride_started")
		await self.engine.location_update(DRIVER_ID, 12.9750, 77.5960, heading=90, speed_kph=32.5)
		await self.engine.location_update(DRIVER_ID, 12.9760, 77.5970)

		locations = await self.store.list_trip_locations(started.ride.id)
		self.assertEqual([(loc.lat, loc.lng) for loc in locations], [(12.9750, 77.5960), (12.9760, 77.5970)])
		self.assertEqual(locations[0].heading, 90)

		relayed = self.transport.payloads(rider_session(RIDER), "driver-location")
		self.assertEqual(len(relayed), 2)
		self.assertEqual(relayed[0]["trip_id"], started.ride.id)

		# pings never touch the trip record
		trip = await self.store.get_trip(started.ride.id)
		self.assertEqual(trip.status, TripStatus.IN_PROGRESS)
		self.assertEqual(self.engine.presence.get(DRIVER_ID).position, (12.9760, 77.5970))

	async def test_trip_queries(self):
		request_id = await self._accepted_ride()
		started = await self.engine.status_update(DRIVER_ID, request_id, "ride_started")

		trip = await self.engine.trips.get_trip(RIDER, started.ride.id)
		self.assertEqual(trip.driver_id, DRIVER_ID)
		with self.assertRaises(UnauthorizedError):
			await self.engine.trips.get_trip(RIDER + 1, started.ride.id)
		with self.assertRaises(TripNotFoundError):
			await self.engine.trips.get_trip(RIDER, 999)

		history = await self.engine.trips.history(DRIVER_ID, role="driver", limit=500)
		self.assertEqual(history["limit"], 100)
		self.assertEqual(history["total"], 1)
		self.assertEqual(history["trips"][0]["trip_id"], started.ride.id)

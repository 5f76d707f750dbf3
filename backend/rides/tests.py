from datetime import timedelta
from io import StringIO
from unittest.mock import MagicMock, patch

from asgiref.sync import async_to_sync
from django.contrib.auth.models import User
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from app_backend.views import health_check
from drivers.models import DriverPresence, DriverProfile
from services.matching.config import DispatchConfig
from services.ride_management.engine import DispatchEngine
from services.ride_management.exceptions import TripNotFoundError
from services.storage import AttemptOutcome, Availability, GeoPoint, RideStatus, TripStatus
from services.tests.utils import DROPOFF, PICKUP, RecordingTransport

from .models import RideRequest, RideRequestAttempt, Trip, TripLocation
from .services.reconcile import prune_stale_presence, reconcile_abandoned_offers
from .store import DjangoDispatchStore
from .views import ride_attempts, ride_detail, trip_detail, trip_history

PICKUP_POINT = GeoPoint(lat=PICKUP['lat'], lng=PICKUP['lng'], address=PICKUP['address'])
DROPOFF_POINT = GeoPoint(lat=DROPOFF['lat'], lng=DROPOFF['lng'], address=DROPOFF['address'])


def make_ride(rider, **fields):
	values = {
		'pickup_latitude': PICKUP['lat'],
		'pickup_longitude': PICKUP['lng'],
		'pickup_address': PICKUP['address'],
		'dropoff_latitude': DROPOFF['lat'],
		'dropoff_longitude': DROPOFF['lng'],
		'distance_km': 5.1,
		'estimated_fare': 45.5,
	}
	values.update(fields)
	return RideRequest.objects.create(rider=rider, **values)


def make_trip(ride, **fields):
	values = {
		'pickup_latitude': ride.pickup_latitude,
		'pickup_longitude': ride.pickup_longitude,
		'dropoff_latitude': ride.dropoff_latitude,
		'dropoff_longitude': ride.dropoff_longitude,
		'distance_km': ride.distance_km,
		'fare': ride.estimated_fare,
		'status': TripStatus.IN_PROGRESS,
	}
	values.update(fields)
	return Trip.objects.create(ride_request=ride, rider=ride.rider, driver=ride.accepted_driver, **values)


class DispatchTestCase(TestCase):
	def setUp(self):
		self.rider = User.objects.create_user(username='rider', password='rider1234')
		self.driver = User.objects.create_user(
			username='driver_one',
			password='driver1234',
			first_name='Asha',
			last_name='Rao'
		)
		self.other = User.objects.create_user(username='stranger', password='stranger1234')
		DriverProfile.objects.create(user=self.driver, vehicle_number='KA-01-1001', vehicle_type='classic')


class DjangoDispatchStoreTests(DispatchTestCase):
	def setUp(self):
		super().setUp()
		self.store = DjangoDispatchStore()

	def call(self, method, *args, **kwargs):
		return async_to_sync(getattr(self.store, method))(*args, **kwargs)

	def test_create_and_fetch_request(self):
		record = self.call('create_request', self.rider.id, PICKUP_POINT, DROPOFF_POINT, 5.123, 45.555, 'economy')

		self.assertEqual(record.status, RideStatus.SEARCHING)
		self.assertEqual(record.distance_km, 5.12)
		fetched = self.call('get_request', record.id)
		self.assertEqual(fetched.pickup, PICKUP_POINT)
		self.assertEqual(fetched.rider_id, self.rider.id)
		self.assertIsNone(self.call('get_request', 9999))

	def test_transition_request_only_wins_once(self):
		record = self.call('create_request', self.rider.id, PICKUP_POINT, DROPOFF_POINT, 5, 45, 'economy')

		first = self.call('transition_request', record.id, [RideStatus.SEARCHING], RideStatus.ACCEPTED, self.driver.id)
		second = self.call('transition_request', record.id, [RideStatus.SEARCHING], RideStatus.ACCEPTED, self.other.id)

		self.assertTrue(first)
		self.assertFalse(second)
		ride = RideRequest.objects.get(pk=record.id)
		self.assertEqual(ride.status, RideStatus.ACCEPTED)
		self.assertEqual(ride.accepted_driver_id, self.driver.id)
		self.assertIsNotNone(ride.accepted_at)

	def test_find_requests_filters(self):
		accepted = make_ride(self.rider, status=RideStatus.ACCEPTED, accepted_driver=self.driver)
		make_ride(self.rider, status=RideStatus.CANCELLED)

		found = self.call('find_requests', statuses=[RideStatus.ACCEPTED], driver_id=self.driver.id)

		self.assertEqual([r.id for r in found], [accepted.id])
		self.assertEqual(len(self.call('find_requests', rider_id=self.rider.id)), 2)

	def test_attempt_resolves_once(self):
		ride = make_ride(self.rider)
		attempt = self.call('create_attempt', ride.id, self.driver.id, AttemptOutcome.SENT)
		self.assertIsNone(attempt.responded_at)

		self.assertTrue(self.call('resolve_attempt', ride.id, self.driver.id, AttemptOutcome.DECLINED))
		self.assertFalse(self.call('resolve_attempt', ride.id, self.driver.id, AttemptOutcome.TIMEOUT))

		attempts = self.call('list_attempts', request_id=ride.id)
		self.assertEqual([a.outcome for a in attempts], [AttemptOutcome.DECLINED])
		self.assertIsNotNone(attempts[0].responded_at)

	def test_one_sent_attempt_per_ride(self):
		ride = make_ride(self.rider)
		RideRequestAttempt.objects.create(ride=ride, driver=self.driver)

		with self.assertRaises(IntegrityError), transaction.atomic():
			RideRequestAttempt.objects.create(ride=ride, driver=self.other)

	def test_presence_upsert_keeps_unspecified_fields(self):
		self.call('upsert_presence', self.driver.id, lat=12.97, lng=77.59, availability=Availability.AVAILABLE, session_id='chan-1')
		record = self.call('upsert_presence', self.driver.id, availability=Availability.BUSY)

		self.assertEqual(record.availability, Availability.BUSY)
		self.assertEqual(record.session_id, 'chan-1')
		self.assertEqual((record.lat, record.lng), (12.97, 77.59))

		record = self.call('upsert_presence', self.driver.id, session_id=None)
		self.assertIsNone(record.session_id)
		self.assertEqual(DriverPresence.objects.get(driver=self.driver).session_id, '')
		self.assertEqual(len(self.call('list_presence')), 1)

	def test_driver_summary(self):
		summary = self.call('get_driver_summary', self.driver.id)

		self.assertEqual(summary.name, 'Asha Rao')
		self.assertEqual(summary.vehicle_number, 'KA-01-1001')
		self.assertEqual(summary.vehicle_type, 'classic')
		self.assertIsNone(self.call('get_driver_summary', self.rider.id))

	def test_trip_lookups_and_updates(self):
		ride = make_ride(self.rider, status=RideStatus.ACCEPTED, accepted_driver=self.driver)
		trip = self.call(
			'create_trip',
			rider_id=self.rider.id,
			driver_id=self.driver.id,
			pickup=PICKUP_POINT,
			dropoff=DROPOFF_POINT,
			distance_km=5.1,
			fare=45.5,
			status=TripStatus.IN_PROGRESS,
			request_id=ride.id,
			started_at=timezone.now(),
		)

		self.assertEqual(self.call('find_request_trip', ride.id).id, trip.id)
		self.assertEqual(self.call('find_open_trip', self.rider.id, self.driver.id).id, trip.id)
		self.assertEqual(self.call('find_driver_trip', self.driver.id, TripStatus.IN_PROGRESS).id, trip.id)

		updated = self.call('update_trip', trip.id, status=TripStatus.COMPLETED, fare=60.456)
		self.assertEqual(updated.fare, 60.46)
		self.assertIsNone(self.call('find_open_trip', self.rider.id, self.driver.id))

		with self.assertRaises(ValueError):
			self.call('update_trip', trip.id, rider_id=self.other.id)
		with self.assertRaises(TripNotFoundError):
			self.call('update_trip', 9999, status=TripStatus.CANCELLED)

	def test_list_trips_pages_newest_first(self):
		ride = make_ride(self.rider, status=RideStatus.ACCEPTED, accepted_driver=self.driver)
		trips = [make_trip(ride, status=TripStatus.COMPLETED) for _ in range(3)]

		total, page = self.call('list_trips', driver_id=self.driver.id, limit=2, offset=0)

		self.assertEqual(total, 3)
		self.assertEqual([t.id for t in page], [trips[2].id, trips[1].id])

	def test_trip_locations_are_appended(self):
		ride = make_ride(self.rider, status=RideStatus.ACCEPTED, accepted_driver=self.driver)
		trip = make_trip(ride)

		self.call('append_trip_location', trip.id, 12.9720, 77.5950, heading=45, speed_kph=20)
		self.call('append_trip_location', trip.id, 12.9730, 77.5960)

		locations = self.call('list_trip_locations', trip.id)
		self.assertEqual([(loc.lat, loc.lng) for loc in locations], [(12.972, 77.595), (12.973, 77.596)])
		self.assertEqual(locations[0].speed_kph, 20.0)
		self.assertIsNone(locations[1].heading)


class EngineWithDatabaseTests(DispatchTestCase):
	def test_accept_persists_request_and_attempt(self):
		transport = RecordingTransport()
		engine = DispatchEngine(DjangoDispatchStore(), transport, DispatchConfig(response_timeout=30))

		async def flow():
			await engine.driver_connected(self.driver.id, 'driver-chan', position=(PICKUP['lat'] + 0.002, PICKUP['lng']))
			await engine.rider_connected(self.rider.id, 'rider-chan')
			submitted = await engine.request_ride(self.rider.id, PICKUP, DROPOFF)
			accepted = await engine.accept(self.driver.id, submitted.ride.id)
			await engine.shutdown()
			return submitted, accepted

		submitted, accepted = async_to_sync(flow)()

		self.assertTrue(accepted.success)
		ride = RideRequest.objects.get(pk=submitted.ride.id)
		self.assertEqual(ride.status, RideStatus.ACCEPTED)
		self.assertEqual(ride.accepted_driver_id, self.driver.id)
		self.assertEqual(
			list(ride.attempts.values_list('outcome', flat=True)),
			[AttemptOutcome.ACCEPTED]
		)
		self.assertEqual(DriverPresence.objects.get(driver=self.driver).status, Availability.BUSY)

		confirmed = [payload for sid, event, payload in transport.sent if event == 'ride-accepted']
		self.assertEqual(confirmed[0]['driver']['vehicle_number'], 'KA-01-1001')


class ReconcileTests(DispatchTestCase):
	def setUp(self):
		super().setUp()
		self.config = DispatchConfig(response_timeout=15, abandoned_offer_grace=30, liveness_window=60)
		self.long_ago = timezone.now() - timedelta(minutes=10)

	def test_abandoned_offer_is_expired(self):
		ride = make_ride(self.rider)
		attempt = RideRequestAttempt.objects.create(ride=ride, driver=self.driver, sent_at=self.long_ago)
		DriverPresence.objects.create(driver=self.driver, status=Availability.BUSY)

		expired, failed = reconcile_abandoned_offers(self.config)

		self.assertEqual((expired, failed), (1, 1))
		attempt.refresh_from_db()
		ride.refresh_from_db()
		self.assertEqual(attempt.outcome, AttemptOutcome.TIMEOUT)
		self.assertIsNotNone(attempt.responded_at)
		self.assertEqual(ride.status, RideStatus.FAILED)
		self.assertEqual(DriverPresence.objects.get(driver=self.driver).status, Availability.AVAILABLE)

	def test_live_offer_is_left_alone(self):
		ride = make_ride(self.rider)
		RideRequestAttempt.objects.create(ride=ride, driver=self.driver)

		self.assertEqual(reconcile_abandoned_offers(self.config), (0, 0))
		ride.refresh_from_db()
		self.assertEqual(ride.status, RideStatus.SEARCHING)

	def test_driver_on_trip_stays_busy(self):
		ride = make_ride(self.rider)
		RideRequestAttempt.objects.create(ride=ride, driver=self.driver, sent_at=self.long_ago)
		earlier = make_ride(self.other, status=RideStatus.ACCEPTED, accepted_driver=self.driver)
		make_trip(earlier)
		DriverPresence.objects.create(driver=self.driver, status=Availability.BUSY)

		reconcile_abandoned_offers(self.config)

		self.assertEqual(DriverPresence.objects.get(driver=self.driver).status, Availability.BUSY)

	def test_orphaned_searching_request_fails(self):
		orphan = make_ride(self.rider)
		RideRequest.objects.filter(pk=orphan.pk).update(updated_at=self.long_ago)
		# declined just now, a live process is still working on it
		active = make_ride(self.other)
		RideRequest.objects.filter(pk=active.pk).update(updated_at=self.long_ago)
		RideRequestAttempt.objects.create(
			ride=active,
			driver=self.driver,
			outcome=AttemptOutcome.DECLINED,
			responded_at=timezone.now()
		)

		expired, failed = reconcile_abandoned_offers(self.config)

		self.assertEqual((expired, failed), (0, 1))
		self.assertEqual(RideRequest.objects.get(pk=orphan.pk).status, RideStatus.FAILED)
		self.assertEqual(RideRequest.objects.get(pk=active.pk).status, RideStatus.SEARCHING)

	def test_stale_presence_goes_offline(self):
		DriverPresence.objects.create(
			driver=self.driver,
			status=Availability.AVAILABLE,
			session_id='chan-1',
			last_seen_at=self.long_ago
		)

		self.assertEqual(prune_stale_presence(self.config), 1)
		presence = DriverPresence.objects.get(driver=self.driver)
		self.assertEqual(presence.status, Availability.OFFLINE)
		self.assertEqual(presence.session_id, '')

	def test_reconcile_command(self):
		ride = make_ride(self.rider)
		RideRequestAttempt.objects.create(ride=ride, driver=self.driver, sent_at=self.long_ago)
		DriverPresence.objects.create(driver=self.driver, status=Availability.BUSY, last_seen_at=self.long_ago)

		out = StringIO()
		with self.settings(DISPATCH={'DRIVER_RESPONSE_TIMEOUT': 15, 'ABANDONED_OFFER_GRACE_SECONDS': 30}):
			call_command('reconcile_dispatch', '--skip-presence', stdout=out)

		self.assertIn('Expired 1 abandoned offer(s); failed 1 ride(s).', out.getvalue())
		self.assertNotIn('stale driver', out.getvalue())
		# released, but the heartbeat row is left for the presence pass
		self.assertEqual(DriverPresence.objects.get(driver=self.driver).status, Availability.AVAILABLE)


class CleanupCommandTests(DispatchTestCase):
	def setUp(self):
		super().setUp()
		old = timezone.now() - timedelta(days=45)
		self.old_cancelled = make_ride(self.rider, status=RideStatus.CANCELLED)
		self.old_accepted = make_ride(self.rider, status=RideStatus.ACCEPTED, accepted_driver=self.driver)
		self.recent_failed = make_ride(self.rider, status=RideStatus.FAILED)
		RideRequest.objects.filter(pk__in=[self.old_cancelled.pk, self.old_accepted.pk]).update(requested_at=old)

		trip = make_trip(self.old_accepted, status=TripStatus.COMPLETED)
		TripLocation.objects.create(trip=trip, latitude=12.97, longitude=77.59, recorded_at=old)
		TripLocation.objects.create(trip=trip, latitude=12.98, longitude=77.60)

	def test_dry_run_deletes_nothing(self):
		out = StringIO()
		call_command('cleanup_old_data', '--dry-run', stdout=out)

		self.assertIn('Would delete 1 trip locations and 1 old rides', out.getvalue())
		self.assertEqual(RideRequest.objects.count(), 3)
		self.assertEqual(TripLocation.objects.count(), 2)

	def test_removes_old_terminal_rides_and_locations(self):
		call_command('cleanup_old_data', '--days', '30', stdout=StringIO())

		self.assertFalse(RideRequest.objects.filter(pk=self.old_cancelled.pk).exists())
		self.assertTrue(RideRequest.objects.filter(pk=self.old_accepted.pk).exists())
		self.assertTrue(RideRequest.objects.filter(pk=self.recent_failed.pk).exists())
		self.assertEqual(TripLocation.objects.count(), 1)


class RideViewTests(DispatchTestCase):
	def setUp(self):
		super().setUp()
		self.factory = APIRequestFactory()
		self.ride = make_ride(self.rider, status=RideStatus.ACCEPTED, accepted_driver=self.driver)
		RideRequestAttempt.objects.create(ride=self.ride, driver=self.driver, outcome=AttemptOutcome.ACCEPTED)
		self.trip = make_trip(self.ride)

	def get(self, view, user, path='/', **kwargs):
		request = self.factory.get(path)
		force_authenticate(request, user=user)
		return view(request, **kwargs)

	def test_ride_detail_visible_to_both_parties(self):
		for user in (self.rider, self.driver):
			response = self.get(ride_detail, user, ride_id=self.ride.id)
			self.assertEqual(response.status_code, 200)
			self.assertEqual(response.data['status'], RideStatus.ACCEPTED)
			self.assertEqual(response.data['accepted_driver'], self.driver.id)

	def test_ride_detail_forbidden_and_missing(self):
		self.assertEqual(self.get(ride_detail, self.other, ride_id=self.ride.id).status_code, 403)
		self.assertEqual(self.get(ride_detail, self.rider, ride_id=9999).status_code, 404)

	def test_ride_attempts_for_rider_only(self):
		response = self.get(ride_attempts, self.rider, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['attempts'][0]['outcome'], AttemptOutcome.ACCEPTED)
		self.assertEqual(self.get(ride_attempts, self.driver, ride_id=self.ride.id).status_code, 403)

	def test_trip_history_by_role(self):
		as_rider = self.get(trip_history, self.rider, '/trips/?limit=500')
		as_driver = self.get(trip_history, self.driver, '/trips/?role=driver')
		stranger = self.get(trip_history, self.other, '/trips/')

		self.assertEqual(as_rider.data['limit'], 100)
		self.assertEqual(as_rider.data['trips'][0]['request_id'], self.ride.id)
		self.assertEqual(as_driver.data['total'], 1)
		self.assertEqual(stranger.data['total'], 0)

	def test_trip_detail(self):
		response = self.get(trip_detail, self.driver, trip_id=self.trip.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['status'], TripStatus.IN_PROGRESS)
		self.assertEqual(self.get(trip_detail, self.other, trip_id=self.trip.id).status_code, 403)
		self.assertEqual(self.get(trip_detail, self.rider, trip_id=9999).status_code, 404)

	def test_requires_authentication(self):
		response = ride_detail(self.factory.get('/'), ride_id=self.ride.id)
		self.assertEqual(response.status_code, 403)


class HealthCheckTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()

	@patch('app_backend.views.celery_app.connection_for_write')
	@patch('app_backend.views.redis.Redis.from_url')
	def test_healthy(self, from_url, connection_for_write):
		from_url.return_value = MagicMock()

		response = health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['services']['redis'], 'healthy')
		self.assertEqual(response.data['services']['database'], 'healthy')
		self.assertEqual(response.data['services']['celery'], 'healthy')
		connection = connection_for_write.return_value.__enter__.return_value
		connection.ensure_connection.assert_called_once_with(max_retries=1)

	@patch('app_backend.views.celery_app.connection_for_write')
	@patch('app_backend.views.redis.Redis.from_url')
	def test_unhealthy_when_broker_down(self, from_url, connection_for_write):
		from_url.return_value = MagicMock()
		connection = connection_for_write.return_value.__enter__.return_value
		connection.ensure_connection.side_effect = ConnectionError('broker refused')

		response = health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.data['services']['celery'], 'unhealthy: broker refused')
		self.assertEqual(response.data['services']['redis'], 'healthy')

	@patch('app_backend.views.celery_app.connection_for_write')
	@patch('app_backend.views.redis.Redis.from_url')
	def test_unhealthy_when_redis_down(self, from_url, connection_for_write):
		from_url.return_value.ping.side_effect = ConnectionError('refused')

		response = health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 503)
		self.assertTrue(response.data['services']['redis'].startswith('unhealthy'))

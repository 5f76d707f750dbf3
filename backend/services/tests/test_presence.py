from django.test import SimpleTestCase

from services.matching.candidates import find_candidates, nearby_drivers
from services.matching.presence import PresenceRegistry
from services.storage import Availability, InMemoryStore

from .utils import FakeClock, connect_driver, make_engine

PICKUP = (12.9716, 77.5946)


class PresenceRegistryTests(SimpleTestCase):
	def setUp(self):
		self.clock = FakeClock()
		self.store = InMemoryStore(clock=self.clock)
		self.registry = PresenceRegistry(self.store, liveness_window=60, clock=self.clock)

	async def test_upsert_writes_through_to_store(self):
		await self.registry.upsert(1, position=PICKUP, availability=Availability.AVAILABLE, session_id="s1")

		stored = await self.store.get_presence(1)
		self.assertEqual(stored.availability, Availability.AVAILABLE)
		self.assertEqual(stored.session_id, "s1")
		self.assertEqual(self.registry.get(1).position, PICKUP)

	async def test_partial_update_keeps_other_fields(self):
		await self.registry.upsert(1, position=PICKUP, availability=Availability.AVAILABLE, session_id="s1")
		await self.registry.upsert(1, position=(13.0, 77.6))

		record = self.registry.get(1)
		self.assertEqual(record.availability, Availability.AVAILABLE)
		self.assertEqual(record.session_id, "s1")
		self.assertEqual(record.position, (13.0, 77.6))

	async def test_stale_heartbeat_is_not_available(self):
		await self.registry.upsert(1, position=PICKUP, availability=Availability.AVAILABLE)
		self.assertTrue(self.registry.is_available(1))

		self.clock.advance(61)
		self.assertFalse(self.registry.is_available(1))
		self.assertEqual(list(self.registry.all_available()), [])

	async def test_mark_offline_clears_session(self):
		await self.registry.upsert(1, position=PICKUP, availability=Availability.AVAILABLE, session_id="s1")
		await self.registry.mark_offline(1)

		self.assertEqual(self.registry.get(1).availability, Availability.OFFLINE)
		self.assertIsNone(self.registry.get(1).session_id)
		self.assertIsNone((await self.store.get_presence(1)).session_id)

	async def test_prune_drops_only_disconnected_stale_entries(self):
		await self.registry.upsert(1, position=PICKUP, availability=Availability.AVAILABLE, session_id="s1")
		await self.registry.upsert(2, position=PICKUP, availability=Availability.AVAILABLE)
		await self.registry.mark_offline(2)

		self.clock.advance(120)
		self.assertEqual(self.registry.prune(), 1)
		self.assertIsNotNone(self.registry.get(1))
		self.assertIsNone(self.registry.get(2))

	async def test_reserve_is_memory_only_and_restorable(self):
		await self.registry.upsert(1, position=PICKUP, availability=Availability.AVAILABLE, session_id="s1")

		previous = self.registry.reserve(1)

		self.assertEqual(previous, Availability.AVAILABLE)
		self.assertFalse(self.registry.is_available(1))
		self.assertEqual((await self.store.get_presence(1)).availability, Availability.AVAILABLE)

		self.registry.restore(1, previous)
		self.assertTrue(self.registry.is_available(1))
		self.assertIsNone(self.registry.reserve(99))


class EnginePresencePruningTests(SimpleTestCase):
	def setUp(self):
		self.clock = FakeClock()
		self.engine, self.store, _ = make_engine(clock=self.clock, liveness_window=60)

	async def test_driver_traffic_prunes_departed_drivers(self):
		await connect_driver(self.engine, self.store, 1, *PICKUP)
		await self.engine.driver_disconnected(1, "driver-1")
		self.assertIsNotNone(self.engine.presence.get(1))

		self.clock.advance(120)
		await connect_driver(self.engine, self.store, 2, *PICKUP)

		self.assertIsNone(self.engine.presence.get(1))
		self.assertIsNotNone(self.engine.presence.get(2))
		# heartbeat row is kept for the persisted history
		self.assertIsNotNone(await self.store.get_presence(1))
		await self.engine.shutdown()

	async def test_prune_runs_at_most_once_per_window(self):
		await connect_driver(self.engine, self.store, 1, *PICKUP)
		await self.engine.driver_disconnected(1, "driver-1")
		self.clock.advance(50)
		self.engine.prune_presence()

		self.clock.advance(11)
		await connect_driver(self.engine, self.store, 2, *PICKUP)
		self.assertIsNotNone(self.engine.presence.get(1))

		self.clock.advance(60)
		await self.engine.location_update(2, *PICKUP)
		self.assertIsNone(self.engine.presence.get(1))
		await self.engine.shutdown()


class CandidateSelectionTests(SimpleTestCase):
	def setUp(self):
		self.store = InMemoryStore()
		self.registry = PresenceRegistry(self.store)

	async def _driver(self, driver_id, lat, lng, availability=Availability.AVAILABLE):
		await self.registry.upsert(driver_id, position=(lat, lng), availability=availability)

	async def test_sorted_by_distance(self):
		await self._driver(1, 12.9816, 77.5946)   # ~1.1 km
		await self._driver(2, 12.9736, 77.5946)   # ~0.2 km
		await self._driver(3, 12.9916, 77.5946)   # ~2.2 km

		self.assertEqual(find_candidates(self.registry, PICKUP, radius_km=5), [2, 1, 3])

	async def test_radius_and_availability_filter(self):
		await self._driver(1, 12.9736, 77.5946)
		await self._driver(2, 13.0716, 77.5946)   # ~11 km away
		await self._driver(3, 12.9726, 77.5946, availability=Availability.BUSY)
		await self._driver(4, 12.9726, 77.5946, availability=Availability.OFFLINE)

		self.assertEqual(find_candidates(self.registry, PICKUP, radius_km=5), [1])

	async def test_ties_broken_by_driver_id(self):
		await self._driver(7, 12.9736, 77.5946)
		await self._driver(3, 12.9736, 77.5946)

		self.assertEqual(find_candidates(self.registry, PICKUP), [3, 7])

	async def test_driver_without_position_is_skipped(self):
		await self.registry.upsert(1, availability=Availability.AVAILABLE)
		self.assertEqual(find_candidates(self.registry, PICKUP), [])

	async def test_nearby_drivers_payload(self):
		await self._driver(1, 12.9736, 77.5946)

		drivers = nearby_drivers(self.registry, {"lat": PICKUP[0], "lng": PICKUP[1]}, radius_km=5)
		self.assertEqual(len(drivers), 1)
		self.assertEqual(drivers[0]["driver_id"], 1)
		self.assertAlmostEqual(drivers[0]["distance_km"], 0.22, delta=0.01)

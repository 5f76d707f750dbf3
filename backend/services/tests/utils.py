"""Shared fixtures for dispatch core tests."""

import asyncio
from datetime import timedelta

from django.utils import timezone

from services.matching.config import DispatchConfig
from services.ride_management.engine import DispatchEngine
from services.storage import InMemoryStore
from services.transport import Transport

PICKUP = {"lat": 12.9716, "lng": 77.5946, "address": "MG Road"}
DROPOFF = {"lat": 12.9352, "lng": 77.6245, "address": "Koramangala"}


class FakeClock:
	def __init__(self):
		self.now = timezone.now()

	def __call__(self):
		return self.now

	def advance(self, seconds):
		self.now += timedelta(seconds=seconds)


class RecordingTransport(Transport):
	"""Transport that keeps every delivered event in memory."""

	def __init__(self):
		self.sent = []

	async def send(self, session_id, event, payload):
		self.sent.append((session_id, event, payload))

	def events(self, session_id=None):
		return [event for sid, event, _ in self.sent if session_id is None or sid == session_id]

	def payloads(self, session_id, event):
		return [payload for sid, name, payload in self.sent if sid == session_id and name == event]

	def clear(self):
		self.sent = []


class YieldingStore(InMemoryStore):
	"""Suspends on attempt writes the way a database-backed store does."""

	async def create_attempt(self, request_id, driver_id, outcome):
		await asyncio.sleep(0)
		return await super().create_attempt(request_id, driver_id, outcome)


class FailingAttemptStore(InMemoryStore):
	"""Raises on the n-th attempt write, then behaves normally."""

	def __init__(self, fail_on=1, **kwargs):
		super().__init__(**kwargs)
		self.fail_on = fail_on
		self.attempt_writes = 0

	async def create_attempt(self, request_id, driver_id, outcome):
		self.attempt_writes += 1
		if self.attempt_writes == self.fail_on:
			raise RuntimeError("database is unavailable")
		return await super().create_attempt(request_id, driver_id, outcome)


def make_engine(response_timeout=0.05, store=None, clock=None, **config):
	kwargs = {"clock": clock} if clock is not None else {}
	store = store if store is not None else InMemoryStore(**kwargs)
	transport = RecordingTransport()
	engine = DispatchEngine(
		store,
		transport,
		DispatchConfig(response_timeout=response_timeout, **config),
		**kwargs,
	)
	return engine, store, transport


def driver_session(driver_id):
	return f"driver-{driver_id}"


def rider_session(rider_id):
	return f"rider-{rider_id}"


async def connect_driver(engine, store, driver_id, lat, lng, name=None):
	store.register_driver(driver_id, name=name or f"Driver {driver_id}", vehicle_number=f"KA-01-{driver_id:04d}")
	await engine.driver_connected(driver_id, driver_session(driver_id), position=(lat, lng))


async def connect_rider(engine, rider_id):
	await engine.rider_connected(rider_id, rider_session(rider_id))

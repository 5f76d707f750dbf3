from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser, User
from django.test import SimpleTestCase, override_settings

from services.tests.utils import DROPOFF, PICKUP

from .consumers import DriverConsumer, RiderConsumer
from .engine import get_dispatch_engine, reset_dispatch_engine

DISPATCH = {
	"STORE": "services.storage.memory.InMemoryStore",
	"DRIVER_RESPONSE_TIMEOUT": 30,
}


@override_settings(DISPATCH=DISPATCH)
class ConsumerTests(SimpleTestCase):
	databases = {"default"}

	def setUp(self):
		reset_dispatch_engine()
		self.engine = get_dispatch_engine()
		self.driver = User(id=7, username="driver_seven")
		self.rider = User(id=42, username="rider")
		self.engine.store.register_driver(self.driver.id, name="Driver Seven", vehicle_number="KA-05-0007")

	def tearDown(self):
		reset_dispatch_engine()

	async def open(self, consumer, path, user):
		communicator = WebsocketCommunicator(consumer.as_asgi(), path)
		communicator.scope["user"] = user
		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		return communicator

	async def open_driver(self):
		path = f"/ws/driver/?lat={PICKUP['lat'] + 0.002}&lng={PICKUP['lng']}"
		communicator = await self.open(DriverConsumer, path, self.driver)
		hello = await communicator.receive_json_from()
		self.assertEqual(hello["type"], "connection_established")
		return communicator, hello

	async def open_rider(self):
		communicator = await self.open(RiderConsumer, "/ws/rider/", self.rider)
		hello = await communicator.receive_json_from()
		self.assertEqual(hello["role"], "rider")
		return communicator

	async def test_anonymous_connection_is_rejected(self):
		communicator = WebsocketCommunicator(RiderConsumer.as_asgi(), "/ws/rider/")
		communicator.scope["user"] = AnonymousUser()

		connected, _ = await communicator.connect()

		self.assertFalse(connected)

	async def test_driver_endpoint_requires_driver_profile(self):
		communicator = await self.open(DriverConsumer, "/ws/driver/", self.rider)

		error = await communicator.receive_json_from()

		self.assertEqual(error["type"], "error")
		self.assertEqual(error["code"], "unauthorized")
		await communicator.disconnect()

	async def test_driver_connect_publishes_position(self):
		driver, hello = await self.open_driver()

		self.assertEqual(hello["availability"], "available")
		self.assertEqual(self.engine.presence.get(self.driver.id).position, (PICKUP["lat"] + 0.002, PICKUP["lng"]))

		await driver.disconnect()
		self.assertEqual(self.engine.presence.get(self.driver.id).availability, "offline")

	async def test_offer_accept_and_start(self):
		driver, _ = await self.open_driver()
		rider = await self.open_rider()

		await rider.send_json_to({"type": "ride-request", "pickup": PICKUP, "dropoff": DROPOFF})
		searching = await rider.receive_json_from()
		offer = await driver.receive_json_from()

		self.assertEqual(searching["type"], "ride-searching")
		self.assertEqual(searching["drivers_found"], 1)
		self.assertEqual(offer["type"], "ride-offer")
		self.assertEqual(offer["request_id"], searching["request_id"])
		self.assertIn("expires_in", offer)

		await driver.send_json_to({"type": "accept", "request_id": offer["request_id"]})
		accepted = await rider.receive_json_from()
		confirm = await driver.receive_json_from()

		self.assertEqual(accepted["type"], "ride-accepted")
		self.assertEqual(accepted["driver"]["vehicle_number"], "KA-05-0007")
		self.assertEqual(confirm["type"], "ride-accepted-confirm")

		await driver.send_json_to({
			"type": "status-update",
			"request_id": offer["request_id"],
			"status": "ride_started",
		})
		update = await rider.receive_json_from()

		self.assertEqual(update["type"], "ride-status-update")
		self.assertEqual(update["status"], "ride_started")
		self.assertIn("trip_id", update)

		await driver.disconnect()
		await rider.disconnect()
		await self.engine.shutdown()

	async def test_decline_is_acknowledged(self):
		driver, _ = await self.open_driver()
		rider = await self.open_rider()

		await rider.send_json_to({"type": "ride-request", "pickup": PICKUP, "dropoff": DROPOFF})
		await rider.receive_json_from()
		offer = await driver.receive_json_from()

		await driver.send_json_to({"type": "decline", "request_id": offer["request_id"]})
		ack = await driver.receive_json_from()

		self.assertEqual(ack["type"], "decline-ack")
		self.assertTrue(ack["success"])
		# nobody left to ask
		expired = await rider.receive_json_from()
		self.assertEqual(expired["type"], "ride-expired")

		await driver.disconnect()
		await rider.disconnect()

	async def test_rider_disconnect_cancels_search(self):
		driver, _ = await self.open_driver()
		rider = await self.open_rider()

		await rider.send_json_to({"type": "ride-request", "pickup": PICKUP, "dropoff": DROPOFF})
		searching = await rider.receive_json_from()
		await driver.receive_json_from()

		await rider.disconnect()

		request = await self.engine.store.get_request(searching["request_id"])
		self.assertEqual(request.status, "cancelled")
		self.assertFalse(self.engine.coordinator.is_active(searching["request_id"]))
		await driver.disconnect()

	async def test_fare_estimate_and_nearby(self):
		driver, _ = await self.open_driver()
		rider = await self.open_rider()

		await rider.send_json_to({"type": "fare-estimate", "pickup": PICKUP, "dropoff": DROPOFF})
		estimate = await rider.receive_json_from()
		await rider.send_json_to({"type": "nearby-drivers", "lat": PICKUP["lat"], "lng": PICKUP["lng"]})
		nearby = await rider.receive_json_from()

		self.assertEqual(estimate["type"], "fare-estimate")
		self.assertEqual(set(estimate["tiers"]), {"economy", "classic"})
		self.assertEqual(len(nearby["drivers"]), 1)

		await driver.disconnect()
		await rider.disconnect()

	async def test_invalid_messages_get_errors(self):
		rider = await self.open_rider()

		await rider.send_json_to({"pickup": PICKUP})
		missing_type = await rider.receive_json_from()
		await rider.send_json_to({"type": "ride-request", "pickup": PICKUP})
		invalid = await rider.receive_json_from()
		await rider.send_json_to({"type": "teleport"})
		unknown = await rider.receive_json_from()
		await rider.send_json_to({"type": "cancel", "request_id": 999})
		not_found = await rider.receive_json_from()

		self.assertEqual(missing_type["code"], "validation_error")
		self.assertEqual(invalid["code"], "validation_error")
		self.assertIn("dropoff", invalid["details"])
		self.assertEqual(unknown["message"], "Unknown message type: teleport")
		self.assertEqual(not_found["code"], "not_found")

		await rider.disconnect()

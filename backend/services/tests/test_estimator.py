from django.test import SimpleTestCase

from common.utils import (
	calculate_fare,
	distance_km,
	estimate_time,
	fare_estimates,
	pickup_eta_minutes,
	resolve_tier,
)
from services.storage import GeoPoint


class DistanceTests(SimpleTestCase):
	def test_one_degree_of_longitude_on_equator(self):
		self.assertAlmostEqual(distance_km((0, 0), (0, 1)), 111.19, delta=0.01)

	def test_same_point_is_zero(self):
		self.assertEqual(distance_km((12.97, 77.59), (12.97, 77.59)), 0)

	def test_accepts_dicts_and_points(self):
		a = {"lat": 0, "lng": 0}
		b = GeoPoint(lat=0, lng=1)
		self.assertAlmostEqual(distance_km(a, b), distance_km((0, 0), (0, 1)))

	def test_antipodal_points_do_not_overflow(self):
		self.assertAlmostEqual(distance_km((0, 0), (0, 180)), 20015.09, delta=0.1)


class FareTests(SimpleTestCase):
	def test_economy_fare(self):
		self.assertEqual(calculate_fare(10, "economy"), 70.00)

	def test_classic_fare(self):
		self.assertEqual(calculate_fare(10, "classic"), 110.00)

	def test_unknown_tier_falls_back_to_default(self):
		self.assertEqual(calculate_fare(10, "limousine"), calculate_fare(10, "economy"))
		self.assertEqual(resolve_tier(None), "economy")

	def test_tier_aliases(self):
		self.assertEqual(resolve_tier("car"), "classic")
		self.assertEqual(resolve_tier("Bike"), "economy")

	def test_fare_is_rounded_to_cents(self):
		self.assertEqual(calculate_fare(1.234, "economy"), 26.17)

	def test_estimate_time_uses_tier_speed(self):
		self.assertEqual(estimate_time(25, "economy"), 60.0)

	def test_fare_estimates_cover_every_tier(self):
		estimates = fare_estimates((0, 0), (0, 0.1))
		self.assertEqual(set(estimates["tiers"]), {"economy", "classic"})
		self.assertAlmostEqual(estimates["distance_km"], 11.12, delta=0.01)
		self.assertLess(estimates["tiers"]["economy"]["amount"], estimates["tiers"]["classic"]["amount"])

	def test_pickup_eta(self):
		self.assertEqual(pickup_eta_minutes(None, (0, 0)), 10)
		self.assertEqual(pickup_eta_minutes((0, 0), (0, 0)), 1)
		# ~11.1 km at 30 km/h
		self.assertEqual(pickup_eta_minutes((0, 0), (0, 0.1)), 22)

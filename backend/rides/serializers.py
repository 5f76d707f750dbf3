"""
Serializers for the rides app.

The inbound serializers validate WebSocket payloads before they reach the
dispatch engine; the model serializers back the read-only REST views.
"""

from rest_framework import serializers

from services.ride_management.trip_lifecycle import DRIVER_STATUSES
from .models import RideRequest, RideRequestAttempt, Trip


# ===================== Inbound (WebSocket) =====================

class LocationSerializer(serializers.Serializer):
    lat = serializers.FloatField(min_value=-90, max_value=90)
    lng = serializers.FloatField(min_value=-180, max_value=180)
    address = serializers.CharField(required=False, allow_blank=True, default="")


class RideRequestInputSerializer(serializers.Serializer):
    """Rider's ``ride-request`` payload"""
    pickup = LocationSerializer()
    dropoff = LocationSerializer()
    tier = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class FareEstimateInputSerializer(serializers.Serializer):
    pickup = LocationSerializer()
    dropoff = LocationSerializer()


class NearbyDriversInputSerializer(serializers.Serializer):
    lat = serializers.FloatField(min_value=-90, max_value=90)
    lng = serializers.FloatField(min_value=-180, max_value=180)
    radius_km = serializers.FloatField(required=False, min_value=0.1, max_value=50, default=None)


class RequestIdSerializer(serializers.Serializer):
    """``accept``/``decline``/``cancel`` payloads"""
    request_id = serializers.IntegerField(min_value=1)


class StatusUpdateSerializer(serializers.Serializer):
    request_id = serializers.IntegerField(min_value=1)
    status = serializers.ChoiceField(choices=DRIVER_STATUSES)
    fare = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True, min_value=0)


class LocationUpdateSerializer(serializers.Serializer):
    lat = serializers.FloatField(min_value=-90, max_value=90)
    lng = serializers.FloatField(min_value=-180, max_value=180)
    heading = serializers.IntegerField(required=False, allow_null=True, min_value=0, max_value=359)
    speed_kph = serializers.FloatField(required=False, allow_null=True, min_value=0)


# ===================== Read-only REST =====================

class RideRequestSerializer(serializers.ModelSerializer):
    """Serializer for Ride Requests"""

    class Meta:
        model = RideRequest
        fields = ['id', 'rider', 'accepted_driver',
                  'pickup_latitude', 'pickup_longitude', 'pickup_address',
                  'dropoff_latitude', 'dropoff_longitude', 'dropoff_address',
                  'distance_km', 'estimated_fare', 'tier', 'status',
                  'requested_at', 'accepted_at', 'cancelled_at']
        read_only_fields = fields


class RideRequestAttemptSerializer(serializers.ModelSerializer):

    class Meta:
        model = RideRequestAttempt
        fields = ['id', 'driver', 'outcome', 'sent_at', 'responded_at']
        read_only_fields = fields


class TripSerializer(serializers.ModelSerializer):
    """Serializer for Trips"""
    request_id = serializers.IntegerField(source='ride_request_id', read_only=True)

    class Meta:
        model = Trip
        fields = ['id', 'request_id', 'rider', 'driver',
                  'pickup_latitude', 'pickup_longitude', 'pickup_address',
                  'dropoff_latitude', 'dropoff_longitude', 'dropoff_address',
                  'distance_km', 'fare', 'status', 'started_at', 'completed_at', 'created_at']
        read_only_fields = fields

from django.db import models
from django.conf import settings
from django.utils import timezone

from services.storage.records import AttemptOutcome, RideStatus, TripStatus


class RideRequest(models.Model):
    """A rider's request, offered to drivers one at a time until resolved"""

    rider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ride_requests'
    )

    accepted_driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='accepted_rides'
    )

    # Pickup location
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_address = models.TextField(blank=True, default='')

    # Dropoff location
    dropoff_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_address = models.TextField(blank=True, default='')

    # Estimate
    distance_km = models.DecimalField(max_digits=8, decimal_places=2)
    estimated_fare = models.DecimalField(max_digits=10, decimal_places=2)
    tier = models.CharField(max_length=20, default='economy')

    status = models.CharField(max_length=20, choices=RideStatus.CHOICES, default=RideStatus.SEARCHING)

    # Timestamps
    requested_at = models.DateTimeField(auto_now_add=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    # Set explicitly on conditional updates
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'ride_requests'
        ordering = ['-requested_at']
        indexes = [
            models.Index(fields=['rider', 'status'], name='ride_req_rider_status_idx'),
            models.Index(fields=['status'], name='ride_req_status_idx'),
        ]

    def __str__(self):
        return f"Ride #{self.id} - {self.rider} - {self.status}"


class RideRequestAttempt(models.Model):
    """One offer of a ride to one driver and how it ended"""

    ride = models.ForeignKey(
        RideRequest,
        on_delete=models.CASCADE,
        related_name='attempts'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ride_attempts'
    )

    outcome = models.CharField(max_length=20, choices=AttemptOutcome.CHOICES, default=AttemptOutcome.SENT)

    sent_at = models.DateTimeField(default=timezone.now)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'ride_request_attempts'
        ordering = ['sent_at', 'id']
        constraints = [
            # a request is never offered to two drivers at once
            models.UniqueConstraint(
                fields=['ride'],
                condition=models.Q(outcome='sent'),
                name='one_sent_attempt_per_ride'
            )
        ]

    def __str__(self):
        return f"Attempt #{self.id} - Ride {self.ride_id} -> Driver {self.driver_id} ({self.outcome})"


class Trip(models.Model):
    """A ride in motion, created when the driver starts the ride"""

    ride_request = models.ForeignKey(
        RideRequest,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='trips'
    )
    rider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='trips'
    )
    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='driven_trips'
    )

    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_address = models.TextField(blank=True, default='')
    dropoff_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_address = models.TextField(blank=True, default='')

    distance_km = models.DecimalField(max_digits=8, decimal_places=2)
    fare = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    status = models.CharField(max_length=20, choices=TripStatus.CHOICES, default=TripStatus.REQUESTED)

    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'trips'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['driver', 'status'], name='trip_driver_status_idx'),
            models.Index(fields=['rider', 'driver', 'status'], name='trip_pair_status_idx'),
        ]

    def __str__(self):
        return f"Trip #{self.id} - {self.rider} with {self.driver} - {self.status}"


class TripLocation(models.Model):
    """Append-only position log for an in-progress trip"""
    ACTOR_CHOICES = [
        ('driver', 'Driver'),
        ('rider', 'Rider'),
    ]

    trip = models.ForeignKey(
        Trip,
        on_delete=models.CASCADE,
        related_name='locations'
    )
    actor = models.CharField(max_length=10, choices=ACTOR_CHOICES, default='driver')

    latitude = models.DecimalField(max_digits=10, decimal_places=6)
    longitude = models.DecimalField(max_digits=10, decimal_places=6)
    heading = models.SmallIntegerField(null=True, blank=True)
    speed_kph = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)

    recorded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'trip_locations'
        ordering = ['recorded_at', 'id']

    def __str__(self):
        return f"Trip {self.trip_id} @ ({self.latitude}, {self.longitude})"

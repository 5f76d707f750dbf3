from django.db import models
from django.utils import timezone
from django.conf import settings

from services.storage.records import Availability

User = settings.AUTH_USER_MODEL


class DriverProfile(models.Model):
    """Driver and vehicle details shown to riders once a ride is accepted"""
    VEHICLE_CHOICES = [
        ('economy', 'Economy'),
        ('classic', 'Classic'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    # Vehicle details
    vehicle_number = models.CharField(max_length=20, unique=True)
    vehicle_type = models.CharField(max_length=20, choices=VEHICLE_CHOICES, default='economy')

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'driver_profiles'

    def __str__(self):
        return f"{self.user.username} - {self.vehicle_number}"

    @property
    def display_name(self):
        return self.user.get_full_name() or self.user.username


class DriverPresence(models.Model):
    """Heartbeat row: a driver's last-known position, availability and socket"""

    driver = models.OneToOneField(User, on_delete=models.CASCADE, related_name='presence')

    status = models.CharField(max_length=20, choices=Availability.CHOICES, default=Availability.OFFLINE)
    latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)

    # Channels channel name of the connected socket, blank when disconnected
    session_id = models.CharField(max_length=255, blank=True, default='')
    last_seen_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'driver_presence'
        indexes = [
            models.Index(fields=['status', 'last_seen_at'], name='driver_presence_status_idx'),
        ]

    def __str__(self):
        return f"Driver {self.driver_id} - {self.status}"

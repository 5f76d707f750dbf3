"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import RideRequest, RideRequestAttempt, Trip, TripLocation


class RideRequestAttemptInline(admin.TabularInline):
    model = RideRequestAttempt
    extra = 0
    readonly_fields = ("driver", "outcome", "sent_at", "responded_at")


@admin.register(RideRequest)
class RideRequestAdmin(admin.ModelAdmin):
    """Ride Request admin"""
    list_display = ['id', 'rider', 'accepted_driver', 'status', 'tier', 'estimated_fare', 'requested_at', 'accepted_at']
    list_filter = ['status', 'tier', 'requested_at']
    search_fields = ['rider__username', 'accepted_driver__username', 'pickup_address', 'dropoff_address']
    readonly_fields = ['requested_at', 'accepted_at', 'cancelled_at', 'updated_at']
    date_hierarchy = 'requested_at'
    inlines = [RideRequestAttemptInline]


@admin.register(RideRequestAttempt)
class RideRequestAttemptAdmin(admin.ModelAdmin):
    list_display = ("ride", "driver", "outcome", "sent_at", "responded_at")
    list_filter = ("outcome",)
    search_fields = ("ride__id", "driver__username")


@admin.register(Trip)
class TripAdmin(admin.ModelAdmin):
    list_display = ("id", "rider", "driver", "status", "fare", "started_at", "completed_at")
    list_filter = ("status",)
    search_fields = ("rider__username", "driver__username")
    readonly_fields = ("created_at", "updated_at")


@admin.register(TripLocation)
class TripLocationAdmin(admin.ModelAdmin):
    list_display = ("trip", "actor", "latitude", "longitude", "heading", "recorded_at")
    list_filter = ("actor",)

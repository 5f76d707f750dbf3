from django.contrib import admin
from drivers.models import DriverPresence, DriverProfile


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    """Admin panel for managing Driver Profiles"""

    list_display = [
        "user",
        "vehicle_number",
        "vehicle_type",
        "created_at",
    ]

    list_filter = [
        "vehicle_type",
    ]

    search_fields = [
        "user__username",
        "vehicle_number",
    ]

    ordering = ("user__username",)


@admin.register(DriverPresence)
class DriverPresenceAdmin(admin.ModelAdmin):
    list_display = ("driver", "status", "latitude", "longitude", "last_seen_at")
    list_filter = ("status",)
    search_fields = ("driver__username",)
    readonly_fields = ("last_seen_at", "session_id")

from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint

    # Rides endpoints (at /api/rides/)
    path('api/rides/', include('rides.urls')),      # read-only ride and trip history
]

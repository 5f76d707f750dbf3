from django.urls import path
from . import views

app_name = 'rides'

urlpatterns = [
    # Trips
    path('trips/', views.trip_history, name='trip-history'),
    path('trips/<int:trip_id>/', views.trip_detail, name='trip-detail'),

    # Ride requests
    path('<int:ride_id>/', views.ride_detail, name='ride-detail'),
    path('<int:ride_id>/attempts/', views.ride_attempts, name='ride-attempts'),
]

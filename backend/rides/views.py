from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from .models import RideRequest, Trip
from .serializers import (
    RideRequestSerializer,
    RideRequestAttemptSerializer,
    TripSerializer,
)

MAX_PAGE_SIZE = 100


def _int_param(request, name, default):
    try:
        return int(request.query_params.get(name, default))
    except (TypeError, ValueError):
        return default


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_detail(request, ride_id):
    """Ride request as seen by its rider or its accepted driver"""
    ride = RideRequest.objects.filter(id=ride_id).first()
    if ride is None:
        return Response({'error': 'Ride not found'}, status=status.HTTP_404_NOT_FOUND)

    if request.user.id not in (ride.rider_id, ride.accepted_driver_id):
        return Response(
            {'error': 'You are not part of this ride'},
            status=status.HTTP_403_FORBIDDEN
        )
    return Response(RideRequestSerializer(ride).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_attempts(request, ride_id):
    """Offer history of a ride request (rider only)"""
    ride = RideRequest.objects.filter(id=ride_id).first()
    if ride is None:
        return Response({'error': 'Ride not found'}, status=status.HTTP_404_NOT_FOUND)

    if ride.rider_id != request.user.id:
        return Response(
            {'error': 'Only the rider can view offer attempts'},
            status=status.HTTP_403_FORBIDDEN
        )
    attempts = ride.attempts.order_by('sent_at', 'id')
    return Response({
        'ride_id': ride.id,
        'status': ride.status,
        'attempts': RideRequestAttemptSerializer(attempts, many=True).data,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def trip_history(request):
    """
    Paginated trip history.

    ``?role=driver`` lists trips driven by the user, otherwise trips taken.
    """
    limit = max(1, min(_int_param(request, 'limit', 20), MAX_PAGE_SIZE))
    offset = max(0, _int_param(request, 'offset', 0))

    if request.query_params.get('role') == 'driver':
        trips = Trip.objects.filter(driver=request.user)
    else:
        trips = Trip.objects.filter(rider=request.user)

    total = trips.count()
    page = trips.order_by('-created_at', '-id')[offset:offset + limit]
    return Response({
        'total': total,
        'limit': limit,
        'offset': offset,
        'trips': TripSerializer(page, many=True).data,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def trip_detail(request, trip_id):
    trip = Trip.objects.filter(id=trip_id).first()
    if trip is None:
        return Response({'error': 'Trip not found'}, status=status.HTTP_404_NOT_FOUND)

    if request.user.id not in (trip.rider_id, trip.driver_id):
        return Response(
            {'error': 'You are not part of this trip'},
            status=status.HTTP_403_FORBIDDEN
        )
    return Response(TripSerializer(trip).data)

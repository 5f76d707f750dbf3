"""
Crash recovery for dispatch state.

Offer timers live in the process that sent the offer. If that process
dies, its ``sent`` attempts and ``searching`` requests are left behind.
These helpers close them out from a periodic worker.
"""

from datetime import timedelta
from typing import Optional, Tuple

from django.db import close_old_connections, transaction
from django.utils import timezone

from drivers.models import DriverPresence
from rides.models import RideRequest, RideRequestAttempt, Trip
from services.matching.config import DispatchConfig
from services.storage import AttemptOutcome, Availability, RideStatus, TripStatus


def _release_driver(driver_id: int) -> None:
    """Revert a reserved driver unless they are engaged elsewhere."""
    engaged = (
        RideRequestAttempt.objects.filter(driver_id=driver_id, outcome=AttemptOutcome.SENT).exists()
        or Trip.objects.filter(driver_id=driver_id, status=TripStatus.IN_PROGRESS).exists()
    )
    if not engaged:
        DriverPresence.objects.filter(driver_id=driver_id, status=Availability.BUSY).update(
            status=Availability.AVAILABLE
        )


def reconcile_abandoned_offers(config: Optional[DispatchConfig] = None) -> Tuple[int, int]:
    """
    Expire offers nobody is waiting on any more and fail their requests.

    An offer is abandoned once it has been ``sent`` for longer than the
    response window plus a grace period.

    Returns a tuple of (expired_attempts, failed_requests).
    """
    config = config or DispatchConfig.from_settings()
    now = timezone.now()
    cutoff = now - timedelta(seconds=config.response_timeout + config.abandoned_offer_grace)

    stale_attempts = (
        RideRequestAttempt.objects
        .filter(outcome=AttemptOutcome.SENT, sent_at__lt=cutoff)
        .order_by("sent_at")
    )

    expired_count = 0
    failed_count = 0

    for attempt in stale_attempts:
        with transaction.atomic():
            closed = RideRequestAttempt.objects.filter(
                pk=attempt.pk, outcome=AttemptOutcome.SENT
            ).update(outcome=AttemptOutcome.TIMEOUT, responded_at=now)
            if not closed:
                continue
            expired_count += 1
            _release_driver(attempt.driver_id)
            failed_count += RideRequest.objects.filter(
                pk=attempt.ride_id, status=RideStatus.SEARCHING
            ).update(status=RideStatus.FAILED, updated_at=now)

    # Searching requests that lost their process between two offers
    orphaned = (
        RideRequest.objects
        .filter(status=RideStatus.SEARCHING, updated_at__lt=cutoff)
        .exclude(attempts__outcome=AttemptOutcome.SENT)
        .exclude(attempts__responded_at__gte=cutoff)
    )
    failed_count += orphaned.update(status=RideStatus.FAILED, updated_at=now)

    # Close stale DB connections for long-running workers
    close_old_connections()
    return expired_count, failed_count


def prune_stale_presence(config: Optional[DispatchConfig] = None) -> int:
    """Mark heartbeat rows past the liveness window offline. Returns the count."""
    config = config or DispatchConfig.from_settings()
    cutoff = timezone.now() - timedelta(seconds=config.liveness_window)
    pruned = (
        DriverPresence.objects
        .filter(last_seen_at__lt=cutoff)
        .exclude(status=Availability.OFFLINE)
        .update(status=Availability.OFFLINE, session_id="")
    )
    close_old_connections()
    return pruned

from django.core.management.base import BaseCommand
from django.utils import timezone
from datetime import timedelta
from rides.models import RideRequest, TripLocation
from services.storage import RideStatus
import logging

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Clean up old finished ride requests and trip location logs."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=30,
            help="Delete data older than this many days (default: 30).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting.",
        )

    def handle(self, *args, **options):
        days = options["days"]
        dry_run = options["dry_run"]
        cutoff = timezone.now() - timedelta(days=days)

        # Location pings of old trips
        old_locations = TripLocation.objects.filter(recorded_at__lt=cutoff)
        locations_count = old_locations.count()

        # Failed/cancelled requests never became trips; attempts cascade with them
        old_rides = RideRequest.objects.filter(
            requested_at__lt=cutoff,
            status__in=list(RideStatus.TERMINAL),
        )
        rides_count = old_rides.count()

        if dry_run:
            self.stdout.write(
                self.style.WARNING(
                    f"DRY RUN: Would delete {locations_count} trip locations and {rides_count} old rides older than {days} days."
                )
            )
        else:
            old_locations.delete()
            old_rides.delete()
            logger.info(f"Cleaned up {locations_count} trip locations and {rides_count} old rides")
            self.stdout.write(
                self.style.SUCCESS(
                    f"Deleted {locations_count} trip locations and {rides_count} old rides older than {days} days."
                )
            )

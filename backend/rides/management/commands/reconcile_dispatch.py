from django.core.management.base import BaseCommand

from rides.services.reconcile import prune_stale_presence, reconcile_abandoned_offers
from services.matching.config import DispatchConfig


class Command(BaseCommand):
    help = "Expire abandoned ride offers and mark stale drivers offline."

    def add_arguments(self, parser):
        parser.add_argument(
            "--skip-presence",
            action="store_true",
            help="Only reconcile offers; leave driver presence untouched.",
        )

    def handle(self, *args, **options):
        config = DispatchConfig.from_settings()
        expired_count, failed_count = reconcile_abandoned_offers(config)

        self.stdout.write(
            self.style.SUCCESS(
                f"Expired {expired_count} abandoned offer(s); failed {failed_count} ride(s)."
            )
        )

        if not options["skip_presence"]:
            pruned = prune_stale_presence(config)
            self.stdout.write(self.style.SUCCESS(f"Marked {pruned} stale driver(s) offline."))

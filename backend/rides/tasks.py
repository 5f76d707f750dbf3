"""Celery tasks for ride-related background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def reconcile_abandoned_offers_task():
    """
    Periodic task closing offers whose process went away.

    Live offers are expired by the dispatch engine's own timers; this only
    catches attempts that outlived the response window plus the grace period.
    """
    from rides.services.reconcile import reconcile_abandoned_offers

    try:
        expired, failed = reconcile_abandoned_offers()
        if expired or failed:
            logger.info(f"Reconciled {expired} abandoned offer(s), failed {failed} ride(s)")
        return {"expired": expired, "failed": failed}
    except Exception as e:
        logger.error(f"Error reconciling abandoned offers: {e}")
        raise


@shared_task
def prune_stale_presence_task():
    """Periodic task marking drivers without a recent heartbeat offline."""
    from rides.services.reconcile import prune_stale_presence

    pruned = prune_stale_presence()
    if pruned:
        logger.info(f"Marked {pruned} stale driver(s) offline")
    return pruned

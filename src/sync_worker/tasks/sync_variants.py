"""Variant and stock synchronization tasks."""

import structlog
from celery import shared_task

from sync_worker.dependencies import get_services

logger = structlog.get_logger()


@shared_task(bind=True, acks_late=True)
def sync_product_variants(self, pid: str, attempt: int = 1) -> dict:
    """
    Refresh variants and stock for one imported product.

    Rate limits re-queue this task with a backoff delay and ``attempt + 1``;
    removal is a normal return. Other upstream errors propagate to Celery.
    """
    with structlog.contextvars.bound_contextvars(task_id=self.request.id, pid=pid):
        return get_services().variant_sync.sync(pid, attempt=attempt).to_dict()


@shared_task(bind=True)
def schedule_variant_syncs(self, limit: int | None = None) -> dict:
    """Fan out one variant sync per active product, least recently synced first."""
    services = get_services()
    limit = limit or services.settings.variant_sync_batch_size

    pids = services.store.list_sync_candidates(limit)
    for pid in pids:
        services.queue.enqueue_variant_sync(pid)

    logger.info("Scheduled variant syncs", count=len(pids), limit=limit)
    return {"scheduled": len(pids)}

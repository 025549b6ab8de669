"""Celery application for the catalog sync worker."""

from datetime import timedelta

import structlog
from celery import Celery
from celery.signals import worker_process_shutdown

from catalog_sync.config import get_settings
from catalog_sync.infrastructure.redis import ClaimStoreError
from catalog_sync.log import configure_logging

settings = get_settings()
configure_logging(settings)

logger = structlog.get_logger()

# Create Celery app
app = Celery(
    "sync_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "sync_worker.tasks.import_chunks",
        "sync_worker.tasks.sync_variants",
        "sync_worker.tasks.sync_catalog",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Claim TTL is validated to outlive the hard limit.
    task_time_limit=settings.job_time_limit_seconds,
    task_soft_time_limit=settings.job_soft_time_limit_seconds,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="sync",
    task_routes={
        "sync_worker.tasks.import_chunks.*": {"queue": "import"},
        "sync_worker.tasks.sync_variants.sync_product_variants": {"queue": "variants"},
        "sync_worker.tasks.*": {"queue": "sync"},
    },
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Scan the upstream listing from page 1; each page chains the next
    "sync-catalog": {
        "task": "sync_worker.tasks.sync_catalog.sync_catalog_page",
        "schedule": timedelta(minutes=settings.catalog_sync_interval_minutes),
        "kwargs": {"page": 1},
    },
    # Refresh variants/stock of the least recently synced products
    "sync-variants": {
        "task": "sync_worker.tasks.sync_variants.schedule_variant_syncs",
        "schedule": timedelta(minutes=settings.variant_sync_interval_minutes),
    },
}


@worker_process_shutdown.connect
def release_worker_claims(**kwargs) -> None:
    """Give back every claim this pool process still holds."""
    from sync_worker.dependencies import current_services

    services = current_services()
    if services is None:
        return
    try:
        released = services.claims.release_all_for_owner()
    except ClaimStoreError as e:
        logger.warning("Could not release claims on shutdown", error=str(e))
        return
    logger.info("Worker claims released", released=released)


def run() -> None:
    """Run the Celery worker."""
    app.worker_main(["worker", "--loglevel=info", "-Q", "sync,import,variants"])


if __name__ == "__main__":
    run()

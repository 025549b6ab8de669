"""Celery implementation of the sync services' JobQueue."""

from typing import Any

import structlog
from celery import Celery

logger = structlog.get_logger()

IMPORT_CHUNK_TASK = "sync_worker.tasks.import_chunks.import_product_chunk"
SYNC_VARIANTS_TASK = "sync_worker.tasks.sync_variants.sync_product_variants"
SYNC_CATALOG_PAGE_TASK = "sync_worker.tasks.sync_catalog.sync_catalog_page"

IMPORT_QUEUE = "import"
VARIANTS_QUEUE = "variants"
SYNC_QUEUE = "sync"
ENRICHMENT_QUEUE = "enrichment"

# Consumed by the storefront's own workers; only the names are known here.
ENRICHMENT_TASKS = {
    "translate": "storefront.catalog.translate_products",
    "seo": "storefront.catalog.generate_seo",
    "media": "storefront.catalog.sync_media",
}


class CeleryJobQueue:
    """Sends tasks by name so producers never import the task modules."""

    def __init__(self, app: Celery):
        self.app = app

    def enqueue_chunk(
        self,
        payloads: list[dict[str, Any]],
        tracking_key: str | None = None,
        attempt: int = 1,
        countdown: int = 0,
        fetch_details: bool = False,
    ) -> None:
        self.app.send_task(
            IMPORT_CHUNK_TASK,
            kwargs={
                "payloads": payloads,
                "tracking_key": tracking_key,
                "attempt": attempt,
                "fetch_details": fetch_details,
            },
            countdown=countdown or None,
            queue=IMPORT_QUEUE,
        )

    def enqueue_variant_sync(self, pid: str, attempt: int = 1, countdown: int = 0) -> None:
        self.app.send_task(
            SYNC_VARIANTS_TASK,
            kwargs={"pid": pid, "attempt": attempt},
            countdown=countdown or None,
            queue=VARIANTS_QUEUE,
        )

    def enqueue_enrichment(self, job: str, pids: list[str]) -> None:
        task_name = ENRICHMENT_TASKS.get(job)
        if task_name is None:
            logger.warning("Unknown enrichment job", job=job)
            return
        self.app.send_task(task_name, args=[pids], queue=ENRICHMENT_QUEUE)

    def enqueue_catalog_page(
        self,
        page: int,
        page_size: int,
        filters: dict[str, Any] | None = None,
        force: bool = False,
    ) -> None:
        self.app.send_task(
            SYNC_CATALOG_PAGE_TASK,
            kwargs={"page": page, "page_size": page_size, "filters": filters, "force": force},
            queue=SYNC_QUEUE,
        )

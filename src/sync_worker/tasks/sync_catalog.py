"""Catalog listing scan tasks."""

from typing import Any

import structlog
from celery import shared_task

from catalog_sync.infrastructure.catalog.client import CatalogError, CatalogErrorKind
from catalog_sync.services.variant_sync import compute_backoff_delay
from sync_worker.dependencies import get_services

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=8, default_retry_delay=60)
def sync_catalog_page(
    self,
    page: int = 1,
    page_size: int | None = None,
    filters: dict[str, Any] | None = None,
    force: bool = False,
    chain: bool = True,
) -> dict:
    """
    Scan one page of the upstream listing and dispatch claimed chunks.

    When ``chain`` is set and more pages remain, the next page is enqueued
    as its own task.
    """
    services = get_services()
    settings = services.settings

    with structlog.contextvars.bound_contextvars(task_id=self.request.id, page=page):
        try:
            result = services.catalog_sync.sync_page(page, page_size, filters, force)
        except CatalogError as e:
            if e.kind is CatalogErrorKind.RATE_LIMITED:
                delay = compute_backoff_delay(
                    self.request.retries + 1,
                    settings.rate_limit_backoff_base_seconds,
                    settings.rate_limit_backoff_cap_seconds,
                )
                logger.warning("Catalog listing rate limited", retry_in=delay)
                raise self.retry(
                    exc=e, countdown=delay, max_retries=settings.rate_limit_max_attempts
                )
            if e.kind is CatalogErrorKind.TRANSIENT:
                raise self.retry(exc=e)
            raise

        if chain and result.items and page < result.total_pages:
            services.queue.enqueue_catalog_page(
                page + 1, page_size or settings.catalog_page_size, filters, force
            )

        return {
            "page": result.page,
            "total_pages": result.total_pages,
            "items": result.items,
            **{k: v for k, v in result.dispatch.to_dict().items() if k != "errors"},
        }

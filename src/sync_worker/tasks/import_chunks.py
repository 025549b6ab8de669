"""Chunk import tasks."""

from typing import Any

import structlog
from celery import shared_task

from sync_worker.dependencies import get_services

logger = structlog.get_logger()


@shared_task(bind=True, acks_late=True)
def import_product_chunk(
    self,
    payloads: list[dict[str, Any]],
    tracking_key: str | None = None,
    attempt: int = 1,
    fetch_details: bool = False,
) -> dict:
    """
    Import one chunk of pre-claimed product payloads.

    Retries are not handled by Celery here: a failed chunk is re-dispatched
    with fresh claims by the pipeline itself, and only the final attempt
    raises.

    Args:
        payloads: Upstream items, each carrying its claim token
        tracking_key: Import run to report outcomes to
        attempt: 1-based attempt number of this chunk
        fetch_details: Fetch full product detail per PID before import

    Returns:
        dict: Chunk outcome summary
    """
    with structlog.contextvars.bound_contextvars(
        task_id=self.request.id, tracking_key=tracking_key, attempt=attempt
    ):
        logger.info("Starting chunk import", size=len(payloads))
        result = get_services().pipeline.run(
            payloads,
            tracking_key=tracking_key,
            attempt=attempt,
            fetch_details=fetch_details,
        )
        return result.to_dict()

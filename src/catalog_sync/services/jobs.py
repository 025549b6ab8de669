"""Job queue interface used by the sync services.

Services never talk to Celery directly; the worker supplies a Celery-backed
implementation and the CLI an in-process one.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from catalog_sync.services.product_import import resolve_pid
from shared.constants import CLAIM_TOKEN_FIELD

if TYPE_CHECKING:
    from catalog_sync.services.chunk_import import ChunkImportPipeline

logger = structlog.get_logger()

# Downstream enrichment jobs run by other services after an import.
ENRICH_TRANSLATE = "translate"
ENRICH_SEO = "seo"
ENRICH_MEDIA = "media"
ENRICHMENT_JOBS = (ENRICH_TRANSLATE, ENRICH_SEO, ENRICH_MEDIA)


class JobQueue(Protocol):
    def enqueue_chunk(
        self,
        payloads: list[dict[str, Any]],
        tracking_key: str | None = None,
        attempt: int = 1,
        countdown: int = 0,
        fetch_details: bool = False,
    ) -> None: ...

    def enqueue_variant_sync(self, pid: str, attempt: int = 1, countdown: int = 0) -> None: ...

    def enqueue_enrichment(self, job: str, pids: list[str]) -> None: ...

    def enqueue_catalog_page(
        self,
        page: int,
        page_size: int,
        filters: dict[str, Any] | None = None,
        force: bool = False,
    ) -> None: ...


@dataclass
class DeferredJob:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


class InlineJobQueue:
    """
    Runs chunk imports synchronously in the calling process.

    Anything that would run later (delayed retries, variant syncs,
    enrichment, further pages) is recorded in ``deferred`` instead. A
    deferred chunk never runs in this process, so the claims it carries are
    released as it is recorded.
    """

    def __init__(self) -> None:
        self.pipeline: "ChunkImportPipeline | None" = None
        self.results: list[Any] = []
        self.failures: list[dict[str, Any]] = []
        self.deferred: list[DeferredJob] = []

    def bind(self, pipeline: "ChunkImportPipeline") -> None:
        self.pipeline = pipeline

    def enqueue_chunk(
        self,
        payloads: list[dict[str, Any]],
        tracking_key: str | None = None,
        attempt: int = 1,
        countdown: int = 0,
        fetch_details: bool = False,
    ) -> None:
        if self.pipeline is None or countdown > 0 or attempt > 1:
            released = self._release_claims(payloads)
            self.deferred.append(
                DeferredJob(
                    "chunk",
                    {
                        "size": len(payloads),
                        "attempt": attempt,
                        "tracking_key": tracking_key,
                        "released": released,
                    },
                )
            )
            return
        try:
            self.results.append(
                self.pipeline.run(
                    payloads, tracking_key=tracking_key, attempt=attempt, fetch_details=fetch_details
                )
            )
        except Exception as e:
            logger.error("Inline chunk import failed", size=len(payloads), error=str(e))
            self.failures.append({"size": len(payloads), "error": str(e)})

    def _release_claims(self, payloads: list[dict[str, Any]]) -> int:
        if self.pipeline is None:
            return 0
        released = 0
        for payload in payloads:
            pid = resolve_pid(payload)
            token = payload.get(CLAIM_TOKEN_FIELD)
            if pid and token and self.pipeline.claims.release(pid, token):
                released += 1
        if released:
            logger.warning("Released claims of a chunk that cannot run inline", released=released)
        return released

    def enqueue_variant_sync(self, pid: str, attempt: int = 1, countdown: int = 0) -> None:
        self.deferred.append(DeferredJob("sync_variants", {"pid": pid, "attempt": attempt}))

    def enqueue_enrichment(self, job: str, pids: list[str]) -> None:
        self.deferred.append(DeferredJob(job, {"count": len(pids)}))

    def enqueue_catalog_page(
        self,
        page: int,
        page_size: int,
        filters: dict[str, Any] | None = None,
        force: bool = False,
    ) -> None:
        self.deferred.append(DeferredJob("catalog_page", {"page": page}))

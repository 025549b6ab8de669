"""Chunk import pipeline.

Processes one batch of pre-claimed payloads: verifies each claim is still
held, imports the batch with a single bulk upsert, releases every claim,
then either reports outcomes and schedules enrichment or re-dispatches the
batch for another attempt.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog
from redis.exceptions import RedisError

from catalog_sync.services.catalog_dispatch import CatalogDispatcher
from catalog_sync.services.claims import ClaimService
from catalog_sync.services.import_tracker import ImportTracker
from catalog_sync.services.jobs import (
    ENRICH_MEDIA,
    ENRICH_SEO,
    ENRICH_TRANSLATE,
    JobQueue,
)
from catalog_sync.services.product_import import (
    BulkImportResult,
    ProductImportService,
    resolve_pid,
)
from shared.constants import CLAIM_TOKEN_FIELD, ENRICHMENT_DISPATCH_CHUNK_SIZE

logger = structlog.get_logger()

STATUS_IMPORTED = "imported"
STATUS_REQUEUED = "requeued"
STATUS_EMPTY = "empty"


@dataclass(frozen=True)
class EnrichmentOptions:
    translate: bool = True
    seo: bool = True
    media: bool = True
    sync_variants: bool = True
    only_created: bool = False
    chunk_size: int = ENRICHMENT_DISPATCH_CHUNK_SIZE

    @property
    def jobs(self) -> list[str]:
        enabled = {ENRICH_TRANSLATE: self.translate, ENRICH_SEO: self.seo, ENRICH_MEDIA: self.media}
        return [job for job, on in enabled.items() if on]


@dataclass
class ChunkImportResult:
    status: str
    attempt: int
    tracking_key: str | None = None
    processed: int = 0
    released: int = 0
    lost_claims: list[str] = field(default_factory=list)
    invalid: int = 0
    imported: BulkImportResult | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status,
            "attempt": self.attempt,
            "tracking_key": self.tracking_key,
            "processed": self.processed,
            "released": self.released,
            "lost_claims": len(self.lost_claims),
            "invalid": self.invalid,
            "error": self.error,
        }
        if self.imported is not None:
            data.update(self.imported.to_dict())
        return data


class ChunkImportPipeline:
    """Imports one chunk of claimed payloads."""

    def __init__(
        self,
        claims: ClaimService,
        importer: ProductImportService,
        dispatcher: CatalogDispatcher,
        queue: JobQueue,
        tracker: ImportTracker | None = None,
        max_attempts: int = 3,
        retry_delay_seconds: int = 30,
        enrichment: EnrichmentOptions | None = None,
    ):
        self.claims = claims
        self.importer = importer
        self.dispatcher = dispatcher
        self.queue = queue
        self.tracker = tracker
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.enrichment = enrichment or EnrichmentOptions()

    def run(
        self,
        payloads: list[dict[str, Any]],
        tracking_key: str | None = None,
        attempt: int = 1,
        fetch_details: bool = False,
    ) -> ChunkImportResult:
        """
        Import a chunk.

        Items whose claim is no longer held by the token they carry are
        dropped before any write. Every held claim is released whether the
        import succeeds or fails. A failed import is re-dispatched until
        ``max_attempts`` is reached, then the error propagates.
        """
        result = ChunkImportResult(status=STATUS_IMPORTED, attempt=attempt, tracking_key=tracking_key)

        held: list[tuple[str, str, dict[str, Any]]] = []
        for payload in payloads:
            pid = resolve_pid(payload)
            if not pid:
                result.invalid += 1
                continue
            token = payload.get(CLAIM_TOKEN_FIELD)
            if not self.claims.holds(pid, token):
                result.lost_claims.append(pid)
                continue
            held.append((pid, token, payload))

        for pid in result.lost_claims:
            logger.warning("Claim no longer held, skipping", pid=pid, tracking_key=tracking_key)
            self._track_failure(tracking_key, pid, "claim lost before import")

        if not held:
            result.status = STATUS_EMPTY
            return result

        failure: Exception | None = None
        try:
            result.imported = self.importer.import_bulk(
                [payload for _, _, payload in held], fetch_details=fetch_details
            )
        except Exception as e:
            failure = e
        finally:
            result.released = self._release(held)

        result.processed = len(held)
        if failure is not None:
            return self._handle_failure(result, held, failure, fetch_details)

        self._report(tracking_key, result.imported)
        self._enrich(result.imported)
        logger.info("Chunk imported", **result.to_dict())
        return result

    # -------------------------------------------------------------------------
    # Failure handling
    # -------------------------------------------------------------------------

    def _handle_failure(
        self,
        result: ChunkImportResult,
        held: list[tuple[str, str, dict[str, Any]]],
        failure: Exception,
        fetch_details: bool,
    ) -> ChunkImportResult:
        tracking_key = result.tracking_key
        pids = [pid for pid, _, _ in held]
        result.error = str(failure)

        if result.attempt < self.max_attempts:
            logger.warning(
                "Chunk import failed, re-dispatching",
                attempt=result.attempt,
                retry_in=self.retry_delay_seconds,
                size=len(held),
                error=str(failure),
            )
            requeue = self.dispatcher.dispatch(
                [payload for _, _, payload in held],
                tracking_key=tracking_key,
                attempt=result.attempt + 1,
                countdown=self.retry_delay_seconds,
                fetch_details=fetch_details,
                force=True,
            )
            # Someone else holds these now; this run will not see them again.
            for pid in requeue.contended:
                self._track_failure(tracking_key, pid, "claimed by another worker before retry")
            result.status = STATUS_REQUEUED
            return result

        logger.error(
            "Chunk import failed, attempts exhausted",
            attempt=result.attempt,
            size=len(held),
            error=str(failure),
        )
        for pid in pids:
            self._track_failure(tracking_key, pid, str(failure))
        raise failure

    def _release(self, held: list[tuple[str, str, dict[str, Any]]]) -> int:
        released = 0
        for pid, token, _ in held:
            if self.claims.release(pid, token):
                released += 1
        return released

    # -------------------------------------------------------------------------
    # Reporting and downstream jobs
    # -------------------------------------------------------------------------

    def _report(self, tracking_key: str | None, imported: BulkImportResult) -> None:
        if not tracking_key or self.tracker is None:
            return
        errors = {e["pid"]: e["error"] for e in imported.errors}
        for pid in imported.succeeded:
            self._track(tracking_key, pid, ok=True)
        for pid in imported.removed:
            self._track(tracking_key, pid, ok=False, error="removed upstream")
        for pid in imported.failed:
            if pid:
                self._track(tracking_key, pid, ok=False, error=errors.get(pid, "import failed"))

    def _track_failure(self, tracking_key: str | None, pid: str, error: str) -> None:
        if tracking_key and self.tracker is not None:
            self._track(tracking_key, pid, ok=False, error=error)

    def _track(self, tracking_key: str, pid: str, ok: bool, error: str | None = None) -> None:
        try:
            if ok:
                self.tracker.mark_success(tracking_key, pid)
            else:
                self.tracker.mark_failure(tracking_key, pid, error)
        except RedisError as e:
            logger.warning("Failed to update import run", tracking_key=tracking_key, pid=pid, error=str(e))

    def _enrich(self, imported: BulkImportResult) -> None:
        """Schedule enrichment jobs; failures here never undo the import."""
        options = self.enrichment
        pids = list(imported.created if options.only_created else imported.succeeded)
        if not pids:
            return

        try:
            for job in options.jobs:
                for start in range(0, len(pids), options.chunk_size):
                    self.queue.enqueue_enrichment(job, pids[start:start + options.chunk_size])
            if options.sync_variants:
                for pid in pids:
                    self.queue.enqueue_variant_sync(pid)
        except Exception as e:
            logger.warning("Failed to schedule enrichment", count=len(pids), error=str(e))

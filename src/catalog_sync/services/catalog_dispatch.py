"""Page scanning and claim-at-dispatch.

A PID is claimed the moment it is read from a page, before any job is
enqueued, so two overlapping scans can never both enqueue the same PID.
The claim token travels inside the payload to the chunk job.
"""

import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from catalog_sync.infrastructure.catalog.client import CatalogClient
from catalog_sync.services.catalog_repository import CatalogStore
from catalog_sync.services.claims import ClaimService
from catalog_sync.services.import_tracker import ImportTracker
from catalog_sync.services.jobs import JobQueue
from catalog_sync.services.product_import import resolve_pid
from shared.constants import CLAIM_TOKEN_FIELD, IMPORT_CHUNK_SIZE, MAX_ERROR_SAMPLES

logger = structlog.get_logger()


@dataclass
class DispatchResult:
    scanned: int = 0
    dispatched: list[str] = field(default_factory=list)
    skipped_existing: list[str] = field(default_factory=list)
    contended: list[str] = field(default_factory=list)
    invalid: int = 0
    chunks: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def merge(self, other: "DispatchResult") -> None:
        self.scanned += other.scanned
        self.dispatched.extend(other.dispatched)
        self.skipped_existing.extend(other.skipped_existing)
        self.contended.extend(other.contended)
        self.invalid += other.invalid
        self.chunks += other.chunks
        room = MAX_ERROR_SAMPLES - len(self.errors)
        if room > 0:
            self.errors.extend(other.errors[:room])

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "dispatched": len(self.dispatched),
            "skipped_existing": len(self.skipped_existing),
            "contended": len(self.contended),
            "invalid": self.invalid,
            "chunks": self.chunks,
            "errors": self.errors,
        }


class CatalogDispatcher:
    """Claims PIDs and enqueues them as chunk import jobs."""

    def __init__(
        self,
        claims: ClaimService,
        queue: JobQueue,
        store: CatalogStore,
        chunk_size: int = IMPORT_CHUNK_SIZE,
    ):
        self.claims = claims
        self.queue = queue
        self.store = store
        self.chunk_size = max(1, chunk_size)

    def dispatch(
        self,
        payloads: list[dict[str, Any]],
        tracking_key: str | None = None,
        attempt: int = 1,
        countdown: int = 0,
        fetch_details: bool = False,
        force: bool = False,
    ) -> DispatchResult:
        """
        Claim each payload's PID and enqueue chunk jobs for the claimed ones.

        Any token already present in a payload is discarded; only the token
        issued by this call's acquire is attached.

        Args:
            payloads: Raw upstream items (or ``{"pid": ...}`` stubs)
            tracking_key: Import run to report per-PID outcomes to
            attempt: Attempt number carried by the enqueued jobs
            countdown: Delay before the jobs become runnable
            fetch_details: Whether chunk jobs fetch full detail per PID
            force: Re-import PIDs already present locally

        Returns:
            DispatchResult with per-category PID lists
        """
        result = DispatchResult(scanned=len(payloads))

        keyed: list[tuple[str, dict[str, Any]]] = []
        for payload in payloads:
            pid = resolve_pid(payload)
            if not pid:
                result.invalid += 1
                if len(result.errors) < MAX_ERROR_SAMPLES:
                    result.errors.append({"pid": "", "error": "payload has no product id"})
                continue
            keyed.append((pid, payload))

        existing = set() if force else self.store.existing_pids([pid for pid, _ in keyed])

        buffer: list[dict[str, Any]] = []
        for pid, payload in keyed:
            if pid in existing:
                result.skipped_existing.append(pid)
                continue

            token = self.claims.acquire(pid)
            if token is None:
                result.contended.append(pid)
                continue

            item = {k: v for k, v in payload.items() if k != CLAIM_TOKEN_FIELD}
            item[CLAIM_TOKEN_FIELD] = token
            buffer.append(item)
            result.dispatched.append(pid)

            if len(buffer) >= self.chunk_size:
                self._flush(buffer, tracking_key, attempt, countdown, fetch_details)
                result.chunks += 1
                buffer = []

        if buffer:
            self._flush(buffer, tracking_key, attempt, countdown, fetch_details)
            result.chunks += 1

        logger.info(
            "Dispatched catalog chunk jobs",
            tracking_key=tracking_key,
            attempt=attempt,
            **{k: v for k, v in result.to_dict().items() if k != "errors"},
        )
        return result

    def _flush(
        self,
        items: list[dict[str, Any]],
        tracking_key: str | None,
        attempt: int,
        countdown: int,
        fetch_details: bool,
    ) -> None:
        try:
            self.queue.enqueue_chunk(
                items,
                tracking_key=tracking_key,
                attempt=attempt,
                countdown=countdown,
                fetch_details=fetch_details,
            )
        except Exception:
            # Nothing will process these PIDs; give the claims back.
            for item in items:
                self.claims.release(resolve_pid(item), item[CLAIM_TOKEN_FIELD])
            raise


@dataclass
class PageSyncResult:
    page: int
    total_pages: int
    items: int
    dispatch: DispatchResult


@dataclass
class CatalogSyncSummary:
    pages: int = 0
    total_pages: int = 0
    dispatch: DispatchResult = field(default_factory=DispatchResult)


class CatalogSyncService:
    """Walks the upstream catalog listing and feeds the dispatcher."""

    def __init__(
        self,
        catalog: CatalogClient,
        dispatcher: CatalogDispatcher,
        tracker: ImportTracker | None = None,
        page_size: int = 100,
        page_sleep_ms: int = 0,
    ):
        self.catalog = catalog
        self.dispatcher = dispatcher
        self.tracker = tracker
        self.page_size = page_size
        self.page_sleep_ms = page_sleep_ms

    def sync_page(
        self,
        page: int = 1,
        page_size: int | None = None,
        filters: dict[str, Any] | None = None,
        force: bool = False,
    ) -> PageSyncResult:
        """Fetch one listing page and dispatch its items."""
        listing = self.catalog.list_page(page, page_size or self.page_size, filters)
        dispatch = self.dispatcher.dispatch(listing.items, force=force)
        logger.info(
            "Catalog page synced",
            page=page,
            total_pages=listing.total_pages,
            items=len(listing.items),
        )
        return PageSyncResult(
            page=page,
            total_pages=listing.total_pages,
            items=len(listing.items),
            dispatch=dispatch,
        )

    def sync_all(
        self,
        start_page: int = 1,
        page_size: int | None = None,
        filters: dict[str, Any] | None = None,
        force: bool = False,
        max_pages: int | None = None,
        sleep_ms: int | None = None,
    ) -> CatalogSyncSummary:
        """Walk every page from ``start_page`` until the listing runs out."""
        summary = CatalogSyncSummary()
        sleep_ms = self.page_sleep_ms if sleep_ms is None else sleep_ms
        page = start_page

        while True:
            result = self.sync_page(page, page_size, filters, force)
            summary.pages += 1
            summary.total_pages = max(summary.total_pages, result.total_pages)
            summary.dispatch.merge(result.dispatch)

            if result.items == 0:
                break
            if result.total_pages and page >= result.total_pages:
                break
            # Without a page count, a short page is the last one.
            if not result.total_pages and result.items < (page_size or self.page_size):
                break
            if max_pages is not None and summary.pages >= max_pages:
                break
            page += 1
            if sleep_ms > 0:
                time.sleep(sleep_ms / 1000)

        return summary

    def start_import(
        self,
        pids: list[str],
        context: str = "catalog",
        user_id: str | None = None,
    ) -> tuple[str, DispatchResult]:
        """
        Start a tracked import of explicit PIDs.

        PIDs that cannot be claimed right now are recorded as failures on the
        run immediately so the run can still complete.
        """
        if self.tracker is None:
            raise RuntimeError("start_import requires an ImportTracker")

        unique = list(dict.fromkeys(p.strip() for p in pids if p and p.strip()))
        tracking_key = self.tracker.start(unique, context=context, user_id=user_id)
        result = self.dispatcher.dispatch(
            [{"pid": pid} for pid in unique],
            tracking_key=tracking_key,
            fetch_details=True,
            force=True,
        )
        for pid in result.contended:
            self.tracker.mark_failure(tracking_key, pid, "already being processed")
        return tracking_key, result

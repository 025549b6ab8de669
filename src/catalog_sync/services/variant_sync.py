"""Per-product variant and stock refresh."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from catalog_sync.infrastructure.catalog.client import (
    CatalogClient,
    CatalogError,
    CatalogErrorKind,
)
from catalog_sync.services.catalog_repository import CatalogStore, VariantRow
from catalog_sync.services.claims import ClaimService
from catalog_sync.services.jobs import JobQueue
from catalog_sync.services.product_import import parse_price

logger = structlog.get_logger()

VARIANT_LIST_KEYS = ("variants", "list", "data")


class VariantSyncStatus(str, Enum):
    SYNCED = "synced"
    REMOVED = "removed"
    RATE_LIMITED = "rate_limited"
    SKIPPED_CONTENTION = "skipped_contention"
    SKIPPED_MISSING = "skipped_missing"
    NO_DATA = "no_data"


@dataclass
class VariantSyncResult:
    pid: str
    status: VariantSyncStatus
    attempt: int = 1
    created: int = 0
    updated: int = 0
    skipped: int = 0
    retry_in: int | None = None
    next_attempt: int | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "status": self.status.value,
            "attempt": self.attempt,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "retry_in": self.retry_in,
            "next_attempt": self.next_attempt,
            "reason": self.reason,
        }


def compute_backoff_delay(attempt: int, base: int, cap: int) -> int:
    """Exponential backoff ``base * 2**(attempt-1)``, capped at ``cap``."""
    exponent = max(1, attempt) - 1
    if exponent >= 32:
        return cap
    return min(base * (2 ** exponent), cap)


def extract_variants(data: Any) -> list[dict[str, Any]] | None:
    """
    Pull the variant list out of a variants response.

    Accepts a bare list, or a dict wrapping it under ``variants``, ``list``
    or ``data``, either directly or one level deeper under ``variants`` or
    ``list``. Returns None for anything else.
    """
    if isinstance(data, list):
        return [v for v in data if isinstance(v, dict)]
    if not isinstance(data, dict):
        return None
    for key in VARIANT_LIST_KEYS:
        candidate = data.get(key)
        if isinstance(candidate, dict):
            candidate = next(
                (candidate[k] for k in ("variants", "list") if isinstance(candidate.get(k), list)),
                None,
            )
        if isinstance(candidate, list):
            return [v for v in candidate if isinstance(v, dict)]
    return None


def to_variant_row(data: dict[str, Any]) -> VariantRow | None:
    vid = str(data.get("vid") or "").strip()
    if not vid:
        return None

    try:
        stock = int(float(data.get("stock") or 0))
    except (TypeError, ValueError):
        stock = 0

    price = parse_price(data.get("variantPrice"))
    if price is None:
        price = parse_price(data.get("variantSellPrice"))

    return VariantRow(
        external_variant_id=vid,
        sku=str(data.get("variantSku") or f"CJ-{vid}"),
        title=data.get("variantNameEn") or data.get("variantName"),
        stock_on_hand=max(0, stock),
        price=price,
        raw_payload=data,
    )


class VariantSyncService:
    """Refreshes variants of one imported product under a PID claim."""

    def __init__(
        self,
        claims: ClaimService,
        catalog: CatalogClient,
        store: CatalogStore,
        queue: JobQueue,
        backoff_base_seconds: int = 60,
        backoff_cap_seconds: int = 1800,
        max_attempts: int = 8,
    ):
        self.claims = claims
        self.catalog = catalog
        self.store = store
        self.queue = queue
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_cap_seconds = backoff_cap_seconds
        self.max_attempts = max_attempts

    def sync(self, pid: str, attempt: int = 1) -> VariantSyncResult:
        """
        Refresh one product's variants.

        A fresh claim is taken for every attempt and released before
        returning, so a rate-limit backoff never sleeps on a held lease.

        Raises:
            CatalogError: for non-removal failures, and for rate limits once
                ``max_attempts`` is reached
        """
        log = logger.bind(pid=pid, attempt=attempt)

        if self.store.get_product(pid) is None:
            log.info("Product not imported locally, skipping variant sync")
            return VariantSyncResult(pid=pid, status=VariantSyncStatus.SKIPPED_MISSING, attempt=attempt)

        with self.claims.claimed(pid) as token:
            if token is None:
                log.info("PID claimed elsewhere, skipping variant sync")
                return VariantSyncResult(
                    pid=pid, status=VariantSyncStatus.SKIPPED_CONTENTION, attempt=attempt
                )

            try:
                data = self.catalog.get_variants(pid)
            except CatalogError as e:
                if e.kind is CatalogErrorKind.REMOVED:
                    self.store.mark_removed(pid, e.message)
                    log.info("Product removed upstream", reason=e.message)
                    return VariantSyncResult(
                        pid=pid, status=VariantSyncStatus.REMOVED, attempt=attempt, reason=e.message
                    )
                if e.kind is CatalogErrorKind.RATE_LIMITED:
                    return self._requeue_rate_limited(pid, attempt, e)
                log.warning("Variant sync failed", error=str(e), kind=e.kind.value)
                raise

            variants = extract_variants(data)
            if variants is None:
                log.warning("Unrecognized variants payload", payload_type=type(data).__name__)
                return VariantSyncResult(pid=pid, status=VariantSyncStatus.NO_DATA, attempt=attempt)

            rows = [row for row in (to_variant_row(v) for v in variants) if row is not None]
            counts = self.store.upsert_variants(pid, rows)
            self.store.mark_synced(pid)

        result = VariantSyncResult(
            pid=pid,
            status=VariantSyncStatus.SYNCED,
            attempt=attempt,
            created=counts.created,
            updated=counts.updated,
            skipped=len(variants) - len(rows),
        )
        log.info("Variants synced", created=result.created, updated=result.updated)
        return result

    def _requeue_rate_limited(self, pid: str, attempt: int, error: CatalogError) -> VariantSyncResult:
        if attempt >= self.max_attempts:
            logger.error("Rate limited, attempts exhausted", pid=pid, attempt=attempt)
            raise error

        delay = compute_backoff_delay(attempt, self.backoff_base_seconds, self.backoff_cap_seconds)
        self.queue.enqueue_variant_sync(pid, attempt=attempt + 1, countdown=delay)
        logger.info("Rate limited, variant sync re-queued", pid=pid, attempt=attempt, retry_in=delay)
        return VariantSyncResult(
            pid=pid,
            status=VariantSyncStatus.RATE_LIMITED,
            attempt=attempt,
            retry_in=delay,
            next_attempt=attempt + 1,
            reason=error.message,
        )

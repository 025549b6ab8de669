"""Bulk import of upstream product payloads into the local catalog."""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from catalog_sync.infrastructure.catalog.client import (
    CatalogClient,
    CatalogError,
    CatalogErrorKind,
)
from catalog_sync.services.catalog_repository import CatalogStore, ProductRow
from shared.constants import MAX_ERROR_SAMPLES, PID_PAYLOAD_KEYS

logger = structlog.get_logger()

NAME_KEYS = ("productNameEn", "productName", "name")
PRICE_KEYS = ("productSellPrice", "sellPrice", "price")
DEFAULT_PRODUCT_NAME = "CJ Product"


def resolve_pid(payload: Any) -> str:
    """Upstream product id of a payload, or an empty string."""
    if not isinstance(payload, dict):
        return ""
    for key in PID_PAYLOAD_KEYS:
        value = payload.get(key)
        if value not in (None, ""):
            return str(value).strip()
    return ""


def parse_price(value: Any) -> Decimal | None:
    """Parse a numeric upstream price; ranges like ``"1.20-3.40"`` take the low end."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.split("-", 1)[0].strip()
        if not value:
            return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return price if price.is_finite() and price >= 0 else None


def to_product_row(payload: dict[str, Any], pid: str) -> ProductRow:
    """Map an upstream payload to the fields the local store keeps."""
    if not isinstance(payload, dict):
        raise ValueError(f"payload for {pid} is not an object")

    name = next(
        (str(payload[k]).strip() for k in NAME_KEYS if payload.get(k)),
        DEFAULT_PRODUCT_NAME,
    )
    price = next(
        (p for p in (parse_price(payload.get(k)) for k in PRICE_KEYS) if p is not None),
        Decimal("0"),
    )
    # Internal keys (claim tokens, attempt counters) are never persisted.
    raw = {k: v for k, v in payload.items() if not str(k).startswith("_")}
    return ProductRow(external_id=pid, name=name, price=price, raw_payload=raw)


@dataclass
class BulkImportResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return self.created + self.updated

    def add_failure(self, pid: str, error: str) -> None:
        self.failed.append(pid)
        if len(self.errors) < MAX_ERROR_SAMPLES:
            self.errors.append({"pid": pid, "error": error})

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "removed": len(self.removed),
            "failed": len(self.failed),
            "errors": self.errors,
        }


class ProductImportService:
    """Normalizes payloads and writes them with a single bulk upsert."""

    def __init__(self, store: CatalogStore, catalog: CatalogClient):
        self.store = store
        self.catalog = catalog

    def import_bulk(
        self, payloads: list[dict[str, Any]], fetch_details: bool = False
    ) -> BulkImportResult:
        """
        Import a batch of upstream payloads.

        Per-item problems (missing PID, bad shape, non-retryable detail
        errors) are recorded on the result. Removal signals mark the local
        product removed. Rate limits, transient upstream errors and any
        persistence error propagate so the whole batch can be retried.
        """
        result = BulkImportResult()
        rows: list[ProductRow] = []

        for payload in payloads:
            pid = resolve_pid(payload)
            if not pid:
                result.add_failure("", "payload has no product id")
                continue

            if fetch_details:
                try:
                    detail = self.catalog.get_detail(pid)
                except CatalogError as e:
                    if e.kind is CatalogErrorKind.REMOVED:
                        self.store.mark_removed(pid, e.message)
                        result.removed.append(pid)
                        continue
                    if e.kind in (CatalogErrorKind.RATE_LIMITED, CatalogErrorKind.TRANSIENT):
                        raise
                    result.add_failure(pid, e.message)
                    continue
                payload = {**payload, **detail}

            try:
                rows.append(to_product_row(payload, pid))
            except (ValueError, TypeError) as e:
                result.add_failure(pid, str(e))

        if rows:
            upserted = self.store.bulk_upsert_products(rows)
            result.created.extend(upserted.created)
            result.updated.extend(upserted.updated)

        logger.info("Bulk import finished", **{k: v for k, v in result.to_dict().items() if k != "errors"})
        return result

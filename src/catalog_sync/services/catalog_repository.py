"""Persistence of catalog products and variants.

The repository takes and returns plain dataclasses; ORM instances never
leave a session. Every public method runs in its own transaction.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from catalog_sync.infrastructure.database.models import CatalogProduct, CatalogVariant
from shared.constants import REMOVED_REASON_MAX_LENGTH

logger = structlog.get_logger()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ProductNotFoundError(LookupError):
    """No local product exists for the given upstream id."""


@dataclass(frozen=True)
class ProductRow:
    """Normalized product fields written by an upsert."""

    external_id: str
    name: str
    price: Decimal
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProductSnapshot:
    external_id: str
    name: str
    price: Decimal
    active: bool
    sync_enabled: bool
    last_synced_at: datetime | None
    removed_at: datetime | None
    removed_reason: str | None
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VariantRow:
    """One upstream variant; ``price`` is None when the payload carries no price."""

    external_variant_id: str
    sku: str
    title: str | None
    stock_on_hand: int
    price: Decimal | None
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VariantSnapshot:
    external_variant_id: str
    sku: str
    stock_on_hand: int
    price: Decimal
    stock_synced_at: datetime | None


@dataclass
class UpsertResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)


@dataclass
class VariantUpsertResult:
    created: int = 0
    updated: int = 0


class CatalogStore(Protocol):
    """Upsert-by-external-id store consumed by the sync services."""

    def bulk_upsert_products(self, rows: list[ProductRow]) -> UpsertResult: ...

    def get_product(self, external_id: str) -> ProductSnapshot | None: ...

    def existing_pids(self, external_ids: list[str]) -> set[str]: ...

    def mark_removed(self, external_id: str, reason: str, at: datetime | None = None) -> bool: ...

    def mark_synced(self, external_id: str, at: datetime | None = None) -> bool: ...

    def upsert_variants(
        self, external_id: str, variants: list[VariantRow], synced_at: datetime | None = None
    ) -> VariantUpsertResult: ...

    def list_sync_candidates(self, limit: int) -> list[str]: ...


def _snapshot(product: CatalogProduct) -> ProductSnapshot:
    return ProductSnapshot(
        external_id=product.external_id,
        name=product.name,
        price=Decimal(product.price or 0),
        active=product.active,
        sync_enabled=product.sync_enabled,
        last_synced_at=product.last_synced_at,
        removed_at=product.removed_at,
        removed_reason=product.removed_reason,
        raw_payload=dict(product.raw_payload or {}),
    )


class CatalogRepository:
    """SQLAlchemy implementation of CatalogStore."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    def bulk_upsert_products(self, rows: list[ProductRow]) -> UpsertResult:
        """
        Insert or update products keyed by external id, in one transaction.

        Rows repeating an external id within the same call collapse to the
        last one. Returns the external ids that were created and updated.
        """
        result = UpsertResult()
        by_pid = {row.external_id: row for row in rows}
        if not by_pid:
            return result

        with self.session_factory.begin() as session:
            existing = {
                p.external_id: p
                for p in session.scalars(
                    select(CatalogProduct).where(CatalogProduct.external_id.in_(by_pid))
                )
            }
            now = utcnow()
            for pid, row in by_pid.items():
                product = existing.get(pid)
                if product is None:
                    session.add(
                        CatalogProduct(
                            external_id=pid,
                            name=row.name,
                            price=row.price,
                            raw_payload=row.raw_payload,
                            active=True,
                            sync_enabled=True,
                        )
                    )
                    result.created.append(pid)
                else:
                    product.name = row.name
                    product.price = row.price
                    product.raw_payload = row.raw_payload
                    product.updated_at = now
                    result.updated.append(pid)

        logger.debug(
            "Bulk upserted products",
            created=len(result.created),
            updated=len(result.updated),
        )
        return result

    def get_product(self, external_id: str) -> ProductSnapshot | None:
        with self.session_factory() as session:
            product = session.scalar(
                select(CatalogProduct).where(CatalogProduct.external_id == external_id)
            )
            return _snapshot(product) if product else None

    def existing_pids(self, external_ids: list[str]) -> set[str]:
        if not external_ids:
            return set()
        with self.session_factory() as session:
            return set(
                session.scalars(
                    select(CatalogProduct.external_id).where(
                        CatalogProduct.external_id.in_(external_ids)
                    )
                )
            )

    def count_products(self) -> int:
        with self.session_factory() as session:
            return session.scalar(select(func.count()).select_from(CatalogProduct)) or 0

    def mark_removed(self, external_id: str, reason: str, at: datetime | None = None) -> bool:
        """Flag a product as delisted upstream. Returns False if it is not stored locally."""
        with self.session_factory.begin() as session:
            product = session.scalar(
                select(CatalogProduct).where(CatalogProduct.external_id == external_id)
            )
            if product is None:
                return False
            product.active = False
            product.sync_enabled = False
            product.removed_at = at or utcnow()
            product.removed_reason = (reason or "")[:REMOVED_REASON_MAX_LENGTH]
        logger.info("Product marked removed", pid=external_id)
        return True

    def mark_synced(self, external_id: str, at: datetime | None = None) -> bool:
        """Clear removal flags and stamp last_synced_at."""
        with self.session_factory.begin() as session:
            product = session.scalar(
                select(CatalogProduct).where(CatalogProduct.external_id == external_id)
            )
            if product is None:
                return False
            product.removed_at = None
            product.removed_reason = None
            product.last_synced_at = at or utcnow()
        return True

    def list_sync_candidates(self, limit: int) -> list[str]:
        """Active, sync-enabled products, least recently synced first."""
        with self.session_factory() as session:
            query = (
                select(CatalogProduct.external_id)
                .where(CatalogProduct.sync_enabled.is_(True), CatalogProduct.active.is_(True))
                .order_by(
                    CatalogProduct.last_synced_at.is_(None).desc(),
                    CatalogProduct.last_synced_at.asc(),
                    CatalogProduct.id.asc(),
                )
                .limit(limit)
            )
            return list(session.scalars(query))

    # -------------------------------------------------------------------------
    # Variants
    # -------------------------------------------------------------------------

    def upsert_variants(
        self, external_id: str, variants: list[VariantRow], synced_at: datetime | None = None
    ) -> VariantUpsertResult:
        """
        Create or refresh the variants of one product.

        Price falls back from the payload price to the stored variant price,
        then the parent product price, then zero.
        """
        result = VariantUpsertResult()
        synced_at = synced_at or utcnow()

        with self.session_factory.begin() as session:
            product = session.scalar(
                select(CatalogProduct).where(CatalogProduct.external_id == external_id)
            )
            if product is None:
                raise ProductNotFoundError(external_id)

            existing = {
                v.external_variant_id: v
                for v in session.scalars(
                    select(CatalogVariant).where(CatalogVariant.product_id == product.id)
                )
            }
            for row in variants:
                variant = existing.get(row.external_variant_id)
                if variant is None:
                    variant = CatalogVariant(
                        product_id=product.id,
                        external_variant_id=row.external_variant_id,
                        sku=row.sku,
                        title=row.title,
                        stock_on_hand=row.stock_on_hand,
                        price=self._resolve_price(row.price, None, product.price),
                        stock_synced_at=synced_at,
                        raw_payload=row.raw_payload,
                    )
                    session.add(variant)
                    existing[row.external_variant_id] = variant
                    result.created += 1
                else:
                    variant.sku = row.sku or variant.sku
                    variant.title = row.title or variant.title
                    variant.stock_on_hand = row.stock_on_hand
                    variant.price = self._resolve_price(row.price, variant.price, product.price)
                    variant.stock_synced_at = synced_at
                    variant.raw_payload = row.raw_payload
                    result.updated += 1

        return result

    def get_variants(self, external_id: str) -> list[VariantSnapshot]:
        with self.session_factory() as session:
            query = (
                select(CatalogVariant)
                .join(CatalogProduct)
                .where(CatalogProduct.external_id == external_id)
                .order_by(CatalogVariant.id)
            )
            return [
                VariantSnapshot(
                    external_variant_id=v.external_variant_id,
                    sku=v.sku,
                    stock_on_hand=v.stock_on_hand,
                    price=Decimal(v.price),
                    stock_synced_at=v.stock_synced_at,
                )
                for v in session.scalars(query)
            ]

    @staticmethod
    def _resolve_price(
        payload_price: Decimal | None,
        local_price: Decimal | None,
        parent_price: Decimal | None,
    ) -> Decimal:
        for candidate in (payload_price, local_price, parent_price):
            if candidate is not None:
                return Decimal(candidate)
        return Decimal("0")

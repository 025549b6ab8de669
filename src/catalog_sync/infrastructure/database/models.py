"""SQLAlchemy models for the supplier catalog tables.

Rows are keyed by the upstream product id (``external_id``) so repeated
imports of the same payload converge on a single row.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""


# =============================================================================
# Catalog Products
# =============================================================================


class CatalogProduct(Base):
    """Local snapshot of one upstream catalog product."""

    __tablename__ = "catalog_products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Sync / removal state
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    removed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    removed_reason: Mapped[Optional[str]] = mapped_column(Text)

    raw_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    variants: Mapped[list["CatalogVariant"]] = relationship(
        back_populates="product", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_catalog_products_sync", "sync_enabled", "active", "last_synced_at"),
    )


# =============================================================================
# Catalog Variants
# =============================================================================


class CatalogVariant(Base):
    """One SKU of a catalog product with its mirrored upstream stock."""

    __tablename__ = "catalog_variants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("catalog_products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_variant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sku: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(500))
    stock_on_hand: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    stock_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    raw_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    product: Mapped[CatalogProduct] = relationship(back_populates="variants")

    __table_args__ = (
        UniqueConstraint("product_id", "external_variant_id", name="uq_catalog_variants_product_vid"),
    )

"""Catalog sync services."""

from catalog_sync.services.catalog_dispatch import CatalogDispatcher, CatalogSyncService
from catalog_sync.services.catalog_repository import CatalogRepository
from catalog_sync.services.chunk_import import ChunkImportPipeline, EnrichmentOptions
from catalog_sync.services.claim_ops import ClaimOperations
from catalog_sync.services.claims import ClaimService
from catalog_sync.services.import_tracker import ImportTracker
from catalog_sync.services.product_import import ProductImportService
from catalog_sync.services.variant_sync import VariantSyncService

__all__ = [
    "CatalogDispatcher",
    "CatalogRepository",
    "CatalogSyncService",
    "ChunkImportPipeline",
    "ClaimOperations",
    "ClaimService",
    "EnrichmentOptions",
    "ImportTracker",
    "ProductImportService",
    "VariantSyncService",
]

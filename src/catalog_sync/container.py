"""Wiring of the sync services from settings.

Every collaborator can be passed in; anything omitted is built from
settings. Tests pass in-memory fakes, the worker and API pass nothing but
their job queue.
"""

from dataclasses import dataclass

import redis
from sqlalchemy.orm import Session, sessionmaker

from catalog_sync.config import Settings
from catalog_sync.infrastructure.catalog.client import CatalogClient, CJCatalogClient
from catalog_sync.infrastructure.database.connection import create_session_factory, get_engine
from catalog_sync.infrastructure.redis import ClaimStore, RedisClaimStore, create_redis_client
from catalog_sync.services.catalog_dispatch import CatalogDispatcher, CatalogSyncService
from catalog_sync.services.catalog_repository import CatalogRepository, CatalogStore
from catalog_sync.services.chunk_import import ChunkImportPipeline, EnrichmentOptions
from catalog_sync.services.claim_ops import ClaimOperations
from catalog_sync.services.claims import ClaimService
from catalog_sync.services.import_tracker import ImportTracker
from catalog_sync.services.jobs import JobQueue
from catalog_sync.services.product_import import ProductImportService
from catalog_sync.services.variant_sync import VariantSyncService


@dataclass
class CatalogServices:
    settings: Settings
    queue: JobQueue
    redis: redis.Redis
    claims: ClaimService
    claim_ops: ClaimOperations
    tracker: ImportTracker
    store: CatalogStore
    catalog: CatalogClient
    importer: ProductImportService
    dispatcher: CatalogDispatcher
    catalog_sync: CatalogSyncService
    pipeline: ChunkImportPipeline
    variant_sync: VariantSyncService


def enrichment_options(settings: Settings) -> EnrichmentOptions:
    return EnrichmentOptions(
        translate=settings.enrich_translate,
        seo=settings.enrich_seo,
        media=settings.enrich_media,
        sync_variants=settings.enrich_sync_variants,
        only_created=settings.enrich_only_created,
        chunk_size=settings.enrichment_dispatch_chunk_size,
    )


def build_services(
    settings: Settings,
    queue: JobQueue,
    *,
    redis_client: redis.Redis | None = None,
    claim_store: ClaimStore | None = None,
    session_factory: sessionmaker[Session] | None = None,
    store: CatalogStore | None = None,
    catalog: CatalogClient | None = None,
) -> CatalogServices:
    """Build the full service graph around ``queue``."""
    redis_client = redis_client or create_redis_client(settings.redis_url)
    claims = ClaimService(
        claim_store or RedisClaimStore(redis_client),
        owner=settings.claim_owner_id,
        ttl_seconds=settings.claim_ttl_seconds,
        prefix=settings.claim_key_prefix,
    )
    tracker = ImportTracker(redis_client, ttl_seconds=settings.import_tracker_ttl_seconds)

    if store is None:
        session_factory = session_factory or create_session_factory(get_engine(settings))
        store = CatalogRepository(session_factory)
    catalog = catalog or CJCatalogClient(settings)

    importer = ProductImportService(store, catalog)
    dispatcher = CatalogDispatcher(claims, queue, store, chunk_size=settings.import_chunk_size)
    catalog_sync = CatalogSyncService(
        catalog,
        dispatcher,
        tracker,
        page_size=settings.catalog_page_size,
        page_sleep_ms=settings.catalog_page_sleep_ms,
    )
    pipeline = ChunkImportPipeline(
        claims,
        importer,
        dispatcher,
        queue,
        tracker,
        max_attempts=settings.import_max_attempts,
        retry_delay_seconds=settings.import_retry_delay_seconds,
        enrichment=enrichment_options(settings),
    )
    variant_sync = VariantSyncService(
        claims,
        catalog,
        store,
        queue,
        backoff_base_seconds=settings.rate_limit_backoff_base_seconds,
        backoff_cap_seconds=settings.rate_limit_backoff_cap_seconds,
        max_attempts=settings.rate_limit_max_attempts,
    )

    return CatalogServices(
        settings=settings,
        queue=queue,
        redis=redis_client,
        claims=claims,
        claim_ops=ClaimOperations(claims),
        tracker=tracker,
        store=store,
        catalog=catalog,
        importer=importer,
        dispatcher=dispatcher,
        catalog_sync=catalog_sync,
        pipeline=pipeline,
        variant_sync=variant_sync,
    )

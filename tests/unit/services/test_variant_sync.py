"""Unit tests for per-product variant sync."""

from decimal import Decimal

import pytest

from catalog_sync.infrastructure.catalog.client import CatalogError, CatalogErrorKind
from catalog_sync.services.catalog_repository import CatalogRepository, ProductRow
from catalog_sync.services.claims import ClaimService
from catalog_sync.services.variant_sync import (
    VariantSyncService,
    VariantSyncStatus,
    compute_backoff_delay,
    extract_variants,
    to_variant_row,
)
from fakes import FakeCatalogClient, InMemoryClaimStore, RecordingJobQueue


def _make_service(
    claims: ClaimService,
    catalog: FakeCatalogClient,
    repository: CatalogRepository,
    queue: RecordingJobQueue,
    max_attempts: int = 5,
) -> VariantSyncService:
    return VariantSyncService(
        claims,
        catalog,
        repository,
        queue,
        backoff_base_seconds=60,
        backoff_cap_seconds=1800,
        max_attempts=max_attempts,
    )


def _rate_limited() -> CatalogError:
    return CatalogError("Too many requests", kind=CatalogErrorKind.RATE_LIMITED, status=429)


def _removed() -> CatalogError:
    return CatalogError("Product removed from shelves", kind=CatalogErrorKind.REMOVED)


@pytest.fixture
def imported(repository: CatalogRepository, sample_pid: str) -> str:
    repository.bulk_upsert_products([ProductRow(external_id=sample_pid, name="Lamp", price=Decimal("10.00"))])
    return sample_pid


class TestBackoff:
    def test_doubles_then_caps(self) -> None:
        delays = [compute_backoff_delay(n, 60, 1800) for n in range(1, 8)]

        assert delays == [60, 120, 240, 480, 960, 1800, 1800]

    def test_monotonic_and_bounded(self) -> None:
        delays = [compute_backoff_delay(n, 60, 1800) for n in range(1, 100)]

        assert all(a <= b for a, b in zip(delays, delays[1:]))
        assert max(delays) == 1800

    def test_attempt_below_one(self) -> None:
        assert compute_backoff_delay(0, 60, 1800) == 60


class TestPayloadShapes:
    @pytest.mark.parametrize(
        "data",
        [
            [{"vid": "V1"}],
            {"variants": [{"vid": "V1"}]},
            {"list": [{"vid": "V1"}]},
            {"data": [{"vid": "V1"}]},
            {"data": {"variants": [{"vid": "V1"}]}},
            {"variants": {"list": [{"vid": "V1"}]}},
        ],
    )
    def test_accepted_shapes(self, data) -> None:
        assert extract_variants(data) == [{"vid": "V1"}]

    @pytest.mark.parametrize("data", [None, "oops", {"foo": []}, {"data": {"foo": []}}, 42])
    def test_unrecognized_shapes(self, data) -> None:
        assert extract_variants(data) is None

    def test_variant_row_defaults(self) -> None:
        row = to_variant_row({"vid": "V1", "stock": "-3"})

        assert row.sku == "CJ-V1"
        assert row.stock_on_hand == 0
        assert row.price is None

    def test_variant_row_price_fallback(self) -> None:
        assert to_variant_row({"vid": "V1", "variantSellPrice": "2.5"}).price == Decimal("2.5")
        assert to_variant_row({"vid": "V1", "variantPrice": 0, "variantSellPrice": "2.5"}).price == Decimal("0")

    def test_variant_without_vid(self) -> None:
        assert to_variant_row({"variantSku": "x"}) is None


class TestVariantSync:
    def test_sync_upserts_and_stamps(
        self,
        claims: ClaimService,
        repository: CatalogRepository,
        queue: RecordingJobQueue,
        imported: str,
        claim_store: InMemoryClaimStore,
    ) -> None:
        catalog = FakeCatalogClient(
            variants={imported: [[{"vid": "V1", "stock": 4, "variantSellPrice": "9.00"}, {"stock": 1}]]}
        )

        result = _make_service(claims, catalog, repository, queue).sync(imported)

        assert result.status is VariantSyncStatus.SYNCED
        assert (result.created, result.skipped) == (1, 1)
        assert repository.get_variants(imported)[0].stock_on_hand == 4
        assert repository.get_product(imported).last_synced_at is not None
        assert claim_store.get(f"cj:processing:{imported}") is None

    def test_unknown_product_is_skipped(
        self, claims: ClaimService, catalog: FakeCatalogClient, repository: CatalogRepository, queue: RecordingJobQueue
    ) -> None:
        result = _make_service(claims, catalog, repository, queue).sync("CJ404")

        assert result.status is VariantSyncStatus.SKIPPED_MISSING
        assert catalog.calls == []

    def test_contention_skips_without_fetch(
        self,
        claim_store: InMemoryClaimStore,
        catalog: FakeCatalogClient,
        repository: CatalogRepository,
        queue: RecordingJobQueue,
        imported: str,
    ) -> None:
        ClaimService(claim_store, owner="worker-b", ttl_seconds=1800).acquire(imported)
        mine = ClaimService(claim_store, owner="worker-a", ttl_seconds=1800)

        result = _make_service(mine, catalog, repository, queue).sync(imported)

        assert result.status is VariantSyncStatus.SKIPPED_CONTENTION
        assert catalog.calls == []

    def test_unrecognized_payload_is_no_data(
        self, claims: ClaimService, repository: CatalogRepository, queue: RecordingJobQueue, imported: str
    ) -> None:
        catalog = FakeCatalogClient(variants={imported: [{"unexpected": True}]})

        result = _make_service(claims, catalog, repository, queue).sync(imported)

        assert result.status is VariantSyncStatus.NO_DATA
        assert repository.get_product(imported).last_synced_at is None

    def test_other_errors_propagate_and_release(
        self,
        claims: ClaimService,
        repository: CatalogRepository,
        queue: RecordingJobQueue,
        imported: str,
        claim_store: InMemoryClaimStore,
    ) -> None:
        catalog = FakeCatalogClient(variants={imported: [CatalogError("bad", kind=CatalogErrorKind.TRANSIENT)]})

        with pytest.raises(CatalogError):
            _make_service(claims, catalog, repository, queue).sync(imported)

        assert claim_store.get(f"cj:processing:{imported}") is None


class TestRemoval:
    def test_removed_marks_product_and_is_terminal(
        self, claims: ClaimService, repository: CatalogRepository, queue: RecordingJobQueue, imported: str
    ) -> None:
        catalog = FakeCatalogClient(variants={imported: [_removed()]})

        result = _make_service(claims, catalog, repository, queue).sync(imported)

        assert result.status is VariantSyncStatus.REMOVED
        product = repository.get_product(imported)
        assert product.active is False
        assert product.sync_enabled is False
        assert product.removed_reason == "Product removed from shelves"
        assert queue.variant_syncs == []

    def test_later_success_clears_removal(
        self, claims: ClaimService, repository: CatalogRepository, queue: RecordingJobQueue, imported: str
    ) -> None:
        catalog = FakeCatalogClient(variants={imported: [_removed(), [{"vid": "V1", "stock": 2}]]})
        service = _make_service(claims, catalog, repository, queue)

        service.sync(imported)
        result = service.sync(imported)

        assert result.status is VariantSyncStatus.SYNCED
        product = repository.get_product(imported)
        assert product.removed_at is None
        assert product.removed_reason is None
        assert product.active is False


class TestRateLimit:
    def test_requeues_with_backoff_and_releases_claim(
        self,
        claims: ClaimService,
        repository: CatalogRepository,
        queue: RecordingJobQueue,
        imported: str,
        claim_store: InMemoryClaimStore,
    ) -> None:
        catalog = FakeCatalogClient(variants={imported: [_rate_limited()]})
        service = _make_service(claims, catalog, repository, queue)

        first = service.sync(imported, attempt=1)
        third = service.sync(imported, attempt=3)

        assert first.status is VariantSyncStatus.RATE_LIMITED
        assert (first.retry_in, first.next_attempt) == (60, 2)
        assert third.retry_in == 240
        assert queue.variant_syncs == [
            {"pid": imported, "attempt": 2, "countdown": 60},
            {"pid": imported, "attempt": 4, "countdown": 240},
        ]
        assert claim_store.get(f"cj:processing:{imported}") is None

    def test_max_attempts_raises(
        self, claims: ClaimService, repository: CatalogRepository, queue: RecordingJobQueue, imported: str
    ) -> None:
        catalog = FakeCatalogClient(variants={imported: [_rate_limited()]})

        with pytest.raises(CatalogError) as exc_info:
            _make_service(claims, catalog, repository, queue, max_attempts=3).sync(imported, attempt=3)

        assert exc_info.value.kind is CatalogErrorKind.RATE_LIMITED
        assert queue.variant_syncs == []

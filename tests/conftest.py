"""Pytest configuration and fixtures."""

from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from catalog_sync.api.deps import get_services
from catalog_sync.config import Settings, get_settings
from catalog_sync.container import CatalogServices, build_services
from catalog_sync.infrastructure.database.connection import create_session_factory
from catalog_sync.infrastructure.database.models import Base
from catalog_sync.main import create_app
from catalog_sync.services.catalog_repository import CatalogRepository
from catalog_sync.services.claims import ClaimService
from catalog_sync.services.import_tracker import ImportTracker
from fakes import FakeCatalogClient, FakeClock, FakeRedis, InMemoryClaimStore, RecordingJobQueue


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=True,
        database_url_override="sqlite://",
        redis_host="localhost",
        redis_port=6379,
        claim_owner="worker-a",
        claim_ttl_seconds=1800,
        import_chunk_size=2,
        import_retry_delay_seconds=30,
        import_max_attempts=3,
        rate_limit_backoff_base_seconds=60,
        rate_limit_backoff_cap_seconds=1800,
        rate_limit_max_attempts=5,
        catalog_page_size=10,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def claim_store(clock: FakeClock) -> InMemoryClaimStore:
    return InMemoryClaimStore(clock)


@pytest.fixture
def claims(claim_store: InMemoryClaimStore) -> ClaimService:
    return ClaimService(claim_store, owner="worker-a", ttl_seconds=1800)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def tracker(fake_redis: FakeRedis) -> ImportTracker:
    return ImportTracker(fake_redis, ttl_seconds=3600)


@pytest.fixture
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    """In-memory SQLite database shared across sessions of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory: sessionmaker[Session]) -> CatalogRepository:
    return CatalogRepository(session_factory)


@pytest.fixture
def catalog() -> FakeCatalogClient:
    return FakeCatalogClient()


@pytest.fixture
def queue() -> RecordingJobQueue:
    return RecordingJobQueue()


@pytest.fixture
def services(
    test_settings: Settings,
    queue: RecordingJobQueue,
    fake_redis: FakeRedis,
    claim_store: InMemoryClaimStore,
    repository: CatalogRepository,
    catalog: FakeCatalogClient,
) -> CatalogServices:
    """Full service graph over in-memory collaborators."""
    return build_services(
        test_settings,
        queue,
        redis_client=fake_redis,
        claim_store=claim_store,
        store=repository,
        catalog=catalog,
    )


@pytest.fixture
def app(test_settings: Settings, services: CatalogServices) -> Any:
    """Create test application."""
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_services] = lambda: services
    return app


@pytest.fixture
def client(app: Any) -> TestClient:
    """Create synchronous test client."""
    return TestClient(app)


@pytest.fixture
def sample_pid() -> str:
    return "CJ123"

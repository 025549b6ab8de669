"""Database connection management."""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from catalog_sync.config import Settings, get_settings


def get_engine(settings: Settings | None = None) -> Engine:
    """Create database engine with connection pooling."""
    settings = settings or get_settings()
    if settings.database_url.startswith("sqlite"):
        return create_engine(settings.database_url, echo=settings.debug)
    return create_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=settings.db_pool_recycle,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


# Global session factory
_session_factory: sessionmaker[Session] | None = None


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the global session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Get database session as context manager."""
    factory = get_session_factory()
    with factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise

"""FastAPI dependencies."""

from catalog_sync.config import get_settings
from catalog_sync.container import CatalogServices, build_services

_services: CatalogServices | None = None


def get_services() -> CatalogServices:
    """Service graph for request handlers; jobs go to the Celery broker."""
    global _services
    if _services is None:
        from sync_worker.main import app as celery_app
        from sync_worker.queue import CeleryJobQueue

        _services = build_services(get_settings(), CeleryJobQueue(celery_app))
    return _services


def close_services() -> None:
    global _services
    if _services is not None:
        _services.redis.close()
        _services = None

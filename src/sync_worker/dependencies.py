"""Process-wide service graph for the Celery worker."""

from catalog_sync.config import get_settings
from catalog_sync.container import CatalogServices, build_services

_services: CatalogServices | None = None


def get_services() -> CatalogServices:
    """Get or build the worker's services."""
    global _services
    if _services is None:
        from sync_worker.main import app
        from sync_worker.queue import CeleryJobQueue

        _services = build_services(get_settings(), CeleryJobQueue(app))
    return _services


def set_services(services: CatalogServices | None) -> None:
    """Replace the service graph (tests, or None to rebuild lazily)."""
    global _services
    _services = services


def current_services() -> CatalogServices | None:
    """The service graph if this process has built one."""
    return _services

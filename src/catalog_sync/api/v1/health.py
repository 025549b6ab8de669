"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from catalog_sync import __version__
from catalog_sync.api.deps import get_services
from catalog_sync.config import Settings, get_settings
from catalog_sync.container import CatalogServices
from catalog_sync.infrastructure.redis import ping_redis

logger = structlog.get_logger()

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str
    timestamp: str
    dependencies: dict[str, Any]


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """
    Basic health check endpoint.

    Returns the service status and version information.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc).isoformat(),
        dependencies={
            "postgres": "configured",
            "redis": "configured",
            "catalog_api": settings.catalog_api_base_url,
        },
    )


@router.get("/health/ready", response_model=ReadinessResponse)
def readiness_check(services: CatalogServices = Depends(get_services)) -> ReadinessResponse:
    """
    Readiness check endpoint.

    Pings the claim store and the database.
    """
    checks: dict[str, bool] = {"redis": ping_redis(services.redis)}

    try:
        services.store.existing_pids(["__readiness__"])
        checks["postgres"] = True
    except SQLAlchemyError as e:
        logger.warning("Database readiness check failed", error=str(e))
        checks["postgres"] = False

    return ReadinessResponse(ready=all(checks.values()), checks=checks)


@router.get("/health/live")
def liveness_check() -> dict[str, str]:
    """
    Liveness check endpoint.

    Returns 200 while the process is running.
    """
    return {"status": "alive"}

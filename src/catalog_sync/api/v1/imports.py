"""Tracked import runs."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from catalog_sync.api.deps import get_services
from catalog_sync.container import CatalogServices

logger = structlog.get_logger()

router = APIRouter()

MAX_PIDS_PER_IMPORT = 500


class ImportRequest(BaseModel):
    """Request to import explicit upstream PIDs."""

    pids: list[str] = Field(..., min_length=1, max_length=MAX_PIDS_PER_IMPORT)
    context: str = Field("catalog", description="Where the import was started from")
    user_id: str | None = Field(None, description="Operator starting the run")


class ImportResponse(BaseModel):
    tracking_key: str
    dispatched: int
    contended: int
    invalid: int
    chunks: int


class ImportRunResponse(BaseModel):
    tracking_key: str
    status: str
    context: str | None = None
    user_id: str | None = None
    total: int
    processed: int
    success: int
    failed: int
    failed_pids: list[str]
    errors: list[dict[str, Any]]
    started_at: str | None = None
    finished_at: str | None = None


@router.post("", response_model=ImportResponse, status_code=202)
def start_import(
    request: ImportRequest,
    services: CatalogServices = Depends(get_services),
) -> ImportResponse:
    pids = [p.strip() for p in request.pids if p and p.strip()]
    if not pids:
        raise HTTPException(status_code=400, detail="No valid PIDs provided")

    try:
        tracking_key, result = services.catalog_sync.start_import(
            pids, context=request.context, user_id=request.user_id
        )
    except RedisError as e:
        logger.error("Failed to start import run", error=str(e))
        raise HTTPException(status_code=503, detail="Claim store unavailable") from e

    return ImportResponse(
        tracking_key=tracking_key,
        dispatched=len(result.dispatched),
        contended=len(result.contended),
        invalid=result.invalid,
        chunks=result.chunks,
    )


@router.get("/active/{user_id}")
def get_active_import(
    user_id: str,
    services: CatalogServices = Depends(get_services),
) -> dict[str, str | None]:
    return {"tracking_key": services.tracker.get_active_key(user_id)}


@router.get("/{tracking_key}", response_model=ImportRunResponse)
def get_import(
    tracking_key: str,
    services: CatalogServices = Depends(get_services),
) -> ImportRunResponse:
    record = services.tracker.get(tracking_key)
    if record is None:
        raise HTTPException(status_code=404, detail="Unknown tracking key")
    return ImportRunResponse(**record)

"""Read-only view of live PID claims. Tokens are never returned."""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from catalog_sync.api.deps import get_services
from catalog_sync.container import CatalogServices
from catalog_sync.infrastructure.redis import ClaimStoreError

router = APIRouter()


class ClaimResponse(BaseModel):
    pid: str
    ttl: int
    owner: str | None


class ClaimCountResponse(BaseModel):
    pattern: str
    count: int


def _pattern(services: CatalogServices, pattern: str | None) -> str:
    if pattern is None:
        return services.claims.default_pattern
    if not pattern.startswith(services.claims.claim_prefix):
        raise HTTPException(
            status_code=400,
            detail=f"Pattern must start with {services.claims.claim_prefix}",
        )
    return pattern


@router.get("", response_model=list[ClaimResponse])
def list_claims(
    pattern: str | None = Query(None),
    services: CatalogServices = Depends(get_services),
) -> list[ClaimResponse]:
    try:
        claims = services.claims.inspect(_pattern(services, pattern))
    except ClaimStoreError as e:
        raise HTTPException(status_code=503, detail="Claim store unavailable") from e
    return [ClaimResponse(pid=c.pid, ttl=c.ttl_remaining, owner=c.owner) for c in claims]


@router.get("/count", response_model=ClaimCountResponse)
def count_claims(
    pattern: str | None = Query(None),
    services: CatalogServices = Depends(get_services),
) -> ClaimCountResponse:
    resolved = _pattern(services, pattern)
    try:
        count = services.claim_ops.count_claims(resolved)
    except ClaimStoreError as e:
        raise HTTPException(status_code=503, detail="Claim store unavailable") from e
    return ClaimCountResponse(pattern=resolved, count=count)

"""API v1 router that aggregates all endpoint routers."""

from fastapi import APIRouter

from catalog_sync.api.v1 import claims, health, imports

api_router = APIRouter()

# Include all routers
api_router.include_router(
    health.router,
    tags=["Health"],
)

api_router.include_router(
    imports.router,
    prefix="/imports",
    tags=["Imports"],
)

api_router.include_router(
    claims.router,
    prefix="/claims",
    tags=["Claims"],
)

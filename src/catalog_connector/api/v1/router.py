"""API v1 router that aggregates all endpoint routers."""

from fastapi import APIRouter

from catalog_connector.api.v1 import auth, health, search

api_router = APIRouter()

# Include all routers
api_router.include_router(
    health.router,
    tags=["Health"],
)

api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Install"],
)

api_router.include_router(
    search.router,
    prefix="/search",
    tags=["Search"],
)

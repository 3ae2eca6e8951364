"""Main API router aggregating all endpoint routers.

This module provides the central router that includes all API endpoints
organized by domain.
"""

from fastapi import APIRouter

from codebase_indexer.api.endpoints import health, projects, search, watch

# Create main API router with version prefix
api_router = APIRouter(prefix="/api/v1")

# Include endpoint routers
api_router.include_router(health.router)
api_router.include_router(projects.router)
api_router.include_router(watch.router)
api_router.include_router(search.router)

"""
Main API routes configuration
"""

from fastapi import APIRouter

from .endpoints import health, sync

# Create main API router
api_router = APIRouter()

api_router.include_router(sync.router, prefix="/sync-dns", tags=["Zone Sync"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])

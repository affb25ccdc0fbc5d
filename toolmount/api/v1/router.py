"""
toolmount.api.v1.router - API v1 Router

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter

from toolmount.api.v1.endpoints import primitives, settings

api_router = APIRouter()

# Include endpoint routers
api_router.include_router(primitives.router, prefix="/primitives", tags=["primitives"])
api_router.include_router(settings.router, prefix="/settings", tags=["settings"])

"""
API package
"""

from fastapi import APIRouter

from .attestation import router as attestation_router
from .health import router as health_router

# Create API router
api_router = APIRouter()

# Include device protocol routes at the root, devices call these paths directly
api_router.include_router(attestation_router, tags=["attestation"])

# Include health check
api_router.include_router(health_router, tags=["health"])

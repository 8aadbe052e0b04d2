# negotiation_service/api/v1/api.py

from fastapi import APIRouter
from negotiation_service.api.v1.endpoints import (
    proposals,
    negotiations,
    internals,
)

# Main router for the v1 API.
api_router = APIRouter()

api_router.include_router(proposals.router)
api_router.include_router(negotiations.router)
api_router.include_router(internals.router)

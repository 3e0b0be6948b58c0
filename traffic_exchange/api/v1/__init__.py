"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from traffic_exchange.models.schemas.base import ErrorResponse
from .endpoints import views, users, earnings, admin

api_router = APIRouter()

# Domain errors share one body shape (see exception handlers in main)
error_responses = {
    400: {"model": ErrorResponse, "description": "Rejected by a fraud check"},
    404: {"model": ErrorResponse, "description": "Unknown session, member, site or flag"},
    409: {"model": ErrorResponse, "description": "Already completed, already granted or insufficient funds"},
    503: {"model": ErrorResponse, "description": "Storage unavailable; nothing was applied"},
}

api_router.include_router(
    views.router,
    prefix="/views",
    tags=["views"],
    responses={**error_responses, 403: {"model": ErrorResponse, "description": "Proxy or VPN detected"}}
)

api_router.include_router(
    users.router,
    prefix="/users",
    tags=["users"],
    responses=error_responses
)

api_router.include_router(
    earnings.router,
    prefix="/earnings",
    tags=["earnings"],
    responses=error_responses
)

api_router.include_router(
    admin.router,
    prefix="/admin",
    tags=["admin"],
    responses=error_responses
)

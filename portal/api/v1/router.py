from fastapi import APIRouter

from portal.api.v1.endpoints import allocation_requests, users

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(users.router, prefix="/users", tags=["User"])
api_router.include_router(
    allocation_requests.router,
    prefix="/transactions",
    tags=["Allocation Requests"],
)

__all__ = ["api_router"]

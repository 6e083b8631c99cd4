"""API routers for the marketplace escrow backend."""
from fastapi import APIRouter

from . import admin, health, jobs, limits, listings, purchases


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(listings.router)
    api_router.include_router(purchases.router)
    api_router.include_router(limits.router)
    api_router.include_router(admin.router)
    api_router.include_router(jobs.router)
    return api_router

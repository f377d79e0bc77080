"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from boxoffice.api.routes import bookings, inventory, loyalty, promos

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(inventory.router)
api_router.include_router(loyalty.router)
api_router.include_router(promos.router)

from fastapi import APIRouter

from refugio_api.features.contact.routes import router as contact_router
from refugio_api.features.health.routes import router as health_router

api_router = APIRouter()
api_router.include_router(contact_router, prefix="/api", tags=["contact"])

root_router = APIRouter()
root_router.include_router(health_router, tags=["health"])

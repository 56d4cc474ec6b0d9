from fastapi import APIRouter

# Aggregate all v1 routers here
from .admin import router as admin_router
from .routers import system

api_router = APIRouter(prefix="/v1")
api_router.include_router(system.router)
api_router.include_router(admin_router)

__all__ = ["api_router"]

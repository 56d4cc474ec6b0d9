"""Admin namespace - sync worker controls."""
from fastapi import APIRouter

from .routers import workers

router = APIRouter(prefix="/admin", tags=["Admin"])
router.include_router(workers.router)

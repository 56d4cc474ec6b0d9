# profilesync/api/v1/routers/system.py
"""
System endpoints.

Endpoints:
    GET /health - Service and database health
"""

from typing import Any, Dict

from fastapi import APIRouter

from profilesync.config import settings
from profilesync.core.shared.database_service import database_service
from profilesync.core.utils.time_utils import utcnow

router = APIRouter(tags=["System"])


@router.get("/health", summary="Health check")
async def health() -> Dict[str, Any]:
    database = await database_service.health_check()
    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "version": settings.api_version,
        "timestamp": utcnow().isoformat(),
        "database": database,
    }

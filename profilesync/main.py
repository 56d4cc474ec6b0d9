# ============================================================================
# Profile Sync - FastAPI Application Entry Point
# ============================================================================
"""
Main FastAPI application module for the profile link sync service.

This module sets up the FastAPI application with:
- Application startup/shutdown event handlers
- Error handling for HTTP and unexpected errors
- API router integration (health, admin worker controls)

The sync cycles themselves run in Celery workers; this process only serves
the health check and the operator endpoints.

Usage:
    Direct: python -m profilesync.main
    Docker: uvicorn profilesync.main:app --host 0.0.0.0 --port 8000
"""

import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .api.v1 import api_router
from .config import settings
from .core.shared.database_service import database_service
from .core.utils.time_utils import utcnow

logger = logging.getLogger("profilesync.api")

# ============================================================================
# APPLICATION INITIALIZATION
# ============================================================================

app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Profile link sync service - scheduler, reconciliation and operator controls",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# ============================================================================
# APPLICATION EVENT HANDLERS
# ============================================================================


@app.on_event("startup")
async def startup_event() -> None:
    logger.info(f"Starting {settings.api_title} v{settings.api_version} (debug={settings.debug})")
    health = await database_service.health_check()
    if health["status"] != "healthy":
        logger.warning(f"Database not reachable at startup: {health.get('error')}")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    logger.info("Shutting down...")
    await database_service.close()


# ============================================================================
# ERROR HANDLERS
# ============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": f"HTTP {exc.status_code}",
            "detail": str(exc.detail),
            "timestamp": utcnow().isoformat(),
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all handler for unexpected errors.

    The error text is only returned in debug mode.
    """
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
            "timestamp": utcnow().isoformat(),
        },
    )


# ============================================================================
# ROUTER CONFIGURATION
# ============================================================================

app.include_router(api_router, prefix="/api")


@app.get("/", tags=["root"])
async def root() -> Dict[str, Any]:
    return {
        "name": settings.api_title,
        "version": settings.api_version,
        "status": "running",
        "docs_url": "/docs",
        "health_check": "/api/v1/health",
        "timestamp": utcnow().isoformat(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("profilesync.main:app", host="0.0.0.0", port=8000)

# profilesync/dependencies.py
"""
FastAPI dependency functions for the admin surface.

Key Dependencies:
    - require_admin_api_key: Validate the X-API-Key header against ADMIN_API_KEY

Usage:
    from fastapi import Depends
    from profilesync.dependencies import require_admin_api_key

    @router.post("/workers/{name}/trigger", dependencies=[Depends(require_admin_api_key)])
    async def trigger(name: str):
        ...

Security:
    - Keys are compared in constant time
    - With no ADMIN_API_KEY configured the admin endpoints are unavailable (503)
"""

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from profilesync.config import settings

logger = logging.getLogger("profilesync.dependencies")


async def require_admin_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> str:
    """
    Ensure the request carries the admin API key.

    Raises:
        HTTPException: 503 if no admin key is configured, 401 if the header is
            missing or does not match
    """
    expected = settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )

    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        logger.warning("Rejected admin request with missing or invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return x_api_key

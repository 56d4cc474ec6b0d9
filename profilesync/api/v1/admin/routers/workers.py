# profilesync/api/v1/admin/routers/workers.py
"""
Sync worker management endpoints.

Endpoints:
    GET /workers - List sync workers with schedule and last-run state
    GET /workers/locks - Reserved advisory lock IDs per worker
    POST /workers/{name}/toggle - Enable or disable a worker
    POST /workers/{name}/trigger - Make a worker due now and enqueue a cycle

Security:
    - All endpoints require the admin X-API-Key
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from profilesync.core.errors import (
    LinkSyncError,
    ProfileSyncError,
    RuntimeStateError,
    UnknownWorkerError,
)
from profilesync.core.ops.worker_admin_service import WorkerStatus, worker_admin_service
from profilesync.dependencies import require_admin_api_key

router = APIRouter(
    prefix="/workers",
    tags=["Sync Workers"],
    dependencies=[Depends(require_admin_api_key)],
)

logger = logging.getLogger("profilesync.api.workers")


# =========================================================================
# Pydantic Models
# =========================================================================


class WorkerResponse(BaseModel):
    """Response model for a sync worker."""
    name: str
    kind: str
    lock_id: int
    is_enabled: bool
    next_run_at: Optional[str]
    last_run_at: Optional[str]
    last_status: Optional[str]
    last_error: Optional[str]
    check_interval: int
    full_sync_interval: int
    batch_size: int
    full_fetch_every: int


class WorkerListResponse(BaseModel):
    workers: List[WorkerResponse]
    total: int


class LockListResponse(BaseModel):
    locks: Dict[str, int]


class ToggleWorkerResponse(BaseModel):
    name: str
    is_enabled: bool
    message: str


class TriggerWorkerResponse(BaseModel):
    name: str
    next_run_at: str
    task_id: Optional[str]
    message: str


def _to_response(worker_status: WorkerStatus) -> WorkerResponse:
    return WorkerResponse(**worker_status.to_dict())


def _not_found(name: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Sync worker not found: {name}",
    )


def _unavailable(e: ProfileSyncError) -> HTTPException:
    detail = "Link store unavailable" if isinstance(e, LinkSyncError) else "Runtime state store unavailable"
    logger.error(f"{detail}: {e}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=detail,
    )


# =========================================================================
# Endpoints
# =========================================================================


@router.get(
    "",
    response_model=WorkerListResponse,
    summary="List sync workers",
)
async def list_workers() -> WorkerListResponse:
    try:
        statuses = await worker_admin_service.list_workers()
    except RuntimeStateError as e:
        raise _unavailable(e) from e

    return WorkerListResponse(
        workers=[_to_response(s) for s in statuses],
        total=len(statuses),
    )


@router.get(
    "/locks",
    response_model=LockListResponse,
    summary="List reserved advisory locks",
)
async def list_locks() -> LockListResponse:
    return LockListResponse(locks=worker_admin_service.list_locks())


@router.post(
    "/{name}/toggle",
    response_model=ToggleWorkerResponse,
    summary="Enable or disable a worker",
    description="Flips worker.<name>.disabled. Takes effect on every replica at its next tick.",
)
async def toggle_worker(name: str) -> ToggleWorkerResponse:
    try:
        is_enabled = await worker_admin_service.toggle(name)
    except UnknownWorkerError as e:
        raise _not_found(name) from e
    except RuntimeStateError as e:
        raise _unavailable(e) from e

    return ToggleWorkerResponse(
        name=name,
        is_enabled=is_enabled,
        message=f"Worker '{name}' {'enabled' if is_enabled else 'disabled'}",
    )


@router.post(
    "/{name}/trigger",
    response_model=TriggerWorkerResponse,
    summary="Trigger a worker",
    description=(
        "Moves next_run_at one minute into the past and enqueues a cycle. "
        "With full=true every link's next sync fetches everything and runs deletion detection."
    ),
)
async def trigger_worker(
    name: str,
    full: bool = Query(False, description="Force a full fetch on each link's next sync"),
) -> TriggerWorkerResponse:
    from profilesync.core.tasks.sync import run_sync_worker

    try:
        next_run_at = await worker_admin_service.trigger(name, full=full)
    except UnknownWorkerError as e:
        raise _not_found(name) from e
    except (RuntimeStateError, LinkSyncError) as e:
        raise _unavailable(e) from e

    task_id = None
    try:
        result = run_sync_worker.delay(name)
        task_id = result.id
    except Exception as e:
        # Beat picks the worker up on its next tick anyway
        logger.warning(f"Failed to enqueue {name} cycle: {e}")

    logger.info(f"Sync worker triggered via admin API: {name} (task={task_id})")

    return TriggerWorkerResponse(
        name=name,
        next_run_at=next_run_at.isoformat(),
        task_id=task_id,
        message=f"Worker '{name}' triggered",
    )

"""
Operator controls for provider sync workers.

Backs both the admin HTTP endpoints and the ``worker_admin`` command.
Schedule and enable state lives in the runtime state store and full-fetch
counters live on the links, so a change made here is seen by every replica
on its next tick without a redeploy.

Usage:
    from profilesync.core.ops.worker_admin_service import worker_admin_service

    statuses = await worker_admin_service.list_workers()
    await worker_admin_service.set_disabled("youtube-sync", True)
    await worker_admin_service.trigger("github-sync", full=True)
    locks = worker_admin_service.list_locks()
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from profilesync.core.errors import InvalidTimeError, StateNotFoundError, UnknownWorkerError
from profilesync.core.ops.sync_worker import SyncWorker
from profilesync.core.ops.worker_registry import get_workers
from profilesync.core.shared.lock_registry import registered_locks
from profilesync.core.utils.time_utils import utcnow

logger = logging.getLogger("profilesync.ops.worker_admin")


@dataclass
class WorkerStatus:
    name: str
    kind: str
    lock_id: int
    is_enabled: bool
    next_run_at: Optional[datetime]
    last_run_at: Optional[datetime]
    last_status: Optional[str]
    last_error: Optional[str]
    check_interval: int
    full_sync_interval: int
    batch_size: int
    full_fetch_every: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "lock_id": self.lock_id,
            "is_enabled": self.is_enabled,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_status": self.last_status,
            "last_error": self.last_error,
            "check_interval": self.check_interval,
            "full_sync_interval": self.full_sync_interval,
            "batch_size": self.batch_size,
            "full_fetch_every": self.full_fetch_every,
        }


class WorkerAdminService:
    """Read worker status and apply operator overrides."""

    def _worker(self, name: str) -> SyncWorker:
        worker = get_workers().get(name)
        if worker is None:
            raise UnknownWorkerError(name)
        return worker

    async def list_workers(self) -> List[WorkerStatus]:
        return [await self.get_status(name) for name in sorted(get_workers())]

    async def get_status(self, name: str) -> WorkerStatus:
        worker = self._worker(name)
        disabled = await self._read(worker, worker.disabled_key)

        return WorkerStatus(
            name=worker.name,
            kind=worker.kind,
            lock_id=worker.lock_id,
            is_enabled=(disabled or "").strip().lower() != "true",
            next_run_at=await self._read_time(worker, worker.next_run_key),
            last_run_at=await self._read_time(worker, worker.state("last_run_at")),
            last_status=await self._read(worker, worker.state("last_status")),
            last_error=await self._read(worker, worker.state("last_error")),
            check_interval=worker.config.check_interval,
            full_sync_interval=worker.config.full_sync_interval,
            batch_size=worker.config.batch_size,
            full_fetch_every=worker.config.full_fetch_every,
        )

    def list_locks(self) -> Dict[str, int]:
        """Reserved advisory lock ID per worker name, including disabled workers."""
        return {name: int(lock) for name, lock in sorted(registered_locks().items())}

    async def set_disabled(self, name: str, disabled: bool) -> None:
        worker = self._worker(name)
        if disabled:
            await worker.runtime_state.set(worker.disabled_key, "true")
        else:
            await worker.runtime_state.remove(worker.disabled_key)
        logger.info(f"Sync worker {name} {'disabled' if disabled else 'enabled'}")

    async def toggle(self, name: str) -> bool:
        """Flip the disabled flag. Returns True if the worker is now enabled."""
        status = await self.get_status(name)
        await self.set_disabled(name, status.is_enabled)
        return not status.is_enabled

    async def trigger(self, name: str, full: bool = False) -> datetime:
        """
        Make the worker due now.

        Moves next_run_at one minute into the past. With ``full`` every link
        of the worker's kind has its full-fetch counter cleared, so each
        link's next sync fetches everything and runs deletion detection.
        Enqueuing the cycle is left to the caller.

        Returns:
            The next_run_at that was written
        """
        worker = self._worker(name)
        next_run_at = utcnow() - timedelta(minutes=1)
        await worker.runtime_state.set_time(worker.next_run_key, next_run_at)
        if full:
            reset = await worker.link_sync.reset_full_fetch(worker.kind)
            logger.info(f"Cleared full-fetch counters on {reset} {worker.kind} links")
        logger.info(f"Sync worker {name} triggered (full={full})")
        return next_run_at

    async def _read(self, worker: SyncWorker, key: str) -> Optional[str]:
        try:
            return await worker.runtime_state.get(key)
        except StateNotFoundError:
            return None

    async def _read_time(self, worker: SyncWorker, key: str) -> Optional[datetime]:
        try:
            return await worker.runtime_state.get_time(key)
        except StateNotFoundError:
            return None
        except InvalidTimeError as e:
            logger.warning(f"Unreadable runtime state {key}: {e}")
            return None


# Global singleton instance
worker_admin_service = WorkerAdminService()

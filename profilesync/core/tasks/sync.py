"""
Provider sync Celery tasks.

``run_sync_worker`` is fired by Celery beat on every check interval and by
the admin trigger endpoint. It runs exactly one ``SyncWorker.execute()``;
skips are normal results, not task failures.
"""
import asyncio
import logging
from typing import Any, Dict

from profilesync.celery_app import app as celery_app
from profilesync.core.ops.worker_registry import get_worker

logger = logging.getLogger("profilesync.tasks.sync")


@celery_app.task(bind=True, name="profilesync.tasks.run_sync_worker")
def run_sync_worker(self, worker_name: str) -> Dict[str, Any]:
    """
    Run one cycle of a provider sync worker.

    Args:
        worker_name: Registered worker name (youtube-sync, github-sync, speakerdeck-sync)

    Returns:
        CycleReport as a dict (status, mode, totals, error)
    """
    worker = get_worker(worker_name)
    if worker is None:
        logger.warning(f"Unknown or disabled sync worker: {worker_name}")
        return {"worker": worker_name, "status": "unknown_worker"}

    report = asyncio.run(worker.execute())
    if not report.skipped:
        logger.info(f"Sync worker {worker_name} finished with status {report.status.value}")
    return report.to_dict()

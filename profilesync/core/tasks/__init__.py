"""
Celery tasks for the profile sync service.

Task names are stable (``profilesync.tasks.<function_name>``) so beat
schedules and routing rules keep working across refactors.
"""

from profilesync.core.tasks.sync import run_sync_worker

__all__ = ["run_sync_worker"]

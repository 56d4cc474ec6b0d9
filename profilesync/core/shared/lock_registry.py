"""
Central registry of advisory lock IDs.

Every subsystem that takes a database advisory lock draws its ID from
``AdvisoryLock``. ``@unique`` makes a duplicated value fail at import
time instead of silently aliasing two lock holders.

Usage:
    from profilesync.core.shared.lock_registry import AdvisoryLock, lock_id_for

    lock_id = lock_id_for("youtube-sync")
"""

from enum import IntEnum, unique
from typing import Dict


@unique
class AdvisoryLock(IntEnum):
    """Reserved advisory lock IDs. Values are stable across releases."""

    YOUTUBE_SYNC = 100001
    SPEAKERDECK_SYNC = 100003
    GITHUB_SYNC = 100010


# Worker name -> lock. Built once; workers never declare their own literal.
_WORKER_LOCKS: Dict[str, AdvisoryLock] = {
    "youtube-sync": AdvisoryLock.YOUTUBE_SYNC,
    "github-sync": AdvisoryLock.GITHUB_SYNC,
    "speakerdeck-sync": AdvisoryLock.SPEAKERDECK_SYNC,
}


def lock_id_for(worker_name: str) -> AdvisoryLock:
    """Return the reserved lock for a worker.

    Raises:
        KeyError: If the worker has no reserved lock.
    """
    try:
        return _WORKER_LOCKS[worker_name]
    except KeyError:
        raise KeyError(f"No advisory lock reserved for worker '{worker_name}'") from None


def registered_locks() -> Dict[str, AdvisoryLock]:
    """Copy of the worker -> lock mapping (for admin display and tests)."""
    return dict(_WORKER_LOCKS)

"""
Runtime state store for cross-instance coordination.

Durable key/value entries (schedule timestamps, admin overrides) and
named advisory locks, both backed by the relational database so every
replica observes the same state. Nothing is cached in process.

Key Features:
- String KV with "not found" distinguished from storage failure
- Typed time values stored as ISO-8601 with timezone
- Non-blocking, session-scoped advisory locks (try once, never wait)

Lock Semantics:
    PostgreSQL: ``pg_try_advisory_lock`` on a dedicated connection that is
    held until ``release_lock``. If the process dies, the database session
    ends and PostgreSQL drops the lock.

    SQLite (single-host development): a process-local lock table keyed by
    database URL and lock ID with the same try-once semantics.

Usage:
    from profilesync.core.shared.runtime_state_service import runtime_state_service

    await runtime_state_service.set_time("youtube.sync_worker.next_run_at", when)
    if await runtime_state_service.try_lock(AdvisoryLock.YOUTUBE_SYNC):
        try:
            ...
        finally:
            await runtime_state_service.release_lock(AdvisoryLock.YOUTUBE_SYNC)
"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from profilesync.core.database.models import RuntimeState
from profilesync.core.errors import (
    InvalidTimeError,
    LockError,
    RuntimeStateError,
    StateNotFoundError,
)
from profilesync.core.shared.database_service import DatabaseService, database_service
from profilesync.core.utils.time_utils import as_utc, utcnow

logger = logging.getLogger("profilesync.services.runtime_state")

_STORAGE_ERRORS = (SQLAlchemyError, OSError)

# (database_url, lock_id) -> owning service instance, for non-PostgreSQL dialects
_local_locks: Dict[Tuple[str, int], "RuntimeStateService"] = {}
_local_locks_guard = threading.Lock()


class RuntimeStateService:
    """
    Key/value and advisory lock operations over the shared database.

    Attributes:
        _db: Database service providing sessions and the engine
        _held: Lock ID -> connection holding a PostgreSQL advisory lock
    """

    def __init__(self, db: Optional[DatabaseService] = None):
        self._db = db or database_service
        self._held: Dict[int, AsyncConnection] = {}

    # =========================================================================
    # Key/value
    # =========================================================================

    async def get(self, key: str) -> str:
        """
        Read the value stored under ``key``.

        Raises:
            StateNotFoundError: The key was never written (or was removed)
            RuntimeStateError: The store could not be read
        """
        try:
            async with self._db.get_session() as session:
                state = await session.get(RuntimeState, key)
        except _STORAGE_ERRORS as exc:
            raise RuntimeStateError(f"failed to read runtime state '{key}'") from exc

        if state is None:
            raise StateNotFoundError(key)
        return state.value

    async def set(self, key: str, value: str) -> None:
        """Create or overwrite ``key``."""
        now = utcnow()
        insert = pg_insert if self._db.dialect_name == "postgresql" else sqlite_insert
        stmt = insert(RuntimeState).values(key=key, value=value, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[RuntimeState.key],
            set_={"value": value, "updated_at": now},
        )
        try:
            async with self._db.get_session() as session:
                await session.execute(stmt)
        except _STORAGE_ERRORS as exc:
            raise RuntimeStateError(f"failed to write runtime state '{key}'") from exc

    async def get_time(self, key: str) -> datetime:
        """
        Read a timestamp written by ``set_time``.

        Raises:
            StateNotFoundError: The key was never written
            InvalidTimeError: The stored value is not a timestamp
            RuntimeStateError: The store could not be read
        """
        value = await self.get(key)
        try:
            return as_utc(datetime.fromisoformat(value))
        except ValueError as exc:
            raise InvalidTimeError(f"runtime state '{key}' is not a timestamp: {value!r}") from exc

    async def set_time(self, key: str, when: datetime) -> None:
        await self.set(key, as_utc(when).isoformat())

    async def remove(self, key: str) -> None:
        """Delete ``key``. Removing a missing key is not an error."""
        try:
            async with self._db.get_session() as session:
                await session.execute(delete(RuntimeState).where(RuntimeState.key == key))
        except _STORAGE_ERRORS as exc:
            raise RuntimeStateError(f"failed to remove runtime state '{key}'") from exc

    async def list_by_prefix(self, prefix: str) -> List[RuntimeState]:
        """Return all entries whose key starts with ``prefix``, ordered by key."""
        try:
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(RuntimeState)
                    .where(RuntimeState.key.startswith(prefix, autoescape=True))
                    .order_by(RuntimeState.key)
                )
                return list(result.scalars().all())
        except _STORAGE_ERRORS as exc:
            raise RuntimeStateError(f"failed to list runtime state '{prefix}*'") from exc

    # =========================================================================
    # Advisory locks
    # =========================================================================

    async def try_lock(self, lock_id: int) -> bool:
        """
        Attempt to take the advisory lock without waiting.

        Returns:
            True if acquired, False if another holder has it

        Raises:
            LockError: The attempt itself failed (connectivity, SQL error)
        """
        lock_id = int(lock_id)
        if self._db.dialect_name != "postgresql":
            return self._try_local_lock(lock_id)

        try:
            conn = await self._db.engine.connect()
        except _STORAGE_ERRORS as exc:
            raise LockError(f"failed to open connection for lock {lock_id}") from exc

        try:
            result = await conn.execute(
                text("SELECT pg_try_advisory_lock(:lock_id)"), {"lock_id": lock_id}
            )
            acquired = bool(result.scalar())
            # Session-level lock survives the end of this transaction
            await conn.commit()
        except _STORAGE_ERRORS as exc:
            await self._discard_connection(conn)
            raise LockError(f"failed to acquire lock {lock_id}") from exc

        if not acquired:
            await conn.close()
            logger.debug(f"Advisory lock {lock_id} is held by another session")
            return False

        self._held[lock_id] = conn
        logger.debug(f"Advisory lock {lock_id} acquired")
        return True

    async def release_lock(self, lock_id: int) -> None:
        """
        Release a lock taken by ``try_lock`` on this instance.

        Raises:
            LockError: The lock was not held here, or unlocking failed. When
                unlocking fails the connection is invalidated, which ends the
                database session and drops the lock with it.
        """
        lock_id = int(lock_id)
        if self._db.dialect_name != "postgresql":
            self._release_local_lock(lock_id)
            return

        conn = self._held.pop(lock_id, None)
        if conn is None:
            raise LockError(f"advisory lock {lock_id} is not held by this instance")

        try:
            result = await conn.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": lock_id}
            )
            released = bool(result.scalar())
            await conn.commit()
        except _STORAGE_ERRORS as exc:
            await self._discard_connection(conn)
            raise LockError(f"failed to release lock {lock_id}") from exc

        await conn.close()
        if not released:
            raise LockError(f"advisory lock {lock_id} was not held by its session")
        logger.debug(f"Advisory lock {lock_id} released")

    async def _discard_connection(self, conn: AsyncConnection) -> None:
        try:
            await conn.invalidate()
            await conn.close()
        except _STORAGE_ERRORS as exc:
            logger.warning(f"Failed to discard lock connection: {exc}")

    def _try_local_lock(self, lock_id: int) -> bool:
        key = (self._db.database_url, lock_id)
        with _local_locks_guard:
            if key in _local_locks:
                return False
            _local_locks[key] = self
        return True

    def _release_local_lock(self, lock_id: int) -> None:
        key = (self._db.database_url, lock_id)
        with _local_locks_guard:
            if _local_locks.get(key) is not self:
                raise LockError(f"lock {lock_id} is not held by this instance")
            del _local_locks[key]


# Global singleton instance
runtime_state_service = RuntimeStateService()

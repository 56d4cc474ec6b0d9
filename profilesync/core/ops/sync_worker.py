"""
Sync Worker - one periodic provider sync cycle, safe across replicas.

Every invocation walks the same steps:

    check disabled -> check schedule -> try lock -> claim next slot
        -> reconcile batch -> process stories -> record outcome -> release lock

Skips (disabled, not due, lock held elsewhere) end the invocation cleanly.
The next run time is written before any work starts, so a replica that
crashes mid-cycle leaves a missed run rather than a duplicate one. The lock
is always released, including on failure and cancellation.

Runtime state keys (``<state_key>`` is e.g. ``youtube.sync_worker``):
    worker.<name>.disabled                 "true" pauses the worker
    <state_key>.next_run_at                earliest time of the next cycle
    <state_key>.last_run_at / last_status / last_error

Full versus incremental fetching is decided per link by the reconciler
(see ``LinkReconciler.select_mode``), not per cycle.

Nothing raised inside a cycle escapes ``execute()``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from profilesync.config import WorkerConfig
from profilesync.connectors.base import RemoteItemFetcher
from profilesync.core.errors import InvalidTimeError, RuntimeStateError, StateNotFoundError
from profilesync.core.shared.audit_service import AuditService, audit_service
from profilesync.core.shared.runtime_state_service import RuntimeStateService, runtime_state_service
from profilesync.core.sync.link_sync_service import LinkSyncService, link_sync_service
from profilesync.core.sync.reconciler import LinkReconciler
from profilesync.core.sync.story_processor import NullStoryProcessor, StoryProcessor
from profilesync.core.sync.types import SyncResult, SyncTotals
from profilesync.core.utils.time_utils import utcnow


class CycleStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED_DISABLED = "skipped_disabled"
    SKIPPED_NOT_DUE = "skipped_not_due"
    SKIPPED_LOCKED = "skipped_locked"
    FAILED = "failed"


@dataclass
class CycleReport:
    """Outcome of one ``SyncWorker.execute()`` invocation."""

    worker: str
    status: CycleStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[SyncResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.status in (
            CycleStatus.SKIPPED_DISABLED,
            CycleStatus.SKIPPED_NOT_DUE,
            CycleStatus.SKIPPED_LOCKED,
        )

    @property
    def totals(self) -> SyncTotals:
        return SyncTotals.from_results(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker": self.worker,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "totals": self.totals.to_dict(),
            "error": self.error,
        }


class SyncWorker:
    """
    Periodic sync worker for one provider kind.

    Attributes:
        name: Worker name (youtube-sync, github-sync, ...)
        state_key: Prefix for this worker's runtime state keys
        lock_id: Reserved advisory lock ID
        fetcher: Provider fetcher
        config: Schedule and batching settings
    """

    def __init__(
        self,
        name: str,
        state_key: str,
        lock_id: int,
        fetcher: RemoteItemFetcher,
        config: WorkerConfig,
        runtime_state: Optional[RuntimeStateService] = None,
        link_sync: Optional[LinkSyncService] = None,
        story_processor: Optional[StoryProcessor] = None,
        audit: Optional[AuditService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.name = name
        self.state_key = state_key
        self.lock_id = int(lock_id)
        self.fetcher = fetcher
        self.config = config
        self.runtime_state = runtime_state or runtime_state_service
        self.link_sync = link_sync or link_sync_service
        self.story_processor = story_processor or NullStoryProcessor()
        self.audit = audit or audit_service
        self._clock = clock
        self.reconciler = LinkReconciler(fetcher, config, self.link_sync, clock)
        self.logger = logging.getLogger(f"profilesync.workers.{name}")

    @property
    def kind(self) -> str:
        return self.fetcher.kind

    @property
    def disabled_key(self) -> str:
        return f"worker.{self.name}.disabled"

    def state(self, suffix: str) -> str:
        return f"{self.state_key}.{suffix}"

    @property
    def next_run_key(self) -> str:
        return self.state("next_run_at")

    # =========================================================================
    # Entry point
    # =========================================================================

    async def execute(self) -> CycleReport:
        started_at = self._clock()

        if await self._is_disabled():
            self.logger.debug(f"Worker {self.name} is disabled, skipping")
            return self._finish(CycleReport(self.name, CycleStatus.SKIPPED_DISABLED, started_at))

        if not await self._is_due(started_at):
            self.logger.debug(f"Worker {self.name} is not due yet, skipping")
            return self._finish(CycleReport(self.name, CycleStatus.SKIPPED_NOT_DUE, started_at))

        if not await self._try_lock():
            return self._finish(CycleReport(self.name, CycleStatus.SKIPPED_LOCKED, started_at))

        try:
            report = await self._run_locked(started_at)
        finally:
            await self._release_lock()

        return report

    # =========================================================================
    # Gates
    # =========================================================================

    async def _is_disabled(self) -> bool:
        try:
            return (await self.runtime_state.get(self.disabled_key)).strip().lower() == "true"
        except StateNotFoundError:
            return False
        except Exception as e:
            self.logger.warning(f"Failed to read {self.disabled_key}, assuming enabled: {e}")
            return False

    async def _is_due(self, now: datetime) -> bool:
        try:
            next_run_at = await self.runtime_state.get_time(self.next_run_key)
        except StateNotFoundError:
            self.logger.info(f"Worker {self.name} has never run, starting first sync")
            return True
        except InvalidTimeError as e:
            self.logger.warning(f"Ignoring unreadable {self.next_run_key}: {e}")
            return True
        except Exception as e:
            self.logger.warning(f"Failed to read {self.next_run_key}, treating as due: {e}")
            return True
        return now >= next_run_at

    async def _try_lock(self) -> bool:
        try:
            acquired = await self.runtime_state.try_lock(self.lock_id)
        except Exception as e:
            self.logger.warning(f"Failed to acquire advisory lock {self.lock_id}: {e}")
            return False
        if not acquired:
            self.logger.debug(f"Another instance is running {self.name}")
        return acquired

    async def _release_lock(self) -> None:
        try:
            await self.runtime_state.release_lock(self.lock_id)
        except Exception as e:
            self.logger.warning(f"Failed to release advisory lock {self.lock_id}: {e}")

    # =========================================================================
    # Cycle
    # =========================================================================

    async def _run_locked(self, started_at: datetime) -> CycleReport:
        await self._claim_next_slot(started_at)

        report = CycleReport(self.name, CycleStatus.COMPLETED, started_at)
        try:
            await self._run_cycle(report)
        except Exception as e:
            report.status = CycleStatus.FAILED
            report.error = str(e) or e.__class__.__name__
            self.logger.exception(f"Sync cycle for {self.name} failed: {report.error}")

        self._finish(report)
        await self._record_outcome(report)
        return report

    async def _claim_next_slot(self, now: datetime) -> None:
        next_run_at = now + timedelta(seconds=self.config.full_sync_interval)
        try:
            await self.runtime_state.set_time(self.next_run_key, next_run_at)
        except RuntimeStateError as e:
            self.logger.warning(f"Failed to claim next slot for {self.name}: {e}")

    async def _run_cycle(self, report: CycleReport) -> None:
        self.logger.info(f"Starting sync cycle for {self.name}")

        links = await self.link_sync.get_managed_links(
            self.kind, self.config.batch_size, require_auth=self.fetcher.requires_auth
        )
        if links:
            report.results = await self.reconciler.reconcile(links)
        else:
            self.logger.info(f"No {self.kind} links to sync")

        for result in report.results:
            if not result.ok:
                await self.audit.record(
                    event_type="link_sync.link_failed",
                    entity_type="profile_link",
                    entity_id=str(result.link_id),
                    payload={"worker": self.name, "profile_id": str(result.profile_id), "error": result.error},
                )

        totals = report.totals
        self.logger.info(
            f"Sync cycle for {self.name} finished: links={totals.links} failed={totals.links_failed} "
            f"full={totals.full_fetches} "
            f"added={totals.added} updated={totals.updated} deleted={totals.deleted}"
        )

        await self._process_stories()

        await self.audit.record(
            event_type="link_sync.cycle_completed",
            entity_type="worker",
            entity_id=self.name,
            payload=totals.to_dict(),
        )

    async def _process_stories(self) -> None:
        try:
            await self.story_processor.process_stories()
        except Exception as e:
            self.logger.error(f"Story processing after {self.name} sync failed: {e}")

    async def _record_outcome(self, report: CycleReport) -> None:
        try:
            await self.runtime_state.set_time(self.state("last_run_at"), report.started_at)
            await self.runtime_state.set(self.state("last_status"), report.status.value)
            if report.error:
                await self.runtime_state.set(self.state("last_error"), report.error[:1000])
            else:
                await self.runtime_state.remove(self.state("last_error"))
        except RuntimeStateError as e:
            self.logger.warning(f"Failed to record outcome of {self.name}: {e}")

    def _finish(self, report: CycleReport) -> CycleReport:
        report.finished_at = self._clock()
        return report

    def __repr__(self) -> str:
        return f"<SyncWorker(name={self.name}, kind={self.kind}, lock_id={self.lock_id})>"

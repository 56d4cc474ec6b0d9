"""
Provider-agnostic reconciliation of remote items against recorded imports.

For each managed link the reconciler:
    1. Refreshes the access token if it expires within the refresh buffer
    2. Picks the fetch window per link: everything (full) or changes since
       the newest import. A link gets a full fetch on its first sync and on
       every ``full_fetch_every``-th sync after that, counted per link, so
       batch rotation never keeps a link away from deletion detection
    3. Fetches remote items, refreshing the token once on an authentication failure
    4. Upserts every observed item and collects the active remote ID set
    5. Retires imports missing from the active set, but only when the fetch
       enumerated everything (full window, not truncated by max_items)
    6. Stamps the link as synced and advances its full-fetch counter

A failure on one link is recorded in that link's SyncResult and the batch
moves on. Nothing here raises out of ``reconcile``.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Set

from profilesync.config import WorkerConfig
from profilesync.connectors.base import RemoteItemFetcher
from profilesync.core.errors import AuthenticationError, LinkSyncError, ProfileSyncError
from profilesync.core.sync.link_sync_service import LinkSyncService, link_sync_service
from profilesync.core.sync.types import (
    ManagedLink,
    RemoteItem,
    SyncMode,
    SyncResult,
    UpsertOutcome,
)
from profilesync.core.utils.time_utils import utcnow

logger = logging.getLogger("profilesync.services.reconciler")


class LinkReconciler:
    """
    Diff-and-update of one provider's links.

    Args:
        fetcher: Provider fetcher for the links' kind
        config: Worker configuration (max_items, token_refresh_buffer)
        link_sync: Link persistence service
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        fetcher: RemoteItemFetcher,
        config: WorkerConfig,
        link_sync: Optional[LinkSyncService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.fetcher = fetcher
        self.config = config
        self.link_sync = link_sync or link_sync_service
        self._clock = clock

    async def reconcile(
        self,
        links: List[ManagedLink],
        mode: Optional[SyncMode] = None,
    ) -> List[SyncResult]:
        """
        Reconcile each link in turn and return one SyncResult per link.

        ``mode`` overrides the per-link choice for every link in the batch.
        """
        results = []
        for link in links:
            results.append(await self.reconcile_link(link, mode))
        return results

    async def reconcile_link(self, link: ManagedLink, mode: Optional[SyncMode] = None) -> SyncResult:
        result = SyncResult(link_id=link.id, profile_id=link.profile_id)
        try:
            await self._sync_link(link, mode or self.select_mode(link), result)
        except Exception as e:
            result.error = str(e) or e.__class__.__name__
            logger.error(
                f"Failed to sync {link.kind} link {link.id} (profile {link.profile_id}): {result.error}"
            )

        try:
            await self.link_sync.mark_link_synced(
                link.id, self._clock(), mode=result.mode if result.ok else None
            )
        except LinkSyncError as e:
            logger.warning(f"Failed to stamp synced_at on link {link.id}: {e}")

        return result

    def select_mode(self, link: ManagedLink) -> SyncMode:
        """
        Incremental by default; full when the fetcher cannot do incremental,
        when the link never had a successful full fetch, or when this is the
        link's ``full_fetch_every``-th sync since the last full one.
        """
        if not self.fetcher.supports_incremental or self.config.full_fetch_every <= 1:
            return SyncMode.FULL
        if link.syncs_since_full_fetch is None:
            return SyncMode.FULL
        if link.syncs_since_full_fetch + 1 >= self.config.full_fetch_every:
            return SyncMode.FULL
        return SyncMode.INCREMENTAL

    async def _sync_link(self, link: ManagedLink, mode: SyncMode, result: SyncResult) -> None:
        access_token = link.access_token

        if (
            self.fetcher.requires_auth
            and link.refresh_token
            and link.token_expires_within(self._clock(), self.config.token_refresh_buffer)
        ):
            access_token = await self._refresh_token(link)
            result.token_refreshed = True

        since = await self._fetch_window(link, mode)
        result.mode = SyncMode.FULL if since is None else SyncMode.INCREMENTAL

        try:
            items = await self._fetch(link, access_token, since)
        except AuthenticationError:
            if result.token_refreshed or not link.refresh_token:
                raise
            logger.info(f"Credentials rejected for link {link.id}, refreshing token and retrying")
            access_token = await self._refresh_token(link)
            result.token_refreshed = True
            items = await self._fetch(link, access_token, since)

        active_ids = await self._apply_items(link, items, result)

        result.complete = since is None and len(items) < self.config.max_items
        if result.complete and active_ids:
            result.deleted = await self.link_sync.mark_deleted_imports(link.id, active_ids)
        elif result.complete:
            logger.info(f"Complete fetch for link {link.id} returned no items, retiring nothing")

        logger.debug(
            f"Link {link.id}: +{result.added} ~{result.updated} -{result.deleted} "
            f"failed={result.failed} complete={result.complete}"
        )

    async def _fetch_window(self, link: ManagedLink, mode: SyncMode) -> Optional[datetime]:
        if mode == SyncMode.FULL or not self.fetcher.supports_incremental:
            return None
        return await self.link_sync.get_last_sync_time(link.id)

    async def _fetch(
        self,
        link: ManagedLink,
        access_token: Optional[str],
        since: Optional[datetime],
    ) -> List[RemoteItem]:
        return await self.fetcher.fetch_remote_items(
            access_token=access_token,
            remote_id=link.remote_id,
            since=since,
            max_items=self.config.max_items,
        )

    async def _apply_items(
        self,
        link: ManagedLink,
        items: List[RemoteItem],
        result: SyncResult,
    ) -> Set[str]:
        """
        Upsert every observed item. The active set contains every observed
        ID, including those whose upsert failed, so a write failure never
        causes the item to be retired.
        """
        active_ids: Set[str] = set()
        for item in items:
            if item.remote_id in active_ids:
                continue
            active_ids.add(item.remote_id)
            try:
                outcome, _ = await self.link_sync.upsert_import(link.id, item.remote_id, item.properties)
            except ProfileSyncError as e:
                result.failed += 1
                logger.error(
                    f"Failed to upsert {link.kind} item {item.remote_id} for link {link.id} "
                    f"(profile {link.profile_id}): {e}"
                )
                continue

            if outcome == UpsertOutcome.CREATED:
                result.added += 1
            else:
                result.updated += 1
        return active_ids

    async def _refresh_token(self, link: ManagedLink) -> str:
        refreshed = await self.fetcher.refresh_access_token(link.refresh_token)
        await self.link_sync.update_link_tokens(
            link.id,
            refreshed.access_token,
            refreshed.expires_at,
            refreshed.refresh_token,
        )
        logger.info(f"Refreshed access token for {link.kind} link {link.id}")
        return refreshed.access_token

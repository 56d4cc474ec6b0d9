"""
Link Sync Service - persistence for managed links and their imports.

Owns every read and write the sync engine makes against profile_links and
profile_link_imports. Workers and the reconciler never touch rows
directly; they go through this service and receive detached value types.

Each method runs in its own short session so that a failure on one link
or item rolls back only that operation.

Usage:
    from profilesync.core.sync.link_sync_service import link_sync_service

    links = await link_sync_service.get_managed_links("youtube", limit=50)
    outcome, import_id = await link_sync_service.upsert_import(
        link.id, "dQw4w9WgXcQ", {"title": "..."}
    )
    retired = await link_sync_service.mark_deleted_imports(link.id, active_ids)
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from profilesync.core.database.models import ProfileLink, ProfileLinkImport
from profilesync.core.errors import LinkSyncError
from profilesync.core.shared.database_service import DatabaseService, database_service
from profilesync.core.sync.types import LinkImport, ManagedLink, SyncMode, UpsertOutcome
from profilesync.core.utils.time_utils import as_utc, utcnow

logger = logging.getLogger("profilesync.services.link_sync")


def _to_managed_link(row: ProfileLink) -> ManagedLink:
    return ManagedLink(
        id=row.id,
        profile_id=row.profile_id,
        kind=row.kind,
        remote_id=row.remote_id,
        access_token=row.auth_access_token,
        access_token_expires_at=as_utc(row.auth_access_token_expires_at),
        refresh_token=row.auth_refresh_token,
        syncs_since_full_fetch=row.syncs_since_full_fetch,
    )


def _to_link_import(row: ProfileLinkImport, profile_id: Optional[UUID] = None) -> LinkImport:
    return LinkImport(
        id=row.id,
        profile_link_id=row.profile_link_id,
        remote_id=row.remote_id,
        properties=dict(row.properties or {}),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        deleted_at=as_utc(row.deleted_at),
        profile_id=profile_id,
    )


class LinkSyncService:
    """
    Service for managed link and link import persistence.

    All storage failures surface as LinkSyncError.
    """

    def __init__(self, db: Optional[DatabaseService] = None):
        self._db = db or database_service

    # =========================================================================
    # LINKS
    # =========================================================================

    async def get_managed_links(
        self,
        kind: str,
        limit: int,
        require_auth: bool = True,
    ) -> List[ManagedLink]:
        """
        Get links eligible for syncing.

        Links that were never synced come first, then the least recently
        synced, so consecutive batches rotate through all links.

        Args:
            kind: Provider kind
            limit: Maximum number of links (the worker's batch size)
            require_auth: Only return links holding an access token

        Returns:
            List of ManagedLink snapshots
        """
        query = (
            select(ProfileLink)
            .where(
                ProfileLink.kind == kind,
                ProfileLink.is_managed.is_(True),
                ProfileLink.deleted_at.is_(None),
            )
            .order_by(ProfileLink.synced_at.asc().nulls_first(), ProfileLink.created_at.asc())
            .limit(limit)
        )
        if require_auth:
            query = query.where(ProfileLink.auth_access_token.isnot(None))

        try:
            async with self._db.get_session() as session:
                result = await session.execute(query)
                return [_to_managed_link(row) for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise LinkSyncError(f"failed to list managed {kind} links") from exc

    async def update_link_tokens(
        self,
        link_id: UUID,
        access_token: str,
        expires_at: Optional[datetime],
        refresh_token: Optional[str],
    ) -> None:
        """
        Persist refreshed OAuth credentials.

        A None refresh token keeps the stored one (providers that do not
        rotate refresh tokens omit it from the refresh response).

        Raises:
            LinkSyncError: The link does not exist (or was deleted), or the write failed
        """
        values: Dict[str, Any] = {
            "auth_access_token": access_token,
            "auth_access_token_expires_at": expires_at,
            "updated_at": utcnow(),
        }
        if refresh_token is not None:
            values["auth_refresh_token"] = refresh_token

        try:
            async with self._db.get_session() as session:
                result = await session.execute(
                    update(ProfileLink)
                    .where(ProfileLink.id == link_id, ProfileLink.deleted_at.is_(None))
                    .values(**values)
                )
                updated = result.rowcount
        except SQLAlchemyError as exc:
            raise LinkSyncError(f"failed to update tokens for link {link_id}") from exc

        if not updated:
            raise LinkSyncError(f"link {link_id} not found")
        logger.debug(f"Updated OAuth tokens for link {link_id}")

    async def mark_link_synced(
        self,
        link_id: UUID,
        when: Optional[datetime] = None,
        mode: Optional[SyncMode] = None,
    ) -> None:
        """
        Stamp synced_at and advance the link's full-fetch counter.

        A FULL sync resets ``syncs_since_full_fetch`` to 0 and an INCREMENTAL
        one adds 1. Without a mode (the sync failed) the counter is left
        alone, so a pending full fetch is retried on the link's next turn.
        """
        values: Dict[str, Any] = {"synced_at": when or utcnow()}
        if mode == SyncMode.FULL:
            values["syncs_since_full_fetch"] = 0
        elif mode == SyncMode.INCREMENTAL:
            values["syncs_since_full_fetch"] = func.coalesce(ProfileLink.syncs_since_full_fetch, 0) + 1

        try:
            async with self._db.get_session() as session:
                await session.execute(
                    update(ProfileLink)
                    .where(ProfileLink.id == link_id)
                    .values(**values)
                )
        except SQLAlchemyError as exc:
            raise LinkSyncError(f"failed to mark link {link_id} synced") from exc

    async def reset_full_fetch(self, kind: str) -> int:
        """
        Clear the full-fetch counter of every link of a kind, so each link's
        next sync is a full fetch.

        Returns:
            Number of links reset
        """
        try:
            async with self._db.get_session() as session:
                result = await session.execute(
                    update(ProfileLink)
                    .where(ProfileLink.kind == kind, ProfileLink.deleted_at.is_(None))
                    .values(syncs_since_full_fetch=None)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise LinkSyncError(f"failed to reset full fetch for {kind} links") from exc

    # =========================================================================
    # IMPORTS
    # =========================================================================

    async def get_last_sync_time(self, link_id: UUID) -> Optional[datetime]:
        """
        Return created_at of the newest active import for the link.

        None means nothing has been imported yet and the caller should
        fetch the full history.
        """
        try:
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(ProfileLinkImport.created_at)
                    .where(
                        ProfileLinkImport.profile_link_id == link_id,
                        ProfileLinkImport.deleted_at.is_(None),
                    )
                    .order_by(ProfileLinkImport.created_at.desc())
                    .limit(1)
                )
                return as_utc(result.scalar_one_or_none())
        except SQLAlchemyError as exc:
            raise LinkSyncError(f"failed to read last sync time for link {link_id}") from exc

    async def upsert_import(
        self,
        link_id: UUID,
        remote_id: str,
        properties: Dict[str, Any],
    ) -> Tuple[UpsertOutcome, UUID]:
        """
        Create or update the active import for ``(link_id, remote_id)``.

        An existing active import keeps its ID and gets its properties
        replaced. Identical properties leave the row untouched. If a
        concurrent writer inserts the same pair first, the unique index
        rejects our insert and the call is retried once as an update.

        Returns:
            (outcome, import_id)
        """
        for attempt in range(2):
            try:
                async with self._db.get_session() as session:
                    existing = await self._get_active_import(session, link_id, remote_id)
                    if existing is not None:
                        if existing.properties != properties:
                            existing.properties = properties
                            existing.updated_at = utcnow()
                        return UpsertOutcome.UPDATED, existing.id

                    row = ProfileLinkImport(
                        profile_link_id=link_id,
                        remote_id=remote_id,
                        properties=properties,
                    )
                    session.add(row)
                    await session.flush()
                    return UpsertOutcome.CREATED, row.id
            except IntegrityError as exc:
                if attempt:
                    raise LinkSyncError(
                        f"failed to upsert import {remote_id} for link {link_id}"
                    ) from exc
                logger.debug(f"Concurrent insert of import {remote_id} for link {link_id}, retrying")
            except SQLAlchemyError as exc:
                raise LinkSyncError(
                    f"failed to upsert import {remote_id} for link {link_id}"
                ) from exc

        raise LinkSyncError(f"failed to upsert import {remote_id} for link {link_id}")

    async def mark_deleted_imports(self, link_id: UUID, active_remote_ids: Iterable[str]) -> int:
        """
        Soft-delete every active import whose remote_id is not in the active set.

        Rows are retained with deleted_at set. An empty active set retires
        every active import of the link; callers decide whether that is
        what they want.

        Returns:
            Number of imports retired
        """
        active = sorted(set(active_remote_ids))
        now = utcnow()
        try:
            async with self._db.get_session() as session:
                result = await session.execute(
                    update(ProfileLinkImport)
                    .where(
                        ProfileLinkImport.profile_link_id == link_id,
                        ProfileLinkImport.deleted_at.is_(None),
                        ProfileLinkImport.remote_id.notin_(active),
                    )
                    .values(deleted_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise LinkSyncError(f"failed to retire imports for link {link_id}") from exc

    async def list_active_imports(self, link_id: UUID) -> List[LinkImport]:
        try:
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(ProfileLinkImport)
                    .where(
                        ProfileLinkImport.profile_link_id == link_id,
                        ProfileLinkImport.deleted_at.is_(None),
                    )
                    .order_by(ProfileLinkImport.created_at.asc())
                )
                return [_to_link_import(row) for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise LinkSyncError(f"failed to list imports for link {link_id}") from exc

    async def list_imports_for_story_creation(self, kind: str, limit: int) -> List[LinkImport]:
        """
        Active imports of managed links that no story processor has consumed yet,
        oldest first. Each snapshot carries the owning profile_id.
        """
        try:
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(ProfileLinkImport, ProfileLink.profile_id)
                    .join(ProfileLink, ProfileLink.id == ProfileLinkImport.profile_link_id)
                    .where(
                        ProfileLink.kind == kind,
                        ProfileLink.is_managed.is_(True),
                        ProfileLink.deleted_at.is_(None),
                        ProfileLinkImport.deleted_at.is_(None),
                        ProfileLinkImport.consumed_at.is_(None),
                    )
                    .order_by(ProfileLinkImport.created_at.asc())
                    .limit(limit)
                )
                return [_to_link_import(row, profile_id) for row, profile_id in result.all()]
        except SQLAlchemyError as exc:
            raise LinkSyncError(f"failed to list {kind} imports for story creation") from exc

    async def mark_imports_consumed(self, import_ids: Iterable[UUID]) -> int:
        ids = list(import_ids)
        if not ids:
            return 0
        try:
            async with self._db.get_session() as session:
                result = await session.execute(
                    update(ProfileLinkImport)
                    .where(ProfileLinkImport.id.in_(ids), ProfileLinkImport.consumed_at.is_(None))
                    .values(consumed_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise LinkSyncError("failed to mark imports consumed") from exc

    async def _get_active_import(self, session, link_id: UUID, remote_id: str) -> Optional[ProfileLinkImport]:
        query = select(ProfileLinkImport).where(
            ProfileLinkImport.profile_link_id == link_id,
            ProfileLinkImport.remote_id == remote_id,
            ProfileLinkImport.deleted_at.is_(None),
        )
        if self._db.dialect_name == "postgresql":
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()


# Global singleton instance
link_sync_service = LinkSyncService()

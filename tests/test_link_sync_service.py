"""
Tests for LinkSyncService against a real SQLite database.
"""

from datetime import timedelta
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from profilesync.core.database.models import ProfileLink, ProfileLinkImport
from profilesync.core.errors import LinkSyncError
from profilesync.core.sync.link_sync_service import LinkSyncService
from profilesync.core.sync.types import SyncMode, UpsertOutcome
from profilesync.core.utils.time_utils import as_utc, utcnow


async def _imports_for(db, link_id):
    async with db.get_session() as session:
        result = await session.execute(
            select(ProfileLinkImport)
            .where(ProfileLinkImport.profile_link_id == link_id)
            .order_by(ProfileLinkImport.created_at)
        )
        return list(result.scalars().all())


async def _link_row(db, link_id):
    async with db.get_session() as session:
        return await session.get(ProfileLink, link_id)


class TestUpsertImport:
    """Test import creation and idempotent updates."""

    @pytest.mark.asyncio
    async def test_first_upsert_creates(self, db, make_link):
        link = await make_link()
        service = LinkSyncService(db)

        outcome, import_id = await service.upsert_import(link.id, "vid-1", {"title": "One"})

        assert outcome == UpsertOutcome.CREATED
        rows = await _imports_for(db, link.id)
        assert [r.id for r in rows] == [import_id]
        assert rows[0].properties == {"title": "One"}

    @pytest.mark.asyncio
    async def test_second_upsert_updates_same_row(self, db, make_link):
        link = await make_link()
        service = LinkSyncService(db)

        _, first_id = await service.upsert_import(link.id, "vid-1", {"title": "One"})
        outcome, second_id = await service.upsert_import(link.id, "vid-1", {"title": "One (edited)"})

        assert outcome == UpsertOutcome.UPDATED
        assert second_id == first_id
        rows = await _imports_for(db, link.id)
        assert len(rows) == 1
        assert rows[0].properties == {"title": "One (edited)"}
        assert rows[0].updated_at is not None

    @pytest.mark.asyncio
    async def test_identical_properties_do_not_write(self, db, make_link):
        link = await make_link()
        service = LinkSyncService(db)

        await service.upsert_import(link.id, "vid-1", {"title": "One"})
        outcome, _ = await service.upsert_import(link.id, "vid-1", {"title": "One"})

        assert outcome == UpsertOutcome.UPDATED
        rows = await _imports_for(db, link.id)
        assert rows[0].updated_at is None

    @pytest.mark.asyncio
    async def test_same_remote_id_on_different_links_is_independent(self, db, make_link):
        first = await make_link(remote_id="UC-a")
        second = await make_link(remote_id="UC-b")
        service = LinkSyncService(db)

        _, first_id = await service.upsert_import(first.id, "shared", {})
        _, second_id = await service.upsert_import(second.id, "shared", {})

        assert first_id != second_id

    @pytest.mark.asyncio
    async def test_storage_failure_raises_link_sync_error(self):
        broken = MagicMock()
        broken.dialect_name = "sqlite"
        broken.get_session.side_effect = OperationalError("SELECT", {}, Exception("db down"))

        with pytest.raises(LinkSyncError):
            await LinkSyncService(broken).upsert_import(uuid4(), "vid-1", {})


class TestDeletion:
    """Test soft deletion of imports missing from the active set."""

    @pytest.mark.asyncio
    async def test_missing_ids_are_retired_and_rows_kept(self, db, make_link):
        link = await make_link()
        service = LinkSyncService(db)
        for rid in ("a", "b", "c"):
            await service.upsert_import(link.id, rid, {})

        retired = await service.mark_deleted_imports(link.id, {"a", "c"})

        assert retired == 1
        rows = {r.remote_id: r for r in await _imports_for(db, link.id)}
        assert set(rows) == {"a", "b", "c"}
        assert rows["b"].deleted_at is not None
        assert rows["a"].deleted_at is None
        assert rows["c"].deleted_at is None

    @pytest.mark.asyncio
    async def test_already_deleted_rows_are_not_touched(self, db, make_link):
        link = await make_link()
        service = LinkSyncService(db)
        await service.upsert_import(link.id, "a", {})
        await service.mark_deleted_imports(link.id, {"z"})

        assert await service.mark_deleted_imports(link.id, {"z"}) == 0

    @pytest.mark.asyncio
    async def test_other_links_are_not_affected(self, db, make_link):
        first = await make_link(remote_id="UC-a")
        second = await make_link(remote_id="UC-b")
        service = LinkSyncService(db)
        await service.upsert_import(first.id, "a", {})
        await service.upsert_import(second.id, "a", {})

        await service.mark_deleted_imports(first.id, {"other"})

        assert len(await service.list_active_imports(second.id)) == 1
        assert await service.list_active_imports(first.id) == []

    @pytest.mark.asyncio
    async def test_reappearing_item_gets_new_row(self, db, make_link):
        link = await make_link()
        service = LinkSyncService(db)
        _, old_id = await service.upsert_import(link.id, "a", {"v": 1})
        await service.mark_deleted_imports(link.id, {"b"})

        outcome, new_id = await service.upsert_import(link.id, "a", {"v": 2})

        assert outcome == UpsertOutcome.CREATED
        assert new_id != old_id
        rows = await _imports_for(db, link.id)
        assert len(rows) == 2
        active = await service.list_active_imports(link.id)
        assert [i.id for i in active] == [new_id]


class TestLastSyncTime:
    @pytest.mark.asyncio
    async def test_none_without_imports(self, db, make_link):
        link = await make_link()

        assert await LinkSyncService(db).get_last_sync_time(link.id) is None

    @pytest.mark.asyncio
    async def test_newest_active_import(self, db, make_link):
        link = await make_link()
        service = LinkSyncService(db)
        await service.upsert_import(link.id, "a", {})
        await service.upsert_import(link.id, "b", {})

        rows = await _imports_for(db, link.id)
        newest = max(as_utc(r.created_at) for r in rows)

        assert await service.get_last_sync_time(link.id) == newest

    @pytest.mark.asyncio
    async def test_deleted_imports_are_ignored(self, db, make_link):
        link = await make_link()
        service = LinkSyncService(db)
        await service.upsert_import(link.id, "a", {})
        await service.mark_deleted_imports(link.id, {"z"})

        assert await service.get_last_sync_time(link.id) is None


class TestManagedLinks:
    """Test link selection for a worker batch."""

    @pytest.mark.asyncio
    async def test_filters_kind_managed_deleted_and_token(self, db, make_link):
        wanted = await make_link(kind="youtube", remote_id="UC-ok")
        await make_link(kind="github", remote_id="octocat")
        await make_link(kind="youtube", remote_id="UC-unmanaged", is_managed=False)
        await make_link(kind="youtube", remote_id="UC-deleted", deleted_at=utcnow())
        await make_link(kind="youtube", remote_id="UC-no-token", access_token=None)

        links = await LinkSyncService(db).get_managed_links("youtube", limit=10)

        assert [l.id for l in links] == [wanted.id]
        assert links[0].access_token == "access-token"
        assert links[0].refresh_token == "refresh-token"

    @pytest.mark.asyncio
    async def test_require_auth_false_includes_tokenless_links(self, db, make_link):
        public = await make_link(kind="speakerdeck", remote_id="alice", access_token=None, refresh_token=None)

        links = await LinkSyncService(db).get_managed_links("speakerdeck", limit=10, require_auth=False)

        assert [l.id for l in links] == [public.id]

    @pytest.mark.asyncio
    async def test_never_synced_first_then_least_recently_synced(self, db, make_link):
        now = utcnow()
        recent = await make_link(remote_id="UC-recent", synced_at=now - timedelta(minutes=5))
        stale = await make_link(remote_id="UC-stale", synced_at=now - timedelta(days=2))
        fresh = await make_link(remote_id="UC-new")

        links = await LinkSyncService(db).get_managed_links("youtube", limit=10)

        assert [l.id for l in links] == [fresh.id, stale.id, recent.id]

    @pytest.mark.asyncio
    async def test_limit(self, db, make_link):
        for i in range(5):
            await make_link(remote_id=f"UC-{i}")

        links = await LinkSyncService(db).get_managed_links("youtube", limit=3)

        assert len(links) == 3

    @pytest.mark.asyncio
    async def test_mark_link_synced_rotates_batch(self, db, make_link):
        first = await make_link(remote_id="UC-1")
        second = await make_link(remote_id="UC-2")
        service = LinkSyncService(db)

        await service.mark_link_synced(first.id)
        links = await service.get_managed_links("youtube", limit=1)

        assert [l.id for l in links] == [second.id]
        row = await _link_row(db, first.id)
        assert row.synced_at is not None


class TestFullFetchCounter:
    """Test the per-link count of syncs since the last full fetch."""

    @pytest.mark.asyncio
    async def test_full_sync_resets_and_incremental_advances(self, db, make_link):
        link = await make_link()
        service = LinkSyncService(db)
        assert (await _link_row(db, link.id)).syncs_since_full_fetch is None

        await service.mark_link_synced(link.id, mode=SyncMode.FULL)
        assert (await _link_row(db, link.id)).syncs_since_full_fetch == 0

        await service.mark_link_synced(link.id, mode=SyncMode.INCREMENTAL)
        await service.mark_link_synced(link.id, mode=SyncMode.INCREMENTAL)
        assert (await _link_row(db, link.id)).syncs_since_full_fetch == 2

        await service.mark_link_synced(link.id, mode=SyncMode.FULL)
        assert (await _link_row(db, link.id)).syncs_since_full_fetch == 0

    @pytest.mark.asyncio
    async def test_failed_sync_leaves_counter_alone(self, db, make_link):
        link = await make_link(syncs_since_full_fetch=2)

        await LinkSyncService(db).mark_link_synced(link.id)

        row = await _link_row(db, link.id)
        assert row.syncs_since_full_fetch == 2
        assert row.synced_at is not None

    @pytest.mark.asyncio
    async def test_managed_links_carry_counter(self, db, make_link):
        await make_link(remote_id="UC-counted", syncs_since_full_fetch=3)

        links = await LinkSyncService(db).get_managed_links("youtube", limit=10)

        assert [l.syncs_since_full_fetch for l in links] == [3]

    @pytest.mark.asyncio
    async def test_reset_full_fetch_only_touches_kind(self, db, make_link):
        first = await make_link(kind="youtube", remote_id="UC-a", syncs_since_full_fetch=1)
        second = await make_link(kind="youtube", remote_id="UC-b", syncs_since_full_fetch=0)
        gone = await make_link(kind="youtube", remote_id="UC-gone", syncs_since_full_fetch=2, deleted_at=utcnow())
        other = await make_link(kind="github", remote_id="octocat", syncs_since_full_fetch=2)

        assert await LinkSyncService(db).reset_full_fetch("youtube") == 2

        assert (await _link_row(db, first.id)).syncs_since_full_fetch is None
        assert (await _link_row(db, second.id)).syncs_since_full_fetch is None
        assert (await _link_row(db, gone.id)).syncs_since_full_fetch == 2
        assert (await _link_row(db, other.id)).syncs_since_full_fetch == 2


class TestTokens:
    """Test persisting refreshed OAuth credentials."""

    @pytest.mark.asyncio
    async def test_update_tokens(self, db, make_link):
        link = await make_link()
        expires = utcnow() + timedelta(hours=1)

        await LinkSyncService(db).update_link_tokens(link.id, "new-access", expires, "new-refresh")

        row = await _link_row(db, link.id)
        assert row.auth_access_token == "new-access"
        assert row.auth_refresh_token == "new-refresh"
        assert as_utc(row.auth_access_token_expires_at) == expires

    @pytest.mark.asyncio
    async def test_missing_refresh_token_keeps_stored_one(self, db, make_link):
        link = await make_link(refresh_token="keep-me")

        await LinkSyncService(db).update_link_tokens(link.id, "new-access", None, None)

        row = await _link_row(db, link.id)
        assert row.auth_access_token == "new-access"
        assert row.auth_refresh_token == "keep-me"

    @pytest.mark.asyncio
    async def test_unknown_link_raises(self, db):
        with pytest.raises(LinkSyncError, match="not found"):
            await LinkSyncService(db).update_link_tokens(uuid4(), "a", None, None)


class TestStoryCreationQueue:
    """Test the hand-off of imports to story processors."""

    @pytest.mark.asyncio
    async def test_lists_unconsumed_active_imports_of_kind(self, db, make_link):
        youtube = await make_link(kind="youtube", remote_id="UC-a")
        github = await make_link(kind="github", remote_id="octocat")
        service = LinkSyncService(db)
        _, first = await service.upsert_import(youtube.id, "v1", {})
        _, second = await service.upsert_import(youtube.id, "v2", {})
        await service.upsert_import(youtube.id, "gone", {})
        await service.mark_deleted_imports(youtube.id, {"v1", "v2"})
        await service.upsert_import(github.id, "repo", {})

        pending = await service.list_imports_for_story_creation("youtube", limit=10)

        assert [i.id for i in pending] == [first, second]
        assert {i.profile_id for i in pending} == {youtube.profile_id}

    @pytest.mark.asyncio
    async def test_consumed_imports_are_not_listed_again(self, db, make_link):
        link = await make_link()
        service = LinkSyncService(db)
        _, first = await service.upsert_import(link.id, "v1", {})
        _, second = await service.upsert_import(link.id, "v2", {})

        assert await service.mark_imports_consumed([first]) == 1
        assert await service.mark_imports_consumed([first]) == 0

        pending = await service.list_imports_for_story_creation("youtube", limit=10)
        assert [i.id for i in pending] == [second]

    @pytest.mark.asyncio
    async def test_mark_consumed_with_no_ids(self, db):
        assert await LinkSyncService(db).mark_imports_consumed([]) == 0

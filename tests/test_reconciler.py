"""
Tests for LinkReconciler.

Uses a real SQLite-backed LinkSyncService and the in-memory FakeFetcher.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from profilesync.core.database.models import ProfileLink
from profilesync.core.errors import (
    AuthenticationError,
    LinkSyncError,
    ProviderError,
    TokenRefreshError,
)
from profilesync.core.sync.link_sync_service import LinkSyncService
from profilesync.core.sync.reconciler import LinkReconciler
from profilesync.core.sync.types import SyncMode
from profilesync.core.utils.time_utils import as_utc, utcnow


class FlakyLinkSyncService(LinkSyncService):
    """LinkSyncService whose upsert fails for chosen remote IDs."""

    def __init__(self, db, failing_ids):
        super().__init__(db)
        self.failing_ids = set(failing_ids)

    async def upsert_import(self, link_id, remote_id, properties):
        if remote_id in self.failing_ids:
            raise LinkSyncError(f"failed to upsert import {remote_id}")
        return await super().upsert_import(link_id, remote_id, properties)


async def _link_row(db, link_id):
    async with db.get_session() as session:
        result = await session.execute(select(ProfileLink).where(ProfileLink.id == link_id))
        return result.scalar_one()


@pytest.fixture
def link_sync(db):
    return LinkSyncService(db)


@pytest.fixture
def reconciler(fake_fetcher, worker_config, link_sync):
    return LinkReconciler(fake_fetcher, worker_config, link_sync)


class TestDiff:
    """Test add/update/delete against recorded imports."""

    @pytest.mark.asyncio
    async def test_first_sync_adds_everything(self, reconciler, fake_fetcher, make_link):
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a", "b", "c"])

        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert (result.added, result.updated, result.deleted, result.failed) == (3, 0, 0, 0)
        assert result.ok
        assert result.complete

    @pytest.mark.asyncio
    async def test_full_sync_applies_diff(self, reconciler, fake_fetcher, link_sync, make_link):
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a", "b", "c"])
        await reconciler.reconcile_link(link, SyncMode.FULL)
        before = {i.remote_id: i.id for i in await link_sync.list_active_imports(link.id)}

        fake_fetcher.set_items("UC-main", ["a", "c", "d"])
        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert (result.added, result.updated, result.deleted) == (1, 2, 1)
        after = {i.remote_id: i.id for i in await link_sync.list_active_imports(link.id)}
        assert set(after) == {"a", "c", "d"}
        assert after["a"] == before["a"]
        assert after["c"] == before["c"]

    @pytest.mark.asyncio
    async def test_duplicate_remote_ids_in_one_fetch_count_once(self, reconciler, fake_fetcher, make_link):
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a", "a", "b"])

        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert (result.added, result.updated) == (2, 0)

    @pytest.mark.asyncio
    async def test_empty_complete_fetch_retires_nothing(
        self, reconciler, fake_fetcher, link_sync, make_link
    ):
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a", "b"])
        await reconciler.reconcile_link(link, SyncMode.FULL)

        fake_fetcher.set_items("UC-main", [])
        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert result.deleted == 0
        assert len(await link_sync.list_active_imports(link.id)) == 2

    @pytest.mark.asyncio
    async def test_truncated_fetch_skips_deletion(
        self, fake_fetcher, worker_config, link_sync, make_link
    ):
        reconciler = LinkReconciler(fake_fetcher, replace(worker_config, max_items=2), link_sync)
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a", "b"])
        await reconciler.reconcile_link(link, SyncMode.FULL)
        await link_sync.upsert_import(link.id, "older", {})

        fake_fetcher.set_items("UC-main", ["a", "b"])
        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert result.complete is False
        assert result.deleted == 0
        assert len(await link_sync.list_active_imports(link.id)) == 3

    @pytest.mark.asyncio
    async def test_max_items_is_passed_to_fetcher(self, reconciler, fake_fetcher, make_link):
        link = await make_link()

        await reconciler.reconcile_link(link, SyncMode.FULL)

        assert fake_fetcher.calls[0]["max_items"] == 50
        assert fake_fetcher.calls[0]["remote_id"] == "UC-main"
        assert fake_fetcher.calls[0]["access_token"] == "access-token"


class TestFetchWindow:
    """Test incremental versus full fetch windows."""

    @pytest.mark.asyncio
    async def test_incremental_passes_newest_import_time(
        self, reconciler, fake_fetcher, link_sync, make_link
    ):
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a", "b"])
        await reconciler.reconcile_link(link, SyncMode.FULL)
        newest = await link_sync.get_last_sync_time(link.id)

        fake_fetcher.set_items("UC-main", ["c"])
        result = await reconciler.reconcile_link(link, SyncMode.INCREMENTAL)

        assert fake_fetcher.calls[-1]["since"] == newest
        assert result.added == 1
        assert result.complete is False
        assert result.deleted == 0
        assert len(await link_sync.list_active_imports(link.id)) == 3

    @pytest.mark.asyncio
    async def test_incremental_without_imports_fetches_everything(
        self, reconciler, fake_fetcher, make_link
    ):
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a"])

        result = await reconciler.reconcile_link(link, SyncMode.INCREMENTAL)

        assert fake_fetcher.calls[0]["since"] is None
        assert result.complete is True

    @pytest.mark.asyncio
    async def test_full_mode_ignores_history(self, reconciler, fake_fetcher, make_link):
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a"])
        await reconciler.reconcile_link(link, SyncMode.FULL)

        await reconciler.reconcile_link(link, SyncMode.FULL)

        assert fake_fetcher.calls[-1]["since"] is None

    @pytest.mark.asyncio
    async def test_non_incremental_fetcher_always_fetches_everything(
        self, reconciler, fake_fetcher, link_sync, make_link
    ):
        fake_fetcher.supports_incremental = False
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a", "b"])
        await reconciler.reconcile_link(link, SyncMode.FULL)

        fake_fetcher.set_items("UC-main", ["a"])
        result = await reconciler.reconcile_link(link, SyncMode.INCREMENTAL)

        assert fake_fetcher.calls[-1]["since"] is None
        assert result.deleted == 1


class TestSelectMode:
    """Test the per-link choice between full and incremental fetches."""

    @pytest.mark.parametrize(
        "counter, expected",
        [
            (None, SyncMode.FULL),
            (0, SyncMode.INCREMENTAL),
            (2, SyncMode.INCREMENTAL),
            (3, SyncMode.FULL),
            (7, SyncMode.FULL),
        ],
    )
    @pytest.mark.asyncio
    async def test_counter_against_full_fetch_every(self, reconciler, make_link, counter, expected):
        link = await make_link(syncs_since_full_fetch=counter)

        assert reconciler.select_mode(link) == expected

    @pytest.mark.asyncio
    async def test_non_incremental_fetcher_is_always_full(self, reconciler, fake_fetcher, make_link):
        fake_fetcher.supports_incremental = False
        link = await make_link(syncs_since_full_fetch=0)

        assert reconciler.select_mode(link) == SyncMode.FULL

    @pytest.mark.asyncio
    async def test_full_fetch_every_one_is_always_full(
        self, fake_fetcher, worker_config, link_sync, make_link
    ):
        reconciler = LinkReconciler(fake_fetcher, replace(worker_config, full_fetch_every=1), link_sync)
        link = await make_link(syncs_since_full_fetch=0)

        assert reconciler.select_mode(link) == SyncMode.FULL

    @pytest.mark.asyncio
    async def test_result_mode_and_counter_follow_the_fetch_window(
        self, db, reconciler, fake_fetcher, make_link
    ):
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a"])

        first = await reconciler.reconcile_link(link)
        assert first.mode == SyncMode.FULL
        assert (await _link_row(db, link.id)).syncs_since_full_fetch == 0

        link = replace(link, syncs_since_full_fetch=0)
        second = await reconciler.reconcile_link(link)
        assert second.mode == SyncMode.INCREMENTAL
        assert fake_fetcher.calls[-1]["since"] is not None
        assert (await _link_row(db, link.id)).syncs_since_full_fetch == 1

    @pytest.mark.asyncio
    async def test_incremental_without_history_counts_as_full(self, db, reconciler, fake_fetcher, make_link):
        link = await make_link(syncs_since_full_fetch=0)
        fake_fetcher.set_items("UC-main", ["a"])

        result = await reconciler.reconcile_link(link, SyncMode.INCREMENTAL)

        assert result.mode == SyncMode.FULL
        assert (await _link_row(db, link.id)).syncs_since_full_fetch == 0


class TestTokenRefresh:
    """Test proactive and reactive OAuth token refresh."""

    @pytest.mark.asyncio
    async def test_auth_failure_refreshes_once_and_retries(
        self, db, reconciler, fake_fetcher, make_link
    ):
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a"])
        fake_fetcher.errors = [AuthenticationError("expired", status_code=401)]

        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert result.ok
        assert result.token_refreshed
        assert result.added == 1
        assert fake_fetcher.refresh_calls == ["refresh-token"]
        assert [c["access_token"] for c in fake_fetcher.calls] == ["access-token", "fresh-1"]

        row = await _link_row(db, link.id)
        assert row.auth_access_token == "fresh-1"
        assert row.auth_refresh_token == "rotated-refresh"

    @pytest.mark.asyncio
    async def test_second_auth_failure_is_a_link_error(self, reconciler, fake_fetcher, make_link):
        link = await make_link()
        fake_fetcher.errors = [
            AuthenticationError("expired", status_code=401),
            AuthenticationError("still expired", status_code=401),
        ]

        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert not result.ok
        assert "still expired" in result.error
        assert len(fake_fetcher.refresh_calls) == 1

    @pytest.mark.asyncio
    async def test_auth_failure_without_refresh_token_is_a_link_error(
        self, reconciler, fake_fetcher, make_link
    ):
        link = await make_link(refresh_token=None)
        fake_fetcher.errors = [AuthenticationError("expired", status_code=401)]

        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert not result.ok
        assert fake_fetcher.refresh_calls == []

    @pytest.mark.asyncio
    async def test_refresh_failure_is_a_link_error(self, reconciler, fake_fetcher, make_link):
        link = await make_link()
        fake_fetcher.errors = [AuthenticationError("expired", status_code=401)]
        fake_fetcher.refresh_error = TokenRefreshError("invalid_grant", status_code=400)

        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert not result.ok
        assert "invalid_grant" in result.error

    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed_before_fetch(
        self, reconciler, fake_fetcher, make_link
    ):
        link = await make_link(expires_at=utcnow() + timedelta(seconds=60))

        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert result.token_refreshed
        assert fake_fetcher.calls[0]["access_token"] == "fresh-1"

    @pytest.mark.asyncio
    async def test_proactive_refresh_is_not_repeated_on_auth_failure(
        self, reconciler, fake_fetcher, make_link
    ):
        link = await make_link(expires_at=utcnow() + timedelta(seconds=60))
        fake_fetcher.errors = [AuthenticationError("expired", status_code=401)]

        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert not result.ok
        assert len(fake_fetcher.refresh_calls) == 1

    @pytest.mark.asyncio
    async def test_valid_token_is_not_refreshed(self, reconciler, fake_fetcher, make_link):
        link = await make_link(expires_at=utcnow() + timedelta(hours=2))

        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert not result.token_refreshed
        assert fake_fetcher.refresh_calls == []


class TestFailureIsolation:
    """Test that failures stay within one item or one link."""

    @pytest.mark.asyncio
    async def test_failed_upsert_is_counted_and_not_retired(
        self, db, fake_fetcher, worker_config, make_link
    ):
        link = await make_link()
        fake_fetcher.set_items("UC-main", ["a", "b", "c"])
        await LinkReconciler(fake_fetcher, worker_config, LinkSyncService(db)).reconcile_link(
            link, SyncMode.FULL
        )

        flaky = FlakyLinkSyncService(db, failing_ids={"b"})
        result = await LinkReconciler(fake_fetcher, worker_config, flaky).reconcile_link(
            link, SyncMode.FULL
        )

        assert result.ok
        assert (result.updated, result.failed, result.deleted) == (2, 1, 0)
        active = {i.remote_id for i in await flaky.list_active_imports(link.id)}
        assert active == {"a", "b", "c"}

    @pytest.mark.asyncio
    async def test_one_failing_link_does_not_stop_the_batch(
        self, reconciler, fake_fetcher, make_link
    ):
        broken = await make_link(remote_id="UC-broken")
        healthy = await make_link(remote_id="UC-healthy")
        fake_fetcher.errors_by_account["UC-broken"] = ProviderError("HTTP 500", status_code=500)
        fake_fetcher.set_items("UC-healthy", ["a"])

        results = await reconciler.reconcile([broken, healthy], SyncMode.FULL)

        assert [r.link_id for r in results] == [broken.id, healthy.id]
        assert not results[0].ok
        assert results[1].ok
        assert results[1].added == 1


class TestSyncedAt:
    @pytest.mark.asyncio
    async def test_synced_at_is_stamped_on_success(
        self, db, fake_fetcher, worker_config, link_sync, make_link
    ):
        now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        reconciler = LinkReconciler(fake_fetcher, worker_config, link_sync, clock=lambda: now)
        link = await make_link()

        await reconciler.reconcile_link(link, SyncMode.FULL)

        assert as_utc((await _link_row(db, link.id)).synced_at) == now

    @pytest.mark.asyncio
    async def test_synced_at_is_stamped_on_failure(
        self, db, fake_fetcher, worker_config, link_sync, make_link
    ):
        now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        reconciler = LinkReconciler(fake_fetcher, worker_config, link_sync, clock=lambda: now)
        link = await make_link()
        fake_fetcher.errors = [ProviderError("HTTP 502", status_code=502)]

        result = await reconciler.reconcile_link(link, SyncMode.FULL)

        assert not result.ok
        assert as_utc((await _link_row(db, link.id)).synced_at) == now
        assert (await _link_row(db, link.id)).syncs_since_full_fetch is None

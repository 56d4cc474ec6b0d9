import os
import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional
from uuid import uuid4

# Configure the environment before importing profilesync modules: the
# settings and database singletons read it at import time.
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="profilesync_pytest_"))

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_SESSION_DIR / 'profilesync.db'}"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"

import pytest
import pytest_asyncio

from profilesync.config import WorkerConfig
from profilesync.connectors.base import RemoteItemFetcher
from profilesync.core.database.models import ProfileLink
from profilesync.core.errors import TokenRefreshError
from profilesync.core.shared.database_service import DatabaseService
from profilesync.core.sync.types import ManagedLink, RemoteItem, TokenRefreshResult
from profilesync.core.utils.time_utils import as_utc, utcnow


def pytest_sessionfinish(session, exitstatus):
    """Cleanup temporary databases after the test session."""
    shutil.rmtree(_SESSION_DIR, ignore_errors=True)


class FakeFetcher(RemoteItemFetcher):
    """
    In-memory fetcher.

    ``items`` maps remote account ID -> items returned for it. ``errors`` is a
    queue consumed one entry per fetch call (None means "no error this call").
    """

    kind = "youtube"
    supports_incremental = True

    def __init__(self):
        super().__init__("https://provider.invalid")
        self.items: Dict[str, List[RemoteItem]] = {}
        self.errors: List[Optional[Exception]] = []
        self.errors_by_account: Dict[str, Exception] = {}
        self.calls: List[Dict] = []
        self.refresh_calls: List[str] = []
        self.refresh_error: Optional[Exception] = None
        self.refreshed_expires_at = utcnow() + timedelta(hours=1)

    def set_items(self, account: str, remote_ids: List[str], **properties) -> None:
        self.items[account] = [
            RemoteItem(remote_id=rid, properties={"title": rid.upper(), **properties}) for rid in remote_ids
        ]

    async def fetch_remote_items(self, access_token, remote_id, since, max_items):
        self.calls.append(
            {"access_token": access_token, "remote_id": remote_id, "since": since, "max_items": max_items}
        )
        if remote_id in self.errors_by_account:
            raise self.errors_by_account[remote_id]
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        return list(self.items.get(remote_id, []))

    async def refresh_access_token(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenRefreshResult(
            access_token=f"fresh-{len(self.refresh_calls)}",
            expires_at=self.refreshed_expires_at,
            refresh_token="rotated-refresh",
        )


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def worker_config():
    return WorkerConfig(
        enabled=True,
        check_interval=60,
        full_sync_interval=3600,
        batch_size=10,
        full_fetch_every=4,
        max_items=50,
        token_refresh_buffer=300,
    )


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh SQLite database per test."""
    service = DatabaseService(f"sqlite+aiosqlite:///{tmp_path / 'profilesync.db'}")
    await service.init_db()
    yield service
    await service.close()


@pytest.fixture
def make_link(db):
    """Insert a managed ProfileLink and return its ManagedLink snapshot."""

    async def _make(
        kind: str = "youtube",
        remote_id: str = "UC-main",
        access_token: Optional[str] = "access-token",
        refresh_token: Optional[str] = "refresh-token",
        expires_at: Optional[datetime] = None,
        **overrides,
    ) -> ManagedLink:
        row = ProfileLink(
            profile_id=overrides.pop("profile_id", uuid4()),
            kind=kind,
            remote_id=remote_id,
            is_managed=overrides.pop("is_managed", True),
            auth_access_token=access_token,
            auth_refresh_token=refresh_token,
            auth_access_token_expires_at=expires_at,
            **overrides,
        )
        async with db.get_session() as session:
            session.add(row)

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

    return _make

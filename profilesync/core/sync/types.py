"""
Value types shared by the link sync service, the reconciler and the
provider fetchers.

These are plain dataclasses detached from the ORM so that workers never
hold live rows across provider calls.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID


@dataclass(frozen=True)
class ManagedLink:
    """Snapshot of a profile link eligible for syncing."""

    id: UUID
    profile_id: UUID
    kind: str
    remote_id: Optional[str]
    access_token: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None
    syncs_since_full_fetch: Optional[int] = None

    def token_expires_within(self, now: datetime, seconds: int) -> bool:
        if self.access_token_expires_at is None:
            return False
        return (self.access_token_expires_at - now).total_seconds() <= seconds


@dataclass(frozen=True)
class LinkImport:
    """Snapshot of one recorded remote item."""

    id: UUID
    profile_link_id: UUID
    remote_id: str
    properties: Dict[str, Any]
    created_at: datetime
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    profile_id: Optional[UUID] = None


@dataclass(frozen=True)
class RemoteItem:
    """One item returned by a provider fetcher."""

    remote_id: str
    properties: Dict[str, Any]


@dataclass(frozen=True)
class TokenRefreshResult:
    access_token: str
    expires_at: Optional[datetime]
    refresh_token: Optional[str]


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


class SyncMode(str, Enum):
    """Whether a cycle asks fetchers for everything or only recent changes."""

    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass
class SyncResult:
    """
    Per-link outcome of one cycle. Not persisted.

    ``mode`` is the fetch window used for the link (None if the link failed
    before fetching). ``complete`` records whether the fetch enumerated the
    full active set, i.e. whether deletion detection ran for this link.
    """

    link_id: UUID
    profile_id: UUID
    mode: Optional[SyncMode] = None
    added: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    complete: bool = False
    token_refreshed: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "link_id": str(self.link_id),
            "profile_id": str(self.profile_id),
            "mode": self.mode.value if self.mode else None,
            "added": self.added,
            "updated": self.updated,
            "deleted": self.deleted,
            "failed": self.failed,
            "complete": self.complete,
            "token_refreshed": self.token_refreshed,
            "error": self.error,
        }


@dataclass
class SyncTotals:
    """Aggregate of SyncResults for one cycle."""

    links: int = 0
    links_failed: int = 0
    full_fetches: int = 0
    added: int = 0
    updated: int = 0
    deleted: int = 0

    @classmethod
    def from_results(cls, results: List[SyncResult]) -> "SyncTotals":
        totals = cls()
        for result in results:
            totals.links += 1
            if not result.ok:
                totals.links_failed += 1
            if result.mode == SyncMode.FULL:
                totals.full_fetches += 1
            totals.added += result.added
            totals.updated += result.updated
            totals.deleted += result.deleted
        return totals

    def to_dict(self) -> Dict[str, int]:
        return {
            "links": self.links,
            "links_failed": self.links_failed,
            "full_fetches": self.full_fetches,
            "added": self.added,
            "updated": self.updated,
            "deleted": self.deleted,
        }


@dataclass(frozen=True)
class StoryDraft:
    """Draft story built from one import, ready to be stored."""

    profile_id: UUID
    import_id: UUID
    kind: str
    slug: str
    title: str
    summary: Optional[str] = None
    content: Optional[str] = None
    picture_uri: Optional[str] = None
    published_at: Optional[datetime] = None
    properties: Dict[str, Any] = field(default_factory=dict)


__all__ = [
    "ManagedLink",
    "LinkImport",
    "RemoteItem",
    "TokenRefreshResult",
    "UpsertOutcome",
    "SyncMode",
    "SyncResult",
    "SyncTotals",
    "StoryDraft",
]

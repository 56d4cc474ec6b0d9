"""Link sync persistence and reconciliation."""

from .types import (
    LinkImport,
    ManagedLink,
    RemoteItem,
    SyncMode,
    SyncResult,
    SyncTotals,
    TokenRefreshResult,
    UpsertOutcome,
)

__all__ = [
    "LinkImport",
    "ManagedLink",
    "RemoteItem",
    "SyncMode",
    "SyncResult",
    "SyncTotals",
    "TokenRefreshResult",
    "UpsertOutcome",
]

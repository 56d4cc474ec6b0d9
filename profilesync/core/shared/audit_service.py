"""
Audit Service for sync activity.

Writes AuditLog rows for notable sync events. Recording is best-effort:
failures are logged and swallowed so the audit trail can never affect the
sync cycle that produced the event.

Usage:
    from profilesync.core.shared.audit_service import audit_service

    await audit_service.record(
        event_type="link_sync.link_failed",
        entity_type="profile_link",
        entity_id=str(link.id),
        payload={"worker": "youtube-sync", "error": "quota exceeded"},
    )
"""

import logging
from typing import Any, Dict, Optional

from profilesync.core.database.models import AuditLog
from profilesync.core.shared.database_service import DatabaseService, database_service

logger = logging.getLogger("profilesync.services.audit")


class AuditService:
    """Best-effort audit sink backed by the audit_logs table."""

    def __init__(self, db: Optional[DatabaseService] = None):
        self._db = db or database_service

    async def record(
        self,
        event_type: str,
        entity_type: str,
        entity_id: str,
        payload: Optional[Dict[str, Any]] = None,
        actor_kind: str = "worker",
        actor_id: Optional[str] = None,
    ) -> None:
        """
        Record an audit event.

        Fire-and-forget - never raises.
        """
        try:
            async with self._db.get_session() as session:
                session.add(
                    AuditLog(
                        event_type=event_type,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        actor_kind=actor_kind,
                        actor_id=actor_id,
                        payload=payload,
                    )
                )
        except Exception as e:
            logger.warning(f"Failed to record audit event {event_type} for {entity_type}/{entity_id}: {e}")


# Global singleton instance
audit_service = AuditService()

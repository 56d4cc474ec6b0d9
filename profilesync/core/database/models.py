# profilesync/core/database/models.py
"""
SQLAlchemy ORM models for profile link synchronization.

Models:
    - ProfileLink: A profile's connection to one external account
    - ProfileLinkImport: One remote item observed for a profile link
    - RuntimeState: Cross-instance key/value coordination entries
    - AuditLog: Best-effort audit trail of sync activity
    - Story: Draft story created from an import by a story processor

Link and import rows are never hard-deleted by the sync engine; removal
is recorded through ``deleted_at``.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    TypeDecorator,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import relationship

from profilesync.core.utils.time_utils import utcnow

from .base import Base


# UUID type that works with both SQLite and PostgreSQL
class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise uses String(36).
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


# JSONB on PostgreSQL (queryable), plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ProfileLink(Base):
    """
    A profile's connection to one external account.

    Owned by the profile. The sync engine only reads links and rewrites
    their OAuth credentials and ``synced_at`` marker.

    Attributes:
        id: Unique link identifier
        profile_id: Owning profile
        kind: Provider kind (youtube, github, speakerdeck)
        remote_id: Account identifier at the provider (channel, owner, user)
        is_managed: Whether the platform imports content from this link
        auth_access_token: OAuth access token (None for public providers)
        auth_access_token_expires_at: Access token expiry
        auth_refresh_token: OAuth refresh token
        synced_at: Last time a sync cycle processed this link
        syncs_since_full_fetch: Incremental syncs since the last full fetch
            (None until the first successful full fetch)
    """

    __tablename__ = "profile_links"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    profile_id = Column(UUID(), nullable=False, index=True)
    kind = Column(String(50), nullable=False, index=True)
    remote_id = Column(String(255), nullable=True)
    is_managed = Column(Boolean, nullable=False, default=False)

    # OAuth credentials
    auth_access_token = Column(Text, nullable=True)
    auth_access_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    auth_refresh_token = Column(Text, nullable=True)

    synced_at = Column(DateTime(timezone=True), nullable=True)
    syncs_since_full_fetch = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    imports = relationship("ProfileLinkImport", back_populates="profile_link")

    __table_args__ = (
        Index("ix_profile_links_kind_managed", "kind", "is_managed"),
    )

    def __repr__(self) -> str:
        return f"<ProfileLink(id={self.id}, kind={self.kind}, remote_id={self.remote_id})>"


class ProfileLinkImport(Base):
    """
    One remote item (repository, video, deck) observed for a profile link.

    A ``(profile_link_id, remote_id)`` pair identifies at most one active
    row; the partial unique index enforces it in the database. Properties
    hold the provider snapshot and are replaced wholesale on update.
    """

    __tablename__ = "profile_link_imports"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    profile_link_id = Column(
        UUID(), ForeignKey("profile_links.id", ondelete="CASCADE"), nullable=False, index=True
    )
    remote_id = Column(String(255), nullable=False)
    properties = Column(JSONType, nullable=False, default=dict)
    # Set once a story processor has turned this import into a draft
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    profile_link = relationship("ProfileLink", back_populates="imports")

    __table_args__ = (
        Index(
            "uq_profile_link_imports_active_remote",
            "profile_link_id",
            "remote_id",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("ix_profile_link_imports_link_created", "profile_link_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProfileLinkImport(id={self.id}, link={self.profile_link_id}, "
            f"remote_id={self.remote_id}, deleted={self.deleted_at is not None})>"
        )


class RuntimeState(Base):
    """
    Named value used for cross-instance coordination and admin overrides.

    Examples:
        youtube.sync_worker.next_run_at = 2026-10-18T12:00:00+00:00
        worker.youtube-sync.disabled = true
    """

    __tablename__ = "runtime_states"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<RuntimeState(key={self.key}, value={self.value})>"


class AuditLog(Base):
    """
    Audit trail for sync activity.

    Attributes:
        id: Unique log entry identifier
        event_type: Event name (link_sync.cycle_completed, link_sync.link_failed, ...)
        entity_type: Type of entity affected (worker, profile_link, ...)
        entity_id: Identifier of the affected entity
        actor_kind: Who triggered the event (worker, system, user)
        actor_id: Actor identifier, if any
        payload: Event details
        created_at: Timestamp when the event was recorded
    """

    __tablename__ = "audit_logs"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    event_type = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(255), nullable=False)
    actor_kind = Column(String(20), nullable=False)
    actor_id = Column(String(255), nullable=True)
    payload = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, event_type={self.event_type})>"


class Story(Base):
    """
    Draft story created from one link import.

    ``profile_link_import_id`` is unique, so replaying an import that was
    already turned into a story never creates a second draft.

    Attributes:
        id: Unique story identifier
        profile_id: Owning profile
        profile_link_import_id: Import the story was created from
        kind: Story kind (video, presentation)
        slug: URL slug (publication date + title)
        title: Story title
        summary: Short summary (truncated description)
        content: Markdown/MDX body with the embed and description
        picture_uri: Cover picture, if the provider has one
        published_at: Publication date at the provider
        status: Workflow status, always "draft" when created here
        properties: Provenance (managed_by, remote_id)
    """

    __tablename__ = "stories"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    profile_id = Column(UUID(), nullable=False, index=True)
    profile_link_import_id = Column(
        UUID(), ForeignKey("profile_link_imports.id", ondelete="SET NULL"), nullable=True, unique=True
    )
    kind = Column(String(50), nullable=False)
    slug = Column(String(255), nullable=False)
    title = Column(String(500), nullable=False)
    summary = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    picture_uri = Column(Text, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default="draft")
    properties = Column(JSONType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Story(id={self.id}, kind={self.kind}, slug={self.slug}, status={self.status})>"

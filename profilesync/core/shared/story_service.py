"""
Story Service - stores draft stories created from link imports.

A story is keyed by the import it came from, so creating the draft for an
import that already has one returns the existing story instead of adding
a duplicate. That keeps story processing safe to replay after a crash
between "story created" and "import marked consumed".

Usage:
    from profilesync.core.shared.story_service import story_service

    story_id, created = await story_service.create_draft(draft)
"""

import logging
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from profilesync.core.database.models import Story
from profilesync.core.errors import StoryError
from profilesync.core.shared.database_service import DatabaseService, database_service
from profilesync.core.sync.types import StoryDraft

logger = logging.getLogger("profilesync.services.story")


class StoryService:
    """Persistence for draft stories."""

    def __init__(self, db: Optional[DatabaseService] = None):
        self._db = db or database_service

    async def create_draft(self, draft: StoryDraft) -> Tuple[UUID, bool]:
        """
        Create the draft story for an import.

        Returns:
            (story_id, created) where created is False if the import
            already had a story

        Raises:
            StoryError: The story could not be written
        """
        for attempt in range(2):
            try:
                async with self._db.get_session() as session:
                    existing = await self._get_for_import(session, draft.import_id)
                    if existing is not None:
                        return existing, False

                    story = Story(
                        profile_id=draft.profile_id,
                        profile_link_import_id=draft.import_id,
                        kind=draft.kind,
                        slug=draft.slug,
                        title=draft.title,
                        summary=draft.summary,
                        content=draft.content,
                        picture_uri=draft.picture_uri,
                        published_at=draft.published_at,
                        status="draft",
                        properties=dict(draft.properties),
                    )
                    session.add(story)
                    await session.flush()
                    logger.debug(f"Created {draft.kind} story {story.id} from import {draft.import_id}")
                    return story.id, True
            except IntegrityError as exc:
                if attempt:
                    raise StoryError(f"failed to create story for import {draft.import_id}") from exc
                logger.debug(f"Concurrent story creation for import {draft.import_id}, retrying")
            except SQLAlchemyError as exc:
                raise StoryError(f"failed to create story for import {draft.import_id}") from exc

        raise StoryError(f"failed to create story for import {draft.import_id}")

    async def _get_for_import(self, session, import_id: UUID) -> Optional[UUID]:
        result = await session.execute(
            select(Story.id).where(Story.profile_link_import_id == import_id)
        )
        return result.scalar_one_or_none()


# Global singleton instance
story_service = StoryService()

"""
Story processors - turn unconsumed imports into draft stories.

A sync worker calls ``process_stories()`` after reconciliation. Import
story processors drain the provider's story-creation queue
(``LinkSyncService.list_imports_for_story_creation``), store one draft per
import through the story service, then mark the imports consumed. An import
whose draft fails stays in the queue and is retried on the next cycle.

Providers without story creation (GitHub) use ``NullStoryProcessor``.
"""

import logging
import re
import unicodedata
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID

from profilesync.core.errors import ProfileSyncError
from profilesync.core.shared.story_service import StoryService, story_service
from profilesync.core.sync.link_sync_service import LinkSyncService, link_sync_service
from profilesync.core.sync.types import LinkImport, StoryDraft
from profilesync.core.utils.time_utils import as_utc, utcnow

logger = logging.getLogger("profilesync.services.story_processor")

MAX_SUMMARY_LENGTH = 500
MAX_SLUG_LENGTH = 80


class StoryProcessor(ABC):
    """Downstream stage that turns unconsumed imports into draft stories."""

    @abstractmethod
    async def process_stories(self) -> None:
        ...


class NullStoryProcessor(StoryProcessor):
    """Default when no story creation is wired up."""

    async def process_stories(self) -> None:
        return None


# =========================================================================
# Helpers
# =========================================================================


def slugify(text: str) -> str:
    """Convert text to an ASCII, URL-friendly slug."""
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = text.lower().strip()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def story_slug(published_at: datetime, title: str, fallback: str) -> str:
    """``YYYYMMDD-title`` slug, capped at MAX_SLUG_LENGTH."""
    prefix = published_at.strftime("%Y%m%d") + "-"
    body = slugify(title) or fallback
    body = body[: MAX_SLUG_LENGTH - len(prefix)].rstrip("-")
    return prefix + body


def truncate_summary(text: str, max_length: int = MAX_SUMMARY_LENGTH) -> str:
    """Cut text at a word boundary near max_length."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length // 2:
        truncated = truncated[:last_space]
    return truncated + "..."


def parse_published_at(value: Optional[str], default: datetime) -> datetime:
    if not value:
        return default
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return default


# =========================================================================
# Import story processors
# =========================================================================


class ImportStoryProcessor(StoryProcessor):
    """
    Drains one provider kind's story-creation queue.

    Subclasses set ``kind`` and implement ``build_draft``.

    Args:
        batch_size: Maximum imports turned into stories per cycle
        link_sync: Link persistence service (queue reads and consumed marks)
        stories: Story persistence service
        clock: Returns the current UTC time (fallback publication date)
    """

    kind: str = ""

    def __init__(
        self,
        batch_size: int,
        link_sync: Optional[LinkSyncService] = None,
        stories: Optional[StoryService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.batch_size = batch_size
        self.link_sync = link_sync or link_sync_service
        self.stories = stories or story_service
        self._clock = clock

    @abstractmethod
    def build_draft(self, item: LinkImport) -> StoryDraft:
        ...

    async def process_stories(self) -> None:
        imports = await self.link_sync.list_imports_for_story_creation(self.kind, self.batch_size)
        if not imports:
            logger.debug(f"No {self.kind} imports need story creation")
            return

        consumed: List[UUID] = []
        created = 0
        for item in imports:
            try:
                _, was_created = await self.stories.create_draft(self.build_draft(item))
            except ProfileSyncError as e:
                logger.error(
                    f"Failed to create story from {self.kind} import {item.id} "
                    f"(remote {item.remote_id}, profile {item.profile_id}): {e}"
                )
                continue
            consumed.append(item.id)
            if was_created:
                created += 1

        await self.link_sync.mark_imports_consumed(consumed)
        logger.info(
            f"Story creation for {self.kind}: processed={len(imports)} created={created} "
            f"failed={len(imports) - len(consumed)}"
        )


class YouTubeStoryProcessor(ImportStoryProcessor):
    kind = "youtube"

    def build_draft(self, item: LinkImport) -> StoryDraft:
        props = item.properties
        title = props.get("title") or "Untitled Video"
        description = props.get("description") or ""
        published_at = parse_published_at(props.get("published_at"), self._clock())

        content = (
            f'<iframe width="560" height="315" src="https://www.youtube.com/embed/{item.remote_id}" '
            f'frameborder="0" allowfullscreen></iframe>'
        )
        if description:
            content += "\n\n" + description

        return StoryDraft(
            profile_id=item.profile_id,
            import_id=item.id,
            kind="video",
            slug=story_slug(published_at, title, "video"),
            title=title,
            summary=truncate_summary(description),
            content=content,
            picture_uri=props.get("thumbnail_url"),
            published_at=published_at,
            properties={"managed_by": "youtube_sync_worker", "remote_id": item.remote_id},
        )


class SpeakerDeckStoryProcessor(ImportStoryProcessor):
    kind = "speakerdeck"

    def build_draft(self, item: LinkImport) -> StoryDraft:
        props = item.properties
        title = props.get("title") or "Untitled Presentation"
        description = props.get("description") or ""
        link = props.get("link") or ""
        published_at = parse_published_at(props.get("published_at"), self._clock())

        content = f"%[{link}]" if link else ""
        if description:
            content = f"{content}\n\n{description}" if content else description

        return StoryDraft(
            profile_id=item.profile_id,
            import_id=item.id,
            kind="presentation",
            slug=story_slug(published_at, title, "presentation"),
            title=title,
            summary=truncate_summary(description),
            content=content,
            picture_uri=props.get("thumbnail_url"),
            published_at=published_at,
            properties={"managed_by": "speakerdeck_sync_worker", "remote_id": item.remote_id},
        )

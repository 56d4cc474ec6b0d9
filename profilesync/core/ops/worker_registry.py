"""
Registry of provider sync workers.

Each provider is described once by a ``WorkerDefinition`` (worker name,
provider kind, runtime state key, fetcher factory and, for providers that
create stories, a story processor factory). Workers are built from
settings on first use; disabled providers are left out entirely, so
neither Celery beat nor the admin surface sees them.

Usage::

    from profilesync.core.ops.worker_registry import get_worker, get_workers

    worker = get_worker("youtube-sync")
    report = await worker.execute()
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from profilesync.config import Settings, settings
from profilesync.connectors.base import RemoteItemFetcher
from profilesync.connectors.github.github_fetcher import GitHubFetcher
from profilesync.connectors.speakerdeck.speakerdeck_fetcher import SpeakerDeckFetcher
from profilesync.connectors.youtube.youtube_fetcher import YouTubeFetcher
from profilesync.core.ops.sync_worker import SyncWorker
from profilesync.core.shared.lock_registry import lock_id_for
from profilesync.core.sync.story_processor import (
    SpeakerDeckStoryProcessor,
    StoryProcessor,
    YouTubeStoryProcessor,
)

logger = logging.getLogger("profilesync.ops.worker_registry")


@dataclass(frozen=True)
class WorkerDefinition:
    name: str
    kind: str
    state_key: str
    fetcher_factory: Callable[[], RemoteItemFetcher]
    # Called with the worker's batch size
    story_processor_factory: Optional[Callable[[int], StoryProcessor]] = None


WORKER_DEFINITIONS: List[WorkerDefinition] = [
    WorkerDefinition(
        "youtube-sync", "youtube", "youtube.sync_worker", YouTubeFetcher, YouTubeStoryProcessor
    ),
    WorkerDefinition("github-sync", "github", "github.sync_worker", GitHubFetcher),
    WorkerDefinition(
        "speakerdeck-sync",
        "speakerdeck",
        "speakerdeck.sync_worker",
        SpeakerDeckFetcher,
        SpeakerDeckStoryProcessor,
    ),
]


def build_workers(config: Optional[Settings] = None) -> Dict[str, SyncWorker]:
    """Build a SyncWorker for every enabled provider."""
    config = config or settings
    workers: Dict[str, SyncWorker] = {}
    for definition in WORKER_DEFINITIONS:
        worker_config = config.worker_config(definition.kind)
        if not worker_config.enabled:
            logger.info(f"Sync worker {definition.name} is disabled by configuration")
            continue
        story_processor = None
        if definition.story_processor_factory is not None:
            story_processor = definition.story_processor_factory(worker_config.batch_size)
        workers[definition.name] = SyncWorker(
            name=definition.name,
            state_key=definition.state_key,
            lock_id=lock_id_for(definition.name),
            fetcher=definition.fetcher_factory(),
            config=worker_config,
            story_processor=story_processor,
        )
    return workers


_workers: Optional[Dict[str, SyncWorker]] = None


def get_workers() -> Dict[str, SyncWorker]:
    global _workers
    if _workers is None:
        _workers = build_workers()
    return _workers


def get_worker(name: str) -> Optional[SyncWorker]:
    return get_workers().get(name)


def reset_workers() -> None:
    """Drop cached workers so the next lookup rebuilds them from settings."""
    global _workers
    _workers = None

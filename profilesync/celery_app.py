"""
Celery application setup for the profile sync service.

Workers and the API share the same broker/result backend. Each enabled
provider sync worker gets a beat entry that fires every
``<kind>_SYNC_CHECK_INTERVAL`` seconds; the worker itself decides whether
a cycle is due, so extra beat ticks (or several beat instances) only cost
a couple of runtime state reads.

Queue Architecture:
- sync: provider sync cycles (one task per worker tick)

Run workers with CELERY_WORKER=1 so the database layer uses NullPool
(every task runs its own event loop).
"""
from celery import Celery
from kombu import Queue

from profilesync.config import settings
from profilesync.core.ops.worker_registry import WORKER_DEFINITIONS

app = Celery(
    "profilesync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["profilesync.core.tasks.sync"],
)

app.conf.task_queues = (
    Queue("sync", routing_key="sync"),
)

app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=1800,
    task_time_limit=2100,
    result_expires=86400,
    task_default_queue="sync",
    task_routes={
        "profilesync.tasks.run_sync_worker": {"queue": "sync"},
    },
)

# ============================================================================
# Celery Beat Schedule
# ============================================================================

beat_schedule = {}

for definition in WORKER_DEFINITIONS:
    worker_config = settings.worker_config(definition.kind)
    if not worker_config.enabled:
        continue
    beat_schedule[definition.name] = {
        "task": "profilesync.tasks.run_sync_worker",
        "schedule": worker_config.check_interval,  # Every N seconds
        "args": (definition.name,),
        # A tick that waited longer than one interval is superseded by the next one
        "options": {"queue": "sync", "expires": worker_config.check_interval},
    }

app.conf.beat_schedule = beat_schedule

app.conf.timezone = "UTC"


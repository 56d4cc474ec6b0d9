"""
Sync worker operator command.

Shows worker state and applies the same overrides as the admin API,
directly against the runtime state store.

Usage:
    python -m profilesync.core.commands.worker_admin list
    python -m profilesync.core.commands.worker_admin disable youtube-sync
    python -m profilesync.core.commands.worker_admin enable youtube-sync
    python -m profilesync.core.commands.worker_admin trigger github-sync --full --enqueue
    python -m profilesync.core.commands.worker_admin run speakerdeck-sync
    python -m profilesync.core.commands.worker_admin locks
    python -m profilesync.core.commands.worker_admin imports 6f1c9d0e-2b4a-4c8e-9a51-3d2f7e8b1c44
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional
from uuid import UUID

from profilesync.core.errors import ProfileSyncError, UnknownWorkerError
from profilesync.core.ops.worker_admin_service import worker_admin_service
from profilesync.core.ops.worker_registry import get_worker
from profilesync.core.shared.database_service import database_service
from profilesync.core.sync.link_sync_service import link_sync_service

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger("profilesync.commands.worker_admin")


def _fmt(value) -> str:
    if value is None:
        return "-"
    if hasattr(value, "isoformat"):
        return value.isoformat(timespec="seconds")
    return str(value)


async def list_workers() -> int:
    statuses = await worker_admin_service.list_workers()
    if not statuses:
        print("No sync workers are enabled by configuration.")
        return 0

    print(f"{'WORKER':<20} {'ENABLED':<8} {'NEXT RUN':<27} {'LAST RUN':<27} {'STATUS':<18} ERROR")
    for s in statuses:
        print(
            f"{s.name:<20} {('yes' if s.is_enabled else 'no'):<8} {_fmt(s.next_run_at):<27} "
            f"{_fmt(s.last_run_at):<27} {_fmt(s.last_status):<18} {_fmt(s.last_error)}"
        )
    return 0


async def set_disabled(name: str, disabled: bool) -> int:
    await worker_admin_service.set_disabled(name, disabled)
    print(f"{name}: {'disabled' if disabled else 'enabled'}")
    return 0


async def trigger(name: str, full: bool, enqueue: bool) -> int:
    next_run_at = await worker_admin_service.trigger(name, full=full)
    print(f"{name}: next_run_at set to {_fmt(next_run_at)}")
    if enqueue:
        from profilesync.core.tasks.sync import run_sync_worker

        try:
            result = run_sync_worker.delay(name)
        except Exception as e:
            logger.error(f"Failed to enqueue {name} cycle: {e}")
            return 1
        print(f"{name}: cycle enqueued (task {result.id})")
    return 0


def list_locks() -> int:
    for name, lock_id in worker_admin_service.list_locks().items():
        print(f"{name:<20} {lock_id}")
    return 0


async def list_imports(link_id: UUID) -> int:
    imports = await link_sync_service.list_active_imports(link_id)
    if not imports:
        print(f"No active imports for link {link_id}.")
        return 0

    print(f"{'REMOTE ID':<40} {'CREATED':<27} UPDATED")
    for item in imports:
        print(f"{item.remote_id:<40} {_fmt(item.created_at):<27} {_fmt(item.updated_at)}")
    return 0


async def run_once(name: str) -> int:
    worker = get_worker(name)
    if worker is None:
        raise UnknownWorkerError(name)

    report = await worker.execute()
    totals = report.totals
    print(
        f"{name}: {report.status.value} links={totals.links} failed={totals.links_failed} "
        f"full={totals.full_fetches} "
        f"added={totals.added} updated={totals.updated} deleted={totals.deleted}"
    )
    if report.error:
        print(f"error: {report.error}")
    return 1 if report.error else 0


async def _dispatch(args: argparse.Namespace) -> int:
    try:
        if args.command == "list":
            return await list_workers()
        if args.command == "disable":
            return await set_disabled(args.name, True)
        if args.command == "enable":
            return await set_disabled(args.name, False)
        if args.command == "trigger":
            return await trigger(args.name, args.full, args.enqueue)
        if args.command == "run":
            return await run_once(args.name)
        if args.command == "locks":
            return list_locks()
        if args.command == "imports":
            return await list_imports(args.link_id)
        return 2
    except UnknownWorkerError as e:
        logger.error(str(e))
        return 2
    except ProfileSyncError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        await database_service.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and control provider sync workers")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="Show worker state")
    sub.add_parser("locks", help="Show reserved advisory lock IDs")

    for command, help_text in (
        ("disable", "Pause a worker on every replica"),
        ("enable", "Resume a paused worker"),
        ("run", "Run one cycle in this process (still honors disabled, schedule and lock)"),
    ):
        cmd = sub.add_parser(command, help=help_text)
        cmd.add_argument("name", help="Worker name, e.g. youtube-sync")

    imports_cmd = sub.add_parser("imports", help="Show a link's active imports")
    imports_cmd.add_argument("link_id", type=UUID, help="Profile link ID")

    trigger_cmd = sub.add_parser("trigger", help="Make a worker due now")
    trigger_cmd.add_argument("name", help="Worker name, e.g. youtube-sync")
    trigger_cmd.add_argument("--full", action="store_true", help="Force a full fetch on each link's next sync")
    trigger_cmd.add_argument("--enqueue", action="store_true", help="Also enqueue a Celery task")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(_dispatch(args))


if __name__ == "__main__":
    sys.exit(main())

"""
Run the catalog sync worker.

Usage:
    python scripts/run_worker.py
    python scripts/run_worker.py --provider esimgo --concurrency 1
    python scripts/run_worker.py --sync      # queue a manual full sync, then exit
    python scripts/run_worker.py --clean     # prune old sync jobs and queue history, then exit
"""

import argparse
import asyncio
import signal
import sys
import os
import logging
from typing import Dict, List

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from redis.exceptions import RedisError

from core.config import settings
from core.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    QueueError,
    SyncAlreadyInProgressError,
)
from core.logging import setup_logging
from catalog_sync.repositories import SyncJobRepository
from catalog_sync.runtime import SyncRuntime

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run_worker",
        description="Consume the catalog sync queue",
    )
    parser.add_argument(
        "--provider",
        action="append",
        dest="providers",
        help="Provider to serve (repeatable, default: ENABLED_PROVIDERS)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help=f"Jobs processed in parallel (default: {settings.WORKER_CONCURRENCY})",
    )
    parser.add_argument(
        "--sync",
        action="store_true",
        help="Queue a manual full sync (DEFAULT_PROVIDER or each --provider) and exit",
    )
    parser.add_argument(
        "--clean",
        action="store_true",
        help="Delete old finished sync jobs and queue history, then exit",
    )
    return parser


async def prune_old_jobs(runtime: SyncRuntime) -> Dict[str, int]:
    """Retention only: finished rows past CLEANUP_OLD_JOBS_DAYS and old queue history"""
    async with runtime.session_factory() as session:
        deleted = await SyncJobRepository(session).cleanup_old_jobs(runtime.settings.CLEANUP_OLD_JOBS_DAYS)
    cleaned = await runtime.queue_manager.clean_old_jobs()
    logger.info(
        f"Cleanup: deleted {deleted} old sync jobs, removed {cleaned['completed']} completed "
        f"and {cleaned['failed']} failed queue jobs"
    )
    return {"sync_jobs": deleted, **cleaned}


async def queue_manual_syncs(runtime: SyncRuntime, providers: List[str]) -> int:
    queued = 0
    for provider in providers:
        try:
            response = await runtime.admin.trigger_full_sync(provider=provider, triggered_by="manual")
            logger.info(f"Queued manual full sync for {provider} (job {response.job_id})")
            queued += 1
        except SyncAlreadyInProgressError:
            logger.info(f"Full sync for {provider} already in progress, not queueing another")
    return queued


async def run_once(args: argparse.Namespace) -> int:
    """--sync / --clean: act on the database and queue without consuming jobs"""
    runtime = SyncRuntime(settings, providers=[])

    try:
        await runtime.start()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except (DatabaseConnectionError, RedisError, OSError) as e:
        logger.error(f"Startup connectivity check failed: {e}")
        return 1

    try:
        if args.clean:
            await prune_old_jobs(runtime)
        if args.sync:
            await queue_manual_syncs(runtime, args.providers or [settings.DEFAULT_PROVIDER])
    except QueueError as e:
        logger.error(f"Queue unavailable: {e}")
        return 1
    finally:
        await runtime.close()

    return 0


async def run_worker(args: argparse.Namespace) -> int:
    if args.sync or args.clean:
        return await run_once(args)

    runtime = SyncRuntime(settings, providers=args.providers)

    try:
        await runtime.start()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except (DatabaseConnectionError, RedisError, OSError) as e:
        logger.error(f"Startup connectivity check failed: {e}")
        return 1

    worker = runtime.build_worker(concurrency=args.concurrency)
    stop = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        loop.call_soon_threadsafe(stop.set)

    loop = asyncio.get_running_loop()
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    worker.on("failed", lambda job, error, state: logger.warning(f"Job {job.id} {state}: {error}"))
    worker.on("stalled", lambda job_id: logger.warning(f"Job {job_id} stalled and was requeued or failed"))

    try:
        await worker.start()
        await stop.wait()
    finally:
        await worker.close(timeout=30)
        await runtime.close()

    return 0


def main() -> None:
    setup_logging()
    args = create_parser().parse_args()
    sys.exit(asyncio.run(run_worker(args)))


if __name__ == "__main__":
    main()

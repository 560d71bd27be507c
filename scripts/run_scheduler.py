"""
Run the catalog sync scheduler (sync-due checks, health checks, cleanup).
"""

import asyncio
import signal
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from redis.exceptions import RedisError

from core.config import settings
from core.exceptions import ConfigurationError, DatabaseConnectionError
from core.logging import setup_logging
from catalog_sync.runtime import SyncRuntime

logger = logging.getLogger(__name__)


async def run_scheduler() -> int:
    runtime = SyncRuntime(settings)

    try:
        await runtime.start()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except (DatabaseConnectionError, RedisError, OSError) as e:
        logger.error(f"Startup connectivity check failed: {e}")
        return 1

    scheduler = runtime.build_scheduler()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        loop.call_soon_threadsafe(stop.set)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        scheduler.start()
        await stop.wait()
    finally:
        scheduler.stop()
        await runtime.close()

    return 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(run_scheduler()))

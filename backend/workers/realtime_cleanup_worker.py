import asyncio
import logging
from datetime import datetime

from utils import cache
from utils.realtime import hub

CHECK_INTERVAL_SECONDS = 60
logger = logging.getLogger(__name__)


def run_realtime_cleanup_once(now: datetime | None = None) -> dict:
    return {
        "idle_connections": hub.cleanup_idle(now or datetime.utcnow()),
        "expired_cache_keys": cache.clean_expired(),
    }


async def realtime_cleanup_worker():
    while True:
        try:
            run_realtime_cleanup_once()
        except Exception:
            logger.exception("REALTIME_CLEANUP_ERROR")

        await asyncio.sleep(CHECK_INTERVAL_SECONDS)

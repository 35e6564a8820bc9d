import asyncio
import logging
from datetime import datetime

from database import get_db
from utils.loyalty import process_expired_points

CHECK_INTERVAL_SECONDS = 60 * 60  # hourly
logger = logging.getLogger(__name__)


async def run_points_expiry_once(db, now: datetime | None = None) -> dict:
    return await process_expired_points(db, now or datetime.utcnow())


async def points_expiry_worker():
    db = get_db()

    while True:
        try:
            await run_points_expiry_once(db)
        except Exception:
            logger.exception("POINTS_EXPIRY_ERROR")

        await asyncio.sleep(CHECK_INTERVAL_SECONDS)

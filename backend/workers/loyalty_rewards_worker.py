import asyncio
import logging
from datetime import datetime

from database import get_db
from utils.loyalty import process_anniversary_rewards, process_birthday_rewards

CHECK_INTERVAL_SECONDS = 60 * 60 * 6  # every 6 hours
logger = logging.getLogger(__name__)


async def run_loyalty_rewards_once(db, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    return {
        "birthday": await process_birthday_rewards(db, now),
        "anniversary": await process_anniversary_rewards(db, now),
    }


async def loyalty_rewards_worker():
    db = get_db()

    while True:
        try:
            await run_loyalty_rewards_once(db)
        except Exception:
            logger.exception("LOYALTY_REWARDS_ERROR")

        await asyncio.sleep(CHECK_INTERVAL_SECONDS)

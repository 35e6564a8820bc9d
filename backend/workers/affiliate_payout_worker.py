import asyncio
import logging
from datetime import datetime

from database import get_db
from utils.affiliate import schedule_payouts_for_program

CHECK_INTERVAL_SECONDS = 60 * 60 * 24  # daily
logger = logging.getLogger(__name__)


async def run_affiliate_payouts_once(db, today: datetime | None = None) -> int:
    today = today or datetime.utcnow()
    scheduled = 0

    cursor = db.affiliate_programs.find({
        "is_active": True,
        "payment_schedule": {"$ne": None},
    })

    async for program in cursor:
        try:
            result = await schedule_payouts_for_program(db, program["_id"], today)
            scheduled += result["scheduled"]
        except Exception:
            logger.exception("AFFILIATE_PAYOUT_ERROR program=%s", program["_id"])

    return scheduled


async def affiliate_payout_worker():
    db = get_db()

    while True:
        try:
            await run_affiliate_payouts_once(db)
        except Exception:
            logger.exception("AFFILIATE_PAYOUT_LOOP_ERROR")

        await asyncio.sleep(CHECK_INTERVAL_SECONDS)

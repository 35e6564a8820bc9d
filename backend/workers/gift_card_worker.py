import asyncio
import logging
from datetime import datetime

from database import get_db
from utils.gift_cards import (
    get_due_gift_cards,
    get_expiring_gift_cards,
    mark_gift_card_delivered,
    mark_reminder_sent,
)
from utils.realtime import NOTIFICATION_NEW, emit_realtime_event

CHECK_INTERVAL_SECONDS = 60 * 15  # every 15 minutes
REMINDER_DAYS_AHEAD = 7
logger = logging.getLogger(__name__)


async def _notify(db, card: dict, user_fields: tuple, payload: dict) -> int:
    """Push a notification to every known holder of the card."""
    targets = {card[f] for f in user_fields if card.get(f)}

    if card.get("recipient_email"):
        recipient = await db.users.find_one({"email": card["recipient_email"]}, {"_id": 1})
        if recipient:
            targets.add(recipient["_id"])

    for user_id in targets:
        emit_realtime_event(NOTIFICATION_NEW, payload, user_id=user_id)
    return len(targets)


async def run_gift_card_deliveries_once(db, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    delivered = 0

    for card in await get_due_gift_cards(db, now):
        try:
            await mark_gift_card_delivered(db, card["_id"], now)
            await _notify(db, card, ("purchased_by",), {
                "kind": "gift_card.delivered",
                "code": card["code"],
                "amount": card["amount"],
                "message": card.get("custom_message"),
            })
            delivered += 1
        except Exception:
            logger.exception("GIFT_CARD_DELIVERY_ERROR card=%s", card["_id"])

    return delivered


async def run_gift_card_reminders_once(db, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    reminded = 0

    for card in await get_expiring_gift_cards(db, REMINDER_DAYS_AHEAD, now):
        try:
            await _notify(db, card, ("purchased_by", "redeemed_by"), {
                "kind": "gift_card.expiring",
                "code": card["code"],
                "balance": card["balance"],
                "expiry_date": card["expiry_date"],
            })
            await mark_reminder_sent(db, card["_id"], now)
            reminded += 1
        except Exception:
            logger.exception("GIFT_CARD_REMINDER_ERROR card=%s", card["_id"])

    return reminded


async def gift_card_worker():
    db = get_db()

    while True:
        try:
            await run_gift_card_deliveries_once(db)
            await run_gift_card_reminders_once(db)
        except Exception:
            logger.exception("GIFT_CARD_WORKER_ERROR")

        await asyncio.sleep(CHECK_INTERVAL_SECONDS)

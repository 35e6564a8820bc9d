import logging
import secrets
import string
from datetime import datetime, timedelta

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from config.constants import (
    GIFT_CARD_CODE_ATTEMPTS,
    GIFT_CARD_PREFIX,
    GIFT_CARD_REDEEM_ATTEMPTS,
    GIFT_CARD_VALIDITY_DAYS,
)
from utils.errors import AppError, ConflictError, NotFoundError, ValidationError
from utils.guards import parse_object_id, parse_optional_object_id

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_gift_card_code() -> str:
    groups = ["".join(secrets.choice(CODE_ALPHABET) for _ in range(4)) for _ in range(3)]
    return "-".join([GIFT_CARD_PREFIX, *groups])


def normalize_code(code: str) -> str:
    return code.strip().upper()


async def _unique_code(db, taken: set | None = None) -> str:
    taken = taken or set()
    for _ in range(GIFT_CARD_CODE_ATTEMPTS):
        code = generate_gift_card_code()
        if code in taken:
            continue
        if not await db.gift_cards.find_one({"code": code}, {"_id": 1}):
            return code

    raise AppError("Failed to generate unique gift card code / Unikal hədiyyə kartı kodu yaratmaq uğursuz oldu")


def _default_expiry(now: datetime) -> datetime:
    return now + timedelta(days=GIFT_CARD_VALIDITY_DAYS)


def _new_card(code: str, amount: float, now: datetime, **extra) -> dict:
    return {
        "code": code,
        "amount": round(amount, 2),
        "balance": round(amount, 2),
        "is_active": True,
        "expiry_date": extra.pop("expiry_date", None) or _default_expiry(now),
        "purchased_by": None,
        "redeemed_by": None,
        "template_id": None,
        "recipient_name": None,
        "recipient_email": None,
        "custom_message": None,
        "scheduled_delivery_date": None,
        "delivered_at": None,
        "reminder_sent_at": None,
        **extra,
        "created_at": now,
        "updated_at": now,
    }


# ============================================================
# CREATE
# ============================================================

async def create_gift_card(
    db,
    amount: float,
    *,
    purchased_by=None,
    expiry_date: datetime | None = None,
    template_id=None,
    recipient_name: str | None = None,
    recipient_email: str | None = None,
    custom_message: str | None = None,
    scheduled_delivery_date: datetime | None = None,
    now: datetime | None = None,
) -> dict:
    if amount <= 0:
        raise ValidationError("Amount must be positive / Məbləğ müsbət olmalıdır")

    now = now or datetime.utcnow()
    card = _new_card(
        await _unique_code(db),
        amount,
        now,
        expiry_date=expiry_date,
        purchased_by=parse_optional_object_id(purchased_by, "purchased_by"),
        template_id=parse_optional_object_id(template_id, "template_id"),
        recipient_name=recipient_name,
        recipient_email=recipient_email.lower() if recipient_email else None,
        custom_message=custom_message,
        scheduled_delivery_date=scheduled_delivery_date,
    )
    await db.gift_cards.insert_one(card)

    await db.gift_card_transactions.insert_one({
        "gift_card_id": card["_id"],
        "user_id": card["purchased_by"],
        "amount": card["amount"],
        "type": "purchase",
        "created_at": now,
    })

    logger.info("GIFT_CARD_CREATED code=%s amount=%s scheduled=%s", card["code"], card["amount"], scheduled_delivery_date)
    return card


async def bulk_create_gift_cards(
    db,
    count: int,
    amount: float,
    expiry_date: datetime | None = None,
    template_id=None,
) -> list[dict]:
    now = datetime.utcnow()
    codes: set = set()

    for _ in range(count):
        codes.add(await _unique_code(db, codes))

    cards = [
        _new_card(
            code,
            amount,
            now,
            expiry_date=expiry_date,
            template_id=parse_optional_object_id(template_id, "template_id"),
        )
        for code in sorted(codes)
    ]
    await db.gift_cards.insert_many(cards)

    logger.info("GIFT_CARD_BULK_CREATED count=%s amount=%s", len(cards), amount)
    return cards


# ============================================================
# LOOKUP / VALIDATE / REDEEM
# ============================================================

async def get_gift_card_by_code(db, code: str) -> dict | None:
    return await db.gift_cards.find_one({"code": normalize_code(code)})


def check_gift_card(card: dict | None, now: datetime) -> str | None:
    if not card:
        return "Gift card not found / Hədiyyə kartı tapılmadı"
    # fully redeemed cards are also inactive; report the more specific reason
    if card.get("redeemed_by") and card.get("balance", 0) <= 0:
        return "Gift card has already been redeemed / Hədiyyə kartı artıq istifadə edilib"
    if not card.get("is_active"):
        return "Gift card is not active / Hədiyyə kartı aktiv deyil"
    if card.get("balance", 0) <= 0:
        return "Gift card has no balance / Hədiyyə kartında balans yoxdur"
    if card.get("expiry_date") and card["expiry_date"] < now:
        return "Gift card has expired / Hədiyyə kartı bitmişdir"
    return None


async def validate_gift_card(db, code: str, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    card = await get_gift_card_by_code(db, code)

    error = check_gift_card(card, now)
    if error:
        return {"is_valid": False, "error": error}
    return {"is_valid": True, "gift_card": card}


async def redeem_gift_card(db, code: str, user_id, amount: float, order_id=None) -> dict:
    if amount <= 0:
        raise ValidationError("Amount must be positive / Məbləğ müsbət olmalıdır")

    amount = round(amount, 2)
    user_id = parse_object_id(user_id, "user_id")

    for _ in range(GIFT_CARD_REDEEM_ATTEMPTS):
        now = datetime.utcnow()
        result = await validate_gift_card(db, code, now)
        if not result["is_valid"]:
            raise ValidationError(result["error"])

        card = result["gift_card"]
        remaining = round(card["balance"] - amount, 2)
        if remaining < 0:
            raise ValidationError("Insufficient gift card balance / Kifayət qədər hədiyyə kartı balansı yoxdur")

        update = {"balance": remaining, "updated_at": now}
        if remaining == 0:
            update.update({"is_active": False, "redeemed_by": user_id, "redeemed_at": now})

        # compare-and-set on the balance read above; stored balances stay at 2dp
        updated = await db.gift_cards.find_one_and_update(
            {"_id": card["_id"], "is_active": True, "balance": card["balance"]},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        if updated:
            break
    else:
        raise ConflictError("Gift card was updated concurrently, try again / Hədiyyə kartı eyni anda dəyişdirildi, yenidən cəhd edin")

    await db.gift_card_transactions.insert_one({
        "gift_card_id": card["_id"],
        "user_id": user_id,
        "order_id": parse_optional_object_id(order_id, "order_id"),
        "amount": -amount,
        "type": "redemption",
        "created_at": now,
    })

    logger.info("GIFT_CARD_REDEEMED code=%s user=%s amount=%s remaining=%s", card["code"], user_id, amount, remaining)
    return {"gift_card": updated, "amount_redeemed": amount, "remaining_balance": remaining}


async def get_gift_card_transactions(db, gift_card_id) -> list[dict]:
    return await (
        db.gift_card_transactions.find({"gift_card_id": parse_object_id(gift_card_id, "gift_card_id")})
        .sort("created_at", DESCENDING)
        .to_list(None)
    )


async def get_user_gift_cards(db, user_id) -> list[dict]:
    user_id = parse_object_id(user_id, "user_id")
    user = await db.users.find_one({"_id": user_id}, {"email": 1})

    clauses = [{"purchased_by": user_id}, {"redeemed_by": user_id}]
    if user and user.get("email"):
        clauses.append({"recipient_email": user["email"].lower()})

    return await db.gift_cards.find({"$or": clauses}).sort("created_at", DESCENDING).to_list(None)


# ============================================================
# DELIVERY / REMINDERS
# ============================================================

def _day_bounds(day: datetime):
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


async def get_scheduled_gift_cards(db, delivery_date: datetime | None = None) -> list[dict]:
    query = {"scheduled_delivery_date": {"$ne": None}, "delivered_at": None}

    if delivery_date:
        start, end = _day_bounds(delivery_date)
        query["scheduled_delivery_date"] = {"$gte": start, "$lt": end}

    return await db.gift_cards.find(query).sort("scheduled_delivery_date", ASCENDING).to_list(None)


async def get_due_gift_cards(db, now: datetime) -> list[dict]:
    return await db.gift_cards.find({
        "scheduled_delivery_date": {"$ne": None, "$lte": now},
        "delivered_at": None,
    }).sort("scheduled_delivery_date", ASCENDING).to_list(None)


async def mark_gift_card_delivered(db, gift_card_id, now: datetime | None = None) -> dict:
    card = await db.gift_cards.find_one_and_update(
        {"_id": parse_object_id(gift_card_id, "gift_card_id")},
        {"$set": {"delivered_at": now or datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not card:
        raise NotFoundError("Gift card not found / Hədiyyə kartı tapılmadı")

    logger.info("GIFT_CARD_DELIVERED id=%s code=%s", card["_id"], card["code"])
    return card


async def get_expiring_gift_cards(db, days_ahead: int = 30, now: datetime | None = None) -> list[dict]:
    now = now or datetime.utcnow()
    return await db.gift_cards.find({
        "expiry_date": {"$gte": now, "$lte": now + timedelta(days=days_ahead)},
        "is_active": True,
        "balance": {"$gt": 0},
        "reminder_sent_at": None,
    }).sort("expiry_date", ASCENDING).to_list(None)


async def mark_reminder_sent(db, gift_card_id, now: datetime | None = None):
    await db.gift_cards.update_one(
        {"_id": parse_object_id(gift_card_id, "gift_card_id")},
        {"$set": {"reminder_sent_at": now or datetime.utcnow()}},
    )
    logger.info("GIFT_CARD_REMINDER_SENT id=%s", gift_card_id)


# ============================================================
# ANALYTICS
# ============================================================

async def get_gift_card_analytics(
    db,
    start: datetime | None = None,
    end: datetime | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or datetime.utcnow()
    query = {}
    if start or end:
        query["created_at"] = {}
        if start:
            query["created_at"]["$gte"] = start
        if end:
            query["created_at"]["$lte"] = end

    total_cards = 0
    total_value = 0.0
    redeemed_value = 0.0
    active = 0
    expired = 0
    scheduled = 0

    async for card in db.gift_cards.find(query):
        total_cards += 1
        total_value += float(card["amount"])
        redeemed_value += float(card["amount"]) - float(card.get("balance", 0))

        expiry = card.get("expiry_date")
        if expiry and expiry < now:
            expired += 1
        elif card.get("is_active") and card.get("balance", 0) > 0:
            active += 1

        if card.get("scheduled_delivery_date") and not card.get("delivered_at"):
            scheduled += 1

    return {
        "total_gift_cards": total_cards,
        "total_value": round(total_value, 2),
        "redeemed_value": round(redeemed_value, 2),
        "active_gift_cards": active,
        "expired_gift_cards": expired,
        "scheduled_gift_cards": scheduled,
        "redemption_rate": round(redeemed_value / total_value * 100, 2) if total_value else 0,
    }

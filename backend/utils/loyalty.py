import math
import logging
from datetime import datetime, timedelta

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from config.constants import LOYALTY_PROGRAM_CACHE_TTL, POINTS_EXPIRY_DAYS
from models.loyalty import EARN_TYPES, SPEND_TYPES, PointsTransactionType
from utils import cache
from utils.errors import NotFoundError, ValidationError
from utils.guards import parse_object_id, parse_optional_object_id

logger = logging.getLogger(__name__)

PROGRAM_CACHE_KEY = "loyalty:program"

# ============================================================
# BALANCE
# ============================================================

async def get_user_points(db, user_id) -> dict:
    user_id = parse_object_id(user_id, "user_id")
    now = datetime.utcnow()

    return await db.user_points.find_one_and_update(
        {"user_id": user_id},
        {
            "$setOnInsert": {
                "user_id": user_id,
                "points": 0,
                "total_earned": 0,
                "total_spent": 0,
                "created_at": now,
            }
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


async def earn_points(
    db,
    user_id,
    points: int,
    type: str,
    description: str | None = None,
    order_id=None,
    event_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    if points <= 0:
        raise ValidationError("Points must be positive / Xallar müsbət olmalıdır")
    if type not in EARN_TYPES:
        raise ValidationError("Invalid points type / Yanlış xal növü")

    now = now or datetime.utcnow()
    user_id = parse_object_id(user_id, "user_id")
    await get_user_points(db, user_id)

    await db.points_transactions.insert_one({
        "user_id": user_id,
        "points": points,
        "type": type,
        "description": description,
        "order_id": parse_optional_object_id(order_id, "order_id"),
        "event_id": event_id,
        "expiry_date": now + timedelta(days=POINTS_EXPIRY_DAYS),
        "created_at": now,
    })

    balance = await db.user_points.find_one_and_update(
        {"user_id": user_id},
        {
            "$inc": {"points": points, "total_earned": points},
            "$set": {"updated_at": now},
        },
        return_document=ReturnDocument.AFTER,
    )

    logger.info("POINTS_EARNED user=%s points=%s type=%s", user_id, points, type)
    return {"points": points, "balance": balance["points"]}


async def spend_points(
    db,
    user_id,
    points: int,
    type: str,
    description: str | None = None,
    now: datetime | None = None,
) -> dict:
    if points <= 0:
        raise ValidationError("Points must be positive / Xallar müsbət olmalıdır")
    if type not in SPEND_TYPES:
        raise ValidationError("Invalid points type / Yanlış xal növü")

    now = now or datetime.utcnow()
    user_id = parse_object_id(user_id, "user_id")
    await get_user_points(db, user_id)

    # conditional decrement: balance never goes negative
    balance = await db.user_points.find_one_and_update(
        {"user_id": user_id, "points": {"$gte": points}},
        {
            "$inc": {"points": -points, "total_spent": points},
            "$set": {"updated_at": now},
        },
        return_document=ReturnDocument.AFTER,
    )
    if not balance:
        raise ValidationError("Insufficient points / Kifayət qədər xal yoxdur")

    await db.points_transactions.insert_one({
        "user_id": user_id,
        "points": -points,
        "type": type,
        "description": description,
        "created_at": now,
    })

    logger.info("POINTS_SPENT user=%s points=%s type=%s", user_id, points, type)
    return {"points": points, "balance": balance["points"]}


async def get_points_transactions(
    db,
    user_id,
    *,
    skip: int,
    limit: int,
    type: str | None = None,
):
    query = {"user_id": parse_object_id(user_id, "user_id")}
    if type:
        query["type"] = type

    items = await (
        db.points_transactions.find(query)
        .sort("created_at", DESCENDING)
        .skip(skip)
        .limit(limit)
        .to_list(limit)
    )
    total = await db.points_transactions.count_documents(query)
    return items, total


# ============================================================
# PROGRAM / REWARDS
# ============================================================

async def get_loyalty_program(db) -> dict | None:
    async def load():
        return await db.loyalty_programs.find_one({"is_active": True})

    return await cache.get_or_load(PROGRAM_CACHE_KEY, load, LOYALTY_PROGRAM_CACHE_TTL)


async def upsert_loyalty_program(db, data: dict) -> dict:
    now = datetime.utcnow()
    program = await db.loyalty_programs.find_one_and_update(
        {},
        {"$set": {**data, "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    cache.delete(PROGRAM_CACHE_KEY)
    return program


async def create_reward(db, data: dict) -> dict:
    program = await get_loyalty_program(db)
    if not program:
        raise NotFoundError("Loyalty program not found / Sədaqət proqramı tapılmadı")

    doc = {**data, "program_id": program["_id"], "created_at": datetime.utcnow()}
    await db.points_rewards.insert_one(doc)
    return doc


async def get_available_rewards(db) -> list[dict]:
    program = await get_loyalty_program(db)
    if not program:
        return []

    return await (
        db.points_rewards.find({"program_id": program["_id"], "is_active": True})
        .sort("points_required", ASCENDING)
        .to_list(None)
    )


async def redeem_reward(db, user_id, reward_id) -> dict:
    reward = await db.points_rewards.find_one({"_id": parse_object_id(reward_id, "reward_id")})
    if not reward or not reward.get("is_active"):
        raise NotFoundError("Reward not found or inactive / Mükafat tapılmadı və ya aktiv deyil")

    result = await spend_points(
        db,
        user_id,
        reward["points_required"],
        PointsTransactionType.REDEMPTION.value,
        f"Redeemed {reward['reward_type']} reward / {reward['reward_type']} mükafatı istifadə edildi",
    )

    logger.info("REWARD_REDEEMED user=%s reward=%s", user_id, reward["_id"])
    return {
        "reward": {"type": reward["reward_type"], "value": reward["reward_value"]},
        "points_spent": reward["points_required"],
        "balance": result["balance"],
    }


async def calculate_points_from_order(db, order_amount: float) -> int:
    program = await get_loyalty_program(db)
    if not program:
        return 0
    return math.floor(float(order_amount) * float(program["points_per_currency"]))


# ============================================================
# EXPIRY
# ============================================================

async def process_expired_points(db, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()

    cursor = db.points_transactions.find({
        "points": {"$gt": 0},
        "expiry_date": {"$lte": now},
        "expiry_processed": {"$ne": True},
    })

    processed = 0
    expired_points = 0

    async for tx in cursor:
        try:
            balance = await get_user_points(db, tx["user_id"])

            # all or nothing: skipped when the user no longer holds the full grant
            if balance["points"] >= tx["points"]:
                await spend_points(
                    db,
                    tx["user_id"],
                    tx["points"],
                    PointsTransactionType.EXPIRY.value,
                    "Points expired / Xalların müddəti bitdi",
                    now=now,
                )
                expired_points += tx["points"]
        except Exception:
            logger.exception("POINTS_EXPIRY_ERROR tx=%s user=%s", tx["_id"], tx["user_id"])

        await db.points_transactions.update_one(
            {"_id": tx["_id"]},
            {"$set": {"expiry_processed": True}},
        )
        processed += 1

    logger.info("POINTS_EXPIRY processed=%s expired_points=%s", processed, expired_points)
    return {"processed": processed, "expired_points": expired_points}


# ============================================================
# BIRTHDAY / ANNIVERSARY / EVENTS
# ============================================================

def _same_day(a: datetime, b: datetime) -> bool:
    return a.month == b.month and a.day == b.day


def _rewarded_this_year(last: datetime | None, now: datetime) -> bool:
    return bool(last) and last.year == now.year


async def award_birthday_reward(db, user_id, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    user = await db.users.find_one({"_id": parse_object_id(user_id, "user_id")})

    if not user or not user.get("birthday"):
        return {"awarded": False, "reason": "No birthday set / Doğum günü təyin edilməyib"}

    if not _same_day(user["birthday"], now) or _rewarded_this_year(user.get("last_birthday_reward"), now):
        return {
            "awarded": False,
            "reason": "Not birthday or already rewarded / Doğum günü deyil və ya artıq mükafat verilib",
        }

    program = await get_loyalty_program(db)
    if not program or not program.get("birthday_reward_points"):
        return {
            "awarded": False,
            "reason": "Birthday reward not configured / Doğum günü mükafatı konfiqurasiya edilməyib",
        }

    points = program["birthday_reward_points"]
    await earn_points(
        db,
        user["_id"],
        points,
        PointsTransactionType.BIRTHDAY.value,
        "Birthday reward / Doğum günü mükafatı",
        now=now,
    )
    await db.users.update_one({"_id": user["_id"]}, {"$set": {"last_birthday_reward": now}})

    logger.info("BIRTHDAY_REWARD user=%s points=%s", user["_id"], points)
    return {"awarded": True, "points": points}


async def award_anniversary_reward(db, user_id, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    user = await db.users.find_one({"_id": parse_object_id(user_id, "user_id")})

    if not user or not user.get("created_at"):
        return {"awarded": False, "reason": "User not found / İstifadəçi tapılmadı"}

    years = now.year - user["created_at"].year

    if years <= 0 or not _same_day(user["created_at"], now) or _rewarded_this_year(user.get("last_anniversary_reward"), now):
        return {
            "awarded": False,
            "reason": "Not anniversary or already rewarded / İldönümü deyil və ya artıq mükafat verilib",
        }

    program = await get_loyalty_program(db)
    if not program or not program.get("anniversary_reward_points"):
        return {
            "awarded": False,
            "reason": "Anniversary reward not configured / İldönümü mükafatı konfiqurasiya edilməyib",
        }

    points = program["anniversary_reward_points"] * years
    await earn_points(
        db,
        user["_id"],
        points,
        PointsTransactionType.ANNIVERSARY.value,
        f"{years} year anniversary reward / {years} il ildönümü mükafatı",
        now=now,
    )
    await db.users.update_one({"_id": user["_id"]}, {"$set": {"last_anniversary_reward": now}})

    logger.info("ANNIVERSARY_REWARD user=%s years=%s points=%s", user["_id"], years, points)
    return {"awarded": True, "points": points, "years": years}


async def award_special_event_bonus(db, user_id, event_id: str, event_name: str, points: int) -> dict:
    user_id = parse_object_id(user_id, "user_id")
    if not await db.users.find_one({"_id": user_id}, {"_id": 1}):
        raise NotFoundError("User not found / İstifadəçi tapılmadı")

    existing = await db.points_transactions.find_one({
        "user_id": user_id,
        "event_id": event_id,
        "type": PointsTransactionType.EVENT.value,
    })
    if existing:
        return {"awarded": False, "reason": "Event bonus already awarded / Tədbir bonusu artıq verilib"}

    await earn_points(
        db,
        user_id,
        points,
        PointsTransactionType.EVENT.value,
        f"Special event: {event_name} / Xüsusi tədbir: {event_name}",
        event_id=event_id,
    )

    logger.info("EVENT_BONUS user=%s event=%s points=%s", user_id, event_id, points)
    return {"awarded": True, "points": points}


def _not_rewarded_this_year(field: str, now: datetime) -> dict:
    return {
        "$or": [
            {field: None},
            {field: {"$lt": datetime(now.year, 1, 1)}},
        ]
    }


async def process_birthday_rewards(db, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    query = {"birthday": {"$ne": None}, **_not_rewarded_this_year("last_birthday_reward", now)}

    processed = 0
    awarded = 0
    async for user in db.users.find(query, {"_id": 1, "birthday": 1}):
        processed += 1
        if not _same_day(user["birthday"], now):
            continue
        try:
            result = await award_birthday_reward(db, user["_id"], now)
            if result["awarded"]:
                awarded += 1
        except Exception:
            logger.exception("BIRTHDAY_REWARD_ERROR user=%s", user["_id"])

    logger.info("BIRTHDAY_REWARDS processed=%s awarded=%s", processed, awarded)
    return {"processed": processed, "awarded": awarded}


async def process_anniversary_rewards(db, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    query = {"created_at": {"$ne": None}, **_not_rewarded_this_year("last_anniversary_reward", now)}

    processed = 0
    awarded = 0
    async for user in db.users.find(query, {"_id": 1, "created_at": 1}):
        processed += 1
        if not _same_day(user["created_at"], now):
            continue
        try:
            result = await award_anniversary_reward(db, user["_id"], now)
            if result["awarded"]:
                awarded += 1
        except Exception:
            logger.exception("ANNIVERSARY_REWARD_ERROR user=%s", user["_id"])

    logger.info("ANNIVERSARY_REWARDS processed=%s awarded=%s", processed, awarded)
    return {"processed": processed, "awarded": awarded}

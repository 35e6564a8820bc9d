import calendar
import hashlib
import logging
import secrets
from collections import defaultdict
from datetime import datetime, timedelta

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from config.constants import DEFAULT_AFFILIATE_COMMISSION_RATE, DEFAULT_AFFILIATE_MIN_PAYOUT
from models.affiliate import CommissionStatus, PaymentSchedule, PayoutStatus
from utils.errors import ConflictError, NotFoundError, ValidationError
from utils.guards import parse_object_id, parse_optional_object_id

logger = logging.getLogger(__name__)


def generate_affiliate_code(user_id) -> str:
    raw = f"{user_id}-{datetime.utcnow().timestamp()}-{secrets.token_hex(4)}"
    return hashlib.sha256(raw.encode()).hexdigest()[:16].upper()


def _money(value) -> float:
    return round(float(value or 0), 2)


# ============================================================
# PROGRAM
# ============================================================

async def get_affiliate_program(db, seller_id) -> dict | None:
    return await db.affiliate_programs.find_one({"seller_id": parse_object_id(seller_id, "seller_id")})


async def upsert_affiliate_program(db, seller_id, data: dict) -> dict:
    seller_id = parse_object_id(seller_id, "seller_id")
    now = datetime.utcnow()
    changes = {k: v for k, v in data.items() if v is not None}

    defaults = {
        "seller_id": seller_id,
        "commission_rate": DEFAULT_AFFILIATE_COMMISSION_RATE,
        "is_active": True,
        "min_payout": DEFAULT_AFFILIATE_MIN_PAYOUT,
        "multi_tier_enabled": False,
        "created_at": now,
    }
    # a key may live in $set or $setOnInsert, never both
    on_insert = {k: v for k, v in defaults.items() if k not in changes}

    program = await db.affiliate_programs.find_one_and_update(
        {"seller_id": seller_id},
        {"$set": {**changes, "updated_at": now}, "$setOnInsert": on_insert},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )

    logger.info("AFFILIATE_PROGRAM_SAVED seller=%s program=%s", seller_id, program["_id"])
    return program


# ============================================================
# LINKS / CLICKS
# ============================================================

async def create_affiliate_link(db, affiliate_id, product_id=None) -> dict:
    doc = {
        "affiliate_id": parse_object_id(affiliate_id, "affiliate_id"),
        "product_id": parse_optional_object_id(product_id, "product_id"),
        "link_code": generate_affiliate_code(affiliate_id),
        "clicks": 0,
        "conversions": 0,
        "created_at": datetime.utcnow(),
    }
    await db.affiliate_links.insert_one(doc)

    logger.info("AFFILIATE_LINK_CREATED link=%s affiliate=%s", doc["_id"], affiliate_id)
    return doc


async def get_affiliate_links(db, affiliate_id, *, skip: int, limit: int, product_id=None):
    query = {"affiliate_id": parse_object_id(affiliate_id, "affiliate_id")}
    if product_id:
        query["product_id"] = parse_object_id(product_id, "product_id")

    items = await db.affiliate_links.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit).to_list(limit)
    total = await db.affiliate_links.count_documents(query)
    return items, total


async def track_affiliate_click(db, link_code: str) -> dict | None:
    return await db.affiliate_links.find_one_and_update(
        {"link_code": link_code.upper()},
        {"$inc": {"clicks": 1}, "$set": {"last_click_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


# ============================================================
# COMMISSIONS
# ============================================================

async def _program_for_order(db, order_id):
    order = await db.orders.find_one({"_id": parse_object_id(order_id, "order_id")})
    if not order:
        raise NotFoundError("Order not found / Sifariş tapılmadı")

    program = await db.affiliate_programs.find_one({"seller_id": order.get("seller_id")})
    if not program:
        raise NotFoundError(
            "No affiliate program found for this seller / Bu satıcı üçün affiliate proqram tapılmadı"
        )
    return order, program


async def _insert_commission(db, *, affiliate_id, order_id, program, amount, tier, link_id=None) -> dict:
    doc = {
        "affiliate_id": affiliate_id,
        "order_id": order_id,
        "program_id": program["_id"],
        "link_id": link_id,
        "commission_amount": amount,
        "tier": tier,
        "status": CommissionStatus.PENDING.value,
        "payout_id": None,
        "created_at": datetime.utcnow(),
    }
    await db.affiliate_commissions.insert_one(doc)
    return doc


async def create_affiliate_commission(db, affiliate_id, order_id, order_amount: float, link_id=None) -> dict:
    order, program = await _program_for_order(db, order_id)

    if not program.get("is_active"):
        raise ValidationError("Affiliate program is not active / Affiliate proqram aktiv deyil")

    link_id = parse_optional_object_id(link_id, "link_id")
    commission = await _insert_commission(
        db,
        affiliate_id=parse_object_id(affiliate_id, "affiliate_id"),
        order_id=order["_id"],
        program=program,
        amount=_money(float(order_amount) * float(program["commission_rate"])),
        tier=1,
        link_id=link_id,
    )

    if link_id:
        await db.affiliate_links.update_one({"_id": link_id}, {"$inc": {"conversions": 1}})

    logger.info(
        "AFFILIATE_COMMISSION_CREATED commission=%s affiliate=%s order=%s amount=%s",
        commission["_id"], affiliate_id, order["_id"], commission["commission_amount"],
    )
    return commission


async def calculate_multi_tier_commission(db, order_id, affiliate_id, order_amount: float, link_id=None) -> list[dict]:
    """
    Tier 1 goes to the direct affiliate. With multi-tier enabled, tier 2
    and tier 3 go to the affiliate's referrer and that referrer's referrer.
    """
    order, program = await _program_for_order(db, order_id)

    tier1 = await create_affiliate_commission(db, affiliate_id, order_id, order_amount, link_id)
    commissions = [tier1]

    if not program.get("multi_tier_enabled"):
        return commissions

    current = tier1["affiliate_id"]
    for tier, rate_field in ((2, "tier2_commission_rate"), (3, "tier3_commission_rate")):
        rate = program.get(rate_field)
        if not rate:
            break

        user = await db.users.find_one({"_id": current}, {"referred_by": 1})
        referrer = user.get("referred_by") if user else None
        if not referrer:
            break

        referrer = parse_object_id(referrer, "referred_by")
        commissions.append(await _insert_commission(
            db,
            affiliate_id=referrer,
            order_id=order["_id"],
            program=program,
            amount=_money(float(order_amount) * float(rate)),
            tier=tier,
        ))
        current = referrer

    logger.info("AFFILIATE_MULTI_TIER order=%s affiliate=%s count=%s", order["_id"], affiliate_id, len(commissions))
    return commissions


async def track_affiliate_referral(db, new_affiliate_id, referrer_id) -> dict:
    new_affiliate_id = parse_object_id(new_affiliate_id, "affiliate_id")
    referrer_id = parse_object_id(referrer_id, "referrer_id")

    if new_affiliate_id == referrer_id:
        raise ValidationError("Cannot refer yourself / Özünüzü tövsiyə edə bilməzsiniz")

    if not await db.users.find_one({"_id": referrer_id}, {"_id": 1}):
        raise NotFoundError("Referrer not found / Tövsiyəçi tapılmadı")

    res = await db.users.update_one(
        {"_id": new_affiliate_id, "referred_by": None},
        {"$set": {"referred_by": referrer_id}},
    )
    if res.modified_count == 0:
        raise ConflictError("Referral already recorded / Tövsiyə artıq qeydə alınıb")

    logger.info("AFFILIATE_REFERRAL affiliate=%s referrer=%s", new_affiliate_id, referrer_id)
    return {"affiliate_id": new_affiliate_id, "referred_by": referrer_id}


async def _sum_commissions(db, query: dict) -> float:
    total = 0.0
    async for c in db.affiliate_commissions.find(query, {"commission_amount": 1}):
        total += float(c.get("commission_amount") or 0)
    return _money(total)


async def get_affiliate_commissions(db, affiliate_id, *, skip: int, limit: int, status: str | None = None):
    affiliate_id = parse_object_id(affiliate_id, "affiliate_id")
    query = {"affiliate_id": affiliate_id}
    if status:
        query["status"] = status

    items = await db.affiliate_commissions.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit).to_list(limit)
    total = await db.affiliate_commissions.count_documents(query)

    summary = {
        "total_earned": await _sum_commissions(
            db, {"affiliate_id": affiliate_id, "status": {"$ne": CommissionStatus.REJECTED.value}}
        ),
        "pending_amount": await _sum_commissions(
            db, {"affiliate_id": affiliate_id, "status": CommissionStatus.PENDING.value}
        ),
    }
    return items, total, summary


async def get_affiliate_stats(db, affiliate_id) -> dict:
    affiliate_id = parse_object_id(affiliate_id, "affiliate_id")

    links = await db.affiliate_links.find({"affiliate_id": affiliate_id}, {"clicks": 1, "conversions": 1}).to_list(None)
    clicks = sum(l.get("clicks", 0) for l in links)
    conversions = sum(l.get("conversions", 0) for l in links)

    earned = await _sum_commissions(
        db, {"affiliate_id": affiliate_id, "status": {"$ne": CommissionStatus.REJECTED.value}}
    )
    pending = await _sum_commissions(db, {"affiliate_id": affiliate_id, "status": CommissionStatus.PENDING.value})
    paid = await _sum_commissions(db, {"affiliate_id": affiliate_id, "status": CommissionStatus.PAID.value})

    return {
        "total_links": len(links),
        "total_clicks": clicks,
        "total_conversions": conversions,
        "conversion_rate": round(conversions / clicks * 100, 2) if clicks else 0,
        "total_earned": earned,
        "pending_amount": pending,
        "paid_amount": paid,
        "available_balance": _money(earned - paid),
    }


async def generate_affiliate_report(db, affiliate_id, start: datetime | None = None, end: datetime | None = None) -> dict:
    affiliate_id = parse_object_id(affiliate_id, "affiliate_id")

    query = {"affiliate_id": affiliate_id}
    if start or end:
        query["created_at"] = {}
        if start:
            query["created_at"]["$gte"] = start
        if end:
            query["created_at"]["$lte"] = end

    commissions = await db.affiliate_commissions.find(query).sort("created_at", DESCENDING).to_list(None)
    payouts = await db.affiliate_payouts.find({"affiliate_id": affiliate_id}).sort("created_at", DESCENDING).to_list(None)
    links = await db.affiliate_links.find(
        {"affiliate_id": affiliate_id},
        {"link_code": 1, "clicks": 1, "conversions": 1},
    ).to_list(None)
    referred = await db.users.find(
        {"referred_by": affiliate_id},
        {"email": 1, "created_at": 1},
    ).to_list(None)

    def total(status=None):
        return _money(sum(
            float(c.get("commission_amount") or 0)
            for c in commissions
            if status is None or c.get("status") == status
        ))

    clicks = sum(l.get("clicks", 0) for l in links)
    conversions = sum(l.get("conversions", 0) for l in links)
    total_payouts = _money(sum(float(p["amount"]) for p in payouts if p.get("status") == PayoutStatus.PAID.value))

    return {
        "period": {"start_date": start, "end_date": end},
        "statistics": {
            "total_commissions": total(),
            "paid_commissions": total(CommissionStatus.PAID.value),
            "pending_commissions": total(CommissionStatus.PENDING.value),
            "approved_commissions": total(CommissionStatus.APPROVED.value),
            "total_payouts": total_payouts,
            "total_clicks": clicks,
            "total_conversions": conversions,
            "conversion_rate": round(conversions / clicks * 100, 2) if clicks else 0,
            "referred_affiliates_count": len(referred),
        },
        "commissions": commissions,
        "payouts": payouts,
        "links": links,
        "referred_affiliates": referred,
    }


async def approve_commission(db, commission_id) -> dict:
    commission_id = parse_object_id(commission_id, "commission_id")

    commission = await db.affiliate_commissions.find_one_and_update(
        {"_id": commission_id, "status": CommissionStatus.PENDING.value},
        {"$set": {"status": CommissionStatus.APPROVED.value, "approved_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if commission:
        return commission

    if not await db.affiliate_commissions.find_one({"_id": commission_id}, {"_id": 1}):
        raise NotFoundError("Commission not found / Komissiya tapılmadı")
    raise ConflictError("Commission is not pending / Komissiya gözləmədə deyil")


# ============================================================
# PAYOUTS
# ============================================================

def next_payment_date(schedule: str, payment_day: int | None, today: datetime) -> datetime:
    base = datetime(today.year, today.month, today.day)

    if schedule == PaymentSchedule.WEEKLY.value:
        # payment_day uses 0=Sunday
        weekday = (base.weekday() + 1) % 7
        days = ((payment_day or 0) - weekday) % 7 or 7
        return base + timedelta(days=days)

    if schedule == PaymentSchedule.BIWEEKLY.value:
        return base + timedelta(days=14)

    if schedule == PaymentSchedule.MONTHLY.value:
        year, month = (base.year + 1, 1) if base.month == 12 else (base.year, base.month + 1)
        day = min(payment_day or 1, calendar.monthrange(year, month)[1])
        return datetime(year, month, day)

    raise ValidationError("Invalid payment schedule / Yanlış ödəniş cədvəli")


async def schedule_payouts_for_program(db, program_id, today: datetime | None = None) -> dict:
    today = today or datetime.utcnow()
    program = await db.affiliate_programs.find_one({"_id": parse_object_id(program_id, "program_id")})

    if not program or not program.get("payment_schedule"):
        return {"scheduled": 0, "next_payment_date": None}

    grouped: dict = defaultdict(list)
    async for c in db.affiliate_commissions.find({
        "program_id": program["_id"],
        "status": CommissionStatus.APPROVED.value,
        "payout_id": None,
    }):
        grouped[c["affiliate_id"]].append(c)

    scheduled_for = next_payment_date(program["payment_schedule"], program.get("payment_day"), today)
    min_payout = float(program.get("min_payout") or 0)
    scheduled = 0

    for affiliate_id, commissions in grouped.items():
        amount = _money(sum(float(c["commission_amount"]) for c in commissions))
        if amount < min_payout:
            continue

        payout = {
            "affiliate_id": affiliate_id,
            "program_id": program["_id"],
            "amount": amount,
            "status": PayoutStatus.PENDING.value,
            "scheduled_for": scheduled_for,
            "created_at": datetime.utcnow(),
        }
        await db.affiliate_payouts.insert_one(payout)
        await db.affiliate_commissions.update_many(
            {"_id": {"$in": [c["_id"] for c in commissions]}},
            {"$set": {"payout_id": payout["_id"]}},
        )
        scheduled += 1

    logger.info(
        "AFFILIATE_PAYOUTS_SCHEDULED program=%s scheduled=%s date=%s",
        program["_id"], scheduled, scheduled_for.date(),
    )
    return {"scheduled": scheduled, "next_payment_date": scheduled_for}


async def get_scheduled_payouts(db, program_id=None, scheduled_date: datetime | None = None) -> list[dict]:
    query = {"status": PayoutStatus.PENDING.value, "scheduled_for": {"$ne": None}}

    if program_id:
        query["program_id"] = parse_object_id(program_id, "program_id")

    if scheduled_date:
        day = datetime(scheduled_date.year, scheduled_date.month, scheduled_date.day)
        query["scheduled_for"] = {"$gte": day, "$lt": day + timedelta(days=1)}

    return await db.affiliate_payouts.find(query).sort("scheduled_for", ASCENDING).to_list(None)


async def mark_payout_paid(db, payout_id) -> dict:
    payout_id = parse_object_id(payout_id, "payout_id")
    now = datetime.utcnow()

    payout = await db.affiliate_payouts.find_one_and_update(
        {"_id": payout_id, "status": PayoutStatus.PENDING.value},
        {"$set": {"status": PayoutStatus.PAID.value, "paid_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if not payout:
        if not await db.affiliate_payouts.find_one({"_id": payout_id}, {"_id": 1}):
            raise NotFoundError("Payout not found / Ödəniş tapılmadı")
        raise ConflictError("Payout already paid / Ödəniş artıq edilib")

    await db.affiliate_commissions.update_many(
        {"payout_id": payout_id},
        {"$set": {"status": CommissionStatus.PAID.value, "paid_at": now}},
    )

    logger.info("AFFILIATE_PAYOUT_PAID payout=%s affiliate=%s amount=%s", payout_id, payout["affiliate_id"], payout["amount"])
    return payout

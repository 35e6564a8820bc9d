import logging
from datetime import datetime
from bson import ObjectId

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from config.constants import ACTIVE_PROMOTIONS_CACHE_TTL
from models.promotion import PromotionType, ApplicableTo
from utils import cache
from utils.errors import ConflictError, NotFoundError, ValidationError
from utils.guards import parse_object_id

logger = logging.getLogger(__name__)

CACHE_PREFIX = "promotions:"

# ============================================================
# PURE RULES
# ============================================================

def _normalize_code(code: str | None) -> str | None:
    return code.strip().upper() if code else None


def is_promotion_active(promotion: dict, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()

    if not promotion.get("is_active"):
        return False

    start, end = promotion.get("start_date"), promotion.get("end_date")
    if start and now < start:
        return False
    if end and now > end:
        return False
    return True


def _item_matches(promotion: dict, item: dict) -> bool:
    scope = promotion.get("applicable_to", ApplicableTo.ALL.value)
    ids = {str(i) for i in promotion.get("applicable_ids") or []}

    if scope == ApplicableTo.ALL.value:
        return True
    if scope == ApplicableTo.CATEGORY.value:
        return bool(item.get("category_id")) and str(item["category_id"]) in ids
    if scope == ApplicableTo.PRODUCT.value:
        return str(item.get("product_id")) in ids
    if scope == ApplicableTo.SELLER.value:
        return str(item.get("seller_id")) in ids
    return False


def is_promotion_applicable(promotion: dict, items: list[dict], now: datetime | None = None) -> bool:
    if not is_promotion_active(promotion, now):
        return False

    if promotion.get("applicable_to", ApplicableTo.ALL.value) == ApplicableTo.ALL.value:
        return True

    if not promotion.get("applicable_ids"):
        return False

    return any(_item_matches(promotion, item) for item in items)


def applicable_subtotal(promotion: dict, items: list[dict]) -> float:
    return round(
        sum(
            float(item["price"]) * int(item["quantity"])
            for item in items
            if _item_matches(promotion, item)
        ),
        2,
    )


def _discount_for_amount(promotion: dict, amount: float) -> float:
    value = float(promotion.get("discount_value") or 0)
    promo_type = promotion.get("type")

    if promo_type == PromotionType.PERCENTAGE.value:
        discount = amount * value / 100
        cap = promotion.get("max_discount_amount")
        if cap:
            discount = min(discount, float(cap))
    elif promo_type == PromotionType.FIXED.value:
        discount = value
    else:
        # free_shipping / buy_x_get_y / bundle carry no cart discount here
        discount = 0

    return round(max(0.0, min(discount, amount)), 2)


def calculate_discount(
    promotion: dict,
    subtotal: float,
    items: list[dict] | None = None,
    now: datetime | None = None,
) -> float:
    if not is_promotion_active(promotion, now):
        return 0

    minimum = promotion.get("min_purchase_amount")
    if minimum and subtotal < float(minimum):
        return 0

    scope = promotion.get("applicable_to", ApplicableTo.ALL.value)
    if items is not None and scope != ApplicableTo.ALL.value:
        base = applicable_subtotal(promotion, items)
        if base <= 0:
            return 0
        return _discount_for_amount(promotion, base)

    return _discount_for_amount(promotion, subtotal)


def apply_promotion(
    promotion: dict,
    subtotal: float,
    items: list[dict] | None = None,
    now: datetime | None = None,
) -> dict:
    discount = calculate_discount(promotion, subtotal, items, now)
    return {
        "discount": discount,
        "final_amount": round(max(0.0, subtotal - discount), 2),
        "free_shipping": promotion.get("type") == PromotionType.FREE_SHIPPING.value
        and is_promotion_active(promotion, now),
    }


# ============================================================
# USAGE
# ============================================================

def _active_query(now: datetime) -> dict:
    return {
        "is_active": True,
        "start_date": {"$lte": now},
        "end_date": {"$gte": now},
    }


def _over_total_limit(promotion: dict) -> bool:
    limit = promotion.get("usage_limit")
    return bool(limit) and promotion.get("usage_count", 0) >= limit


async def count_user_usage(db, promotion_id, user_id) -> int:
    return await db.coupon_usage.count_documents({
        "promotion_id": promotion_id,
        "user_id": ObjectId(user_id),
    })


async def _over_user_limit(db, promotion: dict, user_id) -> bool:
    limit = promotion.get("user_limit")
    if not limit or not user_id:
        return False
    return await count_user_usage(db, promotion["_id"], user_id) >= limit


async def validate_coupon_code(
    db,
    code: str,
    subtotal: float,
    items: list[dict],
    user_id=None,
    now: datetime | None = None,
) -> dict:
    now = now or datetime.utcnow()
    promotion = await db.promotions.find_one({"coupon_code": _normalize_code(code)})

    if not promotion:
        return {"valid": False, "reason": "Coupon code not found / Kupon kodu tapılmadı"}

    if not promotion.get("is_active"):
        return {"valid": False, "reason": "Coupon is not active / Kupon aktiv deyil"}

    if now < promotion["start_date"]:
        return {"valid": False, "reason": "Coupon is not yet valid / Kupon hələ qüvvədə deyil"}

    if now > promotion["end_date"]:
        return {"valid": False, "reason": "Coupon has expired / Kuponun müddəti bitib"}

    if _over_total_limit(promotion):
        return {"valid": False, "reason": "Coupon usage limit reached / Kupon istifadə limitinə çatıb"}

    if await _over_user_limit(db, promotion, user_id):
        return {
            "valid": False,
            "reason": "You have reached your usage limit for this coupon / Bu kupon üçün istifadə limitinizə çatıbsınız",
        }

    minimum = promotion.get("min_purchase_amount")
    if minimum and subtotal < float(minimum):
        return {
            "valid": False,
            "reason": f"Minimum purchase amount is {minimum} / Minimum alış məbləği {minimum}",
        }

    if not is_promotion_applicable(promotion, items, now):
        return {
            "valid": False,
            "reason": "Coupon is not applicable to your cart items / Kupon səbət məhsullarınıza tətbiq olunmur",
        }

    applied = apply_promotion(promotion, subtotal, items, now)
    return {
        "valid": True,
        "promotion": promotion,
        "discount": applied["discount"],
        "free_shipping": applied["free_shipping"],
    }


async def find_best_promotion(
    db,
    subtotal: float,
    items: list[dict],
    coupon_code: str | None = None,
    user_id=None,
    now: datetime | None = None,
) -> dict | None:
    """
    Highest-discount promotion for the cart. Without a coupon code only
    automatic (code-less) promotions are considered.
    """
    now = now or datetime.utcnow()
    query = _active_query(now)
    query["coupon_code"] = _normalize_code(coupon_code)

    cursor = db.promotions.find(query).sort("discount_value", DESCENDING)

    best = None
    async for promotion in cursor:
        if _over_total_limit(promotion):
            continue
        if await _over_user_limit(db, promotion, user_id):
            continue
        if not is_promotion_applicable(promotion, items, now):
            continue

        discount = calculate_discount(promotion, subtotal, items, now)
        if best is None or discount > best["discount_amount"]:
            best = {
                "promotion_id": promotion["_id"],
                "promotion_name": promotion.get("name"),
                "type": promotion.get("type"),
                "coupon_code": promotion.get("coupon_code"),
                "discount_amount": discount,
                "applied": discount > 0,
            }

    if best and best["applied"]:
        return best
    return None


async def record_promotion_usage(
    db,
    promotion_id,
    user_id,
    order_id=None,
    coupon_code: str | None = None,
):
    promotion_id = parse_object_id(promotion_id, "promotion_id")
    promotion = await db.promotions.find_one({"_id": promotion_id})
    if not promotion:
        raise NotFoundError("Promotion not found / Promosiya tapılmadı")

    query = {"_id": promotion_id}
    if promotion.get("usage_limit"):
        query["usage_count"] = {"$lt": promotion["usage_limit"]}

    res = await db.promotions.update_one(
        query,
        {"$inc": {"usage_count": 1}, "$set": {"updated_at": datetime.utcnow()}},
    )
    if res.modified_count == 0:
        raise ConflictError("Coupon usage limit reached / Kupon istifadə limitinə çatıb")

    await db.coupon_usage.insert_one({
        "promotion_id": promotion_id,
        "coupon_code": _normalize_code(coupon_code) or promotion.get("coupon_code"),
        "user_id": ObjectId(user_id),
        "order_id": ObjectId(order_id) if order_id else None,
        "created_at": datetime.utcnow(),
    })

    logger.info("PROMOTION_USED promotion=%s user=%s order=%s", promotion_id, user_id, order_id)


# ============================================================
# QUERIES / ADMIN
# ============================================================

async def get_active_promotions(
    db,
    applicable_to: str | None = None,
    applicable_id: str | None = None,
) -> list[dict]:
    key = f"{CACHE_PREFIX}active:{applicable_to or 'all'}:{applicable_id or '-'}"

    async def load():
        query = _active_query(datetime.utcnow())
        if applicable_to and applicable_to != ApplicableTo.ALL.value:
            query["applicable_to"] = applicable_to
            if applicable_id:
                query["applicable_ids"] = applicable_id
        return await db.promotions.find(query).sort("created_at", DESCENDING).to_list(None)

    return await cache.get_or_load(key, load, ACTIVE_PROMOTIONS_CACHE_TTL)


async def create_promotion(db, data: dict, created_by) -> dict:
    now = datetime.utcnow()
    doc = {
        **data,
        "seller_id": ObjectId(data["seller_id"]) if data.get("seller_id") else None,
        "usage_count": 0,
        "created_by": created_by,
        "created_at": now,
        "updated_at": now,
    }

    try:
        await db.promotions.insert_one(doc)
    except DuplicateKeyError:
        raise ConflictError("Coupon code already exists / Kupon kodu artıq mövcuddur")

    cache.invalidate_prefix(CACHE_PREFIX)
    logger.info("PROMOTION_CREATED id=%s code=%s", doc["_id"], doc.get("coupon_code"))
    return doc


async def update_promotion(db, promotion_id, changes: dict) -> dict:
    promotion_id = parse_object_id(promotion_id, "promotion_id")
    existing = await db.promotions.find_one({"_id": promotion_id})
    if not existing:
        raise NotFoundError("Promotion not found / Promosiya tapılmadı")

    merged_start = changes.get("start_date", existing["start_date"])
    merged_end = changes.get("end_date", existing["end_date"])
    if merged_end <= merged_start:
        raise ValidationError("End date must be after start date / Bitmə tarixi başlanğıc tarixindən sonra olmalıdır")

    changes["updated_at"] = datetime.utcnow()
    await db.promotions.update_one({"_id": promotion_id}, {"$set": changes})

    cache.invalidate_prefix(CACHE_PREFIX)
    return await db.promotions.find_one({"_id": promotion_id})


async def list_promotions(db, *, skip: int, limit: int, is_active: bool | None = None):
    query = {}
    if is_active is not None:
        query["is_active"] = is_active

    items = await db.promotions.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit).to_list(limit)
    total = await db.promotions.count_documents(query)
    return items, total

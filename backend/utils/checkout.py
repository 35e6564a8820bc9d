import math
import logging

from config.env import FREE_SHIPPING_THRESHOLD, POINTS_REDEMPTION_VALUE, SHIPPING_FEE
from utils.errors import ValidationError
from utils.gift_cards import validate_gift_card
from utils.loyalty import get_user_points
from utils.promotions import find_best_promotion, validate_coupon_code

logger = logging.getLogger(__name__)


async def build_cart_items(db, cart: list[dict]) -> list[dict]:
    """Resolve stored cart lines into priced items; missing or inactive products are skipped."""
    items = []

    for line in cart:
        product = await db.products.find_one({"_id": line["product_id"], "active": True})
        if not product:
            continue

        items.append({
            "product_id": str(product["_id"]),
            "category_id": str(product["category_id"]) if product.get("category_id") else None,
            "seller_id": str(product.get("seller_id")),
            "title": product.get("title"),
            "price": float(product.get("selling_price", 0)),
            "quantity": int(line.get("quantity", 1)),
        })

    return items


async def calculate_checkout_summary(
    db,
    user: dict,
    coupon_code: str | None = None,
    gift_card_code: str | None = None,
    points_to_redeem: int = 0,
) -> dict:
    items = await build_cart_items(db, user.get("cart") or [])
    if not items:
        raise ValidationError("Cart is empty / Səbət boşdur")

    subtotal = round(sum(i["price"] * i["quantity"] for i in items), 2)

    # 1️⃣ Promotion
    discount = 0.0
    free_shipping = False
    promotion = None

    if coupon_code:
        result = await validate_coupon_code(db, coupon_code, subtotal, items, user["_id"])
        if result["valid"]:
            discount = result["discount"]
            free_shipping = result["free_shipping"]
            promotion = {
                "promotion_id": result["promotion"]["_id"],
                "name": result["promotion"].get("name"),
                "coupon_code": result["promotion"].get("coupon_code"),
                "valid": True,
            }
        else:
            promotion = {"coupon_code": coupon_code.upper(), "valid": False, "reason": result["reason"]}
    else:
        best = await find_best_promotion(db, subtotal, items, user_id=user["_id"])
        if best:
            discount = best["discount_amount"]
            promotion = {
                "promotion_id": best["promotion_id"],
                "name": best["promotion_name"],
                "coupon_code": None,
                "valid": True,
            }

    # 2️⃣ Shipping
    shipping = 0.0 if free_shipping or subtotal >= FREE_SHIPPING_THRESHOLD else SHIPPING_FEE
    amount_due = round(max(0.0, subtotal - discount) + shipping, 2)

    # 3️⃣ Gift card
    gift_card = None
    if gift_card_code:
        result = await validate_gift_card(db, gift_card_code)
        if result["is_valid"]:
            applied = round(min(result["gift_card"]["balance"], amount_due), 2)
            amount_due = round(amount_due - applied, 2)
            gift_card = {
                "code": result["gift_card"]["code"],
                "valid": True,
                "applied": applied,
                "remaining_balance": round(result["gift_card"]["balance"] - applied, 2),
            }
        else:
            gift_card = {"code": gift_card_code.upper(), "valid": False, "error": result["error"]}

    # 4️⃣ Loyalty points
    points_used = 0
    points_value = 0.0
    if points_to_redeem and points_to_redeem > 0:
        balance = await get_user_points(db, user["_id"])
        # 15 / 0.01 is not exactly 1500 in floats
        payable_points = math.floor(round(amount_due / POINTS_REDEMPTION_VALUE, 6)) if POINTS_REDEMPTION_VALUE else 0
        points_used = max(0, min(points_to_redeem, balance["points"], payable_points))
        points_value = round(points_used * POINTS_REDEMPTION_VALUE, 2)
        amount_due = round(amount_due - points_value, 2)

    total = round(max(0.0, amount_due), 2)

    logger.debug("CHECKOUT_SUMMARY user=%s subtotal=%s discount=%s total=%s", user["_id"], subtotal, discount, total)

    return {
        "items": items,
        "subtotal": subtotal,
        "discount": discount,
        "promotion": promotion,
        "shipping": shipping,
        "gift_card": gift_card,
        "points_used": points_used,
        "points_value": points_value,
        "total": total,
    }

from datetime import datetime

import pytest
from bson import ObjectId

from utils.checkout import build_cart_items, calculate_checkout_summary
from utils.errors import ValidationError
from utils.gift_cards import create_gift_card
from utils.loyalty import earn_points


async def _product(db, price, stock=10, active=True):
    doc = {
        "title": f"Item {price}",
        "selling_price": price,
        "stock": stock,
        "active": active,
        "seller_id": ObjectId(),
        "category_id": ObjectId(),
    }
    await db.products.insert_one(doc)
    return doc


def _line(product, quantity):
    return {"product_id": product["_id"], "quantity": quantity}


async def test_cart_items_skip_inactive_products(db):
    live = await _product(db, 20)
    gone = await _product(db, 30, active=False)

    items = await build_cart_items(db, [_line(live, 2), _line(gone, 1)])

    assert [(i["product_id"], i["price"], i["quantity"]) for i in items] == [(str(live["_id"]), 20.0, 2)]


async def test_empty_cart_cannot_be_summarized(db):
    with pytest.raises(ValidationError, match="Cart is empty"):
        await calculate_checkout_summary(db, {"_id": ObjectId(), "cart": []})


async def test_summary_applies_promotion_shipping_gift_card_and_points(db):
    product = await _product(db, 30)
    user = {"_id": ObjectId(), "cart": [_line(product, 2)]}
    await db.promotions.insert_one({
        "name": "Ten off",
        "type": "fixed",
        "discount_value": 10,
        "applicable_to": "all",
        "coupon_code": None,
        "usage_count": 0,
        "is_active": True,
        "start_date": datetime(2020, 1, 1),
        "end_date": datetime(2099, 1, 1),
    })
    card = await create_gift_card(db, 20)
    await earn_points(db, user["_id"], 1000, "purchase")

    summary = await calculate_checkout_summary(
        db,
        user,
        gift_card_code=card["code"],
        points_to_redeem=500,
    )

    assert summary["subtotal"] == 60
    assert summary["discount"] == 10
    assert summary["promotion"]["name"] == "Ten off"
    assert summary["shipping"] == 5
    assert summary["gift_card"]["applied"] == 20
    assert summary["points_used"] == 500
    assert summary["points_value"] == 5
    assert summary["total"] == 30


async def test_points_never_exceed_amount_due_or_balance(db):
    product = await _product(db, 10)
    user = {"_id": ObjectId(), "cart": [_line(product, 1)]}
    await earn_points(db, user["_id"], 5000, "purchase")

    summary = await calculate_checkout_summary(db, user, points_to_redeem=5000)

    # 10 + 5 shipping = 15.00 payable at 0.01 per point
    assert summary["points_used"] == 1500
    assert summary["total"] == 0


async def test_invalid_coupon_is_reported_not_raised(db):
    product = await _product(db, 150)
    user = {"_id": ObjectId(), "cart": [_line(product, 1)]}

    summary = await calculate_checkout_summary(db, user, coupon_code="missing")

    assert summary["promotion"]["valid"] is False
    assert summary["discount"] == 0
    # over the free shipping threshold
    assert summary["shipping"] == 0
    assert summary["total"] == 150


# -------------------------------------------------
# API
# -------------------------------------------------

async def test_cart_and_checkout_endpoints(client, db, make_user, auth):
    customer = await make_user("customer")
    product = await _product(db, 25, stock=3)

    added = await client.post(
        "/api/cart/add",
        json={"product_id": str(product["_id"]), "quantity": 2},
        headers=auth(customer),
    )
    too_many = await client.post(
        "/api/cart/add",
        json={"product_id": str(product["_id"]), "quantity": 4},
        headers=auth(customer),
    )
    assert added.status_code == 200
    assert too_many.status_code == 400

    cart = await client.get("/api/cart", headers=auth(customer))
    assert cart.json()["data"]["subtotal"] == 50

    summary = await client.post("/api/checkout/summary", json={}, headers=auth(customer))
    assert summary.status_code == 200
    assert summary.json()["data"]["total"] == 55

    cleared = await client.delete("/api/cart", headers=auth(customer))
    assert cleared.status_code == 200
    empty = await client.post("/api/checkout/summary", json={}, headers=auth(customer))
    assert empty.status_code == 400

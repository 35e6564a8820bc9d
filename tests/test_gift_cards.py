import re
from datetime import datetime, timedelta

import pytest
from bson import ObjectId

from utils.errors import ValidationError
from utils.gift_cards import (
    bulk_create_gift_cards,
    check_gift_card,
    create_gift_card,
    generate_gift_card_code,
    get_expiring_gift_cards,
    get_gift_card_analytics,
    get_user_gift_cards,
    redeem_gift_card,
    validate_gift_card,
)

CODE_PATTERN = re.compile(r"^YUSU-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")


def test_generated_codes_follow_the_format():
    for _ in range(20):
        assert CODE_PATTERN.match(generate_gift_card_code())


def test_check_reports_the_most_specific_problem():
    now = datetime(2026, 6, 1)
    redeemed = {"redeemed_by": ObjectId(), "balance": 0, "is_active": False}
    inactive = {"is_active": False, "balance": 10}
    empty = {"is_active": True, "balance": 0}
    expired = {"is_active": True, "balance": 10, "expiry_date": datetime(2026, 1, 1)}

    assert check_gift_card(None, now).startswith("Gift card not found")
    assert check_gift_card(redeemed, now).startswith("Gift card has already been redeemed")
    assert check_gift_card(inactive, now).startswith("Gift card is not active")
    assert check_gift_card(empty, now).startswith("Gift card has no balance")
    assert check_gift_card(expired, now).startswith("Gift card has expired")
    assert check_gift_card({"is_active": True, "balance": 10}, now) is None


async def test_create_records_purchase_transaction(db):
    buyer = ObjectId()

    card = await create_gift_card(db, 50, purchased_by=buyer, recipient_email="Friend@Example.com")

    assert card["balance"] == 50
    assert card["recipient_email"] == "friend@example.com"
    tx = await db.gift_card_transactions.find_one({"gift_card_id": card["_id"]})
    assert (tx["type"], tx["amount"], tx["user_id"]) == ("purchase", 50, buyer)


async def test_partial_then_full_redemption(db):
    card = await create_gift_card(db, 50)
    user_id = ObjectId()

    partial = await redeem_gift_card(db, card["code"].lower(), user_id, 20)
    assert partial["amount_redeemed"] == 20
    assert partial["remaining_balance"] == 30
    assert partial["gift_card"]["is_active"] is True

    full = await redeem_gift_card(db, card["code"], user_id, 30)
    assert full["remaining_balance"] == 0
    assert full["gift_card"]["is_active"] is False
    assert full["gift_card"]["redeemed_by"] == user_id

    result = await validate_gift_card(db, card["code"])
    assert result["is_valid"] is False
    assert result["error"].startswith("Gift card has already been redeemed")


async def test_redeem_more_than_balance_fails(db):
    card = await create_gift_card(db, 10)

    with pytest.raises(ValidationError, match="Insufficient gift card balance"):
        await redeem_gift_card(db, card["code"], ObjectId(), 10.01)

    stored = await db.gift_cards.find_one({"_id": card["_id"]})
    assert stored["balance"] == 10


async def test_reported_remainder_can_be_redeemed_in_full(db):
    card = await create_gift_card(db, 10)
    user_id = ObjectId()

    partial = await redeem_gift_card(db, card["code"], user_id, 9.99)
    assert partial["remaining_balance"] == 0.01
    assert (await db.gift_cards.find_one({"_id": card["_id"]}))["balance"] == 0.01

    rest = await redeem_gift_card(db, card["code"], user_id, partial["remaining_balance"])

    assert rest["remaining_balance"] == 0
    assert rest["gift_card"]["is_active"] is False
    assert rest["gift_card"]["redeemed_by"] == user_id


async def test_drifted_balance_is_still_redeemable(db):
    card = await create_gift_card(db, 10)
    await db.gift_cards.update_one({"_id": card["_id"]}, {"$set": {"balance": 10 - 9.99}})

    rest = await redeem_gift_card(db, card["code"], ObjectId(), 0.01)

    assert rest["remaining_balance"] == 0
    assert rest["gift_card"]["balance"] == 0


async def test_expired_card_cannot_be_redeemed(db):
    card = await create_gift_card(db, 25, expiry_date=datetime(2020, 1, 1))

    with pytest.raises(ValidationError, match="expired"):
        await redeem_gift_card(db, card["code"], ObjectId(), 5)


async def test_bulk_create_produces_unique_codes(db):
    cards = await bulk_create_gift_cards(db, 25, 15)

    assert len({c["code"] for c in cards}) == 25
    assert await db.gift_cards.count_documents({"amount": 15}) == 25


async def test_user_gift_cards_include_received_by_email(db, make_user):
    user = await make_user(email="holder@example.com")
    await create_gift_card(db, 10, purchased_by=user["_id"])
    await create_gift_card(db, 20, recipient_email="HOLDER@example.com")
    await create_gift_card(db, 30)

    cards = await get_user_gift_cards(db, user["_id"])

    assert sorted(c["amount"] for c in cards) == [10, 20]


async def test_expiring_cards_window(db):
    now = datetime(2026, 6, 1)
    await create_gift_card(db, 10, expiry_date=now + timedelta(days=3))
    await create_gift_card(db, 20, expiry_date=now + timedelta(days=60))
    await create_gift_card(db, 30, expiry_date=now - timedelta(days=1))

    cards = await get_expiring_gift_cards(db, days_ahead=30, now=now)

    assert [c["amount"] for c in cards] == [10]


async def test_analytics_summarizes_value_and_redemptions(db):
    now = datetime(2026, 6, 1)
    card = await create_gift_card(db, 100, expiry_date=datetime(2099, 1, 1))
    await create_gift_card(db, 50, expiry_date=datetime(2026, 1, 1))
    await redeem_gift_card(db, card["code"], ObjectId(), 25)

    stats = await get_gift_card_analytics(db, now=now)

    assert stats["total_gift_cards"] == 2
    assert stats["total_value"] == 150
    assert stats["redeemed_value"] == 25
    assert stats["active_gift_cards"] == 1
    assert stats["expired_gift_cards"] == 1
    assert stats["redemption_rate"] == 16.67


# -------------------------------------------------
# API
# -------------------------------------------------

async def test_admin_issue_and_customer_balance_and_redeem(client, make_user, auth):
    admin = await make_user("admin")
    customer = await make_user("customer")

    issued = await client.post("/api/admin/gift-cards", json={"amount": 40}, headers=auth(admin))
    assert issued.status_code == 200
    code = issued.json()["data"]["code"]

    balance = await client.get(f"/api/gift-cards/{code}/balance", headers=auth(customer))
    assert balance.json()["data"]["balance"] == 40

    redeemed = await client.post(
        "/api/gift-cards/redeem",
        json={"code": code, "amount": 15},
        headers=auth(customer),
    )
    assert redeemed.status_code == 200
    assert redeemed.json()["data"]["remaining_balance"] == 25

    card_id = issued.json()["data"]["id"]
    txs = await client.get(f"/api/admin/gift-cards/{card_id}/transactions", headers=auth(admin))
    assert sorted(t["type"] for t in txs.json()["data"]) == ["purchase", "redemption"]


async def test_customer_cannot_issue_gift_cards(client, make_user, auth):
    customer = await make_user("customer")

    res = await client.post("/api/admin/gift-cards", json={"amount": 40}, headers=auth(customer))

    assert res.status_code == 403

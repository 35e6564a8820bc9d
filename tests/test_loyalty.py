from datetime import datetime

import pytest
from bson import ObjectId

from utils import loyalty
from utils.errors import NotFoundError, ValidationError
from utils.loyalty import (
    award_anniversary_reward,
    award_birthday_reward,
    award_special_event_bonus,
    calculate_points_from_order,
    earn_points,
    get_loyalty_program,
    get_user_points,
    process_expired_points,
    redeem_reward,
    spend_points,
    upsert_loyalty_program,
)


async def _program(db, **overrides):
    data = {
        "name": "Yusu Rewards",
        "points_per_currency": 1.5,
        "birthday_reward_points": 50,
        "anniversary_reward_points": 20,
        "is_active": True,
    }
    data.update(overrides)
    return await upsert_loyalty_program(db, data)


async def test_new_user_starts_with_zero_balance(db):
    balance = await get_user_points(db, ObjectId())
    assert (balance["points"], balance["total_earned"], balance["total_spent"]) == (0, 0, 0)


async def test_earn_then_spend_tracks_totals(db):
    user_id = ObjectId()

    earned = await earn_points(db, user_id, 200, "purchase", "Order")
    spent = await spend_points(db, user_id, 80, "redemption", "Reward")

    assert earned == {"points": 200, "balance": 200}
    assert spent == {"points": 80, "balance": 120}

    balance = await get_user_points(db, user_id)
    assert balance["total_earned"] == 200
    assert balance["total_spent"] == 80

    amounts = sorted(tx["points"] for tx in await db.points_transactions.find({"user_id": user_id}).to_list(None))
    assert amounts == [-80, 200]


async def test_spending_more_than_balance_fails_without_side_effects(db):
    user_id = ObjectId()
    await earn_points(db, user_id, 10, "signup")

    with pytest.raises(ValidationError, match="Insufficient points"):
        await spend_points(db, user_id, 11, "redemption")

    assert (await get_user_points(db, user_id))["points"] == 10
    assert await db.points_transactions.count_documents({"user_id": user_id}) == 1


async def test_earn_rejects_spend_types_and_non_positive_points(db):
    with pytest.raises(ValidationError):
        await earn_points(db, ObjectId(), 10, "redemption")
    with pytest.raises(ValidationError):
        await earn_points(db, ObjectId(), 0, "purchase")


async def test_points_from_order_are_floored(db):
    assert await calculate_points_from_order(db, 99.99) == 0

    await _program(db)
    assert await calculate_points_from_order(db, 99.99) == 149


async def test_program_upsert_refreshes_cached_program(db):
    await _program(db)
    assert (await get_loyalty_program(db))["points_per_currency"] == 1.5

    await _program(db, points_per_currency=2)
    assert (await get_loyalty_program(db))["points_per_currency"] == 2
    assert await db.loyalty_programs.count_documents({}) == 1


async def test_expired_points_are_removed_once(db):
    user_id = ObjectId()
    await earn_points(db, user_id, 100, "purchase", now=datetime(2024, 1, 1))

    first = await process_expired_points(db, now=datetime(2025, 6, 1))
    second = await process_expired_points(db, now=datetime(2025, 6, 2))

    assert first == {"processed": 1, "expired_points": 100}
    assert second == {"processed": 0, "expired_points": 0}
    assert (await get_user_points(db, user_id))["points"] == 0


async def test_expiry_skips_points_already_spent(db):
    user_id = ObjectId()
    await earn_points(db, user_id, 100, "purchase", now=datetime(2024, 1, 1))
    await spend_points(db, user_id, 60, "redemption", now=datetime(2024, 2, 1))

    result = await process_expired_points(db, now=datetime(2025, 6, 1))

    assert result == {"processed": 1, "expired_points": 0}
    assert (await get_user_points(db, user_id))["points"] == 40


async def test_expiry_failure_for_one_user_does_not_stop_the_run(db, monkeypatch):
    racing_user = ObjectId()
    other_user = ObjectId()
    await earn_points(db, racing_user, 100, "purchase", now=datetime(2024, 1, 1))
    await earn_points(db, other_user, 50, "purchase", now=datetime(2024, 1, 1))

    real_spend = loyalty.spend_points

    async def spend_racing_with_checkout(db, user_id, points, *args, **kwargs):
        if user_id == racing_user:
            raise ValidationError("Insufficient points / Kifayət qədər xal yoxdur")
        return await real_spend(db, user_id, points, *args, **kwargs)

    monkeypatch.setattr(loyalty, "spend_points", spend_racing_with_checkout)

    result = await process_expired_points(db, now=datetime(2025, 6, 1))

    assert result == {"processed": 2, "expired_points": 50}
    assert (await get_user_points(db, other_user))["points"] == 0
    assert (await get_user_points(db, racing_user))["points"] == 100
    assert await db.points_transactions.count_documents({"expiry_processed": True}) == 2


async def test_birthday_reward_once_per_year(db, make_user):
    await _program(db)
    user = await make_user(birthday=datetime(1990, 10, 17))
    today = datetime(2026, 10, 17, 9, 0)

    first = await award_birthday_reward(db, user["_id"], today)
    again = await award_birthday_reward(db, user["_id"], datetime(2026, 10, 17, 18, 0))

    assert first == {"awarded": True, "points": 50}
    assert again["awarded"] is False
    assert (await get_user_points(db, user["_id"]))["points"] == 50


async def test_birthday_reward_needs_birthday_and_program(db, make_user):
    no_birthday = await make_user()
    assert (await award_birthday_reward(db, no_birthday["_id"]))["awarded"] is False

    user = await make_user(birthday=datetime(1990, 10, 17))
    result = await award_birthday_reward(db, user["_id"], datetime(2026, 10, 17))
    assert result["reason"].startswith("Birthday reward not configured")


async def test_anniversary_reward_scales_with_years(db, make_user):
    await _program(db)
    user = await make_user(created_at=datetime(2023, 3, 9))

    result = await award_anniversary_reward(db, user["_id"], datetime(2026, 3, 9, 10, 0))

    assert result == {"awarded": True, "points": 60, "years": 3}


async def test_anniversary_not_awarded_in_signup_year(db, make_user):
    await _program(db)
    user = await make_user(created_at=datetime(2026, 3, 9))

    result = await award_anniversary_reward(db, user["_id"], datetime(2026, 3, 9, 10, 0))

    assert result["awarded"] is False


async def test_special_event_bonus_is_idempotent_per_event(db, make_user):
    user = await make_user()

    first = await award_special_event_bonus(db, user["_id"], "black-friday", "Black Friday", 25)
    second = await award_special_event_bonus(db, user["_id"], "black-friday", "Black Friday", 25)
    other = await award_special_event_bonus(db, user["_id"], "new-year", "New Year", 10)

    assert first["awarded"] is True
    assert second["awarded"] is False
    assert other["awarded"] is True
    assert (await get_user_points(db, user["_id"]))["points"] == 35


async def test_special_event_bonus_unknown_user(db):
    with pytest.raises(NotFoundError):
        await award_special_event_bonus(db, ObjectId(), "evt", "Event", 5)


async def test_redeem_reward_spends_points(db):
    program = await _program(db)
    reward = {
        "program_id": program["_id"],
        "name": "5 off",
        "reward_type": "discount",
        "reward_value": 5,
        "points_required": 100,
        "is_active": True,
    }
    await db.points_rewards.insert_one(reward)
    user_id = ObjectId()
    await earn_points(db, user_id, 150, "purchase")

    result = await redeem_reward(db, user_id, reward["_id"])

    assert result == {"reward": {"type": "discount", "value": 5}, "points_spent": 100, "balance": 50}
    with pytest.raises(ValidationError):
        await redeem_reward(db, user_id, reward["_id"])


# -------------------------------------------------
# API
# -------------------------------------------------

async def test_points_endpoint_and_admin_event_award(client, make_user, auth):
    admin = await make_user("admin")
    customer = await make_user("customer")

    res = await client.post(
        "/api/admin/loyalty/events/spring-sale/award",
        json={"user_ids": [str(customer["_id"])], "event_name": "Spring Sale", "points": 40},
        headers=auth(admin),
    )
    assert res.status_code == 200
    assert res.json()["data"]["awarded"] == 1

    points = await client.get("/api/loyalty/points", headers=auth(customer))
    assert points.json()["data"] == {"points": 40, "total_earned": 40, "total_spent": 0}

    txs = await client.get("/api/loyalty/transactions", params={"type": "event"}, headers=auth(customer))
    assert txs.json()["data"]["pagination"]["total"] == 1


async def test_admin_program_and_rewards_listing(client, make_user, auth):
    admin = await make_user("admin")

    saved = await client.put(
        "/api/admin/loyalty/program",
        json={"name": "Yusu Rewards", "points_per_currency": 2},
        headers=auth(admin),
    )
    assert saved.status_code == 200

    for points in (300, 100):
        created = await client.post(
            "/api/admin/loyalty/rewards",
            json={"name": f"{points} pts", "reward_type": "discount", "reward_value": 5, "points_required": points},
            headers=auth(admin),
        )
        assert created.status_code == 200

    rewards = await client.get("/api/loyalty/rewards")
    assert [r["points_required"] for r in rewards.json()["data"]] == [100, 300]

import logging

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure

logger = logging.getLogger(__name__)

RATE_LIMIT_TTL_SECONDS = 60 * 60 * 24
AUDIT_LOG_TTL_SECONDS = 60 * 60 * 24 * 90

# code 85 = IndexOptionsConflict, 86 = IndexKeySpecsConflict
INDEX_CONFLICT_CODES = {85, 86}


def _key_pairs(keys):
    return [(k, v) for k, v in keys]


async def _create_index_safe(collection, keys, **kwargs):
    """
    Create an index; when Mongo reports a conflicting index on the same
    key pattern, drop that one and recreate with the desired options.
    """
    try:
        await collection.create_index(keys, **kwargs)
        return
    except OperationFailure as e:
        if getattr(e, "code", None) not in INDEX_CONFLICT_CODES:
            raise

    desired = _key_pairs(keys)
    stale = []
    async for idx in collection.list_indexes():
        if _key_pairs(idx.get("key", {}).items()) == desired and idx.get("name") != kwargs.get("name"):
            stale.append(idx["name"])

    for name in stale:
        logger.warning("INDEX_REBUILD collection=%s index=%s", collection.name, name)
        await collection.drop_index(name)

    await collection.create_index(keys, **kwargs)


async def ensure_indexes(db):
    # Users
    await _create_index_safe(db.users, [("email", ASCENDING)], name="users_email_unique_idx", unique=True, sparse=True)
    await _create_index_safe(db.users, [("referred_by", ASCENDING)], name="users_referred_by_idx")

    # Orders
    await _create_index_safe(
        db.orders,
        [("buyer_id", ASCENDING), ("created_at", DESCENDING)],
        name="orders_buyer_created_at_idx",
    )
    await _create_index_safe(
        db.orders,
        [("seller_id", ASCENDING), ("status", ASCENDING)],
        name="orders_seller_status_idx",
    )
    await _create_index_safe(db.orders, [("courier_id", ASCENDING)], name="orders_courier_idx", sparse=True)
    await _create_index_safe(
        db.order_timeline,
        [("order_id", ASCENDING), ("created_at", ASCENDING)],
        name="order_timeline_order_created_idx",
    )

    # Promotions
    await _create_index_safe(
        db.promotions,
        [("coupon_code", ASCENDING)],
        name="promotions_coupon_code_unique_idx",
        unique=True,
        partialFilterExpression={"coupon_code": {"$type": "string"}},
    )
    await _create_index_safe(
        db.promotions,
        [("is_active", ASCENDING), ("start_date", ASCENDING), ("end_date", ASCENDING)],
        name="promotions_active_window_idx",
    )
    await _create_index_safe(
        db.coupon_usage,
        [("promotion_id", ASCENDING), ("user_id", ASCENDING)],
        name="coupon_usage_promotion_user_idx",
    )

    # Loyalty
    await _create_index_safe(db.user_points, [("user_id", ASCENDING)], name="user_points_user_unique_idx", unique=True)
    await _create_index_safe(
        db.points_transactions,
        [("user_id", ASCENDING), ("created_at", DESCENDING)],
        name="points_tx_user_created_idx",
    )
    await _create_index_safe(
        db.points_transactions,
        [("expiry_date", ASCENDING), ("expiry_processed", ASCENDING)],
        name="points_tx_expiry_idx",
    )

    # Affiliate
    await _create_index_safe(
        db.affiliate_programs,
        [("seller_id", ASCENDING)],
        name="affiliate_programs_seller_unique_idx",
        unique=True,
    )
    await _create_index_safe(
        db.affiliate_links,
        [("link_code", ASCENDING)],
        name="affiliate_links_code_unique_idx",
        unique=True,
    )
    await _create_index_safe(
        db.affiliate_commissions,
        [("affiliate_id", ASCENDING), ("status", ASCENDING)],
        name="affiliate_commissions_affiliate_status_idx",
    )
    await _create_index_safe(
        db.affiliate_commissions,
        [("program_id", ASCENDING), ("status", ASCENDING), ("payout_id", ASCENDING)],
        name="affiliate_commissions_payout_idx",
    )
    await _create_index_safe(
        db.affiliate_payouts,
        [("status", ASCENDING), ("scheduled_for", ASCENDING)],
        name="affiliate_payouts_schedule_idx",
    )

    # Gift cards
    await _create_index_safe(db.gift_cards, [("code", ASCENDING)], name="gift_cards_code_unique_idx", unique=True)
    await _create_index_safe(
        db.gift_cards,
        [("scheduled_delivery_date", ASCENDING), ("delivered_at", ASCENDING)],
        name="gift_cards_delivery_idx",
    )
    await _create_index_safe(
        db.gift_cards,
        [("expiry_date", ASCENDING), ("is_active", ASCENDING)],
        name="gift_cards_expiry_idx",
    )
    await _create_index_safe(
        db.gift_card_transactions,
        [("gift_card_id", ASCENDING), ("created_at", DESCENDING)],
        name="gift_card_tx_card_created_idx",
    )

    # Chat
    await _create_index_safe(
        db.chat_rooms,
        [("customer_id", ASCENDING), ("last_message_at", DESCENDING)],
        name="chat_rooms_customer_idx",
    )
    await _create_index_safe(
        db.chat_rooms,
        [("support_staff_id", ASCENDING), ("last_message_at", DESCENDING)],
        name="chat_rooms_staff_idx",
    )
    await _create_index_safe(
        db.chat_messages,
        [("room_id", ASCENDING), ("created_at", DESCENDING)],
        name="chat_messages_room_created_idx",
    )

    # Rate limits / audit
    await _create_index_safe(db.rate_limits, [("key", ASCENDING)], name="rate_limits_key_unique_idx", unique=True)
    await _create_index_safe(
        db.rate_limits,
        [("created_at", ASCENDING)],
        name="rate_limits_ttl_idx",
        expireAfterSeconds=RATE_LIMIT_TTL_SECONDS,
    )
    await _create_index_safe(
        db.audit_logs,
        [("created_at", ASCENDING)],
        name="audit_logs_ttl_idx",
        expireAfterSeconds=AUDIT_LOG_TTL_SECONDS,
    )

    logger.info("Mongo indexes ensured")

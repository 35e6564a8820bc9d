import logging
from datetime import datetime

from pymongo import ASCENDING, ReturnDocument

from config.constants import ROLE_ADMIN, ROLE_COURIER, ROLE_CUSTOMER, ROLE_SELLER, ROLE_SUPPORT
from models.loyalty import PointsTransactionType
from utils.affiliate import calculate_multi_tier_commission
from utils.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from utils.guards import parse_object_id
from utils.loyalty import calculate_points_from_order, earn_points
from utils.order_timeline import order_participants, record_order_event
from utils.realtime import ORDER_STATUS_UPDATE, build_event

logger = logging.getLogger(__name__)

# ============================================================
# STATUS FLOW
# ============================================================

PENDING = "PENDING"
CONFIRMED = "CONFIRMED"
PROCESSING = "PROCESSING"
SHIPPED = "SHIPPED"
IN_TRANSIT = "IN_TRANSIT"
OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"
RETURNED = "RETURNED"

ORDER_STATUS_FLOW = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {PROCESSING, CANCELLED},
    PROCESSING: {SHIPPED, CANCELLED},
    SHIPPED: {IN_TRANSIT},
    IN_TRANSIT: {OUT_FOR_DELIVERY},
    OUT_FOR_DELIVERY: {DELIVERED},
    DELIVERED: {RETURNED},
    CANCELLED: set(),
    RETURNED: set(),
}

# statuses each role may set
ROLE_STATUSES = {
    ROLE_SELLER: {CONFIRMED, PROCESSING, SHIPPED, CANCELLED},
    ROLE_COURIER: {IN_TRANSIT, OUT_FOR_DELIVERY, DELIVERED},
    ROLE_CUSTOMER: {CANCELLED},
    ROLE_ADMIN: set(ORDER_STATUS_FLOW),
}

STATUS_DESCRIPTIONS = {
    PENDING: "Order is pending / Sifariş gözləyir",
    CONFIRMED: "Order confirmed / Sifariş təsdiqləndi",
    PROCESSING: "Order is being processed / Sifariş emal olunur",
    SHIPPED: "Order has been shipped / Sifariş göndərildi",
    IN_TRANSIT: "Order is in transit / Sifariş yoldadır",
    OUT_FOR_DELIVERY: "Order is out for delivery / Sifariş çatdırılma üçün çıxıb",
    DELIVERED: "Order has been delivered / Sifariş çatdırıldı",
    CANCELLED: "Order has been cancelled / Sifariş ləğv edildi",
    RETURNED: "Order has been returned / Sifariş qaytarıldı",
}


def get_status_description(status: str) -> str:
    return STATUS_DESCRIPTIONS.get(status, f"Order status: {status}")


def can_transition(current: str, new: str) -> bool:
    return new in ORDER_STATUS_FLOW.get(current, set())


# ============================================================
# ACCESS
# ============================================================

async def get_order_for_user(db, order_id, user) -> dict:
    order = await db.orders.find_one({"_id": parse_object_id(order_id, "order_id")})
    if not order:
        raise NotFoundError("Order not found / Sifariş tapılmadı")

    if user.get("role") in (ROLE_ADMIN, ROLE_SUPPORT):
        return order

    if str(user["_id"]) not in order_participants(order):
        # do not reveal other users' orders
        raise NotFoundError("Order not found / Sifariş tapılmadı")

    return order


def _check_actor(order: dict, status: str, user: dict):
    role = user.get("role")

    if status not in ROLE_STATUSES.get(role, set()):
        raise ForbiddenError("Status change not allowed for your role / Bu status dəyişikliyi rolunuz üçün icazəli deyil")

    if role == ROLE_SELLER and order.get("seller_id") != user["_id"]:
        raise ForbiddenError("Not your order / Sizin sifarişiniz deyil")

    if role == ROLE_COURIER and order.get("courier_id") != user["_id"]:
        raise ForbiddenError("Order is not assigned to you / Sifariş sizə təyin edilməyib")

    if role == ROLE_CUSTOMER and (order.get("buyer_id") != user["_id"] or order["status"] not in (PENDING, CONFIRMED)):
        raise ForbiddenError("Order can no longer be cancelled / Sifarişi artıq ləğv etmək mümkün deyil")


# ============================================================
# TIMELINE
# ============================================================

async def get_order_tracking_timeline(db, order_id) -> list[dict]:
    order = await db.orders.find_one({"_id": parse_object_id(order_id, "order_id")})
    if not order:
        return []

    timeline = []

    async for event in db.order_timeline.find({"order_id": order["_id"]}).sort("created_at", ASCENDING):
        timeline.append({
            "order_id": order["_id"],
            "status": event["status"],
            "location": event.get("location"),
            "timestamp": event["created_at"],
            "description": event.get("description") or get_status_description(event["status"]),
        })

    shipping = order.get("shipping") or {}
    for event in shipping.get("tracking_events") or []:
        status = event.get("status") or order["status"]
        timeline.append({
            "order_id": order["_id"],
            "status": status,
            "location": event.get("location"),
            "timestamp": event["created_at"],
            "description": event.get("description") or get_status_description(status),
        })

    timeline.sort(key=lambda e: e["timestamp"])
    return timeline


def timeline_snapshot_events(timeline: list[dict], user_id) -> list[dict]:
    return [build_event(ORDER_STATUS_UPDATE, item, user_id) for item in timeline]


def get_tracking_summary(order: dict) -> dict:
    shipping = order.get("shipping") or {}
    return {
        "order_id": order["_id"],
        "status": order["status"],
        "description": get_status_description(order["status"]),
        "estimated_delivery": shipping.get("estimated_delivery"),
        "courier": shipping.get("courier"),
        "tracking_number": shipping.get("tracking_number"),
        "updated_at": order.get("updated_at"),
    }


# ============================================================
# STATUS UPDATES
# ============================================================

async def _award_delivery_rewards(db, order: dict):
    amount = float(order.get("total_amount") or 0)

    try:
        points = await calculate_points_from_order(db, amount)
        if points > 0 and order.get("buyer_id"):
            # flag guards against double award on retries
            claimed = await db.orders.update_one(
                {"_id": order["_id"], "points_awarded": {"$ne": True}},
                {"$set": {"points_awarded": True}},
            )
            if claimed.modified_count:
                await earn_points(
                    db,
                    order["buyer_id"],
                    points,
                    PointsTransactionType.PURCHASE.value,
                    f"Order {order['_id']} / Sifariş {order['_id']}",
                    order_id=order["_id"],
                )
    except Exception:
        logger.exception("DELIVERY_POINTS_ERROR order=%s", order["_id"])

    if not order.get("affiliate_id"):
        return

    try:
        claimed = await db.orders.update_one(
            {"_id": order["_id"], "affiliate_commission_created": {"$ne": True}},
            {"$set": {"affiliate_commission_created": True}},
        )
        if claimed.modified_count:
            await calculate_multi_tier_commission(
                db,
                order["_id"],
                order["affiliate_id"],
                amount,
                order.get("affiliate_link_id"),
            )
    except Exception:
        logger.exception("DELIVERY_COMMISSION_ERROR order=%s", order["_id"])


async def update_order_status(
    db,
    order: dict,
    status: str,
    user: dict,
    *,
    description: str | None = None,
    location: dict | None = None,
) -> dict:
    current = order["status"]

    if status not in ORDER_STATUS_FLOW:
        raise ValidationError(f"Unknown status {status} / Naməlum status {status}")

    if not can_transition(current, status):
        raise ValidationError(
            f"Cannot change status from {current} to {status} / Status {current}-dan {status}-a dəyişdirilə bilməz"
        )

    _check_actor(order, status, user)

    now = datetime.utcnow()
    changes = {"status": status, "updated_at": now}
    if status == DELIVERED:
        changes["delivered_at"] = now
    if status == CANCELLED:
        changes["cancelled_at"] = now

    # compare-and-set on the previous status
    updated = await db.orders.find_one_and_update(
        {"_id": order["_id"], "status": current},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise ConflictError("Order status changed concurrently / Sifariş statusu eyni vaxtda dəyişdirildi")

    await record_order_event(
        db,
        order=updated,
        status=status,
        actor_role=user.get("role"),
        actor_id=user["_id"],
        description=description or get_status_description(status),
        location=location,
        metadata={"from": current},
    )

    logger.info("ORDER_STATUS order=%s %s->%s by=%s", order["_id"], current, status, user.get("role"))

    if status == DELIVERED:
        await _award_delivery_rewards(db, updated)

    return updated


async def add_tracking_event(
    db,
    order: dict,
    user: dict,
    *,
    description: str,
    location: dict | None = None,
) -> dict:
    """Location / progress update that does not change the order status."""
    if user.get("role") != ROLE_ADMIN and order.get("courier_id") != user["_id"]:
        raise ForbiddenError("Order is not assigned to you / Sifariş sizə təyin edilməyib")

    if order["status"] not in (SHIPPED, IN_TRANSIT, OUT_FOR_DELIVERY):
        raise ValidationError("Order is not in delivery / Sifariş çatdırılmada deyil")

    return await record_order_event(
        db,
        order=order,
        status=order["status"],
        actor_role=user.get("role"),
        actor_id=user["_id"],
        description=description,
        location=location,
    )

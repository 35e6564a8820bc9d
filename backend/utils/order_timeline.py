from datetime import datetime
from bson import ObjectId

from utils.realtime import emit_realtime_event, ORDER_STATUS_UPDATE

PARTICIPANT_FIELDS = ("buyer_id", "seller_id", "courier_id")


def order_participants(order) -> list[str]:
    seen = []
    for field in PARTICIPANT_FIELDS:
        value = order.get(field)
        if value and str(value) not in seen:
            seen.append(str(value))
    return seen


async def record_order_event(
    db,
    *,
    order,
    status: str,
    actor_role: str,
    actor_id=None,
    description: str | None = None,
    location: dict | None = None,
    metadata: dict | None = None,
):
    """
    Single source of truth for order timeline events.
    Also pushes the update to every participant's live connections.
    """

    doc = {
        "order_id": ObjectId(order["_id"]),
        "status": status,
        "description": description,
        "location": location,
        "actor_role": actor_role,
        "actor_id": ObjectId(actor_id) if actor_id else None,
        "metadata": metadata or {},
        "created_at": datetime.utcnow(),
    }

    await db.order_timeline.insert_one(doc)

    payload = {
        "order_id": order["_id"],
        "status": status,
        "description": description,
        "location": location,
        "timestamp": doc["created_at"],
    }
    for user_id in order_participants(order):
        emit_realtime_event(ORDER_STATUS_UPDATE, payload, user_id=user_id)

    return doc

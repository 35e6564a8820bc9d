import logging
from datetime import datetime

from pymongo import DESCENDING, ReturnDocument

from config.constants import STAFF_ROLES
from models.chat import ChatRoomStatus, ChatSenderType
from utils.errors import ForbiddenError, NotFoundError, ValidationError
from utils.guards import parse_object_id, parse_optional_object_id
from utils.realtime import (
    CHAT_MESSAGE_NEW,
    CHAT_MESSAGES_READ,
    CHAT_ROOM_ASSIGNED,
    CHAT_ROOM_CLOSED,
    CHAT_ROOM_CREATED,
    emit_realtime_event,
)

logger = logging.getLogger(__name__)

ROOM_NOT_FOUND = "Chat room not found / Chat otağı tapılmadı"
ROOM_ACCESS_DENIED = "Chat room not found or access denied / Chat otağı tapılmadı və ya giriş rədd edildi"


def sender_type_for_role(role: str) -> str:
    if role in STAFF_ROLES:
        return ChatSenderType.SUPPORT.value
    return ChatSenderType.CUSTOMER.value


def _participant_query(room_id, user_id) -> dict:
    return {
        "_id": parse_object_id(room_id, "room_id"),
        "$or": [{"customer_id": user_id}, {"support_staff_id": user_id}],
    }


def _other_participant(room: dict, user_id):
    if room["customer_id"] == user_id:
        return room.get("support_staff_id")
    return room["customer_id"]


# ============================================================
# ROOMS
# ============================================================

async def create_chat_room(db, customer_id, product_id=None, order_id=None) -> dict:
    now = datetime.utcnow()
    room = {
        "customer_id": parse_object_id(customer_id, "customer_id"),
        "support_staff_id": None,
        "product_id": parse_optional_object_id(product_id, "product_id"),
        "order_id": parse_optional_object_id(order_id, "order_id"),
        "status": ChatRoomStatus.OPEN.value,
        "rating": None,
        "rating_comment": None,
        "last_message_at": now,
        "created_at": now,
        "updated_at": now,
    }
    await db.chat_rooms.insert_one(room)

    logger.info("CHAT_ROOM_CREATED room=%s customer=%s", room["_id"], customer_id)
    emit_realtime_event(CHAT_ROOM_CREATED, {"room_id": room["_id"]}, room["customer_id"])
    return room


async def get_user_chat_rooms(db, user_id, role: str, limit: int = 20, offset: int = 0):
    user_id = parse_object_id(user_id, "user_id")
    query = {"support_staff_id": user_id} if role in STAFF_ROLES else {"customer_id": user_id}

    rooms = await (
        db.chat_rooms.find(query)
        .sort("last_message_at", DESCENDING)
        .skip(offset)
        .limit(limit)
        .to_list(limit)
    )

    for room in rooms:
        room["last_message"] = await db.chat_messages.find_one(
            {"room_id": room["_id"]},
            sort=[("created_at", DESCENDING)],
        )

    total = await db.chat_rooms.count_documents(query)
    return rooms, total


async def get_unassigned_chat_rooms(db, limit: int = 20, offset: int = 0):
    query = {
        "support_staff_id": None,
        "status": {"$in": [ChatRoomStatus.OPEN.value, ChatRoomStatus.WAITING.value]},
    }
    rooms = await db.chat_rooms.find(query).sort("created_at", 1).skip(offset).limit(limit).to_list(limit)
    total = await db.chat_rooms.count_documents(query)
    return rooms, total


async def get_chat_room(db, room_id, user_id) -> dict:
    room = await db.chat_rooms.find_one(_participant_query(room_id, parse_object_id(user_id, "user_id")))
    if not room:
        raise NotFoundError(ROOM_NOT_FOUND)
    return room


# ============================================================
# MESSAGES
# ============================================================

async def get_chat_messages(db, room_id, limit: int = 50, offset: int = 0):
    """Newest page first, returned oldest-first for display."""
    room_id = parse_object_id(room_id, "room_id")

    messages = await (
        db.chat_messages.find({"room_id": room_id})
        .sort("created_at", DESCENDING)
        .skip(offset)
        .limit(limit)
        .to_list(limit)
    )
    messages.reverse()

    total = await db.chat_messages.count_documents({"room_id": room_id})
    return messages, total


async def send_chat_message(
    db,
    room_id,
    sender_id,
    sender_type: str,
    content: str,
    attachments: list[dict] | None = None,
) -> dict:
    if not content or not content.strip():
        raise ValidationError("Message content is required / Mesaj məzmunu tələb olunur")

    sender_id = parse_object_id(sender_id, "sender_id")
    room = await db.chat_rooms.find_one(_participant_query(room_id, sender_id))
    if not room:
        raise NotFoundError(ROOM_ACCESS_DENIED)

    now = datetime.utcnow()
    message = {
        "room_id": room["_id"],
        "sender_id": sender_id,
        "sender_type": sender_type,
        "content": content.strip(),
        "attachments": attachments or [],
        "is_read": False,
        "read_at": None,
        "created_at": now,
    }
    await db.chat_messages.insert_one(message)

    if sender_type == ChatSenderType.SUPPORT.value:
        status = ChatRoomStatus.IN_PROGRESS.value
    elif room["status"] == ChatRoomStatus.CLOSED.value:
        status = ChatRoomStatus.OPEN.value
    else:
        status = room["status"]

    await db.chat_rooms.update_one(
        {"_id": room["_id"]},
        {"$set": {"last_message_at": now, "status": status, "updated_at": now}},
    )

    recipient = _other_participant(room, sender_id)
    if recipient:
        emit_realtime_event(CHAT_MESSAGE_NEW, {"room_id": room["_id"], "message": message}, recipient)
    else:
        logger.info("CHAT_MESSAGE_UNASSIGNED room=%s", room["_id"])

    logger.info("CHAT_MESSAGE_SENT message=%s room=%s sender=%s", message["_id"], room["_id"], sender_id)
    return message


async def mark_messages_as_read(db, room_id, user_id) -> dict:
    user_id = parse_object_id(user_id, "user_id")
    room = await get_chat_room(db, room_id, user_id)

    result = await db.chat_messages.update_many(
        {"room_id": room["_id"], "sender_id": {"$ne": user_id}, "is_read": False},
        {"$set": {"is_read": True, "read_at": datetime.utcnow()}},
    )

    # tell the sender their messages were seen
    other = _other_participant(room, user_id)
    if other and result.modified_count:
        emit_realtime_event(CHAT_MESSAGES_READ, {"room_id": room["_id"], "count": result.modified_count}, other)

    return {"count": result.modified_count}


# ============================================================
# STAFF ACTIONS
# ============================================================

async def assign_support_staff(db, room_id, support_staff_id) -> dict:
    support_staff_id = parse_object_id(support_staff_id, "support_staff_id")

    staff = await db.users.find_one({"_id": support_staff_id}, {"role": 1})
    if not staff or staff.get("role") not in STAFF_ROLES:
        raise ValidationError("User is not support staff / İstifadəçi dəstək işçisi deyil")

    room = await db.chat_rooms.find_one_and_update(
        {"_id": parse_object_id(room_id, "room_id")},
        {"$set": {
            "support_staff_id": support_staff_id,
            "status": ChatRoomStatus.IN_PROGRESS.value,
            "updated_at": datetime.utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not room:
        raise NotFoundError(ROOM_NOT_FOUND)

    emit_realtime_event(
        CHAT_ROOM_ASSIGNED,
        {"room_id": room["_id"], "support_staff_id": support_staff_id},
        room["customer_id"],
    )
    logger.info("CHAT_ROOM_ASSIGNED room=%s staff=%s", room["_id"], support_staff_id)
    return room


async def close_chat_room(db, room_id, user_id) -> dict:
    user_id = parse_object_id(user_id, "user_id")
    room = await db.chat_rooms.find_one(_participant_query(room_id, user_id))
    if not room:
        raise NotFoundError(ROOM_ACCESS_DENIED)

    updated = await db.chat_rooms.find_one_and_update(
        {"_id": room["_id"]},
        {"$set": {"status": ChatRoomStatus.CLOSED.value, "closed_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )

    other = _other_participant(room, user_id)
    if other:
        emit_realtime_event(CHAT_ROOM_CLOSED, {"room_id": room["_id"]}, other)

    logger.info("CHAT_ROOM_CLOSED room=%s by=%s", room["_id"], user_id)
    return updated


async def rate_chat_room(db, room_id, customer_id, rating: int, comment: str | None = None) -> dict:
    if rating < 1 or rating > 5:
        raise ValidationError("Rating must be between 1 and 5 / Qiymət 1 ilə 5 arasında olmalıdır")

    customer_id = parse_object_id(customer_id, "customer_id")
    room = await db.chat_rooms.find_one({"_id": parse_object_id(room_id, "room_id")})
    if not room:
        raise NotFoundError(ROOM_NOT_FOUND)
    if room["customer_id"] != customer_id:
        raise ForbiddenError("Only the customer can rate this chat / Yalnız müştəri bu söhbəti qiymətləndirə bilər")

    return await db.chat_rooms.find_one_and_update(
        {"_id": room["_id"]},
        {"$set": {
            "rating": rating,
            "rating_comment": comment,
            "status": ChatRoomStatus.RESOLVED.value,
            "updated_at": datetime.utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )

from fastapi import APIRouter, Depends, Query

from database import get_db
from config.constants import CHAT_MESSAGES_PAGE_SIZE, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ROLE_ADMIN, ROLE_SUPPORT
from models.chat import ChatAssign, ChatMessageCreate, ChatRating, ChatRoomCreate
from utils.chat import (
    assign_support_staff,
    close_chat_room,
    create_chat_room,
    get_chat_messages,
    get_chat_room,
    get_unassigned_chat_rooms,
    get_user_chat_rooms,
    mark_messages_as_read,
    rate_chat_room,
    send_chat_message,
    sender_type_for_role,
)
from utils.rate_limit import rate_limit
from utils.realtime import CHAT_TYPING, emit_realtime_event
from utils.responses import paginated, success_response
from utils.security import get_current_user, require_role

router = APIRouter(
    prefix="/api/chat",
    tags=["Chat"]
)


def _page(offset: int, limit: int) -> int:
    return offset // limit + 1


@router.post("/rooms")
async def open_room(
    data: ChatRoomCreate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    room = await create_chat_room(db, user["_id"], data.product_id, data.order_id)
    return success_response(room, "Chat room created / Chat otağı yaradıldı")


@router.get("/rooms")
async def my_rooms(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    rooms, total = await get_user_chat_rooms(db, user["_id"], user.get("role"), limit, offset)
    return success_response(paginated(rooms, page=_page(offset, limit), limit=limit, total=total))


@router.get("/rooms/unassigned")
async def unassigned_rooms(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    staff=Depends(require_role(ROLE_SUPPORT, ROLE_ADMIN)),
    db=Depends(get_db),
):
    rooms, total = await get_unassigned_chat_rooms(db, limit, offset)
    return success_response(paginated(rooms, page=_page(offset, limit), limit=limit, total=total))


@router.get("/rooms/{room_id}")
async def room_detail(
    room_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    return success_response(await get_chat_room(db, room_id, user["_id"]))


@router.get("/rooms/{room_id}/messages")
async def room_messages(
    room_id: str,
    limit: int = Query(CHAT_MESSAGES_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    room = await get_chat_room(db, room_id, user["_id"])
    messages, total = await get_chat_messages(db, room["_id"], limit, offset)
    return success_response(paginated(messages, page=_page(offset, limit), limit=limit, total=total))


@router.post("/rooms/{room_id}/messages")
async def post_message(
    room_id: str,
    data: ChatMessageCreate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    await rate_limit(db, f"chat_message:{user['_id']}", 30, 60)

    message = await send_chat_message(
        db,
        room_id,
        user["_id"],
        sender_type_for_role(user.get("role")),
        data.content,
        [a.model_dump() for a in data.attachments],
    )
    return success_response(message)


@router.post("/rooms/{room_id}/read")
async def read_messages(
    room_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    return success_response(await mark_messages_as_read(db, room_id, user["_id"]))


@router.post("/rooms/{room_id}/typing")
async def typing(
    room_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    room = await get_chat_room(db, room_id, user["_id"])
    other = room.get("support_staff_id") if room["customer_id"] == user["_id"] else room["customer_id"]

    sent = 0
    if other:
        sent = emit_realtime_event(CHAT_TYPING, {"room_id": room["_id"], "user_id": user["_id"]}, other)
    return success_response({"delivered": sent})


@router.post("/rooms/{room_id}/assign")
async def assign_room(
    room_id: str,
    data: ChatAssign,
    staff=Depends(require_role(ROLE_SUPPORT, ROLE_ADMIN)),
    db=Depends(get_db),
):
    room = await assign_support_staff(db, room_id, data.support_staff_id)
    return success_response(room, "Support staff assigned / Dəstək işçisi təyin edildi")


@router.post("/rooms/{room_id}/close")
async def close_room(
    room_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    room = await close_chat_room(db, room_id, user["_id"])
    return success_response(room, "Chat room closed / Chat otağı bağlandı")


@router.post("/rooms/{room_id}/rate")
async def rate_room(
    room_id: str,
    data: ChatRating,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    room = await rate_chat_room(db, room_id, user["_id"], data.rating, data.comment)
    return success_response(room, "Thank you for your feedback / Rəyiniz üçün təşəkkür edirik")

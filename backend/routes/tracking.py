from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from typing import Optional
from sse_starlette.sse import EventSourceResponse

from database import get_db
from config.constants import ROLE_ADMIN, ROLE_COURIER
from utils.audit import log_audit
from utils.errors import ValidationError
from utils.guards import parse_object_id
from utils.order_tracking import (
    add_tracking_event,
    get_order_for_user,
    get_order_tracking_timeline,
    get_tracking_summary,
    timeline_snapshot_events,
    update_order_status,
)
from utils.realtime import ORDER_STATUS_UPDATE, event_stream, hub
from utils.responses import success_response
from utils.security import get_current_user, require_role

router = APIRouter(
    prefix="/api/orders",
    tags=["Order Tracking"]
)

# -------------------------------------------------
# SCHEMAS
# -------------------------------------------------

class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str
    description: Optional[str] = Field(None, max_length=500)
    location: Optional[Location] = None


class TrackingEventCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    location: Optional[Location] = None


class CourierAssign(BaseModel):
    courier_id: str


# -------------------------------------------------
# READ
# -------------------------------------------------

@router.get("/{order_id}/tracking")
async def order_tracking(
    order_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await get_order_for_user(db, order_id, user)
    timeline = await get_order_tracking_timeline(db, order["_id"])

    return success_response({**get_tracking_summary(order), "timeline": timeline})


@router.get("/{order_id}/tracking/stream")
async def order_tracking_stream(
    order_id: str,
    request: Request,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await get_order_for_user(db, order_id, user)
    timeline = await get_order_tracking_timeline(db, order["_id"])

    hub.check_capacity()
    target = str(order["_id"])

    def accept(event):
        return event.get("type") == ORDER_STATUS_UPDATE and event["data"].get("order_id") == target

    return EventSourceResponse(
        event_stream(
            request,
            user["_id"],
            timeline_snapshot_events(timeline, user["_id"]),
            accept=accept,
        )
    )


# -------------------------------------------------
# WRITE
# -------------------------------------------------

@router.post("/{order_id}/status")
async def change_status(
    order_id: str,
    data: StatusUpdate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await get_order_for_user(db, order_id, user)

    updated = await update_order_status(
        db,
        order,
        data.status.strip().upper(),
        user,
        description=data.description,
        location=data.location.model_dump() if data.location else None,
    )
    return success_response(get_tracking_summary(updated), "Order status updated / Sifariş statusu yeniləndi")


@router.post("/{order_id}/tracking/events")
async def post_tracking_event(
    order_id: str,
    data: TrackingEventCreate,
    courier=Depends(require_role(ROLE_COURIER, ROLE_ADMIN)),
    db=Depends(get_db),
):
    order = await get_order_for_user(db, order_id, courier)
    event = await add_tracking_event(
        db,
        order,
        courier,
        description=data.description,
        location=data.location.model_dump() if data.location else None,
    )
    return success_response(event)


@router.post("/{order_id}/courier")
async def assign_courier(
    order_id: str,
    data: CourierAssign,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    courier_id = parse_object_id(data.courier_id, "courier_id")
    courier = await db.users.find_one({"_id": courier_id, "role": ROLE_COURIER})
    if not courier:
        raise ValidationError("Courier not found / Kuryer tapılmadı")

    order = await get_order_for_user(db, order_id, admin)
    await db.orders.update_one({"_id": order["_id"]}, {"$set": {"courier_id": courier_id}})

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role="admin",
        action="ORDER_COURIER_ASSIGNED",
        metadata={"order_id": str(order["_id"]), "courier_id": str(courier_id)},
    )

    return success_response({"order_id": order["_id"], "courier_id": courier_id})

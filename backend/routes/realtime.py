from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from utils.realtime import event_stream, hub
from utils.responses import success_response
from utils.security import get_current_user, require_admin

router = APIRouter(
    prefix="/api/realtime",
    tags=["Realtime"]
)

admin_router = APIRouter(
    prefix="/api/admin/realtime",
    tags=["Admin Realtime"]
)


@router.get("/stream")
async def stream(
    request: Request,
    user=Depends(get_current_user),
):
    hub.check_capacity()
    return EventSourceResponse(event_stream(request, user["_id"]))


@admin_router.get("/metrics")
async def metrics(admin=Depends(require_admin)):
    return success_response(hub.get_metrics())
